import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from tests.fakes import FakeFirecrawlClient, FakeSkyvernClient, make_tool_clients, vendor_failure


@pytest.mark.asyncio
async def test_skyvern_task_proxy(client, signup):
    session = await signup(client)
    client.fake_skyvern.responses["get_task"] = {"task_id": "tsk_1", "status": "completed"}
    res = await client.get("/api/skyvern/tasks/tsk_1", headers=session["headers"])
    assert res.status_code == 200
    assert res.json() == {"task_id": "tsk_1", "status": "completed"}

    steps = await client.get("/api/skyvern/tasks/tsk_1/steps", headers=session["headers"])
    assert steps.status_code == 200
    cancel = await client.post("/api/skyvern/tasks/tsk_1/cancel", headers=session["headers"])
    assert cancel.status_code == 200
    assert [c["method"] for c in client.fake_skyvern.calls] == ["get_task", "get_task_steps", "cancel_task"]


@pytest.mark.asyncio
async def test_skyvern_routes_require_session(client):
    assert (await client.get("/api/skyvern/tasks/tsk_1")).status_code == 401
    assert client.fake_skyvern.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method,path,message",
    [
        ("GET", "/api/skyvern/tasks/tsk_1", "Failed to fetch task details"),
        ("GET", "/api/skyvern/tasks/tsk_1/steps", "Failed to fetch task steps"),
        ("POST", "/api/skyvern/tasks/tsk_1/cancel", "Failed to cancel task"),
    ],
)
async def test_skyvern_vendor_failure_is_500(app_factory, signup, method, path, message):
    failure = vendor_failure("skyvern")
    skyvern = FakeSkyvernClient(
        failures={"get_task": failure, "get_task_steps": failure, "cancel_task": failure}
    )
    app, _, _, _ = app_factory(fake_skyvern=skyvern)
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
            session = await signup(http_client)
            res = await http_client.request(method, path, headers=session["headers"])
    assert res.status_code == 500
    assert res.json() == {"error": message}


@pytest.mark.asyncio
async def test_firecrawl_pending_job_can_be_rechecked(client, signup):
    session = await signup(client)
    client.tool_clients.firecrawl.responses["crawl_status"] = {"status": "completed", "data": []}
    res = await client.get("/api/firecrawl/crawl/job-7", headers=session["headers"])
    assert res.status_code == 200
    assert res.json()["status"] == "completed"
    assert client.tool_clients.firecrawl.calls == [{"method": "crawl_status", "job_id": "job-7"}]

    extract = await client.get("/api/firecrawl/extract/job-8", headers=session["headers"])
    assert extract.status_code == 200
    assert client.tool_clients.firecrawl.calls[-1] == {"method": "extract_status", "job_id": "job-8"}

    unknown = await client.get("/api/firecrawl/scrape/job-9", headers=session["headers"])
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_firecrawl_status_failure_is_500(app_factory, signup):
    firecrawl = FakeFirecrawlClient(failures={"crawl_status": vendor_failure("firecrawl", 404)})
    app, _, _, _ = app_factory(tool_clients=make_tool_clients(firecrawl=firecrawl))
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
            session = await signup(http_client)
            res = await http_client.get("/api/firecrawl/crawl/gone", headers=session["headers"])
    assert res.status_code == 500
    assert res.json() == {"error": "Failed to fetch crawl status"}


@pytest.mark.asyncio
async def test_lifespan_closes_clients(app_factory):
    app, llm, tool_clients, skyvern = app_factory()
    async with LifespanManager(app):
        pass
    assert llm.closed
    assert skyvern.closed
    assert tool_clients.serper.closed
    assert tool_clients.firecrawl.closed
