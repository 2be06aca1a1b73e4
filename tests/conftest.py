from pathlib import Path

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from promptmack.config import AppSettings, ModelEndpointConfig, PollingConfig
from promptmack.main import create_app
from tests.fakes import FakeChatModelClient, FakeSkyvernClient, make_tool_clients


def make_settings(tmp_path: Path, **overrides) -> AppSettings:
    settings = AppSettings(
        chat_endpoint=ModelEndpointConfig(base_url="http://model.test/v1", model_id="test-model", api_key="model-key"),
        serper_api_key="serper-key",
        exa_api_key="exa-key",
        firecrawl_api_key="firecrawl-key",
        skyvern_api_key="skyvern-key",
        polling=PollingConfig(max_attempts=10, interval_s=0.0),
        auth_secret="test-secret",
        database_path=str(tmp_path / "test.db"),
        host="127.0.0.1",
        port=8000,
    )
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


@pytest.fixture
def app_factory(tmp_path: Path):
    def _factory(
        *,
        fake_llm: FakeChatModelClient | None = None,
        tool_clients=None,
        fake_skyvern: FakeSkyvernClient | None = None,
        **settings_overrides,
    ):
        settings = make_settings(tmp_path, **settings_overrides)
        llm_client = fake_llm or FakeChatModelClient()
        clients = tool_clients or make_tool_clients()
        skyvern = fake_skyvern or FakeSkyvernClient()
        app = create_app(settings, llm_client=llm_client, tool_clients=clients, skyvern_client=skyvern)
        return app, llm_client, clients, skyvern

    return _factory


@pytest.fixture
async def client(app_factory):
    app, llm_client, tool_clients, skyvern = app_factory()
    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as http_client:
            http_client.app = app  # type: ignore[attr-defined]
            http_client.fake_llm = llm_client  # type: ignore[attr-defined]
            http_client.tool_clients = tool_clients  # type: ignore[attr-defined]
            http_client.fake_skyvern = skyvern  # type: ignore[attr-defined]
            yield http_client


@pytest.fixture
def signup():
    async def _signup(http_client: AsyncClient, email: str = "ada@example.com", password: str = "hunter22") -> dict:
        res = await http_client.post("/api/auth/register", json={"email": email, "password": password})
        assert res.status_code == 200, res.text
        data = res.json()
        return {"user": data["user"], "headers": {"Authorization": f"Bearer {data['token']}"}}

    return _signup
