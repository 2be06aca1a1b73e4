import pytest

from promptmack.errors import AdapterFailure
from promptmack.poller import (
    DEFAULT_INTERVAL_S,
    DEFAULT_MAX_ATTEMPTS,
    AsyncJob,
    JobPoller,
    JobStatus,
    poll_until,
)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class ScriptedVendor:
    """Reports ``pending`` until poll ``complete_on``; never completes when it is None."""

    def __init__(self, complete_on=None, fail_on=None) -> None:
        self.complete_on = complete_on
        self.fail_on = fail_on
        self.queries = []

    async def submit(self) -> str:
        return "job-42"

    async def status(self, job_id: str) -> dict:
        self.queries.append(job_id)
        n = len(self.queries)
        if self.fail_on is not None and n == self.fail_on:
            return {"status": "failed", "error": "vendor exploded"}
        if self.complete_on is not None and n >= self.complete_on:
            return {"status": "completed", "data": [{"url": "https://example.com"}]}
        return {"status": "scraping", "completed": n}


def test_defaults_are_ten_polls_three_seconds_apart():
    poller = JobPoller()
    assert DEFAULT_MAX_ATTEMPTS == 10
    assert DEFAULT_INTERVAL_S == 3.0
    assert poller.max_attempts == 10
    assert poller.interval_s == 3.0


@pytest.mark.asyncio
@pytest.mark.parametrize("n", [1, 4, 10])
async def test_poll_until_stops_on_first_completed_check(n):
    sleep = RecordingSleep()
    checks = []

    async def check():
        checks.append(len(checks) + 1)
        return len(checks) == n

    value, attempts = await poll_until(check, bool, max_attempts=10, interval_s=3.0, sleep=sleep)
    assert value is True
    assert attempts == n
    assert len(checks) == n
    assert sleep.delays == [3.0] * n


@pytest.mark.asyncio
async def test_poll_until_returns_none_after_budget():
    sleep = RecordingSleep()
    calls = 0

    async def check():
        nonlocal calls
        calls += 1
        return False

    value, attempts = await poll_until(check, bool, max_attempts=3, interval_s=0.5, sleep=sleep)
    assert value is None
    assert attempts == 3
    assert calls == 3
    assert sleep.delays == [0.5, 0.5, 0.5]


@pytest.mark.asyncio
async def test_poll_until_rejects_empty_budget():
    async def check():
        return True

    with pytest.raises(ValueError):
        await poll_until(check, bool, max_attempts=0)


@pytest.mark.asyncio
@pytest.mark.parametrize("n", [1, 3, 10])
async def test_job_completing_on_poll_n_returns_payload_after_n_queries(n):
    sleep = RecordingSleep()
    vendor = ScriptedVendor(complete_on=n)
    poller = JobPoller(sleep=sleep)

    result = await poller.run(vendor.submit, vendor.status, "still running", vendor="firecrawl")

    assert result["status"] == "completed"
    assert result["data"] == [{"url": "https://example.com"}]
    assert vendor.queries == ["job-42"] * n
    assert sleep.delays == [DEFAULT_INTERVAL_S] * n


@pytest.mark.asyncio
async def test_job_never_completing_returns_pending_after_exactly_ten_queries():
    sleep = RecordingSleep()
    vendor = ScriptedVendor(complete_on=None)
    poller = JobPoller(sleep=sleep)

    result = await poller.run(vendor.submit, vendor.status, "Crawl is still in progress.", vendor="firecrawl")

    assert result == {"status": "pending", "id": "job-42", "message": "Crawl is still in progress."}
    assert len(vendor.queries) == 10
    assert len(sleep.delays) == 10


@pytest.mark.asyncio
async def test_wait_tracks_attempts_and_completion():
    vendor = ScriptedVendor(complete_on=2)
    poller = JobPoller(max_attempts=5, interval_s=0.0, sleep=RecordingSleep())
    job = await poller.wait(AsyncJob(job_id="job-42"), vendor.status)
    assert job.status is JobStatus.COMPLETED
    assert job.done
    assert job.attempts == 2
    assert job.result["status"] == "completed"


@pytest.mark.asyncio
async def test_vendor_failed_status_raises_adapter_failure():
    vendor = ScriptedVendor(fail_on=2)
    poller = JobPoller(sleep=RecordingSleep())
    job = AsyncJob(job_id="job-42")

    with pytest.raises(AdapterFailure) as exc_info:
        await poller.wait(job, vendor.status, vendor="firecrawl")

    assert exc_info.value.vendor == "firecrawl"
    assert exc_info.value.reason == "job_failed"
    assert job.status is JobStatus.FAILED
    assert len(vendor.queries) == 2


@pytest.mark.asyncio
async def test_status_errors_propagate():
    poller = JobPoller(sleep=RecordingSleep())

    async def submit():
        return "job-1"

    async def broken_status(job_id):
        raise AdapterFailure("firecrawl", "request_failed")

    with pytest.raises(AdapterFailure):
        await poller.run(submit, broken_status, "pending")
