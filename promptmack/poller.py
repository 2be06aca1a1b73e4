"""Bounded polling for vendor jobs that are submitted first and finished later.

A job goes ``Submitted -> Polling -> Completed | TimedOut``. Running out of
attempts is not an error: the caller gets a ``pending`` payload carrying the
job id so the client can check again later. Transport and vendor errors
propagate unchanged.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from .errors import AdapterFailure


logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_INTERVAL_S = 3.0


class JobStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class AsyncJob:
    job_id: str
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    result: Optional[Dict[str, Any]] = None

    @property
    def done(self) -> bool:
        return self.status is JobStatus.COMPLETED


async def poll_until(
    check: Callable[[], Awaitable[T]],
    is_done: Callable[[T], bool],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    interval_s: float = DEFAULT_INTERVAL_S,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Tuple[Optional[T], int]:
    """Call ``check`` after each fixed delay until ``is_done`` accepts a value.

    Returns ``(value, attempts)``; ``value`` is ``None`` when every attempt was
    used without completion.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    for attempt in range(1, max_attempts + 1):
        await sleep(interval_s)
        value = await check()
        if is_done(value):
            return value, attempt
    return None, max_attempts


def status_of(payload: Any) -> str:
    if isinstance(payload, dict):
        return str(payload.get("status") or "").lower()
    return ""


class JobPoller:
    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        interval_s: float = DEFAULT_INTERVAL_S,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.max_attempts = max_attempts
        self.interval_s = interval_s
        self.sleep = sleep or asyncio.sleep

    async def wait(
        self,
        job: AsyncJob,
        fetch_status: Callable[[str], Awaitable[Dict[str, Any]]],
        vendor: str = "vendor",
    ) -> AsyncJob:
        async def check() -> Dict[str, Any]:
            job.attempts += 1
            payload = await fetch_status(job.job_id)
            logger.debug("%s job %s poll %d: %s", vendor, job.job_id, job.attempts, status_of(payload))
            if status_of(payload) == JobStatus.FAILED.value:
                job.status = JobStatus.FAILED
                raise AdapterFailure(vendor, "job_failed", detail=payload)
            return payload

        payload, _ = await poll_until(
            check,
            lambda p: status_of(p) == JobStatus.COMPLETED.value,
            max_attempts=self.max_attempts,
            interval_s=self.interval_s,
            sleep=self.sleep,
        )
        if payload is not None:
            job.status = JobStatus.COMPLETED
            job.result = payload
        return job

    async def run(
        self,
        submit: Callable[[], Awaitable[str]],
        fetch_status: Callable[[str], Awaitable[Dict[str, Any]]],
        pending_message: str,
        vendor: str = "vendor",
    ) -> Dict[str, Any]:
        """Submit, poll, and return the completed payload or a pending marker."""
        job = AsyncJob(job_id=await submit())
        await self.wait(job, fetch_status, vendor=vendor)
        if job.done and job.result is not None:
            return job.result
        logger.info("%s job %s still pending after %d polls", vendor, job.job_id, job.attempts)
        return {"status": JobStatus.PENDING.value, "id": job.job_id, "message": pending_message}
