"""Bounded polling of asynchronous remote jobs.

Architectural role:
    Turns a remote job id into a synchronous terminal outcome for the tool
    handlers (upscale, image-to-image job mode).

State machine:
    pending -> succeeded | failed | timed_out

    Each iteration fetches the job result once and classifies the lower-cased
    status string:
    - `succeeded` / `completed`: return a `JobOutcome`.
    - `failed` / `error` / `cancelled`: raise `JobFailedError`.
    - anything else: still pending; the status is remembered for diagnostics.

    Transient fetch failures (transport errors, HTTP timeouts, not-found /
    not-ready / rate-limited responses) keep the job pending and are logged at
    warning level; the job may not be registered yet. Every other remote error
    propagates.

Timing:
    `deadline = clock() + timeout`. After a non-terminal poll the loop stops
    with `OperationTimeoutError` once the deadline is reached, otherwise it
    sleeps `min(interval, remaining)`. Each poll request is itself bounded by
    the remaining time (at least `MIN_POLL_REQUEST_SECONDS`), so a hanging
    request ends in `OperationTimeoutError` at the deadline instead of at the
    HTTP client timeout. The clock and sleep functions are injected so tests
    can drive time without real delays.

Non-goals:
    Jobs are never resubmitted. Cancellation of the remote job on timeout is
    not attempted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from ai_image_mcp.core.validation import bounded_number
from ai_image_mcp.errors import JobFailedError, OperationTimeoutError, RemoteServiceError


SUCCESS_STATUSES = frozenset({"succeeded", "completed"})
FAILURE_STATUSES = frozenset({"failed", "error", "cancelled"})

POLL_INTERVAL_BOUNDS = (1.0, 60.0)
TIMEOUT_BOUNDS = (1.0, 1800.0)
DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_TIMEOUT_SECONDS = 300.0
# The poll issued at the deadline still gets this long to answer.
MIN_POLL_REQUEST_SECONDS = 1.0


class JobState(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


def classify_status(status: str | None) -> JobState:
    """Map a remote status string onto the poller's state machine."""
    normalized = (status or "").strip().lower()
    if normalized in SUCCESS_STATUSES:
        return JobState.SUCCEEDED
    if normalized in FAILURE_STATUSES:
        return JobState.FAILED
    return JobState.PENDING


@dataclass(frozen=True)
class PollOptions:
    """Polling bounds for one job.

    Raises:
        InvalidRequestError: When interval or timeout is outside its bounds.
    """

    include_binary: bool = True
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        interval = bounded_number(
            self.poll_interval_seconds,
            field="poll_interval_seconds",
            minimum=POLL_INTERVAL_BOUNDS[0],
            maximum=POLL_INTERVAL_BOUNDS[1],
            default=DEFAULT_POLL_INTERVAL_SECONDS,
        )
        timeout = bounded_number(
            self.timeout_seconds,
            field="timeout_seconds",
            minimum=TIMEOUT_BOUNDS[0],
            maximum=TIMEOUT_BOUNDS[1],
            default=DEFAULT_TIMEOUT_SECONDS,
        )
        object.__setattr__(self, "poll_interval_seconds", interval)
        object.__setattr__(self, "timeout_seconds", timeout)

    @classmethod
    def create(
        cls,
        poll_interval_seconds: Any = None,
        timeout_seconds: Any = None,
        *,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        include_binary: bool = True,
    ) -> "PollOptions":
        """Build options from optional caller values and an operation default."""
        return cls(
            include_binary=include_binary,
            poll_interval_seconds=DEFAULT_POLL_INTERVAL_SECONDS if poll_interval_seconds is None else poll_interval_seconds,
            timeout_seconds=default_timeout if timeout_seconds is None else timeout_seconds,
        )


@dataclass(frozen=True)
class JobOutcome:
    """Terminal success of a polled job."""

    job_id: str
    status: str
    image_base64: str | None = None
    remote_token: str | None = None
    metadata: dict[str, Any] | None = None
    polls: int = 1
    elapsed_seconds: float = 0.0


class JobPoller:
    """Drives one remote job at a time to a terminal state.

    Args:
        client: Object exposing `async job_result(job_id, include_base64=...)`.
        clock: Monotonic time source in seconds.
        sleep: Awaitable sleep; must yield to the event loop.
        logger: Optional logger; defaults to this module's logger.
    """

    def __init__(
        self,
        client: Any,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.clock = clock
        self.sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

    async def wait(self, job_id: str, options: PollOptions | None = None) -> JobOutcome:
        """Poll `job_id` until success, failure or deadline.

        Raises:
            JobFailedError: The job reported a failure status.
            OperationTimeoutError: No terminal status before the deadline.
            RemoteServiceError: A non-transient remote failure while polling.
        """
        options = options or PollOptions()
        started = self.clock()
        deadline = started + options.timeout_seconds
        last_status: str | None = None
        polls = 0

        while True:
            polls += 1
            request_budget = max(deadline - self.clock(), MIN_POLL_REQUEST_SECONDS)
            try:
                result = await asyncio.wait_for(
                    self.client.job_result(job_id, include_base64=options.include_binary),
                    timeout=request_budget,
                )
            except (RemoteServiceError, OperationTimeoutError) as exc:
                if isinstance(exc, RemoteServiceError) and not exc.is_transient:
                    raise
                self.logger.warning("Transient error while polling job %s (poll %d): %s", job_id, polls, exc)
            except asyncio.TimeoutError:
                raise self._timed_out(job_id, options, last_status) from None
            else:
                status = (result.status or "").strip().lower()
                if status:
                    last_status = status
                state = classify_status(status)

                if state is JobState.SUCCEEDED:
                    elapsed = self.clock() - started
                    self.logger.info("Job %s %s after %d poll(s)", job_id, status, polls)
                    return JobOutcome(
                        job_id=job_id,
                        status=status,
                        image_base64=result.image_base64,
                        remote_token=result.image_token,
                        metadata=result.metadata,
                        polls=polls,
                        elapsed_seconds=elapsed,
                    )

                if state is JobState.FAILED:
                    detail = result.error or (result.metadata or {}).get("error")
                    self.logger.warning("Job %s ended with status %s", job_id, status)
                    raise JobFailedError(job_id, status, str(detail) if detail else None)

                self.logger.debug("Job %s still %s", job_id, status or "pending")

            remaining = deadline - self.clock()
            if remaining <= 0:
                raise self._timed_out(job_id, options, last_status)

            await self.sleep(min(options.poll_interval_seconds, remaining))

    def _timed_out(self, job_id: str, options: PollOptions, last_status: str | None) -> OperationTimeoutError:
        self.logger.warning(
            "Job %s timed out after %g seconds (last status: %s)",
            job_id,
            options.timeout_seconds,
            last_status or "unknown",
        )
        return OperationTimeoutError.for_job(job_id, options.timeout_seconds, last_status)


async def wait_for_job_result(
    client: Any,
    job_id: str,
    options: PollOptions | None = None,
    **poller_kwargs: Any,
) -> JobOutcome:
    """Convenience wrapper around `JobPoller(client, ...).wait(job_id, options)`."""
    return await JobPoller(client, **poller_kwargs).wait(job_id, options)
