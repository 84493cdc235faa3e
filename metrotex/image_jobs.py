"""Asynchronous image generation: submit, poll, resolve.

A job is submitted against an ordered list of model groups, then its status
is polled until the provider reports a finished image, a fault, or the poll
budget runs out. Each job is polled by exactly one coroutine and nothing is
shared between jobs.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Optional, Tuple, Union

from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_exponential, wait_random
from tenacity.wait import wait_base

from .config import HordeConfig
from .debug import get_debug_logger
from .errors import (
    InvalidRequest,
    JobCancelled,
    JobTimeout,
    ProviderFault,
    ServiceUnavailable,
    SoftFailure,
    is_soft_failure,
)
from .fallback import FallbackExhausted, first_success

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    width: int = 512
    height: int = 512
    steps: int = 20
    sampler_name: str = "k_euler"
    cfg_scale: float = 7.0
    models: Tuple[str, ...] = ()

    def __post_init__(self):
        if not isinstance(self.prompt, str) or not self.prompt.strip():
            raise InvalidRequest("Prompt required")

    def model_groups(self, default_groups: Tuple[Tuple[str, ...], ...]) -> Tuple[Tuple[str, ...], ...]:
        """Explicit candidates replace the configured groups, one model per group."""
        if self.models:
            return tuple((m,) for m in self.models)
        return tuple(default_groups)


@dataclass(frozen=True)
class JobHandle:
    job_id: str
    models: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ResultPayload:
    image_url: str
    model_used: str


# Job statuses, re-derived on every poll

@dataclass(frozen=True)
class Pending:
    queue_position: Optional[int] = None
    wait_time: Optional[int] = None


@dataclass(frozen=True)
class Done:
    result: ResultPayload

    def __post_init__(self):
        if not self.result.image_url:
            raise ValueError("Done requires a non-empty image_url")


@dataclass(frozen=True)
class Faulted:
    reason: str = "Generation faulted"

    def __post_init__(self):
        if not self.reason:
            object.__setattr__(self, "reason", "Generation faulted")


# Terminal outcomes that only the poller produces

@dataclass(frozen=True)
class TimedOut:
    attempts: int


@dataclass(frozen=True)
class Cancelled:
    attempts: int


JobStatus = Union[Pending, Done, Faulted]
PollOutcome = Union[Done, Faulted, TimedOut, Cancelled]


class JobSubmitter:
    """Submit a request against the model-group fallback list."""

    def __init__(self, client, config: HordeConfig):
        self.client = client
        self.config = config

    async def submit(self, request: GenerationRequest) -> JobHandle:
        groups = request.model_groups(self.config.model_groups)

        async def _attempt(group):
            return await self.client.submit(request, group)

        try:
            group, job_id = await first_success(groups, _attempt, is_soft_failure)
        except FallbackExhausted as exc:
            logger.warning("No worker accepted the job across %d model groups", len(groups))
            raise ServiceUnavailable(
                "No available worker for any model group; please try again later"
            ) from exc
        logger.info("Submitted job %s using models %s", job_id, list(group))
        return JobHandle(job_id=job_id, models=tuple(group))


def poll_wait(config: HordeConfig) -> wait_base:
    """Delay between status checks.

    Fixed at ``poll_interval`` by default; with ``poll_backoff`` above 1 it
    grows geometrically up to ``max_poll_interval``. ``poll_jitter`` adds a
    random extra of up to that many seconds.
    """
    wait = wait_exponential(
        multiplier=config.poll_interval,
        exp_base=config.poll_backoff,
        max=max(config.max_poll_interval, config.poll_interval),
    )
    if config.poll_jitter:
        wait = wait + wait_random(0, config.poll_jitter)
    return wait


class _PollCancelled(Exception):
    pass


class _DeadlineReached(Exception):
    pass


def _is_pending(status) -> bool:
    return isinstance(status, Pending)


class StatusPoller:
    """Poll one job until it reaches a terminal state or exhausts its budget."""

    def __init__(self, client, config: HordeConfig):
        self.client = client
        self.config = config

    async def check(self, handle: JobHandle) -> JobStatus:
        """Issue exactly one status query.

        Transport errors and provider 5xx count as a pending tick; rate
        limiting and anything else propagate.
        """
        try:
            status = await self.client.status(handle.job_id)
        except SoftFailure as exc:
            logger.warning("Status query for job %s failed: %s", handle.job_id, exc)
            return Pending()
        if isinstance(status, Done) and not status.result.model_used:
            fallback_model = handle.models[0] if handle.models else "unknown"
            status = Done(replace(status.result, model_used=fallback_model))
        return status

    async def poll(
        self,
        handle: JobHandle,
        cancel: Optional[asyncio.Event] = None,
        deadline: Optional[float] = None,
    ) -> PollOutcome:
        loop = asyncio.get_running_loop()
        debug = get_debug_logger()
        attempts = 0

        async def _attempt() -> JobStatus:
            nonlocal attempts
            if cancel is not None and cancel.is_set():
                raise _PollCancelled()
            if deadline is not None and loop.time() >= deadline:
                raise _DeadlineReached()
            attempts += 1
            status = await self.check(handle)
            debug.debug_polling(f"job {handle.job_id} attempt {attempts}: {status}")
            return status

        async def _sleep(delay: float) -> None:
            if deadline is not None:
                delay = max(0.0, min(delay, deadline - loop.time()))
            if await _wait_or_cancel(delay, cancel):
                raise _PollCancelled()

        # No sleep follows the last allowed attempt.
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=poll_wait(self.config),
            retry=retry_if_result(_is_pending),
            sleep=_sleep,
            retry_error_callback=lambda state: TimedOut(attempts=state.attempt_number),
        )
        try:
            outcome = await retrying(_attempt)
        except _PollCancelled:
            return self._cancelled(handle, attempts)
        except _DeadlineReached:
            outcome = TimedOut(attempts=attempts)

        if isinstance(outcome, TimedOut):
            logger.warning("Job %s timed out after %d status checks", handle.job_id, outcome.attempts)
        return outcome

    @staticmethod
    def _cancelled(handle: JobHandle, attempts: int) -> Cancelled:
        logger.info("Polling for job %s cancelled after %d status checks", handle.job_id, attempts)
        return Cancelled(attempts=attempts)


async def _wait_or_cancel(delay: float, cancel: Optional[asyncio.Event]) -> bool:
    """Sleep for ``delay`` seconds; return True if cancelled meanwhile."""
    if cancel is None:
        await asyncio.sleep(delay)
        return False
    if cancel.is_set():
        return True
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True


def resolve(outcome: PollOutcome) -> ResultPayload:
    """Map a terminal poll outcome to a result or an HTTP-visible error."""
    if isinstance(outcome, Done):
        return outcome.result
    if isinstance(outcome, Faulted):
        raise ProviderFault(outcome.reason)
    if isinstance(outcome, TimedOut):
        raise JobTimeout(
            f"Image generation did not finish after {outcome.attempts} status checks; "
            "you may resubmit the request"
        )
    if isinstance(outcome, Cancelled):
        raise JobCancelled("Client closed the request before the image was ready")
    raise TypeError(f"Not a terminal outcome: {outcome!r}")

