"""Ordered fallback over alternative upstream candidates.

Both the image submitter (model groups) and the chat relay (model names) use
``first_success``: candidates are attempted in order, soft failures advance to
the next candidate and anything else aborts the whole attempt.
"""

import logging
from typing import Awaitable, Callable, Iterable, List, Tuple, TypeVar

C = TypeVar("C")
R = TypeVar("R")

logger = logging.getLogger(__name__)


class FallbackExhausted(Exception):
    """Every candidate soft-failed, or there were none to try."""

    def __init__(self, failures: List[Tuple[object, BaseException]]):
        self.failures = failures
        if failures:
            last = failures[-1][1]
            message = f"All {len(failures)} candidates failed; last error: {last}"
        else:
            message = "No candidates to try"
        super().__init__(message)


async def first_success(
    candidates: Iterable[C],
    attempt: Callable[[C], Awaitable[R]],
    is_soft_failure: Callable[[BaseException], bool],
) -> Tuple[C, R]:
    """Return ``(candidate, result)`` for the first candidate that succeeds."""
    failures: List[Tuple[object, BaseException]] = []
    for candidate in candidates:
        try:
            result = await attempt(candidate)
        except Exception as exc:
            if not is_soft_failure(exc):
                raise
            logger.info("Candidate %r soft-failed (%s), trying next", candidate, exc)
            failures.append((candidate, exc))
            continue
        return candidate, result
    raise FallbackExhausted(failures)
