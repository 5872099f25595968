# services/api/imagecraft/resilience.py

"""Bounded retry with linear backoff around one network round trip."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import httpx

from .exceptions import TransferHTTPError

LOG = logging.getLogger("imagecraft.transfer")

Operation = Callable[[], Awaitable[object]]
SuccessHook = Callable[[], Awaitable[object]]
Sleep = Callable[[float], Awaitable[None]]

DEFAULT_MAX_RETRIES = 3
DEFAULT_TIMEOUT_SEC = 30.0
BACKOFF_STEP_SEC = 2.0


def is_retryable(exc: BaseException) -> bool:
    """
    Retryable: our own timeout, transport failures, HTTP 5xx.
    Everything else (4xx, malformed bodies, programming errors) is final.
    A 429 is deliberately final too: retrying a throttled endpoint only
    extends the throttle.
    """
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return True
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, TransferHTTPError):
        return 500 <= exc.status_code <= 599
    if isinstance(exc, httpx.HTTPStatusError):
        return 500 <= exc.response.status_code <= 599
    return False


def linear_backoff(retry_count: int) -> float:
    return BACKOFF_STEP_SEC * retry_count


@dataclass
class RetryPolicy:
    max_retries: int = DEFAULT_MAX_RETRIES
    timeout: float = DEFAULT_TIMEOUT_SEC
    retryable: Callable[[BaseException], bool] = is_retryable
    backoff: Callable[[int], float] = linear_backoff
    sleep: Sleep = field(default=asyncio.sleep)


async def attempt(
    operation: Operation,
    max_retries: Optional[int] = None,
    *,
    policy: Optional[RetryPolicy] = None,
    on_success: Optional[SuccessHook] = None,
    on_retry: Optional[Callable[[int, int, BaseException], None]] = None,
) -> bool:
    """
    Run `operation` until it succeeds, fails with a non-retryable error, or
    the retry budget is spent. Returns True on success.

    `on_success` (e.g. provider delete) runs exactly once and only after a
    confirmed success; a failed transfer never triggers it. Nothing is
    raised to the caller: a False return leaves everything as it was so a
    manual retry is possible.
    """
    policy = policy or RetryPolicy()
    limit = policy.max_retries if max_retries is None else int(max_retries)
    retry_count = 0

    while True:
        try:
            await asyncio.wait_for(operation(), timeout=policy.timeout)
        except Exception as exc:
            if not policy.retryable(exc) or retry_count >= limit:
                LOG.warning(
                    "transfer failed after %s retries: %s (retryable=%s)",
                    retry_count, repr(exc), policy.retryable(exc),
                )
                return False
            retry_count += 1
            if on_retry is not None:
                on_retry(retry_count, limit, exc)
            delay = policy.backoff(retry_count)
            LOG.info("transfer retry %s/%s in %.1fs: %s", retry_count, limit, delay, repr(exc))
            await policy.sleep(delay)
            continue

        if on_success is not None:
            try:
                await on_success()
            except Exception:
                # the transfer itself completed; cleanup failure must not undo it
                LOG.exception("post-transfer hook failed")
        return True
