# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Transport-independent retry policy for remote service calls.

Only 429, 5xx and transport timeouts are retried (surfaced by the clients as
TransientServiceError). Backoff doubles per attempt; a server-provided
Retry-After overrides it. Anything else propagates on the first failure.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TypeVar

import httpx

from .errors import RateLimitError, ServiceError, TransientServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff."""

    max_retries: int = 3
    base_delay_s: float = 0.75
    max_delay_s: float = 30.0
    default_retry_after_s: float = 2.0  # 429 without a Retry-After header

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay_s < 0 or self.max_delay_s < 0:
            raise ValueError("delays must be >= 0")


def is_retryable_status(status: int | None) -> bool:
    return status is not None and (status == 429 or 500 <= status <= 599)


def backoff_delay(policy: RetryPolicy, attempt: int, retry_after: float | None = None) -> float:
    """Delay before retry number ``attempt + 1`` (attempt is 0-based)."""
    if retry_after is not None:
        return max(0.0, min(retry_after, policy.max_delay_s))
    return min(policy.base_delay_s * (2**attempt), policy.max_delay_s)


def parse_retry_after(value: str | None) -> float | None:
    """Retry-After as seconds: delta-seconds or HTTP-date. None when unparsable."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


def error_for_response(response: httpx.Response, service: str, policy: RetryPolicy) -> ServiceError | None:
    """Map a non-success response onto the service error hierarchy."""
    status = response.status_code
    if status < 400:
        return None
    detail = response.text[:300]
    if status == 429:
        retry_after = parse_retry_after(response.headers.get("retry-after"))
        return RateLimitError(
            f"{service} rate limited (429)",
            retry_after=retry_after if retry_after is not None else policy.default_retry_after_s,
        )
    if is_retryable_status(status):
        return TransientServiceError(f"{service} returned {status}: {detail}", status=status)
    return ServiceError(f"{service} returned {status}: {detail}", status=status)


async def retry_async(
    call: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str = "request",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``call`` until it succeeds, retrying TransientServiceError only."""
    attempt = 0
    while True:
        try:
            return await call()
        except TransientServiceError as exc:
            if attempt >= policy.max_retries:
                logger.error("%s failed after %d attempt(s): %s", label, attempt + 1, exc)
                raise
            delay = backoff_delay(policy, attempt, getattr(exc, "retry_after", None))
            logger.warning("%s transient failure (%s); retry %d/%d in %.2fs", label, exc, attempt + 1, policy.max_retries, delay)
            await sleep(delay)
            attempt += 1
