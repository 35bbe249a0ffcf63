# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page Passport exception hierarchy.

All errors inherit from PassportError, allowing callers to catch the base
class for any failure or specific subclasses for targeted handling.
Extraction degradation (slow loads, missing landmarks) is never raised;
it is logged and recorded in diagnostics.
"""

from __future__ import annotations


class PassportError(Exception):
    """Base exception for all Page Passport errors."""


class BrowserError(PassportError):
    """Browser session launch or interaction failure."""


class ExtractionError(PassportError):
    """The page context returned nothing usable at all (not a mere degradation)."""


class StructuralInputError(PassportError):
    """A required upstream artifact or referenced id is missing or malformed."""

    def __init__(self, message: str, *, path: str = "") -> None:
        super().__init__(f"{message} (at {path})" if path else message)
        self.path = path


class ZeroOutputError(PassportError):
    """A stage produced nothing (no sections, empty plan)."""


class RunCancelledError(PassportError):
    """The caller cancelled the run through its CancellationToken."""


class ServiceError(PassportError):
    """Remote service call failed with a non-retryable outcome."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TransientServiceError(ServiceError):
    """Retryable failure (5xx, network timeout); raised after retries are exhausted."""


class RateLimitError(TransientServiceError):
    """HTTP 429 from a remote service."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = 429,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status=status)
        self.retry_after = retry_after
