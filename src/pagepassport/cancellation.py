# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Cooperative cancellation for scan runs.

The token is checked at loop boundaries (scroll steps, per-section work,
fingerprint captures). Cancelling never interrupts an in-flight browser call;
the run stops at the next checkpoint with RunCancelledError.
"""

from __future__ import annotations

import threading

from .errors import RunCancelledError


class CancellationToken:
    """Thread-safe one-shot cancel flag."""

    __slots__ = ("_event", "_lock", "_reason")

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason = ""

    def cancel(self, reason: str = "cancelled by caller") -> None:
        """Set the flag; the first reason recorded wins."""
        with self._lock:
            if not self._event.is_set():
                self._reason = reason
                self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def raise_if_cancelled(self, where: str = "") -> None:
        if self._event.is_set():
            suffix = f" during {where}" if where else ""
            raise RunCancelledError(f"Run cancelled{suffix}: {self._reason}")
