# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Scan stage timer for run summaries and failure diagnostics.

Lives outside the stages themselves so it survives an exception or a
cancellation and can still report which stage was running.
"""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass(slots=True)
class StageRecord:
    name: str
    start_ns: int
    end_ns: int = 0
    ok: bool = True


_STAGE_HINTS = {
    "navigation": "Page may be slow to load or hold long-polling connections; the scan proceeds best-effort.",
    "scroll": "Lazy-load scrolling stalled. Try a smaller --max-scrolls.",
    "digest": "DOM is very large or the page blocked script evaluation.",
    "segment": "No usable section candidates; check for cookie walls or redirects.",
    "classify": "Classification failed on a malformed section feature vector.",
    "assets": "Asset registration failed; an asset reference may be malformed.",
    "fingerprint": "Element screenshots are stalling; fingerprints are optional.",
    "plan": "Plan compilation failed; the passport may be incomplete.",
}


class PipelineTimer:
    """Track scan stage transitions for latency reporting."""

    __slots__ = ("_stages", "_current", "_start_ns")

    def __init__(self) -> None:
        self._stages: list[StageRecord] = []
        self._current: StageRecord | None = None
        self._start_ns: int = time.monotonic_ns()

    def stage(self, name: str) -> None:
        """End previous stage + start new stage."""
        now = time.monotonic_ns()
        if self._current is not None:
            self._current.end_ns = now
            self._stages.append(self._current)
        self._current = StageRecord(name=name, start_ns=now)

    def finalize(self, *, ok: bool = True) -> None:
        """End current stage, marking it failed when ``ok`` is False."""
        if self._current is not None:
            self._current.end_ns = time.monotonic_ns()
            self._current.ok = ok
            self._stages.append(self._current)
            self._current = None

    @property
    def current_stage(self) -> str | None:
        return self._current.name if self._current else None

    @property
    def failed_stage(self) -> str | None:
        return next((s.name for s in self._stages if not s.ok), None)

    def elapsed_per_stage(self) -> dict[str, float]:
        """Return {stage_name: elapsed_ms} for all stages (including current)."""
        now = time.monotonic_ns()
        result: dict[str, float] = {}
        for s in self._stages:
            result[s.name] = round((s.end_ns - s.start_ns) / 1e6, 1)
        if self._current is not None:
            result[self._current.name] = round((now - self._current.start_ns) / 1e6, 1)
        return result

    def total_ms(self) -> float:
        return round((time.monotonic_ns() - self._start_ns) / 1e6, 1)

    def failure_report(self) -> dict:
        """Structured diagnostic naming the stage that failed."""
        stage = self.failed_stage or self.current_stage or "unknown"
        return {
            "failed_stage": stage,
            "completed_stages": [s.name for s in self._stages if s.ok],
            "stage_ms": self.elapsed_per_stage(),
            "total_ms": self.total_ms(),
            "hint": self.hint_for_stage(stage),
        }

    @staticmethod
    def hint_for_stage(stage: str) -> str:
        return _STAGE_HINTS.get(stage, f"Failed during '{stage}' stage.")
