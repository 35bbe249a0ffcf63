# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for PipelineTimer."""

from __future__ import annotations

from pagepassport.pipeline_timer import PipelineTimer


class TestPipelineTimer:
    def test_stage_tracking(self):
        timer = PipelineTimer()
        timer.stage("navigation")
        timer.stage("scroll")
        timer.stage("digest")
        timer.finalize()

        stages = timer.elapsed_per_stage()
        assert list(stages.keys()) == ["navigation", "scroll", "digest"]
        assert all(isinstance(v, float) for v in stages.values())

    def test_current_stage(self):
        timer = PipelineTimer()
        assert timer.current_stage is None

        timer.stage("navigation")
        assert timer.current_stage == "navigation"

        timer.finalize()
        assert timer.current_stage is None

    def test_failure_report_names_failed_stage(self):
        timer = PipelineTimer()
        timer.stage("navigation")
        timer.stage("digest")
        timer.finalize(ok=False)

        report = timer.failure_report()
        assert report["failed_stage"] == "digest"
        assert report["completed_stages"] == ["navigation"]
        assert set(report["stage_ms"]) == {"navigation", "digest"}
        assert isinstance(report["total_ms"], float)
        assert "script evaluation" in report["hint"]

    def test_failure_report_while_running(self):
        timer = PipelineTimer()
        timer.stage("fingerprint")
        report = timer.failure_report()
        assert report["failed_stage"] == "fingerprint"
        assert report["completed_stages"] == []

    def test_failure_report_no_stages(self):
        report = PipelineTimer().failure_report()
        assert report["failed_stage"] == "unknown"
        assert report["completed_stages"] == []

    def test_hint_for_known_stages(self):
        assert "slow to load" in PipelineTimer.hint_for_stage("navigation")
        assert "optional" in PipelineTimer.hint_for_stage("fingerprint")

    def test_hint_for_unknown_stage(self):
        assert "custom_stage" in PipelineTimer.hint_for_stage("custom_stage")

    def test_elapsed_includes_current_stage(self):
        timer = PipelineTimer()
        timer.stage("running")
        stages = timer.elapsed_per_stage()
        assert stages["running"] >= 0

    def test_finalize_idempotent(self):
        timer = PipelineTimer()
        timer.stage("a")
        timer.finalize()
        timer.finalize()
        assert len(timer.elapsed_per_stage()) == 1
        assert timer.failed_stage is None
