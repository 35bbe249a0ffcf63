# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for pagepassport.logging_config: structlog + stdlib bridge and run log files."""

from __future__ import annotations

import json
import logging
import sys

import pytest
import structlog

from pagepassport.logging_config import attach_run_log, bind_run, configure, detach_run_log


@pytest.fixture(autouse=True)
def _reset_logging():
    """Ensure clean logging state before/after each test."""
    root = logging.getLogger()
    old_handlers = root.handlers[:]
    old_level = root.level
    yield
    detach_run_log()
    root.handlers = old_handlers
    root.setLevel(old_level)
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


class TestRenderers:
    def test_console_mode(self, capsys):
        configure(json_output=False)
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.handlers[0].stream is sys.stderr

        logging.getLogger("test.console").info("hello world")
        err = capsys.readouterr().err
        assert "hello world" in err
        assert not err.strip().startswith("{")

    def test_json_mode(self, capsys):
        configure(json_output=True)
        logging.getLogger("pagepassport.segmenter").info("json test")
        parsed = json.loads(capsys.readouterr().err.strip())
        assert parsed["event"] == "json test"
        assert parsed["logger"] == "pagepassport.segmenter"
        assert parsed["level"] == "info"
        assert "timestamp" in parsed

    def test_no_handler_stacking(self):
        configure(json_output=False)
        configure(json_output=True)
        configure(json_output=False)
        assert len(logging.getLogger().handlers) == 1

    def test_noisy_loggers_quietened(self):
        configure()
        assert logging.getLogger("httpx").level == logging.WARNING


class TestLogLevel:
    def test_default_level_is_info(self):
        configure()
        assert logging.getLogger().level == logging.INFO

    def test_custom_level(self):
        configure(level="debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_invalid_level_falls_back_to_info(self):
        configure(level="NONEXISTENT")
        assert logging.getLogger().level == logging.INFO


class TestRunContext:
    def test_bound_run_appears_in_output(self, capsys):
        configure(json_output=True)
        bind_run("abc123", "https://shop.example.com/p")
        structlog.get_logger("test.ctx").info("ctx test")
        parsed = json.loads(capsys.readouterr().err.strip())
        assert parsed["run_id"] == "abc123"
        assert parsed["url"] == "https://shop.example.com/p"

    def test_rebinding_clears_previous_run(self, capsys):
        configure(json_output=True)
        structlog.contextvars.bind_contextvars(stale="yes")
        bind_run("r2", "https://b.example.com")
        structlog.get_logger("test.ctx").info("second")
        parsed = json.loads(capsys.readouterr().err.strip())
        assert "stale" not in parsed


class TestRunLogFile:
    def test_events_mirrored_as_json_lines(self, tmp_path):
        configure(json_output=False)
        path = attach_run_log(tmp_path / "run")
        logging.getLogger("pagepassport.pipeline").warning("stage %s slow", "digest")
        detach_run_log()

        lines = path.read_text(encoding="utf-8").splitlines()
        assert path.name == "run.log.jsonl"
        assert json.loads(lines[-1])["event"] == "stage digest slow"

    def test_attach_replaces_previous_file_handler(self, tmp_path):
        configure()
        attach_run_log(tmp_path / "a")
        attach_run_log(tmp_path / "b")
        names = [h.get_name() for h in logging.getLogger().handlers]
        assert names.count("pagepassport.run_file") == 1

    def test_detach_without_attach_is_noop(self):
        configure()
        detach_run_log()
        assert len(logging.getLogger().handlers) == 1
