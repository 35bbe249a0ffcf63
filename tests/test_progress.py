# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

from __future__ import annotations

from pagepassport._progress import print_step, status_spinner


class TestNonInteractive:
    def test_spinner_is_silent_when_piped(self, capsys):
        ran = []
        with status_spinner("Scanning..."):
            ran.append(True)
        assert ran == [True]
        assert capsys.readouterr().err == ""

    def test_print_step_is_silent_when_piped(self, capsys):
        print_step("warning: slow page")
        assert capsys.readouterr().err == ""
