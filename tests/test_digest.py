# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for digest capture validation and the extraction call."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from pagepassport import BBox
from pagepassport.config import ScanConfig
from pagepassport.digest import extract_digest, parse_capture
from pagepassport.errors import BrowserError, ExtractionError
from pagepassport.schemas import MAX_TEXT_CHARS, RawNode
from tests._factories import header_hero_footer_capture, raw_candidate, raw_capture, raw_node


class TestParseCapture:
    def test_well_formed(self):
        capture = parse_capture(header_hero_footer_capture())
        assert len(capture.nodes) == 11
        assert [c.dom_path for c in capture.candidates] == [
            "html>body>main>section.hero",
            "html>body>header.site-header",
            "html>body>footer",
        ]
        assert capture.candidates[1].landmark
        assert capture.viewport == {"width": 1440, "height": 900, "deviceScaleFactor": 1.0}
        assert capture.page_info == {"title": "Meet the Widget", "price": "$49", "descriptionHtml": None}
        assert capture.page_height == 1080
        assert capture.warnings == []

    def test_malformed_entries_dropped_and_counted(self):
        raw = raw_capture(
            [
                raw_node("p", 0, 0, 100, 20, text="ok"),
                {"tag": "p", "x": 0, "y": 0, "w": -5, "h": 20},
                {"x": 0, "y": 0, "w": 5, "h": 5},
                "not even a dict",
            ],
            [raw_candidate("section", "a", 0, 0, 1440, 400), {"tag": "section"}],
        )
        capture = parse_capture(raw)
        assert len(capture.nodes) == 1
        assert (capture.dropped_nodes, capture.dropped_candidates) == (3, 1)
        assert capture.warnings == [
            "dropped 3 malformed digest node(s)",
            "dropped 1 malformed section candidate(s)",
        ]

    def test_truncation_warning(self):
        capture = parse_capture(raw_capture([raw_node("p", 0, 0, 10, 10)], [], truncated=True))
        assert capture.truncated
        assert capture.warnings == ["digest truncated at 1 nodes"]

    def test_title_falls_back_to_document(self):
        raw = raw_capture([], [], pageInfo={"title": None})
        assert parse_capture(raw).page_info["title"] == "Widget"

    @pytest.mark.parametrize("raw", [None, [], "oops", 42])
    def test_non_object_rejected(self, raw):
        with pytest.raises(ExtractionError, match="expected object"):
            parse_capture(raw)

    def test_invalid_envelope(self):
        raw = raw_capture([], [], viewport={"width": 0, "height": 900})
        with pytest.raises(ExtractionError, match="envelope invalid"):
            parse_capture(raw)

    def test_missing_sections_are_defaults(self):
        capture = parse_capture({})
        assert capture.nodes == []
        assert capture.candidates == []
        assert capture.viewport["width"] == 1440


class TestRawNode:
    def test_normalisation(self):
        node = RawNode.model_validate(
            {
                "tag": "IMG",
                "x": 10.6,
                "y": 20.4,
                "w": 99.5,
                "h": 50,
                "domPath": "html>body>img",
                "text": "x" * 900,
                "style": {"display": "flex", "zIndex": "9", "color": ""},
                "classHint": None,
            }
        ).to_node()
        assert node.tag == "img"
        assert node.bbox == BBox(11, 20, 100, 50)
        assert len(node.text) == MAX_TEXT_CHARS
        assert node.style == {"display": "flex"}
        assert node.class_hint == ""

    def test_svg_markup_kept(self):
        node = RawNode.model_validate(raw_node("svg", 0, 0, 24, 24, svg="<svg><path/></svg>")).to_node()
        assert node.svg_markup == "<svg><path/></svg>"


class TestExtractDigest:
    @pytest.mark.asyncio
    async def test_passes_limits_to_script(self):
        page = MagicMock()
        page.evaluate = AsyncMock(return_value=header_hero_footer_capture())
        capture = await extract_digest(page, ScanConfig(max_digest_nodes=100))
        assert len(capture.candidates) == 3
        _script, args = page.evaluate.await_args.args
        assert args == {"maxNodes": 100, "minSectionHeight": 160, "minWidthRatio": 0.55}

    @pytest.mark.asyncio
    async def test_closed_page_is_browser_error(self):
        page = MagicMock()
        page.evaluate = AsyncMock(side_effect=Exception("Target page, context or browser has been closed"))
        with pytest.raises(BrowserError):
            await extract_digest(page)

    @pytest.mark.asyncio
    async def test_script_error_is_extraction_error(self):
        page = MagicMock()
        page.evaluate = AsyncMock(side_effect=Exception("ReferenceError: foo is not defined"))
        with pytest.raises(ExtractionError, match="evaluation failed"):
            await extract_digest(page)

    @pytest.mark.asyncio
    async def test_null_result_is_extraction_error(self):
        page = MagicMock()
        page.evaluate = AsyncMock(return_value=None)
        with pytest.raises(ExtractionError):
            await extract_digest(page)
