# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""End-to-end pipeline tests over recorded captures and a fake session.

``build_passport`` runs on a parsed capture with no browser at all;
``run_scan`` runs against a fake session that serves the same capture.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest

from pagepassport import AssetRole, CallToAction, SectionType
from pagepassport.assets import stable_section_id
from pagepassport.browser_session import NavigationResult
from pagepassport.cancellation import CancellationToken
from pagepassport.config import ScanConfig
from pagepassport.digest import parse_capture
from pagepassport.errors import BrowserError, ExtractionError, RunCancelledError, ZeroOutputError
from pagepassport.pipeline import build_passport, run_scan, utc_now, write_json_atomic
from pagepassport.pipeline_timer import PipelineTimer
from pagepassport.plan_compiler import Archetype, compile_plan
from pagepassport.serializer import passport_to_dict, validate_passport
from tests._factories import PAGE_URL, header_hero_footer_capture, png_bytes, raw_capture

SCANNED_AT = "2026-03-04T05:06:07.089Z"

# ── Helpers ──────────────────────────────────────────────────────────


def _build(raw=None, **kw):
    capture = parse_capture(raw if raw is not None else header_hero_footer_capture())
    return build_passport(PAGE_URL, capture, scanned_at=SCANNED_AT, **kw)


def _fake_session(capture=None) -> MagicMock:
    session = MagicMock()
    session.navigate = AsyncMock(return_value=NavigationResult(strategy="networkidle", http_status=200))
    session.auto_scroll = AsyncMock(return_value=3)

    async def full_page_screenshot(path=None):
        data = png_bytes(1440, 1080)
        if path is not None:
            path.write_bytes(data)
        return data

    session.full_page_screenshot = AsyncMock(side_effect=full_page_screenshot)
    session.page = MagicMock()
    session.page.evaluate = AsyncMock(return_value=capture if capture is not None else header_hero_footer_capture())
    session.page_size = AsyncMock(return_value=(1440, 1080))
    session.clip_screenshot = AsyncMock(return_value=png_bytes())
    return session


def _factory(session):
    @asynccontextmanager
    async def factory(config):
        yield session

    return factory


def _read(path):
    return json.loads(path.read_text(encoding="utf-8"))


# ── build_passport ─────────────────────────────────────────────────


class TestBuildPassport:
    def test_header_hero_footer(self):
        passport, _registry = _build()
        assert [s.type for s in passport.sections] == [
            SectionType.HEADER,
            SectionType.HERO_BANNER,
            SectionType.FOOTER,
        ]
        assert [s.order for s in passport.sections] == [1, 2, 3]
        hero = passport.sections[1]
        assert hero.confidence == 0.99
        assert hero.heading == "Meet the Widget"
        assert hero.text == "The only widget you will ever need."
        assert [s.policy.include_in_clone for s in passport.sections] == [False, True, False]
        assert passport.root.type == SectionType.PAGE
        assert passport.root.bbox.h == 1080

    def test_sections_never_overlap(self):
        passport, _ = _build()
        for prev, cur in zip(passport.sections, passport.sections[1:]):
            assert prev.bbox.bottom <= cur.bbox.y

    def test_ids_are_stable(self):
        first, _ = _build()
        second, _ = _build()
        assert [s.id for s in first.sections] == [s.id for s in second.sections]
        assert sorted(first.assets) == sorted(second.assets)
        hero = first.sections[1]
        assert hero.id == stable_section_id(PAGE_URL, "html>body>main>section.hero", hero.bbox)

    def test_asset_roles(self):
        passport, registry = _build()
        roles = {passport.assets[u.asset_id].normalized_url: u.role for u in registry.usages}
        assert roles == {
            "https://shop.example.com/logo.png": AssetRole.LOGO,
            "https://cdn.example.com/hero.jpg": AssetRole.HERO_BG,
            "https://cdn.example.com/product.png": AssetRole.ILLUSTRATION,
        }
        assert [r.role for r in passport.sections[1].assets] == [AssetRole.HERO_BG, AssetRole.ILLUSTRATION]

    def test_diagnostics(self):
        nav = NavigationResult(strategy="partial", warnings=["navigation timed out after 60000ms; continuing"])
        passport, _ = _build(navigation=nav)
        diag = passport.diagnostics
        assert diag["navigation"] == {"strategy": "partial", "httpStatus": None}
        assert diag["sections"] == 3
        assert diag["includedSections"] == 1
        assert (diag["assets"], diag["usages"]) == (3, 3)
        assert diag["warnings"] == ["navigation timed out after 60000ms; continuing"]
        assert diag["zeroOutput"] is False
        assert diag["segmentation"]["candidatesIn"] == 3

    def test_stages_recorded(self):
        timer = PipelineTimer()
        _build(timer=timer)
        assert list(timer.elapsed_per_stage()) == ["segment", "classify", "assets"]

    def test_zero_sections(self):
        passport, _ = _build(raw_capture([], []))
        assert passport.sections == []
        assert passport.diagnostics["zeroOutput"] is True
        assert "no sections detected" in passport.diagnostics["warnings"]

    def test_cancelled(self):
        token = CancellationToken()
        token.cancel("shutdown")
        with pytest.raises(RunCancelledError, match="segment"):
            _build(cancel=token)

    def test_hero_without_cover_plans_first_image_and_cta(self):
        raw = header_hero_footer_capture()
        raw["nodes"] = [{k: v for k, v in n.items() if k != "bgUrl"} for n in raw["nodes"]]
        passport, _ = _build(raw)
        hero = passport.sections[1]
        assert hero.type == SectionType.HERO_BANNER
        assert hero.cta == CallToAction(text="Buy now", href="/cart")

        intent = compile_plan(passport).sections[0].intent
        product = next(a for a in passport.assets.values() if a.normalized_url.endswith("product.png"))
        assert intent.hero_bg_asset_id == product.id
        assert (intent.cta, intent.cta_href) == ("Buy now", "/cart")

    def test_serialized_passport_validates(self):
        passport, _ = _build()
        assert validate_passport(passport_to_dict(passport)) == []


# ── run_scan ───────────────────────────────────────────────────────


class TestRunScan:
    @pytest.mark.asyncio
    async def test_writes_run_directory(self, tmp_path):
        out = tmp_path / "run"
        session = _fake_session()
        result = await run_scan(PAGE_URL, output_dir=out, session_factory=_factory(session))

        assert result.ok
        assert result.ensure_output() is result
        assert [p.target_archetype for p in result.plan.sections] == [Archetype.IMAGE_BANNER]
        for name in ("passport.json", "plan.json", "run_summary.json", "run.log.jsonl", "screenshots/full.png"):
            assert (out / name).exists(), name
        assert validate_passport(_read(out / "passport.json")) == []

        summary = _read(out / "run_summary.json")
        assert summary["ok"] is True
        assert summary["sections"] == 3
        assert summary["errors"] == []
        assert list(summary["stageMs"]) == [
            "navigation",
            "scroll",
            "digest",
            "segment",
            "classify",
            "assets",
            "fingerprint",
            "plan",
        ]
        plan = _read(out / "plan.json")
        assert plan["generatedAt"] == result.passport.scanned_at

    @pytest.mark.asyncio
    async def test_fingerprints_recorded(self):
        session = _fake_session()
        result = await run_scan(PAGE_URL, session_factory=_factory(session))
        assert result.passport.diagnostics["fingerprints"] == {"sections": 3, "assets": 1, "failures": 0}
        assert all(s.fingerprint is not None for s in result.passport.sections)
        hero_bg = next(a for a in result.passport.assets.values() if a.normalized_url.endswith("hero.jpg"))
        assert hero_bg.dominant_color == "#ff0000"

    @pytest.mark.asyncio
    async def test_scroll_uses_config(self):
        session = _fake_session()
        await run_scan(PAGE_URL, scan_config=ScanConfig(max_scrolls=2), session_factory=_factory(session))
        kwargs = session.auto_scroll.await_args.kwargs
        assert kwargs["max_scrolls"] == 2
        assert kwargs["min_step"] == 350

    @pytest.mark.asyncio
    async def test_zero_output(self, tmp_path):
        session = _fake_session(raw_capture([], []))
        result = await run_scan(PAGE_URL, output_dir=tmp_path, session_factory=_factory(session))
        assert not result.ok
        assert result.plan.diagnostics["zeroOutput"] is True
        assert _read(tmp_path / "run_summary.json")["ok"] is False
        with pytest.raises(ZeroOutputError):
            result.ensure_output()

    @pytest.mark.asyncio
    async def test_all_sections_excluded_is_a_failed_run(self, tmp_path):
        raw = header_hero_footer_capture()
        raw["candidates"] = [c for c in raw["candidates"] if c["landmark"]]
        session = _fake_session(raw)
        result = await run_scan(PAGE_URL, output_dir=tmp_path, session_factory=_factory(session))

        assert [s.type for s in result.passport.sections] == [SectionType.HEADER, SectionType.FOOTER]
        assert result.plan.sections == []
        assert not result.ok
        assert _read(tmp_path / "run_summary.json")["ok"] is False
        assert _read(tmp_path / "plan.json")["diagnostics"]["zeroOutput"] is True
        with pytest.raises(ZeroOutputError, match="No sections planned"):
            result.ensure_output()

    @pytest.mark.asyncio
    async def test_digest_failure_writes_partial(self, tmp_path):
        session = _fake_session()
        session.page.evaluate = AsyncMock(side_effect=Exception("ReferenceError: x is not defined"))
        with pytest.raises(ExtractionError):
            await run_scan(PAGE_URL, output_dir=tmp_path, session_factory=_factory(session))

        partial = _read(tmp_path / "passport.partial.json")
        assert partial["diagnostics"]["partial"] is True
        assert partial["diagnostics"]["failure"]["failed_stage"] == "digest"
        assert partial["sectionTree"]["children"] == []
        summary = _read(tmp_path / "run_summary.json")
        assert summary["ok"] is False
        assert summary["failure"]["completed_stages"] == ["navigation", "scroll"]
        assert summary["errors"][0].startswith("ExtractionError")
        assert not (tmp_path / "passport.json").exists()

    @pytest.mark.asyncio
    async def test_late_failure_keeps_sections_in_partial(self, tmp_path):
        session = _fake_session()
        session.page_size = AsyncMock(side_effect=BrowserError("Browser has been closed"))
        with pytest.raises(BrowserError):
            await run_scan(PAGE_URL, output_dir=tmp_path, session_factory=_factory(session))
        partial = _read(tmp_path / "passport.partial.json")
        assert partial["diagnostics"]["failure"]["failed_stage"] == "fingerprint"
        assert len(partial["sectionTree"]["children"]) == 3

    @pytest.mark.asyncio
    async def test_cancellation_mid_run(self, tmp_path):
        token = CancellationToken()
        session = _fake_session()

        async def navigate(url):
            token.cancel("user pressed stop")
            return NavigationResult(strategy="networkidle", http_status=200)

        session.navigate = AsyncMock(side_effect=navigate)
        with pytest.raises(RunCancelledError, match="user pressed stop"):
            await run_scan(PAGE_URL, output_dir=tmp_path, cancel=token, session_factory=_factory(session))
        session.auto_scroll.assert_not_awaited()
        assert "RunCancelledError" in _read(tmp_path / "run_summary.json")["errors"][0]


class TestHelpers:
    def test_utc_now_format(self):
        stamp = utc_now()
        assert stamp.endswith("Z")
        assert len(stamp) == len("2026-01-02T03:04:05.678Z")

    def test_write_json_atomic(self, tmp_path):
        target = tmp_path / "nested" / "out.json"
        write_json_atomic(target, {"a": "é"})
        assert _read(target) == {"a": "é"}
        assert [p.name for p in target.parent.iterdir()] == ["out.json"]
