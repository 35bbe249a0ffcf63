# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Scan orchestration: one URL -> passport (+ plan) -> run directory.

Sequential single-page run:
    navigation -> scroll -> digest -> segment -> classify -> assets
    -> fingerprint -> plan

``build_passport`` covers everything between digest and fingerprint without
touching the browser, so it can be driven from a recorded capture.
``run_scan`` owns the browser session and the run directory; on failure it
persists ``passport.partial.json`` and ``run_summary.json`` before re-raising.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from . import PASSPORT_VERSION, BBox, Passport, Section, SectionPolicy, SectionType
from .assets import AssetRegistry, stable_section_id
from .browser_session import BrowserConfig, BrowserSession, NavigationResult, create_session
from .cancellation import CancellationToken
from .config import ScanConfig
from .digest import DigestCapture, extract_digest
from .errors import ZeroOutputError
from .fingerprint import capture_fingerprints
from .logging_config import attach_run_log, bind_run, detach_run_log
from .pipeline_timer import PipelineTimer
from .plan_compiler import Plan, compile_plan
from .section_classifier import MAX_CONFIDENCE, classify_section
from .segmenter import SegmentationReport, segment
from .serializer import passport_to_dict, plan_to_dict

logger = logging.getLogger(__name__)

_EXCLUDED_TYPES = {
    SectionType.HEADER: "site header is provided by the target theme",
    SectionType.FOOTER: "site footer is provided by the target theme",
}

SessionFactory = Callable[[BrowserConfig | None], AbstractAsyncContextManager[BrowserSession]]


def utc_now() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON to a sibling temp file, then rename over ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp.replace(path)


def _enter(timer: PipelineTimer, name: str, cancel: CancellationToken) -> None:
    cancel.raise_if_cancelled(name)
    timer.stage(name)
    logger.info("Stage %s started", name)


# ---------------------------------------------------------------------------
# Passport assembly
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ScanState:
    """Whatever a scan produced so far; survives a failure for partial output."""

    url: str
    scanned_at: str
    navigation: NavigationResult | None = None
    capture: DigestCapture | None = None
    passport: Passport | None = None
    warnings: list[str] = field(default_factory=list)


def build_passport(
    url: str,
    capture: DigestCapture,
    *,
    scanned_at: str,
    config: ScanConfig | None = None,
    cancel: CancellationToken | None = None,
    timer: PipelineTimer | None = None,
    navigation: NavigationResult | None = None,
) -> tuple[Passport, AssetRegistry]:
    """Segment, classify and register assets for one validated capture."""
    config = config or ScanConfig()
    cancel = cancel or CancellationToken()
    timer = timer or PipelineTimer()

    _enter(timer, "segment", cancel)
    report = SegmentationReport()
    segments = segment(url, capture.candidates, capture.nodes, capture.viewport, config, cancel, report)

    _enter(timer, "classify", cancel)
    sections: list[Section] = []
    for seg in segments:
        cancel.raise_if_cancelled("classify")
        result = classify_section(seg.features)
        reason = _EXCLUDED_TYPES.get(result.type)
        sections.append(
            Section(
                id=seg.id,
                order=seg.order,
                type=result.type,
                confidence=result.confidence,
                tag=seg.tag,
                dom_path=seg.dom_path,
                bbox=seg.bbox,
                policy=SectionPolicy(include_in_clone=reason is None, reason=reason),
                heading=seg.heading,
                text=seg.text,
                text_sample=seg.text_sample,
                cta=seg.cta,
                items=list(seg.items),
                features=seg.features,
                signals=result.signals,
            )
        )
        logger.debug("Section %s -> %s (%.2f)", seg.id, result.type, result.confidence)

    _enter(timer, "assets", cancel)
    registry = AssetRegistry(base_url=capture.doc.get("url") or url)
    for section, seg in zip(sections, segments, strict=True):
        cancel.raise_if_cancelled("assets")
        registry.register_section(section, seg.nodes)

    page_width = int(capture.viewport.get("width", 0))
    root_box = BBox(0, 0, page_width, capture.page_height)
    root = Section(
        id=stable_section_id(url, "body", root_box),
        order=0,
        type=SectionType.PAGE,
        confidence=MAX_CONFIDENCE,
        tag="body",
        dom_path="body",
        bbox=root_box,
        policy=SectionPolicy(include_in_clone=False, reason="page root"),
        heading=str(capture.page_info.get("title") or ""),
    )

    warnings = [*(navigation.warnings if navigation else []), *capture.warnings, *report.warnings]
    zero = not sections
    if zero:
        warnings.append("no sections detected")
        logger.warning("Zero sections detected for %s", url)

    diagnostics: dict[str, Any] = {
        "navigation": {
            "strategy": navigation.strategy if navigation else None,
            "httpStatus": navigation.http_status if navigation else None,
        },
        "digest": {
            "nodes": len(capture.nodes),
            "candidates": len(capture.candidates),
            "droppedNodes": capture.dropped_nodes,
            "droppedCandidates": capture.dropped_candidates,
            "truncated": capture.truncated,
        },
        "segmentation": report.to_dict(),
        "sections": len(sections),
        "includedSections": sum(1 for s in sections if s.policy.include_in_clone),
        "assets": len(registry),
        "usages": len(registry.usages),
        "dataUriSkipped": registry.data_uri_skipped,
        "warnings": warnings,
        "zeroOutput": zero,
    }

    passport = Passport(
        url=url,
        scanned_at=scanned_at,
        viewport=dict(capture.viewport),
        root=root,
        sections=sections,
        assets=registry.assets,
        usages=registry.usages,
        design_tokens=capture.design_tokens,
        page_info=capture.page_info,
        diagnostics=diagnostics,
    )
    return passport, registry


async def scan_page(
    session: BrowserSession,
    url: str,
    *,
    config: ScanConfig | None = None,
    cancel: CancellationToken | None = None,
    timer: PipelineTimer | None = None,
    state: ScanState | None = None,
    screenshot_path: Path | None = None,
) -> Passport:
    """Drive a started session through a full scan of ``url``."""
    config = config or ScanConfig()
    cancel = cancel or CancellationToken()
    timer = timer or PipelineTimer()
    state = state or ScanState(url=url, scanned_at=utc_now())

    _enter(timer, "navigation", cancel)
    state.navigation = await session.navigate(url)

    _enter(timer, "scroll", cancel)
    moved = await session.auto_scroll(
        max_scrolls=config.max_scrolls,
        min_step=config.min_scroll_step,
        pause_ms=config.scroll_pause_ms,
        cancel=cancel,
        warnings=state.navigation.warnings,
    )
    logger.info("Auto-scroll advanced %d step(s)", moved)
    if screenshot_path is not None:
        screenshot_path.parent.mkdir(parents=True, exist_ok=True)
        await session.full_page_screenshot(screenshot_path)

    _enter(timer, "digest", cancel)
    state.capture = await extract_digest(session.page, config)

    passport, registry = build_passport(
        url,
        state.capture,
        scanned_at=state.scanned_at,
        config=config,
        cancel=cancel,
        timer=timer,
        navigation=state.navigation,
    )
    state.passport = passport

    _enter(timer, "fingerprint", cancel)
    page_size = await session.page_size()
    stats = await capture_fingerprints(session, passport.sections, registry, page_size, config, cancel)
    passport.diagnostics["fingerprints"] = stats.to_dict()
    return passport


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class RunResult:
    ok: bool
    passport: Passport
    plan: Plan
    summary: dict
    output_dir: Path | None = None

    def ensure_output(self) -> RunResult:
        """Raise ZeroOutputError when the scan produced no sections or an empty plan."""
        if self.passport.diagnostics.get("zeroOutput") or not self.passport.sections:
            raise ZeroOutputError(f"No sections extracted from {self.passport.url}")
        if self.plan.diagnostics.get("zeroOutput") or not self.plan.sections:
            raise ZeroOutputError(f"No sections planned for {self.passport.url}; every section was excluded")
        return self


def _partial_passport(state: ScanState, failure: dict) -> dict:
    if state.passport is not None:
        data = passport_to_dict(state.passport)
    else:
        data = {
            "version": PASSPORT_VERSION,
            "url": state.url,
            "scannedAt": state.scanned_at,
            "sectionTree": {"root": None, "children": []},
            "assets": {"items": {}, "usages": []},
            "diagnostics": {},
        }
    data["diagnostics"] = {**data.get("diagnostics", {}), "partial": True, "failure": failure}
    return data


def _summary(state: ScanState, run_id: str, started_at: str, ok: bool, timer: PipelineTimer, errors: list[str]) -> dict:
    passport = state.passport
    return {
        "runId": run_id,
        "url": state.url,
        "startedAt": started_at,
        "endedAt": utc_now(),
        "ok": ok,
        "stageMs": timer.elapsed_per_stage(),
        "totalMs": timer.total_ms(),
        "sections": len(passport.sections) if passport else 0,
        "assets": len(passport.assets) if passport else 0,
        "warnings": passport.diagnostics.get("warnings", []) if passport else [],
        "errors": errors,
    }


async def run_scan(
    url: str,
    *,
    output_dir: str | Path | None = None,
    scan_config: ScanConfig | None = None,
    browser_config: BrowserConfig | None = None,
    cancel: CancellationToken | None = None,
    session_factory: SessionFactory = create_session,
) -> RunResult:
    """Scan ``url``, compile the plan and (optionally) persist the run directory."""
    run_id = uuid.uuid4().hex[:12]
    out = Path(output_dir) if output_dir is not None else None
    cancel = cancel or CancellationToken()
    timer = PipelineTimer()
    started_at = utc_now()
    state = ScanState(url=url, scanned_at=started_at)

    bind_run(run_id, url)
    if out is not None:
        attach_run_log(out)
    logger.info("Scan started")

    try:
        try:
            async with session_factory(browser_config) as session:
                passport = await scan_page(
                    session,
                    url,
                    config=scan_config,
                    cancel=cancel,
                    timer=timer,
                    state=state,
                    screenshot_path=out / "screenshots" / "full.png" if out is not None else None,
                )
            _enter(timer, "plan", cancel)
            plan = compile_plan(passport)
            timer.finalize()
        except Exception as exc:
            timer.finalize(ok=False)
            failure = timer.failure_report()
            failure["error"] = f"{type(exc).__name__}: {exc}"
            logger.error("Scan failed in stage %s: %s", failure["failed_stage"], exc)
            if out is not None:
                write_json_atomic(out / "passport.partial.json", _partial_passport(state, failure))
                write_json_atomic(
                    out / "run_summary.json",
                    {**_summary(state, run_id, started_at, False, timer, [failure["error"]]), "failure": failure},
                )
            raise

        ok = not passport.diagnostics.get("zeroOutput", False) and not plan.diagnostics.get("zeroOutput", False)
        if not ok:
            logger.warning("Scan produced no plannable sections; reporting the run as failed")
        summary = _summary(state, run_id, started_at, ok, timer, [])
        if out is not None:
            write_json_atomic(out / "passport.json", passport_to_dict(passport))
            write_json_atomic(out / "plan.json", plan_to_dict(plan))
            write_json_atomic(out / "run_summary.json", summary)
        logger.info(
            "Scan finished: %d sections (%d planned), %d assets in %.0fms",
            len(passport.sections),
            len(plan.sections),
            len(passport.assets),
            timer.total_ms(),
        )
        return RunResult(ok=ok, passport=passport, plan=plan, summary=summary, output_dir=out)
    finally:
        if out is not None:
            detach_run_log()
