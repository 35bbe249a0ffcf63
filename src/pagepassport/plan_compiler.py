# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Plan compiler: passport -> renderer-agnostic build plan.

Pure and deterministic. The plan carries no wall-clock data of its own
(``generated_at`` is the passport's scan time), so compiling the same
passport twice yields byte-identical JSON.

Each included section becomes one target archetype plus an intent, a typed
description of what the builder should render. Sections the native
archetypes cannot express are routed to ``custom-markup``, whose html/css
stay empty until a markup-generation service fills them.
"""

from __future__ import annotations

import html
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

from . import PLAN_VERSION, AssetRole, Passport, Section, SectionAssetRef, SectionType
from .errors import StructuralInputError

logger = logging.getLogger(__name__)

CUSTOM_MARKUP_BELOW_CONFIDENCE = 0.45
MAX_FEATURE_ICONS = 6
MAX_SLIDES = 8
REVIEWS_TEXT_CHARS = 260
RICH_TEXT_CHARS = 400


class Archetype(StrEnum):
    IMAGE_BANNER = "image-banner"
    MULTICOLUMN = "multicolumn"
    RICH_TEXT = "rich-text"
    COLLAPSIBLE_CONTENT = "collapsible-content"
    SLIDESHOW = "slideshow"
    CUSTOM_MARKUP = "custom-markup"


ARCHETYPES: dict[SectionType, Archetype] = {
    SectionType.HERO_BANNER: Archetype.IMAGE_BANNER,
    SectionType.FEATURES_GRID: Archetype.MULTICOLUMN,
    SectionType.RICH_TEXT: Archetype.RICH_TEXT,
    SectionType.FAQ: Archetype.COLLAPSIBLE_CONTENT,
    SectionType.SLIDESHOW: Archetype.SLIDESHOW,
    SectionType.GALLERY: Archetype.SLIDESHOW,
    SectionType.REVIEWS: Archetype.RICH_TEXT,
    SectionType.UNKNOWN: Archetype.RICH_TEXT,
}


# ---------------------------------------------------------------------------
# Intents
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class HeroIntent:
    heading: str
    text: str
    cta: str | None
    hero_bg_asset_id: str | None
    cta_href: str | None = None


@dataclass(frozen=True, slots=True)
class FeatureItem:
    icon_asset_id: str
    title: str
    text: str
    order: int


@dataclass(frozen=True, slots=True)
class FeaturesIntent:
    title: str
    columns: int
    items: tuple[FeatureItem, ...]


@dataclass(frozen=True, slots=True)
class Slide:
    image_asset_id: str
    heading: str
    text: str
    order: int


@dataclass(frozen=True, slots=True)
class SlideshowIntent:
    title: str
    slides: tuple[Slide, ...]


@dataclass(frozen=True, slots=True)
class FaqItem:
    question: str
    answer_html: str


@dataclass(frozen=True, slots=True)
class FaqIntent:
    title: str
    items: tuple[FaqItem, ...] = ()


@dataclass(frozen=True, slots=True)
class RichTextIntent:
    heading: str
    html: str


@dataclass(frozen=True, slots=True)
class CustomMarkupIntent:
    """Escape valve; html/css are filled by a markup-generation service."""

    html: str = ""
    css: str = ""
    text_hints: tuple[str, ...] = ()


Intent = HeroIntent | FeaturesIntent | SlideshowIntent | FaqIntent | RichTextIntent | CustomMarkupIntent


@dataclass(frozen=True, slots=True)
class PlanSection:
    source_section_id: str
    source_type: SectionType
    confidence: float
    target_archetype: Archetype
    intent: Intent
    assets: tuple[SectionAssetRef, ...] = ()


@dataclass(slots=True)
class Plan:
    generated_at: str
    source: dict
    sections: list[PlanSection]
    design_tokens: dict = field(default_factory=dict)
    page_info: dict = field(default_factory=dict)
    diagnostics: dict = field(default_factory=dict)
    plan_version: str = PLAN_VERSION


class PlanBuilder(Protocol):
    """Turns a plan into platform-native templates (e.g. a theme uploader)."""

    async def build(self, plan: Plan, passport: Passport) -> dict[str, bool]:
        """Return ``{source_section_id: built_ok}``."""
        ...


# ---------------------------------------------------------------------------
# Intent builders
# ---------------------------------------------------------------------------


def _refs(section: Section, *roles: AssetRole) -> list[SectionAssetRef]:
    seen: set[str] = set()
    out = []
    for ref in section.assets:
        if ref.role in roles and ref.asset_id not in seen:
            seen.add(ref.asset_id)
            out.append(ref)
    return out


def _paragraph(text: str, limit: int) -> str:
    return f"<p>{html.escape(text.strip()[:limit])}</p>"


def _item_copy(section: Section, order: int) -> tuple[str, str]:
    """Title and text of the ``order``-th content item, empty when the section has fewer."""
    if order > len(section.items):
        return "", ""
    item = section.items[order - 1]
    return item.title, item.text


def build_intent(section: Section, passport: Passport) -> Intent:
    heading = section.heading.strip()
    match section.type:
        case SectionType.HERO_BANNER:
            # No cover image: fall back to the first content image.
            hero_refs = _refs(section, AssetRole.HERO_BG) or _refs(section, AssetRole.ILLUSTRATION, AssetRole.GALLERY)
            hero_bg = hero_refs[0] if hero_refs else None
            return HeroIntent(
                heading=heading or str(passport.page_info.get("title") or "").strip(),
                text=section.text.strip(),
                cta=section.cta.text if section.cta else None,
                hero_bg_asset_id=hero_bg.asset_id if hero_bg else None,
                cta_href=section.cta.href if section.cta else None,
            )
        case SectionType.FEATURES_GRID:
            icons = _refs(section, AssetRole.ICON)[:MAX_FEATURE_ICONS]
            return FeaturesIntent(
                title=heading,
                columns=min(4, max(3, len(icons) or 3)),
                items=tuple(
                    FeatureItem(ref.asset_id, *_item_copy(section, i), order=i) for i, ref in enumerate(icons, start=1)
                ),
            )
        case SectionType.SLIDESHOW | SectionType.GALLERY:
            slides = _refs(section, AssetRole.GALLERY, AssetRole.ILLUSTRATION)[:MAX_SLIDES]
            return SlideshowIntent(
                title=heading,
                slides=tuple(
                    Slide(ref.asset_id, *_item_copy(section, i), order=i) for i, ref in enumerate(slides, start=1)
                ),
            )
        case SectionType.FAQ:
            return FaqIntent(title=heading or "FAQ")
        case SectionType.REVIEWS:
            return RichTextIntent(
                heading=heading or "Reviews",
                html=_paragraph(section.text_sample or section.text, REVIEWS_TEXT_CHARS),
            )
        case SectionType.RICH_TEXT | SectionType.UNKNOWN:
            description = passport.page_info.get("descriptionHtml") or ""
            return RichTextIntent(heading=heading, html=description or _paragraph(section.text, RICH_TEXT_CHARS))
        case _:
            raise StructuralInputError(
                f"Section {section.id} of type {section.type} cannot be planned", path=f"section.{section.id}"
            )


def needs_custom_markup(section: Section) -> bool:
    if section.confidence < CUSTOM_MARKUP_BELOW_CONFIDENCE:
        return True
    return section.type == SectionType.UNKNOWN and bool(section.assets)


def _custom_markup(section: Section) -> CustomMarkupIntent:
    hints = tuple(t for t in (section.heading.strip(), section.text.strip()[:RICH_TEXT_CHARS]) if t)
    return CustomMarkupIntent(text_hints=hints)


# ---------------------------------------------------------------------------
# Compiler
# ---------------------------------------------------------------------------


def _check_assets(section: Section, passport: Passport) -> None:
    for ref in section.assets:
        if ref.asset_id not in passport.assets:
            raise StructuralInputError(
                f"Section {section.id} references missing asset {ref.asset_id}",
                path=f"sections.{section.id}.assets.{ref.asset_id}",
            )


def compile_plan(passport: Passport) -> Plan:
    """Compile a passport into a plan. No I/O; same input, same output."""
    planned: list[PlanSection] = []
    excluded: Counter[str] = Counter()

    for section in sorted(passport.sections, key=lambda s: s.order):
        if not section.policy.include_in_clone:
            excluded[section.policy.reason or "excluded"] += 1
            continue
        _check_assets(section, passport)
        if needs_custom_markup(section):
            archetype = Archetype.CUSTOM_MARKUP
            intent: Intent = _custom_markup(section)
        else:
            intent = build_intent(section, passport)
            archetype = ARCHETYPES[section.type]
        planned.append(
            PlanSection(
                source_section_id=section.id,
                source_type=section.type,
                confidence=section.confidence,
                target_archetype=archetype,
                intent=intent,
                assets=tuple(section.assets),
            )
        )

    if not planned:
        logger.warning("Plan for %s has no sections", passport.url)

    return Plan(
        generated_at=passport.scanned_at,
        source={"url": passport.url, "passportVersion": passport.version, "scannedAt": passport.scanned_at},
        sections=planned,
        design_tokens=dict(passport.design_tokens),
        page_info=dict(passport.page_info),
        diagnostics={
            "includedSections": len(planned),
            "excludedSections": sum(excluded.values()),
            "excludedReasons": dict(sorted(excluded.items())),
            "customMarkupSections": sum(1 for p in planned if p.target_archetype == Archetype.CUSTOM_MARKUP),
            "zeroOutput": not planned,
        },
    )
