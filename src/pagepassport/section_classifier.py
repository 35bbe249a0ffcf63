# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Weighted-rubric section classifier.

Each rule inspects a section's feature vector and, when it fires, adds a
positive or negative weight to one or more section types. Every type is
scored; the maximum wins and ties go to the type declared first in
``TIE_BREAK_ORDER``. Header/footer landmarks short-circuit on tag identity.

The weights are tuning constants. What matters is the shape: a gallery needs
many images, reviews need repeated cards AND stars, an FAQ needs native
disclosures, and prose pulls towards rich text.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from . import SectionFeatures, SectionType

NORMALIZATION = 10
MIN_CONFIDENCE = 0.3
MAX_CONFIDENCE = 0.99

# Enum declaration order; the first listed wins a tie.
TIE_BREAK_ORDER: tuple[SectionType, ...] = (
    SectionType.HERO_BANNER,
    SectionType.FEATURES_GRID,
    SectionType.GALLERY,
    SectionType.SLIDESHOW,
    SectionType.REVIEWS,
    SectionType.FAQ,
    SectionType.RICH_TEXT,
)

_LANDMARK_TYPES = {"header": SectionType.HEADER, "footer": SectionType.FOOTER}


@dataclass(frozen=True, slots=True)
class SignalDef:
    """A single rule that contributes scores to one or more section types."""

    name: str
    scores: dict[SectionType, int]  # {section_type: weight}, positive or negative
    check: Callable[[SectionFeatures], bool]


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    """Result of section classification."""

    type: SectionType
    confidence: float  # MIN_CONFIDENCE..MAX_CONFIDENCE
    score: int  # raw weighted sum of winning type
    signals: tuple[str, ...]  # names of fired rules
    runner_up: SectionType | None  # 2nd-place type (for ambiguity detection)
    runner_up_score: int = 0


_HERO = SectionType.HERO_BANNER
_FEATURES = SectionType.FEATURES_GRID
_GALLERY = SectionType.GALLERY
_SLIDESHOW = SectionType.SLIDESHOW
_REVIEWS = SectionType.REVIEWS
_FAQ = SectionType.FAQ
_RICH = SectionType.RICH_TEXT

# fmt: off
RUBRIC: tuple[SignalDef, ...] = (
    # hero_banner
    SignalDef("hero_heading", {_HERO: 2}, lambda f: f.headings >= 1),
    SignalDef("hero_h1", {_HERO: 1}, lambda f: f.h1 >= 1),
    SignalDef("hero_cta", {_HERO: 2}, lambda f: f.buttons >= 1),
    SignalDef("hero_cover_media", {_HERO: 3}, lambda f: f.large_images >= 1 or f.background_images >= 1),
    SignalDef("hero_tall", {_HERO: 2}, lambda f: f.height >= 0.5 * f.viewport_height),
    SignalDef("hero_near_top", {_HERO: 1}, lambda f: f.top < f.viewport_height),
    SignalDef("hero_repeated_cards", {_HERO: -2}, lambda f: f.repeated_cards >= 3),
    SignalDef("hero_many_images", {_HERO: -2}, lambda f: f.images >= 6),
    # features_grid
    SignalDef("grid_repeated_cards", {_FEATURES: 4, _GALLERY: 1}, lambda f: f.repeated_cards >= 3),
    SignalDef("grid_icons", {_FEATURES: 3}, lambda f: f.small_images + f.inline_svgs >= 3),
    SignalDef("grid_headings", {_FEATURES: 2}, lambda f: f.headings >= 3),
    SignalDef("grid_paragraphs", {_FEATURES: 1}, lambda f: f.paragraphs >= 3),
    SignalDef("grid_many_images", {_FEATURES: -3}, lambda f: f.images >= 6),
    # gallery
    SignalDef("gallery_images", {_GALLERY: 4}, lambda f: f.images >= 4),
    SignalDef("gallery_many_images", {_GALLERY: 3}, lambda f: f.images >= 6),
    SignalDef("gallery_no_headings", {_GALLERY: 1}, lambda f: f.headings == 0 and f.images >= 1),
    SignalDef("gallery_prose", {_GALLERY: -2}, lambda f: f.paragraphs >= 3),
    # slideshow
    SignalDef("slideshow_carousel", {_SLIDESHOW: 6}, lambda f: f.carousel),
    SignalDef("slideshow_images", {_SLIDESHOW: 2}, lambda f: f.carousel and f.images >= 2),
    # reviews
    SignalDef("reviews_stars", {_REVIEWS: 8, _FEATURES: -3}, lambda f: f.repeated_cards >= 2 and f.star_glyphs >= 3),
    SignalDef("reviews_avatars", {_REVIEWS: 2}, lambda f: f.avatars >= 2 and f.star_glyphs >= 1),
    # faq
    SignalDef("faq_native_disclosures", {_FAQ: 8}, lambda f: f.native_disclosures >= 2),
    SignalDef("faq_aria_disclosures", {_FAQ: 4}, lambda f: f.aria_disclosures >= 3),
    SignalDef("faq_wording", {_FAQ: 2}, lambda f: f.faq_wording),
    # rich_text
    SignalDef("text_paragraphs", {_RICH: 3}, lambda f: f.paragraphs >= 1),
    SignalDef("text_heading", {_RICH: 1}, lambda f: f.headings >= 1),
    SignalDef("text_no_images", {_RICH: 1}, lambda f: f.images == 0 and f.background_images == 0),
    SignalDef("text_long", {_RICH: 1}, lambda f: f.text_length >= 200),
)
# fmt: on


def confidence_for(score: int) -> float:
    return round(min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, score / NORMALIZATION)), 4)


def score_features(features: SectionFeatures) -> tuple[dict[SectionType, int], tuple[str, ...]]:
    """Raw rubric scores for every classifiable type, plus fired rule names."""
    scores = {t: 0 for t in TIE_BREAK_ORDER}
    fired: list[str] = []
    for sig in RUBRIC:
        if sig.check(features):
            fired.append(sig.name)
            for stype, weight in sig.scores.items():
                scores[stype] += weight
    return scores, tuple(fired)


def classify_section(features: SectionFeatures) -> ClassificationResult:
    """Classify one section from its feature vector. Pure and deterministic."""
    landmark = _LANDMARK_TYPES.get(features.tag)
    if landmark is not None:
        return ClassificationResult(
            type=landmark,
            confidence=MAX_CONFIDENCE,
            score=NORMALIZATION,
            signals=(f"landmark_{features.tag}",),
            runner_up=None,
        )

    scores, fired = score_features(features)
    # Stable sort keeps TIE_BREAK_ORDER among equal scores.
    ranked = sorted(TIE_BREAK_ORDER, key=lambda t: -scores[t])
    best = ranked[0]
    runner_up = ranked[1]

    if scores[best] <= 0:
        return ClassificationResult(
            type=SectionType.UNKNOWN,
            confidence=MIN_CONFIDENCE,
            score=scores[best],
            signals=fired,
            runner_up=best,
            runner_up_score=scores[best],
        )

    return ClassificationResult(
        type=best,
        confidence=confidence_for(scores[best]),
        score=scores[best],
        signals=fired,
        runner_up=runner_up,
        runner_up_score=scores[runner_up],
    )
