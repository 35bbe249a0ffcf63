# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page Passport: structured visual/content model of a donor product page.

A scan turns one rendered page into a passport:
- sections: non-overlapping, classified vertical regions in reading order
- assets: deduplicated media with stable ids and per-usage roles

The plan compiler derives a renderer-agnostic build plan from a passport.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

PASSPORT_VERSION = "5.0"
PLAN_VERSION = "1.0"


class SectionType(StrEnum):
    """Semantic section types. Declaration order is the classifier tie-break order."""

    PAGE = "page"
    HEADER = "header"
    FOOTER = "footer"
    HERO_BANNER = "hero_banner"
    FEATURES_GRID = "features_grid"
    GALLERY = "gallery"
    SLIDESHOW = "slideshow"
    REVIEWS = "reviews"
    FAQ = "faq"
    RICH_TEXT = "rich_text"
    UNKNOWN = "unknown"


class AssetRole(StrEnum):
    HERO_BG = "hero_bg"
    ICON = "icon"
    GALLERY = "gallery"
    LOGO = "logo"
    BACKGROUND = "background"
    ILLUSTRATION = "illustration"


class AssetKind(StrEnum):
    IMAGE = "image"  # raster images (png/jpg/webp/gif)
    SVG = "svg"  # inline or external svg
    VIDEO = "video"


@dataclass(frozen=True, slots=True)
class BBox:
    """Absolute box in page coordinates."""

    x: int
    y: int
    w: int
    h: int

    @property
    def bottom(self) -> int:
        return self.y + self.h

    @property
    def right(self) -> int:
        return self.x + self.w

    @property
    def area(self) -> int:
        return self.w * self.h

    def overlap_area(self, other: BBox) -> int:
        x_overlap = max(0, min(self.right, other.right) - max(self.x, other.x))
        y_overlap = max(0, min(self.bottom, other.bottom) - max(self.y, other.y))
        return x_overlap * y_overlap


@dataclass(frozen=True, slots=True)
class DigestNode:
    """One visible, content-bearing DOM element."""

    tag: str
    bbox: BBox
    dom_path: str  # ancestor chain for debugging/dedup, not a strict selector
    text: str | None = None
    href: str | None = None
    src: str | None = None
    alt: str | None = None
    aria_label: str | None = None
    bg_url: str | None = None
    svg_markup: str | None = None
    style: dict[str, str] = field(default_factory=dict)
    child_count: int = 0
    uniform_children: int = 0  # flex/grid children sharing the first child's width
    class_hint: str = ""
    role: str | None = None
    roledescription: str | None = None
    expandable: bool = False  # carries aria-expanded


@dataclass(frozen=True, slots=True)
class SectionCandidate:
    """A top-level region proposed by the page before segmentation."""

    tag: str
    dom_path: str
    bbox: BBox
    text_sample: str | None = None
    landmark: bool = False  # header/footer added regardless of root position


@dataclass(frozen=True, slots=True)
class SectionFeatures:
    """Cheap structural counts used only as classifier input."""

    tag: str = "div"
    width: int = 0
    height: int = 0
    top: int = 0
    viewport_height: int = 900
    headings: int = 0
    h1: int = 0
    paragraphs: int = 0
    buttons: int = 0
    images: int = 0
    large_images: int = 0
    small_images: int = 0
    inline_svgs: int = 0
    background_images: int = 0
    native_disclosures: int = 0
    aria_disclosures: int = 0
    carousel: bool = False
    repeated_cards: int = 0
    star_glyphs: int = 0
    avatars: int = 0
    text_length: int = 0
    faq_wording: bool = False


@dataclass(slots=True)
class SectionPolicy:
    include_in_clone: bool = True
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class Fingerprint:
    """Perceptual similarity signals for QA/dedup, never used to classify."""

    dhash: str  # 16 hex chars
    dominant_color: str  # "#rrggbb"
    edge_density: float  # 0.0-1.0


@dataclass(frozen=True, slots=True)
class CallToAction:
    text: str
    href: str | None = None


@dataclass(frozen=True, slots=True)
class ContentItem:
    """A sub-heading and the copy under it (feature column, slide caption)."""

    title: str
    text: str = ""


@dataclass(frozen=True, slots=True)
class SectionAssetRef:
    asset_id: str
    role: AssetRole


@dataclass(slots=True)
class Section:
    """A bounded, classified vertical region of the page."""

    id: str
    order: int
    type: SectionType
    confidence: float
    tag: str
    dom_path: str
    bbox: BBox
    policy: SectionPolicy = field(default_factory=SectionPolicy)
    heading: str = ""
    text: str = ""
    text_sample: str | None = None
    cta: CallToAction | None = None
    items: list[ContentItem] = field(default_factory=list)
    features: SectionFeatures | None = None
    signals: tuple[str, ...] = ()  # classifier rules that fired
    fingerprint: Fingerprint | None = None
    assets: list[SectionAssetRef] = field(default_factory=list)


@dataclass(slots=True)
class Asset:
    """A distinct media resource, deduplicated across the page."""

    id: str
    kind: AssetKind
    dedup_key: str
    source_url: str | None = None
    normalized_url: str | None = None
    width: int | None = None
    height: int | None = None
    phash: str | None = None
    dominant_color: str | None = None


@dataclass(frozen=True, slots=True)
class AssetUsage:
    """One placement of an Asset inside a Section."""

    asset_id: str
    section_id: str
    role: AssetRole
    bbox: BBox


@dataclass(slots=True)
class Passport:
    """Full structured extraction of one donor page."""

    url: str
    scanned_at: str  # ISO-8601 UTC
    viewport: dict[str, int | float]
    root: Section
    sections: list[Section]
    assets: dict[str, Asset]
    usages: list[AssetUsage]
    design_tokens: dict = field(default_factory=dict)
    page_info: dict = field(default_factory=dict)
    diagnostics: dict = field(default_factory=dict)
    version: str = PASSPORT_VERSION

    @property
    def included_sections(self) -> list[Section]:
        return [s for s in self.sections if s.policy.include_in_clone]
