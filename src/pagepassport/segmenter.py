# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Section segmentation: candidates + digest nodes -> ordered, bounded regions.

Pure Python over the digest; the page is never touched here. Guarantees that
the emitted regions have non-overlapping vertical spans in top-to-bottom
order, and that every emitted region owns at least one digest node.

Overlap resolution:
    1. de-duplicate candidates by structural path and box (a landmark wins a tie)
    2. reject non-landmarks below the minimum height or width fraction
    3. landmarks claim their span first, in top order
    4. every other candidate keeps the largest vertical span nobody has
       claimed yet; if that span is below the minimum height it is dropped
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace

from . import BBox, CallToAction, ContentItem, DigestNode, SectionCandidate, SectionFeatures
from .assets import stable_section_id
from .cancellation import CancellationToken
from .config import ScanConfig

logger = logging.getLogger(__name__)

MIN_NODE_OVERLAP_PX2 = 25
MIN_NODE_COVERAGE = 0.5

HEADING_TAGS = frozenset({"h1", "h2", "h3", "h4", "h5", "h6"})
PARAGRAPH_TAGS = frozenset({"p", "li"})
TEXT_TAGS = HEADING_TAGS | PARAGRAPH_TAGS | {"a", "button", "summary"}

LARGE_IMAGE_MIN_W = 300
LARGE_IMAGE_MIN_H = 200
SMALL_MEDIA_MAX_PX = 96
MAX_CONTENT_ITEMS = 12
AVATAR_MIN_PX = 24
AVATAR_MAX_PX = 120

_CAROUSEL_RE = re.compile(r"carousel|slider|swiper|slick|splide|flickity|glide", re.IGNORECASE)
_BUTTON_CLASS_RE = re.compile(r"\bbtn\b|button", re.IGNORECASE)
_STAR_LABEL_RE = re.compile(r"star|rating", re.IGNORECASE)
_FAQ_RE = re.compile(r"\bfaqs?\b|frequently asked|\bquestions?\b", re.IGNORECASE)
_STAR_GLYPHS = ("★", "☆")


@dataclass(slots=True)
class Segment:
    """A resolved region with its owned nodes, ready for classification."""

    id: str
    order: int
    tag: str
    dom_path: str
    bbox: BBox
    landmark: bool
    nodes: list[DigestNode]
    features: SectionFeatures
    heading: str = ""
    text: str = ""
    text_sample: str | None = None
    cta: CallToAction | None = None
    items: list[ContentItem] = field(default_factory=list)


@dataclass(slots=True)
class SegmentationReport:
    candidates_in: int = 0
    duplicates: int = 0
    rejected_small: int = 0
    dropped_overlap: int = 0
    dropped_empty: int = 0
    capped: int = 0
    nodes_truncated: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "candidatesIn": self.candidates_in,
            "duplicates": self.duplicates,
            "rejectedSmall": self.rejected_small,
            "droppedOverlap": self.dropped_overlap,
            "droppedEmpty": self.dropped_empty,
            "capped": self.capped,
            "nodesTruncated": self.nodes_truncated,
        }


# ---------------------------------------------------------------------------
# Span resolution
# ---------------------------------------------------------------------------


def dedupe_candidates(candidates: list[SectionCandidate]) -> tuple[list[SectionCandidate], int]:
    """Collapse candidates naming the same element: same path and same box."""
    by_key: dict[tuple[str, BBox], SectionCandidate] = {}
    duplicates = 0
    for cand in candidates:
        key = (cand.dom_path, cand.bbox)
        prev = by_key.get(key)
        if prev is None:
            by_key[key] = cand
            continue
        duplicates += 1
        if cand.landmark and not prev.landmark:
            by_key[key] = cand
    return list(by_key.values()), duplicates


def _free_spans(top: int, bottom: int, claimed: list[tuple[int, int]]) -> list[tuple[int, int]]:
    spans = [(top, bottom)]
    for c_top, c_bottom in claimed:
        next_spans = []
        for s_top, s_bottom in spans:
            if c_bottom <= s_top or c_top >= s_bottom:
                next_spans.append((s_top, s_bottom))
                continue
            if c_top > s_top:
                next_spans.append((s_top, c_top))
            if c_bottom < s_bottom:
                next_spans.append((c_bottom, s_bottom))
        spans = next_spans
    return spans


def largest_free_span(top: int, bottom: int, claimed: list[tuple[int, int]]) -> tuple[int, int] | None:
    """Largest unclaimed sub-interval of [top, bottom); the earliest wins a tie."""
    best: tuple[int, int] | None = None
    for span in _free_spans(top, bottom, claimed):
        if best is None or span[1] - span[0] > best[1] - best[0]:
            best = span
    if best is None or best[1] <= best[0]:
        return None
    return best


def resolve_spans(
    candidates: list[SectionCandidate],
    viewport_width: int,
    config: ScanConfig,
    report: SegmentationReport | None = None,
) -> list[SectionCandidate]:
    """Return candidates with non-overlapping vertical spans, sorted by top."""
    report = report if report is not None else SegmentationReport()
    report.candidates_in += len(candidates)
    unique, report.duplicates = dedupe_candidates(candidates)

    min_width = int(viewport_width * config.min_section_width_ratio)
    sized = []
    for cand in unique:
        if not cand.landmark and (cand.bbox.h < config.min_section_height or cand.bbox.w < min_width):
            report.rejected_small += 1
            continue
        sized.append(cand)

    landmarks = sorted((c for c in sized if c.landmark), key=lambda c: c.bbox.y)
    others = sorted((c for c in sized if not c.landmark), key=lambda c: c.bbox.y)

    claimed: list[tuple[int, int]] = []
    resolved: list[SectionCandidate] = []
    for cand in landmarks + others:
        span = largest_free_span(cand.bbox.y, cand.bbox.bottom, claimed)
        min_h = 1 if cand.landmark else config.min_section_height
        if span is None or span[1] - span[0] < min_h:
            report.dropped_overlap += 1
            logger.debug("Candidate %s dropped: no free span", cand.dom_path)
            continue
        claimed.append(span)
        if span != (cand.bbox.y, cand.bbox.bottom):
            cand = replace(cand, bbox=BBox(cand.bbox.x, span[0], cand.bbox.w, span[1] - span[0]))
        resolved.append(cand)

    resolved.sort(key=lambda c: (c.bbox.y, c.bbox.bottom))
    return resolved


# ---------------------------------------------------------------------------
# Node assignment
# ---------------------------------------------------------------------------


def node_belongs(node: DigestNode, box: BBox) -> bool:
    if node.bbox.area <= 0:
        return False
    overlap = node.bbox.overlap_area(box)
    return overlap >= MIN_NODE_OVERLAP_PX2 and overlap >= MIN_NODE_COVERAGE * node.bbox.area


def assign_nodes(box: BBox, nodes: list[DigestNode], cap: int) -> tuple[list[DigestNode], bool]:
    """Nodes owned by ``box`` in digest order, capped; flag is True when capped."""
    owned: list[DigestNode] = []
    for node in nodes:
        if node_belongs(node, box):
            if len(owned) >= cap:
                return owned, True
            owned.append(node)
    return owned, False


# ---------------------------------------------------------------------------
# Features
# ---------------------------------------------------------------------------


def _is_button(node: DigestNode) -> bool:
    if node.tag == "button":
        return True
    return node.tag == "a" and (node.role == "button" or bool(_BUTTON_CLASS_RE.search(node.class_hint)))


def _is_avatar(node: DigestNode) -> bool:
    w, h = node.bbox.w, node.bbox.h
    if not (AVATAR_MIN_PX <= w <= AVATAR_MAX_PX and AVATAR_MIN_PX <= h <= AVATAR_MAX_PX):
        return False
    return abs(w - h) <= 0.1 * max(w, h)


def _is_carousel(node: DigestNode) -> bool:
    if node.roledescription and "carousel" in node.roledescription.lower():
        return True
    return bool(_CAROUSEL_RE.search(node.class_hint))


def _star_count(node: DigestNode) -> int:
    if node.tag in ("svg", "img"):
        label = " ".join(filter(None, (node.class_hint, node.aria_label, node.alt)))
        return 1 if _STAR_LABEL_RE.search(label) else 0
    if node.text and (node.tag in TEXT_TAGS or node.child_count == 0):
        return sum(node.text.count(g) for g in _STAR_GLYPHS)
    return 0


def compute_features(
    tag: str,
    box: BBox,
    nodes: list[DigestNode],
    viewport_height: int,
    text_sample: str | None = None,
) -> SectionFeatures:
    """Structural counts over a section's owned nodes."""
    headings = [n for n in nodes if n.tag in HEADING_TAGS]
    images = [n for n in nodes if n.tag == "img"]
    prose_len = sum(len(n.text or "") for n in nodes if n.tag in HEADING_TAGS | PARAGRAPH_TAGS)
    wording = " ".join([*(n.text or "" for n in headings), text_sample or ""])
    return SectionFeatures(
        tag=tag,
        width=box.w,
        height=box.h,
        top=box.y,
        viewport_height=viewport_height,
        headings=len(headings),
        h1=sum(1 for n in headings if n.tag == "h1"),
        paragraphs=sum(1 for n in nodes if n.tag in PARAGRAPH_TAGS),
        buttons=sum(1 for n in nodes if _is_button(n)),
        images=len(images),
        large_images=sum(1 for n in images if n.bbox.w >= LARGE_IMAGE_MIN_W and n.bbox.h >= LARGE_IMAGE_MIN_H),
        small_images=sum(1 for n in images if max(n.bbox.w, n.bbox.h) <= SMALL_MEDIA_MAX_PX),
        inline_svgs=sum(1 for n in nodes if n.tag == "svg"),
        background_images=sum(1 for n in nodes if n.bg_url),
        native_disclosures=sum(1 for n in nodes if n.tag == "details"),
        aria_disclosures=sum(1 for n in nodes if n.expandable),
        carousel=any(_is_carousel(n) for n in nodes),
        repeated_cards=max((n.uniform_children for n in nodes), default=0),
        star_glyphs=sum(_star_count(n) for n in nodes),
        avatars=sum(1 for n in images if _is_avatar(n)),
        text_length=max(prose_len, len(text_sample or "")),
        faq_wording=bool(_FAQ_RE.search(wording)),
    )


def _content(nodes: list[DigestNode], text_sample: str | None) -> tuple[str, str]:
    heading = next((n.text for n in sorted(nodes, key=lambda n: n.bbox.y) if n.tag in HEADING_TAGS and n.text), "")
    paragraphs = [n.text for n in nodes if n.tag in PARAGRAPH_TAGS and n.text]
    text = " ".join(paragraphs) if paragraphs else (text_sample or "")
    return heading[:200], text[:600]


def _cta(nodes: list[DigestNode]) -> CallToAction | None:
    """Topmost button-like node with visible text."""
    for n in sorted(nodes, key=lambda n: (n.bbox.y, n.bbox.x)):
        if _is_button(n) and n.text and n.text.strip():
            return CallToAction(text=n.text.strip()[:80], href=n.href)
    return None


def _heading_level(n: DigestNode) -> int:
    return int(n.tag[1])


def _items(nodes: list[DigestNode]) -> list[ContentItem]:
    """Pair sub-headings with the paragraphs under them.

    Sub-headings are those below the section's top heading level; when every
    heading shares one level, each of them starts an item. A paragraph belongs
    to the closest heading above it that shares its column, else to the
    closest heading above it at all.
    """
    headings = [n for n in nodes if n.tag in HEADING_TAGS and n.text and n.text.strip()]
    if len(headings) < 2:
        return []
    top_level = min(_heading_level(n) for n in headings)
    subs = [n for n in headings if _heading_level(n) > top_level] or headings
    subs.sort(key=lambda n: (n.bbox.y, n.bbox.x))

    texts: list[list[str]] = [[] for _ in subs]
    for n in sorted(nodes, key=lambda n: (n.bbox.y, n.bbox.x)):
        if n.tag not in PARAGRAPH_TAGS or not n.text:
            continue
        above = [i for i, h in enumerate(subs) if h.bbox.y <= n.bbox.y]
        if not above:
            continue
        aligned = [i for i in above if min(subs[i].bbox.right, n.bbox.right) > max(subs[i].bbox.x, n.bbox.x)]
        owner = max(aligned or above, key=lambda i: subs[i].bbox.y)
        texts[owner].append(n.text.strip())

    return [
        ContentItem(title=h.text.strip()[:120], text=" ".join(t)[:300])
        for h, t in zip(subs, texts)
    ][:MAX_CONTENT_ITEMS]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def segment(
    url: str,
    candidates: list[SectionCandidate],
    nodes: list[DigestNode],
    viewport: dict,
    config: ScanConfig | None = None,
    cancel: CancellationToken | None = None,
    report: SegmentationReport | None = None,
) -> list[Segment]:
    """Partition the digest into ordered, non-overlapping, non-empty segments."""
    config = config or ScanConfig()
    cancel = cancel or CancellationToken()
    report = report if report is not None else SegmentationReport()
    viewport_width = int(viewport.get("width", 1440))
    viewport_height = int(viewport.get("height", 900))

    segments: list[Segment] = []
    for cand in resolve_spans(candidates, viewport_width, config, report):
        cancel.raise_if_cancelled("segment")
        owned, truncated = assign_nodes(cand.bbox, nodes, config.max_nodes_per_section)
        if truncated:
            report.nodes_truncated += 1
        if not owned:
            report.dropped_empty += 1
            continue
        heading, text = _content(owned, cand.text_sample)
        segments.append(
            Segment(
                id=stable_section_id(url, cand.dom_path, cand.bbox),
                order=0,
                tag=cand.tag,
                dom_path=cand.dom_path,
                bbox=cand.bbox,
                landmark=cand.landmark,
                nodes=owned,
                features=compute_features(cand.tag, cand.bbox, owned, viewport_height, cand.text_sample),
                heading=heading,
                text=text,
                text_sample=cand.text_sample,
                cta=_cta(owned),
                items=_items(owned),
            )
        )

    if len(segments) > config.max_sections:
        report.capped = len(segments) - config.max_sections
        report.warnings.append(f"section cap {config.max_sections} reached; {report.capped} dropped")
        logger.warning("Section cap reached: keeping %d of %d", config.max_sections, len(segments))
        segments = segments[: config.max_sections]

    for i, seg in enumerate(segments, start=1):
        seg.order = i
    return segments
