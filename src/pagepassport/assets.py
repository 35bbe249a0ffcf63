# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Asset registry: dedup, stable ids and per-usage role resolution.

Identity is content-addressed (SHA-1 over kind + dedup key), so the same page
always yields the same asset ids and a re-run can be diffed against an older
passport. Roles belong to usages, not assets: one image can be a hero
background in one section and a gallery slide in another.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from urllib.parse import urljoin, urlsplit, urlunsplit

from . import Asset, AssetKind, AssetRole, AssetUsage, BBox, DigestNode, Section, SectionAssetRef, SectionType
from .errors import StructuralInputError

logger = logging.getLogger(__name__)

SVG_KEY_CHARS = 4000
ICON_MAX_PX = 96
HERO_COVER_RATIO = 0.35


def sha1_hex(value: str) -> str:
    return hashlib.sha1(value.encode("utf-8")).hexdigest()  # noqa: S324 - identity, not security


def stable_section_id(url: str, dom_path: str, bbox: BBox) -> str:
    return "s_" + sha1_hex(f"{url}|{dom_path}|{bbox.x}|{bbox.y}|{bbox.w}|{bbox.h}")[:12]


def stable_asset_id(kind: AssetKind | str, dedup_key: str) -> str:
    kind = str(kind)
    return f"a_{kind}_" + sha1_hex(f"{kind}|{dedup_key}")[:16]


def normalize_url(raw: str, base_url: str | None = None) -> str:
    """Resolve ``raw`` against ``base_url`` and drop query/fragment.

    Non-http(s) schemes, and anything urllib cannot split, fall back to a
    naive cut at the first ``#`` then ``?``.
    """
    raw = raw.strip()
    try:
        absolute = urljoin(base_url, raw) if base_url else raw
        parts = urlsplit(absolute)
    except ValueError:
        return raw.split("#", 1)[0].split("?", 1)[0]
    if parts.scheme in ("http", "https"):
        return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    return absolute.split("#", 1)[0].split("?", 1)[0]


def svg_dedup_key(markup: str) -> str:
    return "svg:" + sha1_hex(markup[:SVG_KEY_CHARS])


@dataclass(frozen=True, slots=True)
class AssetRef:
    """One media reference found on a digest node."""

    kind: AssetKind
    source: str | None  # URL, None for inline svg
    dedup_key: str
    bbox: BBox
    background: bool = False
    inline_svg: bool = False


def _url_kind(url: str, default: AssetKind) -> AssetKind:
    if urlsplit(url).path.lower().endswith(".svg"):
        return AssetKind.SVG
    return default


def asset_refs(node: DigestNode, base_url: str | None = None) -> tuple[list[AssetRef], int]:
    """Media references on one node, plus the number of skipped data: URIs."""
    refs: list[AssetRef] = []
    skipped = 0

    def add_url(url: str, default: AssetKind, *, background: bool = False) -> None:
        nonlocal skipped
        if url.startswith("data:"):
            skipped += 1
            return
        normalized = normalize_url(url, base_url)
        refs.append(AssetRef(_url_kind(normalized, default), url, normalized, node.bbox, background=background))

    if node.tag == "img" and node.src:
        add_url(node.src, AssetKind.IMAGE)
    elif node.tag == "video" and node.src:
        add_url(node.src, AssetKind.VIDEO)
    elif node.tag == "svg" and node.svg_markup:
        refs.append(AssetRef(AssetKind.SVG, None, svg_dedup_key(node.svg_markup), node.bbox, inline_svg=True))
    if node.bg_url:
        add_url(node.bg_url, AssetKind.IMAGE, background=True)
    return refs, skipped


def resolve_role(section: Section, ref: AssetRef) -> AssetRole:
    """Role of one usage, first matching rule wins."""
    box = ref.bbox
    if section.type == SectionType.HEADER:
        return AssetRole.LOGO
    if section.type == SectionType.HERO_BANNER:
        if ref.background or (section.bbox.area > 0 and box.area >= HERO_COVER_RATIO * section.bbox.area):
            return AssetRole.HERO_BG
    small = max(box.w, box.h) <= ICON_MAX_PX
    if (small and section.type == SectionType.FEATURES_GRID) or (small and ref.inline_svg):
        return AssetRole.ICON
    if section.type in (SectionType.GALLERY, SectionType.SLIDESHOW):
        return AssetRole.GALLERY
    return AssetRole.ILLUSTRATION


class AssetRegistry:
    """Lookup-or-create store of assets and their usages for one run."""

    def __init__(self, base_url: str | None = None):
        self.base_url = base_url
        self._assets: dict[str, Asset] = {}
        self._usages: list[AssetUsage] = []
        self._seen_usages: set[tuple[str, str, BBox]] = set()
        self.data_uri_skipped = 0

    @property
    def assets(self) -> dict[str, Asset]:
        return self._assets

    @property
    def usages(self) -> list[AssetUsage]:
        return self._usages

    def __len__(self) -> int:
        return len(self._assets)

    def __contains__(self, asset_id: str) -> bool:
        return asset_id in self._assets

    def get(self, asset_id: str) -> Asset:
        try:
            return self._assets[asset_id]
        except KeyError:
            raise StructuralInputError(f"Unknown asset id {asset_id!r}", path=f"assets.items.{asset_id}") from None

    def register(self, ref: AssetRef) -> Asset:
        asset_id = stable_asset_id(ref.kind, ref.dedup_key)
        asset = self._assets.get(asset_id)
        if asset is None:
            asset = Asset(
                id=asset_id,
                kind=ref.kind,
                dedup_key=ref.dedup_key,
                source_url=ref.source,
                normalized_url=ref.dedup_key if ref.source else None,
                width=ref.bbox.w or None,
                height=ref.bbox.h or None,
            )
            self._assets[asset_id] = asset
        return asset

    def add_usage(self, section: Section, ref: AssetRef) -> AssetUsage | None:
        """Register the asset and record one placement; None for a duplicate placement."""
        asset = self.register(ref)
        key = (asset.id, section.id, ref.bbox)
        if key in self._seen_usages:
            return None
        self._seen_usages.add(key)
        role = resolve_role(section, ref)
        usage = AssetUsage(asset_id=asset.id, section_id=section.id, role=role, bbox=ref.bbox)
        self._usages.append(usage)
        section.assets.append(SectionAssetRef(asset_id=asset.id, role=role))
        return usage

    def register_section(self, section: Section, nodes: list[DigestNode]) -> int:
        """Walk a classified section's nodes; returns the number of usages recorded."""
        recorded = 0
        for node in nodes:
            refs, skipped = asset_refs(node, self.base_url)
            self.data_uri_skipped += skipped
            for ref in refs:
                if self.add_usage(section, ref) is not None:
                    recorded += 1
        return recorded

    def usages_for(self, section_id: str) -> list[AssetUsage]:
        return [u for u in self._usages if u.section_id == section_id]
