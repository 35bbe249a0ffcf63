# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Visual fingerprints for sections and role-significant assets.

Three cheap Pillow signals per clip screenshot:

- dHash: 9x8 grayscale, one bit per horizontal neighbour comparison (64 bits)
- dominant color: mean RGB of a 16x16 downsample
- edge density: mean absolute right/down neighbour delta on 32x32 grayscale

Fingerprints serve QA and cross-run dedup only. A failed capture leaves the
fingerprint empty and the run goes on.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

from PIL import Image

from . import AssetRole, Fingerprint, Section
from .assets import AssetRegistry
from .cancellation import CancellationToken
from .config import ScanConfig

logger = logging.getLogger(__name__)

FINGERPRINT_ROLES = frozenset({AssetRole.HERO_BG, AssetRole.ICON, AssetRole.GALLERY})

_EDGE_SIDE = 32
_EDGE_PAIRS = 2 * _EDGE_SIDE * (_EDGE_SIDE - 1)


def dhash(img: Image.Image) -> str:
    small = img.convert("L").resize((9, 8), Image.Resampling.BILINEAR)
    px = small.tobytes()
    value = 0
    for row in range(8):
        for col in range(8):
            left = px[row * 9 + col]
            right = px[row * 9 + col + 1]
            value = (value << 1) | (1 if left > right else 0)
    return f"{value:016x}"


def dominant_color(img: Image.Image) -> str:
    px = img.convert("RGB").resize((16, 16), Image.Resampling.BILINEAR).tobytes()
    n = len(px) // 3
    r = round(sum(px[0::3]) / n)
    g = round(sum(px[1::3]) / n)
    b = round(sum(px[2::3]) / n)
    return f"#{r:02x}{g:02x}{b:02x}"


def edge_density(img: Image.Image) -> float:
    side = _EDGE_SIDE
    px = img.convert("L").resize((side, side), Image.Resampling.BILINEAR).tobytes()
    total = 0
    for y in range(side):
        row = y * side
        for x in range(side):
            v = px[row + x]
            if x + 1 < side:
                total += abs(v - px[row + x + 1])
            if y + 1 < side:
                total += abs(v - px[row + side + x])
    return round(total / (255 * _EDGE_PAIRS), 4)


def fingerprint_image(data: bytes) -> Fingerprint | None:
    """Fingerprint an encoded image; None if it cannot be decoded."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.width < 1 or img.height < 1:
                return None
            return Fingerprint(dhash=dhash(img), dominant_color=dominant_color(img), edge_density=edge_density(img))
    except (OSError, ValueError) as exc:
        logger.warning("Fingerprint decode failed: %s", exc)
        return None


@dataclass(slots=True)
class FingerprintStats:
    sections: int = 0
    assets: int = 0
    failures: int = 0

    def to_dict(self) -> dict:
        return {"sections": self.sections, "assets": self.assets, "failures": self.failures}


async def _capture(session, bbox, page_size: tuple[int, int], label: str) -> Fingerprint | None:
    try:
        data = await session.clip_screenshot(bbox, *page_size)
    except Exception as exc:
        logger.warning("Clip screenshot failed for %s: %s", label, exc)
        return None
    if data is None:
        logger.info("Empty clip for %s, skipping fingerprint", label)
        return None
    return fingerprint_image(data)


async def capture_fingerprints(
    session,
    sections: list[Section],
    registry: AssetRegistry,
    page_size: tuple[int, int],
    config: ScanConfig | None = None,
    cancel: CancellationToken | None = None,
) -> FingerprintStats:
    """Fingerprint up to N sections and M role-significant assets, in order.

    ``session`` needs ``clip_screenshot(bbox, page_width, page_height)``.
    Mutates ``section.fingerprint`` and ``asset.phash``/``dominant_color``.
    """
    config = config or ScanConfig()
    cancel = cancel or CancellationToken()
    stats = FingerprintStats()

    for section in sections[: config.max_fingerprint_sections]:
        cancel.raise_if_cancelled("fingerprint")
        fp = await _capture(session, section.bbox, page_size, section.id)
        if fp is None:
            stats.failures += 1
            continue
        section.fingerprint = fp
        stats.sections += 1

    # One target per asset: its first usage in a fingerprinted role.
    first_usage = {}
    for usage in registry.usages:
        if usage.role in FINGERPRINT_ROLES:
            first_usage.setdefault(usage.asset_id, usage)
    targets = list(first_usage.values())[: config.max_fingerprint_assets]

    for usage in targets:
        cancel.raise_if_cancelled("fingerprint")
        fp = await _capture(session, usage.bbox, page_size, usage.asset_id)
        if fp is None:
            stats.failures += 1
            continue
        asset = registry.get(usage.asset_id)
        asset.phash = fp.dhash
        asset.dominant_color = fp.dominant_color
        stats.assets += 1

    logger.info(
        "Fingerprinted %d sections, %d assets (%d failures)", stats.sections, stats.assets, stats.failures
    )
    return stats
