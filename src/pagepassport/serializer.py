# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Passport and plan serialization.

JSON keys are camelCase; Python attributes stay snake_case. Passports
round-trip: ``passport_from_dict(passport_to_dict(p))`` rebuilds an equal
model. Plans are write-only (regenerate them from the passport instead).
"""

from __future__ import annotations

import json
from dataclasses import fields
from pathlib import Path
from typing import Any

from . import (
    PASSPORT_VERSION,
    Asset,
    AssetKind,
    AssetRole,
    AssetUsage,
    BBox,
    CallToAction,
    ContentItem,
    Fingerprint,
    Passport,
    Section,
    SectionAssetRef,
    SectionFeatures,
    SectionPolicy,
    SectionType,
)
from .errors import StructuralInputError
from .plan_compiler import (
    CustomMarkupIntent,
    FaqIntent,
    FeaturesIntent,
    HeroIntent,
    Intent,
    Plan,
    RichTextIntent,
    SlideshowIntent,
)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


_FEATURE_KEYS = {f.name: _camel(f.name) for f in fields(SectionFeatures)}


def _bbox(b: BBox) -> dict:
    return {"x": b.x, "y": b.y, "w": b.w, "h": b.h}


def _bbox_from(d: dict) -> BBox:
    return BBox(int(d["x"]), int(d["y"]), int(d["w"]), int(d["h"]))


def _ref(r: SectionAssetRef) -> dict:
    return {"assetId": r.asset_id, "role": str(r.role)}


# ---------------------------------------------------------------------------
# Passport
# ---------------------------------------------------------------------------


def section_to_dict(s: Section) -> dict[str, Any]:
    return {
        "id": s.id,
        "order": s.order,
        "type": str(s.type),
        "confidence": s.confidence,
        "tag": s.tag,
        "domPath": s.dom_path,
        "bbox": _bbox(s.bbox),
        "policy": {"includeInClone": s.policy.include_in_clone, "reason": s.policy.reason},
        "content": {
            "heading": s.heading,
            "text": s.text,
            "cta": {"text": s.cta.text, "href": s.cta.href} if s.cta else None,
            "items": [{"title": i.title, "text": i.text} for i in s.items],
        },
        "textSample": s.text_sample,
        "features": (
            {key: getattr(s.features, attr) for attr, key in _FEATURE_KEYS.items()} if s.features else None
        ),
        "signals": list(s.signals),
        "fingerprint": (
            {
                "dhash": s.fingerprint.dhash,
                "dominantColor": s.fingerprint.dominant_color,
                "edgeDensity": s.fingerprint.edge_density,
            }
            if s.fingerprint
            else None
        ),
        "assets": [_ref(r) for r in s.assets],
    }


def section_from_dict(d: dict[str, Any]) -> Section:
    features = d.get("features")
    fp = d.get("fingerprint")
    policy = d.get("policy") or {}
    content = d.get("content") or {}
    cta = content.get("cta")
    return Section(
        id=d["id"],
        order=int(d["order"]),
        type=SectionType(d["type"]),
        confidence=float(d["confidence"]),
        tag=d.get("tag", ""),
        dom_path=d.get("domPath", ""),
        bbox=_bbox_from(d["bbox"]),
        policy=SectionPolicy(include_in_clone=bool(policy.get("includeInClone", True)), reason=policy.get("reason")),
        heading=content.get("heading", ""),
        text=content.get("text", ""),
        text_sample=d.get("textSample"),
        cta=CallToAction(text=cta["text"], href=cta.get("href")) if cta else None,
        items=[ContentItem(title=i["title"], text=i.get("text", "")) for i in content.get("items") or []],
        features=(
            SectionFeatures(**{attr: features[key] for attr, key in _FEATURE_KEYS.items() if key in features})
            if features
            else None
        ),
        signals=tuple(d.get("signals") or ()),
        fingerprint=(
            Fingerprint(dhash=fp["dhash"], dominant_color=fp["dominantColor"], edge_density=fp["edgeDensity"])
            if fp
            else None
        ),
        assets=[SectionAssetRef(asset_id=r["assetId"], role=AssetRole(r["role"])) for r in d.get("assets") or []],
    )


def asset_to_dict(a: Asset) -> dict[str, Any]:
    return {
        "id": a.id,
        "kind": str(a.kind),
        "dedupKey": a.dedup_key,
        "sourceUrl": a.source_url,
        "normalizedUrl": a.normalized_url,
        "width": a.width,
        "height": a.height,
        "phash": a.phash,
        "dominantColor": a.dominant_color,
    }


def asset_from_dict(d: dict[str, Any]) -> Asset:
    return Asset(
        id=d["id"],
        kind=AssetKind(d["kind"]),
        dedup_key=d["dedupKey"],
        source_url=d.get("sourceUrl"),
        normalized_url=d.get("normalizedUrl"),
        width=d.get("width"),
        height=d.get("height"),
        phash=d.get("phash"),
        dominant_color=d.get("dominantColor"),
    )


def passport_to_dict(p: Passport) -> dict[str, Any]:
    return {
        "version": p.version,
        "url": p.url,
        "scannedAt": p.scanned_at,
        "viewport": dict(p.viewport),
        "designTokens": p.design_tokens,
        "pageInfo": p.page_info,
        "assets": {
            "items": {aid: asset_to_dict(a) for aid, a in p.assets.items()},
            "usages": [
                {"assetId": u.asset_id, "sectionId": u.section_id, "role": str(u.role), "bbox": _bbox(u.bbox)}
                for u in p.usages
            ],
        },
        "sectionTree": {
            "root": section_to_dict(p.root),
            "children": [section_to_dict(s) for s in p.sections],
        },
        "diagnostics": p.diagnostics,
    }


def passport_from_dict(d: dict[str, Any]) -> Passport:
    """Rebuild a passport; raises StructuralInputError when it fails validation."""
    errors = validate_passport(d)
    if errors:
        raise StructuralInputError(f"Invalid passport: {errors[0]}", path=errors[0].split(" ", 1)[0])
    tree = d["sectionTree"]
    assets = d["assets"]
    try:
        return Passport(
            url=d["url"],
            scanned_at=d.get("scannedAt", ""),
            viewport=d.get("viewport") or {},
            root=section_from_dict(tree["root"]),
            sections=[section_from_dict(s) for s in tree["children"]],
            assets={aid: asset_from_dict(a) for aid, a in assets["items"].items()},
            usages=[
                AssetUsage(
                    asset_id=u["assetId"],
                    section_id=u["sectionId"],
                    role=AssetRole(u["role"]),
                    bbox=_bbox_from(u["bbox"]),
                )
                for u in assets["usages"]
            ],
            design_tokens=d.get("designTokens") or {},
            page_info=d.get("pageInfo") or {},
            diagnostics=d.get("diagnostics") or {},
            version=d["version"],
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise StructuralInputError(f"Malformed passport field: {exc}", path="passport") from exc


def validate_passport(d: Any) -> list[str]:
    """Structural checks on a passport dict. Empty list means valid."""
    if not isinstance(d, dict):
        return ["passport is not an object"]
    errors: list[str] = []
    if d.get("version") != PASSPORT_VERSION:
        errors.append(f'version must be "{PASSPORT_VERSION}"')
    if not d.get("url"):
        errors.append("url is required")
    tree = d.get("sectionTree")
    if not isinstance(tree, dict):
        errors.append("sectionTree is required")
    else:
        if not isinstance(tree.get("root"), dict):
            errors.append("sectionTree.root is required")
        if not isinstance(tree.get("children"), list):
            errors.append("sectionTree.children must be an array")
    assets = d.get("assets")
    if not isinstance(assets, dict):
        errors.append("assets is required")
    else:
        if not isinstance(assets.get("items"), dict):
            errors.append("assets.items is required")
        if not isinstance(assets.get("usages"), list):
            errors.append("assets.usages must be an array")
    if errors:
        return errors

    items = assets["items"]
    prev_bottom = None
    for i, s in enumerate(tree["children"]):
        where = f"sectionTree.children[{i}]"
        if not isinstance(s, dict) or "id" not in s or "bbox" not in s:
            errors.append(f"{where} is missing id or bbox")
            continue
        conf = s.get("confidence")
        if not isinstance(conf, int | float) or not 0.3 <= conf <= 0.99:
            errors.append(f"{where}.confidence must be within [0.3, 0.99]")
        bbox = s["bbox"]
        if isinstance(bbox, dict) and {"y", "h"} <= bbox.keys():
            if prev_bottom is not None and bbox["y"] < prev_bottom:
                errors.append(f"{where}.bbox overlaps the previous section")
            prev_bottom = bbox["y"] + bbox["h"]
        for ref in s.get("assets") or []:
            if ref.get("assetId") not in items:
                errors.append(f"{where}.assets references unknown asset {ref.get('assetId')}")
    return errors


def passport_to_json(p: Passport, indent: int = 2) -> str:
    return json.dumps(passport_to_dict(p), ensure_ascii=False, indent=indent)


def load_passport(path: str | Path) -> Passport:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise StructuralInputError("Passport file not found", path=str(path)) from None
    except json.JSONDecodeError as exc:
        raise StructuralInputError(f"Passport is not valid JSON: {exc.msg}", path=str(path)) from exc
    return passport_from_dict(data)


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


def intent_to_dict(intent: Intent) -> dict[str, Any]:
    match intent:
        case HeroIntent():
            return {
                "kind": "hero",
                "heading": intent.heading,
                "text": intent.text,
                "cta": intent.cta,
                "ctaHref": intent.cta_href,
                "heroBgAssetId": intent.hero_bg_asset_id,
            }
        case FeaturesIntent():
            return {
                "kind": "features",
                "title": intent.title,
                "columns": intent.columns,
                "items": [
                    {"iconAssetId": i.icon_asset_id, "title": i.title, "text": i.text, "order": i.order}
                    for i in intent.items
                ],
            }
        case SlideshowIntent():
            return {
                "kind": "slideshow",
                "title": intent.title,
                "slides": [
                    {"imageAssetId": s.image_asset_id, "heading": s.heading, "text": s.text, "order": s.order}
                    for s in intent.slides
                ],
            }
        case FaqIntent():
            return {
                "kind": "faq",
                "title": intent.title,
                "items": [{"question": i.question, "answerHtml": i.answer_html} for i in intent.items],
            }
        case RichTextIntent():
            return {"kind": "rich_text", "heading": intent.heading, "html": intent.html}
        case CustomMarkupIntent():
            return {"kind": "custom_markup", "html": intent.html, "css": intent.css, "textHints": list(intent.text_hints)}
    raise TypeError(f"Unsupported intent: {type(intent).__name__}")


def plan_to_dict(plan: Plan) -> dict[str, Any]:
    return {
        "planVersion": plan.plan_version,
        "generatedAt": plan.generated_at,
        "source": plan.source,
        "designTokens": plan.design_tokens,
        "pageInfo": plan.page_info,
        "sections": [
            {
                "sourceSectionId": s.source_section_id,
                "sourceType": str(s.source_type),
                "confidence": s.confidence,
                "targetArchetype": str(s.target_archetype),
                "intent": intent_to_dict(s.intent),
                "assets": [_ref(r) for r in s.assets],
            }
            for s in plan.sections
        ],
        "diagnostics": plan.diagnostics,
    }


def plan_to_json(plan: Plan, indent: int = 2) -> str:
    return json.dumps(plan_to_dict(plan), ensure_ascii=False, indent=indent)
