# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Pydantic schemas for everything returned by the in-page extraction script.

The page is untrusted input. Numbers arrive as floats (or strings from odd
polyfills), strings may be absurdly long, and a hostile page can inject
arbitrary shapes. The capture envelope is validated as a whole; nodes and
candidates are validated one by one so a single malformed entry is dropped
and counted instead of failing the scan.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from . import BBox, DigestNode, SectionCandidate

MAX_TEXT_CHARS = 600
MAX_SVG_CHARS = 4000
MAX_ATTR_CHARS = 2048

_STYLE_KEYS = (
    "display",
    "position",
    "fontFamily",
    "fontSize",
    "fontWeight",
    "lineHeight",
    "color",
    "backgroundColor",
    "textAlign",
    "gap",
    "justifyContent",
    "alignItems",
)


class _RawModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)


def _bounded(value: Any, limit: int) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text[:limit] if text else None


class _RawBox(_RawModel):
    x: float
    y: float
    w: float = Field(ge=0)
    h: float = Field(ge=0)

    def to_bbox(self) -> BBox:
        return BBox(round(self.x), round(self.y), round(self.w), round(self.h))


class RawNode(_RawBox):
    """One digest node as reported by the page."""

    tag: str = Field(min_length=1, max_length=32)
    dom_path: str = Field("", alias="domPath", max_length=MAX_ATTR_CHARS)
    text: str | None = None
    href: str | None = None
    src: str | None = None
    alt: str | None = None
    aria_label: str | None = Field(None, alias="ariaLabel")
    bg_url: str | None = Field(None, alias="bgUrl")
    svg: str | None = None
    style: dict[str, str] = Field(default_factory=dict)
    child_count: int = Field(0, alias="childCount", ge=0)
    uniform_children: int = Field(0, alias="uniformChildren", ge=0)
    class_hint: str = Field("", alias="classHint")
    role: str | None = None
    roledescription: str | None = Field(None, alias="roleDescription")
    expandable: bool = False

    @field_validator("tag")
    @classmethod
    def _lower_tag(cls, v: str) -> str:
        return v.lower()

    @field_validator("text", mode="before")
    @classmethod
    def _clip_text(cls, v: Any) -> str | None:
        return _bounded(v, MAX_TEXT_CHARS)

    @field_validator("svg", mode="before")
    @classmethod
    def _clip_svg(cls, v: Any) -> str | None:
        return _bounded(v, MAX_SVG_CHARS)

    @field_validator("href", "src", "alt", "aria_label", "bg_url", "role", "roledescription", mode="before")
    @classmethod
    def _clip_attr(cls, v: Any) -> str | None:
        return _bounded(v, MAX_ATTR_CHARS)

    @field_validator("class_hint", mode="before")
    @classmethod
    def _clip_class(cls, v: Any) -> str:
        return str(v or "")[:200]

    @field_validator("style", mode="before")
    @classmethod
    def _style_subset(cls, v: Any) -> dict[str, str]:
        if not isinstance(v, dict):
            return {}
        return {k: str(v[k])[:200] for k in _STYLE_KEYS if v.get(k) not in (None, "")}

    def to_node(self) -> DigestNode:
        return DigestNode(
            tag=self.tag,
            bbox=self.to_bbox(),
            dom_path=self.dom_path,
            text=self.text,
            href=self.href,
            src=self.src,
            alt=self.alt,
            aria_label=self.aria_label,
            bg_url=self.bg_url,
            svg_markup=self.svg,
            style=self.style,
            child_count=self.child_count,
            uniform_children=self.uniform_children,
            class_hint=self.class_hint,
            role=self.role,
            roledescription=self.roledescription,
            expandable=self.expandable,
        )


class RawCandidate(_RawBox):
    """One section candidate (root child or landmark)."""

    tag: str = Field(min_length=1, max_length=32)
    dom_path: str = Field(alias="domPath", max_length=MAX_ATTR_CHARS)
    text_sample: str | None = Field(None, alias="textSample")
    landmark: bool = False

    @field_validator("tag")
    @classmethod
    def _lower_tag(cls, v: str) -> str:
        return v.lower()

    @field_validator("text_sample", mode="before")
    @classmethod
    def _clip_sample(cls, v: Any) -> str | None:
        return _bounded(v, MAX_TEXT_CHARS)

    def to_candidate(self) -> SectionCandidate:
        return SectionCandidate(
            tag=self.tag,
            dom_path=self.dom_path,
            bbox=self.to_bbox(),
            text_sample=self.text_sample,
            landmark=self.landmark,
        )


class RawViewport(_RawModel):
    width: int = Field(1440, gt=0)
    height: int = Field(900, gt=0)
    device_scale_factor: float = Field(1.0, alias="deviceScaleFactor", gt=0)


class RawDocInfo(_RawModel):
    title: str = ""
    lang: str | None = None
    url: str = ""


class RawPageInfo(_RawModel):
    title: str | None = None
    price: str | None = None
    description_html: str | None = Field(None, alias="descriptionHtml")

    @field_validator("description_html", mode="before")
    @classmethod
    def _clip_html(cls, v: Any) -> str | None:
        return _bounded(v, 20000)


class RawCapture(_RawModel):
    """Envelope of one extraction call. Nodes/candidates stay raw dicts here."""

    doc: RawDocInfo = Field(default_factory=RawDocInfo)
    viewport: RawViewport = Field(default_factory=RawViewport)
    page_info: RawPageInfo = Field(default_factory=RawPageInfo, alias="pageInfo")
    design_tokens: dict[str, Any] = Field(default_factory=dict, alias="designTokens")
    nodes: list[Any] = Field(default_factory=list)
    candidates: list[Any] = Field(default_factory=list)
    page_height: int = Field(0, alias="pageHeight", ge=0)
    truncated: bool = False
