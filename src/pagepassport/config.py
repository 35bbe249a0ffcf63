# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Run configuration: scan limits and remote service settings.

Every config is an immutable dataclass with working defaults. ``from_env()``
overlays ``PASSPORT_*`` environment variables; a malformed numeric value
raises ValueError naming the variable instead of silently falling back.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace

from .browser_session import BrowserConfig

_TRUE_VALUES = ("1", "true", "yes")


def _env_str(name: str) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or None


def _env_int(name: str) -> int | None:
    raw = _env_str(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str) -> float | None:
    raw = _env_str(name)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_bool(name: str) -> bool | None:
    raw = _env_str(name)
    if raw is None:
        return None
    return raw.lower() in _TRUE_VALUES


def _overlay(config, env: dict[str, object | None]):
    """Return ``config`` with every non-None env value applied."""
    known = {f.name for f in fields(config)}
    updates = {k: v for k, v in env.items() if v is not None and k in known}
    return replace(config, **updates) if updates else config


# ---------------------------------------------------------------------------
# Scan limits
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ScanConfig:
    """Bounds that keep a scan's cost predictable on pathological pages."""

    max_scrolls: int = 14
    scroll_pause_ms: int = 380
    min_scroll_step: int = 350
    max_digest_nodes: int = 4500
    max_sections: int = 22  # callers needing more rerun with a higher cap
    min_section_height: int = 160
    min_section_width_ratio: float = 0.55
    max_nodes_per_section: int = 900
    max_fingerprint_sections: int = 12
    max_fingerprint_assets: int = 24

    def __post_init__(self) -> None:
        if self.max_scrolls < 0:
            raise ValueError(f"max_scrolls must be >= 0, got {self.max_scrolls}")
        if self.max_digest_nodes <= 0:
            raise ValueError(f"max_digest_nodes must be > 0, got {self.max_digest_nodes}")
        if self.max_sections <= 0:
            raise ValueError(f"max_sections must be > 0, got {self.max_sections}")
        if not 0.0 < self.min_section_width_ratio <= 1.0:
            raise ValueError(f"min_section_width_ratio must be in (0, 1], got {self.min_section_width_ratio}")

    @classmethod
    def from_env(cls) -> ScanConfig:
        return _overlay(
            cls(),
            {
                "max_scrolls": _env_int("PASSPORT_MAX_SCROLLS"),
                "max_digest_nodes": _env_int("PASSPORT_MAX_NODES"),
                "max_sections": _env_int("PASSPORT_MAX_SECTIONS"),
                "min_section_height": _env_int("PASSPORT_MIN_SECTION_HEIGHT"),
                "max_fingerprint_sections": _env_int("PASSPORT_MAX_FINGERPRINT_SECTIONS"),
                "max_fingerprint_assets": _env_int("PASSPORT_MAX_FINGERPRINT_ASSETS"),
            },
        )


def browser_config_from_env() -> BrowserConfig:
    return _overlay(
        BrowserConfig(),
        {
            "headless": _env_bool("PASSPORT_HEADLESS"),
            "viewport_width": _env_int("PASSPORT_VIEWPORT_WIDTH"),
            "viewport_height": _env_int("PASSPORT_VIEWPORT_HEIGHT"),
            "timeout_ms": _env_int("PASSPORT_NAV_TIMEOUT_MS"),
            "networkidle_budget_ms": _env_int("PASSPORT_NETWORKIDLE_BUDGET_MS"),
        },
    )


# ---------------------------------------------------------------------------
# Remote services
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AdminApiConfig:
    """Shopify-like admin API connection settings for one shop."""

    shop: str
    access_token: str
    api_version: str = "2024-01"
    timeout_s: float = 30.0
    max_retries: int = 4

    @property
    def base_url(self) -> str:
        shop = self.shop.strip()
        for prefix in ("https://", "http://"):
            if shop.startswith(prefix):
                shop = shop[len(prefix) :]
        shop = shop.split("/", 1)[0]
        if shop.endswith(".myshopify.com"):
            shop = shop[: -len(".myshopify.com")]
        return f"https://{shop}.myshopify.com/admin/api/{self.api_version}"

    def __repr__(self) -> str:
        return f"AdminApiConfig(shop={self.shop!r}, api_version={self.api_version!r})"

    @classmethod
    def from_env(cls) -> AdminApiConfig:
        shop = _env_str("PASSPORT_SHOP")
        token = _env_str("PASSPORT_ADMIN_TOKEN")
        if not shop or not token:
            raise ValueError("PASSPORT_SHOP and PASSPORT_ADMIN_TOKEN must both be set")
        return _overlay(
            cls(shop=shop, access_token=token),
            {
                "api_version": _env_str("PASSPORT_ADMIN_API_VERSION"),
                "timeout_s": _env_float("PASSPORT_ADMIN_TIMEOUT_S"),
            },
        )


@dataclass(frozen=True, slots=True)
class VisionServiceConfig:
    """OpenAI-compatible chat-completions endpoint used for classify/generate."""

    api_key: str
    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "openai/gpt-4o-mini"
    timeout_s: float = 120.0
    max_retries: int = 3
    http_referer: str | None = None
    title: str | None = None

    def __repr__(self) -> str:
        return f"VisionServiceConfig(base_url={self.base_url!r}, model={self.model!r})"

    @classmethod
    def from_env(cls) -> VisionServiceConfig:
        key = _env_str("OPENROUTER_API_KEY")
        if not key:
            raise ValueError("OPENROUTER_API_KEY is missing")
        return _overlay(
            cls(api_key=key),
            {
                "base_url": _env_str("PASSPORT_VISION_BASE_URL"),
                "model": _env_str("PASSPORT_VISION_MODEL"),
                "timeout_s": _env_float("PASSPORT_VISION_TIMEOUT_S"),
                "http_referer": _env_str("OPENROUTER_HTTP_REFERER"),
                "title": _env_str("OPENROUTER_X_TITLE"),
            },
        )
