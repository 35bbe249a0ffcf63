# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for run configuration defaults, validation and env overlays."""

from __future__ import annotations

import dataclasses

import pytest

from pagepassport.browser_session import BrowserConfig
from pagepassport.config import AdminApiConfig, ScanConfig, VisionServiceConfig, browser_config_from_env


class TestScanConfig:
    def test_defaults(self):
        cfg = ScanConfig()
        assert cfg.max_scrolls == 14
        assert cfg.max_digest_nodes == 4500
        assert cfg.max_sections == 22
        assert cfg.min_section_height == 160
        assert cfg.min_section_width_ratio == 0.55

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            ScanConfig().max_scrolls = 3

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"max_scrolls": -1}, "max_scrolls"),
            ({"max_digest_nodes": 0}, "max_digest_nodes"),
            ({"max_sections": 0}, "max_sections"),
            ({"min_section_width_ratio": 0.0}, "min_section_width_ratio"),
            ({"min_section_width_ratio": 1.5}, "min_section_width_ratio"),
        ],
    )
    def test_rejects_out_of_range(self, kwargs, field):
        with pytest.raises(ValueError, match=field):
            ScanConfig(**kwargs)

    def test_zero_scrolls_allowed(self):
        assert ScanConfig(max_scrolls=0).max_scrolls == 0

    def test_from_env_overlay(self, monkeypatch):
        monkeypatch.setenv("PASSPORT_MAX_SCROLLS", "3")
        monkeypatch.setenv("PASSPORT_MAX_SECTIONS", " 40 ")
        cfg = ScanConfig.from_env()
        assert cfg.max_scrolls == 3
        assert cfg.max_sections == 40
        assert cfg.max_digest_nodes == 4500

    def test_from_env_without_vars_is_default(self):
        assert ScanConfig.from_env() == ScanConfig()

    def test_from_env_bad_int_names_variable(self, monkeypatch):
        monkeypatch.setenv("PASSPORT_MAX_NODES", "lots")
        with pytest.raises(ValueError, match="PASSPORT_MAX_NODES"):
            ScanConfig.from_env()

    def test_from_env_still_validates(self, monkeypatch):
        monkeypatch.setenv("PASSPORT_MAX_SECTIONS", "0")
        with pytest.raises(ValueError, match="max_sections"):
            ScanConfig.from_env()


class TestBrowserConfigFromEnv:
    def test_defaults(self):
        assert browser_config_from_env() == BrowserConfig()

    @pytest.mark.parametrize("raw, expected", [("0", False), ("false", False), ("TRUE", True), ("yes", True)])
    def test_headless_flag(self, monkeypatch, raw, expected):
        monkeypatch.setenv("PASSPORT_HEADLESS", raw)
        assert browser_config_from_env().headless is expected

    def test_viewport_and_timeouts(self, monkeypatch):
        monkeypatch.setenv("PASSPORT_VIEWPORT_WIDTH", "1280")
        monkeypatch.setenv("PASSPORT_NAV_TIMEOUT_MS", "15000")
        cfg = browser_config_from_env()
        assert (cfg.viewport_width, cfg.viewport_height) == (1280, 900)
        assert cfg.timeout_ms == 15000


class TestAdminApiConfig:
    def test_requires_shop_and_token(self, monkeypatch):
        monkeypatch.setenv("PASSPORT_SHOP", "demo")
        with pytest.raises(ValueError, match="PASSPORT_ADMIN_TOKEN"):
            AdminApiConfig.from_env()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PASSPORT_SHOP", "demo.myshopify.com")
        monkeypatch.setenv("PASSPORT_ADMIN_TOKEN", "shpat_secret")
        monkeypatch.setenv("PASSPORT_ADMIN_TIMEOUT_S", "12.5")
        cfg = AdminApiConfig.from_env()
        assert cfg.access_token == "shpat_secret"
        assert cfg.timeout_s == 12.5
        assert cfg.api_version == "2024-01"
        assert cfg.base_url == "https://demo.myshopify.com/admin/api/2024-01"

    def test_bad_timeout_names_variable(self, monkeypatch):
        monkeypatch.setenv("PASSPORT_SHOP", "demo")
        monkeypatch.setenv("PASSPORT_ADMIN_TOKEN", "t")
        monkeypatch.setenv("PASSPORT_ADMIN_TIMEOUT_S", "soon")
        with pytest.raises(ValueError, match="PASSPORT_ADMIN_TIMEOUT_S"):
            AdminApiConfig.from_env()


class TestVisionServiceConfig:
    def test_requires_key(self):
        with pytest.raises(ValueError, match="OPENROUTER_API_KEY"):
            VisionServiceConfig.from_env()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or-secret")
        monkeypatch.setenv("PASSPORT_VISION_MODEL", "vendor/model-x")
        monkeypatch.setenv("OPENROUTER_X_TITLE", "passport")
        cfg = VisionServiceConfig.from_env()
        assert cfg.model == "vendor/model-x"
        assert cfg.title == "passport"
        assert cfg.http_referer is None
        assert cfg.base_url == "https://openrouter.ai/api/v1"

    def test_repr_hides_key(self):
        assert "sk-or-secret" not in repr(VisionServiceConfig(api_key="sk-or-secret"))
