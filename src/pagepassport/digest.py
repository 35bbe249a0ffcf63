# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""DOM digest extraction: one evaluate call, validated at the boundary.

The in-page script walks content-bearing elements in document order and
reports visible ones with absolute boxes, a short structural path, sampled
text, media references and a computed style subset. It also reports the
top-level section candidates (children of the resolved content root plus the
header/footer landmarks), page info and design tokens.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from . import DigestNode, SectionCandidate
from .config import ScanConfig
from .errors import BrowserError, ExtractionError
from .schemas import RawCandidate, RawCapture, RawNode

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DigestCapture:
    """Validated result of one extraction call."""

    doc: dict[str, Any]
    viewport: dict[str, int | float]
    page_info: dict[str, Any]
    design_tokens: dict[str, Any]
    nodes: list[DigestNode]
    candidates: list[SectionCandidate]
    page_height: int
    dropped_nodes: int = 0
    dropped_candidates: int = 0
    truncated: bool = False
    warnings: list[str] = field(default_factory=list)


def parse_capture(raw: Any) -> DigestCapture:
    """Validate a raw capture dict into typed digest data.

    Raises ExtractionError when the envelope itself is unusable. Individual
    malformed nodes and candidates are dropped and counted.
    """
    if not isinstance(raw, dict):
        raise ExtractionError(f"Extraction returned {type(raw).__name__}, expected object")
    try:
        capture = RawCapture.model_validate(raw)
    except ValidationError as exc:
        raise ExtractionError(f"Extraction envelope invalid: {exc.error_count()} error(s)") from exc

    nodes: list[DigestNode] = []
    dropped_nodes = 0
    for item in capture.nodes:
        try:
            nodes.append(RawNode.model_validate(item).to_node())
        except ValidationError:
            dropped_nodes += 1

    candidates: list[SectionCandidate] = []
    dropped_candidates = 0
    for item in capture.candidates:
        try:
            candidates.append(RawCandidate.model_validate(item).to_candidate())
        except ValidationError:
            dropped_candidates += 1

    warnings: list[str] = []
    if dropped_nodes:
        warnings.append(f"dropped {dropped_nodes} malformed digest node(s)")
        logger.warning("Dropped %d malformed digest nodes", dropped_nodes)
    if dropped_candidates:
        warnings.append(f"dropped {dropped_candidates} malformed section candidate(s)")
        logger.warning("Dropped %d malformed section candidates", dropped_candidates)
    if capture.truncated:
        warnings.append(f"digest truncated at {len(capture.nodes)} nodes")

    page_info = {
        "title": capture.page_info.title or capture.doc.title or "",
        "price": capture.page_info.price,
        "descriptionHtml": capture.page_info.description_html,
    }
    return DigestCapture(
        doc=capture.doc.model_dump(),
        viewport={
            "width": capture.viewport.width,
            "height": capture.viewport.height,
            "deviceScaleFactor": capture.viewport.device_scale_factor,
        },
        page_info=page_info,
        design_tokens=capture.design_tokens,
        nodes=nodes,
        candidates=candidates,
        page_height=capture.page_height,
        dropped_nodes=dropped_nodes,
        dropped_candidates=dropped_candidates,
        truncated=capture.truncated,
        warnings=warnings,
    )


async def extract_digest(page, config: ScanConfig | None = None) -> DigestCapture:
    """Run the extraction script on ``page`` and validate its output."""
    config = config or ScanConfig()
    args = {
        "maxNodes": config.max_digest_nodes,
        "minSectionHeight": config.min_section_height,
        "minWidthRatio": config.min_section_width_ratio,
    }
    try:
        raw = await page.evaluate(_DIGEST_JS, args)
    except Exception as exc:
        if "closed" in str(exc).lower():
            raise BrowserError(f"Browser closed during extraction: {exc}") from exc
        raise ExtractionError(f"DOM digest evaluation failed: {exc}") from exc

    capture = parse_capture(raw)
    logger.info(
        "Digest extracted: %d nodes, %d candidates, page height %dpx",
        len(capture.nodes),
        len(capture.candidates),
        capture.page_height,
    )
    return capture


# Static script; all parameters arrive through the evaluate argument.
_DIGEST_JS = r"""(opts) => {
  const isVisible = (el) => {
    if (!el) return false;
    const s = window.getComputedStyle(el);
    if (s.display === 'none' || s.visibility === 'hidden' || parseFloat(s.opacity || '1') === 0) return false;
    const r = el.getBoundingClientRect();
    return r.width >= 2 && r.height >= 2;
  };

  const box = (el) => {
    const r = el.getBoundingClientRect();
    return {
      x: Math.round(r.x + window.scrollX),
      y: Math.round(r.y + window.scrollY),
      w: Math.round(r.width),
      h: Math.round(r.height),
    };
  };

  const classOf = (el) => (el.getAttribute('class') || '').toString().trim();

  const cssPath = (el) => {
    const parts = [];
    let cur = el;
    let depth = 0;
    while (cur && cur.nodeType === 1 && depth < 7) {
      let part = cur.tagName.toLowerCase();
      if (cur.id) part += '#' + cur.id;
      const cls = classOf(cur).split(/\s+/).filter(Boolean).slice(0, 2);
      if (cls.length) part += '.' + cls.join('.');
      const parent = cur.parentElement;
      if (!cur.id && parent) {
        const same = Array.from(parent.children).filter((c) => c.tagName === cur.tagName);
        if (same.length > 1) part += `:nth-of-type(${same.indexOf(cur) + 1})`;
      }
      parts.unshift(part);
      cur = cur.parentElement;
      depth++;
    }
    return parts.join('>');
  };

  const pickText = (el) => ((el && el.innerText) || '').replace(/\s+/g, ' ').trim();

  const styleOf = (s) => ({
    display: s.display,
    position: s.position,
    fontFamily: s.fontFamily,
    fontSize: s.fontSize,
    fontWeight: s.fontWeight,
    lineHeight: s.lineHeight,
    color: s.color,
    backgroundColor: s.backgroundColor,
    textAlign: s.textAlign,
    gap: s.gap,
    justifyContent: s.justifyContent,
    alignItems: s.alignItems,
  });

  const uniformChildren = (el, s) => {
    if (!/flex|grid/.test(s.display)) return 0;
    const kids = Array.from(el.children).filter(isVisible);
    if (kids.length < 2) return 0;
    const w0 = kids[0].getBoundingClientRect().width;
    if (w0 <= 0) return 0;
    return kids.filter((k) => Math.abs(k.getBoundingClientRect().width - w0) <= w0 * 0.1).length;
  };

  const doc = {
    title: document.title || '',
    lang: document.documentElement.getAttribute('lang') || null,
    url: location.href,
  };
  const viewport = {
    width: window.innerWidth,
    height: window.innerHeight,
    deviceScaleFactor: window.devicePixelRatio || 1,
  };

  const nodes = [];
  let truncated = false;
  const selector = 'h1,h2,h3,h4,h5,h6,p,li,a,button,img,svg,video,details,summary,section,header,footer,main,article,div';
  const landmarks = new Set(['section', 'header', 'footer', 'main', 'article']);
  for (const el of document.querySelectorAll(selector)) {
    if (nodes.length >= opts.maxNodes) { truncated = true; break; }
    if (!isVisible(el)) continue;
    const tag = el.tagName.toLowerCase();
    if (tag === 'svg' && el.parentElement && el.parentElement.closest('svg')) continue;
    const s = window.getComputedStyle(el);
    const media = tag === 'img' || tag === 'svg' || tag === 'video';
    const text = media ? '' : pickText(el);
    let src = null;
    if (tag === 'img') src = el.currentSrc || el.src || null;
    if (tag === 'video') {
      const source = el.querySelector('source');
      src = el.currentSrc || el.src || (source && source.src) || null;
    }
    let bgUrl = null;
    if (s.backgroundImage && s.backgroundImage !== 'none') {
      const m = s.backgroundImage.match(/url\(["']?(.*?)["']?\)/i);
      if (m && m[1]) bgUrl = m[1];
    }
    const isText = text.length >= 2;
    const isAsset = !!src || !!bgUrl || tag === 'svg';
    const isCta = tag === 'button' || (tag === 'a' && text.length > 0);
    if (!(isText || isAsset || isCta || landmarks.has(tag))) continue;
    nodes.push({
      tag,
      ...box(el),
      domPath: cssPath(el),
      text: text ? text.slice(0, 600) : null,
      href: tag === 'a' ? el.getAttribute('href') : null,
      src,
      alt: tag === 'img' ? (el.alt || null) : null,
      ariaLabel: el.getAttribute('aria-label'),
      bgUrl,
      svg: tag === 'svg' ? el.outerHTML.slice(0, 4000) : null,
      style: styleOf(s),
      childCount: el.childElementCount,
      uniformChildren: uniformChildren(el, s),
      classHint: classOf(el).slice(0, 200),
      role: el.getAttribute('role'),
      roleDescription: el.getAttribute('aria-roledescription'),
      expandable: el.hasAttribute('aria-expanded'),
    });
  }

  let root = document.querySelector('main') || document.body;
  while (root && root.children.length === 1) {
    const child = root.children[0];
    const pr = root.getBoundingClientRect();
    const cr = child.getBoundingClientRect();
    const parentArea = pr.width * pr.height;
    if (parentArea <= 0 || (cr.width * cr.height) / parentArea < 0.85) break;
    root = child;
  }

  const candidates = [];
  const minWidth = Math.floor(window.innerWidth * opts.minWidthRatio);
  for (const el of (root ? Array.from(root.children) : [])) {
    if (!isVisible(el)) continue;
    const b = box(el);
    if (b.h < opts.minSectionHeight || b.w < minWidth) continue;
    candidates.push({
      tag: el.tagName.toLowerCase(),
      domPath: cssPath(el),
      ...b,
      textSample: pickText(el).slice(0, 300) || null,
      landmark: false,
    });
  }
  for (const sel of ['header', 'footer']) {
    const el = document.querySelector(sel);
    if (el && isVisible(el)) {
      candidates.push({
        tag: sel,
        domPath: cssPath(el),
        ...box(el),
        textSample: pickText(el).slice(0, 200) || null,
        landmark: true,
      });
    }
  }

  const buttons = Array.from(document.querySelectorAll('button, a.btn, a.button, input[type="submit"]'));
  const colored = buttons.find((b) => {
    const bg = window.getComputedStyle(b).backgroundColor;
    return bg !== 'rgba(0, 0, 0, 0)' && bg !== 'rgb(255, 255, 255)' && bg !== 'transparent';
  });
  const h1 = document.querySelector('h1');
  const h2 = document.querySelector('h2');
  const fontOf = (el) => (el ? window.getComputedStyle(el).fontFamily : null);
  const designTokens = {
    primaryButtonColor: colored ? window.getComputedStyle(colored).backgroundColor : null,
    backgroundColor: document.body ? window.getComputedStyle(document.body).backgroundColor : null,
    typography: { body: fontOf(document.body), h1: fontOf(h1), h2: fontOf(h2) },
  };

  const meta = (sel) => {
    const el = document.querySelector(sel);
    return el ? el.getAttribute('content') : null;
  };
  const firstMatch = (sels, test) => {
    for (const sel of sels) {
      const el = document.querySelector(sel);
      if (el && test(el)) return el;
    }
    return null;
  };
  const priceEl = firstMatch(
    ['.price', '.product-price', '.product__price', 'span.money', '[data-product-price]'],
    (el) => /\d/.test(el.innerText || ''),
  );
  const descEl = firstMatch(
    ['.product-description', '.product__description', '.rte', '#description'],
    (el) => (el.innerText || '').length > 20,
  );
  const pageInfo = {
    title: (h1 && h1.innerText.trim()) || meta('meta[property="og:title"]') || null,
    price: priceEl ? priceEl.innerText.trim() : meta('meta[property="product:price:amount"]'),
    descriptionHtml: descEl ? descEl.innerHTML : meta('meta[name="description"]'),
  };

  const pageHeight = Math.max(
    document.documentElement.scrollHeight,
    document.body ? document.body.scrollHeight : 0,
  );

  return { doc, viewport, pageInfo, designTokens, nodes, candidates, pageHeight, truncated };
}"""
