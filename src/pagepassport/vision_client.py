# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Section classification / markup generation over an OpenAI-compatible API.

Outputs are non-deterministic and advisory: the rule-based classifier stays
the source of truth for section types, and generated markup only fills the
``custom-markup`` escape valve of a plan.
"""

from __future__ import annotations

import base64
import io
import json
import logging
import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any

import httpx
from PIL import Image
from pydantic import BaseModel, Field, ValidationError

from . import SectionType
from .config import VisionServiceConfig
from .errors import ServiceError, TransientServiceError
from .plan_compiler import CustomMarkupIntent, Plan
from .retry import RetryPolicy, error_for_response, retry_async

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

_CLASSIFY_PROMPT = (
    "You label one section of an e-commerce product page from its screenshot. "
    "Answer with a JSON object {\"label\": string, \"confidence\": number 0-1}. "
    "label is one of: " + ", ".join(t.value for t in SectionType if t is not SectionType.PAGE) + "."
)

_MARKUP_PROMPT = (
    "Recreate this page section as self-contained HTML and CSS. No scripts, no external fonts. "
    "Answer with a JSON object {\"html\": string, \"css\": string}."
)


def extract_json_from_text(text: str | None) -> Any:
    """Best-effort JSON from model text: strip fences, whole string, then outermost braces."""
    if not text or not isinstance(text, str):
        return None
    cleaned = _FENCE_RE.sub("", text).strip()
    try:
        return json.loads(cleaned)
    except ValueError:
        pass
    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first >= 0 and last > first:
        try:
            return json.loads(cleaned[first : last + 1])
        except ValueError:
            return None
    return None


def image_data_url(data: bytes, max_width: int = 1280, quality: int = 80) -> str:
    """Downscale and JPEG-encode a screenshot into a data: URL."""
    with Image.open(io.BytesIO(data)) as img:
        if img.width > max_width:
            img = img.resize((max_width, round(img.height * max_width / img.width)), Image.Resampling.LANCZOS)
        if img.mode != "RGB":
            img = img.convert("RGB")
        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=quality, optimize=True)
    return "data:image/jpeg;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


class ClassifyResponse(BaseModel):
    label: str = Field(description="Section type label")
    confidence: float = Field(0.5, ge=0.0, le=1.0)


class MarkupResponse(BaseModel):
    html: str = ""
    css: str = ""


@dataclass(frozen=True, slots=True)
class ChatResult:
    text: str
    json: Any
    usage: dict | None = None


class VisionClient:
    """Chat-completions client with retry and JSON-mode fallback."""

    def __init__(
        self,
        config: VisionServiceConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.config = config
        self.policy = RetryPolicy(max_retries=config.max_retries)
        self._sleep = sleep
        headers = {"Authorization": f"Bearer {config.api_key}", "Content-Type": "application/json"}
        if config.http_referer:
            headers["HTTP-Referer"] = config.http_referer
        if config.title:
            headers["X-Title"] = config.title
        self._client = httpx.AsyncClient(
            base_url=config.base_url, headers=headers, timeout=config.timeout_s, transport=transport
        )

    async def __aenter__(self) -> VisionClient:
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post_once(self, payload: dict) -> dict:
        try:
            response = await self._client.post("/chat/completions", json=payload)
        except httpx.TimeoutException as exc:
            raise TransientServiceError("chat completion timed out") from exc
        except httpx.HTTPError as exc:
            raise ServiceError(f"chat completion failed: {exc}") from exc
        error = error_for_response(response, "chat completion", self.policy)
        if error is not None:
            raise error
        return response.json()

    async def chat(
        self,
        messages: list[dict],
        *,
        temperature: float = 0.0,
        max_tokens: int = 1800,
        json_mode: bool = True,
    ) -> ChatResult:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        retry_kwargs = {"sleep": self._sleep} if self._sleep else {}
        try:
            data = await retry_async(lambda: self._post_once(payload), self.policy, label="chat", **retry_kwargs)
        except ServiceError as exc:
            if not (json_mode and exc.status == 400):
                raise
            # Some models reject JSON mode; ask again and parse the text.
            logger.info("JSON mode rejected by %s, retrying without response_format", self.config.model)
            payload.pop("response_format")
            data = await retry_async(lambda: self._post_once(payload), self.policy, label="chat", **retry_kwargs)

        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content")
        text = content if isinstance(content, str) else json.dumps(content)
        return ChatResult(text=text, json=extract_json_from_text(text), usage=data.get("usage"))

    @staticmethod
    def _messages(prompt: str, image: bytes, text_hints: list[str]) -> list[dict]:
        hints = "\n".join(h for h in text_hints if h)
        return [
            {"role": "system", "content": prompt},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": f"Text found in the section:\n{hints}" if hints else "No text found."},
                    {"type": "image_url", "image_url": {"url": image_data_url(image)}},
                ],
            },
        ]

    async def classify(self, image: bytes, text_hints: list[str]) -> dict[str, Any]:
        """Label a section screenshot. Unparsable answers become unknown at 0.0."""
        result = await self.chat(self._messages(_CLASSIFY_PROMPT, image, text_hints))
        try:
            parsed = ClassifyResponse.model_validate(result.json)
        except ValidationError:
            logger.warning("Unparsable classify response: %.200s", result.text)
            return {"label": SectionType.UNKNOWN.value, "confidence": 0.0}
        label = parsed.label.strip().lower()
        if label not in {t.value for t in SectionType}:
            label = SectionType.UNKNOWN.value
        return {"label": label, "confidence": parsed.confidence}

    async def generate_markup(self, image: bytes, text_hints: list[str]) -> dict[str, str]:
        result = await self.chat(self._messages(_MARKUP_PROMPT, image, text_hints), max_tokens=4000)
        try:
            parsed = MarkupResponse.model_validate(result.json)
        except ValidationError as exc:
            raise ServiceError("markup generation returned no usable JSON") from exc
        return {"html": parsed.html, "css": parsed.css}


async def fill_custom_markup(plan: Plan, client: VisionClient, images: Mapping[str, bytes]) -> Plan:
    """Generate html/css for every custom-markup section that has a screenshot."""
    sections = []
    for section in plan.sections:
        intent = section.intent
        image = images.get(section.source_section_id)
        if isinstance(intent, CustomMarkupIntent) and image is not None:
            markup = await client.generate_markup(image, list(intent.text_hints))
            section = replace(section, intent=replace(intent, html=markup["html"], css=markup["css"]))
        sections.append(section)
    return replace(plan, sections=sections)
