"""
Upstream Gemini client used by the AI proxy.

Translates the SDK-style ``{model, contents, config}`` request into a call to
the Generative Language REST API ``models/{model}:generateContent`` and returns
the generated text.  Only the proxy holds the API key.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from deeptutor.config import settings
from deeptutor.services.errors import AIServiceError
from deeptutor.utils.helpers import truncate_text

logger = logging.getLogger(__name__)

# SDK config keys that sit beside generationConfig in the REST body
_TOP_LEVEL_CONFIG_KEYS = ("systemInstruction", "safetySettings", "tools", "toolConfig")


def normalize_contents(contents: Any) -> List[Dict[str, Any]]:
    """Accept the SDK shorthands (plain string, single content) and return a list."""
    if contents is None:
        return []
    if isinstance(contents, str):
        return [{"role": "user", "parts": [{"text": contents}]}]
    if isinstance(contents, dict):
        return [contents]
    return list(contents)


def build_generate_body(contents: Any, config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Split an SDK ``config`` into ``generationConfig`` and top-level fields."""
    config = dict(config or {})
    body: Dict[str, Any] = {"contents": normalize_contents(contents)}
    for key in _TOP_LEVEL_CONFIG_KEYS:
        if key in config:
            value = config.pop(key)
            if key == "systemInstruction" and isinstance(value, str):
                value = {"parts": [{"text": value}]}
            body[key] = value
    if config:
        body["generationConfig"] = config
    return body


def extract_text(payload: Dict[str, Any]) -> str:
    """Concatenate the text parts of the first candidate, skipping thoughts."""
    candidates = payload.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(p.get("text", "") for p in parts if not p.get("thought"))


class GeminiClient:
    """Calls Gemini generateContent with the server-side API key."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = settings.GEMINI_API_KEY if api_key is None else api_key
        self.base_url = (base_url or settings.GEMINI_BASE_URL).rstrip("/")
        self.timeout = httpx.Timeout(float(settings.AI_TIMEOUT), connect=10.0)
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def generate_content(
        self,
        model: Optional[str],
        contents: Any,
        config: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Run one generation and return its text.

        Raises AIServiceError on transport failure, a non-200 response or an
        empty generation.
        """
        model = model or settings.GEMINI_MODEL
        url = f"{self.base_url}/models/{model}:generateContent"
        body = build_generate_body(contents, config)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, json=body, headers={"x-goog-api-key": self.api_key})
        except httpx.TimeoutException as exc:
            raise AIServiceError(f"Gemini request timed out after {settings.AI_TIMEOUT}s") from exc
        except httpx.HTTPError as exc:
            raise AIServiceError(f"Gemini unreachable: {exc}") from exc

        if resp.status_code != 200:
            logger.error(
                "generate_content: Gemini returned HTTP %d: %s",
                resp.status_code,
                truncate_text(resp.text, 300),
            )
            message = resp.text
            try:
                error = resp.json().get("error") or {}
                message = f"{error.get('status', '')} {error.get('message', '')}".strip() or message
            except (ValueError, AttributeError):
                pass
            raise AIServiceError(f"HTTP {resp.status_code}: {truncate_text(message, 300)}")

        text = extract_text(resp.json())
        if not text:
            raise AIServiceError("Empty response from Gemini API")
        return text
