"""Thin client for the Gemini ``generateContent`` REST endpoint.

One POST per prompt. There is no retry, backoff or streaming: callers decide
per call whether a :class:`GatewayError` is fatal.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

from medisync import config
from medisync.utils.exceptions import GatewayError

logger = logging.getLogger("medisync")


@dataclass(frozen=True)
class GenerationOptions:
    temperature: float = 0.7
    max_output_tokens: int = 2048
    top_k: int = 40
    top_p: float = 0.95

    def to_payload(self) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "topK": self.top_k,
            "topP": self.top_p,
            "maxOutputTokens": self.max_output_tokens,
        }


CLASSIFICATION_OPTIONS = GenerationOptions(temperature=0.3, max_output_tokens=500)
EXTRACTION_OPTIONS = GenerationOptions(temperature=0.7, max_output_tokens=2048)
SUMMARY_OPTIONS = GenerationOptions(temperature=0.4, max_output_tokens=1500)


class ModelGateway(Protocol):
    async def generate(self, prompt: str, options: GenerationOptions) -> str: ...


def build_request_body(prompt: str, options: GenerationOptions) -> Dict[str, Any]:
    return {
        "contents": [{"parts": [{"text": prompt}]}],
        "generationConfig": options.to_payload(),
    }


def extract_text(data: Any) -> str:
    """Return ``candidates[0].content.parts[0].text`` or raise GatewayError."""
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        raise GatewayError("Gemini response has no completion text")
    if not isinstance(text, str) or not text.strip():
        raise GatewayError("Gemini response has no completion text")
    return text


class GeminiGateway:
    """Send a prompt to Gemini and return the raw completion text."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = (config.GEMINI_API_KEY if api_key is None else api_key).strip()
        self.model = model or config.GEMINI_MODEL
        self.base_url = (base_url or config.GEMINI_API_BASE).rstrip("/")
        self.timeout_s = timeout_s if timeout_s is not None else config.GEMINI_TIMEOUT_S
        self._transport = transport

    @property
    def url(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        if not self.api_key:
            raise GatewayError("GEMINI_API_KEY is not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                r = await client.post(
                    self.url,
                    params={"key": self.api_key},
                    headers={"Content-Type": "application/json"},
                    json=build_request_body(prompt, options),
                )
        except httpx.HTTPError as e:
            logger.warning({"function": "gemini_generate", "status": "transport_error", "error": type(e).__name__})
            raise GatewayError(f"Gemini request failed: {type(e).__name__}") from e

        if not r.is_success:
            logger.warning({"function": "gemini_generate", "status": "http_error", "http_status": r.status_code})
            raise GatewayError(f"Gemini API error: {r.status_code}", status_code=r.status_code)

        try:
            data = r.json()
        except ValueError as e:
            raise GatewayError("Gemini returned a non-JSON body", status_code=r.status_code) from e

        text = extract_text(data)
        logger.info({
            "function": "gemini_generate",
            "status": "ok",
            "model": self.model,
            "prompt_chars": len(prompt),
            "completion_chars": len(text),
        })
        return text


__all__ = [
    "GenerationOptions",
    "ModelGateway",
    "GeminiGateway",
    "GatewayError",
    "CLASSIFICATION_OPTIONS",
    "EXTRACTION_OPTIONS",
    "SUMMARY_OPTIONS",
    "build_request_body",
    "extract_text",
]
