"""
Gemini REST client for turn replies

One generateContent POST per turn. Any transport error, non-200 status, timeout or
empty candidate list is raised as GenerationError; callers own the fallback.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from jerry_voice.core.config import Config, config as default_config


class GenerationError(Exception):
    """The remote text-generation call produced no usable reply"""


@dataclass
class GeminiReply:
    text: str
    function_calls: List[Dict[str, Any]] = field(default_factory=list)


class GeminiClient:
    def __init__(self, cfg: Config = None, http_client: Optional[httpx.AsyncClient] = None):
        self.config = cfg or default_config
        self._client = http_client or httpx.AsyncClient(timeout=self.config.gemini_timeout)
        self._owns_client = http_client is None

    def build_payload(self, prompt: str, tools: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.config.gemini_temperature,
                "maxOutputTokens": self.config.gemini_max_tokens,
                "topP": self.config.gemini_top_p,
                "topK": self.config.gemini_top_k,
            },
        }
        if tools:
            payload["tools"] = [{"function_declarations": tools}]
        return payload

    async def generate(self, prompt: str, tools: Optional[List[Dict[str, Any]]] = None) -> GeminiReply:
        if not self.config.google_api_key:
            raise GenerationError("GOOGLE_API_KEY not configured")

        t0 = time.time()
        try:
            response = await self._client.post(
                self.config.gemini_generate_url,
                params={"key": self.config.google_api_key},
                json=self.build_payload(prompt, tools),
                timeout=self.config.gemini_timeout,
            )
        except httpx.TimeoutException as e:
            raise GenerationError(f"Gemini request timed out after {self.config.gemini_timeout}s") from e
        except httpx.HTTPError as e:
            raise GenerationError(f"Gemini transport error: {type(e).__name__}: {e}") from e

        api_ms = (time.time() - t0) * 1000
        if response.status_code != 200:
            raise GenerationError(f"Gemini API error: {response.status_code} {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise GenerationError("Gemini returned a non-JSON body") from e

        candidates = data.get("candidates") or []
        if not candidates:
            raise GenerationError("No response generated from Gemini")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        function_calls = [p["functionCall"] for p in parts if isinstance(p, dict) and p.get("functionCall")]
        if not text.strip() and not function_calls:
            raise GenerationError("Gemini returned an empty candidate")

        logger.debug(f"Gemini reply in {api_ms:.0f}ms ({len(text)} chars, {len(function_calls)} function calls)")
        return GeminiReply(text=text, function_calls=function_calls)

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()
