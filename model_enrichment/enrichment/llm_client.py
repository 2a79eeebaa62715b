"""
LLM Client - Abstraction over the generative-AI research backends.

Providers:
- generative-primary: Gemini via google-genai (API key auth)
- generative-secondary: Perplexity chat completions via requests

Every backend performs exactly one HTTP request per complete() call with a
bounded timeout and maps provider failures onto the engine's error taxonomy:
- 429 / RESOURCE_EXHAUSTED -> RateLimited
- 401 / 403 / invalid API key -> InvalidCredentials
- 404 -> UpstreamError(retryable=False)  (model not available, try fallback)
- 5xx, timeouts, connection errors -> UpstreamError(retryable=True)
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

import requests
from google import genai
from google.genai import errors as genai_errors
from google.genai.types import GenerateContentConfig, HttpOptions

from model_enrichment import config as settings
from model_enrichment.enrichment.models import Provider
from model_enrichment.errors import InvalidCredentials, RateLimited, UpstreamError

logger = logging.getLogger(__name__)

PERPLEXITY_URL = "https://api.perplexity.ai/chat/completions"

_INVALID_KEY_MARKERS = ("API_KEY_INVALID", "API key not valid", "invalid api key", "PERMISSION_DENIED")


@dataclass
class LLMResponse:
    """Text plus token usage from one completion."""
    text: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    thinking_tokens: int = 0


def map_http_failure(status_code: Optional[int], message: str) -> Exception:
    """Translate a provider HTTP failure into an engine error."""
    lowered = message.lower()
    if status_code == 429 or "resource_exhausted" in lowered:
        return RateLimited(f"Rate limited: {message}")
    if status_code in (401, 403) or any(m.lower() in lowered for m in _INVALID_KEY_MARKERS):
        return InvalidCredentials(f"Provider rejected credentials: {message}")
    if status_code == 404:
        return UpstreamError(f"Model not available: {message}", retryable=False, status_code=404)
    if status_code is not None and 400 <= status_code < 500:
        return UpstreamError(f"Request rejected ({status_code}): {message}", retryable=False, status_code=status_code)
    return UpstreamError(f"Provider error ({status_code}): {message}", retryable=True, status_code=status_code)


class LLMClient(ABC):
    """
    Abstract research backend.

    Implementations:
    - GeminiLLMClient: generative-primary
    - PerplexityLLMClient: generative-secondary
    - MockLLMClient: tests and USE_MOCK_LLM stubs
    """

    @abstractmethod
    def complete(
        self,
        prompt: str,
        model: str,
        api_key: str,
        timeout_secs: float = settings.RESEARCH_TIMEOUT_SECS,
        max_output_tokens: int = 8192,
    ) -> LLMResponse:
        """
        Send one prompt and return the generated text.

        Raises:
            RateLimited, InvalidCredentials, UpstreamError
        """


class GeminiLLMClient(LLMClient):
    """Gemini backend using the google-genai SDK with API-key auth."""

    def __init__(self):
        self._clients: Dict[Tuple[str, int], genai.Client] = {}
        self._lock = threading.Lock()

    def _get_client(self, api_key: str, timeout_secs: float) -> genai.Client:
        timeout_ms = int(timeout_secs * 1000)
        key = (api_key, timeout_ms)
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                client = genai.Client(
                    api_key=api_key,
                    http_options=HttpOptions(timeout=timeout_ms),
                )
                self._clients[key] = client
            return client

    def complete(
        self,
        prompt: str,
        model: str,
        api_key: str,
        timeout_secs: float = settings.RESEARCH_TIMEOUT_SECS,
        max_output_tokens: int = 8192,
    ) -> LLMResponse:
        client = self._get_client(api_key, timeout_secs)
        try:
            response = client.models.generate_content(
                model=model,
                contents=prompt,
                config=GenerateContentConfig(
                    temperature=0.1,
                    top_p=0.95,
                    max_output_tokens=max_output_tokens,
                    response_mime_type="application/json",
                ),
            )
        except genai_errors.APIError as e:
            raise map_http_failure(e.code, str(e.message or e)) from e
        except Exception as e:
            # Timeouts and connection failures surface from the HTTP transport
            raise UpstreamError(f"Gemini request failed: {e}", retryable=True) from e

        text = (response.text or "").strip()
        usage = response.usage_metadata
        logger.debug("Gemini response: model=%s chars=%d", model, len(text))
        return LLMResponse(
            text=text,
            model=model,
            prompt_tokens=getattr(usage, "prompt_token_count", 0) or 0,
            completion_tokens=getattr(usage, "candidates_token_count", 0) or 0,
            thinking_tokens=getattr(usage, "thoughts_token_count", 0) or 0,
        )


class PerplexityLLMClient(LLMClient):
    """Perplexity chat-completions backend."""

    def __init__(self, url: str = PERPLEXITY_URL, session: Optional[requests.Session] = None):
        self.url = url
        self.session = session or requests.Session()

    def complete(
        self,
        prompt: str,
        model: str,
        api_key: str,
        timeout_secs: float = settings.RESEARCH_TIMEOUT_SECS,
        max_output_tokens: int = 8192,
    ) -> LLMResponse:
        body = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": 0.1,
            "max_tokens": max_output_tokens,
        }
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            resp = self.session.post(self.url, json=body, headers=headers, timeout=timeout_secs)
        except requests.RequestException as e:
            raise UpstreamError(f"Perplexity request failed: {e}", retryable=True) from e

        if resp.status_code >= 400:
            raise map_http_failure(resp.status_code, resp.text[:500])

        try:
            data = resp.json()
            text = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise UpstreamError(f"Unexpected Perplexity response shape: {e}", retryable=True) from e

        usage = data.get("usage") or {}
        return LLMResponse(
            text=(text or "").strip(),
            model=model,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
        )


MockReply = Union[str, Exception]


class MockLLMClient(LLMClient):
    """
    Mock LLM client for tests and dry-run stubs.

    Replies are scripted by a marker string found in the prompt (the
    research prompt always contains the entity id). A reply may be a
    string, an exception instance to raise, or a list consumed one per call.
    """

    def __init__(
        self,
        replies: Optional[Dict[str, Union[MockReply, List[MockReply]]]] = None,
        default_reply: Optional[MockReply] = None,
        prompt_tokens: int = 1000,
        completion_tokens: int = 1000,
    ):
        self.replies = {k: (list(v) if isinstance(v, list) else v) for k, v in (replies or {}).items()}
        self.default_reply = default_reply if default_reply is not None else json.dumps({"ok": True})
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.calls: List[Dict[str, Any]] = []
        self.last_prompt: Optional[str] = None

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def _next_reply(self, prompt: str) -> MockReply:
        for marker, reply in self.replies.items():
            if marker in prompt:
                if isinstance(reply, list):
                    return reply.pop(0) if len(reply) > 1 else reply[0]
                return reply
        return self.default_reply

    def complete(
        self,
        prompt: str,
        model: str,
        api_key: str,
        timeout_secs: float = settings.RESEARCH_TIMEOUT_SECS,
        max_output_tokens: int = 8192,
    ) -> LLMResponse:
        self.calls.append({"model": model, "prompt": prompt})
        self.last_prompt = prompt
        reply = self._next_reply(prompt)
        if isinstance(reply, Exception):
            raise reply
        return LLMResponse(
            text=reply,
            model=model,
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
        )


def get_llm_client(provider: Provider, use_mock: bool = False) -> LLMClient:
    """
    Factory for the backend serving a provider.

    Args:
        provider: Provider selector from the run config
        use_mock: If True (or USE_MOCK_LLM=true), return MockLLMClient
    """
    if use_mock or settings.USE_MOCK_LLM:
        logger.info("Using MockLLMClient")
        return MockLLMClient()
    if provider == Provider.SECONDARY:
        logger.info("Using PerplexityLLMClient")
        return PerplexityLLMClient()
    logger.info("Using GeminiLLMClient")
    return GeminiLLMClient()


__all__ = [
    "LLMResponse",
    "LLMClient",
    "GeminiLLMClient",
    "PerplexityLLMClient",
    "MockLLMClient",
    "get_llm_client",
    "map_http_failure",
]
