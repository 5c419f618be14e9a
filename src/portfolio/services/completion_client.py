from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional, Protocol, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..domain.errors import UpstreamConfigError, UpstreamError
from ..observability.metrics import COMPLETION_LATENCY

LOG = logging.getLogger("portfolio.llm")

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.5-flash"

# Fixed per deployment; callers cannot tune these per request.
GENERATION_CONFIG: Dict[str, Any] = {
    "temperature": 0.7,
    "topK": 40,
    "topP": 0.95,
    "maxOutputTokens": 1024,
}

FALLBACK_COMPLETION = "عذراً، لم أتمكن من معالجة طلبك."


class CompletionClient(Protocol):
    def complete(self, prompt: str) -> str: ...


def _env_timeout() -> Tuple[int, int]:
    def _read(name: str, default: int) -> int:
        raw = os.getenv(name)
        try:
            value = int(raw) if raw else default
        except ValueError:
            return default
        return value if value > 0 else default

    return _read("PORTFOLIO_LLM_CONNECT_TIMEOUT", 3), _read("PORTFOLIO_LLM_READ_TIMEOUT", 60)


def _build_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["POST"]),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def extract_text(data: Any) -> str:
    """Return the first candidate's first text part, or the fallback string."""
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return FALLBACK_COMPLETION
    if not isinstance(text, str) or not text:
        return FALLBACK_COMPLETION
    return text


class GeminiCompletionClient:
    """``generateContent`` adapter for the Gemini API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[Tuple[int, int]] = None,
    ) -> None:
        self._api_key = api_key
        self.model = model or os.getenv("GEMINI_MODEL") or DEFAULT_MODEL
        self.base_url = (base_url or os.getenv("GEMINI_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self._session = session or _build_session()
        self._timeout = timeout or _env_timeout()

    def _credential(self) -> str:
        # Read at call time: a key added to the environment later is picked up.
        api_key = self._api_key or os.getenv("GEMINI_API_KEY")
        if not api_key:
            raise UpstreamConfigError("Gemini API key not configured (GEMINI_API_KEY)")
        return api_key

    def build_payload(self, prompt: str) -> Dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": dict(GENERATION_CONFIG),
        }

    def complete(self, prompt: str) -> str:
        api_key = self._credential()
        url = f"{self.base_url}/models/{self.model}:generateContent"
        LOG.debug("llm_request model=%s prompt_chars=%d", self.model, len(prompt))
        start = time.perf_counter()
        try:
            resp = self._session.post(
                url,
                json=self.build_payload(prompt),
                headers={"Content-Type": "application/json", "x-goog-api-key": api_key},
                timeout=self._timeout,
            )
        except requests.exceptions.Timeout as exc:
            LOG.warning("llm_timeout model=%s: %s", self.model, exc)
            raise UpstreamError(f"Gemini API timeout: {exc}") from exc
        except requests.exceptions.RequestException as exc:
            LOG.warning("llm_transport_error model=%s: %s", self.model, exc)
            raise UpstreamError(f"Gemini API request failed: {exc}") from exc
        finally:
            COMPLETION_LATENCY.observe(time.perf_counter() - start)

        if not resp.ok:
            body = resp.text
            LOG.error("llm_upstream_error model=%s status=%s body=%s", self.model, resp.status_code, body[:2000])
            raise UpstreamError(
                f"Gemini API error: {resp.status_code} {resp.reason or ''} {body}".strip(),
                status_code=resp.status_code,
                body=body,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamError(
                "Gemini API returned an unreadable body",
                status_code=resp.status_code,
                body=resp.text,
            ) from exc
        return extract_text(data)


_client: CompletionClient | None = None


def get_completion_client() -> CompletionClient:
    global _client
    if _client is None:
        _client = GeminiCompletionClient()
    return _client
