"""HTTP clients for the AI backends (OpenAI, Grok, Claude)."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from ..config import ANTHROPIC_BASE_URL, GROK_BASE_URL, OPENAI_BASE_URL, Config
from ..errors import (
    ERR_AUTH,
    ERR_INVALID_RESPONSE,
    ERR_QUOTA,
    ERR_RATE_LIMITED,
    ERR_TIMEOUT,
    ERR_TRANSPORT,
    AIBackendError,
    truncate_body,
)

logger = logging.getLogger(__name__)

PROBE_SYSTEM = "You are a health check."
PROBE_USER = "Reply with OK"
PROBE_MAX_TOKENS = 5

ANTHROPIC_VERSION = "2023-06-01"

# Phrases in 4xx bodies that mean the account is out of credit, not throttled
QUOTA_MARKERS = ("insufficient_quota", "exceeded your current quota", "credit balance", "billing")


class AIBackend(ABC):
    """
    Base class for a chat-completion backend.

    Subclasses build the request and pull the text out of the response; the
    base class maps transport and HTTP failures onto AIBackendError tags.
    """

    name = "ai"

    def __init__(self, api_key: str, model: str, http_client: httpx.AsyncClient, base_url: str):
        self.api_key = api_key
        self.model = model
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")

    @abstractmethod
    def _endpoint(self) -> str:
        ...

    @abstractmethod
    def _headers(self) -> Dict[str, str]:
        ...

    @abstractmethod
    def _payload(self, system: str, user: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
        ...

    @abstractmethod
    def _extract_text(self, payload: Any) -> Optional[str]:
        ...

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status == 200:
            return

        body = truncate_body(response.text)
        lowered = body.lower()
        if status == 429:
            tag = ERR_QUOTA if any(m in lowered for m in QUOTA_MARKERS) else ERR_RATE_LIMITED
        elif status in (401, 403):
            tag = ERR_AUTH
        elif status in (400, 402) and any(m in lowered for m in QUOTA_MARKERS):
            tag = ERR_QUOTA
        elif status >= 500:
            tag = ERR_TRANSPORT
        else:
            tag = ERR_INVALID_RESPONSE
        logger.warning("[%s] HTTP %d (%s): %s", self.name, status, tag, body)
        raise AIBackendError(self.name, tag, body, status)

    async def complete(
        self,
        system: str,
        user: str,
        max_tokens: int = 3000,
        temperature: float = 0.3,
        timeout: float = 120.0,
    ) -> str:
        """
        Send one chat completion and return the text content.

        Raises:
            AIBackendError: tagged with the failure class
        """
        try:
            response = await self.http_client.post(
                self._endpoint(),
                headers=self._headers(),
                json=self._payload(system, user, max_tokens, temperature),
                timeout=timeout,
            )
        except httpx.TimeoutException as exc:
            raise AIBackendError(self.name, ERR_TIMEOUT, f"no response within {timeout:.0f}s") from exc
        except httpx.HTTPError as exc:
            raise AIBackendError(self.name, ERR_TRANSPORT, type(exc).__name__) from exc

        self._raise_for_status(response)

        try:
            payload = response.json()
        except ValueError as exc:
            raise AIBackendError(self.name, ERR_INVALID_RESPONSE, "body is not JSON", 200) from exc

        text = self._extract_text(payload)
        if not text or not text.strip():
            raise AIBackendError(self.name, ERR_INVALID_RESPONSE, "empty completion", 200)
        return text

    async def probe(self, timeout: float = 10.0) -> None:
        """Minimal completion proving the key works and the backend answers."""
        await self.complete(PROBE_SYSTEM, PROBE_USER, max_tokens=PROBE_MAX_TOKENS, temperature=0.0, timeout=timeout)


class OpenAICompatibleBackend(AIBackend):
    """``/chat/completions`` API shared by OpenAI and xAI Grok."""

    def __init__(self, name: str, api_key: str, model: str, http_client: httpx.AsyncClient, base_url: str):
        super().__init__(api_key, model, http_client, base_url)
        self.name = name

    def _endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _payload(self, system: str, user: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

    def _extract_text(self, payload: Any) -> Optional[str]:
        try:
            return payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return None


class ClaudeBackend(AIBackend):
    """Anthropic Messages API."""

    name = "claude"

    def _endpoint(self) -> str:
        return f"{self.base_url}/messages"

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def _payload(self, system: str, user: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system,
            "messages": [{"role": "user", "content": user}],
        }

    def _extract_text(self, payload: Any) -> Optional[str]:
        try:
            blocks = payload["content"]
        except (KeyError, TypeError):
            return None
        texts = [b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type", "text") == "text"]
        return "".join(texts) or None


def build_backends(config: Config, http_client: httpx.AsyncClient) -> List[AIBackend]:
    """
    Backends in configured order, keeping only those with a credential.

    Unknown names in AI_BACKEND_ORDER are skipped with a warning.
    """
    available: Dict[str, Optional[AIBackend]] = {
        "openai": OpenAICompatibleBackend("openai", config.openai_api_key, config.openai_model, http_client, OPENAI_BASE_URL)
        if config.openai_api_key
        else None,
        "grok": OpenAICompatibleBackend("grok", config.grok_api_key, config.grok_model, http_client, GROK_BASE_URL)
        if config.grok_api_key
        else None,
        "claude": ClaudeBackend(config.anthropic_api_key, config.claude_model, http_client, ANTHROPIC_BASE_URL)
        if config.anthropic_api_key
        else None,
    }

    chain: List[AIBackend] = []
    for name in config.ai_backend_order:
        if name not in available:
            logger.warning("Unknown AI backend %r in AI_BACKEND_ORDER, skipping", name)
            continue
        backend = available[name]
        if backend is not None and backend not in chain:
            chain.append(backend)
    logger.info("AI backend chain: %s", [b.name for b in chain] or "none")
    return chain
