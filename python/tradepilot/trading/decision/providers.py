"""HTTP clients for the reasoning services in the fallback chain.

Two wire formats are supported:

- OpenAI-compatible ``/chat/completions`` endpoints (CLIProxyAPI, Gemini's
  OpenAI surface, OpenRouter, ...)
- RapidAPI ChatGPT proxies that accept a bare list of messages and answer
  with plain text
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from ...utils.ts import get_current_timestamp_ms
from ..errors import ProviderError, ProviderTimeoutError
from ..models import ProviderConfig, ProviderKind
from .interfaces import BaseReasoningProvider

DEFAULT_RAPIDAPI_HOST = "chatgpt-api8.p.rapidapi.com"


def _build_messages(prompt: str, system_prompt: Optional[str]) -> List[Dict[str, str]]:
    messages: List[Dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})
    return messages


class _HttpProvider(BaseReasoningProvider):
    """Shared client handling for HTTP-backed providers."""

    def __init__(
        self,
        config: ProviderConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self.name = config.name
        # Tests inject httpx.MockTransport here
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.config.timeout_seconds, transport=self._transport
        )

    async def _post(self, url: str, headers: Dict[str, str], payload: Any) -> httpx.Response:
        started = get_current_timestamp_ms()
        try:
            async with self._client() as client:
                resp = await client.post(url, headers=headers, json=payload)
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(
                self.name,
                f"request timeout after {self.config.timeout_seconds:g} seconds",
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, f"request failed: {exc}") from exc

        logger.debug(
            "{} answered with HTTP {} in {} ms",
            self.name,
            resp.status_code,
            get_current_timestamp_ms() - started,
        )
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                self.name,
                f"API error ({resp.status_code}): {resp.text}",
                status_code=resp.status_code,
            ) from exc
        return resp


class OpenAICompatibleProvider(_HttpProvider):
    """POSTs to ``{base_url}/chat/completions`` with Bearer auth."""

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/chat/completions"

    def build_payload(self, prompt: str, system_prompt: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.config.model,
            "messages": _build_messages(prompt, system_prompt),
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        if self.config.json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    async def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }
        resp = await self._post(
            self.endpoint, headers, self.build_payload(prompt, system_prompt)
        )
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderError(self.name, f"Non-JSON response: {resp.text[:200]}") from exc

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices or not isinstance(choices[0], dict) or not choices[0].get("message"):
            raise ProviderError(self.name, f"Invalid response structure from {self.name}")

        choice = choices[0]
        if choice.get("finish_reason") == "length":
            raise ProviderError(self.name, "Response truncated - hit token limit")

        message = choice["message"]
        # Reasoning models sometimes leave content empty and answer in `reasoning`
        content = message.get("content") or message.get("reasoning") or ""
        if not content.strip() or "{" not in content:
            raise ProviderError(self.name, "Model output only reasoning, no JSON content")
        return content


class RapidApiProvider(_HttpProvider):
    """RapidAPI ChatGPT proxy: body is the message list, reply is text."""

    async def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        headers = {
            "Content-Type": "application/json",
            "x-rapidapi-key": self.config.api_key or "",
            "x-rapidapi-host": self.config.rapidapi_host or DEFAULT_RAPIDAPI_HOST,
        }
        resp = await self._post(
            self.config.base_url, headers, _build_messages(prompt, system_prompt)
        )
        text = resp.text
        if not text.strip():
            raise ProviderError(self.name, "Empty response body")
        return text


def create_provider(
    config: ProviderConfig, transport: Optional[httpx.AsyncBaseTransport] = None
) -> BaseReasoningProvider:
    if config.kind == ProviderKind.RAPIDAPI:
        return RapidApiProvider(config, transport=transport)
    return OpenAICompatibleProvider(config, transport=transport)


def create_providers(
    configs: List[ProviderConfig],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[BaseReasoningProvider]:
    """Build providers in priority order, skipping entries without credentials."""
    providers: List[BaseReasoningProvider] = []
    for cfg in configs:
        if not cfg.has_credentials:
            logger.info("Skipping reasoning provider {} (no API key)", cfg.name)
            continue
        providers.append(create_provider(cfg, transport=transport))
    return providers
