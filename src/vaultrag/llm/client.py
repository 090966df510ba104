"""Minimal OpenAI-compatible HTTP client shared by the remote providers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterator

import requests

from vaultrag.errors import (
    ProviderAPIKeyInvalidError,
    ProviderAPIKeyNotSetError,
    ProviderBaseUrlNotSetError,
    ProviderError,
    ProviderRateLimitError,
)

LOGGER = logging.getLogger(__name__)

API_KEY_ENV = "VAULTRAG_API_KEY"
BASE_URL_ENV = "VAULTRAG_BASE_URL"


@dataclass
class ProviderConfig:
    provider_id: str = "openai"
    base_url: str | None = None
    api_key: str | None = None
    timeout: int = 60

    @classmethod
    def from_env(cls, provider_id: str = "openai") -> "ProviderConfig":
        return cls(
            provider_id=provider_id,
            base_url=os.getenv(BASE_URL_ENV, "https://api.openai.com/v1"),
            api_key=os.getenv(API_KEY_ENV),
        )


class OpenAICompatibleClient:
    """Posts JSON to an OpenAI-style API and maps failures onto provider errors."""

    def __init__(self, config: ProviderConfig, session: requests.Session | None = None) -> None:
        if not config.api_key:
            raise ProviderAPIKeyNotSetError(
                f"{config.provider_id} API key is missing. Please set it in settings."
            )
        if not config.base_url:
            raise ProviderBaseUrlNotSetError(
                f"{config.provider_id} base URL is missing. Please set it in settings."
            )
        self.config = config
        self.session = session or requests.Session()
        self.headers = {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        }

    def _url(self, endpoint: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{endpoint.lstrip('/')}"

    def _check(self, response: requests.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        detail = response.text[:500]
        name = self.config.provider_id
        if status in (401, 403):
            raise ProviderAPIKeyInvalidError(
                f"{name} API key is invalid. Please update it in settings.", status=status
            )
        if status == 429:
            raise ProviderRateLimitError(
                f"{name} API rate limit exceeded. Please try again later.", status=status
            )
        raise ProviderError(f"{name} request failed with HTTP {status}: {detail}", status=status)

    def post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.session.post(
                self._url(endpoint), headers=self.headers, json=payload, timeout=self.config.timeout
            )
        except requests.RequestException as exc:
            raise ProviderError(f"{self.config.provider_id} request failed: {exc}", raw_error=exc) from exc
        self._check(response)
        return response.json()

    def stream(self, endpoint: str, payload: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        """Yield decoded server-sent events until ``[DONE]``."""
        try:
            response = self.session.post(
                self._url(endpoint),
                headers=self.headers,
                json={**payload, "stream": True},
                timeout=self.config.timeout,
                stream=True,
            )
        except requests.RequestException as exc:
            raise ProviderError(f"{self.config.provider_id} request failed: {exc}", raw_error=exc) from exc
        self._check(response)
        with response:
            for line in response.iter_lines(decode_unicode=True):
                if not line or not line.startswith("data:"):
                    continue
                data = line[len("data:") :].strip()
                if data == "[DONE]":
                    return
                try:
                    yield json.loads(data)
                except json.JSONDecodeError:
                    LOGGER.warning("Skipping malformed stream event: %s", data[:120])
