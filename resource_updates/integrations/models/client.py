"""Client for an OpenAI-compatible chat completions endpoint (GitHub Models)."""

from __future__ import annotations

import json
import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Any, Callable

import requests

from resource_updates.errors import UpdatePipelineError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Usage:
    """Token usage information."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass(frozen=True)
class Completion:
    """Text returned by one completion call."""

    text: str
    model: str
    finish_reason: str | None = None
    usage: Usage | None = None


class TextGenerationError(UpdatePipelineError):
    """Error communicating with the text-generation API."""


class RateLimitError(TextGenerationError):
    """Rate limit exceeded - request can be retried after delay."""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class TextGenerationClient:
    """Client for the GitHub Models chat completions API.

    Only plain system + user prompts are sent; the reply is the first
    choice's message content.
    """

    DEFAULT_API_URL = "https://models.inference.ai.azure.com"
    DEFAULT_MODEL = "gpt-4o-mini"
    DEFAULT_MAX_OUTPUT_TOKENS = 2000
    # Low temperature keeps suggested descriptions close to the sources
    DEFAULT_TEMPERATURE = 0.2

    DEFAULT_MAX_RETRIES = 5
    DEFAULT_INITIAL_BACKOFF = 2.0  # seconds
    DEFAULT_MAX_BACKOFF = 120.0
    DEFAULT_BACKOFF_MULTIPLIER = 2.0

    def __init__(
        self,
        *,
        api_key: str | None = None,
        api_url: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        timeout: int = 60,
        max_retries: int | None = None,
        initial_backoff: float | None = None,
        max_backoff: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the client.

        Args:
            api_key: Token with Models API access. Defaults to MODELS_API_KEY,
                then GH_TOKEN / GITHUB_TOKEN.
            api_url: Base URL for the API.
            model: Default model to use.
            max_tokens: Default maximum tokens for completions.
            temperature: Default sampling temperature (0.0-1.0).
            timeout: Request timeout in seconds.
            max_retries: Retry attempts after a 429 response.
            initial_backoff: First backoff delay in seconds.
            max_backoff: Cap on any single backoff delay.
            sleep: Sleep function, replaceable in tests.
        """
        self.api_key = (
            api_key
            or os.environ.get("MODELS_API_KEY")
            or os.environ.get("GH_TOKEN")
            or os.environ.get("GITHUB_TOKEN")
        )
        if not self.api_key:
            raise TextGenerationError(
                "API key required. Set MODELS_API_KEY (or GH_TOKEN/GITHUB_TOKEN) "
                "or pass api_key parameter."
            )

        self.api_url = (api_url or self.DEFAULT_API_URL).rstrip("/")
        self.model = model or self.DEFAULT_MODEL
        self.max_tokens = max_tokens or self.DEFAULT_MAX_OUTPUT_TOKENS
        self.temperature = self.DEFAULT_TEMPERATURE if temperature is None else temperature
        self.timeout = timeout

        self.max_retries = max_retries if max_retries is not None else self.DEFAULT_MAX_RETRIES
        self.initial_backoff = initial_backoff or self.DEFAULT_INITIAL_BACKOFF
        self.max_backoff = max_backoff or self.DEFAULT_MAX_BACKOFF
        self._sleep = sleep

    def generate(
        self,
        system: str,
        user: str,
        *,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        """Send one system + user prompt pair and return the reply text.

        Raises:
            RateLimitError: If retries are exhausted on 429 responses.
            TextGenerationError: For any other failure, including an empty reply.
        """
        payload: dict[str, Any] = {
            "model": model or self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        data = self._request_with_retry(f"{self.api_url}/chat/completions", payload, headers)
        return self._parse_response(data, payload["model"])

    def _request_with_retry(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str],
    ) -> dict[str, Any]:
        backoff = self.initial_backoff

        for attempt in range(self.max_retries + 1):
            try:
                response = requests.post(url, json=payload, headers=headers, timeout=self.timeout)
                response.raise_for_status()
            except requests.RequestException as exc:
                response = getattr(exc, "response", None)
                if response is not None and response.status_code == 429:
                    retry_after = self._parse_retry_after(response)
                    wait_time = min(retry_after or backoff, self.max_backoff)
                    if attempt < self.max_retries:
                        logger.warning(
                            "Rate limit hit (attempt %d/%d). Waiting %.1f seconds before retry.",
                            attempt + 1,
                            self.max_retries + 1,
                            wait_time,
                        )
                        self._sleep(wait_time)
                        backoff = min(backoff * self.DEFAULT_BACKOFF_MULTIPLIER, self.max_backoff)
                        continue
                    raise RateLimitError(
                        f"Rate limit exceeded after {self.max_retries + 1} attempts: "
                        f"{self._build_error_message(exc)}",
                        retry_after=retry_after,
                    ) from exc
                raise TextGenerationError(self._build_error_message(exc)) from exc

            try:
                return response.json()
            except json.JSONDecodeError as exc:
                raise TextGenerationError(f"Invalid JSON response: {exc}") from exc

        raise TextGenerationError("Request failed unexpectedly")

    def _parse_retry_after(self, response: requests.Response) -> float | None:
        """Seconds to wait from the Retry-After header or a "wait N seconds" body."""
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                return None
        try:
            data = response.json()
        except ValueError:
            return None
        message = str(data.get("message", "") or data.get("details", ""))
        match = re.search(r"wait\s+(\d+)\s*second", message, re.IGNORECASE)
        return float(match.group(1)) if match else None

    def _build_error_message(self, exc: requests.RequestException) -> str:
        error_msg = f"Models API request failed: {exc}"
        response = getattr(exc, "response", None)
        if response is not None:
            try:
                error_data = response.json()
            except ValueError:
                return error_msg
            if isinstance(error_data, dict) and "error" in error_data:
                error_msg = f"{error_msg} - {error_data['error']}"
        return error_msg

    def _parse_response(self, data: dict[str, Any], requested_model: str) -> Completion:
        choices = data.get("choices") or []
        if not choices:
            raise TextGenerationError("Response contained no choices")
        first = choices[0]
        text = ((first.get("message") or {}).get("content") or "").strip()
        if not text:
            raise TextGenerationError("Response contained no text content")

        usage = None
        if "usage" in data:
            usage = Usage(
                prompt_tokens=data["usage"].get("prompt_tokens", 0),
                completion_tokens=data["usage"].get("completion_tokens", 0),
                total_tokens=data["usage"].get("total_tokens", 0),
            )
        return Completion(
            text=text,
            model=data.get("model") or requested_model,
            finish_reason=first.get("finish_reason"),
            usage=usage,
        )
