"""Tests for the TextGenerationClient chat completions integration."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from resource_updates.integrations.models.client import (
    RateLimitError,
    TextGenerationClient,
    TextGenerationError,
)


def _ok_response(content: str = '{"description": "x"}') -> MagicMock:
    response = MagicMock()
    response.raise_for_status = MagicMock()
    response.json.return_value = {
        "id": "chatcmpl-1",
        "model": "gpt-4o-mini",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 12, "completion_tokens": 5, "total_tokens": 17},
    }
    return response


def _rate_limited(headers: dict | None = None) -> MagicMock:
    error_response = MagicMock()
    error_response.status_code = 429
    error_response.headers = headers or {}
    error_response.json.return_value = {"message": "Too many requests"}
    response = MagicMock()
    response.raise_for_status.side_effect = requests.HTTPError("429", response=error_response)
    return response


def test_client_requires_api_key():
    """TextGenerationClient raises if no key is available."""
    with patch.dict("os.environ", {}, clear=True):
        with pytest.raises(TextGenerationError, match="API key required"):
            TextGenerationClient()


def test_client_prefers_models_api_key():
    """MODELS_API_KEY wins over the GitHub token variables."""
    env = {"MODELS_API_KEY": "models", "GITHUB_TOKEN": "github"}
    with patch.dict("os.environ", env, clear=True):
        assert TextGenerationClient().api_key == "models"


def test_client_falls_back_to_github_token():
    with patch.dict("os.environ", {"GITHUB_TOKEN": "github"}, clear=True):
        assert TextGenerationClient().api_key == "github"


def test_client_defaults():
    """Defaults suit short, grounded catalog copy."""
    client = TextGenerationClient(api_key="test")
    assert client.model == "gpt-4o-mini"
    assert client.temperature == 0.2
    assert client.timeout == 60


def test_generate_sends_system_and_user_messages():
    """generate() posts both prompts and returns the first choice's text."""
    with patch("requests.post", return_value=_ok_response("Hello")) as mock_post:
        client = TextGenerationClient(api_key="test")
        completion = client.generate("system text", "user text")

    assert completion.text == "Hello"
    assert completion.model == "gpt-4o-mini"
    assert completion.usage is not None and completion.usage.total_tokens == 17

    payload = mock_post.call_args.kwargs["json"]
    assert payload["messages"] == [
        {"role": "system", "content": "system text"},
        {"role": "user", "content": "user text"},
    ]
    assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer test"
    assert mock_post.call_args.args[0].endswith("/chat/completions")


def test_generate_rejects_empty_reply():
    """A reply without text content is an error."""
    with patch("requests.post", return_value=_ok_response("   ")):
        client = TextGenerationClient(api_key="test")
        with pytest.raises(TextGenerationError, match="no text content"):
            client.generate("s", "u")


def test_generate_retries_after_rate_limit():
    """A 429 is retried after the Retry-After delay."""
    sleeps: list[float] = []
    responses = [_rate_limited({"Retry-After": "3"}), _ok_response("Recovered")]

    with patch("requests.post", side_effect=responses) as mock_post:
        client = TextGenerationClient(api_key="test", sleep=sleeps.append)
        completion = client.generate("s", "u")

    assert completion.text == "Recovered"
    assert mock_post.call_count == 2
    assert sleeps == [3.0]


def test_generate_raises_after_retries_exhausted():
    """RateLimitError surfaces once every retry hit a 429."""
    sleeps: list[float] = []
    with patch("requests.post", side_effect=[_rate_limited(), _rate_limited(), _rate_limited()]):
        client = TextGenerationClient(api_key="test", max_retries=2, initial_backoff=1.0, sleep=sleeps.append)
        with pytest.raises(RateLimitError):
            client.generate("s", "u")

    # Exponential backoff between attempts
    assert sleeps == [1.0, 2.0]


def test_generate_does_not_retry_other_errors():
    """Non-429 HTTP errors fail immediately."""
    error_response = MagicMock()
    error_response.status_code = 500
    error_response.json.return_value = {"error": "boom"}
    response = MagicMock()
    response.raise_for_status.side_effect = requests.HTTPError("500", response=error_response)

    with patch("requests.post", return_value=response) as mock_post:
        client = TextGenerationClient(api_key="test", sleep=lambda _: None)
        with pytest.raises(TextGenerationError, match="boom"):
            client.generate("s", "u")
    assert mock_post.call_count == 1
