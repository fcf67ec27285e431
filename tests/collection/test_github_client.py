"""Tests for repository URL parsing and the GitHub REST client."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from resource_updates.collection.github import (
    API_VERSION,
    RepositoryClient,
    RepositoryMetadata,
    parse_github_url,
)
from resource_updates.errors import CollectorError

REPO_PAYLOAD = {
    "stargazers_count": 150,
    "forks_count": 12,
    "open_issues_count": 3,
    "pushed_at": "2024-05-30T18:22:01Z",
    "language": "Python",
    "license": {"spdx_id": "MIT"},
    "topics": ["agents", "sdk"],
    "description": "Build agents with Acme",
    "homepage": "https://acme.dev",
}


def _response(status: int = 200, payload=None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload
    response.text = text
    return response


class TestParseGithubUrl:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://github.com/acme/sdk", ("acme", "sdk")),
            ("https://www.github.com/acme/sdk/tree/main/docs", ("acme", "sdk")),
            ("https://github.com/acme/sdk.git", ("acme", "sdk")),
            ("http://github.com/Acme/SDK/", ("Acme", "SDK")),
        ],
    )
    def test_repository_urls(self, url, expected):
        assert parse_github_url(url) == expected

    @pytest.mark.parametrize(
        "url",
        [
            None,
            "",
            "https://acme.dev/sdk",
            "https://github.com/acme",
            "https://github.com/features/copilot",
            "https://gist.github.com/acme/abc",
        ],
    )
    def test_non_repository_urls(self, url):
        assert parse_github_url(url) is None


class TestRepositoryMetadata:
    def test_from_payload_and_facts(self):
        metadata = RepositoryMetadata.from_api_payload("acme", "sdk", REPO_PAYLOAD)
        assert metadata.to_facts() == {
            "github_stars": 150,
            "github_forks": 12,
            "github_open_issues": 3,
            "github_last_pushed_at": "2024-05-30",
            "github_language": "Python",
            "github_license": "MIT",
        }
        assert metadata.topics == ("agents", "sdk")

    def test_unknown_license_omitted(self):
        payload = dict(REPO_PAYLOAD, license={"spdx_id": "NOASSERTION"}, language=None)
        facts = RepositoryMetadata.from_api_payload("acme", "sdk", payload).to_facts()
        assert "github_license" not in facts
        assert "github_language" not in facts

    def test_describe_mentions_topics(self):
        text = RepositoryMetadata.from_api_payload("acme", "sdk", REPO_PAYLOAD).describe()
        assert "acme/sdk" in text
        assert "Topics: agents, sdk" in text


class TestRepositoryClient:
    def test_fetch_metadata(self):
        session = MagicMock()
        session.get.return_value = _response(payload=REPO_PAYLOAD)
        client = RepositoryClient(token="tkn", session=session)

        metadata = client.fetch_metadata("acme", "sdk")

        assert metadata.stars == 150
        url = session.get.call_args.args[0]
        headers = session.get.call_args.kwargs["headers"]
        assert url == "https://api.github.com/repos/acme/sdk"
        assert headers["Authorization"] == "Bearer tkn"
        assert headers["X-GitHub-Api-Version"] == API_VERSION

    def test_anonymous_access(self, monkeypatch):
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("GH_TOKEN", raising=False)
        session = MagicMock()
        session.get.return_value = _response(payload=REPO_PAYLOAD)

        RepositoryClient(session=session).fetch_metadata("acme", "sdk")

        assert "Authorization" not in session.get.call_args.kwargs["headers"]

    def test_fetch_readme_requests_raw(self):
        session = MagicMock()
        session.get.return_value = _response(text="# Acme SDK\n")
        readme = RepositoryClient(token="t", session=session).fetch_readme("acme", "sdk")

        assert readme == "# Acme SDK"
        assert session.get.call_args.args[0].endswith("/repos/acme/sdk/readme")
        assert session.get.call_args.kwargs["headers"]["Accept"] == "application/vnd.github.raw+json"

    def test_http_error_wrapped(self):
        session = MagicMock()
        session.get.return_value = _response(status=404, payload={"message": "Not Found"})
        with pytest.raises(CollectorError, match="404"):
            RepositoryClient(token="t", session=session).fetch_metadata("acme", "missing")

    def test_network_error_wrapped(self):
        session = MagicMock()
        session.get.side_effect = requests.Timeout("slow")
        with pytest.raises(CollectorError):
            RepositoryClient(token="t", session=session).fetch_readme("acme", "sdk")

    def test_rate_limiter_used(self):
        limiter = MagicMock()
        session = MagicMock()
        session.get.return_value = _response(payload=REPO_PAYLOAD)
        RepositoryClient(token="t", session=session, rate_limiter=limiter).fetch_metadata("acme", "sdk")
        limiter.wait.assert_called_once_with("repository")
