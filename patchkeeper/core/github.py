"""
Pull-request fetching for PR imports.

Tries the `gh` CLI first (authenticated, higher rate limits) and falls back
to the public GitHub REST API via httpx.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
from typing import Any

import httpx

from patchkeeper.core.errors import PRFetchError
from patchkeeper.models.pr import PRFile, PRMetadata

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
USER_AGENT = "patchkeeper"
DEFAULT_TIMEOUT = 30.0
GH_TIMEOUT = 60


def _to_metadata(pr_data: dict[str, Any], files_data: list[dict[str, Any]]) -> PRMetadata:
    return PRMetadata(
        number=pr_data["number"],
        title=pr_data.get("title") or "",
        body=pr_data.get("body") or "",
        url=pr_data.get("html_url") or "",
        state=pr_data.get("state") or "",
        files=[
            PRFile(path=f["filename"], status=f.get("status", "modified"), patch=f.get("patch") or "")
            for f in files_data
        ],
    )


class GitHubClient:
    """
    Minimal client for the GitHub pulls API.

    Unauthenticated requests are limited to 60/hour; a token from
    GITHUB_TOKEN or GH_TOKEN is used when present.
    """

    def __init__(
        self,
        token: str | None = None,
        base_url: str = GITHUB_API_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.token = token or os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN")
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=timeout,
            transport=transport,
        )

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": USER_AGENT,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get(self, path: str, accept: str | None = None) -> httpx.Response:
        headers = {"Accept": accept} if accept else None
        try:
            response = self._client.get(path, headers=headers)
        except httpx.RequestError as e:
            raise PRFetchError(f"Could not reach {self.base_url}: {e}") from e

        if response.status_code == 404:
            raise PRFetchError(f"Not found: {path}")
        if response.status_code == 403:
            raise PRFetchError("Rate limited by GitHub API (60 req/hour for unauthenticated requests)")
        if response.is_error:
            raise PRFetchError(f"GitHub API returned {response.status_code} for {path}")
        return response

    def fetch_pr(self, number: int, repo: str) -> PRMetadata:
        """Fetch PR metadata and its per-file patches."""
        base = f"/repos/{repo}/pulls/{number}"
        try:
            pr_data = self._get(base).json()
            files_data: list[dict[str, Any]] = []
            page = 1
            while True:
                batch = self._get(f"{base}/files?per_page=100&page={page}").json()
                files_data.extend(batch)
                if len(batch) < 100:
                    break
                page += 1
            return _to_metadata(pr_data, files_data)
        except (ValueError, KeyError, TypeError) as e:
            raise PRFetchError(f"Invalid response from GitHub: {e}") from e

    def fetch_pr_diff(self, number: int, repo: str) -> str:
        """Fetch the raw multi-file unified diff of a PR."""
        return self._get(f"/repos/{repo}/pulls/{number}", accept="application/vnd.github.v3.diff").text

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def _gh_api(*args: str) -> str:
    try:
        result = subprocess.run(
            ["gh", "api", *args],
            capture_output=True,
            text=True,
            timeout=GH_TIMEOUT,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        raise PRFetchError(f"gh CLI unavailable: {e}") from e
    if result.returncode != 0:
        raise PRFetchError(result.stderr.strip() or f"gh exited with {result.returncode}")
    return result.stdout


def _json_pages(text: str) -> list[Any]:
    """Merge `gh api --paginate` output, one JSON array per page back to back, into one list."""
    decoder = json.JSONDecoder()
    items: list[Any] = []
    pos = 0
    while True:
        while pos < len(text) and text[pos].isspace():
            pos += 1
        if pos >= len(text):
            return items
        page, pos = decoder.raw_decode(text, pos)
        if not isinstance(page, list):
            raise TypeError(f"expected a JSON array per page, got {type(page).__name__}")
        items.extend(page)


def fetch_pr_with_gh(number: int, repo: str) -> PRMetadata:
    """Fetch a PR through the authenticated gh CLI."""
    base = f"repos/{repo}/pulls/{number}"
    try:
        pr_data = json.loads(_gh_api(base))
        files_data = _json_pages(_gh_api("--paginate", f"{base}/files?per_page=100"))
        return _to_metadata(pr_data, files_data)
    except (json.JSONDecodeError, KeyError, TypeError) as e:
        raise PRFetchError(f"Invalid response from gh: {e}") from e


def fetch_pr(number: int, repo: str) -> PRMetadata:
    """
    Fetch a PR via gh, falling back to the REST API.

    Raises:
        PRFetchError: If both methods fail (message includes both causes)
    """
    try:
        pr = fetch_pr_with_gh(number, repo)
        logger.debug(f"fetched PR #{number} via gh CLI")
        return pr
    except PRFetchError as gh_error:
        logger.debug(f"gh CLI failed, falling back to REST API: {gh_error}")
        gh_message = str(gh_error)

    try:
        with GitHubClient() as client:
            pr = client.fetch_pr(number, repo)
        logger.debug(f"fetched PR #{number} via REST API")
        return pr
    except PRFetchError as api_error:
        raise PRFetchError(
            f"Failed to fetch PR #{number} from {repo}: gh CLI: {gh_message}, REST API: {api_error}"
        ) from api_error


def fetch_pr_diff(number: int, repo: str) -> str:
    """Fetch the raw unified diff of a PR via gh, falling back to the REST API."""
    try:
        return _gh_api(f"repos/{repo}/pulls/{number}", "-H", "Accept: application/vnd.github.v3.diff")
    except PRFetchError as e:
        logger.debug(f"gh CLI failed, falling back to REST API: {e}")
    with GitHubClient() as client:
        return client.fetch_pr_diff(number, repo)
