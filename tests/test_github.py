"""
Tests for patchkeeper.core.github: REST client and gh CLI fallback.
"""

import json
import subprocess
from unittest.mock import MagicMock, patch

import httpx
import pytest

from patchkeeper.core.errors import PRFetchError
from patchkeeper.core.github import GitHubClient, fetch_pr, fetch_pr_with_gh

PR_DATA = {
    "number": 42,
    "title": "Fix cron stall",
    "body": "Re-arm the timer",
    "html_url": "https://github.com/openclaw/openclaw/pull/42",
    "state": "open",
}

FILES_DATA = [
    {"filename": "src/cron/timer.ts", "status": "modified", "patch": "@@ -1 +1 @@\n-a\n+b"},
    {"filename": "assets/logo.png", "status": "added"},
]


def _github_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/repos/openclaw/openclaw/pulls/42":
        if request.headers.get("accept") == "application/vnd.github.v3.diff":
            return httpx.Response(200, text="diff --git a/x b/x\n")
        return httpx.Response(200, json=PR_DATA)
    if path == "/repos/openclaw/openclaw/pulls/42/files":
        return httpx.Response(200, json=FILES_DATA)
    return httpx.Response(404, json={"message": "Not Found"})


@pytest.fixture
def client():
    c = GitHubClient(transport=httpx.MockTransport(_github_handler))
    yield c
    c.close()


def _completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=["gh"], returncode=returncode, stdout=stdout, stderr=stderr)


# ---------------------------------------------------------------------------
# GitHubClient
# ---------------------------------------------------------------------------


class TestGitHubClient:
    def test_fetch_pr(self, client):
        pr = client.fetch_pr(42, "openclaw/openclaw")

        assert pr.number == 42
        assert pr.title == "Fix cron stall"
        assert pr.url == "https://github.com/openclaw/openclaw/pull/42"
        assert [f.path for f in pr.files] == ["src/cron/timer.ts", "assets/logo.png"]
        assert pr.files[1].patch == ""

    def test_fetch_pr_diff(self, client):
        assert client.fetch_pr_diff(42, "openclaw/openclaw").startswith("diff --git")

    def test_not_found(self, client):
        with pytest.raises(PRFetchError, match="Not found"):
            client.fetch_pr(7, "openclaw/openclaw")

    def test_rate_limited(self):
        transport = httpx.MockTransport(lambda req: httpx.Response(403, json={}))
        with GitHubClient(transport=transport) as c:
            with pytest.raises(PRFetchError, match="Rate limited"):
                c.fetch_pr(42, "openclaw/openclaw")

    def test_server_error(self):
        transport = httpx.MockTransport(lambda req: httpx.Response(502, text="bad gateway"))
        with GitHubClient(transport=transport) as c:
            with pytest.raises(PRFetchError, match="returned 502"):
                c.fetch_pr(42, "openclaw/openclaw")

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        with GitHubClient(transport=httpx.MockTransport(handler)) as c:
            with pytest.raises(PRFetchError, match="Could not reach"):
                c.fetch_pr(42, "openclaw/openclaw")

    def test_paginates_files(self):
        pages = {
            "1": [{"filename": f"src/f{i}.ts", "patch": ""} for i in range(100)],
            "2": [{"filename": "src/last.ts", "patch": ""}],
        }

        def handler(request):
            if request.url.path.endswith("/files"):
                return httpx.Response(200, json=pages[request.url.params["page"]])
            return httpx.Response(200, json=PR_DATA)

        with GitHubClient(transport=httpx.MockTransport(handler)) as c:
            pr = c.fetch_pr(42, "openclaw/openclaw")
        assert len(pr.files) == 101
        assert pr.files[-1].path == "src/last.ts"

    def test_token_from_env(self, monkeypatch):
        monkeypatch.setenv("GH_TOKEN", "ghp_test")
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json=PR_DATA if not request.url.path.endswith("/files") else [])

        with GitHubClient(transport=httpx.MockTransport(handler)) as c:
            c.fetch_pr(42, "openclaw/openclaw")
        assert seen["auth"] == "Bearer ghp_test"

    def test_no_token_no_auth_header(self):
        c = GitHubClient()
        assert "Authorization" not in c._headers()
        c.close()


# ---------------------------------------------------------------------------
# gh CLI and fallback
# ---------------------------------------------------------------------------


class TestFetchPR:
    def test_gh_cli(self):
        outputs = [_completed(json.dumps(PR_DATA)), _completed(json.dumps(FILES_DATA))]
        with patch("patchkeeper.core.github.subprocess.run", side_effect=outputs) as mock_run:
            pr = fetch_pr_with_gh(42, "openclaw/openclaw")

        assert pr.title == "Fix cron stall"
        assert len(pr.files) == 2
        assert mock_run.call_args_list[0].args[0] == ["gh", "api", "repos/openclaw/openclaw/pulls/42"]

    def test_gh_cli_merges_paginated_files(self):
        first_page = [{"filename": f"src/f{i}.ts", "patch": ""} for i in range(100)]
        second_page = [{"filename": "src/last.ts", "patch": ""}]
        paginated = json.dumps(first_page) + json.dumps(second_page) + "\n"
        outputs = [_completed(json.dumps(PR_DATA)), _completed(paginated)]
        with patch("patchkeeper.core.github.subprocess.run", side_effect=outputs) as mock_run:
            pr = fetch_pr_with_gh(42, "openclaw/openclaw")

        assert len(pr.files) == 101
        assert pr.files[-1].path == "src/last.ts"
        assert "--paginate" in mock_run.call_args_list[1].args[0]

    def test_gh_missing_falls_back_to_rest(self, client):
        with patch("patchkeeper.core.github.subprocess.run", side_effect=FileNotFoundError("gh")):
            with patch("patchkeeper.core.github.GitHubClient", return_value=client):
                pr = fetch_pr(42, "openclaw/openclaw")
        assert pr.number == 42

    def test_both_fail(self):
        rest = MagicMock()
        rest.__enter__.return_value.fetch_pr.side_effect = PRFetchError("Rate limited")
        with patch("patchkeeper.core.github.subprocess.run", return_value=_completed(returncode=1, stderr="auth required")):
            with patch("patchkeeper.core.github.GitHubClient", return_value=rest):
                with pytest.raises(PRFetchError) as exc_info:
                    fetch_pr(42, "openclaw/openclaw")

        message = str(exc_info.value)
        assert "Failed to fetch PR #42 from openclaw/openclaw" in message
        assert "gh CLI: auth required" in message
        assert "REST API: Rate limited" in message

    def test_gh_invalid_json(self):
        with patch("patchkeeper.core.github.subprocess.run", return_value=_completed("not json")):
            with pytest.raises(PRFetchError, match="Invalid response from gh"):
                fetch_pr_with_gh(42, "openclaw/openclaw")
