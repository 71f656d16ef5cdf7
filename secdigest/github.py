"""
GitHub REST API client for secdigest.

Finds recently merged PRs and fetches their labels and changed files.
Uses GITHUB_TOKEN environment variable for authentication.

Errors are not retried: any failure aborts the run.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

import requests
from loguru import logger

from . import __version__


GITHUB_API_BASE = "https://api.github.com"
DEFAULT_PER_PAGE = 100
REQUEST_TIMEOUT = 30


@dataclass
class GitHubPR:
    """Parsed GitHub PR data."""
    number: int
    title: str
    body: str | None
    merged_at: str | None
    html_url: str
    labels: list[str] = field(default_factory=list)


class GitHubAPIError(Exception):
    """Error from GitHub API."""
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(GitHubAPIError):
    """Rate limit exceeded."""
    def __init__(self, reset_time: int | None = None):
        super().__init__("GitHub API rate limit exceeded", 403)
        self.reset_time = reset_time


class GitHubClient:
    """Thin GitHub REST client. The token is passed through as-is."""

    def __init__(self, token: str | None = None):
        self.token = token or os.environ.get("GITHUB_TOKEN")
        self.session = requests.Session()

        if self.token:
            self.session.headers["Authorization"] = f"Bearer {self.token}"

        self.session.headers["Accept"] = "application/vnd.github+json"
        self.session.headers["X-GitHub-Api-Version"] = "2022-11-28"
        self.session.headers["User-Agent"] = f"secdigest/{__version__}"

    def _get(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """GET an endpoint and return the decoded JSON body."""
        url = f"{GITHUB_API_BASE}{endpoint}"
        logger.debug("GET {} {}", endpoint, params or "")

        try:
            response = self.session.get(url, params=params, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise GitHubAPIError(f"Request failed: {url}: {e}") from e

        if response.status_code == 403 and response.headers.get("X-RateLimit-Remaining") == "0":
            reset_time = int(response.headers.get("X-RateLimit-Reset", 0))
            raise RateLimitError(reset_time)

        if response.status_code >= 400:
            raise GitHubAPIError(
                f"GitHub API error: {response.status_code} {response.reason}\n{url}\n{response.text}",
                response.status_code,
            )

        try:
            return response.json()
        except requests.JSONDecodeError as e:
            raise GitHubAPIError(
                f"Invalid JSON from GitHub API: {url}: {e}", response.status_code
            ) from e

    def search_merged_pr_numbers(self, repo: str, since_date: str) -> list[int]:
        """
        Find PRs merged on or after a date via the Search API.

        Args:
            repo: Full repository name (owner/repo)
            since_date: YYYY-MM-DD; the Search API only has day granularity

        Returns:
            PR numbers (first page only)
        """
        query = f"repo:{repo} is:pr is:merged merged:>={since_date}"
        data = self._get(
            "/search/issues",
            params={"q": query, "per_page": DEFAULT_PER_PAGE, "page": 1},
        )
        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            return []
        return [item["number"] for item in items if item.get("number")]

    def get_pull(self, repo: str, number: int) -> GitHubPR:
        """Get a specific pull request."""
        return self._parse_pr(self._get(f"/repos/{repo}/pulls/{number}"))

    def get_issue_labels(self, repo: str, number: int) -> list[str]:
        """Label names for a PR, read from its issue."""
        issue = self._get(f"/repos/{repo}/issues/{number}")
        return [
            label.get("name")
            for label in issue.get("labels") or []
            if label and label.get("name")
        ]

    def get_pull_files(self, repo: str, number: int, max_pages: int = 3) -> list[str]:
        """
        Get paths of files changed in a pull request.

        Large PRs are cut off after max_pages pages of 100 files.
        """
        endpoint = f"/repos/{repo}/pulls/{number}/files"
        files: list[str] = []

        for page in range(1, max_pages + 1):
            items = self._get(endpoint, params={"per_page": DEFAULT_PER_PAGE, "page": page})
            if not isinstance(items, list) or not items:
                break
            files.extend(item["filename"] for item in items if item and item.get("filename"))
            if len(items) < DEFAULT_PER_PAGE:
                break

        return files

    def _parse_pr(self, data: dict[str, Any]) -> GitHubPR:
        """Parse raw PR data into GitHubPR object."""
        labels = data.get("labels") or []
        return GitHubPR(
            number=data.get("number", 0),
            title=data.get("title") or "",
            body=data.get("body"),
            merged_at=data.get("merged_at"),
            html_url=data.get("html_url", ""),
            labels=[label.get("name", "") for label in labels if label.get("name")],
        )
