"""GitHub client: commit activity and contributor count for protocol repos.

A ``GITHUB_TOKEN`` raises the rate ceiling. Lookups are best-effort: any failure
yields ``None`` instead of an exception, and ``None`` means "unknown", not
"no commits".
"""
from __future__ import annotations

import asyncio
import logging
import re
from datetime import UTC, datetime, timedelta

import httpx

from cryptoprospect.errors import SourceError
from cryptoprospect.records import RepoActivity

log = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"

_REPO_URL_RE = re.compile(r"github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$", re.IGNORECASE)
_OWNER_REPO_RE = re.compile(r"^([^/\s]+)/([^/\s]+)$")
_LAST_PAGE_RE = re.compile(r'[?&]page=(\d+)[^>]*>;\s*rel="last"')


def parse_repo_url(url: str) -> tuple[str, str] | None:
    """Parse ``github.com/owner/repo`` or ``owner/repo`` into ``(owner, repo)``."""
    value = (url or "").strip()
    m = _REPO_URL_RE.search(value) or _OWNER_REPO_RE.match(value)
    if not m:
        return None
    return m.group(1), m.group(2).removesuffix(".git")


def resolve_repo_reference(ref: str | None) -> str | None:
    """Turn a DeFiLlama github entry into a repo URL.

    ``owner/repo`` is used as-is. A bare ``name`` is guessed to be ``name/name``;
    that guess is often wrong for orgs whose main repo has another name.
    """
    value = (ref or "").strip().strip("/")
    if not value:
        return None
    if "/" in value:
        return f"https://github.com/{value}"
    return f"https://github.com/{value}/{value}"


def contributor_count_from_link(link: str | None) -> int | None:
    """Last page number from a ``Link`` header, which equals the count at per_page=1."""
    if not link:
        return None
    m = _LAST_PAGE_RE.search(link)
    return int(m.group(1)) if m else None


class GitHubClient:
    def __init__(self, http: httpx.AsyncClient, token: str | None = None, base_url: str = GITHUB_API):
        self._http = http
        self._base_url = base_url
        self._headers = {"Accept": "application/vnd.github+json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    async def fetch_repo_activity(self, owner: str, repo: str) -> RepoActivity:
        """Commits in the last 30 days (first page of 100) and contributor count.

        Raises SourceError when the commits request fails.
        """
        since = (datetime.now(UTC) - timedelta(days=30)).strftime("%Y-%m-%dT%H:%M:%SZ")
        commits_resp, contrib_resp = await asyncio.gather(
            self._http.get(
                f"{self._base_url}/repos/{owner}/{repo}/commits",
                params={"since": since, "per_page": 100},
                headers=self._headers,
            ),
            self._http.get(
                f"{self._base_url}/repos/{owner}/{repo}/contributors",
                params={"per_page": 1},
                headers=self._headers,
            ),
        )

        if commits_resp.status_code >= 400:
            raise SourceError(
                f"GitHub commits {owner}/{repo} {commits_resp.status_code}", commits_resp.status_code,
            )
        commits = commits_resp.json()
        if not isinstance(commits, list):
            commits = []
        last_commit_date = None
        if commits:
            last_commit_date = ((commits[0].get("commit") or {}).get("author") or {}).get("date")

        contributors = 0
        if contrib_resp.status_code < 400:
            from_link = contributor_count_from_link(contrib_resp.headers.get("Link"))
            if from_link:
                contributors = from_link
            else:
                try:
                    page = contrib_resp.json()
                except ValueError:
                    page = []
                contributors = len(page) if isinstance(page, list) else 0

        return RepoActivity(
            last_commit_date=last_commit_date,
            commit_count_30d=len(commits),
            contributor_count=contributors,
            repo_url=f"https://github.com/{owner}/{repo}",
        )

    async def activity_for_repo_url(self, repo_url: str) -> RepoActivity | None:
        parsed = parse_repo_url(repo_url)
        if not parsed:
            return None
        try:
            return await self.fetch_repo_activity(*parsed)
        except Exception as exc:
            log.warning("GitHub activity fetch failed for %s: %s", repo_url, exc)
            return None

    async def activity_for_reference(self, ref: str | None) -> RepoActivity | None:
        repo_url = resolve_repo_reference(ref)
        if not repo_url:
            return None
        return await self.activity_for_repo_url(repo_url)
