"""GitHub REST API client used by the identity resolver and the commit differ.

Only two endpoints are needed:
- GET /repos/{owner}/{repo}/contents/{path}   - locate the identity mapping file
- GET /repos/{owner}/{repo}/compare/{base}...{head} - list delivered commits

Design notes:
- Uses httpx for async HTTP requests, one client per call
- Follows the Link header for paginated compare results
- Uses a Protocol so callers don't depend on the concrete implementation
- Raises httpx errors unchanged; callers decide whether they are fatal

GitHub API docs: https://docs.github.com/en/rest
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx

# ---------------------------------------------------------------------------
# Protocol (Interface)
# ---------------------------------------------------------------------------


class GitHubClientProtocol(Protocol):
    """Interface for the GitHub calls the pipeline makes."""

    async def get_contents(self, owner: str, repo: str, path: str) -> dict[str, Any]:
        """Fetch the contents metadata for a file in a repository."""
        ...

    async def compare(
        self, owner: str, repo: str, base: str, head: str
    ) -> list[dict[str, Any]]:
        """Fetch the commit entries of a base...head comparison."""
        ...


# ---------------------------------------------------------------------------
# Concrete Implementation
# ---------------------------------------------------------------------------


class GitHubClient:
    """Real GitHub API client using httpx.

    Usage:
        client = GitHubClient(token="ghp_...")
        commits = await client.compare("myorg", "api", "abc123", "def456")
    """

    BASE_URL = "https://api.github.com"

    def __init__(
        self,
        token: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the GitHub client.

        Args:
            token: GitHub token. Requests are anonymous when empty.
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self._timeout = timeout
        self._transport = transport
        self._headers: dict[str, str] = {
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.BASE_URL,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def get_contents(self, owner: str, repo: str, path: str) -> dict[str, Any]:
        """Fetch file metadata, including its raw ``download_url``.

        Raises:
            httpx.HTTPError: If the request fails or GitHub returns an error status
        """
        async with self._client() as client:
            resp = await client.get(f"/repos/{owner}/{repo}/contents/{path.lstrip('/')}")
            resp.raise_for_status()
            return resp.json()

    async def compare(
        self, owner: str, repo: str, base: str, head: str
    ) -> list[dict[str, Any]]:
        """Fetch every commit entry between base and head, across all pages.

        Args:
            owner: Repository owner
            repo: Repository name
            base: Base reference (the currently deployed commit)
            head: Head reference (the commit being deployed)

        Returns:
            The raw commit entries in the order GitHub lists them

        Raises:
            httpx.HTTPError: If any page fails
        """
        commits: list[dict[str, Any]] = []
        next_url: str | None = f"/repos/{owner}/{repo}/compare/{base}...{head}"
        params: dict[str, int] | None = {"per_page": 100}

        async with self._client() as client:
            while next_url:
                resp = await client.get(next_url, params=params)
                resp.raise_for_status()
                commits.extend(resp.json().get("commits", []))
                next_url = self._parse_next_link(resp.headers.get("link", ""))
                # the next link already carries the query string
                params = None

        return commits

    @staticmethod
    def _parse_next_link(link_header: str) -> str | None:
        """Extract the 'next' URL from a GitHub Link header."""
        if not link_header:
            return None
        for part in link_header.split(","):
            if 'rel="next"' in part:
                return part.split(";")[0].strip().strip("<>")
        return None
