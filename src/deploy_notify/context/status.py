"""Deployed-commit fetcher: asks the running service which commit is live.

Services expose a small JSON status document, for example:

    GET https://api.example.com/status
    {"BUILD_COMMIT": "3f2a9c1...", "BUILD_TIME": "..."}

The commit found there is the base of the delivered commit range. Every
request carries a random cache-busting query parameter so CDNs and proxies
never answer with a stale document. Any failure is fatal for the run.
"""

from __future__ import annotations

import secrets
from typing import Protocol

import httpx

from deploy_notify.errors import StatusDiscoveryError
from deploy_notify.logging_config import get_logger

logger = get_logger(__name__)

CACHE_BUST_PARAM = "_cb"


class DeployedCommitFetcherProtocol(Protocol):
    """Protocol for discovering the currently deployed commit."""

    async def fetch(self) -> str:
        """Return the SHA of the commit that is currently live."""
        ...


class DeployedCommitFetcher:
    """Reads the live commit from a service status endpoint.

    Usage:
        fetcher = DeployedCommitFetcher("https://api.example.com/status")
        base = await fetcher.fetch()
    """

    def __init__(
        self,
        url: str,
        field: str = "BUILD_COMMIT",
        authorization: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            url: Status endpoint URL (may already have a query string)
            field: JSON field holding the deployed commit
            authorization: Value sent verbatim as the Authorization header
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self._url = url
        self._field = field or "BUILD_COMMIT"
        self._headers: dict[str, str] = {"Accept": "application/json"}
        if authorization:
            self._headers["Authorization"] = authorization
        self._timeout = timeout
        self._transport = transport

    async def fetch(self) -> str:
        """Fetch the status document and extract the deployed commit.

        Raises:
            StatusDiscoveryError: On network errors, error responses,
                invalid JSON, or a missing/empty commit field
        """
        try:
            async with httpx.AsyncClient(
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                resp = await client.get(
                    self._url, params={CACHE_BUST_PARAM: secrets.token_hex(8)}
                )
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise StatusDiscoveryError(f"Failed to get service status: {exc}") from exc

        if not isinstance(data, dict):
            raise StatusDiscoveryError(
                f"Service status must be a JSON object, got {type(data).__name__}"
            )

        commit = data.get(self._field)
        if not commit:
            raise StatusDiscoveryError(
                f"Service status has no {self._field!r} field"
            )

        logger.info("deployed_commit_fetched", commit=str(commit), field=self._field)
        return str(commit)


class MockDeployedCommitFetcher:
    """Returns a fixed commit and counts how often it was asked."""

    def __init__(self, commit: str = "0000000") -> None:
        self._commit = commit
        self.calls = 0

    async def fetch(self) -> str:
        self.calls += 1
        return self._commit
