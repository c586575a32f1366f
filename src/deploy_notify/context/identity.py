"""Identity resolver: maps GitHub logins to Slack member ids.

The mapping lives as a JSON object in a GitHub repository:

    {
        "octocat": "U01ABCDEF",
        "hubot": "U02GHIJKL"
    }

Resolution happens in two steps with different failure policies:
1. Contents lookup through the GitHub API to find the raw download URL.
   A failure here aborts the run (IdentityResolutionError), since it
   usually means a bad token or a wrong repository reference.
2. Download and parse of the raw file. A failure here is recoverable
   (IdentityMapUnavailable): the resolver logs it and returns an empty
   map, so a malformed mapping file never blocks deploy notifications.
"""

from __future__ import annotations

from typing import Protocol

import httpx

from deploy_notify.context.github import GitHubClientProtocol
from deploy_notify.errors import IdentityMapUnavailable, IdentityResolutionError
from deploy_notify.logging_config import get_logger
from deploy_notify.schemas import IdentityMap

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class IdentityResolverProtocol(Protocol):
    """Protocol for anything that can produce an IdentityMap."""

    async def resolve(self) -> IdentityMap:
        """Return the login -> Slack member id mapping (possibly empty)."""
        ...


# ---------------------------------------------------------------------------
# GitHub-hosted mapping file
# ---------------------------------------------------------------------------


class GitHubIdentityResolver:
    """Loads the identity mapping from a JSON file in a GitHub repository.

    Usage:
        resolver = GitHubIdentityResolver(github, "myorg", "slack-map")
        identity_map = await resolver.resolve()
    """

    def __init__(
        self,
        github: GitHubClientProtocol,
        owner: str,
        repo: str,
        path: str = "mapping.json",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            github: Client used for the contents lookup
            owner: Owner of the repository holding the mapping
            repo: Name of the repository holding the mapping
            path: Path of the mapping file inside the repository
            timeout: Timeout for the raw download, in seconds
            transport: Optional httpx transport for the raw download
        """
        self._github = github
        self._owner = owner
        self._repo = repo
        self._path = path or "mapping.json"
        self._timeout = timeout
        self._transport = transport

    async def resolve(self) -> IdentityMap:
        """Locate, download and parse the mapping file.

        Returns:
            The identity map, or an empty map if the file could not be
            downloaded or parsed

        Raises:
            IdentityResolutionError: If the contents lookup fails
        """
        download_url = await self.locate()
        try:
            identity_map = await self.download(download_url)
        except IdentityMapUnavailable as exc:
            logger.error(
                "identity_map_unavailable",
                repo=f"{self._owner}/{self._repo}",
                path=self._path,
                error=str(exc),
            )
            return {}

        logger.info("identity_map_loaded", entries=len(identity_map))
        return identity_map

    async def locate(self) -> str:
        """Find the raw download URL of the mapping file.

        Raises:
            IdentityResolutionError: On any lookup failure
        """
        logger.debug(
            "identity_map_lookup",
            repo=f"{self._owner}/{self._repo}",
            path=self._path,
        )
        try:
            contents = await self._github.get_contents(self._owner, self._repo, self._path)
        except (httpx.HTTPError, ValueError) as exc:
            raise IdentityResolutionError(
                f"Failed to get identity map {self._owner}/{self._repo} "
                f"in {self._path}: {exc}"
            ) from exc

        download_url = contents.get("download_url") if isinstance(contents, dict) else None
        if not download_url:
            raise IdentityResolutionError(
                f"No download URL for {self._path} in {self._owner}/{self._repo}"
            )
        return download_url

    async def download(self, download_url: str) -> IdentityMap:
        """Download and parse the raw mapping file.

        Raises:
            IdentityMapUnavailable: If the download fails or the body is not
                a JSON object
        """
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.get(download_url)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise IdentityMapUnavailable(f"Failed to download identity map: {exc}") from exc

        if not isinstance(data, dict):
            raise IdentityMapUnavailable(
                f"Identity map must be a JSON object, got {type(data).__name__}"
            )

        identity_map: IdentityMap = {}
        for login, member_id in data.items():
            if isinstance(member_id, str) and member_id:
                identity_map[login] = member_id
            else:
                logger.warning("identity_map_entry_skipped", login=login)
        return identity_map


# ---------------------------------------------------------------------------
# Mock Implementation
# ---------------------------------------------------------------------------


class MockIdentityResolver:
    """Returns a predefined identity map without touching the network."""

    def __init__(self, identity_map: IdentityMap | None = None) -> None:
        self._identity_map = identity_map or {}
        self.calls = 0

    async def resolve(self) -> IdentityMap:
        self.calls += 1
        return dict(self._identity_map)
