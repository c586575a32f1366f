"""Commit range differ: lists the commits delivered by a deployment.

The range is (base, head]: base is the commit currently live, head is the
commit being deployed. Entries from the compare endpoint are treated as
newest-first and reversed exactly once, so callers always receive the
commits oldest-first.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from deploy_notify.context.github import GitHubClientProtocol
from deploy_notify.errors import DiffError
from deploy_notify.logging_config import get_logger
from deploy_notify.schemas import CommitRecord

logger = get_logger(__name__)


class CommitRangeDifferProtocol(Protocol):
    """Protocol for retrieving the commits between two references."""

    async def diff(
        self, owner: str, repo: str, base: str, head: str
    ) -> list[CommitRecord]:
        """Return the commits in (base, head], oldest first."""
        ...


def to_commit_record(entry: dict[str, Any]) -> CommitRecord:
    """Convert one compare-API commit entry into a CommitRecord.

    The top-level ``author`` object is the linked GitHub account and is
    null when the commit email isn't tied to one; ``commit.author`` is the
    raw git author and is always present.
    """
    author = entry.get("author") or {}
    git_commit = entry.get("commit") or {}
    git_author = git_commit.get("author") or {}

    return CommitRecord(
        sha=entry["sha"],
        author_login=author.get("login"),
        author_profile_url=author.get("html_url"),
        author_avatar_url=author.get("avatar_url"),
        author_name=git_author.get("name"),
        message=git_commit.get("message"),
        url=entry.get("html_url") or "",
    )


class CommitRangeDiffer:
    """Builds CommitRecords from the GitHub compare endpoint.

    Usage:
        differ = CommitRangeDiffer(GitHubClient(token))
        commits = await differ.diff("myorg", "api", deployed_sha, new_sha)
    """

    def __init__(self, github: GitHubClientProtocol) -> None:
        self._github = github

    async def diff(
        self, owner: str, repo: str, base: str, head: str
    ) -> list[CommitRecord]:
        """Return the commits between base and head, oldest first.

        Raises:
            DiffError: If the comparison fails or returns malformed entries
        """
        try:
            entries = await self._github.compare(owner, repo, base, head)
            records = [to_commit_record(entry) for entry in entries]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            raise DiffError(
                f"Failed to get diff for {owner}/{repo} {base}...{head}: {exc}"
            ) from exc

        records.reverse()
        logger.info(
            "commit_range_diffed",
            repo=f"{owner}/{repo}",
            base=base,
            head=head,
            commits=len(records),
        )
        return records


class MockCommitRangeDiffer:
    """Returns predefined commits (already oldest-first) and records each call."""

    def __init__(self, commits: list[CommitRecord] | None = None) -> None:
        self._commits = commits or []
        self.calls: list[tuple[str, str, str, str]] = []

    async def diff(
        self, owner: str, repo: str, base: str, head: str
    ) -> list[CommitRecord]:
        self.calls.append((owner, repo, base, head))
        return list(self._commits)
