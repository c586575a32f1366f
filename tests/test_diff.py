"""Tests for the commit range differ and the GitHub compare pagination.

Run with: pytest tests/test_diff.py -v
"""

from __future__ import annotations

import httpx
import pytest

from deploy_notify.context.diff import CommitRangeDiffer, to_commit_record
from deploy_notify.context.github import GitHubClient
from deploy_notify.errors import DiffError

COMPARE_PATH = "/repos/myorg/api/compare/aaa111...bbb222"


def commit_entry(sha: str, login: str | None, message: str = "change") -> dict:
    return {
        "sha": sha,
        "html_url": f"https://github.com/myorg/api/commit/{sha}",
        "commit": {"message": message, "author": {"name": f"{login or 'Anon'} Person"}},
        "author": (
            {
                "login": login,
                "html_url": f"https://github.com/{login}",
                "avatar_url": f"https://avatars.example.com/{login}.png",
            }
            if login
            else None
        ),
    }


def compare_transport(pages: list[list[dict]], seen: list | None = None) -> httpx.MockTransport:
    """Serve the compare result split across pages linked with Link headers."""

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        assert request.url.path == COMPARE_PATH
        page = int(request.url.params.get("page", "1"))
        headers = {}
        if page < len(pages):
            next_url = f"https://api.github.com{COMPARE_PATH}?per_page=100&page={page + 1}"
            headers["link"] = f'<{next_url}>; rel="next", <{next_url}>; rel="last"'
        return httpx.Response(200, json={"commits": pages[page - 1]}, headers=headers)

    return httpx.MockTransport(handler)


class TestDiff:
    """Tests for CommitRangeDiffer.diff()."""

    @pytest.mark.asyncio
    async def test_reverses_listing_once(self) -> None:
        transport = compare_transport(
            [[commit_entry("bbb222", "carol"), commit_entry("ccc333", "dave")]]
        )
        differ = CommitRangeDiffer(GitHubClient(transport=transport))
        commits = await differ.diff("myorg", "api", "aaa111", "bbb222")
        assert [c.sha for c in commits] == ["ccc333", "bbb222"]

    @pytest.mark.asyncio
    async def test_preserves_count(self) -> None:
        entries = [commit_entry(f"sha{i}", "carol") for i in range(7)]
        differ = CommitRangeDiffer(GitHubClient(transport=compare_transport([entries])))
        commits = await differ.diff("myorg", "api", "aaa111", "bbb222")
        assert [c.sha for c in commits] == [f"sha{i}" for i in reversed(range(7))]

    @pytest.mark.asyncio
    async def test_follows_pagination(self) -> None:
        seen: list[httpx.Request] = []
        pages = [
            [commit_entry("s1", "carol"), commit_entry("s2", "carol")],
            [commit_entry("s3", "dave")],
        ]
        differ = CommitRangeDiffer(GitHubClient(transport=compare_transport(pages, seen)))
        commits = await differ.diff("myorg", "api", "aaa111", "bbb222")
        assert [c.sha for c in commits] == ["s3", "s2", "s1"]
        assert len(seen) == 2
        assert seen[1].url.params["page"] == "2"

    @pytest.mark.asyncio
    async def test_empty_range(self) -> None:
        differ = CommitRangeDiffer(GitHubClient(transport=compare_transport([[]])))
        assert await differ.diff("myorg", "api", "aaa111", "bbb222") == []

    @pytest.mark.asyncio
    async def test_api_error_is_diff_error(self) -> None:
        transport = httpx.MockTransport(
            lambda request: httpx.Response(404, json={"message": "Not Found"})
        )
        differ = CommitRangeDiffer(GitHubClient(transport=transport))
        with pytest.raises(DiffError, match="myorg/api aaa111...bbb222"):
            await differ.diff("myorg", "api", "aaa111", "bbb222")

    @pytest.mark.asyncio
    async def test_malformed_entry_is_diff_error(self) -> None:
        transport = compare_transport([[{"html_url": "no sha here"}]])
        differ = CommitRangeDiffer(GitHubClient(transport=transport))
        with pytest.raises(DiffError):
            await differ.diff("myorg", "api", "aaa111", "bbb222")


class TestToCommitRecord:
    """Tests for converting compare entries."""

    def test_linked_author(self) -> None:
        record = to_commit_record(commit_entry("abc", "carol", "feat: x\n\nbody"))
        assert record.author_login == "carol"
        assert record.author_profile_url == "https://github.com/carol"
        assert record.author_avatar_url == "https://avatars.example.com/carol.png"
        assert record.message == "feat: x"
        assert record.url == "https://github.com/myorg/api/commit/abc"

    def test_unlinked_author(self) -> None:
        record = to_commit_record(commit_entry("abc", None))
        assert record.author_login is None
        assert record.author_avatar_url is None
        assert record.author_name == "Anon Person"


def test_parse_next_link() -> None:
    header = (
        '<https://api.github.com/x?page=2>; rel="next", '
        '<https://api.github.com/x?page=5>; rel="last"'
    )
    assert GitHubClient._parse_next_link(header) == "https://api.github.com/x?page=2"
    assert GitHubClient._parse_next_link("") is None
