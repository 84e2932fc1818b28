"""Changelog output in ``git log --format=raw``-like form.

Downstream changelog parsers expect exactly this layout per commit::

    commit <sha>
    tree
    parent <p1> <p2>
    author <name> <email> <date>
    committer <name> <email> <date>

        <message, indented by four spaces>
"""

from collections.abc import Iterable
from datetime import datetime
from typing import BinaryIO

from adosource.config import settings
from adosource.gateway.models import GitCommit, GitUserDate

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def _format_date(date: datetime | None) -> str:
    return date.strftime(ISO_FORMAT) if date is not None else ""


def _person(who: GitUserDate) -> str:
    return f"{who.name} <{who.email}> {_format_date(who.date)}"


def _message(comment: str) -> str:
    if comment.endswith("\r\n"):
        comment = comment[:-2]
    elif comment.endswith("\n"):
        comment = comment[:-1]
    return comment.replace("\r\n", "\n").replace("\r", "\n").replace("\n", "\n    ")


def format_commit(commit: GitCommit) -> str:
    parents = "".join(f" {p}" for p in commit.parents)
    return (
        f"commit {commit.commit_id}\n"
        "tree  \n"
        f"parent{parents}\n"
        f"author {_person(commit.author)}\n"
        f"committer {_person(commit.committer)}\n"
        "\n"
        f"    {_message(commit.comment)}\n"
    )


def write_changelog(
    commits: Iterable[GitCommit],
    sink: BinaryIO,
    stop_at: str | None = None,
    max_commits: int | None = None,
) -> int:
    """Write commits (newest first) until ``stop_at`` or ``max_commits``.

    Returns:
        Number of commits written.
    """
    limit = max_commits if max_commits is not None else settings.discovery.max_changelog_commits
    end = stop_at.lower() if stop_at else None
    count = 0
    for commit in commits:
        if count >= limit or commit.commit_id.lower() == end:
            break
        sink.write(format_commit(commit).encode("utf-8"))
        count += 1
    sink.flush()
    return count
