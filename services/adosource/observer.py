"""Observers and criteria that drive a discovery pass."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

import structlog

from adosource.models import Head, Revision

if TYPE_CHECKING:
    from adosource.probe import Probe


class HeadObserver:
    """Receives the heads (and revisions) a discovery pass finds.

    ``includes`` is the set of heads the observer cares about, or None for
    all of them. The engine uses it to fetch only what is needed.
    """

    includes: frozenset[Head] | None = None

    def observe(self, head: Head, revision: Revision) -> None:
        raise NotImplementedError

    def is_complete(self) -> bool:
        return False


class CollectingObserver(HeadObserver):
    """Collects every observed head in discovery order."""

    def __init__(self) -> None:
        self.result: dict[Head, Revision] = {}

    def observe(self, head: Head, revision: Revision) -> None:
        self.result[head] = revision

    def names(self) -> list[str]:
        return [head.name for head in self.result]


class SingleHeadObserver(HeadObserver):
    """Looks for exactly one head and is complete once it has been seen."""

    def __init__(self, head: Head) -> None:
        self.head = head
        self.includes = frozenset({head})
        self.revision: Revision | None = None
        self._seen = False

    def observe(self, head: Head, revision: Revision) -> None:
        if head.name == self.head.name:
            self.revision = revision
            self._seen = True

    def is_complete(self) -> bool:
        return self._seen


@runtime_checkable
class SourceCriteria(Protocol):
    """Decides whether a head is worth observing, by looking at its tree."""

    async def is_head(self, probe: Probe, log: structlog.stdlib.BoundLogger) -> bool:
        ...


class FileExistsCriteria:
    """A head matches when the marker file exists as a regular file."""

    def __init__(self, path: str) -> None:
        self.path = path

    async def is_head(self, probe: Probe, log: structlog.stdlib.BoundLogger) -> bool:
        from adosource.probe import FileType

        file_type = await probe.stat(self.path)
        if file_type is FileType.REGULAR_FILE:
            log.info("Marker file found", path=self.path)
            return True
        log.info("Marker file not found", path=self.path)
        return False
