"""Files inside a point-in-time repository snapshot.

A handle is cheap to create: nothing is fetched until its type, children
or content are asked for, and the first answer is cached.
"""

from __future__ import annotations

from enum import Enum, StrEnum
from typing import TYPE_CHECKING

from adosource.errors import NotFoundError
from adosource.gateway.models import GitItem
from adosource.gateway.protocol import RecursionLevel

if TYPE_CHECKING:
    from adosource.probe import Snapshot


class FileType(StrEnum):
    DIRECTORY = "directory"
    REGULAR_FILE = "regular_file"
    LINK = "link"
    NONEXISTENT = "nonexistent"


class TypeInfo(Enum):
    UNRESOLVED = "unresolved"
    DIRECTORY_ASSUMED = "directory_assumed"
    DIRECTORY_CONFIRMED = "directory_confirmed"
    NON_DIRECTORY_CONFIRMED = "non_directory_confirmed"


def normalize_path(path: str) -> str:
    """Absolute, slash-separated path without a trailing slash (root is ``/``)."""
    parts = [p for p in path.replace("\\", "/").split("/") if p and p != "."]
    return "/" + "/".join(parts)


class ScmFile:
    def __init__(
        self,
        owner: Snapshot,
        path: str,
        info: TypeInfo,
        item: GitItem | None = None,
    ) -> None:
        self._owner = owner
        self.path = normalize_path(path)
        self.info = info
        self._metadata: GitItem | list[GitItem] | None = None
        self._resolved = False
        if item is not None:
            if item.is_folder:
                # Known directory; children not listed yet.
                self.info = TypeInfo.DIRECTORY_CONFIRMED
            else:
                self.info = TypeInfo.NON_DIRECTORY_CONFIRMED
                self._metadata = item
                self._resolved = True

    @classmethod
    def root(cls, owner: Snapshot) -> ScmFile:
        return cls(owner, "/", TypeInfo.DIRECTORY_ASSUMED)

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def is_root(self) -> bool:
        return self.path == "/"

    def __repr__(self) -> str:
        return f"ScmFile({self.path!r}, {self.info.name})"

    def child(self, name: str) -> ScmFile:
        """Handle for a path below this one. A trailing ``/`` assumes a directory."""
        info = TypeInfo.DIRECTORY_ASSUMED if name.endswith("/") else TypeInfo.UNRESOLVED
        return ScmFile(self._owner, f"{self.path}/{name}", info)

    async def metadata(self) -> GitItem | list[GitItem] | None:
        if self._resolved:
            return self._metadata
        self._owner.check_open()
        gateway, repo = self._owner.gateway, self._owner.repo
        version = await self._owner.version()

        match self.info:
            case TypeInfo.DIRECTORY_ASSUMED | TypeInfo.DIRECTORY_CONFIRMED:
                items = await gateway.get_items(repo, self.path, version, RecursionLevel.NONE)
                if (
                    items is not None
                    and len(items) == 1
                    and not items[0].is_folder
                    and items[0].path.lower() == self.path.lower()
                ):
                    # Assumed wrong: the path is a file.
                    self._metadata = items[0]
                    self.info = TypeInfo.NON_DIRECTORY_CONFIRMED
                else:
                    self._metadata = items
                    if items is not None:
                        self.info = TypeInfo.DIRECTORY_CONFIRMED
            case TypeInfo.NON_DIRECTORY_CONFIRMED | TypeInfo.UNRESOLVED:
                item = await gateway.get_item(repo, self.path, version)
                self._metadata = item
                if item is not None and self.info is TypeInfo.UNRESOLVED:
                    self.info = (
                        TypeInfo.DIRECTORY_CONFIRMED
                        if item.is_folder
                        else TypeInfo.NON_DIRECTORY_CONFIRMED
                    )

        self._resolved = True
        return self._metadata

    async def type(self) -> FileType:
        metadata = await self.metadata()
        if isinstance(metadata, list):
            return FileType.DIRECTORY
        if isinstance(metadata, GitItem):
            if metadata.is_sym_link:
                return FileType.LINK
            if metadata.is_folder:
                return FileType.DIRECTORY
            return FileType.REGULAR_FILE
        return FileType.NONEXISTENT

    async def exists(self) -> bool:
        return await self.type() is not FileType.NONEXISTENT

    async def is_file(self) -> bool:
        return await self.type() is FileType.REGULAR_FILE

    async def is_directory(self) -> bool:
        return await self.type() is FileType.DIRECTORY

    async def children(self) -> list[ScmFile]:
        """List one level below this directory.

        The items API may return the directory itself as one of its own
        entries; it is dropped.
        """
        self._owner.check_open()
        version = await self._owner.version()
        items = await self._owner.gateway.get_items(
            self._owner.repo, self.path, version, RecursionLevel.ONE_LEVEL
        )
        if items is None:
            return []
        own = self.path.lower()
        return [
            ScmFile(self._owner, item.path, TypeInfo.UNRESOLVED, item=item)
            for item in items
            if normalize_path(item.path).lower() != own
        ]

    async def content(self) -> bytes:
        metadata = await self.metadata()
        if isinstance(metadata, list) or (isinstance(metadata, GitItem) and metadata.is_folder):
            raise IsADirectoryError(self.path)
        if isinstance(metadata, GitItem):
            self._owner.check_open()
            data = await self._owner.gateway.get_item_stream(
                self._owner.repo, self.path, await self._owner.version()
            )
            if data is not None:
                return data
        raise NotFoundError(self.path)

    async def content_as_text(self, encoding: str = "utf-8") -> str:
        return (await self.content()).decode(encoding)
