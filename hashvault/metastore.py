"""Metadata store contract and a JSON document implementation."""

import abc
import dataclasses
import logging
import re
from datetime import datetime
from typing import Iterator, List, Optional, Sequence, Tuple, Union

import orjson
from fs.base import FS
from fs.errors import (
    DirectoryExists,
    DirectoryExpected,
    FileExists,
    FSError,
    ResourceNotFound,
)

import hashvault.utils as u
from hashvault.exceptions import DuplicateKey, PersistenceError
from hashvault.models import (
    FileVersion,
    LogicalFile,
    OwnerFilter,
    SearchFilter,
    Sort,
    TagFilter,
    TextFilter,
)

log = logging.getLogger(__name__)

_FILE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class MetadataStore(abc.ABC):
    """Persistence boundary for :class:`LogicalFile` records.

    Implementations store records as plain data and never change a record's
    versions on their own. Queries other than :meth:`find_by_id` only return
    active files.
    """

    @abc.abstractmethod
    def insert(self, file: LogicalFile) -> None:
        """Persist a new record. Raise :class:`DuplicateKey` if the file id is
        taken."""

    @abc.abstractmethod
    def find_by_id(self, file_id: str) -> Optional[LogicalFile]:
        """Return the record for `file_id`, active or not."""

    @abc.abstractmethod
    def find_by_content_hash(self, content_hash: str) -> Optional[LogicalFile]:
        """Return an active record with a version whose hash is
        `content_hash`."""

    @abc.abstractmethod
    def find_by_owner(self, owner: str, page: int = 1, page_size: int = 10,
                      sort: Sort = Sort()) -> Tuple[List[LogicalFile], int]:
        """Return one page of active records owned by `owner` and the total
        count."""

    @abc.abstractmethod
    def search(self, filters: Sequence[SearchFilter], page: int = 1,
               page_size: int = 10,
               sort: Sort = Sort()) -> Tuple[List[LogicalFile], int]:
        """Return one page of active records matching every filter and the
        total count."""

    @abc.abstractmethod
    def compare_and_swap(self, file_id: str, expected_revision: int,
                         new_state: LogicalFile) -> bool:
        """Replace the stored record with `new_state` only if its revision is
        still `expected_revision`. The stored revision becomes
        ``expected_revision + 1``. Return whether the swap happened."""

    def close(self) -> None:
        pass


class FSMetadataStore(MetadataStore):
    """JSON documents inside a pyfilesystem2 filesystem.

    Each logical file owns a folder, ``<directory>/<file_id>/``, holding one
    immutable document per revision (``0.json``, ``1.json``, ...). The highest
    revision is the current record. A revision is committed by creating its
    document in exclusive mode, so when several writers (store instances,
    threads or processes sharing the filesystem) race from the same revision,
    exactly one create succeeds. Readers skip a highest revision whose
    document is still being written.

    Attributes:
        fs: Filesystem holding the documents.
        directory (str): Folder (relative to :attr:`fs`) for the documents.
    """

    def __init__(self, root: Union[FS, str], directory: str = "files"):
        self.fs = u.load_fs(root)
        self.directory = directory

        try:
            self.fs.makedirs(directory, recreate=True)
        except FSError as exc:
            raise PersistenceError(f"Cannot prepare metadata store: {exc}")

    def insert(self, file: LogicalFile) -> None:
        folder = self._folder(file.file_id)
        if folder is None:
            raise PersistenceError(f"Invalid file id: {file.file_id!r}",
                                   {"file_id": file.file_id})

        try:
            self.fs.makedir(folder)
        except DirectoryExists:
            raise DuplicateKey(f"File id already exists: {file.file_id}",
                               {"file_id": file.file_id})
        except FSError as exc:
            raise PersistenceError(f"Metadata store failure: {exc}",
                                   {"file_id": file.file_id})

        self._create(folder, _with_revision(file, 0))
        log.debug("inserted %s", file.file_id)

    def find_by_id(self, file_id: str) -> Optional[LogicalFile]:
        folder = self._folder(file_id)
        if folder is None:
            return None

        return self._read(folder)

    def find_by_content_hash(self, content_hash: str) -> Optional[LogicalFile]:
        if not content_hash:
            return None

        content_hash = content_hash.lower()
        for file in self._active():
            if any(v.content_hash == content_hash for v in file.versions):
                return file

        return None

    def find_by_owner(self, owner, page=1, page_size=10, sort=Sort()):
        return self.search((OwnerFilter(owner),), page, page_size, sort)

    def search(self, filters, page=1, page_size=10, sort=Sort()):
        matches = [
            file for file in self._active()
            if all(_matches(file, f) for f in filters)
        ]
        return _paginate(matches, page, page_size, sort)

    def compare_and_swap(self, file_id, expected_revision, new_state):
        folder = self._folder(file_id)
        if folder is None:
            return False

        current = self._read(folder)
        if current is None or current.revision != expected_revision:
            return False

        return self._create(folder,
                            _with_revision(new_state, expected_revision + 1))

    def close(self) -> None:
        self.fs.close()

    def _active(self) -> Iterator[LogicalFile]:
        names = self._call(self.fs.listdir, self.directory)
        for name in sorted(names):
            folder = self._folder(name)
            if folder is None:
                continue
            file = self._read(folder)
            if file is not None and file.is_active:
                yield file

    def _folder(self, file_id) -> Optional[str]:
        if not file_id or not isinstance(file_id, str):
            return None
        if not _FILE_ID_RE.match(file_id):
            return None
        return f"{self.directory}/{file_id}"

    def _revisions(self, folder: str) -> List[int]:
        try:
            names = self.fs.listdir(folder)
        except (ResourceNotFound, DirectoryExpected):
            return []
        except FSError as exc:
            raise PersistenceError(f"Failed to list record: {exc}",
                                   {"path": folder})

        return sorted(
            (int(name[:-5]) for name in names
             if name.endswith(".json") and name[:-5].isdigit()),
            reverse=True,
        )

    def _read(self, folder: str) -> Optional[LogicalFile]:
        for revision in self._revisions(folder):
            path = f"{folder}/{revision}.json"
            try:
                raw = self.fs.readbytes(path)
            except ResourceNotFound:
                continue
            except FSError as exc:
                raise PersistenceError(f"Failed to read record: {exc}",
                                       {"path": path})

            try:
                doc = orjson.loads(raw)
            except orjson.JSONDecodeError:
                # revision still being written
                continue

            return _with_revision(from_document(doc), revision)

        return None

    def _create(self, folder: str, file: LogicalFile) -> bool:
        """Write `file` as a new revision document. Return False if that
        revision already exists."""
        path = f"{folder}/{file.revision}.json"
        try:
            with self.fs.open(path, "xb") as fp:
                fp.write(orjson.dumps(to_document(file)))
        except FileExists:
            return False
        except FSError as exc:
            raise PersistenceError(f"Failed to write record: {exc}",
                                   {"path": path})

        return True

    def _call(self, fn, *args):
        try:
            return fn(*args)
        except FSError as exc:
            raise PersistenceError(f"Metadata store failure: {exc}",
                                   {"args": args[:1]})


def to_document(file: LogicalFile) -> dict:
    return {
        "fileId": file.file_id,
        "originalFileName": file.original_file_name,
        "owner": file.owner,
        "description": file.description,
        "tags": sorted(file.tags),
        "isActive": file.is_active,
        "versions": [
            {
                "versionNumber": v.version_number,
                "contentHash": v.content_hash,
                "storageAddress": v.storage_address,
                "fileSize": v.file_size,
                "mimeType": v.mime_type,
                "uploadedBy": v.uploaded_by,
                "uploadedAt": v.uploaded_at.isoformat(),
            }
            for v in file.versions
        ],
        "createdAt": file.created_at.isoformat(),
        "updatedAt": file.updated_at.isoformat(),
        "revision": file.revision,
    }


def from_document(doc: dict) -> LogicalFile:
    return LogicalFile(
        file_id=doc["fileId"],
        original_file_name=doc["originalFileName"],
        owner=doc["owner"],
        description=doc.get("description", ""),
        tags=frozenset(doc.get("tags", ())),
        is_active=doc.get("isActive", True),
        versions=tuple(
            FileVersion(
                version_number=v["versionNumber"],
                content_hash=v["contentHash"],
                storage_address=v["storageAddress"],
                file_size=v["fileSize"],
                mime_type=v["mimeType"],
                uploaded_by=v["uploadedBy"],
                uploaded_at=datetime.fromisoformat(v["uploadedAt"]),
            )
            for v in doc.get("versions", ())
        ),
        created_at=datetime.fromisoformat(doc["createdAt"]),
        updated_at=datetime.fromisoformat(doc["updatedAt"]),
        revision=doc.get("revision", 0),
    )


def _with_revision(file: LogicalFile, revision: int) -> LogicalFile:
    if file.revision == revision:
        return file
    return dataclasses.replace(file, revision=revision)


def _matches(file: LogicalFile, flt: SearchFilter) -> bool:
    if isinstance(flt, TextFilter):
        needle = flt.query.casefold()
        return (needle in file.original_file_name.casefold()
                or needle in file.description.casefold())
    if isinstance(flt, OwnerFilter):
        return file.owner == flt.owner
    if isinstance(flt, TagFilter):
        return bool(file.tags & flt.tags)
    raise TypeError(f"Unknown filter: {flt!r}")


def _paginate(files: List[LogicalFile], page: int, page_size: int,
              sort: Sort) -> Tuple[List[LogicalFile], int]:
    ordered = sorted(files, key=lambda f: getattr(f, sort.key),
                     reverse=sort.descending)
    start = (page - 1) * page_size
    return ordered[start:start + page_size], len(ordered)
