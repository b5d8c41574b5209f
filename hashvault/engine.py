"""Version history over content-addressable storage.

:class:`VersionHistory` owns every change to a :class:`LogicalFile`: it
deduplicates uploads by content hash, numbers versions, commits records
through the metadata store's compare-and-swap, and verifies stored payloads
against their recorded digests.
"""

import dataclasses
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Sequence, Tuple

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from hashvault import hashing
from hashvault.content import ContentStore
from hashvault.exceptions import (
    ConcurrentModification,
    ContentStoreError,
    ContentUnavailable,
    DuplicateContent,
    DuplicateKey,
    DuplicateVersion,
    IdGenerationExhausted,
    InvalidInput,
    InvalidQuery,
    NotFound,
    PersistenceError,
    StorageIntegrityError,
    VersionNotFound,
)
from hashvault.metastore import MetadataStore
from hashvault.models import (
    LATEST,
    SORT_FIELDS,
    DeleteAck,
    Download,
    FileVersion,
    LogicalFile,
    OwnerFilter,
    Page,
    SearchFilter,
    Sort,
    StoreStatus,
    TagFilter,
    TextFilter,
    VerificationResult,
    VersionSelector,
)
from hashvault.utils import StoredContent

log = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 500


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _KeyedLocks(object):
    """Per-key mutual exclusion. Locks are dropped once nobody holds them."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, list] = {}

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if not entry[1]:
                    del self._locks[key]


class VersionHistory(object):
    """Version History Engine.

    Args:
        content: Content store receiving payloads.
        metadata: Metadata store holding :class:`LogicalFile` records.
        algorithm (str, optional): Digest used for dedup and integrity checks.
        id_attempts (int, optional): File id generations tried before
            :class:`IdGenerationExhausted`.
        append_attempts (int, optional): Commit attempts on a revision
            conflict before :class:`ConcurrentModification` is surfaced.
        clock (callable, optional): Returns the current aware datetime.
        id_factory (callable, optional): ``(original_name, owner) -> str``.
    """

    def __init__(self,
                 content: ContentStore,
                 metadata: MetadataStore,
                 algorithm: str = hashing.DEFAULT_ALGORITHM,
                 id_attempts: int = 3,
                 append_attempts: int = 3,
                 clock: Callable[[], datetime] = utcnow,
                 id_factory: Callable[[str, str], str] = hashing.generate_file_id):
        self.content = content
        self.metadata = metadata
        self.algorithm = algorithm
        self.id_attempts = id_attempts
        self.append_attempts = append_attempts
        self.clock = clock
        self.id_factory = id_factory
        self._locks = _KeyedLocks()

    def create_file(self,
                    owner: str,
                    original_file_name: str,
                    payload: bytes,
                    mime_type: str,
                    description: str = "",
                    tags: Iterable[str] = ()) -> LogicalFile:
        """Create a logical file whose first version holds `payload`.

        Raises:
            DuplicateContent: An active file already has a version with the
                same digest. Nothing is written.
            StorageIntegrityError: The content store reported a different
                size than the payload's.
            IdGenerationExhausted: No unused file id could be generated.
            PersistenceError: The record could not be written.
        """
        owner = _required("owner", owner)
        original_file_name = _required("original_file_name", original_file_name)
        mime_type = _required("mime_type", mime_type)
        _require_payload(payload)
        description = (description or "").strip()
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise InvalidInput(
                f"description exceeds {MAX_DESCRIPTION_LENGTH} characters")
        tags = _clean_tags(tags)

        content_hash = hashing.digest(payload, self.algorithm)

        existing = self._metadata("find_by_content_hash", content_hash)
        if existing is not None:
            log.warning("duplicate content %s already stored as %s",
                        content_hash, existing.file_id)
            raise DuplicateContent(existing.file_id, content_hash)

        stored = self._push(payload, content_hash)
        now = self.clock()
        version = FileVersion(version_number=1,
                              content_hash=content_hash,
                              storage_address=stored.address,
                              file_size=len(payload),
                              mime_type=mime_type,
                              uploaded_by=owner,
                              uploaded_at=now)

        for _ in range(self.id_attempts):
            file_id = self.id_factory(original_file_name, owner)
            if self._metadata("find_by_id", file_id) is not None:
                continue

            file = LogicalFile(file_id=file_id,
                               original_file_name=original_file_name,
                               owner=owner,
                               description=description,
                               tags=tags,
                               versions=(version,),
                               created_at=now,
                               updated_at=now)
            try:
                self._metadata("insert", file)
            except DuplicateKey:
                continue

            log.info("created %s (%s) for %s at %s", file_id,
                     original_file_name, owner, stored.address)
            return file

        raise IdGenerationExhausted(
            f"No free file id after {self.id_attempts} attempts",
            {"content_hash": content_hash, "address": stored.address})

    def append_version(self,
                       file_id: str,
                       uploaded_by: str,
                       payload: bytes,
                       mime_type: str) -> FileVersion:
        """Append `payload` as the next version of `file_id`.

        Appends to one file are serialized in-process and committed through
        compare-and-swap, so concurrent callers always receive distinct,
        contiguous version numbers.

        Raises:
            NotFound: No active file has this id.
            DuplicateVersion: A version of this file already holds the same
                bytes. Nothing is written.
            ConcurrentModification: The record kept changing underneath us.
        """
        uploaded_by = _required("uploaded_by", uploaded_by)
        mime_type = _required("mime_type", mime_type)
        _require_payload(payload)

        content_hash = hashing.digest(payload, self.algorithm)
        pushed = []

        def attempt() -> FileVersion:
            current = self._active_file(file_id)
            for existing in current.versions:
                if hashing.digests_match(existing.content_hash, content_hash):
                    log.warning("duplicate version of %s matches v%d",
                                file_id, existing.version_number)
                    raise DuplicateVersion(file_id, existing.version_number,
                                           content_hash)

            if not pushed:
                pushed.append(self._push(payload, content_hash))
            stored = pushed[0]

            now = self.clock()
            version = FileVersion(
                version_number=_next_version_number(current),
                content_hash=content_hash,
                storage_address=stored.address,
                file_size=len(payload),
                mime_type=mime_type,
                uploaded_by=uploaded_by,
                uploaded_at=now)
            updated = dataclasses.replace(current,
                                          versions=current.versions + (version,),
                                          updated_at=now)
            self._commit(current, updated)
            return version

        with self._locks.hold(file_id):
            version = self._retrying(attempt)

        log.info("appended v%d to %s by %s", version.version_number, file_id,
                 uploaded_by)
        return version

    def resolve_version(self, file: LogicalFile,
                        version: VersionSelector = LATEST) -> FileVersion:
        """Return the version numbered `version`, or the highest numbered one
        for ``"latest"``."""
        if not file.versions:
            raise VersionNotFound("No versions available",
                                  {"file_id": file.file_id})

        if version == LATEST:
            return file.current_version

        number = _version_number(version)
        for candidate in file.versions:
            if candidate.version_number == number:
                return candidate

        raise VersionNotFound(f"Version {number} not found",
                              {"file_id": file.file_id,
                               "version_number": number})

    def verify_integrity(self, version: FileVersion,
                         file_id: str = "") -> VerificationResult:
        """Pull the payload of `version` and compare it with the recorded
        digest and size. A mismatch is reported in the result, never raised.

        Raises:
            ContentUnavailable: The payload could not be fetched.
            ContentStoreTimeout: The fetch exceeded the store's bounded wait.
        """
        payload = self._pull(version, file_id)
        recomputed = hashing.digest(payload, self.algorithm)
        matches = hashing.digests_match(version.content_hash, recomputed)
        sizes_match = len(payload) == version.file_size

        if not (matches and sizes_match):
            log.warning("integrity mismatch for %s v%d at %s", file_id,
                        version.version_number, version.storage_address)

        return VerificationResult(file_id=file_id,
                                  version_number=version.version_number,
                                  storage_address=version.storage_address,
                                  expected_hash=version.content_hash,
                                  recomputed_hash=recomputed,
                                  matches=matches,
                                  file_size=len(payload),
                                  expected_file_size=version.file_size,
                                  sizes_match=sizes_match,
                                  verified_at=self.clock())

    def verify(self, file_id: str,
               version: VersionSelector = LATEST) -> VerificationResult:
        file = self._active_file(file_id)
        return self.verify_integrity(self.resolve_version(file, version),
                                     file.file_id)

    def soft_delete(self, file_id: str, claimed_owner: str) -> DeleteAck:
        """Mark the file inactive. Missing, inactive and foreign files all
        raise :class:`NotFound`."""
        claimed_owner = _required("owner", claimed_owner)

        def attempt() -> LogicalFile:
            current = self._metadata("find_by_id", file_id)
            if (current is None or not current.is_active
                    or current.owner != claimed_owner):
                raise NotFound("File not found or access denied",
                               {"file_id": file_id})

            updated = dataclasses.replace(current, is_active=False,
                                          updated_at=self.clock())
            self._commit(current, updated)
            return updated

        with self._locks.hold(file_id):
            updated = self._retrying(attempt)

        log.info("soft deleted %s", file_id)
        return DeleteAck(file_id=file_id, deleted_at=updated.updated_at)

    def search_files(self,
                     filters: Sequence[SearchFilter],
                     page: int = 1,
                     page_size: int = 10,
                     sort: Sort = Sort()) -> Page[LogicalFile]:
        """Return active files matching every filter.

        Build `filters` with :func:`hashvault.models.build_filters`. Blank
        filters are dropped; if none is left :class:`InvalidQuery` is raised.
        """
        filters = _populated_filters(filters)
        if not filters:
            raise InvalidQuery("At least one search parameter is required")
        _check_page(page, page_size, sort)

        items, total = self._metadata("search", filters, page, page_size, sort)
        return Page(tuple(items), total, page, page_size)

    def list_by_owner(self,
                      owner: str,
                      page: int = 1,
                      page_size: int = 10,
                      sort: Sort = Sort()) -> Page[LogicalFile]:
        owner = _required("owner", owner)
        _check_page(page, page_size, sort)

        items, total = self._metadata("find_by_owner", owner, page, page_size,
                                      sort)
        return Page(tuple(items), total, page, page_size)

    def get_file(self, file_id: str) -> LogicalFile:
        return self._active_file(file_id)

    def find_by_content_hash(self, content_hash: str) -> LogicalFile:
        """Return the active file holding a version with this digest."""
        if not hashing.is_valid_digest(content_hash, self.algorithm):
            raise InvalidInput("Invalid content hash",
                               {"content_hash": content_hash})

        file = self._metadata("find_by_content_hash", content_hash.lower())
        if file is None:
            raise NotFound("No file with this content",
                           {"content_hash": content_hash})
        return file

    def download(self, file_id: str,
                 version: VersionSelector = LATEST) -> Download:
        """Return the payload of a version after checking it against its
        recorded digest.

        Raises:
            StorageIntegrityError: The stored bytes no longer match.
        """
        file = self._active_file(file_id)
        resolved = self.resolve_version(file, version)
        payload = self._pull(resolved, file.file_id)

        if not hashing.digests_match(resolved.content_hash,
                                     hashing.digest(payload, self.algorithm)):
            raise StorageIntegrityError(
                "File integrity verification failed",
                {"file_id": file.file_id,
                 "version_number": resolved.version_number,
                 "address": resolved.storage_address})

        return Download(file=file, version=resolved, payload=payload)

    def status(self) -> StoreStatus:
        return self.content.status()

    def _active_file(self, file_id: str) -> LogicalFile:
        file = self._metadata("find_by_id", file_id)
        if file is None or not file.is_active:
            raise NotFound("File not found", {"file_id": file_id})
        return file

    def _push(self, payload: bytes, content_hash: str) -> StoredContent:
        stored = self.content.put(payload)
        if stored.size != len(payload):
            raise StorageIntegrityError(
                "Content store size disagrees with payload",
                {"content_hash": content_hash,
                 "address": stored.address,
                 "expected_size": len(payload),
                 "stored_size": stored.size})
        return stored

    def _pull(self, version: FileVersion, file_id: str) -> bytes:
        try:
            return self.content.get(version.storage_address)
        except ContentUnavailable as exc:
            exc.context.setdefault("file_id", file_id)
            exc.context.setdefault("version_number", version.version_number)
            raise
        except ContentStoreError as exc:
            if exc.retryable:
                raise
            raise ContentUnavailable(
                f"Failed to fetch content: {exc.message}",
                {"file_id": file_id, "address": version.storage_address})

    def _commit(self, current: LogicalFile, updated: LogicalFile) -> None:
        swapped = self._metadata("compare_and_swap", current.file_id,
                                 current.revision, updated)
        if not swapped:
            raise ConcurrentModification(
                "File changed while it was being updated",
                {"file_id": current.file_id, "revision": current.revision})

    def _retrying(self, fn):
        retrying = Retrying(
            retry=retry_if_exception_type(ConcurrentModification),
            stop=stop_after_attempt(self.append_attempts),
            before_sleep=_log_retry,
            reraise=True,
        )
        return retrying(fn)

    def _metadata(self, name: str, *args):
        try:
            return getattr(self.metadata, name)(*args)
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"Metadata store {name} failed: {exc}",
                                   {"operation": name}) from exc


def _log_retry(retry_state) -> None:
    log.warning("retrying after %s (attempt %d)",
                retry_state.outcome.exception(), retry_state.attempt_number)


def _next_version_number(file: LogicalFile) -> int:
    numbers = [v.version_number for v in file.versions]
    return max(numbers, default=0) + 1


def _version_number(version) -> int:
    if isinstance(version, bool):
        raise InvalidInput(f"Invalid version: {version!r}")
    if isinstance(version, str) and version.strip().isdigit():
        version = int(version)
    if not isinstance(version, int):
        raise InvalidInput(f"Invalid version: {version!r}")
    return version


def _populated_filters(filters) -> Tuple[SearchFilter, ...]:
    populated = []
    for flt in filters or ():
        if isinstance(flt, TextFilter):
            if isinstance(flt.query, str) and flt.query.strip():
                populated.append(TextFilter(flt.query.strip()))
        elif isinstance(flt, OwnerFilter):
            if isinstance(flt.owner, str) and flt.owner.strip():
                populated.append(OwnerFilter(flt.owner.strip()))
        elif isinstance(flt, TagFilter):
            tags = _clean_tags(flt.tags)
            if tags:
                populated.append(TagFilter(tags))
        else:
            raise InvalidInput(f"Unsupported search filter: {flt!r}",
                               {"filter": repr(flt)})
    return tuple(populated)


def _required(name: str, value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{name} is required", {"field": name})
    return value.strip()


def _require_payload(payload) -> None:
    if not isinstance(payload, (bytes, bytearray)):
        raise InvalidInput("payload must be bytes", {"field": "payload"})


def _clean_tags(tags) -> frozenset:
    if isinstance(tags, str):
        tags = tags.split(",")
    return frozenset(t.strip() for t in tags or () if t and t.strip())


def _check_page(page: int, page_size: int, sort: Sort) -> None:
    if not isinstance(page, int) or page < 1:
        raise InvalidInput("page must be a positive integer", {"page": page})
    if not isinstance(page_size, int) or page_size < 1:
        raise InvalidInput("page_size must be a positive integer",
                           {"page_size": page_size})
    if sort.key not in SORT_FIELDS:
        raise InvalidInput(f"Cannot sort by {sort.key!r}",
                           {"sort": sort.key})
