# -*- coding: utf-8 -*-
"""Plain records shared by the engine and the store adapters.

Records are immutable; the engine derives new states with
:func:`dataclasses.replace` and hands them to the metadata store.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, Generic, Optional, Tuple, TypeVar, Union

T = TypeVar("T")

LATEST = "latest"

VersionSelector = Union[int, str]


@dataclass(frozen=True)
class FileVersion:
    version_number: int
    content_hash: str
    storage_address: str
    file_size: int
    mime_type: str
    uploaded_by: str
    uploaded_at: datetime


@dataclass(frozen=True)
class LogicalFile:
    """A durable file identity and its append-only version history.

    ``revision`` is the optimistic concurrency token; the metadata store bumps
    it on every successful compare-and-swap.
    """

    file_id: str
    original_file_name: str
    owner: str
    created_at: datetime
    updated_at: datetime
    description: str = ""
    tags: FrozenSet[str] = frozenset()
    is_active: bool = True
    versions: Tuple[FileVersion, ...] = ()
    revision: int = 0

    @property
    def version_count(self) -> int:
        return len(self.versions)

    @property
    def current_version(self) -> Optional[FileVersion]:
        if not self.versions:
            return None
        return max(self.versions, key=lambda v: v.version_number)


@dataclass(frozen=True)
class VerificationResult:
    file_id: str
    version_number: int
    storage_address: str
    expected_hash: str
    recomputed_hash: str
    matches: bool
    file_size: int
    expected_file_size: int
    sizes_match: bool
    verified_at: datetime

    @property
    def is_valid(self) -> bool:
        return self.matches and self.sizes_match


@dataclass(frozen=True)
class DeleteAck:
    file_id: str
    deleted_at: datetime


@dataclass(frozen=True)
class Download:
    file: LogicalFile
    version: FileVersion
    payload: bytes


@dataclass(frozen=True)
class StoreStatus:
    connected: bool
    algorithm: str
    blob_count: int = 0
    total_bytes: int = 0


@dataclass(frozen=True)
class TextFilter:
    """Case-insensitive substring match on filename or description."""

    query: str


@dataclass(frozen=True)
class OwnerFilter:
    owner: str


@dataclass(frozen=True)
class TagFilter:
    """Matches files carrying at least one of `tags`."""

    tags: FrozenSet[str]


SearchFilter = Union[TextFilter, OwnerFilter, TagFilter]


def build_filters(text=None, owner=None, tags=None) -> Tuple[SearchFilter, ...]:
    """Turn loose search parameters into tagged filters, dropping empty ones.

    `tags` may be an iterable of strings or a comma separated string.
    """
    filters = []

    if text and text.strip():
        filters.append(TextFilter(text.strip()))

    if owner and owner.strip():
        filters.append(OwnerFilter(owner.strip()))

    if tags:
        if isinstance(tags, str):
            tags = tags.split(",")
        cleaned = frozenset(t.strip() for t in tags if t and t.strip())
        if cleaned:
            filters.append(TagFilter(cleaned))

    return tuple(filters)


SORT_FIELDS = ("created_at", "updated_at", "original_file_name")


@dataclass(frozen=True)
class Sort:
    key: str = "created_at"
    descending: bool = True


@dataclass(frozen=True)
class Page(Generic[T]):
    items: Tuple[T, ...]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size)

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1

