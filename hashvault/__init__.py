# -*- coding: utf-8 -*-
"""HashVault keeps an append-only version history for files whose bytes live
in a content-addressable store.

- Uploads are deduplicated by content digest.
- Each logical file has versions numbered 1, 2, 3, ... with no gaps.
- Stored payloads can be verified against the digest recorded at upload.
- File metadata lives in a separate document store.
"""

from .__meta__ import (
    __title__,
    __summary__,
    __url__,
    __version__,
    __author__,
    __email__,
    __license__,
)

from .config import Settings
from .content import ContentStore
from .engine import VersionHistory
from .metastore import FSMetadataStore, MetadataStore
from .models import (
    LATEST,
    FileVersion,
    LogicalFile,
    OwnerFilter,
    Page,
    Sort,
    TagFilter,
    TextFilter,
    VerificationResult,
    build_filters,
)
from .runtime import open_vault


__all__ = (
    "ContentStore",
    "FSMetadataStore",
    "FileVersion",
    "LATEST",
    "LogicalFile",
    "MetadataStore",
    "OwnerFilter",
    "Page",
    "Settings",
    "Sort",
    "TagFilter",
    "TextFilter",
    "VerificationResult",
    "VersionHistory",
    "build_filters",
    "open_vault",
)
