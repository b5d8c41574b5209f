# -*- coding: utf-8 -*-
"""Error taxonomy for hashvault.

Every error carries a stable class (for programmatic handling) and an optional
``context`` dict with the identifiers needed to retry or report the failure
(file id, content hash, storage address, ...). Errors flagged ``retryable``
may be retried by the caller as a whole logical operation.
"""

from typing import Any, Dict, Optional


class VaultError(Exception):
    """Base exception for all hashvault errors.

    Attributes:
        message: Human-readable error message.
        context: Structured context for logging/debugging.
    """

    retryable = False

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super(VaultError, self).__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self):
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message

    def __repr__(self):
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class InvalidInput(VaultError):
    """A required field is missing or malformed."""


class InvalidQuery(InvalidInput):
    """A search was issued without any populated filter."""


class NotFound(VaultError):
    """File is absent, inactive, or not owned by the caller."""


class VersionNotFound(NotFound):
    """The requested version does not exist on the file."""


class DuplicateContent(VaultError):
    """An active file already holds byte-identical content."""

    def __init__(self, file_id: str, content_hash: str):
        super(DuplicateContent, self).__init__(
            "File with identical content already exists",
            {"file_id": file_id, "content_hash": content_hash},
        )
        self.file_id = file_id
        self.content_hash = content_hash


class DuplicateVersion(VaultError):
    """The file already has a version with byte-identical content."""

    def __init__(self, file_id: str, version_number: int, content_hash: str):
        super(DuplicateVersion, self).__init__(
            "This version already exists",
            {
                "file_id": file_id,
                "version_number": version_number,
                "content_hash": content_hash,
            },
        )
        self.file_id = file_id
        self.version_number = version_number
        self.content_hash = content_hash


class ConcurrentModification(VaultError):
    """The stored record changed between read and write."""

    retryable = True


class StorageIntegrityError(VaultError):
    """Content store disagrees with the payload's size or digest."""


class ContentStoreError(VaultError):
    """Base class for content store failures."""


class StoreUnavailable(ContentStoreError):
    """The content store could not accept a write."""


class ContentUnavailable(ContentStoreError):
    """The content store could not return a payload."""


class ContentNotFound(ContentUnavailable):
    """No payload is stored under the requested address."""


class ContentStoreTimeout(ContentStoreError):
    """A content store operation exceeded its bounded wait."""

    retryable = True


class PersistenceError(VaultError):
    """The metadata store failed to read or write a record."""


class DuplicateKey(PersistenceError):
    """A record with the same file id already exists."""


class IdGenerationExhausted(VaultError):
    """No free file id was found within the allowed attempts."""
