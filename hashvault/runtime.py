"""Process entry point: builds the stores and owns their lifecycle."""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from hashvault.config import Settings
from hashvault.content import ContentStore
from hashvault.engine import VersionHistory
from hashvault.log import setup_logging
from hashvault.metastore import FSMetadataStore

log = logging.getLogger(__name__)


def build_vault(settings: Settings) -> VersionHistory:
    content = ContentStore(settings.content_url,
                           depth=settings.shard_depth,
                           width=settings.shard_width,
                           algorithm=settings.algorithm,
                           timeout=settings.content_timeout)
    try:
        metadata = FSMetadataStore(settings.metadata_url)
    except Exception:
        content.close()
        raise

    return VersionHistory(content,
                          metadata,
                          algorithm=settings.algorithm,
                          id_attempts=settings.id_attempts,
                          append_attempts=settings.append_attempts)


@contextmanager
def open_vault(settings: Optional[Settings] = None,
               configure_logging: bool = False) -> Iterator[VersionHistory]:
    """Yield a ready :class:`VersionHistory` and close both stores on exit.

    Example::

        with open_vault(Settings(content_url="osfs://./blobs")) as vault:
            file = vault.create_file("alice", "greeting.txt", b"hello world",
                                     "text/plain")
    """
    settings = settings or Settings()
    if configure_logging:
        setup_logging(settings.log_level)

    vault = build_vault(settings)
    try:
        status = vault.status()
        log.info("content store ready (%s, %d blobs)", status.algorithm,
                 status.blob_count)
        yield vault
    finally:
        vault.content.close()
        vault.metadata.close()
