"""Module for ContentStore class."""

import logging
import secrets
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from contextlib import closing
from typing import Iterable, Optional, Union

import fs as pyfs
from fs.base import FS
from fs.errors import FSError, ResourceNotFound
from fs.permissions import Permissions

import hashvault.utils as u
from hashvault.exceptions import (
    ContentNotFound,
    ContentStoreTimeout,
    ContentUnavailable,
    StoreUnavailable,
)
from hashvault.models import StoreStatus

log = logging.getLogger(__name__)

TMP_SUFFIX = ".tmp"


class ContentStore(object):
    """Content addressable blob store backed by a pyfilesystem2 filesystem.

    Payloads are saved under their own hex digest, sharded into
    subdirectories, so storing identical bytes twice always yields the same
    address and never a second copy.

    Attributes:
        fs: Filesystem used as root of storage space.
        depth (int, optional): Depth of subfolders to create when saving a
            blob.
        width (int, optional): Width of each subfolder to create when saving a
            blob.
        algorithm (str): Hash algorithm used to compute addresses. Algorithm
            should be available in ``hashlib`` module. Defaults to
            ``'sha256'``.
        dmode (int, optional): Directory mode permission to set for
            subdirectories. Defaults to ``0o755``.
        timeout (float, optional): Seconds to wait on any single operation
            before raising :class:`ContentStoreTimeout`.

  """

    def __init__(self,
                 root: Union[FS, str],
                 depth: Optional[int] = 4,
                 width: Optional[int] = 1,
                 algorithm: str = "sha256",
                 dmode: Optional[int] = 0o755,
                 timeout: Optional[float] = 30.0,
                 max_workers: int = 4):

        self.fs = u.load_fs(root)
        self.depth = depth
        self.width = width
        self.algorithm = algorithm
        self.dmode = dmode
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix="content")
        self._closed = False

    def put(self, payload) -> u.StoredContent:
        """Store `payload` using its content hash for the address.

    Args:
      payload: Bytes or readable binary object.

    Returns:
      The address, stored size and whether the bytes were already present.

    Raises:
      StoreUnavailable: If the backing filesystem rejects the write.
      ContentStoreTimeout: If the write exceeds :attr:`timeout`.

    """
        return self._bounded("put", self._put, payload)

    def get(self, address: str) -> bytes:
        """Return the bytes stored under `address`.

    Raises:
      ContentNotFound: If nothing is stored under `address`.
      ContentUnavailable: If the backing filesystem fails the read.
      ContentStoreTimeout: If the read exceeds :attr:`timeout`.

    """
        return self._bounded("get", self._get, address)

    def exists(self, address: str) -> bool:
        """Check whether a given address is stored."""
        return bool(self._fs_path(address))

    def files(self) -> Iterable[str]:
        """Return generator that yields all blob paths in the :attr:`fs`,
        skipping blobs that are still being written."""
        return (path for path in self.fs.walk.files()
                if not path.endswith(TMP_SUFFIX))

    def count(self) -> int:
        """Return count of the number of blobs in the backing :attr:`fs`."""
        return sum(1 for _ in self.files())

    def size(self) -> int:
        """Return the total size in bytes of all blobs."""
        return sum(info.size
                   for path, info in self.fs.walk.info(namespaces=['details'])
                   if not info.is_dir and not path.endswith(TMP_SUFFIX))

    def status(self) -> StoreStatus:
        if self._closed:
            return StoreStatus(connected=False, algorithm=self.algorithm)
        return StoreStatus(connected=True,
                           algorithm=self.algorithm,
                           blob_count=self.count(),
                           total_bytes=self.size())

    def close(self) -> None:
        """Release the worker pool and the backing filesystem."""
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True)
        self.fs.close()

    def __contains__(self, address: str) -> bool:
        return self.exists(address)

    def __len__(self) -> int:
        return self.count()

    def _bounded(self, name, fn, arg):
        if self._closed:
            raise StoreUnavailable("Content store is closed")

        future = self._executor.submit(fn, arg)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            future.cancel()
            log.warning("content store %s exceeded %ss", name, self.timeout)
            raise ContentStoreTimeout(
                f"Content store {name} timed out",
                {"operation": name, "timeout": self.timeout})

    def _put(self, payload) -> u.StoredContent:
        with closing(u.Stream(payload)) as stream:
            hashid = u.computehash(stream, self.algorithm)
            try:
                path, size, is_duplicate = self._copy(stream, hashid)
            except FSError as exc:
                raise StoreUnavailable(
                    f"Failed to store content: {exc}", {"address": hashid})

        log.debug("stored %s (%d bytes, duplicate=%s)", hashid, size,
                  is_duplicate)
        return u.StoredContent(hashid, size, is_duplicate)

    def _get(self, address: str) -> bytes:
        path = self._fs_path(address)
        if path is None:
            raise ContentNotFound(f"Could not locate content: {address}",
                                  {"address": address})

        try:
            return self.fs.readbytes(path)
        except ResourceNotFound:
            raise ContentNotFound(f"Could not locate content: {address}",
                                  {"address": address})
        except FSError as exc:
            raise ContentUnavailable(f"Failed to read content: {exc}",
                                     {"address": address})

    def _copy(self, stream: u.Stream, hashid: str):
        """Copy the contents of `stream` into the filesystem. The bytes are
        written to a temporary sibling first and then moved to the final
        location.

        Returns a triple of

        - relative path,
        - stored size in bytes,
        - boolean noting whether or not we have a duplicate.

        """
        path = self._hashid_to_path(hashid)

        if self.fs.isfile(path):
            return (path, self.fs.getsize(path), True)

        self._makedirs(pyfs.path.dirname(path))
        tmp_path = f"{path}.{secrets.token_hex(4)}{TMP_SUFFIX}"
        size = 0
        try:
            with self.fs.open(tmp_path, mode='wb') as p:
                for data in stream:
                    p.write(data)
                    size += len(data)
            self.fs.move(tmp_path, path, overwrite=True)
        finally:
            if self.fs.exists(tmp_path):
                self.fs.remove(tmp_path)

        return (path, size, False)

    def _makedirs(self, dir_path):
        """Physically create the folder path."""
        perms = Permissions.create(self.dmode)
        self.fs.makedirs(dir_path, permissions=perms, recreate=True)

    def _fs_path(self, address: str) -> Optional[str]:
        if not address or not isinstance(address, str):
            return None
        if not all(c in "0123456789abcdefABCDEF" for c in address):
            return None

        filepath = self._hashid_to_path(address.lower())
        if self.fs.isfile(filepath):
            return filepath

        return None

    def _hashid_to_path(self, hashid: str) -> str:
        """Build the relative file path for a given hash id."""
        return pyfs.path.join(*self._shard(hashid))

    def _shard(self, hashid: str):
        """Shard content ID into subfolders."""
        return u.shard(hashid, self.depth, self.width)
