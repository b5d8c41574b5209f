# -*- coding: utf-8 -*-


"""
common utils for hashvault
"""


import hashlib
import io
from collections import namedtuple
from typing import Iterator, List, Union

import fs as pyfs
from fs.base import FS


class StoredContent(namedtuple("StoredContent", ["address", "size", "is_duplicate"])):
    """Result of pushing a payload into the content store.

    Attributes:
        address (str): Content address (hex digest) of the payload.
        size (int): Number of bytes the store holds under `address`.
        is_duplicate (bool): Whether the store already held these bytes.
    """

    def __new__(cls, address, size, is_duplicate=False):
        return super(StoredContent, cls).__new__(cls, address, size, is_duplicate)


class Stream(object):
    """Common interface for byte payloads and binary file-like objects.

    If `obj` is a file-like object, then it's original position will be
    restored when :meth:`close` is called instead of closing the object.
    Successive readings of the stream are supported without having to
    manually set it's position back to ``0``.
    """

    chunk_size = 64 * 1024

    def __init__(self, obj):
        if isinstance(obj, (bytes, bytearray, memoryview)):
            obj = io.BytesIO(bytes(obj))
            pos = None
        elif hasattr(obj, "read"):
            pos = obj.tell()
        else:
            raise ValueError("Object must be bytes or a readable object.")

        self._obj = obj
        self._pos = pos

    def __iter__(self) -> Iterator[bytes]:
        self._obj.seek(0)

        while True:
            data = self._obj.read(self.chunk_size)

            if not data:
                break

            yield to_bytes(data)

        if self._pos is not None:
            self._obj.seek(self._pos)

    def close(self):
        """Close underlying IO object if we opened it, else return it to
        original position.
        """
        if self._pos is None:
            self._obj.close()
        else:
            self._obj.seek(self._pos)


def to_bytes(text) -> bytes:
    if not isinstance(text, bytes):
        text = bytes(text, "utf8")
    return text


def compact(items):
    """Return only truthy elements of `items`."""
    return [item for item in items if item]


def shard(digest, depth, width) -> List[str]:
    # This creates a list of `depth` number of tokens with width
    # `width` from the first part of the id plus the remainder.
    return compact(
        [digest[i * width : width * (i + 1)] for i in range(depth)]
        + [digest[depth * width :]]
    )


def computehash(stream: Stream, algorithm: str) -> str:
    """Compute the hex digest of every chunk yielded by `stream`."""
    hashobj = hashlib.new(algorithm)
    for data in stream:
        hashobj.update(data)
    return hashobj.hexdigest()


def load_fs(root: Union[FS, str]) -> FS:
    """Return `root` if it already is a filesystem, else open it as an FS URL
    (``mem://``, ``osfs://...``) or a local directory path, creating it when
    missing.
    """
    if isinstance(root, FS):
        return root

    return pyfs.open_fs(root, create=True)
