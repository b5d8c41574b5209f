# -*- coding: utf-8 -*-

from datetime import datetime, timedelta, timezone
import itertools

import pytest
from fs.memoryfs import MemoryFS

from hashvault import ContentStore, FSMetadataStore, VersionHistory


class TickingClock(object):
    """Deterministic clock advancing one second per call."""

    def __init__(self, start=datetime(2024, 1, 1, tzinfo=timezone.utc)):
        self._ticks = itertools.count()
        self.start = start

    def __call__(self):
        return self.start + timedelta(seconds=next(self._ticks))


@pytest.fixture
def content():
    store = ContentStore(MemoryFS(), depth=2, width=2, timeout=5)
    yield store
    store.close()


@pytest.fixture
def metadata():
    store = FSMetadataStore(MemoryFS())
    yield store
    store.close()


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def vault(content, metadata, clock):
    return VersionHistory(content, metadata, clock=clock)


@pytest.fixture
def greeting(vault):
    return vault.create_file("alice", "greeting.txt", b"hello world",
                             "text/plain", description="A friendly file",
                             tags=["demo", "text"])
