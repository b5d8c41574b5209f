# -*- coding: utf-8 -*-

import dataclasses
from datetime import datetime, timedelta, timezone

import pytest
from fs.memoryfs import MemoryFS

from hashvault import FSMetadataStore
from hashvault.exceptions import DuplicateKey, PersistenceError
from hashvault.metastore import from_document, to_document
from hashvault.models import (
    FileVersion,
    LogicalFile,
    OwnerFilter,
    Sort,
    TagFilter,
    TextFilter,
)

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_file(file_id, owner="alice", name="notes.txt", description="",
              tags=(), content_hash=None, minutes=0, is_active=True):
    when = START + timedelta(minutes=minutes)
    version = FileVersion(1, content_hash or file_id.ljust(64, "0"),
                          "addr-" + file_id, 10, "text/plain", owner, when)
    return LogicalFile(file_id=file_id, original_file_name=name, owner=owner,
                       description=description, tags=frozenset(tags),
                       is_active=is_active, versions=(version,),
                       created_at=when, updated_at=when)


def test_insert_and_find(metadata):
    file = make_file("f1", tags=["a"])
    metadata.insert(file)

    assert metadata.find_by_id("f1") == file
    assert metadata.find_by_id("missing") is None


def test_insert_duplicate_key(metadata):
    metadata.insert(make_file("f1"))

    with pytest.raises(DuplicateKey):
        metadata.insert(make_file("f1", owner="bob"))

    assert metadata.find_by_id("f1").owner == "alice"


@pytest.mark.parametrize("file_id", ["../escape", "a/b", "", "a b"])
def test_unsafe_ids(metadata, file_id):
    assert metadata.find_by_id(file_id) is None

    with pytest.raises(PersistenceError):
        metadata.insert(dataclasses.replace(make_file("x"), file_id=file_id))


def test_find_by_content_hash(metadata):
    metadata.insert(make_file("f1", content_hash="ab" * 32))

    assert metadata.find_by_content_hash("ab" * 32).file_id == "f1"
    assert metadata.find_by_content_hash("AB" * 32).file_id == "f1"
    assert metadata.find_by_content_hash("cd" * 32) is None


def test_find_by_content_hash_skips_inactive(metadata):
    metadata.insert(make_file("f1", content_hash="ab" * 32, is_active=False))

    assert metadata.find_by_content_hash("ab" * 32) is None


def test_find_by_owner(metadata):
    for i in range(5):
        metadata.insert(make_file("a%d" % i, minutes=i))
    metadata.insert(make_file("b0", owner="bob"))
    metadata.insert(make_file("a9", minutes=9, is_active=False))

    items, total = metadata.find_by_owner("alice", page=1, page_size=2)

    assert total == 5
    assert [f.file_id for f in items] == ["a4", "a3"]

    items, total = metadata.find_by_owner("alice", page=3, page_size=2)

    assert [f.file_id for f in items] == ["a0"]


def test_find_by_owner_sort_ascending(metadata):
    metadata.insert(make_file("f1", name="b.txt", minutes=1))
    metadata.insert(make_file("f2", name="a.txt", minutes=2))

    items, _ = metadata.find_by_owner(
        "alice", sort=Sort("original_file_name", descending=False))

    assert [f.original_file_name for f in items] == ["a.txt", "b.txt"]


def test_search_text(metadata):
    metadata.insert(make_file("f1", name="Quarterly Report.pdf"))
    metadata.insert(make_file("f2", description="draft of the REPORT"))
    metadata.insert(make_file("f3", name="holiday.png"))

    items, total = metadata.search((TextFilter("report"),))

    assert total == 2
    assert {f.file_id for f in items} == {"f1", "f2"}


def test_search_text_is_literal(metadata):
    metadata.insert(make_file("f1", name="a.txt"))
    metadata.insert(make_file("f2", name="a+b.txt"))

    items, total = metadata.search((TextFilter(".*"),))
    assert total == 0

    items, total = metadata.search((TextFilter("a+b"),))
    assert [f.file_id for f in items] == ["f2"]


def test_search_tags_any_of(metadata):
    metadata.insert(make_file("f1", tags=["red"]))
    metadata.insert(make_file("f2", tags=["blue", "green"]))
    metadata.insert(make_file("f3", tags=["yellow"]))

    items, total = metadata.search((TagFilter(frozenset({"red", "green"})),))

    assert total == 2
    assert {f.file_id for f in items} == {"f1", "f2"}


def test_search_combines_filters(metadata):
    metadata.insert(make_file("f1", tags=["red"]))
    metadata.insert(make_file("f2", owner="bob", tags=["red"]))

    items, total = metadata.search(
        (OwnerFilter("bob"), TagFilter(frozenset({"red"}))))

    assert [f.file_id for f in items] == ["f2"]


def test_compare_and_swap(metadata):
    file = make_file("f1")
    metadata.insert(file)

    updated = dataclasses.replace(file, description="changed")

    assert metadata.compare_and_swap("f1", 0, updated)
    stored = metadata.find_by_id("f1")
    assert stored.description == "changed"
    assert stored.revision == 1

    assert not metadata.compare_and_swap("f1", 0, updated)
    assert metadata.compare_and_swap("f1", 1, stored)
    assert metadata.find_by_id("f1").revision == 2


def test_compare_and_swap_missing(metadata):
    assert not metadata.compare_and_swap("missing", 0, make_file("missing"))


def test_document_shape():
    file = make_file("f1", tags=["b", "a"])
    doc = to_document(file)

    assert doc["fileId"] == "f1"
    assert doc["tags"] == ["a", "b"]
    assert doc["versions"][0]["versionNumber"] == 1
    assert from_document(doc) == file


def test_persists_across_instances():
    backing = MemoryFS()
    FSMetadataStore(backing).insert(make_file("f1"))

    assert FSMetadataStore(backing).find_by_id("f1").file_id == "f1"


def test_revision_documents():
    backing = MemoryFS()
    metadata = FSMetadataStore(backing)
    file = make_file("f1")
    metadata.insert(file)
    metadata.compare_and_swap("f1", 0, dataclasses.replace(file, tags={"x"}))

    assert sorted(backing.listdir("files/f1")) == ["0.json", "1.json"]
    assert metadata.find_by_id("f1").tags == frozenset({"x"})


def test_compare_and_swap_across_instances():
    backing = MemoryFS()
    first, second = FSMetadataStore(backing), FSMetadataStore(backing)
    first.insert(make_file("f1"))

    seen_first = first.find_by_id("f1")
    seen_second = second.find_by_id("f1")
    assert seen_first.revision == seen_second.revision == 0

    assert first.compare_and_swap(
        "f1", 0, dataclasses.replace(seen_first, description="first"))
    assert not second.compare_and_swap(
        "f1", 0, dataclasses.replace(seen_second, description="second"))

    assert second.find_by_id("f1").description == "first"
    assert second.find_by_id("f1").revision == 1


def test_compare_and_swap_loses_to_pending_revision(metadata):
    file = make_file("f1")
    metadata.insert(file)
    metadata.fs.writebytes("files/f1/1.json", b'{"fileId": "f1", "orig')

    assert metadata.find_by_id("f1").revision == 0
    assert not metadata.compare_and_swap(
        "f1", 0, dataclasses.replace(file, description="late"))
    assert metadata.find_by_id("f1").description == ""
