# -*- coding: utf-8 -*-

from datetime import datetime, timezone

import pytest

from hashvault.models import (
    FileVersion,
    LogicalFile,
    OwnerFilter,
    Page,
    TagFilter,
    TextFilter,
    build_filters,
)

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_version(number):
    return FileVersion(number, "%064x" % number, "addr%d" % number, 1,
                       "text/plain", "alice", NOW)


def test_build_filters_empty():
    assert build_filters() == ()
    assert build_filters(text="  ", owner="", tags=[" ", ""]) == ()


def test_build_filters():
    filters = build_filters(text=" report ", owner="alice", tags="a, b,,")

    assert filters == (
        TextFilter("report"),
        OwnerFilter("alice"),
        TagFilter(frozenset({"a", "b"})),
    )


def test_current_version():
    file = LogicalFile("f1", "a.txt", "alice", NOW, NOW,
                       versions=(make_version(1), make_version(2)))

    assert file.version_count == 2
    assert file.current_version.version_number == 2


def test_current_version_empty():
    file = LogicalFile("f1", "a.txt", "alice", NOW, NOW)

    assert file.current_version is None


@pytest.mark.parametrize(
    "total,page,page_size,total_pages,has_next,has_prev",
    [
        (0, 1, 10, 0, False, False),
        (10, 1, 10, 1, False, False),
        (11, 1, 10, 2, True, False),
        (25, 2, 10, 3, True, True),
        (25, 3, 10, 3, False, True),
    ],
)
def test_page(total, page, page_size, total_pages, has_next, has_prev):
    result = Page((), total, page, page_size)

    assert result.total_pages == total_pages
    assert result.has_next is has_next
    assert result.has_prev is has_prev
