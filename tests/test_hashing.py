# -*- coding: utf-8 -*-

from io import BytesIO
import hashlib

import pytest

from hashvault import hashing


def test_digest_bytes():
    assert hashing.digest(b"hello world") == hashlib.sha256(b"hello world").hexdigest()


def test_digest_fileobj():
    assert hashing.digest(BytesIO(b"hello world")) == hashing.digest(b"hello world")


def test_digest_algorithm():
    assert hashing.digest(b"x", "sha1") == hashlib.sha1(b"x").hexdigest()


@pytest.mark.parametrize(
    "value,expected",
    [
        ("a" * 64, True),
        ("A" * 64, True),
        (hashlib.sha256(b"").hexdigest(), True),
        ("a" * 63, False),
        ("g" * 64, False),
        ("", False),
        (None, False),
        (123, False),
        ("a" * 63 + "\n", False),
    ],
)
def test_is_valid_digest(value, expected):
    assert hashing.is_valid_digest(value) is expected


def test_is_valid_digest_algorithm():
    assert hashing.is_valid_digest("a" * 32, "md5")
    assert not hashing.is_valid_digest("a" * 64, "md5")


@pytest.mark.parametrize(
    "a,b,expected",
    [
        ("abc123", "abc123", True),
        ("ABC123", "abc123", True),
        ("abc123", "abc124", False),
        ("abc123", "abc1234", False),
        ("", "", False),
        (None, "abc", False),
    ],
)
def test_digests_match(a, b, expected):
    assert hashing.digests_match(a, b) is expected


def test_generate_file_id():
    ids = {hashing.generate_file_id("a.txt", "alice") for _ in range(100)}

    assert len(ids) == 100
    assert all(len(i) == 32 for i in ids)
    assert all(set(i) <= set("0123456789abcdef") for i in ids)
