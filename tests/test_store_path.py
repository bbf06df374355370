"""Tests for store path computation."""

import pytest

from pinstore.hash import sha256
from pinstore.store_path import (
    DEFAULT_STORE_DIR,
    HASH_CHARS,
    make_output_path,
    make_source_store_path,
    make_store_path,
    make_text_store_path,
    split_store_path,
)


def test_text_store_path_format():
    """Store path has the form <store>/<32-char-hash>-<name>."""
    path = make_text_store_path("hello.txt", b"hello world")
    store_dir, hash_part, name = split_store_path(path)
    assert store_dir == DEFAULT_STORE_DIR
    assert len(hash_part) == HASH_CHARS
    assert name == "hello.txt"


def test_text_store_path_deterministic():
    assert make_text_store_path("test", b"content") == make_text_store_path("test", b"content")


def test_text_store_path_content_sensitive():
    assert make_text_store_path("test", b"aaa") != make_text_store_path("test", b"bbb")


def test_text_store_path_name_sensitive():
    assert make_text_store_path("foo", b"content") != make_text_store_path("bar", b"content")


def test_references_change_the_path():
    plain = make_text_store_path("x.drv", b"d")
    with_ref = make_text_store_path("x.drv", b"d", [f"{DEFAULT_STORE_DIR}/{'0' * 32}-src"])
    assert plain != with_ref


def test_no_references_means_bare_type():
    """"text" with no references hashes as "text", not "text:"."""
    h = sha256(b"content")
    assert make_text_store_path("t", b"content") == make_store_path("text", h, "t")
    assert make_text_store_path("t", b"content") != make_store_path("text:", h, "t")


def test_store_dir_is_part_of_the_name():
    a = make_text_store_path("t", b"c", store_dir="/tmp/store-a")
    b = make_text_store_path("t", b"c", store_dir="/tmp/store-b")
    assert a.startswith("/tmp/store-a/")
    assert split_store_path(a)[1] != split_store_path(b)[1]


def test_source_store_path_format():
    path = make_source_store_path("my-source", sha256(b"some nar data"))
    _, hash_part, name = split_store_path(path)
    assert len(hash_part) == HASH_CHARS
    assert name == "my-source"


def test_output_path_suffix():
    h = sha256(b"drv")
    assert make_output_path(h, "out", "tool-1.0").endswith("-tool-1.0")
    assert make_output_path(h, "doc", "tool-1.0").endswith("-tool-1.0-doc")
    assert make_output_path(h, "out", "tool-1.0") != make_output_path(h, "doc", "tool-1.0")


def test_split_store_path_rejects_garbage():
    with pytest.raises(ValueError, match="not a store path"):
        split_store_path("/nix/store/short-name")
