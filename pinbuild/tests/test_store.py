"""Tests for the local store and host packages."""

import os
import shutil

import pytest

from pinbuild.package_set import PackageNotFound, host_package, make_bin_path, prefix_package
from pinbuild.store import add_text, add_to_store, default_store_dir, make_staging_dir, publish
from pinstore.nar import nar_hash
from pinstore.store_path import split_store_path


def test_add_to_store(tmp_path):
    tree = tmp_path / "tree"
    (tree / "sub").mkdir(parents=True)
    (tree / "sub" / "a").write_text("a")
    (tree / "link").symlink_to("sub/a")
    store = tmp_path / "store"

    path, h = add_to_store(tree, store, name="tree")
    assert h == nar_hash(tree)
    assert nar_hash(path) == h
    assert os.readlink(path / "link") == "sub/a"
    assert split_store_path(str(path))[2] == "tree"
    assert add_to_store(tree, store, name="tree") == (path, h)
    assert not [p for p in os.listdir(store) if p.startswith(".staging-")]


def test_publish_keeps_the_first_copy(tmp_path):
    store = tmp_path / "store"
    dest = store / "x"
    first = make_staging_dir(store, "x")
    (first / "v").write_text("1")
    publish(first, dest)

    second = make_staging_dir(store, "x")
    (second / "v").write_text("2")
    (second / "extra").write_text("")
    assert publish(second, dest) == dest
    assert (dest / "v").read_text() == "1"
    assert not second.exists()


def test_add_text(tmp_path):
    path = tmp_path / "store" / "abc-x.drv"
    add_text(path, "Derive()")
    add_text(path, "ignored")
    assert path.read_text() == "Derive()"


def test_default_store_dir(monkeypatch, tmp_path):
    monkeypatch.setenv("PINBUILD_STORE", str(tmp_path / "s"))
    assert default_store_dir() == tmp_path / "s"
    monkeypatch.delenv("PINBUILD_STORE")
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    assert default_store_dir() == tmp_path / "cache" / "pinbuild" / "store"


@pytest.mark.skipif(shutil.which("sh") is None, reason="no sh on PATH")
def test_host_package(tmp_path):
    pkg = host_package("sh", tmp_path / "store")
    assert os.path.realpath(pkg.bin / "sh") == os.path.realpath(shutil.which("sh"))
    assert os.listdir(pkg.bin) == ["sh"]


def test_host_package_missing(tmp_path):
    with pytest.raises(PackageNotFound, match="not found on PATH"):
        host_package("definitely-not-a-program", tmp_path / "store", search_path=str(tmp_path))


def test_prefix_package(tmp_path):
    with pytest.raises(PackageNotFound, match="no bin directory"):
        prefix_package("x", tmp_path)
    (tmp_path / "bin").mkdir()
    assert prefix_package("x", tmp_path).bin == tmp_path.resolve() / "bin"


def test_bin_path_order_without_repeats(tmp_path):
    a, b = tmp_path / "a", tmp_path / "b"
    for p in (a, b):
        (p / "bin").mkdir(parents=True)
    pa, pb = prefix_package("a", a), prefix_package("b", b)
    assert make_bin_path([pb, pa, pb]) == f"{pb.bin}:{pa.bin}"
    assert make_bin_path([]) == ""
