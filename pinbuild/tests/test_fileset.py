"""Tests for source-set filtering."""

import logging

import pytest

from pinbuild import fileset
from pinbuild.errors import FilterPathAbsent
from pinbuild.fileset import filter_source, from_entry, from_source


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "proj"
    for rel, text in {
        "Cargo.toml": "[package]\n",
        "Cargo.lock": "version = 3\n",
        "src/main.rs": "fn main() {}\n",
        "src/cli/args.rs": "\n",
        "src/main.rs~": "backup\n",
        "src/.main.rs.swp": "swap\n",
        "README.md": "readme\n",
        "docs/guide.md": "guide\n",
        ".git/HEAD": "ref: refs/heads/main\n",
        "target/release/app.o": "obj\n",
    }.items():
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(text)
    (root / "result").symlink_to(tmp_path)
    return root


ALLOW = ("src", "Cargo.toml", "Cargo.lock")


def test_allow_list_and_cleaning(tree):
    s = filter_source(tree, ALLOW)
    assert list(s) == ["Cargo.lock", "Cargo.toml", "src/cli/args.rs", "src/main.rs"]


def test_clean_drops_vcs_and_junk(tree):
    files = from_source(tree).files
    assert "README.md" in files
    assert not any(f.startswith(".git/") for f in files)
    assert "src/main.rs~" not in files
    assert "src/.main.rs.swp" not in files
    assert "target/release/app.o" not in files
    assert "result" not in files


def test_ignore_globs(tree):
    s = filter_source(tree, ("src", "docs"), ignore=("args.rs", "docs"))
    assert list(s) == ["src/main.rs"]


def test_glob_entries(tree):
    s = filter_source(tree, ("Cargo.*", "*.md"))
    assert list(s) == ["Cargo.lock", "Cargo.toml", "README.md"]


def test_filtering_is_a_fixed_point(tree, tmp_path):
    once = filter_source(tree, ALLOW)
    copy = once.copy_to(tmp_path / "copy")
    twice = filter_source(copy, ALLOW)
    assert list(twice) == list(once)
    assert twice.nar_hash() == once.nar_hash()


def test_unrelated_change_keeps_the_hash(tree):
    before = filter_source(tree, ALLOW).nar_hash()
    (tree / "README.md").write_text("edited\n")
    (tree / ".git" / "HEAD").write_text("ref: refs/heads/other\n")
    assert filter_source(tree, ALLOW).nar_hash() == before
    (tree / "src" / "main.rs").write_text("fn main() { todo!() }\n")
    assert filter_source(tree, ALLOW).nar_hash() != before


def test_absent_entry_is_logged_not_fatal(tree, caplog):
    with caplog.at_level(logging.WARNING, logger="pinbuild"):
        s = filter_source(tree, (*ALLOW, "build.rs"))
    assert list(s) == list(filter_source(tree, ALLOW))
    assert "'build.rs' matches no files" in caplog.text


def test_from_entry_raises_for_absent(tree):
    with pytest.raises(FilterPathAbsent) as exc:
        from_entry(tree, "nope/*.rs")
    assert exc.value.entry == "nope/*.rs"


@pytest.mark.parametrize("entry", ["../etc", "/etc/passwd", "src/../../x"])
def test_entries_may_not_escape(tree, entry):
    with pytest.raises(ValueError, match="escapes the project root"):
        filter_source(tree, (entry,))


def test_set_algebra(tree):
    a = from_entry(tree, "src")
    b = from_entry(tree, "src/main.rs")
    assert (a & b).files == {"src/main.rs"}
    assert (b | from_entry(tree, "Cargo.toml")).files == {"src/main.rs", "Cargo.toml"}
    assert len(fileset.empty(tree)) == 0
    with pytest.raises(ValueError, match="different roots"):
        a | fileset.empty(tree.parent)


def test_add_to_store(tree, tmp_path):
    s = filter_source(tree, ALLOW)
    store = tmp_path / "store"
    path = s.add_to_store(store)
    assert str(path) == s.store_path(store)
    assert (path / "src" / "main.rs").read_text() == "fn main() {}\n"
    assert not (path / "README.md").exists()
    assert s.add_to_store(store) == path
