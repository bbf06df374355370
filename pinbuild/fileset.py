"""Source-set filtering as path-set algebra.

A FileSet is a root directory plus a set of file paths relative to it.
The source handed to the builder is

    clean(root) & (entry_1 | entry_2 | ...)

where ``clean`` drops version control metadata, editor droppings,
object files and ``result`` links, and each allow-list entry is a file,
a directory (its whole subtree) or a glob. Sets are combined with ``|``
and ``&``; nothing is copied until the builder materializes the final
set, and its hash is computed from member files only. Editing a file
outside the allow-list therefore never changes the build key.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator

from pinbuild.errors import FilterPathAbsent
from pinbuild.store import make_staging_dir, publish
from pinstore.nar import nar_hash_fileset
from pinstore.store_path import make_source_store_path

log = logging.getLogger(__name__)

VCS_DIRS = frozenset({".git", ".hg", ".svn", "CVS", ".bzr"})
JUNK_PATTERNS = ("*~", ".*.swp", ".#*", "#*#", "*.o", "*.so")
_GLOB_CHARS = frozenset("*?[")


@dataclass(frozen=True)
class FileSet:
    root: Path
    files: frozenset[str]

    def _check_root(self, other: FileSet) -> None:
        if self.root != other.root:
            raise ValueError(f"file sets have different roots: {self.root} and {other.root}")

    def __or__(self, other: FileSet) -> FileSet:
        self._check_root(other)
        return FileSet(self.root, self.files | other.files)

    def __and__(self, other: FileSet) -> FileSet:
        self._check_root(other)
        return FileSet(self.root, self.files & other.files)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.files))

    def __len__(self) -> int:
        return len(self.files)

    def __contains__(self, rel: str) -> bool:
        return rel in self.files

    def nar_hash(self) -> bytes:
        return nar_hash_fileset(self.root, self.files)

    def store_path(self, store_dir: Path | str, name: str = "source") -> str:
        return make_source_store_path(name, self.nar_hash(), store_dir=str(store_dir))

    def copy_to(self, dest: Path) -> Path:
        """Materialize the set under ``dest``. Symlinks are copied as links."""
        dest.mkdir(parents=True, exist_ok=True)
        for rel in self:
            target = dest / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(self.root / rel, target, follow_symlinks=False)
        return dest

    def add_to_store(self, store_dir: Path, name: str = "source") -> Path:
        """Publish the set at ``store_path``, unless it is already there."""
        dest = Path(self.store_path(store_dir, name))
        if dest.exists():
            return dest
        staging = make_staging_dir(store_dir, name)
        try:
            publish(self.copy_to(staging / "tree"), dest)
        finally:
            shutil.rmtree(staging, ignore_errors=True)
        return dest


def empty(root: Path) -> FileSet:
    return FileSet(Path(root), frozenset())


def unions(root: Path, sets: Iterable[FileSet]) -> FileSet:
    result = empty(root)
    for s in sets:
        result = result | s
    return result


def _walk(root: Path, start: Path, prune=None) -> set[str]:
    """Relative paths of files and symlinks under ``start``.

    Symlinks to directories are members, not descended into.
    """
    found = set()
    for dirpath, dirnames, filenames in os.walk(start):
        base = Path(dirpath)
        kept = []
        for d in dirnames:
            if (base / d).is_symlink():
                filenames.append(d)
            elif prune is None or not prune(d):
                kept.append(d)
        dirnames[:] = kept
        for f in filenames:
            found.add((base / f).relative_to(root).as_posix())
    return found


def _is_junk(rel: str, root: Path, ignore: tuple[str, ...]) -> bool:
    name = rel.rsplit("/", 1)[-1]
    if any(fnmatchcase(name, p) for p in JUNK_PATTERNS):
        return True
    if name.startswith("result") and (root / rel).is_symlink():
        return True
    return any(fnmatchcase(name, p) or fnmatchcase(rel, p) for p in ignore)


def from_source(root: Path, ignore: Iterable[str] = ()) -> FileSet:
    """The cleaned tree: every file under root minus VCS data and junk."""
    root = Path(root)
    ignore = tuple(ignore)
    files = _walk(root, root, prune=lambda d: d in VCS_DIRS or any(fnmatchcase(d, p) for p in ignore))
    return FileSet(root, frozenset(f for f in files if not _is_junk(f, root, ignore)))


def _normalize_entry(entry: str) -> str:
    p = PurePosixPath(entry)
    if p.is_absolute() or ".." in p.parts:
        raise ValueError(f"source filter entry {entry!r} escapes the project root")
    return p.as_posix()


def from_entry(root: Path, entry: str) -> FileSet:
    """Files named by one allow-list entry. Raises FilterPathAbsent if none."""
    root = Path(root)
    entry = _normalize_entry(entry)
    if _GLOB_CHARS & set(entry):
        matches = list(root.glob(entry))
    else:
        matches = [root / entry] if os.path.lexists(root / entry) else []

    files: set[str] = set()
    for m in matches:
        if m.is_dir() and not m.is_symlink():
            files |= _walk(root, m)
        else:
            files.add(m.relative_to(root).as_posix())
    if not files:
        raise FilterPathAbsent(entry)
    return FileSet(root, frozenset(files))


def filter_source(root: Path, allow: Iterable[str], ignore: Iterable[str] = ()) -> FileSet:
    """``from_source(root) & union(allow)``.

    Entries that match nothing contribute the empty set and are logged.
    """
    root = Path(root)
    selected = []
    for entry in allow:
        try:
            selected.append(from_entry(root, entry))
        except FilterPathAbsent as e:
            log.warning("%s, ignoring it", e)
    result = from_source(root, ignore) & unions(root, selected)
    log.debug("source filter kept %d files under %s", len(result), root)
    return result
