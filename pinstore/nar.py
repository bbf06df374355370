"""NAR (Nix Archive) serialization and hashing.

NAR is a deterministic archive format: no timestamps, owners or modes
beyond the executable bit, and directory entries in sorted order. The
same tree always produces the same bytes, so the SHA-256 of the NAR
stream is a content address for a tree.

Every token is written as uint64_le(length) + bytes + zero padding to
an 8-byte boundary. Grammar:

    str("nix-archive-1")
    str("(") str("type")
      str("regular") [str("executable") str("")] str("contents") str(<data>)
    | str("symlink") str("target") str(<target>)
    | str("directory") { str("entry") str("(") str("name") str(<n>) str("node") <node> str(")") }
    str(")")

Besides whole paths, this module serializes a *file set*: a root
directory plus a collection of relative member paths. Only members (and
the directories leading to them) are visited, so files outside the set
never influence the hash. A directory tree filtered down to exactly
those members serializes to the same bytes.
"""

from __future__ import annotations

import hashlib
import os
import struct
from pathlib import Path
from typing import Iterable, Union

# A directory node maps entry names to child nodes; a leaf is the
# on-disk path whose contents are archived.
_Tree = dict[str, Union["_Tree", Path]]


def _pad8(n: int) -> int:
    return (8 - n % 8) % 8


def _str(s: str | bytes) -> bytes:
    if isinstance(s, str):
        s = s.encode()
    return struct.pack("<Q", len(s)) + s + b"\0" * _pad8(len(s))


def nar_serialize(path: str | Path) -> bytes:
    """Serialize a filesystem path to NAR bytes."""
    parts = [_str("nix-archive-1")]
    _serialize_path(Path(path), parts)
    return b"".join(parts)


def _serialize_leaf(path: Path, parts: list[bytes]) -> bool:
    """Append a symlink or regular file node. False if path is a directory."""
    if path.is_symlink():
        parts += [_str("("), _str("type"), _str("symlink"),
                  _str("target"), _str(os.readlink(path)), _str(")")]
        return True
    if path.is_file():
        parts += [_str("("), _str("type"), _str("regular")]
        # only the executable bit survives
        if os.access(path, os.X_OK):
            parts += [_str("executable"), _str("")]
        parts += [_str("contents"), _str(path.read_bytes()), _str(")")]
        return True
    if path.is_dir():
        return False
    raise ValueError(f"unsupported file type: {path}")


def _serialize_path(path: Path, parts: list[bytes]) -> None:
    if _serialize_leaf(path, parts):
        return
    parts += [_str("("), _str("type"), _str("directory")]
    for name in sorted(os.listdir(path)):
        parts += [_str("entry"), _str("("), _str("name"), _str(name), _str("node")]
        _serialize_path(path / name, parts)
        parts.append(_str(")"))
    parts.append(_str(")"))


def _build_tree(root: Path, members: Iterable[str]) -> _Tree:
    tree: _Tree = {}
    for rel in members:
        *dirs, leaf = rel.split("/")
        node = tree
        for d in dirs:
            child = node.setdefault(d, {})
            if not isinstance(child, dict):
                raise ValueError(f"file set member {rel!r} is nested under a file")
            node = child
        node[leaf] = root / rel
    return tree


def _serialize_tree(tree: _Tree, parts: list[bytes]) -> None:
    parts += [_str("("), _str("type"), _str("directory")]
    for name in sorted(tree):
        parts += [_str("entry"), _str("("), _str("name"), _str(name), _str("node")]
        child = tree[name]
        if isinstance(child, dict):
            _serialize_tree(child, parts)
        elif not _serialize_leaf(child, parts):
            raise ValueError(f"file set member is a directory: {child}")
        parts.append(_str(")"))
    parts.append(_str(")"))


def nar_serialize_fileset(root: str | Path, members: Iterable[str]) -> bytes:
    """Serialize only ``members`` (POSIX paths relative to ``root``)."""
    parts = [_str("nix-archive-1")]
    _serialize_tree(_build_tree(Path(root), members), parts)
    return b"".join(parts)


def nar_hash(path: str | Path) -> bytes:
    """SHA-256 of the NAR serialization. Same as `nix hash path`."""
    return hashlib.sha256(nar_serialize(path)).digest()


def nar_hash_fileset(root: str | Path, members: Iterable[str]) -> bytes:
    return hashlib.sha256(nar_serialize_fileset(root, members)).digest()
