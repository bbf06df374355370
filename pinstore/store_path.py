"""Store path computation.

A store path is ``<store_dir>/<hash>-<name>``. The hash part is 32 nix32
characters (160 bits), computed as:

  1. fingerprint = "<type>:sha256:<hex(inner_hash)>:<store_dir>:<name>"
  2. SHA-256 of the fingerprint
  3. XOR-fold to 20 bytes
  4. nix32 encode

The type prefix says what kind of object the path holds:
  "text"          : a file written from bytes (inner hash = sha256 of content)
  "source"        : an imported tree (inner hash = NAR hash)
  "output:<name>" : a build output (inner hash = modular derivation hash)

References are appended to the type as ":<path>" in sorted order; with
no references there is no trailing colon.

pinbuild stores are ordinary directories, so unlike Nix the store
directory is a parameter. It is part of the fingerprint: the same build
in two different stores gets two different names.
"""

from __future__ import annotations

from pathlib import Path

from pinstore.hash import compress_hash, nix32_encode, sha256

DEFAULT_STORE_DIR = "/nix/store"
HASH_BYTES = 20
HASH_CHARS = 32


def make_store_path(type_prefix: str, inner_hash: bytes, name: str,
                    store_dir: str = DEFAULT_STORE_DIR) -> str:
    fingerprint = f"{type_prefix}:sha256:{inner_hash.hex()}:{store_dir}:{name}"
    folded = compress_hash(sha256(fingerprint.encode()), HASH_BYTES)
    return f"{store_dir}/{nix32_encode(folded)}-{name}"


def _make_type(base: str, refs: list[str]) -> str:
    # "text" with no refs must stay "text", never "text:"
    return ":".join([base, *sorted(refs)])


def make_text_store_path(name: str, content: bytes, references: list[str] | None = None,
                         store_dir: str = DEFAULT_STORE_DIR) -> str:
    return make_store_path(_make_type("text", references or []), sha256(content), name, store_dir)


def make_source_store_path(name: str, nar_hash: bytes, references: list[str] | None = None,
                           store_dir: str = DEFAULT_STORE_DIR) -> str:
    return make_store_path(_make_type("source", references or []), nar_hash, name, store_dir)


def make_output_path(drv_hash: bytes, output_name: str, name: str,
                     store_dir: str = DEFAULT_STORE_DIR) -> str:
    """Store path for a derivation output.

    "out" keeps the plain name; other outputs get a "-<output>" suffix.
    """
    path_name = name if output_name == "out" else f"{name}-{output_name}"
    return make_store_path(f"output:{output_name}", drv_hash, path_name, store_dir)


def split_store_path(path: str) -> tuple[str, str, str]:
    """Split a store path into (store_dir, hash part, name)."""
    store_dir, _, base = path.rpartition("/")
    hash_part, sep, name = base.partition("-")
    if not sep or len(hash_part) != HASH_CHARS:
        raise ValueError(f"not a store path: {path!r}")
    return store_dir, hash_part, name
