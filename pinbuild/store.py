"""The local store: a directory of immutable, content-addressed entries.

Entries are only ever created by renaming a fully written staging
directory into place, so a store path either exists complete or not at
all.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from pinstore.nar import nar_hash
from pinstore.store_path import make_source_store_path

log = logging.getLogger(__name__)


def default_store_dir() -> Path:
    if os.environ.get("PINBUILD_STORE"):
        return Path(os.environ["PINBUILD_STORE"])
    cache = os.environ.get("XDG_CACHE_HOME") or os.path.join(os.path.expanduser("~"), ".cache")
    return Path(cache) / "pinbuild" / "store"


def make_staging_dir(store_dir: Path, name: str) -> Path:
    """A private directory inside the store, for building ``name``.

    Same filesystem as the final path, so publishing is a rename.
    """
    store_dir.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix=f".staging-{name}-", dir=store_dir))


def publish(staging: Path, dest: Path) -> Path:
    """Atomically move ``staging`` to ``dest``.

    If another run published ``dest`` first, that copy wins and
    ``staging`` is discarded.
    """
    try:
        os.rename(staging, dest)
    except OSError:
        if not dest.exists():
            raise
        log.debug("%s already published, discarding %s", dest, staging)
        shutil.rmtree(staging, ignore_errors=True)
    return dest


def add_to_store(tree: Path, store_dir: Path, name: str = "source") -> tuple[Path, bytes]:
    """Import a file or directory as a source path. Returns (path, NAR hash)."""
    h = nar_hash(tree)
    dest = Path(make_source_store_path(name, h, store_dir=str(store_dir)))
    if dest.exists():
        return dest, h
    staging = make_staging_dir(store_dir, name)
    try:
        target = staging / "tree"
        if tree.is_dir() and not tree.is_symlink():
            shutil.copytree(tree, target, symlinks=True)
        else:
            shutil.copy2(tree, target, follow_symlinks=False)
        publish(target, dest)
    finally:
        shutil.rmtree(staging, ignore_errors=True)
    return dest, h


def add_text(path: Path, content: str) -> Path:
    """Write ``content`` at the precomputed store path ``path``, once."""
    if path.exists():
        return path
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    with os.fdopen(fd, "w") as f:
        f.write(content)
    os.replace(tmp, path)
    return path
