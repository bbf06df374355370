"""Packages the pipeline consumes from the host, and the base index.

A host package wraps one executable found on the host's PATH. It is
materialized as a tiny store entry holding ``bin/<name>`` as a symlink
to that executable, so putting a package's ``bin`` on a PATH exposes
exactly that program, not every neighbour in /usr/bin.

Packages can also be given as explicit prefixes (``[packages]`` in
pinbuild.toml); those are used as-is and must contain ``bin/``.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping

from pinbuild.errors import PinbuildError
from pinbuild.overlay import OverlayFn
from pinbuild.store import add_to_store

log = logging.getLogger(__name__)


class PackageNotFound(PinbuildError):
    pass


@dataclass(frozen=True)
class HostPackage:
    name: str
    out: Path

    @property
    def bin(self) -> Path:
        return self.out / "bin"

    @property
    def bin_dirs(self) -> tuple[Path, ...]:
        return (self.bin,)

    def __str__(self) -> str:
        return str(self.out)


def host_package(name: str, store_dir: Path, search_path: str | None = None) -> HostPackage:
    exe = shutil.which(name, path=search_path)
    if exe is None:
        raise PackageNotFound(f"{name!r} was not found on PATH")
    exe = os.path.realpath(exe)
    with tempfile.TemporaryDirectory(prefix="pinbuild-host-") as tmp:
        tree = Path(tmp) / name
        (tree / "bin").mkdir(parents=True)
        (tree / "bin" / name).symlink_to(exe)
        out, _ = add_to_store(tree, store_dir, name=name)
    log.debug("host package %s -> %s (%s)", name, out, exe)
    return HostPackage(name, out)


def prefix_package(name: str, prefix: str | Path) -> HostPackage:
    out = Path(prefix).expanduser().resolve()
    if not (out / "bin").is_dir():
        raise PackageNotFound(f"package {name!r}: {out} has no bin directory")
    return HostPackage(name, out)


def make_bin_path(pkgs: Iterable) -> str:
    """``:``-joined bin directories of ``pkgs``, in order, without repeats."""
    dirs: list[str] = []
    for pkg in pkgs:
        for d in pkg.bin_dirs:
            if str(d) not in dirs:
                dirs.append(str(d))
    return ":".join(dirs)


def host_overlay(names: Iterable[str], store_dir: Path, search_path: str | None = None) -> OverlayFn:
    """Base layer: each name bound to the host executable of that name."""
    names = sorted(set(names))

    def overlay(final, prev):
        return {n: (lambda n=n: host_package(n, store_dir, search_path)) for n in names}
    return overlay


def prefix_overlay(prefixes: Mapping[str, str]) -> OverlayFn:
    def overlay(final, prev):
        return {n: (lambda n=n, p=p: prefix_package(n, p)) for n, p in prefixes.items()}
    return overlay
