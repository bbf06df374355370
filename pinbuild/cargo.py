"""Cargo manifest and lock file models.

The manifest is read once per run and treated as read-only. Fields
beyond ``[package]`` that pinbuild uses:

    [package.metadata.pinbuild]
    maintainers = [{ name = "...", email = "..." }]

The lock file pins every dependency to a version and, for registry
crates, a checksum. ``CargoLock.graph()`` is the locked dependency
graph that goes into the build key.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from pinbuild.errors import ConfigError, LockMismatch
from pinstore.hash import sha256_hex

DEPENDENCY_TABLES = ("dependencies", "build-dependencies")


@dataclass(frozen=True)
class Maintainer:
    name: str
    contact: str = ""


@dataclass(frozen=True)
class PackageManifest:
    name: str
    version: str
    description: str = ""
    homepage: str = ""
    license: str = ""
    maintainers: tuple[Maintainer, ...] = ()
    dependencies: frozenset[str] = frozenset()


@dataclass(frozen=True)
class LockedPackage:
    name: str
    version: str
    source: str | None = None
    checksum: str | None = None

    @property
    def content_hash(self) -> str:
        if self.checksum:
            return self.checksum
        # git and path crates: the source string pins them
        return sha256_hex(f"{self.source or 'path'}:{self.name}:{self.version}".encode())


@dataclass(frozen=True)
class CargoLock:
    packages: tuple[LockedPackage, ...] = field(default_factory=tuple)

    def graph(self) -> dict[str, str]:
        return {f"{p.name}@{p.version}": p.content_hash
                for p in sorted(self.packages, key=lambda p: (p.name, p.version))}

    def names(self) -> set[str]:
        return {p.name for p in self.packages}


def _load_toml(path: Path) -> dict:
    try:
        return tomllib.loads(path.read_text())
    except FileNotFoundError:
        raise ConfigError(f"{path} does not exist")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path}: {e}")


def _dependency_names(data: dict) -> frozenset[str]:
    names = set()
    for table in DEPENDENCY_TABLES:
        for key, spec in data.get(table, {}).items():
            # `alias = { package = "real-name", ... }`
            if isinstance(spec, dict) and "package" in spec:
                names.add(spec["package"])
            else:
                names.add(key)
    return frozenset(names)


def load_manifest(path: Path) -> PackageManifest:
    data = _load_toml(path)
    package = data.get("package")
    if not isinstance(package, dict) or "name" not in package:
        raise ConfigError(f"{path}: missing [package] name")
    meta = package.get("metadata", {}).get("pinbuild", {})
    return PackageManifest(
        name=package["name"],
        version=str(package.get("version", "0.0.0")),
        description=package.get("description", ""),
        homepage=package.get("homepage") or package.get("repository", ""),
        license=package.get("license", ""),
        maintainers=tuple(
            Maintainer(m["name"], m.get("email") or m.get("contact", ""))
            for m in meta.get("maintainers", ())
        ),
        dependencies=_dependency_names(data),
    )


def load_lock(path: Path) -> CargoLock:
    data = _load_toml(path)
    return CargoLock(tuple(
        LockedPackage(p["name"], p["version"], p.get("source"), p.get("checksum"))
        for p in data.get("package", ())
    ))


def check_lock(manifest: PackageManifest, lock: CargoLock) -> None:
    """Raise LockMismatch unless ``lock`` covers ``manifest``.

    Every declared dependency must be locked, and the lock's entry for
    the package itself must carry the manifest's version.
    """
    missing = sorted(manifest.dependencies - lock.names())
    if missing:
        raise LockMismatch(f"dependencies not in the lock file: {', '.join(missing)}")
    own = [p for p in lock.packages if p.name == manifest.name and p.source is None]
    if own and own[0].version != manifest.version:
        raise LockMismatch(
            f"lock file records {manifest.name} {own[0].version}, "
            f"manifest declares {manifest.version}")
