"""Input resolution and the input lock record.

An input is a named external source tree (a package index snapshot, an
overlay collection, ...) pinned to an exact revision:

    specs = [
        InputSpec("nixpkgs", "github:nixos/nixpkgs/nixos-24.05"),
        InputSpec("rust-overlay", "github:oxalica/rust-overlay",
                  follows={"nixpkgs": "nixpkgs"}),
    ]
    resolved, lock = resolve_inputs(specs, store_dir, LockRecord.load(path))
    resolved["rust-overlay"].inputs["nixpkgs"] is resolved["nixpkgs"]   # True

``follows`` aliases a sub-input of one input to a top-level input, so
the shared source is resolved once and the same object is handed to
both consumers.

A revision already in the lock record is reused unless the input is
being refreshed or its locator changed; resolving twice with no changes
yields a byte-identical lock file.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Mapping

from pinbuild.errors import ConfigError, InputCycle, UnresolvableInput
from pinbuild.fetchers import Fetcher, Locator, default_fetchers
from pinstore.hash import from_sri, to_sri
from pinstore.nar import nar_hash

log = logging.getLogger(__name__)

LOCK_VERSION = 1


@dataclass(frozen=True)
class InputSpec:
    name: str
    locator: str
    revision_override: str | None = None
    follows: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolvedInput:
    name: str
    locator: str
    rev: str
    nar_hash: str  # SRI
    path: Path
    inputs: Mapping[str, ResolvedInput] = field(default_factory=dict)

    def __str__(self) -> str:
        return str(self.path)


@dataclass(frozen=True)
class LockNode:
    locator: str
    rev: str
    nar_hash: str
    follows: Mapping[str, str] = field(default_factory=dict)

    def to_json(self) -> dict:
        return {
            "follows": dict(self.follows),
            "locked": {"narHash": self.nar_hash, "rev": self.rev},
            "original": self.locator,
        }

    @classmethod
    def from_json(cls, data: dict) -> LockNode:
        nar_hash = data["locked"]["narHash"]
        from_sri(nar_hash)
        return cls(
            locator=data["original"],
            rev=data["locked"]["rev"],
            nar_hash=nar_hash,
            follows=dict(data.get("follows", {})),
        )


@dataclass(frozen=True)
class LockRecord:
    nodes: Mapping[str, LockNode] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> LockRecord:
        """Read a lock file; a missing file is an empty record."""
        if not path.exists():
            return cls()
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise ConfigError(f"{path}: {e}")
        if data.get("version") != LOCK_VERSION:
            raise ConfigError(f"{path}: unsupported lock version {data.get('version')!r}")
        try:
            nodes = {name: LockNode.from_json(node) for name, node in data["nodes"].items()}
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"{path}: malformed lock node: {e}")
        return cls(nodes)

    def dumps(self) -> str:
        data = {
            "nodes": {name: node.to_json() for name, node in self.nodes.items()},
            "version": LOCK_VERSION,
        }
        return json.dumps(data, indent=2, sort_keys=True) + "\n"

    def write(self, path: Path) -> bool:
        """Replace ``path`` with this record. False if nothing changed."""
        text = self.dumps()
        if path.exists() and path.read_text() == text:
            return False
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(text)
            os.replace(tmp, path)
        except BaseException:
            os.unlink(tmp)
            raise
        return True


def check_follows(specs: Iterable[InputSpec]) -> list[str]:
    """Validate the follows graph; returns names in dependency order.

    Every target must be a declared input. Raises InputCycle on a cycle.
    """
    by_name = {s.name: s for s in specs}
    for spec in by_name.values():
        for sub, target in spec.follows.items():
            if target not in by_name:
                raise UnresolvableInput(
                    spec.name, f"sub-input {sub!r} follows undeclared input {target!r}")

    order: list[str] = []
    state: dict[str, str] = {}  # name -> "active" | "done"

    def visit(name: str, path: list[str]) -> None:
        if state.get(name) == "done":
            return
        if state.get(name) == "active":
            raise InputCycle(path[path.index(name):] + [name])
        state[name] = "active"
        for target in sorted(by_name[name].follows.values()):
            visit(target, path + [name])
        state[name] = "done"
        order.append(name)

    for name in sorted(by_name):
        visit(name, [])
    return order


class _Resolver:
    def __init__(self, store_dir: Path, lock: LockRecord, fetchers: Mapping[str, Fetcher],
                 refresh: frozenset[str], offline: bool):
        self.store_dir = store_dir
        self.lock = lock
        self.fetchers = fetchers
        self.refresh = refresh
        self.offline = offline
        self.nodes: dict[str, LockNode] = {}
        self._nodes_lock = threading.Lock()

    def pick_rev(self, spec: InputSpec, locator: Locator, fetcher: Fetcher) -> tuple[str, str | None]:
        """(revision, expected NAR hash or None)."""
        node = self.lock.nodes.get(spec.name)
        locked = node if node and node.locator == spec.locator else None
        if spec.revision_override:
            expected = locked.nar_hash if locked and locked.rev == spec.revision_override else None
            return spec.revision_override, expected
        if locked and spec.name not in self.refresh:
            return locked.rev, locked.nar_hash
        if self.offline:
            raise UnresolvableInput(spec.name, "not in the lock file and running offline")
        return fetcher.latest(spec.name, locator), None

    def fetch(self, spec: InputSpec) -> tuple[str, str, Path]:
        try:
            locator = Locator.parse(spec.locator)
        except ValueError as e:
            raise UnresolvableInput(spec.name, str(e))
        fetcher = self.fetchers.get(locator.scheme)
        if fetcher is None:
            raise UnresolvableInput(spec.name, f"unsupported locator scheme {locator.scheme!r}")

        rev, expected = self.pick_rev(spec, locator, fetcher)
        path = fetcher.fetch(spec.name, locator, rev, self.store_dir)
        sri = to_sri(nar_hash(path))
        if expected is not None and sri != expected:
            raise UnresolvableInput(spec.name, f"NAR hash mismatch: locked {expected}, got {sri}")

        with self._nodes_lock:
            self.nodes[spec.name] = LockNode(spec.locator, rev, sri, dict(spec.follows))
        log.debug("resolved %s to %s (%s)", spec.name, rev, sri)
        return rev, sri, path


def resolve_inputs(
    specs: Iterable[InputSpec],
    store_dir: Path,
    lock: LockRecord | None = None,
    fetchers: Mapping[str, Fetcher] | None = None,
    *,
    refresh: Iterable[str] = (),
    offline: bool = False,
    max_workers: int = 4,
) -> tuple[dict[str, ResolvedInput], LockRecord]:
    """Resolve every spec to exactly one ResolvedInput.

    Fetches run in a thread pool; the follows graph is checked before
    any of them start. Returns the resolved inputs and the new lock
    record (the caller decides whether to write it).
    """
    specs = list(specs)
    by_name = {s.name: s for s in specs}
    if len(by_name) != len(specs):
        raise ValueError("duplicate input names")
    order = check_follows(specs)
    resolver = _Resolver(
        store_dir, lock or LockRecord(),
        fetchers if fetchers is not None else default_fetchers(Path.cwd()),
        frozenset(refresh), offline,
    )

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {name: pool.submit(resolver.fetch, by_name[name]) for name in order}
        fetched = {name: f.result() for name, f in futures.items()}

    resolved: dict[str, ResolvedInput] = {}
    for name in order:
        rev, sri, path = fetched[name]
        spec = by_name[name]
        resolved[name] = ResolvedInput(
            name=name, locator=spec.locator, rev=rev, nar_hash=sri, path=path,
            inputs={sub: resolved[target] for sub, target in spec.follows.items()},
        )
    return resolved, LockRecord(dict(sorted(resolver.nodes.items())))
