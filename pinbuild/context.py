"""The build context: everything read from disk, read once.

``load_context`` reads the project configuration, the cargo manifest and
lock file, and the input lock record at the start of a run. Components
receive the context instead of reopening those files, so a run sees one
consistent snapshot even if the files change underneath it.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from pinbuild.cargo import CargoLock, PackageManifest, load_lock, load_manifest
from pinbuild.config import INPUT_LOCK_FILE, ProjectConfig, load_config
from pinbuild.inputs import LockRecord
from pinbuild.store import default_store_dir

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildContext:
    root: Path
    config: ProjectConfig
    manifest: PackageManifest
    cargo_lock: CargoLock
    input_lock: LockRecord
    store_dir: Path
    rev: str

    @property
    def input_lock_path(self) -> Path:
        return self.root / INPUT_LOCK_FILE

    @property
    def version(self) -> str:
        """Release version recorded in the package metadata.

        The revision is not part of the build key: the output path only
        depends on the manifest version and what the build reads.
        """
        return f"{self.manifest.version}-{self.rev}"


def project_revision(root: Path) -> str:
    """Short git revision of ``root``; "<rev>-dirty" or "dirty" otherwise."""
    def git(*args: str) -> str:
        return subprocess.run(["git", "-C", str(root), *args], check=True,
                              capture_output=True, text=True).stdout.strip()
    try:
        rev = git("rev-parse", "--short", "HEAD")
        dirty = bool(git("status", "--porcelain", "--untracked-files=no"))
    except (OSError, subprocess.CalledProcessError):
        return "dirty"
    return f"{rev}-dirty" if dirty else rev


def load_context(root: Path | str, store: Path | str | None = None,
                 rev: str | None = None) -> BuildContext:
    root = Path(root).resolve()
    config = load_config(root)
    store_dir = Path(store or config.store or default_store_dir()).expanduser()
    ctx = BuildContext(
        root=root,
        config=config,
        manifest=load_manifest(root / config.manifest),
        cargo_lock=load_lock(root / config.lock),
        input_lock=LockRecord.load(root / INPUT_LOCK_FILE),
        store_dir=store_dir.resolve(),
        rev=rev or project_revision(root),
    )
    log.debug("project %s %s, store %s", ctx.manifest.name, ctx.version, ctx.store_dir)
    return ctx
