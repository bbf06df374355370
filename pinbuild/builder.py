"""Artifact builder: run the pinned toolchain over the filtered sources.

The build runs in a private directory holding only the filtered file
set, with dependency resolution locked (``--locked --offline``) and the
usual reproducibility knobs set: a fixed SOURCE_DATE_EPOCH, no
incremental compilation, and the build directory remapped out of debug
info. The result is the binary alone, installed as ``bin/<name>``.

Tests (``cargo test``) are skipped unless the descriptor asks for them;
packaging favours build speed and leaves verification to a separate
stage.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path

from pinbuild.descriptor import BuildDescriptor
from pinbuild.errors import BuildFailed

log = logging.getLogger(__name__)

SOURCE_DATE_EPOCH = "0"
_TAIL_LINES = 30


def build_env(descriptor: BuildDescriptor, build_dir: Path, target_dir: Path) -> dict[str, str]:
    env = dict(os.environ)
    rustflags = env.get("RUSTFLAGS", "")
    env.update(descriptor.toolchain.env())
    env.update({
        "CARGO_INCREMENTAL": "0",
        "CARGO_TARGET_DIR": str(target_dir),
        "LC_ALL": "C",
        "PATH": os.pathsep.join([*(str(d) for d in descriptor.toolchain.bin_dirs),
                                 env.get("PATH", os.defpath)]),
        "RUSTFLAGS": f"{rustflags} --remap-path-prefix={build_dir}=/build".strip(),
        "SOURCE_DATE_EPOCH": SOURCE_DATE_EPOCH,
        "TZ": "UTC",
    })
    return env


def _run(cmd: list[str], cwd: Path, env: dict[str, str], timeout: float | None) -> None:
    log.debug("running %s in %s", " ".join(cmd), cwd)
    try:
        proc = subprocess.run(cmd, cwd=cwd, env=env, stdout=subprocess.PIPE,
                              stderr=subprocess.STDOUT, text=True, timeout=timeout)
    except FileNotFoundError:
        raise BuildFailed(f"{cmd[0]} not found")
    except subprocess.TimeoutExpired:
        raise BuildFailed(f"{' '.join(cmd)} timed out after {timeout}s")
    for line in proc.stdout.splitlines():
        log.debug("  %s", line)
    if proc.returncode != 0:
        tail = "\n".join(proc.stdout.splitlines()[-_TAIL_LINES:])
        raise BuildFailed(f"{' '.join(cmd)} exited with {proc.returncode}\n{tail}", proc.returncode)


def build_artifact(descriptor: BuildDescriptor, dest: Path, *, jobs: int | None = None,
                   keep_failed: bool = False, timeout: float | None = None) -> Path:
    """Build ``descriptor`` and install its binary under ``dest``.

    Returns the installed binary. ``dest`` is created if needed.
    """
    name = descriptor.manifest.name
    cargo = str(descriptor.toolchain.cargo.bin / "cargo")
    build_dir = Path(tempfile.mkdtemp(prefix=f"pinbuild-build-{name}-"))
    ok = False
    try:
        src = descriptor.source.copy_to(build_dir / "source")
        target_dir = build_dir / "target"
        env = build_env(descriptor, build_dir, target_dir)

        cmd = [cargo, *descriptor.build_args()]
        if jobs:
            cmd += ["--jobs", str(jobs)]
        log.info("building %s for %s with toolchain %s",
                 descriptor.name, descriptor.target, descriptor.toolchain.identity)
        _run(cmd, src, env, timeout)
        if descriptor.run_checks:
            log.info("running checks for %s", descriptor.name)
            _run([cargo, "test", "--release", "--locked", "--offline", "--target", descriptor.target],
                 src, env, timeout)

        produced = target_dir / descriptor.target / "release" / name
        if not produced.is_file():
            raise BuildFailed(f"build finished but {produced.relative_to(build_dir)} was not produced")
        installed = dest / "bin" / name
        installed.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(produced, installed)
        installed.chmod(0o555)
        ok = True
        return installed
    finally:
        if ok or not keep_failed:
            shutil.rmtree(build_dir, ignore_errors=True)
        else:
            log.warning("keeping failed build directory %s", build_dir)
