"""Post-build augmentation: shell completions and the runtime wrapper.

Runs on the staged output after a successful build, in two steps:

1. Run ``<binary> completions <shell>`` for every configured shell and
   install the scripts. All scripts are generated before any is
   installed; one failing shell fails the step and installs nothing.
2. Move the binary to ``bin/.wrapped/<name>`` and put a bash wrapper in
   its place that prepends the runtime dependencies to PATH and
   ``exec``s the original with its arguments untouched and the caller's
   ``$0`` as its argv[0]. The original keeps its file name, so a program
   that reads its name from argv[0] or from its own path prints the same
   usage text either way. Exit status and output pass straight through.
"""

from __future__ import annotations

import json
import logging
import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from pinbuild.cargo import PackageManifest
from pinbuild.errors import BuildFailed, CompletionGenerationFailed

log = logging.getLogger(__name__)

COMPLETION_PATHS = {
    "bash": "share/bash-completion/completions/{name}.bash",
    "zsh": "share/zsh/site-functions/_{name}",
    "fish": "share/fish/vendor_completions.d/{name}.fish",
}

WRAPPED_DIR = ".wrapped"

WRAPPER = """\
#!{shell}
PATH={path}${{PATH:+':'"$PATH"}}
export PATH
exec -a "$0" {target} "$@"
"""


@dataclass(frozen=True)
class CompletionArtifact:
    shell: str
    script: bytes

    def install_path(self, name: str) -> str:
        return COMPLETION_PATHS[self.shell].format(name=name)


def generate_completions(binary: Path, shells: tuple[str, ...] | list[str],
                         timeout: float | None = None) -> list[CompletionArtifact]:
    artifacts = []
    for shell in shells:
        if shell not in COMPLETION_PATHS:
            raise CompletionGenerationFailed(shell, "unsupported shell")
        try:
            proc = subprocess.run([str(binary), "completions", shell],
                                  capture_output=True, timeout=timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise CompletionGenerationFailed(shell, str(e))
        if proc.returncode != 0:
            detail = proc.stderr.decode(errors="replace").strip()
            raise CompletionGenerationFailed(shell, f"exit status {proc.returncode}: {detail}")
        artifacts.append(CompletionArtifact(shell, proc.stdout))
    return artifacts


def install_completions(out: Path, name: str, artifacts: list[CompletionArtifact]) -> list[Path]:
    installed = []
    for a in artifacts:
        path = out / a.install_path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(a.script)
        installed.append(path)
    return installed


def wrap_program(binary: Path, runtime_path: str, exec_path: Path | None = None) -> Path:
    """Replace ``binary`` with a PATH-prefixing wrapper.

    The original moves to ``.wrapped/<name>`` next to it. ``exec_path``
    is where it will live once the output is published; it defaults to
    its current location.
    """
    shell = shutil.which("bash")
    if shell is None:
        raise BuildFailed(f"cannot wrap {binary.name}: bash was not found on PATH")
    wrapped = binary.parent / WRAPPED_DIR / binary.name
    wrapped.parent.mkdir(exist_ok=True)
    binary.rename(wrapped)
    target = exec_path or wrapped
    binary.write_text(WRAPPER.format(
        shell=os.path.realpath(shell),
        path=shlex.quote(runtime_path),
        target=shlex.quote(str(target)),
    ))
    binary.chmod(0o555)
    return wrapped


def write_meta(out: Path, manifest: PackageManifest, version: str) -> Path:
    meta = {
        "description": manifest.description,
        "homepage": manifest.homepage,
        "license": manifest.license,
        "mainProgram": manifest.name,
        "maintainers": [{"email": m.contact, "name": m.name} for m in manifest.maintainers],
        "pname": manifest.name,
        "version": version,
    }
    path = out / "nix-support" / "meta.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(meta, indent=2, sort_keys=True) + "\n")
    return path


def augment(staging: Path, final_out: Path, manifest: PackageManifest, version: str,
            runtime_path: str, shells: tuple[str, ...], timeout: float | None = None) -> None:
    """Completions, wrapper and metadata for the output staged at ``staging``.

    ``final_out`` is the path the output will be published at.
    """
    name = manifest.name
    binary = staging / "bin" / name

    artifacts = generate_completions(binary, shells, timeout)
    for path in install_completions(staging, name, artifacts):
        log.debug("installed %s", path.relative_to(staging))

    if runtime_path:
        wrap_program(binary, runtime_path, final_out / "bin" / WRAPPED_DIR / name)
        log.debug("wrapped %s with PATH prefix %s", name, runtime_path)
    write_meta(staging, manifest, version)
