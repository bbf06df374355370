"""Toolchain selection from a version manifest.

The project pins its compiler in a rustup-style toolchain file:

    [toolchain]
    channel = "1.78.0"
    components = ["rustfmt", "clippy"]
    targets = ["x86_64-unknown-linux-gnu"]

``toolchain_overlay`` provides ``toolchain_from_file``; the project
overlay binds ``toolchain`` to the result of reading the project's
file, replacing the stock (unpinned host) toolchain. The channel is
enforced at build time through ``RUSTUP_TOOLCHAIN``, which the rustup
proxies for cargo and rustc honour.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path

from pinbuild.errors import ConfigError
from pinbuild.overlay import OverlayFn
from pinbuild.package_set import HostPackage


@dataclass(frozen=True)
class Toolchain:
    cargo: HostPackage
    rustc: HostPackage
    channel: str | None = None
    components: tuple[str, ...] = ()
    targets: tuple[str, ...] = ()

    @property
    def bin_dirs(self) -> tuple[Path, ...]:
        return self.cargo.bin_dirs + self.rustc.bin_dirs

    @property
    def identity(self) -> str:
        """What the build key records for this toolchain."""
        return self.channel or "host"

    def env(self) -> dict[str, str]:
        return {"RUSTUP_TOOLCHAIN": self.channel} if self.channel else {}


def read_toolchain_file(path: Path) -> dict:
    """The ``[toolchain]`` table of ``path``.

    A legacy ``rust-toolchain`` file holding a bare channel name is
    accepted too.
    """
    text = path.read_text()
    if path.suffix != ".toml" and "[" not in text:
        return {"channel": text.strip()}
    try:
        table = tomllib.loads(text).get("toolchain")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path}: {e}")
    if not isinstance(table, dict) or not isinstance(table.get("channel"), str):
        raise ConfigError(f"{path}: expected a [toolchain] table with a channel")
    return table


def toolchain_overlay(final, prev):
    def from_file(path: Path) -> Toolchain:
        table = read_toolchain_file(path)
        return Toolchain(
            cargo=final.cargo,
            rustc=final.rustc,
            channel=table["channel"],
            components=tuple(table.get("components", ())),
            targets=tuple(table.get("targets", ())),
        )

    return {
        "toolchain": lambda: Toolchain(cargo=final.cargo, rustc=final.rustc),
        "toolchain_from_file": lambda: from_file,
    }


def project_toolchain_overlay(toolchain_file: Path) -> OverlayFn:
    def overlay(final, prev):
        if not toolchain_file.exists():
            return {}
        return {"toolchain": lambda: final.toolchain_from_file(toolchain_file)}
    return overlay
