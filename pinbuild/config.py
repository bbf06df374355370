"""Project configuration (``pinbuild.toml``).

    store = "~/.cache/pinbuild/store"

    [package]
    manifest = "Cargo.toml"
    lock = "Cargo.lock"
    toolchain-file = "rust-toolchain.toml"
    target = "x86_64-unknown-linux-gnu"
    run-checks = false
    src = ["src", "Cargo.toml", "Cargo.lock"]
    ignore = ["*.log"]

    [inputs.nixpkgs]
    url = "github:nixos/nixpkgs/nixos-24.05"

    [inputs.rust-overlay]
    url = "github:oxalica/rust-overlay"
    follows = { nixpkgs = "nixpkgs" }

    [runtime]
    packages = ["nvd", "nom"]
    completions = ["bash", "zsh", "fish"]

    [devshell]
    packages = ["toolchain", "pkg-config", "cargo-watch"]

    [packages]
    nom = "/opt/nix-output-monitor"

Every key is optional; a project without the file builds as a plain
cargo project with the defaults below.
"""

from __future__ import annotations

import platform
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError

from pinbuild.errors import ConfigError
from pinbuild.inputs import InputSpec

CONFIG_FILE = "pinbuild.toml"
INPUT_LOCK_FILE = "pinbuild.lock"
SHELLS = ("bash", "zsh", "fish")


def host_triple() -> str:
    machine = platform.machine().lower()
    arch = {"amd64": "x86_64", "arm64": "aarch64"}.get(machine, machine)
    system = platform.system()
    if system == "Darwin":
        return f"{arch}-apple-darwin"
    return f"{arch}-unknown-{system.lower()}-gnu"


@dataclass(frozen=True)
class ProjectConfig:
    manifest: str = "Cargo.toml"
    lock: str = "Cargo.lock"
    toolchain_file: str = "rust-toolchain.toml"
    target: str = field(default_factory=host_triple)
    run_checks: bool = False
    src: tuple[str, ...] = ("src", "Cargo.toml", "Cargo.lock")
    ignore: tuple[str, ...] = ()
    inputs: tuple[InputSpec, ...] = ()
    runtime_packages: tuple[str, ...] = ()
    completions: tuple[str, ...] = SHELLS
    devshell_packages: tuple[str, ...] = ()
    packages: Mapping[str, str] = field(default_factory=dict)
    store: str | None = None


Shell = Literal["bash", "zsh", "fish"]


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class InputSection(_Section):
    url: str
    rev: str | None = None
    follows: dict[str, str] = {}


class PackageSection(_Section):
    manifest: str = "Cargo.toml"
    lock: str = "Cargo.lock"
    toolchain_file: str = Field("rust-toolchain.toml", alias="toolchain-file")
    target: str = Field(default_factory=host_triple)
    run_checks: StrictBool = Field(False, alias="run-checks")
    src: list[str] = ["src", "Cargo.toml", "Cargo.lock"]
    ignore: list[str] = []


class RuntimeSection(_Section):
    packages: list[str] = []
    completions: list[Shell] = list(SHELLS)


class DevshellSection(_Section):
    packages: list[str] = []


class ConfigFile(_Section):
    """Schema of ``pinbuild.toml``; unknown keys are errors."""

    store: str | None = None
    package: PackageSection = Field(default_factory=PackageSection)
    inputs: dict[str, InputSection] = {}
    runtime: RuntimeSection = Field(default_factory=RuntimeSection)
    devshell: DevshellSection = Field(default_factory=DevshellSection)
    packages: dict[str, str] = {}


def _describe(err: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in e['loc']) or '<root>'}: {e['msg']}" for e in err.errors()
    )


def parse_config(data: dict) -> ProjectConfig:
    try:
        f = ConfigFile.model_validate(data)
    except ValidationError as e:
        raise ConfigError(_describe(e)) from None
    p = f.package
    return ProjectConfig(
        manifest=p.manifest,
        lock=p.lock,
        toolchain_file=p.toolchain_file,
        target=p.target,
        run_checks=p.run_checks,
        src=tuple(p.src),
        ignore=tuple(p.ignore),
        inputs=tuple(
            InputSpec(name, spec.url, revision_override=spec.rev, follows=dict(spec.follows))
            for name, spec in f.inputs.items()
        ),
        runtime_packages=tuple(f.runtime.packages),
        completions=tuple(f.runtime.completions),
        devshell_packages=tuple(f.devshell.packages),
        packages=dict(f.packages),
        store=f.store,
    )


def load_config(root: Path) -> ProjectConfig:
    path = root / CONFIG_FILE
    if not path.exists():
        return ProjectConfig()
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path}: {e}")
    try:
        return parse_config(data)
    except ConfigError as e:
        raise ConfigError(f"{path}: {e}") from None
