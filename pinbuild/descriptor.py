"""Build descriptors and the packages they name.

A BuildDescriptor is the complete declared input of one build. It is
written down as a derivation, and the output path is computed from the
derivation's modular hash:

    descriptor -> Derivation -> hash_derivation_modulo -> <store>/<hash>-<name>-<version>

Two descriptors with the same field values therefore name the same
output, and an output that already exists in the store is the result
of that exact build.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from pinbuild.cargo import PackageManifest
from pinbuild.fileset import FileSet
from pinbuild.toolchain import Toolchain
from pinstore.derivation import Derivation, DerivationOutput, hash_derivation_modulo, serialize
from pinstore.hash import sha256_hex
from pinstore.store_path import make_output_path, make_text_store_path


@dataclass(frozen=True)
class BuildDescriptor:
    manifest: PackageManifest
    locked_dependencies: Mapping[str, str]
    source: FileSet
    target: str
    toolchain: Toolchain
    inputs: Mapping[str, str] = field(default_factory=dict)  # name -> rev
    run_checks: bool = False
    runtime_path: str = ""
    completions: tuple[str, ...] = ()

    @property
    def version(self) -> str:
        return self.manifest.version

    @property
    def name(self) -> str:
        return f"{self.manifest.name}-{self.version}"

    def build_args(self) -> list[str]:
        return ["build", "--release", "--locked", "--offline", "--target", self.target]

    def dependencies_hash(self) -> str:
        lines = "".join(f"{k} {v}\n" for k, v in sorted(self.locked_dependencies.items()))
        return sha256_hex(lines.encode())

    def to_derivation(self, store_dir: Path | str) -> Derivation:
        m = self.manifest
        env = {
            "builder": "cargo",
            "cargoDepsHash": self.dependencies_hash(),
            "completions": " ".join(self.completions),
            "description": m.description,
            "doCheck": "1" if self.run_checks else "",
            "homepage": m.homepage,
            "inputs": " ".join(f"{k}={v}" for k, v in sorted(self.inputs.items())),
            "license": m.license,
            "mainProgram": m.name,
            "name": self.name,
            "pname": m.name,
            "runtimePath": self.runtime_path,
            "src": self.source.store_path(store_dir),
            "system": self.target,
            "toolchain": self.toolchain.identity,
            "version": self.version,
        }
        return Derivation(
            outputs={"out": DerivationOutput("")},
            input_srcs=[env["src"]],
            platform=self.target,
            builder="cargo",
            args=self.build_args(),
            env=env,
        )


@dataclass(frozen=True)
class Package:
    """A built package: its derivation and computed output path.

    ``str(pkg)`` is the output path.
    """

    name: str
    pname: str
    drv: Derivation
    drv_path: str
    outputs: dict[str, str]

    @property
    def out(self) -> str:
        return self.outputs["out"]

    @property
    def bin(self) -> Path:
        return Path(self.out) / "bin"

    @property
    def bin_dirs(self) -> tuple[Path, ...]:
        return (self.bin,)

    @property
    def main_program(self) -> Path:
        return self.bin / self.pname

    def __str__(self) -> str:
        return self.out


def make_package(descriptor: BuildDescriptor, store_dir: Path | str) -> Package:
    """Compute the output path and .drv path for ``descriptor``."""
    store_dir = str(store_dir)
    drv = descriptor.to_derivation(store_dir)
    drv.env["out"] = ""
    drv_hash = hash_derivation_modulo(drv)
    out = make_output_path(drv_hash, "out", descriptor.name, store_dir)
    drv.outputs["out"] = DerivationOutput(out)
    drv.env["out"] = out
    drv_path = make_text_store_path(descriptor.name + ".drv", serialize(drv).encode(),
                                    sorted(drv.input_srcs), store_dir)
    return Package(descriptor.name, descriptor.manifest.name, drv, drv_path, {"out": out})
