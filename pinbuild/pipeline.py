"""The build pipeline, end to end.

    check lock -> resolve inputs -> compose index -> filter sources
    -> build (staged) -> augment (staged) -> publish -> result link

Everything before publishing happens in a staging directory inside the
store; any failure removes it, so the output path only ever holds a
complete, augmented package. An output that already exists is reused.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from pinbuild.augment import augment
from pinbuild.builder import build_artifact
from pinbuild.cargo import check_lock
from pinbuild.context import BuildContext
from pinbuild.descriptor import BuildDescriptor, Package, make_package
from pinbuild.errors import ConfigError
from pinbuild.fetchers import Fetcher, default_fetchers
from pinbuild.fileset import filter_source
from pinbuild.inputs import LockRecord, ResolvedInput, resolve_inputs
from pinbuild.overlay import IndexView, OverlayFn, compose
from pinbuild.package_set import host_overlay, make_bin_path, prefix_overlay
from pinbuild.store import add_text, make_staging_dir, publish
from pinbuild.toolchain import project_toolchain_overlay, toolchain_overlay
from pinstore.derivation import serialize

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineOptions:
    refresh: tuple[str, ...] = ()
    overrides: Mapping[str, str] = field(default_factory=dict)
    offline: bool = False
    dry_run: bool = False
    jobs: int | None = None
    keep_failed: bool = False
    run_checks: bool | None = None
    out_link: Path | None = None
    write_lock: bool = True
    timeout: float | None = None
    overlays: tuple[OverlayFn, ...] = ()
    fetchers: Mapping[str, Fetcher] | None = None


@dataclass(frozen=True)
class PipelineResult:
    package: Package
    descriptor: BuildDescriptor
    inputs: dict[str, ResolvedInput]
    built: bool


def resolve_project_inputs(ctx: BuildContext, options: PipelineOptions
                           ) -> tuple[dict[str, ResolvedInput], LockRecord]:
    specs = list(ctx.config.inputs)
    names = {s.name for s in specs}
    unknown = sorted(set(options.overrides) - names)
    if unknown:
        raise ConfigError(f"cannot override undeclared inputs: {', '.join(unknown)}")
    specs = [dataclasses.replace(s, locator=options.overrides[s.name], revision_override=None)
             if s.name in options.overrides else s for s in specs]

    resolved, lock = resolve_inputs(
        specs, ctx.store_dir, ctx.input_lock,
        options.fetchers if options.fetchers is not None else default_fetchers(ctx.root, options.timeout),
        refresh=options.refresh, offline=options.offline,
    )
    if options.write_lock and specs and lock.write(ctx.input_lock_path):
        log.info("updated %s", ctx.input_lock_path.name)
    return resolved, lock


def compose_index(ctx: BuildContext, resolved: Mapping[str, ResolvedInput],
                  overlays: tuple[OverlayFn, ...] = ()) -> IndexView:
    """The package index for this project.

    Layers, lowest first: host executables, project values, the toolchain
    overlay, explicit ``[packages]`` prefixes, the project's toolchain
    file, then ``overlays``.
    """
    config = ctx.config
    wanted = {"cargo", "rustc", *config.runtime_packages, *config.devshell_packages}
    wanted.discard("toolchain")

    def project(final, prev):
        return {"inputs": lambda: dict(resolved), "manifest": lambda: ctx.manifest}

    return compose([
        host_overlay(wanted, ctx.store_dir),
        project,
        toolchain_overlay,
        prefix_overlay(config.packages),
        project_toolchain_overlay(ctx.root / config.toolchain_file),
        *overlays,
    ])


def make_descriptor(ctx: BuildContext, index: IndexView, resolved: Mapping[str, ResolvedInput],
                    run_checks: bool | None = None) -> BuildDescriptor:
    config = ctx.config
    source = filter_source(ctx.root, config.src, config.ignore)
    return BuildDescriptor(
        manifest=ctx.manifest,
        locked_dependencies=ctx.cargo_lock.graph(),
        source=source,
        target=config.target,
        toolchain=index.toolchain,
        inputs={name: r.rev for name, r in resolved.items()},
        run_checks=config.run_checks if run_checks is None else run_checks,
        runtime_path=make_bin_path(index[n] for n in config.runtime_packages),
        completions=config.completions,
    )


def _link(out: Path, link: Path) -> None:
    tmp = link.with_name(f".{link.name}.tmp")
    if tmp.is_symlink():
        tmp.unlink()
    tmp.symlink_to(out)
    os.replace(tmp, link)


def build(ctx: BuildContext, descriptor: BuildDescriptor,
          options: PipelineOptions) -> tuple[Package, bool]:
    """Build, augment and publish ``descriptor`` unless already in the store.

    Returns the package and whether it was built by this call.
    """
    pkg = make_package(descriptor, ctx.store_dir)
    out = Path(pkg.out)
    if out.exists():
        log.info("%s is up to date", out)
        return pkg, False

    src = descriptor.source.add_to_store(ctx.store_dir)
    log.debug("sources at %s", src)
    staging = make_staging_dir(ctx.store_dir, descriptor.name)
    try:
        build_artifact(descriptor, staging, jobs=options.jobs,
                       keep_failed=options.keep_failed, timeout=options.timeout)
        log.info("generating completions and wrapper for %s", descriptor.manifest.name)
        augment(staging, out, descriptor.manifest, ctx.version,
                descriptor.runtime_path, descriptor.completions, options.timeout)
        add_text(Path(pkg.drv_path), serialize(pkg.drv))
        publish(staging, out)
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        raise
    log.info("built %s", out)
    return pkg, True


def run_pipeline(ctx: BuildContext, options: PipelineOptions = PipelineOptions()) -> PipelineResult:
    check_lock(ctx.manifest, ctx.cargo_lock)
    resolved, _ = resolve_project_inputs(ctx, options)
    index = compose_index(ctx, resolved, options.overlays)
    descriptor = make_descriptor(ctx, index, resolved, options.run_checks)

    if options.dry_run:
        return PipelineResult(make_package(descriptor, ctx.store_dir), descriptor, resolved, False)

    pkg, built = build(ctx, descriptor, options)
    if options.out_link is not None:
        _link(Path(pkg.out), options.out_link)
    return PipelineResult(pkg, descriptor, resolved, built)
