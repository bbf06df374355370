#!/usr/bin/env python3
"""pinbuild: reproducible builds of pinned command-line tools."""

import argparse
import json
import logging
import sys
from pathlib import Path

from pinbuild.context import load_context
from pinbuild.devshell import enter_shell, shell_env
from pinbuild.errors import PinbuildError
from pinbuild.log import configure_logging
from pinbuild.pipeline import (
    PipelineOptions,
    compose_index,
    resolve_project_inputs,
    run_pipeline,
)
from pinstore import nar
from pinstore.derivation import Derivation, parse
from pinstore.hash import nix32_encode, to_sri

log = logging.getLogger("pinbuild")


def _options(args, **kw) -> PipelineOptions:
    return PipelineOptions(
        refresh=tuple(args.update_input),
        overrides=dict(args.override_input),
        offline=args.offline,
        **kw,
    )


def cmd_lock(args):
    ctx = load_context(args.project, args.store)
    resolved, _ = resolve_project_inputs(ctx, _options(args))
    for name, r in sorted(resolved.items()):
        print(f"{name}: {r.locator} @ {r.rev}")


def cmd_build(args):
    ctx = load_context(args.project, args.store)
    link = None if args.no_link else Path(args.out_link or ctx.root / "result")
    result = run_pipeline(ctx, _options(
        args, dry_run=args.dry_run, jobs=args.max_jobs, keep_failed=args.keep_failed,
        run_checks=args.run_checks, out_link=link,
    ))
    print(result.package.out)


def _drv_json(drv_path: str, drv: Derivation) -> dict:
    return {
        "drvPath": drv_path,
        "outputs": {k: {"path": v.path} for k, v in drv.outputs.items()},
        "inputSrcs": drv.input_srcs,
        "system": drv.platform,
        "builder": drv.builder,
        "args": drv.args,
        "env": drv.env,
    }


def cmd_show(args):
    if args.drv:
        try:
            drv = parse(Path(args.drv).read_text())
        except (OSError, ValueError) as e:
            raise PinbuildError(f"cannot read derivation {args.drv}: {e}")
        info = _drv_json(args.drv, drv)
    else:
        ctx = load_context(args.project, args.store)
        result = run_pipeline(ctx, _options(args, dry_run=True, write_lock=False))
        info = _drv_json(result.package.drv_path, result.package.drv)
        info["sources"] = list(result.descriptor.source)
        info["inputs"] = {name: r.rev for name, r in sorted(result.inputs.items())}
    json.dump(info, sys.stdout, indent=2)
    print()


def cmd_develop(args):
    ctx = load_context(args.project, args.store)
    index = compose_index(ctx, {})
    env = shell_env(index, ctx.config.devshell_packages)
    argv = args.argv[1:] if args.argv[:1] == ["--"] else args.argv
    return enter_shell(env, argv or None)


def cmd_hash_path(args):
    h = nar.nar_hash(args.path)
    print(f"sha256:{nix32_encode(h)}" if args.base32 else to_sri(h))


def _input_flags(p):
    p.add_argument("--update-input", action="append", default=[], metavar="NAME",
                   help="Re-resolve NAME instead of using its locked revision")
    p.add_argument("--override-input", nargs=2, action="append", default=[],
                   metavar=("NAME", "LOCATOR"), help="Use LOCATOR for input NAME")
    p.add_argument("--offline", action="store_true", help="Only use locked revisions")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="pinbuild", description=__doc__.strip())
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logs")
    parser.add_argument("--show-trace", action="store_true", help="Show tracebacks on errors")
    parser.add_argument("-p", "--project", default=".", help="Project directory")
    parser.add_argument("--store", help="Store directory")
    sub = parser.add_subparsers(dest="cmd")

    p = sub.add_parser("lock", help="Resolve inputs and write pinbuild.lock")
    _input_flags(p)
    p.set_defaults(func=cmd_lock)

    p = sub.add_parser("build", help="Build, augment and publish the package")
    _input_flags(p)
    p.add_argument("--dry-run", action="store_true", help="Compute the output path only")
    p.add_argument("-j", "--max-jobs", type=int, help="Parallel compilation jobs")
    p.add_argument("-K", "--keep-failed", action="store_true",
                   help="Keep the build directory of a failed build")
    p.add_argument("--run-checks", action=argparse.BooleanOptionalAction, default=None,
                   help="Run the test suite as part of the build")
    p.add_argument("-o", "--out-link", help="Result symlink (default: ./result)")
    p.add_argument("--no-link", action="store_true", help="Do not create a result symlink")
    p.set_defaults(func=cmd_build)

    p = sub.add_parser("show", help="Show the build derivation, or a .drv file, as JSON")
    _input_flags(p)
    p.add_argument("drv", nargs="?", help="Derivation file to show instead of the project's")
    p.set_defaults(func=cmd_show)

    p = sub.add_parser("develop", help="Start a shell with the devshell packages on PATH")
    p.add_argument("argv", nargs=argparse.REMAINDER, help="Command to run instead of a shell")
    p.set_defaults(func=cmd_develop)

    p = sub.add_parser("hash-path", help="NAR hash of a path")
    p.add_argument("path")
    p.add_argument("--base32", action="store_true")
    p.set_defaults(func=cmd_hash_path)

    args = parser.parse_args(argv)
    if not args.cmd:
        parser.print_help()
        return 1
    configure_logging(args.verbose)
    try:
        return args.func(args) or 0
    except PinbuildError as e:
        if args.show_trace:
            log.exception("%s", e)
        else:
            log.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
