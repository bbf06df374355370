"""Development shells.

``pinbuild develop`` puts the ``[devshell]`` packages (toolchain, linker
helpers, watchers, ...) on PATH together and starts a shell, or runs a
command, in that environment. The environment is computed on every
invocation and never stored.
"""

from __future__ import annotations

import logging
import os
import subprocess
from typing import Iterable, Mapping

from pinbuild.package_set import make_bin_path

log = logging.getLogger(__name__)


def shell_env(index, names: Iterable[str], base: Mapping[str, str] | None = None) -> dict[str, str]:
    """``base`` (default: os.environ) with the packages' bin dirs in front of PATH."""
    env = dict(os.environ if base is None else base)
    prefix = make_bin_path(index[n] for n in names)
    if prefix:
        env["PATH"] = f"{prefix}:{env['PATH']}" if env.get("PATH") else prefix
    env["PINBUILD_SHELL"] = "1"
    return env


def enter_shell(env: Mapping[str, str], command: list[str] | None = None) -> int:
    """Run ``command`` (default: the user's $SHELL) in ``env``; returns its exit status."""
    argv = command or [env.get("SHELL") or "/bin/sh"]
    log.debug("entering %s", " ".join(argv))
    return subprocess.call(argv, env=dict(env))
