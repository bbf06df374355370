"""Tests for the pinbuild command line and development shells."""

import json
import logging
from pathlib import Path

import pytest

from pinbuild.devshell import enter_shell, shell_env
from pinbuild.log import ProgressFormatter
from pinbuild.main import main
from pinbuild.overlay import compose
from pinbuild.package_set import make_bin_path, prefix_package
from pinstore.hash import to_sri
from pinstore.nar import nar_hash

from conftest import CARGO_LOCK


@pytest.fixture
def cli_project(make_project, fake_cargo, foo_prefix, monkeypatch):
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(fake_cargo.parent))
    return make_project(
        '[runtime]\npackages = ["foo"]\n\n'
        '[devshell]\npackages = ["foo", "cargo"]\n\n'
        f'[packages]\ncargo = "{fake_cargo}"\nrustc = "{fake_cargo}"\nfoo = "{foo_prefix}"\n'
    )


def _cli(root, store, *args):
    return main(["--project", str(root), "--store", str(store), *args])


def test_hash_path(tmp_path, capsys):
    f = tmp_path / "hello.txt"
    f.write_text("hello")
    assert main(["hash-path", str(f)]) == 0
    assert capsys.readouterr().out.strip() == to_sri(nar_hash(f))
    assert main(["hash-path", "--base32", str(f)]) == 0
    assert capsys.readouterr().out.startswith("sha256:")


def test_build(cli_project, store, capsys):
    assert _cli(cli_project, store, "build") == 0
    out = Path(capsys.readouterr().out.strip())
    assert out.name.endswith("-hello-0.1.0")
    assert (out / "bin" / ".wrapped" / "hello").exists()
    assert (cli_project / "result").resolve() == out


def test_build_no_link_and_dry_run(cli_project, store, capsys):
    assert _cli(cli_project, store, "build", "--dry-run", "--no-link") == 0
    out = Path(capsys.readouterr().out.strip())
    assert not out.exists()
    assert not (cli_project / "result").exists()


def test_show(cli_project, store, capsys):
    assert _cli(cli_project, store, "show") == 0
    info = json.loads(capsys.readouterr().out)
    assert info["env"]["pname"] == "hello"
    assert info["env"]["mainProgram"] == "hello"
    assert info["args"][:2] == ["build", "--release"]
    assert "src/main.sh" in info["sources"]
    assert info["outputs"]["out"]["path"] == info["env"]["out"]


def test_show_derivation_file(cli_project, store, capsys, tmp_path):
    assert _cli(cli_project, store, "build", "--no-link") == 0
    out = capsys.readouterr().out.strip()
    assert _cli(cli_project, store, "show") == 0
    planned = json.loads(capsys.readouterr().out)

    assert main(["show", planned["drvPath"]]) == 0
    stored = json.loads(capsys.readouterr().out)
    assert stored["outputs"] == {"out": {"path": out}}
    assert stored["env"] == planned["env"]
    assert stored["args"] == planned["args"]

    (tmp_path / "junk.drv").write_text("Derive(")
    assert main(["show", str(tmp_path / "junk.drv")]) == 1


def test_lock(cli_project, store, capsys):
    with open(cli_project / "pinbuild.toml", "a") as f:
        f.write('\n[inputs.overlays]\nurl = "path:overlays"\n')
    (cli_project / "overlays").mkdir()
    (cli_project / "overlays" / "default.nix").write_text("{}\n")

    assert _cli(cli_project, store, "lock") == 0
    assert capsys.readouterr().out.startswith("overlays: path:overlays @ sha256-")
    lock = json.loads((cli_project / "pinbuild.lock").read_text())
    assert lock["version"] == 1
    assert lock["nodes"]["overlays"]["original"] == "path:overlays"

    assert _cli(cli_project, store, "lock", "--offline") == 0


def test_errors_exit_nonzero(cli_project, store, caplog):
    (cli_project / "Cargo.lock").write_text(CARGO_LOCK.replace('"0.1.0"', '"0.0.9"'))
    with caplog.at_level(logging.INFO, logger="pinbuild"):
        assert _cli(cli_project, store, "build") == 1
    assert "lock file records hello 0.0.9" in caplog.text


def test_malformed_github_input_exits_nonzero(cli_project, store, caplog):
    with open(cli_project / "pinbuild.toml", "a") as f:
        f.write('\n[inputs.x]\nurl = "github:owner"\n')
    with caplog.at_level(logging.INFO, logger="pinbuild"):
        assert _cli(cli_project, store, "lock") == 1
    assert "needs owner/repo" in caplog.text


def test_no_command(capsys):
    assert main([]) == 1
    assert "usage" in capsys.readouterr().out


def test_develop_runs_command(cli_project, store, capfd, foo_prefix):
    status = _cli(cli_project, store, "develop", "--",
                  "sh", "-c", 'echo "$PINBUILD_SHELL"; command -v foo')
    assert status == 0
    lines = capfd.readouterr().out.splitlines()
    assert lines == ["1", str(foo_prefix.resolve() / "bin" / "foo")]


def test_develop_passes_exit_status(cli_project, store):
    assert _cli(cli_project, store, "develop", "--", "sh", "-c", "exit 4") == 4


def test_shell_env(foo_prefix, fake_cargo):
    index = compose([lambda final, prev: {
        "foo": lambda: prefix_package("foo", foo_prefix),
        "cargo": lambda: prefix_package("cargo", fake_cargo),
    }])
    env = shell_env(index, ["foo", "cargo", "foo"], base={"PATH": "/bin", "HOME": "/h"})
    assert env["PATH"] == make_bin_path([index.foo, index.cargo]) + ":/bin"
    assert env["HOME"] == "/h"
    assert env["PINBUILD_SHELL"] == "1"
    assert shell_env(index, [], base={})["PINBUILD_SHELL"] == "1"
    assert "PATH" not in shell_env(index, [], base={})


def test_enter_shell_default_is_users_shell(tmp_path):
    shell = tmp_path / "myshell"
    marker = tmp_path / "entered"
    shell.write_text(f"#!/bin/sh\ntouch {marker}\n")
    shell.chmod(0o755)
    assert enter_shell({"SHELL": str(shell), "PATH": "/usr/bin:/bin"}) == 0
    assert marker.exists()


def test_progress_format():
    fmt = ProgressFormatter()

    def record(level, msg):
        return logging.LogRecord("pinbuild.builder", level, "builder.py", 42, msg, (), None)

    assert fmt.format(record(logging.INFO, "building hello")) == "> building hello"
    assert fmt.format(record(logging.WARNING, "keeping x")) == "! keeping x @ pinbuild.builder:42"
    assert fmt.format(record(logging.DEBUG, "cmd")) == "> cmd @ pinbuild.builder:42"
