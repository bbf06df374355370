"""Shared fixtures: a fake cargo and a tiny project it can "compile".

The fake cargo copies ``src/main.sh`` to where cargo would put the
release binary, so builds run in milliseconds and need no toolchain.
"""

import shutil
import textwrap
from pathlib import Path

import pytest

from pinbuild.package_set import prefix_package

TARGET = "x86_64-unknown-linux-gnu"

FAKE_CARGO = """\
#!/bin/sh
cmd=$1
shift
target=
while [ $# -gt 0 ]; do
    case "$1" in
        --target) target=$2; shift ;;
    esac
    shift
done
[ "$cmd" = test ] && exit 0
if grep -q compile_error src/main.sh; then
    echo "error: could not compile" >&2
    exit 101
fi
name=$(sed -n 's/^name = "\\(.*\\)"/\\1/p' Cargo.toml | head -n 1)
out="$CARGO_TARGET_DIR/$target/release"
mkdir -p "$out"
cp src/main.sh "$out/$name"
chmod +x "$out/$name"
"""

HELLO = """\
#!/bin/sh
case "$1" in
    completions) echo "# $2 completions for hello"; exit 0 ;;
    which) command -v "$2"; exit $? ;;
    exit) exit "$2" ;;
    name) basename "$0"; exit 0 ;;
esac
echo "hello $*"
"""

FISH_FAILS = HELLO.replace(
    "    completions)",
    '    completions) [ "$2" = fish ] && { echo "no fish" >&2; exit 3; }\n        ',
)

CARGO_TOML = """\
[package]
name = "hello"
version = "0.1.0"
description = "Says hello"
license = "MIT"
repository = "https://example.com/hello"

[package.metadata.pinbuild]
maintainers = [{ name = "Ada", email = "ada@example.com" }]
"""

CARGO_LOCK = """\
version = 3

[[package]]
name = "hello"
version = "0.1.0"
"""


def _executable(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    path.chmod(0o755)
    return path


@pytest.fixture
def fake_cargo(tmp_path):
    prefix = tmp_path / "fake-cargo"
    _executable(prefix / "bin" / "cargo", FAKE_CARGO)
    _executable(prefix / "bin" / "rustc", "#!/bin/sh\necho rustc 0.0.0-fake\n")
    return prefix


@pytest.fixture
def fake_toolchain(fake_cargo):
    """Overlay binding cargo and rustc to the fake."""
    def overlay(final, prev):
        return {
            "cargo": lambda: prefix_package("cargo", fake_cargo),
            "rustc": lambda: prefix_package("rustc", fake_cargo),
        }
    return overlay


@pytest.fixture
def foo_prefix(tmp_path):
    prefix = tmp_path / "foo"
    _executable(prefix / "bin" / "foo", "#!/bin/sh\necho foo\n")
    return prefix


@pytest.fixture
def store(tmp_path):
    return tmp_path / "store"


@pytest.fixture
def make_project(tmp_path):
    """Write a project; ``config`` is the body of pinbuild.toml."""
    def make(config: str = "", main: str = HELLO, name: str = "project") -> Path:
        root = tmp_path / name
        if root.exists():
            shutil.rmtree(root)
        _executable(root / "src" / "main.sh", main)
        (root / "Cargo.toml").write_text(CARGO_TOML)
        (root / "Cargo.lock").write_text(CARGO_LOCK)
        (root / "README.md").write_text("hello\n")
        (root / "pinbuild.toml").write_text(
            f'[package]\ntarget = "{TARGET}"\n\n' + textwrap.dedent(config))
        return root
    return make
