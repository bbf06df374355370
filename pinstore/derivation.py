"""Derivations and their ATerm (.drv) serialization.

A derivation is the unit of build: everything that goes into producing
an output, written down so it can be hashed. pinbuild turns each build
descriptor into a derivation and names the output after its hash, which
makes the output path a content key for the build's declared inputs.

ATerm layout of a .drv file:

    Derive(
        [("out","<path>","",""), ...],             # outputs
        [("<drv path>",["out"]), ...],             # inputDrvs
        ["<source path>", ...],                    # inputSrcs
        "x86_64-unknown-linux-gnu",                # platform
        "cargo",                                   # builder
        ["build", ...],                            # args
        [("key","value"), ...]                     # env
    )

Outputs are (name, path, hashAlgo, hash) tuples; pinbuild only produces
non-fixed outputs, whose last two fields are empty.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, TypeVar

from pinstore.hash import sha256

T = TypeVar("T")


@dataclass
class DerivationOutput:
    path: str
    hash_algo: str = ""
    hash_value: str = ""


@dataclass
class Derivation:
    outputs: dict[str, DerivationOutput] = field(default_factory=dict)
    input_drvs: dict[str, list[str]] = field(default_factory=dict)  # drv path -> output names
    input_srcs: list[str] = field(default_factory=list)
    platform: str = ""
    builder: str = ""
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)


class _Reader:
    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def peek(self) -> str:
        if self.pos >= len(self.text):
            raise ValueError("unexpected end of input")
        return self.text[self.pos]

    def expect(self, token: str) -> None:
        end = self.pos + len(token)
        if self.text[self.pos:end] != token:
            raise ValueError(f"expected {token!r} at pos {self.pos}")
        self.pos = end

    def string(self) -> str:
        self.expect('"')
        out: list[str] = []
        while self.peek() != '"':
            ch = self.text[self.pos]
            if ch == "\\":
                self.pos += 1
                ch = {"n": "\n", "r": "\r", "t": "\t"}.get(self.peek(), self.peek())
            out.append(ch)
            self.pos += 1
        self.expect('"')
        return "".join(out)

    def many(self, item: Callable[[], T]) -> list[T]:
        self.expect("[")
        items: list[T] = []
        while self.peek() != "]":
            if items:
                self.expect(",")
            items.append(item())
        self.expect("]")
        return items

    def tuple(self, *fields: Callable[[], object]) -> list[object]:
        self.expect("(")
        values = []
        for i, f in enumerate(fields):
            if i:
                self.expect(",")
            values.append(f())
        self.expect(")")
        return values


def parse(drv_text: str) -> Derivation:
    """Parse ATerm .drv text."""
    r = _Reader(drv_text)
    r.expect("Derive(")
    outputs = {
        name: DerivationOutput(path, algo, value)
        for name, path, algo, value in r.many(lambda: r.tuple(r.string, r.string, r.string, r.string))
    }
    r.expect(",")
    input_drvs = dict(r.many(lambda: r.tuple(r.string, lambda: r.many(r.string))))
    r.expect(",")
    input_srcs = r.many(r.string)
    r.expect(",")
    platform = r.string()
    r.expect(",")
    builder = r.string()
    r.expect(",")
    args = r.many(r.string)
    r.expect(",")
    env = dict(r.many(lambda: r.tuple(r.string, r.string)))
    r.expect(")")
    return Derivation(outputs, input_drvs, input_srcs, platform, builder, args, env)


def _q(s: str) -> str:
    escaped = (s.replace("\\", "\\\\").replace('"', '\\"')
               .replace("\n", "\\n").replace("\r", "\\r").replace("\t", "\\t"))
    return f'"{escaped}"'


def _list(items: list[str]) -> str:
    return "[" + ",".join(items) + "]"


def serialize(drv: Derivation) -> str:
    """ATerm text for ``drv``. Outputs, inputs and env are sorted."""
    outputs = _list([
        f"({_q(name)},{_q(o.path)},{_q(o.hash_algo)},{_q(o.hash_value)})"
        for name, o in sorted(drv.outputs.items())
    ])
    input_drvs = _list([
        f"({_q(path)},{_list([_q(o) for o in sorted(outs)])})"
        for path, outs in sorted(drv.input_drvs.items())
    ])
    input_srcs = _list([_q(s) for s in sorted(drv.input_srcs)])
    args = _list([_q(a) for a in drv.args])
    env = _list([f"({_q(k)},{_q(v)})" for k, v in sorted(drv.env.items())])
    return (f"Derive({outputs},{input_drvs},{input_srcs},"
            f"{_q(drv.platform)},{_q(drv.builder)},{args},{env})")


def hash_derivation_modulo(drv: Derivation, drv_hashes: dict[str, bytes] | None = None,
                           mask_outputs: bool = True) -> bytes:
    """Hash of a derivation with its own output paths taken out.

    Output paths are computed from this hash, yet the derivation names
    them in ``outputs`` and ``env``. With ``mask_outputs`` the paths are
    blanked before hashing, which breaks the cycle. Input derivation
    paths are replaced by their own modular hashes (``drv_hashes``), so
    the result depends on what inputs contain rather than where they
    live.
    """
    drv_hashes = drv_hashes or {}
    env = dict(drv.env)
    outputs = {}
    for name, o in drv.outputs.items():
        outputs[name] = DerivationOutput("" if mask_outputs else o.path, o.hash_algo, o.hash_value)
        if mask_outputs and name in env:
            env[name] = ""

    input_drvs = {}
    for path, outs in drv.input_drvs.items():
        if path not in drv_hashes:
            raise ValueError(f"missing hash for input derivation: {path}")
        input_drvs[drv_hashes[path].hex()] = sorted(outs)

    masked = Derivation(outputs, input_drvs, list(drv.input_srcs), drv.platform,
                        drv.builder, list(drv.args), env)
    return sha256(serialize(masked).encode())
