"""Fetchers turn a locator + revision into a tree in the store.

One fetcher per locator scheme:

    path:../shared-overlays            local directory
    git+https://host/repo?ref=main     any git remote
    git+file:///srv/repo
    github:owner/repo/ref              shorthand for a GitHub remote

A fetcher answers two questions: what is the latest revision
(``latest``), and what tree does a given revision name (``fetch``).
Local directories have no history, so their revision is the SRI hash
of their contents.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import parse_qsl

from pinbuild.errors import UnresolvableInput
from pinbuild.store import add_to_store
from pinstore.hash import to_sri
from pinstore.nar import nar_hash

log = logging.getLogger(__name__)

# RFC 3986, appendix B
_URI = re.compile(r"^(([^:/?#]+):)?(//([^/?#]*))?([^?#]*)(\?([^#]*))?(#(.*))?")


@dataclass(frozen=True)
class Locator:
    scheme: str
    authority: str | None
    path: str
    query: dict[str, str] = field(default_factory=dict)
    fragment: str = ""

    @classmethod
    def parse(cls, text: str) -> Locator:
        m = _URI.match(text)
        scheme = m.group(2) or ""
        if not scheme:
            raise ValueError(f"locator has no scheme: {text!r}")
        return cls(
            scheme=scheme,
            authority=m.group(4),
            path=m.group(5) or "",
            query=dict(parse_qsl(m.group(7) or "")),
            fragment=m.group(9) or "",
        )

    def url(self) -> str:
        """The locator without query and fragment."""
        auth = "" if self.authority is None else f"//{self.authority}"
        return f"{self.scheme}:{auth}{self.path}"


class Fetcher:
    def latest(self, name: str, locator: Locator) -> str:
        raise NotImplementedError

    def fetch(self, name: str, locator: Locator, rev: str, store_dir: Path) -> Path:
        raise NotImplementedError


class PathFetcher(Fetcher):
    def __init__(self, root: Path):
        self.root = root

    def _dir(self, name: str, locator: Locator) -> Path:
        p = Path(locator.path)
        p = p if p.is_absolute() else self.root / p
        if not p.exists():
            raise UnresolvableInput(name, f"no such path: {p}")
        return p

    def latest(self, name: str, locator: Locator) -> str:
        return to_sri(nar_hash(self._dir(name, locator)))

    def fetch(self, name: str, locator: Locator, rev: str, store_dir: Path) -> Path:
        src = self._dir(name, locator)
        path, h = add_to_store(src, store_dir)
        if to_sri(h) != rev:
            raise UnresolvableInput(name, f"contents of {src} changed since {rev} was locked")
        return path


class GitFetcher(Fetcher):
    def __init__(self, git: str = "git", timeout: float | None = None):
        self.git = git
        self.timeout = timeout

    def remote(self, name: str, locator: Locator) -> tuple[str, str | None]:
        """(remote url, ref) for a git+ or github: locator."""
        if locator.scheme == "github":
            parts = locator.path.strip("/").split("/", 2)
            if len(parts) < 2 or not all(parts[:2]):
                raise UnresolvableInput(name, f"github locator needs owner/repo: {locator.url()}")
            owner, repo, *ref = parts
            return f"https://github.com/{owner}/{repo}.git", (ref[0] if ref else locator.query.get("ref"))
        return locator.url().removeprefix("git+"), locator.query.get("ref")

    def _run(self, name: str, *args: str, cwd: Path | None = None) -> str:
        try:
            proc = subprocess.run(
                [self.git, *args], cwd=cwd, check=True, capture_output=True,
                text=True, timeout=self.timeout,
            )
        except FileNotFoundError:
            raise UnresolvableInput(name, f"{self.git} is not installed")
        except subprocess.CalledProcessError as e:
            raise UnresolvableInput(name, f"git {args[0]} failed: {e.stderr.strip()}")
        except subprocess.TimeoutExpired:
            raise UnresolvableInput(name, f"git {args[0]} timed out after {self.timeout}s")
        return proc.stdout

    def latest(self, name: str, locator: Locator) -> str:
        if "rev" in locator.query:
            return locator.query["rev"]
        url, ref = self.remote(name, locator)
        out = self._run(name, "ls-remote", url, ref or "HEAD")
        if not out.strip():
            raise UnresolvableInput(name, f"{url} has no ref {ref or 'HEAD'!r}")
        return out.split()[0]

    def fetch(self, name: str, locator: Locator, rev: str, store_dir: Path) -> Path:
        url, _ = self.remote(name, locator)
        log.info("fetching %s from %s at %s", name, url, rev[:12])
        with tempfile.TemporaryDirectory(prefix="pinbuild-fetch-") as tmp:
            work = Path(tmp) / "checkout"
            work.mkdir()
            self._run(name, "init", "-q", cwd=work)
            try:
                self._run(name, "fetch", "-q", "--depth", "1", url, rev, cwd=work)
            except UnresolvableInput:
                log.debug("shallow fetch of %s refused, fetching full history", rev)
                self._run(name, "fetch", "-q", url, "+refs/heads/*:refs/remotes/origin/*", cwd=work)
                self._run(name, "checkout", "-q", rev, cwd=work)
            else:
                self._run(name, "checkout", "-q", "FETCH_HEAD", cwd=work)
            if locator.query.get("submodules") == "1":
                self._run(name, "submodule", "update", "-q", "--init", "--recursive", cwd=work)
            shutil.rmtree(work / ".git")
            path, _ = add_to_store(work, store_dir)
        return path


def default_fetchers(root: Path, timeout: float | None = None) -> dict[str, Fetcher]:
    git = GitFetcher(timeout=timeout)
    return {
        "path": PathFetcher(root),
        "github": git,
        "git+https": git,
        "git+http": git,
        "git+ssh": git,
        "git+file": git,
    }
