"""Overlay composition over a lazy package index.

An overlay is a function ``(final, prev) -> {name: thunk}``:

    final: the fully composed index. Lazy, so an overlay may refer to
           names that a *later* overlay defines.
    prev:  the index as composed by the overlays before this one, for
           "wrap the stock definition" patterns.

    index = compose([
        lambda final, prev: {"x": lambda: 1},
        lambda final, prev: {"x": lambda: 2},
        lambda final, prev: {"x": lambda: prev.x + 1},
    ])
    index.x  # 3

Every definition is kept in a registry as a Binding tagged with the
position of the overlay that made it. A view answers a lookup with the
highest-positioned binding it can see, so precedence is decided by
position, not by evaluation order. Each binding's thunk runs at most
once, however many views look at it.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Iterable

Thunk = Callable[[], Any]
OverlayFn = Callable[["IndexView", "IndexView"], dict[str, Thunk]]


@dataclass(frozen=True)
class Binding:
    name: str
    thunk: Thunk
    overlay_index: int


class _Registry:
    def __init__(self):
        self.bindings: dict[str, list[Binding]] = {}
        self.values: dict[tuple[str, int], Any] = {}
        self.evaluating: set[tuple[str, int]] = set()

    def add(self, binding: Binding) -> None:
        self.bindings.setdefault(binding.name, []).append(binding)

    def winner(self, name: str, limit: int) -> Binding | None:
        visible = [b for b in self.bindings.get(name, ()) if b.overlay_index < limit]
        return max(visible, key=lambda b: b.overlay_index, default=None)

    def force(self, b: Binding) -> Any:
        key = (b.name, b.overlay_index)
        if key in self.values:
            return self.values[key]
        if key in self.evaluating:
            raise RecursionError(f"infinite recursion evaluating {b.name!r} "
                                 f"(defined by overlay {b.overlay_index})")
        self.evaluating.add(key)
        try:
            value = b.thunk()
        finally:
            self.evaluating.discard(key)
        self.values[key] = value
        return value


class IndexView:
    """Read-only view of the index as seen from one point in the fold.

    Attribute access and ``view["pkg-config"]`` both look names up;
    the item form allows names that are not identifiers.
    """

    def __init__(self, registry: _Registry, limit: float):
        object.__setattr__(self, "_registry", registry)
        object.__setattr__(self, "_limit", limit)

    def __setattr__(self, name, value):
        raise AttributeError("package index views are read-only")

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self[name]
        except KeyError:
            raise AttributeError(f"no package {name!r}") from None

    def __getitem__(self, name: str) -> Any:
        registry = object.__getattribute__(self, "_registry")
        b = registry.winner(name, object.__getattribute__(self, "_limit"))
        if b is None:
            raise KeyError(name)
        return registry.force(b)

    def __contains__(self, name: str) -> bool:
        registry = object.__getattribute__(self, "_registry")
        return registry.winner(name, object.__getattribute__(self, "_limit")) is not None

    def names(self) -> list[str]:
        registry = object.__getattribute__(self, "_registry")
        return sorted(n for n in registry.bindings if n in self)

    def defined_by(self, name: str) -> int:
        """Position of the overlay whose definition of ``name`` wins."""
        registry = object.__getattribute__(self, "_registry")
        b = registry.winner(name, object.__getattribute__(self, "_limit"))
        if b is None:
            raise KeyError(name)
        return b.overlay_index

    def call(self, fn: Callable[..., Any]) -> Any:
        """Call ``fn`` with its parameters looked up by name.

            index.call(lambda cargo, pkg_config: ...)

        An underscore in a parameter name also matches a dash, so
        ``pkg_config`` finds "pkg-config".
        """
        kwargs = {}
        for param in inspect.signature(fn).parameters:
            for candidate in (param, param.replace("_", "-")):
                if candidate in self:
                    kwargs[param] = self[candidate]
                    break
            else:
                raise AttributeError(
                    f"package index has no {param!r} (required by {fn.__qualname__})")
        return fn(**kwargs)


def compose(overlays: Iterable[OverlayFn]) -> IndexView:
    """Fold overlays left to right and return the ``final`` view.

    The first overlay is the base: its ``prev`` is empty. Overlay
    functions run once, here; the thunks they return run on first
    lookup. Only touch ``final`` inside thunks, since later overlays
    have not been registered yet while this loop runs.
    """
    registry = _Registry()
    final = IndexView(registry, float("inf"))
    for i, overlay in enumerate(overlays):
        prev = IndexView(registry, i)
        for name, thunk in overlay(final, prev).items():
            registry.add(Binding(name, thunk, i))
    return final
