"""Exceptions raised by the build pipeline.

Resolution and lock errors abort a run before anything is built.
Augmentation errors abort after the build, and the staged output is
thrown away instead of published.
"""


class PinbuildError(Exception):
    pass


class ConfigError(PinbuildError):
    pass


class InputError(PinbuildError):
    pass


class UnresolvableInput(InputError):
    def __init__(self, name: str, reason: str):
        super().__init__(f"cannot resolve input {name!r}: {reason}")
        self.name = name
        self.reason = reason


class InputCycle(InputError):
    def __init__(self, cycle: list[str]):
        super().__init__("cyclic 'follows' between inputs: " + " -> ".join(cycle))
        self.cycle = cycle


class LockMismatch(PinbuildError):
    pass


class BuildFailed(PinbuildError):
    def __init__(self, message: str, returncode: int | None = None):
        super().__init__(message)
        self.returncode = returncode


class CompletionGenerationFailed(PinbuildError):
    def __init__(self, shell: str, detail: str = ""):
        msg = f"generating {shell} completions failed"
        super().__init__(f"{msg}: {detail}" if detail else msg)
        self.shell = shell


class FilterPathAbsent(PinbuildError):
    """An allow-list entry matched nothing. Recovered inside the filter."""

    def __init__(self, entry: str):
        super().__init__(f"source filter entry {entry!r} matches no files")
        self.entry = entry
