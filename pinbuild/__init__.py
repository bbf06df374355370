"""pinbuild: reproducible builds of pinned command-line tools.

    resolve inputs → compose index → filter sources → build → augment → publish
"""

from pinbuild.context import BuildContext, load_context
from pinbuild.errors import (
    BuildFailed,
    CompletionGenerationFailed,
    ConfigError,
    InputCycle,
    LockMismatch,
    PinbuildError,
    UnresolvableInput,
)
from pinbuild.pipeline import PipelineOptions, run_pipeline

__all__ = [
    "BuildContext", "load_context",
    "PipelineOptions", "run_pipeline",
    "PinbuildError", "ConfigError", "UnresolvableInput", "InputCycle",
    "LockMismatch", "BuildFailed", "CompletionGenerationFailed",
]
