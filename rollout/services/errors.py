from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

PipelineErrorKind = Literal[
    "invalid_input",
    "config_invalid",
    "no_release_available",
    "external_tool_failure",
    "timeout",
]


@dataclass(frozen=True, slots=True)
class PipelineError:
    """A fatal pipeline condition.

    Every kind aborts the run at the stage where it occurs. Missing
    environment config is not an error and never appears here.
    """

    kind: PipelineErrorKind
    message: str
    hint: str | None = None
