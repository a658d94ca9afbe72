from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from rollout.services.errors import PipelineError

Stage = Literal[
    "prepare",
    "build_and_test",
    "tag_and_push",
    "deploy_development",
    "deploy_production",
    "done",
    "aborted",
]

TERMINAL_STAGES: frozenset[Stage] = frozenset({"done", "aborted"})


def parse_environment_list(text: str) -> tuple[str, ...]:
    """Split a space-separated environment list, in the order given."""
    return tuple(text.split())


def split_repeats(names: tuple[str, ...]) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """(first occurrence of each name in order, names that were listed again)."""
    unique = tuple(dict.fromkeys(names))
    repeated = tuple(dict.fromkeys(n for i, n in enumerate(names) if n in names[:i]))
    return unique, repeated


@dataclass(frozen=True, slots=True)
class BuildParameters:
    """Inputs of one pipeline run, fixed once the run is prepared.

    ``requested_release`` is None for auto-resolution. ``environments`` only
    matters in production mode.
    """

    branch: str | None
    production: bool = False
    requested_release: str | None = None
    environments: tuple[str, ...] = ()
    extra_args: str = ""
    scm_credential: str | None = None
    cloud_credential: str | None = None


@dataclass(frozen=True, slots=True)
class CredentialRef:
    """Name of a secret in the secret store (never the secret itself)."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class Environment:
    name: str
    config_path: Path
    credential: CredentialRef | None


@dataclass(frozen=True, slots=True)
class EnvironmentBinding:
    config_present: bool
    credential: CredentialRef | None


@dataclass(frozen=True, slots=True)
class Deployed:
    environment: str
    release: str


@dataclass(frozen=True, slots=True)
class SkippedMissingConfig:
    environment: str
    config_path: Path


@dataclass(frozen=True, slots=True)
class Failed:
    environment: str
    reason: str
    timed_out: bool = False


DeploymentOutcome = Deployed | SkippedMissingConfig | Failed


def describe_outcome(outcome: DeploymentOutcome) -> tuple[str, str, str]:
    """(environment, result, detail) row for summaries."""
    match outcome:
        case Deployed(environment=env, release=release):
            return (env, "deployed", release)
        case SkippedMissingConfig(environment=env, config_path=path):
            return (env, "skipped", f"no config: {path}")
        case Failed(environment=env, reason=reason):
            return (env, "failed", reason)


@dataclass(frozen=True, slots=True)
class PipelineRun:
    """Transient state of one run, replaced (never mutated) at each step."""

    params: BuildParameters
    stage: Stage = "prepare"
    release: str | None = None
    outcomes: tuple[DeploymentOutcome, ...] = ()
    stages_run: tuple[Stage, ...] = ()
    error: PipelineError | None = None
    aborted_at: Stage | None = None

    @property
    def is_done(self) -> bool:
        return self.stage == "done"

    @property
    def is_aborted(self) -> bool:
        return self.stage == "aborted"

    @property
    def deployed(self) -> tuple[str, ...]:
        return tuple(o.environment for o in self.outcomes if isinstance(o, Deployed))

    @property
    def skipped(self) -> tuple[str, ...]:
        return tuple(o.environment for o in self.outcomes if isinstance(o, SkippedMissingConfig))

    @property
    def failed(self) -> tuple[str, ...]:
        return tuple(o.environment for o in self.outcomes if isinstance(o, Failed))

