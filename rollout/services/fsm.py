from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace

from rollout.core.result import Err, Result
from rollout.services.deadline import Deadline
from rollout.services.errors import PipelineError
from rollout.services.model import TERMINAL_STAGES, PipelineRun, Stage


@dataclass(frozen=True, slots=True)
class StageAbort:
    """A fatal stage failure, carrying the run state reached so far."""

    run: PipelineRun
    error: PipelineError


StageHandler = Callable[[PipelineRun], Result[PipelineRun, StageAbort]]
OnEnter = Callable[[Stage, PipelineRun], None]


def abort(run: PipelineRun, error: PipelineError) -> Err[StageAbort]:
    return Err(StageAbort(run=run, error=error))


def _aborted(run: PipelineRun, stage: Stage, error: PipelineError) -> PipelineRun:
    return replace(run, stage="aborted", error=error, aborted_at=stage)


def run_stages(
    *,
    initial: PipelineRun,
    handlers: Mapping[Stage, StageHandler],
    deadline: Deadline,
    on_enter: OnEnter | None = None,
) -> PipelineRun:
    """Drive ``initial`` through its stages until ``done`` or ``aborted``.

    Each handler returns the run with its next stage set. The deadline is
    checked before entering every stage.
    """
    current = initial

    while current.stage not in TERMINAL_STAGES:
        stage = current.stage
        handler = handlers.get(stage)
        if handler is None:
            return _aborted(
                current,
                stage,
                PipelineError(kind="invalid_input", message=f"unknown pipeline stage: {stage}"),
            )

        if deadline.expired:
            return _aborted(
                current,
                stage,
                PipelineError(
                    kind="timeout",
                    message=f"run exceeded {deadline.seconds:g}s before {stage}",
                ),
            )

        if on_enter is not None:
            on_enter(stage, current)

        entered = replace(current, stages_run=(*current.stages_run, stage))
        outcome = handler(entered)
        if isinstance(outcome, Err):
            return _aborted(outcome.error.run, stage, outcome.error.error)

        current = outcome.value

    return current
