"""Pipeline controller: sequences one run from prepare to done/aborted.

    prepare -> build_and_test -> tag_and_push -> deploy_development   (non-production)
    prepare -> deploy_production                                     (production, primary branch)
    prepare -> done                                                  (production, other branch)

Tagging and the development deploy only happen on the primary branch.
Production never builds: it deploys an existing release to each requested
environment in order and stops at the first failure. There is no rollback.
"""

from __future__ import annotations

import shlex
from collections.abc import Callable, Mapping
from contextlib import ExitStack
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Protocol

from rollout.core.config import PipelineConfig
from rollout.core.result import Err, Ok, Result
from rollout.git.repository import GitError
from rollout.output.console import ConsoleProtocol, Style
from rollout.services.credentials import CredentialSlot, materialize
from rollout.services.deadline import Deadline
from rollout.services.errors import PipelineError
from rollout.services.executor import CLOUD_CREDENTIAL_ENV, CloudAccess, DeploymentExecutor
from rollout.services.fsm import StageAbort, StageHandler, abort, run_stages
from rollout.services.model import (
    BuildParameters,
    CredentialRef,
    DeploymentOutcome,
    Failed,
    PipelineRun,
    Stage,
    describe_outcome,
    split_repeats,
)
from rollout.services.registry import EnvironmentRegistry
from rollout.services.secrets import SecretStore
from rollout.services.tools import Toolchain, ToolError, split_extra_args
from rollout.services.version import latest_release_tag, resolve_release, write_version_file

SCM_CREDENTIAL_ENV = "GIT_SSH_COMMAND"

_STAGE_TITLES: Mapping[Stage, str] = {
    "prepare": "Prepare",
    "build_and_test": "Build and test",
    "tag_and_push": "Tag and push",
    "deploy_development": "Deploy development",
    "deploy_production": "Deploy production",
}


class TagSource(Protocol):
    def tags(self, pattern: str = "v*") -> Result[list[str], GitError]: ...


def _git_ssh_command(key_path: Path) -> str:
    key = shlex.quote(str(key_path))
    return f"ssh -i {key} -o IdentitiesOnly=yes -o StrictHostKeyChecking=accept-new"


def _tool_failure(error: ToolError) -> PipelineError:
    return PipelineError(
        kind="timeout" if error.timed_out else "external_tool_failure",
        message=f"{error.operation} failed",
        hint=error.message or None,
    )


def _deploy_failure(outcome: Failed) -> PipelineError:
    return PipelineError(
        kind="timeout" if outcome.timed_out else "external_tool_failure",
        message=f"deploy to {outcome.environment} failed",
        hint=outcome.reason,
    )


@dataclass(frozen=True, slots=True)
class PipelineDeps:
    """Collaborators of one run."""

    config: PipelineConfig
    repo_root: Path
    tags: TagSource
    toolchain: Toolchain
    registry: EnvironmentRegistry
    secrets: SecretStore
    deadline: Deadline
    console: ConsoleProtocol


class PipelineController:
    def __init__(self, deps: PipelineDeps) -> None:
        self._deps = deps
        self._config = deps.config
        self._console = deps.console

        state_dir = deps.repo_root / self._config.deploy.state_dir
        self.version_file = deps.repo_root / self._config.deploy.version_file
        self.cluster_slot = CredentialSlot(state_dir / "kubeconfig")
        self.cloud_slot = CredentialSlot(state_dir / "cloud-credentials.json")
        self.scm_slot = CredentialSlot(state_dir / "scm-key")

    def run(self, params: BuildParameters) -> PipelineRun:
        handlers: Mapping[Stage, StageHandler] = {
            "prepare": self._prepare,
            "build_and_test": self._build_and_test,
            "tag_and_push": self._tag_and_push,
            "deploy_development": self._deploy_development,
            "deploy_production": self._deploy_production,
        }
        result = run_stages(
            initial=PipelineRun(params=params),
            handlers=handlers,
            deadline=self._deps.deadline,
            on_enter=self._on_enter,
        )
        self._print_summary(result)
        return result

    # -- stages ---------------------------------------------------------------

    def _prepare(self, run: PipelineRun) -> Result[PipelineRun, StageAbort]:
        params = run.params
        try:
            split_extra_args(params.extra_args)
        except ValueError as e:
            return abort(
                run,
                PipelineError(
                    kind="invalid_input",
                    message=f"invalid extra deploy arguments: {e}",
                    hint="Quote values the way a POSIX shell would",
                ),
            )

        tags = self._deps.tags.tags()
        if isinstance(tags, Err):
            return abort(
                run,
                PipelineError(
                    kind="external_tool_failure",
                    message="failed to list release tags",
                    hint=tags.error.message,
                ),
            )

        latest = latest_release_tag(tags.value)
        self._console.print(f"latest release tag: {latest or '(none)'}", Style.DIM)

        resolved = resolve_release(
            latest=latest,
            requested=params.requested_release,
            production=params.production,
        )
        if isinstance(resolved, Err):
            return abort(run, resolved.error)

        release = resolved.value
        write_version_file(self.version_file, release)
        self._console.info(f"release: {release}")

        on_primary = params.branch == self._config.app.primary_branch
        next_stage: Stage
        if not params.production:
            next_stage = "build_and_test"
        elif on_primary:
            next_stage = "deploy_production"
        else:
            self._console.info(
                f"production deploy only runs on {self._config.app.primary_branch}; "
                f"nothing to do on {params.branch or '(detached)'}"
            )
            next_stage = "done"

        return Ok(replace(run, release=release, stage=next_stage))

    def _build_and_test(self, run: PipelineRun) -> Result[PipelineRun, StageAbort]:
        release = self._release(run)

        tested = self._deps.toolchain.run_tests()
        if isinstance(tested, Err):
            return abort(run, _tool_failure(tested.error))
        self._console.success("tests passed")

        with ExitStack() as stack:
            env = self._scoped_env(
                stack,
                slot=self.cloud_slot,
                name=run.params.cloud_credential,
                env_var=CLOUD_CREDENTIAL_ENV,
            )
            if isinstance(env, Err):
                return abort(run, env.error)

            image = self._config.app.image_repo
            pushed = self._deps.toolchain.build_and_push_image(image, release, env=env.value)
            if isinstance(pushed, Err):
                return abort(run, _tool_failure(pushed.error))
        self._console.success(f"image pushed: {image}:{release}")

        if run.params.branch != self._config.app.primary_branch:
            self._console.info(
                f"not on {self._config.app.primary_branch}: skipping tag and development deploy"
            )
            return Ok(replace(run, stage="done"))
        return Ok(replace(run, stage="tag_and_push"))

    def _tag_and_push(self, run: PipelineRun) -> Result[PipelineRun, StageAbort]:
        release = self._release(run)

        with ExitStack() as stack:
            env = self._scoped_env(
                stack,
                slot=self.scm_slot,
                name=run.params.scm_credential,
                env_var=SCM_CREDENTIAL_ENV,
                render=_git_ssh_command,
            )
            if isinstance(env, Err):
                return abort(run, env.error)

            tagged = self._deps.toolchain.create_and_push_tag(release, env=env.value)
            if isinstance(tagged, Err):
                return abort(run, _tool_failure(tagged.error))

        self._console.success(f"tag pushed: {release}")
        return Ok(replace(run, stage="deploy_development"))

    def _deploy_development(self, run: PipelineRun) -> Result[PipelineRun, StageAbort]:
        return self._deploy_each(run, (self._config.deploy.development_environment,))

    def _deploy_production(self, run: PipelineRun) -> Result[PipelineRun, StageAbort]:
        environments, repeated = split_repeats(run.params.environments)
        if repeated:
            self._console.warning(f"listed more than once, deployed once: {', '.join(repeated)}")
        if not environments:
            self._console.warning("no production environments requested")
        return self._deploy_each(run, environments)

    # -- helpers --------------------------------------------------------------

    def _deploy_each(
        self, run: PipelineRun, environments: tuple[str, ...]
    ) -> Result[PipelineRun, StageAbort]:
        executor = self._executor(run.params)
        release = self._release(run)
        outcomes: list[DeploymentOutcome] = list(run.outcomes)

        for name in environments:
            outcome = executor.deploy(name, release, run.params.extra_args)
            outcomes.append(outcome)
            if isinstance(outcome, Failed):
                failed_run = replace(run, outcomes=tuple(outcomes))
                return abort(failed_run, _deploy_failure(outcome))

        return Ok(replace(run, outcomes=tuple(outcomes), stage="done"))

    def _executor(self, params: BuildParameters) -> DeploymentExecutor:
        cloud = None
        if params.cloud_credential:
            cloud = CloudAccess(slot=self.cloud_slot, ref=CredentialRef(params.cloud_credential))
        return DeploymentExecutor(
            registry=self._deps.registry,
            secrets=self._deps.secrets,
            toolchain=self._deps.toolchain,
            cluster_slot=self.cluster_slot,
            org=self._config.app.org,
            app=self._config.app.name,
            grace_seconds=self._config.deploy.grace_seconds,
            deadline=self._deps.deadline,
            console=self._console,
            cloud=cloud,
        )

    def _scoped_env(
        self,
        stack: ExitStack,
        *,
        slot: CredentialSlot,
        name: str | None,
        env_var: str,
        render: Callable[[Path], str] = str,
    ) -> Result[dict[str, str], PipelineError]:
        if not name:
            return Ok({})
        env = materialize(
            stack,
            slot=slot,
            ref=CredentialRef(name),
            secrets=self._deps.secrets,
            env_var=env_var,
            render=render,
        )
        if isinstance(env, Err):
            return Err(PipelineError(kind="config_invalid", message=env.error))
        return Ok(env.value)

    @staticmethod
    def _release(run: PipelineRun) -> str:
        if run.release is None:
            raise AssertionError(f"stage {run.stage} entered before prepare")
        return run.release

    def _on_enter(self, stage: Stage, run: PipelineRun) -> None:
        del run
        self._console.header(_STAGE_TITLES.get(stage, stage))

    def _print_summary(self, run: PipelineRun) -> None:
        if run.outcomes:
            self._console.table(
                "Environments",
                ("environment", "result", "detail"),
                [describe_outcome(o) for o in run.outcomes],
            )
        if run.skipped:
            self._console.warning(f"skipped (no config): {', '.join(run.skipped)}")

        if run.is_done:
            self._console.success(f"run done (release {run.release or '-'})")
            return

        error = run.error
        stage = run.aborted_at or "?"
        if error is not None:
            self._console.error(f"run aborted at {stage}: {error.message}")
            if error.hint:
                self._console.print(f"hint: {error.hint}", Style.DIM)
