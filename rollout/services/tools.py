"""External tools driven by the pipeline.

The pipeline treats the test runner, image builder, deploy tool and git
as opaque commands: only their exit status matters. ``Toolchain`` is the
seam tests replace; ``CommandToolchain`` runs the configured commands.
"""

from __future__ import annotations

import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from rollout.core.config import CommandsConfig
from rollout.core.result import Err, Ok, Result
from rollout.git.repository import Repository
from rollout.output.console import ConsoleProtocol, Style
from rollout.platform.process import ProcessError
from rollout.platform.process import run as run_process
from rollout.services.deadline import Deadline

Env = Mapping[str, str]


@dataclass(frozen=True, slots=True)
class ToolError:
    operation: str
    message: str
    timed_out: bool = False

    @classmethod
    def from_process(cls, operation: str, error: ProcessError) -> ToolError:
        return cls(operation=operation, message=error.detail, timed_out=error.timed_out)


class Toolchain(Protocol):
    def run_tests(self) -> Result[None, ToolError]: ...

    def build_and_push_image(
        self, repo: str, tag: str, *, env: Env | None = None
    ) -> Result[None, ToolError]: ...

    def deploy(
        self,
        environment: str,
        org: str,
        app: str,
        tag: str,
        extra_args: str,
        *,
        env: Env | None = None,
    ) -> Result[None, ToolError]: ...

    def status(self, environment: str, *, env: Env | None = None) -> Result[None, ToolError]: ...

    def create_and_push_tag(
        self, tag: str, *, env: Env | None = None
    ) -> Result[None, ToolError]: ...


def split_extra_args(extra_args: str) -> list[str]:
    """Split free-form deploy arguments with shell quoting rules."""
    return shlex.split(extra_args)


class CommandToolchain:
    """Runs the configured commands from the repository root.

    Every command is attempted once; its timeout is clamped to the run deadline.
    """

    def __init__(
        self,
        *,
        repo_root: Path,
        commands: CommandsConfig,
        deadline: Deadline,
        console: ConsoleProtocol,
    ) -> None:
        self._root = repo_root
        self._commands = commands
        self._deadline = deadline
        self._console = console
        self._repo = Repository(repo_root)

    def run_tests(self) -> Result[None, ToolError]:
        return self._run("tests", self._commands.test)

    def build_and_push_image(
        self, repo: str, tag: str, *, env: Env | None = None
    ) -> Result[None, ToolError]:
        image = f"{repo}:{tag}"
        built = self._run("image build", [*self._commands.image_build, "-t", image, "."], env=env)
        if isinstance(built, Err):
            return built
        return self._run("image push", [*self._commands.image_push, image], env=env)

    def deploy(
        self,
        environment: str,
        org: str,
        app: str,
        tag: str,
        extra_args: str,
        *,
        env: Env | None = None,
    ) -> Result[None, ToolError]:
        try:
            extra = split_extra_args(extra_args)
        except ValueError as e:
            return Err(ToolError(operation="deploy", message=f"invalid extra args: {e}"))
        cmd = [
            *self._commands.deploy,
            "--env",
            environment,
            "--org",
            org,
            "--app",
            app,
            "--tag",
            tag,
            *extra,
        ]
        return self._run("deploy", cmd, env=env)

    def status(self, environment: str, *, env: Env | None = None) -> Result[None, ToolError]:
        return self._run("status", [*self._commands.status, "--env", environment], env=env)

    def create_and_push_tag(self, tag: str, *, env: Env | None = None) -> Result[None, ToolError]:
        remote = self._commands.git_remote
        self._console.print(
            f"$ git tag -f {tag} && git push -f {remote} refs/tags/{tag}", Style.DIM
        )
        if self._deadline.expired:
            return Err(ToolError(operation="tag", message="run deadline reached", timed_out=True))
        result = self._repo.create_and_push_tag(
            tag,
            remote=remote,
            env=env,
            timeout=self._deadline.clamp(),
        )
        if isinstance(result, Err):
            e = result.error
            return Err(ToolError(operation="tag", message=e.message, timed_out=e.timed_out))
        return Ok(None)

    def _run(
        self, operation: str, cmd: Sequence[str], *, env: Env | None = None
    ) -> Result[None, ToolError]:
        self._console.print("$ " + shlex.join(cmd), Style.DIM)
        if self._deadline.expired:
            return Err(
                ToolError(operation=operation, message="run deadline reached", timed_out=True)
            )
        result = run_process(cmd, cwd=self._root, env=env, timeout=self._deadline.clamp())
        if isinstance(result, Err):
            return Err(ToolError.from_process(operation, result.error))
        return Ok(None)
