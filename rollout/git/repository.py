"""Git repository operations used by the pipeline.

Only the handful of commands the release flow needs: reading the current
branch, listing tags, and force-moving + pushing a release tag.

Usage:
    repo = Repository(Path("."))

    match repo.tags():
        case Ok(tags):
            print(tags)
        case Err(e):
            print(f"Error: {e.message}")
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from rollout.core.result import Err, Ok, Result
from rollout.platform.process import ProcessError
from rollout.platform.process import run as run_process

GIT_TIMEOUT_SECONDS = 30.0
GIT_NETWORK_TIMEOUT_SECONDS = 3 * 60.0

__all__ = [
    "GitError",
    "Repository",
]


@dataclass(frozen=True, slots=True)
class GitError:
    """Error from a git operation.

    Attributes:
        command: The git command that failed
        message: Error message
        returncode: Process return code
        timed_out: True if git was killed at its timeout
    """

    command: str
    message: str
    returncode: int = 1
    timed_out: bool = False

    @classmethod
    def from_process(cls, command: str, error: ProcessError) -> GitError:
        return cls(
            command=command,
            message=error.stderr.strip() or error.stdout.strip() or f"git {command} failed",
            returncode=error.returncode,
            timed_out=error.timed_out,
        )


class Repository:
    """A local git checkout.

    Attributes:
        path: Path to the repository root
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        """Check if this is a valid git repository."""
        return (self.path / ".git").exists()

    def current_branch(self) -> str | None:
        """Get current branch name.

        Returns None on a detached HEAD (the usual CI checkout) or error.
        """
        result = self._run(["rev-parse", "--abbrev-ref", "HEAD"])
        match result:
            case Ok(stdout):
                branch = stdout.strip()
                return None if branch in {"", "HEAD"} else branch
            case Err(_):
                return None

    def tags(self, pattern: str = "v*") -> Result[list[str], GitError]:
        """List tag names matching a glob pattern."""
        result = self._run(["tag", "--list", pattern])
        match result:
            case Err(e):
                return Err(GitError.from_process("tag --list", e))
            case Ok(stdout):
                return Ok([line.strip() for line in stdout.splitlines() if line.strip()])

    def create_and_push_tag(
        self,
        tag: str,
        *,
        remote: str = "origin",
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Result[None, GitError]:
        """Point ``tag`` at HEAD and push it.

        Both steps are forced, so re-tagging the same commit with the same
        name succeeds and an existing tag is moved rather than rejected.
        """
        local = self._run(["tag", "-f", tag], env=env, timeout=timeout)
        if isinstance(local, Err):
            return Err(GitError.from_process("tag -f", local.error))

        pushed = self._run(
            ["push", "-f", remote, f"refs/tags/{tag}"],
            env=env,
            timeout=timeout,
        )
        if isinstance(pushed, Err):
            return Err(GitError.from_process("push -f", pushed.error))

        return Ok(None)

    def _run(
        self,
        args: list[str],
        *,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Result[str, ProcessError]:
        """Run a git command in this repository.

        ``timeout`` caps the default per-command timeout, never raises it.
        """
        command = args[0] if args else ""
        limit = (
            GIT_NETWORK_TIMEOUT_SECONDS
            if command in {"fetch", "pull", "push", "clone"}
            else GIT_TIMEOUT_SECONDS
        )
        if timeout is not None:
            limit = min(limit, timeout)
        return run_process(
            ["git", "-C", str(self.path), *args],
            cwd=self.path,
            env=env,
            timeout=limit,
        )
