from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import typer

from rollout.core.config import PipelineConfig, load_config_or_default
from rollout.core.errors import ErrorCode
from rollout.core.result import Err
from rollout.git.repository import Repository
from rollout.output.console import ConsoleProtocol, RichConsole
from rollout.services.errors import PipelineErrorKind
from rollout.services.model import PipelineRun, Stage
from rollout.services.registry import EnvironmentRegistry, registry_from_config
from rollout.services.secrets import ChainSecretStore, DirSecretStore, EnvSecretStore, SecretStore


DEPLOY_STAGES: frozenset[Stage] = frozenset({"deploy_development", "deploy_production"})


@dataclass(frozen=True, slots=True)
class CLIContext:
    repo_root: Path
    repo: Repository
    config: PipelineConfig
    registry: EnvironmentRegistry
    console: ConsoleProtocol


def error_code_for(kind: PipelineErrorKind) -> ErrorCode:
    match kind:
        case "invalid_input":
            return ErrorCode.USER_ERROR
        case "config_invalid" | "no_release_available":
            return ErrorCode.ENV_ERROR
        case "external_tool_failure":
            return ErrorCode.BUILD_ERROR
        case "timeout":
            return ErrorCode.TIMEOUT


def build_context(*, repo_root: Path, config_path: Path | None) -> CLIContext:
    console = RichConsole()
    try:
        root = repo_root.expanduser().resolve()
    except OSError as e:
        typer.echo(f"error: invalid --repo-root: {e}", err=True)
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    if config_path is None:
        config_path = root / "rollout.toml"
    elif not config_path.is_absolute():
        config_path = root / config_path

    config_result = load_config_or_default(config_path)
    if isinstance(config_result, Err):
        typer.echo(f"error: {config_result.error.message}", err=True)
        raise typer.Exit(code=int(ErrorCode.ENV_ERROR))
    config = config_result.value

    registry_result = registry_from_config(config, repo_root=root)
    if isinstance(registry_result, Err):
        e = registry_result.error
        console.error(e.message)
        if e.hint:
            console.print(f"hint: {e.hint}")
        raise typer.Exit(code=int(ErrorCode.ENV_ERROR))

    return CLIContext(
        repo_root=root,
        repo=Repository(root),
        config=config,
        registry=registry_result.value,
        console=console,
    )


def build_secret_store(secrets_dir: Path | None) -> SecretStore:
    if secrets_dir is None:
        return EnvSecretStore()
    return ChainSecretStore((DirSecretStore(secrets_dir), EnvSecretStore()))


def exit_code_for_run(run: PipelineRun) -> ErrorCode:
    if run.is_done:
        return ErrorCode.OK
    if run.error is None:
        return ErrorCode.BUILD_ERROR
    code = error_code_for(run.error.kind)
    if code == ErrorCode.BUILD_ERROR and run.aborted_at in DEPLOY_STAGES:
        return ErrorCode.DEPLOY_ERROR
    return code
