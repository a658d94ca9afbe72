from __future__ import annotations

from pathlib import Path

import typer

from rollout import __version__
from rollout.cli.context import (
    CLIContext,
    build_context,
    build_secret_store,
    error_code_for,
    exit_code_for_run,
)
from rollout.core.errors import ErrorCode
from rollout.core.result import Err
from rollout.output.console import Style
from rollout.services.controller import PipelineController, PipelineDeps
from rollout.services.deadline import Deadline
from rollout.services.model import BuildParameters, parse_environment_list
from rollout.services.tools import CommandToolchain
from rollout.services.version import latest_release_tag, read_version_file, resolve_release

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

_REPO_ROOT = typer.Option(Path("."), "--repo-root", help="Repository root (default: cwd).")
_CONFIG = typer.Option(None, "--config", help="Config file (default: <repo-root>/rollout.toml).")


def normalize_branch(branch: str | None) -> str | None:
    """``origin/master`` and ``refs/heads/master`` -> ``master``."""
    if branch is None:
        return None
    name = branch.strip()
    for prefix in ("refs/heads/", "origin/"):
        if name.startswith(prefix):
            name = name[len(prefix) :]
    return name or None


def _resolve_branch(ctx: CLIContext, branch: str | None) -> str | None:
    return normalize_branch(branch) or ctx.repo.current_branch()


def _display_path(path: Path, root: Path) -> str:
    try:
        return str(path.relative_to(root))
    except ValueError:
        return str(path)


def _print_version(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit(code=0)


@app.callback()
def _main(  # pyright: ignore[reportUnusedFunction]
    version: bool = typer.Option(
        False,
        "--version",
        callback=_print_version,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    del version


@app.command()
def run(
    production: bool = typer.Option(
        False, "--production", help="Deploy an existing release to production environments."
    ),
    release: str = typer.Option(
        "", "--release", help="Release to build or deploy (default: auto-resolve)."
    ),
    environments: str | None = typer.Option(
        None,
        "--environments",
        help="Space-separated production environments (default: from config).",
    ),
    extra_args: str = typer.Option("", "--extra-args", help="Extra arguments for the deploy tool."),
    branch: str | None = typer.Option(
        None, "--branch", envvar="BRANCH_NAME", help="Branch being built (default: git HEAD)."
    ),
    scm_credential: str | None = typer.Option(
        None, "--scm-credential", help="Secret name of the source control key."
    ),
    cloud_credential: str | None = typer.Option(
        None, "--cloud-credential", help="Secret name of the cloud provider credential."
    ),
    secrets_dir: Path | None = typer.Option(
        None, "--secrets-dir", help="Directory of mounted secret files."
    ),
    repo_root: Path = _REPO_ROOT,
    config: Path | None = _CONFIG,
) -> None:
    """Run the pipeline: build, tag and deploy development, or deploy production."""
    ctx = build_context(repo_root=repo_root, config_path=config)

    env_list = (
        parse_environment_list(environments)
        if environments is not None
        else ctx.config.deploy.production_environments
    )
    params = BuildParameters(
        branch=_resolve_branch(ctx, branch),
        production=production,
        requested_release=release.strip() or None,
        environments=env_list,
        extra_args=extra_args,
        scm_credential=scm_credential,
        cloud_credential=cloud_credential,
    )

    deadline = Deadline(ctx.config.deploy.run_timeout_seconds)
    deps = PipelineDeps(
        config=ctx.config,
        repo_root=ctx.repo_root,
        tags=ctx.repo,
        toolchain=CommandToolchain(
            repo_root=ctx.repo_root,
            commands=ctx.config.commands,
            deadline=deadline,
            console=ctx.console,
        ),
        registry=ctx.registry,
        secrets=build_secret_store(secrets_dir),
        deadline=deadline,
        console=ctx.console,
    )

    mode = "production" if production else "build"
    ctx.console.print(f"branch: {params.branch or '(detached)'}  mode: {mode}", Style.DIM)

    result = PipelineController(deps).run(params)
    if result.is_done:
        return

    raise typer.Exit(code=int(exit_code_for_run(result)))


@app.command()
def version(
    production: bool = typer.Option(False, "--production", help="Resolve as a production run."),
    release: str = typer.Option("", "--release", help="Explicitly requested release."),
    recorded: bool = typer.Option(
        False, "--recorded", help="Print the release recorded by the last run instead."
    ),
    repo_root: Path = _REPO_ROOT,
    config: Path | None = _CONFIG,
) -> None:
    """Print the release identifier a run would use."""
    ctx = build_context(repo_root=repo_root, config_path=config)

    if recorded:
        version_file = ctx.repo_root / ctx.config.deploy.version_file
        value = read_version_file(version_file)
        if value is None:
            shown = _display_path(version_file, ctx.repo_root)
            ctx.console.error(f"no release recorded at {shown}")
            raise typer.Exit(code=int(ErrorCode.ENV_ERROR))
        typer.echo(value)
        return

    tags = ctx.repo.tags()
    if isinstance(tags, Err):
        ctx.console.error(f"failed to list tags: {tags.error.message}")
        raise typer.Exit(code=int(ErrorCode.BUILD_ERROR))

    resolved = resolve_release(
        latest=latest_release_tag(tags.value),
        requested=release.strip() or None,
        production=production,
    )
    if isinstance(resolved, Err):
        ctx.console.error(resolved.error.message)
        if resolved.error.hint:
            ctx.console.print(f"hint: {resolved.error.hint}", Style.DIM)
        raise typer.Exit(code=int(error_code_for(resolved.error.kind)))

    typer.echo(resolved.value)


@app.command("environments")
def list_environments(
    repo_root: Path = _REPO_ROOT,
    config: Path | None = _CONFIG,
) -> None:
    """List declared environments, their config file and credential."""
    ctx = build_context(repo_root=repo_root, config_path=config)

    rows: list[tuple[str, str, str]] = []
    for name in ctx.registry.names():
        env = ctx.registry.environment(name)
        present = ctx.registry.resolve(name).config_present
        config_cell = _display_path(env.config_path, ctx.repo_root)
        rows.append(
            (
                name,
                config_cell if present else f"{config_cell} (missing, skipped)",
                str(env.credential) if env.credential else "-",
            )
        )
    ctx.console.table("Environments", ("environment", "config", "credential"), rows)


def main() -> None:
    app()
