"""Typed pipeline configuration.

The optional ``rollout.toml`` at the repository root overrides the defaults
below. Every section is optional; a missing file yields the default config.

Example:
    [app]
    org = "orcal"
    name = "orcal-helloworld-service"
    primary_branch = "master"

    [deploy]
    production_environments = ["prod-sg", "prod-us"]
    grace_seconds = 10

    [commands]
    deploy = ["deployctl", "deploy"]

    [environments.prod-sg]
    credential = "kubeconfig-prod-singapore"
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .result import Err, Ok, Result
from .structured import StrDict, as_str_dict, get_number, get_str, get_str_list, get_table

__all__ = [
    "AppConfig",
    "CommandsConfig",
    "ConfigError",
    "DeployConfig",
    "EnvironmentConfig",
    "PipelineConfig",
    "load_config",
    "load_config_or_default",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_PRODUCTION_ENVIRONMENTS",
]

DEFAULT_CONFIG_FILE = "rollout.toml"

DEFAULT_ORG = "orcal"
DEFAULT_APP_NAME = "app"
DEFAULT_REGISTRY = "gcr.io/orcal"
DEFAULT_PRIMARY_BRANCH = "master"
DEFAULT_DEVELOPMENT_ENVIRONMENT = "development"
DEFAULT_PRODUCTION_ENVIRONMENTS: tuple[str, ...] = ("prod-sg", "prod-us")
DEFAULT_ENVIRONMENTS_DIR = "deploy/environments"

# Pause between a successful deploy and its status query
DEFAULT_GRACE_SECONDS = 10.0
# Wall-clock limit for a whole run
DEFAULT_RUN_TIMEOUT_SECONDS = 60 * 60.0

DEFAULT_VERSION_FILE = ".rollout/VERSION"
DEFAULT_STATE_DIR = ".rollout"


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when config cannot be loaded or parsed."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Identity of the deployed application."""

    org: str = DEFAULT_ORG
    name: str = DEFAULT_APP_NAME
    image: str | None = None
    registry: str = DEFAULT_REGISTRY
    primary_branch: str = DEFAULT_PRIMARY_BRANCH

    @property
    def image_repo(self) -> str:
        """Full image repository, without tag."""
        return f"{self.registry}/{self.image or self.name}"


@dataclass(frozen=True, slots=True)
class DeployConfig:
    """Rollout policy and derived file locations (relative to the repo root)."""

    development_environment: str = DEFAULT_DEVELOPMENT_ENVIRONMENT
    production_environments: tuple[str, ...] = DEFAULT_PRODUCTION_ENVIRONMENTS
    environments_dir: str = DEFAULT_ENVIRONMENTS_DIR
    grace_seconds: float = DEFAULT_GRACE_SECONDS
    run_timeout_seconds: float = DEFAULT_RUN_TIMEOUT_SECONDS
    version_file: str = DEFAULT_VERSION_FILE
    state_dir: str = DEFAULT_STATE_DIR


@dataclass(frozen=True, slots=True)
class CommandsConfig:
    """Command prefixes for the external tools.

    Arguments are appended by the pipeline, so each entry only names the
    executable and any fixed leading arguments.
    """

    test: tuple[str, ...] = ("./deploy/scripts/test.sh",)
    image_build: tuple[str, ...] = ("docker", "build")
    image_push: tuple[str, ...] = ("docker", "push")
    deploy: tuple[str, ...] = ("deployctl", "deploy")
    status: tuple[str, ...] = ("deployctl", "status")
    git_remote: str = "origin"


@dataclass(frozen=True, slots=True)
class EnvironmentConfig:
    """A declared target environment.

    ``credential`` is None when the config does not override it; the
    registry then binds the conventional reference.
    """

    name: str
    credential: str | None = None


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Main configuration container."""

    app: AppConfig = field(default_factory=AppConfig)
    deploy: DeployConfig = field(default_factory=DeployConfig)
    commands: CommandsConfig = field(default_factory=CommandsConfig)
    environments: tuple[EnvironmentConfig, ...] = ()

    def declared_environment_names(self) -> tuple[str, ...]:
        """Development, production and explicitly declared names, in that order."""
        names: list[str] = [self.deploy.development_environment]
        names.extend(self.deploy.production_environments)
        names.extend(env.name for env in self.environments)
        return tuple(dict.fromkeys(names))

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> PipelineConfig:
        """Create PipelineConfig from a mapping (parsed TOML)."""
        app: StrDict = get_table(data, "app") or {}
        deploy: StrDict = get_table(data, "deploy") or {}
        commands: StrDict = get_table(data, "commands") or {}
        environments: StrDict = get_table(data, "environments") or {}

        production = get_str_list(deploy, "production_environments")
        defaults = CommandsConfig()

        return cls(
            app=AppConfig(
                org=get_str(app, "org") or DEFAULT_ORG,
                name=get_str(app, "name") or DEFAULT_APP_NAME,
                image=get_str(app, "image"),
                registry=get_str(app, "registry") or DEFAULT_REGISTRY,
                primary_branch=get_str(app, "primary_branch") or DEFAULT_PRIMARY_BRANCH,
            ),
            deploy=DeployConfig(
                development_environment=get_str(deploy, "development_environment")
                or DEFAULT_DEVELOPMENT_ENVIRONMENT,
                production_environments=tuple(production)
                if production is not None
                else DEFAULT_PRODUCTION_ENVIRONMENTS,
                environments_dir=get_str(deploy, "environments_dir") or DEFAULT_ENVIRONMENTS_DIR,
                grace_seconds=_non_negative(deploy, "grace_seconds", DEFAULT_GRACE_SECONDS),
                run_timeout_seconds=_non_negative(
                    deploy, "run_timeout_seconds", DEFAULT_RUN_TIMEOUT_SECONDS
                ),
                version_file=get_str(deploy, "version_file") or DEFAULT_VERSION_FILE,
                state_dir=get_str(deploy, "state_dir") or DEFAULT_STATE_DIR,
            ),
            commands=CommandsConfig(
                test=_command(commands, "test", defaults.test),
                image_build=_command(commands, "image_build", defaults.image_build),
                image_push=_command(commands, "image_push", defaults.image_push),
                deploy=_command(commands, "deploy", defaults.deploy),
                status=_command(commands, "status", defaults.status),
                git_remote=get_str(commands, "git_remote") or defaults.git_remote,
            ),
            environments=tuple(
                EnvironmentConfig(
                    name=name,
                    credential=get_str(as_str_dict(raw) or {}, "credential"),
                )
                for name, raw in environments.items()
            ),
        )


def _command(table: Mapping[str, object], key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = get_str_list(table, key)
    if not value:
        return default
    return tuple(value)


def _non_negative(table: Mapping[str, object], key: str, default: float) -> float:
    value = get_number(table, key)
    if value is None:
        return default
    if value < 0:
        raise ValueError(f"{key} must be >= 0 (got {value})")
    return value


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    """Parse a TOML file, handling read and parse errors."""
    import tomllib

    try:
        content = path.read_bytes()
        data_obj: object = tomllib.loads(content.decode("utf-8"))
        data = as_str_dict(data_obj)
        if data is None:
            return Err(ConfigError("Config root must be a TOML table", path=path))
        return Ok(data)
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))


def load_config(path: Path) -> Result[PipelineConfig, ConfigError]:
    """Load and parse configuration from a TOML file.

    Args:
        path: Path to rollout.toml

    Returns:
        Ok(PipelineConfig) on success, Err(ConfigError) on failure
    """
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        return Ok(PipelineConfig.from_dict(result.value))
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))


def load_config_or_default(path: Path) -> Result[PipelineConfig, ConfigError]:
    """Like load_config, but a missing file yields the default config.

    A file that exists but cannot be parsed is still an error.
    """
    if not path.exists():
        return Ok(PipelineConfig())
    return load_config(path)
