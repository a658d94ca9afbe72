"""Environment registry: environment name -> config file + credential.

Credentials are bound explicitly when the registry is built, so a typo in
the config fails at startup instead of halfway through a rollout.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path

from rollout.core.config import PipelineConfig
from rollout.core.result import Err, Ok, Result
from rollout.services.errors import PipelineError
from rollout.services.model import CredentialRef, Environment, EnvironmentBinding

CONFIG_SUFFIX = ".yaml"


def default_credential_name(environment: str) -> str:
    return f"kubeconfig-{environment}"


def environment_config_path(environments_dir: Path, name: str) -> Path:
    return environments_dir / f"{name}{CONFIG_SUFFIX}"


def _validate_name(name: str) -> str | None:
    if not name:
        return "environment name is empty"
    if any(ch.isspace() for ch in name):
        return f"environment name contains whitespace: {name!r}"
    if "/" in name or "\\" in name or name in {".", ".."}:
        return f"environment name is not a plain file name: {name!r}"
    return None


class EnvironmentRegistry:
    """Read-only lookup of declared environments.

    Names that were never declared still resolve: their config file is
    checked like any other, but they carry no credential.
    """

    def __init__(self, environments_dir: Path, credentials: Mapping[str, CredentialRef]) -> None:
        self._dir = environments_dir
        self._credentials = dict(credentials)

    @property
    def environments_dir(self) -> Path:
        return self._dir

    def names(self) -> tuple[str, ...]:
        return tuple(self._credentials)

    def environment(self, name: str) -> Environment:
        return Environment(
            name=name,
            config_path=environment_config_path(self._dir, name),
            credential=self._credentials.get(name),
        )

    def resolve(self, name: str) -> EnvironmentBinding:
        env = self.environment(name)
        return EnvironmentBinding(
            config_present=env.config_path.is_file(),
            credential=env.credential,
        )


def build_registry(
    *,
    environments_dir: Path,
    names: Iterable[str],
    overrides: Mapping[str, str] | None = None,
) -> Result[EnvironmentRegistry, PipelineError]:
    """Bind every name to its credential, validating names and references.

    Args:
        environments_dir: Directory holding ``<name>.yaml`` files.
        names: Declared environment names.
        overrides: Explicit credential names; others get ``kubeconfig-<name>``.
    """
    overrides = dict(overrides or {})
    credentials: dict[str, CredentialRef] = {}
    problems: list[str] = []

    for name in names:
        problem = _validate_name(name)
        if problem is not None:
            problems.append(problem)
            continue
        if name in credentials:
            continue
        credential = overrides.pop(name, None)
        if credential is not None and not credential.strip():
            problems.append(f"{name}: credential reference is empty")
            continue
        credentials[name] = CredentialRef(
            (credential or default_credential_name(name)).strip()
        )

    for name in sorted(overrides):
        problems.append(f"{name}: credential configured for undeclared environment")

    if problems:
        return Err(
            PipelineError(
                kind="config_invalid",
                message="invalid environment registry",
                hint="; ".join(problems),
            )
        )

    return Ok(EnvironmentRegistry(environments_dir, credentials))


def registry_from_config(
    config: PipelineConfig, *, repo_root: Path
) -> Result[EnvironmentRegistry, PipelineError]:
    overrides = {env.name: env.credential for env in config.environments if env.credential}
    return build_registry(
        environments_dir=repo_root / config.deploy.environments_dir,
        names=config.declared_environment_names(),
        overrides=overrides,
    )
