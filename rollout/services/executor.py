"""Deploy one environment at one release.

An environment without a config file is skipped, not failed. Otherwise its
cluster credential is materialized, the deploy tool runs, and after a short
grace period the status command must succeed too.
"""

from __future__ import annotations

from contextlib import ExitStack
from dataclasses import dataclass

from rollout.core.result import Err
from rollout.output.console import ConsoleProtocol, Style
from rollout.services.credentials import CredentialSlot, materialize
from rollout.services.deadline import Deadline
from rollout.services.model import (
    CredentialRef,
    Deployed,
    DeploymentOutcome,
    Failed,
    SkippedMissingConfig,
)
from rollout.services.registry import EnvironmentRegistry
from rollout.services.secrets import SecretStore
from rollout.services.tools import Toolchain

CLUSTER_CREDENTIAL_ENV = "KUBECONFIG"
CLOUD_CREDENTIAL_ENV = "GOOGLE_APPLICATION_CREDENTIALS"


@dataclass(frozen=True, slots=True)
class CloudAccess:
    """Cloud provider credential used alongside each cluster credential."""

    slot: CredentialSlot
    ref: CredentialRef


class DeploymentExecutor:
    def __init__(
        self,
        *,
        registry: EnvironmentRegistry,
        secrets: SecretStore,
        toolchain: Toolchain,
        cluster_slot: CredentialSlot,
        org: str,
        app: str,
        grace_seconds: float,
        deadline: Deadline,
        console: ConsoleProtocol,
        cloud: CloudAccess | None = None,
    ) -> None:
        self._registry = registry
        self._secrets = secrets
        self._toolchain = toolchain
        self._cluster_slot = cluster_slot
        self._org = org
        self._app = app
        self._grace_seconds = grace_seconds
        self._deadline = deadline
        self._console = console
        self._cloud = cloud

    def deploy(self, environment: str, release: str, extra_args: str = "") -> DeploymentOutcome:
        env = self._registry.environment(environment)
        binding = self._registry.resolve(environment)

        if not binding.config_present:
            self._console.warning(f"{environment}: no config at {env.config_path}, skipping")
            return SkippedMissingConfig(environment=environment, config_path=env.config_path)

        if binding.credential is None:
            return Failed(environment=environment, reason="no credential bound to environment")

        self._console.print(f"{environment}: deploying {self._app} {release}", Style.BOLD)

        with ExitStack() as stack:
            cluster = materialize(
                stack,
                slot=self._cluster_slot,
                ref=binding.credential,
                secrets=self._secrets,
                env_var=CLUSTER_CREDENTIAL_ENV,
            )
            if isinstance(cluster, Err):
                return Failed(environment=environment, reason=cluster.error)
            tool_env = dict(cluster.value)

            if self._cloud is not None:
                cloud = materialize(
                    stack,
                    slot=self._cloud.slot,
                    ref=self._cloud.ref,
                    secrets=self._secrets,
                    env_var=CLOUD_CREDENTIAL_ENV,
                )
                if isinstance(cloud, Err):
                    return Failed(environment=environment, reason=cloud.error)
                tool_env.update(cloud.value)

            deployed = self._toolchain.deploy(
                environment, self._org, self._app, release, extra_args, env=tool_env
            )
            if isinstance(deployed, Err):
                e = deployed.error
                return Failed(
                    environment=environment,
                    reason=f"deploy failed: {e.message}",
                    timed_out=e.timed_out,
                )

            if not self._deadline.wait(self._grace_seconds):
                return Failed(
                    environment=environment,
                    reason="run deadline reached before status check",
                    timed_out=True,
                )

            status = self._toolchain.status(environment, env=tool_env)
            if isinstance(status, Err):
                e = status.error
                return Failed(
                    environment=environment,
                    reason=f"status check failed: {e.message}",
                    timed_out=e.timed_out,
                )

        self._console.success(f"{environment}: {release} deployed")
        return Deployed(environment=environment, release=release)
