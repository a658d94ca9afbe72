"""Secret stores: opaque secret blobs keyed by name.

The CI system owns the secrets; these adapters only read what it exposes.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from rollout.platform.process import SECRET_ENV_PREFIX

ENV_PREFIX = SECRET_ENV_PREFIX

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


class SecretStore(Protocol):
    def get(self, name: str) -> bytes | None:
        """Secret content, or None if the store has no such secret."""
        ...


def secret_env_var(name: str) -> str:
    """``kubeconfig-prod-sg`` -> ``ROLLOUT_SECRET_KUBECONFIG_PROD_SG``."""
    return ENV_PREFIX + _NON_ALNUM.sub("_", name).upper()


@dataclass(frozen=True, slots=True)
class EnvSecretStore:
    environ: Mapping[str, str] = field(default_factory=lambda: os.environ)

    def get(self, name: str) -> bytes | None:
        value = self.environ.get(secret_env_var(name))
        if not value:
            return None
        return value.encode("utf-8")


@dataclass(frozen=True, slots=True)
class DirSecretStore:
    """Secrets mounted as files, one file per secret name."""

    root: Path

    def get(self, name: str) -> bytes | None:
        """Content of ``root/name``; None if absent or unreadable."""
        if "/" in name or "\\" in name or name in {"", ".", ".."}:
            return None
        try:
            return (self.root / name).read_bytes()
        except OSError:
            return None


@dataclass(frozen=True, slots=True)
class MappingSecretStore:
    secrets: Mapping[str, bytes]

    def get(self, name: str) -> bytes | None:
        return self.secrets.get(name)


@dataclass(frozen=True, slots=True)
class ChainSecretStore:
    """First store that knows the name wins."""

    stores: tuple[SecretStore, ...]

    def get(self, name: str) -> bytes | None:
        for store in self.stores:
            value = store.get(name)
            if value is not None:
                return value
        return None
