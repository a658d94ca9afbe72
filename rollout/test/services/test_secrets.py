from __future__ import annotations

from pathlib import Path

import pytest

from rollout.services.secrets import (
    ChainSecretStore,
    DirSecretStore,
    EnvSecretStore,
    MappingSecretStore,
    secret_env_var,
)


def test_secret_env_var_name() -> None:
    assert secret_env_var("kubeconfig-prod-sg") == "ROLLOUT_SECRET_KUBECONFIG_PROD_SG"
    assert secret_env_var("gcp.sa") == "ROLLOUT_SECRET_GCP_SA"


def test_env_store_reads_prefixed_variables() -> None:
    store = EnvSecretStore({"ROLLOUT_SECRET_KUBECONFIG_DEV": "apiVersion: v1"})
    assert store.get("kubeconfig-dev") == b"apiVersion: v1"
    assert store.get("kubeconfig-prod") is None


def test_env_store_treats_empty_value_as_missing() -> None:
    store = EnvSecretStore({"ROLLOUT_SECRET_X": ""})
    assert store.get("x") is None


def test_dir_store_reads_files(tmp_path: Path) -> None:
    (tmp_path / "kubeconfig-dev").write_bytes(b"\x00binary")
    store = DirSecretStore(tmp_path)

    assert store.get("kubeconfig-dev") == b"\x00binary"
    assert store.get("missing") is None
    assert store.get("../kubeconfig-dev") is None


def test_dir_store_unreadable_file_is_missing(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    (tmp_path / "kubeconfig-dev").write_bytes(b"secret")

    def denied(self: Path) -> bytes:
        raise PermissionError(13, "Permission denied", str(self))

    monkeypatch.setattr(Path, "read_bytes", denied)

    assert DirSecretStore(tmp_path).get("kubeconfig-dev") is None


def test_chain_store_first_match_wins() -> None:
    store = ChainSecretStore(
        (
            MappingSecretStore({"a": b"first"}),
            MappingSecretStore({"a": b"second", "b": b"only-second"}),
        )
    )
    assert store.get("a") == b"first"
    assert store.get("b") == b"only-second"
    assert store.get("c") is None
