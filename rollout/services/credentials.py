"""Scoped credential contexts.

A secret is written to disk immediately before the command that needs it
and erased as soon as that command returns, on every exit path. Each slot
is one file with at most one holder; acquiring a held slot raises
``CredentialSlotBusy``.

Usage:
    slot = CredentialSlot(state_dir / "kubeconfig")
    with slot.acquire(CredentialRef("kubeconfig-prod-sg"), secret) as path:
        run_process(cmd, cwd=root, env={"KUBECONFIG": str(path)})
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from pathlib import Path

from rollout.core.result import Err, Ok, Result
from rollout.platform.files import erase_file, write_private_bytes
from rollout.services.model import CredentialRef
from rollout.services.secrets import SecretStore


class CredentialSlotBusy(RuntimeError):
    def __init__(self, path: Path, holder: CredentialRef) -> None:
        super().__init__(f"credential slot {path} is already held by {holder}")
        self.path = path
        self.holder = holder


class CredentialSlot:
    def __init__(self, path: Path) -> None:
        self.path = path
        self._holder: CredentialRef | None = None

    @property
    def holder(self) -> CredentialRef | None:
        return self._holder

    @property
    def is_held(self) -> bool:
        return self._holder is not None

    @contextmanager
    def acquire(self, ref: CredentialRef, secret: bytes) -> Iterator[Path]:
        """Materialize ``secret`` at the slot path for the duration of the block."""
        if self._holder is not None:
            raise CredentialSlotBusy(self.path, self._holder)

        self._holder = ref
        try:
            write_private_bytes(self.path, secret)
            yield self.path
        finally:
            try:
                erase_file(self.path)
            finally:
                self._holder = None


def materialize(
    stack: ExitStack,
    *,
    slot: CredentialSlot,
    ref: CredentialRef,
    secrets: SecretStore,
    env_var: str,
    render: Callable[[Path], str] = str,
) -> Result[dict[str, str], str]:
    """Acquire ``slot`` with the secret named by ``ref`` inside ``stack``.

    Returns the environment variables that point the external command at
    the materialized file, or an error message if the secret is unknown.
    The file is erased when ``stack`` closes.
    """
    secret = secrets.get(ref.name)
    if secret is None:
        return Err(f"secret not found: {ref.name}")
    path = stack.enter_context(slot.acquire(ref, secret))
    return Ok({env_var: render(path)})
