"""Release identifier resolution.

Production runs select an existing release; every other run mints the next
patch release. Only the minting path can ever produce a tag that does not
exist yet.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from rollout.core.result import Err, Ok, Result
from rollout.platform.files import atomic_write_text
from rollout.services.errors import PipelineError

_RELEASE_RE = re.compile(r"^v(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)$")

FIRST_RELEASE = "v0.0.1"


@dataclass(frozen=True, slots=True, order=True)
class SemVer:
    major: int
    minor: int
    patch: int

    def to_tag(self) -> str:
        return f"v{self.major}.{self.minor}.{self.patch}"

    def next_patch(self) -> SemVer:
        return SemVer(self.major, self.minor, self.patch + 1)


def parse_release_tag(tag: str) -> SemVer | None:
    m = _RELEASE_RE.match(tag.strip())
    if m is None:
        return None
    return SemVer(int(m.group(1)), int(m.group(2)), int(m.group(3)))


def latest_release_tag(tags: Iterable[str]) -> str | None:
    """Highest ``vX.Y.Z`` tag by version order; other tags are ignored."""
    versions = [v for v in (parse_release_tag(t) for t in tags) if v is not None]
    if not versions:
        return None
    return max(versions).to_tag()


def resolve_release(
    *,
    latest: str | None,
    requested: str | None,
    production: bool,
) -> Result[str, PipelineError]:
    """Turn the latest tag and the run flags into a concrete release identifier.

    Args:
        latest: Highest existing release tag, None if the repo has none.
        requested: Explicit release from the run parameters; wins when set.
        production: True when deploying an already built release.

    Returns:
        Ok(tag), or Err with kind ``invalid_input`` for a malformed request
        or ``no_release_available`` for a production run with nothing to deploy.
    """
    if requested:
        requested = requested.strip()
        if parse_release_tag(requested) is None:
            return Err(
                PipelineError(
                    kind="invalid_input",
                    message=f"invalid release identifier: {requested}",
                    hint="Expected vMAJOR.MINOR.PATCH, e.g. v1.4.2",
                )
            )
        return Ok(requested)

    if production:
        if latest is None:
            return Err(
                PipelineError(
                    kind="no_release_available",
                    message="production deploy requested but no release tag exists",
                    hint="Build a release on the primary branch first, or pass --release",
                )
            )
        return Ok(latest)

    if latest is None:
        return Ok(FIRST_RELEASE)

    current = parse_release_tag(latest)
    if current is None:
        return Err(
            PipelineError(
                kind="invalid_input",
                message=f"latest tag is not a release identifier: {latest}",
            )
        )
    return Ok(current.next_patch().to_tag())


def write_version_file(path: Path, release: str) -> None:
    atomic_write_text(path, release + "\n")


def read_version_file(path: Path) -> str | None:
    """Release recorded by the prepare stage, None if absent or empty."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    lines = text.splitlines()
    if not lines:
        return None
    return lines[0].strip() or None
