"""Exit codes for CLI commands.

The numeric values are process exit codes consumed by the CI runner and
must remain stable.
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Exit codes for CLI commands.

    - 0: Success
    - 1: User error (bad flags, malformed release identifier)
    - 2: Environment error (invalid config, missing secrets, no release to deploy)
    - 3: Build error (tests, image build or tag push failed)
    - 4: Deploy error (deploy or status command failed)
    - 6: Timeout (run exceeded its wall-clock limit)
    """

    OK = 0
    USER_ERROR = 1
    ENV_ERROR = 2
    BUILD_ERROR = 3
    DEPLOY_ERROR = 4
    TIMEOUT = 6

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK

    @property
    def is_error(self) -> bool:
        return self != ErrorCode.OK
