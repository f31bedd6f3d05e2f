# SPDX-License-Identifier: MIT

"""Error taxonomy shared by the reader, the registry and the engine."""

from __future__ import annotations


class UpgradeCheckError(Exception):
    """Base class for every error raised by ocp_upgrade_check."""


class ConfigError(UpgradeCheckError):
    """Malformed configuration or check registry. Fatal before a run starts."""


class ConnectivityError(UpgradeCheckError):
    """The cluster API endpoint could not be reached.

    ``fatal`` distinguishes an endpoint that is down (refused connection,
    DNS or TLS failure), which aborts the run, from a transient fault such
    as a reset connection or a 5xx response, which is retried.
    """

    def __init__(self, message: str, fatal: bool = True) -> None:
        super().__init__(message)
        self.fatal = fatal


class AuthError(UpgradeCheckError):
    """Invalid or expired credential, or insufficient permission."""


class QueryError(UpgradeCheckError):
    """The cluster answered with an unexpected response shape."""


class CheckTimeoutError(UpgradeCheckError, TimeoutError):
    """A check exceeded its allotted wait."""


class ReportWriteError(UpgradeCheckError, OSError):
    """Writing the log or report artifact to storage failed."""
