"""
Exception hierarchy for pvesync.

Remote errors are raised by the SSH executor; reconcilers turn them into
failed results tagged with an ErrorKind so the pass report can name them.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Error classification surfaced in pass reports."""
    CONNECTION = "ConnectionError"
    COMMAND = "CommandError"
    CONFLICT = "ConflictError"
    PROBE_UNAVAILABLE = "ProbeUnavailable"
    TIMEOUT = "TimeoutError"


class PveSyncError(Exception):
    """Base exception for pvesync errors."""
    kind: Optional[ErrorKind] = None


class ConfigError(PveSyncError):
    """Desired configuration could not be loaded or validated."""
    pass


class DependencyCycleError(PveSyncError):
    """The kind dependency graph contains a cycle."""
    pass


class RemoteError(PveSyncError):
    """Base exception for remote execution errors."""

    def __init__(self, message: str, host: Optional[str] = None):
        super().__init__(message)
        self.host = host


class RemoteConnectionError(RemoteError):
    """The transport to the remote host could not be established."""
    kind = ErrorKind.CONNECTION


class RemoteTimeoutError(RemoteError):
    """The remote command did not finish within its timeout."""
    kind = ErrorKind.TIMEOUT


class RemoteInterruptedError(RemoteError):
    """The transport dropped after the command was sent; it may have run."""
    kind = ErrorKind.CONNECTION


class RemoteCommandError(RemoteError):
    """The remote command ran but exited non-zero."""
    kind = ErrorKind.COMMAND

    def __init__(
        self,
        message: str,
        host: Optional[str] = None,
        exit_code: Optional[int] = None,
        stderr: str = "",
    ):
        super().__init__(message, host)
        self.exit_code = exit_code
        self.stderr = stderr


class ConflictError(PveSyncError):
    """Remote state exists but does not match the desired configuration."""
    kind = ErrorKind.CONFLICT


class ProbeUnavailable(PveSyncError):
    """Remote state could not be determined."""
    kind = ErrorKind.PROBE_UNAVAILABLE
