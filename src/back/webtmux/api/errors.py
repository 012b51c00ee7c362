"""Typed error hierarchy for the session bridge.

All errors carry structured context (operation, command, scope) for
logging. Messages are safe to surface in logs and close reasons; they
never include credentials.

Propagation policy:
  - SpawnError, BackendIOError: end the session.
  - ParseError, ControllerOperationError, ProtocolError: fail the single
    message being handled; the session continues.
  - AuthError, LockoutError: reject the request before a session exists.
"""
from __future__ import annotations


class WebtmuxError(Exception):
    """Base error for all bridge operations."""

    def __init__(self, message: str, *, operation: str | None = None):
        self.operation = operation
        super().__init__(message)

    def __repr__(self) -> str:
        parts = [f"{type(self).__name__}({self.args[0]!r}"]
        if self.operation:
            parts.append(f"operation={self.operation!r}")
        return ", ".join(parts) + ")"


class SpawnError(WebtmuxError):
    """The PTY process could not be started."""

    def __init__(self, message: str, *, command: list[str] | None = None):
        self.command = list(command or [])
        super().__init__(message, operation='spawn')


class BackendIOError(WebtmuxError):
    """A PTY read, write or resize failed."""

    pass


class TransportClosed(WebtmuxError):
    """The browser side of the session went away."""

    pass


class ParseError(WebtmuxError):
    """Multiplexer listing output did not match the expected grammar."""

    def __init__(self, message: str, *, line: str = ''):
        self.line = line
        super().__init__(message, operation='parse')


class CommandError(WebtmuxError):
    """An external multiplexer command exited non-zero or could not run."""

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = '',
    ):
        self.command = list(command or [])
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message, operation=' '.join(self.command[1:2]) or None)


class ControllerStartError(WebtmuxError):
    """The multiplexer controller could not ensure or read its session."""

    pass


class ControllerOperationError(WebtmuxError):
    """A mutating multiplexer operation failed.

    Wraps the underlying error verbatim, prefixed with the attempted
    operation name.
    """

    def __init__(self, operation: str, cause: Exception):
        self.cause = cause
        super().__init__(f'{operation}: {cause}', operation=operation)


class ProtocolError(WebtmuxError):
    """An inbound frame was empty, malformed or carried an unknown tag."""

    def __init__(self, message: str, *, tag: str | None = None):
        self.tag = tag
        super().__init__(message, operation='dispatch')


class AuthError(WebtmuxError):
    """Credentials were missing, malformed or incorrect."""

    def __init__(self, message: str):
        super().__init__(message, operation='authenticate')


class LockoutError(WebtmuxError):
    """The caller (or every caller) is locked out after repeated failures."""

    def __init__(self, scope: str, retry_after: float):
        self.scope = scope
        self.retry_after = retry_after
        super().__init__(
            f'Too many failed login attempts ({scope} lockout). '
            f'Retry after {retry_after:.1f}s',
            operation='authenticate',
        )
