from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from lsplint.core.lsp.types import LintResult


class LSPError(Exception):
    pass


class TransportError(LSPError):
    """The connection to the language server failed or was closed."""


class RemoteError(LSPError):
    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"LSP error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class RequestTimeout(LSPError):
    def __init__(self, method: str, timeout: float) -> None:
        super().__init__(f"LSP request '{method}' timed out after {timeout:g}s")
        self.method = method
        self.timeout = timeout


class ServerStartError(LSPError):
    def __init__(self, command: Sequence[str], reason: str) -> None:
        super().__init__(
            f"Could not start language server '{' '.join(command)}': {reason}"
        )
        self.command = list(command)
        self.reason = reason


class ProcessCrashed(LSPError):
    def __init__(self, returncode: int | None) -> None:
        super().__init__(
            f"Language server exited unexpectedly (exit code: {returncode})"
        )
        self.returncode = returncode


class DiagnosticsTimeout(LSPError):
    def __init__(self, uri: str, timeout: float) -> None:
        super().__init__(f"No diagnostics received for {uri} within {timeout:g}s")
        self.uri = uri
        self.timeout = timeout


class DuplicateWaiter(LSPError):
    def __init__(self, uri: str) -> None:
        super().__init__(f"Diagnostics for {uri} are already being awaited")
        self.uri = uri


class SessionStateError(LSPError):
    pass


class LintSessionFailed(LSPError):
    """The lint session aborted.

    `cause` is the first fatal error; `results` holds the results of the
    documents that completed before it, in submission order.
    """

    def __init__(self, cause: BaseException, results: Sequence[LintResult]) -> None:
        super().__init__(f"Lint session failed: {cause}")
        self.cause = cause
        self.results = list(results)
