from __future__ import annotations

from lsplint.core.lsp.correlator import DiagnosticsCorrelator
from lsplint.core.lsp.endpoint import RPCEndpoint, Subscription
from lsplint.core.lsp.errors import (
    DiagnosticsTimeout,
    DuplicateWaiter,
    LintSessionFailed,
    LSPError,
    ProcessCrashed,
    RemoteError,
    RequestTimeout,
    ServerStartError,
    SessionStateError,
    TransportError,
)
from lsplint.core.lsp.formatter import LSPDiagnosticFormatter
from lsplint.core.lsp.server import JsonLanguageServer
from lsplint.core.lsp.session import LintSession, SessionState
from lsplint.core.lsp.supervisor import ProcessSupervisor, ServerProcess
from lsplint.core.lsp.transport import TransportFramer, encode_message
from lsplint.core.lsp.types import Diagnostic, Document, LintResult, Position, Range

__all__ = [
    "Diagnostic",
    "DiagnosticsCorrelator",
    "DiagnosticsTimeout",
    "Document",
    "DuplicateWaiter",
    "JsonLanguageServer",
    "LSPDiagnosticFormatter",
    "LSPError",
    "LintResult",
    "LintSession",
    "LintSessionFailed",
    "Position",
    "ProcessCrashed",
    "ProcessSupervisor",
    "RPCEndpoint",
    "Range",
    "RemoteError",
    "RequestTimeout",
    "ServerProcess",
    "ServerStartError",
    "SessionState",
    "SessionStateError",
    "Subscription",
    "TransportError",
    "TransportFramer",
    "encode_message",
]
