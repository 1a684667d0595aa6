from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from enum import StrEnum, auto
import os
from types import TracebackType
from typing import Any

from lsplint import __version__
from lsplint.core.config import LSPServerConfig, SessionConfig
from lsplint.core.logger import logger
from lsplint.core.lsp.correlator import DiagnosticsCorrelator
from lsplint.core.lsp.endpoint import RPCEndpoint
from lsplint.core.lsp.errors import (
    DiagnosticsTimeout,
    LintSessionFailed,
    ProcessCrashed,
    RemoteError,
    RequestTimeout,
    ServerStartError,
    SessionStateError,
    TransportError,
)
from lsplint.core.lsp.supervisor import ProcessSupervisor, ServerProcess
from lsplint.core.lsp.transport import TransportFramer
from lsplint.core.lsp.types import Document, LintResult

# Errors that fail one document without aborting the batch
PER_DOCUMENT_ERRORS = (DiagnosticsTimeout, RemoteError)

# How long a broken connection may take to show up as a process exit
CRASH_PROBE_TIMEOUT = 0.5

CLIENT_CAPABILITIES: dict[str, Any] = {
    "textDocument": {
        "synchronization": {"dynamicRegistration": False, "didSave": False},
        "publishDiagnostics": {
            "relatedInformation": True,
            "versionSupport": True,
            "tagSupport": {"valueSet": [1, 2]},
            "codeDescriptionSupport": True,
            "dataSupport": True,
        },
    },
    "workspace": {
        "configuration": True,
        "didChangeConfiguration": {"dynamicRegistration": False},
        "workspaceFolders": True,
    },
}

# LSP MessageType enum values
_MESSAGE_TYPES = {1: "Error", 2: "Warning", 3: "Info", 4: "Log", 5: "Debug"}


class SessionState(StrEnum):
    CREATED = auto()
    INITIALIZING = auto()
    READY = auto()
    LINTING = auto()
    DRAINING = auto()
    SHUTTING_DOWN = auto()
    CLOSED = auto()
    FAILED = auto()


_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.CREATED: {SessionState.INITIALIZING, SessionState.CLOSED},
    SessionState.INITIALIZING: {SessionState.READY},
    SessionState.READY: {SessionState.LINTING, SessionState.DRAINING},
    SessionState.LINTING: {SessionState.READY},
    SessionState.DRAINING: {SessionState.SHUTTING_DOWN},
    SessionState.SHUTTING_DOWN: {SessionState.CLOSED},
    SessionState.CLOSED: set(),
    SessionState.FAILED: set(),
}

TERMINAL_STATES = {SessionState.CLOSED, SessionState.FAILED}


class LintSession:
    """Drives one language server through initialize, per-document
    open/diagnose/close and shutdown.

    Per-document failures (diagnostics timeout, remote errors) produce an
    errored LintResult and the batch continues. Anything that breaks the
    connection or the server process moves the session to FAILED and raises
    LintSessionFailed with the results collected so far.
    """

    def __init__(
        self,
        command: Sequence[str] | None = None,
        server_config: LSPServerConfig | None = None,
        session_config: SessionConfig | None = None,
        supervisor: ProcessSupervisor | None = None,
        initialization_params: dict[str, Any] | None = None,
    ) -> None:
        self.server_config = server_config or LSPServerConfig()
        self.config = session_config or SessionConfig()
        self.command = list(command or self.server_config.command)
        self.supervisor = supervisor or ProcessSupervisor(
            shutdown_timeout=self.config.shutdown_timeout,
            grace_period=self.config.grace_period,
        )
        self.initialization_params = initialization_params or {}

        self.state = SessionState.CREATED
        self.server: ServerProcess | None = None
        self.endpoint: RPCEndpoint | None = None
        self.correlator = DiagnosticsCorrelator()
        self.open_documents: set[str] = set()
        self.results: list[LintResult] = []
        self.error: BaseException | None = None

    async def __aenter__(self) -> LintSession:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc is not None and self.state not in TERMINAL_STATES:
            await self._fail(exc)
            return
        await self.close()

    @property
    def capabilities(self) -> dict[str, Any]:
        return self.server.capabilities if self.server else {}

    async def run(self, documents: Iterable[Document]) -> list[LintResult]:
        await self.start()
        results = await self.lint(documents)
        await self.close()
        return results

    async def start(self) -> None:
        self._transition(SessionState.INITIALIZING)
        if not self.command:
            await self._abort(ServerStartError([], "no language server command configured"))

        try:
            self.server = await self.supervisor.start(
                self.command[0],
                self.command[1:],
                env=self.server_config.env,
                cwd=self.server_config.cwd,
            )
            self.server.on_crash(self._on_crash)
            self.endpoint = self._connect(self.server)

            result = await self.endpoint.request("initialize", self._initialize_params())
            if isinstance(result, dict):
                self.server.capabilities = result.get("capabilities") or {}
            logger.debug(f"Language server capabilities: {self.server.capabilities}")

            await self.endpoint.notify("initialized", {})
            if self.server_config.settings:
                await self.endpoint.notify(
                    "workspace/didChangeConfiguration",
                    {"settings": self.server_config.settings},
                )
        except asyncio.CancelledError as e:
            await self._fail(e)
            raise
        except Exception as e:
            await self._abort(e)

        self._transition(SessionState.READY)
        logger.info("Language server initialized")

    async def lint(self, documents: Iterable[Document]) -> list[LintResult]:
        if self.state != SessionState.READY:
            raise SessionStateError(f"Cannot lint documents in state '{self.state}'")

        docs = list(documents)
        results: list[LintResult | None] = [None] * len(docs)
        logger.debug(f"Linting {len(docs)} documents")

        try:
            if self.config.max_open_documents == 1:
                for index, document in enumerate(docs):
                    results[index] = await self._lint_document(document)
            else:
                await self._lint_concurrently(docs, results)
        except asyncio.CancelledError as e:
            await self._fail(e)
            raise
        except Exception as e:
            await self._abort(e, [r for r in results if r is not None])

        completed = [r for r in results if r is not None]
        self.results.extend(completed)
        return completed

    async def close(self) -> None:
        if self.state in TERMINAL_STATES:
            return
        if self.state == SessionState.CREATED:
            self._transition(SessionState.CLOSED)
            return

        self._transition(SessionState.DRAINING)
        for uri in self.correlator.pending:
            self.correlator.abandon(uri)

        self._transition(SessionState.SHUTTING_DOWN)
        assert self.server is not None
        try:
            await self.supervisor.stop(self.server, self.endpoint)
        except asyncio.CancelledError as e:
            await self._fail(e)
            raise
        except Exception as e:
            await self._abort(e, self.results)

        self._transition(SessionState.CLOSED)

    async def _lint_concurrently(
        self, docs: list[Document], results: list[LintResult | None]
    ) -> None:
        semaphore = asyncio.Semaphore(self.config.max_open_documents)

        async def lint_slot(index: int, document: Document) -> None:
            async with semaphore:
                results[index] = await self._lint_document(document)

        tasks = [
            asyncio.create_task(lint_slot(index, document))
            for index, document in enumerate(docs)
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _lint_document(self, document: Document) -> LintResult:
        assert self.endpoint is not None
        if self.state == SessionState.READY:
            self._transition(SessionState.LINTING)
        self.open_documents.add(document.uri)
        logger.debug(f"Linting {document.uri}...")

        try:
            # Register before didOpen so a fast server cannot publish unobserved
            waiter = self.correlator.await_diagnostics(
                document.uri, self.config.diagnostics_timeout
            )
            try:
                await self.endpoint.notify(
                    "textDocument/didOpen",
                    {"textDocument": document.to_text_document_item()},
                )
                diagnostics = await waiter
            except PER_DOCUMENT_ERRORS as e:
                logger.warning(f"Could not lint {document.uri}: {e}")
                result = LintResult(uri=document.uri, error=str(e))
            else:
                result = LintResult(uri=document.uri, diagnostics=diagnostics)
            finally:
                self.correlator.abandon(document.uri)

            await self.endpoint.notify(
                "textDocument/didClose", {"textDocument": {"uri": document.uri}}
            )
        finally:
            self.open_documents.discard(document.uri)
            if not self.open_documents and self.state == SessionState.LINTING:
                self._transition(SessionState.READY)

        logger.debug(
            f"{document.uri} has {len(result.diagnostics)} diagnostics"
            if result.error is None
            else f"{document.uri} failed to lint"
        )
        return result

    def _connect(self, server: ServerProcess) -> RPCEndpoint:
        process = server.process
        assert process.stdout is not None and process.stdin is not None
        endpoint = RPCEndpoint(
            TransportFramer(process.stdout, process.stdin),
            request_timeout=self.config.request_timeout,
        )
        self.correlator.attach(endpoint)

        endpoint.on_request("workspace/configuration", self._workspace_configuration)
        for method in (
            "client/registerCapability",
            "client/unregisterCapability",
            "window/workDoneProgress/create",
        ):
            endpoint.on_request(method, lambda _params: None)
        endpoint.on_notification("window/logMessage", self._log_server_message)
        endpoint.on_notification("window/showMessage", self._log_server_message)

        endpoint.start()
        return endpoint

    def _initialize_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {
            "processId": os.getpid(),
            "clientInfo": {"name": "lsplint", "version": __version__},
            "rootUri": None,
            "capabilities": CLIENT_CAPABILITIES,
        }
        params.update(self.initialization_params)
        if self.server_config.initialization_options:
            params["initializationOptions"] = {
                **params.get("initializationOptions", {}),
                **self.server_config.initialization_options,
            }
        return params

    def _workspace_configuration(self, params: Any) -> list[Any]:
        items = params.get("items", []) if isinstance(params, dict) else []
        return [self._lookup_setting(item.get("section")) for item in items]

    def _lookup_setting(self, section: str | None) -> Any:
        value: Any = self.server_config.settings
        if not section:
            return value
        for key in section.split("."):
            if not isinstance(value, dict) or key not in value:
                return None
            value = value[key]
        return value

    def _log_server_message(self, params: Any) -> None:
        if not isinstance(params, dict):
            return
        log_level = _MESSAGE_TYPES.get(params.get("type", 3), "Info")
        logger.debug(f"LSP Server Log [{log_level}]: {params.get('message', '')}")

    def _on_crash(self, crash: ProcessCrashed) -> None:
        if self.endpoint is None or self.endpoint.closed:
            return
        error = TransportError(str(crash))
        error.__cause__ = crash
        self.endpoint.abort(error)

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise SessionStateError(
                f"Invalid session transition {self.state} -> {new_state}"
            )
        logger.debug(f"Lint session: {self.state} -> {new_state}")
        self.state = new_state

    async def _abort(
        self, exc: BaseException, results: Sequence[LintResult] = ()
    ) -> None:
        cause = await self._fail(exc)
        raise LintSessionFailed(cause, results) from cause

    async def _fail(self, exc: BaseException) -> BaseException:
        cause = await self._classify(exc)
        if self.state not in TERMINAL_STATES:
            logger.error(f"Lint session failed in state {self.state}: {cause}")
            self.state = SessionState.FAILED
        if self.error is None:
            self.error = cause

        if self.server is not None:
            try:
                await self.supervisor.stop(self.server, self.endpoint)
            except Exception as e:
                logger.warning(f"Error stopping language server after failure: {e}")
        return self.error

    async def _classify(self, exc: BaseException) -> BaseException:
        """Report a lost connection as ProcessCrashed when the server died."""
        if not isinstance(exc, (TransportError, RequestTimeout)):
            return exc
        server = self.server
        if server is None or server.stopping:
            return exc
        if await server.wait_for_exit(CRASH_PROBE_TIMEOUT):
            crash = ProcessCrashed(server.returncode)
            crash.__cause__ = exc
            return crash
        return exc
