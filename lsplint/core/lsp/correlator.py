from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from lsplint.core.logger import logger
from lsplint.core.lsp.endpoint import RPCEndpoint
from lsplint.core.lsp.errors import DiagnosticsTimeout, DuplicateWaiter, TransportError
from lsplint.core.lsp.types import Diagnostic, Position, Range

PUBLISH_DIAGNOSTICS = "textDocument/publishDiagnostics"

_FILE_START = Position(line=0, character=0)
_FILE_START_RANGE = Range(start=_FILE_START, end=_FILE_START)


@dataclass
class Waiter:
    uri: str
    future: asyncio.Future[list[Diagnostic]] = field(repr=False)
    deadline: float
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)


class DiagnosticsCorrelator:
    """Routes publishDiagnostics notifications to the waiter for their uri.

    Notifications carry no request id, so each open document registers a
    waiter keyed by its uri before didOpen is sent. The first notification for
    that uri resolves the waiter; notifications for uris nobody waits on are
    dropped.
    """

    def __init__(self) -> None:
        self._waiters: dict[str, Waiter] = {}

    @property
    def pending(self) -> list[str]:
        return list(self._waiters)

    def attach(self, endpoint: RPCEndpoint) -> None:
        endpoint.on_notification(PUBLISH_DIAGNOSTICS, self.handle_publish)
        endpoint.on_close(self.fail_all)

    def await_diagnostics(
        self, uri: str, timeout: float
    ) -> asyncio.Future[list[Diagnostic]]:
        if uri in self._waiters:
            raise DuplicateWaiter(uri)

        loop = asyncio.get_running_loop()
        waiter = Waiter(
            uri=uri, future=loop.create_future(), deadline=loop.time() + timeout
        )
        waiter.timer = loop.call_at(waiter.deadline, self._expire, waiter, timeout)
        # A cancelled future must not keep its uri registered
        waiter.future.add_done_callback(lambda _f: self._discard(waiter))
        self._waiters[uri] = waiter
        logger.debug(f"Awaiting diagnostics for {uri} (timeout: {timeout:g}s)")
        return waiter.future

    def handle_publish(self, params: Any) -> None:
        if not isinstance(params, dict) or not isinstance(params.get("uri"), str):
            logger.debug(f"Discarding malformed publishDiagnostics params: {params}")
            return

        uri = params["uri"]
        waiter = self._waiters.get(uri)
        if waiter is None:
            logger.debug(f"Discarding diagnostics for untracked document {uri}")
            return

        entries = params.get("diagnostics") or []
        if not isinstance(entries, list):
            entries = [entries]
        diagnostics = [_parse_diagnostic(uri, entry) for entry in entries]

        self._discard(waiter)
        if not waiter.future.done():
            logger.debug(f"Received diagnostics for {uri}: {len(diagnostics)} issues")
            waiter.future.set_result(diagnostics)

    def abandon(self, uri: str) -> None:
        waiter = self._waiters.get(uri)
        if waiter is None:
            return
        self._discard(waiter)
        waiter.future.cancel()

    def fail_all(self, exc: BaseException) -> None:
        waiters = list(self._waiters.values())
        for waiter in waiters:
            self._discard(waiter)
            if not waiter.future.done():
                failure = TransportError(
                    f"Connection lost while waiting for diagnostics of {waiter.uri}"
                )
                failure.__cause__ = exc
                waiter.future.set_exception(failure)

    def _expire(self, waiter: Waiter, timeout: float) -> None:
        self._discard(waiter)
        if not waiter.future.done():
            logger.debug(f"Timed out waiting for diagnostics of {waiter.uri}")
            waiter.future.set_exception(DiagnosticsTimeout(waiter.uri, timeout))

    def _discard(self, waiter: Waiter) -> None:
        if self._waiters.get(waiter.uri) is waiter:
            del self._waiters[waiter.uri]
        if waiter.timer is not None:
            waiter.timer.cancel()
            waiter.timer = None


def _parse_diagnostic(uri: str, entry: Any) -> Diagnostic:
    """Validate one diagnostic, keeping a malformed entry as a file-level issue.

    A bad entry never hides the rest of the notification: it still fails the
    document, reported at the start of the file with whatever message it had.
    """
    try:
        return Diagnostic.model_validate(entry)
    except ValidationError as e:
        logger.warning(f"Malformed diagnostic for {uri}: {e}")

    message = entry.get("message") if isinstance(entry, dict) else None
    if not isinstance(message, str):
        message = f"Malformed diagnostic from language server: {entry!r}"
    return Diagnostic(range=_FILE_START_RANGE, message=message)
