from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
import inspect
import itertools
from typing import Any

from lsplint.core.logger import logger
from lsplint.core.lsp.errors import RemoteError, RequestTimeout, TransportError
from lsplint.core.lsp.transport import TransportFramer
from lsplint.core.lsp.types import (
    ErrorCodes,
    ErrorResponse,
    JSONRPCMessage,
    LSPParams,
    NotificationMessage,
    RequestId,
    RequestMessage,
    ResponseError,
    SuccessResponse,
)

NotificationHandler = Callable[[Any], None]
RequestHandler = Callable[[Any], Any | Awaitable[Any]]
CloseCallback = Callable[[TransportError], None]

DEFAULT_REQUEST_TIMEOUT = 30.0


@dataclass
class PendingRequest:
    id: RequestId
    method: str
    future: asyncio.Future[Any] = field(repr=False)


class Subscription:
    """Async iterator over the params of one notification method."""

    _CLOSED = object()

    def __init__(self, endpoint: RPCEndpoint, method: str) -> None:
        self.method = method
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._unregister = endpoint.on_notification(method, self._queue.put_nowait)
        self._closed = False
        self._unregister_close: Callable[[], None] = lambda: None
        self._unregister_close = endpoint.on_close(lambda _exc: self.close())

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._unregister()
        self._unregister_close()
        self._queue.put_nowait(self._CLOSED)

    def __aiter__(self) -> AsyncIterator[Any]:
        return self

    async def __anext__(self) -> Any:
        params = await self._queue.get()
        if params is self._CLOSED:
            raise StopAsyncIteration
        return params


class RPCEndpoint:
    """JSON-RPC endpoint over a TransportFramer.

    A single pump task owns the inbound side: it resolves pending requests by
    id, dispatches notifications by method and answers server requests.
    """

    def __init__(
        self, framer: TransportFramer, request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    ) -> None:
        self.framer = framer
        self.request_timeout = request_timeout
        self.pending_requests: dict[RequestId, PendingRequest] = {}
        self._ids = itertools.count(1)
        self._notification_handlers: defaultdict[str, list[NotificationHandler]] = (
            defaultdict(list)
        )
        self._request_handlers: dict[str, RequestHandler] = {}
        self._close_callbacks: list[CloseCallback] = []
        self._pump_task: asyncio.Task[None] | None = None
        self._closed_error: TransportError | None = None

    @property
    def closed(self) -> bool:
        return self._closed_error is not None

    def start(self) -> None:
        if self._pump_task is None and not self.closed:
            self._pump_task = asyncio.create_task(self._pump(), name="lsp-pump")

    async def request(
        self, method: str, params: LSPParams = None, timeout: float | None = None
    ) -> Any:
        if self._closed_error is not None:
            raise TransportError(
                f"Cannot send '{method}': {self._closed_error}"
            ) from self._closed_error

        request_id = next(self._ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self.pending_requests[request_id] = PendingRequest(request_id, method, future)

        logger.debug(f"LSP Request {request_id}: {method} with params: {params}")
        try:
            await self.framer.send(
                RequestMessage(id=request_id, method=method, params=params).to_payload()
            )
        except TransportError:
            self.pending_requests.pop(request_id, None)
            raise

        timeout = self.request_timeout if timeout is None else timeout
        try:
            result = await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError as e:
            logger.debug(f"LSP Request {method} timed out")
            raise RequestTimeout(method, timeout) from e
        finally:
            self.pending_requests.pop(request_id, None)

        logger.debug(f"LSP Response for {method}: {result}")
        return result

    async def notify(self, method: str, params: LSPParams = None) -> None:
        if self._closed_error is not None:
            raise TransportError(
                f"Cannot send '{method}': {self._closed_error}"
            ) from self._closed_error

        logger.debug(f"LSP Notification: {method} with params: {params}")
        await self.framer.send(
            NotificationMessage(method=method, params=params).to_payload()
        )

    def subscribe(self, method: str) -> Subscription:
        return Subscription(self, method)

    def on_notification(
        self, method: str, handler: NotificationHandler
    ) -> Callable[[], None]:
        self._notification_handlers[method].append(handler)

        def unregister() -> None:
            handlers = self._notification_handlers.get(method, [])
            if handler in handlers:
                handlers.remove(handler)

        return unregister

    def on_request(self, method: str, handler: RequestHandler) -> None:
        self._request_handlers[method] = handler

    def on_close(self, callback: CloseCallback) -> Callable[[], None]:
        if self._closed_error is not None:
            callback(self._closed_error)
            return lambda: None

        self._close_callbacks.append(callback)

        def unregister() -> None:
            if callback in self._close_callbacks:
                self._close_callbacks.remove(callback)

        return unregister

    def abort(self, error: TransportError) -> None:
        """Fail everything in flight with `error` without waiting for the pump."""
        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()
        self._shutdown(error)
        self.framer.close()

    async def close(self) -> None:
        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
        self._shutdown(TransportError("LSP endpoint closed"))
        self.framer.close()

    async def _pump(self) -> None:
        logger.debug("LSP endpoint: starting message pump")
        error = TransportError("LSP server closed the connection")
        try:
            async for message in self.framer.messages():
                await self._dispatch(message)
        except TransportError as e:
            logger.debug(f"LSP endpoint: transport failed: {e}")
            error = e
        except asyncio.CancelledError:
            error = TransportError("LSP endpoint closed")
            raise
        finally:
            self._shutdown(error)

    async def _dispatch(self, message: JSONRPCMessage) -> None:
        match message:
            case SuccessResponse() | ErrorResponse():
                self._handle_response(message)
            case NotificationMessage():
                self._handle_notification(message)
            case RequestMessage():
                await self._handle_server_request(message)

    def _handle_response(self, response: SuccessResponse | ErrorResponse) -> None:
        pending = (
            self.pending_requests.pop(response.id, None)
            if response.id is not None
            else None
        )
        if pending is None:
            logger.debug(f"LSP Response for unknown request ID {response.id}")
            logger.debug(f"Raw response data: {response.to_payload()}")
            return

        if pending.future.done():
            return

        if isinstance(response, ErrorResponse):
            error = response.error
            logger.debug(
                f"LSP Request {pending.id} ({pending.method}) returned error: {error.message}"
            )
            pending.future.set_exception(
                RemoteError(error.code, error.message, error.data)
            )
        else:
            pending.future.set_result(response.result)

    def _handle_notification(self, notification: NotificationMessage) -> None:
        handlers = self._notification_handlers.get(notification.method)
        if not handlers:
            logger.debug(f"LSP Unhandled notification: {notification.method}")
            return

        for handler in list(handlers):
            try:
                handler(notification.params)
            except Exception:
                logger.exception(
                    f"LSP notification handler for {notification.method} failed"
                )

    async def _handle_server_request(self, request: RequestMessage) -> None:
        handler = self._request_handlers.get(request.method)
        if handler is None:
            logger.debug(f"LSP Unhandled server request: {request.method}")
            await self._reply_error(
                request.id,
                ErrorCodes.METHOD_NOT_FOUND,
                f"Unhandled method {request.method}",
            )
            return

        try:
            result = handler(request.params)
            if inspect.isawaitable(result):
                result = await result
        except RemoteError as e:
            await self._reply_error(request.id, e.code, e.message)
            return
        except Exception as e:
            logger.exception(f"LSP server request handler for {request.method} failed")
            await self._reply_error(request.id, ErrorCodes.INTERNAL_ERROR, str(e))
            return

        await self.framer.send(
            SuccessResponse(id=request.id, result=result).to_payload()
        )

    async def _reply_error(self, request_id: RequestId, code: int, message: str) -> None:
        response = ErrorResponse(
            id=request_id, error=ResponseError(code=code, message=message)
        )
        await self.framer.send(response.to_payload())

    def _shutdown(self, error: TransportError) -> None:
        if self._closed_error is not None:
            return
        self._closed_error = error

        pending = list(self.pending_requests.values())
        self.pending_requests.clear()
        for request in pending:
            if not request.future.done():
                failure = TransportError(
                    f"Connection lost while waiting for '{request.method}': {error}"
                )
                failure.__cause__ = error
                request.future.set_exception(failure)

        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback(error)
            except Exception:
                logger.exception("LSP endpoint close callback failed")
