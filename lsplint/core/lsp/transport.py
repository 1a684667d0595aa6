from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
import json
from typing import Any, Protocol

from lsplint.core.logger import logger
from lsplint.core.lsp.errors import TransportError
from lsplint.core.lsp.types import InvalidMessageError, JSONRPCMessage, parse_message

CONTENT_LENGTH = "content-length"
HEADER_ENCODING = "ascii"


class ByteSink(Protocol):
    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...

    def close(self) -> None: ...

    def is_closing(self) -> bool: ...


def encode_message(message: Any) -> bytes:
    body = json.dumps(message, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )
    header = f"Content-Length: {len(body)}\r\n\r\n".encode(HEADER_ENCODING)
    return header + body


def parse_headers(lines: list[bytes]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for raw_line in lines:
        try:
            line = raw_line.decode(HEADER_ENCODING)
        except UnicodeDecodeError as e:
            raise TransportError(f"Non-ASCII LSP header: {raw_line!r}") from e
        name, sep, value = line.partition(":")
        if not sep or not name.strip():
            raise TransportError(f"Malformed LSP header: {line!r}")
        headers[name.strip().lower()] = value.strip()
    return headers


def get_content_length(headers: dict[str, str]) -> int:
    if CONTENT_LENGTH not in headers:
        raise TransportError("LSP frame is missing the Content-Length header")
    value = headers[CONTENT_LENGTH]
    if not value.isdigit():
        raise TransportError(f"Invalid Content-Length: {value!r}")
    return int(value)


class TransportFramer:
    """LSP `Content-Length` framing over a pair of byte streams.

    The framer knows nothing about ids or methods: `receive` yields decoded
    JSON values and `messages` validates them into JSON-RPC message variants.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: ByteSink) -> None:
        self.reader = reader
        self.writer = writer

    async def send(self, message: Any) -> None:
        if self.writer.is_closing():
            raise TransportError("Cannot send on a closed LSP transport")

        frame = encode_message(message)
        try:
            self.writer.write(frame)
            await self.writer.drain()
        except (ConnectionError, RuntimeError) as e:
            raise TransportError(f"Failed to write LSP frame: {e}") from e

    async def receive(self) -> AsyncIterator[Any]:
        while True:
            frame = await self._read_frame()
            if frame is None:
                logger.debug("LSP transport: end of stream")
                return
            try:
                yield json.loads(frame.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise TransportError(f"LSP frame body is not valid JSON: {e}") from e

    async def messages(self) -> AsyncIterator[JSONRPCMessage]:
        async for value in self.receive():
            try:
                yield parse_message(value)
            except InvalidMessageError as e:
                logger.debug(f"LSP transport: discarding invalid message: {e}")

    def close(self) -> None:
        if not self.writer.is_closing():
            self.writer.close()

    async def _read_frame(self) -> bytes | None:
        header_lines: list[bytes] = []
        while True:
            try:
                line = await self.reader.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                if not e.partial and not header_lines:
                    return None
                raise TransportError("LSP stream closed in the middle of a header") from e
            except asyncio.LimitOverrunError as e:
                raise TransportError("LSP header line is too long") from e

            line = line.rstrip(b"\r\n")
            if not line:
                if header_lines:
                    break
                # Tolerate stray blank lines between frames
                continue
            header_lines.append(line)

        content_length = get_content_length(parse_headers(header_lines))
        try:
            return await self.reader.readexactly(content_length)
        except asyncio.IncompleteReadError as e:
            raise TransportError(
                f"LSP stream closed after {len(e.partial)} of {content_length} body bytes"
            ) from e
