from __future__ import annotations

import asyncio

import pytest

from lsplint.core.lsp.errors import TransportError
from lsplint.core.lsp.transport import TransportFramer, encode_message
from lsplint.core.lsp.types import (
    ErrorResponse,
    NotificationMessage,
    RequestMessage,
    SuccessResponse,
)
from tests.stubs.memory_streams import MemoryWriter, decode_frames


def make_framer() -> tuple[TransportFramer, asyncio.StreamReader, MemoryWriter]:
    reader = asyncio.StreamReader()
    writer = MemoryWriter()
    return TransportFramer(reader, writer), reader, writer


async def collect(framer: TransportFramer) -> list[object]:
    return [value async for value in framer.receive()]


def test_encode_message_counts_utf8_bytes() -> None:
    frame = encode_message({"text": "é"})

    header, body = frame.split(b"\r\n\r\n", 1)
    assert header == f"Content-Length: {len(body)}".encode()
    assert len(body) == len('{"text":"é"}'.encode())
    assert body.decode("utf-8") == '{"text":"é"}'


@pytest.mark.asyncio
async def test_send_writes_one_frame_per_message() -> None:
    framer, _, writer = make_framer()

    await framer.send({"jsonrpc": "2.0", "method": "initialized", "params": {}})
    await framer.send({"jsonrpc": "2.0", "id": 1, "method": "shutdown"})

    assert decode_frames(bytes(writer.buffer)) == [
        {"jsonrpc": "2.0", "method": "initialized", "params": {}},
        {"jsonrpc": "2.0", "id": 1, "method": "shutdown"},
    ]


@pytest.mark.asyncio
async def test_send_on_closed_writer_raises_transport_error() -> None:
    framer, _, _ = make_framer()
    framer.close()

    with pytest.raises(TransportError):
        await framer.send({"jsonrpc": "2.0", "method": "exit"})


@pytest.mark.asyncio
async def test_receive_decodes_frames_split_across_chunks() -> None:
    framer, reader, _ = make_framer()
    data = encode_message({"id": 1, "result": None}) + encode_message([1, 2])

    reader.feed_data(data[:7])
    reader.feed_data(data[7:30])
    reader.feed_data(data[30:])
    reader.feed_eof()

    assert await collect(framer) == [{"id": 1, "result": None}, [1, 2]]


@pytest.mark.asyncio
async def test_receive_accepts_extra_headers_in_any_case() -> None:
    framer, reader, _ = make_framer()
    body = b'{"method":"exit"}'
    reader.feed_data(
        b"content-type: application/vscode-jsonrpc; charset=utf-8\r\n"
        + f"CONTENT-LENGTH: {len(body)}\r\n\r\n".encode()
        + body
    )
    reader.feed_eof()

    assert await collect(framer) == [{"method": "exit"}]


@pytest.mark.asyncio
async def test_receive_ends_cleanly_at_frame_boundary() -> None:
    framer, reader, _ = make_framer()
    reader.feed_eof()

    assert await collect(framer) == []


@pytest.mark.asyncio
async def test_receive_waits_for_complete_frame() -> None:
    framer, reader, _ = make_framer()
    frame = encode_message({"method": "exit"})
    iterator = framer.receive()

    reader.feed_data(frame[:-3])
    pending = asyncio.ensure_future(iterator.__anext__())
    await asyncio.sleep(0.01)
    assert not pending.done()

    reader.feed_data(frame[-3:])
    assert await pending == {"method": "exit"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "data",
    [
        b"Content-Length 12\r\n\r\n",
        b"Content-Type: application/json\r\n\r\n{}",
        b"Content-Length: twelve\r\n\r\n",
        b"Content-Length: -1\r\n\r\n",
    ],
    ids=["no-colon", "missing-length", "non-numeric", "negative"],
)
async def test_receive_rejects_malformed_headers(data: bytes) -> None:
    framer, reader, _ = make_framer()
    reader.feed_data(data)
    reader.feed_eof()

    with pytest.raises(TransportError):
        await collect(framer)


@pytest.mark.asyncio
async def test_receive_fails_when_stream_ends_inside_body() -> None:
    framer, reader, _ = make_framer()
    reader.feed_data(b'Content-Length: 40\r\n\r\n{"jsonrpc":')
    reader.feed_eof()

    with pytest.raises(TransportError, match="body bytes"):
        await collect(framer)


@pytest.mark.asyncio
async def test_receive_fails_when_stream_ends_inside_header() -> None:
    framer, reader, _ = make_framer()
    reader.feed_data(b"Content-Length: 4")
    reader.feed_eof()

    with pytest.raises(TransportError):
        await collect(framer)


@pytest.mark.asyncio
async def test_receive_rejects_invalid_json_body() -> None:
    framer, reader, _ = make_framer()
    reader.feed_data(b"Content-Length: 5\r\n\r\n{oops")
    reader.feed_eof()

    with pytest.raises(TransportError, match="not valid JSON"):
        await collect(framer)


@pytest.mark.asyncio
async def test_messages_yields_tagged_variants_and_skips_invalid_shapes() -> None:
    framer, reader, _ = make_framer()
    for message in (
        {"jsonrpc": "2.0", "id": 1, "method": "workspace/configuration", "params": {}},
        {"jsonrpc": "2.0", "method": "window/logMessage", "params": {"type": 3}},
        [1, 2, 3],
        {"jsonrpc": "2.0", "id": 2, "result": {"capabilities": {}}},
        {"jsonrpc": "2.0", "id": 3, "error": {"code": -32601, "message": "nope"}},
        {"jsonrpc": "2.0"},
    ):
        reader.feed_data(encode_message(message))
    reader.feed_eof()

    messages = [message async for message in framer.messages()]

    assert [type(m) for m in messages] == [
        RequestMessage,
        NotificationMessage,
        SuccessResponse,
        ErrorResponse,
    ]
    assert isinstance(messages[3], ErrorResponse)
    assert messages[3].error.code == -32601
