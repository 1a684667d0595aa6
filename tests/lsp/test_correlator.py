from __future__ import annotations

import asyncio

import pytest

from lsplint.core.lsp.correlator import DiagnosticsCorrelator
from lsplint.core.lsp.errors import DiagnosticsTimeout, DuplicateWaiter, TransportError
from lsplint.core.lsp.types import DiagnosticSeverity
from tests.stubs.memory_streams import diagnostic

A = "file:///workspace/a.json"
B = "file:///workspace/b.json"


def publish_params(uri: str, diagnostics: list[dict]) -> dict:
    return {"uri": uri, "diagnostics": diagnostics}


@pytest.mark.asyncio
async def test_diagnostics_resolve_the_waiter_for_their_uri() -> None:
    correlator = DiagnosticsCorrelator()
    future = correlator.await_diagnostics(A, timeout=1)

    correlator.handle_publish(
        publish_params(A, [diagnostic("Expected comma", 0, 10, 11, severity=2)])
    )

    [result] = await future
    assert result.message == "Expected comma"
    assert result.severity == 2
    assert result.level is DiagnosticSeverity.WARNING
    assert (result.range.start.line, result.range.start.character) == (0, 10)
    assert (result.range.end.line, result.range.end.character) == (0, 11)
    assert correlator.pending == []


@pytest.mark.asyncio
async def test_notifications_in_reverse_order_reach_the_right_waiters() -> None:
    correlator = DiagnosticsCorrelator()
    future_a = correlator.await_diagnostics(A, timeout=1)
    future_b = correlator.await_diagnostics(B, timeout=1)

    correlator.handle_publish(publish_params(B, [diagnostic("from b", 1, 0, 1)]))
    correlator.handle_publish(publish_params(A, []))

    assert await future_a == []
    assert [d.message for d in await future_b] == ["from b"]


@pytest.mark.asyncio
async def test_empty_diagnostics_list_resolves_with_no_issues() -> None:
    correlator = DiagnosticsCorrelator()
    future = correlator.await_diagnostics(A, timeout=1)

    correlator.handle_publish({"uri": A})

    assert await future == []


@pytest.mark.asyncio
async def test_second_waiter_for_same_uri_is_rejected() -> None:
    correlator = DiagnosticsCorrelator()
    first = correlator.await_diagnostics(A, timeout=1)

    with pytest.raises(DuplicateWaiter):
        correlator.await_diagnostics(A, timeout=1)

    correlator.handle_publish(publish_params(A, []))
    assert await first == []

    # Once resolved, the uri may be awaited again.
    again = correlator.await_diagnostics(A, timeout=1)
    correlator.abandon(A)
    assert again.cancelled()


@pytest.mark.asyncio
async def test_timeout_removes_waiter_and_drops_late_notification() -> None:
    correlator = DiagnosticsCorrelator()
    future = correlator.await_diagnostics(A, timeout=0.05)

    with pytest.raises(DiagnosticsTimeout) as exc_info:
        await future

    assert exc_info.value.uri == A
    assert correlator.pending == []

    correlator.handle_publish(publish_params(A, [diagnostic("late", 0, 0, 1)]))
    assert correlator.pending == []


@pytest.mark.asyncio
async def test_notifications_for_untracked_uris_are_dropped() -> None:
    correlator = DiagnosticsCorrelator()
    future = correlator.await_diagnostics(A, timeout=1)

    correlator.handle_publish(publish_params(B, [diagnostic("other", 0, 0, 1)]))
    correlator.handle_publish(None)
    correlator.handle_publish({"diagnostics": []})

    assert not future.done()
    assert correlator.pending == [A]
    correlator.abandon(A)


@pytest.mark.asyncio
async def test_unknown_severity_still_resolves_the_waiter() -> None:
    correlator = DiagnosticsCorrelator()
    future = correlator.await_diagnostics(A, timeout=0.3)

    correlator.handle_publish(
        publish_params(A, [diagnostic("Trailing comma", 1, 4, 5, severity=0)])
    )

    [result] = await future
    assert result.message == "Trailing comma"
    assert result.severity == 0
    assert result.level is None
    assert correlator.pending == []


@pytest.mark.asyncio
async def test_malformed_entry_is_kept_without_dropping_the_others() -> None:
    correlator = DiagnosticsCorrelator()
    future = correlator.await_diagnostics(A, timeout=1)

    correlator.handle_publish(
        publish_params(
            A, [{"message": "no range"}, diagnostic("Expected comma", 2, 6, 7), 42]
        )
    )

    broken, valid, unknown = await future
    assert broken.message == "no range"
    assert (broken.range.start.line, broken.range.start.character) == (0, 0)
    assert valid.message == "Expected comma"
    assert (valid.range.start.line, valid.range.start.character) == (2, 6)
    assert "42" in unknown.message
    assert correlator.pending == []


@pytest.mark.asyncio
async def test_abandon_cancels_and_unregisters() -> None:
    correlator = DiagnosticsCorrelator()
    future = correlator.await_diagnostics(A, timeout=1)

    correlator.abandon(A)
    correlator.abandon(A)

    assert future.cancelled()
    assert correlator.pending == []


@pytest.mark.asyncio
async def test_cancelling_the_future_unregisters_the_waiter() -> None:
    correlator = DiagnosticsCorrelator()
    future = correlator.await_diagnostics(A, timeout=1)

    future.cancel()
    await asyncio.sleep(0)

    assert correlator.pending == []


@pytest.mark.asyncio
async def test_fail_all_fails_every_waiter_with_transport_error() -> None:
    correlator = DiagnosticsCorrelator()
    futures = [correlator.await_diagnostics(uri, timeout=1) for uri in (A, B)]
    cause = TransportError("LSP server closed the connection")

    correlator.fail_all(cause)

    for future in futures:
        with pytest.raises(TransportError) as exc_info:
            await future
        assert exc_info.value.__cause__ is cause
    assert correlator.pending == []
