import threading

import pytest

from conftest import LoopbackPipe, NotifyingLoopbackPipe, fast_transport

from fogmap.core.errors import (
    ExchangeBusyError,
    ExchangeCancelledError,
    ExchangeTimeoutError,
    TransportError,
)
from fogmap.domain.models import DiscoveredDevice, TransferState
from fogmap.geometry import merge
from fogmap.transport.exchange import ExchangeClient, scan_for_devices
from fogmap.transport.responder import ExchangeResponder


def _no_sleep(_seconds):
    return None


def _seed(store, base_lat, n):
    for i in range(n):
        store.add_visited_location(base_lat + i * 0.002, -122.4194)


def _client(pipe, store, **updates):
    return ExchangeClient(pipe, store, fast_transport(**updates), sleep=_no_sleep)


def test_exchange_over_polling_pipe_swaps_histories(store, peer_store):
    _seed(store, 37.70, 5)
    _seed(peer_store, 40.70, 12)
    responder = ExchangeResponder(peer_store, fast_transport(), sleep=_no_sleep)
    pipe = LoopbackPipe(responder)

    seen = []
    result = _client(pipe, store).exchange("peer-1", on_progress=seen.append)

    assert (result.sent, result.received) == (5, 12)
    assert responder.last_import_count == 5
    assert merge.area(store.get_shared_geometry()) == pytest.approx(
        merge.area(peer_store.get_revealed_geometry()), rel=1e-9
    )
    assert merge.area(peer_store.get_shared_geometry()) == pytest.approx(
        merge.area(store.get_revealed_geometry()), rel=1e-9
    )
    assert pipe.disconnects == 1
    assert seen[0].state is TransferState.CONNECTING
    assert seen[-1].state is TransferState.COMPLETED
    fractions = [p.fraction for p in seen]
    assert fractions == sorted(fractions)


def test_exchange_over_notifying_pipe_uses_push(store, peer_store):
    _seed(store, 37.70, 3)
    _seed(peer_store, 40.70, 4)
    responder = ExchangeResponder(peer_store, fast_transport(), sleep=_no_sleep)
    pipe = NotifyingLoopbackPipe(responder)

    client = _client(pipe, store, poll_interval_seconds=0.01, max_poll_attempts=100)
    result = client.exchange("peer-1")

    assert (result.sent, result.received) == (3, 4)
    assert pipe.disconnects == 1


def test_repeat_exchange_imports_nothing_new(store, peer_store):
    _seed(store, 37.70, 2)
    _seed(peer_store, 40.70, 2)
    responder = ExchangeResponder(peer_store, fast_transport(), sleep=_no_sleep)
    client = _client(LoopbackPipe(responder), store)

    assert client.exchange("peer-1").received == 2
    assert client.exchange("peer-1").received == 0
    assert responder.last_import_count == 0


def test_small_mtu_keeps_every_frame_within_link_limit(store, peer_store):
    _seed(store, 37.70, 6)
    responder = ExchangeResponder(peer_store, fast_transport(), sleep=_no_sleep)
    pipe = LoopbackPipe(responder, mtu=40)

    _client(pipe, store).exchange("peer-1")

    data_channel = fast_transport().data_channel_uuid
    data_frames = [d for ch, d in pipe.writes if ch == data_channel]
    assert len(data_frames) > 10
    assert all(len(d) <= 40 - 3 for d in data_frames)
    assert responder.last_import_count == 6


def test_peer_without_data_yields_zero_received(store):
    _seed(store, 37.70, 1)
    pipe = LoopbackPipe(None)

    result = _client(pipe, store).exchange("peer-1")
    assert (result.sent, result.received) == (1, 0)
    assert pipe.disconnects == 1


class _StallingPipe(LoopbackPipe):
    """Announces three chunks, delivers one, never sends END."""

    def read(self, handle, channel_id):
        settings = fast_transport()
        if channel_id == settings.control_channel_uuid:
            return b"START:3"
        return b"CHUNK:0:{"


def test_partial_receive_times_out_and_disconnects(store):
    pipe = _StallingPipe(None)
    client = _client(pipe, store)

    with pytest.raises(ExchangeTimeoutError):
        client.exchange("peer-1")
    assert pipe.disconnects == 1
    assert client.progress.state is TransferState.ERROR
    assert not client.in_flight


def test_connect_timeout_maps_to_exchange_timeout(store):
    pipe = LoopbackPipe(None)
    pipe.connect_error = TimeoutError("no answer")

    with pytest.raises(ExchangeTimeoutError):
        _client(pipe, store).exchange("peer-1")
    assert pipe.disconnects == 0


def test_fatal_write_error_aborts_and_disconnects(store):
    pipe = LoopbackPipe(None)

    def fail(_channel, _data):
        raise TransportError("link lost")

    pipe.on_write = fail
    client = _client(pipe, store)
    with pytest.raises(TransportError):
        client.exchange("peer-1")
    assert pipe.disconnects == 1
    assert client.progress.error_message == "link lost"


def test_retryable_write_error_is_retried(store, peer_store):
    _seed(store, 37.70, 1)
    responder = ExchangeResponder(peer_store, fast_transport(), sleep=_no_sleep)
    pipe = LoopbackPipe(responder)
    failures = [TransportError("busy", retryable=True)]

    def flaky(_channel, _data):
        if failures:
            raise failures.pop()

    pipe.on_write = flaky
    assert _client(pipe, store).exchange("peer-1").sent == 1
    assert responder.last_import_count == 1


def test_cancel_stops_exchange_and_disconnects(store):
    _seed(store, 37.70, 3)
    pipe = LoopbackPipe(None, mtu=40)
    client = _client(pipe, store)
    pipe.on_write = lambda _channel, _data: client.cancel()

    with pytest.raises(ExchangeCancelledError):
        client.exchange("peer-1")
    assert pipe.disconnects == 1


def test_second_exchange_while_running_is_rejected(store):
    pipe = LoopbackPipe(None)
    client = _client(pipe, store)
    errors = []

    def reenter(_channel, _data):
        if not errors:
            try:
                client.exchange("peer-2")
            except ExchangeBusyError as exc:
                errors.append(exc)

    pipe.on_write = reenter
    client.exchange("peer-1")
    assert len(errors) == 1
    assert pipe.connected == ["peer-1"]


def test_scan_deduplicates_and_names_devices():
    devices = [
        DiscoveredDevice(id="a", name="Alice", signal_strength=-40),
        DiscoveredDevice(id="b", name=None, signal_strength=-70),
        DiscoveredDevice(id="a", name="Alice", signal_strength=-42),
    ]
    found = []
    result = scan_for_devices(LoopbackPipe(None, devices=devices), fast_transport(), on_found=found.append)

    assert [d.id for d in result] == ["a", "b"]
    assert result[1].name == "Fog of War User"
    assert found == result


def test_scan_stops_on_event_and_timeout():
    devices = [DiscoveredDevice(id=str(i)) for i in range(10)]
    stop = threading.Event()
    stop.set()
    assert len(scan_for_devices(LoopbackPipe(None, devices=devices), fast_transport(), stop_event=stop)) == 1

    ticks = iter([0.0, 10.0, 40.0, 40.0])
    result = scan_for_devices(
        LoopbackPipe(None, devices=devices),
        fast_transport(scan_timeout_seconds=30),
        monotonic=lambda: next(ticks),
    )
    assert len(result) == 2


def test_mtu_too_small_for_a_chunk_reports_error_and_disconnects(store):
    _seed(store, 37.70, 1)
    pipe = LoopbackPipe(None, mtu=19)
    client = _client(pipe, store)

    with pytest.raises(TransportError):
        client.exchange("peer-1")
    assert client.progress.state is TransferState.ERROR
    assert "MTU 19" in client.progress.error_message
    assert pipe.disconnects == 1
    assert pipe.writes == []
