from __future__ import annotations

from typing import Any, Callable, Iterator

import pytest

from fogmap.config.settings import TransportSettings, get_settings
from fogmap.domain.models import DiscoveredDevice
from fogmap.storage.store import GeometryStore
from fogmap.transport.responder import ExchangeResponder


class FakeClock:
    """Deterministic epoch-ms clock: each call advances by `step`."""

    def __init__(self, start: int = 1_700_000_000_000, step: int = 1000):
        self.now = start
        self.step = step

    def __call__(self) -> int:
        value = self.now
        self.now += self.step
        return value


def fast_transport(**updates: Any) -> TransportSettings:
    """Transport settings with every delay zeroed (tests must not sleep)."""
    base = {
        "chunk_delay_seconds": 0.0,
        "poll_interval_seconds": 0.0,
        "max_poll_attempts": 20,
    }
    base.update(updates)
    return get_settings().transport.model_copy(update=base)


class LoopbackPipe:
    """In-memory BytePipe wired straight into a peer's ExchangeResponder."""

    def __init__(
        self,
        responder: ExchangeResponder | None,
        *,
        mtu: int | None = 185,
        devices: list[DiscoveredDevice] | None = None,
    ):
        self.responder = responder
        self.mtu = mtu
        self.devices = devices or []
        self.connected: list[str] = []
        self.disconnects = 0
        self.writes: list[tuple[str, bytes]] = []
        self.connect_error: BaseException | None = None
        self.on_write: Callable[[str, bytes], None] | None = None

    def scan(self, service_filter: str) -> Iterator[DiscoveredDevice]:
        yield from self.devices

    def connect(self, device_id: str, *, mtu_hint: int, timeout: float) -> Any:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected.append(device_id)
        return device_id

    def negotiated_mtu(self, handle: Any) -> int | None:
        return self.mtu

    def write(self, handle: Any, channel_id: str, data: bytes) -> None:
        self.writes.append((channel_id, data))
        if self.on_write is not None:
            self.on_write(channel_id, data)
        if self.responder is not None:
            self.responder.handle_write(channel_id, data)

    def read(self, handle: Any, channel_id: str) -> bytes:
        if self.responder is None:
            return b""
        return self.responder.handle_read(channel_id)

    def disconnect(self, handle: Any) -> None:
        self.disconnects += 1


class NotifyingLoopbackPipe(LoopbackPipe):
    """Loopback pipe that also supports push notifications."""

    def subscribe(self, handle: Any, channel_id: str, callback: Callable[[bytes], None]) -> Callable[[], None]:
        assert self.responder is not None
        return self.responder.subscribe(channel_id, callback)


def make_store(path, clock: Callable[[], int] | None = None) -> GeometryStore:
    store = GeometryStore(path, clock=clock or FakeClock())
    store.initialize()
    return store


@pytest.fixture
def store(tmp_path) -> Iterator[GeometryStore]:
    s = make_store(tmp_path / "fog.db")
    yield s
    s.close()


@pytest.fixture
def peer_store(tmp_path) -> Iterator[GeometryStore]:
    s = make_store(tmp_path / "peer.db", FakeClock(start=1_600_000_000_000))
    yield s
    s.close()
