"""
Byte-pipe interface to the platform wireless transport.

The platform layer (a BLE stack, a socket, an in-memory test double) implements
`BytePipe`. Implementations raise `TransportError` with `retryable` set for transient
read/write failures and `TimeoutError` when `connect` exceeds its timeout; anything else
is treated as fatal by the exchange.

Pipes that can push channel updates also implement `NotifyingPipe.subscribe`; the
exchange prefers it and falls back to polling `read` otherwise.
"""

from __future__ import annotations

from typing import Any, Callable, Iterator, Protocol, runtime_checkable

from fogmap.domain.models import DiscoveredDevice


class BytePipe(Protocol):
    def scan(self, service_filter: str) -> Iterator[DiscoveredDevice]: ...

    def connect(self, device_id: str, *, mtu_hint: int, timeout: float) -> Any: ...

    def negotiated_mtu(self, handle: Any) -> int | None: ...

    def write(self, handle: Any, channel_id: str, data: bytes) -> None: ...

    def read(self, handle: Any, channel_id: str) -> bytes: ...

    def disconnect(self, handle: Any) -> None: ...


@runtime_checkable
class NotifyingPipe(Protocol):
    def subscribe(
        self, handle: Any, channel_id: str, callback: Callable[[bytes], None]
    ) -> Callable[[], None]: ...
