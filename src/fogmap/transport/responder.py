"""
Peer (server) side of the chunked exchange.

The responder sits behind the two channels a remote client talks to:

- inbound: the client writes `START:<n>` (control), `CHUNK:<i>:<data>` (data) and `END`
  (control); on `END` the assembled payload is decoded and imported as shared data.
- outbound: the client writes `REQUEST` (control). The responder stages its own export.
  With notification subscribers on both channels the frames are pushed, paced like a
  sender. Otherwise they are served on reads: control reads return `START:<n>` until
  every chunk was read from the data channel, then `END`; each data read returns the next
  `CHUNK` frame.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable

from fogmap.config.settings import TransportSettings
from fogmap.core.errors import IncompleteTransferError, MalformedExportDataError
from fogmap.sharing.codec import decode_export, encode_export, export_history, import_shared
from fogmap.storage.store import GeometryStore
from fogmap.transport.protocol import (
    ChunkAssembler,
    ChunkKind,
    TransferChunk,
    build_frames,
    decode_frame,
    max_chunk_payload,
)

logger = logging.getLogger(__name__)


class ExchangeResponder:
    def __init__(
        self,
        store: GeometryStore,
        settings: TransportSettings,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._store = store
        self._settings = settings
        self._sleep = sleep
        self._lock = threading.Lock()
        self._inbound = ChunkAssembler()
        self._outbound: deque[TransferChunk] = deque()
        self._staged_total: int | None = None
        self._subscribers: dict[str, list[Callable[[bytes], None]]] = {}
        self.last_import_count: int | None = None
        self.last_import_error: str | None = None

    @property
    def control_channel(self) -> str:
        return self._settings.control_channel_uuid

    @property
    def data_channel(self) -> str:
        return self._settings.data_channel_uuid

    def subscribe(self, channel_id: str, callback: Callable[[bytes], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.setdefault(channel_id, []).append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(channel_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return _unsubscribe

    def _has_push_subscribers(self) -> bool:
        return bool(self._subscribers.get(self.control_channel)) and bool(
            self._subscribers.get(self.data_channel)
        )

    def _notify(self, channel_id: str, frame: TransferChunk) -> None:
        data = frame.encode()
        for callback in list(self._subscribers.get(channel_id, [])):
            callback(data)

    # Writes from the remote client

    def handle_write(self, channel_id: str, data: bytes) -> None:
        frame = decode_frame(data)
        if frame is None:
            return
        if frame.kind is ChunkKind.REQUEST:
            self._serve_request()
            return
        with self._lock:
            if frame.kind is ChunkKind.START:
                self._inbound.reset()
            self._inbound.accept(frame)
            finished = frame.kind is ChunkKind.END
        if finished:
            self._import_inbound()

    def _import_inbound(self) -> None:
        with self._lock:
            assembler = self._inbound
            self._inbound = ChunkAssembler()
        try:
            text = assembler.assemble()
            if text is None:
                self.last_import_count = 0
                return
            data = decode_export(text)
        except (IncompleteTransferError, MalformedExportDataError) as exc:
            logger.warning("Rejected inbound share: %s", exc)
            self.last_import_count = None
            self.last_import_error = str(exc)
            return
        self.last_import_error = None
        self.last_import_count = import_shared(self._store, data.locations)

    def _serve_request(self) -> None:
        text = encode_export(export_history(self._store))
        frames = build_frames(text, max_chunk_payload(self._settings.chunk_size_bytes, None))
        if self._has_push_subscribers():
            logger.debug("Pushing %d frames to subscriber", len(frames))
            for frame in frames:
                channel = self.data_channel if frame.kind is ChunkKind.CHUNK else self.control_channel
                self._notify(channel, frame)
                if frame.kind is ChunkKind.CHUNK:
                    self._sleep(self._settings.chunk_delay_seconds)
            return
        with self._lock:
            chunks = [f for f in frames if f.kind is ChunkKind.CHUNK]
            self._outbound = deque(chunks)
            self._staged_total = len(chunks)

    # Reads from the remote client

    def handle_read(self, channel_id: str) -> bytes:
        with self._lock:
            if channel_id == self.control_channel:
                if self._staged_total is None:
                    return b""
                if self._outbound:
                    return TransferChunk(kind=ChunkKind.START, total_chunks=self._staged_total).encode()
                return TransferChunk(kind=ChunkKind.END).encode()
            if channel_id == self.data_channel:
                if not self._outbound:
                    return b""
                return self._outbound.popleft().encode()
        return b""
