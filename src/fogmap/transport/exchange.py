"""
Client side of a location exchange with a nearby peer.

One exchange runs: connect (asking for a large MTU) -> send our export in chunks ->
request and receive the peer's chunks -> decode + deduplicating import -> disconnect.
Disconnect runs on every exit path, including errors and cancellation.

Pacing: the sender sleeps `chunk_delay_seconds` after every chunk write so a receiver
without flow control is not overrun. It is a required part of the protocol.

Receiving prefers push notifications (`NotifyingPipe`). Without them the client falls back
to polling both channels every `poll_interval_seconds` for at most `max_poll_attempts`
rounds. A wait that ends with no chunks at all means "peer had nothing"; one that ends
with partial data raises `ExchangeTimeoutError`.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Callable

from fogmap.config.settings import TransportSettings
from fogmap.core.errors import (
    ExchangeBusyError,
    ExchangeCancelledError,
    ExchangeTimeoutError,
    FogMapError,
    TransportError,
)
from fogmap.domain.models import DiscoveredDevice, ExchangeResult, TransferProgress, TransferState
from fogmap.sharing.codec import decode_export, encode_export, export_history, import_shared
from fogmap.storage.store import GeometryStore
from fogmap.transport.pipe import BytePipe, NotifyingPipe
from fogmap.transport.protocol import (
    REQUEST_FRAME,
    ChunkAssembler,
    ChunkKind,
    TransferChunk,
    build_frames,
    decode_frame,
    max_chunk_payload,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[TransferProgress], None]


def scan_for_devices(
    pipe: BytePipe,
    settings: TransportSettings,
    *,
    on_found: Callable[[DiscoveredDevice], None] | None = None,
    stop_event: threading.Event | None = None,
    monotonic: Callable[[], float] = time.monotonic,
) -> list[DiscoveredDevice]:
    """Collect peers advertising the fog service; stops after `scan_timeout_seconds`."""
    deadline = monotonic() + float(settings.scan_timeout_seconds)
    seen: dict[str, DiscoveredDevice] = {}
    try:
        iterator = iter(pipe.scan(settings.service_uuid))
    except TransportError:
        raise
    except Exception as exc:
        raise TransportError(f"scan failed to start: {exc}") from exc

    try:
        for device in iterator:
            if device.id not in seen:
                if not device.name:
                    device = device.model_copy(update={"name": settings.default_device_name})
                seen[device.id] = device
                if on_found is not None:
                    on_found(device)
            if stop_event is not None and stop_event.is_set():
                break
            if monotonic() >= deadline:
                logger.info("Scan auto-stopped after %.0fs", settings.scan_timeout_seconds)
                break
    except TransportError:
        raise
    except Exception as exc:
        raise TransportError(f"scan failed: {exc}") from exc
    finally:
        close = getattr(iterator, "close", None)
        if close is not None:
            close()
    return list(seen.values())


class ExchangeClient:
    """Runs at most one exchange at a time against a `BytePipe`."""

    def __init__(
        self,
        pipe: BytePipe,
        store: GeometryStore,
        settings: TransportSettings,
        *,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._pipe = pipe
        self._store = store
        self._settings = settings
        self._sleep = sleep
        self._monotonic = monotonic
        self._busy = threading.Lock()
        self._cancel = threading.Event()
        self._on_progress: ProgressCallback | None = None
        self.progress = TransferProgress()

    @property
    def in_flight(self) -> bool:
        return self._busy.locked()

    def cancel(self) -> None:
        """Ask the running exchange to stop at its next step; disconnect still runs."""
        self._cancel.set()

    def _check_cancelled(self) -> None:
        if self._cancel.is_set():
            raise ExchangeCancelledError("exchange cancelled")

    def _report(
        self,
        state: TransferState,
        message: str,
        fraction: float,
        *,
        current: int = 0,
        total: int = 0,
        error: str | None = None,
    ) -> None:
        self.progress = TransferProgress(
            state=state,
            current_chunk=current,
            total_chunks=total,
            message=message,
            fraction=min(1.0, max(0.0, fraction)),
            error_message=error,
        )
        if self._on_progress is not None:
            self._on_progress(self.progress)

    def exchange(self, device_id: str, on_progress: ProgressCallback | None = None) -> ExchangeResult:
        """Swap location histories with `device_id`.

        Raises:
            ExchangeBusyError: Another exchange is running.
            ExchangeTimeoutError: Connect or receive ran out of time.
            TransportError: Fatal connect/read/write failure or incomplete transfer.
            MalformedExportDataError: The peer's payload was unusable (nothing imported).
            ExchangeCancelledError: `cancel()` was called.
        """
        if not self._busy.acquire(blocking=False):
            raise ExchangeBusyError("an exchange is already in progress")
        self._cancel.clear()
        self._on_progress = on_progress
        handle: Any = None
        try:
            self._report(TransferState.CONNECTING, "Connecting...", 0.0)
            handle = self._connect(device_id)
            self._check_cancelled()
            mtu = self._pipe.negotiated_mtu(handle)

            self._report(TransferState.TRANSFERRING, "Preparing data...", 0.2)
            ours = export_history(self._store)
            frames = build_frames(
                encode_export(ours), max_chunk_payload(self._settings.chunk_size_bytes, mtu)
            )

            self._report(TransferState.TRANSFERRING, "Sending locations...", 0.3)
            self._send(handle, frames)

            self._report(TransferState.TRANSFERRING, "Receiving locations...", 0.6)
            payload = self._receive(handle)

            self._report(TransferState.TRANSFERRING, "Importing locations...", 0.9)
            received = 0
            if payload is not None:
                theirs = decode_export(payload)
                if theirs.locations:
                    received = import_shared(self._store, theirs.locations)

            self._report(TransferState.COMPLETED, "Complete!", 1.0)
            logger.info("Exchange with %s: sent=%d received=%d", device_id, len(ours.locations), received)
            return ExchangeResult(sent=len(ours.locations), received=received)
        except FogMapError as exc:
            self._report(TransferState.ERROR, "Failed", self.progress.fraction, error=str(exc))
            raise
        finally:
            if handle is not None:
                self._disconnect(handle)
            self._on_progress = None
            self._busy.release()

    def _connect(self, device_id: str) -> Any:
        try:
            return self._pipe.connect(
                device_id,
                mtu_hint=self._settings.requested_mtu,
                timeout=self._settings.connect_timeout_seconds,
            )
        except TimeoutError as exc:
            raise ExchangeTimeoutError(
                f"connect to {device_id} timed out after {self._settings.connect_timeout_seconds:.0f}s"
            ) from exc
        except TransportError:
            raise
        except Exception as exc:
            raise TransportError(f"connect to {device_id} failed: {exc}") from exc

    def _disconnect(self, handle: Any) -> None:
        try:
            self._pipe.disconnect(handle)
        except Exception:
            logger.warning("Disconnect failed", exc_info=True)

    # Sending

    def _write(self, handle: Any, channel_id: str, frame: TransferChunk) -> None:
        data = frame.encode()
        retries = int(self._settings.write_retries)
        for attempt in range(retries + 1):
            try:
                self._pipe.write(handle, channel_id, data)
                return
            except TransportError as exc:
                if not exc.retryable or attempt >= retries:
                    raise
                logger.debug("Retrying %s write (attempt %d): %s", frame.kind.value, attempt + 1, exc)
                self._sleep(self._settings.chunk_delay_seconds)
            except Exception as exc:
                raise TransportError(f"write failed: {exc}") from exc

    def _send(self, handle: Any, frames: list[TransferChunk]) -> None:
        control = self._settings.control_channel_uuid
        data = self._settings.data_channel_uuid
        chunks = [f for f in frames if f.kind is ChunkKind.CHUNK]
        total = len(chunks)

        self._write(handle, control, frames[0])
        for i, frame in enumerate(chunks):
            self._check_cancelled()
            self._write(handle, data, frame)
            self._report(
                TransferState.TRANSFERRING,
                f"Sending chunk {i + 1}/{total}",
                0.3 + 0.3 * (i + 1) / total,
                current=i + 1,
                total=total,
            )
            self._sleep(self._settings.chunk_delay_seconds)
        self._write(handle, control, frames[-1])

    # Receiving

    def _read_frame(self, handle: Any, channel_id: str) -> TransferChunk | None:
        try:
            raw = self._pipe.read(handle, channel_id)
        except TransportError as exc:
            if not exc.retryable:
                raise
            logger.debug("Transient read error: %s", exc)
            return None
        except Exception as exc:
            raise TransportError(f"read failed: {exc}") from exc
        return self._decode(raw)

    def _decode(self, raw: bytes) -> TransferChunk | None:
        try:
            return decode_frame(raw)
        except TransportError as exc:
            logger.debug("Ignoring unreadable frame: %s", exc)
            return None

    def _report_received(self, assembler: ChunkAssembler) -> None:
        total = assembler.total or assembler.received
        self._report(
            TransferState.TRANSFERRING,
            f"Receiving chunk {assembler.received}/{total}",
            0.6 + 0.3 * (assembler.received / total if total else 0.0),
            current=assembler.received,
            total=total,
        )

    def _receive(self, handle: Any) -> str | None:
        assembler = ChunkAssembler()
        if isinstance(self._pipe, NotifyingPipe):
            self._receive_push(handle, assembler)
        else:
            self._write(handle, self._settings.control_channel_uuid, REQUEST_FRAME)
            self._receive_poll(handle, assembler)

        if not assembler.ended:
            if assembler.received == 0:
                logger.info("Peer sent no data before timeout")
                return None
            raise ExchangeTimeoutError(
                f"timed out waiting for END ({assembler.received}/{assembler.total or '?'} chunks)"
            )
        return assembler.assemble()

    def _receive_push(self, handle: Any, assembler: ChunkAssembler) -> None:
        control = self._settings.control_channel_uuid
        data = self._settings.data_channel_uuid
        inbox: queue.Queue[bytes] = queue.Queue()
        unsubscribe = [
            self._pipe.subscribe(handle, control, inbox.put),
            self._pipe.subscribe(handle, data, inbox.put),
        ]
        try:
            self._write(handle, control, REQUEST_FRAME)
            budget = self._settings.poll_interval_seconds * self._settings.max_poll_attempts
            deadline = self._monotonic() + budget
            while not assembler.ended:
                self._check_cancelled()
                remaining = deadline - self._monotonic()
                if remaining <= 0:
                    break
                try:
                    raw = inbox.get(timeout=min(remaining, max(self._settings.poll_interval_seconds, 0.01)))
                except queue.Empty:
                    continue
                frame = self._decode(raw)
                if frame is not None and assembler.accept(frame):
                    self._report_received(assembler)
        finally:
            for stop in unsubscribe:
                stop()

    def _receive_poll(self, handle: Any, assembler: ChunkAssembler) -> None:
        control = self._settings.control_channel_uuid
        data = self._settings.data_channel_uuid
        for _ in range(int(self._settings.max_poll_attempts)):
            self._check_cancelled()
            self._sleep(self._settings.poll_interval_seconds)

            status = self._read_frame(handle, control)
            if status is not None and status.kind in (ChunkKind.START, ChunkKind.END):
                assembler.accept(status)

            for _ in range(int(self._settings.max_reads_per_poll)):
                frame = self._read_frame(handle, data)
                if frame is None or frame.kind is not ChunkKind.CHUNK:
                    break
                # Re-reading the same chunk means nothing new has been written yet.
                if not assembler.accept(frame):
                    break
                self._report_received(assembler)

            if assembler.ended:
                return
