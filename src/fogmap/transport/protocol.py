"""
Chunked transfer protocol over a narrow byte channel.

Frames are UTF-8 text:

- control channel: `START:<totalChunks>`, `END`, `REQUEST`
- data channel:    `CHUNK:<index>:<payload>`

A payload is split by the sender into chunks of at most `max_payload_bytes` UTF-8 bytes
(never splitting a multi-byte character). The receiver files chunks by index and only
reassembles once every index 0..total-1 is present.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from fogmap.core.errors import IncompleteTransferError, TransportError

CMD_START = "START"
CMD_CHUNK = "CHUNK"
CMD_END = "END"
CMD_REQUEST = "REQUEST"

# ATT protocol overhead subtracted from the negotiated MTU.
ATT_HEADER_BYTES = 3
# "CHUNK:" + up to six index digits + ":".
CHUNK_HEADER_RESERVE = len(CMD_CHUNK) + 1 + 6 + 1
# Widest UTF-8 character; a chunk must hold at least one.
MIN_CHUNK_PAYLOAD_BYTES = 4


class ChunkKind(str, Enum):
    START = CMD_START
    CHUNK = CMD_CHUNK
    END = CMD_END
    REQUEST = CMD_REQUEST


@dataclass(frozen=True)
class TransferChunk:
    kind: ChunkKind
    sequence_index: int | None = None
    total_chunks: int | None = None
    payload: str | None = None

    def encode(self) -> bytes:
        if self.kind is ChunkKind.START:
            return f"{CMD_START}:{int(self.total_chunks or 0)}".encode("utf-8")
        if self.kind is ChunkKind.CHUNK:
            return f"{CMD_CHUNK}:{int(self.sequence_index or 0)}:{self.payload or ''}".encode("utf-8")
        if self.kind is ChunkKind.END:
            return CMD_END.encode("utf-8")
        if self.kind is ChunkKind.REQUEST:
            return CMD_REQUEST.encode("utf-8")
        raise TypeError(f"Unsupported chunk kind: {self.kind!r}")


def start_frame(total: int) -> TransferChunk:
    return TransferChunk(kind=ChunkKind.START, total_chunks=int(total))


def chunk_frame(index: int, payload: str) -> TransferChunk:
    return TransferChunk(kind=ChunkKind.CHUNK, sequence_index=int(index), payload=payload)


END_FRAME = TransferChunk(kind=ChunkKind.END)
REQUEST_FRAME = TransferChunk(kind=ChunkKind.REQUEST)


def decode_frame(raw: bytes | str) -> TransferChunk | None:
    """Parse one frame; returns None for an empty read (nothing written yet).

    Raises:
        TransportError: (retryable) on bytes that are not a protocol frame.
    """
    try:
        text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
    except UnicodeDecodeError as exc:
        raise TransportError(f"frame is not UTF-8: {exc}", retryable=True) from exc
    if not text:
        return None

    if text == CMD_END:
        return END_FRAME
    if text == CMD_REQUEST:
        return REQUEST_FRAME
    head, sep, rest = text.partition(":")
    try:
        if head == CMD_START and sep:
            total = int(rest)
            if total < 0:
                raise ValueError("negative total")
            return start_frame(total)
        if head == CMD_CHUNK and sep:
            index_text, sep2, payload = rest.partition(":")
            index = int(index_text)
            if not sep2 or index < 0:
                raise ValueError("bad chunk header")
            return chunk_frame(index, payload)
    except ValueError as exc:
        raise TransportError(f"malformed {head} frame: {exc}", retryable=True) from exc
    raise TransportError(f"unknown frame {text[:16]!r}", retryable=True)


def max_chunk_payload(chunk_size_bytes: int, mtu: int | None) -> int:
    """Payload cap per chunk: the configured size, shrunk to fit the link MTU if needed."""
    cap = int(chunk_size_bytes)
    if mtu is not None:
        cap = min(cap, int(mtu) - ATT_HEADER_BYTES - CHUNK_HEADER_RESERVE)
    if cap < MIN_CHUNK_PAYLOAD_BYTES:
        raise TransportError(f"MTU {mtu} leaves only {max(cap, 0)} bytes per chunk")
    return cap


def split_payload(text: str, max_payload_bytes: int) -> list[str]:
    """Split `text` into pieces whose UTF-8 encoding is at most `max_payload_bytes`."""
    limit = int(max_payload_bytes)
    if limit < MIN_CHUNK_PAYLOAD_BYTES:
        raise ValueError(f"max_payload_bytes must be >= {MIN_CHUNK_PAYLOAD_BYTES}")
    chunks: list[str] = []
    current: list[str] = []
    size = 0
    for ch in text:
        width = len(ch.encode("utf-8"))
        if size + width > limit:
            chunks.append("".join(current))
            current = []
            size = 0
        current.append(ch)
        size += width
    if current:
        chunks.append("".join(current))
    return chunks


def build_frames(text: str, max_payload_bytes: int) -> list[TransferChunk]:
    """START, one CHUNK per piece, END."""
    pieces = split_payload(text, max_payload_bytes)
    frames = [start_frame(len(pieces))]
    frames.extend(chunk_frame(i, piece) for i, piece in enumerate(pieces))
    frames.append(END_FRAME)
    return frames


class ChunkAssembler:
    """Sparse, index-addressed chunk buffer for one inbound transfer."""

    def __init__(self) -> None:
        self._chunks: dict[int, str] = {}
        self._total: int | None = None
        self._ended = False

    @property
    def total(self) -> int | None:
        return self._total

    @property
    def received(self) -> int:
        return len(self._chunks)

    @property
    def ended(self) -> bool:
        return self._ended

    def reset(self) -> None:
        self._chunks.clear()
        self._total = None
        self._ended = False

    def accept(self, frame: TransferChunk) -> bool:
        """File one frame; returns True when it added a new chunk."""
        if frame.kind is ChunkKind.START:
            self._total = int(frame.total_chunks or 0)
            return False
        if frame.kind is ChunkKind.END:
            self._ended = True
            return False
        if frame.kind is ChunkKind.CHUNK:
            index = int(frame.sequence_index or 0)
            if index in self._chunks:
                return False
            self._chunks[index] = frame.payload or ""
            return True
        return False

    def missing(self) -> list[int]:
        expected = self._total
        if expected is None:
            expected = (max(self._chunks) + 1) if self._chunks else 0
        return [i for i in range(expected) if i not in self._chunks]

    def assemble(self) -> str | None:
        """Concatenate chunks in index order; None when nothing was received.

        Raises:
            IncompleteTransferError: If any index below the announced total is missing.
        """
        if not self._chunks and not self._total:
            return None
        gaps = self.missing()
        total = self._total if self._total is not None else len(self._chunks) + len(gaps)
        if gaps:
            raise IncompleteTransferError(gaps, total)
        return "".join(self._chunks[i] for i in range(total))
