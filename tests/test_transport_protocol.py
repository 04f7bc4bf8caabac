import random

import pytest

from fogmap.core.errors import IncompleteTransferError, TransportError
from fogmap.transport.protocol import (
    END_FRAME,
    REQUEST_FRAME,
    ChunkAssembler,
    ChunkKind,
    build_frames,
    chunk_frame,
    decode_frame,
    max_chunk_payload,
    split_payload,
    start_frame,
)

PAYLOAD = '{"version":1,"locations":[' + ",".join(
    f'{{"lat":{37 + i / 1000:.4f},"lon":-122.4194,"ts":{1700000000000 + i}}}' for i in range(40)
) + "]}"


def test_frames_encode_and_decode():
    assert start_frame(3).encode() == b"START:3"
    assert chunk_frame(2, "a:b").encode() == b"CHUNK:2:a:b"
    assert END_FRAME.encode() == b"END"
    assert decode_frame(b"REQUEST") == REQUEST_FRAME
    assert decode_frame(b"CHUNK:2:a:b") == chunk_frame(2, "a:b")
    assert decode_frame(b"") is None


@pytest.mark.parametrize("raw", [b"START:x", b"CHUNK:1", b"CHUNK:-1:x", b"HELLO", b"\xff"])
def test_decode_frame_rejects_garbage_as_retryable(raw):
    with pytest.raises(TransportError) as exc:
        decode_frame(raw)
    assert exc.value.retryable is True


def test_split_payload_respects_byte_limit_and_utf8_boundaries():
    text = "ab" + "é" * 10 + "\U0001f600" * 5 + "xyz"
    pieces = split_payload(text, 5)

    assert "".join(pieces) == text
    assert all(len(p.encode("utf-8")) <= 5 for p in pieces)
    with pytest.raises(ValueError):
        split_payload(text, 3)


def test_max_chunk_payload_shrinks_to_mtu():
    assert max_chunk_payload(180, None) == 180
    assert max_chunk_payload(180, 512) == 180
    # Default BLE MTU: 23 - 3 ATT bytes - 13 header bytes.
    assert max_chunk_payload(180, 23) == 7
    assert max_chunk_payload(180, 20) == 4


@pytest.mark.parametrize("mtu", [10, 16, 17, 19])
def test_max_chunk_payload_rejects_mtu_too_small_for_one_character(mtu):
    with pytest.raises(TransportError):
        max_chunk_payload(180, mtu)


def test_build_frames_wraps_chunks_with_start_and_end():
    frames = build_frames(PAYLOAD, 180)
    assert frames[0].kind is ChunkKind.START
    assert frames[-1].kind is ChunkKind.END
    chunks = frames[1:-1]
    assert frames[0].total_chunks == len(chunks)
    assert [c.sequence_index for c in chunks] == list(range(len(chunks)))


def test_reassembly_out_of_order_reproduces_payload():
    frames = build_frames(PAYLOAD, 50)
    chunks = frames[1:-1]
    shuffled = list(chunks)
    random.Random(7).shuffle(shuffled)

    assembler = ChunkAssembler()
    assembler.accept(frames[0])
    for frame in shuffled:
        assert assembler.accept(frame) is True
    # Duplicates are ignored.
    assert assembler.accept(shuffled[0]) is False
    assembler.accept(END_FRAME)

    assert assembler.ended
    assert assembler.assemble() == PAYLOAD


def test_reassembly_with_missing_index_fails():
    frames = build_frames(PAYLOAD, 50)
    assembler = ChunkAssembler()
    assembler.accept(frames[0])
    for frame in frames[1:-1]:
        if frame.sequence_index != 3:
            assembler.accept(frame)
    assembler.accept(END_FRAME)

    with pytest.raises(IncompleteTransferError) as exc:
        assembler.assemble()
    assert exc.value.missing == [3]
    assert exc.value.total == len(frames) - 2


def test_reassembly_missing_tail_is_detected_via_announced_total():
    frames = build_frames(PAYLOAD, 50)
    assembler = ChunkAssembler()
    for frame in frames[:-2]:
        assembler.accept(frame)
    with pytest.raises(IncompleteTransferError):
        assembler.assemble()


def test_empty_assembler_assembles_to_none():
    assert ChunkAssembler().assemble() is None
