"""
Decoder for the container engine's multiplexed exec stream.

Without a TTY, the engine interleaves stdout and stderr on one connection
using frames of the form::

    byte 0      stream type (1 = stdout, 2 = stderr)
    bytes 1-3   zero
    bytes 4-7   payload length, big-endian uint32
    bytes 8..   payload

Chunks arriving from the socket may split a frame anywhere, including
inside the header, so the decoder buffers until a full frame is present.
"""

from __future__ import annotations

import struct
from typing import Iterable, Tuple

from fetchbox.exceptions import DemuxError

HEADER_SIZE = 8
STDOUT = 1
STDERR = 2

_HEADER = struct.Struct(">BxxxL")


class OutputDemultiplexer:
    """Incremental frame decoder. Feed chunks, then call ``close()``."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._stdout = bytearray()
        self._stderr = bytearray()
        self._closed = False

    def feed(self, chunk: bytes) -> None:
        """Consume one chunk of raw stream bytes."""
        if self._closed:
            raise DemuxError("Demultiplexer already closed")
        if not chunk:
            return
        self._buffer.extend(chunk)
        self._drain()

    def _drain(self) -> None:
        buf = self._buffer
        offset = 0
        while len(buf) - offset >= HEADER_SIZE:
            stream_type, size = _HEADER.unpack_from(buf, offset)
            end = offset + HEADER_SIZE + size
            if end > len(buf):
                break
            payload = buf[offset + HEADER_SIZE:end]
            if stream_type == STDOUT:
                self._stdout.extend(payload)
            elif stream_type == STDERR:
                self._stderr.extend(payload)
            # stdin echoes and unknown stream types are dropped
            offset = end
        if offset:
            del buf[:offset]

    @property
    def pending(self) -> int:
        """Bytes buffered that do not yet form a complete frame."""
        return len(self._buffer)

    def close(self) -> Tuple[bytes, bytes]:
        """
        Finish decoding.

        Returns:
            ``(stdout, stderr)`` as raw bytes.

        Raises:
            DemuxError: If the stream ended in the middle of a frame.
        """
        self._closed = True
        if self._buffer:
            raise DemuxError(
                "Output stream ended inside a frame",
                details={"pending_bytes": len(self._buffer)},
            )
        return bytes(self._stdout), bytes(self._stderr)


def demultiplex(chunks: Iterable[bytes]) -> Tuple[bytes, bytes]:
    """Decode a complete sequence of chunks in one call."""
    demux = OutputDemultiplexer()
    for chunk in chunks:
        demux.feed(chunk)
    return demux.close()


def encode_frame(stream_type: int, payload: bytes) -> bytes:
    """Build one frame. Used by fake drivers and tests."""
    return _HEADER.pack(stream_type, len(payload)) + payload
