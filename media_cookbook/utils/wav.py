"""
Minimal RIFF/WAVE writer for 16-bit signed little-endian PCM.

File layout (44-byte header, then interleaved samples):

    RIFF <riff_size> WAVE
    fmt  <16> <format=1> <channels> <rate> <byte_rate> <block_align> <bits=16>
    data <data_size> <samples...>

The two size fields are written as zero up front and patched on close, so
the writer can stream frames of unknown total length.
"""

import logging
import struct
from pathlib import Path

import numpy as np

from media_cookbook.errors import BadParameterError, IoError

logger = logging.getLogger(__name__)

WAV_HEADER_SIZE = 44
_BITS_PER_SAMPLE = 16


def wav_header(channels: int, sample_rate: int, data_size: int) -> bytes:
    block_align = channels * _BITS_PER_SAMPLE // 8
    byte_rate = sample_rate * block_align
    return (
        b"RIFF"
        + struct.pack("<I", 36 + data_size)
        + b"WAVE"
        + b"fmt "
        + struct.pack("<IHHIIHH", 16, 1, channels, sample_rate, byte_rate, block_align, _BITS_PER_SAMPLE)
        + b"data"
        + struct.pack("<I", data_size)
    )


class WavWriter:
    """
    Stream 16-bit PCM into a WAV file.

    Usage:
        with WavWriter(path, channels=2, sample_rate=44100) as wav:
            wav.write_samples(int16_array)  # shape (n,) or (n, channels)
    """

    def __init__(self, path: str | Path, channels: int, sample_rate: int) -> None:
        if channels < 1:
            raise BadParameterError(f"channel count must be positive, got {channels}")
        if sample_rate < 1:
            raise BadParameterError(f"sample rate must be positive, got {sample_rate}")
        self.path = Path(path)
        self.channels = channels
        self.sample_rate = sample_rate
        self.data_size = 0
        self._closed = False
        try:
            self._file = open(self.path, "wb")
            self._file.write(wav_header(channels, sample_rate, 0))
        except OSError as e:
            raise IoError(f"cannot write '{self.path}': {e}") from e

    def write_samples(self, samples: np.ndarray) -> None:
        """Append interleaved int16 samples."""
        data = np.asarray(samples, dtype="<i2")
        if data.ndim == 2 and data.shape[1] != self.channels:
            raise BadParameterError(f"expected {self.channels} channels, got {data.shape[1]}")
        payload = data.tobytes()
        if len(payload) % (self.channels * 2):
            raise BadParameterError("sample data is not a whole number of frames")
        self._write(payload)

    def write_frame(self, frame) -> None:
        """Append a packed ``s16`` audio frame (as produced by the kernel resampler)."""
        if frame.format.name != "s16":
            raise BadParameterError(f"WAV writer needs packed s16 frames, got {frame.format.name}")
        self._write(bytes(frame.planes[0])[: frame.samples * self.channels * 2])

    def _write(self, payload: bytes) -> None:
        try:
            self._file.write(payload)
        except OSError as e:
            raise IoError(f"write to '{self.path}' failed: {e}") from e
        self.data_size += len(payload)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._file.seek(4)
            self._file.write(struct.pack("<I", 36 + self.data_size))
            self._file.seek(40)
            self._file.write(struct.pack("<I", self.data_size))
        except OSError as e:
            raise IoError(f"cannot finalize '{self.path}': {e}") from e
        finally:
            self._file.close()
        logger.info("[wav] Wrote %s: %d bytes of PCM", self.path.name, self.data_size)

    def __enter__(self) -> "WavWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
