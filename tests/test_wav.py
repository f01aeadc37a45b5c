import struct

import av
import numpy as np
import pytest

from media_cookbook.errors import BadParameterError
from media_cookbook.utils.wav import WAV_HEADER_SIZE, WavWriter, wav_header


def test_header_layout():
    header = wav_header(channels=2, sample_rate=48000, data_size=400)
    assert len(header) == WAV_HEADER_SIZE
    assert header[:4] == b"RIFF" and header[8:16] == b"WAVEfmt "
    riff_size, = struct.unpack("<I", header[4:8])
    assert riff_size == 436
    fmt_size, audio_format, channels, rate, byte_rate, block_align, bits = struct.unpack("<IHHIIHH", header[16:36])
    assert (fmt_size, audio_format, channels, rate) == (16, 1, 2, 48000)
    assert byte_rate == 48000 * 4
    assert (block_align, bits) == (4, 16)
    assert header[36:40] == b"data"
    assert struct.unpack("<I", header[40:44]) == (400,)


def test_sizes_are_patched_on_close(tmp_path):
    path = tmp_path / "out.wav"
    samples = np.arange(-500, 500, dtype=np.int16).reshape(-1, 2)
    with WavWriter(path, channels=2, sample_rate=8000) as wav:
        wav.write_samples(samples[:200])
        wav.write_samples(samples[200:])

    data = path.read_bytes()
    assert len(data) == WAV_HEADER_SIZE + samples.nbytes
    assert struct.unpack("<I", data[4:8]) == (36 + samples.nbytes,)
    assert struct.unpack("<I", data[40:44]) == (samples.nbytes,)
    assert np.array_equal(np.frombuffer(data[44:], dtype="<i2").reshape(-1, 2), samples)


def test_written_file_decodes(tmp_path):
    path = tmp_path / "tone.wav"
    tone = (np.sin(np.linspace(0, 200 * np.pi, 8000)) * 10000).astype(np.int16)
    with WavWriter(path, channels=1, sample_rate=8000) as wav:
        wav.write_samples(tone)

    with av.open(str(path)) as container:
        stream = container.streams.audio[0]
        assert stream.codec_context.name == "pcm_s16le"
        assert stream.codec_context.sample_rate == 8000
        decoded = np.concatenate([f.to_ndarray().reshape(-1) for f in container.decode(stream)])
    assert np.array_equal(decoded, tone)


def test_write_frame_takes_packed_s16(tmp_path):
    frame = av.AudioFrame.from_ndarray(np.ones((1, 128), dtype=np.int16), format="s16", layout="stereo")
    with WavWriter(tmp_path / "f.wav", channels=2, sample_rate=8000) as wav:
        wav.write_frame(frame)
        assert wav.data_size == 64 * 2 * 2

        planar = av.AudioFrame.from_ndarray(np.zeros((2, 64), dtype=np.float32), format="fltp", layout="stereo")
        with pytest.raises(BadParameterError):
            wav.write_frame(planar)


def test_rejects_channel_mismatch(tmp_path):
    with WavWriter(tmp_path / "x.wav", channels=2, sample_rate=8000) as wav:
        with pytest.raises(BadParameterError):
            wav.write_samples(np.zeros((10, 3), dtype=np.int16))


def test_rejects_invalid_format(tmp_path):
    with pytest.raises(BadParameterError):
        WavWriter(tmp_path / "x.wav", channels=0, sample_rate=8000)
