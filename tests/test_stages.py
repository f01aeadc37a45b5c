"""Tests for the individual pipeline stages: input, filter, converters and output."""

from fractions import Fraction

import av
import numpy as np
import pytest

from media_cookbook.errors import (
    BadFilterError,
    BadParameterError,
    HardwareUnavailableError,
    IoError,
    MalformedError,
    NoSuchStreamError,
    NotFoundError,
    UnknownFormatError,
)
from media_cookbook.kernel.converters import Resampler
from media_cookbook.kernel.filter_stage import AGAIN, EOF, FilterStage, SourcePad, source_names
from media_cookbook.kernel.hwaccel import is_device_frame, negotiate_hw_format, probe_codec, require_device
from media_cookbook.kernel.input_stage import InputStage
from media_cookbook.kernel.output_stage import OutputStage
from media_cookbook.kernel.resources import ResourceRegistry
from media_cookbook.kernel.streams import AudioPadParams, VideoPadParams, rescale
from media_cookbook.schemas import EncoderSpec, FilterGraphSpec, MediaKind

RATE = 44100
AUDIO_PAD = AudioPadParams(sample_rate=RATE, sample_format="fltp", channel_layout="stereo", time_base=Fraction(1, RATE))


def audio_frame(samples: int = 1024, pts: int = 0, level: float = 0.5) -> av.AudioFrame:
    data = np.full((2, samples), level, dtype=np.float32)
    frame = av.AudioFrame.from_ndarray(data, format="fltp", layout="stereo")
    frame.sample_rate = RATE
    frame.pts = pts
    frame.time_base = Fraction(1, RATE)
    return frame


def drain(stage: FilterStage) -> list:
    frames = list(stage.frames())
    stage.push(None)
    frames.extend(stage.frames())
    return frames


# =============================================================================
# Input stage
# =============================================================================


class TestInputStage:
    def test_describe_streams(self, av_file):
        with ResourceRegistry() as registry:
            stage = InputStage(registry).open(av_file)
            video = stage.describe(stage.select_stream(MediaKind.VIDEO))
            audio = stage.describe(stage.select_stream(MediaKind.AUDIO))
        assert (video.width, video.height) == (320, 180)
        assert video.frame_rate == 25
        assert audio.sample_rate == RATE
        assert audio.channel_layout == "stereo"
        assert registry.balanced

    def test_missing_file(self, tmp_path):
        with ResourceRegistry() as registry:
            with pytest.raises(NotFoundError):
                InputStage(registry).open(tmp_path / "missing.mp4")

    def test_missing_stream_kind(self, tone_wav):
        with ResourceRegistry() as registry:
            stage = InputStage(registry).open(tone_wav)
            with pytest.raises(NoSuchStreamError):
                stage.select_stream(MediaKind.VIDEO)

    def test_truncated_container_is_malformed_with_code(self, truncated_mp4):
        with ResourceRegistry() as registry:
            with pytest.raises(MalformedError) as info:
                InputStage(registry).open(truncated_mp4)
        assert info.value.code is not None
        assert info.value.render().startswith("FFmpeg error:")
        assert registry.balanced

    def test_decoder_flush_is_idempotent(self, tone_wav):
        with ResourceRegistry() as registry:
            stage = InputStage(registry).open(tone_wav)
            decoder = stage.open_decoder(stage.select_stream(MediaKind.AUDIO))
            decoded = sum(len(decoder.decode(packet)) for packet in stage.packets())
            decoder.flush()
            assert decoder.flush() == []
            assert decoded > 0
        assert registry.balanced


# =============================================================================
# Filter stage
# =============================================================================


class TestFilterStage:
    def test_source_names(self):
        assert source_names(1) == ["in"]
        assert source_names(3) == ["in0", "in1", "in2"]

    def test_volume_filter_scales_samples(self):
        with ResourceRegistry() as registry:
            stage = FilterStage(FilterGraphSpec(description="volume=0.5"), [SourcePad("in", AUDIO_PAD)], registry)
            for i in range(4):
                stage.push(audio_frame(pts=i * 1024))
            out = drain(stage)
            assert stage.drained
            assert stage.pull() is EOF
        samples = np.concatenate([f.to_ndarray() for f in out], axis=1)
        assert samples.shape == (2, 4096)
        assert np.allclose(samples, 0.25, atol=1e-6)
        assert registry.balanced

    def test_pull_without_input_needs_more(self):
        with ResourceRegistry() as registry:
            stage = FilterStage(FilterGraphSpec(description="anull"), [SourcePad("in", AUDIO_PAD)], registry)
            assert stage.pull() is AGAIN

    def test_sink_constraints(self):
        spec = FilterGraphSpec(description="anull", sample_format="s16", frame_size=1000)
        with ResourceRegistry() as registry:
            stage = FilterStage(spec, [SourcePad("in", AUDIO_PAD)], registry)
            for i in range(3):
                stage.push(audio_frame(pts=i * 1024))
            out = drain(stage)
        assert all(f.format.name == "s16" for f in out)
        assert [f.samples for f in out[:3]] == [1000, 1000, 1000]
        assert sum(f.samples for f in out) == 3072

    def test_mismatched_frame_is_rejected(self):
        pad = VideoPadParams(width=64, height=48, pixel_format="yuv420p", time_base=Fraction(1, 25))
        with ResourceRegistry() as registry:
            stage = FilterStage(FilterGraphSpec(description="null"), [SourcePad("in", pad)], registry)
            frame = av.VideoFrame(32, 32, "yuv420p")
            frame.pts = 0
            with pytest.raises(MalformedError, match="does not match"):
                stage.push(frame)
            assert stage.frames_pushed == 0

    def test_unknown_filter(self):
        registry = ResourceRegistry()
        with pytest.raises(BadFilterError):
            FilterStage(FilterGraphSpec(description="nosuchfilter=1"), [SourcePad("in", AUDIO_PAD)], registry)
        registry.release_all()
        assert registry.balanced

    def test_bad_filter_options(self):
        with ResourceRegistry() as registry:
            with pytest.raises(BadFilterError):
                FilterStage(FilterGraphSpec(description="volume=loud"), [SourcePad("in", AUDIO_PAD)], registry)

    def test_kind_mismatch_in_graph(self):
        with ResourceRegistry() as registry:
            with pytest.raises(BadFilterError):
                FilterStage(FilterGraphSpec(description="scale=10:10"), [SourcePad("in", AUDIO_PAD)], registry)

    def test_two_source_pads(self):
        pads = [SourcePad("in0", AUDIO_PAD), SourcePad("in1", AUDIO_PAD)]
        spec = FilterGraphSpec(description="[in0][in1]amix=inputs=2:normalize=0[out]")
        with ResourceRegistry() as registry:
            stage = FilterStage(spec, pads, registry)
            for pad, level in ((0, 0.25), (1, 0.5)):
                stage.push(audio_frame(level=level), pad=pad)
            out = list(stage.frames())
            stage.push(None, pad=0)
            stage.push(None, pad=1)
            out.extend(stage.frames())
        samples = np.concatenate([f.to_ndarray() for f in out], axis=1)
        assert np.allclose(samples[:, :512], 0.75, atol=1e-3)


# =============================================================================
# Converters
# =============================================================================


def test_resampler_converts_and_flushes():
    with ResourceRegistry() as registry:
        resampler = Resampler(registry, "s16", "mono", 22050)
        out = []
        for i in range(10):
            out.extend(resampler.convert(audio_frame(pts=i * 1024)))
        out.extend(resampler.flush())
        assert resampler.flush() == []
    assert all(f.format.name == "s16" and f.layout.name == "mono" for f in out)
    assert abs(sum(f.samples for f in out) - 5120) <= 32
    assert registry.balanced


def test_rescale_rounds_to_nearest():
    assert rescale(1, Fraction(1, 3), Fraction(1, 2)) == 1
    assert rescale(3, Fraction(1, 2), Fraction(1, 4)) == 6
    assert rescale(-1, Fraction(1, 4), Fraction(1, 2)) == -1
    assert rescale(None, Fraction(1, 2), Fraction(1, 4)) is None


# =============================================================================
# Output stage
# =============================================================================


AUDIO_ENCODER = EncoderSpec(kind=MediaKind.AUDIO, codec="pcm_s16le", sample_rate=RATE, channel_layout="stereo")


class TestOutputStage:
    def test_finalize_is_idempotent(self, tmp_path):
        path = tmp_path / "out.wav"
        with ResourceRegistry() as registry:
            stage = OutputStage(registry).create(path)
            handle = stage.add_stream(AUDIO_ENCODER)
            stage.write_header()
            frame = audio_frame()
            frame.time_base = handle.time_base
            for packet in stage.encode(handle, frame):
                stage.write_packet(handle, packet)
            for packet in stage.flush_encoder(handle):
                stage.write_packet(handle, packet)
            assert stage.flush_encoder(handle) == []
            stage.finalize()
            stage.finalize()
            assert stage.trailer_written
        assert path.stat().st_size > 44
        assert registry.balanced

    def test_finalize_without_header(self, tmp_path):
        with ResourceRegistry() as registry:
            stage = OutputStage(registry).create(tmp_path / "empty.mkv")
            stage.finalize()
            assert not stage.trailer_written

    def test_abort_removes_partial_output(self, tmp_path):
        path = tmp_path / "partial.wav"
        with ResourceRegistry() as registry:
            stage = OutputStage(registry).create(path)
            stage.add_stream(AUDIO_ENCODER)
            stage.write_header()
            stage.abort()
        assert not path.exists()

    def test_registry_cleanup_removes_unfinished_output(self, tmp_path):
        path = tmp_path / "unfinished.wav"
        with ResourceRegistry() as registry:
            stage = OutputStage(registry).create(path)
            stage.add_stream(AUDIO_ENCODER)
            stage.write_header()
        assert not path.exists()

    def test_no_streams_after_header(self, tmp_path):
        with ResourceRegistry() as registry:
            stage = OutputStage(registry).create(tmp_path / "out.wav")
            stage.add_stream(AUDIO_ENCODER)
            stage.write_header()
            with pytest.raises(BadParameterError):
                stage.add_stream(AUDIO_ENCODER)

    def test_header_needs_streams(self, tmp_path):
        with ResourceRegistry() as registry:
            stage = OutputStage(registry).create(tmp_path / "out.wav")
            with pytest.raises(BadParameterError):
                stage.write_header()

    def test_packet_before_header(self, tmp_path):
        with ResourceRegistry() as registry:
            stage = OutputStage(registry).create(tmp_path / "out.wav")
            handle = stage.add_stream(AUDIO_ENCODER)
            with pytest.raises(IoError):
                stage.write_packet(handle, av.Packet(b"\x00" * 16))

    def test_unknown_extension(self, tmp_path):
        with ResourceRegistry() as registry:
            with pytest.raises(UnknownFormatError):
                OutputStage(registry).create(tmp_path / "out.nosuchformat")

    def test_encoder_rejects_unsupported_sample_format(self, tmp_path):
        spec = AUDIO_ENCODER.model_copy(update={"sample_format": "dbl"})
        with ResourceRegistry() as registry:
            stage = OutputStage(registry).create(tmp_path / "out.wav")
            with pytest.raises(BadParameterError):
                stage.add_stream(spec)


# =============================================================================
# Hardware helpers
# =============================================================================


def test_negotiate_hw_format():
    assert negotiate_hw_format(["vaapi", "cuda"], "cuda") == "cuda"
    assert negotiate_hw_format(["vaapi"], "cuda") is None
    assert negotiate_hw_format(["cuda"], None) is None


def test_unknown_device_type():
    with pytest.raises(HardwareUnavailableError):
        require_device("no-such-device")


def test_probe_codec():
    assert probe_codec("pcm_s16le", "w")
    assert not probe_codec("no-such-codec", "w")


def test_system_memory_frames():
    assert not is_device_frame(av.VideoFrame(16, 16, "yuv420p"))
