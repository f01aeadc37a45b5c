"""Synthetic media for the test suite, written and inspected with PyAV and numpy."""

from pathlib import Path

import av
import numpy as np

from media_cookbook.utils.wav import WavWriter


def write_media(
    path: Path,
    seconds: float = 2.0,
    width: int = 320,
    height: int = 180,
    fps: int = 25,
    video: bool = True,
    audio: bool = True,
    sample_rate: int = 44100,
    tone_hz: float = 440.0,
    video_offset: float = 0.0,
) -> Path:
    """Write a test file: a moving bar over a gradient plus a stereo sine tone."""
    frames = int(round(seconds * fps))
    samples_per_frame = sample_rate // fps
    offset = int(round(video_offset * fps))

    with av.open(str(path), "w") as container:
        vstream = astream = None
        if video:
            vstream = container.add_stream("mpeg4", rate=fps)
            vstream.width = width
            vstream.height = height
            vstream.pix_fmt = "yuv420p"
            vstream.bit_rate = 800_000
            vstream.codec_context.gop_size = fps
        if audio:
            astream = container.add_stream("aac", rate=sample_rate)
            astream.codec_context.layout = "stereo"

        gradient = np.tile(np.linspace(0, 255, width, dtype=np.uint8), (height, 1))
        for i in range(frames):
            if vstream is not None:
                image = np.stack([gradient, np.roll(gradient, i * 4, axis=1), gradient[::-1]], axis=-1)
                x = (i * 8) % max(1, width - 16)
                image[:, x : x + 16] = 255
                frame = av.VideoFrame.from_ndarray(np.ascontiguousarray(image), format="rgb24")
                frame = frame.reformat(format="yuv420p")
                frame.pts = i + offset
                container.mux(vstream.encode(frame))
            if astream is not None:
                t = (np.arange(samples_per_frame) + i * samples_per_frame) / sample_rate
                tone = (0.3 * np.sin(2 * np.pi * tone_hz * t)).astype(np.float32)
                aframe = av.AudioFrame.from_ndarray(np.stack([tone, tone]), format="fltp", layout="stereo")
                aframe.sample_rate = sample_rate
                aframe.pts = i * samples_per_frame
                container.mux(astream.encode(aframe))

        if vstream is not None:
            container.mux(vstream.encode(None))
        if astream is not None:
            container.mux(astream.encode(None))
    return path


def write_tone_wav(
    path: Path, seconds: float = 3.0, sample_rate: int = 44100, hz: float = 1000.0, level: float = 0.5
) -> Path:
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    tone = (level * 32767 * np.sin(2 * np.pi * hz * t)).astype(np.int16)
    with WavWriter(path, channels=2, sample_rate=sample_rate) as wav:
        wav.write_samples(np.stack([tone, tone], axis=1))
    return path


def probe(path: Path) -> dict:
    """Stream summary of *path*: kinds, codecs, sizes and durations."""
    with av.open(str(path)) as container:
        streams = []
        for stream in container.streams:
            ctx = stream.codec_context
            info = {"type": stream.type, "codec": ctx.name}
            if stream.type == "video":
                info.update(width=ctx.width, height=ctx.height, pix_fmt=ctx.pix_fmt)
            elif stream.type == "audio":
                info.update(sample_rate=ctx.sample_rate, channels=ctx.channels)
            streams.append(info)
        duration = (container.duration or 0) / av.time_base
    return {"streams": streams, "duration": duration}


def decode_audio(path: Path) -> tuple[np.ndarray, int]:
    """Decode the first audio stream to float64 samples shaped (channels, n)."""
    chunks = []
    with av.open(str(path)) as container:
        stream = container.streams.audio[0]
        rate = stream.codec_context.sample_rate
        resampler = av.AudioResampler(format="fltp", rate=rate)
        for frame in container.decode(stream):
            for out in resampler.resample(frame):
                chunks.append(out.to_ndarray())
        for out in resampler.resample(None):
            chunks.append(out.to_ndarray())
    return np.concatenate(chunks, axis=1).astype(np.float64), rate


def count_video_frames(path: Path) -> int:
    with av.open(str(path)) as container:
        return sum(1 for _ in container.decode(video=0))


def filter_available(name: str) -> bool:
    return name in av.filter.filters_available


SRT_TEXT = """1
00:00:00,500 --> 00:00:01,250
Hello there

2
00:00:01,500 --> 00:00:02,750
Second line
spans two rows
"""
