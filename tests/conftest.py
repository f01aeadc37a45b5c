"""
Pytest configuration for the pipeline and recipe tests.

Media fixtures are synthesized with PyAV and numpy (mpeg4 video, AAC audio,
16-bit PCM WAV) so the suite needs no sample files. Optional settings come
from a ``.env`` file in the project root, as in production.
"""

from pathlib import Path

import av
import numpy as np
import pytest
from dotenv import load_dotenv

from helpers import SRT_TEXT, write_media, write_tone_wav

# Load .env file from project root
project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env")


@pytest.fixture(scope="session")
def media_dir(tmp_path_factory) -> Path:
    return tmp_path_factory.mktemp("media")


@pytest.fixture(scope="session")
def av_file(media_dir) -> Path:
    """5 seconds of 320x180 @25 fps mpeg4 video with stereo AAC audio."""
    return write_media(media_dir / "av.mp4", seconds=5.0)


@pytest.fixture(scope="session")
def short_av_file(media_dir) -> Path:
    return write_media(media_dir / "short.mp4", seconds=1.0)


@pytest.fixture(scope="session")
def long_av_file(media_dir) -> Path:
    """12 seconds with a keyframe every second."""
    return write_media(media_dir / "long.mp4", seconds=12.0)


@pytest.fixture(scope="session")
def widescreen_video(media_dir) -> Path:
    """2 seconds of 640x360 video without audio."""
    return write_media(media_dir / "wide.mp4", seconds=2.0, width=640, height=360, audio=False)


@pytest.fixture(scope="session")
def drifting_file(media_dir) -> Path:
    """Video timestamps run 200 ms ahead of the audio."""
    return write_media(media_dir / "drift.mkv", seconds=2.0, video_offset=0.2)


@pytest.fixture(scope="session")
def tone_wav(media_dir) -> Path:
    """3 seconds of a 1 kHz stereo tone at 44.1 kHz."""
    return write_tone_wav(media_dir / "tone.wav")


@pytest.fixture(scope="session")
def quiet_wav(media_dir) -> Path:
    return write_tone_wav(media_dir / "quiet.wav", seconds=1.0, hz=440.0, level=0.1)


@pytest.fixture(scope="session")
def truncated_mp4(media_dir) -> Path:
    source = write_media(media_dir / "whole.mp4", seconds=2.0)
    data = source.read_bytes()
    path = media_dir / "truncated.mp4"
    path.write_bytes(data[: len(data) * 2 // 5])
    return path


@pytest.fixture(scope="session")
def watermark_png(media_dir) -> Path:
    path = media_dir / "logo.png"
    image = np.zeros((32, 48, 4), dtype=np.uint8)
    image[..., 0] = 255
    image[..., 3] = 200
    with av.open(str(path), "w", format="image2", options={"update": "1"}) as container:
        stream = container.add_stream("png", rate=1)
        stream.width, stream.height, stream.pix_fmt = 48, 32, "rgba"
        frame = av.VideoFrame.from_ndarray(image, format="rgba")
        frame.pts = 0
        container.mux(stream.encode(frame))
        container.mux(stream.encode(None))
    return path


@pytest.fixture(scope="session")
def srt_file(media_dir) -> Path:
    path = media_dir / "cues.srt"
    path.write_text(SRT_TEXT)
    return path


@pytest.fixture(scope="session")
def subtitled_mkv(media_dir, srt_file) -> Path:
    """A Matroska file whose only stream is a SubRip track remuxed from ``srt_file``."""
    path = media_dir / "subtitled.mkv"
    with av.open(str(srt_file)) as source, av.open(str(path), "w") as target:
        in_stream = source.streams.subtitles[0]
        out_stream = target.add_stream_from_template(in_stream)
        for packet in source.demux(in_stream):
            if packet.dts is None:
                continue
            packet.stream = out_stream
            target.mux(packet)
    return path
