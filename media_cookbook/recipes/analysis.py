"""
Analysis recipes: media information and silence detection.

Silence detection runs the audio through the kernel as float samples and
tracks runs where every channel stays below the threshold. A run counts as
silence once it lasts ``min_duration``; trailing silence is closed at the
end of input.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import av
import numpy as np
from pydantic import BaseModel, Field

from media_cookbook.kernel.driver import ProgressCallback
from media_cookbook.kernel.input_stage import InputStage
from media_cookbook.kernel.resources import ResourceRegistry
from media_cookbook.kernel.streams import StreamDescriptor
from media_cookbook.recipes.base import RecipePlan, build_config, resolve_params, run_recipe
from media_cookbook.schemas import FilterGraphSpec, InputSpec, MediaKind

logger = logging.getLogger(__name__)


# =============================================================================
# Media info
# =============================================================================


@dataclass(slots=True)
class MediaInfo:
    path: Path
    format_name: str
    duration: float
    bit_rate: int
    streams: list[StreamDescriptor] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)

    def streams_of(self, kind: MediaKind) -> list[StreamDescriptor]:
        return [s for s in self.streams if s.kind is kind]


def probe_media(path: str | Path) -> MediaInfo:
    """Open *path* and describe the container and every audio, video and subtitle stream."""
    with ResourceRegistry() as registry:
        stage = InputStage(registry).open(path)
        container = stage.container
        streams = []
        for stream in container.streams:
            if stream.type not in ("audio", "video", "subtitle"):
                logger.debug("[recipe:info] Skipping %s stream #%d", stream.type, stream.index)
                continue
            streams.append(stage.describe(stream.index))
        return MediaInfo(
            path=Path(path),
            format_name=container.format.name,
            duration=(container.duration or 0) / av.time_base,
            bit_rate=container.bit_rate or 0,
            streams=streams,
            metadata=dict(container.metadata),
        )


def format_media_info(info: MediaInfo) -> str:
    lines = [
        f"File: {info.path}",
        f"Format: {info.format_name}",
        f"Duration: {info.duration:.2f}s",
        f"Bitrate: {info.bit_rate // 1000} kb/s",
    ]
    for s in info.streams:
        if s.kind is MediaKind.VIDEO:
            rate = f"{float(s.frame_rate):.2f} fps" if s.frame_rate else "unknown fps"
            detail = f"{s.width}x{s.height} {s.pixel_format}, {rate}"
        elif s.kind is MediaKind.AUDIO:
            detail = f"{s.sample_rate} Hz {s.channel_layout} {s.sample_format}"
        else:
            detail = "text"
        lines.append(f"Stream #{s.index} {s.kind.value}: {s.codec_name}, {detail}")
    for key, value in info.metadata.items():
        lines.append(f"  {key}: {value}")
    return "\n".join(lines)


# =============================================================================
# Silence detection
# =============================================================================


class SilenceParams(BaseModel):
    threshold: float = Field(-50.0, ge=-120, le=0, description="Level below which audio counts as silent (dBFS).")
    min_duration: float = Field(0.5, gt=0, le=3600, description="Shortest silence to report, in seconds.")


@dataclass(slots=True)
class SilenceSegment:
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


class SilenceDetector:
    """Frame sink over planar float audio collecting silent runs."""

    def __init__(self, threshold_db: float, min_duration: float) -> None:
        self.threshold = 10 ** (threshold_db / 20)
        self.min_duration = min_duration
        self.segments: list[SilenceSegment] = []
        self.sample_rate = 0
        self.position = 0  # Samples seen so far
        self._run_start: int | None = None

    def __call__(self, frame) -> None:
        samples = frame.to_ndarray()
        if samples.size == 0:
            return
        self.sample_rate = frame.sample_rate
        level = np.max(np.abs(samples), axis=0)
        quiet = level < self.threshold

        edges = np.flatnonzero(np.diff(quiet.astype(np.int8))) + 1
        bounds = [0, *edges.tolist(), len(quiet)]
        for begin, end in zip(bounds, bounds[1:]):
            if quiet[begin]:
                if self._run_start is None:
                    self._run_start = self.position + begin
            else:
                self._close(self.position + begin)
        self.position += len(quiet)

    def _close(self, at: int) -> None:
        if self._run_start is None:
            return
        start, self._run_start = self._run_start, None
        if not self.sample_rate:
            return
        if (at - start) / self.sample_rate >= self.min_duration:
            self.segments.append(SilenceSegment(start / self.sample_rate, at / self.sample_rate))

    def finish(self) -> list[SilenceSegment]:
        self._close(self.position)
        return self.segments

    @property
    def total_duration(self) -> float:
        return self.position / self.sample_rate if self.sample_rate else 0.0


def detect_silence(
    input_path: str | Path,
    progress: ProgressCallback | None = None,
    **overrides,
) -> list[SilenceSegment]:
    p = resolve_params(SilenceParams, {}, None, overrides)
    detector = SilenceDetector(p.threshold, p.min_duration)
    config = build_config(
        inputs=[InputSpec(path=input_path, kind=MediaKind.AUDIO)],
        filter=FilterGraphSpec(description="anull", sample_format="fltp"),
    )
    run_recipe(RecipePlan(name="silence", config=config, frame_sink=detector), progress=progress)
    segments = detector.finish()
    logger.info(
        "[recipe:silence] %d silent segment(s) in %.2fs (threshold %.1f dBFS, min %.2fs)",
        len(segments),
        detector.total_duration,
        p.threshold,
        p.min_duration,
    )
    return segments


def split_points(segments: list[SilenceSegment], total: float) -> list[float]:
    """Cut positions in the middle of each silence that has audio on both sides."""
    points = []
    for segment in segments:
        if segment.start <= 0 or segment.end >= total:
            continue
        points.append((segment.start + segment.end) / 2)
    return points
