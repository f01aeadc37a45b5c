"""
Editing recipes: split, concatenate, reverse and keyframe extraction.

Files with video are split by stream copy, so video cuts land on the
keyframe at or before each start. Audio-only files are trimmed to the
sample. Concatenation and reversal re-encode one lane through the
``concat`` / ``reverse`` / ``areverse`` filters; inputs with video keep
their video only.
"""

import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from media_cookbook.configs import settings
from media_cookbook.errors import BadParameterError, IoError
from media_cookbook.kernel.driver import ProgressCallback
from media_cookbook.kernel.output_stage import OutputStage
from media_cookbook.kernel.resources import ResourceRegistry
from media_cookbook.kernel.streams import ordered_layout
from media_cookbook.recipes.analysis import detect_silence, split_points
from media_cookbook.recipes.base import (
    RecipePlan,
    audio_filter_plan,
    build_config,
    fmt,
    has_stream,
    probe_stream,
    resolve_params,
    run_recipe,
    validated,
)
from media_cookbook.recipes.video import IMAGE_ENCODERS, video_encoder, video_filter_plan
from media_cookbook.schemas import EncoderSpec, FilterGraphSpec, InputSpec, MediaKind

logger = logging.getLogger(__name__)


# =============================================================================
# Split
# =============================================================================


def parse_range(text: str) -> tuple[float, float]:
    """Parse ``start,end`` in seconds."""
    start, sep, end = text.partition(",")
    if not sep:
        raise BadParameterError(f"invalid time range '{text}' (expected start,end)")
    try:
        values = float(start), float(end)
    except ValueError as e:
        raise BadParameterError(f"invalid time range '{text}': {e}") from e
    if values[0] < 0 or values[0] >= values[1]:
        raise BadParameterError(f"invalid time range '{text}': start must be >= 0 and before end")
    return values


class SplitParams(BaseModel):
    segment_time: float | None = Field(None, gt=0, description="Cut into pieces of this many seconds.")
    ranges: list[str] | None = Field(None, description="Explicit start,end ranges in seconds, e.g. 0,30 30,60.")
    prefix: str | None = Field(None, description="Output file prefix; the input name when omitted.")

    @model_validator(mode="after")
    def _one_mode(self):
        if (self.segment_time is None) == (self.ranges is None):
            raise ValueError("give either a segment time or a list of ranges")
        return self


def split_plan(input_path: str | Path, output_path: str | Path, start: float, end: float) -> RecipePlan:
    """
    Cut ``[start, end)`` out of *input_path*.

    Files with video are stream-copied. Audio-only files are decoded and
    trimmed to the sample with ``atrim``, then re-encoded with the output
    format's default codec.
    """
    copy_kinds = [kind for kind in (MediaKind.VIDEO, MediaKind.AUDIO) if has_stream(input_path, kind)]
    if not copy_kinds:
        raise BadParameterError(f"'{input_path}' has no audio or video to split")
    if copy_kinds == [MediaKind.AUDIO]:
        config = build_config(
            inputs=[InputSpec(path=input_path, kind=MediaKind.AUDIO)],
            output=output_path,
            encoder=EncoderSpec(kind=MediaKind.AUDIO),
            filter=FilterGraphSpec(description=f"atrim=start={fmt(start)}:end={fmt(end)},asetpts=PTS-STARTPTS"),
            # Frames starting at or after the cut never reach the graph; atrim trims the last one
            duration=end,
        )
        return RecipePlan(name="split", config=config)
    config = build_config(
        inputs=[InputSpec(path=input_path, kind=copy_kinds[0])],
        output=output_path,
        output_options={"avoid_negative_ts": "make_zero"},
        copy_kinds=copy_kinds,
        transcode=False,
        start_time=start or None,
        duration=end - start,
    )
    return RecipePlan(name="split", config=config)


def _write_pieces(
    input_path: Path, output_dir: Path, ranges: list[tuple[float, float]], prefix: str | None, progress
) -> list[Path]:
    output_dir.mkdir(parents=True, exist_ok=True)
    stem = prefix or input_path.stem
    written = []
    for number, (start, end) in enumerate(ranges):
        path = output_dir / f"{stem}_{number:03d}{input_path.suffix}"
        logger.info("[recipe:split] %s: %.2fs - %.2fs", path.name, start, end)
        run_recipe(split_plan(input_path, path, start, end), progress=progress)
        written.append(path)
    return written


def split(
    input_path: str | Path,
    output_dir: str | Path,
    progress: ProgressCallback | None = None,
    **overrides,
) -> list[Path]:
    """Cut *input_path* into ``<prefix>_000<ext>``, ``<prefix>_001<ext>``, ... under *output_dir*."""
    p = resolve_params(SplitParams, {}, None, overrides)
    input_path = Path(input_path)
    if p.ranges is not None:
        ranges = [parse_range(text) for text in p.ranges]
    else:
        kind = MediaKind.VIDEO if has_stream(input_path, MediaKind.VIDEO) else MediaKind.AUDIO
        total = probe_stream(input_path, kind).duration_seconds
        if not total:
            raise BadParameterError(f"cannot split '{input_path}' by time: its duration is unknown")
        ranges = []
        start = 0.0
        while total - start > 1e-3:
            ranges.append((start, min(start + p.segment_time, total)))
            start += p.segment_time
    return _write_pieces(input_path, Path(output_dir), ranges, p.prefix, progress)


class SilenceSplitParams(BaseModel):
    threshold: float = Field(-40.0, ge=-120, le=0, description="Silence level in dBFS.")
    min_silence: float = Field(0.5, gt=0, description="Shortest pause to cut at, in seconds.")
    min_segment: float = Field(1.0, gt=0, description="Shortest piece to keep, in seconds.")
    prefix: str | None = None


def split_on_silence(
    input_path: str | Path,
    output_dir: str | Path,
    progress: ProgressCallback | None = None,
    **overrides,
) -> list[Path]:
    """Cut audio in the middle of each pause; pieces shorter than ``min_segment`` merge into the next."""
    p = resolve_params(SilenceSplitParams, {}, None, overrides)
    input_path = Path(input_path)
    total = probe_stream(input_path, MediaKind.AUDIO).duration_seconds
    segments = detect_silence(input_path, threshold=p.threshold, min_duration=p.min_silence)

    ranges = []
    start = 0.0
    for point in split_points(segments, total):
        if point - start >= p.min_segment:
            ranges.append((start, point))
            start = point
    if total - start > 1e-3:
        ranges.append((start, total))
    return _write_pieces(input_path, Path(output_dir), ranges, p.prefix, progress)


# =============================================================================
# Concatenate
# =============================================================================


class ConcatParams(BaseModel):
    codec: str | None = Field(None, description="Encoder; the output format's default (or H.264) when omitted.")
    bitrate: str | None = Field(None, description="Target bitrate, e.g. 2M.")


def concat_plan(input_paths: list[str | Path], output_path: str | Path, **overrides) -> RecipePlan:
    """
    Join inputs end to end with the ``concat`` filter.

    Video inputs are scaled to the first input's size; audio inputs are
    converted to its sample rate and layout.
    """
    p = resolve_params(ConcatParams, {}, None, overrides)
    if len(input_paths) < 2:
        raise BadParameterError("concatenation needs at least two inputs")
    n = len(input_paths)

    if all(has_stream(path, MediaKind.VIDEO) for path in input_paths):
        first = probe_stream(input_paths[0], MediaKind.VIDEO)
        pads = ";".join(f"[in{i}]scale={first.width}:{first.height},setsar=1,format=yuv420p[v{i}]" for i in range(n))
        description = pads + ";" + "".join(f"[v{i}]" for i in range(n)) + f"concat=n={n}:v=1:a=0[out]"
        frame_rate = float(first.frame_rate) if first.frame_rate else None
        encoder = video_encoder(p.codec, p.bitrate or settings.default_video_bitrate, frame_rate)
        kind = MediaKind.VIDEO
    elif all(has_stream(path, MediaKind.AUDIO) for path in input_paths):
        first = probe_stream(input_paths[0], MediaKind.AUDIO)
        args = f"sample_fmts=fltp:sample_rates={first.sample_rate}"
        if first.channel_layout:
            # concat needs one named layout on every pad
            args += f":channel_layouts={ordered_layout(first.channel_layout)}"
        pads = ";".join(f"[in{i}]aformat={args}[a{i}]" for i in range(n))
        description = pads + ";" + "".join(f"[a{i}]" for i in range(n)) + f"concat=n={n}:v=0:a=1[out]"
        encoder = validated(EncoderSpec, kind=MediaKind.AUDIO, codec=p.codec, bit_rate=p.bitrate)
        kind = MediaKind.AUDIO
    else:
        raise BadParameterError("inputs must all have video, or all have audio")

    config = build_config(
        inputs=[InputSpec(path=path, kind=kind) for path in input_paths],
        output=output_path,
        encoder=encoder,
        filter=FilterGraphSpec(description=description),
    )
    return RecipePlan(name="concat", config=config)


# =============================================================================
# Reverse
# =============================================================================


class ReverseParams(BaseModel):
    codec: str | None = None
    bitrate: str = Field(settings.default_video_bitrate, description="Video bitrate.")


def reverse_plan(input_path: str | Path, output_path: str | Path, **overrides) -> RecipePlan:
    """
    Play the input backwards.

    The whole stream is buffered by the filter before the first frame comes
    out, so this suits clips rather than full-length media.
    """
    p = resolve_params(ReverseParams, {}, None, overrides)
    if has_stream(input_path, MediaKind.VIDEO):
        encoder = video_encoder(p.codec, p.bitrate)
        return video_filter_plan("reverse", input_path, output_path, "reverse", encoder, copy_audio=False)
    encoder = EncoderSpec(kind=MediaKind.AUDIO, codec=p.codec)
    return audio_filter_plan("reverse", input_path, output_path, FilterGraphSpec(description="areverse"), encoder)


# =============================================================================
# Keyframes
# =============================================================================


def write_image(frame, path: str | Path, width: int | None = None) -> Path:
    """Encode one video frame as a PNG, JPEG or BMP, optionally scaled to *width*."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in IMAGE_ENCODERS:
        raise BadParameterError(f"unsupported image type '{suffix}' (use {', '.join(IMAGE_ENCODERS)})")
    codec, pixel_format = IMAGE_ENCODERS[suffix]
    height = None
    if width is not None:
        height = max(2, round(frame.height * width / frame.width / 2) * 2)

    with ResourceRegistry() as registry:
        output = OutputStage(registry).create(path, format="image2", options={"update": "1"})
        spec = EncoderSpec(
            kind=MediaKind.VIDEO, codec=codec, pixel_format=pixel_format, width=width, height=height, frame_rate=1
        )
        handle = output.add_stream(spec, first_frame=frame)
        output.write_header()
        ctx = handle.codec_context
        image = frame.reformat(width=ctx.width, height=ctx.height, format=ctx.pix_fmt)
        image.pts = 0
        image.time_base = ctx.time_base
        for packet in output.encode(handle, image) + output.flush_encoder(handle):
            output.write_packet(handle, packet)
        output.finalize()
    if not path.exists():
        raise IoError(f"image '{path}' was not written")
    return path


class KeyframeParams(BaseModel):
    format: Literal["jpg", "png", "bmp"] = "jpg"
    max_count: int | None = Field(None, ge=1, description="Stop saving after this many images.")
    interval: int = Field(1, ge=1, description="Save every Nth keyframe.")
    width: int | None = Field(None, ge=16, le=8192, description="Scale images to this width keeping the aspect.")


class KeyframeSink:
    """Frame sink saving every ``interval``-th keyframe as an image."""

    def __init__(self, output_dir: Path, stem: str, params: KeyframeParams) -> None:
        self.output_dir = output_dir
        self.stem = stem
        self.params = params
        self.keyframes_seen = 0
        self.written: list[Path] = []

    def __call__(self, frame) -> None:
        if not frame.key_frame:
            return
        self.keyframes_seen += 1
        p = self.params
        if (self.keyframes_seen - 1) % p.interval:
            return
        if p.max_count is not None and len(self.written) >= p.max_count:
            return
        path = self.output_dir / f"{self.stem}_{len(self.written):04d}.{p.format}"
        self.written.append(write_image(frame, path, p.width))
        seconds = float(frame.pts * frame.time_base) if frame.pts is not None and frame.time_base else 0.0
        logger.debug("[recipe:keyframes] %s at %.3fs", path.name, seconds)


def extract_keyframes(
    input_path: str | Path,
    output_dir: str | Path,
    progress: ProgressCallback | None = None,
    **overrides,
) -> list[Path]:
    p = resolve_params(KeyframeParams, {}, None, overrides)
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    sink = KeyframeSink(output_dir, Path(input_path).stem, p)
    config = build_config(inputs=[InputSpec(path=input_path, kind=MediaKind.VIDEO)])
    run_recipe(RecipePlan(name="keyframes", config=config, frame_sink=sink), progress=progress)
    logger.info(
        "[recipe:keyframes] Saved %d of %d keyframe(s) to %s", len(sink.written), sink.keyframes_seen, output_dir
    )
    return sink.written
