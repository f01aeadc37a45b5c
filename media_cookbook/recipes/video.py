"""
Single-pass video recipes: re-encode, geometry, speed and overlays.

Every recipe validates its parameters into a pydantic model, probes the
source where the graph depends on it, and returns a ``RecipePlan``. Audio
is stream-copied from the first input when it has any and the recipe
keeps the original timing.
"""

import logging
import math
from fractions import Fraction
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from media_cookbook.configs import settings
from media_cookbook.errors import BadParameterError, CodecUnavailableError
from media_cookbook.kernel.filter_dsl import escape_value
from media_cookbook.kernel.hwaccel import get_hw_capability, probe_codec, require_device, resolve_video_encoder
from media_cookbook.recipes.audio_effects import atempo_chain
from media_cookbook.recipes.base import (
    RecipePlan,
    audio_filter_plan,
    build_config,
    fmt,
    has_stream,
    probe_stream,
    resolve_params,
    validated,
)
from media_cookbook.schemas import EncoderSpec, FilterGraphSpec, InputSpec, MediaKind, TimestampMode

logger = logging.getLogger(__name__)

Position = Literal["top-left", "top-right", "bottom-left", "bottom-right", "center"]


def video_encoder(
    codec: str | None = None,
    bitrate: str | int | None = None,
    frame_rate: float | None = None,
    prefer_gpu: bool = False,
    **extra,
) -> EncoderSpec:
    """
    Encoder settings for a video re-encode.

    An explicit *codec* must exist; otherwise the configured default is used,
    falling back through the H.264 family to ``mpeg4``.
    """
    if codec is not None:
        if not probe_codec(codec, "w"):
            raise CodecUnavailableError(f"no encoder named '{codec}'")
        name = codec
    elif prefer_gpu:
        name = get_hw_capability().h264_encoder
    else:
        name = resolve_video_encoder()
    return validated(
        EncoderSpec,
        kind=MediaKind.VIDEO,
        codec=name,
        bit_rate=bitrate or settings.default_video_bitrate,
        frame_rate=frame_rate,
        gop_size=settings.default_gop_size,
        max_b_frames=settings.default_max_b_frames,
        **extra,
    )


def video_filter_plan(
    name: str,
    input_path: str | Path,
    output_path: str | Path,
    description: str | None,
    encoder: EncoderSpec | None = None,
    extra_inputs: tuple[str | Path, ...] = (),
    copy_audio: bool = True,
    **config,
) -> RecipePlan:
    inputs = [InputSpec(path=input_path, kind=MediaKind.VIDEO)]
    inputs += [InputSpec(path=path, kind=MediaKind.VIDEO) for path in extra_inputs]
    copy_kinds = [MediaKind.AUDIO] if copy_audio and has_stream(input_path, MediaKind.AUDIO) else []
    plan_config = build_config(
        inputs=inputs,
        output=output_path,
        encoder=encoder or video_encoder(),
        filter=FilterGraphSpec(description=description) if description else None,
        copy_kinds=copy_kinds,
        **config,
    )
    return RecipePlan(name=name, config=plan_config)


def overlay_position(position: Position, margin: int) -> str:
    """``x:y`` expressions for overlay (``W``/``H`` main size, ``w``/``h`` overlay size)."""
    m = margin
    return {
        "top-left": f"{m}:{m}",
        "top-right": f"W-w-{m}:{m}",
        "bottom-left": f"{m}:H-h-{m}",
        "bottom-right": f"W-w-{m}:H-h-{m}",
        "center": "(W-w)/2:(H-h)/2",
    }[position]


def _text_position(position: Position, margin: int) -> str:
    # drawtext names the frame size w/h and the rendered text size tw/th
    m = margin
    x, y = {
        "top-left": (f"{m}", f"{m}"),
        "top-right": (f"w-tw-{m}", f"{m}"),
        "bottom-left": (f"{m}", f"h-th-{m}"),
        "bottom-right": (f"w-tw-{m}", f"h-th-{m}"),
        "center": ("(w-tw)/2", "(h-th)/2"),
    }[position]
    return f"x={x}:y={y}"


# =============================================================================
# Transcode
# =============================================================================


class TranscodeParams(BaseModel):
    codec: str | None = Field(None, description="Video encoder; the configured default when omitted.")
    bitrate: str = Field(settings.default_video_bitrate, description="Target bitrate, e.g. 2M or 800k.")
    width: int | None = Field(None, ge=16, le=8192)
    height: int | None = Field(None, ge=16, le=8192)
    fps: float | None = Field(None, gt=0, le=240)
    start: float | None = Field(None, ge=0, description="Seconds to skip.")
    duration: float | None = Field(None, gt=0, description="Seconds to keep.")
    copy_audio: bool = True
    prefer_gpu: bool = settings.transcode_prefer_gpu


def transcode_plan(input_path: str | Path, output_path: str | Path, **overrides) -> RecipePlan:
    """Re-encode the first video stream, stream-copying the audio."""
    p = resolve_params(TranscodeParams, {}, None, overrides)
    encoder = video_encoder(p.codec, p.bitrate, p.fps, p.prefer_gpu, width=p.width, height=p.height)
    return video_filter_plan(
        "transcode",
        input_path,
        output_path,
        None,
        encoder=encoder,
        copy_audio=p.copy_audio,
        start_time=p.start,
        duration=p.duration,
    )


class HwTranscodeParams(BaseModel):
    device: str = Field("cuda", description="Hardware device type used for decoding.")
    codec: str | None = Field(None, description="Encoder; the detected hardware H.264 encoder when omitted.")
    bitrate: str = Field(settings.default_video_bitrate)


def hw_transcode_plan(input_path: str | Path, output_path: str | Path, **overrides) -> RecipePlan:
    """Decode on a hardware device and encode with the matching hardware encoder when one exists."""
    p = resolve_params(HwTranscodeParams, {}, None, overrides)
    require_device(p.device)
    cap = get_hw_capability()
    codec = p.codec
    if codec is None and cap.device_type == p.device:
        codec = cap.h264_encoder
    if codec is None:
        logger.warning("[recipe:hw-transcode] No hardware encoder for %s, encoding in software", p.device)
    encoder = video_encoder(codec, p.bitrate)
    copy_kinds = [MediaKind.AUDIO] if has_stream(input_path, MediaKind.AUDIO) else []
    config = build_config(
        inputs=[InputSpec(path=input_path, kind=MediaKind.VIDEO, hwaccel=p.device)],
        output=output_path,
        encoder=encoder,
        copy_kinds=copy_kinds,
    )
    return RecipePlan(name="hw-transcode", config=config)


# =============================================================================
# Geometry
# =============================================================================


class ResizeParams(BaseModel):
    width: int | None = Field(None, ge=16, le=8192, description="Target width; derived from the aspect when omitted.")
    height: int | None = Field(None, ge=16, le=8192, description="Target height; derived from the aspect when omitted.")
    codec: str | None = None
    bitrate: str = Field(settings.default_video_bitrate)

    @model_validator(mode="after")
    def _one_dimension(self):
        if self.width is None and self.height is None:
            raise ValueError("give a width, a height or both")
        return self


def resize_plan(input_path: str | Path, output_path: str | Path, **overrides) -> RecipePlan:
    p = resolve_params(ResizeParams, {}, None, overrides)
    # -2 keeps the aspect ratio and rounds to an even size
    w = p.width if p.width is not None else -2
    h = p.height if p.height is not None else -2
    return video_filter_plan("resize", input_path, output_path, f"scale={w}:{h}", video_encoder(p.codec, p.bitrate))


class CropParams(BaseModel):
    x: int = Field(0, ge=0)
    y: int = Field(0, ge=0)
    width: int = Field(..., ge=2)
    height: int = Field(..., ge=2)
    codec: str | None = None
    bitrate: str = Field(settings.default_video_bitrate)


def crop_plan(input_path: str | Path, output_path: str | Path, **overrides) -> RecipePlan:
    p = resolve_params(CropParams, {}, None, overrides)
    source = probe_stream(input_path, MediaKind.VIDEO)
    if p.x + p.width > source.width or p.y + p.height > source.height:
        raise BadParameterError(
            f"crop {p.width}x{p.height}+{p.x}+{p.y} does not fit the {source.width}x{source.height} frame"
        )
    description = f"crop={p.width}:{p.height}:{p.x}:{p.y}"
    return video_filter_plan("crop", input_path, output_path, description, video_encoder(p.codec, p.bitrate))


_TRANSPOSE = {90: "transpose=clock", 180: "transpose=clock,transpose=clock", 270: "transpose=cclock"}


class RotateParams(BaseModel):
    angle: float = Field(90.0, ge=-360, le=360, description="Clockwise rotation in degrees.")
    hflip: bool = False
    vflip: bool = False
    codec: str | None = None
    bitrate: str = Field(settings.default_video_bitrate)


def rotate_plan(input_path: str | Path, output_path: str | Path, **overrides) -> RecipePlan:
    p = resolve_params(RotateParams, {}, None, overrides)
    nodes = []
    angle = p.angle % 360
    if angle in _TRANSPOSE:
        nodes.append(_TRANSPOSE[int(angle)])
    elif angle:
        rad = fmt(math.radians(angle))
        nodes.append(f"rotate={rad}:ow=rotw({rad}):oh=roth({rad}):c=black")
    if p.hflip:
        nodes.append("hflip")
    if p.vflip:
        nodes.append("vflip")
    if not nodes:
        raise BadParameterError("nothing to do: angle is 0 and no flip requested")
    return video_filter_plan("rotate", input_path, output_path, ",".join(nodes), video_encoder(p.codec, p.bitrate))


# =============================================================================
# Speed
# =============================================================================


class SpeedParams(BaseModel):
    factor: float = Field(..., ge=0.25, le=4, description="Playback speed; 2 is twice as fast.")
    codec: str | None = None
    bitrate: str = Field(settings.default_video_bitrate)


def speed_plan(input_path: str | Path, output_path: str | Path, **overrides) -> RecipePlan:
    """
    Change playback speed.

    Files with video get their video retimed and the audio dropped. Audio-only
    files are tempo-stretched without changing pitch.
    """
    p = resolve_params(SpeedParams, {}, None, overrides)
    if not has_stream(input_path, MediaKind.VIDEO):
        spec = FilterGraphSpec(description=",".join(atempo_chain(p.factor)))
        return audio_filter_plan("speed", input_path, output_path, spec)

    source = probe_stream(input_path, MediaKind.VIDEO)
    rate = Fraction(source.frame_rate or settings.default_frame_rate)
    encoder = video_encoder(p.codec, p.bitrate, frame_rate=float(rate * Fraction(p.factor)))
    description = f"setpts={fmt(1 / p.factor)}*PTS"
    return video_filter_plan("speed", input_path, output_path, description, encoder, copy_audio=False)


# =============================================================================
# Overlays
# =============================================================================


class WatermarkParams(BaseModel):
    text: str | None = None
    image: Path | None = None
    position: Position = "bottom-right"
    margin: int = Field(10, ge=0, le=1000)
    opacity: float = Field(0.5, ge=0, le=1)
    font_size: int = Field(24, ge=6, le=400)
    color: str = "white"
    codec: str | None = None
    bitrate: str = Field(settings.default_video_bitrate)

    @model_validator(mode="after")
    def _one_source(self):
        if (self.text is None) == (self.image is None):
            raise ValueError("give either a text or an image watermark")
        return self


def watermark_plan(input_path: str | Path, output_path: str | Path, **overrides) -> RecipePlan:
    p = resolve_params(WatermarkParams, {}, None, overrides)
    encoder = video_encoder(p.codec, p.bitrate)
    if p.text is not None:
        description = (
            f"drawtext=text={escape_value(p.text)}:fontsize={p.font_size}:"
            f"fontcolor={p.color}@{fmt(p.opacity)}:{_text_position(p.position, p.margin)}"
        )
        return video_filter_plan("watermark", input_path, output_path, description, encoder)

    if not p.image.is_file():
        raise BadParameterError(f"watermark image '{p.image}' does not exist")
    description = (
        f"[in1]format=rgba,colorchannelmixer=aa={fmt(p.opacity)}[wm];"
        f"[in0][wm]overlay={overlay_position(p.position, p.margin)}[out]"
    )
    return video_filter_plan("watermark", input_path, output_path, description, encoder, extra_inputs=(p.image,))


class PipParams(BaseModel):
    scale: float = Field(0.25, gt=0, le=1, description="Inset size relative to its own frame.")
    position: Position = "top-left"
    margin: int = Field(10, ge=0, le=1000)
    codec: str | None = None
    bitrate: str = Field(settings.default_video_bitrate)


def pip_plan(main_path: str | Path, inset_path: str | Path, output_path: str | Path, **overrides) -> RecipePlan:
    """Picture-in-picture: *inset_path* scaled down over *main_path*, ending with the main video."""
    p = resolve_params(PipParams, {}, None, overrides)
    description = (
        f"[in1]scale=iw*{fmt(p.scale)}:-2[pip];"
        f"[in0][pip]overlay={overlay_position(p.position, p.margin)}:eof_action=pass[out]"
    )
    return video_filter_plan(
        "pip",
        main_path,
        output_path,
        description,
        video_encoder(p.codec, p.bitrate),
        extra_inputs=(inset_path,),
        copy_audio=False,
        timestamp_mode=TimestampMode.COUNTER,
    )


# =============================================================================
# Thumbnail
# =============================================================================

IMAGE_ENCODERS = {
    ".png": ("png", None),
    ".jpg": ("mjpeg", "yuvj420p"),
    ".jpeg": ("mjpeg", "yuvj420p"),
    ".bmp": ("bmp", None),
}


class ThumbnailParams(BaseModel):
    time: float = Field(0.0, ge=0, description="Timestamp of the frame to grab, in seconds.")
    width: int | None = Field(None, ge=16, le=8192, description="Scale to this width keeping the aspect.")


def thumbnail_plan(input_path: str | Path, output_path: str | Path, **overrides) -> RecipePlan:
    p = resolve_params(ThumbnailParams, {}, None, overrides)
    suffix = Path(output_path).suffix.lower()
    if suffix not in IMAGE_ENCODERS:
        raise BadParameterError(f"unsupported image type '{suffix}' (use {', '.join(IMAGE_ENCODERS)})")
    source = probe_stream(input_path, MediaKind.VIDEO)
    if source.duration_seconds and p.time >= source.duration_seconds:
        raise BadParameterError(f"time {p.time}s is past the end of the video ({source.duration_seconds:.2f}s)")

    codec, pixel_format = IMAGE_ENCODERS[suffix]
    config = build_config(
        inputs=[InputSpec(path=input_path, kind=MediaKind.VIDEO)],
        output=output_path,
        output_format="image2",
        output_options={"update": "1"},
        encoder=EncoderSpec(kind=MediaKind.VIDEO, codec=codec, pixel_format=pixel_format),
        filter=FilterGraphSpec(description=f"scale={p.width}:-2") if p.width else None,
        start_time=p.time or None,
        max_frames=1,
        progress_every=0,
    )
    return RecipePlan(name="thumbnail", config=config)
