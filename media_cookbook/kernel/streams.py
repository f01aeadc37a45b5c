"""
Stream metadata and timestamp arithmetic shared by the pipeline stages.
"""

from dataclasses import dataclass
from fractions import Fraction

import av

from media_cookbook.const import CHANNEL_LAYOUT_MAP
from media_cookbook.schemas import MediaKind


@dataclass(slots=True, frozen=True)
class VideoPadParams:
    """Format of the frames entering a video source pad."""

    width: int
    height: int
    pixel_format: str
    time_base: Fraction
    sample_aspect_ratio: Fraction = Fraction(1, 1)
    frame_rate: Fraction | None = None

    def buffer_args(self) -> str:
        tb = self.time_base
        sar = self.sample_aspect_ratio or Fraction(1, 1)
        args = (
            f"video_size={self.width}x{self.height}:"
            f"pix_fmt={self.pixel_format}:"
            f"time_base={tb.numerator}/{tb.denominator}:"
            f"pixel_aspect={sar.numerator}/{sar.denominator}"
        )
        if self.frame_rate:
            args += f":frame_rate={self.frame_rate.numerator}/{self.frame_rate.denominator}"
        return args

    def matches(self, frame: av.VideoFrame) -> bool:
        return (
            isinstance(frame, av.VideoFrame)
            and frame.width == self.width
            and frame.height == self.height
            and frame.format.name == self.pixel_format
        )

    @classmethod
    def from_frame(cls, frame: av.VideoFrame, time_base: Fraction) -> "VideoPadParams":
        return cls(
            width=frame.width,
            height=frame.height,
            pixel_format=frame.format.name,
            time_base=frame.time_base or time_base,
            sample_aspect_ratio=getattr(frame, "sample_aspect_ratio", None) or Fraction(1, 1),
        )


@dataclass(slots=True, frozen=True)
class AudioPadParams:
    """Format of the frames entering an audio source pad."""

    sample_rate: int
    sample_format: str
    channel_layout: str
    time_base: Fraction

    def buffer_args(self) -> str:
        tb = self.time_base
        return (
            f"time_base={tb.numerator}/{tb.denominator}:"
            f"sample_rate={self.sample_rate}:"
            f"sample_fmt={self.sample_format}:"
            f"channel_layout={self.channel_layout}"
        )

    def matches(self, frame: av.AudioFrame) -> bool:
        return (
            isinstance(frame, av.AudioFrame)
            and frame.sample_rate == self.sample_rate
            and frame.format.name == self.sample_format
            and frame.layout.name == self.channel_layout
        )

    @classmethod
    def from_frame(cls, frame: av.AudioFrame, time_base: Fraction) -> "AudioPadParams":
        return cls(
            sample_rate=frame.sample_rate,
            sample_format=frame.format.name,
            channel_layout=frame.layout.name,
            time_base=frame.time_base or time_base,
        )


PadParams = VideoPadParams | AudioPadParams


@dataclass(slots=True, frozen=True)
class StreamDescriptor:
    """Immutable description of one input stream, read at open time."""

    index: int
    kind: MediaKind
    codec_name: str
    time_base: Fraction
    # Video-specific
    width: int = 0
    height: int = 0
    pixel_format: str | None = None
    sample_aspect_ratio: Fraction | None = None
    frame_rate: Fraction | None = None
    # Audio-specific
    sample_rate: int = 0
    channel_layout: str | None = None
    sample_format: str | None = None
    # Timing
    duration_seconds: float = 0.0

    def pad_params(self) -> PadParams:
        """Source pad parameters for a filter graph fed from this stream."""
        if self.kind is MediaKind.VIDEO:
            return VideoPadParams(
                width=self.width,
                height=self.height,
                pixel_format=self.pixel_format,
                time_base=self.time_base,
                sample_aspect_ratio=self.sample_aspect_ratio or Fraction(1, 1),
                frame_rate=self.frame_rate,
            )
        if self.kind is MediaKind.AUDIO:
            return AudioPadParams(
                sample_rate=self.sample_rate,
                sample_format=self.sample_format,
                channel_layout=self.channel_layout,
                time_base=self.time_base,
            )
        raise ValueError(f"no filter pad parameters for {self.kind.value} streams")


def pad_params_for(frame: av.VideoFrame | av.AudioFrame, time_base: Fraction) -> PadParams:
    if isinstance(frame, av.VideoFrame):
        return VideoPadParams.from_frame(frame, time_base)
    return AudioPadParams.from_frame(frame, time_base)


def rescale(value: int | None, src: Fraction, dst: Fraction) -> int | None:
    """Rescale a timestamp between time bases, rounding to nearest (ties away from zero)."""
    if value is None:
        return None
    scaled = Fraction(value) * src / dst
    if scaled >= 0:
        return int(scaled + Fraction(1, 2))
    return -int(-scaled + Fraction(1, 2))


def to_seconds(value: int | None, time_base: Fraction | None) -> float | None:
    if value is None or time_base is None:
        return None
    return float(value * time_base)


def ordered_layout(name: str) -> str:
    """Replace an unspecified-order layout ("2 channels") with the default layout for its channel count."""
    count, _, suffix = name.partition(" ")
    if suffix in ("channel", "channels") and count.isdigit():
        return CHANNEL_LAYOUT_MAP.get(int(count), name)
    return name
