from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator


class MediaKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"
    SUBTITLE = "subtitle"


class TimestampMode(str, Enum):
    RESCALE = "rescale"  # Rescale each frame's own PTS into the encoder time base.
    COUNTER = "counter"  # Synthetic monotone timing (multi-input compositing).


def parse_bitrate(bitrate: str | int) -> int:
    """Parse a bitrate string like '4M', '2000k', '5000000' to int bits/s."""
    if isinstance(bitrate, int):
        return bitrate
    s = bitrate.strip().lower()
    if s.endswith("m"):
        return int(float(s[:-1]) * 1_000_000)
    if s.endswith("k"):
        return int(float(s[:-1]) * 1_000)
    return int(s)


class EncoderSpec(BaseModel):
    kind: MediaKind = Field(..., description="Media kind produced by the encoder.")
    codec: str | None = Field(
        None, description="Encoder name. If not provided, the output format's default codec is used."
    )
    bit_rate: int | None = Field(None, gt=0, description="Target bitrate in bits/s. Accepts '2M' / '800k'.")
    options: dict[str, str] = Field(default_factory=dict, description="Private encoder options.")
    # Video
    width: int | None = Field(None, gt=0, description="Output width. Inherited from the frames when omitted.")
    height: int | None = Field(None, gt=0, description="Output height. Inherited from the frames when omitted.")
    pixel_format: str | None = Field(None, description="Output pixel format override.")
    frame_rate: float | None = Field(None, gt=0, description="Output frame rate; the time base is its inverse.")
    gop_size: int | None = Field(None, ge=0, description="Keyframe interval in frames.")
    max_b_frames: int | None = Field(None, ge=0, description="Maximum consecutive B-frames.")
    # Audio
    sample_rate: int | None = Field(None, gt=0, description="Output sample rate override.")
    sample_format: str | None = Field(None, description="Output sample format override.")
    channel_layout: str | None = Field(None, description="Output channel layout override.")

    @field_validator("bit_rate", mode="before")
    @classmethod
    def _parse_bit_rate(cls, value):
        if value is None:
            return None
        return parse_bitrate(value)


class FilterGraphSpec(BaseModel):
    description: str = Field(..., min_length=1, description="Filter graph in the framework's DSL.")
    pixel_format: str | None = Field(None, description="Pixel format the sink must produce.")
    sample_format: str | None = Field(None, description="Sample format the sink must produce.")
    sample_rate: int | None = Field(None, gt=0, description="Sample rate the sink must produce.")
    channel_layout: str | None = Field(None, description="Channel layout the sink must produce.")
    frame_size: int | None = Field(None, gt=0, description="Fixed number of samples per audio frame at the sink.")


class InputSpec(BaseModel):
    path: Path = Field(..., description="Input media path.")
    kind: MediaKind = Field(MediaKind.VIDEO, description="Kind of the stream to decode from this input.")
    best: bool = Field(False, description="Use the framework's best-stream heuristic instead of the first match.")
    format: str | None = Field(None, description="Force an input format instead of probing.")
    options: dict[str, str] = Field(default_factory=dict, description="Demuxer options.")
    hwaccel: str | None = Field(None, description="Hardware device type to decode with (e.g. 'cuda').")


class PipelineConfig(BaseModel):
    inputs: list[InputSpec] = Field(..., min_length=1, description="Decoded inputs, bound to filter pads in order.")
    output: Path | None = Field(None, description="Output path. Not needed when frames go to a frame sink.")
    output_format: str | None = Field(None, description="Force a muxer instead of guessing from the extension.")
    output_options: dict[str, str] = Field(default_factory=dict, description="Muxer options.")
    encoder: EncoderSpec | None = Field(None, description="Encoder for the transcoded lane.")
    filter: FilterGraphSpec | None = Field(None, description="Optional filter graph between decoder and encoder.")
    copy_kinds: list[MediaKind] = Field(
        default_factory=list, description="Kinds stream-copied from the first input alongside the transcoded lane."
    )
    transcode: bool = Field(True, description="Whether the inputs are decoded at all. False for pure remuxing.")
    timestamp_mode: TimestampMode = TimestampMode.RESCALE
    start_time: float | None = Field(None, ge=0, description="Seek here before decoding (seconds).")
    duration: float | None = Field(None, gt=0, description="Stop after this many seconds of media.")
    max_frames: int | None = Field(None, gt=0, description="Stop after this many frames reach the encoder.")
    flush_on_eof: bool = Field(True, description="Run the decoder / filter / encoder drain phases.")
    progress_every: int | None = Field(
        None, ge=0, description="Report progress every N frames; 0 disables, None uses the settings default."
    )

    @model_validator(mode="after")
    def _check_outputs(self):
        if len(self.inputs) > 1 and self.filter is None:
            raise ValueError("multiple inputs require a filter graph to combine them")
        if self.encoder is not None and self.output is None:
            raise ValueError("an encoder requires an output path")
        if self.copy_kinds and self.output is None:
            raise ValueError("stream copy requires an output path")
        if not self.transcode and not self.copy_kinds:
            raise ValueError("nothing to do: transcode is disabled and no kinds are copied")
        return self
