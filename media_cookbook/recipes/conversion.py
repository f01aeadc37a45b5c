import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from media_cookbook.const import CHANNEL_LAYOUT_MAP
from media_cookbook.errors import BadParameterError
from media_cookbook.kernel.converters import Resampler
from media_cookbook.kernel.driver import PipelineStats, ProgressCallback, stdout_progress
from media_cookbook.kernel.resources import ResourceRegistry
from media_cookbook.recipes.base import RecipePlan, build_config, probe_stream, resolve_params, run_recipe, validated
from media_cookbook.schemas import EncoderSpec, FilterGraphSpec, InputSpec, MediaKind
from media_cookbook.utils.wav import WavWriter

logger = logging.getLogger(__name__)


def channel_layout(channels: int | None) -> str | None:
    if channels is None:
        return None
    if channels not in CHANNEL_LAYOUT_MAP:
        raise BadParameterError(f"no standard layout for {channels} channels (use {sorted(CHANNEL_LAYOUT_MAP)})")
    return CHANNEL_LAYOUT_MAP[channels]


class AudioConvertParams(BaseModel):
    codec: str | None = Field(None, description="Audio encoder; the output format's default when omitted.")
    sample_rate: int | None = Field(None, ge=8000, le=192000)
    channels: int | None = Field(None, ge=1, le=8)
    sample_format: str | None = Field(None, description="Encoder sample format, e.g. s16 or fltp.")
    bitrate: str | None = Field(None, description="Target bitrate for lossy codecs, e.g. 192k.")


def convert_audio_plan(input_path: str | Path, output_path: str | Path, **overrides) -> RecipePlan:
    """Re-encode the first audio stream; the container follows the output extension."""
    p = resolve_params(AudioConvertParams, {}, None, overrides)
    return _audio_encode_plan("convert-audio", input_path, output_path, p)


def _audio_encode_plan(name: str, input_path, output_path, p: AudioConvertParams) -> RecipePlan:
    encoder = validated(
        EncoderSpec,
        kind=MediaKind.AUDIO,
        codec=p.codec,
        bit_rate=p.bitrate,
        sample_rate=p.sample_rate,
        channel_layout=channel_layout(p.channels),
        sample_format=p.sample_format,
    )
    config = build_config(
        inputs=[InputSpec(path=input_path, kind=MediaKind.AUDIO)],
        output=output_path,
        encoder=encoder,
    )
    return RecipePlan(name=name, config=config)


class ResampleParams(AudioConvertParams):
    @model_validator(mode="after")
    def _something_to_change(self):
        if self.sample_rate is None and self.channels is None and self.sample_format is None:
            raise ValueError("give a sample rate, a channel count or a sample format")
        return self


def resample_plan(input_path: str | Path, output_path: str | Path, **overrides) -> RecipePlan:
    """Change sample rate, channel layout and/or sample format through the kernel resampler."""
    p = resolve_params(ResampleParams, {}, None, overrides)
    return _audio_encode_plan("resample", input_path, output_path, p)


class MixParams(BaseModel):
    duration: Literal["longest", "shortest", "first"] = "longest"
    weights: list[float] | None = Field(None, description="Per-input weights, in input order.")
    normalize: bool = Field(True, description="Scale inputs so the mix does not clip.")


def mix_plan(input_paths: list[str | Path], output_path: str | Path, **overrides) -> RecipePlan:
    """Mix two or more audio inputs with ``amix`` on pads ``in0``, ``in1``, ..."""
    p = resolve_params(MixParams, {}, None, overrides)
    if len(input_paths) < 2:
        raise BadParameterError("mixing needs at least two inputs")
    if p.weights is not None and len(p.weights) != len(input_paths):
        raise BadParameterError(f"got {len(p.weights)} weights for {len(input_paths)} inputs")

    pads = "".join(f"[in{i}]" for i in range(len(input_paths)))
    args = f"inputs={len(input_paths)}:duration={p.duration}:normalize={int(p.normalize)}"
    if p.weights is not None:
        args += ":weights='" + " ".join(f"{w:g}" for w in p.weights) + "'"
    config = build_config(
        inputs=[InputSpec(path=path, kind=MediaKind.AUDIO) for path in input_paths],
        output=output_path,
        encoder=EncoderSpec(kind=MediaKind.AUDIO),
        filter=FilterGraphSpec(description=f"{pads}amix={args}[out]"),
    )
    return RecipePlan(name="mix", config=config)


# =============================================================================
# Raw PCM to WAV
# =============================================================================


class WavSink:
    """Frame sink converting decoded audio to interleaved s16 and appending it to a ``WavWriter``."""

    def __init__(self, writer: WavWriter, resampler: Resampler) -> None:
        self.writer = writer
        self.resampler = resampler

    def __call__(self, frame) -> None:
        for converted in self.resampler.convert(frame):
            self.writer.write_frame(converted)

    def flush(self) -> None:
        for converted in self.resampler.flush():
            self.writer.write_frame(converted)


class WavParams(BaseModel):
    sample_rate: int | None = Field(None, ge=8000, le=192000)
    channels: int | None = Field(None, ge=1, le=8)


def to_wav(
    input_path: str | Path,
    output_path: str | Path,
    progress: ProgressCallback | None = stdout_progress,
    **overrides,
) -> PipelineStats:
    """Decode the first audio stream to 16-bit PCM and write it with the WAV serializer."""
    p = resolve_params(WavParams, {}, None, overrides)
    source = probe_stream(input_path, MediaKind.AUDIO)
    rate = p.sample_rate or source.sample_rate
    layout = channel_layout(p.channels) or source.channel_layout or "stereo"
    channels = p.channels or next((n for n, name in CHANNEL_LAYOUT_MAP.items() if name == layout), None)
    if channels is None:
        raise BadParameterError(f"cannot write WAV for channel layout '{layout}'; pass a channel count")

    config = build_config(inputs=[InputSpec(path=input_path, kind=MediaKind.AUDIO)])
    output_path = Path(output_path)
    with ResourceRegistry() as registry:
        writer = WavWriter(output_path, channels=channels, sample_rate=rate)
        try:
            sink = WavSink(writer, Resampler(registry, "s16", layout, rate))
            stats = run_recipe(RecipePlan(name="to-wav", config=config, frame_sink=sink), progress=progress)
            sink.flush()
        except BaseException:
            writer.close()
            output_path.unlink(missing_ok=True)
            raise
        writer.close()
    return stats
