"""
Dynamics processing: limiter, gate, compressor and level normalization.

Level normalization has three modes:

- ``peak``: measure the sample peak in an analysis pass, then apply the gain
  that moves it to the target (dBFS).
- ``rms``: same, on the RMS level. This is a plain RMS level, not a loudness
  measurement.
- ``loudness``: EBU R128 integrated loudness through the ``loudnorm`` filter,
  targeting LUFS and a true-peak ceiling.
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import numpy as np
from pydantic import BaseModel, Field

from media_cookbook.errors import BadParameterError
from media_cookbook.kernel.driver import PipelineStats, ProgressCallback, stdout_progress
from media_cookbook.kernel.streams import StreamDescriptor
from media_cookbook.recipes.audio_effects import AudioEffect
from media_cookbook.recipes.base import (
    RecipePlan,
    audio_filter_plan,
    build_config,
    fmt,
    probe_stream,
    resolve_params,
    run_recipe,
)
from media_cookbook.schemas import FilterGraphSpec, InputSpec, MediaKind

logger = logging.getLogger(__name__)


# =============================================================================
# Limiter
# =============================================================================


class LimiterParams(BaseModel):
    threshold: float = Field(-1.0, ge=-24, le=0, description="Limit level in dBFS.")
    attack: float = Field(5.0, ge=0.1, le=80, description="Attack in ms.")
    lookahead: float | None = Field(
        None, ge=0.1, le=80, description="Lookahead in ms; the limiter's attack window, overrides attack."
    )
    release: float = Field(50.0, ge=1, le=8000, description="Release in ms.")
    ceiling: float = Field(-0.1, ge=-20, le=0, description="Output ceiling in dBFS.")
    input_gain: float = Field(0.0, ge=-36, le=36, description="Gain before limiting in dB.")

    @property
    def attack_window(self) -> float:
        return self.lookahead if self.lookahead is not None else self.attack


LIMITER_PRESETS = {
    "mastering": dict(threshold=-1.0, attack=5.0, release=50.0, lookahead=5.0, ceiling=-0.1),
    "broadcast": dict(threshold=-2.0, attack=3.0, release=100.0, lookahead=8.0, ceiling=-1.0),
    "streaming": dict(threshold=-1.5, attack=4.0, release=75.0, lookahead=6.0, ceiling=-0.5),
    "podcast": dict(threshold=-3.0, attack=10.0, release=150.0, lookahead=5.0, ceiling=-1.0),
    "aggressive": dict(threshold=-0.5, attack=2.0, release=30.0, lookahead=10.0, ceiling=-0.05),
    "gentle": dict(threshold=-3.0, attack=15.0, release=200.0, lookahead=3.0, ceiling=-1.5),
}


def build_limiter(p: LimiterParams, source: StreamDescriptor) -> FilterGraphSpec:
    # alimiter's attack is its lookahead buffer; level=1 brings the limited signal back to 0 dBFS
    args = f"limit={fmt(p.threshold)}dB:attack={fmt(p.attack_window)}:release={fmt(p.release)}:level=1"
    if p.input_gain:
        args = f"level_in={fmt(p.input_gain)}dB:" + args
    nodes = [f"alimiter={args}"]
    if p.ceiling:
        nodes.append(f"volume={fmt(p.ceiling)}dB")
    return FilterGraphSpec(description=",".join(nodes))


# =============================================================================
# Gate
# =============================================================================


class GateParams(BaseModel):
    threshold: float = Field(-40.0, ge=-90, le=0, description="Gate opens above this level (dBFS).")
    ratio: float = Field(10.0, ge=1, le=9000)
    attack: float = Field(10.0, ge=0.01, le=9000, description="Attack in ms.")
    release: float = Field(100.0, ge=0.01, le=9000, description="Release in ms.")
    knee: float = Field(2.0, ge=1, le=8)
    range: float = Field(-80.0, ge=-96, le=0, description="Attenuation when closed, in dB.")


GATE_PRESETS = {
    "vocal": dict(threshold=-35.0, ratio=10.0, attack=5.0, release=100.0, knee=2.0, range=-80.0),
    "podcast": dict(threshold=-40.0, ratio=8.0, attack=10.0, release=150.0, knee=3.0, range=-70.0),
    "drum": dict(threshold=-30.0, ratio=15.0, attack=0.5, release=50.0, knee=1.0, range=-90.0),
    "guitar": dict(threshold=-45.0, ratio=10.0, attack=10.0, release=200.0, knee=2.5, range=-80.0),
    "gentle": dict(threshold=-50.0, ratio=5.0, attack=20.0, release=300.0, knee=4.0, range=-60.0),
    "aggressive": dict(threshold=-25.0, ratio=20.0, attack=2.0, release=50.0, knee=1.0, range=-96.0),
}


def build_gate(p: GateParams, source: StreamDescriptor) -> FilterGraphSpec:
    return FilterGraphSpec(
        description=(
            f"agate=threshold={fmt(p.threshold)}dB:ratio={fmt(p.ratio)}:attack={fmt(p.attack)}:"
            f"release={fmt(p.release)}:knee={fmt(p.knee)}:range={fmt(p.range)}dB"
        )
    )


# =============================================================================
# Compressor
# =============================================================================


class CompressorParams(BaseModel):
    threshold: float = Field(-18.0, ge=-60, le=0, description="Compression starts above this level (dBFS).")
    ratio: float = Field(3.0, ge=1, le=20)
    attack: float = Field(15.0, ge=0.01, le=2000, description="Attack in ms.")
    release: float = Field(200.0, ge=0.01, le=9000, description="Release in ms.")
    makeup: float = Field(0.0, ge=0, le=36, description="Makeup gain in dB.")
    knee: float = Field(2.0, ge=1, le=8)


COMPRESSOR_PRESETS = {
    "podcast": dict(threshold=-18.0, ratio=3.0, attack=15.0, release=200.0, makeup=3.0, knee=2.0),
    "broadcast": dict(threshold=-12.0, ratio=4.0, attack=10.0, release=150.0, makeup=4.0, knee=1.5),
    "music": dict(threshold=-24.0, ratio=2.5, attack=25.0, release=300.0, makeup=2.0, knee=3.5),
    "mastering": dict(threshold=-8.0, ratio=1.5, attack=30.0, release=400.0, makeup=0.0, knee=4.0),
    "heavy": dict(threshold=-15.0, ratio=8.0, attack=5.0, release=100.0, makeup=6.0, knee=1.0),
    "limiter": dict(threshold=-6.0, ratio=20.0, attack=0.5, release=50.0, makeup=3.0, knee=1.0),
}


def build_compressor(p: CompressorParams, source: StreamDescriptor) -> FilterGraphSpec:
    return FilterGraphSpec(
        description=(
            f"acompressor=threshold={fmt(p.threshold)}dB:ratio={fmt(p.ratio)}:attack={fmt(p.attack)}:"
            f"release={fmt(p.release)}:makeup={fmt(p.makeup)}dB:knee={fmt(p.knee)}"
        )
    )


LIMITER = AudioEffect("limiter", LimiterParams, build_limiter, LIMITER_PRESETS, "Brickwall limiter with lookahead")
GATE = AudioEffect("gate", GateParams, build_gate, GATE_PRESETS, "Noise gate")
COMPRESSOR = AudioEffect(
    "compressor", CompressorParams, build_compressor, COMPRESSOR_PRESETS, "Dynamic range compressor"
)


# =============================================================================
# Normalization
# =============================================================================


class NormalizeParams(BaseModel):
    mode: Literal["peak", "rms", "loudness"] = "peak"
    target: float | None = Field(
        None, ge=-70, le=0, description="dBFS for peak/rms, LUFS for loudness. Defaults per mode."
    )
    true_peak: float = Field(-1.5, ge=-9, le=0, description="True-peak ceiling in dBTP (loudness mode).")
    loudness_range: float = Field(11.0, ge=1, le=50, description="Target loudness range in LU (loudness mode).")

    @property
    def effective_target(self) -> float:
        if self.target is not None:
            return self.target
        return {"peak": -1.0, "rms": -20.0, "loudness": -16.0}[self.mode]


@dataclass(slots=True)
class LevelMeter:
    """Frame sink accumulating peak and RMS over float samples."""

    peak: float = 0.0
    sum_squares: float = 0.0
    count: int = 0

    def __call__(self, frame) -> None:
        samples = frame.to_ndarray().astype(np.float64)
        if samples.size == 0:
            return
        self.peak = max(self.peak, float(np.max(np.abs(samples))))
        self.sum_squares += float(np.sum(samples * samples))
        self.count += samples.size

    @property
    def peak_db(self) -> float:
        return 20 * math.log10(self.peak) if self.peak > 0 else -math.inf

    @property
    def rms_db(self) -> float:
        if not self.count or self.sum_squares == 0:
            return -math.inf
        return 20 * math.log10(math.sqrt(self.sum_squares / self.count))


def measure_levels(input_path: str | Path, progress: ProgressCallback | None = None) -> LevelMeter:
    """Analysis pass: decode the first audio stream as float samples and measure its level."""
    meter = LevelMeter()
    config = build_config(
        inputs=[InputSpec(path=input_path, kind=MediaKind.AUDIO)],
        filter=FilterGraphSpec(description="anull", sample_format="flt"),
    )
    run_recipe(RecipePlan(name="normalize:measure", config=config, frame_sink=meter), progress=progress)
    logger.info("[recipe:normalize] Measured peak %.2f dBFS, RMS %.2f dBFS", meter.peak_db, meter.rms_db)
    return meter


def normalize_plan(
    input_path: str | Path, output_path: str | Path, params: NormalizeParams, meter: LevelMeter | None = None
):
    source = probe_stream(input_path, MediaKind.AUDIO)
    if params.mode == "loudness":
        # loudnorm upsamples internally; pin the sink back to the input rate
        spec = FilterGraphSpec(
            description=(
                f"loudnorm=I={fmt(params.effective_target)}:TP={fmt(params.true_peak)}:"
                f"LRA={fmt(params.loudness_range)}"
            ),
            sample_rate=source.sample_rate,
        )
        return audio_filter_plan("normalize", input_path, output_path, spec)

    if meter is None:
        raise BadParameterError(f"{params.mode} normalization needs a level measurement")
    measured = meter.peak_db if params.mode == "peak" else meter.rms_db
    if math.isinf(measured):
        raise BadParameterError("input is silent; there is no level to normalize")
    gain = params.effective_target - measured
    target = params.effective_target
    logger.info("[recipe:normalize] Applying %+.2f dB (%s %.2f -> %.2f dBFS)", gain, params.mode, measured, target)
    return audio_filter_plan("normalize", input_path, output_path, FilterGraphSpec(description=f"volume={fmt(gain)}dB"))


def normalize(
    input_path: str | Path,
    output_path: str | Path,
    progress: ProgressCallback | None = stdout_progress,
    **overrides,
) -> PipelineStats:
    params = resolve_params(NormalizeParams, {}, None, overrides)
    meter = None
    if params.mode != "loudness":
        meter = measure_levels(input_path)
    return run_recipe(normalize_plan(input_path, output_path, params, meter), progress=progress)
