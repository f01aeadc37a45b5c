"""
Audio effects expressed as filter graphs over the kernel.

Each effect is a parameter model, a preset table and a builder that turns
validated parameters (plus the probed input stream) into a ``FilterGraphSpec``.
``EffectFactory`` in ``recipes.factory`` looks them up by name.
"""

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from media_cookbook.kernel.streams import StreamDescriptor
from media_cookbook.recipes.base import fmt
from media_cookbook.schemas import FilterGraphSpec


@dataclass(slots=True, frozen=True)
class AudioEffect:
    name: str
    params: type[BaseModel]
    build: Callable[[Any, StreamDescriptor], FilterGraphSpec]
    presets: dict[str, dict[str, Any]] = field(default_factory=dict)
    summary: str = ""


def _split_values(text: str) -> list[float]:
    try:
        return [float(v) for v in text.split("|")]
    except ValueError:
        raise ValueError(f"'{text}' is not a '|'-separated list of numbers") from None


def _db_to_linear(db: float) -> float:
    return 10 ** (db / 20)


# =============================================================================
# Reverb
# =============================================================================


class ReverbParams(BaseModel):
    room_size: float = Field(0.5, ge=0, le=1, description="Room size; spaces the echo taps.")
    reverberance: float = Field(0.5, ge=0, le=1, description="Tail length; scales the tap decays.")
    hf_damping: float = Field(0.5, ge=0, le=1, description="High-frequency damping of the tail.")
    wet_gain: float = Field(-3.0, ge=-20, le=10, description="Reverb level in dB.")
    dry_gain: float = Field(0.0, ge=-20, le=10, description="Direct signal level in dB.")
    pre_delay: float = Field(0.0, ge=0, le=500, description="Delay before the reverb starts, in ms.")
    stereo_depth: float = Field(100.0, ge=0, le=100, description="Stereo width of the tail, in percent.")


REVERB_PRESETS = {
    "room": dict(room_size=0.3, reverberance=0.5, hf_damping=0.5, wet_gain=-5.0, pre_delay=20.0),
    "hall": dict(room_size=0.8, reverberance=0.7, hf_damping=0.5, wet_gain=-3.0, pre_delay=30.0),
    "plate": dict(room_size=0.5, reverberance=0.5, hf_damping=0.7, wet_gain=-4.0, pre_delay=5.0),
    "spring": dict(room_size=0.2, reverberance=0.6, hf_damping=0.3, wet_gain=-6.0, stereo_depth=50.0),
    "cathedral": dict(room_size=1.0, reverberance=0.84, hf_damping=0.7, wet_gain=-1.0, pre_delay=40.0),
    "chamber": dict(room_size=0.4, reverberance=0.6, hf_damping=0.4, wet_gain=-4.0, pre_delay=15.0, stereo_depth=80.0),
}

_REVERB_TAPS = 4


def build_reverb(p: ReverbParams, source: StreamDescriptor) -> FilterGraphSpec:
    base = 20 + 80 * p.room_size
    delays = [base * (i + 1) * (1 + 0.13 * i) for i in range(_REVERB_TAPS)]
    decays = [min(0.99, p.reverberance * 0.85**i) for i in range(_REVERB_TAPS)]
    in_gain = min(1.0, _db_to_linear(p.dry_gain))
    out_gain = min(1.0, _db_to_linear(p.wet_gain))

    nodes = []
    if p.pre_delay > 0:
        nodes.append(f"adelay=delays={int(p.pre_delay)}:all=1")
    nodes.append(
        "aecho={}:{}:{}:{}".format(
            fmt(in_gain),
            fmt(out_gain),
            "|".join(fmt(d) for d in delays),
            "|".join(fmt(d) for d in decays),
        )
    )
    nodes.append(f"lowpass=f={fmt(20000 - 16000 * p.hf_damping)}")
    if p.stereo_depth < 100 and source.channel_layout == "stereo":
        nodes.append(f"extrastereo=m={fmt(p.stereo_depth / 100)}")
    return FilterGraphSpec(description=",".join(nodes))


# =============================================================================
# Chorus
# =============================================================================


class ChorusParams(BaseModel):
    in_gain: float = Field(0.4, ge=0, le=1)
    out_gain: float = Field(0.4, ge=0, le=1)
    delays: str = Field("40|60|80", description="Per-voice delay in ms, '|'-separated.")
    decays: str = Field("0.5|0.5|0.5", description="Per-voice decay (0-1), '|'-separated.")
    speeds: str = Field("0.25|0.4|0.48", description="Per-voice LFO speed in Hz, '|'-separated.")
    depths: str = Field("2|2.3|1.8", description="Per-voice LFO depth in ms, '|'-separated.")

    @field_validator("delays", "decays", "speeds", "depths")
    @classmethod
    def _numeric_list(cls, value: str) -> str:
        values = _split_values(value)
        if any(v < 0 for v in values):
            raise ValueError("values must not be negative")
        return value

    @model_validator(mode="after")
    def _same_voice_count(self):
        counts = {name: len(_split_values(getattr(self, name))) for name in ("delays", "decays", "speeds", "depths")}
        if len(set(counts.values())) != 1:
            detail = ", ".join(f"{k}={v}" for k, v in counts.items())
            raise ValueError(f"delays, decays, speeds and depths need one value per voice ({detail})")
        if any(v > 1 for v in _split_values(self.decays)):
            raise ValueError("decays must be between 0 and 1")
        return self


CHORUS_PRESETS = {
    "subtle": dict(in_gain=0.5, out_gain=0.5, delays="40|50", decays="0.4|0.4", speeds="0.25|0.3", depths="1|1.2"),
    "classic": dict(
        in_gain=0.4, out_gain=0.4, delays="40|60|80", decays="0.5|0.5|0.5", speeds="0.25|0.4|0.48", depths="2|2.3|1.8"
    ),
    "rich": dict(
        in_gain=0.3,
        out_gain=0.5,
        delays="30|50|70|90",
        decays="0.4|0.45|0.5|0.45",
        speeds="0.2|0.35|0.45|0.6",
        depths="1.5|2|2.5|2",
    ),
    "wide": dict(
        in_gain=0.35, out_gain=0.45, delays="35|55|75", decays="0.5|0.5|0.5", speeds="0.3|0.5|0.7", depths="2.5|3|3.5"
    ),
}


def build_chorus(p: ChorusParams, source: StreamDescriptor) -> FilterGraphSpec:
    return FilterGraphSpec(
        description=(
            f"chorus=in_gain={fmt(p.in_gain)}:out_gain={fmt(p.out_gain)}:"
            f"delays={p.delays}:decays={p.decays}:speeds={p.speeds}:depths={p.depths}"
        )
    )


# =============================================================================
# Flanger
# =============================================================================


class FlangerParams(BaseModel):
    delay: float = Field(0.0, ge=0, le=30, description="Base delay in ms.")
    depth: float = Field(2.0, ge=0, le=10, description="Sweep depth in ms.")
    regen: float = Field(0.0, ge=-95, le=95, description="Feedback in percent.")
    width: float = Field(71.0, ge=0, le=100, description="Delayed signal mix in percent.")
    speed: float = Field(0.5, ge=0.1, le=10, description="Sweeps per second.")
    phase: float = Field(25.0, ge=0, le=100, description="Sweep phase shift between channels in percent.")
    shape: Literal["sine", "triangle"] = "sine"
    interp: Literal["linear", "quadratic"] = "linear"


FLANGER_PRESETS = {
    "jet": dict(delay=0.0, depth=3.0, regen=-95.0, width=71.0, speed=0.5, phase=25.0),
    "metallic": dict(delay=5.0, depth=5.0, regen=50.0, width=80.0, speed=0.3, phase=50.0, shape="triangle"),
    "mild": dict(delay=2.0, depth=1.5, regen=10.0, width=50.0, speed=0.25, phase=25.0),
    "through_zero": dict(delay=0.0, depth=4.0, regen=-50.0, width=100.0, speed=0.4, phase=0.0, interp="quadratic"),
    "chorus_flanger": dict(delay=7.0, depth=2.5, regen=20.0, width=60.0, speed=0.6, phase=40.0),
}


FLANGER_SHAPES = {"sine": "sinusoidal", "triangle": "triangular"}


def build_flanger(p: FlangerParams, source: StreamDescriptor) -> FilterGraphSpec:
    return FilterGraphSpec(
        description=(
            f"flanger=delay={fmt(p.delay)}:depth={fmt(p.depth)}:regen={fmt(p.regen)}:width={fmt(p.width)}:"
            f"speed={fmt(p.speed)}:phase={fmt(p.phase)}:shape={FLANGER_SHAPES[p.shape]}:interp={p.interp}"
        )
    )


# =============================================================================
# Tremolo
# =============================================================================


class TremoloParams(BaseModel):
    frequency: float = Field(5.0, ge=0.1, le=20000, description="Modulation frequency in Hz.")
    depth: float = Field(0.5, ge=0, le=1, description="Modulation depth.")


TREMOLO_PRESETS = {
    "slow": dict(frequency=2.0, depth=0.5),
    "fast": dict(frequency=8.0, depth=0.6),
    "helicopter": dict(frequency=15.0, depth=0.8),
    "pulsing": dict(frequency=4.0, depth=0.7),
}


def build_tremolo(p: TremoloParams, source: StreamDescriptor) -> FilterGraphSpec:
    return FilterGraphSpec(description=f"tremolo=f={fmt(p.frequency)}:d={fmt(p.depth)}")


# =============================================================================
# Phaser
# =============================================================================


class PhaserParams(BaseModel):
    in_gain: float = Field(0.4, ge=0, le=1)
    out_gain: float = Field(0.74, ge=0, le=1)
    delay: float = Field(3.0, ge=0, le=5, description="Delay in ms.")
    decay: float = Field(0.4, ge=0, le=0.99, description="Feedback.")
    speed: float = Field(0.5, ge=0.1, le=2, description="LFO speed in Hz.")
    waveform: Literal["sine", "triangle"] = "sine"


PHASER_PRESETS = {
    "classic": dict(speed=0.5, delay=3.0, decay=0.4, in_gain=0.4, out_gain=0.74),
    "fast": dict(speed=1.2, delay=2.5, decay=0.5, in_gain=0.5, out_gain=0.7),
    "subtle": dict(speed=0.3, delay=2.0, decay=0.2, in_gain=0.3, out_gain=0.8),
    "intense": dict(speed=0.8, delay=4.0, decay=0.7, in_gain=0.6, out_gain=0.7),
    "jet": dict(speed=0.4, delay=3.5, decay=0.9, in_gain=0.5, out_gain=0.7),
    "psychedelic": dict(speed=0.6, delay=3.5, decay=0.6, in_gain=0.5, out_gain=0.72, waveform="triangle"),
}


def build_phaser(p: PhaserParams, source: StreamDescriptor) -> FilterGraphSpec:
    return FilterGraphSpec(
        description=(
            f"aphaser=in_gain={fmt(p.in_gain)}:out_gain={fmt(p.out_gain)}:delay={fmt(p.delay)}:"
            f"decay={fmt(p.decay)}:speed={fmt(p.speed)}:type={p.waveform[0]}"
        )
    )


# =============================================================================
# Distortion
# =============================================================================


class DistortionParams(BaseModel):
    type: Literal["overdrive", "fuzz", "tube", "hard_clip", "bitcrusher"] = "overdrive"
    drive: float = Field(5.0, ge=0, le=20, description="Input drive in dB.")
    tone: float = Field(0.5, ge=0, le=1, description="0 = dark, 0.5 = flat, 1 = bright.")
    output_gain: float = Field(0.0, ge=-40, le=20, description="Output level compensation in dB.")
    mix: float = Field(1.0, ge=0, le=1, description="Wet/dry mix.")
    bits: int = Field(8, ge=1, le=16, description="Bit depth for the bitcrusher.")


DISTORTION_PRESETS = {
    "overdrive": dict(type="overdrive", drive=6.0, tone=0.5, output_gain=-3.0, bits=16),
    "fuzz": dict(type="fuzz", drive=15.0, tone=0.6, output_gain=-6.0, bits=16),
    "tube": dict(type="tube", drive=8.0, tone=0.4, output_gain=-4.0, bits=16),
    "hard_clip": dict(type="hard_clip", drive=10.0, tone=0.5, output_gain=-5.0, bits=16),
    "bitcrusher": dict(type="bitcrusher", drive=0.0, tone=0.5, output_gain=0.0, bits=8),
}

# Clipping stage per type: alimiter (limit, attack ms, release ms)
_CLIP_LIMITS = {
    "overdrive": (0.7, 5.0, 50.0),
    "fuzz": (0.3, 0.1, 10.0),
    "hard_clip": (0.5, 0.1, 5.0),
}


def build_distortion(p: DistortionParams, source: StreamDescriptor) -> FilterGraphSpec:
    nodes = []
    if p.drive > 0:
        nodes.append(f"volume={fmt(p.drive)}dB")
    if p.type == "bitcrusher":
        nodes.append(f"acrusher=bits={p.bits}:mode=lin:mix=1")
    elif p.type == "tube":
        nodes.append("asoftclip=type=tanh")
    else:
        limit, attack, release = _CLIP_LIMITS[p.type]
        nodes.append(f"alimiter=limit={fmt(limit)}:attack={fmt(attack)}:release={fmt(release)}:level=0")
    if p.tone != 0.5:
        nodes.append(f"highshelf=f=2000:g={fmt((p.tone - 0.5) * 24)}")
    if p.output_gain != 0:
        nodes.append(f"volume={fmt(p.output_gain)}dB")

    chain = ",".join(nodes)
    if p.mix >= 1:
        return FilterGraphSpec(description=chain)
    # Parallel wet/dry paths, mixed with weights
    return FilterGraphSpec(
        description=(
            f"asplit[dry][wet];[wet]{chain}[processed];"
            f"[dry][processed]amix=inputs=2:weights='{fmt(1 - p.mix)} {fmt(p.mix)}'"
        )
    )


# =============================================================================
# Delay / echo
# =============================================================================


class DelayParams(BaseModel):
    mode: Literal["simple", "slapback", "multitap", "pingpong", "tape"] = "simple"
    delay_time: float = Field(500.0, gt=0, le=5000, description="Delay in ms.")
    feedback: float = Field(0.5, ge=0, le=0.9, description="Echo decay.")
    mix: float = Field(0.5, ge=0, le=1, description="Wet/dry mix.")
    decay: float = Field(0.5, ge=0, le=1, description="Extra decay per tap in tape mode.")
    taps: int = Field(3, ge=1, le=3, description="Number of taps in multitap mode.")


DELAY_PRESETS = {
    "vocal": dict(mode="simple", delay_time=30.0, feedback=0.2, mix=0.3),
    "slap": dict(mode="slapback", delay_time=100.0, feedback=0.4, mix=0.4),
    "ambient": dict(mode="simple", delay_time=800.0, feedback=0.7, mix=0.5),
    "dub": dict(mode="simple", delay_time=500.0, feedback=0.65, mix=0.6),
    "pingpong": dict(mode="pingpong", delay_time=375.0, feedback=0.5, mix=0.5),
    "tape": dict(mode="tape", delay_time=400.0, feedback=0.6, mix=0.4),
}


def build_delay(p: DelayParams, source: StreamDescriptor) -> FilterGraphSpec:
    t, fb = p.delay_time, p.feedback
    if p.mode == "multitap":
        delays = [t * i for i in range(1, p.taps + 1)]
        decays = [fb / i for i in range(1, p.taps + 1)]
    elif p.mode == "pingpong":
        delays, decays = [t, t * 2], [fb, fb * 0.7]
    elif p.mode == "tape":
        tail = p.decay * fb
        delays, decays = [t, t * 2, t * 3], [fb, tail, tail * 0.7]
    else:
        delays, decays = [t], [fb]
    return FilterGraphSpec(
        description="aecho={}:{}:{}:{}".format(
            fmt(1 - p.mix),
            fmt(p.mix),
            "|".join(fmt(d) for d in delays),
            "|".join(fmt(d) for d in decays),
        )
    )


# =============================================================================
# Pitch shift
# =============================================================================


class PitchParams(BaseModel):
    semitones: float = Field(0.0, ge=-24, le=24, description="Shift in semitones; 12 = one octave.")
    preserve_tempo: bool = Field(True, description="Keep the duration unchanged.")


PITCH_PRESETS = {
    "octave_up": dict(semitones=12.0),
    "octave_down": dict(semitones=-12.0),
    "fifth_up": dict(semitones=7.0),
    "fourth_up": dict(semitones=5.0),
    "male_female": dict(semitones=5.0),
    "female_male": dict(semitones=-5.0),
    "chipmunk": dict(semitones=12.0, preserve_tempo=False),
    "deep": dict(semitones=-7.0),
}


def atempo_chain(tempo: float) -> list[str]:
    """Split a tempo factor into ``atempo`` stages that each stay within 0.5-2.0."""
    stages = []
    remaining = tempo
    while remaining > 2.0:
        stages.append("atempo=2.0")
        remaining /= 2.0
    while remaining < 0.5:
        stages.append("atempo=0.5")
        remaining /= 0.5
    stages.append(f"atempo={fmt(remaining)}")
    return stages


def build_pitch(p: PitchParams, source: StreamDescriptor) -> FilterGraphSpec:
    rate = source.sample_rate
    ratio = math.pow(2.0, p.semitones / 12.0)
    nodes = [f"asetrate={round(rate * ratio)}", f"aresample={rate}"]
    if p.preserve_tempo:
        nodes.extend(atempo_chain(1.0 / ratio))
    return FilterGraphSpec(description=",".join(nodes))


REVERB = AudioEffect("reverb", ReverbParams, build_reverb, REVERB_PRESETS, "Room reverb from multi-tap echoes")
CHORUS = AudioEffect("chorus", ChorusParams, build_chorus, CHORUS_PRESETS, "Multi-voice chorus")
FLANGER = AudioEffect("flanger", FlangerParams, build_flanger, FLANGER_PRESETS, "Swept comb-filter flanger")
TREMOLO = AudioEffect("tremolo", TremoloParams, build_tremolo, TREMOLO_PRESETS, "Amplitude modulation")
PHASER = AudioEffect("phaser", PhaserParams, build_phaser, PHASER_PRESETS, "All-pass phaser")
DISTORTION = AudioEffect("distortion", DistortionParams, build_distortion, DISTORTION_PRESETS, "Drive and clipping")
DELAY = AudioEffect("delay", DelayParams, build_delay, DELAY_PRESETS, "Echo and multi-tap delay")
PITCH = AudioEffect("pitch", PitchParams, build_pitch, PITCH_PRESETS, "Pitch shift with optional tempo lock")
