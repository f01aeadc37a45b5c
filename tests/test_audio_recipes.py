"""Audio effect, dynamics and conversion recipes, run end to end on synthetic tones."""

import math
from fractions import Fraction

import numpy as np
import pytest

from helpers import decode_audio, probe, write_tone_wav
from media_cookbook.errors import BadParameterError, NotFoundError
from media_cookbook.kernel.streams import StreamDescriptor
from media_cookbook.recipes.audio_effects import (
    ChorusParams,
    DelayParams,
    DistortionParams,
    PitchParams,
    atempo_chain,
    build_delay,
    build_distortion,
    build_pitch,
)
from media_cookbook.recipes.base import fmt, resolve_params, run_recipe
from media_cookbook.recipes.conversion import convert_audio_plan, mix_plan, resample_plan, to_wav
from media_cookbook.recipes.dynamics import LimiterParams, build_limiter, measure_levels, normalize
from media_cookbook.recipes.factory import EffectFactory, apply_effect, effect_plan
from media_cookbook.schemas import MediaKind

STEREO_SOURCE = StreamDescriptor(
    index=0,
    kind=MediaKind.AUDIO,
    codec_name="pcm_s16le",
    time_base=Fraction(1, 44100),
    sample_rate=44100,
    channel_layout="stereo",
)


def envelope(samples: np.ndarray, rate: int, window: float = 0.02) -> np.ndarray:
    size = int(rate * window)
    mono = samples[0]
    count = len(mono) // size
    blocks = mono[: count * size].reshape(count, size)
    return np.sqrt(np.mean(blocks * blocks, axis=1))


def dominant_frequency(samples: np.ndarray, rate: int) -> float:
    mono = samples[0] * np.hanning(samples.shape[1])
    spectrum = np.abs(np.fft.rfft(mono))
    return float(np.fft.rfftfreq(len(mono), 1 / rate)[np.argmax(spectrum)])


# =============================================================================
# Effects
# =============================================================================


def test_chorus_keeps_pitch_and_modulates_level(tone_wav, tmp_path):
    out = tmp_path / "chorus.wav"
    apply_effect(
        "chorus",
        tone_wav,
        out,
        progress=None,
        delays="50|70",
        decays="0.4|0.5",
        speeds="0.25|0.4",
        depths="2|2.3",
    )
    source, rate = decode_audio(tone_wav)
    result, out_rate = decode_audio(out)
    assert out_rate == rate
    assert result.shape[1] <= source.shape[1] + int(0.1 * rate)
    assert abs(dominant_frequency(result, rate) - 1000.0) <= 5.0

    # Skip the first 100 ms while the delay lines fill
    levels = envelope(result[:, int(0.1 * rate) :], rate)
    assert levels.std() / levels.mean() > 0.05


@pytest.mark.parametrize("name", EffectFactory.names())
def test_every_effect_runs_with_defaults(name, quiet_wav, tmp_path):
    out = tmp_path / f"{name}.wav"
    apply_effect(name, quiet_wav, out, progress=None)
    info = probe(out)
    assert info["streams"][0]["type"] == "audio"
    assert info["streams"][0]["sample_rate"] == 44100
    assert info["duration"] > 0.5


@pytest.mark.parametrize("preset", sorted(EffectFactory.get_effect("flanger").presets))
def test_flanger_presets_run(preset, quiet_wav, tmp_path):
    # Presets cover both sweep shapes
    out = tmp_path / f"flanger_{preset}.wav"
    apply_effect("flanger", quiet_wav, out, preset=preset, progress=None)
    assert probe(out)["duration"] > 0.5


@pytest.mark.parametrize(
    "name, preset",
    [(name, preset) for name in EffectFactory.names() for preset in EffectFactory.get_effect(name).presets],
)
def test_every_preset_validates(name, preset):
    effect = EffectFactory.get_effect(name)
    params = resolve_params(effect.params, effect.presets, preset)
    spec = effect.build(params, STEREO_SOURCE)
    assert spec.description


def test_override_beats_preset():
    effect = EffectFactory.get_effect("tremolo")
    params = resolve_params(effect.params, effect.presets, "fast", {"depth": 0.9, "frequency": None})
    assert params.frequency == 8.0
    assert params.depth == 0.9


def test_unknown_preset(tone_wav, tmp_path):
    with pytest.raises(NotFoundError, match="unknown preset 'nope'"):
        effect_plan("reverb", tone_wav, tmp_path / "x.wav", preset="nope")


def test_unknown_effect():
    with pytest.raises(NotFoundError):
        EffectFactory.get_effect("vocoder")


def test_out_of_range_parameter_is_rejected_before_running(tone_wav, tmp_path):
    out = tmp_path / "never.wav"
    with pytest.raises(BadParameterError, match="drive"):
        apply_effect("distortion", tone_wav, out, progress=None, drive=25)
    assert not out.exists()


@pytest.mark.parametrize(
    "overrides",
    [
        dict(delays="50|70", decays="0.4"),
        dict(decays="0.4|1.5|0.5"),
        dict(speeds="fast|0.4|0.48"),
        dict(depths="-1|2|2"),
    ],
)
def test_chorus_validation(overrides):
    with pytest.raises(BadParameterError):
        resolve_params(ChorusParams, {}, None, overrides)


def test_atempo_chain_stays_in_range():
    assert atempo_chain(4.0) == ["atempo=2.0", "atempo=2"]
    assert atempo_chain(0.25) == ["atempo=0.5", "atempo=0.5"]
    assert atempo_chain(1.5) == ["atempo=1.5"]


def test_pitch_shift_graph():
    spec = build_pitch(PitchParams(semitones=12), STEREO_SOURCE)
    assert spec.description == "asetrate=88200,aresample=44100,atempo=0.5"
    spec = build_pitch(PitchParams(semitones=12, preserve_tempo=False), STEREO_SOURCE)
    assert "atempo" not in spec.description


def test_distortion_wet_dry_mix():
    dry = build_distortion(DistortionParams(type="tube", mix=1.0), STEREO_SOURCE)
    assert "asplit" not in dry.description
    blended = build_distortion(DistortionParams(type="tube", mix=0.25), STEREO_SOURCE)
    assert blended.description.startswith("asplit[dry][wet];[wet]")
    assert "weights='0.75 0.25'" in blended.description


def test_multitap_delay_taps():
    spec = build_delay(DelayParams(mode="multitap", delay_time=100, feedback=0.6, taps=3), STEREO_SOURCE)
    assert spec.description == "aecho=0.5:0.5:100|200|300:0.6|0.3|0.2"


def test_limiter_lookahead_sets_attack_window():
    spec = build_limiter(LimiterParams(attack=5, lookahead=8, ceiling=0), STEREO_SOURCE)
    assert "attack=8" in spec.description
    assert "volume" not in spec.description


def test_fmt_drops_float_noise():
    assert fmt(0.1 + 0.2) == "0.3"
    assert fmt(2.0) == "2"
    assert fmt(-0.0) == "0"


# =============================================================================
# Dynamics
# =============================================================================


def test_measure_levels(tone_wav):
    meter = measure_levels(tone_wav)
    assert meter.peak_db == pytest.approx(20 * math.log10(0.5), abs=0.1)
    assert meter.rms_db == pytest.approx(20 * math.log10(0.5 / math.sqrt(2)), abs=0.1)


def test_peak_normalize(quiet_wav, tmp_path):
    out = tmp_path / "peak.wav"
    normalize(quiet_wav, out, progress=None, mode="peak", target=-1.0)
    assert measure_levels(out).peak_db == pytest.approx(-1.0, abs=0.2)


def test_rms_normalize(quiet_wav, tmp_path):
    out = tmp_path / "rms.wav"
    normalize(quiet_wav, out, progress=None, mode="rms", target=-20.0)
    assert measure_levels(out).rms_db == pytest.approx(-20.0, abs=0.3)


def test_loudness_normalize_keeps_rate(tone_wav, tmp_path):
    out = tmp_path / "loud.wav"
    normalize(tone_wav, out, progress=None, mode="loudness")
    assert probe(out)["streams"][0]["sample_rate"] == 44100


def test_normalize_silence_is_rejected(tmp_path):
    silent = write_tone_wav(tmp_path / "silent.wav", seconds=0.5, level=0.0)
    with pytest.raises(BadParameterError, match="silent"):
        normalize(silent, tmp_path / "out.wav", progress=None)


# =============================================================================
# Conversion and mixing
# =============================================================================


def test_to_wav_from_compressed_audio(av_file, tmp_path):
    out = tmp_path / "decoded.wav"
    to_wav(av_file, out, progress=None)
    data = out.read_bytes()
    assert data[:4] == b"RIFF"
    info = probe(out)["streams"][0]
    assert (info["codec"], info["sample_rate"], info["channels"]) == ("pcm_s16le", 44100, 2)
    samples, rate = decode_audio(out)
    assert abs(samples.shape[1] / rate - 5.0) < 0.1


def test_to_wav_downmix_and_resample(tone_wav, tmp_path):
    out = tmp_path / "mono.wav"
    to_wav(tone_wav, out, progress=None, channels=1, sample_rate=22050)
    info = probe(out)["streams"][0]
    assert (info["sample_rate"], info["channels"]) == (22050, 1)


def test_to_wav_removes_output_on_failure(tmp_path):
    out = tmp_path / "never.wav"
    with pytest.raises(NotFoundError):
        to_wav(tmp_path / "missing.mp3", out, progress=None)
    assert not out.exists()


def test_resample(tone_wav, tmp_path):
    out = tmp_path / "resampled.wav"
    run_recipe(resample_plan(tone_wav, out, sample_rate=16000, channels=1), progress=None)
    info = probe(out)["streams"][0]
    assert (info["sample_rate"], info["channels"]) == (16000, 1)
    samples, rate = decode_audio(out)
    assert abs(dominant_frequency(samples, rate) - 1000.0) <= 5.0


def test_resample_needs_a_change(tone_wav, tmp_path):
    with pytest.raises(BadParameterError):
        resample_plan(tone_wav, tmp_path / "x.wav")


def test_convert_to_aac(tone_wav, tmp_path):
    out = tmp_path / "tone.m4a"
    run_recipe(convert_audio_plan(tone_wav, out, codec="aac", bitrate="128k"), progress=None)
    info = probe(out)
    assert info["streams"][0]["codec"] == "aac"
    assert abs(info["duration"] - 3.0) < 0.1


def test_unsupported_channel_count(tone_wav, tmp_path):
    with pytest.raises(BadParameterError):
        convert_audio_plan(tone_wav, tmp_path / "x.wav", channels=5)


def test_mix_two_inputs(tone_wav, quiet_wav, tmp_path):
    out = tmp_path / "mix.wav"
    run_recipe(mix_plan([tone_wav, quiet_wav], out, duration="shortest", weights=[1, 1]), progress=None)
    assert probe(out)["duration"] == pytest.approx(1.0, abs=0.1)

    out_longest = tmp_path / "mix_longest.wav"
    run_recipe(mix_plan([tone_wav, quiet_wav], out_longest), progress=None)
    assert probe(out_longest)["duration"] == pytest.approx(3.0, abs=0.1)


def test_mix_validation(tone_wav, tmp_path):
    with pytest.raises(BadParameterError, match="at least two"):
        mix_plan([tone_wav], tmp_path / "x.wav")
    with pytest.raises(BadParameterError, match="weights"):
        mix_plan([tone_wav, tone_wav], tmp_path / "x.wav", weights=[1.0])
