from pathlib import Path

from media_cookbook.errors import NotFoundError
from media_cookbook.kernel.driver import PipelineStats, ProgressCallback, stdout_progress
from media_cookbook.recipes.audio_effects import (
    CHORUS,
    DELAY,
    DISTORTION,
    FLANGER,
    PHASER,
    PITCH,
    REVERB,
    TREMOLO,
    AudioEffect,
)
from media_cookbook.recipes.base import RecipePlan, audio_filter_plan, probe_stream, resolve_params, run_recipe
from media_cookbook.recipes.dynamics import COMPRESSOR, GATE, LIMITER
from media_cookbook.schemas import MediaKind


class EffectFactory:
    """Registry of filter-based audio effects."""

    _effects: dict[str, AudioEffect] = {
        effect.name: effect
        for effect in (
            REVERB,
            CHORUS,
            FLANGER,
            TREMOLO,
            PHASER,
            DISTORTION,
            DELAY,
            PITCH,
            LIMITER,
            GATE,
            COMPRESSOR,
        )
    }

    @classmethod
    def get_effect(cls, name: str) -> AudioEffect:
        effect = cls._effects.get(name)
        if not effect:
            raise NotFoundError(f"unknown effect '{name}'")
        return effect

    @classmethod
    def names(cls) -> list[str]:
        return list(cls._effects)


def effect_plan(
    name: str,
    input_path: str | Path,
    output_path: str | Path,
    preset: str | None = None,
    **overrides,
) -> RecipePlan:
    """Validate parameters for effect *name* and build its pipeline."""
    effect = EffectFactory.get_effect(name)
    params = resolve_params(effect.params, effect.presets, preset, overrides)
    source = probe_stream(input_path, MediaKind.AUDIO)
    return audio_filter_plan(name, input_path, output_path, effect.build(params, source))


def apply_effect(
    name: str,
    input_path: str | Path,
    output_path: str | Path,
    preset: str | None = None,
    progress: ProgressCallback | None = stdout_progress,
    **overrides,
) -> PipelineStats:
    return run_recipe(effect_plan(name, input_path, output_path, preset, **overrides), progress=progress)
