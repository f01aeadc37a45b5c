"""Audio subcommands: effects, dynamics, conversion and mixing."""

from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Annotated, Literal, Union, get_args

import tyro

from media_cookbook.cli.recipe_command import (
    RecipeCommandSpec,
    recipe_command,
    run_plan,
    run_recipe_command,
    subcommand,
)
from media_cookbook.recipes.base import run_recipe
from media_cookbook.recipes.conversion import (
    AudioConvertParams,
    ResampleParams,
    WavParams,
    convert_audio_plan,
    mix_plan,
    resample_plan,
    to_wav,
)
from media_cookbook.recipes.dynamics import NormalizeParams, normalize
from media_cookbook.recipes.factory import EffectFactory, apply_effect


def _effect_spec(name: str) -> RecipeCommandSpec:
    effect = EffectFactory.get_effect(name)
    return RecipeCommandSpec(
        name=name,
        model=effect.params,
        run=partial(apply_effect, name),
        summary=effect.summary,
        presets=tuple(effect.presets),
    )


EFFECT_COMMANDS = {name: recipe_command(_effect_spec(name)) for name in EffectFactory.names()}

EffectSubcommand = Union[tuple(subcommand(cls, name) for name, cls in EFFECT_COMMANDS.items())]


@dataclass(slots=True)
class EffectCommand:
    """Apply a filter-based audio effect."""

    command: EffectSubcommand


NormalizeCommand = recipe_command(
    RecipeCommandSpec("normalize", NormalizeParams, normalize, "Normalize peak, RMS or EBU R128 loudness.")
)
ConvertCommand = recipe_command(
    RecipeCommandSpec(
        "convert", AudioConvertParams, partial(run_plan, convert_audio_plan), "Re-encode audio to another format."
    )
)
ResampleCommand = recipe_command(
    RecipeCommandSpec(
        "resample", ResampleParams, partial(run_plan, resample_plan), "Change sample rate, channels or format."
    )
)
ToWavCommand = recipe_command(RecipeCommandSpec("to-wav", WavParams, to_wav, "Decode audio to 16-bit PCM WAV."))


@dataclass(slots=True)
class MixCommand:
    """Mix two or more audio files."""

    inputs: tyro.conf.Positional[list[Path]]
    output: Annotated[Path, tyro.conf.arg(aliases=["-o"])]
    duration: Literal["longest", "shortest", "first"] | None = None
    weights: list[float] | None = None
    normalize: bool | None = None


def execute_mix(command: MixCommand) -> None:
    plan = mix_plan(
        command.inputs,
        command.output,
        duration=command.duration,
        weights=command.weights,
        normalize=command.normalize,
    )
    run_recipe(plan)


def execute(command) -> None:
    if isinstance(command, EffectCommand):
        run_recipe_command(command.command)
        return
    if isinstance(command, MixCommand):
        execute_mix(command)
        return
    run_recipe_command(command)


COMMANDS = [
    subcommand(EffectCommand, "effect"),
    subcommand(NormalizeCommand, "normalize"),
    subcommand(ConvertCommand, "convert"),
    subcommand(ResampleCommand, "resample"),
    subcommand(ToWavCommand, "to-wav"),
    subcommand(MixCommand, "mix"),
]

COMMAND_TYPES = tuple(get_args(c)[0] for c in COMMANDS)
