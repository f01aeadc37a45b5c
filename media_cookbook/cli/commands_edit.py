"""Inspection and editing subcommands: info, silence, split, concat, reverse, keyframes."""

from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Annotated, get_args

import tyro

from media_cookbook.cli.recipe_command import (
    RecipeCommandSpec,
    recipe_command,
    run_plan,
    run_recipe_command,
    subcommand,
)
from media_cookbook.recipes.analysis import SilenceParams, detect_silence, format_media_info, probe_media
from media_cookbook.recipes.base import run_recipe
from media_cookbook.recipes.editing import (
    ConcatParams,
    KeyframeParams,
    ReverseParams,
    SilenceSplitParams,
    SplitParams,
    concat_plan,
    extract_keyframes,
    reverse_plan,
    split,
    split_on_silence,
)


@dataclass(slots=True)
class InfoCommand:
    """Show container and stream information."""

    input: tyro.conf.Positional[Path]


def _silence(input_path: Path, **overrides) -> None:
    segments = detect_silence(input_path, **overrides)
    for number, segment in enumerate(segments, 1):
        print(f"{number:3d}. {segment.start:8.3f}s - {segment.end:8.3f}s ({segment.duration:.3f}s)")
    print(f"Found {len(segments)} silent segment(s)")


def _print_written(kind: str, paths: list[Path]) -> None:
    for path in paths:
        print(path)
    print(f"Wrote {len(paths)} {kind}")


def _split(input_path: Path, output_dir: Path, **overrides) -> None:
    _print_written("piece(s)", split(input_path, output_dir, **overrides))


def _split_silence(input_path: Path, output_dir: Path, **overrides) -> None:
    _print_written("piece(s)", split_on_silence(input_path, output_dir, **overrides))


def _keyframes(input_path: Path, output_dir: Path, **overrides) -> None:
    _print_written("image(s)", extract_keyframes(input_path, output_dir, **overrides))


_SPECS = [
    RecipeCommandSpec("silence", SilenceParams, _silence, "Detect silent passages.", positionals=("input",)),
    RecipeCommandSpec(
        "split", SplitParams, _split, "Cut into pieces by stream copy.", positionals=("input", "output_dir")
    ),
    RecipeCommandSpec(
        "split-silence",
        SilenceSplitParams,
        _split_silence,
        "Cut audio at pauses.",
        positionals=("input", "output_dir"),
    ),
    RecipeCommandSpec("reverse", ReverseParams, partial(run_plan, reverse_plan), "Play the input backwards."),
    RecipeCommandSpec(
        "keyframes",
        KeyframeParams,
        _keyframes,
        "Save keyframes as images.",
        positionals=("input", "output_dir"),
    ),
]

EDIT_COMMANDS = {spec.name: recipe_command(spec) for spec in _SPECS}


@dataclass(slots=True)
class ConcatCommand:
    """Join two or more files end to end."""

    inputs: tyro.conf.Positional[list[Path]]
    output: Annotated[Path, tyro.conf.arg(aliases=["-o"])]
    codec: str | None = None
    bitrate: str | None = None


def execute(command) -> None:
    if isinstance(command, InfoCommand):
        print(format_media_info(probe_media(command.input)))
        return
    if isinstance(command, ConcatCommand):
        overrides = {name: getattr(command, name) for name in ConcatParams.model_fields}
        run_recipe(concat_plan(command.inputs, command.output, **overrides))
        return
    run_recipe_command(command)


COMMANDS = [
    subcommand(InfoCommand, "info"),
    subcommand(ConcatCommand, "concat"),
    *(subcommand(cls, name) for name, cls in EDIT_COMMANDS.items()),
]

COMMAND_TYPES = tuple(get_args(c)[0] for c in COMMANDS)
