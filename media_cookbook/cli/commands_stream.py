"""Streaming, subtitle and playback subcommands."""

from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Annotated, Union, get_args

import tyro

from media_cookbook.cli.recipe_command import (
    RecipeCommandSpec,
    recipe_command,
    run_plan,
    run_recipe_command,
    subcommand,
)
from media_cookbook.kernel.playback import SyncPlayer
from media_cookbook.recipes.hls import HlsParams, hls_plan, read_playlist
from media_cookbook.recipes.subtitles import BurnParams, burn_plan, convert_subtitles, extract_subtitles


def _segment(input_path: Path, output_path: Path, **overrides) -> None:
    run_plan(hls_plan, input_path, output_path, **overrides)
    playlist = read_playlist(output_path)
    print(f"Wrote {len(playlist.segments)} segment(s), {playlist.total_duration:.2f}s total")


HlsCommand = recipe_command(
    RecipeCommandSpec("hls", HlsParams, _segment, "Segment a file into an HLS playlist by stream copy.")
)

BurnCommand = recipe_command(
    RecipeCommandSpec(
        "burn",
        BurnParams,
        partial(run_plan, burn_plan),
        "Render subtitles into the video frames.",
        positionals=("input", "subtitles", "output"),
    )
)


@dataclass(slots=True)
class SubtitleConvertCommand:
    """Convert between SRT, WebVTT and ASS (by extension)."""

    input: tyro.conf.Positional[Path]
    output: tyro.conf.Positional[Path]


@dataclass(slots=True)
class SubtitleExtractCommand:
    """Extract the first subtitle track of a media file."""

    input: tyro.conf.Positional[Path]
    output: tyro.conf.Positional[Path]


SubtitleSubcommand = Union[
    subcommand(SubtitleConvertCommand, "convert"),
    subcommand(SubtitleExtractCommand, "extract"),
    subcommand(BurnCommand, "burn"),
]


@dataclass(slots=True)
class SubtitlesCommand:
    """Subtitle files and tracks."""

    command: SubtitleSubcommand


@dataclass(slots=True)
class PlayCommand:
    """Play a file against the audio clock and report A/V sync."""

    input: tyro.conf.Positional[Path]
    speed: Annotated[float, tyro.conf.arg(help="Playback speed factor.")] = 1.0


def execute_play(command: PlayCommand) -> None:
    player = SyncPlayer(command.input, speed=command.speed)
    stats = player.run()
    print(
        f"Presented {len(stats.presented)} video frame(s), {stats.audio_frames} audio frame(s), "
        f"{stats.lag_events} lag event(s), {stats.decode_errors} decode error(s)"
    )


def execute(command) -> None:
    if isinstance(command, PlayCommand):
        execute_play(command)
        return
    if isinstance(command, SubtitlesCommand):
        sub = command.command
        if isinstance(sub, SubtitleConvertCommand):
            cues = convert_subtitles(sub.input, sub.output)
        elif isinstance(sub, SubtitleExtractCommand):
            cues = extract_subtitles(sub.input, sub.output)
        else:
            run_recipe_command(sub)
            return
        print(f"Wrote {len(cues)} cue(s) to {sub.output}")
        return
    run_recipe_command(command)


COMMANDS = [
    subcommand(HlsCommand, "hls"),
    subcommand(SubtitlesCommand, "subtitles"),
    subcommand(PlayCommand, "play"),
]

COMMAND_TYPES = tuple(get_args(c)[0] for c in COMMANDS)
