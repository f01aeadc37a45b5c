"""Tyro CLI application entrypoint."""

import logging
import sys
from typing import Union

import tyro

from media_cookbook.cli import commands_audio, commands_edit, commands_stream, commands_video
from media_cookbook.configs import settings
from media_cookbook.errors import MediaError

logger = logging.getLogger(__name__)

TopLevelCommand = Union[
    tuple(commands_audio.COMMANDS + commands_video.COMMANDS + commands_stream.COMMANDS + commands_edit.COMMANDS)
]


def dispatch(command: TopLevelCommand) -> None:
    """Dispatch parsed top-level command object."""
    if isinstance(command, commands_audio.COMMAND_TYPES):
        commands_audio.execute(command)
        return
    if isinstance(command, commands_video.COMMAND_TYPES):
        commands_video.execute(command)
        return
    if isinstance(command, commands_stream.COMMAND_TYPES):
        commands_stream.execute(command)
        return
    if isinstance(command, commands_edit.COMMAND_TYPES):
        commands_edit.execute(command)
        return
    raise TypeError(f"Unsupported command type: {type(command).__name__}")


def main(argv: list[str] | None = None) -> int:
    """Parse CLI arguments and run the requested recipe. Returns the process exit code."""
    logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    try:
        command = tyro.cli(TopLevelCommand, args=argv, prog="media-cookbook")
    except SystemExit as e:
        # --help exits 0; usage errors are reported like any other failure
        return 0 if e.code in (0, None) else 1

    try:
        dispatch(command)
    except MediaError as e:
        logger.debug("[cli] %s failed: %r", type(command).__name__, e)
        print(e.render(), file=sys.stderr)
        return 1
    return 0
