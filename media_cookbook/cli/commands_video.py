"""Video subcommands."""

from functools import partial
from typing import get_args

from media_cookbook.cli.recipe_command import (
    RecipeCommandSpec,
    recipe_command,
    run_plan,
    run_recipe_command,
    subcommand,
)
from media_cookbook.recipes.gif import GifParams, make_gif
from media_cookbook.recipes.stabilize import StabilizeParams, stabilize
from media_cookbook.recipes.video import (
    CropParams,
    HwTranscodeParams,
    PipParams,
    ResizeParams,
    RotateParams,
    SpeedParams,
    ThumbnailParams,
    TranscodeParams,
    WatermarkParams,
    crop_plan,
    hw_transcode_plan,
    pip_plan,
    resize_plan,
    rotate_plan,
    speed_plan,
    thumbnail_plan,
    transcode_plan,
    watermark_plan,
)


_SPECS = [
    RecipeCommandSpec(
        "transcode", TranscodeParams, partial(run_plan, transcode_plan), "Re-encode video and copy the audio."
    ),
    RecipeCommandSpec(
        "hw-transcode",
        HwTranscodeParams,
        partial(run_plan, hw_transcode_plan),
        "Decode on a hardware device and encode with its encoder.",
    ),
    RecipeCommandSpec("resize", ResizeParams, partial(run_plan, resize_plan), "Scale video to a new size."),
    RecipeCommandSpec("crop", CropParams, partial(run_plan, crop_plan), "Crop a rectangle out of the video."),
    RecipeCommandSpec("rotate", RotateParams, partial(run_plan, rotate_plan), "Rotate and/or flip video."),
    RecipeCommandSpec("speed", SpeedParams, partial(run_plan, speed_plan), "Speed up or slow down playback."),
    RecipeCommandSpec(
        "watermark", WatermarkParams, partial(run_plan, watermark_plan), "Overlay a text or image watermark."
    ),
    RecipeCommandSpec(
        "thumbnail", ThumbnailParams, partial(run_plan, thumbnail_plan), "Grab one frame as a PNG or JPEG."
    ),
    RecipeCommandSpec(
        "pip",
        PipParams,
        partial(run_plan, pip_plan),
        "Picture-in-picture: inset one video over another.",
        positionals=("main", "inset", "output"),
    ),
    RecipeCommandSpec("gif", GifParams, make_gif, "Create a palette-optimized GIF."),
    RecipeCommandSpec("stabilize", StabilizeParams, stabilize, "Stabilize shaky video (vid.stab)."),
]

VIDEO_COMMANDS = {spec.name: recipe_command(spec) for spec in _SPECS}


def execute(command) -> None:
    run_recipe_command(command)


COMMANDS = [subcommand(cls, name) for name, cls in VIDEO_COMMANDS.items()]

COMMAND_TYPES = tuple(get_args(c)[0] for c in COMMANDS)
