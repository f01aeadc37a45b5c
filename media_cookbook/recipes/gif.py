"""
Two-pass GIF creation.

Pass 1 runs the video through ``palettegen`` into a frame sink and keeps the
single palette frame it emits at end of stream. Pass 2 feeds that palette to
the second source pad of ``paletteuse`` while the video streams through the
first, and encodes the palette-indexed result with the ``gif`` encoder.
"""

import logging
from dataclasses import dataclass
from fractions import Fraction
from pathlib import Path
from typing import Literal

import av
from pydantic import BaseModel, Field

from media_cookbook.errors import MalformedError
from media_cookbook.kernel.driver import PipelineStats, ProgressCallback, stdout_progress
from media_cookbook.kernel.filter_stage import FilterStage, SourcePad
from media_cookbook.kernel.streams import VideoPadParams
from media_cookbook.recipes.base import RecipePlan, build_config, resolve_params, run_recipe
from media_cookbook.schemas import EncoderSpec, FilterGraphSpec, InputSpec, MediaKind

logger = logging.getLogger(__name__)

_PALETTE_TIME_BASE = Fraction(1, 1000)


class GifParams(BaseModel):
    width: int = Field(-1, ge=-1, le=4096, description="Output width; -1 derives it from the height and aspect.")
    height: int = Field(-1, ge=-1, le=4096, description="Output height; -1 derives it from the width and aspect.")
    fps: int = Field(10, ge=1, le=50)
    colors: int = Field(256, ge=4, le=256, description="Maximum palette size.")
    dither: Literal["bayer", "heckbert", "floyd_steinberg", "sierra2", "sierra2_4a", "none"] = "sierra2_4a"
    start: float | None = Field(None, ge=0, description="Seconds to skip.")
    duration: float | None = Field(None, gt=0, description="Seconds to convert.")

    def scale_chain(self) -> str:
        chain = f"fps={self.fps}"
        if self.width != -1 or self.height != -1:
            chain += f",scale={self.width}:{self.height}:flags=lanczos"
        return chain


@dataclass(slots=True)
class PaletteCapture:
    """Frame sink keeping the last frame it sees (``palettegen`` emits exactly one)."""

    frame: av.VideoFrame | None = None

    def __call__(self, frame) -> None:
        self.frame = frame


def palette_plan(input_path: str | Path, params: GifParams, capture: PaletteCapture) -> RecipePlan:
    config = build_config(
        inputs=[InputSpec(path=input_path, kind=MediaKind.VIDEO)],
        filter=FilterGraphSpec(
            description=f"{params.scale_chain()},palettegen=max_colors={params.colors}:stats_mode=full"
        ),
        start_time=params.start,
        duration=params.duration,
        progress_every=0,
    )
    return RecipePlan(name="gif:palette", config=config, frame_sink=capture)


def gif_plan(input_path: str | Path, output_path: str | Path, params: GifParams, palette: av.VideoFrame) -> RecipePlan:
    palette.pts = 0
    palette.time_base = _PALETTE_TIME_BASE
    palette_pad = SourcePad("in1", VideoPadParams.from_frame(palette, _PALETTE_TIME_BASE))

    def feed_palette(stage: FilterStage) -> None:
        stage.push(palette, pad=1)
        stage.push(None, pad=1)

    config = build_config(
        inputs=[InputSpec(path=input_path, kind=MediaKind.VIDEO)],
        output=output_path,
        output_options={"loop": "0"},
        encoder=EncoderSpec(kind=MediaKind.VIDEO, codec="gif", pixel_format="pal8", frame_rate=params.fps),
        filter=FilterGraphSpec(
            description=f"[in0]{params.scale_chain()}[x];[x][in1]paletteuse=dither={params.dither}[out]"
        ),
        start_time=params.start,
        duration=params.duration,
    )
    return RecipePlan(
        name="gif",
        config=config,
        extra_pads=[palette_pad],
        on_filter_ready=feed_palette,
    )


def make_gif(
    input_path: str | Path,
    output_path: str | Path,
    progress: ProgressCallback | None = stdout_progress,
    **overrides,
) -> PipelineStats:
    params = resolve_params(GifParams, {}, None, overrides)
    capture = PaletteCapture()
    run_recipe(palette_plan(input_path, params, capture), progress=None)
    if capture.frame is None:
        raise MalformedError(f"no video frames decoded from '{input_path}'; cannot build a palette")
    logger.info("[recipe:gif] Palette ready (%d colors max), encoding %s", params.colors, output_path)
    return run_recipe(gif_plan(input_path, output_path, params, capture.frame), progress=progress)
