"""
Two-pass video stabilization with vid.stab.

``vidstabdetect`` writes per-frame motion into a transforms file in the
system temp directory; ``vidstabtransform`` reads it back to smooth the
camera path. The transforms file is removed whether or not the passes
succeed.
"""

import logging
import tempfile
from pathlib import Path

import av
from pydantic import BaseModel, Field

from media_cookbook.const import STABILIZE_TRANSFORMS_FILENAME
from media_cookbook.errors import BadFilterError
from media_cookbook.kernel.driver import PipelineStats, ProgressCallback, stdout_progress
from media_cookbook.kernel.filter_dsl import escape_value
from media_cookbook.recipes.base import RecipePlan, build_config, resolve_params, run_recipe
from media_cookbook.recipes.video import video_encoder, video_filter_plan
from media_cookbook.schemas import FilterGraphSpec, InputSpec, MediaKind

logger = logging.getLogger(__name__)


class StabilizeParams(BaseModel):
    smoothing: int = Field(10, ge=1, le=100, description="Frames averaged into the camera path.")
    shakiness: int = Field(5, ge=1, le=10, description="How shaky the source is.")
    codec: str | None = None
    bitrate: str | None = None


def transforms_path() -> Path:
    return Path(tempfile.gettempdir()) / STABILIZE_TRANSFORMS_FILENAME


def require_vidstab() -> None:
    missing = {"vidstabdetect", "vidstabtransform"} - set(av.filter.filters_available)
    if missing:
        raise BadFilterError(f"the media framework was built without vid.stab ({', '.join(sorted(missing))} missing)")


def detect_plan(input_path: str | Path, params: StabilizeParams, trf: Path) -> RecipePlan:
    config = build_config(
        inputs=[InputSpec(path=input_path, kind=MediaKind.VIDEO)],
        filter=FilterGraphSpec(
            description=f"vidstabdetect=shakiness={params.shakiness}:result={escape_value(str(trf))}",
        ),
        progress_every=0,
    )
    # Frames are only needed for their side effect on the transforms file
    return RecipePlan(name="stabilize:detect", config=config, frame_sink=lambda frame: None)


def transform_plan(
    input_path: str | Path, output_path: str | Path, params: StabilizeParams, trf: Path
) -> RecipePlan:
    description = f"vidstabtransform=input={escape_value(str(trf))}:smoothing={params.smoothing}:zoom=0:optzoom=1"
    return video_filter_plan(
        "stabilize", input_path, output_path, description, video_encoder(params.codec, params.bitrate)
    )


def stabilize(
    input_path: str | Path,
    output_path: str | Path,
    progress: ProgressCallback | None = stdout_progress,
    **overrides,
) -> PipelineStats:
    params = resolve_params(StabilizeParams, {}, None, overrides)
    require_vidstab()
    trf = transforms_path()
    try:
        logger.info("[recipe:stabilize] Pass 1: detecting motion into %s", trf)
        run_recipe(detect_plan(input_path, params, trf), progress=None)
        logger.info("[recipe:stabilize] Pass 2: smoothing=%d", params.smoothing)
        return run_recipe(transform_plan(input_path, output_path, params, trf), progress=progress)
    finally:
        trf.unlink(missing_ok=True)
