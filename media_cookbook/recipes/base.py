import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from media_cookbook.errors import BadParameterError, NotFoundError
from media_cookbook.kernel.driver import FrameSink, PipelineDriver, PipelineStats, ProgressCallback, stdout_progress
from media_cookbook.kernel.filter_stage import FilterStage, SourcePad
from media_cookbook.kernel.input_stage import InputStage
from media_cookbook.kernel.resources import ResourceRegistry
from media_cookbook.kernel.streams import StreamDescriptor
from media_cookbook.schemas import EncoderSpec, FilterGraphSpec, InputSpec, MediaKind, PipelineConfig

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RecipePlan:
    """A recipe reduced to data: the pipeline to run plus optional driver hooks."""

    name: str
    config: PipelineConfig
    frame_sink: FrameSink | None = None
    extra_pads: list[SourcePad] = field(default_factory=list)
    on_filter_ready: Callable[[FilterStage], None] | None = None


def run_recipe(plan: RecipePlan, progress: ProgressCallback | None = stdout_progress) -> PipelineStats:
    logger.info("[recipe:%s] Running -> %s", plan.name, plan.config.output or "frame sink")
    driver = PipelineDriver(
        plan.config,
        progress=progress,
        frame_sink=plan.frame_sink,
        extra_pads=plan.extra_pads,
        on_filter_ready=plan.on_filter_ready,
    )
    return driver.run()


def _describe_validation(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        location = ".".join(str(p) for p in err["loc"]) or "parameters"
        parts.append(f"{location}: {err['msg']}")
    return "; ".join(parts)


def resolve_params(
    model: type[BaseModel],
    presets: dict[str, dict[str, Any]],
    preset: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> BaseModel:
    """
    Merge model defaults, a named preset and explicit overrides (highest priority).

    ``None`` overrides are ignored so CLI flags that were not given keep the preset value.

    Raises:
        NotFoundError: *preset* is not one of *presets*.
        BadParameterError: the merged values fail validation.
    """
    values: dict[str, Any] = {}
    if preset is not None:
        if preset not in presets:
            raise NotFoundError(f"unknown preset '{preset}' (available: {', '.join(presets)})")
        values.update(presets[preset])
    values.update({k: v for k, v in (overrides or {}).items() if v is not None})
    return validated(model, **values)


def validated(model: type[BaseModel], **kwargs):
    """Build *model*, reporting validation failures as ``BadParameterError``."""
    try:
        return model(**kwargs)
    except ValidationError as e:
        raise BadParameterError(_describe_validation(e)) from e


def build_config(**kwargs) -> PipelineConfig:
    return validated(PipelineConfig, **kwargs)


def probe_stream(path: str | Path, kind: MediaKind) -> StreamDescriptor:
    """Describe the first stream of *kind* in *path* without decoding anything."""
    with ResourceRegistry() as registry:
        stage = InputStage(registry).open(path)
        return stage.describe(stage.select_stream(kind))


def has_stream(path: str | Path, kind: MediaKind) -> bool:
    with ResourceRegistry() as registry:
        stage = InputStage(registry).open(path)
        return any(s.type == kind.value for s in stage.container.streams)


def audio_filter_plan(
    name: str,
    input_path: str | Path,
    output_path: str | Path,
    filter_spec: FilterGraphSpec,
    encoder: EncoderSpec | None = None,
) -> RecipePlan:
    config = build_config(
        inputs=[InputSpec(path=input_path, kind=MediaKind.AUDIO)],
        output=output_path,
        encoder=encoder or EncoderSpec(kind=MediaKind.AUDIO),
        filter=filter_spec,
    )
    return RecipePlan(name=name, config=config)


def fmt(value: float) -> str:
    """Render a number for a filter argument without float noise (``0.30000000000000004`` -> ``0.3``)."""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"
