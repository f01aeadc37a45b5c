"""
Build tyro subcommand dataclasses from recipe parameter models.

Each recipe's pydantic model is the single source of its flags: every model
field becomes an optional ``--flag`` that defaults to ``None``, so flags the
user did not pass fall through to the preset and then to the model default.
Range checks stay in the model and surface as ``BadParameterError``.
"""

from collections.abc import Callable
from dataclasses import dataclass, make_dataclass
from pathlib import Path
from typing import Annotated, Any, Optional

import tyro
from pydantic import BaseModel

from media_cookbook.kernel.driver import PipelineStats
from media_cookbook.recipes.base import RecipePlan, run_recipe


@dataclass(slots=True, frozen=True)
class RecipeCommandSpec:
    name: str
    model: type[BaseModel]
    run: Callable[..., Any]  # run(*positionals, **overrides)
    summary: str
    positionals: tuple[str, ...] = ("input", "output")
    presets: tuple[str, ...] = ()


def _flag(annotation, description: str | None):
    return Annotated[Optional[annotation], tyro.conf.arg(help=description or None, prefix_name=False)]


def recipe_command(spec: RecipeCommandSpec) -> type:
    """Create the dataclass tyro parses for *spec*. The spec is kept on the class as ``recipe``."""
    fields: list[tuple] = [(name, tyro.conf.Positional[Path]) for name in spec.positionals]
    if spec.presets:
        help_text = f"Named parameter bundle: {', '.join(spec.presets)}."
        fields.append(("preset", Annotated[Optional[str], tyro.conf.arg(help=help_text, prefix_name=False)], None))
    for name, info in spec.model.model_fields.items():
        fields.append((name, _flag(info.annotation, info.description), None))

    class_name = "".join(part.capitalize() for part in spec.name.replace("-", "_").split("_")) + "Command"
    cls = make_dataclass(class_name, fields, slots=True, namespace={"recipe": spec})
    cls.__doc__ = spec.summary
    return cls


def subcommand(cls: type, name: str):
    return Annotated[cls, tyro.conf.subcommand(name=name, prefix_name=False)]


def run_recipe_command(command) -> Any:
    spec: RecipeCommandSpec = type(command).recipe
    args = [getattr(command, name) for name in spec.positionals]
    overrides = {name: getattr(command, name) for name in spec.model.model_fields}
    if spec.presets:
        overrides["preset"] = command.preset
    return spec.run(*args, **overrides)


def run_plan(plan_fn: Callable[..., RecipePlan], *args, **overrides) -> PipelineStats:
    """Adapter for single-pass recipes: build the plan, then run it."""
    return run_recipe(plan_fn(*args, **overrides))
