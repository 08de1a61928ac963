from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Literal

OPTIONS_SCHEMA_VERSION = "relativepose.options.v0"

LossType = Literal["linear", "huber", "soft_l1", "cauchy"]
ResidualType = Literal["sampson", "algebraic"]


class OptionsValidationError(ValueError):
    pass


@dataclass(frozen=True)
class RefinementOptions:
    """
    Policy and convergence settings for the known-rotation position refiner.

    Defaults: Sampson-normalized residuals, no robust loss, no chirality filter.
    """

    residual: ResidualType = "sampson"
    loss: LossType = "linear"
    loss_scale: float = 1.0
    use_chirality: bool = False
    max_iterations: int = 100
    function_tolerance: float = 1e-10
    gradient_tolerance: float = 1e-12
    parameter_tolerance: float = 1e-10
    initial_damping: float = 1e-4
    max_damping: float = 1e16
    min_line_norm: float = 1e-12
    rank_tolerance: float = 1e-12

    def __post_init__(self) -> None:
        validate_refinement_options(self)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"schema_version": OPTIONS_SCHEMA_VERSION}
        d.update(asdict(self))
        return d


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise OptionsValidationError(msg)


def validate_refinement_options(opts: RefinementOptions) -> None:
    _require(opts.residual in ("sampson", "algebraic"), "residual must be 'sampson' or 'algebraic'")
    _require(opts.loss in ("linear", "huber", "soft_l1", "cauchy"), "loss must be linear|huber|soft_l1|cauchy")
    _require(opts.loss_scale > 0.0, "loss_scale must be > 0")
    _require(int(opts.max_iterations) >= 1, "max_iterations must be >= 1")
    for name in ("function_tolerance", "gradient_tolerance", "parameter_tolerance", "min_line_norm", "rank_tolerance"):
        _require(float(getattr(opts, name)) >= 0.0, f"{name} must be >= 0")
    _require(opts.initial_damping > 0.0, "initial_damping must be > 0")
    _require(opts.max_damping > opts.initial_damping, "max_damping must exceed initial_damping")


def parse_refinement_options(data: dict[str, Any]) -> RefinementOptions:
    """
    Build options from a JSON-like dict. Missing keys take their defaults;
    unknown keys are rejected so typos do not silently fall back.
    """
    data = dict(data)
    schema_version = data.pop("schema_version", OPTIONS_SCHEMA_VERSION)
    _require(schema_version == OPTIONS_SCHEMA_VERSION, f"schema_version must be {OPTIONS_SCHEMA_VERSION}")

    known = {f.name: f for f in fields(RefinementOptions)}
    unknown = sorted(set(data) - set(known))
    _require(not unknown, f"unknown option(s): {', '.join(unknown)}")

    kwargs: dict[str, Any] = {}
    for name, value in data.items():
        default = getattr(RefinementOptions, name)
        if isinstance(default, bool):
            _require(isinstance(value, bool), f"{name} must be a boolean")
            kwargs[name] = value
            continue
        try:
            if isinstance(default, int):
                kwargs[name] = int(value)
            elif isinstance(default, float):
                kwargs[name] = float(value)
            else:
                kwargs[name] = str(value)
        except (TypeError, ValueError) as exc:
            raise OptionsValidationError(f"invalid value for {name}: {value!r}") from exc
    return RefinementOptions(**kwargs)


def load_refinement_options(path: Path) -> RefinementOptions:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    _require(isinstance(data, dict), "options file must contain a JSON object")
    return parse_refinement_options(data)
