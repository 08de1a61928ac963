from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

from relativepose.refine.known_rotation import RelativePositionResult
from relativepose.sim.synthetic import SyntheticTwoView

PROBLEM_SCHEMA_VERSION = "relativepose.problem.v0"
RESULT_SCHEMA_VERSION = "relativepose.result.v0"


class ProblemFormatError(ValueError):
    pass


@dataclass(frozen=True)
class KnownRotationProblem:
    correspondences: np.ndarray  # (N,4) [x1, y1, x2, y2], normalized coordinates
    relative_rotation: np.ndarray  # (3,) axis-angle
    relative_position: np.ndarray  # (3,) initial guess
    ground_truth_position: np.ndarray | None = None
    options: dict[str, Any] | None = None


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ProblemFormatError(msg)


def _vector(data: dict[str, Any], key: str, size: int) -> np.ndarray:
    raw = data.get(key)
    _require(isinstance(raw, (list, tuple)) and len(raw) == size, f"{key} must be a list of {size} numbers")
    try:
        v = np.asarray([float(x) for x in raw], dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise ProblemFormatError(f"{key} must contain numbers") from exc
    _require(bool(np.all(np.isfinite(v))), f"{key} must be finite")
    return v


def parse_problem(data: dict[str, Any]) -> KnownRotationProblem:
    _require(data.get("schema_version") == PROBLEM_SCHEMA_VERSION, f"schema_version must be {PROBLEM_SCHEMA_VERSION}")

    rotation = _vector(data, "relative_rotation", 3)
    position = _vector(data, "relative_position", 3)

    corr_raw = data.get("correspondences")
    _require(isinstance(corr_raw, list), "correspondences must be a list of [x1, y1, x2, y2]")
    try:
        corr = np.asarray(corr_raw, dtype=np.float64).reshape(-1, 4)
    except (TypeError, ValueError) as exc:
        raise ProblemFormatError("correspondences must be a list of [x1, y1, x2, y2]") from exc
    _require(corr.shape[0] == len(corr_raw), "each correspondence must have exactly 4 numbers")

    gt = None
    gt_raw = data.get("ground_truth")
    if gt_raw is not None:
        _require(isinstance(gt_raw, dict), "ground_truth must be an object")
        gt = _vector(gt_raw, "relative_position", 3)

    options = data.get("options")
    _require(options is None or isinstance(options, dict), "options must be an object")

    return KnownRotationProblem(
        correspondences=corr,
        relative_rotation=rotation,
        relative_position=position,
        ground_truth_position=gt,
        options=options,
    )


def load_problem(path: Path) -> KnownRotationProblem:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    _require(isinstance(data, dict), "problem file must contain a JSON object")
    return parse_problem(data)


def problem_from_synthetic(scene: SyntheticTwoView, initial_position: np.ndarray | None = None) -> KnownRotationProblem:
    init = scene.relative_position if initial_position is None else np.asarray(initial_position, dtype=np.float64)
    return KnownRotationProblem(
        correspondences=scene.correspondence_array(),
        relative_rotation=np.asarray(scene.relative_rotation, dtype=np.float64).reshape(3),
        relative_position=init.reshape(3),
        ground_truth_position=np.asarray(scene.relative_position, dtype=np.float64).reshape(3),
    )


def save_problem(path: Path, problem: KnownRotationProblem) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data: dict[str, Any] = {
        "schema_version": PROBLEM_SCHEMA_VERSION,
        "relative_rotation": problem.relative_rotation.reshape(3).tolist(),
        "relative_position": problem.relative_position.reshape(3).tolist(),
        "correspondences": problem.correspondences.reshape(-1, 4).tolist(),
    }
    if problem.ground_truth_position is not None:
        data["ground_truth"] = {"relative_position": problem.ground_truth_position.reshape(3).tolist()}
    if problem.options is not None:
        data["options"] = dict(problem.options)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


def result_to_dict(result: RelativePositionResult, ground_truth_position: np.ndarray | None = None) -> dict[str, Any]:
    s = result.summary
    out: dict[str, Any] = {
        "schema_version": RESULT_SCHEMA_VERSION,
        "success": bool(result.success),
        "termination": s.termination,
        "relative_position": np.asarray(result.relative_position, dtype=np.float64).reshape(3).tolist(),
        "iterations": int(s.iterations),
        "initial_cost": float(s.initial_cost),
        "final_cost": float(s.final_cost),
        "num_correspondences": int(s.num_residuals),
        "num_used": int(s.num_used),
    }
    if ground_truth_position is not None:
        gt = np.asarray(ground_truth_position, dtype=np.float64).reshape(3)
        t = np.asarray(result.relative_position, dtype=np.float64).reshape(3)
        out["error_to_ground_truth"] = {
            "euclidean": float(np.linalg.norm(t - gt)),
            "angle_deg": float(np.degrees(np.arccos(np.clip(float(t @ gt), -1.0, 1.0)))),
        }
    return out


def save_result(
    path: Path, result: RelativePositionResult, ground_truth_position: np.ndarray | None = None
) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(result_to_dict(result, ground_truth_position), indent=2, sort_keys=True), encoding="utf-8")
    return path
