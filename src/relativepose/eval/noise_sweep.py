from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from relativepose.options import RefinementOptions
from relativepose.refine.known_rotation import optimize_relative_position
from relativepose.sim.synthetic import make_two_view_problem


@dataclass(frozen=True)
class SweepCase:
    name: str
    noise_px: float
    num_points: int


def default_cases() -> list[SweepCase]:
    cases: list[SweepCase] = []
    for noise in (0.0, 0.25, 0.5, 1.0, 2.0):
        for n in (10, 25, 100):
            cases.append(SweepCase(name=f"noise{noise:g}_n{n}", noise_px=noise, num_points=n))
    return cases


def eval_noise_case(
    case: SweepCase,
    trials: int = 20,
    seed: int = 0,
    options: RefinementOptions | None = None,
) -> dict[str, object]:
    """
    Refine from the ground-truth direction on `trials` random problems and
    summarize the deviation from ground truth.
    """
    rng = np.random.default_rng(seed)
    errors: list[float] = []
    angles_deg: list[float] = []
    n_success = 0
    for _ in range(int(trials)):
        scene = make_two_view_problem(rng, num_points=case.num_points, noise_px=case.noise_px)
        res = optimize_relative_position(
            scene.correspondence_array(), scene.relative_rotation, scene.relative_position, options
        )
        if not res.success:
            continue
        n_success += 1
        t = res.relative_position
        gt = scene.relative_position
        errors.append(float(np.linalg.norm(t - gt)))
        angles_deg.append(float(np.degrees(np.arccos(np.clip(float(t @ gt), -1.0, 1.0)))))

    e = np.asarray(errors, dtype=np.float64)
    a = np.asarray(angles_deg, dtype=np.float64)
    return {
        "name": case.name,
        "noise_px": float(case.noise_px),
        "num_points": int(case.num_points),
        "trials": int(trials),
        "success_rate": float(n_success) / float(max(1, int(trials))),
        "euclidean_error_median": float(np.median(e)) if e.size else float("nan"),
        "euclidean_error_max": float(np.max(e)) if e.size else float("nan"),
        "angle_deg_median": float(np.median(a)) if a.size else float("nan"),
        "angle_deg_max": float(np.max(a)) if a.size else float("nan"),
    }


def run_noise_sweep(
    out_dir: Path,
    cases: list[SweepCase],
    trials: int = 20,
    seed: int = 0,
    options: RefinementOptions | None = None,
) -> Path:
    out_dir = Path(out_dir).resolve()
    out_dir.mkdir(parents=True, exist_ok=True)

    results: dict[str, object] = {
        "trials": int(trials),
        "seed": int(seed),
        "options": (options or RefinementOptions()).to_dict(),
        "cases": [],
    }
    for case in cases:
        entry = eval_noise_case(case, trials=trials, seed=seed, options=options)
        results["cases"].append(entry)
        print(json.dumps(entry, sort_keys=True))

    report_path = out_dir / "noise_sweep_report.json"
    report_path.write_text(json.dumps(results, indent=2, sort_keys=True), encoding="utf-8")
    return report_path
