from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

import numpy as np

from relativepose.eval.noise_sweep import SweepCase, default_cases, run_noise_sweep
from relativepose.io import load_problem, problem_from_synthetic, result_to_dict, save_problem, save_result
from relativepose.options import RefinementOptions, load_refinement_options, parse_refinement_options
from relativepose.refine.known_rotation import estimate_relative_position_linear, optimize_relative_position
from relativepose.sim.synthetic import make_two_view_problem


def _options_from_args(args: argparse.Namespace, embedded: dict | None = None) -> RefinementOptions:
    if args.options is not None:
        return load_refinement_options(args.options)
    if embedded is not None:
        return parse_refinement_options(embedded)
    return RefinementOptions()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="relativepose")
    parser.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = parser.add_subparsers(dest="cmd", required=True)

    sim = sub.add_parser("simulate", help="Write a synthetic two-view problem (normalized correspondences + ground truth).")
    sim.add_argument("--out", type=Path, required=True, help="Output problem JSON.")
    sim.add_argument("--points", type=int, default=25)
    sim.add_argument("--noise-px", type=float, default=0.0, help="Gaussian pixel noise std on both views.")
    sim.add_argument(
        "--init-perturb",
        type=float,
        default=0.0,
        help="Std of a random perturbation applied to the ground-truth direction for the initial guess.",
    )
    sim.add_argument("--seed", type=int, default=0)

    ref = sub.add_parser("refine", help="Refine the relative position of a problem file with its rotation held fixed.")
    ref.add_argument("problem", type=Path)
    ref.add_argument("--out", type=Path, default=None, help="Result JSON (default: print to stdout).")
    ref.add_argument("--options", type=Path, default=None, help="Options JSON (overrides options embedded in the problem).")
    ref.add_argument(
        "--init",
        type=str,
        default="given",
        choices=["given", "linear"],
        help="Start from the problem's direction or from the closed-form linear estimate.",
    )

    sweep = sub.add_parser("sweep-noise", help="Deviation from ground truth vs pixel noise and point count.")
    sweep.add_argument("--out", type=Path, required=True, help="Output directory for the report.")
    sweep.add_argument("--trials", type=int, default=20)
    sweep.add_argument("--seed", type=int, default=0)
    sweep.add_argument("--noise", type=str, default=None, help="Comma-separated noise levels in px.")
    sweep.add_argument("--points", type=str, default=None, help="Comma-separated correspondence counts.")
    sweep.add_argument("--options", type=Path, default=None)

    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")

    if args.cmd == "simulate":
        rng = np.random.default_rng(args.seed)
        scene = make_two_view_problem(rng, num_points=args.points, noise_px=args.noise_px)
        init = scene.relative_position
        if args.init_perturb > 0.0:
            init = init + rng.normal(scale=args.init_perturb, size=3)
            init = init / np.linalg.norm(init)
        save_problem(args.out, problem_from_synthetic(scene, initial_position=init))
        print(f"Wrote {args.out}")
        return 0

    if args.cmd == "refine":
        problem = load_problem(args.problem)
        options = _options_from_args(args, problem.options)
        init = problem.relative_position / np.linalg.norm(problem.relative_position)
        if args.init == "linear":
            est = estimate_relative_position_linear(
                problem.correspondences, problem.relative_rotation, reference=problem.relative_position
            )
            if est is None:
                logging.getLogger(__name__).warning("linear initialization is degenerate; keeping the given direction")
            else:
                init = est
        result = optimize_relative_position(problem.correspondences, problem.relative_rotation, init, options)
        if args.out is None:
            print(json.dumps(result_to_dict(result, problem.ground_truth_position), indent=2, sort_keys=True))
        else:
            save_result(args.out, result, problem.ground_truth_position)
            print(f"Wrote {args.out}")
        return 0 if result.success else 1

    if args.cmd == "sweep-noise":
        if args.noise is None and args.points is None:
            cases = default_cases()
        else:
            noises = [float(s) for s in (args.noise or "0,0.5,1").split(",") if s.strip()]
            counts = [int(s) for s in (args.points or "25").split(",") if s.strip()]
            cases = [SweepCase(name=f"noise{v:g}_n{n}", noise_px=v, num_points=n) for v in noises for n in counts]
        options = load_refinement_options(args.options) if args.options is not None else None
        report_path = run_noise_sweep(args.out, cases, trials=args.trials, seed=args.seed, options=options)
        print(f"Wrote {report_path}")
        return 0

    raise AssertionError(f"Unhandled cmd: {args.cmd}")
