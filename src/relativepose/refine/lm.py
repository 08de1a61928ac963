from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

import numpy as np

from relativepose.options import LossType, RefinementOptions
from relativepose.refine.sphere import UnitSphereParameterization

logger = logging.getLogger(__name__)

TerminationType = Literal[
    "function_tolerance",
    "gradient_tolerance",
    "parameter_tolerance",
    "damping_limit",
    "max_iterations",
    "too_few_residuals",
    "rank_deficient",
    "non_finite",
]

CONVERGED: frozenset[str] = frozenset(
    {"function_tolerance", "gradient_tolerance", "parameter_tolerance", "damping_limit"}
)

# x -> (residuals (N,), jacobian w.r.t. the ambient parameters (N,P), usable mask (N,))
LinearizeFn = Callable[[np.ndarray], tuple[np.ndarray, np.ndarray, np.ndarray]]


@dataclass(frozen=True)
class SolverSummary:
    termination: TerminationType
    iterations: int
    initial_cost: float
    final_cost: float
    num_residuals: int
    num_used: int

    @property
    def success(self) -> bool:
        return self.termination in CONVERGED


def robust_loss(z: np.ndarray, loss: LossType) -> tuple[np.ndarray, np.ndarray]:
    """
    rho(z) and rho'(z) for z = (r / scale)^2, using the scipy.optimize naming.
    """
    z = np.asarray(z, dtype=np.float64)
    if loss == "linear":
        return z, np.ones_like(z)
    if loss == "huber":
        inlier = z <= 1.0
        sz = np.sqrt(np.where(inlier, 1.0, z))
        return np.where(inlier, z, 2.0 * sz - 1.0), np.where(inlier, 1.0, 1.0 / sz)
    if loss == "soft_l1":
        t = np.sqrt(1.0 + z)
        return 2.0 * (t - 1.0), 1.0 / t
    if loss == "cauchy":
        return np.log1p(z), 1.0 / (1.0 + z)
    raise ValueError(f"unknown loss: {loss!r}")


def _cost(r: np.ndarray, loss: LossType, scale: float) -> float:
    z = (r / scale) ** 2
    rho, _ = robust_loss(z, loss)
    return 0.5 * scale * scale * float(np.sum(rho))


def _all_finite(*arrays: np.ndarray) -> bool:
    return all(bool(np.all(np.isfinite(a))) for a in arrays)


def levenberg_marquardt_on_sphere(
    x0: np.ndarray,
    linearize: LinearizeFn,
    options: RefinementOptions,
    active: np.ndarray | None = None,
    parameterization: UnitSphereParameterization | None = None,
) -> tuple[np.ndarray, SolverSummary]:
    """
    Damped Gauss-Newton over a unit-norm parameter vector.

    Each iteration linearizes at x, maps the ambient Jacobian into the tangent
    plane, solves

        (J^T J + lambda diag(J^T J)) delta = -J^T r

    and retracts x <- plus(x, delta). Steps that do not lower the cost are
    rejected and the damping grows; accepted steps shrink it.

    `active` masks residuals out of the problem for the whole solve (e.g. a
    chirality filter). Returns the final x and a summary; on degenerate or
    non-finite termination the returned x is x0.
    """
    param = parameterization or UnitSphereParameterization()
    x0 = np.asarray(x0, dtype=np.float64).reshape(param.ambient_size).copy()
    scale = float(options.loss_scale)

    def evaluate(x: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray] | None:
        r, J, usable = linearize(x)
        keep = usable if active is None else (usable & active)
        r = np.where(keep, r, 0.0)
        J = np.where(keep[:, None], J, 0.0)
        if not _all_finite(r, J):
            return None
        return r, J, keep

    def finish(
        x: np.ndarray, termination: TerminationType, it: int, c0: float, c: float, n_used: int
    ) -> tuple[np.ndarray, SolverSummary]:
        summary = SolverSummary(
            termination=termination,
            iterations=int(it),
            initial_cost=float(c0),
            final_cost=float(c),
            num_residuals=int(n_residuals),
            num_used=int(n_used),
        )
        if summary.success:
            logger.debug("converged (%s) after %d iterations: cost %.6e -> %.6e", termination, it, c0, c)
        else:
            logger.debug("solver failed (%s) after %d iterations", termination, it)
        return x, summary

    ev = evaluate(x0)
    if ev is None:
        n_residuals = 0
        return finish(x0, "non_finite", 0, float("nan"), float("nan"), 0)
    r, J, keep = ev
    n_residuals = int(r.shape[0])
    n_used = int(np.count_nonzero(keep))
    cost0 = _cost(r, options.loss, scale)
    if n_used < param.tangent_size:
        return finish(x0, "too_few_residuals", 0, cost0, cost0, n_used)

    x = x0
    cost = cost0
    lam = float(options.initial_damping)
    for it in range(1, int(options.max_iterations) + 1):
        basis = param.plus_jacobian(x)
        _rho, w = robust_loss((r / scale) ** 2, options.loss)
        sw = np.sqrt(w)
        Jt = (J @ basis) * sw[:, None]
        rt = r * sw

        H = Jt.T @ Jt
        g = Jt.T @ rt
        if not _all_finite(H, g):
            return finish(x0, "non_finite", it, cost0, cost0, n_used)

        eig = np.linalg.eigvalsh(H)
        if eig[-1] <= 0.0 or eig[0] <= float(options.rank_tolerance) * eig[-1]:
            logger.debug("rank-deficient normal equations, eigenvalues %s", eig)
            return finish(x0, "rank_deficient", it, cost0, cost0, n_used)

        if float(np.max(np.abs(g))) <= float(options.gradient_tolerance):
            return finish(x, "gradient_tolerance", it - 1, cost0, cost, n_used)

        A = H + lam * np.diag(np.diag(H))
        delta = np.linalg.solve(A, -g)
        if not _all_finite(delta):
            return finish(x0, "non_finite", it, cost0, cost0, n_used)

        step = float(np.linalg.norm(delta))
        if step <= float(options.parameter_tolerance) * (1.0 + float(options.parameter_tolerance)):
            return finish(x, "parameter_tolerance", it - 1, cost0, cost, n_used)

        x_new = param.plus(x, delta, basis)
        ev = evaluate(x_new)
        if ev is None:
            return finish(x0, "non_finite", it, cost0, cost0, n_used)
        r_new, J_new, keep_new = ev
        cost_new = _cost(r_new, options.loss, scale)

        logger.debug("iter %3d: cost %.6e -> %.6e |delta| %.3e lambda %.1e", it, cost, cost_new, step, lam)

        if cost_new < cost:
            decrease = (cost - cost_new) / cost
            x, r, J, keep, cost = x_new, r_new, J_new, keep_new, cost_new
            n_used = int(np.count_nonzero(keep))
            lam = max(lam / 10.0, 1e-16)
            if n_used < param.tangent_size:
                return finish(x0, "too_few_residuals", it, cost0, cost0, n_used)
            if decrease <= float(options.function_tolerance):
                return finish(x, "function_tolerance", it, cost0, cost, n_used)
        else:
            lam *= 10.0
            if lam > float(options.max_damping):
                return finish(x, "damping_limit", it, cost0, cost, n_used)

    return finish(x, "max_iterations", int(options.max_iterations), cost0, cost, n_used)
