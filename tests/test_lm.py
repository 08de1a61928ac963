import numpy as np
import pytest

from relativepose.options import RefinementOptions
from relativepose.refine.lm import levenberg_marquardt_on_sphere, robust_loss
from relativepose.refine.sphere import normalize


@pytest.mark.parametrize("loss", ["linear", "huber", "soft_l1", "cauchy"])
def test_robust_loss_is_quadratic_near_zero(loss):
    z = np.array([0.0, 1e-8])
    rho, drho = robust_loss(z, loss)
    np.testing.assert_allclose(rho, z, atol=1e-12)
    np.testing.assert_allclose(drho, [1.0, 1.0], atol=1e-7)


def test_robust_losses_downweight_large_residuals():
    z = np.array([100.0])
    for loss in ("huber", "soft_l1", "cauchy"):
        rho, drho = robust_loss(z, loss)
        assert rho[0] < 100.0
        assert drho[0] < 1.0


def test_solver_finds_closest_direction_to_target():
    # Residuals t - target restricted to the sphere: minimum at target itself.
    target = normalize(np.array([0.2, -0.5, 0.8]))

    def linearize(t):
        return t - target, np.eye(3), np.ones(3, dtype=bool)

    x, summary = levenberg_marquardt_on_sphere(normalize(np.array([1.0, 0.3, 0.2])), linearize, RefinementOptions())
    assert summary.success
    assert np.linalg.norm(x - target) < 1e-8


def test_solver_reports_non_finite_and_keeps_start():
    x0 = normalize(np.array([0.0, 0.0, 1.0]))

    def linearize(t):
        return np.full(3, np.nan), np.eye(3), np.ones(3, dtype=bool)

    x, summary = levenberg_marquardt_on_sphere(x0, linearize, RefinementOptions())
    assert not summary.success
    assert summary.termination == "non_finite"
    np.testing.assert_array_equal(x, x0)


def test_rejected_steps_until_damping_limit_count_as_converged():
    # Cost does not depend on t, so every step is rejected and the damping grows.
    x0 = normalize(np.array([0.0, 0.0, 1.0]))

    def linearize(t):
        return np.ones(3), np.eye(3), np.ones(3, dtype=bool)

    x, summary = levenberg_marquardt_on_sphere(x0, linearize, RefinementOptions(max_damping=1e3))
    assert summary.termination == "damping_limit"
    assert summary.success
    assert summary.final_cost == summary.initial_cost
    np.testing.assert_array_equal(x, x0)
