from __future__ import annotations

import numpy as np
import pytest

from relativepose.core.camera import PinholeCamera
from relativepose.core.correspondence import FeatureCorrespondence
from relativepose.options import RefinementOptions
from relativepose.refine.known_rotation import (
    InvalidProblemError,
    estimate_relative_position_linear,
    optimize_relative_position,
    refine_relative_position,
)
from relativepose.sim.synthetic import make_two_view_problem, random_camera


def _fixed_cameras() -> tuple[PinholeCamera, PinholeCamera]:
    cam1 = PinholeCamera(
        position=np.array([-0.4, 0.1, 0.2]),
        orientation=np.array([0.05, -0.1, 0.02]),
        focal_length_px=800.0,
        principal_point_px=(500.0, 500.0),
        image_size=(1000, 1000),
    )
    c2 = np.array([0.6, -0.3, 0.1])
    cam2 = PinholeCamera(
        position=c2 / np.linalg.norm(c2),
        orientation=np.array([-0.08, 0.12, 0.1]),
        focal_length_px=800.0,
        principal_point_px=(500.0, 500.0),
        image_size=(1000, 1000),
    )
    return cam1, cam2


def _scene(noise_px: float, seed: int = 0, num_points: int = 25):
    rng = np.random.default_rng(seed)
    cam1, cam2 = _fixed_cameras()
    return make_two_view_problem(rng, num_points=num_points, noise_px=noise_px, camera1=cam1, camera2=cam2)


def _perturbed(t: np.ndarray, rng: np.random.Generator, scale: float) -> np.ndarray:
    p = t + rng.normal(scale=scale, size=3)
    return p / np.linalg.norm(p)


def test_perfect_input_leaves_true_direction_unchanged():
    rng = np.random.default_rng(42)
    cam1 = random_camera(rng)
    cam2 = random_camera(rng)
    cam2 = cam2.with_position(cam2.position / np.linalg.norm(cam2.position))
    scene = make_two_view_problem(rng, num_points=25, noise_px=0.0, camera1=cam1, camera2=cam2)

    position = scene.relative_position.copy()
    before = position.copy()
    assert refine_relative_position(scene.correspondences(), scene.relative_rotation, position)
    assert np.linalg.norm(position - before) < 1e-12


def test_noisy_input_stays_close_to_ground_truth():
    scene = _scene(noise_px=1.0, seed=1)
    position = scene.relative_position.copy()
    assert refine_relative_position(scene.correspondences(), scene.relative_rotation, position)
    assert np.linalg.norm(position - scene.relative_position) < 0.1
    assert abs(np.linalg.norm(position) - 1.0) < 1e-12


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_result_is_unit_norm_and_finite(seed: int):
    scene = _scene(noise_px=2.0, seed=seed)
    rng = np.random.default_rng(100 + seed)
    res = optimize_relative_position(
        scene.correspondence_array(), scene.relative_rotation, _perturbed(scene.relative_position, rng, 0.05)
    )
    assert res.success
    assert np.all(np.isfinite(res.relative_position))
    assert abs(np.linalg.norm(res.relative_position) - 1.0) < 1e-12


def test_converges_back_to_truth_from_perturbed_start():
    scene = _scene(noise_px=0.0, seed=5)
    rng = np.random.default_rng(7)
    init = _perturbed(scene.relative_position, rng, 0.1)
    assert np.linalg.norm(init - scene.relative_position) > 1e-3

    res = optimize_relative_position(scene.correspondences(), scene.relative_rotation, init)
    assert res.success
    assert res.summary.iterations >= 1
    assert res.summary.final_cost < res.summary.initial_cost
    assert np.linalg.norm(res.relative_position - scene.relative_position) < 1e-8


def test_refining_own_output_is_a_fixed_point():
    scene = _scene(noise_px=1.0, seed=2)
    position = scene.relative_position.copy()
    assert refine_relative_position(scene.correspondences(), scene.relative_rotation, position)

    again = position.copy()
    assert refine_relative_position(scene.correspondences(), scene.relative_rotation, again)
    assert np.linalg.norm(again - position) < 1e-6


def test_error_shrinks_with_noise():
    errors = []
    for noise in (2.0, 0.5, 0.0):
        scene = _scene(noise_px=noise, seed=11, num_points=50)
        res = optimize_relative_position(scene.correspondences(), scene.relative_rotation, scene.relative_position)
        assert res.success
        errors.append(float(np.linalg.norm(res.relative_position - scene.relative_position)))
    assert errors[2] < 1e-10
    assert errors[1] < errors[0]


def test_inputs_are_not_mutated():
    scene = _scene(noise_px=1.0, seed=3)
    corr = scene.correspondence_array()
    corr_before = corr.copy()
    rot = scene.relative_rotation.copy()
    init = scene.relative_position.copy()

    res = optimize_relative_position(corr, rot, init)
    assert res.success
    np.testing.assert_array_equal(corr, corr_before)
    np.testing.assert_array_equal(rot, scene.relative_rotation)
    np.testing.assert_array_equal(init, scene.relative_position)


def test_accepts_rotation_matrix_and_pairs():
    from relativepose.core.geometry import rotation_matrix_from_angle_axis

    scene = _scene(noise_px=0.5, seed=4)
    pairs = [(tuple(a), tuple(b)) for a, b in zip(scene.x1, scene.x2)]
    R = rotation_matrix_from_angle_axis(scene.relative_rotation)

    res_vec = optimize_relative_position(scene.correspondences(), scene.relative_rotation, scene.relative_position)
    res_mat = optimize_relative_position(pairs, R, scene.relative_position)
    assert res_vec.success and res_mat.success
    assert np.linalg.norm(res_vec.relative_position - res_mat.relative_position) < 1e-9


def test_single_correspondence_fails_and_keeps_guess():
    scene = _scene(noise_px=0.0, seed=6)
    position = scene.relative_position.copy()
    before = position.copy()
    assert not refine_relative_position(scene.correspondences()[:1], scene.relative_rotation, position)
    np.testing.assert_array_equal(position, before)

    res = optimize_relative_position(scene.correspondences()[:1], scene.relative_rotation, before)
    assert res.termination == "too_few_residuals"


@pytest.mark.parametrize("residual", ["sampson", "algebraic"])
def test_points_on_the_baseline_are_rejected(residual: str):
    t = np.array([0.1, 0.2, 0.97])
    t /= np.linalg.norm(t)
    rvec = np.array([0.02, -0.05, 0.03])
    from relativepose.core.geometry import rotation_matrix_from_angle_axis

    R = rotation_matrix_from_angle_axis(rvec)
    corr = []
    for s in (2.0, 3.0, 4.5, 6.0, 8.0):
        X1 = s * t
        X2 = R @ (X1 - t)
        corr.append(FeatureCorrespondence.from_arrays(X1[:2] / X1[2], X2[:2] / X2[2]))

    position = t.copy()
    before = position.copy()
    opts = RefinementOptions(residual=residual)
    assert not refine_relative_position(corr, rvec, position, opts)
    np.testing.assert_array_equal(position, before)


def test_repeated_single_correspondence_is_rank_deficient():
    scene = _scene(noise_px=0.0, seed=8)
    one = scene.correspondences()[0]
    res = optimize_relative_position([one] * 10, scene.relative_rotation, scene.relative_position)
    assert not res.success
    assert res.termination == "rank_deficient"
    np.testing.assert_allclose(res.relative_position, scene.relative_position, atol=1e-15)


def test_iteration_ceiling_reports_failure_with_best_estimate():
    scene = _scene(noise_px=1.0, seed=9)
    rng = np.random.default_rng(3)
    init = _perturbed(scene.relative_position, rng, 0.3)
    position = init.copy()
    ok = refine_relative_position(
        scene.correspondences(), scene.relative_rotation, position, RefinementOptions(max_iterations=1)
    )
    assert not ok
    assert np.all(np.isfinite(position))
    assert abs(np.linalg.norm(position) - 1.0) < 1e-12


def test_contract_violations_raise():
    scene = _scene(noise_px=0.0, seed=10)
    rot = scene.relative_rotation
    t = scene.relative_position.copy()

    with pytest.raises(InvalidProblemError):
        refine_relative_position([], rot, t.copy())
    with pytest.raises(InvalidProblemError):
        refine_relative_position(scene.correspondences(), rot, 2.0 * t)
    with pytest.raises(InvalidProblemError):
        refine_relative_position(scene.correspondences(), np.array([np.nan, 0.0, 0.0]), t.copy())

    bad = scene.correspondence_array()
    bad[0, 0] = np.inf
    with pytest.raises(InvalidProblemError):
        refine_relative_position(bad, rot, t.copy())

    frozen = t.copy()
    frozen.setflags(write=False)
    with pytest.raises(InvalidProblemError):
        refine_relative_position(scene.correspondences(), rot, frozen)

    with pytest.raises(ValueError):
        optimize_relative_position(np.zeros((5, 3)), rot, t)


@pytest.mark.parametrize(
    "options",
    [
        RefinementOptions(residual="algebraic"),
        RefinementOptions(loss="huber", loss_scale=1e-3),
        RefinementOptions(loss="soft_l1", loss_scale=1e-3),
        RefinementOptions(use_chirality=True),
    ],
)
def test_policy_variants_recover_direction(options: RefinementOptions):
    scene = _scene(noise_px=1.0, seed=12)
    res = optimize_relative_position(scene.correspondences(), scene.relative_rotation, scene.relative_position, options)
    assert res.success
    assert np.linalg.norm(res.relative_position - scene.relative_position) < 0.1


def test_cauchy_loss_tolerates_gross_outliers():
    scene = _scene(noise_px=0.5, seed=13, num_points=40)
    rng = np.random.default_rng(13)
    corr = scene.correspondence_array()
    corr[:6, 2:] = rng.uniform(-0.3, 0.3, size=(6, 2))

    res = optimize_relative_position(
        corr,
        scene.relative_rotation,
        scene.relative_position,
        RefinementOptions(loss="cauchy", loss_scale=2e-3),
    )
    assert res.success
    assert np.linalg.norm(res.relative_position - scene.relative_position) < 0.1


def test_chirality_filter_drops_points_behind_cameras():
    scene = _scene(noise_px=0.0, seed=14)
    behind = np.array([[0.3, -0.2, -9.0]])
    uv1, _ = scene.camera1.project(behind)
    uv2, _ = scene.camera2.project(behind)
    x1 = np.vstack([scene.x1, scene.camera1.pixels_to_normalized(uv1)])
    x2 = np.vstack([scene.x2, scene.camera2.pixels_to_normalized(uv2)])
    corr = np.concatenate([x1, x2], axis=1)

    res = optimize_relative_position(
        corr, scene.relative_rotation, scene.relative_position, RefinementOptions(use_chirality=True)
    )
    assert res.success
    assert res.summary.num_residuals == scene.num_points + 1
    assert res.summary.num_used == scene.num_points


def test_linear_estimate_matches_truth_without_noise():
    scene = _scene(noise_px=0.0, seed=15)
    t = estimate_relative_position_linear(scene.correspondences(), scene.relative_rotation)
    assert t is not None
    assert np.linalg.norm(t - scene.relative_position) < 1e-9

    flipped = estimate_relative_position_linear(
        scene.correspondences(), scene.relative_rotation, reference=-scene.relative_position
    )
    assert flipped is not None
    assert np.linalg.norm(flipped + scene.relative_position) < 1e-9


def test_linear_estimate_then_refine_with_noise():
    scene = _scene(noise_px=1.0, seed=16)
    t0 = estimate_relative_position_linear(scene.correspondences(), scene.relative_rotation)
    assert t0 is not None
    res = optimize_relative_position(scene.correspondences(), scene.relative_rotation, t0)
    assert res.success
    assert np.linalg.norm(res.relative_position - scene.relative_position) < 0.1


def test_linear_estimate_degenerate_returns_none():
    scene = _scene(noise_px=0.0, seed=17)
    one = scene.correspondences()[0]
    assert estimate_relative_position_linear([one] * 5, scene.relative_rotation) is None
    assert estimate_relative_position_linear([one], scene.relative_rotation) is None


@pytest.mark.parametrize("reweight_iterations", [0, 1, 5])
def test_linear_estimate_any_reweighting_count(reweight_iterations: int):
    scene = _scene(noise_px=0.0, seed=18)
    t = estimate_relative_position_linear(
        scene.correspondences(), scene.relative_rotation, reweight_iterations=reweight_iterations
    )
    assert t is not None
    assert abs(np.linalg.norm(t) - 1.0) < 1e-12
    assert np.linalg.norm(t - scene.relative_position) < 1e-9
