"""Tests for the deadline-bounded robust least-squares optimizer."""

import os
import time

import numpy as np
import pytest

from photopose.calibration import CameraIntrinsics
from photopose.config import TrackingConfig
from photopose.errors import UnsupportedParameterError
from photopose.optimizer import (
    DeadlineLeastSquares,
    OptimizerStatus,
    huber_cost,
)

A = np.array(
    [
        [2.0, 0.0, 1.0],
        [0.0, 1.0, 0.0],
        [1.0, 1.0, 3.0],
        [0.5, -1.0, 0.0],
    ]
)
X_TRUE = np.array([0.3, -0.2, 0.1])


def linear_residual(x: np.ndarray) -> np.ndarray:
    return A @ x - A @ X_TRUE


class TestHuberCost:
    """Test suite for the Huber cost."""

    def test_quadratic_region(self):
        """Test 0.5 * sum(f^2) below the scale."""
        assert huber_cost(np.array([0.5, -0.5]), 1.0) == pytest.approx(0.25)

    def test_linear_region(self):
        """Test 0.5 * (2 * delta * |f| - delta^2) above the scale."""
        assert huber_cost(np.array([3.0]), 1.0) == pytest.approx(0.5 * (6.0 - 1.0))

    def test_matches_scipy_cost(self):
        """Test that scipy's final robust cost matches the Huber cost."""
        target = np.array([1.0, 1.2, 0.9, 5.0])

        def residual(x: np.ndarray) -> np.ndarray:
            return np.full(4, x[0]) - target

        optimizer = DeadlineLeastSquares(huber_delta=0.5, max_seconds=None)
        summary = optimizer.minimize(residual, np.zeros(1))

        assert summary.final_cost > 0
        assert summary.final_cost == pytest.approx(huber_cost(residual(summary.x), 0.5))


class TestDeadlineLeastSquares:
    """Test suite for DeadlineLeastSquares."""

    def test_converges_on_linear_problem(self):
        """Test that a well-posed problem is solved."""
        optimizer = DeadlineLeastSquares(huber_delta=1.0, max_seconds=None, num_workers=2)
        summary = optimizer.minimize(linear_residual, np.zeros(3))

        assert summary.status == OptimizerStatus.CONVERGED
        assert np.allclose(summary.x, X_TRUE, atol=1e-5)
        assert summary.final_cost < 1e-10
        assert summary.final_cost <= summary.initial_cost
        assert not summary.timed_out

    def test_robust_to_outlier(self):
        """Test that the Huber loss limits the pull of a gross outlier."""
        rows = np.vstack([np.eye(2)] * 10)
        target = np.tile([1.0, 2.0], 10)
        target[0] = 100.0

        def residual(x: np.ndarray) -> np.ndarray:
            return rows @ x - target

        summary = DeadlineLeastSquares(huber_delta=0.5, max_seconds=None).minimize(
            residual, np.zeros(2)
        )

        # Plain least squares would give x[0] = (100 + 9) / 10 = 10.9
        assert summary.x[0] < 2.0
        assert summary.x[1] == pytest.approx(2.0, abs=1e-3)

    def test_deadline_returns_best_iterate(self):
        """Test that a slow residual stops at the deadline with the best point."""

        def slow_residual(x: np.ndarray) -> np.ndarray:
            time.sleep(0.01)
            return linear_residual(x)

        optimizer = DeadlineLeastSquares(max_seconds=0.03, num_workers=1)
        start = time.monotonic()
        summary = optimizer.minimize(slow_residual, np.zeros(3))
        elapsed = time.monotonic() - start

        assert summary.status == OptimizerStatus.DEADLINE
        assert summary.timed_out
        assert summary.final_cost <= summary.initial_cost
        assert summary.final_cost == pytest.approx(
            huber_cost(linear_residual(summary.x), 1.0)
        )
        # One Jacobian (six evaluations) may overrun the budget
        assert elapsed < 1.0

    def test_zero_budget_evaluates_initial_point_only(self):
        """Test that a zero budget returns the initial parameters."""
        calls = []

        def residual(x: np.ndarray) -> np.ndarray:
            calls.append(x.copy())
            return linear_residual(x)

        summary = DeadlineLeastSquares(max_seconds=0.0).minimize(residual, np.zeros(3))

        assert summary.status == OptimizerStatus.DEADLINE
        assert np.array_equal(summary.x, np.zeros(3))
        assert summary.num_evaluations == 1
        assert len(calls) == 1

    def test_max_evaluations(self):
        """Test that the evaluation cap is reported."""

        def rosenbrock(x: np.ndarray) -> np.ndarray:
            return np.array([10 * (x[1] - x[0] ** 2), 1 - x[0]])

        summary = DeadlineLeastSquares(max_seconds=None, max_evaluations=2).minimize(
            rosenbrock, np.array([-1.2, 1.0])
        )

        assert summary.status == OptimizerStatus.MAX_EVALUATIONS

    def test_residual_errors_propagate(self):
        """Test that evaluation failures are not turned into a status."""

        def failing(x: np.ndarray) -> np.ndarray:
            raise UnsupportedParameterError("bad parameters")

        with pytest.raises(UnsupportedParameterError, match="bad parameters"):
            DeadlineLeastSquares(max_seconds=None).minimize(failing, np.zeros(3))

    def test_jacobian_errors_propagate(self):
        """Test that failures inside Jacobian workers are re-raised."""
        state = {"calls": 0}

        def fails_after_first(x: np.ndarray) -> np.ndarray:
            state["calls"] += 1
            if state["calls"] > 1:
                raise UnsupportedParameterError("worker failure")
            return linear_residual(x)

        with pytest.raises(UnsupportedParameterError, match="worker failure"):
            DeadlineLeastSquares(max_seconds=None, num_workers=2).minimize(
                fails_after_first, np.zeros(3)
            )

    def test_step_sizes_must_match(self):
        """Test that per-parameter steps must match the parameter count."""
        optimizer = DeadlineLeastSquares(step_sizes=np.ones(2))
        with pytest.raises(ValueError, match="step_sizes"):
            optimizer.minimize(linear_residual, np.zeros(3))

    def test_from_config(self):
        """Test construction from a tracking configuration."""
        config = TrackingConfig(rotation_step=1e-2, translation_step=2e-2, num_workers=3)
        optimizer = DeadlineLeastSquares.from_config(config)

        assert np.allclose(optimizer.step_sizes, [1e-2] * 3 + [2e-2] * 3)
        assert optimizer.num_workers == 3
        assert optimizer.max_seconds == config.max_seconds
        assert optimizer.huber_delta == config.huber_delta

    def test_step_sizes_are_read_only(self):
        """Test that the exposed steps cannot change the optimizer."""
        optimizer = DeadlineLeastSquares(step_sizes=np.full(3, 1e-3))
        optimizer.step_sizes[0] = 1.0

        assert np.allclose(optimizer.step_sizes, 1e-3)

    def test_uses_all_cores_by_default(self, monkeypatch: pytest.MonkeyPatch):
        """Test that the default worker count follows the machine."""
        monkeypatch.setattr(os, "cpu_count", lambda: 6)

        assert DeadlineLeastSquares().num_workers == 6
        assert DeadlineLeastSquares(num_workers=2).num_workers == 2

    def test_default_steps_are_sub_pixel(self, intrinsics: CameraIntrinsics):
        """Test that the default steps move a projection by well under a pixel."""
        config = TrackingConfig()
        depth = 2.5

        rotation_shift = intrinsics.fx * config.rotation_step
        translation_shift = intrinsics.fx * config.translation_step / depth

        assert rotation_shift < 0.5
        assert translation_shift < 0.5


class TestJacobianColumn:
    """Test suite for the adaptive central difference."""

    @staticmethod
    def staircase(x: np.ndarray) -> np.ndarray:
        return np.array([np.floor(x[0])])

    def test_step_grows_on_flat_column(self):
        """Test that a flat difference doubles the step until it sees a change."""
        optimizer = DeadlineLeastSquares(max_step_doublings=4)
        column = optimizer._jacobian_column(self.staircase, np.array([0.5]), 0, 0.1)

        # Steps 0.1, 0.2, 0.4 are flat; 0.8 spans floor(-0.3) to floor(1.3)
        assert column[0] == pytest.approx(2.0 / 1.6)

    def test_flat_column_without_doublings(self):
        """Test that no doubling keeps the zero derivative."""
        optimizer = DeadlineLeastSquares(max_step_doublings=0)
        column = optimizer._jacobian_column(self.staircase, np.array([0.5]), 0, 0.1)

        assert column[0] == 0.0

    def test_smooth_function(self):
        """Test central difference accuracy on a smooth function."""
        optimizer = DeadlineLeastSquares()
        column = optimizer._jacobian_column(
            lambda x: np.array([x[0] ** 2, np.sin(x[1])]), np.array([1.0, 0.0]), 0, 1e-4
        )
        assert np.allclose(column, [2.0, 0.0], atol=1e-6)
