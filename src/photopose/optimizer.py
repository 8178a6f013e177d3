"""Robust least-squares with a wall-clock deadline.

Wraps scipy.optimize.least_squares (Trust Region Reflective) with:
- a Huber loss on the residuals,
- a cooperative deadline checked between residual evaluations, after
  which the best iterate found so far is returned,
- a central-difference Jacobian whose columns are evaluated on a thread
  pool, growing the step for columns that come out flat.

The cost reported everywhere is scipy's robust cost
0.5 * sum(rho(f_i)), with rho the Huber function of scale delta:
rho(f) = f^2 for |f| <= delta and 2 * delta * |f| - delta^2 otherwise.
"""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

import numpy as np
from scipy.optimize import least_squares

if TYPE_CHECKING:
    from .config import TrackingConfig

logger = logging.getLogger(__name__)

ResidualFunction = Callable[[np.ndarray], np.ndarray]


class OptimizerStatus(Enum):
    """How the optimization terminated."""

    CONVERGED = "converged"
    MAX_EVALUATIONS = "max_evaluations"
    DEADLINE = "deadline"
    FAILED = "failed"


@dataclass
class OptimizerSummary:
    """Result of a deadline-bounded optimization."""

    x: np.ndarray  # Best parameters found
    initial_cost: float
    final_cost: float
    num_evaluations: int  # Residual evaluations excluding the Jacobian
    status: OptimizerStatus
    message: str = ""
    elapsed_s: float = 0.0

    @property
    def timed_out(self) -> bool:
        """Return True if the deadline ended the search."""
        return self.status == OptimizerStatus.DEADLINE


class _DeadlineReached(Exception):
    """Raised inside scipy's loop to stop at the deadline."""


def huber_cost(residuals: np.ndarray, delta: float) -> float:
    """Return 0.5 * sum of Huber-weighted squared residuals."""
    abs_res = np.abs(residuals)
    rho = np.where(
        abs_res <= delta,
        abs_res**2,
        2.0 * delta * abs_res - delta**2,
    )
    return 0.5 * float(np.sum(rho))


class DeadlineLeastSquares:
    """Huber-robust nonlinear least squares that respects a time budget.

    The deadline never interrupts a residual evaluation already running.
    It is checked before each function evaluation requested by scipy and
    before each Jacobian, so the overrun is bounded by one Jacobian.
    """

    def __init__(
        self,
        huber_delta: float = 1.0,
        max_seconds: float | None = 0.05,
        num_workers: int | None = None,
        step_sizes: np.ndarray | None = None,
        max_step_doublings: int = 4,
        max_evaluations: int = 200,
        ftol: float = 1e-6,
        xtol: float = 1e-6,
        gtol: float = 1e-8,
    ) -> None:
        """Initialize the optimizer.

        Args:
            huber_delta: Huber loss scale; larger residuals are down-weighted
            max_seconds: Wall-clock budget, None for no deadline
            num_workers: Threads used for Jacobian columns, None = all cores
            step_sizes: Per-parameter finite-difference steps (default 1e-3)
            max_step_doublings: Times a flat column's step may be doubled
            max_evaluations: Maximum residual evaluations (scipy max_nfev)
            ftol: Function tolerance for convergence
            xtol: Parameter tolerance for convergence
            gtol: Gradient tolerance for convergence
        """
        self._huber_delta = huber_delta
        self._max_seconds = max_seconds
        self._num_workers = max(1, int(num_workers or os.cpu_count() or 1))
        self._step_sizes = None if step_sizes is None else np.asarray(step_sizes, dtype=np.float64)
        self._max_step_doublings = max_step_doublings
        self._max_evaluations = max_evaluations
        self._ftol = ftol
        self._xtol = xtol
        self._gtol = gtol

    @property
    def huber_delta(self) -> float:
        """Return the Huber loss scale."""
        return self._huber_delta

    @property
    def max_seconds(self) -> float | None:
        """Return the wall-clock budget, None when unbounded."""
        return self._max_seconds

    @property
    def num_workers(self) -> int:
        """Return the number of Jacobian worker threads."""
        return self._num_workers

    @property
    def step_sizes(self) -> np.ndarray | None:
        """Return a copy of the per-parameter finite-difference steps."""
        return None if self._step_sizes is None else self._step_sizes.copy()

    @classmethod
    def from_config(cls, config: TrackingConfig) -> DeadlineLeastSquares:
        """Create a pose optimizer from a tracking configuration."""
        return cls(
            huber_delta=config.huber_delta,
            max_seconds=config.max_seconds,
            num_workers=config.workers,
            step_sizes=np.array([config.rotation_step] * 3 + [config.translation_step] * 3),
            max_step_doublings=config.max_step_doublings,
            max_evaluations=config.max_evaluations,
            ftol=config.ftol,
            xtol=config.xtol,
            gtol=config.gtol,
        )

    def _jacobian_column(
        self, fun: ResidualFunction, x: np.ndarray, j: int, step: float
    ) -> np.ndarray:
        """Central difference along parameter j, growing the step if flat."""
        column = None
        for _ in range(self._max_step_doublings + 1):
            x_plus = x.copy()
            x_minus = x.copy()
            x_plus[j] += step
            x_minus[j] -= step
            column = (fun(x_plus) - fun(x_minus)) / (2.0 * step)
            if np.any(column != 0):
                break
            step *= 2.0
        return column

    def minimize(self, fun: ResidualFunction, x0: np.ndarray) -> OptimizerSummary:
        """Minimize the robust cost of fun starting from x0.

        Args:
            fun: Residual function mapping parameters to a residual vector
            x0: Initial parameters

        Returns:
            OptimizerSummary; a deadline stop returns the best iterate
        """
        x0 = np.asarray(x0, dtype=np.float64).ravel()
        steps = self._step_sizes
        if steps is None:
            steps = np.full(len(x0), 1e-3)
        if steps.shape != x0.shape:
            raise ValueError(f"step_sizes must be {x0.shape}, got {steps.shape}")

        start = time.monotonic()
        deadline = None if self._max_seconds is None else start + self._max_seconds

        best = {"x": x0.copy(), "cost": np.inf, "initial": np.inf, "nfev": 0}

        def past_deadline() -> bool:
            return deadline is not None and time.monotonic() >= deadline

        def tracked(x: np.ndarray) -> np.ndarray:
            # The initial point is always evaluated
            if best["nfev"] > 0 and past_deadline():
                raise _DeadlineReached
            residuals = fun(x)
            cost = huber_cost(residuals, self._huber_delta)
            if best["nfev"] == 0:
                best["initial"] = cost
            best["nfev"] += 1
            if cost < best["cost"]:
                best["x"] = np.array(x, dtype=np.float64)
                best["cost"] = cost
            return residuals

        with ThreadPoolExecutor(max_workers=self._num_workers) as executor:

            def jacobian(x: np.ndarray) -> np.ndarray:
                if past_deadline():
                    raise _DeadlineReached
                futures = [
                    executor.submit(self._jacobian_column, fun, x, j, steps[j])
                    for j in range(len(x))
                ]
                return np.column_stack([future.result() for future in futures])

            try:
                result = least_squares(
                    fun=tracked,
                    x0=x0,
                    jac=jacobian,
                    method="trf",
                    loss="huber",
                    f_scale=self._huber_delta,
                    ftol=self._ftol,
                    xtol=self._xtol,
                    gtol=self._gtol,
                    max_nfev=self._max_evaluations,
                    verbose=0,
                )
            except _DeadlineReached:
                elapsed = time.monotonic() - start
                logger.debug(
                    "Deadline reached after %.4fs and %d evaluations",
                    elapsed,
                    best["nfev"],
                )
                return OptimizerSummary(
                    x=best["x"],
                    initial_cost=best["initial"],
                    final_cost=best["cost"],
                    num_evaluations=best["nfev"],
                    status=OptimizerStatus.DEADLINE,
                    message="Time budget exhausted, returning best iterate",
                    elapsed_s=elapsed,
                )

        if result.status > 0:
            status = OptimizerStatus.CONVERGED
        elif result.status == 0:
            status = OptimizerStatus.MAX_EVALUATIONS
        else:
            status = OptimizerStatus.FAILED

        return OptimizerSummary(
            x=result.x.copy(),
            initial_cost=best["initial"],
            final_cost=float(result.cost),
            num_evaluations=best["nfev"],
            status=status,
            message=str(result.message),
            elapsed_s=time.monotonic() - start,
        )
