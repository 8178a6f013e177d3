"""Uncertainty-weighted photometric residuals for direct tracking.

For a candidate relative pose (R, t) every reference point is projected
into the new image twice: once at its estimated depth and once at the depth
shifted by one standard deviation. The color error at the first location is
normalized by how much the error changes under the depth shift plus a
constant pixel noise floor:

    res_i   = || c_ref_i - I(u_i,  v_i)  ||
    res'_i  = || c_ref_i - I(u'_i, v'_i) ||
    rho_i   = res_i / sqrt((res'_i - res_i)^2 + 2 * sigma_pixel^2)

Points where either projection leaves the image take the mean of the valid
residuals so the vector length stays fixed without pulling the optimum
toward out-of-frame points. When no point is valid every entry takes a
constant larger than any residual an in-frame pose can produce.
"""

from __future__ import annotations

import logging
import threading

import cv2
import numpy as np

from .errors import UnsupportedParameterError
from .keyframe import ReferenceHighGradientSet
from .projection import (
    as_color_image,
    backproject,
    in_bounds,
    project_camera_points,
    sample_colors,
    to_pixel_indices,
)

logger = logging.getLogger(__name__)

# Real numeric dtype kinds: signed, unsigned, float
_SUPPORTED_KINDS = "iuf"


def _as_vector3(value: np.ndarray, name: str) -> np.ndarray:
    array = np.asarray(value)
    if array.dtype.kind not in _SUPPORTED_KINDS:
        raise UnsupportedParameterError(
            f"{name} must be real-valued, got dtype {array.dtype}"
        )
    array = array.astype(np.float64).ravel()
    if array.shape != (3,):
        raise ValueError(f"{name} must have 3 elements, got {array.shape}")
    return array


class PhotometricResidual:
    """Residual model bound to one image, point set and calibration.

    Instances are stateless with respect to the pose: every call recomputes
    the full residual vector from the pose parameters. They are safe to call
    from several threads at once.

    Example:
        >>> residual = PhotometricResidual(image, kf.points, K, inv_K, 4.0)
        >>> rho = residual.evaluate(np.zeros(3), np.zeros(3))
    """

    def __init__(
        self,
        image: np.ndarray,
        points: ReferenceHighGradientSet,
        K: np.ndarray,
        inv_K: np.ndarray,
        pixel_noise_variance: float,
        degenerate_residual: float = 100.0,
    ) -> None:
        """Bind the residual to its fixed context.

        Args:
            image: New camera image, HxWx3 (or HxW gray)
            points: Reference high-gradient points of the keyframe
            K: 3x3 intrinsic matrix of the new camera
            inv_K: 3x3 inverse intrinsic matrix of the reference camera
            pixel_noise_variance: Sensor noise variance in intensity^2
            degenerate_residual: Lower bound of every residual when no point
                projects inside the image; raised to twice the largest
                residual a valid point can take
        """
        if pixel_noise_variance < 0:
            raise ValueError(
                f"pixel_noise_variance must be >= 0, got {pixel_noise_variance}"
            )

        self._image = as_color_image(image).view()
        self._image.setflags(write=False)
        self._height, self._width = self._image.shape[:2]
        self._points = points
        self._K = np.asarray(K, dtype=np.float64)
        self._noise_floor = 2.0 * float(pixel_noise_variance)

        # Reference-camera points depend only on the bound context
        inv_K = np.asarray(inv_K, dtype=np.float64)
        self._points_ref = backproject(inv_K, points.homo_coords, points.depth)
        self._points_ref_shifted = backproject(
            inv_K, points.homo_coords, points.depth + points.depth_uncertainty
        )

        self._lock = threading.Lock()
        self._num_evaluations = 0
        self._degenerate_evaluations = 0
        self._last_valid_count = 0

        self._max_valid_residual = self._residual_bound()
        if np.isfinite(self._max_valid_residual):
            # Strictly above any in-frame residual
            self._degenerate_residual = max(
                float(degenerate_residual), 2.0 * self._max_valid_residual
            )
        else:
            self._degenerate_residual = float(degenerate_residual)
            logger.warning(
                "Zero pixel noise variance leaves valid residuals unbounded; "
                "an all-invalid pose costs %.1f per point and may be preferred",
                self._degenerate_residual,
            )

    def _residual_bound(self) -> float:
        """Largest normalized residual a valid point can take."""
        if self._noise_floor == 0:
            return np.inf
        colors = self._points.colors
        low = float(self._image.min())
        high = float(self._image.max())
        if len(colors):
            low = min(low, float(colors.min()))
            high = max(high, float(colors.max()))
        channels = self._image.shape[2]
        return (high - low) * np.sqrt(channels) / np.sqrt(self._noise_floor)

    @property
    def num_residuals(self) -> int:
        """Return N, the length of every residual vector."""
        return len(self._points)

    @property
    def degenerate_residual(self) -> float:
        """Return the constant residual used when no point is valid."""
        return self._degenerate_residual

    @property
    def max_valid_residual(self) -> float:
        """Return the upper bound of in-frame residuals, inf without noise."""
        return self._max_valid_residual

    @property
    def num_evaluations(self) -> int:
        """Return how many times the residual has been evaluated."""
        return self._num_evaluations

    @property
    def degenerate_evaluations(self) -> int:
        """Return how many evaluations had no valid point."""
        return self._degenerate_evaluations

    @property
    def last_valid_count(self) -> int:
        """Return the number of valid points in the latest evaluation."""
        return self._last_valid_count

    def _project(
        self, rotation: np.ndarray, translation: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        pixels, z = project_camera_points(self._K, self._points_ref, rotation, translation)
        pixels_shifted, z_shifted = project_camera_points(
            self._K, self._points_ref_shifted, rotation, translation
        )
        idx = to_pixel_indices(pixels)
        idx_shifted = to_pixel_indices(pixels_shifted)

        valid = in_bounds(idx, self._width, self._height, z)
        valid &= in_bounds(idx_shifted, self._width, self._height, z_shifted)
        return idx, idx_shifted, valid

    def valid_mask(self, rvec: np.ndarray, tvec: np.ndarray) -> np.ndarray:
        """Return which points pass the dual bounds check at a pose."""
        rotation, _ = cv2.Rodrigues(_as_vector3(rvec, "rvec"))
        _, _, valid = self._project(rotation, _as_vector3(tvec, "tvec"))
        return valid

    def evaluate(self, rvec: np.ndarray, tvec: np.ndarray) -> np.ndarray:
        """Compute the N normalized photometric residuals at a pose.

        Args:
            rvec: Rodrigues rotation vector (reference to new camera)
            tvec: Translation vector (reference to new camera)

        Returns:
            (N,) float64 residual vector

        Raises:
            UnsupportedParameterError: If the parameters are not real numbers
        """
        rvec = _as_vector3(rvec, "rvec")
        tvec = _as_vector3(tvec, "tvec")
        rotation, _ = cv2.Rodrigues(rvec)

        idx, idx_shifted, valid = self._project(rotation, tvec)
        num_valid = int(np.count_nonzero(valid))
        residuals = np.empty(self.num_residuals, dtype=np.float64)

        with self._lock:
            self._num_evaluations += 1
            self._last_valid_count = num_valid
            if num_valid == 0:
                self._degenerate_evaluations += 1

        if num_valid == 0:
            logger.warning(
                "No reference point projects inside the image "
                "(rvec=%s, tvec=%s)",
                np.round(rvec, 4),
                np.round(tvec, 4),
            )
            residuals.fill(self._degenerate_residual)
            return residuals

        ref_colors = self._points.colors[valid]
        res = np.linalg.norm(ref_colors - sample_colors(self._image, idx[valid]), axis=1)
        res_shifted = np.linalg.norm(
            ref_colors - sample_colors(self._image, idx_shifted[valid]), axis=1
        )

        var = np.sqrt((res_shifted - res) ** 2 + self._noise_floor)
        # var is zero only when res == res_shifted and the noise floor is zero
        normalized = np.divide(res, var, out=np.zeros_like(res), where=var > 0)

        residuals[valid] = normalized
        residuals[~valid] = normalized.mean()

        logger.debug(
            "angle=%.5f t=%s valid=%d/%d cost=%.4f",
            np.linalg.norm(rvec),
            np.round(tvec, 5),
            num_valid,
            self.num_residuals,
            float(np.sum(residuals**2)),
        )
        return residuals

    def __call__(self, params: np.ndarray) -> np.ndarray:
        """Evaluate from a packed [rx, ry, rz, tx, ty, tz] vector."""
        params = np.asarray(params)
        if params.dtype.kind not in _SUPPORTED_KINDS:
            raise UnsupportedParameterError(
                f"Pose parameters must be real-valued, got dtype {params.dtype}"
            )
        params = params.ravel()
        if params.shape != (6,):
            raise ValueError(f"Pose parameters must be (6,), got {params.shape}")
        return self.evaluate(params[:3], params[3:])
