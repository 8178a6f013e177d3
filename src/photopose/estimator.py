"""Direct photometric camera pose estimation against a reference keyframe.

The relative pose of the new camera with respect to the keyframe is found
by minimizing the uncertainty-weighted photometric residuals of the
keyframe's high-gradient points under a Huber loss, starting from the
identity. The search is bounded by a wall-clock deadline; running out of
time returns the best pose found so far.

Pose convention:
    keyframe.pose   T_ref_world  (world -> keyframe camera)
    relative_pose   T_new_ref    (keyframe camera -> new camera)
    pose            T_new_world = T_new_ref @ T_ref_world
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

import numpy as np

from .calibration import CameraIntrinsics
from .config import TrackingConfig
from .errors import DegenerateInputError
from .keyframe import ReferenceKeyframe
from .optimizer import DeadlineLeastSquares, OptimizerStatus
from .pose import SE3, rotation_angle, translation_distance
from .projection import in_bounds, project_points, to_pixel_indices
from .residual import PhotometricResidual

logger = logging.getLogger(__name__)


@dataclass
class PoseEstimationResult:
    """Result of photometric pose estimation.

    Attributes:
        relative_pose: T_new_ref, maps keyframe-camera points to the new camera
        pose: T_new_world, the new camera's world-to-camera pose
        rotation_angle: Rotation angle of the relative pose (radians)
        translation_distance: Translation magnitude of the relative pose
        valid_ratio: Fraction of points projecting inside the new image
        normalized_cost: Final robust cost divided by the number of points
        initial_cost: Robust cost at the identity pose
        final_cost: Robust cost at the returned pose
        num_evaluations: Residual evaluations used by the optimizer
        status: Optimizer termination status
        degenerate: True if no point is valid at the returned pose
        elapsed_s: Wall-clock time spent optimizing
        message: Optimizer message
    """

    relative_pose: SE3
    pose: SE3
    rotation_angle: float
    translation_distance: float
    valid_ratio: float
    normalized_cost: float
    initial_cost: float
    final_cost: float
    num_evaluations: int
    status: OptimizerStatus
    degenerate: bool = False
    elapsed_s: float = 0.0
    message: str = ""

    @property
    def timed_out(self) -> bool:
        """Return True if the time budget ended the search."""
        return self.status == OptimizerStatus.DEADLINE


def compute_valid_ratio(
    relative_pose: SE3,
    keyframe: ReferenceKeyframe,
    K: np.ndarray,
    inv_K: np.ndarray,
    width: int,
    height: int,
) -> float:
    """Fraction of keyframe points whose projection lies inside the image.

    Only the projection at the estimated depth is checked.
    """
    points = keyframe.points
    pixels, z = project_points(
        K,
        inv_K,
        points.homo_coords,
        points.depth,
        relative_pose.rotation,
        relative_pose.translation,
    )
    valid = in_bounds(to_pixel_indices(pixels), width, height, z)
    return float(np.count_nonzero(valid)) / len(points)


def _validate_inputs(
    image: np.ndarray, K: np.ndarray, inv_K: np.ndarray, keyframe: ReferenceKeyframe
) -> None:
    if keyframe.num_points == 0:
        raise DegenerateInputError(
            f"Keyframe {keyframe.id} has no high-gradient points"
        )
    if image.ndim not in (2, 3) or image.size == 0:
        raise ValueError(f"Image must be a non-empty HxW or HxWx3 array, got {image.shape}")
    if image.dtype.kind not in "uif":
        raise ValueError(f"Image must be numeric, got dtype {image.dtype}")
    if K.shape != (3, 3) or inv_K.shape != (3, 3):
        raise ValueError(
            f"K and inv_K must be 3x3, got {K.shape} and {inv_K.shape}"
        )


def estimate_camera_pose(
    image: np.ndarray,
    K: np.ndarray,
    inv_K: np.ndarray,
    keyframe: ReferenceKeyframe,
    pixel_noise_variance: float,
    max_seconds: float | None,
    config: TrackingConfig | None = None,
) -> PoseEstimationResult:
    """Estimate the pose of a new image relative to a reference keyframe.

    Assumes small inter-frame motion: the search starts at the identity and
    converges to the nearest local optimum.

    Args:
        image: New camera image (HxWx3 color or HxW gray), undistorted
        K: 3x3 intrinsic matrix
        inv_K: 3x3 inverse intrinsic matrix
        keyframe: Reference keyframe with high-gradient points and pose
        pixel_noise_variance: Camera pixel noise variance (intensity^2)
        max_seconds: Wall-clock budget; None disables the deadline
        config: Remaining solver settings (Huber scale, steps, workers)

    Returns:
        PoseEstimationResult; a deadline stop is a normal result

    Raises:
        DegenerateInputError: If the keyframe has no points
        ValueError: If the image or calibration is malformed
    """
    image = np.asarray(image)
    K = np.asarray(K, dtype=np.float64)
    inv_K = np.asarray(inv_K, dtype=np.float64)
    _validate_inputs(image, K, inv_K, keyframe)

    config = replace(
        config or TrackingConfig(),
        pixel_noise_variance=pixel_noise_variance,
        max_seconds=max_seconds,
    )
    height, width = image.shape[:2]
    num_points = keyframe.num_points

    residual = PhotometricResidual(
        image,
        keyframe.points,
        K,
        inv_K,
        pixel_noise_variance=config.pixel_noise_variance,
        degenerate_residual=config.degenerate_residual,
    )
    optimizer = DeadlineLeastSquares.from_config(config)

    logger.info(
        "Tracking against keyframe %d: %d points, budget %s s, %d workers",
        keyframe.id,
        num_points,
        max_seconds,
        config.workers,
    )

    # Identity rotation and zero translation
    summary = optimizer.minimize(residual, np.zeros(6))

    relative_pose = SE3.from_params(summary.x)
    pose = relative_pose @ keyframe.pose

    valid_ratio = compute_valid_ratio(relative_pose, keyframe, K, inv_K, width, height)
    degenerate = not residual.valid_mask(summary.x[:3], summary.x[3:]).any()
    if degenerate:
        logger.warning(
            "Keyframe %d: no point projects inside the image at the final pose",
            keyframe.id,
        )

    result = PoseEstimationResult(
        relative_pose=relative_pose,
        pose=pose,
        rotation_angle=rotation_angle(relative_pose.rotation),
        translation_distance=translation_distance(relative_pose.translation),
        valid_ratio=valid_ratio,
        normalized_cost=summary.final_cost / num_points,
        initial_cost=summary.initial_cost,
        final_cost=summary.final_cost,
        num_evaluations=summary.num_evaluations,
        status=summary.status,
        degenerate=degenerate,
        elapsed_s=summary.elapsed_s,
        message=summary.message,
    )

    logger.info(
        "Solver finished (%s) with final cost %.4f after %d evaluations in %.3fs",
        summary.status.value,
        summary.final_cost,
        summary.num_evaluations,
        summary.elapsed_s,
    )
    return result


class PoseEstimator:
    """Tracks new images against reference keyframes with one calibration.

    Holds only configuration; every call to estimate() is independent.

    Example:
        >>> estimator = PoseEstimator(CameraIntrinsics.from_yaml("cam0.yaml"))
        >>> result = estimator.estimate(image, keyframe)
        >>> if result.normalized_cost > threshold:
        ...     ...  # tracking quality is poor, consider a new keyframe
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        config: TrackingConfig | None = None,
    ) -> None:
        """Initialize the estimator.

        Args:
            intrinsics: Calibration of the camera producing new images
            config: Tracking configuration
        """
        self._intrinsics = intrinsics
        self._config = config or TrackingConfig()

    @property
    def config(self) -> TrackingConfig:
        """Return the tracking configuration."""
        return self._config

    def estimate(
        self, image: np.ndarray, keyframe: ReferenceKeyframe
    ) -> PoseEstimationResult:
        """Estimate the pose of image relative to keyframe.

        Back-projection uses the keyframe's own inverse intrinsics when it
        carries them, otherwise the estimator's calibration.

        Args:
            image: New camera image matching the calibration's size
            keyframe: Reference keyframe

        Returns:
            PoseEstimationResult
        """
        image = np.asarray(image)
        expected = (self._intrinsics.height, self._intrinsics.width)
        if image.shape[:2] != expected:
            raise ValueError(
                f"Image size {image.shape[:2]} does not match calibration {expected}"
            )

        inv_K = keyframe.inv_K if keyframe.inv_K is not None else self._intrinsics.inv_K
        return estimate_camera_pose(
            image,
            self._intrinsics.K,
            inv_K,
            keyframe,
            pixel_noise_variance=self._config.pixel_noise_variance,
            max_seconds=self._config.max_seconds,
            config=self._config,
        )
