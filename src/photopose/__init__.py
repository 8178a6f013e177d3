"""photopose - direct photometric camera tracking against keyframes."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .calibration import CameraIntrinsics
from .config import TrackingConfig
from .errors import DegenerateInputError, PhotoposeError, UnsupportedParameterError
from .estimator import (
    PoseEstimationResult,
    PoseEstimator,
    compute_valid_ratio,
    estimate_camera_pose,
)
from .io import load_image, load_keyframe, save_keyframe
from .keyframe import ReferenceHighGradientSet, ReferenceKeyframe
from .optimizer import DeadlineLeastSquares, OptimizerStatus, OptimizerSummary
from .pose import SE3, rotation_angle, translation_distance
from .residual import PhotometricResidual

__all__ = [
    "__version__",
    # Calibration / configuration
    "CameraIntrinsics",
    "TrackingConfig",
    # Keyframe data
    "ReferenceHighGradientSet",
    "ReferenceKeyframe",
    # Pose
    "SE3",
    "rotation_angle",
    "translation_distance",
    # Residual model and optimizer
    "PhotometricResidual",
    "DeadlineLeastSquares",
    "OptimizerStatus",
    "OptimizerSummary",
    # Pose estimation
    "PoseEstimator",
    "PoseEstimationResult",
    "estimate_camera_pose",
    "compute_valid_ratio",
    # I/O
    "load_image",
    "load_keyframe",
    "save_keyframe",
    # Errors
    "PhotoposeError",
    "DegenerateInputError",
    "UnsupportedParameterError",
]
