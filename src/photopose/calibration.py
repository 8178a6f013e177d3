"""Pinhole camera calibration."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
import yaml


def _readonly(array: np.ndarray) -> np.ndarray:
    array = np.array(array, dtype=np.float64)
    array.setflags(write=False)
    return array


@dataclass(frozen=True)
class CameraIntrinsics:
    """Camera intrinsic parameters (pinhole model) and image size.

    Images are assumed to be undistorted already. The matrix K and its
    inverse are computed once and exposed as read-only arrays.
    """

    fx: float  # Focal length x (pixels)
    fy: float  # Focal length y (pixels)
    cx: float  # Principal point x (pixels)
    cy: float  # Principal point y (pixels)
    width: int  # Image width (pixels)
    height: int  # Image height (pixels)
    K: np.ndarray = field(init=False, repr=False, compare=False)
    inv_K: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.fx <= 0 or self.fy <= 0:
            raise ValueError(
                f"Focal lengths must be positive, got fx={self.fx}, fy={self.fy}"
            )
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Image size must be positive, got {self.width}x{self.height}"
            )

        K = np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )
        object.__setattr__(self, "K", _readonly(K))
        object.__setattr__(self, "inv_K", _readonly(np.linalg.inv(K)))

    @classmethod
    def from_matrix(cls, K: np.ndarray, width: int, height: int) -> CameraIntrinsics:
        """Create intrinsics from a 3x3 camera matrix.

        Args:
            K: 3x3 intrinsic matrix (zero skew)
            width: Image width in pixels
            height: Image height in pixels

        Returns:
            CameraIntrinsics instance
        """
        K = np.asarray(K, dtype=np.float64)
        if K.shape != (3, 3):
            raise ValueError(f"Camera matrix must be 3x3, got {K.shape}")

        return cls(
            fx=float(K[0, 0]),
            fy=float(K[1, 1]),
            cx=float(K[0, 2]),
            cy=float(K[1, 2]),
            width=int(width),
            height=int(height),
        )

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> CameraIntrinsics:
        """Parse a EuRoC-style sensor.yaml calibration file.

        Only the pinhole intrinsics ``[fu, fv, cu, cv]`` and the
        ``resolution`` ``[width, height]`` are read.

        Args:
            yaml_path: Path to sensor.yaml file

        Returns:
            CameraIntrinsics instance

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If file format is invalid
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Calibration file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        intrinsics_list = data.get("intrinsics")
        if intrinsics_list is None or len(intrinsics_list) != 4:
            raise ValueError(f"Invalid intrinsics in {yaml_path}")

        resolution = data.get("resolution")
        if resolution is None or len(resolution) != 2:
            raise ValueError(f"Invalid resolution in {yaml_path}")

        return cls(
            fx=float(intrinsics_list[0]),
            fy=float(intrinsics_list[1]),
            cx=float(intrinsics_list[2]),
            cy=float(intrinsics_list[3]),
            width=int(resolution[0]),
            height=int(resolution[1]),
        )

    @property
    def image_size(self) -> tuple[int, int]:
        """Return image size as (width, height)."""
        return (self.width, self.height)
