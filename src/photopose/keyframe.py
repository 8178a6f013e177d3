"""Reference keyframe data consumed by the tracker.

A reference keyframe carries a sparse set of high-gradient pixels, each
with a depth estimate, a depth uncertainty and the color observed when the
keyframe was captured. Creating keyframes and selecting their points is
done elsewhere; this module only holds and validates the data.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from .pose import SE3


def _frozen(array: np.ndarray, dtype: type) -> np.ndarray:
    array = np.array(array, dtype=dtype)
    array.setflags(write=False)
    return array


@dataclass
class ReferenceHighGradientSet:
    """Index-aligned arrays describing N high-gradient points.

    Index i refers to the same physical point in every array. Arrays are
    copied and made read-only on construction.

    Attributes:
        homo_coords: (N, 3) homogeneous pixel coordinates (x, y, 1)
        depth: (N,) depth estimates in the keyframe camera
        depth_uncertainty: (N,) square root of the depth variance
        colors: (N, 3) observed pixel colors
    """

    homo_coords: np.ndarray
    depth: np.ndarray
    depth_uncertainty: np.ndarray
    colors: np.ndarray

    def __post_init__(self) -> None:
        """Validate shapes and freeze the arrays."""
        self.homo_coords = _frozen(self.homo_coords, np.float64)
        self.depth = _frozen(np.ravel(self.depth), np.float64)
        self.depth_uncertainty = _frozen(np.ravel(self.depth_uncertainty), np.float64)
        self.colors = _frozen(self.colors, np.float64)

        n = len(self.depth)
        if self.homo_coords.shape != (n, 3):
            raise ValueError(
                f"homo_coords must be ({n}, 3), got {self.homo_coords.shape}"
            )
        if self.depth_uncertainty.shape != (n,):
            raise ValueError(
                f"depth_uncertainty must be ({n},), got {self.depth_uncertainty.shape}"
            )
        if self.colors.shape != (n, 3):
            raise ValueError(f"colors must be ({n}, 3), got {self.colors.shape}")

        for name in ("homo_coords", "depth", "depth_uncertainty", "colors"):
            if not np.all(np.isfinite(getattr(self, name))):
                raise ValueError(f"{name} contains non-finite values")
        if np.any(self.depth_uncertainty < 0):
            raise ValueError("depth_uncertainty must be non-negative")

    @classmethod
    def from_pixels(
        cls,
        pixels: np.ndarray,
        depth: np.ndarray,
        depth_uncertainty: np.ndarray,
        colors: np.ndarray,
    ) -> ReferenceHighGradientSet:
        """Build a point set from (N, 2) pixel coordinates.

        Args:
            pixels: (N, 2) pixel coordinates (x, y) in the keyframe image
            depth: (N,) depth estimates
            depth_uncertainty: (N,) depth standard deviations
            colors: (N, 3) or (N,) observed colors; gray values are
                replicated to three channels

        Returns:
            ReferenceHighGradientSet
        """
        pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
        homo = np.hstack([pixels, np.ones((len(pixels), 1))])

        colors = np.asarray(colors, dtype=np.float64)
        if colors.ndim == 1:
            colors = np.repeat(colors[:, None], 3, axis=1)

        return cls(
            homo_coords=homo,
            depth=depth,
            depth_uncertainty=depth_uncertainty,
            colors=colors,
        )

    @property
    def pixels(self) -> np.ndarray:
        """Return (N, 2) pixel coordinates."""
        return self.homo_coords[:, :2]

    def __len__(self) -> int:
        """Return number of points."""
        return len(self.depth)


@dataclass
class ReferenceKeyframe:
    """A keyframe used as the photometric reference for tracking.

    Attributes:
        id: Keyframe identifier
        points: High-gradient point set owned by the keyframe
        pose: World-to-camera transform T_camera_world of the keyframe
        inv_K: Inverse intrinsic matrix of the keyframe camera
    """

    id: int
    points: ReferenceHighGradientSet
    pose: SE3 = field(default_factory=SE3.identity)
    inv_K: np.ndarray | None = None

    def __post_init__(self) -> None:
        if self.inv_K is not None:
            self.inv_K = _frozen(self.inv_K, np.float64)
            if self.inv_K.shape != (3, 3):
                raise ValueError(f"inv_K must be 3x3, got {self.inv_K.shape}")

    @property
    def num_points(self) -> int:
        """Return number of high-gradient points."""
        return len(self.points)
