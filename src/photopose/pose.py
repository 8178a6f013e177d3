"""SE(3) pose representation for rigid body transformations."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np


def rotation_angle(R: np.ndarray) -> float:
    """Extract rotation angle from a 3x3 rotation matrix.

    Uses the trace formula: trace(R) = 1 + 2*cos(theta)

    Args:
        R: 3x3 rotation matrix

    Returns:
        Rotation angle in radians [0, pi]
    """
    trace = np.trace(R)
    # Clamp for numerical stability
    cos_theta = np.clip((trace - 1) / 2, -1.0, 1.0)
    return float(np.arccos(cos_theta))


def translation_distance(t: np.ndarray) -> float:
    """Return the Euclidean norm of a translation vector."""
    return float(np.linalg.norm(np.asarray(t, dtype=np.float64)))


@dataclass
class SE3:
    """Rigid body transformation (rotation + translation) in SE(3).

    Maps points from a source frame into a target frame:

        p_target = R @ p_source + t

    Keyframe and tracking poses in this package are world-to-camera
    transforms (T_camera_world), and relative poses map points from the
    reference keyframe camera into the new camera (T_new_ref).

    Attributes:
        rotation: 3x3 orthonormal rotation matrix (det = +1)
        translation: 3D translation vector
    """

    rotation: np.ndarray  # 3x3 rotation matrix
    translation: np.ndarray  # (3,) translation vector

    def __post_init__(self) -> None:
        """Validate and normalize inputs."""
        self.rotation = np.asarray(self.rotation, dtype=np.float64)
        self.translation = np.asarray(self.translation, dtype=np.float64).flatten()

        if self.rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {self.rotation.shape}")
        if self.translation.shape != (3,):
            raise ValueError(
                f"Translation must be (3,), got {self.translation.shape}"
            )

    @classmethod
    def identity(cls) -> SE3:
        """Create identity transformation (no rotation, no translation)."""
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> SE3:
        """Create SE3 from 4x4 homogeneous transformation matrix.

        Args:
            T: 4x4 transformation matrix of the form:
               [[R  t]
                [0  1]]

        Returns:
            SE3 transformation
        """
        T = np.asarray(T)
        if T.shape != (4, 4):
            raise ValueError(f"Transform must be 4x4, got {T.shape}")

        return cls(rotation=T[:3, :3], translation=T[:3, 3])

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> SE3:
        """Create SE3 from a Rodrigues rotation vector and translation.

        Args:
            rvec: 3D Rodrigues rotation vector (axis * angle)
            tvec: 3D translation vector

        Returns:
            SE3 transformation
        """
        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
        return cls(rotation=R, translation=np.asarray(tvec).flatten())

    @classmethod
    def from_params(cls, params: np.ndarray) -> SE3:
        """Create SE3 from a packed [rx, ry, rz, tx, ty, tz] vector."""
        params = np.asarray(params, dtype=np.float64).flatten()
        if params.shape != (6,):
            raise ValueError(f"Pose parameters must be (6,), got {params.shape}")
        return cls.from_rvec_tvec(params[:3], params[3:])

    def to_matrix(self) -> np.ndarray:
        """Convert to 4x4 homogeneous transformation matrix [[R, t], [0, 1]]."""
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def to_rvec_tvec(self) -> tuple[np.ndarray, np.ndarray]:
        """Convert to OpenCV Rodrigues vector and translation."""
        rvec, _ = cv2.Rodrigues(self.rotation)
        return rvec.flatten(), self.translation.copy()

    def to_params(self) -> np.ndarray:
        """Pack into a [rx, ry, rz, tx, ty, tz] vector."""
        rvec, tvec = self.to_rvec_tvec()
        return np.concatenate([rvec, tvec])

    def inverse(self) -> SE3:
        """Compute the inverse transformation T^{-1}.

        For T = [R, t], the inverse is [R^T, -R^T @ t].
        """
        R_inv = self.rotation.T
        t_inv = -R_inv @ self.translation
        return SE3(rotation=R_inv, translation=t_inv)

    def compose(self, other: SE3) -> SE3:
        """Compose with another transformation: self @ other.

        If other = T_B_A (maps points from A to B) and self = T_C_B
        (maps points from B to C), the result is T_C_A.

        Example:
            T_new_ref.compose(T_ref_world) gives T_new_world

        Args:
            other: SE3 transformation applied first

        Returns:
            Composed SE3 transformation (self @ other)
        """
        R = self.rotation @ other.rotation
        t = self.rotation @ other.translation + self.translation
        return SE3(rotation=R, translation=t)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Transform Nx3 points from the source frame into the target frame."""
        points = np.asarray(points, dtype=np.float64)
        if points.ndim == 1:
            points = points.reshape(1, 3)

        if points.shape[1] != 3:
            raise ValueError(f"Points must be Nx3, got {points.shape}")

        return points @ self.rotation.T + self.translation

    @property
    def angle(self) -> float:
        """Return the rotation angle in radians."""
        return rotation_angle(self.rotation)

    @property
    def distance(self) -> float:
        """Return the translation magnitude."""
        return translation_distance(self.translation)

    def __repr__(self) -> str:
        """Return string representation."""
        t = self.translation
        return (
            f"SE3(angle={np.rad2deg(self.angle):.3f}deg, "
            f"t=[{t[0]:.3f}, {t[1]:.3f}, {t[2]:.3f}])"
        )

    def __matmul__(self, other: SE3) -> SE3:
        """Matrix multiplication operator for composition: T1 @ T2."""
        return self.compose(other)
