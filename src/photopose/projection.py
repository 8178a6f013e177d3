"""Projection, bounds checking and pixel sampling for reference points.

All functions operate on whole point arrays at once; per-point work is
independent, so the numpy expressions below are the data-parallel loop.
"""

from __future__ import annotations

import numpy as np


def backproject(inv_K: np.ndarray, homo_coords: np.ndarray, depth: np.ndarray) -> np.ndarray:
    """Back-project homogeneous pixels to 3D points in the camera frame.

    Computes depth_i * inv_K @ h_i for every point.

    Args:
        inv_K: 3x3 inverse intrinsic matrix
        homo_coords: (N, 3) homogeneous pixel coordinates
        depth: (N,) depths

    Returns:
        (N, 3) points in the camera frame
    """
    return (homo_coords @ inv_K.T) * depth[:, None]


def project_points(
    K: np.ndarray,
    inv_K: np.ndarray,
    homo_coords: np.ndarray,
    depth: np.ndarray,
    rotation: np.ndarray,
    translation: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Project reference points into a camera displaced by (R, t).

    Each point is back-projected with its depth, moved into the new camera
    frame as P_i = R @ X_i + t and projected with K.

    Args:
        K: 3x3 intrinsic matrix of the new camera
        inv_K: 3x3 inverse intrinsic matrix of the reference camera
        homo_coords: (N, 3) homogeneous pixel coordinates in the reference
        depth: (N,) depths in the reference camera
        rotation: 3x3 rotation from reference to new camera
        translation: (3,) translation from reference to new camera

    Returns:
        Tuple of ((N, 2) pixel coordinates, (N,) depth in the new camera)
    """
    points = backproject(inv_K, homo_coords, depth)
    return project_camera_points(K, points, rotation, translation)


def project_camera_points(
    K: np.ndarray,
    points: np.ndarray,
    rotation: np.ndarray,
    translation: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Move (N, 3) reference-camera points by (R, t) and project with K.

    Returns:
        Tuple of ((N, 2) pixel coordinates, (N,) depth in the new camera)
    """
    proj = (points @ rotation.T + translation) @ K.T
    z = proj[:, 2]

    with np.errstate(divide="ignore", invalid="ignore"):
        pixels = proj[:, :2] / z[:, None]

    return pixels, z


def to_pixel_indices(pixels: np.ndarray) -> np.ndarray:
    """Round pixel coordinates to the nearest integer pixel.

    Non-finite coordinates map to -1 so that they fail any bounds check.

    Args:
        pixels: (N, 2) float pixel coordinates

    Returns:
        (N, 2) int64 pixel indices (x, y)
    """
    finite = np.isfinite(pixels).all(axis=1)
    # Clamp before the cast so huge values cannot overflow int64
    safe = np.where(finite[:, None], np.clip(pixels, -1e9, 1e9), -1.0)
    return np.rint(safe).astype(np.int64)


def in_bounds(
    pixel_idx: np.ndarray,
    width: int,
    height: int,
    z: np.ndarray | None = None,
) -> np.ndarray:
    """Check which integer pixels fall inside [0, width) x [0, height).

    Args:
        pixel_idx: (N, 2) integer pixel indices (x, y)
        width: Image width
        height: Image height
        z: Optional (N,) depths; points with z <= 0 are rejected

    Returns:
        (N,) boolean mask
    """
    x = pixel_idx[:, 0]
    y = pixel_idx[:, 1]
    mask = (x >= 0) & (x < width) & (y >= 0) & (y < height)

    if z is not None:
        mask &= np.isfinite(z) & (z > 0)

    return mask


def sample_colors(image: np.ndarray, pixel_idx: np.ndarray) -> np.ndarray:
    """Sample image colors at integer pixel locations (no interpolation).

    Callers must pass only in-bounds indices.

    Args:
        image: (H, W, 3) color image
        pixel_idx: (M, 2) integer pixel indices (x, y)

    Returns:
        (M, 3) float64 colors
    """
    return image[pixel_idx[:, 1], pixel_idx[:, 0]].astype(np.float64)


def as_color_image(image: np.ndarray) -> np.ndarray:
    """Return the image as (H, W, 3), replicating a gray channel if needed."""
    image = np.asarray(image)
    if image.ndim == 2:
        return np.repeat(image[:, :, None], 3, axis=2)
    if image.ndim == 3 and image.shape[2] == 1:
        return np.repeat(image, 3, axis=2)
    if image.ndim == 3 and image.shape[2] == 3:
        return image
    raise ValueError(f"Image must be HxW or HxWx3, got {image.shape}")
