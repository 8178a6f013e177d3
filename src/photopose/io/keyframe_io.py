"""Persistence of reference keyframes and loading of tracking images.

Keyframes are stored as a single ``.npz`` archive with the arrays:

    id                  ()      int64
    homo_coords         (N, 3)  float64
    depth               (N,)    float64
    depth_uncertainty   (N,)    float64
    colors              (N, 3)  float64
    pose                (4, 4)  float64, T_camera_world
    inv_K               (3, 3)  float64, optional
"""

from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np

from ..keyframe import ReferenceHighGradientSet, ReferenceKeyframe
from ..pose import SE3

_REQUIRED_KEYS = ("id", "homo_coords", "depth", "depth_uncertainty", "colors", "pose")


def save_keyframe(keyframe: ReferenceKeyframe, path: str | Path) -> Path:
    """Write a reference keyframe to an ``.npz`` archive.

    Args:
        keyframe: Keyframe to store
        path: Output file path (``.npz`` is appended by numpy if missing)

    Returns:
        Path of the written file
    """
    path = Path(path)
    if path.suffix != ".npz":
        path = path.with_suffix(".npz")
    path.parent.mkdir(parents=True, exist_ok=True)

    arrays = {
        "id": np.int64(keyframe.id),
        "homo_coords": keyframe.points.homo_coords,
        "depth": keyframe.points.depth,
        "depth_uncertainty": keyframe.points.depth_uncertainty,
        "colors": keyframe.points.colors,
        "pose": keyframe.pose.to_matrix(),
    }
    if keyframe.inv_K is not None:
        arrays["inv_K"] = keyframe.inv_K

    np.savez(path, **arrays)
    return path


def load_keyframe(path: str | Path) -> ReferenceKeyframe:
    """Read a reference keyframe written by save_keyframe.

    Args:
        path: Path to the ``.npz`` archive

    Returns:
        ReferenceKeyframe

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If required arrays are missing or malformed
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Keyframe file not found: {path}")

    with np.load(path, allow_pickle=False) as data:
        missing = [key for key in _REQUIRED_KEYS if key not in data.files]
        if missing:
            raise ValueError(f"Keyframe file {path} is missing arrays: {missing}")

        points = ReferenceHighGradientSet(
            homo_coords=data["homo_coords"],
            depth=data["depth"],
            depth_uncertainty=data["depth_uncertainty"],
            colors=data["colors"],
        )
        inv_K = data["inv_K"] if "inv_K" in data.files else None

        return ReferenceKeyframe(
            id=int(data["id"]),
            points=points,
            pose=SE3.from_matrix(data["pose"]),
            inv_K=inv_K,
        )


def load_image(path: str | Path) -> np.ndarray:
    """Load a color image for tracking (BGR channel order, uint8).

    Args:
        path: Image file path

    Returns:
        HxWx3 uint8 image

    Raises:
        FileNotFoundError: If the image doesn't exist or cannot be decoded
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")

    image = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if image is None:
        raise FileNotFoundError(f"Failed to decode image: {path}")

    return image
