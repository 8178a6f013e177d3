"""Shared fixtures: a synthetic camera, image and keyframe generator."""

from __future__ import annotations

from typing import Callable

import numpy as np
import pytest

from photopose.calibration import CameraIntrinsics
from photopose.keyframe import ReferenceHighGradientSet, ReferenceKeyframe
from photopose.pose import SE3
from photopose.projection import project_points, sample_colors, to_pixel_indices

WIDTH = 320
HEIGHT = 240


@pytest.fixture
def intrinsics() -> CameraIntrinsics:
    """320x240 pinhole camera with a 300 pixel focal length."""
    return CameraIntrinsics(fx=300.0, fy=300.0, cx=160.0, cy=120.0, width=WIDTH, height=HEIGHT)


@pytest.fixture
def new_image() -> np.ndarray:
    """Smooth three-channel pattern with distinct gradients per channel."""
    u, v = np.meshgrid(np.arange(WIDTH), np.arange(HEIGHT))
    image = np.stack(
        [
            128 + 90 * np.sin(2 * np.pi * u / 64) * np.cos(2 * np.pi * v / 80),
            128 + 90 * np.sin(2 * np.pi * (u + v) / 90 + 0.7),
            128 + 90 * np.cos(2 * np.pi * (u - 0.5 * v) / 70),
        ],
        axis=2,
    )
    return np.clip(np.rint(image), 0, 255).astype(np.uint8)


def grid_pixels(x_range: range, y_range: range) -> np.ndarray:
    """Return (N, 2) pixel coordinates on a regular grid."""
    xs, ys = np.meshgrid(np.array(x_range), np.array(y_range))
    return np.stack([xs.ravel(), ys.ravel()], axis=1).astype(np.float64)


def scene_depth(pixels: np.ndarray) -> np.ndarray:
    """Depths between 1 and 4 varying smoothly over the image."""
    return 2.5 + 1.0 * np.sin(pixels[:, 0] / 37.0) + 0.5 * np.cos(pixels[:, 1] / 23.0)


@pytest.fixture
def make_keyframe(
    intrinsics: CameraIntrinsics, new_image: np.ndarray
) -> Callable[..., ReferenceKeyframe]:
    """Factory building keyframes consistent with new_image.

    Each point's reference color is sampled from new_image at the point's
    projection under the ground-truth relative pose, so the photometric
    error vanishes at that pose.
    """

    def _make(
        relative_pose: SE3 | None = None,
        pixels: np.ndarray | None = None,
        pose: SE3 | None = None,
        color_noise: float = 0.0,
        seed: int = 0,
    ) -> ReferenceKeyframe:
        relative_pose = relative_pose or SE3.identity()
        if pixels is None:
            pixels = grid_pixels(range(40, 281, 8), range(30, 211, 8))

        depth = scene_depth(pixels)
        homo = np.hstack([pixels, np.ones((len(pixels), 1))])
        projected, _ = project_points(
            intrinsics.K,
            intrinsics.inv_K,
            homo,
            depth,
            relative_pose.rotation,
            relative_pose.translation,
        )
        idx = to_pixel_indices(projected)
        idx[:, 0] = np.clip(idx[:, 0], 0, WIDTH - 1)
        idx[:, 1] = np.clip(idx[:, 1], 0, HEIGHT - 1)
        colors = sample_colors(new_image, idx)

        if color_noise > 0:
            rng = np.random.default_rng(seed)
            colors = colors + rng.uniform(-color_noise, color_noise, colors.shape)

        points = ReferenceHighGradientSet.from_pixels(
            pixels=pixels,
            depth=depth,
            depth_uncertainty=0.05 * depth,
            colors=colors,
        )
        return ReferenceKeyframe(
            id=7,
            points=points,
            pose=pose or SE3.identity(),
            inv_K=intrinsics.inv_K,
        )

    return _make


@pytest.fixture
def ground_truth() -> SE3:
    """Small relative motion between keyframe and new camera."""
    return SE3.from_rvec_tvec(
        np.array([0.006, -0.01, 0.005]), np.array([0.03, -0.02, 0.02])
    )
