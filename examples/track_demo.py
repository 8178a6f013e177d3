#!/usr/bin/env python3
"""Demo script for photometric tracking on a synthetic scene.

Builds a textured image and a keyframe whose points observe it from a known
relative pose, then tracks the image under several time budgets.

Usage:
    uv run python examples/track_demo.py
"""

import logging

import numpy as np

from photopose import (
    SE3,
    CameraIntrinsics,
    PoseEstimator,
    ReferenceHighGradientSet,
    ReferenceKeyframe,
    TrackingConfig,
)
from photopose.projection import project_points, sample_colors, to_pixel_indices


def make_scene(
    intrinsics: CameraIntrinsics, relative_pose: SE3
) -> tuple[np.ndarray, ReferenceKeyframe]:
    """Create a textured image and a keyframe consistent with relative_pose."""
    u, v = np.meshgrid(np.arange(intrinsics.width), np.arange(intrinsics.height))
    image = np.stack(
        [
            128 + 90 * np.sin(2 * np.pi * u / 64) * np.cos(2 * np.pi * v / 80),
            128 + 90 * np.sin(2 * np.pi * (u + v) / 90 + 0.7),
            128 + 90 * np.cos(2 * np.pi * (u - 0.5 * v) / 70),
        ],
        axis=2,
    )
    image = np.clip(np.rint(image), 0, 255).astype(np.uint8)

    xs, ys = np.meshgrid(np.arange(40, 281, 6), np.arange(30, 211, 6))
    pixels = np.stack([xs.ravel(), ys.ravel()], axis=1).astype(np.float64)
    depth = 2.5 + np.sin(pixels[:, 0] / 37.0) + 0.5 * np.cos(pixels[:, 1] / 23.0)
    homo = np.hstack([pixels, np.ones((len(pixels), 1))])

    projected, _ = project_points(
        intrinsics.K,
        intrinsics.inv_K,
        homo,
        depth,
        relative_pose.rotation,
        relative_pose.translation,
    )
    colors = sample_colors(image, to_pixel_indices(projected))

    points = ReferenceHighGradientSet(
        homo_coords=homo,
        depth=depth,
        depth_uncertainty=0.05 * depth,
        colors=colors,
    )
    keyframe = ReferenceKeyframe(id=0, points=points, inv_K=intrinsics.inv_K)
    return image, keyframe


def main() -> None:
    """Run the tracking demo."""
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    # Configuration
    intrinsics = CameraIntrinsics(
        fx=300.0, fy=300.0, cx=160.0, cy=120.0, width=320, height=240
    )
    ground_truth = SE3.from_rvec_tvec(
        np.array([0.006, -0.01, 0.005]), np.array([0.03, -0.02, 0.02])
    )
    budgets = [0.002, 0.01, 0.05, 1.0]

    image, keyframe = make_scene(intrinsics, ground_truth)
    print(f"Tracking {keyframe.num_points} points against keyframe {keyframe.id}")
    print()

    print(
        f"{'Budget':>8} {'Status':^16} {'Evals':>5} {'RotErr':>8} "
        f"{'TrErr':>8} {'Valid':>6} {'Cost/pt':>8} {'Time':>7}"
    )
    print("-" * 76)

    for budget in budgets:
        estimator = PoseEstimator(intrinsics, TrackingConfig(max_seconds=budget))
        result = estimator.estimate(image, keyframe)

        error = result.relative_pose @ ground_truth.inverse()
        trans_err = np.linalg.norm(
            result.relative_pose.translation - ground_truth.translation
        )
        print(
            f"{budget:8.3f} {result.status.value:^16} {result.num_evaluations:5d} "
            f"{np.rad2deg(error.angle):7.3f}d {trans_err:8.4f} "
            f"{result.valid_ratio:6.2f} {result.normalized_cost:8.4f} "
            f"{result.elapsed_s * 1000:5.1f}ms"
        )


if __name__ == "__main__":
    main()
