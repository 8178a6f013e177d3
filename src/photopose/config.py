"""Tracking configuration."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path

import yaml


@dataclass
class TrackingConfig:
    """Configuration for photometric pose estimation."""

    pixel_noise_variance: float = 4.0  # Camera pixel noise (intensity^2)
    max_seconds: float = 0.05  # Wall-clock budget per estimate
    huber_delta: float = 1.0  # Huber scale on normalized residuals
    num_workers: int | None = None  # Jacobian threads, None = all cores
    rotation_step: float = 5e-4  # Finite-difference step (radians), ~0.15 px at f=300
    translation_step: float = 1e-3  # Finite-difference step (scene units)
    max_step_doublings: int = 4  # Step growth when a Jacobian column is flat
    max_evaluations: int = 200  # Residual evaluations cap (scipy max_nfev)
    ftol: float = 1e-6
    xtol: float = 1e-6
    gtol: float = 1e-8
    degenerate_residual: float = 100.0  # Lower bound of the all-invalid residual

    def __post_init__(self) -> None:
        if self.pixel_noise_variance < 0:
            raise ValueError(
                f"pixel_noise_variance must be >= 0, got {self.pixel_noise_variance}"
            )
        for name in (
            "huber_delta",
            "rotation_step",
            "translation_step",
            "ftol",
            "xtol",
            "gtol",
            "degenerate_residual",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.max_evaluations < 1:
            raise ValueError(
                f"max_evaluations must be >= 1, got {self.max_evaluations}"
            )
        if self.max_step_doublings < 0:
            raise ValueError(
                f"max_step_doublings must be >= 0, got {self.max_step_doublings}"
            )
        if self.num_workers is not None and self.num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {self.num_workers}")

    @property
    def workers(self) -> int:
        """Return the effective number of Jacobian worker threads."""
        return self.num_workers or os.cpu_count() or 1

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> TrackingConfig:
        """Load a configuration from a YAML mapping of field names to values.

        Args:
            yaml_path: Path to the YAML file

        Returns:
            TrackingConfig with defaults for missing keys

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If the file contains unknown keys
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Config must be a mapping in {yaml_path}")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys in {yaml_path}: {unknown}")

        return cls(**data)

    def to_dict(self) -> dict:
        """Return the configuration as a plain dictionary."""
        return asdict(self)
