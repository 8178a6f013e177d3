"""I/O utilities for keyframes and images."""

from .keyframe_io import load_image, load_keyframe, save_keyframe

__all__ = [
    "load_image",
    "load_keyframe",
    "save_keyframe",
]
