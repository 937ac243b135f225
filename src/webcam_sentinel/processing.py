from __future__ import annotations
import numpy as np

from .logging_utils import log
from .models import DiffStats

# Default per-pixel cutoff on the summed |dB|+|dG|+|dR| (0..765).
PIXEL_DELTA_THRESHOLD = 48


def pixel_deltas(current: np.ndarray, reference: np.ndarray) -> np.ndarray:
    """Per-pixel sum of absolute channel differences as an int32 HxW grid."""
    diff = np.abs(current.astype(np.int32) - reference.astype(np.int32))
    if diff.ndim == 3:
        diff = diff.sum(axis=2)
    return diff


def frame_delta(current: np.ndarray, reference: np.ndarray, pixel_threshold: int = PIXEL_DELTA_THRESHOLD) -> DiffStats:
    # Frames of different sizes are not comparable; report no motion.
    if current.shape != reference.shape:
        log(f'[webcam] skip diff: frame size changed {reference.shape[:2]} -> {current.shape[:2]}', 'debug')
        return DiffStats(computed=True)
    deltas = pixel_deltas(current, reference)
    return DiffStats(
        computed=True,
        pixel_delta_sum=int(deltas.sum()),
        pixels_over_threshold=int(np.count_nonzero(deltas > pixel_threshold)),
    )
