#!/usr/bin/env python3
"""
Analysis Windows - Construction and Caching

================================================================================
PURPOSE
================================================================================
Every analyzed block is multiplied by a window before its FFT. Blocks of the
same length share one window table, so tables are built once and cached by
their exact (shape, size, padding).

================================================================================
SHAPES
================================================================================
    RECTANGULAR  all ones, no leakage control
    TUKEY        alpha = 0.65: flat center, cosine tapered edges
    HANN         0.5 * (1 - cos(2π(i+1)/(n+1)))  (non-zero endpoints)
    HAMMING      0.54 - 0.46 * cos(2πi/(n-1))
    FLATTOP      5-term: 0.21557895, 0.41663158, 0.277263158,
                         0.083578947, 0.006947368 (minimal scalloping,
                         used for stereo balance)

Tables come from scipy.signal.windows and are then forced symmetric by
mirroring the first half onto the second, so odd and even sizes behave the
same.

================================================================================
MAGNITUDE CORRECTION
================================================================================
A windowed sine of amplitude A yields |X[k]| = A * sum(w) / 2 at its bin.
The extractor divides 2|X| by `correction` = sum(w) so every window and
block length reads the same amplitude. `enbw` (equivalent noise bandwidth
in bins, n * sum(w²) / sum(w)²) is kept for reporting.

    Window        ENBW (bins)
    rectangular   1.00
    Hann          1.50
    Hamming       1.36
    Tukey 0.65    ~1.27
    flat-top      3.77
"""

import logging
from dataclasses import dataclass
from typing import Dict, Tuple, Optional

import numpy as np
from scipy.signal import windows as sp_windows

from .profile import frames_to_seconds, seconds_to_samples
from ..interfaces.data_models import WindowShape

logger = logging.getLogger(__name__)

TUKEY_ALPHA = 0.65


def _mirror(table: np.ndarray) -> np.ndarray:
    n = len(table)
    half = (n + 1) // 2
    table[n - half:] = table[:half][::-1]
    return table


def build_window(shape: WindowShape, size: int) -> np.ndarray:
    """
    Build a symmetric window table.

    Args:
        shape: Window shape
        size: Number of samples

    Returns:
        float64 array of length `size`

    Raises:
        ValueError: If size is zero or negative
    """
    if size <= 0:
        raise ValueError(f"Window size must be positive, got {size}")

    if shape is WindowShape.RECTANGULAR:
        return np.ones(size)
    if shape is WindowShape.TUKEY:
        table = sp_windows.tukey(size, alpha=TUKEY_ALPHA, sym=True)
    elif shape is WindowShape.HANN:
        table = sp_windows.hann(size + 2, sym=True)[1:-1]
    elif shape is WindowShape.HAMMING:
        table = sp_windows.hamming(size, sym=True)
    elif shape is WindowShape.FLATTOP:
        table = sp_windows.flattop(size, sym=True)
    else:
        raise ValueError(f"Unknown window shape: {shape}")

    return _mirror(np.array(table, dtype=np.float64))


@dataclass(frozen=True, eq=False)
class WindowUnit:
    """
    A cached window table.

    Attributes:
        shape: Window shape
        table: Window samples (length == size)
        size: Samples covered by the window
        padding: Zero samples appended after the window (cut frames)
        frames: Block frames the window was requested for
        seconds: Duration of table plus padding
    """
    shape: WindowShape
    table: np.ndarray
    size: int
    padding: int
    frames: int
    seconds: float

    @property
    def correction(self) -> float:
        return float(self.table.sum())

    @property
    def enbw(self) -> float:
        return float(self.size * np.sum(self.table ** 2) / self.table.sum() ** 2)

    @property
    def transform_size(self) -> int:
        return self.size + self.padding


class WindowManager:
    """
    Get-or-create cache of window tables.

    Windows are keyed by (shape, size, padding); asking twice for the same
    key returns the same WindowUnit object.
    """

    def __init__(self, shape: WindowShape = WindowShape.TUKEY):
        self.shape = shape
        self._cache: Dict[Tuple[WindowShape, int, int], WindowUnit] = {}

    def get_window(
        self,
        frames: int,
        cut_frames: int,
        framerate: float,
        sample_rate: float,
        shape: Optional[WindowShape] = None,
    ) -> WindowUnit:
        """
        Window for a block of `frames` video frames.

        The last `cut_frames` frames are excluded from the window and become
        zero padding in the transform.

        Raises:
            ValueError: If the resulting window size is zero or negative
        """
        shape = shape or self.shape
        size = seconds_to_samples(sample_rate, frames_to_seconds(frames - cut_frames, framerate))
        padding = seconds_to_samples(sample_rate, frames_to_seconds(cut_frames, framerate))
        if size <= 0:
            raise ValueError(f"Window for {frames} frames ({cut_frames} cut) at "
                             f"{framerate}ms/frame has size {size}")

        key = (shape, size, padding)
        unit = self._cache.get(key)
        if unit is None:
            unit = WindowUnit(
                shape=shape,
                table=build_window(shape, size),
                size=size,
                padding=padding,
                frames=frames,
                seconds=(size + padding) / sample_rate,
            )
            self._cache[key] = unit
            logger.debug(f"Window created: {shape.name} size={size} padding={padding} "
                         f"enbw={unit.enbw:.3f}")
        return unit

    @property
    def window_count(self) -> int:
        return len(self._cache)

    def clear(self) -> None:
        self._cache.clear()
