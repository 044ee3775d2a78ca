"""Sliding detection windows over a spectrum and the noise check per window."""

import math
from dataclasses import dataclass
from typing import Iterator, List, Tuple

import numpy as np

from .settings import NOISE_EPSILON


@dataclass
class Window:
    """One detection window of a sample.

    ``start`` and ``end`` are 0-based, half-open column bounds into the
    spectrum. ``signal`` has the full window length; when the spectrum is
    shorter than the window it is zero padded by ``pad_left``/``pad_right``.
    """
    sample_index: int
    start: int
    end: int
    signal: np.ndarray
    pad_left: int = 0
    pad_right: int = 0

    @property
    def raw(self) -> np.ndarray:
        """The window signal without padding."""
        return self.signal[self.pad_left:self.signal.size - self.pad_right]

    def to_global(self, local_index: np.ndarray) -> np.ndarray:
        """Translate local (padded) indices to 1-based spectrum indices."""
        return np.asarray(local_index) + self.start - self.pad_left + 1


def count_shifts(n_points: int, window_size: int, window_split: int) -> int:
    increment = window_size // window_split
    return math.ceil(n_points / increment) - window_split + 1


def window_bounds(n_points: int, window_size: int, window_split: int) -> List[Tuple[int, int]]:
    """
    Bounds of the sliding windows covering a spectrum.

    Windows have length ``window_size`` and advance by
    ``window_size // window_split``; the last one is right-aligned to the
    spectrum end. A non-positive shift count gives one window spanning the
    whole spectrum.

    Returns:
        List of (start, end) tuples, 0-based and half-open.
    """
    increment = window_size // window_split
    n_shifts = count_shifts(n_points, window_size, window_split)
    if n_shifts <= 0:
        return [(0, n_points)]

    bounds = []
    for j in range(n_shifts):
        start = j * increment
        if start >= n_points:
            continue
        end = start + window_size
        if end > n_points:
            end = n_points
            start = max(0, n_points - window_size)
        bounds.append((start, end))
    return bounds


def pad_window(segment: np.ndarray, window_size: int) -> Tuple[np.ndarray, int, int]:
    """Zero pad ``segment`` symmetrically up to ``window_size`` points."""
    missing = window_size - segment.size
    if missing <= 0:
        return segment, 0, 0
    pad_left = missing // 2
    pad_right = missing - pad_left
    return np.pad(segment, (pad_left, pad_right), mode='constant'), pad_left, pad_right


def iter_windows(spectrum: np.ndarray, window_size: int, window_split: int,
                 sample_index: int = 0) -> Iterator[Window]:
    """Yield the detection windows of one spectrum."""
    spectrum = np.asarray(spectrum, dtype=float)
    for start, end in window_bounds(spectrum.size, window_size, window_split):
        signal, pad_left, pad_right = pad_window(spectrum[start:end], window_size)
        yield Window(sample_index, start, end, signal, pad_left, pad_right)


def is_noise(segment: np.ndarray, baseline_thresh: float, noise_epsilon: float = NOISE_EPSILON) -> bool:
    """
    Decide whether a window only holds baseline noise.

    A window is noise when its mean equals its median, when the relative
    mean/median difference is below ``noise_epsilon`` or when its maximum
    stays under ``baseline_thresh``.
    """
    segment = np.asarray(segment, dtype=float)
    if segment.size == 0:
        return True
    sub_mean = np.mean(segment)
    sub_median = np.median(segment)
    sub_max = np.max(segment)
    if sub_mean == sub_median or sub_max < baseline_thresh:
        return True
    with np.errstate(divide='ignore', invalid='ignore'):
        ratio = abs(sub_mean - sub_median) / ((sub_mean + sub_median) * 2)
    return bool(ratio < noise_epsilon)
