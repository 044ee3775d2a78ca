"""Continuous wavelet transform (CWT) peak detection for 1D spectra.

The signal is decomposed with a Mexican hat wavelet over a ladder of scales.
Local maxima of the coefficients are linked across scales into ridge lines,
and a ridge becomes a peak when it is long enough and stands out from the
local noise at the finest scale. Detected peaks are then tuned in on a finer
scale grid to get a better position and an area-like peak value.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.ndimage import maximum_filter1d
from scipy.signal import fftconvolve

from .settings import CWTParams

logger = logging.getLogger(__name__)

__all__ = ['mexican_hat', 'cwt', 'local_maxima', 'trace_ridges',
           'identify_major_peaks', 'refine_peaks', 'detect_peaks_cwt']

MEXH_SUPPORT = 5.0
MEXH_NORM = 2.0 / (np.sqrt(3.0) * np.pi ** 0.25)
NOISE_QUANTILE = 0.95
PEAK_COLUMNS = ['peak_index', 'peak_value', 'peak_snr', 'peak_scale']


@dataclass
class Ridge:
    """Maxima linked across scales, from the largest scale downwards."""
    positions: List[int] = field(default_factory=list)
    scale_indices: List[int] = field(default_factory=list)
    gap: int = 0

    @property
    def center(self) -> int:
        return self.positions[-1]

    @property
    def top_scale_index(self) -> int:
        return self.scale_indices[0]


def mexican_hat(scale: float) -> np.ndarray:
    """Sampled, zero-mean Mexican hat wavelet dilated to ``scale``."""
    half = int(np.ceil(MEXH_SUPPORT * scale))
    t = np.arange(-half, half + 1, dtype=float) / scale
    psi = MEXH_NORM * (1.0 - t ** 2) * np.exp(-0.5 * t ** 2)
    psi -= psi.mean()
    return psi / np.sqrt(scale)


def cwt(signal: np.ndarray, scales: Sequence[float]) -> np.ndarray:
    """
    Continuous wavelet transform with a Mexican hat wavelet.

    The signal is reflect-padded before convolution so that a flat baseline
    gives (close to) zero coefficients up to the borders.

    Args:
        signal: 1D intensity array
        scales: Wavelet scales

    Returns:
        Array of shape (n_scales, n_points)
    """
    x = np.asarray(signal, dtype=float)
    coefs = np.empty((len(scales), x.size), dtype=float)
    for i, scale in enumerate(scales):
        kernel = mexican_hat(scale)
        half = kernel.size // 2
        padded = np.pad(x, half, mode='reflect')
        coefs[i] = fftconvolve(padded, kernel, mode='valid')
    return coefs


def local_maxima(coefs: np.ndarray, scales: Sequence[float], amp_threshold: float,
                 min_win_size: int = 5) -> np.ndarray:
    """Boolean mask of local maxima per scale above ``amp_threshold``."""
    mask = np.zeros(coefs.shape, dtype=bool)
    for i, scale in enumerate(scales):
        row = coefs[i]
        win = max(int(2 * scale + 1), min_win_size)
        is_max = (row == maximum_filter1d(row, size=win, mode='nearest')) & (row > amp_threshold)
        # left-most point of a plateau
        is_max[1:] &= row[1:] > row[:-1]
        mask[i] = is_max
    return mask


def trace_ridges(maxima: np.ndarray, scales: Sequence[float], gap_threshold: int = 3) -> List[Ridge]:
    """
    Link local maxima across scales into ridge lines.

    Tracing starts at the largest scale. At each smaller scale a ridge moves
    to the nearest unclaimed maximum close to its last position; longer
    ridges pick first. A ridge without a match accrues a gap and is closed
    once the gap count exceeds ``gap_threshold``. Maxima not claimed by any
    ridge start new ridges.
    """
    n_scales = maxima.shape[0]
    if n_scales == 0:
        return []
    active = [Ridge([int(p)], [n_scales - 1]) for p in np.flatnonzero(maxima[-1])]
    closed: List[Ridge] = []

    for i in range(n_scales - 2, -1, -1):
        candidates = np.flatnonzero(maxima[i])
        radius = max(2, int(np.ceil(scales[i])))
        claimed = set()
        survivors = []
        for ridge in sorted(active, key=lambda r: (-len(r.positions), r.center)):
            last = ridge.center
            near = [int(c) for c in candidates[np.abs(candidates - last) <= radius] if int(c) not in claimed]
            if near:
                best = min(near, key=lambda c: (abs(c - last), c))
                claimed.add(best)
                ridge.positions.append(best)
                ridge.scale_indices.append(i)
                ridge.gap = 0
                survivors.append(ridge)
            else:
                ridge.gap += 1
                if ridge.gap > gap_threshold:
                    closed.append(ridge)
                else:
                    survivors.append(ridge)
        for c in candidates:
            if int(c) not in claimed:
                survivors.append(Ridge([int(c)], [i]))
        active = survivors

    return closed + active


def _empty_peaks() -> pd.DataFrame:
    return pd.DataFrame({
        'peak_index': pd.Series(dtype=int),
        'peak_value': pd.Series(dtype=float),
        'peak_snr': pd.Series(dtype=float),
        'peak_scale': pd.Series(dtype=float),
    })


def identify_major_peaks(coefs: np.ndarray, ridges: List[Ridge], scales: Sequence[float],
                         snr_threshold: float, amp_threshold: float, min_noise_level: float,
                         include_nearby_peaks: bool = True,
                         params: Optional[CWTParams] = None) -> pd.DataFrame:
    """
    Select the ridges that correspond to real peaks.

    Args:
        coefs: CWT coefficients (n_scales, n_points)
        ridges: Ridge lines from :func:`trace_ridges`
        scales: Wavelet scales matching the rows of ``coefs``
        snr_threshold: Minimum signal-to-noise ratio
        amp_threshold: Minimum (absolute) peak coefficient
        min_noise_level: Floor for the local noise estimate
        include_nearby_peaks: Keep short-ridge peaks close to a major peak
        params: Detector tuning

    Returns:
        DataFrame with columns peak_index (local, 0-based), peak_value,
        peak_snr and peak_scale, sorted by peak_index.
    """
    params = params or CWTParams()
    if not ridges:
        return _empty_peaks()

    scales = np.asarray(scales, dtype=float)
    n_points = coefs.shape[1]
    allowed = scales >= params.peak_scale_range
    if not allowed.any():
        allowed[:] = True
    min_top_scale = min(params.ridge_length, float(np.median(scales)))
    half_noise = params.noise_win_size // 2
    finest = np.abs(coefs[0])

    rows = []
    for ridge in ridges:
        positions = np.asarray(ridge.positions)
        scale_idx = np.asarray(ridge.scale_indices)
        keep = allowed[scale_idx]
        if not keep.any():
            keep[:] = True
        values = coefs[scale_idx[keep], positions[keep]]
        best = int(np.argmax(values))

        center = ridge.center
        lo = max(0, center - half_noise)
        hi = min(n_points, center + half_noise + 1)
        noise = max(float(np.quantile(finest[lo:hi], NOISE_QUANTILE)), min_noise_level)
        snr = float(values[best]) / noise if noise > 0 else 0.0
        rows.append((center, float(values[best]), snr, float(scales[scale_idx[keep]][best]),
                     float(scales[ridge.top_scale_index])))

    peaks = pd.DataFrame(rows, columns=PEAK_COLUMNS + ['top_scale'])
    peaks = (peaks.sort_values(['peak_value', 'peak_index'], ascending=[False, True], kind='mergesort')
                  .drop_duplicates('peak_index'))

    border = params.nearby_win_size // 2
    valid = ((peaks['peak_snr'] > snr_threshold)
             & (peaks['peak_value'] > amp_threshold)
             & (peaks['peak_index'] >= border)
             & (peaks['peak_index'] < n_points - border))
    major = valid & (peaks['top_scale'] >= min_top_scale)

    selected = major
    if include_nearby_peaks and major.any():
        major_idx = peaks.loc[major, 'peak_index'].to_numpy()
        distance = np.abs(peaks['peak_index'].to_numpy()[:, None] - major_idx[None, :]).min(axis=1)
        selected = major | (valid & (distance <= params.nearby_win_size))

    result = peaks.loc[selected, PEAK_COLUMNS].sort_values('peak_index')
    return result.reset_index(drop=True).astype({'peak_index': int})


def refine_peaks(signal: np.ndarray, peaks: pd.DataFrame, scale_step: float = 0.5) -> pd.DataFrame:
    """
    Tune in peak positions and values on a fine scale grid.

    For every peak the CWT is evaluated on scales between half and twice
    the detected scale, and the largest coefficient within half a scale of
    the detected position gives the refined index, value and scale. The
    signal-to-noise ratio is carried over.
    """
    if peaks.empty:
        return peaks.copy()

    x = np.asarray(signal, dtype=float)
    n_points = x.size
    rows = []
    for peak in peaks.itertuples(index=False):
        scale = float(peak.peak_scale)
        fine = np.arange(max(1.0, scale / 2.0), 2.0 * scale + scale_step / 2.0, scale_step)
        radius = max(1, int(np.ceil(scale / 2.0)))
        lo = max(0, int(peak.peak_index) - radius)
        hi = min(n_points, int(peak.peak_index) + radius + 1)

        # local segment wide enough that the wavelet support never reaches its edges
        margin = int(np.ceil(MEXH_SUPPORT * fine[-1])) + 1
        seg_lo = max(0, lo - margin)
        seg_hi = min(n_points, hi + margin)
        local = cwt(x[seg_lo:seg_hi], fine)[:, lo - seg_lo:hi - seg_lo]

        k, j = np.unravel_index(int(np.argmax(local)), local.shape)
        rows.append((lo + int(j), float(local[k, j]), float(peak.peak_snr), float(fine[k])))

    refined = pd.DataFrame(rows, columns=PEAK_COLUMNS)
    refined = (refined.sort_values(['peak_value', 'peak_index'], ascending=[False, True], kind='mergesort')
                      .drop_duplicates('peak_index')
                      .sort_values('peak_index'))
    return refined.reset_index(drop=True).astype({'peak_index': int})


def detect_peaks_cwt(signal: np.ndarray, scales: Sequence[float], snr_threshold: float,
                     include_nearby_peaks: bool = True, params: Optional[CWTParams] = None,
                     refine: bool = True) -> pd.DataFrame:
    """
    Detect peaks in a 1D signal with ridge based CWT peak detection.

    Args:
        signal: 1D intensity array
        scales: Ascending wavelet scales
        snr_threshold: Minimum signal-to-noise ratio of a peak
        include_nearby_peaks: Keep small peaks in the tails of larger ones
        params: Detector tuning
        refine: Tune in position and value of the detected peaks

    Returns:
        DataFrame with columns peak_index (0-based), peak_value, peak_snr
        and peak_scale.
    """
    params = params or CWTParams()
    x = np.asarray(signal, dtype=float)
    coefs = cwt(x, scales)

    top = max(float(coefs.max()), float(x.max()))
    amp_threshold = params.amp_threshold * top if top > 0 else 0.0
    min_noise_level = amp_threshold / snr_threshold if snr_threshold > 0 else amp_threshold

    maxima = local_maxima(coefs, scales, amp_threshold, params.min_win_size)
    ridges = trace_ridges(maxima, scales, params.gap_threshold)
    peaks = identify_major_peaks(coefs, ridges, scales, snr_threshold, amp_threshold,
                                 min_noise_level, include_nearby_peaks, params)
    logger.debug(f"CWT: {len(ridges)} ridges, {len(peaks)} peaks")
    if refine:
        peaks = refine_peaks(x, peaks)
    return peaks
