"""Peak extraction per window and aggregation of the windows of one sample."""

import logging
from dataclasses import dataclass, field
from typing import List

import numpy as np
import pandas as pd

from .cwt import detect_peaks_cwt
from .settings import PeakDetectionSettings
from .windows import Window, is_noise, iter_windows

logger = logging.getLogger(__name__)

PEAK_TABLE_COLUMNS = ['peak_index', 'peak_ppm', 'peak_value', 'peak_snr', 'peak_scale', 'sample']


def empty_peak_table() -> pd.DataFrame:
    return pd.DataFrame({
        'peak_index': pd.Series(dtype=int),
        'peak_ppm': pd.Series(dtype=float),
        'peak_value': pd.Series(dtype=float),
        'peak_snr': pd.Series(dtype=float),
        'peak_scale': pd.Series(dtype=float),
        'sample': pd.Series(dtype=int),
    })


@dataclass
class WindowResult:
    """Outcome of peak extraction in one window.

    status is one of ``'peaks'``, ``'empty'`` (detector ran, nothing found),
    ``'noise'`` (skipped by the noise check) or ``'failed'`` (detector
    raised; treated as no peaks).
    """
    status: str
    peaks: pd.DataFrame = field(default_factory=empty_peak_table)
    error: str = ''

    @property
    def has_peaks(self) -> bool:
        return self.status == 'peaks'


def extract_window_peaks(window: Window, ppm: np.ndarray, sample_id: int,
                         settings: PeakDetectionSettings) -> WindowResult:
    """
    Detect peaks inside one window and map them to spectrum coordinates.

    Args:
        window: Detection window
        ppm: ppm values of the whole sample
        sample_id: Internal sample id written to the ``sample`` column
        settings: Detection settings

    Returns:
        WindowResult; a failing detector yields status ``'failed'``.
    """
    if is_noise(window.raw, settings.baseline_thresh, settings.noise_epsilon):
        return WindowResult('noise')

    try:
        local = detect_peaks_cwt(
            window.signal,
            settings.scales,
            settings.snr_threshold,
            include_nearby_peaks=settings.include_nearby_peaks,
            params=settings.cwt,
        )
    except Exception as e:
        logger.debug(f"Peak detection failed in window {window.start}-{window.end} "
                     f"of sample {window.sample_index}: {e}")
        return WindowResult('failed', error=str(e))

    # peaks found in the zero padding have no spectrum position
    inside = ((local['peak_index'] >= window.pad_left)
              & (local['peak_index'] < window.signal.size - window.pad_right))
    local = local[inside]
    if local.empty:
        return WindowResult('empty')

    peak_index = window.to_global(local['peak_index'].to_numpy()).astype(int)
    peaks = pd.DataFrame({
        'peak_index': peak_index,
        'peak_ppm': ppm[peak_index - 1],
        'peak_value': local['peak_value'].to_numpy(),
        'peak_snr': local['peak_snr'].to_numpy(),
        'peak_scale': local['peak_scale'].to_numpy(),
        'sample': sample_id,
    })
    return WindowResult('peaks', peaks)


def aggregate_sample_peaks(results: List[WindowResult], baseline_thresh: float) -> pd.DataFrame:
    """
    Merge the window results of one sample.

    Rows repeating an already seen peak index are dropped (first one wins),
    as are rows whose value does not exceed ``baseline_thresh``.
    """
    frames = [r.peaks for r in results if r.has_peaks]
    if not frames:
        return empty_peak_table()
    peaks = pd.concat(frames, ignore_index=True)
    peaks = peaks.drop_duplicates('peak_index', keep='first')
    peaks = peaks[peaks['peak_value'] > baseline_thresh]
    return peaks.reset_index(drop=True)


def extract_sample_peaks(spectrum: np.ndarray, ppm: np.ndarray, sample_id: int,
                         settings: PeakDetectionSettings) -> pd.DataFrame:
    """
    Run windowed peak extraction over one sample for every window split.

    This is the unit of work of the first parallel round: it only reads its
    own spectrum and returns a fresh peak table.
    """
    spectrum = np.asarray(spectrum, dtype=float)
    ppm = np.asarray(ppm, dtype=float)
    results = []
    for split in settings.window_split:
        for window in iter_windows(spectrum, settings.window_size, split, sample_index=sample_id):
            results.append(extract_window_peaks(window, ppm, sample_id, settings))

    failed = sum(r.status == 'failed' for r in results)
    if failed:
        logger.debug(f"Sample {sample_id}: {failed} of {len(results)} windows failed and were skipped")
    return aggregate_sample_peaks(results, settings.baseline_thresh)
