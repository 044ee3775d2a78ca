"""Wavelet based peak detection over a set of spectra.

Two rounds run on a joblib worker pool. The first extracts the peaks of every
sample independently; the second looks for duplicate detections in every
pair of neighbouring windows across the whole data set. The second round
needs the complete output of the first one.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import pandas as pd
from joblib import Parallel, delayed

from .data_validation import SpectrumData, prepare_spectra
from .duplicates import adjacent_window_spans, drop_peaks, find_duplicates_in_span, merge_deletions
from .extraction import PEAK_TABLE_COLUMNS, empty_peak_table, extract_sample_peaks
from .settings import PeakDetectionSettings

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]


def _run_parallel(tasks: List, n_jobs: int, stage: str,
                  progress: Optional[ProgressCallback] = None) -> List:
    """Run delayed tasks and collect their results in submission order.

    The pool is a context manager so workers are released whether the round
    completes or a task raises.
    """
    total = len(tasks)
    results = []
    with Parallel(n_jobs=n_jobs, return_as='generator') as parallel:
        for result in parallel(tasks):
            results.append(result)
            if progress is not None:
                progress(stage, len(results), total)
    return results


def detect_sample_peaks(data: SpectrumData, settings: PeakDetectionSettings,
                        progress: Optional[ProgressCallback] = None) -> pd.DataFrame:
    """First round: per sample peak extraction, joined in sample order."""
    n_jobs = settings.resolve_n_jobs(data.n_samples)
    logger.info(f"Detecting peaks in {data.n_samples} samples with {n_jobs} workers")
    tasks = [
        delayed(extract_sample_peaks)(data.intensities[row], data.ppm[row], int(data.labels.ids[row]), settings)
        for row in range(data.n_samples)
    ]
    frames = _run_parallel(tasks, n_jobs, 'detection', progress)
    frames = [f for f in frames if not f.empty]
    if not frames:
        return empty_peak_table()
    return pd.concat(frames, ignore_index=True)


def resolve_duplicates(peaks: pd.DataFrame, n_points: int, settings: PeakDetectionSettings,
                       progress: Optional[ProgressCallback] = None) -> pd.DataFrame:
    """
    Second round: remove peaks detected twice by overlapping windows.

    The window grid of the smallest split factor is rebuilt; every pair of
    neighbouring windows is checked independently and the deletion sets are
    united afterwards.
    """
    spans = adjacent_window_spans(n_points, settings.window_size, min(settings.window_split))
    n_jobs = settings.resolve_n_jobs(len(spans))
    logger.info(f"Fixing duplicate detections in {len(spans)} window pairs")

    columns = peaks[['sample', 'peak_index', 'peak_ppm', 'peak_value']]
    tasks = [
        delayed(find_duplicates_in_span)(
            columns[(columns['peak_index'] >= start) & (columns['peak_index'] <= end)],
            (start, end),
            settings.duplicate_tolerance,
        )
        for start, end in spans
    ]
    deletions = _run_parallel(tasks, n_jobs, 'duplicates', progress)
    return drop_peaks(peaks, merge_deletions(deletions))


def apply_raw_peak_height(peaks: pd.DataFrame, data: SpectrumData, baseline_thresh: float) -> pd.DataFrame:
    """Replace peak values by the raw intensity at the peak index."""
    logger.info("Note that when using raw peak heights a baseline removal procedure can/should be used.")
    row_of_id = {int(i): row for row, i in enumerate(data.labels.ids)}
    rows = peaks['sample'].map(row_of_id).to_numpy()
    peaks = peaks.copy()
    peaks['peak_value'] = data.intensities[rows, peaks['peak_index'].to_numpy() - 1]
    return peaks[peaks['peak_value'] > baseline_thresh].reset_index(drop=True)


def get_wavelet_peaks(spectra: Any, ppm: Any, sample_labels: Optional[Sequence[Any]] = None,
                      config: Optional[Dict[str, Any]] = None,
                      progress: Optional[ProgressCallback] = None,
                      **overrides) -> pd.DataFrame:
    """
    Convert raw spectra to peak data using wavelet based peak detection.

    Args:
        spectra: Intensity matrix, rows = samples, columns = measurement points
        ppm: ppm values, a single vector or one row per sample
        sample_labels: Optional sample labels of any hashable type; defaults
                       to the row numbers 1..n
        config: Configuration dictionary (``wavelet_peaks`` section); the
                default config file is used if None
        progress: Optional callback ``progress(stage, completed, total)``
        **overrides: Detection options overriding the config, e.g.
                     ``window_width``, ``window_split``, ``scales``,
                     ``baseline_thresh``, ``snr_threshold``, ``n_jobs``,
                     ``include_nearby_peaks``, ``raw_peak_height``,
                     ``duplicate_detection_multiplier``

    Returns:
        DataFrame with columns peak_index (1-based column index), peak_ppm,
        peak_value, peak_snr, peak_scale and sample, sorted by sample and
        peak_index. Empty when no peaks were found.
    """
    settings = PeakDetectionSettings.from_config(config, **overrides)
    data = prepare_spectra(spectra, ppm, sample_labels)
    return run_detection(data, settings, progress)


def run_detection(data: SpectrumData, settings: PeakDetectionSettings,
                  progress: Optional[ProgressCallback] = None) -> pd.DataFrame:
    """Peak detection on already validated inputs."""
    peaks = detect_sample_peaks(data, settings, progress)
    if peaks.empty:
        logger.info("No peaks detected")
        return data.labels.restore(empty_peak_table())

    peaks = resolve_duplicates(peaks, data.n_points, settings, progress)
    if settings.raw_peak_height:
        peaks = apply_raw_peak_height(peaks, data, settings.baseline_thresh)

    peaks = (peaks.sort_values(['sample', 'peak_index'], kind='mergesort')
                  .reset_index(drop=True)[PEAK_TABLE_COLUMNS])
    peaks = peaks.astype({'peak_index': int, 'sample': int})
    logger.info(f"Detected {len(peaks)} peaks in {peaks['sample'].nunique()} samples")
    return data.labels.restore(peaks)
