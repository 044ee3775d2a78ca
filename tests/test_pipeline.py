import logging

import numpy as np
import pandas as pd
import pytest

from nmr_peaks import WaveletPeakDetector, get_wavelet_peaks
from nmr_peaks.core import pipeline

CONFIG = {'wavelet_peaks': {'n_jobs': 1, 'baseline_thresh': 1000}}


def _gaussian(x, center, width):
    return np.exp(-0.5 * ((x - center) / width) ** 2)


def build_synthetic_spectra(n_samples=3, n_points=2048, noise=5.0, seed=0):
    """Spectra with a few gaussian peaks of varying height per sample."""
    rng = np.random.default_rng(seed)
    x = np.arange(n_points, dtype=float)
    centers = [300, 700, 705, 1100, 1600]
    spectra = np.empty((n_samples, n_points))
    for i in range(n_samples):
        y = 50.0 + rng.normal(0.0, noise, size=n_points)
        for c in centers:
            y += rng.uniform(2000.0, 8000.0) * _gaussian(x, c + rng.integers(-1, 2), 3.0)
        spectra[i] = y
    ppm = np.linspace(10.0, 0.0, n_points)
    return spectra, ppm


def _single_peak():
    x = np.arange(2048, dtype=float)
    spectrum = 50.0 + 5000.0 * _gaussian(x, 1023, 4.0)
    return spectrum.reshape(1, -1), np.linspace(10.0, 0.0, 2048)


def test_single_gaussian_gives_one_peak():
    spectra, ppm = _single_peak()
    peaks = get_wavelet_peaks(spectra, ppm, config=CONFIG)
    assert len(peaks) == 1
    row = peaks.iloc[0]
    assert 1020 <= row['peak_index'] <= 1028
    assert row['peak_ppm'] == ppm[int(row['peak_index']) - 1]
    assert row['peak_value'] > 1000
    assert row['sample'] == 1
    assert list(peaks.columns) == ['peak_index', 'peak_ppm', 'peak_value', 'peak_snr', 'peak_scale', 'sample']


def test_output_invariants_hold():
    spectra, ppm = build_synthetic_spectra()
    peaks = get_wavelet_peaks(spectra, ppm, config=CONFIG)
    assert not peaks.empty
    assert peaks['peak_index'].between(1, spectra.shape[1]).all()
    assert (peaks['peak_value'] > 1000).all()
    assert not peaks.duplicated(['sample', 'peak_index']).any()
    assert peaks['sample'].tolist() == sorted(peaks['sample'].tolist())
    for _, group in peaks.groupby('sample'):
        gaps = np.diff(np.sort(group['peak_ppm'].to_numpy()))
        assert (gaps > 0.005).all()


def test_result_does_not_depend_on_worker_count():
    spectra, ppm = build_synthetic_spectra(n_samples=4)
    one = get_wavelet_peaks(spectra, ppm, config=CONFIG, n_jobs=1)
    two = get_wavelet_peaks(spectra, ppm, config=CONFIG, n_jobs=2)
    pd.testing.assert_frame_equal(one, two)


def test_repeated_runs_are_identical():
    spectra, ppm = build_synthetic_spectra(n_samples=2)
    pd.testing.assert_frame_equal(get_wavelet_peaks(spectra, ppm, config=CONFIG),
                                  get_wavelet_peaks(spectra, ppm, config=CONFIG))


def test_missing_intensity_aborts():
    spectra, ppm = _single_peak()
    spectra[0, 100] = np.nan
    with pytest.raises(ValueError):
        get_wavelet_peaks(spectra, ppm, config=CONFIG)


def test_sample_task_failure_aborts_detection(monkeypatch):
    calls = []

    def crash(*args, **kwargs):
        calls.append(args)
        raise RuntimeError("worker crash")

    monkeypatch.setattr(pipeline, 'extract_sample_peaks', crash)
    spectra, ppm = build_synthetic_spectra(n_samples=3)
    result = None
    with pytest.raises(RuntimeError, match="worker crash"):
        result = get_wavelet_peaks(spectra, ppm, config=CONFIG)
    assert result is None
    assert len(calls) == 1


def test_duplicate_task_failure_aborts_detection(monkeypatch):
    def crash(*args, **kwargs):
        raise RuntimeError("duplicate check crashed")

    monkeypatch.setattr(pipeline, 'find_duplicates_in_span', crash)
    spectra, ppm = _single_peak()
    result = None
    with pytest.raises(RuntimeError, match="duplicate check crashed"):
        result = get_wavelet_peaks(spectra, ppm, config=CONFIG)
    assert result is None


def test_missing_ppm_columns_are_dropped_and_detection_completes(caplog):
    spectra, ppm = _single_peak()
    ppm = ppm.copy()
    ppm[[10, 11]] = np.nan
    with caplog.at_level(logging.WARNING):
        peaks = get_wavelet_peaks(spectra, ppm, config=CONFIG)
    assert "missing values" in caplog.text
    assert len(peaks) == 1
    # two columns before the peak were removed
    assert 1018 <= peaks['peak_index'].iloc[0] <= 1026
    assert peaks['peak_index'].max() <= 2046


def test_flat_spectra_give_empty_table():
    spectra = np.full((2, 1024), 50.0)
    peaks = get_wavelet_peaks(spectra, np.linspace(10, 0, 1024), config=CONFIG)
    assert peaks.empty
    assert list(peaks.columns) == ['peak_index', 'peak_ppm', 'peak_value', 'peak_snr', 'peak_scale', 'sample']


def test_string_labels_are_restored():
    spectra, ppm = build_synthetic_spectra(n_samples=2)
    peaks = get_wavelet_peaks(spectra, ppm, sample_labels=['control', 'treated'], config=CONFIG)
    assert set(peaks['sample']) == {'control', 'treated'}
    assert peaks['sample'].iloc[0] == 'control'


def test_raw_peak_height_uses_spectrum_value():
    spectra, ppm = _single_peak()
    peaks = get_wavelet_peaks(spectra, ppm, config=CONFIG, raw_peak_height=True)
    assert len(peaks) == 1
    index = int(peaks['peak_index'].iloc[0])
    assert peaks['peak_value'].iloc[0] == spectra[0, index - 1]


def test_short_spectrum_is_zero_padded():
    x = np.arange(400, dtype=float)
    spectrum = 50.0 + 5000.0 * _gaussian(x, 200, 4.0)
    peaks = get_wavelet_peaks(spectrum.reshape(1, -1), np.linspace(5, 4, 400), config=CONFIG)
    assert len(peaks) == 1
    assert abs(peaks['peak_index'].iloc[0] - 201) <= 2


def test_progress_reports_every_sample():
    spectra, ppm = build_synthetic_spectra(n_samples=3)
    calls = []
    get_wavelet_peaks(spectra, ppm, config=CONFIG, progress=lambda *args: calls.append(args))
    detection = [c for c in calls if c[0] == 'detection']
    assert [c[1] for c in detection] == [1, 2, 3]
    assert all(c[2] == 3 for c in detection)
    assert any(c[0] == 'duplicates' for c in calls)


def test_detector_class_wraps_pipeline():
    spectra, ppm = build_synthetic_spectra(n_samples=2)
    detector = WaveletPeakDetector(CONFIG)
    peaks = detector.detect(spectra, ppm, sample_labels=['a', 'b'])
    pd.testing.assert_frame_equal(peaks, get_wavelet_peaks(spectra, ppm, ['a', 'b'], config=CONFIG))
    summary = detector.summarize()
    assert set(summary['sample']) == {'a', 'b'}
    assert summary['n_peaks'].sum() == len(peaks)


def test_summarize_requires_a_run():
    with pytest.raises(ValueError):
        WaveletPeakDetector(CONFIG).summarize()
