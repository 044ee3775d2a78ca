"""Core peak detection utilities.

Modules:
- cwt: Mexican hat CWT, ridge tracing and major peak selection
- windows: sliding detection windows and the noise check
- extraction: per window extraction and per sample aggregation
- duplicates: removal of duplicate detections from overlapping windows
- labels: sample label mapping
- data_validation: input checks and repairs
- pipeline: the two parallel detection rounds
"""

from .settings import PeakDetectionSettings, CWTParams
from .cwt import detect_peaks_cwt, refine_peaks
from .windows import Window, iter_windows, window_bounds, is_noise
from .extraction import WindowResult, extract_window_peaks, extract_sample_peaks, aggregate_sample_peaks
from .duplicates import adjacent_window_spans, find_duplicates, drop_peaks
from .labels import SampleLabelMap
from .data_validation import SpectrumData, prepare_spectra
from .pipeline import get_wavelet_peaks, run_detection
