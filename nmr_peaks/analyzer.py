"""
Peak detection front end for NMR spectra.
"""
from typing import Any, Dict, Optional, Sequence
import logging

import pandas as pd

from config.config_loader import load_config
from .core.data_validation import prepare_spectra
from .core.pipeline import ProgressCallback, run_detection
from .core.settings import PeakDetectionSettings

logger = logging.getLogger(__name__)


class WaveletPeakDetector:
    """Main class for wavelet based peak detection."""

    def __init__(self, config: Optional[Dict] = None, **overrides):
        """
        Initialize the peak detector.

        Args:
            config: Configuration dictionary
            **overrides: Detection options taking precedence over the config
        """
        self.config = config or load_config()
        self.settings = PeakDetectionSettings.from_config(self.config, **overrides)
        self.peaks: Optional[pd.DataFrame] = None

    def detect(self, spectra: Any, ppm: Any, sample_labels: Optional[Sequence[Any]] = None,
               progress: Optional[ProgressCallback] = None) -> pd.DataFrame:
        """
        Detect peaks in a set of spectra.

        Args:
            spectra: Intensity matrix (rows = samples)
            ppm: ppm vector or matrix
            sample_labels: Optional sample labels
            progress: Optional progress callback

        Returns:
            Peak table, also kept in ``self.peaks``
        """
        data = prepare_spectra(spectra, ppm, sample_labels)
        self.peaks = run_detection(data, self.settings, progress)
        return self.peaks

    def summarize(self) -> pd.DataFrame:
        """Number of peaks and median peak value per sample of the last run."""
        if self.peaks is None:
            raise ValueError("No peaks available, run detect() first")
        if self.peaks.empty:
            return pd.DataFrame(columns=['sample', 'n_peaks', 'median_value'])
        summary = (self.peaks.groupby('sample', sort=False)
                             .agg(n_peaks=('peak_index', 'size'), median_value=('peak_value', 'median'))
                             .reset_index())
        return summary
