"""
NMR Wavelet Peaks
-----------------
Sliding window, multi-scale wavelet peak detection for NMR spectra.
"""

__version__ = "1.0.0"

from .core.pipeline import get_wavelet_peaks
from .core.settings import PeakDetectionSettings
from .analyzer import WaveletPeakDetector

__all__ = [
    'get_wavelet_peaks',
    'PeakDetectionSettings',
    'WaveletPeakDetector',
]
