"""Detection settings resolved from the YAML configuration and call overrides."""

import logging
import math
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import joblib

from config.config_loader import load_config

logger = logging.getLogger(__name__)

WINDOW_WIDTHS = {'small': 512, 'large': 1024}
VALID_WINDOW_SPLITS = (2, 4, 16, 32, 64)
DEFAULT_WINDOW_SPLIT = 4

# Empirical constants, kept tunable
NOISE_EPSILON = 0.005
DUPLICATE_PPM_DISTANCE = 0.005
AUTO_SNR_FACTOR = 0.05
MAX_RECOMMENDED_MULTIPLIER = 10


@dataclass
class CWTParams:
    """Tuning of the ridge based CWT peak detector."""
    peak_scale_range: float = 5      # lowest scale considered for the peak value
    ridge_length: float = 24         # minimum top scale of a major peak ridge
    gap_threshold: int = 3           # scales a ridge may miss before it ends
    amp_threshold: float = 0.01      # relative to the largest coefficient
    nearby_win_size: int = 100       # points around a major peak for nearby peaks
    noise_win_size: int = 500        # points used for the local noise estimate
    min_win_size: int = 5            # smallest local maximum window

    @classmethod
    def from_dict(cls, cfg: Optional[Dict[str, Any]]) -> 'CWTParams':
        cfg = cfg or {}
        known = {f.name for f in fields(cls)}
        unknown = set(cfg) - known
        if unknown:
            logger.warning(f"Ignoring unknown cwt options: {sorted(unknown)}")
        return cls(**{k: v for k, v in cfg.items() if k in known})


@dataclass
class PeakDetectionSettings:
    """All options of a peak detection run.

    Invalid but recoverable values are repaired with a warning in
    ``__post_init__`` so that every consumer sees a consistent configuration.
    """
    window_width: Union[str, int] = 'small'
    window_split: Tuple[int, ...] = (DEFAULT_WINDOW_SPLIT,)
    scales: Tuple[float, ...] = tuple(range(1, 17))
    baseline_thresh: float = 1000.0
    snr_threshold: float = -1.0
    n_jobs: int = -1
    include_nearby_peaks: bool = True
    raw_peak_height: bool = False
    duplicate_detection_multiplier: float = 1.0
    noise_epsilon: float = NOISE_EPSILON
    duplicate_ppm_distance: float = DUPLICATE_PPM_DISTANCE
    cwt: CWTParams = field(default_factory=CWTParams)

    def __post_init__(self):
        self.window_size = self._resolve_window_width(self.window_width)
        self.window_split = self._resolve_window_split(self.window_split)
        self.scales = self._resolve_scales(self.scales)
        if isinstance(self.cwt, dict):
            self.cwt = CWTParams.from_dict(self.cwt)
        self.baseline_thresh = float(self.baseline_thresh)
        self.snr_threshold = float(self.snr_threshold)
        if self.snr_threshold < 0:
            self.snr_threshold = AUTO_SNR_FACTOR * max(self.scales)
        self.duplicate_detection_multiplier = float(self.duplicate_detection_multiplier)
        if self.duplicate_detection_multiplier <= 0:
            raise ValueError("duplicate_detection_multiplier must be positive")
        if self.duplicate_detection_multiplier > MAX_RECOMMENDED_MULTIPLIER:
            logger.warning(
                f"duplicate_detection_multiplier={self.duplicate_detection_multiplier} is above the "
                f"recommended maximum of {MAX_RECOMMENDED_MULTIPLIER}; distinct peaks may be merged"
            )
        self.n_jobs = int(self.n_jobs)

    @staticmethod
    def _resolve_window_width(width: Union[str, int]) -> int:
        if isinstance(width, str) and width.lower() in WINDOW_WIDTHS:
            return WINDOW_WIDTHS[width.lower()]
        if not isinstance(width, (str, bool)) and width in WINDOW_WIDTHS.values():
            return int(width)
        logger.warning(f"'window_width' is defined ambiguously or wrong ({width!r}), set to default small.")
        return WINDOW_WIDTHS['small']

    @staticmethod
    def _resolve_window_split(split: Union[int, Sequence[int]]) -> Tuple[int, ...]:
        if isinstance(split, (int, float)):
            split = [split]
        resolved = []
        for value in split:
            if value not in VALID_WINDOW_SPLITS:
                logger.warning(
                    f"window_split value {value} is not a power of 2 in {VALID_WINDOW_SPLITS}. "
                    f"It is set to the default: {DEFAULT_WINDOW_SPLIT}"
                )
                value = DEFAULT_WINDOW_SPLIT
            resolved.append(int(value))
        if not resolved:
            resolved = [DEFAULT_WINDOW_SPLIT]
        return tuple(resolved)

    @staticmethod
    def _resolve_scales(scales: Sequence[float]) -> Tuple[float, ...]:
        values = [float(s) for s in scales]
        if not values:
            raise ValueError("scales must contain at least one scale")
        if any(not math.isfinite(s) or s <= 0 for s in values):
            raise ValueError(f"scales must be positive, got {values}")
        if values != sorted(values):
            logger.warning("scales are not in ascending order; sorting them")
            values = sorted(values)
        return tuple(values)

    @property
    def duplicate_tolerance(self) -> float:
        """Maximum ppm distance for two peaks to count as one detection."""
        return self.duplicate_ppm_distance * self.duplicate_detection_multiplier

    def resolve_n_jobs(self, n_tasks: int) -> int:
        """Worker count for a round of ``n_tasks`` independent tasks."""
        n_jobs = self.n_jobs
        if n_jobs == -1:
            n_jobs = joblib.cpu_count() - 1
        n_jobs = max(1, n_jobs)
        return max(1, min(n_jobs, n_tasks))

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None, **overrides) -> 'PeakDetectionSettings':
        """Build settings from the ``wavelet_peaks`` config section.

        Args:
            config: Full configuration dictionary; loaded from the default
                    config file if None.
            **overrides: Option values taking precedence over the config.
                         None values are ignored.
        """
        if config is None:
            config = load_config()
        section = dict(config.get('wavelet_peaks', {}) or {})
        cwt_cfg = dict(section.pop('cwt', {}) or {})
        cwt_cfg.update(overrides.pop('cwt', None) or {})
        section.update({k: v for k, v in overrides.items() if v is not None})

        known = {f.name for f in fields(cls)}
        unknown = set(section) - known
        if unknown:
            raise TypeError(f"Unknown peak detection options: {sorted(unknown)}")
        return cls(cwt=CWTParams.from_dict(cwt_cfg), **section)
