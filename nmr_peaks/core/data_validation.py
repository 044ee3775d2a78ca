"""Validation and repair of the spectra, ppm and sample label inputs."""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import numpy as np
import pandas as pd

from .labels import SampleLabelMap

logger = logging.getLogger(__name__)


@dataclass
class SpectrumData:
    """Validated inputs: intensities and ppm as (n_samples, n_points) arrays."""
    intensities: np.ndarray
    ppm: np.ndarray
    labels: SampleLabelMap
    dropped_columns: np.ndarray

    @property
    def n_samples(self) -> int:
        return self.intensities.shape[0]

    @property
    def n_points(self) -> int:
        return self.intensities.shape[1]


def coerce_spectra(spectra: Any) -> np.ndarray:
    """Convert the spectra to a 2D float array (rows = samples)."""
    if isinstance(spectra, np.ndarray) and spectra.ndim == 2:
        matrix = spectra
    else:
        logger.warning("the raw spectra are not in matrix format, conversion attempted")
        if isinstance(spectra, pd.DataFrame):
            matrix = spectra.to_numpy()
        else:
            matrix = np.asarray(spectra)
        if matrix.ndim == 1:
            matrix = matrix.reshape(1, -1)
    if matrix.ndim != 2:
        raise ValueError(f"spectra must be a matrix (samples x points), got {matrix.ndim} dimensions")
    try:
        return np.asarray(matrix, dtype=float)
    except (TypeError, ValueError) as e:
        raise ValueError(f"spectra contain non-numeric values: {e}") from e


def coerce_ppm(ppm: Any, n_samples: int, n_points: int) -> np.ndarray:
    """
    Convert the ppm input to a (n_samples, n_points) float matrix.

    Accepts a vector shared by all samples or one row per sample. Data
    frames are converted with a warning. Single row or column matrices are
    flattened to a vector, and matrices holding one column per sample are
    transposed.
    """
    if isinstance(ppm, pd.DataFrame):
        logger.warning("ppm was in data frame format. Conversion to numeric vector or matrix attempted")
        ppm = ppm.to_numpy()
    elif isinstance(ppm, pd.Series):
        ppm = ppm.to_numpy()

    try:
        ppm = np.asarray(ppm, dtype=float)
    except (TypeError, ValueError) as e:
        raise TypeError("ppm is neither numeric nor a matrix. Convert it to a numeric vector or matrix") from e

    if ppm.ndim == 2 and 1 in ppm.shape and ppm.shape != (n_samples, n_points):
        logger.warning(f"ppm matrix of shape {ppm.shape} was converted to a vector")
        ppm = ppm.ravel()
    elif ppm.ndim == 2 and ppm.shape == (n_points, n_samples) and n_points != n_samples:
        logger.warning("ppm matrix was transposed to have the samples in the matrix rows.")
        ppm = ppm.T

    if ppm.ndim == 1:
        if ppm.size != n_points:
            raise ValueError(
                f"the length of the ppm vector ({ppm.size}) does not match the number of "
                f"columns in the spectra matrix ({n_points})"
            )
        return np.tile(ppm, (n_samples, 1))
    if ppm.ndim == 2:
        if ppm.shape != (n_samples, n_points):
            raise ValueError(
                f"ppm is a matrix of shape {ppm.shape} but the spectra matrix has shape {(n_samples, n_points)}"
            )
        return ppm
    raise TypeError("ppm is neither numeric nor a matrix. Convert it to a numeric vector or matrix")


def prepare_spectra(spectra: Any, ppm: Any, sample_labels: Optional[Sequence[Any]] = None) -> SpectrumData:
    """
    Validate and repair the detection inputs.

    Columns with a missing ppm value are dropped from both matrices with a
    warning. Missing intensities are not imputed and raise.

    Args:
        spectra: Intensities, rows = samples, columns = measurement points
        ppm: ppm vector or matrix
        sample_labels: Optional label per sample

    Returns:
        SpectrumData

    Raises:
        ValueError: on dimension mismatches or missing intensities
        TypeError: when ppm cannot be interpreted as numbers
    """
    intensities = coerce_spectra(spectra)
    n_samples, n_points = intensities.shape
    if n_samples == 0 or n_points == 0:
        raise ValueError("spectra matrix is empty")
    ppm_matrix = coerce_ppm(ppm, n_samples, n_points)

    missing_ppm = np.isnan(ppm_matrix).any(axis=0)
    dropped = np.flatnonzero(missing_ppm)
    if dropped.size:
        logger.warning(f"ppm contains {dropped.size} missing values, removing these columns from the data "
                       f"(positions {(dropped + 1).tolist()})")
        intensities = intensities[:, ~missing_ppm]
        ppm_matrix = ppm_matrix[:, ~missing_ppm]
        if intensities.shape[1] == 0:
            raise ValueError("no ppm values left after removing missing values")

    if np.isnan(intensities).any():
        raise ValueError("spectra contain missing values. Don't know how to deal with these.")

    labels = SampleLabelMap.build(sample_labels, n_samples)
    return SpectrumData(intensities, ppm_matrix, labels, dropped)
