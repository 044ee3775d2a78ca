"""Mapping between caller sample labels and internal integer sample ids."""

import logging
from dataclasses import dataclass
from numbers import Integral, Number
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def _is_numeric(label: Any) -> bool:
    return isinstance(label, Number) and not isinstance(label, bool)


@dataclass
class SampleLabelMap:
    """Bijection between row positions, internal ids (1..n) and labels.

    ``ids[row]`` is the internal id of a row and ``labels[row]`` its label.
    """
    labels: List[Any]
    ids: np.ndarray

    @classmethod
    def build(cls, sample_labels: Optional[Sequence[Any]], n_samples: int) -> 'SampleLabelMap':
        """
        Build the label map for ``n_samples`` rows.

        Without labels, or when they cannot be used (wrong length,
        duplicates), rows are labelled 1..n. Labels that already are the
        integers 1..n map onto themselves.
        """
        default = list(range(1, n_samples + 1))
        if sample_labels is None:
            return cls(default, np.arange(1, n_samples + 1))

        labels = list(sample_labels.tolist() if isinstance(sample_labels, (np.ndarray, pd.Index, pd.Series))
                      else sample_labels)
        if len(labels) != n_samples:
            logger.warning("Sample labels do not match amount of rows in the spectra matrix, "
                           "default row numbers will be used as sample labels")
            return cls(default, np.arange(1, n_samples + 1))
        if len(set(labels)) != len(labels):
            logger.warning("Sample labels are not unique, default row numbers will be used as sample labels")
            return cls(default, np.arange(1, n_samples + 1))

        if all(isinstance(lb, Integral) and not isinstance(lb, bool) for lb in labels) \
                and sorted(int(lb) for lb in labels) == default:
            return cls(labels, np.array([int(lb) for lb in labels]))

        if not all(_is_numeric(lb) for lb in labels):
            logger.warning("sample labels are not numeric. Converting to integer ids for internal purposes.")
        return cls(labels, np.arange(1, n_samples + 1))

    @property
    def is_identity(self) -> bool:
        return all(isinstance(lb, Integral) and int(lb) == i for lb, i in zip(self.labels, self.ids))

    def id_to_label(self) -> Dict[int, Any]:
        return {int(i): lb for i, lb in zip(self.ids, self.labels)}

    def restore(self, peaks: pd.DataFrame) -> pd.DataFrame:
        """Replace internal ids in the ``sample`` column by the caller labels."""
        if self.is_identity:
            return peaks
        restored = peaks.copy()
        restored['sample'] = restored['sample'].map(self.id_to_label())
        return restored
