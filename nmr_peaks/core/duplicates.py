"""Removal of peaks detected twice by overlapping windows."""

import logging
from typing import Iterable, List, Set, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import pairwise_distances

from .windows import count_shifts

logger = logging.getLogger(__name__)

PeakKey = Tuple[int, int]  # (sample, peak_index)


def adjacent_window_spans(n_points: int, window_size: int, window_split: int) -> List[Tuple[int, int]]:
    """
    Spans of every pair of neighbouring windows.

    The window grid is laid out with ``window_split``; each span runs from
    the start of a window to the end of the next one, both 1-based and
    inclusive. A grid with fewer than two windows gives one span over the
    whole spectrum.
    """
    increment = window_size // window_split
    n_shifts = count_shifts(n_points, window_size, window_split)
    starts = [j * increment + 1 for j in range(max(n_shifts, 0)) if j * increment + 1 < n_points]
    if len(starts) < 2:
        return [(1, n_points)]
    return [(starts[j], starts[j + 1] + window_size - 1) for j in range(len(starts) - 1)]


def find_duplicates(peaks: pd.DataFrame, tolerance: float) -> Set[PeakKey]:
    """
    Mark duplicate detections within one span.

    Two peaks of the same sample closer than ``tolerance`` ppm are the same
    peak seen from two windows: the one with the larger value is kept and
    the other is marked. On equal values the lower peak index is kept.

    Args:
        peaks: Peak table rows of one span (any number of samples)
        tolerance: Maximum ppm distance of a duplicate pair

    Returns:
        Set of (sample, peak_index) keys to delete.
    """
    to_delete: Set[PeakKey] = set()
    for sample, group in peaks.groupby('sample', sort=True):
        if len(group) < 2:
            continue
        ppm = group['peak_ppm'].to_numpy().reshape(-1, 1)
        dist = pairwise_distances(ppm, metric='euclidean')
        first, second = np.nonzero(np.triu(dist <= tolerance, k=1))
        if first.size == 0:
            continue

        index = group['peak_index'].to_numpy()
        value = group['peak_value'].to_numpy()
        for i, j in zip(first, second):
            if value[i] > value[j] or (value[i] == value[j] and index[i] < index[j]):
                loser = j
            else:
                loser = i
            to_delete.add((int(sample), int(index[loser])))
    return to_delete


def find_duplicates_in_span(peaks: pd.DataFrame, span: Tuple[int, int], tolerance: float) -> Set[PeakKey]:
    """Unit of work of the second parallel round: one adjacent window pair."""
    start, end = span
    in_span = peaks[(peaks['peak_index'] >= start) & (peaks['peak_index'] <= end)]
    if in_span.empty:
        return set()
    return find_duplicates(in_span, tolerance)


def merge_deletions(deletions: Iterable[Set[PeakKey]]) -> Set[PeakKey]:
    merged: Set[PeakKey] = set()
    for d in deletions:
        merged |= d
    return merged


def drop_peaks(peaks: pd.DataFrame, to_delete: Set[PeakKey]) -> pd.DataFrame:
    """Remove the rows whose (sample, peak_index) key is in ``to_delete``."""
    if not to_delete or peaks.empty:
        return peaks.reset_index(drop=True)
    keys = pd.MultiIndex.from_arrays([peaks['sample'], peaks['peak_index']])
    marked = keys.isin(list(to_delete))
    logger.info(f"Removing {int(marked.sum())} duplicate detections")
    return peaks[~marked].reset_index(drop=True)
