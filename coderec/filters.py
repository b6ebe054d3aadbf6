"""False-positive filters for windows that only look like code.

Random data can sit close enough to a low-information ISA distribution, and
printable text has a strong bigram structure of its own; both produce
spurious ISA matches. Windows caught here are reported by category and
never scored against the corpus.
"""

from enum import Enum

import numpy as np

from .config import ScanConfig
from .stats import WindowStats, as_byte_array


class FilterCategory(Enum):
    HIGH_ENTROPY = "high-entropy"
    STRING = "string"
    PADDING = "padding"


# Printable ASCII plus tab, LF and CR
PRINTABLE = np.zeros(256, dtype=bool)
PRINTABLE[0x20:0x7F] = True
PRINTABLE[[0x09, 0x0A, 0x0D]] = True


def string_coverage(data, min_run: int = 4) -> float:
    """Fraction of bytes inside printable runs of at least ``min_run`` bytes."""
    arr = as_byte_array(data)
    if len(arr) == 0:
        return 0.0

    mask = PRINTABLE[arr].astype(np.int8)
    edges = np.diff(np.concatenate(([0], mask, [0])))
    starts = np.flatnonzero(edges == 1)
    ends = np.flatnonzero(edges == -1)
    lengths = ends - starts
    return float(lengths[lengths >= min_run].sum()) / len(arr)


def filter_window(data, stats: WindowStats, config: ScanConfig) -> FilterCategory | None:
    """Return the filter category of a window, or None if it is informative."""
    if stats.length == 0:
        return None
    if stats.entropy >= config.high_entropy_threshold:
        return FilterCategory.HIGH_ENTROPY
    if string_coverage(data, config.min_string_run) >= config.string_threshold:
        return FilterCategory.STRING
    if stats.entropy < config.low_entropy_threshold:
        return FilterCategory.PADDING
    return None
