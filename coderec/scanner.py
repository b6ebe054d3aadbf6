"""Partitioning of a target buffer into classification windows."""

import logging
import math
from dataclasses import dataclass
from typing import Iterator

from .config import ScanConfig

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Window:
    """A contiguous slice of the target buffer."""

    index: int
    offset: int
    data: memoryview  # borrowed, not copied

    @property
    def length(self) -> int:
        return len(self.data)

    @property
    def end(self) -> int:
        return self.offset + len(self.data)


def _floor_pow2(value: float) -> int:
    if value < 1:
        return 1
    return 1 << (int(value).bit_length() - 1)


def choose_window_size(length: int, config: ScanConfig) -> int:
    """Pick the window size for a file of ``length`` bytes.

    The batch capacity ``parallelism * windows_per_worker`` spreads the cost
    of finer windows, so the more capacity, the earlier windows shrink.
    Files up to ``reference_length / capacity`` bytes use the largest
    window. Past that reference the window shrinks with the square root of
    the file length, rounded down to a power of two. The window count
    ``length / W`` therefore grows with both file size and parallelism.
    The result never increases with ``length`` or ``parallelism`` and stays
    within ``[window_min, window_max]``.
    """
    capacity = config.parallelism * config.windows_per_worker
    reference = config.reference_length / capacity
    if length <= reference:
        return config.window_max

    raw = config.window_max * math.sqrt(reference / length)
    size = max(config.window_min, min(config.window_max, _floor_pow2(raw)))
    log.debug("%d bytes over reference %d: window 0x%x", length, int(reference), size)
    return size


def iter_windows(data, window_size: int) -> Iterator[Window]:
    """Yield windows covering ``data``; the last one may be shorter."""
    if window_size < 1:
        raise ValueError(f"window_size must be positive, got {window_size}")

    view = memoryview(data).cast("B")
    for index, offset in enumerate(range(0, len(view), window_size)):
        yield Window(index=index, offset=offset, data=view[offset:offset + window_size])
