"""Byte, bigram and trigram statistics of a window of bytes."""

from dataclasses import dataclass

import numpy as np

BIGRAM_BINS = 1 << 16
TRIGRAM_BINS = 1 << 24


def as_byte_array(data) -> np.ndarray:
    """Zero-copy uint8 view of a bytes-like object."""
    return np.frombuffer(data, dtype=np.uint8)


def bigram_keys(arr: np.ndarray) -> np.ndarray:
    """Encode every byte pair as ``b0 << 8 | b1``."""
    if len(arr) < 2:
        return np.empty(0, dtype=np.uint32)
    return (arr[:-1].astype(np.uint32) << 8) | arr[1:]


def trigram_keys(arr: np.ndarray) -> np.ndarray:
    """Encode every byte triple as ``b0 << 16 | b1 << 8 | b2``."""
    if len(arr) < 3:
        return np.empty(0, dtype=np.uint32)
    return (
        (arr[:-2].astype(np.uint32) << 16)
        | (arr[1:-1].astype(np.uint32) << 8)
        | arr[2:]
    )


def shannon_entropy(byte_hist: np.ndarray) -> float:
    """Shannon entropy of a byte histogram, in bits per byte."""
    total = int(byte_hist.sum())
    if total == 0:
        return 0.0
    p = byte_hist[byte_hist > 0] / total
    # Clamp tiny negative rounding for single-valued input
    return max(0.0, float(-(p * np.log2(p)).sum()))


def kl_divergence(p: np.ndarray, q: np.ndarray) -> float:
    """Kullback-Leibler divergence D(p || q) in nats.

    Terms where ``p`` is zero contribute nothing; ``q`` must be positive
    wherever ``p`` is.
    """
    mask = p > 0
    pm = p[mask]
    return float((pm * (np.log(pm) - np.log(q[mask]))).sum())


@dataclass(frozen=True, eq=False)
class WindowStats:
    """N-gram histograms and entropy of one window."""

    length: int
    byte_hist: np.ndarray
    bigram_hist: np.ndarray  # dense, BIGRAM_BINS counts
    trigram_keys: np.ndarray  # sorted unique keys
    trigram_counts: np.ndarray
    entropy: float

    @property
    def bigram_total(self) -> int:
        return max(0, self.length - 1)

    @property
    def trigram_total(self) -> int:
        return max(0, self.length - 2)


def extract_stats(data) -> WindowStats:
    """Compute the statistics of a bytes-like window."""
    arr = as_byte_array(data)
    byte_hist = np.bincount(arr, minlength=256)
    bigram_hist = np.bincount(bigram_keys(arr), minlength=BIGRAM_BINS)
    tri_keys, tri_counts = np.unique(trigram_keys(arr), return_counts=True)

    return WindowStats(
        length=len(arr),
        byte_hist=byte_hist,
        bigram_hist=bigram_hist,
        trigram_keys=tri_keys.astype(np.uint32),
        trigram_counts=tri_counts,
        entropy=shannon_entropy(byte_hist),
    )
