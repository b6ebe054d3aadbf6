"""Per-window ISA classification by n-gram divergence."""

import logging
from dataclasses import dataclass

import numpy as np

from .config import UNKNOWN_LABEL, ScanConfig
from .corpus import CorpusModel, is_code_label
from .filters import FilterCategory, filter_window
from .scanner import Window
from .stats import extract_stats

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome for a single window."""

    offset: int
    length: int
    label: str  # corpus label or UNKNOWN_LABEL
    bigram_score: float | None  # lowest bigram divergence, nats
    trigram_score: float | None  # lowest trigram divergence, nats
    agreement: bool  # bigram and trigram winners are the same entry
    filtered_as: FilterCategory | None
    entropy: float
    bigram_label: str | None = None
    trigram_label: str | None = None
    bigram_zscore: float = 0.0
    trigram_zscore: float = 0.0

    @property
    def end(self) -> int:
        return self.offset + self.length

    @property
    def is_code(self) -> bool:
        return self.filtered_as is None and is_code_label(self.label)


def _zscore(divs: np.ndarray, best: int) -> float:
    """How many standard deviations the winner sits below the mean."""
    std = float(divs.std())
    if len(divs) < 2 or std == 0.0:
        return 0.0
    return float((divs.mean() - divs[best]) / std)


class Classifier:
    """Scores windows against a shared, read-only corpus model."""

    def __init__(self, corpus: CorpusModel, config: ScanConfig):
        self.corpus = corpus
        self.config = config
        self._labels = corpus.labels()

    def classify(self, window: Window) -> ClassificationResult:
        stats = extract_stats(window.data)
        category = filter_window(window.data, stats, self.config)

        if category is not None or stats.trigram_total == 0:
            # Filtered and too-short windows are never scored
            return ClassificationResult(
                offset=window.offset,
                length=window.length,
                label=UNKNOWN_LABEL,
                bigram_score=None,
                trigram_score=None,
                agreement=False,
                filtered_as=category,
                entropy=stats.entropy,
            )

        bi, tri = self.corpus.divergences(stats)
        best_bi = int(np.argmin(bi))
        best_tri = int(np.argmin(tri))
        label_bi = self._labels[best_bi]
        label_tri = self._labels[best_tri]

        if self.config.tie_break == "trigram":
            label, score, ceiling = label_tri, tri[best_tri], self.config.trigram_divergence_ceiling
        else:
            label, score, ceiling = label_bi, bi[best_bi], self.config.divergence_ceiling

        log.debug(
            "0x%x: bigram %s (%.3f), trigram %s (%.3f)",
            window.offset, label_bi, bi[best_bi], label_tri, tri[best_tri],
        )

        if score > ceiling:
            label = UNKNOWN_LABEL

        return ClassificationResult(
            offset=window.offset,
            length=window.length,
            label=label,
            bigram_score=float(bi[best_bi]),
            trigram_score=float(tri[best_tri]),
            agreement=label_bi == label_tri,
            filtered_as=None,
            entropy=stats.entropy,
            bigram_label=label_bi,
            trigram_label=label_tri,
            bigram_zscore=_zscore(bi, best_bi),
            trigram_zscore=_zscore(tri, best_tri),
        )
