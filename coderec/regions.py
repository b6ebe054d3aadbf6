"""Merging of per-window results into labelled regions."""

from dataclasses import dataclass
from typing import Iterable

from .classifier import ClassificationResult
from .corpus import is_code_label
from .filters import FilterCategory


@dataclass(frozen=True)
class RegionConfidence:
    """Score aggregates over the windows of a region."""

    window_count: int
    mean_bigram_score: float | None  # over scored windows only
    mean_trigram_score: float | None
    agreement_ratio: float  # share of scored windows whose winners agree
    mean_entropy: float


@dataclass(frozen=True)
class Region:
    """Maximal run of adjacent windows with the same outcome."""

    start_offset: int
    end_offset: int  # exclusive
    label: str
    filtered_as: FilterCategory | None
    confidence: RegionConfidence

    @property
    def size(self) -> int:
        return self.end_offset - self.start_offset

    @property
    def category(self) -> str:
        """Filter category if filtered, label otherwise."""
        return self.filtered_as.value if self.filtered_as else self.label

    @property
    def is_code(self) -> bool:
        return self.filtered_as is None and is_code_label(self.label)


def _mean(values: list[float]) -> float | None:
    return sum(values) / len(values) if values else None


def _build_region(run: list[ClassificationResult]) -> Region:
    scored = [r for r in run if r.bigram_score is not None]
    return Region(
        start_offset=run[0].offset,
        end_offset=run[-1].end,
        label=run[0].label,
        filtered_as=run[0].filtered_as,
        confidence=RegionConfidence(
            window_count=len(run),
            mean_bigram_score=_mean([r.bigram_score for r in scored]),
            mean_trigram_score=_mean([r.trigram_score for r in scored]),
            agreement_ratio=(
                sum(1 for r in scored if r.agreement) / len(scored) if scored else 0.0
            ),
            mean_entropy=sum(r.entropy for r in run) / len(run),
        ),
    )


def merge_regions(results: Iterable[ClassificationResult]) -> list[Region]:
    """Coalesce offset-ordered results sharing (label, filtered_as).

    Raises ValueError if the results are not contiguous.
    """
    regions: list[Region] = []
    run: list[ClassificationResult] = []

    for result in results:
        if run:
            prev = run[-1]
            if result.offset != prev.end:
                raise ValueError(
                    f"Results are not contiguous: window at 0x{result.offset:x} "
                    f"follows one ending at 0x{prev.end:x}"
                )
            if (result.label, result.filtered_as) != (prev.label, prev.filtered_as):
                regions.append(_build_region(run))
                run = []
        run.append(result)

    if run:
        regions.append(_build_region(run))
    return regions


def covers(regions: list[Region], length: int) -> bool:
    """Whether regions tile ``[0, length)`` exactly, in order."""
    cursor = 0
    for region in regions:
        if region.start_offset != cursor or region.end_offset <= region.start_offset:
            return False
        cursor = region.end_offset
    return cursor == length
