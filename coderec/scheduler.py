"""Parallel scan of a buffer: windows fan out to a thread pool and come back
in offset order."""

import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from .classifier import ClassificationResult, Classifier
from .config import ScanConfig
from .corpus import CorpusModel
from .regions import Region, covers, merge_regions
from .scanner import Window, choose_window_size, iter_windows

log = logging.getLogger(__name__)


class ScanError(Exception):
    """A scan failed as a whole; no partial result is available."""


class ScanCancelled(ScanError):
    """The scan was cancelled before completion."""


@dataclass
class ScanResult:
    """Ordered per-window results and merged regions of one buffer."""

    length: int
    window_size: int
    results: list[ClassificationResult] = field(default_factory=list)
    regions: list[Region] = field(default_factory=list)

    @property
    def code_regions(self) -> list[Region]:
        return [r for r in self.regions if r.is_code]

    def labels(self) -> list[str]:
        """Distinct code labels in order of first appearance."""
        seen: list[str] = []
        for region in self.code_regions:
            if region.label not in seen:
                seen.append(region.label)
        return seen


def _classify_batch(
    classifier: Classifier,
    windows: list[Window],
    stop: threading.Event,
    cancel: threading.Event | None,
) -> list[ClassificationResult] | None:
    """Classify a batch of windows. Runs in a worker thread.

    Returns None once ``stop`` (set by the scan on a failure) or the
    caller's ``cancel`` event is set.
    """
    results = []
    for window in windows:
        if stop.is_set() or (cancel is not None and cancel.is_set()):
            return None
        results.append(classifier.classify(window))
    return results


def scan(
    data,
    corpus: CorpusModel,
    config: ScanConfig | None = None,
    *,
    cancel: threading.Event | None = None,
) -> ScanResult:
    """Classify every window of ``data`` and merge the results into regions.

    The result depends only on (data, corpus, config): results are stored
    by window index, not by completion order. Any worker failure aborts the
    whole scan with ScanError; setting ``cancel`` aborts it with
    ScanCancelled.
    """
    config = (config or ScanConfig()).validate()
    length = len(data)
    window_size = choose_window_size(length, config)

    if length == 0:
        return ScanResult(length=0, window_size=window_size)

    windows = list(iter_windows(data, window_size))
    total = len(windows)
    batch_size = max(1, math.ceil(total / (config.parallelism * config.windows_per_worker)))
    batches = [windows[i:i + batch_size] for i in range(0, total, batch_size)]

    log.info(
        "Scanning %d bytes: window 0x%x, %d windows in %d batches, %d workers",
        length, window_size, total, len(batches), config.parallelism,
    )

    classifier = Classifier(corpus, config)
    stop = threading.Event()
    slots: list[ClassificationResult | None] = [None] * total
    start = time.time()
    done = 0

    with ThreadPoolExecutor(max_workers=config.parallelism) as executor:
        futures = {
            executor.submit(_classify_batch, classifier, batch, stop, cancel): batch[0].index
            for batch in batches
        }

        for future in as_completed(futures):
            first = futures[future]
            try:
                batch_results = future.result()
            except Exception as e:
                stop.set()
                for pending in futures:
                    pending.cancel()
                log.error("Window batch at 0x%x failed: %s", windows[first].offset, e)
                raise ScanError(
                    f"window batch at offset 0x{windows[first].offset:x} failed: {e}"
                ) from e

            if batch_results is None or (cancel is not None and cancel.is_set()):
                stop.set()
                for pending in futures:
                    pending.cancel()
                raise ScanCancelled("scan cancelled")

            slots[first:first + len(batch_results)] = batch_results
            done += len(batch_results)
            log.debug("Progress: %d/%d windows", done, total)

    if any(slot is None for slot in slots):
        raise ScanError("scan finished with unclassified windows")

    results = list(slots)
    try:
        regions = merge_regions(results)
    except ValueError as e:
        raise ScanError(str(e)) from e
    if not covers(regions, length):
        raise ScanError(f"regions do not cover [0, 0x{length:x})")

    log.info(
        "Scanned %d bytes in %.2fs: %d regions (%d code)",
        length, time.time() - start, len(regions),
        sum(1 for r in regions if r.is_code),
    )
    return ScanResult(
        length=length,
        window_size=window_size,
        results=results,
        regions=regions,
    )
