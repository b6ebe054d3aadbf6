"""coderec - statistical detection of machine code regions in binary blobs."""

from .config import (
    DEFAULT_SMOOTHING,
    UNKNOWN_LABEL,
    ScanConfig,
    load_config,
)
from .stats import WindowStats, extract_stats, kl_divergence, shannon_entropy
from .corpus import (
    CorpusEntry,
    CorpusError,
    CorpusModel,
    is_code_label,
    load_corpus,
)
from .filters import FilterCategory, filter_window, string_coverage
from .classifier import ClassificationResult, Classifier
from .scanner import Window, choose_window_size, iter_windows
from .regions import Region, RegionConfidence, covers, merge_regions
from .scheduler import ScanCancelled, ScanError, ScanResult, scan
from .report import format_report, scan_to_dict

__version__ = "0.1.0"

__all__ = [
    # Config
    "DEFAULT_SMOOTHING",
    "UNKNOWN_LABEL",
    "ScanConfig",
    "load_config",
    # Statistics
    "WindowStats",
    "extract_stats",
    "kl_divergence",
    "shannon_entropy",
    # Corpus
    "CorpusEntry",
    "CorpusError",
    "CorpusModel",
    "is_code_label",
    "load_corpus",
    # Filters
    "FilterCategory",
    "filter_window",
    "string_coverage",
    # Classifier
    "ClassificationResult",
    "Classifier",
    # Scanner
    "Window",
    "choose_window_size",
    "iter_windows",
    # Regions
    "Region",
    "RegionConfidence",
    "covers",
    "merge_regions",
    # Scheduler
    "ScanCancelled",
    "ScanError",
    "ScanResult",
    "scan",
    # Report
    "format_report",
    "scan_to_dict",
]
