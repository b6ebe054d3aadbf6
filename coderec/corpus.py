"""Reference corpus of per-ISA bigram and trigram distributions.

A corpus entry is built offline from raw machine-code samples of one ISA.
Counts are additively smoothed so that every possible n-gram keeps a small
non-zero probability; this is what keeps the KL divergence of a window
against any entry finite.

Corpus sources understood by :func:`load_corpus`:

* a mapping ``label -> bytes`` (or ``label -> [bytes, ...]``)
* a directory of ``<label>.corpus`` raw sample files
* a YAML manifest listing sample files per label (a directory holding a
  ``manifest.yaml`` is read through it)
* an ``.npz`` archive written by :meth:`CorpusModel.save`
"""

import logging
import time
import zipfile
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np
import yaml

from .config import DEFAULT_SMOOTHING, UNKNOWN_LABEL
from .stats import (
    BIGRAM_BINS,
    TRIGRAM_BINS,
    WindowStats,
    as_byte_array,
    bigram_keys,
    trigram_keys,
)

log = logging.getLogger(__name__)

CORPUS_SUFFIX = ".corpus"
MANIFEST_NAME = "manifest.yaml"
ARCHIVE_FORMAT_VERSION = 1

# Allowed deviation of a distribution's total mass from 1
NORMALIZATION_TOLERANCE = 1e-6


class CorpusError(Exception):
    """The reference corpus is missing, malformed or fails validation."""


def is_code_label(label: str) -> bool:
    """Whether a label names an ISA rather than unknown or a non-code class.

    Corpus labels starting with ``_`` (``_words``, ``_zero``...) describe
    reference data that is not machine code.
    """
    return label != UNKNOWN_LABEL and not label.startswith("_")


def _readonly(values: Any, dtype) -> np.ndarray:
    arr = np.array(values, dtype=dtype, copy=True)
    arr.setflags(write=False)
    return arr


def _sparse_lookup(
    keys: np.ndarray, values: np.ndarray, default: float, query: np.ndarray
) -> np.ndarray:
    """Look ``query`` keys up in a sorted key array, ``default`` if absent."""
    if len(keys) == 0:
        return np.full(len(query), default)
    idx = np.minimum(np.searchsorted(keys, query), len(keys) - 1)
    return np.where(keys[idx] == query, values[idx], default)


@dataclass(frozen=True, eq=False)
class CorpusEntry:
    """Reference n-gram distributions of one ISA."""

    label: str
    bigram_dist: np.ndarray  # dense BIGRAM_BINS probabilities
    trigram_keys: np.ndarray  # sorted unique 24-bit keys
    trigram_probs: np.ndarray
    trigram_floor: float  # probability of every key not listed
    sample_count: int  # sample bytes the entry was built from

    def __post_init__(self):
        object.__setattr__(self, "bigram_dist", _readonly(self.bigram_dist, np.float64))
        object.__setattr__(self, "trigram_keys", _readonly(self.trigram_keys, np.uint32))
        object.__setattr__(self, "trigram_probs", _readonly(self.trigram_probs, np.float64))
        object.__setattr__(self, "trigram_floor", float(self.trigram_floor))
        object.__setattr__(self, "sample_count", int(self.sample_count))
        self.validate()

    @classmethod
    def from_samples(
        cls,
        label: str,
        samples: Iterable[bytes],
        smoothing: float = DEFAULT_SMOOTHING,
    ) -> "CorpusEntry":
        """Build an entry from raw samples of one ISA.

        N-grams are counted per sample so that no n-gram spans two samples.
        Every bucket receives ``smoothing`` extra counts:
        ``q = (count + s) / (total + s * bins)``.
        """
        if smoothing <= 0:
            raise CorpusError(f"{label}: smoothing must be positive, got {smoothing}")

        bi_counts = np.zeros(BIGRAM_BINS, dtype=np.int64)
        tri_parts = []
        sample_count = 0
        for sample in samples:
            arr = as_byte_array(sample)
            if len(arr) < 3:
                raise CorpusError(
                    f"{label}: sample of {len(arr)} bytes holds no trigram"
                )
            bi_counts += np.bincount(bigram_keys(arr), minlength=BIGRAM_BINS)
            tri_parts.append(trigram_keys(arr))
            sample_count += len(arr)

        if not tri_parts:
            raise CorpusError(f"{label}: no samples")

        tri_keys, tri_counts = np.unique(np.concatenate(tri_parts), return_counts=True)
        bi_qtotal = bi_counts.sum() + smoothing * BIGRAM_BINS
        tri_qtotal = tri_counts.sum() + smoothing * TRIGRAM_BINS

        log.debug(
            "%s: %d bytes, %d bigrams, %d trigrams",
            label, sample_count, np.count_nonzero(bi_counts), len(tri_keys),
        )

        return cls(
            label=label,
            bigram_dist=(bi_counts + smoothing) / bi_qtotal,
            trigram_keys=tri_keys,
            trigram_probs=(tri_counts + smoothing) / tri_qtotal,
            trigram_floor=smoothing / tri_qtotal,
            sample_count=sample_count,
        )

    def validate(self) -> None:
        """Check shapes and normalisation, raising CorpusError."""
        if not isinstance(self.label, str) or not self.label:
            raise CorpusError(f"Invalid corpus label: {self.label!r}")
        if self.label == UNKNOWN_LABEL:
            raise CorpusError(f"Corpus label {UNKNOWN_LABEL!r} is reserved")

        bigrams = self.bigram_dist
        if bigrams.shape != (BIGRAM_BINS,):
            raise CorpusError(
                f"{self.label}: bigram table has shape {bigrams.shape}, "
                f"expected ({BIGRAM_BINS},)"
            )
        if not np.all(np.isfinite(bigrams)) or np.any(bigrams <= 0):
            raise CorpusError(f"{self.label}: bigram probabilities must be positive")
        if abs(bigrams.sum() - 1.0) > NORMALIZATION_TOLERANCE:
            raise CorpusError(
                f"{self.label}: bigram distribution sums to {bigrams.sum():.9f}"
            )

        keys, probs = self.trigram_keys, self.trigram_probs
        if keys.ndim != 1 or keys.shape != probs.shape:
            raise CorpusError(f"{self.label}: trigram keys and probabilities differ in shape")
        if len(keys) and (
            int(keys[-1]) >= TRIGRAM_BINS or np.any(np.diff(keys.astype(np.int64)) <= 0)
        ):
            raise CorpusError(f"{self.label}: trigram keys must be sorted 24-bit values")
        if not np.all(np.isfinite(probs)) or np.any(probs <= 0):
            raise CorpusError(f"{self.label}: trigram probabilities must be positive")
        if not np.isfinite(self.trigram_floor) or self.trigram_floor <= 0:
            raise CorpusError(f"{self.label}: trigram floor must be positive")
        if abs(self.trigram_mass() - 1.0) > NORMALIZATION_TOLERANCE:
            raise CorpusError(
                f"{self.label}: trigram distribution sums to {self.trigram_mass():.9f}"
            )

    def trigram_mass(self) -> float:
        """Total probability: listed keys plus the floor of every other key."""
        unlisted = TRIGRAM_BINS - len(self.trigram_keys)
        return float(self.trigram_probs.sum() + self.trigram_floor * unlisted)


class CorpusModel:
    """Ordered, immutable set of corpus entries with unique labels.

    Shared read-only by every scan worker.
    """

    def __init__(self, entries: Iterable[CorpusEntry]):
        entries = tuple(entries)
        if not entries:
            raise CorpusError("Corpus holds no entries")

        labels = [e.label for e in entries]
        seen: set[str] = set()
        for label in labels:
            if label in seen:
                raise CorpusError(f"Duplicate corpus label: {label}")
            seen.add(label)

        self._entries = entries
        self._labels = tuple(labels)

        # Log-probabilities precomputed once for vectorised scoring
        self._log_bigrams = np.log(np.stack([e.bigram_dist for e in entries]))
        self._log_bigrams.setflags(write=False)
        self._log_trigrams = []
        for e in entries:
            log_probs = np.log(e.trigram_probs)
            log_probs.setflags(write=False)
            self._log_trigrams.append((e.trigram_keys, log_probs, float(np.log(e.trigram_floor))))

    @classmethod
    def load(cls, source, smoothing: float = DEFAULT_SMOOTHING) -> "CorpusModel":
        return load_corpus(source, smoothing=smoothing)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def __contains__(self, label: str) -> bool:
        return label in self._labels

    def __repr__(self) -> str:
        return f"CorpusModel({', '.join(self._labels)})"

    def entries(self) -> tuple[CorpusEntry, ...]:
        return self._entries

    def labels(self) -> tuple[str, ...]:
        return self._labels

    def divergences(self, stats: WindowStats) -> tuple[np.ndarray, np.ndarray]:
        """Bigram and trigram KL divergence of a window from every entry.

        Both vectors follow entry order.
        """
        if stats.trigram_total == 0:
            raise ValueError("window too short to hold a trigram")

        nz = np.flatnonzero(stats.bigram_hist)
        bi_p = stats.bigram_hist[nz] / stats.bigram_total
        bi = (bi_p * (np.log(bi_p) - self._log_bigrams[:, nz])).sum(axis=1)

        tri_p = stats.trigram_counts / stats.trigram_total
        tri_log_p = np.log(tri_p)
        tri = np.empty(len(self._entries))
        for i, (keys, log_probs, log_floor) in enumerate(self._log_trigrams):
            log_q = _sparse_lookup(keys, log_probs, log_floor, stats.trigram_keys)
            tri[i] = (tri_p * (tri_log_p - log_q)).sum()

        return bi, tri

    def score(self, stats: WindowStats) -> dict[str, tuple[float, float]]:
        """Map each label to its (bigram, trigram) divergence for a window."""
        bi, tri = self.divergences(stats)
        return {
            label: (float(b), float(t))
            for label, b, t in zip(self._labels, bi, tri)
        }

    def save(self, path: Path) -> Path:
        """Write the model to an ``.npz`` archive and return its path."""
        path = Path(path)
        if path.suffix != ".npz":
            path = path.with_name(path.name + ".npz")

        offsets = np.cumsum([0] + [len(e.trigram_keys) for e in self._entries])
        np.savez_compressed(
            path,
            format_version=np.array(ARCHIVE_FORMAT_VERSION),
            labels=np.array(self._labels),
            sample_counts=np.array([e.sample_count for e in self._entries], dtype=np.int64),
            bigrams=np.stack([e.bigram_dist for e in self._entries]),
            trigram_offsets=offsets.astype(np.int64),
            trigram_keys=np.concatenate([e.trigram_keys for e in self._entries]),
            trigram_probs=np.concatenate([e.trigram_probs for e in self._entries]),
            trigram_floors=np.array([e.trigram_floor for e in self._entries]),
        )
        log.info("Saved %d corpus entries to %s", len(self), path)
        return path


def load_corpus(source, smoothing: float = DEFAULT_SMOOTHING) -> CorpusModel:
    """Materialise a corpus model from any supported source."""
    start = time.time()

    if isinstance(source, Mapping):
        model = _from_mapping(source, smoothing)
    else:
        path = Path(source)
        if not path.exists():
            raise CorpusError(f"Corpus source not found: {path}")
        if path.is_dir():
            manifest = path / MANIFEST_NAME
            if manifest.exists():
                model = _from_manifest(manifest, smoothing)
            else:
                model = _from_directory(path, smoothing)
        elif path.suffix == ".npz":
            model = _from_archive(path)
        elif path.suffix in (".yaml", ".yml"):
            model = _from_manifest(path, smoothing)
        else:
            raise CorpusError(f"Unsupported corpus source: {path}")

    log.info("Loaded %d corpus entries in %.2fs", len(model), time.time() - start)
    return model


def _from_mapping(source: Mapping, smoothing: float) -> CorpusModel:
    entries = []
    for label, value in source.items():
        if not isinstance(label, str):
            raise CorpusError(f"Corpus label must be a string, got {label!r}")
        if isinstance(value, (bytes, bytearray, memoryview)):
            samples = [value]
        else:
            samples = list(value)
        log.debug("Building corpus entry for %s from %d samples", label, len(samples))
        entries.append(CorpusEntry.from_samples(label, samples, smoothing))
    return CorpusModel(entries)


def _read_sample(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as e:
        raise CorpusError(f"Cannot read corpus sample {path}: {e}") from e


def _from_directory(directory: Path, smoothing: float) -> CorpusModel:
    files = sorted(directory.glob(f"*{CORPUS_SUFFIX}"))
    if not files:
        raise CorpusError(f"No {CORPUS_SUFFIX} files in {directory}")

    entries = []
    for corpus_file in files:
        label = corpus_file.name[: -len(CORPUS_SUFFIX)]
        log.debug("Loading corpus entry for %s", label)
        entries.append(
            CorpusEntry.from_samples(label, [_read_sample(corpus_file)], smoothing)
        )
    return CorpusModel(entries)


def _from_manifest(manifest_path: Path, smoothing: float) -> CorpusModel:
    """Build a model from a YAML manifest.

    Format::

        entries:
          - label: x86
            files: [x86/boot.bin, x86/libc.bin]
          - label: arm
            file: arm.bin
    """
    try:
        with open(manifest_path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise CorpusError(f"Cannot read corpus manifest {manifest_path}: {e}") from e
    except yaml.YAMLError as e:
        raise CorpusError(f"Malformed corpus manifest {manifest_path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("entries"), list):
        raise CorpusError(f"{manifest_path}: expected a mapping with an 'entries' list")

    base = manifest_path.parent
    entries = []
    for item in data["entries"]:
        if not isinstance(item, dict) or "label" not in item:
            raise CorpusError(f"{manifest_path}: every entry needs a label")
        label = str(item["label"])
        files = item.get("files", [])
        if "file" in item:
            files = [item["file"], *files]
        if not isinstance(files, list) or not files:
            raise CorpusError(f"{manifest_path}: entry {label} lists no sample files")

        samples = [_read_sample(base / str(name)) for name in files]
        entries.append(CorpusEntry.from_samples(label, samples, smoothing))
    return CorpusModel(entries)


def _from_archive(path: Path) -> CorpusModel:
    try:
        with np.load(path, allow_pickle=False) as archive:
            version = int(archive["format_version"])
            if version != ARCHIVE_FORMAT_VERSION:
                raise CorpusError(f"{path}: unsupported archive version {version}")

            labels = [str(label) for label in archive["labels"]]
            sample_counts = archive["sample_counts"]
            bigrams = archive["bigrams"]
            offsets = archive["trigram_offsets"]
            keys = archive["trigram_keys"]
            probs = archive["trigram_probs"]
            floors = archive["trigram_floors"]
    except (OSError, ValueError, KeyError, zipfile.BadZipFile) as e:
        raise CorpusError(f"Malformed corpus archive {path}: {e}") from e

    n = len(labels)
    if not (
        len(sample_counts) == len(floors) == n
        and bigrams.shape[:1] == (n,)
        and len(offsets) == n + 1
    ):
        raise CorpusError(f"{path}: archive arrays disagree on the entry count")

    entries = []
    for i, label in enumerate(labels):
        lo, hi = int(offsets[i]), int(offsets[i + 1])
        entries.append(CorpusEntry(
            label=label,
            bigram_dist=bigrams[i],
            trigram_keys=keys[lo:hi],
            trigram_probs=probs[lo:hi],
            trigram_floor=floors[i],
            sample_count=sample_counts[i],
        ))
    return CorpusModel(entries)
