"""Scan configuration loading and validation."""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

UNKNOWN_LABEL = "unknown"

# Additive smoothing base count applied to every corpus n-gram bucket
DEFAULT_SMOOTHING = 0.01

TIE_BREAK_POLICIES = ("bigram", "trigram")


def default_parallelism() -> int:
    """Number of worker threads to use when none is configured."""
    return os.cpu_count() or 1


def _has_type(value, expected: type) -> bool:
    # bool is an int subclass; ints are accepted where a float is expected
    if expected is bool:
        return isinstance(value, bool)
    if isinstance(value, bool):
        return False
    if expected is float:
        return isinstance(value, (int, float))
    return isinstance(value, expected)


@dataclass
class ScanConfig:
    window_min: int = 1024
    window_max: int = 8192
    parallelism: int = field(default_factory=default_parallelism)
    windows_per_worker: int = 4
    # Largest file one worker batch scans at window_max
    reference_length: int = 64 << 20
    high_entropy_threshold: float = 7.5
    low_entropy_threshold: float = 1.0
    string_threshold: float = 0.8
    min_string_run: int = 4
    divergence_ceiling: float = 5.0  # bigram KL, nats
    trigram_divergence_ceiling: float = 6.0  # trigram KL, nats
    smoothing: float = DEFAULT_SMOOTHING
    tie_break: str = "bigram"  # "bigram" or "trigram"
    big_region_mode: bool = False

    def validate(self) -> "ScanConfig":
        """Check value types and ranges, raising ValueError on the first problem."""
        for f in fields(self):
            value = getattr(self, f.name)
            if not _has_type(value, f.type):
                raise ValueError(
                    f"{f.name} must be of type {f.type.__name__}, got {value!r}"
                )

        if self.window_min < 1:
            raise ValueError(f"window_min must be positive, got {self.window_min}")
        if self.window_max < self.window_min:
            raise ValueError(
                f"window_max ({self.window_max}) is smaller than "
                f"window_min ({self.window_min})"
            )
        if self.parallelism < 1:
            raise ValueError(f"parallelism must be positive, got {self.parallelism}")
        if self.windows_per_worker < 1:
            raise ValueError(
                f"windows_per_worker must be positive, got {self.windows_per_worker}"
            )
        if self.reference_length < 1:
            raise ValueError(
                f"reference_length must be positive, got {self.reference_length}"
            )
        if not 0.0 <= self.low_entropy_threshold <= self.high_entropy_threshold <= 8.0:
            raise ValueError(
                "entropy thresholds must satisfy "
                "0 <= low_entropy_threshold <= high_entropy_threshold <= 8"
            )
        if not 0.0 < self.string_threshold <= 1.0:
            raise ValueError(
                f"string_threshold must be in (0, 1], got {self.string_threshold}"
            )
        if self.min_string_run < 1:
            raise ValueError(f"min_string_run must be positive, got {self.min_string_run}")
        if self.divergence_ceiling <= 0 or self.trigram_divergence_ceiling <= 0:
            raise ValueError("divergence ceilings must be positive")
        if self.smoothing <= 0:
            raise ValueError(f"smoothing must be positive, got {self.smoothing}")
        if self.tie_break not in TIE_BREAK_POLICIES:
            raise ValueError(
                f"Unknown tie_break policy: {self.tie_break} "
                f"(expected one of {', '.join(TIE_BREAK_POLICIES)})"
            )
        return self

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ScanConfig":
        """Build a validated configuration from a plain mapping."""
        data = data or {}
        if not isinstance(data, dict):
            raise ValueError(f"Configuration must be a mapping, got {type(data).__name__}")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")

        try:
            return cls(**data).validate()
        except TypeError as e:
            raise ValueError(f"Invalid configuration value: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_config(config_path: Path) -> ScanConfig:
    """Load scan configuration from a YAML file."""
    with open(config_path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Malformed configuration {config_path}: {e}") from e

    # Allow the options to live under a top-level "scan" key
    if isinstance(data, dict) and set(data) == {"scan"}:
        data = data["scan"]

    return ScanConfig.from_dict(data)
