"""JSON and text rendering of scan results."""

import json
from pathlib import Path
from typing import Any

from .classifier import ClassificationResult
from .config import ScanConfig
from .regions import Region
from .scheduler import ScanResult


def _round(value: float | None, digits: int = 4) -> float | None:
    return None if value is None else round(value, digits)


def region_to_dict(region: Region) -> dict[str, Any]:
    conf = region.confidence
    return {
        "start": region.start_offset,
        "end": region.end_offset,
        "size": region.size,
        "label": region.label,
        "filtered_as": region.filtered_as.value if region.filtered_as else None,
        "is_code": region.is_code,
        "confidence": {
            "windows": conf.window_count,
            "mean_bigram_score": _round(conf.mean_bigram_score),
            "mean_trigram_score": _round(conf.mean_trigram_score),
            "agreement_ratio": round(conf.agreement_ratio, 4),
            "mean_entropy": round(conf.mean_entropy, 4),
        },
    }


def result_to_dict(result: ClassificationResult) -> dict[str, Any]:
    return {
        "offset": result.offset,
        "length": result.length,
        "label": result.label,
        "bigram_label": result.bigram_label,
        "trigram_label": result.trigram_label,
        "bigram_score": _round(result.bigram_score),
        "trigram_score": _round(result.trigram_score),
        "bigram_zscore": round(result.bigram_zscore, 4),
        "trigram_zscore": round(result.trigram_zscore, 4),
        "agreement": result.agreement,
        "filtered_as": result.filtered_as.value if result.filtered_as else None,
        "entropy": round(result.entropy, 4),
    }


def scan_to_dict(
    file_name: str,
    result: ScanResult,
    config: ScanConfig | None = None,
    include_windows: bool = False,
) -> dict[str, Any]:
    """Machine-readable summary of one scanned file.

    ``range_results`` lists code regions only, as ``[[start, end], size,
    label]``; ``regions`` covers the whole file.
    """
    big_region_mode = config.big_region_mode if config else False
    summary: dict[str, Any] = {
        "file": file_name,
        "size": result.length,
        "window_size": result.window_size,
        "mode": "regions" if big_region_mode else "bytes",
        "range_results": [
            [[r.start_offset, r.end_offset], r.size, r.label]
            for r in result.code_regions
        ],
        "regions": [region_to_dict(r) for r in result.regions],
    }
    if include_windows:
        summary["windows"] = [result_to_dict(r) for r in result.results]
    return summary


def write_json(summary: dict[str, Any], output_path: Path) -> None:
    """Write a summary document as indented JSON."""
    with open(output_path, "w") as f:
        json.dump(summary, f, indent=2)


def format_report(file_name: str, result: ScanResult) -> str:
    """Human-readable region table."""
    lines = [
        f"{'='*70}",
        f"  {file_name}: {result.length} bytes, window 0x{result.window_size:x}, "
        f"{len(result.regions)} regions",
        f"{'='*70}",
    ]
    if not result.regions:
        lines.append("  (empty)")
        return "\n".join(lines)

    lines.append(
        f"  {'Start':>10} {'End':>10} {'Size':>10} {'Label':<16} "
        f"{'Win':>5} {'Agree':>6} {'BiKL':>7} {'TriKL':>7}"
    )
    lines.append(f"  {'-'*10} {'-'*10} {'-'*10} {'-'*16} {'-'*5} {'-'*6} {'-'*7} {'-'*7}")

    for region in result.regions:
        conf = region.confidence
        bi = f"{conf.mean_bigram_score:7.3f}" if conf.mean_bigram_score is not None else f"{'-':>7}"
        tri = f"{conf.mean_trigram_score:7.3f}" if conf.mean_trigram_score is not None else f"{'-':>7}"
        marker = "" if region.is_code else " *"
        lines.append(
            f"  0x{region.start_offset:08x} 0x{region.end_offset:08x} {region.size:>10} "
            f"{region.category:<16} {conf.window_count:>5} "
            f"{100 * conf.agreement_ratio:5.0f}% {bi} {tri}{marker}"
        )

    code_bytes = sum(r.size for r in result.code_regions)
    lines.append("")
    lines.append(
        f"  Code: {code_bytes}/{result.length} bytes "
        f"({100 * code_bytes / result.length:.1f}%), "
        f"labels: {', '.join(result.labels()) or 'none'}"
    )
    return "\n".join(lines)
