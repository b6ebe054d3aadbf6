"""coderec: locate machine code of known ISAs inside binary files."""

import argparse
import json
import logging
import sys
from pathlib import Path

from .config import ScanConfig, load_config
from .corpus import CorpusError, load_corpus
from .report import format_report, scan_to_dict, write_json
from .scheduler import ScanError, scan

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coderec",
        description="Identify machine code regions in binary files",
    )
    parser.add_argument(
        "files",
        nargs="*",
        type=Path,
        help="Files to analyze",
    )
    parser.add_argument(
        "--corpus",
        required=True,
        help="Corpus directory, YAML manifest or .npz archive",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML scan configuration",
    )
    parser.add_argument(
        "--jobs", "-j",
        type=int,
        default=None,
        help="Worker threads (default: CPU count)",
    )
    parser.add_argument("--window-min", type=int, default=None, help="Smallest window size")
    parser.add_argument("--window-max", type=int, default=None, help="Largest window size")
    parser.add_argument(
        "--big-file",
        action="store_true",
        help="Region-summary output shape for large files",
    )
    parser.add_argument(
        "--format", "-f",
        choices=["json", "text"],
        default="json",
        help="Output format",
    )
    parser.add_argument(
        "--windows",
        action="store_true",
        help="Include per-window results in JSON output",
    )
    parser.add_argument(
        "--output", "-o",
        type=Path,
        default=None,
        help="Also write all summaries to this JSON file",
    )
    parser.add_argument(
        "--save-corpus",
        type=Path,
        default=None,
        help="Write the loaded corpus to an .npz archive",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("--debug", "-d", action="store_true", help="Debug output")
    verbosity.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    verbosity.add_argument("--quiet", "-q", action="store_true", help="Errors only")
    return parser


def _log_level(args: argparse.Namespace) -> int:
    if args.debug:
        return logging.DEBUG
    if args.verbose:
        return logging.INFO
    if args.quiet:
        return logging.ERROR
    return logging.WARNING


def _scan_config(args: argparse.Namespace) -> ScanConfig:
    config = load_config(args.config) if args.config else ScanConfig()
    if args.jobs is not None:
        config.parallelism = args.jobs
    if args.window_min is not None:
        config.window_min = args.window_min
    if args.window_max is not None:
        config.window_max = args.window_max
    if args.big_file:
        config.big_region_mode = True
    return config.validate()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=_log_level(args),
        format="%(asctime)s %(levelname)-5s %(message)s",
        datefmt="%H:%M:%S",
    )

    if not args.files and not args.save_corpus:
        parser.error("no input files")

    try:
        config = _scan_config(args)
    except (OSError, ValueError) as e:
        log.error("Invalid configuration: %s", e)
        return 2

    try:
        corpus = load_corpus(args.corpus, smoothing=config.smoothing)
    except CorpusError as e:
        log.error("Cannot load corpus: %s", e)
        return 2

    log.info("Corpus size: %d", len(corpus))
    if args.save_corpus:
        corpus.save(args.save_corpus)

    summaries = []
    for path in args.files:
        try:
            data = path.read_bytes()
        except OSError as e:
            log.error("Could not open %s: %s", path, e)
            return 1

        try:
            result = scan(data, corpus, config)
        except ScanError as e:
            log.error("Scan of %s failed: %s", path, e)
            return 1

        summary = scan_to_dict(str(path), result, config, include_windows=args.windows)
        summaries.append(summary)
        if args.format == "json":
            print(json.dumps(summary))
        else:
            print(format_report(str(path), result))

    if args.output:
        try:
            write_json({"files": summaries}, args.output)
        except OSError as e:
            log.error("Could not write %s: %s", args.output, e)
            return 1
        log.info("Summary JSON written to %s", args.output)

    return 0


if __name__ == "__main__":
    sys.exit(main())
