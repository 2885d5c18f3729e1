#!/usr/bin/env python3
"""
Command line interface for the worm feature detectors.

Usage:
    wormfeatures head --centroids centroids.json --imsize 512 512 --out head_pos.json
    wormfeatures difficulty-hsn-nr --hsn hsn.json --nr nr.json --pairs 0:5 0:10
    wormfeatures validate head_pos.json hsn.json

Subcommands:
    head                Head detection over every time point of a centroid file
    difficulty-hsn-nr   Landmark-distance difficulty for time-point pairs
    validate            Validate head-position / landmark JSON files
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np

from wormfeatures.io.stores import HeadPositionStore, LandmarkStore
from wormfeatures.processing.batch import run_head_detection, score_hsn_nr_pairs
from wormfeatures.utils.config import DifficultyConfig, HeadConfig, load_config
from wormfeatures.utils.json_utils import atomic_json_dump
from wormfeatures.utils.logging import get_logger, log_parameters, setup_logging
from wormfeatures.utils.schemas import validate_json_file, HeadPositionFile, LandmarkFile

def _parse_pair(text: str) -> Tuple[int, int]:
    try:
        t1, t2 = text.split(":")
        return int(t1), int(t2)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected T1:T2, got {text!r}")


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""

    parser = argparse.ArgumentParser(
        prog="wormfeatures",
        description="Head, landmark and registration-difficulty features for worm imaging",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Head positions for every time point
  wormfeatures head --centroids centroids.json --imsize 512 512 33 --out head_pos.json

  # Landmark difficulty, moving frames from a second session
  wormfeatures difficulty-hsn-nr --hsn hsn.json --nr nr.json --pairs 0:3 --max-fixed-t 100
""",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress most output",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        help="Write logs to file",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Parameter file (JSON) merged over the defaults",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # === HEAD command ===
    head_parser = subparsers.add_parser("head", help="Find the head in every time point")
    head_parser.add_argument(
        "--centroids", type=Path, required=True,
        help="JSON object mapping time point to a list of [x, y(, z)] centroids",
    )
    head_parser.add_argument(
        "--imsize", type=int, nargs="+", required=True, metavar="N",
        help="Image size X Y [Z]",
    )
    head_parser.add_argument("--out", "-o", type=Path, required=True, help="Head-position file")
    head_parser.add_argument("--figure-dir", type=Path, help="Write diagnostic figures here")
    head_parser.add_argument("--progress", action="store_true", help="Show a progress bar")

    # === DIFFICULTY-HSN-NR command ===
    diff_parser = subparsers.add_parser(
        "difficulty-hsn-nr",
        help="Registration difficulty from HSN and nerve-ring displacement",
    )
    diff_parser.add_argument("--hsn", type=Path, required=True, help="HSN landmark file")
    diff_parser.add_argument("--nr", type=Path, required=True, help="Nerve-ring landmark file")
    diff_parser.add_argument(
        "--pairs", type=_parse_pair, nargs="+", required=True, metavar="T1:T2",
        help="Fixed:moving frame pairs",
    )
    diff_parser.add_argument("--max-fixed-t", type=int, help="Frame offset of the moving dataset")
    diff_parser.add_argument("--out", "-o", type=Path, help="Write scores as JSON (default: stdout)")

    # === VALIDATE command ===
    validate_parser = subparsers.add_parser("validate", help="Validate output JSON files")
    validate_parser.add_argument("files", type=Path, nargs="+", help="Files to validate")

    return parser


def _load_centroids(path: Path) -> Dict[int, np.ndarray]:
    with open(path, 'r') as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object keyed by time point")
    return {int(t): np.asarray(c, dtype=np.float64) for t, c in data.items()}


def cmd_head(args: argparse.Namespace, config: dict) -> int:
    """Execute the head command."""
    logger = get_logger(__name__)
    head_config = HeadConfig.from_config(config)
    centroids = _load_centroids(args.centroids)

    log_parameters(logger, {
        "centroids": args.centroids,
        "time_points": len(centroids),
        "imsize": tuple(args.imsize),
        "tf": head_config.tf,
        "max_d": head_config.max_d,
        "out": args.out,
    })

    figure_sink = None
    if args.figure_dir is not None:
        from wormfeatures.reporting.figures import CurveFigureSink
        figure_sink = CurveFigureSink(args.figure_dir)

    results = run_head_detection(
        centroids, args.imsize, head_config,
        store=HeadPositionStore(args.out),
        figure_sink=figure_sink,
        progress=args.progress,
    )
    flagged = sum(not r.is_clean for r in results.values())
    logger.info("Wrote %d head position(s) to %s (%d flagged)", len(results), args.out, flagged)
    return 0


def cmd_difficulty_hsn_nr(args: argparse.Namespace, config: dict) -> int:
    """Execute the difficulty-hsn-nr command."""
    logger = get_logger(__name__)
    scores = score_hsn_nr_pairs(
        args.pairs,
        LandmarkStore(args.hsn, "hsn"),
        LandmarkStore(args.nr, "nerve_ring"),
        DifficultyConfig.from_config(config),
        max_fixed_t=args.max_fixed_t,
    )
    output = [
        {'fixed': t1, 'moving': t2, 'difficulty': s.value, **s.metrics}
        for (t1, t2), s in scores.items()
    ]
    if args.out is not None:
        atomic_json_dump(output, args.out, indent=2)
        logger.info("Wrote %d score(s) to %s", len(output), args.out)
    else:
        json.dump(output, sys.stdout, indent=2)
        sys.stdout.write("\n")
    return 0 if len(scores) == len(args.pairs) else 1


def cmd_validate(args: argparse.Namespace) -> int:
    """Execute the validate command."""
    logger = get_logger(__name__)

    errors = 0
    for file_path in args.files:
        schema = LandmarkFile if _is_landmark_file(file_path) else HeadPositionFile
        try:
            validate_json_file(file_path, schema, raise_on_error=True)
            logger.info("OK %s: valid %s", file_path, schema.__name__)
        except (FileNotFoundError, ValueError) as e:
            logger.error("FAIL %s: %s", file_path, e)
            errors += 1

    if errors:
        logger.error("%d file(s) failed validation", errors)
        return 1
    logger.info("All %d file(s) valid", len(args.files))
    return 0


def _is_landmark_file(path: Path) -> bool:
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError):
        return False
    return isinstance(data, dict) and 'landmark' in data


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    level = "DEBUG" if args.verbose else ("WARNING" if args.quiet else "INFO")
    setup_logging(level=level, log_file=args.log_file)

    if args.command == "validate":
        return cmd_validate(args)
    if args.command is None:
        parser.print_help()
        return 0

    config = load_config(args.config)
    if args.command == "head":
        return cmd_head(args, config)
    elif args.command == "difficulty-hsn-nr":
        return cmd_difficulty_hsn_nr(args, config)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
