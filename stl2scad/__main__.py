"""Command-line front end: convert STL files to ``.scad`` files.

Usage::

    python -m stl2scad part.stl                     # writes part.scad next to it
    python -m stl2scad a.stl b.stl --out-dir scad/  # several files at once
    python -m stl2scad big.stl --workers 8 --timeout 30 --allow-partial
    python -m stl2scad part.stl --decimals 6 --name bracket -v
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from .convert import ConversionOptions, convert_stl
from .errors import StlError
from .scad import DEFAULT_DECIMALS

logger = logging.getLogger("stl2scad")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stl2scad",
        description="Convert STL meshes into OpenSCAD polyhedron modules.",
    )
    parser.add_argument("inputs", nargs="+", type=Path, help="STL file(s) to convert")
    parser.add_argument(
        "--out-dir", type=Path, default=None,
        help="Directory for the .scad files (default: next to each input)",
    )
    parser.add_argument(
        "--decimals", type=int, default=DEFAULT_DECIMALS,
        help=f"Maximum fractional digits per coordinate (default {DEFAULT_DECIMALS})",
    )
    parser.add_argument(
        "--workers", type=int, default=1,
        help="Aggregation threads; 0 means one per CPU (default 1)",
    )
    parser.add_argument(
        "--timeout", type=float, default=None,
        help="Aggregation deadline in seconds",
    )
    parser.add_argument(
        "--format", choices=("ascii", "binary"), default=None,
        help="Skip format detection",
    )
    parser.add_argument(
        "--name", default=None,
        help="Module name (default: derived from the file name; single input only)",
    )
    parser.add_argument(
        "--verify-size", action="store_true",
        help="Treat 'solid'-headed files of exact binary size as binary",
    )
    parser.add_argument(
        "--allow-partial", action="store_true",
        help="Write a partial module when --timeout expires instead of failing",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def _configure_logging(verbose: bool) -> None:
    # basicConfig affects the root logger; keep it idempotent
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format="%(levelname)s %(name)s: %(message)s",
        )
    elif verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.name is not None and len(args.inputs) > 1:
        parser.error("--name can only be used with a single input file")
    if args.decimals < 0:
        parser.error("--decimals must be >= 0")
    if args.workers < 0:
        parser.error("--workers must be >= 0")
    if args.timeout is not None and args.timeout < 0:
        parser.error("--timeout must be >= 0")

    _configure_logging(args.verbose)

    options = ConversionOptions(
        max_decimal_places=args.decimals,
        deadline=args.timeout,
        identifier=args.name,
        force_format=args.format,
        workers=args.workers or None,
        verify_size=args.verify_size,
        allow_partial=args.allow_partial,
    )
    if args.out_dir is not None:
        args.out_dir.mkdir(parents=True, exist_ok=True)

    failures = 0
    for src in args.inputs:
        if not src.is_file():
            logger.error("%s: no such file", src)
            failures += 1
            continue
        try:
            result = convert_stl(src, options)
        except StlError as exc:
            logger.error("%s", exc)
            failures += 1
            continue

        out_dir = args.out_dir if args.out_dir is not None else src.parent
        dest = out_dir / (src.stem + ".scad")
        dest.write_text(result.text, encoding="utf-8")
        if result.partial:
            logger.warning("%s: partial mesh written to %s", src, dest)
        else:
            logger.info("%s -> %s", src, dest)

    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
