"""wrench_demo.py — ISS Multi-Tool Wrench → OpenSCAD module demo.

Downloads the Wrench.stl from NASA's public 3D-printing archive (the first
object ever 3D-printed in space, Dec 2014) and converts it into an OpenSCAD
module, once on a single thread and once on a thread pool, checking that both
runs produce the same source.

Usage
-----
python examples/wrench_demo.py                  # writes examples/wrench.scad
python examples/wrench_demo.py --decimals 6     # shorter numbers
python examples/wrench_demo.py --workers 8 --timeout 5

Outputs
-------
wrench.scad — ``module wrench(scale = 1)`` plus ``wrench_min()``/``wrench_max()``
"""

from __future__ import annotations

import argparse
import sys
import time
import urllib.request
from pathlib import Path

# ---------------------------------------------------------------------------
# STL download
# ---------------------------------------------------------------------------
_WRENCH_URL = (
    "https://raw.githubusercontent.com/nasa/NASA-3D-Resources"
    "/master/3D%20Printing/Wrench/Wrench.stl"
)
_EXAMPLES_DIR = Path(__file__).parent
_LOCAL_STL = _EXAMPLES_DIR / "wrench.stl"


def _download_stl(url: str, dest: Path) -> None:
    print(f"Downloading {url} ...", flush=True)
    urllib.request.urlretrieve(url, dest)
    print(f"  Saved to {dest} ({dest.stat().st_size // 1024} KB)", flush=True)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> None:
    parser = argparse.ArgumentParser(description="Wrench STL → OpenSCAD demo")
    parser.add_argument(
        "--stl", type=Path, default=_LOCAL_STL,
        help="Path to STL file (downloaded if not present)"
    )
    parser.add_argument(
        "--decimals", type=int, default=14,
        help="Maximum fractional digits per coordinate (default 14)"
    )
    parser.add_argument(
        "--workers", type=int, default=4,
        help="Threads for the parallel run (default 4)"
    )
    parser.add_argument(
        "--timeout", type=float, default=None,
        help="Aggregation deadline in seconds for the parallel run"
    )
    args = parser.parse_args()

    # --- ensure STL exists ---
    if not args.stl.exists():
        try:
            _download_stl(_WRENCH_URL, args.stl)
        except OSError as exc:
            print(f"ERROR: Could not download STL: {exc}", file=sys.stderr)
            print("Please download manually and pass --stl <path>", file=sys.stderr)
            sys.exit(1)

    from stl2scad import ConversionOptions, StlError, convert_stl

    # --- sequential run ---
    t0 = time.perf_counter()
    try:
        serial = convert_stl(args.stl, ConversionOptions(max_decimal_places=args.decimals))
    except StlError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)
    t_serial = time.perf_counter() - t0

    mesh = serial.mesh
    print(f"{args.stl.name}: {serial.format} STL, {mesh.n_triangles:,} triangles", flush=True)
    print(f"  bounding box min={mesh.bounds.minimum}  max={mesh.bounds.maximum}")
    print(f"  distinct vertices: {len(mesh.deduplicated().points):,} of {len(mesh.points):,}")
    print(f"  sequential: {t_serial:.3f} s")

    # --- parallel run ---
    options = ConversionOptions(
        max_decimal_places=args.decimals,
        workers=args.workers,
        deadline=args.timeout,
        allow_partial=True,
    )
    t0 = time.perf_counter()
    try:
        parallel = convert_stl(args.stl, options)
    except StlError as exc:
        # a deadline that expires before the first chunk leaves nothing to return
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)
    t_parallel = time.perf_counter() - t0
    print(f"  {args.workers} workers: {t_parallel:.3f} s", end="")
    if parallel.partial:
        print(f"  (deadline hit after {parallel.mesh.n_triangles:,} triangles)")
    else:
        same = "identical" if parallel.text == serial.text else "DIFFERENT"
        print(f"  (output {same})")

    out = args.stl.with_suffix(".scad")
    out.write_text(serial.text, encoding="utf-8")
    print(f"Saved OpenSCAD module '{serial.identifier}' to {out}")


if __name__ == "__main__":
    main()
