from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cyclegraph.errors import CycleGraphError, normalize_reason_code
from cyclegraph.graph_builder import GraphBuilder
from cyclegraph.pipeline import run_extraction


def build(
    *,
    source: Path,
    srtm_dir: Path | None,
    output: Path,
    compress: bool | None = None,
    oneway_reverse_policy: str | None = None,
    keep_forbidden: bool | None = None,
    prefetch: int | None = None,
) -> dict[str, Any]:
    builder = GraphBuilder(
        oneway_reverse_policy=oneway_reverse_policy,  # type: ignore[arg-type]
        keep_forbidden=keep_forbidden,
    )
    result = run_extraction(
        source,
        output,
        srtm_dir=srtm_dir,
        compress=compress,
        builder=builder,
        prefetch=prefetch,
    )
    return {"source": str(source), **result.summary()}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Extract a cycling graph with distance, ascent and suitability weights from OSM + SRTM data.",
    )
    parser.add_argument("source", type=Path, help="OSM map file (.osm.pbf preferred, any osmium format accepted).")
    parser.add_argument("srtm", type=Path, nargs="?", default=None, help="Directory with SRTM tiles (N48E009.hgt).")
    parser.add_argument("output", type=Path, help="Graph file to write; a .gz suffix compresses it.")
    parser.add_argument("-z", "--gzip", action="store_true", help="Gzip the graph file.")
    parser.add_argument(
        "--oneway-reverse",
        choices=("suppress", "downgrade"),
        default=None,
        help="Reverse edges of one-way streets without a contraflow lane (default from ONEWAY_REVERSE_POLICY).",
    )
    parser.add_argument(
        "--keep-forbidden",
        action="store_true",
        default=None,
        help="Keep ways rated forbidden for cycling instead of dropping them.",
    )
    parser.add_argument(
        "--prefetch",
        type=int,
        default=None,
        help="Decode the map on a worker thread with a queue of this many records (0 disables).",
    )
    args = parser.parse_args(argv)
    try:
        report = build(
            source=args.source,
            srtm_dir=args.srtm,
            output=args.output,
            compress=True if args.gzip else None,
            oneway_reverse_policy=args.oneway_reverse,
            keep_forbidden=args.keep_forbidden,
            prefetch=args.prefetch,
        )
    except CycleGraphError as exc:
        print(json.dumps({"error": normalize_reason_code(exc.reason_code), "message": exc.message}), file=sys.stderr)
        return 1
    print(json.dumps(report, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
