from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .elevation import ElevationGrid
from .graph_builder import GraphBuilder
from .logging_utils import log_event
from .map_records import iter_map_records, prefetch_records
from .models import BuildReport, Graph, RawRecord
from .serializer import write_graph, write_graph_meta
from .settings import settings


@dataclass(frozen=True)
class ExtractionResult:
    graph: Graph
    report: BuildReport
    output: Path | None
    meta: Path | None
    elapsed_ms: float

    def summary(self) -> dict[str, Any]:
        return {
            **self.report.as_dict(),
            "output": str(self.output) if self.output is not None else None,
            "meta": str(self.meta) if self.meta is not None else None,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }


def _records(source: str | Path | bytes, *, file_format: str | None, prefetch: int) -> Iterable[RawRecord]:
    records = iter_map_records(source, file_format=file_format)
    if prefetch > 0:
        return prefetch_records(records, maxsize=prefetch)
    return records


def extract_graph(
    source: str | Path | bytes,
    *,
    elevation: ElevationGrid | None = None,
    builder: GraphBuilder | None = None,
    file_format: str | None = None,
    prefetch: int | None = None,
) -> tuple[Graph, BuildReport]:
    """Parse, build and elevate. MalformedInput propagates; nothing is written."""
    queue_size = settings.reader_prefetch_queue if prefetch is None else max(0, int(prefetch))
    records = _records(source, file_format=file_format, prefetch=queue_size)
    return (builder or GraphBuilder()).build(records, elevation=elevation)


def run_extraction(
    source: str | Path,
    output: str | Path | None,
    *,
    srtm_dir: str | Path | None = None,
    compress: bool | None = None,
    builder: GraphBuilder | None = None,
    prefetch: int | None = None,
) -> ExtractionResult:
    started = time.monotonic()
    tile_dir = str(srtm_dir if srtm_dir is not None else settings.srtm_dir).strip()
    elevation = ElevationGrid.from_directory(tile_dir) if tile_dir else None

    graph, report = extract_graph(source, elevation=elevation, builder=builder, prefetch=prefetch)

    out_path: Path | None = None
    meta_path: Path | None = None
    if output is not None:
        gz = settings.graph_compress if compress is None else compress
        # A .gz suffix always compresses.
        out_path = write_graph(graph, output, compress=gz or Path(output).suffix.lower() == ".gz")
        meta_path = write_graph_meta(out_path, report, source=str(source), elevation_source=tile_dir or None)

    result = ExtractionResult(
        graph=graph,
        report=report,
        output=out_path,
        meta=meta_path,
        elapsed_ms=(time.monotonic() - started) * 1000.0,
    )
    log_event("extraction_completed", **result.summary())
    return result
