"""Text graph format read by the routing engine.

Layout::

    # Build by: cyclegraph
    # Build on: 2026-10-19T08:00:00Z
    # metrics: distance, HeightAscent, BicycleUnsuitability

    3
    <node count>
    <edge count>
    <index> <osm id> <lat> <lon> <elevation> 0
    ...
    <source index> <target index> <distance> <ascent> <unsuitability> -1 -1
    ...

Comment lines start with ``#`` and blank lines are ignored by readers. Floats
are written with ``repr`` so reading a file back yields identical values.
A ``.gz`` suffix (or ``compress=True``) gzip-compresses the file.
"""

from __future__ import annotations

import gzip
import io
import json
import os
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import IO, Any

from .errors import MalformedInput
from .logging_utils import log_event
from .models import BuildReport, Graph, GraphEdge, GraphNode
from .suitability import Suitability

METRICS: tuple[str, ...] = ("distance", "HeightAscent", "BicycleUnsuitability")
GRAPH_PRODUCER = "cyclegraph"
_GZIP_MAGIC = b"\x1f\x8b"


def _iso_utc_now() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _fmt(value: float) -> str:
    return repr(float(value))


def iter_graph_lines(graph: Graph, *, built_at_utc: str | None = None) -> Iterator[str]:
    yield f"# Build by: {GRAPH_PRODUCER}\n"
    yield f"# Build on: {built_at_utc or _iso_utc_now()}\n"
    yield f"# metrics: {', '.join(METRICS)}\n"
    yield "\n"
    yield f"{len(METRICS)}\n"
    yield f"{graph.node_count}\n"
    yield f"{graph.edge_count}\n"
    for node in graph.nodes:
        elevation = 0.0 if node.elevation_m is None else node.elevation_m
        yield f"{node.index} {node.osm_id} {_fmt(node.lat)} {_fmt(node.lon)} {_fmt(elevation)} 0\n"
    for edge in graph.edges:
        yield (
            f"{edge.source} {edge.target} {_fmt(edge.distance_m)} {_fmt(edge.ascent_m)} "
            f"{_fmt(edge.suitability.unsuitability)} -1 -1\n"
        )


def write_graph_stream(graph: Graph, fh: IO[str], *, built_at_utc: str | None = None) -> None:
    fh.writelines(iter_graph_lines(graph, built_at_utc=built_at_utc))


def write_graph(graph: Graph, output: str | Path, *, compress: bool | None = None) -> Path:
    """Write atomically: the target only appears once the whole graph is on disk."""
    path = Path(output)
    gz = path.suffix.lower() == ".gz" if compress is None else bool(compress)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    try:
        if gz:
            with gzip.open(tmp, "wt", encoding="utf-8", newline="\n") as fh:
                write_graph_stream(graph, fh)
        else:
            with tmp.open("w", encoding="utf-8", newline="\n") as fh:
                write_graph_stream(graph, fh)
        os.replace(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)
    log_event("graph_written", output=str(path), nodes=graph.node_count, edges=graph.edge_count, gzip=gz)
    return path


def write_graph_meta(
    output: str | Path,
    report: BuildReport,
    *,
    source: str,
    elevation_source: str | None = None,
) -> Path:
    path = Path(output)
    meta_path = path.with_name(f"{path.name}.meta.json")
    payload: dict[str, Any] = {
        "producer": GRAPH_PRODUCER,
        "metrics": list(METRICS),
        "source": source,
        "elevation_source": elevation_source,
        "generated_at_utc": _iso_utc_now(),
        "report": report.as_dict(),
    }
    meta_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return meta_path


def _data_lines(fh: IO[str]) -> Iterator[tuple[int, str]]:
    for lineno, raw in enumerate(fh, start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        yield lineno, line


def _next_int(lines: Iterator[tuple[int, str]], what: str) -> int:
    try:
        lineno, line = next(lines)
    except StopIteration:
        raise MalformedInput.graph_file(f"Graph file ends before the {what}.") from None
    try:
        return int(line)
    except ValueError:
        raise MalformedInput.graph_file(f"Line {lineno}: expected {what}, got {line!r}.", line=lineno) from None


def read_graph_stream(fh: IO[str]) -> Graph:
    lines = _data_lines(fh)
    metric_count = _next_int(lines, "metric count")
    if metric_count != len(METRICS):
        raise MalformedInput.graph_file(
            f"Graph file declares {metric_count} metrics, expected {len(METRICS)}.",
            metric_count=metric_count,
        )
    node_count = _next_int(lines, "node count")
    edge_count = _next_int(lines, "edge count")

    graph = Graph()
    for expected_index in range(node_count):
        try:
            lineno, line = next(lines)
        except StopIteration:
            raise MalformedInput.graph_file(f"Graph file holds fewer than {node_count} nodes.") from None
        parts = line.split()
        try:
            if len(parts) != 6:
                raise ValueError(f"expected 6 fields, got {len(parts)}")
            index = int(parts[0])
            if index != expected_index:
                raise ValueError(f"node index {index} out of order")
            node = GraphNode(
                index=index,
                osm_id=int(parts[1]),
                lat=float(parts[2]),
                lon=float(parts[3]),
                elevation_m=float(parts[4]),
            )
        except ValueError as exc:
            raise MalformedInput.graph_file(f"Line {lineno}: bad node record ({exc}).", line=lineno) from None
        if graph.add_node(node.osm_id, node.lat, node.lon) != index:
            raise MalformedInput.graph_file(f"Line {lineno}: duplicate osm id {node.osm_id}.", line=lineno)
        graph.nodes[index].elevation_m = node.elevation_m

    for _ in range(edge_count):
        try:
            lineno, line = next(lines)
        except StopIteration:
            raise MalformedInput.graph_file(f"Graph file holds fewer than {edge_count} edges.") from None
        parts = line.split()
        try:
            if len(parts) != 2 + len(METRICS) + 2:
                raise ValueError(f"expected {2 + len(METRICS) + 2} fields, got {len(parts)}")
            source = int(parts[0])
            target = int(parts[1])
            if not (0 <= source < node_count and 0 <= target < node_count):
                raise ValueError("edge endpoint outside the node list")
            edge = GraphEdge(
                source=source,
                target=target,
                distance_m=float(parts[2]),
                ascent_m=float(parts[3]),
                suitability=Suitability.from_unsuitability(float(parts[4])),
            )
        except ValueError as exc:
            raise MalformedInput.graph_file(f"Line {lineno}: bad edge record ({exc}).", line=lineno) from None
        graph.edges.append(edge)

    trailing = next(lines, None)
    if trailing is not None:
        lineno, line = trailing
        raise MalformedInput.graph_file(f"Line {lineno}: unexpected trailing data {line!r}.", line=lineno)
    return graph


def read_graph(source: str | Path) -> Graph:
    path = Path(source)
    try:
        with path.open("rb") as probe:
            gz = probe.read(2) == _GZIP_MAGIC
        if gz:
            with gzip.open(path, "rt", encoding="utf-8") as fh:
                return read_graph_stream(fh)
        with path.open("r", encoding="utf-8") as fh:
            return read_graph_stream(fh)
    except (OSError, EOFError, UnicodeDecodeError) as exc:
        raise MalformedInput.graph_file(f"Cannot read graph file {path}: {exc}", path=str(path)) from exc


def dumps_graph(graph: Graph, *, built_at_utc: str | None = None) -> str:
    buf = io.StringIO()
    write_graph_stream(graph, buf, built_at_utc=built_at_utc)
    return buf.getvalue()


def loads_graph(text: str) -> Graph:
    return read_graph_stream(io.StringIO(text))
