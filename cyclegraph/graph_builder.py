from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from typing import Literal

from .elevation import Cell, ElevationGrid, cell_for
from .errors import ElevationUnavailable, MissingNodeReference
from .geometry import ascent_m, node_distance_m
from .logging_utils import log_event, log_warning
from .models import BuildReport, Graph, GraphEdge, RawNode, RawRecord, RawRelation, RawWay
from .settings import settings
from .suitability import Suitability, SuitabilityScorer, tag_value

OnewayReversePolicy = Literal["suppress", "downgrade"]

# highway values that never describe a usable segment of the network.
NON_NETWORK_HIGHWAYS: frozenset[str] = frozenset(
    {
        "proposed",
        "construction",
        "abandoned",
        "razed",
        "disused",
        "elevator",
        "corridor",
        "rest_area",
        "services",
        "raceway",
        "bus_stop",
        "emergency_bay",
    }
)
ONEWAY_FORWARD_VALUES: frozenset[str] = frozenset({"yes", "true", "1"})
ONEWAY_REVERSE_VALUES: frozenset[str] = frozenset({"-1", "reverse"})
ONEWAY_NONE_VALUES: frozenset[str] = frozenset({"no", "false", "0"})
CONTRAFLOW_CYCLEWAY_VALUES: frozenset[str] = frozenset({"opposite", "opposite_lane", "opposite_track"})
IMPLIED_ONEWAY_HIGHWAYS: frozenset[str] = frozenset({"motorway"})


def is_network_way(tags: Mapping[str, str]) -> bool:
    highway = tag_value(tags, "highway")
    return bool(highway) and highway not in NON_NETWORK_HIGHWAYS


def oneway_direction(tags: Mapping[str, str]) -> int:
    """Direction a bicycle may ride: 1 forward only, -1 reverse only, 0 both.

    ``oneway:bicycle`` overrides ``oneway`` in either direction.
    """
    for key in ("oneway:bicycle", "oneway"):
        raw = tag_value(tags, key)
        if raw in ONEWAY_FORWARD_VALUES:
            return 1
        if raw in ONEWAY_REVERSE_VALUES:
            return -1
        if raw in ONEWAY_NONE_VALUES:
            return 0
    if tag_value(tags, "junction") in {"roundabout", "circular"}:
        return 1
    if tag_value(tags, "highway") in IMPLIED_ONEWAY_HIGHWAYS:
        return 1
    return 0


def allows_contraflow(tags: Mapping[str, str]) -> bool:
    # A recognised oneway:bicycle value already decided the direction.
    if tag_value(tags, "oneway:bicycle") in ONEWAY_FORWARD_VALUES | ONEWAY_REVERSE_VALUES | ONEWAY_NONE_VALUES:
        return False
    for key in ("cycleway", "cycleway:left", "cycleway:right", "cycleway:both"):
        if tag_value(tags, key) in CONTRAFLOW_CYCLEWAY_VALUES:
            return True
    return False


def contract_consecutive(node_ids: Iterable[int]) -> list[int]:
    out: list[int] = []
    for node_id in node_ids:
        if out and out[-1] == node_id:
            continue
        out.append(node_id)
    return out


class GraphBuilder:
    """Turns a stream of raw map records into a directed multigraph.

    Phase 1 buffers every node coordinate and every network way, because
    containers do not guarantee nodes precede the ways that use them.
    Phase 2 resolves ways against the node table, allocating arena indices on
    first reference, and emits one edge per consecutive node pair.
    """

    def __init__(
        self,
        *,
        scorer: SuitabilityScorer | None = None,
        oneway_reverse_policy: OnewayReversePolicy | None = None,
        keep_forbidden: bool | None = None,
        elevation_fallback_m: float | None = None,
    ) -> None:
        self.scorer = scorer or SuitabilityScorer()
        self.oneway_reverse_policy: OnewayReversePolicy = (
            oneway_reverse_policy or settings.oneway_reverse_policy
        )
        if self.oneway_reverse_policy not in ("suppress", "downgrade"):
            raise ValueError(f"unknown oneway reverse policy {self.oneway_reverse_policy!r}")
        self.keep_forbidden = settings.keep_forbidden_ways if keep_forbidden is None else bool(keep_forbidden)
        self.elevation_fallback_m = (
            float(settings.elevation_fallback_m) if elevation_fallback_m is None else float(elevation_fallback_m)
        )

    def build(
        self,
        records: Iterable[RawRecord],
        *,
        elevation: ElevationGrid | None = None,
    ) -> tuple[Graph, BuildReport]:
        report = BuildReport()
        coords: dict[int, tuple[float, float]] = {}
        ways: list[tuple[RawWay, Suitability]] = []

        for record in records:
            if isinstance(record, RawNode):
                coords[record.id] = (record.lat, record.lon)
                report.nodes_seen += 1
            elif isinstance(record, RawWay):
                report.ways_seen += 1
                if not is_network_way(record.tags):
                    report.ways_filtered += 1
                    continue
                suitability = self.scorer.score(record.tags)
                if suitability == Suitability.FORBIDDEN and not self.keep_forbidden:
                    report.ways_forbidden += 1
                    continue
                ways.append((record, suitability))
            elif isinstance(record, RawRelation):
                report.relations_skipped += 1

        graph = Graph()
        for way, suitability in ways:
            try:
                self._add_way(graph, coords, way, suitability, report)
            except MissingNodeReference as exc:
                report.missing_node_ways += 1
                report.add_warning(str(exc))
                log_warning("way_skipped_missing_node", **(exc.details or {}))
        # The node table is not needed past way resolution.
        coords.clear()

        self._attach_elevation(graph, elevation, report)
        self._apply_ascent(graph)

        report.nodes = graph.node_count
        report.edges = graph.edge_count
        log_event("graph_build_completed", **report.as_dict())
        return graph, report

    def _add_way(
        self,
        graph: Graph,
        coords: Mapping[int, tuple[float, float]],
        way: RawWay,
        suitability: Suitability,
        report: BuildReport,
    ) -> None:
        node_ids = contract_consecutive(way.node_ids)
        # Resolve everything before touching the graph so a skipped way leaves no nodes behind.
        points: list[tuple[int, float, float]] = []
        for node_id in node_ids:
            coord = coords.get(node_id)
            if coord is None:
                raise MissingNodeReference.for_way(way_id=way.id, node_id=node_id)
            points.append((node_id, coord[0], coord[1]))
        if len(points) < 2:
            report.ways_degenerate += 1
            return

        direction = oneway_direction(way.tags)
        contraflow = direction != 0 and allows_contraflow(way.tags)
        forward_class: Suitability | None = suitability
        backward_class: Suitability | None = suitability
        if direction != 0 and not contraflow:
            against = (
                suitability.downgraded() if self.oneway_reverse_policy == "downgrade" else None
            )
            if direction == 1:
                backward_class = against
            else:
                forward_class = against

        indices = [graph.add_node(node_id, lat, lon) for node_id, lat, lon in points]
        for idx in range(1, len(indices)):
            a = graph.nodes[indices[idx - 1]]
            b = graph.nodes[indices[idx]]
            d_m = node_distance_m(a, b)
            if forward_class is not None:
                graph.edges.append(
                    GraphEdge(
                        source=a.index,
                        target=b.index,
                        distance_m=d_m,
                        ascent_m=0.0,
                        suitability=forward_class,
                        way_id=way.id,
                    )
                )
            if backward_class is not None:
                graph.edges.append(
                    GraphEdge(
                        source=b.index,
                        target=a.index,
                        distance_m=d_m,
                        ascent_m=0.0,
                        suitability=backward_class,
                        way_id=way.id,
                    )
                )
        report.ways_kept += 1

    def _attach_elevation(self, graph: Graph, elevation: ElevationGrid | None, report: BuildReport) -> None:
        if elevation is None:
            for node in graph.nodes:
                node.elevation_m = self.elevation_fallback_m
            return

        by_cell: dict[Cell, list[int]] = defaultdict(list)
        for node in graph.nodes:
            by_cell[cell_for(node.lat, node.lon)].append(node.index)

        # Visit cells in cache-sized batches so warmed tiles are not evicted before use.
        cells = sorted(by_cell)
        batch = max(1, elevation.cache_slots)
        for start in range(0, len(cells), batch):
            chunk = cells[start : start + batch]
            elevation.warm(chunk)
            for cell in chunk:
                for index in by_cell[cell]:
                    node = graph.nodes[index]
                    try:
                        node.elevation_m = elevation.elevation_at(node.lat, node.lon)
                    except ElevationUnavailable:
                        node.elevation_m = self.elevation_fallback_m
                        report.elevation_unavailable += 1
        if report.elevation_unavailable:
            log_warning("elevation_fallback_applied", nodes=report.elevation_unavailable)

    def _apply_ascent(self, graph: Graph) -> None:
        nodes = graph.nodes
        edges: list[GraphEdge] = []
        for edge in graph.edges:
            up = ascent_m([nodes[edge.source].elevation_m, nodes[edge.target].elevation_m])  # type: ignore[list-item]
            edges.append(
                GraphEdge(
                    source=edge.source,
                    target=edge.target,
                    distance_m=edge.distance_m,
                    ascent_m=up,
                    suitability=edge.suitability,
                    way_id=edge.way_id,
                )
            )
        graph.edges = edges


def build_graph(
    records: Iterable[RawRecord],
    *,
    elevation: ElevationGrid | None = None,
    scorer: SuitabilityScorer | None = None,
) -> tuple[Graph, BuildReport]:
    return GraphBuilder(scorer=scorer).build(records, elevation=elevation)
