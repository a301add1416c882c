from __future__ import annotations

from dataclasses import dataclass, field

from .suitability import Suitability


@dataclass(frozen=True)
class RawNode:
    id: int
    lat: float
    lon: float


@dataclass(frozen=True)
class RawWay:
    id: int
    node_ids: tuple[int, ...]
    tags: dict[str, str] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class RawRelation:
    id: int
    tags: dict[str, str] = field(default_factory=dict, hash=False)


RawRecord = RawNode | RawWay | RawRelation


@dataclass
class GraphNode:
    index: int
    osm_id: int
    lat: float
    lon: float
    elevation_m: float | None = None


@dataclass(frozen=True)
class GraphEdge:
    source: int
    target: int
    distance_m: float
    ascent_m: float
    suitability: Suitability
    # Provenance only; not part of the serialized graph.
    way_id: int = field(default=0, compare=False)


@dataclass
class Graph:
    """Node arena plus directed multigraph edges referencing arena indices."""

    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)
    _index_by_osm_id: dict[int, int] = field(default_factory=dict, repr=False, compare=False)

    def add_node(self, osm_id: int, lat: float, lon: float) -> int:
        existing = self._index_by_osm_id.get(osm_id)
        if existing is not None:
            return existing
        index = len(self.nodes)
        self.nodes.append(GraphNode(index=index, osm_id=osm_id, lat=lat, lon=lon))
        self._index_by_osm_id[osm_id] = index
        return index

    def index_of(self, osm_id: int) -> int | None:
        return self._index_by_osm_id.get(osm_id)

    def node_by_osm_id(self, osm_id: int) -> GraphNode | None:
        index = self._index_by_osm_id.get(osm_id)
        return None if index is None else self.nodes[index]

    def edges_between(self, source_osm_id: int, target_osm_id: int) -> list[GraphEdge]:
        src = self.index_of(source_osm_id)
        dst = self.index_of(target_osm_id)
        if src is None or dst is None:
            return []
        return [edge for edge in self.edges if edge.source == src and edge.target == dst]

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)


# Only the first messages are kept; warning_count still covers every warning.
MAX_REPORTED_WARNINGS = 100


@dataclass
class BuildReport:
    ways_seen: int = 0
    ways_kept: int = 0
    ways_filtered: int = 0
    ways_forbidden: int = 0
    ways_degenerate: int = 0
    missing_node_ways: int = 0
    relations_skipped: int = 0
    nodes_seen: int = 0
    elevation_unavailable: int = 0
    nodes: int = 0
    edges: int = 0
    warnings: list[str] = field(default_factory=list)
    warnings_dropped: int = 0

    def add_warning(self, message: str) -> None:
        if len(self.warnings) < MAX_REPORTED_WARNINGS:
            self.warnings.append(message)
        else:
            self.warnings_dropped += 1

    @property
    def warning_count(self) -> int:
        return len(self.warnings) + self.warnings_dropped

    def as_dict(self) -> dict[str, int | list[str]]:
        return {
            "ways_seen": self.ways_seen,
            "ways_kept": self.ways_kept,
            "ways_filtered": self.ways_filtered,
            "ways_forbidden": self.ways_forbidden,
            "ways_degenerate": self.ways_degenerate,
            "missing_node_ways": self.missing_node_ways,
            "relations_skipped": self.relations_skipped,
            "nodes_seen": self.nodes_seen,
            "elevation_unavailable": self.elevation_unavailable,
            "nodes": self.nodes,
            "edges": self.edges,
            "warning_count": self.warning_count,
            "warnings_dropped": self.warnings_dropped,
        }
