from __future__ import annotations

from dataclasses import dataclass
from typing import Any

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "map_input_malformed",
        "map_input_missing",
        "graph_file_malformed",
        "way_missing_node",
        "elevation_tile_missing",
        "elevation_nodata",
        "elevation_tile_malformed",
        "extraction_failed",
    }
)


@dataclass
class CycleGraphError(ValueError):
    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class MalformedInput(CycleGraphError):
    """Unreadable or corrupt input. Fatal: extraction aborts without output."""

    @classmethod
    def map_input(cls, message: str, **details: Any) -> "MalformedInput":
        return cls(reason_code="map_input_malformed", message=message, details=details or None)

    @classmethod
    def graph_file(cls, message: str, **details: Any) -> "MalformedInput":
        return cls(reason_code="graph_file_malformed", message=message, details=details or None)


class MissingNodeReference(CycleGraphError):
    """A way points at a node id absent from the node table. The way is skipped."""

    @classmethod
    def for_way(cls, *, way_id: int, node_id: int) -> "MissingNodeReference":
        return cls(
            reason_code="way_missing_node",
            message=f"Way {way_id} references missing node {node_id}.",
            details={"way_id": way_id, "node_id": node_id},
        )


class ElevationUnavailable(CycleGraphError):
    """No covering tile, or the tile holds a no-data sample at the query point."""

    @classmethod
    def tile_missing(cls, *, lat: float, lon: float, tile: str) -> "ElevationUnavailable":
        return cls(
            reason_code="elevation_tile_missing",
            message=f"No elevation tile covers ({lat:.6f}, {lon:.6f}); expected {tile}.",
            details={"lat": lat, "lon": lon, "tile": tile},
        )

    @classmethod
    def tile_malformed(cls, *, lat: float, lon: float, tile: str) -> "ElevationUnavailable":
        return cls(
            reason_code="elevation_tile_malformed",
            message=f"Elevation tile {tile} covering ({lat:.6f}, {lon:.6f}) could not be read.",
            details={"lat": lat, "lon": lon, "tile": tile},
        )

    @classmethod
    def nodata(cls, *, lat: float, lon: float, tile: str) -> "ElevationUnavailable":
        return cls(
            reason_code="elevation_nodata",
            message=f"Elevation tile {tile} has no data at ({lat:.6f}, {lon:.6f}).",
            details={"lat": lat, "lon": lon, "tile": tile},
        )


def normalize_reason_code(reason_code: str, *, default: str = "extraction_failed") -> str:
    code = str(reason_code or "").strip()
    if code in FROZEN_REASON_CODES:
        return code
    return default
