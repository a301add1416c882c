from __future__ import annotations

import math
import re
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Protocol

import numpy as np
import rasterio
from rasterio.errors import RasterioError

from .errors import ElevationUnavailable
from .logging_utils import log_event, log_warning
from .settings import settings

Cell = tuple[int, int]

SRTM_VOID = -32768.0
_TILE_NAME_RE = re.compile(r"^([NS])(\d{1,2})([EW])(\d{1,3})\.(hgt|tif|tiff)$", re.IGNORECASE)


def cell_for(lat: float, lon: float) -> Cell:
    return (int(math.floor(lat)), int(math.floor(lon)))


def tile_name(cell: Cell) -> str:
    lat, lon = cell
    ns = "N" if lat >= 0 else "S"
    ew = "E" if lon >= 0 else "W"
    return f"{ns}{abs(lat):02d}{ew}{abs(lon):03d}"


def parse_tile_name(name: str) -> Cell | None:
    match = _TILE_NAME_RE.match(name)
    if match is None:
        return None
    ns, lat_raw, ew, lon_raw, _ext = match.groups()
    lat = int(lat_raw) * (1 if ns.upper() == "N" else -1)
    lon = int(lon_raw) * (1 if ew.upper() == "E" else -1)
    if not (-90 <= lat < 90 and -180 <= lon < 180):
        return None
    return (lat, lon)


@dataclass(frozen=True, eq=False)
class ElevationTile:
    """Regular lat/lon sample grid. Row 0 is the northern edge, column 0 the western edge."""

    name: str
    lat_max: float
    lon_min: float
    lat_span: float
    lon_span: float
    values: Any
    nodata: float | None = SRTM_VOID

    @property
    def rows(self) -> int:
        return int(self.values.shape[0])

    @property
    def cols(self) -> int:
        return int(self.values.shape[1])

    @property
    def lat_min(self) -> float:
        return self.lat_max - self.lat_span

    @property
    def lon_max(self) -> float:
        return self.lon_min + self.lon_span

    def covers(self, lat: float, lon: float) -> bool:
        return self.lat_min <= lat <= self.lat_max and self.lon_min <= lon <= self.lon_max

    def sample(self, lat: float, lon: float) -> float:
        """Bilinear interpolation; NaN outside the tile or next to a no-data sample."""
        if not self.covers(lat, lon):
            return math.nan
        row_f = ((self.lat_max - lat) / self.lat_span) * (self.rows - 1)
        col_f = ((lon - self.lon_min) / self.lon_span) * (self.cols - 1)
        row_f = min(float(self.rows - 1), max(0.0, row_f))
        col_f = min(float(self.cols - 1), max(0.0, col_f))

        r0 = int(math.floor(row_f))
        c0 = int(math.floor(col_f))
        ty = row_f - r0
        tx = col_f - c0
        # Zero-weight neighbours are not read, so a void next to a sample line does not leak onto it.
        r1 = r0 if ty == 0.0 else min(self.rows - 1, r0 + 1)
        c1 = c0 if tx == 0.0 else min(self.cols - 1, c0 + 1)

        q11 = float(self.values[r0, c0])
        q21 = float(self.values[r0, c1])
        q12 = float(self.values[r1, c0])
        q22 = float(self.values[r1, c1])
        if self.nodata is not None:
            nodata = float(self.nodata)
            if any(abs(v - nodata) <= 1e-6 for v in (q11, q21, q12, q22)):
                return math.nan
        if not all(math.isfinite(v) for v in (q11, q21, q12, q22)):
            return math.nan

        top = q11 + ((q21 - q11) * tx)
        bottom = q12 + ((q22 - q12) * tx)
        return top + ((bottom - top) * ty)


class TileSource(Protocol):
    def cells(self) -> set[Cell]: ...

    def read(self, cell: Cell) -> ElevationTile: ...


def read_hgt(path: Path, cell: Cell) -> ElevationTile:
    raw = np.fromfile(path, dtype=">i2")
    size = int(math.isqrt(int(raw.size)))
    if size < 2 or size * size != raw.size:
        raise ValueError(f"{path.name} holds {raw.size} samples, not a square grid")
    lat, lon = cell
    return ElevationTile(
        name=tile_name(cell),
        lat_max=float(lat + 1),
        lon_min=float(lon),
        lat_span=1.0,
        lon_span=1.0,
        values=raw.reshape(size, size),
        nodata=SRTM_VOID,
    )


def read_geotiff(path: Path, cell: Cell) -> ElevationTile:
    with rasterio.open(path) as ds:
        band = ds.read(1)
        transform = ds.transform
        nodata = float(ds.nodata) if ds.nodata is not None else None
        height = int(ds.height)
        width = int(ds.width)
    if height < 2 or width < 2:
        raise ValueError(f"{path.name} is smaller than 2x2 samples")
    # Sample positions are pixel centres.
    lon_min = transform.c + (transform.a / 2.0)
    lat_max = transform.f + (transform.e / 2.0)
    return ElevationTile(
        name=tile_name(cell),
        lat_max=float(lat_max),
        lon_min=float(lon_min),
        lat_span=float(abs(transform.e) * (height - 1)),
        lon_span=float(transform.a * (width - 1)),
        values=band,
        nodata=nodata,
    )


class SrtmDirectorySource:
    """Tiles named by their south-west corner, e.g. ``N48E009.hgt`` or ``S01W073.tif``."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._paths: dict[Cell, Path] = {}
        if self.directory.is_dir():
            for path in sorted(self.directory.iterdir()):
                if not path.is_file():
                    continue
                cell = parse_tile_name(path.name)
                if cell is None:
                    continue
                # .hgt wins when both encodings of a cell are present.
                if cell in self._paths and self._paths[cell].suffix.lower() == ".hgt":
                    continue
                self._paths[cell] = path
        else:
            log_warning("elevation_directory_missing", directory=str(self.directory))

    def cells(self) -> set[Cell]:
        return set(self._paths)

    def path_for(self, cell: Cell) -> Path | None:
        return self._paths.get(cell)

    def read(self, cell: Cell) -> ElevationTile:
        path = self._paths[cell]
        if path.suffix.lower() == ".hgt":
            return read_hgt(path, cell)
        return read_geotiff(path, cell)


class ElevationGrid:
    """Point elevation queries over lazily loaded tiles.

    Tiles are read on first use and kept in a bounded LRU cache. Loads are
    serialised per tile, so concurrent queries for the same cell trigger a
    single read.
    """

    def __init__(self, source: TileSource, *, cache_slots: int | None = None) -> None:
        self.source = source
        self._cells = frozenset(source.cells())
        self._broken: set[Cell] = set()
        self._guard = threading.Lock()
        self._tile_locks: dict[Cell, threading.Lock] = {}
        slots = int(cache_slots if cache_slots is not None else settings.elevation_cache_slots)
        self._load = lru_cache(maxsize=max(1, slots))(self._read_tile)

    @classmethod
    def load(cls, tile_source: TileSource, *, cache_slots: int | None = None) -> "ElevationGrid":
        grid = cls(tile_source, cache_slots=cache_slots)
        log_event("elevation_tiles_registered", tiles=len(grid._cells))
        return grid

    @classmethod
    def from_directory(cls, directory: str | Path, *, cache_slots: int | None = None) -> "ElevationGrid":
        return cls.load(SrtmDirectorySource(directory), cache_slots=cache_slots)

    @property
    def cells(self) -> frozenset[Cell]:
        return self._cells

    @property
    def cache_slots(self) -> int:
        return int(self._load.cache_info().maxsize or 1)

    def cache_info(self) -> Any:
        return self._load.cache_info()

    def _read_tile(self, cell: Cell) -> ElevationTile:
        tile = self.source.read(cell)
        log_event("elevation_tile_loaded", tile=tile.name, rows=tile.rows, cols=tile.cols)
        return tile

    def _tile(self, cell: Cell) -> ElevationTile | None:
        with self._guard:
            if cell not in self._cells or cell in self._broken:
                return None
            lock = self._tile_locks.setdefault(cell, threading.Lock())
        with lock:
            try:
                return self._load(cell)
            except (OSError, ValueError, RasterioError) as exc:
                with self._guard:
                    self._broken.add(cell)
                log_warning("elevation_tile_unreadable", tile=tile_name(cell), error=str(exc))
                return None

    def _candidate_cells(self, lat: float, lon: float) -> list[Cell]:
        primary = cell_for(lat, lon)
        lat_options = [primary[0]]
        lon_options = [primary[1]]
        # Points on a cell edge are also covered by the neighbour's edge samples.
        if lat == primary[0]:
            lat_options.append(primary[0] - 1)
        if lon == primary[1]:
            lon_options.append(primary[1] - 1)
        return [(la, lo) for la in lat_options for lo in lon_options]

    def elevation_at(self, lat: float, lon: float) -> float:
        void_tile: str | None = None
        broken_tile: str | None = None
        for cell in self._candidate_cells(lat, lon):
            tile = self._tile(cell)
            if tile is None:
                if cell in self._broken:
                    broken_tile = broken_tile or tile_name(cell)
                continue
            if not tile.covers(lat, lon):
                continue
            value = tile.sample(lat, lon)
            if math.isnan(value):
                # A neighbour sharing this edge may still hold a valid sample.
                void_tile = void_tile or tile.name
                continue
            return value
        if void_tile is not None:
            raise ElevationUnavailable.nodata(lat=lat, lon=lon, tile=void_tile)
        if broken_tile is not None:
            raise ElevationUnavailable.tile_malformed(lat=lat, lon=lon, tile=broken_tile)
        raise ElevationUnavailable.tile_missing(lat=lat, lon=lon, tile=tile_name(cell_for(lat, lon)))

    def warm(self, cells: Iterable[Cell], *, workers: int | None = None) -> int:
        """Load the given tiles ahead of queries; returns how many are now cached."""
        wanted = sorted({cell for cell in cells if cell in self._cells})
        if not wanted:
            return 0
        max_workers = max(1, int(workers if workers is not None else settings.elevation_workers))
        max_workers = min(max_workers, len(wanted), self.cache_slots)
        loaded = 0
        if max_workers == 1:
            for cell in wanted:
                if self._tile(cell) is not None:
                    loaded += 1
            return loaded
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(self._tile, cell) for cell in wanted]
            for fut in as_completed(futures):
                if fut.result() is not None:
                    loaded += 1
        return loaded
