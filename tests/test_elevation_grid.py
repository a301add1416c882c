from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import numpy as np
import pytest
import rasterio
from rasterio.transform import from_origin

from cyclegraph.elevation import (
    SRTM_VOID,
    ElevationGrid,
    ElevationTile,
    SrtmDirectorySource,
    cell_for,
    parse_tile_name,
    tile_name,
)
from cyclegraph.errors import ElevationUnavailable


def _plane(cell: tuple[int, int], size: int = 5) -> np.ndarray:
    # elevation = 1000*lat + 10*lon sampled on the SRTM layout (row 0 north).
    lat0, lon0 = cell
    lats = np.linspace(lat0 + 1, lat0, size)
    lons = np.linspace(lon0, lon0 + 1, size)
    return (1000.0 * lats[:, None]) + (10.0 * lons[None, :])


class FakeTileSource:
    def __init__(self, tiles: dict[tuple[int, int], np.ndarray], *, delay_s: float = 0.0) -> None:
        self.tiles = tiles
        self.delay_s = delay_s
        self.reads: list[tuple[int, int]] = []
        self._lock = threading.Lock()

    def cells(self) -> set[tuple[int, int]]:
        return set(self.tiles)

    def read(self, cell: tuple[int, int]) -> ElevationTile:
        with self._lock:
            self.reads.append(cell)
        if self.delay_s:
            time.sleep(self.delay_s)
        lat, lon = cell
        return ElevationTile(
            name=tile_name(cell),
            lat_max=float(lat + 1),
            lon_min=float(lon),
            lat_span=1.0,
            lon_span=1.0,
            values=self.tiles[cell],
        )


def test_tile_names_round_trip_all_hemispheres() -> None:
    assert tile_name((48, 9)) == "N48E009"
    assert tile_name((-1, -73)) == "S01W073"
    assert parse_tile_name("N48E009.hgt") == (48, 9)
    assert parse_tile_name("s01w073.HGT") == (-1, -73)
    assert parse_tile_name("N48E009.tif") == (48, 9)
    assert parse_tile_name("readme.txt") is None
    assert cell_for(48.5, 9.25) == (48, 9)
    assert cell_for(-0.5, -72.1) == (-1, -73)


def test_bilinear_interpolation_reproduces_a_plane() -> None:
    source = FakeTileSource({(48, 9): _plane((48, 9))})
    grid = ElevationGrid.load(source, cache_slots=2)
    for lat, lon in [(48.0, 9.0), (48.13, 9.77), (48.5, 9.5), (48.999, 9.001), (49.0, 10.0)]:
        assert grid.elevation_at(lat, lon) == pytest.approx((1000.0 * lat) + (10.0 * lon), abs=1e-6)


def test_bilinear_weights_on_single_cell() -> None:
    values = np.array([[10.0, 20.0], [30.0, 40.0]])
    tile = ElevationTile(name="N00E000", lat_max=1.0, lon_min=0.0, lat_span=1.0, lon_span=1.0, values=values)
    assert tile.sample(1.0, 0.0) == pytest.approx(10.0)
    assert tile.sample(0.0, 1.0) == pytest.approx(40.0)
    assert tile.sample(0.5, 0.5) == pytest.approx(25.0)
    assert tile.sample(0.75, 0.25) == pytest.approx(17.5)
    assert np.isnan(tile.sample(1.5, 0.5))


def test_query_on_shared_tile_edge_is_continuous() -> None:
    south = _plane((48, 9))
    north = _plane((49, 9))
    # SRTM tiles repeat their shared edge row.
    assert np.array_equal(south[0, :], north[-1, :])
    both = ElevationGrid(FakeTileSource({(48, 9): south, (49, 9): north}))
    only_south = ElevationGrid(FakeTileSource({(48, 9): south}))
    only_north = ElevationGrid(FakeTileSource({(49, 9): north}))
    for lon in (9.0, 9.1, 9.37, 9.5, 9.99):
        value = both.elevation_at(49.0, lon)
        assert only_south.elevation_at(49.0, lon) == value
        assert only_north.elevation_at(49.0, lon) == value


def test_void_on_shared_edge_is_served_by_neighbour_tile() -> None:
    south = _plane((48, 9))
    north = _plane((49, 9))
    north[-1, 1] = SRTM_VOID
    grid = ElevationGrid(FakeTileSource({(48, 9): south, (49, 9): north}))
    assert grid.elevation_at(49.0, 9.25) == pytest.approx(49_092.5)

    south[0, 1] = SRTM_VOID
    both_void = ElevationGrid(FakeTileSource({(48, 9): south, (49, 9): north}))
    with pytest.raises(ElevationUnavailable) as exc_info:
        both_void.elevation_at(49.0, 9.25)
    assert exc_info.value.reason_code == "elevation_nodata"


def test_corner_point_can_be_served_by_diagonal_neighbour() -> None:
    grid = ElevationGrid(FakeTileSource({(48, 9): _plane((48, 9))}))
    assert grid.elevation_at(49.0, 10.0) == pytest.approx(49_100.0)


def test_continuity_across_cell_interior_lines() -> None:
    grid = ElevationGrid(FakeTileSource({(48, 9): _plane((48, 9), size=7)}))
    eps = 1e-9
    for lat in (48.25, 48.5, 48.75):
        below = grid.elevation_at(lat - eps, 9.3)
        above = grid.elevation_at(lat + eps, 9.3)
        assert abs(above - below) < 1e-3


def test_missing_tile_raises_elevation_unavailable() -> None:
    grid = ElevationGrid(FakeTileSource({(48, 9): _plane((48, 9))}))
    with pytest.raises(ElevationUnavailable) as exc_info:
        grid.elevation_at(52.5, 13.4)
    assert exc_info.value.reason_code == "elevation_tile_missing"
    assert "N52E013" in str(exc_info.value)


def test_void_sample_raises_nodata() -> None:
    values = _plane((48, 9))
    values[2, 2] = SRTM_VOID
    grid = ElevationGrid(FakeTileSource({(48, 9): values}))
    with pytest.raises(ElevationUnavailable) as exc_info:
        grid.elevation_at(48.45, 9.45)
    assert exc_info.value.reason_code == "elevation_nodata"
    # Samples away from the void are still served.
    assert grid.elevation_at(48.05, 9.05) == pytest.approx(48_140.5)


def test_tiles_are_loaded_lazily_and_evicted_lru() -> None:
    tiles = {(48, lon): _plane((48, lon)) for lon in range(9, 13)}
    source = FakeTileSource(tiles)
    grid = ElevationGrid(source, cache_slots=2)
    assert source.reads == []

    grid.elevation_at(48.5, 9.5)
    grid.elevation_at(48.5, 9.6)
    assert source.reads == [(48, 9)]

    grid.elevation_at(48.5, 10.5)
    grid.elevation_at(48.5, 11.5)
    grid.elevation_at(48.5, 9.5)
    assert source.reads == [(48, 9), (48, 10), (48, 11), (48, 9)]
    assert grid.cache_info().currsize == 2


def test_concurrent_queries_load_each_tile_once() -> None:
    source = FakeTileSource({(48, 9): _plane((48, 9)), (48, 10): _plane((48, 10))}, delay_s=0.05)
    grid = ElevationGrid(source, cache_slots=4)
    points = [(48.1 + (i % 7) * 0.1, 9.05 + (i % 2) + (i % 5) * 0.1) for i in range(64)]
    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(lambda p: grid.elevation_at(*p), points))
    assert sorted(source.reads) == [(48, 9), (48, 10)]
    for (lat, lon), value in zip(points, results):
        assert value == pytest.approx((1000.0 * lat) + (10.0 * lon), abs=1e-6)
        assert grid.elevation_at(lat, lon) == value


def test_warm_loads_registered_cells_in_parallel() -> None:
    tiles = {(48, lon): _plane((48, lon)) for lon in range(9, 12)}
    source = FakeTileSource(tiles, delay_s=0.01)
    grid = ElevationGrid(source, cache_slots=8)
    loaded = grid.warm([(48, 9), (48, 10), (48, 11), (10, 10)], workers=3)
    assert loaded == 3
    assert sorted(source.reads) == [(48, 9), (48, 10), (48, 11)]
    grid.elevation_at(48.5, 10.5)
    assert len(source.reads) == 3


def test_srtm_directory_reads_hgt_big_endian(tmp_path: Path) -> None:
    values = np.array(
        [
            [300, 310, 320],
            [200, 210, 220],
            [100, 110, 120],
        ],
        dtype=">i2",
    )
    values.tofile(tmp_path / "N48E009.hgt")
    (tmp_path / "notes.txt").write_text("not a tile", encoding="utf-8")

    source = SrtmDirectorySource(tmp_path)
    assert source.cells() == {(48, 9)}
    grid = ElevationGrid.load(source, cache_slots=1)
    assert grid.elevation_at(49.0, 9.0) == pytest.approx(300.0)
    assert grid.elevation_at(48.0, 10.0) == pytest.approx(120.0)
    assert grid.elevation_at(48.5, 9.5) == pytest.approx(210.0)
    assert grid.elevation_at(48.25, 9.25) == pytest.approx(155.0)


def test_unreadable_hgt_is_reported_as_malformed(tmp_path: Path) -> None:
    (tmp_path / "N48E009.hgt").write_bytes(b"\x00\x01\x02")
    grid = ElevationGrid.from_directory(tmp_path)
    for _ in range(2):
        with pytest.raises(ElevationUnavailable) as exc_info:
            grid.elevation_at(48.5, 9.5)
        assert exc_info.value.reason_code == "elevation_tile_malformed"
        assert exc_info.value.details["tile"] == "N48E009"
    with pytest.raises(ElevationUnavailable) as exc_info:
        grid.elevation_at(52.5, 13.4)
    assert exc_info.value.reason_code == "elevation_tile_missing"


def test_geotiff_tiles_are_read_with_rasterio(tmp_path: Path) -> None:
    values = np.array(
        [
            [500.0, 510.0, 520.0],
            [400.0, -9999.0, 420.0],
            [300.0, 310.0, 320.0],
        ],
        dtype="float32",
    )
    path = tmp_path / "N48E009.tif"
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=3,
        width=3,
        count=1,
        dtype="float32",
        crs="EPSG:4326",
        transform=from_origin(8.75, 49.25, 0.5, 0.5),
        nodata=-9999.0,
    ) as ds:
        ds.write(values, 1)

    grid = ElevationGrid.from_directory(tmp_path)
    assert grid.elevation_at(49.0, 9.0) == pytest.approx(500.0)
    assert grid.elevation_at(48.0, 10.0) == pytest.approx(320.0)
    assert grid.elevation_at(48.75, 9.0) == pytest.approx(450.0)
    with pytest.raises(ElevationUnavailable):
        grid.elevation_at(48.5, 9.5)
