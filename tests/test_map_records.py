from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from cyclegraph.errors import MalformedInput
from cyclegraph.map_records import detect_format, iter_map_records, prefetch_records
from cyclegraph.models import RawNode, RawRecord, RawRelation, RawWay

MAP_XML = """<?xml version='1.0' encoding='UTF-8'?>
<osm version="0.6" generator="cyclegraph-tests">
  <node id="1" version="1" lat="48.0000000" lon="9.0000000"/>
  <node id="2" version="1" lat="48.0010000" lon="9.0000000"/>
  <node id="3" version="1" lat="48.0020000" lon="9.0010000">
    <tag k="barrier" v="gate"/>
  </node>
  <way id="10" version="1">
    <nd ref="1"/>
    <nd ref="2"/>
    <nd ref="3"/>
    <tag k="highway" v="cycleway"/>
    <tag k="surface" v="asphalt"/>
  </way>
  <relation id="100" version="1">
    <member type="way" ref="10" role=""/>
    <tag k="route" v="bicycle"/>
    <tag k="type" v="route"/>
  </relation>
</osm>
"""


def _write(tmp_path: Path, name: str, text: str) -> Path:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


def test_detect_format_from_suffixes() -> None:
    assert detect_format(Path("germany-latest.osm.pbf")) == "pbf"
    assert detect_format(Path("extract.osm")) == "osm"
    assert detect_format(Path("extract.osm.bz2")) == "osm.bz2"
    assert detect_format(Path("extract.opl")) == "opl"
    with pytest.raises(MalformedInput):
        detect_format(Path("extract.csv"))


def test_reads_nodes_ways_and_relations_in_order(tmp_path: Path) -> None:
    records = list(iter_map_records(_write(tmp_path, "small.osm", MAP_XML)))

    nodes = [r for r in records if isinstance(r, RawNode)]
    ways = [r for r in records if isinstance(r, RawWay)]
    relations = [r for r in records if isinstance(r, RawRelation)]
    assert [n.id for n in nodes] == [1, 2, 3]
    assert nodes[2].lat == pytest.approx(48.002)
    assert nodes[2].lon == pytest.approx(9.001)
    assert len(ways) == 1
    assert ways[0].id == 10
    assert ways[0].node_ids == (1, 2, 3)
    assert ways[0].tags == {"highway": "cycleway", "surface": "asphalt"}
    assert [r.id for r in relations] == [100]
    assert relations[0].tags["route"] == "bicycle"


def test_reads_from_bytes_with_explicit_format() -> None:
    records = list(iter_map_records(MAP_XML.encode("utf-8"), file_format="osm"))
    assert sum(isinstance(r, RawNode) for r in records) == 3
    with pytest.raises(MalformedInput):
        list(iter_map_records(MAP_XML.encode("utf-8")))


def test_stream_is_lazy(tmp_path: Path) -> None:
    stream = iter_map_records(_write(tmp_path, "small.osm", MAP_XML))
    assert isinstance(stream, Iterator)
    first = next(stream)
    assert isinstance(first, RawNode) and first.id == 1
    stream.close()


def test_empty_map_yields_no_records(tmp_path: Path) -> None:
    path = _write(tmp_path, "empty.osm", '<?xml version="1.0"?>\n<osm version="0.6"></osm>\n')
    assert list(iter_map_records(path)) == []


def test_missing_file_is_malformed_input(tmp_path: Path) -> None:
    with pytest.raises(MalformedInput) as exc_info:
        list(iter_map_records(tmp_path / "nope.osm.pbf"))
    assert exc_info.value.reason_code == "map_input_missing"


def test_corrupt_container_aborts_with_malformed_input(tmp_path: Path) -> None:
    path = tmp_path / "broken.osm.pbf"
    path.write_bytes(b"\x00\x00\x00\x0dnot-a-real-blob-header" + bytes(range(256)) * 4)
    with pytest.raises(MalformedInput) as exc_info:
        list(iter_map_records(path))
    assert exc_info.value.reason_code == "map_input_malformed"


def test_truncated_xml_aborts_with_malformed_input(tmp_path: Path) -> None:
    path = _write(tmp_path, "truncated.osm", MAP_XML[: len(MAP_XML) // 2])
    with pytest.raises(MalformedInput):
        list(iter_map_records(path))


def test_node_without_location_is_malformed(tmp_path: Path) -> None:
    text = '<?xml version="1.0"?>\n<osm version="0.6">\n  <node id="7" version="1"/>\n</osm>\n'
    with pytest.raises(MalformedInput) as exc_info:
        list(iter_map_records(_write(tmp_path, "noloc.osm", text)))
    assert exc_info.value.details == {"node_id": 7}


def test_prefetch_preserves_order_and_content(tmp_path: Path) -> None:
    path = _write(tmp_path, "small.osm", MAP_XML)
    direct = list(iter_map_records(path))
    prefetched = list(prefetch_records(iter_map_records(path), maxsize=1))
    assert prefetched == direct


def test_prefetch_reraises_producer_errors() -> None:
    def _records() -> Iterator[RawRecord]:
        yield RawNode(id=1, lat=0.0, lon=0.0)
        raise MalformedInput.map_input("block 2 is corrupt")

    stream = prefetch_records(_records(), maxsize=4)
    assert next(stream) == RawNode(id=1, lat=0.0, lon=0.0)
    with pytest.raises(MalformedInput, match="block 2 is corrupt"):
        next(stream)


def test_prefetch_consumer_can_stop_early() -> None:
    produced: list[int] = []

    def _records() -> Iterator[RawRecord]:
        for i in range(10_000):
            produced.append(i)
            yield RawNode(id=i, lat=0.0, lon=0.0)

    stream = prefetch_records(_records(), maxsize=2)
    assert next(stream).id == 0
    stream.close()
    assert len(produced) < 10_000
