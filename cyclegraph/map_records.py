from __future__ import annotations

import queue
import threading
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

import osmium

from .errors import MalformedInput
from .logging_utils import log_event
from .models import RawNode, RawRecord, RawRelation, RawWay

_SUFFIX_FORMATS: dict[str, str] = {
    ".pbf": "pbf",
    ".osm": "osm",
    ".xml": "osm",
    ".opl": "opl",
    ".o5m": "o5m",
}

_ENTITIES = osmium.osm.NODE | osmium.osm.WAY | osmium.osm.RELATION


def detect_format(path: Path) -> str:
    suffixes = [part.lower() for part in path.suffixes]
    # Compressed XML/OPL keeps its inner suffix: "x.osm.bz2" -> "osm.bz2".
    if len(suffixes) >= 2 and suffixes[-1] in {".gz", ".bz2"} and suffixes[-2] in _SUFFIX_FORMATS:
        return f"{_SUFFIX_FORMATS[suffixes[-2]]}{suffixes[-1]}"
    if suffixes and suffixes[-1] in _SUFFIX_FORMATS:
        return _SUFFIX_FORMATS[suffixes[-1]]
    raise MalformedInput.map_input(f"Cannot infer map format from file name {path.name!r}.", path=str(path))


def _open_processor(source: str | Path | bytes, file_format: str | None) -> osmium.FileProcessor:
    if isinstance(source, (bytes, bytearray, memoryview)):
        if not file_format:
            raise MalformedInput.map_input("A file format is required when reading map data from bytes.")
        data = osmium.io.FileBuffer(bytes(source), file_format)
        return osmium.FileProcessor(data, _ENTITIES)

    path = Path(source)
    if not path.is_file():
        raise MalformedInput(
            reason_code="map_input_missing",
            message=f"Map input {path} does not exist.",
            details={"path": str(path)},
        )
    fmt = file_format or detect_format(path)
    return osmium.FileProcessor(osmium.io.File(str(path), fmt), _ENTITIES)


def _tags(obj: Any) -> dict[str, str]:
    return {str(tag.k): str(tag.v) for tag in obj.tags}


def _convert(obj: Any) -> RawRecord:
    if obj.is_node():
        location = obj.location
        if not location.valid():
            raise MalformedInput.map_input(f"Node {obj.id} has no valid location.", node_id=int(obj.id))
        return RawNode(id=int(obj.id), lat=float(location.lat), lon=float(location.lon))
    if obj.is_way():
        node_ids = tuple(int(ref.ref) for ref in obj.nodes)
        if not node_ids:
            raise MalformedInput.map_input(f"Way {obj.id} has no node references.", way_id=int(obj.id))
        return RawWay(id=int(obj.id), node_ids=node_ids, tags=_tags(obj))
    return RawRelation(id=int(obj.id), tags=_tags(obj))


def iter_map_records(
    source: str | Path | bytes,
    *,
    file_format: str | None = None,
) -> Iterator[RawRecord]:
    """Stream nodes, ways and relations out of an OSM container.

    libosmium decodes the input one block at a time, so only the current
    block is held in memory. The sequence is single-pass. Any decoding error
    aborts the stream with MalformedInput.
    """
    label = "<bytes>" if isinstance(source, (bytes, bytearray, memoryview)) else str(source)
    log_event("map_read_started", source=label)
    counts = {"nodes": 0, "ways": 0, "relations": 0}
    try:
        processor = _open_processor(source, file_format)
        for obj in processor:
            record = _convert(obj)
            if isinstance(record, RawNode):
                counts["nodes"] += 1
            elif isinstance(record, RawWay):
                counts["ways"] += 1
            else:
                counts["relations"] += 1
            yield record
    except MalformedInput:
        raise
    except (RuntimeError, ValueError) as exc:
        raise MalformedInput.map_input(f"Corrupt map input {label}: {exc}", source=label) from exc
    log_event("map_read_completed", source=label, **counts)


_DONE = object()


class _Failure:
    def __init__(self, exc: BaseException) -> None:
        self.exc = exc


def prefetch_records(records: Iterable[RawRecord], *, maxsize: int) -> Iterator[RawRecord]:
    """Drain ``records`` on a worker thread through a bounded queue.

    Overlaps map decoding with graph building. Exceptions from the producer
    are re-raised on the consumer side. Closing the returned generator stops
    the producer at its next put.
    """
    buffer: queue.Queue[object] = queue.Queue(maxsize=max(1, int(maxsize)))
    stop = threading.Event()

    def _put(item: object) -> bool:
        while not stop.is_set():
            try:
                buffer.put(item, timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def _run() -> None:
        try:
            for record in records:
                if not _put(record):
                    return
        except BaseException as exc:  # re-raised by the consumer
            _put(_Failure(exc))
            return
        _put(_DONE)

    worker = threading.Thread(target=_run, name="map-record-prefetch", daemon=True)
    worker.start()
    try:
        while True:
            item = buffer.get()
            if item is _DONE:
                return
            if isinstance(item, _Failure):
                raise item.exc
            yield item  # type: ignore[misc]
    finally:
        stop.set()
        worker.join(timeout=5.0)
