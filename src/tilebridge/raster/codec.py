# src/tilebridge/raster/codec.py

"""
This module encodes keyed tiles into pyarrow record batches for the host side.

Every record travels as the IPC bytes of a single-row record batch, without
its schema. The schema is shipped once, as a JSON string, next to the
payloads:

    {"fields": [{"name": "col", "type": "int32"}, ...],
     "metadata": {"cellType": "float64", "compression": "none"}}

Tile fields are col:int32, row:int32, [instant:int64], rows:int32, cols:int32
and bands:list<binary> (one raw C-order buffer per band, optionally gzip
compressed). A stitched raster carries no key fields.
"""

import gzip
import json
import logging
from typing import Optional, Iterable, Tuple, List

import numpy as np
import pyarrow as pa

from tilebridge.exceptions import WireFormatError
from tilebridge.keys import LayerType, TileKey, SpatialKey, SpaceTimeKey
from .tile import MultibandTile, parse_cell_type

log = logging.getLogger(__name__)

__all__ = [
    "COMPRESSIONS",
    "record_schema",
    "layer_type_of_schema",
    "schema_to_string",
    "schema_from_string",
    "encode_tile",
    "decode_tile",
    "encode_records",
    "decode_records"
]

COMPRESSIONS = ("none", "gzip")

_TYPES = {
    "int32": pa.int32(),
    "int64": pa.int64(),
    "list<binary>": pa.list_(pa.binary())
}

_KEY_FIELDS = {
    LayerType.SPATIAL: [("col", "int32"), ("row", "int32")],
    LayerType.SPACETIME: [("col", "int32"), ("row", "int32"), ("instant", "int64")]
}

_TILE_FIELDS = [("rows", "int32"), ("cols", "int32"), ("bands", "list<binary>")]

def record_schema(layer_type: Optional[LayerType], cell_type: str, compression: str = "none") -> pa.Schema:
    """
    Schema of one wire record.

    Args:
        layer_type: Key shape of the records, or None for a stitched raster without keys.
        cell_type: Cell type of every tile (see tile.cell_type_name).
        compression: Band payload compression, 'none' or 'gzip'.
    """
    if compression not in COMPRESSIONS:
        raise ValueError(f"Invalid compression '{compression}'. Must be one of: {list(COMPRESSIONS)}")
    parse_cell_type(cell_type)

    fields = (_KEY_FIELDS[layer_type] if layer_type is not None else []) + _TILE_FIELDS
    schema = pa.schema([pa.field(name, _TYPES[type_name], nullable=False) for name, type_name in fields])
    return schema.with_metadata({"cellType": cell_type, "compression": compression})

def _type_name(data_type: pa.DataType) -> str:
    for name, candidate in _TYPES.items():
        if data_type.equals(candidate):
            return name
    raise WireFormatError(f"Unsupported wire field type {data_type}")

def _schema_metadata(schema: pa.Schema) -> Tuple[str, str]:
    metadata = schema.metadata or {}
    try:
        cell_type = metadata[b"cellType"].decode()
    except KeyError as e:
        raise WireFormatError("Wire schema has no cellType metadata") from e
    compression = metadata.get(b"compression", b"none").decode()
    return cell_type, compression

def schema_to_string(schema: pa.Schema) -> str:
    cell_type, compression = _schema_metadata(schema)
    return json.dumps({
        "fields": [{"name": f.name, "type": _type_name(f.type)} for f in schema],
        "metadata": {"cellType": cell_type, "compression": compression}
    })

def schema_from_string(text: str) -> pa.Schema:
    """
    Rebuild a wire schema from its JSON string.

    Raises:
        WireFormatError: If the string is not a valid wire schema.
    """
    try:
        data = json.loads(text)
        fields = [pa.field(f["name"], _TYPES[f["type"]], nullable=False) for f in data["fields"]]
        metadata = data["metadata"]
        return pa.schema(fields).with_metadata({
            "cellType": metadata["cellType"],
            "compression": metadata.get("compression", "none")
        })
    except (json.JSONDecodeError, KeyError, TypeError) as e:
        raise WireFormatError(f"Invalid wire schema: {e}") from e

def layer_type_of_schema(schema: pa.Schema) -> Optional[LayerType]:
    """Key shape of a wire schema, or None for a keyless (stitched raster) schema."""
    names = schema.names
    if "instant" in names:
        return LayerType.SPACETIME
    if "col" in names:
        return LayerType.SPATIAL
    return None

def encode_tile(tile: MultibandTile, schema: pa.Schema, key: Optional[TileKey] = None) -> bytes:
    """Encode one tile (and its key, when the schema has key fields) into record batch bytes."""
    cell_type, compression = _schema_metadata(schema)
    dtype, nodata = parse_cell_type(cell_type)
    if tile.dtype != dtype:
        tile = tile.convert(dtype, nodata)

    bands = []
    for band in tile.bands():
        raw = np.ascontiguousarray(band).tobytes()
        bands.append(gzip.compress(raw) if compression == "gzip" else raw)

    row = {"rows": [tile.rows], "cols": [tile.cols], "bands": [bands]}
    if "col" in schema.names:
        if key is None:
            raise WireFormatError("Schema has key fields but no key was given")
        for name, value in key.to_dict().items():
            row[name] = [value]

    batch = pa.RecordBatch.from_pydict(row, schema=schema)
    return batch.serialize().to_pybytes()

def decode_tile(payload: bytes, schema: pa.Schema) -> Tuple[Optional[TileKey], MultibandTile]:
    """
    Decode record batch bytes back into (key, tile). The key is None for keyless schemas.

    Raises:
        WireFormatError: If the bytes do not hold a record of this schema.
    """
    cell_type, compression = _schema_metadata(schema)
    dtype, nodata = parse_cell_type(cell_type)

    try:
        batch = pa.ipc.read_record_batch(pa.py_buffer(payload), schema)
    except (pa.ArrowException, OSError, ValueError) as e:
        raise WireFormatError(f"Payload does not match the wire schema: {e}") from e
    if batch.num_rows != 1:
        raise WireFormatError(f"Expected one record per payload, got {batch.num_rows}")

    row = {name: batch.column(name)[0].as_py() for name in schema.names}
    rows, cols = row["rows"], row["cols"]

    bands = []
    for raw in row["bands"]:
        if compression == "gzip":
            raw = gzip.decompress(raw)
        if len(raw) != rows * cols * dtype.itemsize:
            raise WireFormatError(f"Band payload of {len(raw)} bytes does not fit a {rows}x{cols} {dtype} grid")
        bands.append(np.frombuffer(raw, dtype=dtype).reshape(rows, cols).copy())

    layer_type = layer_type_of_schema(schema)
    key = None
    if layer_type is LayerType.SPATIAL:
        key = SpatialKey(row["col"], row["row"])
    elif layer_type is LayerType.SPACETIME:
        key = SpaceTimeKey(row["col"], row["row"], row["instant"])

    return key, MultibandTile.from_bands(bands, nodata)

def encode_records(
    records: Iterable[Tuple[TileKey, MultibandTile]],
    layer_type: LayerType,
    cell_type: str,
    compression: str = "none"
) -> Tuple[List[bytes], str]:
    """Encode in-memory records. Returns (payloads, schema string)."""
    schema = record_schema(layer_type, cell_type, compression)
    payloads = [encode_tile(tile, schema, key) for key, tile in records]
    log.debug(f"Encoded {len(payloads)} records ({compression})")
    return payloads, schema_to_string(schema)

def decode_records(payloads: Iterable[bytes], schema: str) -> List[Tuple[TileKey, MultibandTile]]:
    """Decode payloads produced by encode_records."""
    parsed = schema_from_string(schema)
    return [decode_tile(payload, parsed) for payload in payloads]
