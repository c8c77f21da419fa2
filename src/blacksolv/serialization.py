"""
Structural (de)serialization of attrs records.

Two forms are supported:

- `dump`/`load` convert records to and from plain Python containers through a
  module level `cattrs` converter (numpy arrays become lists).
- `pack_size`/`pack`/`unpack` write records field by field into a flat
  little-endian byte buffer, driven only by the record's attrs field list.
  Supported field types are `float`, `int`, `bool`, `str`, 1-D `np.ndarray`
  (float64), nested attrs records and `typing.Optional` of any of these.
"""

import struct
import typing

import attrs
import cattrs
import numpy as np

from blacksolv.errors import DeserializationError, SerializationError

__all__ = ["converter", "dump", "load", "pack_size", "pack", "unpack"]

R = typing.TypeVar("R")

converter = cattrs.Converter()
converter.register_unstructure_hook(np.ndarray, lambda value: value.tolist())
converter.register_structure_hook(
    np.ndarray, lambda value, _: np.asarray(value, dtype=np.float64)
)


def dump(record: typing.Any) -> typing.Dict[str, typing.Any]:
    """
    Convert an attrs record to a dictionary of plain values.

    :raises SerializationError: If the record cannot be converted.
    """
    if not attrs.has(type(record)):
        raise SerializationError(f"{type(record).__name__} is not an attrs record")
    try:
        return converter.unstructure(record)
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"Failed to dump {type(record).__name__}: {exc}") from exc


def load(cls: typing.Type[R], data: typing.Mapping[str, typing.Any]) -> R:
    """
    Rebuild an attrs record of type `cls` from `dump` output.

    :raises DeserializationError: If the data does not describe a `cls`.
    """
    try:
        return converter.structure(data, cls)
    except (cattrs.BaseValidationError, TypeError, ValueError, KeyError) as exc:
        raise DeserializationError(f"Failed to load {cls.__name__}: {exc}") from exc


_SCALAR_FORMATS: typing.Dict[type, str] = {
    bool: "<?",
    int: "<q",
    float: "<d",
}
_LENGTH_FORMAT = "<q"
_FLAG_FORMAT = "<?"


def _unwrap_optional(typ: typing.Any) -> typing.Tuple[typing.Any, bool]:
    if typing.get_origin(typ) is typing.Union:
        args = typing.get_args(typ)
        inner = [arg for arg in args if arg is not type(None)]
        if len(inner) == 1 and len(args) == 2:
            return inner[0], True
    return typ, False


def _fields(cls: type) -> typing.Tuple[attrs.Attribute, ...]:
    if not attrs.has(cls):
        raise SerializationError(f"{cls.__name__} is not an attrs record")
    return attrs.fields(attrs.resolve_types(cls))


def _value_size(typ: typing.Any, value: typing.Any) -> int:
    typ, optional = _unwrap_optional(typ)
    size = struct.calcsize(_FLAG_FORMAT) if optional else 0
    if optional and value is None:
        return size
    if typ in _SCALAR_FORMATS:
        return size + struct.calcsize(_SCALAR_FORMATS[typ])
    if typ is str:
        return size + struct.calcsize(_LENGTH_FORMAT) + len(value.encode("utf-8"))
    if typ is np.ndarray:
        return size + struct.calcsize(_LENGTH_FORMAT) + 8 * np.asarray(value).size
    if attrs.has(typ):
        return size + pack_size(value)
    raise SerializationError(f"Cannot pack a field of type {typ!r}")


def pack_size(record: typing.Any) -> int:
    """Number of bytes `pack` produces for `record`."""
    return sum(
        _value_size(field.type, getattr(record, field.name))
        for field in _fields(type(record))
    )


def _pack_value(typ: typing.Any, value: typing.Any, out: bytearray) -> None:
    typ, optional = _unwrap_optional(typ)
    if optional:
        out += struct.pack(_FLAG_FORMAT, value is not None)
        if value is None:
            return
    if value is None:
        raise SerializationError(f"Field of type {typ!r} is None")

    if typ in _SCALAR_FORMATS:
        out += struct.pack(_SCALAR_FORMATS[typ], typ(value))
    elif typ is str:
        encoded = value.encode("utf-8")
        out += struct.pack(_LENGTH_FORMAT, len(encoded))
        out += encoded
    elif typ is np.ndarray:
        array = np.ascontiguousarray(value, dtype="<f8")
        if array.ndim != 1:
            raise SerializationError(f"Only 1-D arrays can be packed, got shape {array.shape}")
        out += struct.pack(_LENGTH_FORMAT, array.size)
        out += array.tobytes()
    elif attrs.has(typ):
        out += pack(value)
    else:
        raise SerializationError(f"Cannot pack a field of type {typ!r}")


def pack(record: typing.Any) -> bytes:
    """
    Pack an attrs record into a flat byte buffer, one field after another.

    :raises SerializationError: For unsupported field types.
    """
    out = bytearray()
    for field in _fields(type(record)):
        _pack_value(field.type, getattr(record, field.name), out)
    return bytes(out)


def _read(fmt: str, buffer: bytes, offset: int) -> typing.Tuple[typing.Any, int]:
    try:
        (value,) = struct.unpack_from(fmt, buffer, offset)
    except struct.error as exc:
        raise DeserializationError(f"Buffer too short at offset {offset}") from exc
    return value, offset + struct.calcsize(fmt)


def _unpack_value(typ: typing.Any, buffer: bytes, offset: int) -> typing.Tuple[typing.Any, int]:
    typ, optional = _unwrap_optional(typ)
    if optional:
        present, offset = _read(_FLAG_FORMAT, buffer, offset)
        if not present:
            return None, offset

    if typ in _SCALAR_FORMATS:
        return _read(_SCALAR_FORMATS[typ], buffer, offset)
    if typ is str:
        length, offset = _read(_LENGTH_FORMAT, buffer, offset)
        end = offset + length
        if length < 0 or end > len(buffer):
            raise DeserializationError(f"Invalid string length {length} at offset {offset}")
        return buffer[offset:end].decode("utf-8"), end
    if typ is np.ndarray:
        length, offset = _read(_LENGTH_FORMAT, buffer, offset)
        end = offset + 8 * length
        if length < 0 or end > len(buffer):
            raise DeserializationError(f"Invalid array length {length} at offset {offset}")
        return np.frombuffer(buffer, dtype="<f8", count=length, offset=offset).astype(np.float64), end
    if attrs.has(typ):
        return _unpack_record(typ, buffer, offset)
    raise DeserializationError(f"Cannot unpack a field of type {typ!r}")


def _unpack_record(cls: typing.Type[R], buffer: bytes, offset: int) -> typing.Tuple[R, int]:
    values = {}
    for field in _fields(cls):
        values[field.alias or field.name], offset = _unpack_value(field.type, buffer, offset)
    return cls(**values), offset


def unpack(cls: typing.Type[R], buffer: bytes) -> R:
    """
    Rebuild a record of type `cls` from `pack` output.

    :raises DeserializationError: If the buffer is truncated or has trailing bytes.
    """
    buffer = bytes(buffer)
    record, offset = _unpack_record(cls, buffer, 0)
    if offset != len(buffer):
        raise DeserializationError(
            f"{len(buffer) - offset} trailing bytes after unpacking {cls.__name__}"
        )
    return record
