"""Canonical binary encoding for messages, params, return values and actor state.

The encoding is self describing: every value is a one byte tag followed by
its body. Dataclasses encode as structs (their fields in declaration order),
maps encode with entries sorted by encoded key so equal values always produce
equal bytes.
"""

from __future__ import annotations

import dataclasses
import typing
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Type, TypeVar

from blake3 import blake3

from .address import Address

T = TypeVar("T")

TAG_NONE = 0x00
TAG_FALSE = 0x01
TAG_TRUE = 0x02
TAG_INT = 0x03
TAG_BYTES = 0x04
TAG_STR = 0x05
TAG_LIST = 0x06
TAG_MAP = 0x07
TAG_ADDRESS = 0x08
TAG_STRUCT = 0x09


class EncodingError(ValueError):
    pass


@dataclass
class Writer:
    buf: bytearray

    def write_u8(self, v: int) -> None:
        self.buf.extend(int(v).to_bytes(1, "big", signed=False))

    def write_u32(self, v: int) -> None:
        self.buf.extend(int(v).to_bytes(4, "big", signed=False))

    def write_u64(self, v: int) -> None:
        self.buf.extend(int(v).to_bytes(8, "big", signed=False))

    def write_bytes(self, b: bytes) -> None:
        self.buf.extend(b)

    def write_sized(self, b: bytes) -> None:
        self.write_u32(len(b))
        self.write_bytes(b)


@dataclass
class Reader:
    data: bytes
    pos: int = 0

    def read(self, size: int) -> bytes:
        end = self.pos + size
        if end > len(self.data):
            raise EncodingError("unexpected end of data")
        out = self.data[self.pos:end]
        self.pos = end
        return out

    def read_u8(self) -> int:
        return self.read(1)[0]

    def read_u32(self) -> int:
        return int.from_bytes(self.read(4), "big", signed=False)

    def read_sized(self) -> bytes:
        return self.read(self.read_u32())

    def at_end(self) -> bool:
        return self.pos == len(self.data)


def _write_value(w: Writer, value: Any) -> None:
    if value is None:
        w.write_u8(TAG_NONE)
    elif isinstance(value, bool):
        w.write_u8(TAG_TRUE if value else TAG_FALSE)
    elif isinstance(value, int):
        v = int(value)
        size = (v.bit_length() + 8) // 8
        w.write_u8(TAG_INT)
        w.write_sized(v.to_bytes(size, "big", signed=True))
    elif isinstance(value, (bytes, bytearray)):
        w.write_u8(TAG_BYTES)
        w.write_sized(bytes(value))
    elif isinstance(value, str):
        w.write_u8(TAG_STR)
        w.write_sized(value.encode("utf-8"))
    elif isinstance(value, Address):
        w.write_u8(TAG_ADDRESS)
        w.write_sized(value.to_bytes())
    elif dataclasses.is_dataclass(value) and not isinstance(value, type):
        fields = dataclasses.fields(value)
        w.write_u8(TAG_STRUCT)
        w.write_u32(len(fields))
        for f in fields:
            _write_value(w, getattr(value, f.name))
    elif isinstance(value, (list, tuple)):
        w.write_u8(TAG_LIST)
        w.write_u32(len(value))
        for item in value:
            _write_value(w, item)
    elif isinstance(value, dict):
        entries = sorted((serialize(k), serialize(v)) for k, v in value.items())
        w.write_u8(TAG_MAP)
        w.write_u32(len(entries))
        for k, v in entries:
            w.write_bytes(k)
            w.write_bytes(v)
    else:
        raise EncodingError(f"cannot encode value of type {type(value).__name__}")


def _read_value(r: Reader) -> Any:
    tag = r.read_u8()
    if tag == TAG_NONE:
        return None
    if tag == TAG_FALSE:
        return False
    if tag == TAG_TRUE:
        return True
    if tag == TAG_INT:
        return int.from_bytes(r.read_sized(), "big", signed=True)
    if tag == TAG_BYTES:
        return r.read_sized()
    if tag == TAG_STR:
        return r.read_sized().decode("utf-8")
    if tag == TAG_ADDRESS:
        try:
            return Address.from_bytes(r.read_sized())
        except ValueError as exc:
            raise EncodingError(str(exc)) from exc
    if tag == TAG_STRUCT:
        return tuple(_read_value(r) for _ in range(r.read_u32()))
    if tag == TAG_LIST:
        return [_read_value(r) for _ in range(r.read_u32())]
    if tag == TAG_MAP:
        out = {}
        for _ in range(r.read_u32()):
            key = _read_value(r)
            out[key] = _read_value(r)
        return out
    raise EncodingError(f"unknown tag {tag:#04x}")


def serialize(value: Any) -> bytes:
    w = Writer(bytearray())
    _write_value(w, value)
    return bytes(w.buf)


def deserialize(data: bytes) -> Any:
    """Decode into plain values; structs come back as tuples."""
    r = Reader(bytes(data))
    value = _read_value(r)
    if not r.at_end():
        raise EncodingError("trailing bytes after value")
    return value


def _coerce(value: Any, tp: Any) -> Any:
    if value is None or tp is Any:
        return value
    origin = typing.get_origin(tp)
    args = typing.get_args(tp)
    if origin is typing.Union:
        inner = [a for a in args if a is not type(None)]
        return _coerce(value, inner[0]) if inner else value
    if origin in (list, typing.List):
        return [_coerce(v, args[0]) for v in value] if args else list(value)
    if origin in (tuple, typing.Tuple):
        if args and args[-1] is not Ellipsis:
            return tuple(_coerce(v, a) for v, a in zip(value, args))
        return tuple(_coerce(v, args[0]) for v in value) if args else tuple(value)
    if origin in (dict, typing.Dict):
        if not args:
            return dict(value)
        kt, vt = args
        return {_coerce(k, kt): _coerce(v, vt) for k, v in value.items()}
    if isinstance(tp, type):
        if isinstance(value, tp):
            return value
        if dataclasses.is_dataclass(tp):
            return _to_dataclass(value, tp)
        if issubclass(tp, IntEnum):
            return tp(value)
    return value


def _to_dataclass(value: Any, shape: Type[T]) -> T:
    fields = dataclasses.fields(shape)
    if not isinstance(value, tuple) or len(value) != len(fields):
        raise EncodingError(f"value does not match the shape of {shape.__name__}")
    hints = typing.get_type_hints(shape)
    kwargs = {f.name: _coerce(v, hints.get(f.name, Any)) for f, v in zip(fields, value)}
    return shape(**kwargs)


def decode_as(data: bytes, shape: Type[T]) -> T:
    """Decode `data` into an instance of the dataclass `shape`."""
    return _coerce(deserialize(data), shape)


def cid_of(value: Any) -> str:
    """Content identifier of a value: hex BLAKE3-256 of its canonical encoding."""
    return blake3(serialize(value)).hexdigest()
