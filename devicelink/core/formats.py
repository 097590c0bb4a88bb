"""Characteristic value formats and the declarative read/write rules built on them."""

from __future__ import annotations

import struct
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from devicelink.core.errors import PayloadError
from devicelink.core.model import WriteBack

_STRUCT_FORMATS = {
    "uint8": "<B",
    "int8": "<b",
    "uint16le": "<H",
    "int16le": "<h",
    "uint16be": ">H",
    "int16be": ">h",
    "uint32le": "<I",
    "int32le": "<i",
    "float32le": "<f",
}
FORMATS = ("raw", "hex", "utf8", *_STRUCT_FORMATS)
_FLOAT_DIGITS = 6


def _as_bytes(raw: Any) -> bytes:
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return bytes(raw)
    raise PayloadError(f"Expected raw bytes, got {type(raw).__name__}")


def to_payload(data: Any) -> bytes:
    """Normalize write-back data to bytes, wrapping a scalar into one byte."""
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, int):
        data = [data]
    try:
        return bytes(data)
    except (TypeError, ValueError) as exc:
        raise PayloadError(f"Cannot convert {data!r} to a byte payload: {exc}") from exc


def decode_value(fmt: str, raw: Any) -> Any:
    if fmt == "raw":
        return raw
    data = _as_bytes(raw)
    if fmt == "hex":
        return data.hex()
    if fmt == "utf8":
        try:
            return data.decode("utf-8").rstrip("\x00")
        except UnicodeDecodeError as exc:
            raise PayloadError(f"Characteristic value is not valid UTF-8: {exc}") from exc

    struct_fmt = _STRUCT_FORMATS.get(fmt)
    if struct_fmt is None:
        raise PayloadError(f"Unsupported value format '{fmt}'")
    size = struct.calcsize(struct_fmt)
    if len(data) < size:
        raise PayloadError(f"Format '{fmt}' needs {size} bytes, got {len(data)}")
    (value,) = struct.unpack_from(struct_fmt, data)
    if isinstance(value, float):
        value = round(value, _FLOAT_DIGITS)
    return value


def _parse_number(value: Any, *, integral: bool) -> int | float:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "false"}:
            return int(lowered == "true")
        try:
            number = float(lowered)
        except ValueError as exc:
            raise PayloadError(f"'{value}' is not a number") from exc
    elif isinstance(value, (int, float)):
        number = value
    else:
        raise PayloadError(f"{value!r} is not a number")
    return int(number) if integral else float(number)


def encode_value(fmt: str, value: Any) -> bytes:
    if fmt == "raw":
        return to_payload(value)
    if fmt == "hex":
        try:
            return bytes.fromhex(str(value).replace(" ", ""))
        except ValueError as exc:
            raise PayloadError(f"'{value}' is not a hex payload") from exc
    if fmt == "utf8":
        return str(value).encode("utf-8")

    struct_fmt = _STRUCT_FORMATS.get(fmt)
    if struct_fmt is None:
        raise PayloadError(f"Unsupported value format '{fmt}'")
    number = _parse_number(value, integral=not fmt.startswith("float"))
    try:
        return struct.pack(struct_fmt, number)
    except struct.error as exc:
        raise PayloadError(f"Value {value!r} does not fit format '{fmt}': {exc}") from exc


@dataclass(frozen=True)
class ReadRule:
    """Reads one characteristic of the simplified snapshot and decodes it."""

    service: str
    characteristic: str
    format: str = "hex"
    divisor: float | None = None
    labels: Mapping[str, str] = field(default_factory=dict)

    @property
    def source(self) -> str:
        return f"{self.service}/{self.characteristic}"

    def __call__(self, snapshot: Mapping[str, Mapping[str, Any]]) -> Any:
        raw = snapshot[self.service][self.characteristic]
        if raw is None:
            return None
        if self.labels:
            return self.labels.get(_as_bytes(raw).hex())
        value = decode_value(self.format, raw)
        if self.divisor:
            value = value / self.divisor
        return value


@dataclass(frozen=True)
class WriteRule:
    """Encodes a remote value and writes it back to one characteristic."""

    service: str
    characteristic: str
    format: str = "raw"
    payloads: Mapping[str, bytes] = field(default_factory=dict)

    @property
    def target(self) -> str:
        return f"{self.service}/{self.characteristic}"

    def __call__(self, value: Any, write: WriteBack) -> None:
        if self.payloads:
            payload = self.payloads.get(str(value))
            if payload is None:
                allowed = ", ".join(sorted(self.payloads))
                raise PayloadError(f"Value '{value}' is not supported. Allowed: {allowed}")
        else:
            payload = encode_value(self.format, value)
        write(self.target, payload)
