"""
Item value conversion.

Turns Python values into the bytes of a write data item and read data items
back into Python values. All multi-byte values are big-endian, as the PLC
stores them.
"""

import logging
import struct
from dataclasses import dataclass
from typing import Any, List, Sequence, Union

from .address import ItemDescriptor
from .datatypes import TypeId, TypeKind, TypeSpec
from .error import S7ArrayValueRequiredError, S7ProtocolError, S7ValueError

logger = logging.getLogger(__name__)

# S7 CHAR and STRING hold single-byte characters
ENCODING = "latin-1"

_UNSIGNED_FORMATS = {1: "B", 2: "H", 4: "I"}

Value = Union[int, float, bytes, str, List[Any]]


@dataclass(frozen=True)
class WriteItem:
    """An item ready to be framed in a write request."""

    descriptor: ItemDescriptor
    value: Any
    data: bytes
    element_count: int


def _to_bytes(value: Any, address: str) -> bytes:
    if isinstance(value, str):
        return value.encode(ENCODING)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise S7ValueError(f"require str or bytes value for {address}", address)


def _fix_sign(value: int, bits: int) -> int:
    """Reinterpret an unsigned value as two's complement."""
    if value >= 1 << (bits - 1):
        return value - (1 << bits)
    return value


class ItemCodec:
    """
    Encodes write values and decodes read values for item descriptors.

    Descriptors carry their resolved :class:`TypeSpec`, so the codec needs no
    type table of its own.
    """

    def prepare_write(self, descriptor: ItemDescriptor, value: Value) -> WriteItem:
        """Reconcile a value with its descriptor and pack it.

        Char values are zero-padded or truncated to the declared length, string
        values truncated and prefixed with their (capacity, length) header, arrays
        truncated or padded with zeros, and bits coerced to 0 or 1.

        Raises:
            S7ArrayValueRequiredError: a scalar was given for an array address.
            S7ValueError: the value doesn't fit the type.
        """
        kind = descriptor.spec.kind
        count = descriptor.element_count

        if kind == TypeKind.CHAR:
            raw = _to_bytes(value, descriptor.code)
            data = raw[:count].ljust(count, b"\x00")
            return WriteItem(descriptor, data, data, count)

        if kind == TypeKind.STRING:
            payload = _to_bytes(value, descriptor.code)[:count]
            data = bytes((count, len(payload))) + payload
            return WriteItem(descriptor, payload, data, len(data))

        if descriptor.is_array:
            if not isinstance(value, (list, tuple)):
                raise S7ArrayValueRequiredError(f"require array value for {descriptor.code}", descriptor.code)
            values = self._reconcile(descriptor.spec, value, count)
        else:
            if isinstance(value, (list, tuple)):
                raise S7ValueError(f"require scalar value for {descriptor.code}", descriptor.code)
            values = self._reconcile(descriptor.spec, [value], 1)

        data = b"".join(self._pack(descriptor, v) for v in values)
        return WriteItem(descriptor, values if descriptor.is_array else values[0], data, count)

    def decode(self, descriptor: ItemDescriptor, segment: bytes) -> Any:
        """Convert the data of a read response item to a Python value.

        Raises:
            S7ProtocolError: the segment is too short for the descriptor.
        """
        spec = descriptor.spec

        if spec.kind == TypeKind.CHAR:
            return bytes(segment[: descriptor.element_count])

        if spec.kind == TypeKind.STRING:
            if len(segment) < 2:
                raise S7ProtocolError(f"short string data for `{descriptor.code}`: {len(segment)} bytes")
            actual_length = segment[1]
            length = min(actual_length, descriptor.element_count)
            return bytes(segment[2 : 2 + length]).decode(ENCODING)

        needed = spec.byte_width * descriptor.element_count
        if len(segment) < needed:
            raise S7ProtocolError(f"short item data for `{descriptor.code}`: {len(segment)} of {needed} bytes")

        values = [self._unpack(spec, segment, i * spec.byte_width) for i in range(descriptor.element_count)]
        if descriptor.is_array:
            return values
        return values[0]

    @staticmethod
    def zero_value(spec: TypeSpec) -> Union[int, float]:
        return 0.0 if spec.id == TypeId.FLOAT else 0

    def _reconcile(self, spec: TypeSpec, values: Sequence[Any], count: int) -> List[Any]:
        result = list(values[:count])
        result.extend([self.zero_value(spec)] * (count - len(result)))
        if spec.kind == TypeKind.BIT:
            result = [1 if v else 0 for v in result]
        return result

    def _pack(self, descriptor: ItemDescriptor, value: Any) -> bytes:
        spec = descriptor.spec
        try:
            if spec.id == TypeId.FLOAT:
                return struct.pack(">f", float(value))
            return struct.pack(">" + _UNSIGNED_FORMATS[spec.byte_width], int(value) & ((1 << spec.bits) - 1))
        except (TypeError, ValueError, OverflowError, struct.error) as e:
            raise S7ValueError(f"bad value {value!r} for {descriptor.code}: {e}", descriptor.code) from e

    @staticmethod
    def _unpack(spec: TypeSpec, segment: bytes, offset: int) -> Union[int, float]:
        if spec.id == TypeId.FLOAT:
            value: float = struct.unpack_from(">f", segment, offset)[0]
            return value
        raw: int = struct.unpack_from(">" + _UNSIGNED_FORMATS[spec.byte_width], segment, offset)[0]
        if spec.kind == TypeKind.BIT:
            return 1 if raw else 0
        if spec.signed:
            return _fix_sign(raw, spec.bits)
        return raw
