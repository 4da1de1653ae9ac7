"""
Item address parsing.

An item address names a typed location inside a data block::

    DB<db>.<byte>[.<bit>]:<type>[<count>]

for example ``DB21.0:int32``, ``DB21.12.0:bit``, ``DB5.2:uint16[4]`` or
``DB1.100:string[20]``.
"""

import logging
from dataclasses import dataclass
from typing import NoReturn, Optional

from .datatypes import TypeId, TypeKind, TypeRegistry, TypeSpec, default_registry
from .error import S7BadAddressError, S7BitTypeMismatchError, S7UnknownTypeError

logger = logging.getLogger(__name__)

MAX_DB_NUMBER = 0xFFFF
# the item specification carries the bit address in 3 bytes
MAX_BYTE_OFFSET = 0xFFFFFF >> 3
MAX_ELEMENT_COUNT = 0xFFFF
# the string header stores capacity and length in one byte each
MAX_STRING_LENGTH = 254


@dataclass(frozen=True)
class ItemDescriptor:
    """A parsed item address."""

    code: str
    db_number: int
    byte_offset: int
    bit_offset: int
    spec: TypeSpec
    element_count: int = 1

    @property
    def logical_type(self) -> TypeId:
        return self.spec.id

    @property
    def is_array(self) -> bool:
        return self.element_count > 1

    @property
    def kind(self) -> TypeKind:
        if self.spec.kind == TypeKind.SCALAR and self.is_array:
            return TypeKind.ARRAY
        return self.spec.kind

    @property
    def read_count(self) -> int:
        """Number of elements requested on the wire when reading this item."""
        if self.spec.kind == TypeKind.STRING:
            # max-capacity and actual-length header bytes
            return self.element_count + 2
        return self.element_count

    @property
    def bit_address(self) -> int:
        return self.byte_offset * 8 + self.bit_offset


class AddressParser:
    """
    Recursive-descent parser for item addresses.

    Args:
        registry: type table used to resolve type names, the process-wide one by default.
    """

    def __init__(self, registry: Optional[TypeRegistry] = None) -> None:
        self.registry = registry or default_registry()
        self._text = ""
        self._pos = 0

    def parse(self, text: str) -> ItemDescriptor:
        """Parse one address.

        Raises:
            S7BadAddressError: malformed address or value out of range.
            S7UnknownTypeError: the type name is not known.
            S7BitTypeMismatchError: a bit offset was given for a non-bit type.
        """
        self._text = text
        self._pos = 0

        self._expect("DB")
        db_column = self._pos
        db_number = self._number("data block number")
        self._expect(".")
        byte_column = self._pos
        byte_offset = self._number("byte offset")
        bit_offset: Optional[int] = None
        bit_column = self._pos + 1
        if self._peek() == ".":
            self._pos += 1
            bit_offset = self._number("bit offset")
        self._expect(":")
        type_column = self._pos
        type_name = self._word()
        count = 1
        count_column = self._pos + 1
        if self._peek() == "[":
            self._pos += 1
            count = self._number("element count")
            self._expect("]")
        if self._pos != len(self._text):
            self._fail("unexpected trailing characters")

        if type_name not in self.registry:
            raise S7UnknownTypeError(f"unknown plc item type: `{text}`", address=text, column=type_column)
        spec = self.registry.lookup(type_name)

        if bit_offset is not None and spec.kind != TypeKind.BIT:
            raise S7BitTypeMismatchError(f"require bit type for `{text}`", address=text, column=type_column)
        if db_number > MAX_DB_NUMBER:
            self._fail(f"data block number {db_number} out of range", column=db_column)
        if byte_offset > MAX_BYTE_OFFSET:
            self._fail(f"byte offset {byte_offset} out of range", column=byte_column)
        if bit_offset is not None and bit_offset > 7:
            self._fail(f"bit offset {bit_offset} out of range 0-7", column=bit_column)
        if not 1 <= count <= MAX_ELEMENT_COUNT:
            self._fail(f"element count {count} out of range", column=count_column)
        if spec.kind == TypeKind.STRING and count > MAX_STRING_LENGTH:
            self._fail(f"string length {count} exceeds {MAX_STRING_LENGTH}", column=count_column)

        descriptor = ItemDescriptor(
            code=text,
            db_number=db_number,
            byte_offset=byte_offset,
            bit_offset=bit_offset or 0,
            spec=spec,
            element_count=count,
        )
        logger.debug(f"Parsed {text!r}: {descriptor}")
        return descriptor

    def _peek(self) -> str:
        return self._text[self._pos : self._pos + 1]

    def _expect(self, token: str) -> None:
        if not self._text.startswith(token, self._pos):
            self._fail(f"expected {token!r}")
        self._pos += len(token)

    def _number(self, what: str) -> int:
        start = self._pos
        while self._peek().isdigit() and self._peek().isascii():
            self._pos += 1
        if start == self._pos:
            self._fail(f"expected {what}")
        return int(self._text[start : self._pos])

    def _word(self) -> str:
        start = self._pos
        while self._peek() and (self._peek().isalnum() or self._peek() == "_") and self._peek().isascii():
            self._pos += 1
        if start == self._pos:
            self._fail("expected type name")
        return self._text[start : self._pos]

    def _fail(self, reason: str, column: Optional[int] = None) -> NoReturn:
        column = self._pos if column is None else column
        raise S7BadAddressError(f"bad plc item addr: `{self._text}` ({reason} at column {column})", address=self._text, column=column)


def parse_address(text: str, registry: Optional[TypeRegistry] = None) -> ItemDescriptor:
    """Parse a single item address with a fresh parser."""
    return AddressParser(registry).parse(text)
