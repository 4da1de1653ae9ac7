"""
S7 data types.

Maps the logical item types used in addresses to their wire representation:
byte width, word length code, transport size code and signedness.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from functools import cache
from types import MappingProxyType
from typing import Mapping

from .error import S7UnknownTypeError


class S7Area(IntEnum):
    """S7 memory area identifiers. Only data blocks are addressable."""

    DB = 0x84  # Data Blocks


class WordLen(IntEnum):
    """S7 data word length identifiers, sent in the item specification."""

    BIT = 0x01  # Single bit
    BYTE = 0x02  # 8-bit byte
    CHAR = 0x03  # 8-bit character
    WORD = 0x04  # 16-bit word
    DWORD = 0x06  # 32-bit double word
    REAL = 0x08  # 32-bit IEEE float


class TransportSize(IntEnum):
    """S7 transport size identifiers, sent in the data item header."""

    BIT = 0x03
    BYTE = 0x04
    INT = 0x05
    REAL = 0x07
    OCTET = 0x09

    def length_in_bits(self) -> bool:
        """Data item lengths are counted in bits for byte, word and dword classes."""
        return self not in (TransportSize.OCTET, TransportSize.REAL, TransportSize.BIT)


class TypeId(str, Enum):
    """Canonical logical type names."""

    BIT = "bit"
    INT8 = "int8"
    UINT8 = "uint8"
    INT16 = "int16"
    UINT16 = "uint16"
    INT32 = "int32"
    UINT32 = "uint32"
    FLOAT = "float"
    CHAR = "char"
    STRING = "string"


class TypeKind(Enum):
    """How values of a type are coerced and framed."""

    SCALAR = "scalar"
    ARRAY = "array"
    BIT = "bit"
    CHAR = "char"
    STRING = "string"


@dataclass(frozen=True)
class TypeSpec:
    """Wire description of a logical type."""

    id: TypeId
    byte_width: int
    word_len: WordLen
    transport_size: TransportSize
    signed: bool
    kind: TypeKind

    @property
    def bits(self) -> int:
        return self.byte_width * 8


TYPE_ALIASES = {
    "bool": "bit",
    "byte": "uint8",
    "word": "uint16",
    "dword": "uint32",
    "int": "int16",
    "dint": "int32",
}

TYPE_SPECS = (
    TypeSpec(TypeId.BIT, 1, WordLen.BIT, TransportSize.BIT, False, TypeKind.BIT),
    TypeSpec(TypeId.INT8, 1, WordLen.BYTE, TransportSize.BYTE, True, TypeKind.SCALAR),
    TypeSpec(TypeId.UINT8, 1, WordLen.BYTE, TransportSize.BYTE, False, TypeKind.SCALAR),
    TypeSpec(TypeId.INT16, 2, WordLen.WORD, TransportSize.INT, True, TypeKind.SCALAR),
    TypeSpec(TypeId.UINT16, 2, WordLen.WORD, TransportSize.INT, False, TypeKind.SCALAR),
    TypeSpec(TypeId.INT32, 4, WordLen.DWORD, TransportSize.INT, True, TypeKind.SCALAR),
    TypeSpec(TypeId.UINT32, 4, WordLen.DWORD, TransportSize.INT, False, TypeKind.SCALAR),
    TypeSpec(TypeId.FLOAT, 4, WordLen.REAL, TransportSize.REAL, False, TypeKind.SCALAR),
    TypeSpec(TypeId.CHAR, 1, WordLen.CHAR, TransportSize.OCTET, False, TypeKind.CHAR),
    TypeSpec(TypeId.STRING, 1, WordLen.CHAR, TransportSize.OCTET, False, TypeKind.STRING),
)


class TypeRegistry:
    """
    Read-only table of the logical types.

    Lookups are case-sensitive; aliases (``bool``, ``byte``, ``word``, ``dword``,
    ``int``, ``dint``) are resolved to their canonical name first.

    Examples:
        >>> default_registry().lookup("dint").id
        <TypeId.INT32: 'int32'>
    """

    def __init__(self) -> None:
        self._specs: Mapping[str, TypeSpec] = MappingProxyType({spec.id.value: spec for spec in TYPE_SPECS})
        self._aliases: Mapping[str, str] = MappingProxyType(dict(TYPE_ALIASES))

    def resolve(self, name: str) -> str:
        return self._aliases.get(name, name)

    def lookup(self, name: str) -> TypeSpec:
        """Get the spec for a type name or alias.

        Raises:
            S7UnknownTypeError: the name is neither a type nor an alias.
        """
        spec = self._specs.get(self.resolve(name))
        if spec is None:
            raise S7UnknownTypeError(f"unknown plc item type: `{name}`", address=name)
        return spec

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.resolve(name) in self._specs

    def names(self) -> list[str]:
        """All accepted names, canonical names first."""
        return list(self._specs) + list(self._aliases)


@cache
def default_registry() -> TypeRegistry:
    """The process-wide registry, built on first use."""
    return TypeRegistry()
