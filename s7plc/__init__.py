"""
The s7plc Python library.

Pure Python client for reading and writing data block items of Siemens S7
PLCs over ISO on TCP.
"""

from importlib.metadata import version, PackageNotFoundError

from .address import AddressParser, ItemDescriptor, parse_address
from .client import PlcClient, S7Client, read_plc, write_plc
from .codec import ItemCodec, WriteItem
from .connection import ConnectionManager, ConnectionState
from .datatypes import TypeId, TypeKind, TypeRegistry, TypeSpec, default_registry
from .error import S7Error

__all__ = [
    "AddressParser",
    "ItemDescriptor",
    "parse_address",
    "PlcClient",
    "S7Client",
    "read_plc",
    "write_plc",
    "ItemCodec",
    "WriteItem",
    "ConnectionManager",
    "ConnectionState",
    "TypeId",
    "TypeKind",
    "TypeRegistry",
    "TypeSpec",
    "default_registry",
    "S7Error",
]

try:
    __version__ = version("s7plc")
except PackageNotFoundError:
    __version__ = "0.0rc0"
