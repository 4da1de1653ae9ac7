"""
S7 client.

Reads and writes data block items by address::

    >>> from s7plc import S7Client
    >>> with S7Client("192.168.1.101") as plc:  # doctest: +SKIP
    ...     plc.write([("DB21.0:int32", 70000), ("DB21.4:float", 3.14)])
    ...     plc.read(["DB21.0:int32", "DB21.4:float"])
    [70000, 3.140000104904175]

or once, on a fresh connection that is closed afterwards::

    >>> read_plc("192.168.1.101", ["DB21.0:int32"])  # doctest: +SKIP
    [70000]
"""

import abc
import logging
from types import TracebackType
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Type

from .address import AddressParser, ItemDescriptor
from .codec import ItemCodec
from .connection import DEFAULT_TIMEOUT, ConnectionManager, parse_endpoint
from .datatypes import TypeRegistry, default_registry
from .s7protocol import DEFAULT_PDU_LENGTH, PacketBuilder, PacketParser

logger = logging.getLogger(__name__)

WriteItems = Iterable[Tuple[str, Any]]


class PlcClient(abc.ABC):
    """Read and write items on a PLC by address."""

    @abc.abstractmethod
    def read(self, addresses: Sequence[str]) -> List[Any]:
        """Read items, returning one value per address in order."""

    @abc.abstractmethod
    def write(self, items: WriteItems) -> None:
        """Write ``(address, value)`` pairs; raises on the first failing item."""


class S7Client(PlcClient):
    """
    S7 client for data block items.

    One instance holds one connection, opened on the first read or write and
    reused until :meth:`close`. Calls are blocking and must not overlap: guard
    a shared instance with a lock when using it from several threads.

    Args:
        address: ``host`` or ``host:port``, port 102 when omitted
        connect_timeout: TCP connect timeout in seconds
        read_timeout: response timeout in seconds
        registry: type table, the process-wide one by default
        pdu_length: PDU length proposed to the PLC

    Examples:
        >>> plc = S7Client("192.168.1.101")
        >>> plc.connected
        False
    """

    def __init__(
        self,
        address: str,
        connect_timeout: float = DEFAULT_TIMEOUT,
        read_timeout: float = DEFAULT_TIMEOUT,
        registry: Optional[TypeRegistry] = None,
        pdu_length: int = DEFAULT_PDU_LENGTH,
    ) -> None:
        self.address = address
        registry = registry or default_registry()
        self.parser = AddressParser(registry)
        self.codec = ItemCodec()
        self.builder = PacketBuilder()
        self.packet_parser = PacketParser(self.codec)
        host, port = parse_endpoint(address)
        self.connection = ConnectionManager(
            host,
            port,
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            builder=self.builder,
            parser=self.packet_parser,
            pdu_length=pdu_length,
        )

    def __enter__(self) -> "S7Client":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.close()

    def __del__(self) -> None:
        connection = getattr(self, "connection", None)
        if connection is not None:
            connection.close()

    @property
    def connected(self) -> bool:
        return self.connection.connected

    @property
    def pdu_length(self) -> int:
        """The PDU length negotiated with the PLC (the proposal before connecting)."""
        return self.connection.pdu_length

    def connect(self) -> "S7Client":
        """Connect now instead of on the first read or write."""
        self.connection.connect()
        return self

    def close(self) -> None:
        """Close the connection to the PLC."""
        self.connection.close()

    def read(self, addresses: Sequence[str]) -> List[Any]:
        """
        Read items.

        Args:
            addresses: item addresses, e.g. ``["DB21.0:int32", "DB21.12.0:bit"]``

        Returns:
            one value per address: ``int`` for integer and bit types, ``float``,
            ``bytes`` for char, ``str`` for string and lists for arrays.
        """
        descriptors = [self.parser.parse(address) for address in addresses]
        if not descriptors:
            return []
        logger.debug(f"read: {[d.code for d in descriptors]}")
        response = self.connection.exchange(self.builder.build_read_request(descriptors))
        return self.packet_parser.parse_read_response(response, descriptors)

    def write(self, items: WriteItems) -> None:
        """
        Write items.

        Args:
            items: ``(address, value)`` pairs, e.g. ``[("DB21.0:int32", 70000)]``
        """
        write_items = [self.codec.prepare_write(self.parser.parse(address), value) for address, value in items]
        if not write_items:
            return
        descriptors: List[ItemDescriptor] = [item.descriptor for item in write_items]
        logger.debug(f"write: {[d.code for d in descriptors]}")
        response = self.connection.exchange(self.builder.build_write_request(write_items))
        self.packet_parser.parse_write_response(response, descriptors)

    @classmethod
    def read_plc(cls, address: str, addresses: Sequence[str], **kwargs: Any) -> List[Any]:
        """Read items over a short-lived connection."""
        with cls(address, **kwargs) as plc:
            return plc.read(addresses)

    @classmethod
    def write_plc(cls, address: str, items: WriteItems, **kwargs: Any) -> None:
        """Write items over a short-lived connection."""
        with cls(address, **kwargs) as plc:
            plc.write(items)


def read_plc(address: str, addresses: Sequence[str], **kwargs: Any) -> List[Any]:
    return S7Client.read_plc(address, addresses, **kwargs)


def write_plc(address: str, items: WriteItems, **kwargs: Any) -> None:
    S7Client.write_plc(address, items, **kwargs)
