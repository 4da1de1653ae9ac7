"""
S7 protocol implementation.

Builds and parses complete ISO-on-TCP frames::

    TPKT (4 bytes) | COTP (3 bytes) | S7 header | parameters | data

for the connection request, the setup communication request and multi-item
read/write requests.
"""

import struct
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, List, Optional, Sequence, Tuple

from .address import ItemDescriptor
from .codec import ItemCodec, WriteItem
from .datatypes import S7Area, TransportSize
from .error import (
    S7ConnectionError,
    S7ItemCountMismatchError,
    S7ItemStatusError,
    S7ProtocolError,
    S7ServerError,
    S7ValueError,
)

logger = logging.getLogger(__name__)

TPKT_VERSION = 3
TPKT_SIZE = 4
COTP_DT_SIZE = 3
# TPKT + COTP data transfer header
FRAME_HEADER_SIZE = TPKT_SIZE + COTP_DT_SIZE
REQUEST_HEADER_SIZE = 10

PROTOCOL_ID = 0x32
ITEM_OK = 0xFF
MAX_ITEMS = 0xFF
MAX_FRAME_LENGTH = 0xFFFF

DEFAULT_PDU_LENGTH = 480
DEFAULT_LOCAL_TSAP = 0x0100
DEFAULT_REMOTE_TSAP = 0x0102
TPDU_SIZE_1024 = 0x0A


class COTPType(IntEnum):
    """COTP PDU types."""

    CR = 0xE0  # Connection Request
    CC = 0xD0  # Connection Confirm
    DR = 0x80  # Disconnect Request
    DT = 0xF0  # Data Transfer


class S7Function(IntEnum):
    """S7 protocol function codes."""

    READ_AREA = 0x04
    WRITE_AREA = 0x05
    SETUP_COMMUNICATION = 0xF0


class S7PDUType(IntEnum):
    """S7 PDU type codes."""

    REQUEST = 0x01
    ACK = 0x02
    RESPONSE = 0x03


@dataclass(frozen=True)
class S7ResponseHeader:
    protocol_id: int
    pdu_type: int
    reserved: int
    sequence: int
    param_length: int
    data_length: int
    error_code: int


class Cursor:
    """Read position over a received frame."""

    def __init__(self, data: bytes, pos: int = 0) -> None:
        self.data = data
        self.pos = pos

    @property
    def remaining(self) -> int:
        return len(self.data) - self.pos

    def take(self, size: int) -> bytes:
        if size > self.remaining:
            raise S7ProtocolError(f"short response: need {size} bytes at offset {self.pos}, have {self.remaining}")
        chunk = self.data[self.pos : self.pos + size]
        self.pos += size
        return chunk

    def unpack(self, fmt: str) -> Tuple[Any, ...]:
        return struct.unpack(fmt, self.take(struct.calcsize(fmt)))

    def skip(self, size: int) -> None:
        self.take(size)


class PacketBuilder:
    """
    Serializes S7 requests into complete TPKT frames.

    Args:
        local_tsap: calling TSAP sent in the connection request
        remote_tsap: called TSAP sent in the connection request
    """

    def __init__(self, local_tsap: int = DEFAULT_LOCAL_TSAP, remote_tsap: int = DEFAULT_REMOTE_TSAP) -> None:
        self.local_tsap = local_tsap
        self.remote_tsap = remote_tsap
        self.sequence = 0  # Message sequence counter

    def _next_sequence(self) -> int:
        """Get next sequence number for S7 PDU."""
        self.sequence = (self.sequence + 1) & 0xFFFF
        return self.sequence

    @staticmethod
    def tpkt(payload: bytes) -> bytes:
        """Prefix a COTP PDU with the TPKT header (version 3, total length)."""
        length = len(payload) + TPKT_SIZE
        if length > MAX_FRAME_LENGTH:
            raise S7ProtocolError(f"request too large: {length} bytes (max {MAX_FRAME_LENGTH})")
        return struct.pack(">BBH", TPKT_VERSION, 0, length) + payload

    def _data_frame(self, payload: bytes) -> bytes:
        # COTP data transfer: header length 2, DT, end of TSDU
        return self.tpkt(struct.pack(">BBB", 2, COTPType.DT, 0x80) + payload)

    def _request(self, parameters: bytes, data: bytes = b"") -> bytes:
        length = FRAME_HEADER_SIZE + REQUEST_HEADER_SIZE + len(parameters) + len(data)
        if length > MAX_FRAME_LENGTH:
            raise S7ProtocolError(f"request too large: {length} bytes (max {MAX_FRAME_LENGTH})")
        header = struct.pack(
            ">BBHHHH",
            PROTOCOL_ID,  # Telegram ID
            S7PDUType.REQUEST,  # PDU type
            0x0000,  # AB-EX
            self._next_sequence(),  # Sequence
            len(parameters),  # Parameter length
            len(data),  # Data length
        )
        return self._data_frame(header + parameters + data)

    @staticmethod
    def item_spec(descriptor: ItemDescriptor, count: int) -> bytes:
        """
        Encode the 12 byte item specification.

        Byte 0: Specification type (0x12)
        Byte 1: Length of the following specification (0x0A)
        Byte 2: Syntax ID (0x10 = S7-Any)
        Byte 3: Word length
        Bytes 4-5: Element count
        Bytes 6-7: DB number
        Bytes 8-11: Area code and start address in bits
        """
        return struct.pack(
            ">BBBBHHI",
            0x12,
            0x0A,
            0x10,
            descriptor.spec.word_len,
            count,
            descriptor.db_number,
            (S7Area.DB << 24) | descriptor.bit_address,
        )

    @staticmethod
    def _check_item_count(count: int) -> None:
        if count > MAX_ITEMS:
            raise S7ProtocolError(f"too many items in one request: {count} (max {MAX_ITEMS})")

    def build_connection_request(self) -> bytes:
        """Build the COTP connection request carrying TPDU size and TSAPs."""
        parameters = struct.pack(
            ">BBBBBHBBH",
            0xC0,  # TPDU size
            1,
            TPDU_SIZE_1024,
            0xC1,  # Calling TSAP (local)
            2,
            self.local_tsap,
            0xC2,  # Called TSAP (remote)
            2,
            self.remote_tsap,
        )
        body = struct.pack(
            ">BHHB",
            COTPType.CR,  # PDU type
            0x0000,  # Destination reference
            0x0001,  # Source reference
            0x00,  # Class 0
        )
        pdu = body + parameters
        return self.tpkt(struct.pack(">B", len(pdu)) + pdu)

    def build_setup_communication(self, pdu_length: int = DEFAULT_PDU_LENGTH) -> bytes:
        """Build the setup communication request proposing 1/1 parallel jobs."""
        parameters = struct.pack(
            ">BBHHH",
            S7Function.SETUP_COMMUNICATION,  # Function code
            0x00,  # Reserved
            1,  # Max AMQ caller
            1,  # Max AMQ callee
            pdu_length,  # PDU length
        )
        return self._request(parameters)

    def build_read_request(self, descriptors: Sequence[ItemDescriptor]) -> bytes:
        """Build a multi-item read request."""
        self._check_item_count(len(descriptors))
        parameters = struct.pack(">BB", S7Function.READ_AREA, len(descriptors))
        parameters += b"".join(self.item_spec(d, d.read_count) for d in descriptors)
        return self._request(parameters)

    def build_write_request(self, items: Sequence[WriteItem]) -> bytes:
        """
        Build a multi-item write request.

        Each data item is a 4 byte header (reserved, transport size, length) and
        the value bytes; an odd-sized value is followed by one fill byte unless it
        is the last item.
        """
        self._check_item_count(len(items))
        parameters = struct.pack(">BB", S7Function.WRITE_AREA, len(items))
        data = bytearray()
        for index, item in enumerate(items):
            parameters += self.item_spec(item.descriptor, item.element_count)
            transport_size = item.descriptor.spec.transport_size
            size = len(item.data)
            length = size * 8 if transport_size.length_in_bits() else size
            if length > 0xFFFF:
                code = item.descriptor.code
                raise S7ValueError(f"item data too large for `{code}`: {size} bytes", code)
            data += struct.pack(">BBH", 0x00, transport_size, length)
            data += item.data
            if size % 2 and index != len(items) - 1:
                data.append(0x00)
        return self._request(parameters, bytes(data))


class PacketParser:
    """
    Validates and deserializes response frames.

    Args:
        codec: decodes read item data, a default codec when omitted.
    """

    def __init__(self, codec: Optional[ItemCodec] = None) -> None:
        self.codec = codec or ItemCodec()

    @staticmethod
    def check_tpkt(header: bytes) -> int:
        """Validate a TPKT header and return the total frame length."""
        if len(header) < TPKT_SIZE:
            raise S7ConnectionError("bad response: short TPKT header")
        version, _reserved, length = struct.unpack(">BBH", header[:TPKT_SIZE])
        if version != TPKT_VERSION:
            raise S7ConnectionError(f"bad response: bad protocol (TPKT version {version})")
        if length <= TPKT_SIZE:
            raise S7ConnectionError(f"bad response: invalid TPKT length {length}")
        return int(length)

    @staticmethod
    def cotp_type(frame: bytes) -> int:
        if len(frame) < TPKT_SIZE + 2:
            raise S7ProtocolError("bad response: short COTP header")
        return frame[TPKT_SIZE + 1]

    def parse_header(self, frame: bytes) -> Tuple[S7ResponseHeader, Cursor]:
        """Parse the response header after TPKT and COTP.

        Returns:
            the header and a cursor at the start of the parameters.

        Raises:
            S7ServerError: the header carries a non-zero error code.
        """
        self.check_tpkt(frame)
        cursor = Cursor(frame, FRAME_HEADER_SIZE)
        header = S7ResponseHeader(*cursor.unpack(">BBHHHHH"))
        if header.protocol_id != PROTOCOL_ID:
            raise S7ProtocolError(f"Invalid protocol ID: {header.protocol_id:#04x}")
        if header.error_code != 0:
            raise S7ServerError(header.error_code)
        logger.debug(f"Response header: {header}")
        return header, cursor

    def _parse_params(self, cursor: Cursor, function: S7Function, expected: int) -> None:
        function_code, item_count = cursor.unpack(">BB")
        if function_code != function:
            raise S7ProtocolError(f"bad response function code {function_code:#04x}, expected {function:#04x}")
        if item_count != expected:
            raise S7ItemCountMismatchError(expected, item_count)

    def parse_setup_communication(self, frame: bytes) -> int:
        """Parse the setup communication response and return the negotiated PDU length."""
        _header, cursor = self.parse_header(frame)
        function_code, _reserved, max_amq_caller, max_amq_callee, pdu_length = cursor.unpack(">BBHHH")
        if function_code != S7Function.SETUP_COMMUNICATION:
            raise S7ProtocolError(f"bad setup communication function code {function_code:#04x}")
        logger.debug(f"Negotiated AMQ {max_amq_caller}/{max_amq_callee}, PDU length {pdu_length}")
        return int(pdu_length)

    def parse_read_response(self, frame: bytes, descriptors: Sequence[ItemDescriptor]) -> List[Any]:
        """Parse a read response into one decoded value per descriptor."""
        _header, cursor = self.parse_header(frame)
        self._parse_params(cursor, S7Function.READ_AREA, len(descriptors))

        values = []
        last = len(descriptors) - 1
        for index, descriptor in enumerate(descriptors):
            return_code, transport_size, length = cursor.unpack(">BBH")
            if return_code != ITEM_OK:
                raise S7ItemStatusError("read", index, descriptor.code, return_code)
            if transport_size not in (TransportSize.OCTET, TransportSize.REAL, TransportSize.BIT):
                length //= 8  # bits to bytes
            segment = cursor.take(length)
            values.append(self.codec.decode(descriptor, segment))
            if length % 2 and index != last:
                cursor.skip(1)  # fill byte
        return values

    def parse_write_response(self, frame: bytes, descriptors: Sequence[ItemDescriptor]) -> None:
        """Check the per-item status bytes of a write response."""
        _header, cursor = self.parse_header(frame)
        self._parse_params(cursor, S7Function.WRITE_AREA, len(descriptors))
        for index, descriptor in enumerate(descriptors):
            (return_code,) = cursor.unpack(">B")
            if return_code != ITEM_OK:
                raise S7ItemStatusError("write", index, descriptor.code, return_code)
