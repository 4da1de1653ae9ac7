"""
S7 server emulator.

Emulates the data blocks of a Siemens S7 PLC for testing and development:
accepts ISO on TCP connections, answers the setup communication request and
serves multi-item reads and writes on registered data blocks.
"""

import socket
import struct
import threading
import time
import logging
from types import TracebackType
from typing import Dict, List, Optional, Tuple, Type

from ..datatypes import S7Area, TransportSize, WordLen
from ..error import S7ConnectionError, S7ProtocolError
from ..s7protocol import (
    DEFAULT_PDU_LENGTH,
    FRAME_HEADER_SIZE,
    ITEM_OK,
    PROTOCOL_ID,
    TPKT_SIZE,
    COTPType,
    Cursor,
    PacketBuilder,
    PacketParser,
    S7Function,
    S7PDUType,
)

logger = logging.getLogger(__name__)

# Per-item return codes
ITEM_OUT_OF_RANGE = 0x05
ITEM_TYPE_NOT_SUPPORTED = 0x06
ITEM_NOT_FOUND = 0x0A

WORD_LEN_SIZE = {
    WordLen.BIT: 1,
    WordLen.BYTE: 1,
    WordLen.CHAR: 1,
    WordLen.WORD: 2,
    WordLen.DWORD: 4,
    WordLen.REAL: 4,
}

# (area, db number, word length, count, start bit address)
ItemSpec = Tuple[int, int, int, int, int]


def _response_transport_size(word_len: int) -> TransportSize:
    if word_len == WordLen.BIT:
        return TransportSize.BIT
    if word_len == WordLen.REAL:
        return TransportSize.REAL
    if word_len == WordLen.CHAR:
        return TransportSize.OCTET
    return TransportSize.BYTE


class Server:
    """
    S7 server emulator serving data blocks.

    Examples:
        >>> server = Server()
        >>> server.register_area(21, bytearray(100))
        >>> server.start(0)  # doctest: +SKIP
        >>> # ... connect clients to server.port
        >>> server.stop()  # doctest: +SKIP
    """

    def __init__(self, pdu_length: int = DEFAULT_PDU_LENGTH) -> None:
        self.server_socket: Optional[socket.socket] = None
        self.server_thread: Optional[threading.Thread] = None
        self.running = False
        self.port = 102
        self.host = "127.0.0.1"
        self.pdu_length = pdu_length

        # Data blocks
        self.memory_areas: Dict[int, bytearray] = {}
        self.area_locks: Dict[int, threading.Lock] = {}

        # Client connections
        self.clients: List[threading.Thread] = []
        self.client_lock = threading.Lock()

    def register_area(self, db_number: int, data: bytearray) -> None:
        """Serve ``data`` as data block ``db_number``; writes change it in place."""
        self.memory_areas[db_number] = data
        self.area_locks[db_number] = threading.Lock()
        logger.debug(f"Registered DB{db_number} ({len(data)} bytes)")

    def unregister_area(self, db_number: int) -> None:
        self.memory_areas.pop(db_number, None)
        self.area_locks.pop(db_number, None)

    def start(self, tcp_port: int = 102, host: Optional[str] = None) -> None:
        """
        Start listening. Port 0 picks a free port, available as :attr:`port`.

        Raises:
            S7ConnectionError: already running or the port can't be bound.
        """
        if self.running:
            raise S7ConnectionError("Server is already running")

        if host is not None:
            self.host = host
        self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        try:
            self.server_socket.bind((self.host, tcp_port))
            self.server_socket.listen(5)
        except OSError as e:
            self.server_socket.close()
            self.server_socket = None
            raise S7ConnectionError(f"Failed to start server on port {tcp_port}: {e}") from e

        self.port = self.server_socket.getsockname()[1]
        self.running = True
        self.server_thread = threading.Thread(target=self._server_loop, daemon=True)
        self.server_thread.start()
        logger.info(f"S7 Server started on {self.host}:{self.port}")

    def stop(self) -> None:
        """Stop listening and wait for the accept loop to end."""
        if not self.running:
            return
        self.running = False
        if self.server_socket:
            self.server_socket.close()
            self.server_socket = None
        if self.server_thread:
            self.server_thread.join(timeout=2.0)
            self.server_thread = None
        logger.info("S7 Server stopped")

    def _server_loop(self) -> None:
        """Main server loop to accept client connections."""
        while self.running and self.server_socket:
            try:
                self.server_socket.settimeout(0.5)
                client_socket, address = self.server_socket.accept()
            except socket.timeout:
                continue  # Check running flag again
            except OSError:
                if self.running:
                    logger.warning("Server socket error in accept loop")
                break

            logger.info(f"Client connected from {address}")
            client_thread = threading.Thread(target=self._handle_client, args=(client_socket, address), daemon=True)
            with self.client_lock:
                self.clients.append(client_thread)
            client_thread.start()

    def _handle_client(self, client_socket: socket.socket, address: Tuple[str, int]) -> None:
        """Handle a single client connection."""
        connection = ServerISOConnection(client_socket)
        try:
            if not connection.accept_connection():
                logger.warning(f"Failed to establish ISO connection with {address}")
                return

            while self.running:
                try:
                    request = connection.receive_data()
                except socket.timeout:
                    continue
                except (ConnectionError, S7ConnectionError):
                    logger.info(f"Client {address} disconnected")
                    break
                except S7ProtocolError as e:
                    logger.error(f"Bad frame from {address}: {e}")
                    break

                try:
                    response = self.process_request(request)
                    connection.send_data(response)
                except S7ProtocolError as e:
                    logger.error(f"Bad request from {address}: {e}")
                    break
        except OSError as e:
            logger.error(f"Client handler error for {address}: {e}")
        finally:
            client_socket.close()
            with self.client_lock:
                current_thread = threading.current_thread()
                if current_thread in self.clients:
                    self.clients.remove(current_thread)
            logger.info(f"Client {address} handler finished")

    def process_request(self, pdu: bytes) -> bytes:
        """
        Answer one S7 request PDU (S7 header onwards, without TPKT and COTP).

        Raises:
            S7ProtocolError: the request can't be parsed.
        """
        cursor = Cursor(pdu)
        protocol_id, pdu_type, _reserved, sequence, param_len, data_len = cursor.unpack(">BBHHHH")
        if protocol_id != PROTOCOL_ID or pdu_type != S7PDUType.REQUEST:
            raise S7ProtocolError(f"Unsupported PDU: protocol {protocol_id:#04x}, type {pdu_type:#04x}")

        params = Cursor(cursor.take(param_len))
        data = Cursor(cursor.take(data_len))
        (function_code,) = params.unpack(">B")

        if function_code == S7Function.SETUP_COMMUNICATION:
            return self._handle_setup_communication(sequence, params)
        if function_code == S7Function.READ_AREA:
            return self._handle_read_area(sequence, self._parse_item_specs(params))
        if function_code == S7Function.WRITE_AREA:
            return self._handle_write_area(sequence, self._parse_item_specs(params), data)

        logger.warning(f"Unsupported function code: {function_code:#04x}")
        return self._response(sequence, b"", error_code=0x8104)

    @staticmethod
    def _response(sequence: int, parameters: bytes, data: bytes = b"", error_code: int = 0) -> bytes:
        header = struct.pack(
            ">BBHHHHH",
            PROTOCOL_ID,
            S7PDUType.RESPONSE,
            0x0000,
            sequence,  # Sequence (echo)
            len(parameters),
            len(data),
            error_code,
        )
        return header + parameters + data

    def _handle_setup_communication(self, sequence: int, params: Cursor) -> bytes:
        _reserved, max_amq_caller, max_amq_callee, pdu_length = params.unpack(">BHHH")
        parameters = struct.pack(
            ">BBHHH",
            S7Function.SETUP_COMMUNICATION,
            0x00,
            max_amq_caller,
            max_amq_callee,
            min(pdu_length, self.pdu_length),
        )
        return self._response(sequence, parameters)

    @staticmethod
    def _parse_item_specs(params: Cursor) -> List[ItemSpec]:
        (item_count,) = params.unpack(">B")
        items = []
        for _ in range(item_count):
            _spec_type, _length, _syntax_id, word_len, count, db_number, address = params.unpack(">BBBBHHI")
            items.append((address >> 24, db_number, word_len, count, address & 0xFFFFFF))
        return items

    def _locate(self, item: ItemSpec) -> Tuple[int, Optional[bytearray], int]:
        """Check an item against the registered data blocks.

        Returns:
            the item return code, the data block and the number of bytes the item covers.
        """
        area, db_number, word_len, count, address = item
        if area != S7Area.DB or db_number not in self.memory_areas:
            return ITEM_NOT_FOUND, None, 0
        if word_len not in WORD_LEN_SIZE:
            return ITEM_TYPE_NOT_SUPPORTED, None, 0
        block = self.memory_areas[db_number]
        if word_len == WordLen.BIT:
            end = (address + count - 1) // 8 + 1
            size = count
        else:
            size = WORD_LEN_SIZE[WordLen(word_len)] * count
            end = address // 8 + size
        if end > len(block):
            return ITEM_OUT_OF_RANGE, None, 0
        return ITEM_OK, block, size

    def _handle_read_area(self, sequence: int, items: List[ItemSpec]) -> bytes:
        data = bytearray()
        for index, item in enumerate(items):
            _area, db_number, word_len, count, address = item
            return_code, block, size = self._locate(item)
            if block is None:
                data += struct.pack(">BBH", return_code, 0x00, 0)
                continue

            with self.area_locks[db_number]:
                if word_len == WordLen.BIT:
                    value = bytes((block[(address + i) // 8] >> ((address + i) % 8)) & 1 for i in range(count))
                else:
                    value = bytes(block[address // 8 : address // 8 + size])

            transport_size = _response_transport_size(word_len)
            length = size * 8 if transport_size.length_in_bits() else size
            data += struct.pack(">BBH", ITEM_OK, transport_size, length) + value
            if size % 2 and index != len(items) - 1:
                data.append(0x00)
            logger.debug(f"Read {size} bytes from DB{db_number} at bit address {address}")

        parameters = struct.pack(">BB", S7Function.READ_AREA, len(items))
        return self._response(sequence, parameters, bytes(data))

    def _handle_write_area(self, sequence: int, items: List[ItemSpec], data: Cursor) -> bytes:
        return_codes = bytearray()
        for index, item in enumerate(items):
            _area, db_number, word_len, count, address = item
            _reserved, transport_size, length = data.unpack(">BBH")
            if transport_size not in (TransportSize.OCTET, TransportSize.REAL, TransportSize.BIT):
                length //= 8
            value = data.take(length)
            if length % 2 and index != len(items) - 1:
                data.skip(1)

            return_code, block, size = self._locate(item)
            if block is not None and size != length:
                return_code, block = ITEM_OUT_OF_RANGE, None
            if block is None:
                return_codes.append(return_code)
                continue

            with self.area_locks[db_number]:
                if word_len == WordLen.BIT:
                    for i, bit in enumerate(value):
                        byte_index, bit_index = divmod(address + i, 8)
                        if bit:
                            block[byte_index] |= 1 << bit_index
                        else:
                            block[byte_index] &= ~(1 << bit_index) & 0xFF
                else:
                    block[address // 8 : address // 8 + size] = value
            return_codes.append(ITEM_OK)
            logger.debug(f"Wrote {size} bytes to DB{db_number} at bit address {address}")

        parameters = struct.pack(">BB", S7Function.WRITE_AREA, len(items))
        return self._response(sequence, parameters, bytes(return_codes))

    def __enter__(self) -> "Server":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.stop()


class ServerISOConnection:
    """ISO connection wrapper for server-side communication."""

    def __init__(self, client_socket: socket.socket):
        self.socket = client_socket
        self.socket.settimeout(5.0)
        self.parser = PacketParser()

    def accept_connection(self) -> bool:
        """Answer the COTP connection request with a connection confirm."""
        try:
            request = self._receive()
        except (OSError, S7ConnectionError) as e:
            logger.error(f"Error accepting ISO connection: {e}")
            return False

        if self.parser.cotp_type(request) != COTPType.CR:
            logger.error(f"Expected COTP CR, got {self.parser.cotp_type(request):#04x}")
            return False

        (src_ref,) = struct.unpack(">H", request[TPKT_SIZE + 4 : TPKT_SIZE + 6])
        confirm = struct.pack(
            ">BBHHB",
            6,  # PDU length
            COTPType.CC,  # PDU type
            src_ref,  # Destination reference (client's source ref)
            0x0001,  # Source reference
            0x00,  # Class/option
        )
        self.socket.sendall(PacketBuilder.tpkt(confirm))
        logger.debug("ISO connection established")
        return True

    def receive_data(self) -> bytes:
        """Receive one data transfer frame and return the S7 PDU."""
        frame = self._receive()
        if self.parser.cotp_type(frame) != COTPType.DT:
            raise S7ConnectionError(f"Expected COTP DT, got {self.parser.cotp_type(frame):#04x}")
        return frame[FRAME_HEADER_SIZE:]

    def send_data(self, data: bytes) -> None:
        """Send an S7 PDU in a data transfer frame."""
        self.socket.sendall(PacketBuilder.tpkt(struct.pack(">BBB", 2, COTPType.DT, 0x80) + data))

    def _receive(self) -> bytes:
        header = self._recv_exact(TPKT_SIZE)
        length = self.parser.check_tpkt(header)
        return header + self._recv_exact(length - TPKT_SIZE)

    def _recv_exact(self, size: int) -> bytes:
        """Receive exactly the specified number of bytes."""
        data = bytearray()

        while len(data) < size:
            chunk = self.socket.recv(size - len(data))
            if not chunk:
                raise ConnectionResetError("Connection closed by peer")
            data.extend(chunk)

        return bytes(data)


def mainloop(tcp_port: int = 1102, db_numbers: Tuple[int, ...] = (1,), db_size: int = 1024) -> None:
    """
    Run a server with zeroed data blocks until interrupted.

    Args:
        tcp_port: Port that the server will listen on
        db_numbers: data blocks to register
        db_size: size of each data block in bytes
    """
    server = Server()
    for db_number in db_numbers:
        server.register_area(db_number, bytearray(db_size))

    server.start(tcp_port, host="0.0.0.0")

    try:
        logger.info(f"S7 server emulator running on port {server.port}")
        logger.info("Press Ctrl+C to stop")

        while True:
            time.sleep(1)

    except KeyboardInterrupt:
        logger.info("Stopping server...")
    finally:
        server.stop()
