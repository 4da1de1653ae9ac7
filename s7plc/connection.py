"""
ISO on TCP connection management (RFC 1006).

Owns the TCP socket, runs the COTP connect handshake and the S7 PDU length
negotiation once per connection, and exchanges request and response frames.
"""

import socket
import logging
from enum import Enum
from typing import Optional, Tuple

from .error import S7ConnectionError, S7HandshakeError, S7TimeoutError
from .s7protocol import (
    DEFAULT_PDU_LENGTH,
    TPKT_SIZE,
    COTPType,
    PacketBuilder,
    PacketParser,
)

logger = logging.getLogger(__name__)

DEFAULT_PORT = 102
DEFAULT_TIMEOUT = 3.0


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    COTP_CONNECTED = "cotp_connected"
    PDU_NEGOTIATED = "pdu_negotiated"


def parse_endpoint(address: str, default_port: int = DEFAULT_PORT) -> Tuple[str, int]:
    """
    Split ``host`` or ``host:port`` into its parts.

    Examples:
        >>> parse_endpoint("192.168.1.101")
        ('192.168.1.101', 102)
        >>> parse_endpoint("192.168.1.101:1102")
        ('192.168.1.101', 1102)
    """
    host, sep, port = address.rpartition(":")
    if not sep:
        return address, default_port
    if not host or not port.isdigit():
        raise S7ConnectionError(f"bad plc address: `{address}`")
    return host, int(port)


class ConnectionManager:
    """
    A single ISO on TCP conversation with a PLC.

    The connection is opened lazily: the first :meth:`exchange` (or an explicit
    :meth:`connect`) opens the socket, sends the COTP connection request and
    negotiates the PDU length. Requests are strictly sequential; sharing one
    connection between threads is undefined unless the caller serializes access.

    Args:
        host: PLC host name or IP address
        port: TCP port (default 102 for S7)
        connect_timeout: TCP connect timeout in seconds
        read_timeout: receive timeout in seconds
        builder: frames the handshake requests
        parser: validates the handshake responses
        pdu_length: PDU length proposed during negotiation
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        connect_timeout: float = DEFAULT_TIMEOUT,
        read_timeout: float = DEFAULT_TIMEOUT,
        builder: Optional[PacketBuilder] = None,
        parser: Optional[PacketParser] = None,
        pdu_length: int = DEFAULT_PDU_LENGTH,
    ) -> None:
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.builder = builder or PacketBuilder()
        self.parser = parser or PacketParser()
        self.requested_pdu_length = pdu_length
        self.pdu_length = pdu_length
        self.socket: Optional[socket.socket] = None
        self.state = ConnectionState.DISCONNECTED

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.PDU_NEGOTIATED

    def connect(self) -> None:
        """Open the connection and negotiate, unless that already happened."""
        if self.connected:
            return

        try:
            self._tcp_connect()
            self._iso_connect()
            self._negotiate_pdu_length()
        except Exception:
            self.close()
            raise

        logger.info(f"Connected to {self.host}:{self.port}, PDU size: {self.pdu_length}")

    def close(self) -> None:
        """Close the socket. The next exchange reconnects."""
        if self.socket:
            try:
                self.socket.close()
            except OSError as e:
                logger.warning(f"Error closing connection to {self.host}:{self.port}: {e}")
            finally:
                self.socket = None
                logger.info(f"Disconnected from {self.host}:{self.port}")
        self.state = ConnectionState.DISCONNECTED
        self.pdu_length = self.requested_pdu_length

    def exchange(self, request: bytes) -> bytes:
        """
        Send one request frame and receive one response frame.

        Connects first when needed. Any transport error closes the connection.

        Returns:
            the complete response frame, TPKT header included

        Raises:
            S7TimeoutError: no complete response within the read timeout
            S7ConnectionError: the connection failed or the peer closed it
        """
        self.connect()
        return self._send_receive(request)

    def _send_receive(self, request: bytes) -> bytes:
        try:
            self._send(request)
            return self._receive()
        except S7ConnectionError:
            self.close()
            raise

    def _tcp_connect(self) -> None:
        """Establish TCP connection."""
        try:
            self.socket = socket.create_connection((self.host, self.port), timeout=self.connect_timeout)
        except socket.timeout as e:
            raise S7TimeoutError(f"fail to open tcp connection to `{self.host}:{self.port}`: connect timeout") from e
        except OSError as e:
            raise S7ConnectionError(f"fail to open tcp connection to `{self.host}:{self.port}`: {e}") from e
        self.socket.settimeout(self.read_timeout)
        logger.debug(f"TCP connected to {self.host}:{self.port}")

    def _iso_connect(self) -> None:
        """Send the COTP connection request and expect a connection confirm."""
        response = self._send_receive(self.builder.build_connection_request())
        pdu_type = self.parser.cotp_type(response)
        if pdu_type != COTPType.CC:
            raise S7HandshakeError(f"Expected COTP CC, got {pdu_type:#04x}")
        self.state = ConnectionState.COTP_CONNECTED
        logger.debug("Received COTP Connection Confirm")

    def _negotiate_pdu_length(self) -> None:
        """Send the setup communication request and record the PDU length."""
        response = self._send_receive(self.builder.build_setup_communication(self.requested_pdu_length))
        pdu_type = self.parser.cotp_type(response)
        if pdu_type != COTPType.DT:
            raise S7HandshakeError(f"Expected COTP DT, got {pdu_type:#04x}")
        self.pdu_length = self.parser.parse_setup_communication(response)
        self.state = ConnectionState.PDU_NEGOTIATED

    def _send(self, data: bytes) -> None:
        if self.socket is None:
            raise S7ConnectionError("Not connected")
        try:
            self.socket.sendall(data)
            logger.debug(f"Sent {len(data)} bytes")
        except socket.timeout as e:
            raise S7TimeoutError("Send timeout") from e
        except OSError as e:
            raise S7ConnectionError(f"Send failed: {e}") from e

    def _receive(self) -> bytes:
        """Receive one complete TPKT frame."""
        header = self._recv_exact(TPKT_SIZE)
        length = self.parser.check_tpkt(header)
        frame = header + self._recv_exact(length - TPKT_SIZE)
        logger.debug(f"Received {len(frame)} bytes")
        return frame

    def _recv_exact(self, size: int) -> bytes:
        """
        Receive exactly the specified number of bytes.

        Raises:
            S7ConnectionError: If connection is lost
            S7TimeoutError: If timeout occurs
        """
        if self.socket is None:
            raise S7ConnectionError("Not connected")

        data = bytearray()
        while len(data) < size:
            try:
                chunk = self.socket.recv(size - len(data))
            except socket.timeout as e:
                raise S7TimeoutError("read timeout or receive null response") from e
            except OSError as e:
                raise S7ConnectionError(f"Receive error: {e}") from e
            if not chunk:
                raise S7ConnectionError("read timeout or receive null response")
            data.extend(chunk)

        return bytes(data)

    def __enter__(self) -> "ConnectionManager":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
