import socket
import unittest
from unittest import mock

import pytest

from s7plc.connection import ConnectionManager, ConnectionState, parse_endpoint
from s7plc.error import S7ConnectionError, S7HandshakeError, S7TimeoutError
from s7plc.s7protocol import PacketBuilder

from utilities import FakeSocket, connection_confirm, data_frame, response_header, setup_response


class TimeoutSocket(FakeSocket):
    def recv(self, size):
        raise socket.timeout("timed out")


@pytest.mark.connection
class TestConnectionManager(unittest.TestCase):
    def setUp(self) -> None:
        patcher = mock.patch("s7plc.connection.socket.create_connection")
        self.create_connection = patcher.start()
        self.addCleanup(patcher.stop)
        self.connection = ConnectionManager("plc.local", read_timeout=1.5)

    def use(self, sock: FakeSocket) -> FakeSocket:
        self.create_connection.return_value = sock
        return sock

    def test_handshake(self) -> None:
        sock = self.use(FakeSocket(connection_confirm(), setup_response(240)))
        self.connection.connect()

        self.create_connection.assert_called_once_with(("plc.local", 102), timeout=3.0)
        self.assertEqual(1.5, sock.timeout)
        self.assertEqual(2, len(sock.sent))
        self.assertEqual(PacketBuilder().build_connection_request(), sock.sent[0])
        self.assertEqual(bytes.fromhex("f0000001000101e0"), sock.sent[1][-8:])
        self.assertEqual(240, self.connection.pdu_length)
        self.assertEqual(ConnectionState.PDU_NEGOTIATED, self.connection.state)
        self.assertTrue(self.connection.connected)

    def test_connect_is_idempotent(self) -> None:
        self.use(FakeSocket(connection_confirm(), setup_response()))
        self.connection.connect()
        self.connection.connect()
        self.create_connection.assert_called_once()

    def test_expected_connection_confirm(self) -> None:
        sock = self.use(FakeSocket(setup_response()))
        self.assertRaises(S7HandshakeError, self.connection.connect)
        self.assertTrue(sock.closed)
        self.assertEqual(ConnectionState.DISCONNECTED, self.connection.state)

    def test_expected_setup_response(self) -> None:
        sock = self.use(FakeSocket(connection_confirm(), connection_confirm()))
        self.assertRaises(S7HandshakeError, self.connection.connect)
        self.assertTrue(sock.closed)
        self.assertFalse(self.connection.connected)

    def test_empty_response(self) -> None:
        sock = self.use(FakeSocket())
        with self.assertRaises(S7ConnectionError) as context:
            self.connection.connect()
        self.assertIn("null response", str(context.exception))
        self.assertTrue(sock.closed)

    def test_read_timeout(self) -> None:
        self.use(TimeoutSocket())
        self.assertRaises(S7TimeoutError, self.connection.connect)
        self.assertIsNone(self.connection.socket)

    def test_connection_refused(self) -> None:
        self.create_connection.side_effect = ConnectionRefusedError("refused")
        with self.assertRaises(S7ConnectionError) as context:
            self.connection.connect()
        self.assertIn("plc.local:102", str(context.exception))

    def test_connect_timeout(self) -> None:
        self.create_connection.side_effect = socket.timeout("timed out")
        self.assertRaises(S7TimeoutError, self.connection.connect)

    def test_bad_tpkt_version(self) -> None:
        self.use(FakeSocket(b"\x02\x00\x00\x16" + bytes(18)))
        self.assertRaises(S7ConnectionError, self.connection.connect)

    def test_exchange(self) -> None:
        response = data_frame(response_header(2, 1) + b"\x05\x01\xff")
        sock = self.use(FakeSocket(connection_confirm(), setup_response(), response))
        self.assertEqual(response, self.connection.exchange(b"request"))
        self.assertEqual(b"request", sock.sent[2])

    def test_exchange_failure_closes(self) -> None:
        sock = self.use(FakeSocket(connection_confirm(), setup_response(240)))
        self.assertRaises(S7ConnectionError, self.connection.exchange, b"request")
        self.assertTrue(sock.closed)
        self.assertFalse(self.connection.connected)
        self.assertEqual(480, self.connection.pdu_length)

    def test_reconnect_after_close(self) -> None:
        self.use(FakeSocket(connection_confirm(), setup_response()))
        self.connection.connect()
        self.connection.close()
        self.use(FakeSocket(connection_confirm(), setup_response()))
        self.connection.connect()
        self.assertEqual(2, self.create_connection.call_count)

    def test_context_manager(self) -> None:
        sock = self.use(FakeSocket(connection_confirm(), setup_response()))
        with self.connection as connection:
            connection.connect()
        self.assertTrue(sock.closed)


@pytest.mark.connection
@pytest.mark.parametrize(
    "address, expected",
    [("192.168.1.101", ("192.168.1.101", 102)), ("192.168.1.101:1102", ("192.168.1.101", 1102)), ("plc", ("plc", 102))],
)
def test_parse_endpoint(address, expected) -> None:
    assert parse_endpoint(address) == expected


@pytest.mark.connection
@pytest.mark.parametrize("address", [":102", "plc:", "plc:port"])
def test_parse_endpoint_invalid(address) -> None:
    with pytest.raises(S7ConnectionError):
        parse_endpoint(address)
