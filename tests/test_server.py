import struct
import unittest
from unittest import mock

import pytest

from s7plc.address import parse_address
from s7plc.codec import ItemCodec
from s7plc.error import S7ConnectionError, S7ProtocolError
from s7plc.s7protocol import FRAME_HEADER_SIZE, PacketBuilder
from s7plc.server import Server


def item_request(function: int, word_len: int, area: int = 0x84, db_number: int = 1) -> bytes:
    params = struct.pack(">BBBBBBHHI", function, 1, 0x12, 0x0A, 0x10, word_len, 1, db_number, area << 24)
    return struct.pack(">BBHHHH", 0x32, 0x01, 0, 7, len(params), 0) + params


@pytest.mark.server
class TestProcessRequest(unittest.TestCase):
    def setUp(self) -> None:
        self.server = Server()
        self.block = bytearray(16)
        self.server.register_area(1, self.block)
        self.builder = PacketBuilder()
        self.codec = ItemCodec()

    def test_setup_communication(self) -> None:
        request = self.builder.build_setup_communication(240)[FRAME_HEADER_SIZE:]
        response = self.server.process_request(request)
        self.assertEqual(bytes.fromhex("32030000" "0001" "0008" "0000" "0000" "f000" "0001" "0001" "00f0"), response)

    def test_setup_communication_caps_pdu_length(self) -> None:
        request = self.builder.build_setup_communication(960)[FRAME_HEADER_SIZE:]
        self.assertEqual(b"\x01\xe0", self.server.process_request(request)[-2:])

    def test_read(self) -> None:
        self.block[2:4] = b"\x12\x34"
        request = self.builder.build_read_request([parse_address("DB1.2:uint16")])[FRAME_HEADER_SIZE:]
        response = self.server.process_request(request)
        self.assertEqual(b"\x04\x01", response[12:14])
        self.assertEqual(bytes.fromhex("ff040010" "1234"), response[14:])

    def test_write(self) -> None:
        item = self.codec.prepare_write(parse_address("DB1.4:int32"), -1)
        request = self.builder.build_write_request([item])[FRAME_HEADER_SIZE:]
        response = self.server.process_request(request)
        self.assertEqual(b"\x05\x01\xff", response[12:])
        self.assertEqual(b"\xff\xff\xff\xff", self.block[4:8])

    def test_sequence_is_echoed(self) -> None:
        response = self.server.process_request(item_request(0x04, 0x02))
        self.assertEqual(7, struct.unpack(">H", response[4:6])[0])

    def test_unknown_area(self) -> None:
        response = self.server.process_request(item_request(0x04, 0x02, area=0x83))
        self.assertEqual(0x0A, response[14])

    def test_unknown_data_block(self) -> None:
        response = self.server.process_request(item_request(0x04, 0x02, db_number=2))
        self.assertEqual(0x0A, response[14])

    def test_unsupported_word_length(self) -> None:
        response = self.server.process_request(item_request(0x04, 0x1C))
        self.assertEqual(0x06, response[14])

    def test_unsupported_function(self) -> None:
        response = self.server.process_request(item_request(0x29, 0x02))
        self.assertEqual(0x8104, struct.unpack(">H", response[10:12])[0])

    def test_bad_protocol_id(self) -> None:
        request = b"\x33" + item_request(0x04, 0x02)[1:]
        self.assertRaises(S7ProtocolError, self.server.process_request, request)

    def test_truncated_request(self) -> None:
        self.assertRaises(S7ProtocolError, self.server.process_request, item_request(0x04, 0x02)[:-3])

    def test_unregister_area(self) -> None:
        self.server.unregister_area(1)
        response = self.server.process_request(item_request(0x04, 0x02))
        self.assertEqual(0x0A, response[14])


@pytest.mark.server
class TestServerLifecycle:
    def test_free_port(self) -> None:
        with Server() as server:
            server.start(0)
            assert server.running
            assert server.port != 0
        assert not server.running

    def test_start_twice(self) -> None:
        server = Server()
        server.start(0)
        try:
            with pytest.raises(S7ConnectionError):
                server.start(0)
        finally:
            server.stop()


@pytest.mark.server
class TestCommandLine:
    def setup_method(self) -> None:
        click_testing = pytest.importorskip("click.testing")
        from s7plc.server.__main__ import main

        self.runner = click_testing.CliRunner()
        self.main = main

    def test_help(self) -> None:
        result = self.runner.invoke(self.main, ["--help"])
        assert result.exit_code == 0
        assert "--db-size" in result.output

    def test_options(self) -> None:
        with mock.patch("s7plc.server.__main__.mainloop") as mainloop:
            result = self.runner.invoke(self.main, ["-p", "1234", "--db", "1", "--db", "21", "--db-size", "128"])
        assert result.exit_code == 0, result.output
        mainloop.assert_called_once_with(1234, db_numbers=(1, 21), db_size=128)

    def test_defaults(self) -> None:
        with mock.patch("s7plc.server.__main__.mainloop") as mainloop:
            result = self.runner.invoke(self.main, [])
        assert result.exit_code == 0, result.output
        mainloop.assert_called_once_with(1102, db_numbers=(1,), db_size=1024)
