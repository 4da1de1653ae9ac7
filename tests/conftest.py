import logging

import pytest

from s7plc.client import S7Client
from s7plc.server import Server

logging.basicConfig(level=logging.WARNING)

markers = {
    "datatypes": "type table tests",
    "address": "address parser tests",
    "codec": "value conversion tests",
    "protocol": "packet builder and parser tests",
    "connection": "handshake and transport tests",
    "client": "client tests against the server emulator",
    "server": "server emulator tests",
}


def pytest_configure(config):
    for name, description in markers.items():
        config.addinivalue_line("markers", f"{name}: {description}")


@pytest.fixture
def server():
    server = Server()
    server.register_area(1, bytearray(64))
    server.register_area(21, bytearray(256))
    server.start(0)
    yield server
    server.stop()


@pytest.fixture
def address(server):
    return f"127.0.0.1:{server.port}"


@pytest.fixture
def client(address):
    client = S7Client(address)
    yield client
    client.close()
