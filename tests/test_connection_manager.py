"""Tests for channels and the per-slot connection table."""

import select
import socket
import threading

import pytest
import serial

from polyfield.connection_manager import NetworkChannel, SerialChannel
from polyfield.errors import (
    DeviceConnectionError, DeviceIOError, NotConnectedError, SlotNotFoundError
)

from conftest import FakeChannel, wait_for


def test_connect_serial_records_slot(engine, serial_factory):
    message = engine.connect_serial("circleA", "COM3")

    assert message == "Connected to circleA on COM3"
    assert engine.connections.is_connected("circleA")
    assert engine.connections.connected_slots() == {"circleA": ("serial", "COM3")}


def test_connect_network_records_address(engine):
    message = engine.connect_network("circleA", "192.168.0.10", 4001)

    assert message == "Connected to circleA at 192.168.0.10:4001"
    assert engine.connections.connected_slots()["circleA"] == ("network", "192.168.0.10:4001")


def test_reconnect_closes_previous_handle(engine, serial_factory, network_factory):
    engine.connect_serial("circleA", "COM3")
    first = serial_factory.opened[0]

    engine.connect_network("circleA", "10.0.0.5", 4001)

    assert first.closed
    assert engine.connections.get_slot("circleA").channel is network_factory.opened[0]


def test_disconnect_closes_and_forgets_slot(engine, serial_factory):
    engine.connect_serial("circleA", "COM3")

    assert engine.disconnect("circleA") == "Disconnected circleA"
    assert serial_factory.opened[0].closed
    assert not engine.connections.is_connected("circleA")


def test_disconnect_unknown_slot_fails(engine):
    with pytest.raises(NotConnectedError) as exc_info:
        engine.disconnect("circleA")
    assert isinstance(exc_info.value, SlotNotFoundError)
    assert isinstance(exc_info.value, ConnectionError)


def test_failed_open_keeps_slot_empty(engine):
    def refuse(*args):
        raise DeviceConnectionError("port busy")

    engine.connections.serial_factory = refuse
    with pytest.raises(DeviceConnectionError):
        engine.connect_serial("circleA", "COM9")
    assert not engine.connections.is_connected("circleA")


def test_scoreboard_connect_sends_sentinel(engine, serial_factory):
    engine.connect_serial("scoreboard", "COM5")
    channel = serial_factory.opened[0]

    assert wait_for(lambda: channel.written == [b"88:88\r\n"])


def test_shutdown_closes_everything(engine, serial_factory, network_factory):
    engine.connect_serial("circleA", "COM3")
    engine.connect_network("wind", "10.0.0.7", 2000)
    listener = engine.connections.get_slot("wind").listener

    engine.shutdown()

    assert serial_factory.opened[0].closed
    assert network_factory.opened[0].closed
    assert engine.connections.connected_slots() == {}
    listener.join(timeout=2.0)
    assert not listener.is_alive()


def test_readline_keeps_remainder_for_next_call():
    channel = FakeChannel(responses=["first\nsec", "ond\n"])
    assert channel.readline() == "first\n"
    assert channel.readline() == "second\n"


def test_readline_cancelled_returns_none():
    channel = FakeChannel()
    cancel = threading.Event()
    cancel.set()
    assert channel.readline(cancel_event=cancel) is None


def test_readline_on_closed_channel_fails():
    channel = FakeChannel()
    channel.close()
    with pytest.raises(DeviceIOError):
        channel.readline()
    with pytest.raises(DeviceIOError):
        channel.write(b"x")


def test_serial_channel_open_failure(monkeypatch):
    def fail(*args, **kwargs):
        raise serial.SerialException("could not open port COM99")

    monkeypatch.setattr(serial, "Serial", fail)
    with pytest.raises(DeviceConnectionError):
        SerialChannel("COM99")


def test_network_channel_dial_failure(monkeypatch):
    def fail(*args, **kwargs):
        raise socket.timeout("timed out")

    monkeypatch.setattr(socket, "create_connection", fail)
    with pytest.raises(DeviceConnectionError):
        NetworkChannel("10.255.255.1", 4001)


def test_network_channel_round_trip():
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(1)
    host, port = server.getsockname()
    received = []

    def serve():
        conn, _ = server.accept()
        with conn:
            received.append(conn.recv(3))
            conn.sendall(b"15234 0883015 1801530 0\n")

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    channel = NetworkChannel(host, port)
    try:
        channel.write(b"\x11\r\n")
        line = channel.readline(timeout=5.0)
    finally:
        channel.close()
        server.close()
    thread.join(timeout=2.0)

    assert received == [b"\x11\r\n"]
    assert line == "15234 0883015 1801530 0\n"
    assert channel.kind == "network"
    assert channel.address == f"{host}:{port}"


def test_reset_input_drops_buffered_remainder():
    channel = FakeChannel(responses=["first\nleft", "over\n"])
    assert channel.readline() == "first\n"

    channel.reset_input()
    channel.feed("fresh\n")

    assert channel.readline() == "fresh\n"


def test_serial_reset_input_flushes_port(monkeypatch):
    class PortStub:
        is_open = True
        in_waiting = 7

        def __init__(self, *args, **kwargs):
            self.flushed = 0

        def reset_input_buffer(self):
            self.flushed += 1

    monkeypatch.setattr(serial, "Serial", PortStub)
    channel = SerialChannel("COM3")

    channel.reset_input()

    assert channel.ser.flushed == 1


def test_network_reset_input_drains_socket():
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(1)
    host, port = server.getsockname()
    received = []

    def serve():
        conn, _ = server.accept()
        with conn:
            conn.sendall(b"10000 0900000 0000000 0\n")
            received.append(conn.recv(3))
            conn.sendall(b"20000 0900000 0000000 0\n")

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    channel = NetworkChannel(host, port)
    try:
        readable, _, _ = select.select([channel.sock], [], [], 5.0)
        assert readable
        channel.reset_input()
        channel.write(b"\x11\r\n")
        line = channel.readline(timeout=5.0)
    finally:
        channel.close()
        server.close()
    thread.join(timeout=2.0)

    assert received == [b"\x11\r\n"]
    assert line == "20000 0900000 0000000 0\n"
