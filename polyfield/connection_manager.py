# connection_manager.py
# Serial / TCP channels and the per-slot connection table

import socket
import time

import serial

from polyfield.config import (
    SERIAL_BAUDRATE, NETWORK_DIAL_TIMEOUT, CHANNEL_POLL_INTERVAL,
    WIND_SLOT, SCOREBOARD_SLOT, SCOREBOARD_SENTINEL
)
from polyfield.data_structures import DeviceSlot
from polyfield.errors import DeviceConnectionError, DeviceIOError, NotConnectedError
from polyfield.logger_config import logger
from polyfield.wind import WindListener

# ============================
# Channels
# ============================


class Channel:
    """
    Byte channel to one device. Subclasses provide `_read_chunk` (returns b'' when
    nothing arrived within the poll interval), `_write` and `_close`.
    """
    kind = None

    def __init__(self, address):
        self.address = address
        self._buffer = bytearray()
        self._closed = False

    @property
    def closed(self):
        return self._closed

    def write(self, data: bytes):
        if self._closed:
            raise DeviceIOError(f"{self.address}: channel closed")
        try:
            self._write(data)
        except OSError as e:
            raise DeviceIOError(f"{self.address}: write failed: {e}") from e

    def reset_input(self):
        """Drops buffered and pending input so the next line answers the next request."""
        if self._closed:
            return
        stale = len(self._buffer)
        self._buffer.clear()
        try:
            stale += self._discard_pending()
        except DeviceIOError:
            raise
        except OSError as e:
            raise DeviceIOError(f"{self.address}: input reset failed: {e}") from e
        if stale:
            logger.debug(f"[{self.address}] discarded {stale} stale bytes")

    def _discard_pending(self):
        return 0

    def readline(self, timeout=None, cancel_event=None):
        """
        Returns one newline-terminated line (decoded, terminator kept).
        Returns None if `cancel_event` is set before a full line arrives.
        `timeout` is an overall deadline in seconds; None waits for the line framing.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            index = self._buffer.find(b'\n')
            if index != -1:
                line = bytes(self._buffer[:index + 1])
                del self._buffer[:index + 1]
                return line.decode('ascii', errors='ignore')
            if cancel_event is not None and cancel_event.is_set():
                return None
            if self._closed:
                raise DeviceIOError(f"{self.address}: channel closed")
            if deadline is not None and time.monotonic() >= deadline:
                raise DeviceIOError(f"{self.address}: read timed out after {timeout:g}s")
            try:
                chunk = self._read_chunk()
            except DeviceIOError:
                raise
            except OSError as e:
                if self._closed:
                    raise DeviceIOError(f"{self.address}: channel closed") from e
                raise DeviceIOError(f"{self.address}: read failed: {e}") from e
            if chunk:
                self._buffer.extend(chunk)
                logger.debug(f"[{self.address}] received bytes: {chunk.hex()}")

    def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            self._close()
        except OSError as e:
            logger.error(f"Error closing {self.address}: {e}")


class SerialChannel(Channel):
    kind = 'serial'

    def __init__(self, port_name, baudrate=SERIAL_BAUDRATE, poll_interval=CHANNEL_POLL_INTERVAL):
        super().__init__(port_name)
        try:
            self.ser = serial.Serial(port_name, baudrate, timeout=poll_interval)
        except (serial.SerialException, ValueError) as e:
            raise DeviceConnectionError(f"could not open serial port {port_name}: {e}") from e
        logger.info(f"Serial port {port_name} opened at {baudrate} baud.")

    def _read_chunk(self):
        if not self.ser.is_open:
            raise DeviceIOError(f"{self.address}: port closed")
        return self.ser.read(self.ser.in_waiting or 1)

    def _discard_pending(self):
        pending = self.ser.in_waiting
        self.ser.reset_input_buffer()
        return pending

    def _write(self, data):
        self.ser.write(data)
        self.ser.flush()

    def _close(self):
        if self.ser.is_open:
            self.ser.close()


class NetworkChannel(Channel):
    kind = 'network'

    def __init__(self, host, port, dial_timeout=NETWORK_DIAL_TIMEOUT, poll_interval=CHANNEL_POLL_INTERVAL):
        super().__init__(f"{host}:{port}")
        try:
            self.sock = socket.create_connection((host, int(port)), timeout=dial_timeout)
        except OSError as e:
            raise DeviceConnectionError(f"could not connect to {self.address}: {e}") from e
        self.poll_interval = poll_interval
        self.sock.settimeout(poll_interval)
        logger.info(f"TCP connection to {self.address} established.")

    def _read_chunk(self):
        try:
            data = self.sock.recv(1024)
        except socket.timeout:
            return b''
        if not data:
            raise DeviceIOError(f"{self.address}: connection closed by peer")
        return data

    def _discard_pending(self):
        discarded = 0
        self.sock.setblocking(False)
        try:
            while True:
                try:
                    data = self.sock.recv(1024)
                except (BlockingIOError, InterruptedError):
                    break
                if not data:
                    raise DeviceIOError(f"{self.address}: connection closed by peer")
                discarded += len(data)
        finally:
            self.sock.settimeout(self.poll_interval)
        return discarded

    def _write(self, data):
        self.sock.sendall(data)

    def _close(self):
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()


# ============================
# Connection manager
# ============================


class ConnectionManager:
    """At most one live channel per device slot; reconnecting replaces (and closes) the old one."""

    def __init__(self, state, scoreboard=None, serial_factory=SerialChannel, network_factory=NetworkChannel):
        self.state = state
        self.scoreboard = scoreboard
        self.serial_factory = serial_factory
        self.network_factory = network_factory

    def connect_serial(self, slot, port_name):
        device = self._connect(slot, lambda: self.serial_factory(port_name))
        return f"Connected to {slot} on {device.address}"

    def connect_network(self, slot, host, port):
        device = self._connect(slot, lambda: self.network_factory(host, port))
        return f"Connected to {slot} at {device.address}"

    def _connect(self, slot, open_channel):
        with self.state.lock:
            previous = self.state.devices.pop(slot, None)
            if previous is not None:
                previous.close()
                logger.info(f"Closed previous {previous.kind} connection for {slot} ({previous.address}).")

        channel = open_channel()
        device = DeviceSlot(key=slot, channel=channel, kind=channel.kind, address=channel.address)

        with self.state.lock:
            raced = self.state.devices.pop(slot, None)
            if raced is not None:
                raced.close()
            self.state.devices[slot] = device
            if slot == WIND_SLOT:
                self.state.wind.clear()
                device.listener = WindListener(self.state, device)
                device.listener.start()

        logger.info(f"Connected to {slot} via {device.kind} ({device.address}).")
        if slot == SCOREBOARD_SLOT and self.scoreboard is not None:
            self.scoreboard.send(SCOREBOARD_SENTINEL)
        return device

    def disconnect(self, slot):
        with self.state.lock:
            device = self.state.devices.pop(slot, None)
            if device is None:
                raise NotConnectedError(slot)
            device.close()
        logger.info(f"Disconnected {slot} ({device.address}).")
        return f"Disconnected {slot}"

    def get_slot(self, slot):
        with self.state.lock:
            device = self.state.devices.get(slot)
        if device is None or device.channel.closed:
            raise NotConnectedError(slot)
        return device

    def is_connected(self, slot):
        with self.state.lock:
            device = self.state.devices.get(slot)
            return device is not None and not device.channel.closed

    def connected_slots(self):
        with self.state.lock:
            return {key: (d.kind, d.address) for key, d in self.state.devices.items()}

    def close_all(self):
        with self.state.lock:
            for key, device in self.state.devices.items():
                device.close()
                logger.info(f"Closed {key} ({device.address}).")
            self.state.devices.clear()
