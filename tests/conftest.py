"""Shared fakes for engine tests."""

import collections
import queue
import random
import time

import pytest

from polyfield.connection_manager import Channel
from polyfield.engine_app import PolyFieldEngine


class FakeChannel(Channel):
    """
    In-memory channel: `feed` queues incoming bytes, writes are recorded.
    `reply` scripts answers that arrive one per write, the way an EDM answers a trigger.
    """

    def __init__(self, address="fake", kind="serial", responses=()):
        super().__init__(address)
        self.kind = kind
        self.incoming = queue.Queue()
        self.replies = collections.deque()
        self.written = []
        for response in responses:
            self.feed(response)

    def feed(self, data):
        self.incoming.put(data.encode("ascii") if isinstance(data, str) else data)

    def reply(self, *lines):
        self.replies.extend(lines)

    def _read_chunk(self):
        try:
            return self.incoming.get(timeout=0.01)
        except queue.Empty:
            return b""

    def _discard_pending(self):
        discarded = 0
        while True:
            try:
                discarded += len(self.incoming.get_nowait())
            except queue.Empty:
                return discarded

    def _write(self, data):
        self.written.append(data)
        if self.replies:
            self.feed(self.replies.popleft())

    def _close(self):
        pass


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class ChannelFactory:
    """Stands in for SerialChannel/NetworkChannel; remembers every channel it opened."""

    def __init__(self, kind):
        self.kind = kind
        self.opened = []

    def __call__(self, *address):
        channel = FakeChannel(":".join(str(a) for a in address), kind=self.kind)
        self.opened.append(channel)
        return channel


@pytest.fixture
def serial_factory():
    return ChannelFactory("serial")


@pytest.fixture
def network_factory():
    return ChannelFactory("network")


@pytest.fixture
def engine(serial_factory, network_factory):
    eng = PolyFieldEngine(rng=random.Random(1234), read_delay=0,
                          serial_factory=serial_factory, network_factory=network_factory)
    eng.demo_source.sleep = lambda seconds: None
    yield eng
    eng.shutdown()
