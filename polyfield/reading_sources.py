# reading_sources.py
# Where the calibration engine gets its averaged readings from.
#
# The engine only knows the ReadingSource contract, so switching between the
# instrument and the demo simulator does not touch the calibration math.

import time

from polyfield.config import DEMO_CENTRE_DELAY, DEMO_EDGE_DELAY, DEMO_THROW_DELAY
from polyfield.logger_config import logger


class ReadingSource:
    """
    Contract for reading sources. `record` is the slot's CalibrationRecord snapshot.
    """
    name = 'base'
    requires_edge_verification = True

    def centre_reading(self, slot, record):
        raise NotImplementedError

    def edge_reading(self, slot, record):
        raise NotImplementedError

    def throw_reading(self, slot, record):
        raise NotImplementedError


class HardwareReadingSource(ReadingSource):
    """Every phase is a dual read from the instrument."""
    name = 'EDM'
    requires_edge_verification = True

    def __init__(self, protocol):
        self.protocol = protocol

    def centre_reading(self, slot, record):
        return self.protocol.get_reliable_reading(slot)

    def edge_reading(self, slot, record):
        return self.protocol.get_reliable_reading(slot)

    def throw_reading(self, slot, record):
        return self.protocol.get_reliable_reading(slot)


class DemoReadingSource(ReadingSource):
    """Simulated readings after a short delay that mimics the instrument."""
    name = 'DEMO'
    requires_edge_verification = False

    def __init__(self, simulator, centre_delay=DEMO_CENTRE_DELAY, edge_delay=DEMO_EDGE_DELAY,
                 throw_delay=DEMO_THROW_DELAY, sleep=time.sleep):
        self.simulator = simulator
        self.centre_delay = centre_delay
        self.edge_delay = edge_delay
        self.throw_delay = throw_delay
        self.sleep = sleep

    def centre_reading(self, slot, record):
        self.sleep(self.centre_delay)
        return self.simulator.centre_reading(slot)

    def edge_reading(self, slot, record):
        self.sleep(self.edge_delay)
        return self.simulator.edge_reading(slot, record.target_radius)

    def throw_reading(self, slot, record):
        self.sleep(self.throw_delay)
        logger.debug(f"DEMO: throw for {record.circle_type.value} circle ({record.target_radius:.4f}m)")
        return self.simulator.throw_reading(slot, record.target_radius, record.circle_type)
