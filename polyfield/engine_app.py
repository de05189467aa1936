# engine_app.py
# Combines connections, reading protocol, calibration, wind and scoreboard
# into the operation surface used by the user interface.

import random

from polyfield.calibration import CalibrationEngine
from polyfield.config import DEMO_WIND_RANGE, WIND_WINDOW_SECONDS
from polyfield.connection_manager import ConnectionManager, SerialChannel, NetworkChannel
from polyfield.data_structures import EngineState
from polyfield.demo_simulation import DemoSimulator
from polyfield.edm_protocol import ReadingProtocol
from polyfield.errors import NotConnectedError
from polyfield.logger_config import logger
from polyfield.reading_sources import HardwareReadingSource, DemoReadingSource
from polyfield.scoreboard import ScoreboardSink


class PolyFieldEngine:
    """
    One instance per process. All shared state lives in `self.state` and is
    guarded by its lock; blocking device I/O always happens outside it.
    """

    def __init__(self, state=None, rng=None, read_delay=None,
                 serial_factory=SerialChannel, network_factory=NetworkChannel):
        self.state = state or EngineState()
        self.rng = rng or random.Random()

        self.scoreboard = ScoreboardSink(self.state)
        self.connections = ConnectionManager(self.state, scoreboard=self.scoreboard,
                                             serial_factory=serial_factory,
                                             network_factory=network_factory)
        protocol_kwargs = {} if read_delay is None else {'delay': read_delay}
        self.protocol = ReadingProtocol(self.state, self.connections, rng=self.rng, **protocol_kwargs)
        self.simulator = DemoSimulator(self.state, rng=self.rng)

        self.hardware_source = HardwareReadingSource(self.protocol)
        self.demo_source = DemoReadingSource(self.simulator)
        self.calibration = CalibrationEngine(self.state, self._current_source, scoreboard=self.scoreboard)

    def _current_source(self):
        with self.state.lock:
            demo_mode = self.state.demo_mode
        return self.demo_source if demo_mode else self.hardware_source

    # ----------------------------
    # Demo mode
    # ----------------------------

    def set_demo_mode(self, enabled):
        with self.state.lock:
            self.state.demo_mode = bool(enabled)
        self.simulator.reset()
        self.calibration.clear_centres()
        logger.info(f"Demo mode {'enabled' if enabled else 'disabled'}.")

    def is_demo_mode(self):
        with self.state.lock:
            return self.state.demo_mode

    # ----------------------------
    # Connections
    # ----------------------------

    def connect_serial(self, slot, port_name):
        return self.connections.connect_serial(slot, port_name)

    def connect_network(self, slot, host, port):
        return self.connections.connect_network(slot, host, port)

    def disconnect(self, slot):
        return self.connections.disconnect(slot)

    # ----------------------------
    # EDM and calibration
    # ----------------------------

    def get_reliable_reading(self, slot):
        return self.protocol.get_reliable_reading(slot)

    def get_calibration(self, slot):
        return self.calibration.get_calibration(slot)

    def save_calibration(self, slot, circle_type, target_radius=None):
        return self.calibration.save_calibration(slot, circle_type, target_radius)

    def reset_calibration(self, slot):
        self.calibration.reset_calibration(slot)

    def set_circle_centre(self, slot):
        return self.calibration.set_circle_centre(slot)

    def verify_circle_edge(self, slot):
        return self.calibration.verify_circle_edge(slot)

    def measure_throw(self, slot):
        return self.calibration.measure_throw(slot)

    def debug_calibration(self, slot):
        self.calibration.debug_calibration(slot)

    # ----------------------------
    # Wind and scoreboard
    # ----------------------------

    def measure_wind(self, slot):
        with self.state.lock:
            if self.state.demo_mode:
                average = self.rng.uniform(*DEMO_WIND_RANGE)
            elif slot not in self.state.devices:
                raise NotConnectedError(slot)
            else:
                average = self.state.wind.average(WIND_WINDOW_SECONDS)
        result = f"{average:+.1f} m/s"
        logger.info(f"Wind for {slot}: {result}")
        self.scoreboard.send(result)
        return result

    def send_to_scoreboard(self, value):
        self.scoreboard.write(value)

    def shutdown(self):
        self.connections.close_all()
        logger.info("PolyField engine has been shut down.")
