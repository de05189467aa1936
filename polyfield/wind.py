# wind.py
# Wind gauge line parsing and background listener

import threading

from polyfield.errors import DeviceIOError
from polyfield.logger_config import logger


def parse_wind_line(line):
    """
    Extracts the signed wind value from a gauge line such as `A,+01.2,M`.
    Only field 1 with an explicit +/- prefix is accepted; anything else returns None.
    """
    parts = line.strip().split(',')
    if len(parts) > 1 and parts[1][:1] in ('+', '-'):
        try:
            return float(parts[1])
        except ValueError:
            return None
    return None


class WindListener(threading.Thread):
    """
    Reads lines from a connected wind slot until the slot's cancel event fires
    or the channel fails. Accepted values go into the shared wind buffer.
    """

    def __init__(self, state, device):
        super().__init__(name=f"wind-listener-{device.key}", daemon=True)
        self.state = state
        self.device = device

    def run(self):
        cancel = self.device.cancel_event
        logger.info(f"Wind listener started for {self.device.key}.")
        while not cancel.is_set():
            try:
                line = self.device.channel.readline(cancel_event=cancel)
            except DeviceIOError as e:
                if not cancel.is_set():
                    logger.warning(f"Wind listener for {self.device.key} stopped: {e}")
                break
            if line is None:
                break
            value = parse_wind_line(line)
            if value is None:
                logger.debug(f"Dropped wind line: {line.strip()!r}")
                continue
            with self.state.lock:
                self.state.wind.append(value)
        logger.info(f"Stopping wind listener for {self.device.key}")
