# scoreboard.py
# Fire-and-forget writes to the scoreboard slot

import threading

from polyfield.config import SCOREBOARD_SLOT, SCOREBOARD_LINE_END
from polyfield.errors import NotConnectedError, PolyFieldError
from polyfield.logger_config import logger


class ScoreboardSink:
    def __init__(self, state, slot=SCOREBOARD_SLOT):
        self.state = state
        self.slot = slot

    def write(self, value):
        """
        Writes one line to the scoreboard. Raises NotConnectedError or DeviceIOError;
        in demo mode only logs the value.
        """
        with self.state.lock:
            demo_mode = self.state.demo_mode
            device = self.state.devices.get(self.slot)
        if demo_mode:
            logger.info(f"DEMO: Would send '{value}' to scoreboard")
            return
        if device is None:
            raise NotConnectedError(self.slot)
        device.channel.write(value.encode('utf-8') + SCOREBOARD_LINE_END)
        logger.debug(f"Sent '{value}' to scoreboard ({device.address}).")

    def _write_logged(self, value):
        try:
            self.write(value)
        except NotConnectedError:
            logger.debug(f"Scoreboard not connected, '{value}' not sent.")
        except PolyFieldError as e:
            logger.error(f"Failed to write to scoreboard: {e}")

    def send(self, value):
        thread = threading.Thread(target=self._write_logged, args=(value,),
                                  name="scoreboard-send", daemon=True)
        thread.start()
        return thread
