# edm_protocol.py
# EDM response grammar and the dual-read consistency protocol

import random
import time

from polyfield.config import (
    EDM_READ_COMMAND, EDM_READ_TIMEOUT, SD_TOLERANCE_MM,
    DELAY_BETWEEN_READS, DEMO_RANDOM_READING
)
from polyfield.data_structures import ParsedReading, AveragedReading
from polyfield.errors import ResponseParseError, InconsistentReadingError, DeviceIOError
from polyfield.logger_config import logger

# ============================
# Parsing
# ============================


def parse_angle(angle_str):
    """
    Converts a [D]DDMMSS angle string to decimal degrees.
    A 6-character string is left-padded to DDDMMSS.
    """
    if len(angle_str) < 6 or len(angle_str) > 7:
        raise ResponseParseError(
            f"invalid angle string length: got {len(angle_str)} for '{angle_str}'", token=angle_str)
    if not angle_str.isdigit():
        raise ResponseParseError(f"non-numeric angle '{angle_str}'", token=angle_str)
    if len(angle_str) == 6:
        angle_str = '0' + angle_str

    ddd = int(angle_str[0:3])
    mm = int(angle_str[3:5])
    ss = int(angle_str[5:7])
    if mm >= 60 or ss >= 60:
        raise ResponseParseError(f"invalid angle values (MM or SS >= 60) in '{angle_str}'", token=angle_str)
    return ddd + mm / 60.0 + ss / 3600.0


def parse_response(raw):
    """
    Parses `<sd_mm> <vaz DDDMMSS> <har DDDMMSS> <...>` into a ParsedReading.
    Fields past the third are ignored, but at least four must be present.
    """
    if isinstance(raw, bytes):
        raw = raw.decode('ascii', errors='ignore')
    parts = raw.strip().split()
    if len(parts) < 4:
        raise ResponseParseError(f"malformed response, got {len(parts)} parts", field_count=len(parts))
    try:
        slope_distance = float(parts[0])
    except ValueError as e:
        raise ResponseParseError(f"invalid slope distance '{parts[0]}'", token=parts[0]) from e
    return ParsedReading(
        slope_distance_mm=slope_distance,
        vertical_angle_deg=parse_angle(parts[1]),
        horizontal_angle_deg=parse_angle(parts[2]),
    )


# ============================
# Reading protocol
# ============================


def trigger_single_read(device):
    """Sends the trigger command to a DeviceSlot and parses the single-line answer."""
    device.channel.reset_input()
    device.channel.write(EDM_READ_COMMAND)
    timeout = EDM_READ_TIMEOUT if device.kind == 'network' else None
    line = device.channel.readline(timeout=timeout, cancel_event=device.cancel_event)
    if line is None:
        raise DeviceIOError(f"{device.key}: connection replaced during read")
    logger.debug(f"[{device.key}] EDM response: {line.strip()!r}")
    return parse_response(line)


def average_readings(first, second, tolerance_mm=SD_TOLERANCE_MM):
    if abs(first.slope_distance_mm - second.slope_distance_mm) > tolerance_mm:
        raise InconsistentReadingError(first.slope_distance_mm, second.slope_distance_mm)
    return AveragedReading(
        slope_distance_mm=(first.slope_distance_mm + second.slope_distance_mm) / 2.0,
        vertical_angle_deg=(first.vertical_angle_deg + second.vertical_angle_deg) / 2.0,
        horizontal_angle_deg=(first.horizontal_angle_deg + second.horizontal_angle_deg) / 2.0,
    )


def random_demo_reading(rng=random):
    sd = DEMO_RANDOM_READING['slope_distance_mm']
    vaz = DEMO_RANDOM_READING['vertical_angle_deg']
    har = DEMO_RANDOM_READING['horizontal_angle_deg']
    return AveragedReading(
        slope_distance_mm=rng.uniform(*sd),
        vertical_angle_deg=rng.uniform(*vaz),
        horizontal_angle_deg=rng.uniform(*har),
    )


class ReadingProtocol:
    """Dual-read consistency check on top of the connection manager."""

    def __init__(self, state, connections, delay=DELAY_BETWEEN_READS, rng=None):
        self.state = state
        self.connections = connections
        self.delay = delay
        self.rng = rng or random.Random()

    def get_reliable_reading(self, slot):
        with self.state.lock:
            demo_mode = self.state.demo_mode
        if demo_mode:
            return random_demo_reading(self.rng)

        device = self.connections.get_slot(slot)

        try:
            first = trigger_single_read(device)
        except (DeviceIOError, ResponseParseError) as e:
            logger.error(f"First read failed for {slot}: {e}")
            raise

        time.sleep(self.delay)

        try:
            second = trigger_single_read(device)
        except (DeviceIOError, ResponseParseError) as e:
            logger.error(f"Second read failed for {slot}: {e}")
            raise

        reading = average_readings(first, second)
        logger.info(f"Averaged EDM reading for {slot} - SD: {reading.slope_distance_mm:.0f}mm, "
                    f"VAz: {reading.vertical_angle_deg:.4f}°, HAR: {reading.horizontal_angle_deg:.4f}°")
        return reading
