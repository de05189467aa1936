# data_structures.py
# Shared data structures and buffers

import math
import re
import threading
import time
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from polyfield.config import (
    RADIUS_SHOT, RADIUS_DISCUS, RADIUS_HAMMER, RADIUS_JAVELIN_ARC,
    WIND_BUFFER_SIZE, WIND_WINDOW_SECONDS
)
from polyfield.errors import NoWindDataError

# ============================
# Circle types
# ============================


class CircleType(str, Enum):
    SHOT = 'SHOT'
    DISCUS = 'DISCUS'
    HAMMER = 'HAMMER'
    JAVELIN_ARC = 'JAVELIN_ARC'

    @property
    def official_radius(self) -> float:
        return OFFICIAL_RADII[self]


OFFICIAL_RADII = {
    CircleType.SHOT: RADIUS_SHOT,
    CircleType.DISCUS: RADIUS_DISCUS,
    CircleType.HAMMER: RADIUS_HAMMER,
    CircleType.JAVELIN_ARC: RADIUS_JAVELIN_ARC,
}

# ============================
# EDM readings
# ============================


@dataclass(frozen=True)
class ParsedReading:
    slope_distance_mm: float
    vertical_angle_deg: float
    horizontal_angle_deg: float


@dataclass(frozen=True)
class AveragedReading:
    slope_distance_mm: float
    vertical_angle_deg: float
    horizontal_angle_deg: float


@dataclass(frozen=True)
class Point2D:
    x: float = 0.0
    y: float = 0.0

    def __add__(self, other):
        return Point2D(self.x + other.x, self.y + other.y)

    def norm(self) -> float:
        return math.hypot(self.x, self.y)


# ============================
# Calibration record
# ============================


@dataclass(frozen=True)
class EdgeVerificationResult:
    measured_radius: float
    difference_mm: float
    in_tolerance: bool
    tolerance_applied_mm: float

    def to_dict(self):
        return {
            "measuredRadius": self.measured_radius,
            "differenceMm": self.difference_mm,
            "isInTolerance": self.in_tolerance,
            "toleranceAppliedMm": self.tolerance_applied_mm,
        }


_FRACTION = re.compile(r"(?<=:\d\d)\.(\d+)")


def parse_timestamp(value):
    """
    RFC 3339 timestamp as written by the console: a trailing Z is read as UTC and
    fractional seconds are cut to microseconds.
    """
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    match = _FRACTION.search(value)
    if match:
        value = value[:match.start()] + "." + match.group(1)[:6].ljust(6, "0") + value[match.end():]
    return datetime.fromisoformat(value)


@dataclass
class CalibrationRecord:
    """
    Per-slot calibration. Instances held in EngineState are never mutated in place;
    the calibration engine works on a copy and swaps it in under the lock.
    """
    device_id: str
    circle_type: CircleType = CircleType.SHOT
    target_radius: float = RADIUS_SHOT
    station_coordinates: Point2D = field(default_factory=Point2D)
    is_centre_set: bool = False
    edge_verification: Optional[EdgeVerificationResult] = None
    timestamp: Optional[datetime] = None

    def copy(self):
        return replace(self)

    @property
    def is_calibrated(self) -> bool:
        return (self.is_centre_set
                and self.edge_verification is not None
                and self.edge_verification.in_tolerance)

    def to_dict(self):
        data = {
            "deviceId": self.device_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "selectedCircleType": self.circle_type.value,
            "targetRadius": self.target_radius,
            "stationCoordinates": {"x": self.station_coordinates.x,
                                   "y": self.station_coordinates.y},
            "isCentreSet": self.is_centre_set,
        }
        if self.edge_verification is not None:
            data["edgeVerificationResult"] = self.edge_verification.to_dict()
        return data

    @classmethod
    def from_dict(cls, data):
        edge = data.get("edgeVerificationResult")
        station = data.get("stationCoordinates") or {}
        timestamp = data.get("timestamp")
        return cls(
            device_id=data["deviceId"],
            circle_type=CircleType(data.get("selectedCircleType", CircleType.SHOT.value)),
            target_radius=float(data.get("targetRadius", RADIUS_SHOT)),
            station_coordinates=Point2D(float(station.get("x", 0.0)), float(station.get("y", 0.0))),
            is_centre_set=bool(data.get("isCentreSet", False)),
            edge_verification=EdgeVerificationResult(
                measured_radius=float(edge["measuredRadius"]),
                difference_mm=float(edge["differenceMm"]),
                in_tolerance=bool(edge["isInTolerance"]),
                tolerance_applied_mm=float(edge["toleranceAppliedMm"]),
            ) if edge else None,
            timestamp=parse_timestamp(timestamp) if timestamp else None,
        )


# ============================
# Wind buffer
# ============================


@dataclass(frozen=True)
class WindSample:
    value: float
    timestamp: float


class WindBuffer:
    """Bounded ring of wind samples. Callers hold the engine lock."""

    def __init__(self, capacity=WIND_BUFFER_SIZE, clock=time.time):
        self.samples = deque(maxlen=capacity)
        self.clock = clock

    def append(self, value, timestamp=None):
        self.samples.append(WindSample(value, self.clock() if timestamp is None else timestamp))

    def average(self, window_s=WIND_WINDOW_SECONDS, now=None):
        now = self.clock() if now is None else now
        cutoff = now - window_s
        in_window = [s.value for s in self.samples if s.timestamp > cutoff]
        if not in_window:
            raise NoWindDataError(f"no wind readings in the last {window_s:g} seconds")
        return sum(in_window) / len(in_window)

    def clear(self):
        self.samples.clear()

    def __len__(self):
        return len(self.samples)


# ============================
# Device slots and demo state
# ============================


@dataclass
class DeviceSlot:
    key: str
    channel: object
    kind: str
    address: str
    cancel_event: threading.Event = field(default_factory=threading.Event)
    listener: Optional[threading.Thread] = None

    def close(self):
        self.cancel_event.set()
        self.channel.close()


@dataclass
class DemoSimState:
    station_x: float
    station_y: float
    last_centre_reading: Optional[AveragedReading] = None

    @property
    def station(self) -> Point2D:
        return Point2D(self.station_x, self.station_y)


@dataclass
class EngineState:
    """Everything shared between callers and background threads, guarded by `lock`."""
    lock: threading.Lock = field(default_factory=threading.Lock)
    devices: Dict[str, DeviceSlot] = field(default_factory=dict)
    calibrations: Dict[str, CalibrationRecord] = field(default_factory=dict)
    wind: WindBuffer = field(default_factory=WindBuffer)
    demo_sims: Dict[str, DemoSimState] = field(default_factory=dict)
    demo_mode: bool = False
