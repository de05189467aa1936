# demo_simulation.py
# Geometry-consistent synthetic EDM readings for demo mode

import math
import random

from polyfield.config import (
    DEMO_STATION_DISTANCE, DEMO_THROW_RANGES
)
from polyfield.data_structures import AveragedReading, CircleType, DemoSimState, Point2D
from polyfield.logger_config import logger

SD_NOISE_M = 0.005
THROW_SD_NOISE_M = 0.01
ANGLE_NOISE_DEG = 0.05
EDGE_RADIUS_VARIATION_M = 0.004
EDGE_VAZ_VARIATION_DEG = 1.0
THROW_VAZ_VARIATION_DEG = 1.5
THROW_SECTOR_HALF_ANGLE = math.pi / 6  # ±30° from forward


def reading_towards(station, point, vertical_angle_deg):
    """
    Exact EDM reading a station would report when sighting `point` at the given
    vertical angle. Inverse of calibration.absolute_position.
    """
    dx = point.x - station.x
    dy = point.y - station.y
    horizontal_distance = math.hypot(dx, dy)
    har_deg = math.degrees(math.atan2(dy, dx))
    if har_deg < 0:
        har_deg += 360.0
    slope_distance_m = horizontal_distance / math.sin(math.radians(vertical_angle_deg))
    return AveragedReading(
        slope_distance_mm=slope_distance_m * 1000.0,
        vertical_angle_deg=vertical_angle_deg,
        horizontal_angle_deg=har_deg,
    )


class DemoSimulator:
    """
    Keeps one simulated station per slot so centre, edge and throw readings
    describe the same field geometry until the slot is reset.
    """

    def __init__(self, state, rng=None):
        self.state = state
        self.rng = rng or random.Random()

    def _noise(self, half_width):
        return (self.rng.random() - 0.5) * 2.0 * half_width

    def _with_noise(self, reading, sd_noise_m=None):
        if sd_noise_m is None:
            sd_noise_m = SD_NOISE_M
        return AveragedReading(
            slope_distance_mm=reading.slope_distance_mm + self._noise(sd_noise_m) * 1000.0,
            vertical_angle_deg=reading.vertical_angle_deg + self._noise(ANGLE_NOISE_DEG),
            horizontal_angle_deg=reading.horizontal_angle_deg + self._noise(ANGLE_NOISE_DEG),
        )

    def _sim_for(self, slot):
        # caller holds state.lock
        sim = self.state.demo_sims.get(slot)
        if sim is None:
            distance = self.rng.uniform(*DEMO_STATION_DISTANCE)
            angle = self.rng.random() * 2 * math.pi
            sim = DemoSimState(station_x=distance * math.cos(angle), station_y=distance * math.sin(angle))
            self.state.demo_sims[slot] = sim
            logger.info(f"DEMO: Initialized simulation for {slot} with station at "
                        f"X={sim.station_x:.4f}m, Y={sim.station_y:.4f}m")
        return sim

    def station_for(self, slot):
        with self.state.lock:
            return self._sim_for(slot)

    def reset(self, slot=None):
        with self.state.lock:
            if slot is None:
                self.state.demo_sims.clear()
            else:
                self.state.demo_sims.pop(slot, None)

    def centre_reading(self, slot):
        with self.state.lock:
            sim = self._sim_for(slot)
            station = sim.station

        vaz_deg = self.rng.uniform(88.0, 92.0)
        reading = self._with_noise(reading_towards(station, Point2D(0.0, 0.0), vaz_deg))

        with self.state.lock:
            sim.last_centre_reading = reading
        logger.info(f"DEMO: Generated centre reading - SD: {reading.slope_distance_mm:.0f}mm, "
                    f"VAz: {reading.vertical_angle_deg:.4f}°, HAR: {reading.horizontal_angle_deg:.4f}°")
        return reading

    def _baseline(self, slot):
        with self.state.lock:
            sim = self.state.demo_sims.get(slot)
            centre = sim.last_centre_reading if sim is not None else None
        if centre is None:
            logger.warning(f"DEMO: No centre reading found for {slot}, generating fallback")
            centre = self.centre_reading(slot)
            with self.state.lock:
                sim = self.state.demo_sims[slot]
        return sim.station, centre.vertical_angle_deg

    def edge_reading(self, slot, target_radius):
        station, vaz_baseline = self._baseline(slot)

        effective_radius = target_radius + self._noise(EDGE_RADIUS_VARIATION_M)
        edge_angle = self.rng.random() * 2 * math.pi
        edge = Point2D(effective_radius * math.cos(edge_angle), effective_radius * math.sin(edge_angle))

        vaz_deg = vaz_baseline + self._noise(EDGE_VAZ_VARIATION_DEG)
        reading = self._with_noise(reading_towards(station, edge, vaz_deg))
        logger.info(f"DEMO: Edge point at X={edge.x:.4f}m, Y={edge.y:.4f}m (radius: {effective_radius:.4f}m)")
        return reading

    def throw_reading(self, slot, target_radius, circle_type):
        station, vaz_baseline = self._baseline(slot)

        min_throw, max_throw = DEMO_THROW_RANGES[CircleType(circle_type).value]
        throw_distance = self.rng.uniform(min_throw, max_throw)
        from_centre = throw_distance + target_radius
        throw_angle = self._noise(THROW_SECTOR_HALF_ANGLE)
        landing = Point2D(from_centre * math.cos(throw_angle), from_centre * math.sin(throw_angle))

        vaz_deg = vaz_baseline + self._noise(THROW_VAZ_VARIATION_DEG)
        reading = self._with_noise(reading_towards(station, landing, vaz_deg), THROW_SD_NOISE_M)
        logger.info(f"DEMO: Throw landing at X={landing.x:.4f}m, Y={landing.y:.4f}m "
                    f"(expected distance: {throw_distance:.2f}m)")
        return reading
