# calibration.py
# Circle calibration state machine: set centre -> verify edge -> measure throw

import math
from dataclasses import replace
from datetime import datetime, timezone

from polyfield.config import TOLERANCE_THROWS_CIRCLE_MM, TOLERANCE_JAVELIN_MM
from polyfield.data_structures import (
    CalibrationRecord, CircleType, EdgeVerificationResult, Point2D
)
from polyfield.errors import CalibrationPreconditionError
from polyfield.logger_config import logger

# ============================
# Geometry
# ============================


def horizontal_offset(reading):
    """Station -> target offset in the horizontal plane, in meters."""
    sd_meters = reading.slope_distance_mm / 1000.0
    vaz_rad = math.radians(reading.vertical_angle_deg)
    har_rad = math.radians(reading.horizontal_angle_deg)
    horizontal_distance = sd_meters * math.sin(vaz_rad)
    return Point2D(horizontal_distance * math.cos(har_rad), horizontal_distance * math.sin(har_rad))


def station_from_centre_reading(reading):
    """The centre is the origin, so the station sits at minus the sighted offset."""
    offset = horizontal_offset(reading)
    return Point2D(-offset.x, -offset.y)


def absolute_position(station, reading):
    return station + horizontal_offset(reading)


def tolerance_for(circle_type):
    if CircleType(circle_type) is CircleType.JAVELIN_ARC:
        return TOLERANCE_JAVELIN_MM
    return TOLERANCE_THROWS_CIRCLE_MM


def verify_edge(station, reading, target_radius, circle_type):
    edge = absolute_position(station, reading)
    measured_radius = edge.norm()
    # rounded to the nanometre so an exact boundary is not lost to float noise
    diff_mm = round((measured_radius - target_radius) * 1000.0, 6)
    tolerance_mm = tolerance_for(circle_type)
    return EdgeVerificationResult(
        measured_radius=measured_radius,
        difference_mm=diff_mm,
        in_tolerance=abs(diff_mm) <= tolerance_mm,
        tolerance_applied_mm=tolerance_mm,
    )


# ============================
# Engine
# ============================


class CalibrationEngine:
    """
    Owns the per-slot calibration records in EngineState.calibrations.
    Stored records are replaced, never mutated, so a failed reading leaves
    the previous record untouched.
    """

    def __init__(self, state, source_for, scoreboard=None):
        self.state = state
        self.source_for = source_for
        self.scoreboard = scoreboard

    def _stored(self, slot):
        # caller holds state.lock
        return self.state.calibrations.get(slot)

    def get_calibration(self, slot):
        with self.state.lock:
            record = self._stored(slot)
        return record.copy() if record is not None else CalibrationRecord(device_id=slot)

    def save_calibration(self, slot, circle_type, target_radius=None):
        circle_type = CircleType(circle_type)
        if target_radius is None:
            target_radius = circle_type.official_radius
        target_radius = float(target_radius)
        if target_radius <= 0:
            raise ValueError(f"target radius must be positive, got {target_radius}")

        with self.state.lock:
            current = self._stored(slot) or CalibrationRecord(device_id=slot)
            if current.circle_type is circle_type and current.target_radius == target_radius:
                updated = current
            else:
                updated = replace(current, circle_type=circle_type, target_radius=target_radius,
                                  station_coordinates=Point2D(), is_centre_set=False,
                                  edge_verification=None)
                self.state.demo_sims.pop(slot, None)
            self.state.calibrations[slot] = updated

        logger.info(f"Saved calibration for {slot}: {circle_type.value} ({target_radius:.4f}m)")
        return updated.copy()

    def reset_calibration(self, slot):
        with self.state.lock:
            self.state.calibrations.pop(slot, None)
            self.state.demo_sims.pop(slot, None)
        logger.info(f"Calibration for {slot} reset.")

    def clear_centres(self):
        """Drops centre and edge results from every record; the station has to be re-sighted."""
        with self.state.lock:
            stale = [slot for slot, record in self.state.calibrations.items() if record.is_centre_set]
            for slot in stale:
                self.state.calibrations[slot] = replace(
                    self.state.calibrations[slot], station_coordinates=Point2D(),
                    is_centre_set=False, edge_verification=None)
        for slot in stale:
            logger.warning(f"Centre for {slot} cleared, set the circle centre again.")
        return stale

    def set_circle_centre(self, slot):
        with self.state.lock:
            record = self._stored(slot) or CalibrationRecord(device_id=slot)
        source = self.source_for()

        reading = source.centre_reading(slot, record)
        logger.info(f"{source.name} Centre reading for {record.circle_type.value} circle "
                    f"({record.target_radius:.4f}m) - SD: {reading.slope_distance_mm:.0f}mm, "
                    f"VAz: {reading.vertical_angle_deg:.4f}°, HAR: {reading.horizontal_angle_deg:.4f}°")

        station = station_from_centre_reading(reading)
        logger.info(f"Calculated station coordinates: X={station.x:.4f}m, Y={station.y:.4f}m")
        logger.info(f"Horizontal distance to centre: {station.norm():.4f}m")

        with self.state.lock:
            current = self._stored(slot) or record
            updated = replace(current, station_coordinates=station, is_centre_set=True,
                              edge_verification=None, timestamp=datetime.now(timezone.utc))
            self.state.calibrations[slot] = updated
        return updated.copy()

    def verify_circle_edge(self, slot):
        with self.state.lock:
            record = self._stored(slot)
        if record is None or not record.is_centre_set:
            raise CalibrationPreconditionError("must set circle centre first")
        source = self.source_for()

        reading = source.edge_reading(slot, record)
        logger.info(f"{source.name} Edge reading for {record.circle_type.value} circle "
                    f"({record.target_radius:.4f}m) - SD: {reading.slope_distance_mm:.0f}mm, "
                    f"VAz: {reading.vertical_angle_deg:.4f}°, HAR: {reading.horizontal_angle_deg:.4f}°")

        result = verify_edge(record.station_coordinates, reading, record.target_radius, record.circle_type)
        logger.info("Edge verification calculations:")
        logger.info(f"  Circle type: {record.circle_type.value}")
        logger.info(f"  Target radius: {record.target_radius:.4f}m")
        logger.info(f"  Measured radius: {result.measured_radius:.4f}m")
        logger.info(f"  Difference: {result.difference_mm:.1f}mm (Tolerance: ±{result.tolerance_applied_mm:.1f}mm)")
        logger.info(f"  Result: {'PASS' if result.in_tolerance else 'FAIL'}")

        with self.state.lock:
            if self._stored(slot) is not record:
                raise CalibrationPreconditionError("calibration changed during edge verification")
            updated = replace(record, edge_verification=result)
            self.state.calibrations[slot] = updated
        return updated.copy()

    def measure_throw(self, slot):
        with self.state.lock:
            record = self._stored(slot)
        if record is None or not record.is_centre_set:
            raise CalibrationPreconditionError("EDM is not calibrated - centre not set")
        source = self.source_for()
        if source.requires_edge_verification and not record.is_calibrated:
            raise CalibrationPreconditionError(
                "EDM must be calibrated with valid edge verification before measurement")

        reading = source.throw_reading(slot, record)
        logger.info(f"{source.name} Throw reading for {record.circle_type.value} circle - "
                    f"SD: {reading.slope_distance_mm:.0f}mm, VAz: {reading.vertical_angle_deg:.4f}°, "
                    f"HAR: {reading.horizontal_angle_deg:.4f}°")

        landing = absolute_position(record.station_coordinates, reading)
        distance = landing.norm() - record.target_radius
        logger.info("Throw measurement calculations:")
        logger.info(f"  Throw coordinates relative to centre: X={landing.x:.4f}m, Y={landing.y:.4f}m")
        logger.info(f"  Distance from centre: {landing.norm():.4f}m")
        logger.info(f"  Circle radius: {record.target_radius:.4f}m")
        logger.info(f"  Final throw distance: {distance:.4f}m")

        mark = f"{distance:.2f}"
        if self.scoreboard is not None:
            self.scoreboard.send(mark)
        return f"{mark} m"

    def debug_calibration(self, slot):
        with self.state.lock:
            record = self._stored(slot)
            sim = self.state.demo_sims.get(slot) if self.state.demo_mode else None
        if record is None:
            logger.info(f"DEBUG: No calibration data found for {slot}")
            return
        logger.info(f"DEBUG: Calibration data for {slot}:")
        logger.info(f"  Selected Circle Type: {record.circle_type.value}")
        logger.info(f"  Target Radius: {record.target_radius:.4f}m")
        logger.info(f"  Centre Set: {record.is_centre_set}")
        logger.info(f"  Station Coordinates: X={record.station_coordinates.x:.4f}m, "
                    f"Y={record.station_coordinates.y:.4f}m")
        if record.edge_verification is not None:
            logger.info(f"  Edge Verification: {record.edge_verification.difference_mm:.1f}mm difference, "
                        f"in tolerance: {record.edge_verification.in_tolerance}")
        if sim is not None:
            logger.info(f"  Demo Station: X={sim.station_x:.4f}m, Y={sim.station_y:.4f}m")
