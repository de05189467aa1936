"""End-to-end tests through the engine facade."""

import pytest

from polyfield.data_structures import CircleType, Point2D
from polyfield.demo_simulation import reading_towards
from polyfield.errors import CalibrationPreconditionError, NotConnectedError

from conftest import wait_for


def edm_line(reading):
    """Formats a reading the way the instrument does: `<sd> <vaz DDDMMSS> <har DDDMMSS> <flag>`."""
    def dms(value):
        total = int(round(value * 3600))
        return f"{total // 3600:03d}{(total % 3600) // 60:02d}{total % 60:02d}"
    return f"{reading.slope_distance_mm:.0f} {dms(reading.vertical_angle_deg)} {dms(reading.horizontal_angle_deg)} 0\n"


def test_hardware_workflow(engine, serial_factory):
    engine.connect_serial("scoreboard", "COM5")
    engine.connect_serial("circleA", "COM3")
    scoreboard, edm = serial_factory.opened

    station = Point2D(-10.0, 0.0)
    centre = edm_line(reading_towards(station, Point2D(0.0, 0.0), 90.0))
    edge = edm_line(reading_towards(station, Point2D(0.0, 1.0675), 90.0))
    landing = edm_line(reading_towards(station, Point2D(25.0, 0.0), 90.0))

    edm.reply(centre, centre)
    record = engine.set_circle_centre("circleA")
    assert record.station_coordinates.x == pytest.approx(-10.0, abs=1e-3)

    edm.reply(edge, edge)
    record = engine.verify_circle_edge("circleA")
    assert record.edge_verification.in_tolerance

    edm.reply(landing, landing)
    assert engine.measure_throw("circleA") == "23.93 m"
    assert wait_for(lambda: b"23.93\r\n" in scoreboard.written)


def test_hardware_throw_blocked_without_edge(engine, serial_factory):
    engine.connect_serial("circleA", "COM3")
    edm = serial_factory.opened[0]
    centre = edm_line(reading_towards(Point2D(-10.0, 0.0), Point2D(0.0, 0.0), 90.0))
    edm.reply(centre, centre)
    engine.set_circle_centre("circleA")

    with pytest.raises(CalibrationPreconditionError):
        engine.measure_throw("circleA")


def test_centre_without_connection_fails_and_leaves_no_record(engine):
    with pytest.raises(NotConnectedError):
        engine.set_circle_centre("circleA")
    assert "circleA" not in engine.state.calibrations


def test_demo_workflow(engine):
    engine.set_demo_mode(True)
    engine.save_calibration("circleA", CircleType.DISCUS)

    record = engine.set_circle_centre("circleA")
    truth = engine.simulator.station_for("circleA").station
    assert record.station_coordinates.x == pytest.approx(truth.x, abs=0.05)
    assert record.station_coordinates.y == pytest.approx(truth.y, abs=0.05)

    record = engine.verify_circle_edge("circleA")
    assert abs(record.edge_verification.difference_mm) < 50.0

    result = engine.measure_throw("circleA")
    distance = float(result.split()[0])
    assert result.endswith(" m")
    assert 24.5 <= distance <= 65.5


def test_demo_throw_allowed_without_edge(engine):
    engine.set_demo_mode(True)
    engine.set_circle_centre("circleA")
    assert engine.measure_throw("circleA").endswith(" m")


def test_toggling_demo_mode_resets_station(engine):
    engine.set_demo_mode(True)
    first = engine.simulator.station_for("circleA")
    engine.set_demo_mode(False)
    engine.set_demo_mode(True)
    assert engine.simulator.station_for("circleA") is not first
    assert engine.is_demo_mode()


def test_demo_scoreboard_is_not_written(engine, serial_factory):
    engine.connect_serial("scoreboard", "COM5")
    scoreboard = serial_factory.opened[0]
    assert wait_for(lambda: scoreboard.written == [b"88:88\r\n"])

    engine.set_demo_mode(True)
    engine.send_to_scoreboard("12.34")

    assert scoreboard.written == [b"88:88\r\n"]


def test_send_to_scoreboard_requires_connection(engine):
    with pytest.raises(NotConnectedError):
        engine.send_to_scoreboard("12.34")


def test_measurement_survives_broken_scoreboard(engine, serial_factory):
    engine.connect_serial("scoreboard", "COM5")
    engine.connect_serial("circleA", "COM3")
    scoreboard, edm = serial_factory.opened
    assert wait_for(lambda: scoreboard.written == [b"88:88\r\n"])
    scoreboard.close()

    station = Point2D(-10.0, 0.0)
    centre = edm_line(reading_towards(station, Point2D(0.0, 0.0), 90.0))
    edge = edm_line(reading_towards(station, Point2D(1.0675, 0.0), 90.0))
    landing = edm_line(reading_towards(station, Point2D(0.0, 12.0), 90.0))
    edm.reply(centre, centre, edge, edge, landing, landing)

    engine.set_circle_centre("circleA")
    engine.verify_circle_edge("circleA")

    assert engine.measure_throw("circleA") == "10.93 m"


def test_debug_calibration_logs_record(engine, caplog):
    engine.set_demo_mode(True)
    engine.set_circle_centre("circleA")
    with caplog.at_level("INFO", logger="PolyField EDM"):
        engine.debug_calibration("circleA")
        engine.debug_calibration("circleB")
    assert "Calibration data for circleA" in caplog.text
    assert "Demo Station" in caplog.text
    assert "No calibration data found for circleB" in caplog.text


def test_switching_demo_mode_clears_centres(engine):
    engine.set_demo_mode(True)
    engine.set_circle_centre("circleA")
    engine.verify_circle_edge("circleA")

    engine.set_demo_mode(False)

    record = engine.get_calibration("circleA")
    assert not record.is_centre_set
    assert record.edge_verification is None
    assert record.station_coordinates == Point2D(0.0, 0.0)
    with pytest.raises(CalibrationPreconditionError):
        engine.measure_throw("circleA")
