# config.py
# Configuration constants for the EDM, wind gauge and scoreboard engine

import os

# Logging Configuration
LOG_LEVEL = os.getenv('POLYFIELD_LOG_LEVEL', 'INFO')
LOG_FILE = os.getenv('POLYFIELD_LOG_FILE', 'polyfield.log')

# Device slots
WIND_SLOT = 'wind'
SCOREBOARD_SLOT = 'scoreboard'

# Serial / Network Configuration
SERIAL_BAUDRATE = 9600
NETWORK_DIAL_TIMEOUT = 5.0  # seconds
CHANNEL_POLL_INTERVAL = 0.2  # read slice, so listeners notice cancellation

# EDM Protocol Constants
EDM_READ_COMMAND = bytes([0x11, 0x0D, 0x0A])
EDM_READ_TIMEOUT = 10.0  # network only
SD_TOLERANCE_MM = 3.0
DELAY_BETWEEN_READS = 0.25  # seconds between the two reads of a pair

# Wind Configuration
WIND_BUFFER_SIZE = 120  # ~2 minutes at 1 reading/sec
WIND_WINDOW_SECONDS = 5.0
DEMO_WIND_RANGE = (-2.0, 2.0)

# Scoreboard
SCOREBOARD_SENTINEL = '88:88'
SCOREBOARD_LINE_END = b'\r\n'

# Official circle radii (meters)
RADIUS_SHOT = 1.0675
RADIUS_DISCUS = 1.250
RADIUS_HAMMER = 1.0675
RADIUS_JAVELIN_ARC = 8.000

# Edge tolerances (mm)
TOLERANCE_THROWS_CIRCLE_MM = 5.0
TOLERANCE_JAVELIN_MM = 10.0

# Demo mode delays (seconds)
DEMO_CENTRE_DELAY = 2.0
DEMO_EDGE_DELAY = 2.0
DEMO_THROW_DELAY = 1.5

# Demo simulation geometry
DEMO_STATION_DISTANCE = (8.0, 15.0)  # meters from centre
DEMO_RANDOM_READING = {
    'slope_distance_mm': (10000.0, 25000.0),
    'vertical_angle_deg': (92.0, 97.0),
    'horizontal_angle_deg': (0.0, 360.0),
}
DEMO_THROW_RANGES = {
    'SHOT': (8.0, 18.0),
    'DISCUS': (25.0, 65.0),
    'HAMMER': (20.0, 75.0),
    'JAVELIN_ARC': (35.0, 85.0),
}
