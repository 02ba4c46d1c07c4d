# config.py
"""
Configuration for the USV operator console.
Every value can be overridden through the environment.
"""

import logging
import os

# ------------------------------
# Realtime store credentials
# ------------------------------

# Ably realtime (pub/sub channels shared with the vehicle)
ABLY_API_KEY = os.getenv("USV_ABLY_API_KEY", "")

# Supabase (durable mission records)
SUPABASE_URL = os.getenv("USV_SUPABASE_URL", "")
SUPABASE_API_KEY = os.getenv("USV_SUPABASE_API_KEY", "")

# ------------------------------
# Store paths
# ------------------------------

# Device ID must match the vehicle's DEVICE_ID
DEVICE_ID = os.getenv("USV_DEVICE_ID", "usv-01")

READINGS_PATH = "readings"
READINGS_LIMIT = int(os.getenv("USV_READINGS_LIMIT", "20"))  # last N readings
MISSIONS_PATH = "missions"
MISSIONS_LIMIT = int(os.getenv("USV_MISSIONS_LIMIT", "50"))  # last N missions tracked for status updates

# ------------------------------
# Derived state bounds
# ------------------------------

TRAIL_CAPACITY = int(os.getenv("USV_TRAIL_CAPACITY", "300"))  # points

# Sampling interval defaults (seconds)
DEFAULT_SENSOR_INTERVAL = 2
SURVEY_MODE_MAX_INTERVAL = 60
ROUTINE_MODE_MAX_INTERVAL = 900

# ------------------------------
# Transport
# ------------------------------

CONNECTION_TIMEOUT = float(os.getenv("USV_CONNECTION_TIMEOUT", "15.0"))  # seconds
WRITE_QUEUE_MAX_SIZE = 1000  # pending store writes
WRITE_DRAIN_INTERVAL = 0.01  # seconds between queued writes
WRITE_RETRY_INTERVAL = float(os.getenv("USV_WRITE_RETRY_INTERVAL", "5.0"))  # seconds before failed writes are retried once

# ------------------------------
# Output
# ------------------------------

EXPORT_DIR = os.getenv("USV_EXPORT_DIR", "./export")

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def telemetry_path(device_id: str = DEVICE_ID) -> str:
    return f"telemetry/{device_id}/current"


def sensor_interval_path(device_id: str = DEVICE_ID) -> str:
    return f"config/{device_id}/sensor_interval"


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """Configure root logging the same way for every entry point"""
    logging.basicConfig(level=level, format=LOG_FORMAT)
    return logging.getLogger("USVConsole")
