# water_quality.py
"""
Water-quality classification for USV sensor readings.

Each of the four criteria contributes 0, 0.5 or 1 point:
- pH (6.5-8.5 full, 6.0-9.0 half)
- Temperature °C (20-28 full, 15-32 half)
- TDS ppm (<500 full, <600 half)
- Turbidity NTU (<5 full, <10 half)
"""

from enum import Enum
from typing import Any, Mapping, Union

GOOD_THRESHOLD = 3.5
MODERATE_THRESHOLD = 2.0


class QualityClass(str, Enum):
    """Qualitative water-quality status"""
    GOOD = "good"
    MODERATE = "moderate"
    POOR = "poor"


def _field(reading: Union[Mapping[str, Any], Any], name: str) -> float:
    if isinstance(reading, Mapping):
        value = reading.get(name, 0.0)
    else:
        value = getattr(reading, name, 0.0)
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def quality_points(reading) -> float:
    """Sum the per-criterion points (0 to 4) for a reading or snapshot"""
    ph = _field(reading, "ph")
    temperature = _field(reading, "temperature")
    tds = _field(reading, "tds")
    turbidity = _field(reading, "turbidity")

    points = 0.0

    # pH should be between 6.5 and 8.5
    if 6.5 <= ph <= 8.5:
        points += 1
    elif 6.0 <= ph <= 9.0:
        points += 0.5

    # Temperature should be between 20-28°C
    if 20 <= temperature <= 28:
        points += 1
    elif 15 <= temperature <= 32:
        points += 0.5

    # TDS should be less than 500 ppm
    if tds < 500:
        points += 1
    elif tds < 600:
        points += 0.5

    # Turbidity should be less than 5 NTU
    if turbidity < 5:
        points += 1
    elif turbidity < 10:
        points += 0.5

    return points


def score(reading) -> QualityClass:
    """Classify a reading. Accepts a mapping or any object with the four fields."""
    points = quality_points(reading)
    if points >= GOOD_THRESHOLD:
        return QualityClass.GOOD
    if points >= MODERATE_THRESHOLD:
        return QualityClass.MODERATE
    return QualityClass.POOR
