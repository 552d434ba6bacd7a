# site_dispatch/core/visits/telemetry.py
"""Trip telemetry: odometer capture for trip start/completion."""
from __future__ import annotations

import math
from typing import Optional

from site_dispatch.core.visits.domain import OdometerReading
from site_dispatch.core.visits.errors import ValidationError


def _format_reading(value: float) -> str:
    return f"{value:g}"


def check_start_reading(reading: float) -> OdometerReading:
    """Start reading must be a positive number."""
    if not math.isfinite(reading) or reading <= 0:
        raise ValidationError(
            "Please enter a valid odometer reading (must be greater than 0).",
            field="reading",
        )
    return OdometerReading(float(reading))


def check_end_reading(reading: float, start: Optional[float]) -> OdometerReading:
    """
    End reading must exceed the stored start reading.

    The error carries the start value so the UI can show the minimum
    acceptable input.
    """
    if start is None:
        raise ValidationError("Trip has no recorded start odometer.", field="reading")
    if not math.isfinite(reading) or reading <= start:
        raise ValidationError(
            f"End reading must be greater than start reading ({_format_reading(start)}).",
            field="reading",
        )
    return OdometerReading(float(reading))


def trip_distance(start: float, end: float) -> float:
    return end - start


def format_distance(distance: float) -> str:
    return f"{distance:.1f} km"
