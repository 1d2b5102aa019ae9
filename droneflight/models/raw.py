"""
Raw flight-log sample (one per quantized telemetry tick).

Adapters turn manufacturer logs into a stream of these before the pipeline
runs. Fields the log does not carry stay None.
"""

from dataclasses import dataclass
from typing import Optional

from droneflight.models.location import GlobalLocation, PlanarPoint


@dataclass
class RawSample:
    """A single telemetry tick ("section")."""

    index: int           # time-slot id, strictly increasing, gaps allowed
    timestamp_ms: int    # elapsed since flight start
    duration_ms: int     # time since previous sample

    global_location: Optional[GlobalLocation] = None
    location_m: Optional[PlanarPoint] = None  # filled from global_location by the store

    altitude_m: Optional[float] = None
    yaw_deg: Optional[float] = None
    pitch_deg: Optional[float] = None
    roll_deg: Optional[float] = None

    focal_length: Optional[float] = None
    zoom: Optional[float] = None
