"""
Location types shared by raw samples, steps and footprints.

Planar coordinates are metres in a local frame: northing grows north,
easting grows east. Yaw is a compass bearing in degrees, 0 = north,
increasing clockwise.
"""

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class GlobalLocation:
    """WGS84 position in degrees."""

    latitude: float
    longitude: float


@dataclass(frozen=True)
class PlanarPoint:
    """Point in the local planar frame (meters)."""

    northing_m: float
    easting_m: float

    def distance_to(self, other: "PlanarPoint") -> float:
        return math.hypot(other.northing_m - self.northing_m, other.easting_m - self.easting_m)

    def translate(self, d_northing: float, d_easting: float) -> "PlanarPoint":
        return PlanarPoint(self.northing_m + d_northing, self.easting_m + d_easting)

    def moved_along(self, yaw_deg: float, distance_m: float) -> "PlanarPoint":
        """Point `distance_m` away along compass bearing `yaw_deg`."""
        yaw_rad = math.radians(yaw_deg)
        return PlanarPoint(
            self.northing_m + math.cos(yaw_rad) * distance_m,
            self.easting_m + math.sin(yaw_rad) * distance_m,
        )
