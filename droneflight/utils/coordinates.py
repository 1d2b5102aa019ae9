"""
Coordinate transformation utilities.

Converts GPS coordinates (WGS84 lat/lon) to the local planar frame used by
the pipeline (northing/easting meters from an origin), and back.
Also holds the angle helpers shared by smoothing and segmentation.
"""

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from droneflight.models.location import GlobalLocation, PlanarPoint

# WGS84 ellipsoid constants
WGS84_A = 6378137.0              # Semi-major axis (meters)
WGS84_F = 1 / 298.257223563      # Flattening
WGS84_B = WGS84_A * (1 - WGS84_F)  # Semi-minor axis
WGS84_E2 = 1 - (WGS84_B**2 / WGS84_A**2)  # First eccentricity squared


@dataclass
class PlanarCoordinates:
    """Result of a batch GPS to planar conversion."""
    northing: NDArray[np.float64]  # meters north of origin (NaN if no fix)
    easting: NDArray[np.float64]   # meters east of origin (NaN if no fix)
    origin: GlobalLocation


def geodetic_to_ecef(
    lat: NDArray[np.float64],
    lon: NDArray[np.float64],
    alt: NDArray[np.float64]
) -> tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
    """
    Convert geodetic coordinates (WGS84) to ECEF (Earth-Centered Earth-Fixed).

    Args:
        lat: Latitude in degrees
        lon: Longitude in degrees
        alt: Height in meters above the WGS84 ellipsoid

    Returns:
        Tuple of (X, Y, Z) ECEF coordinates in meters
    """
    lat_rad = np.radians(lat)
    lon_rad = np.radians(lon)

    # Prime vertical radius of curvature
    N = WGS84_A / np.sqrt(1 - WGS84_E2 * np.sin(lat_rad)**2)

    X = (N + alt) * np.cos(lat_rad) * np.cos(lon_rad)
    Y = (N + alt) * np.cos(lat_rad) * np.sin(lon_rad)
    Z = (N * (1 - WGS84_E2) + alt) * np.sin(lat_rad)

    return X, Y, Z


def ecef_to_north_east(
    X: NDArray[np.float64],
    Y: NDArray[np.float64],
    Z: NDArray[np.float64],
    origin: GlobalLocation,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Project ECEF coordinates onto the horizontal plane tangent at `origin`.

    Returns:
        Tuple of (northing, easting) in meters
    """
    X0, Y0, Z0 = geodetic_to_ecef(
        np.array([origin.latitude]),
        np.array([origin.longitude]),
        np.array([0.0]),
    )
    dX = X - X0[0]
    dY = Y - Y0[0]
    dZ = Z - Z0[0]

    sin_lat = np.sin(np.radians(origin.latitude))
    cos_lat = np.cos(np.radians(origin.latitude))
    sin_lon = np.sin(np.radians(origin.longitude))
    cos_lon = np.cos(np.radians(origin.longitude))

    easting = -sin_lon * dX + cos_lon * dY
    northing = -sin_lat * cos_lon * dX - sin_lat * sin_lon * dY + cos_lat * dZ
    return northing, easting


def gps_to_planar(
    lat: NDArray[np.float64],
    lon: NDArray[np.float64],
    origin: Optional[GlobalLocation] = None,
) -> PlanarCoordinates:
    """
    Convert GPS arrays to the local planar frame.

    Uses the first valid fix as origin if none is given. Points without a
    fix come back as NaN. Heights are ignored: the planar frame is the
    tangent plane at sea level, altitude is handled separately.
    """
    lat = np.asarray(lat, dtype=np.float64)
    lon = np.asarray(lon, dtype=np.float64)
    valid_mask = ~(np.isnan(lat) | np.isnan(lon))

    if origin is None:
        if not np.any(valid_mask):
            return PlanarCoordinates(
                northing=np.full_like(lat, np.nan),
                easting=np.full_like(lat, np.nan),
                origin=GlobalLocation(0.0, 0.0),
            )
        first_valid_idx = int(np.argmax(valid_mask))
        origin = GlobalLocation(float(lat[first_valid_idx]), float(lon[first_valid_idx]))

    X, Y, Z = geodetic_to_ecef(lat, lon, np.zeros_like(lat))
    northing, easting = ecef_to_north_east(X, Y, Z, origin)

    return PlanarCoordinates(
        northing=np.where(valid_mask, northing, np.nan),
        easting=np.where(valid_mask, easting, np.nan),
        origin=origin,
    )


def global_to_planar(location: GlobalLocation, origin: GlobalLocation) -> PlanarPoint:
    """Convert a single fix to the planar frame around `origin`."""
    result = gps_to_planar(
        np.array([location.latitude]), np.array([location.longitude]), origin
    )
    return PlanarPoint(float(result.northing[0]), float(result.easting[0]))


def planar_to_global(point: PlanarPoint, origin: GlobalLocation) -> GlobalLocation:
    """
    Convert a planar point back to WGS84.

    Useful for reporting footprint centers and located features on a map.
    """
    sin_lat = math.sin(math.radians(origin.latitude))
    cos_lat = math.cos(math.radians(origin.latitude))
    sin_lon = math.sin(math.radians(origin.longitude))
    cos_lon = math.cos(math.radians(origin.longitude))

    east = point.easting_m
    north = point.northing_m

    # Rotation from the tangent plane back to ECEF
    dX = -sin_lon * east - sin_lat * cos_lon * north
    dY = cos_lon * east - sin_lat * sin_lon * north
    dZ = cos_lat * north

    X0, Y0, Z0 = geodetic_to_ecef(
        np.array([origin.latitude]), np.array([origin.longitude]), np.array([0.0])
    )
    X = dX + float(X0[0])
    Y = dY + float(Y0[0])
    Z = dZ + float(Z0[0])

    lon = math.degrees(math.atan2(Y, X))

    # Iterative latitude calculation
    p = math.hypot(X, Y)
    lat = math.atan2(Z, p * (1 - WGS84_E2))
    for _ in range(5):
        N = WGS84_A / math.sqrt(1 - WGS84_E2 * math.sin(lat)**2)
        lat = math.atan2(Z + WGS84_E2 * N * math.sin(lat), p)

    return GlobalLocation(math.degrees(lat), lon)


def wrap_degrees(angle: float) -> float:
    """Wrap an angle difference into [-180, 180]."""
    while angle > 180.0:
        angle -= 360.0
    while angle < -180.0:
        angle += 360.0
    return angle


def yaw_delta_deg(previous: Optional[float], current: Optional[float]) -> Optional[float]:
    """Signed turn from `previous` to `current` yaw, or None if either is unknown."""
    if previous is None or current is None:
        return None
    return wrap_degrees(current - previous)
