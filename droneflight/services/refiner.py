"""
Leg refinement - straightens the smoothed track inside each leg.

Legs flown at a steady speed are replaced by a straight line interpolated
by time between the leg's first and last location. Legs with an irregular
speed profile get a cubic smoothing spline of northing and easting over time.
"""

import logging
from typing import Optional

import numpy as np
from scipy.interpolate import splev, splrep

from droneflight.exceptions import InvariantViolationError
from droneflight.models.flight import FlightStep, Leg
from droneflight.models.location import PlanarPoint


logger = logging.getLogger(__name__)


MIN_LINEAR_AVG_SPEED_MPS = 1.5
MIN_REFINE_STEPS = 4               # cubic spline needs more points than its degree
SPLINE_SMOOTHING_M2 = 1.0          # expected squared residual per point
REFINE_EPSILON_M = 0.3

REFINE_LINEAR = "linear"
REFINE_SPLINE = "spline"
REFINE_NONE = "none"


def leg_speed_profile(leg_steps: list[FlightStep]) -> tuple[Optional[float], Optional[float]]:
    """(average, maximum) speed over the leg in m/s."""
    if len(leg_steps) < 2:
        return None, None
    duration_ms = leg_steps[-1].sum_time_ms - leg_steps[0].sum_time_ms
    if duration_ms <= 0:
        return None, None
    distance_m = leg_steps[-1].sum_lineal_m - leg_steps[0].sum_lineal_m
    speeds = [s.speed_mps for s in leg_steps[1:] if s.speed_mps is not None]
    return 1000.0 * distance_m / duration_ms, (max(speeds) if speeds else None)


def _linear_locations(located: list[FlightStep]) -> Optional[list[PlanarPoint]]:
    first, last = located[0], located[-1]
    span_ms = last.sum_time_ms - first.sum_time_ms
    if span_ms <= 0:
        return None

    d_north = last.location_m.northing_m - first.location_m.northing_m
    d_east = last.location_m.easting_m - first.location_m.easting_m
    locations = []
    for step in located:
        fraction = (step.sum_time_ms - first.sum_time_ms) / span_ms
        locations.append(first.location_m.translate(fraction * d_north, fraction * d_east))
    return locations


def _spline_locations(located: list[FlightStep]) -> Optional[list[PlanarPoint]]:
    times = np.array([s.sum_time_ms for s in located], dtype=np.float64)
    if np.any(np.diff(times) <= 0):
        return None

    north = np.array([s.location_m.northing_m for s in located], dtype=np.float64)
    east = np.array([s.location_m.easting_m for s in located], dtype=np.float64)
    smoothing = len(times) * SPLINE_SMOOTHING_M2

    north_fit = splev(times, splrep(times, north, k=3, s=smoothing), der=0)
    east_fit = splev(times, splrep(times, east, k=3, s=smoothing), der=0)
    return [PlanarPoint(float(n), float(e)) for n, e in zip(north_fit, east_fit)]


def _outside_box(original: list[PlanarPoint], refined: list[PlanarPoint]) -> bool:
    north = [p.northing_m for p in original]
    east = [p.easting_m for p in original]
    min_n, max_n = min(north) - REFINE_EPSILON_M, max(north) + REFINE_EPSILON_M
    min_e, max_e = min(east) - REFINE_EPSILON_M, max(east) + REFINE_EPSILON_M
    return any(
        not (min_n <= p.northing_m <= max_n and min_e <= p.easting_m <= max_e)
        for p in refined
    )


def refine_leg(leg_steps: list[FlightStep], leg_id: int = 0, strict: bool = False) -> str:
    """
    Refine the locations of one leg's steps in place.

    Returns:
        The strategy applied: "linear", "spline" or "none"
    """
    located = [s for s in leg_steps if s.location_m is not None]
    if len(located) < MIN_REFINE_STEPS:
        return REFINE_NONE

    avg_speed, max_speed = leg_speed_profile(leg_steps)
    steady = (
        avg_speed is not None
        and max_speed is not None
        and avg_speed >= MIN_LINEAR_AVG_SPEED_MPS
        and max_speed < 2 * avg_speed
    )

    if steady:
        strategy = REFINE_LINEAR
        refined = _linear_locations(located)
    else:
        strategy = REFINE_SPLINE
        refined = _spline_locations(located)
    if refined is None:
        return REFINE_NONE

    original = [s.location_m for s in located]
    if _outside_box(original, refined):
        message = f"Leg {leg_id} {strategy} refinement left the leg's bounding box"
        if strict:
            raise InvariantViolationError(message)
        logger.warning(f"{message}; keeping smoothed locations")
        return REFINE_NONE

    for step, location in zip(located, refined):
        step.location_m = location
    return strategy


def refine_legs(steps: list[FlightStep], legs: list[Leg], strict: bool = False) -> dict[int, str]:
    """
    Refine every leg that has steps assigned.

    Returns:
        Mapping of leg id to the strategy applied
    """
    by_leg: dict[int, list[FlightStep]] = {}
    for step in steps:
        if step.leg_id > 0:
            by_leg.setdefault(step.leg_id, []).append(step)

    applied = {}
    for leg in legs:
        leg_steps = by_leg.get(leg.leg_id)
        if not leg_steps:
            applied[leg.leg_id] = REFINE_NONE
            continue
        applied[leg.leg_id] = refine_leg(leg_steps, leg.leg_id, strict)
        logger.debug(f"Leg {leg.name} refined: {applied[leg.leg_id]}")
    return applied
