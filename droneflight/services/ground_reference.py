"""
Ground reference correction for barometric altitude drift.

Drone altitude is usually barometric and relative to the take-off point,
so it can disagree with the terrain model by tens of metres. When the
drone is known to be on the ground at the start and/or end of the log,
the DEM gives the true altitude there and the offset is blended across
the flight.
"""

import logging
from typing import Optional

from droneflight.models.config import ELEVATION_ACCURACY_M, OnGroundAt
from droneflight.models.flight import FlightStep


logger = logging.getLogger(__name__)


BELOW_TERRAIN_TOLERANCE_M = 1.0


def _ground_fix(step: FlightStep) -> float:
    """DEM minus altitude at `step`, or 0 when within the DEM's accuracy."""
    if step.dem_m is None or step.altitude_m is None:
        return 0.0
    fix = step.dem_m - step.altitude_m
    return fix if abs(fix) > ELEVATION_ACCURACY_M else 0.0


def _ground_contact(steps: list[FlightStep], from_end: bool = False) -> Optional[FlightStep]:
    """First (or last) step with both terrain and altitude known."""
    ordered = reversed(steps) if from_end else steps
    for step in ordered:
        if step.dem_m is not None and step.altitude_m is not None:
            return step
    return None


def ground_fixes(steps: list[FlightStep], mode: Optional[OnGroundAt]) -> tuple[float, float]:
    """
    (start, end) altitude corrections in meters for the given mode.

    START and END use the one known ground contact for the whole flight,
    BOTH blends between the two. The contact is the first (or last) step
    where both terrain and altitude are known.
    """
    if mode is None or not steps:
        return 0.0, 0.0

    if mode == OnGroundAt.NEITHER:
        dems = [s.dem_m for s in steps if s.dem_m is not None]
        altitudes = [s.altitude_m for s in steps if s.altitude_m is not None]
        if not dems or not altitudes:
            return 0.0, 0.0
        # The drone can never have been lower than the lowest terrain
        min_dem = min(dems)
        min_altitude = min(altitudes)
        if min_altitude < min_dem:
            fix = min_dem - min_altitude
            return fix, fix
        return 0.0, 0.0

    start = _ground_contact(steps)
    end = _ground_contact(steps, from_end=True)
    if start is None:
        logger.warning(f"No step with both terrain and altitude; ground reference {mode.value} skipped")
        return 0.0, 0.0

    if mode == OnGroundAt.START:
        fix = _ground_fix(start)
        return fix, fix
    if mode == OnGroundAt.END:
        fix = _ground_fix(end)
        return fix, fix
    return _ground_fix(start), _ground_fix(end)


def apply_ground_reference(steps: list[FlightStep], mode: Optional[OnGroundAt]) -> tuple[float, float]:
    """
    Shift step altitudes in place by a start/end blend of the ground fixes.

    A step at fraction f through the flight moves by
    fix_start * (1 - f) + fix_end * f. Unknown altitudes stay unknown.

    Returns:
        The (start, end) fixes that were applied
    """
    fix_start, fix_end = ground_fixes(steps, mode)
    if fix_start == 0.0 and fix_end == 0.0:
        return fix_start, fix_end

    last = len(steps) - 1
    for position, step in enumerate(steps):
        if step.altitude_m is None:
            continue
        fraction = position / last if last > 0 else 0.0
        step.altitude_m += fix_start * (1.0 - fraction) + fix_end * fraction

    logger.info(
        f"Ground reference ({mode.value}): altitude fix {fix_start:.1f}m at start, "
        f"{fix_end:.1f}m at end"
    )
    return fix_start, fix_end


def percent_altitude_below_terrain(steps: list[FlightStep]) -> float:
    """Percentage of steps flying more than 1m below the DEM."""
    if not steps:
        return 0.0
    below = sum(
        1
        for s in steps
        if s.dem_m is not None
        and s.altitude_m is not None
        and s.dem_m - s.altitude_m > BELOW_TERRAIN_TOLERANCE_M
    )
    return 100.0 * below / len(steps)
