"""
Smoother - weighted temporal smoothing of raw samples into flight steps.

Each step is the weighted average of the raw samples within `radius` slots
of it. The centre sample has weight 1.0 and neighbours fall off linearly,
capped at 0.9. Samples separated by long gaps are left alone because the
weighting assumes evenly spaced neighbours.
"""

import logging
from typing import Optional

from droneflight.exceptions import InvariantViolationError
from droneflight.models.flight import FlightStep
from droneflight.models.location import PlanarPoint
from droneflight.models.raw import RawSample
from droneflight.services.sample_store import RawAggregates, SampleStore
from droneflight.utils.coordinates import yaw_delta_deg


logger = logging.getLogger(__name__)


MAX_SENSIBLE_SECTION_DURATION_MS = 500
ZERO_SNAP = 0.001

# Allowed overshoot of smoothed extrema beyond the raw extrema
LOCATION_EPSILON_M = 0.3
SPEED_EPSILON_MPS = 0.5
PITCH_EPSILON_DEG = 1.3
DELTA_YAW_EPSILON_DEG = 3.0

# Fields measured against the previous step
RELATIVE_FIELDS = {"lineal", "speed", "delta_yaw"}
MAX_ENVELOPE_PASSES = 5


def neighbour_weight(radius: int, offset: int) -> float:
    """Weight of a sample `offset` slots from the centre."""
    if offset == 0:
        return 1.0
    return max(0.0, min(0.9, (radius - abs(offset)) / radius))


def _snap(value: float) -> float:
    return 0.0 if abs(value) < ZERO_SNAP else value


def smooth(
    store: SampleStore,
    radius: int,
    strict: bool = False,
) -> list[FlightStep]:
    """
    Build one smoothed FlightStep per raw sample, with derived fields.

    Args:
        store: Raw samples for the flight
        radius: Smoothing radius in slots (0 disables smoothing)
        strict: Raise InvariantViolationError if smoothing pushes a value
            outside the raw envelope, instead of reverting that step

    Returns:
        Steps in index order
    """
    raws = store.samples
    steps = [FlightStep.from_raw(raw) for raw in raws]

    if radius >= 1 and len(raws) > 2 * radius:
        for step, raw in zip(steps, raws):
            _smooth_step(step, raw, store, radius)
    else:
        logger.debug(f"Smoothing skipped: radius={radius}, samples={len(raws)}")

    compute_derived_fields(steps)
    _check_envelope(steps, raws, store.aggregates, strict)
    return steps


def _window(store: SampleStore, raw: RawSample, radius: int) -> Optional[list[tuple[RawSample, float]]]:
    """
    Samples in the window with their weights, or None if the window spans
    a gap longer than MAX_SENSIBLE_SECTION_DURATION_MS.
    """
    if raw.duration_ms > MAX_SENSIBLE_SECTION_DURATION_MS:
        return None

    window = [(raw, 1.0)]
    for offset in range(-radius, radius + 1):
        if offset == 0:
            continue
        neighbour = store.get(raw.index + offset)
        if neighbour is None:
            continue
        if neighbour.duration_ms > MAX_SENSIBLE_SECTION_DURATION_MS:
            return None
        if neighbour.timestamp_ms == raw.timestamp_ms:
            continue
        weight = neighbour_weight(radius, offset)
        if weight > 0:
            window.append((neighbour, weight))
    return window


def _smooth_step(step: FlightStep, raw: RawSample, store: SampleStore, radius: int) -> None:
    window = _window(store, raw, radius)
    if window is None:
        return

    alt_sum = alt_weight = 0.0
    north_sum = east_sum = locn_weight = 0.0
    pitch_sum = pitch_weight = 0.0
    pos_yaw_sum = pos_yaw_weight = 0.0
    neg_yaw_sum = neg_yaw_weight = 0.0

    for sample, weight in window:
        if sample.altitude_m is not None:
            alt_sum += weight * sample.altitude_m
            alt_weight += weight
        if sample.location_m is not None:
            north_sum += weight * sample.location_m.northing_m
            east_sum += weight * sample.location_m.easting_m
            locn_weight += weight
        if sample.pitch_deg is not None:
            pitch_sum += weight * sample.pitch_deg
            pitch_weight += weight
        if sample.yaw_deg is not None:
            if sample.yaw_deg >= 0:
                pos_yaw_sum += weight * sample.yaw_deg
                pos_yaw_weight += weight
            else:
                neg_yaw_sum += weight * sample.yaw_deg
                neg_yaw_weight += weight

    step.altitude_m = _snap(alt_sum / alt_weight) if alt_weight > 0 else None

    if locn_weight > 0:
        step.location_m = PlanarPoint(
            _snap(north_sum / locn_weight), _snap(east_sum / locn_weight)
        )

    if pitch_weight > 0:
        step.pitch_deg = _snap(pitch_sum / pitch_weight)

    # Averaging across the +180/-180 wrap would point the wrong way
    if pos_yaw_weight > 0 and neg_yaw_weight == 0:
        step.yaw_deg = _snap(pos_yaw_sum / pos_yaw_weight)
    elif neg_yaw_weight > 0 and pos_yaw_weight == 0:
        step.yaw_deg = _snap(neg_yaw_sum / neg_yaw_weight)


def compute_derived_fields(steps: list[FlightStep]) -> None:
    """Forward pass setting cumulative time/distance, speed and turn rate."""
    previous: Optional[FlightStep] = None
    for step in steps:
        step.sum_time_ms = step.timestamp_ms
        if previous is None:
            step.lineal_m = 0.0 if step.location_m is not None else None
            step.sum_lineal_m = 0.0
            step.delta_yaw_deg = 0.0 if step.yaw_deg is not None else None
        else:
            if previous.location_m is not None and step.location_m is not None:
                step.lineal_m = previous.location_m.distance_to(step.location_m)
            else:
                step.lineal_m = None
            step.sum_lineal_m = previous.sum_lineal_m + (step.lineal_m or 0.0)
            step.delta_yaw_deg = yaw_delta_deg(previous.yaw_deg, step.yaw_deg)

        if step.lineal_m is None:
            step.speed_mps = None
        elif step.duration_ms <= 0 or step.lineal_m <= 0:
            step.speed_mps = 0.0
        else:
            step.speed_mps = 1000.0 * step.lineal_m / step.duration_ms

        previous = step


def envelope_violations(step: FlightStep, agg: RawAggregates) -> list[str]:
    """Names of the fields where `step` lies outside the raw envelope."""
    problems = []

    def above(value, limit, epsilon):
        return value is not None and limit is not None and value > limit + epsilon

    def below(value, limit, epsilon):
        return value is not None and limit is not None and value < limit - epsilon

    location = step.location_m
    if location is not None:
        if above(location.northing_m, agg.max_northing_m, LOCATION_EPSILON_M) or \
                below(location.northing_m, agg.min_northing_m, LOCATION_EPSILON_M):
            problems.append("northing")
        if above(location.easting_m, agg.max_easting_m, LOCATION_EPSILON_M) or \
                below(location.easting_m, agg.min_easting_m, LOCATION_EPSILON_M):
            problems.append("easting")
    if above(step.lineal_m, agg.max_lineal_m, LOCATION_EPSILON_M):
        problems.append("lineal")
    if above(step.speed_mps, agg.max_speed_mps, SPEED_EPSILON_MPS):
        problems.append("speed")
    if above(step.pitch_deg, agg.max_pitch_deg, PITCH_EPSILON_DEG) or \
            below(step.pitch_deg, agg.min_pitch_deg, PITCH_EPSILON_DEG):
        problems.append("pitch")
    if above(step.delta_yaw_deg, agg.max_delta_yaw_deg, DELTA_YAW_EPSILON_DEG) or \
            below(step.delta_yaw_deg, agg.min_delta_yaw_deg, DELTA_YAW_EPSILON_DEG):
        problems.append("delta_yaw")
    return problems


def _check_envelope(
    steps: list[FlightStep],
    raws: list[RawSample],
    agg: RawAggregates,
    strict: bool,
) -> None:
    """
    Revert steps that smoothing pushed outside the raw envelope.

    Reverting a step changes the distance, speed and turn of the step after
    it, so the check repeats until nothing violates. Fields measured from the
    previous step revert that step too. If MAX_ENVELOPE_PASSES is not enough
    every step is reverted, which is in the envelope by construction.
    """
    for _ in range(MAX_ENVELOPE_PASSES):
        bad = []
        for position, step in enumerate(steps):
            problems = envelope_violations(step, agg)
            if problems:
                bad.append((position, problems))
        if not bad:
            return

        for position, problems in bad:
            message = (
                f"Smoothed step {steps[position].index} outside raw envelope: "
                f"{', '.join(problems)}"
            )
            if strict:
                raise InvariantViolationError(message)
            logger.warning(f"{message}; keeping raw values")
            _revert_to_raw(steps[position], raws[position])
            if position > 0 and RELATIVE_FIELDS.intersection(problems):
                _revert_to_raw(steps[position - 1], raws[position - 1])
        compute_derived_fields(steps)

    if any(envelope_violations(step, agg) for step in steps):
        logger.warning(
            f"Smoothing still outside raw envelope after {MAX_ENVELOPE_PASSES} passes; "
            f"keeping raw values for all steps"
        )
        for step, raw in zip(steps, raws):
            _revert_to_raw(step, raw)
        compute_derived_fields(steps)


def _revert_to_raw(step: FlightStep, raw: RawSample) -> None:
    step.location_m = raw.location_m
    step.altitude_m = raw.altitude_m
    step.yaw_deg = raw.yaw_deg
    step.pitch_deg = raw.pitch_deg
