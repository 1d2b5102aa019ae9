"""
LegSegmenter - splits the smoothed flight into straight, purposeful legs.

Segmentation runs in two phases so that discarding a short leg never means
undoing work already written to the steps:

1. a single forward pass over the steps produces candidate legs
   (start position, end position, keep flag, reason the leg ended)
2. only the kept candidates are trimmed, reduced, numbered and written
   back to the steps, then Leg records are synthesized from the steps
"""

import logging
from dataclasses import dataclass
from typing import Optional

from droneflight.exceptions import InvariantViolationError
from droneflight.models.config import RuleConfig
from droneflight.models.flight import FlightStep, Leg, UNASSIGNED_LEG_ID
from droneflight.utils.coordinates import wrap_degrees


logger = logging.getLogger(__name__)


LEG_TRIM_MS = 1000         # gimbal re-centres for about a second after a turn
MAX_LEGS = 26              # legs are labelled A..Z
LEG_REDUCTION_STEP_M = 5.0
LEG_REDUCTION_MAX_M = 50.0

WHY_YAW = "Yaw change"
WHY_PITCH = "Pitch change"
WHY_GAP = "Time gap"
WHY_STEP_PITCH = "Step pitch"
WHY_CAMERA_UP = "Camera not down"
WHY_END = "No more steps"
WHY_NO_DATA = "No flight data"


@dataclass
class LegCandidate:
    """A run of steps [start, end] (positions in the step list, inclusive)."""

    start: int
    end: int
    keep: bool
    why_ended: str


def leg_duration_ms(steps: list[FlightStep], start: int, end: int) -> int:
    """Sum of the member steps' durations."""
    return sum(step.duration_ms for step in steps[start:end + 1])


def leg_distance_m(steps: list[FlightStep], start: int, end: int) -> float:
    """Straight-line distance from the first to the last step, 0 if either is unplaced."""
    first = steps[start].location_m
    last = steps[end].location_m
    if first is None or last is None:
        return 0.0
    return first.distance_to(last)


def _meets_thresholds(steps: list[FlightStep], start: int, end: int, rules: RuleConfig) -> bool:
    return (
        leg_duration_ms(steps, start, end) >= rules.min_leg_duration_ms
        and leg_distance_m(steps, start, end) >= rules.min_leg_distance_m
    )


def can_start_leg(step: FlightStep, rules: RuleConfig) -> bool:
    """True if `step` is flat and level enough to open a new leg."""
    if step.delta_yaw_deg is None or step.pitch_deg is None or step.yaw_deg is None:
        return False
    if abs(step.delta_yaw_deg) >= rules.max_leg_step_delta_yaw_deg:
        return False
    if rules.use_gimbal_data:
        return abs(step.pitch_deg) >= rules.min_camera_down_deg
    return abs(step.pitch_deg) < rules.max_leg_step_pitch_deg


def why_leg_ends(start: FlightStep, step: FlightStep, rules: RuleConfig) -> Optional[str]:
    """
    Reason `step` ends the leg begun at `start`, or None if the leg continues.

    Rules are checked in a fixed order. Unknown values never end a leg.
    """
    if step.yaw_deg is not None and start.yaw_deg is not None:
        if abs(wrap_degrees(step.yaw_deg - start.yaw_deg)) > rules.max_leg_sum_delta_yaw_deg:
            return WHY_YAW
    if step.pitch_deg is not None and start.pitch_deg is not None:
        if abs(start.pitch_deg - step.pitch_deg) >= rules.max_leg_sum_pitch_deg:
            return WHY_PITCH
    if step.duration_ms > rules.max_leg_gap_duration_ms:
        return WHY_GAP
    if step.pitch_deg is not None:
        if rules.use_gimbal_data:
            if abs(step.pitch_deg) < rules.min_camera_down_deg:
                return WHY_CAMERA_UP
        elif abs(step.pitch_deg) >= rules.max_leg_step_pitch_deg:
            return WHY_STEP_PITCH
    return None


def find_candidates(steps: list[FlightStep], rules: RuleConfig) -> list[LegCandidate]:
    """Phase 1: one forward pass classifying runs of steps."""
    candidates: list[LegCandidate] = []
    start: Optional[int] = None

    position = 0
    while position < len(steps):
        step = steps[position]
        if start is None:
            if can_start_leg(step, rules):
                start = position
            position += 1
            continue

        why = why_leg_ends(steps[start], step, rules)
        if why is None:
            position += 1
            continue

        end = position - 1
        keep = _meets_thresholds(steps, start, end, rules)
        candidates.append(LegCandidate(start, end, keep, why))
        logger.debug(
            f"Leg candidate steps {steps[start].index}-{steps[end].index} ended "
            f"({why}), keep={keep}"
        )
        # The ending step may itself start the next leg
        start = None

    if start is not None:
        end = len(steps) - 1
        keep = _meets_thresholds(steps, start, end, rules)
        candidates.append(LegCandidate(start, end, keep, WHY_END))

    return candidates


def trim_leg_start(
    steps: list[FlightStep],
    candidate: LegCandidate,
    rules: RuleConfig,
) -> LegCandidate:
    """
    Drop up to the first LEG_TRIM_MS of a kept leg.

    Trimming stops early rather than take the leg below its keep thresholds,
    and never removes the last step.
    """
    cutoff_ms = steps[candidate.start].sum_time_ms + LEG_TRIM_MS
    start = candidate.start
    while start < candidate.end and steps[start].sum_time_ms < cutoff_ms:
        if not _meets_thresholds(steps, start + 1, candidate.end, rules):
            break
        start += 1
    return LegCandidate(start, candidate.end, candidate.keep, candidate.why_ended)


def reduce_leg_count(
    steps: list[FlightStep],
    legs: list[LegCandidate],
    max_legs: int = MAX_LEGS,
) -> list[LegCandidate]:
    """Drop progressively longer short legs until at most `max_legs` remain."""
    threshold = LEG_REDUCTION_STEP_M
    while len(legs) > max_legs and threshold <= LEG_REDUCTION_MAX_M:
        before = len(legs)
        legs = [leg for leg in legs if leg_distance_m(steps, leg.start, leg.end) >= threshold]
        if len(legs) < before:
            logger.info(f"Removed {before - len(legs)} legs shorter than {threshold}m")
        threshold += LEG_REDUCTION_STEP_M
    return legs


def segment(steps: list[FlightStep], rules: RuleConfig) -> list[Leg]:
    """
    Assign leg ids to `steps` and return the leg list.

    Steps outside every kept leg get leg id 0. If the flight has no usable
    yaw or pitch data, a single synthetic leg covering the configured run
    range is returned and no step is assigned to it.
    """
    for step in steps:
        step.leg_id = UNASSIGNED_LEG_ID

    has_yaw = any(step.yaw_deg is not None for step in steps)
    has_pitch = any(step.pitch_deg is not None for step in steps)
    if not (has_yaw and has_pitch):
        logger.info("No usable yaw/pitch data; using a single leg over the run range")
        return [fallback_leg(steps, rules)]

    candidates = find_candidates(steps, rules)
    kept = [c for c in candidates if c.keep]
    discarded = len(candidates) - len(kept)
    if discarded:
        logger.debug(f"Discarded {discarded} legs below duration/distance thresholds")

    kept = [trim_leg_start(steps, c, rules) for c in kept]
    kept = reduce_leg_count(steps, kept)

    for leg_id, candidate in enumerate(kept, start=1):
        for step in steps[candidate.start:candidate.end + 1]:
            step.leg_id = leg_id

    legs = synthesize_legs(steps, {leg_id: c.why_ended for leg_id, c in enumerate(kept, start=1)})
    return validate_legs(steps, legs, rules.strict_invariants)


def synthesize_legs(steps: list[FlightStep], why_ended: dict[int, str]) -> list[Leg]:
    """Build a Leg record for every distinct positive leg id on the steps."""
    legs: dict[int, Leg] = {}
    for step in steps:
        if step.leg_id <= UNASSIGNED_LEG_ID:
            continue
        leg = legs.get(step.leg_id)
        if leg is None:
            legs[step.leg_id] = Leg(
                leg_id=step.leg_id,
                min_index=step.index,
                max_index=step.index,
                min_sum_time_ms=step.sum_time_ms,
                max_sum_time_ms=step.sum_time_ms,
                min_sum_lineal_m=step.sum_lineal_m,
                max_sum_lineal_m=step.sum_lineal_m,
                why_ended=why_ended.get(step.leg_id, ""),
            )
            continue
        leg.min_index = min(leg.min_index, step.index)
        leg.max_index = max(leg.max_index, step.index)
        leg.min_sum_time_ms = min(leg.min_sum_time_ms, step.sum_time_ms)
        leg.max_sum_time_ms = max(leg.max_sum_time_ms, step.sum_time_ms)
        leg.min_sum_lineal_m = min(leg.min_sum_lineal_m, step.sum_lineal_m)
        leg.max_sum_lineal_m = max(leg.max_sum_lineal_m, step.sum_lineal_m)
    return [legs[leg_id] for leg_id in sorted(legs)]


def validate_legs(steps: list[FlightStep], legs: list[Leg], strict: bool) -> list[Leg]:
    """
    Check legs are well formed and disjoint.

    In strict mode a bad leg raises InvariantViolationError. Otherwise the
    bad leg is dropped, its steps unassigned, and the rest renumbered.
    """
    good: list[Leg] = []
    previous: Optional[Leg] = None
    for leg in legs:
        problem = None
        if leg.min_index is None or leg.max_index is None or leg.min_index > leg.max_index:
            problem = f"Leg {leg.leg_id} has an invalid index range {leg.min_index}-{leg.max_index}"
        elif previous is not None and leg.min_index <= previous.max_index:
            problem = f"Leg {leg.leg_id} overlaps leg {previous.leg_id}"

        if problem is None:
            good.append(leg)
            previous = leg
            continue
        if strict:
            raise InvariantViolationError(problem)
        logger.warning(f"{problem}; dropping it")

    if len(good) == len(legs):
        return legs

    renumber = {leg.leg_id: new_id for new_id, leg in enumerate(good, start=1)}
    for step in steps:
        step.leg_id = renumber.get(step.leg_id, UNASSIGNED_LEG_ID)
    for leg in good:
        leg.leg_id = renumber[leg.leg_id]
    return good


def fallback_leg(steps: list[FlightStep], rules: RuleConfig) -> Leg:
    """Single leg spanning the configured run range, for logs without attitude data."""
    from_ms = int(rules.run_from_s * 1000)
    to_ms = int(rules.run_to_s * 1000)
    in_range = [s for s in steps if from_ms <= s.sum_time_ms <= to_ms]

    if in_range:
        return Leg(
            leg_id=1,
            min_index=None,
            max_index=None,
            min_sum_time_ms=in_range[0].sum_time_ms,
            max_sum_time_ms=in_range[-1].sum_time_ms,
            min_sum_lineal_m=in_range[0].sum_lineal_m,
            max_sum_lineal_m=in_range[-1].sum_lineal_m,
            why_ended=WHY_NO_DATA,
        )
    return Leg(
        leg_id=1,
        min_index=None,
        max_index=None,
        min_sum_time_ms=from_ms,
        max_sum_time_ms=to_ms,
        min_sum_lineal_m=0.0,
        max_sum_lineal_m=0.0,
        why_ended=WHY_NO_DATA,
    )
