"""
Tests for leg refinement.
"""

import pytest
from numpy.testing import assert_allclose

from droneflight.exceptions import InvariantViolationError
from droneflight.models.flight import FlightStep, Leg
from droneflight.models.location import PlanarPoint
from droneflight.services import refiner
from droneflight.services.refiner import (
    REFINE_LINEAR,
    REFINE_NONE,
    REFINE_SPLINE,
    leg_speed_profile,
    refine_leg,
    refine_legs,
)
from droneflight.services.smoother import compute_derived_fields


def make_leg_steps(northings, eastings=None, leg_id=1):
    """Steps 250ms apart at the given positions."""
    eastings = eastings if eastings is not None else [0.0] * len(northings)
    steps = [
        FlightStep(
            index=i,
            timestamp_ms=i * 250,
            duration_ms=0 if i == 0 else 250,
            location_m=PlanarPoint(n, e),
            leg_id=leg_id,
        )
        for i, (n, e) in enumerate(zip(northings, eastings))
    ]
    compute_derived_fields(steps)
    return steps


@pytest.fixture
def wobbly_steps():
    """Steady 5 m/s north with a sideways wobble."""
    wobble = [0.0, 0.2, -0.2, 0.1, -0.1, 0.2, 0.0, -0.2, 0.1, 0.0]
    return make_leg_steps([1.25 * i for i in range(10)], wobble)


class TestSpeedProfile:

    def test_steady(self, wobbly_steps):
        avg, peak = leg_speed_profile(wobbly_steps)
        assert_allclose(avg, 5.0, rtol=0.05)
        assert peak < 2 * avg

    def test_too_short(self):
        assert leg_speed_profile(make_leg_steps([0.0])) == (None, None)


class TestRefineLeg:
    """Tests for refine_leg()."""

    def test_steady_leg_straightened(self, wobbly_steps):
        first = wobbly_steps[0].location_m
        last = wobbly_steps[-1].location_m

        assert refine_leg(wobbly_steps) == REFINE_LINEAR

        for i, step in enumerate(wobbly_steps):
            fraction = i / 9
            assert_allclose(step.location_m.northing_m,
                            first.northing_m + fraction * (last.northing_m - first.northing_m))
            assert_allclose(step.location_m.easting_m, 0.0, atol=1e-9)

    def test_accelerating_leg_uses_spline(self):
        # Cubic in time: speed ramps up well past twice the average
        times_s = [0.25 * i for i in range(21)]
        northings = [0.2 * t ** 3 for t in times_s]
        steps = make_leg_steps(northings)

        assert refine_leg(steps) == REFINE_SPLINE

        # A cubic is fitted exactly
        assert_allclose([s.location_m.northing_m for s in steps], northings, atol=1e-3)

    def test_slow_leg_uses_spline(self):
        steps = make_leg_steps([0.25 * i for i in range(10)])  # 1 m/s
        assert refine_leg(steps) == REFINE_SPLINE

    def test_too_few_steps(self):
        steps = make_leg_steps([0.0, 1.25, 2.5])
        assert refine_leg(steps) == REFINE_NONE

    def test_same_time_steps_not_splined(self):
        steps = make_leg_steps([0.0, 0.1, 0.2, 5.0, 5.1])
        steps[2].sum_time_ms = steps[1].sum_time_ms
        assert refine_leg(steps) == REFINE_NONE


class TestBoundingBox:
    """Refinement must not move a leg outside its own extent."""

    @pytest.fixture
    def escaping(self, monkeypatch):
        def shifted(located):
            return [s.location_m.translate(0.0, 5.0) for s in located]
        monkeypatch.setattr(refiner, "_linear_locations", shifted)

    def test_reverted(self, wobbly_steps, escaping):
        before = [s.location_m for s in wobbly_steps]

        assert refine_leg(wobbly_steps) == REFINE_NONE

        assert [s.location_m for s in wobbly_steps] == before

    def test_strict_raises(self, wobbly_steps, escaping):
        with pytest.raises(InvariantViolationError):
            refine_leg(wobbly_steps, leg_id=1, strict=True)


class TestRefineLegs:

    def test_each_leg_refined(self, wobbly_steps):
        second = make_leg_steps([1.25 * i for i in range(10)], leg_id=2)
        for i, step in enumerate(second):
            step.index = 20 + i
        steps = wobbly_steps + [
            FlightStep(index=15, timestamp_ms=0, duration_ms=0, location_m=PlanarPoint(0, 0))
        ] + second
        legs = [
            Leg(1, 0, 9, 0, 2250, 0.0, 11.25, "Yaw change"),
            Leg(2, 20, 29, 5000, 7250, 0.0, 11.25, "No more steps"),
            Leg(3, 40, 45, 9000, 9500, 0.0, 0.0, "No more steps"),
        ]

        applied = refine_legs(steps, legs)

        assert applied == {1: REFINE_LINEAR, 2: REFINE_LINEAR, 3: REFINE_NONE}
