"""
Tests for the flight pipeline and its queries.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from droneflight.exceptions import InvariantViolationError
from droneflight.models.config import RuleConfig
from droneflight.models.location import PlanarPoint
from droneflight.models.raw import RawSample
from droneflight.services.aggregator import FlightAggregator, ingest_samples, summarize_steps
from droneflight.services.elevation import ConstantElevation
from droneflight.services.refiner import REFINE_LINEAR
from droneflight.services.sample_store import SampleStore
from droneflight.services.segmenter import (
    WHY_END,
    WHY_NO_DATA,
    WHY_YAW,
    leg_distance_m,
    leg_duration_ms,
    segment,
)
from droneflight.services.smoother import smooth
from droneflight.utils.sample_data import generate_survey_samples


def build_aggregator(samples, **kwargs):
    store = SampleStore()
    rejected = ingest_samples(store, samples)
    aggregator = FlightAggregator(store, dem=ConstantElevation(0.0), **kwargs)
    aggregator.run(rejected_samples=rejected)
    return aggregator


@pytest.fixture(scope="module")
def survey():
    """Three 60m legs at 5 m/s, 60m up, camera straight down."""
    return build_aggregator(generate_survey_samples(n_legs=3))


class TestPipeline:
    """Tests for FlightAggregator.run()."""

    def test_one_step_per_sample(self, survey):
        assert len(survey.steps) == len(survey.store)
        assert [s.index for s in survey.steps] == [s.index for s in survey.store]

    def test_stage_timings_reported(self, survey):
        result = survey.last_result
        assert list(result.stage_durations_ms) == [
            "smooth", "terrain", "ground_reference", "project", "segment", "refine", "summarize",
        ]
        assert result.total_ms >= 0
        assert result.step_count == len(survey.steps)
        assert result.leg_count == 3

    def test_survey_legs(self, survey):
        legs = survey.legs
        assert [leg.name for leg in legs] == ["A", "B", "C"]
        assert [leg.why_ended for leg in legs] == [WHY_YAW, WHY_YAW, WHY_END]
        for previous, leg in zip(legs, legs[1:]):
            assert previous.max_index < leg.min_index
            assert previous.max_sum_time_ms < leg.min_sum_time_ms

    def test_legs_alternate_direction(self, survey):
        for leg, heading in zip(survey.legs, [0.0, 180.0, 0.0]):
            yaws = [s.yaw_deg for s in survey.steps if s.leg_id == leg.leg_id]
            assert_allclose(np.median(yaws), heading, atol=1.0)

    def test_legs_cover_most_of_each_line(self, survey):
        for leg in survey.legs:
            assert 45.0 < leg.lineal_m < 61.0
            assert leg.duration_ms >= 2000

    def test_steady_legs_refined_linearly(self, survey):
        assert all(leg.refinement == REFINE_LINEAR for leg in survey.legs)
        # Evenly spaced in time, so evenly spaced along the line
        leg_steps = [s for s in survey.steps if s.leg_id == 1]
        spacing = [s.lineal_m for s in leg_steps[1:]]
        assert_allclose(spacing, spacing[0], rtol=1e-6)

    def test_leg_ids_match_legs(self, survey):
        for step in survey.steps:
            if step.leg_id:
                leg = survey.get_leg(step.leg_id)
                assert leg.contains_index(step.index)

    def test_every_step_has_footprint(self, survey):
        assert all(s.footprint is not None for s in survey.steps)

    def test_summary(self, survey):
        summary = survey.summary
        assert summary.step_count == len(survey.steps)
        assert summary.min_sum_time_ms == 0
        assert_allclose(summary.avg_speed_mps, 5.0, rtol=0.05)
        assert_allclose(summary.min_altitude_m, 60.0)
        assert summary.min_dem_m == 0.0
        min_n, min_e, max_n, max_e = summary.bounding_box
        assert min_e == pytest.approx(0.0, abs=0.5)
        assert max_e == pytest.approx(40.0, abs=0.5)

    def test_rerun_gives_same_result(self):
        aggregator = build_aggregator(generate_survey_samples(n_legs=2, noise_m=0.3, seed=7))
        steps, legs, summary = aggregator.steps, aggregator.legs, aggregator.summary

        aggregator.run()

        assert aggregator.steps is not steps
        assert aggregator.steps == steps
        assert aggregator.legs == legs
        assert aggregator.summary == summary

    def test_rejected_samples_counted(self):
        samples = generate_survey_samples(n_legs=2)
        samples.insert(10, samples[5])
        aggregator = build_aggregator(samples)
        assert aggregator.last_result.rejected_samples == 1

    def test_empty_flight(self):
        aggregator = build_aggregator([])
        assert aggregator.steps == []
        assert aggregator.summary.step_count == 0
        assert aggregator.nearest_step_by_time(100) is None

    def test_no_attitude_uses_fallback_leg(self):
        samples = generate_survey_samples(n_legs=2)
        for sample in samples:
            sample.yaw_deg = None
            sample.pitch_deg = None
        aggregator = build_aggregator(samples, rules=RuleConfig(use_gimbal_data=False))

        assert len(aggregator.legs) == 1
        assert aggregator.legs[0].why_ended == WHY_NO_DATA
        assert aggregator.legs[0].refinement == "none"
        assert all(s.leg_id == 0 for s in aggregator.steps)

    def test_strict_mode_runs_clean_flight(self):
        aggregator = build_aggregator(
            generate_survey_samples(n_legs=2), rules=RuleConfig(strict_invariants=True)
        )
        assert len(aggregator.legs) == 2


def hover_samples(n=80, seed=0):
    """A drone holding position with a metre of GPS jitter, camera down."""
    rng = np.random.default_rng(seed)
    return [
        RawSample(
            index=i,
            timestamp_ms=i * 250,
            duration_ms=0 if i == 0 else 250,
            location_m=PlanarPoint(*(float(v) for v in rng.uniform(-0.5, 0.5, size=2))),
            altitude_m=30.0,
            yaw_deg=45.0,
            pitch_deg=-90.0,
        )
        for i in range(n)
    ]


def segmented(samples, rules):
    store = SampleStore()
    ingest_samples(store, samples)
    steps = smooth(store, rules.smoothing_radius)
    return steps, segment(steps, rules)


class TestLegProperties:
    """Every kept leg is disjoint from the others and passes the thresholds."""

    @pytest.mark.parametrize("samples", [
        generate_survey_samples(n_legs=3, noise_m=0.3, seed=1),
        generate_survey_samples(n_legs=3, noise_m=0.3, seed=2),
        generate_survey_samples(n_legs=4, noise_m=0.3, seed=3),
        generate_survey_samples(n_legs=5),
        generate_survey_samples(n_legs=2, speed_mps=2.0, leg_length_m=12.0),
    ])
    def test_legs_meet_thresholds(self, samples):
        rules = RuleConfig().for_pipeline()

        steps, legs = segmented(samples, rules)

        assert legs
        position = {s.index: i for i, s in enumerate(steps)}
        for previous, leg in zip(legs, legs[1:]):
            assert previous.max_index < leg.min_index
        for leg in legs:
            start, end = position[leg.min_index], position[leg.max_index]
            assert leg_duration_ms(steps, start, end) >= rules.min_leg_duration_ms
            assert leg_distance_m(steps, start, end) >= rules.min_leg_distance_m
            assert all(s.leg_id == leg.leg_id for s in steps[start:end + 1])

    def test_hover_has_no_legs(self):
        rules = RuleConfig().for_pipeline()

        steps, legs = segmented(hover_samples(), rules)

        assert legs == []
        assert all(s.leg_id == 0 for s in steps)


class TestTimeQueries:
    """Tests for time-based step lookups."""

    def test_nearest_step_by_time(self, survey):
        assert survey.nearest_step_by_time(1130).sum_time_ms == 1250
        assert survey.nearest_step_by_time(1120).sum_time_ms == 1000

    def test_nearest_tie_goes_to_earlier(self, survey):
        assert survey.nearest_step_by_time(1125).sum_time_ms == 1000

    def test_nearest_clamps(self, survey):
        assert survey.nearest_step_by_time(0).index == 0
        assert survey.nearest_step_by_time(10 ** 9) is survey.steps[-1]

    def test_step_at_or_before(self, survey):
        assert survey.step_at_or_before(1249).sum_time_ms == 1000
        assert survey.step_at_or_before(1250).sum_time_ms == 1250
        assert survey.step_at_or_before(0).index == 0

    def test_legs_overlapping(self, survey):
        assert survey.legs_overlapping(0, None) == (1, 3)
        leg_b = survey.get_leg(2)
        assert survey.legs_overlapping(leg_b.min_sum_time_ms, leg_b.max_sum_time_ms) == (2, 2)

    def test_no_legs_overlapping(self, survey):
        leg_a = survey.get_leg(1)
        # A sliver at the end of leg A is under the overlap threshold
        assert survey.legs_overlapping(leg_a.max_sum_time_ms - 250, leg_a.max_sum_time_ms) == \
            (None, None)

    def test_summarize_range(self, survey):
        leg_a = survey.get_leg(1)
        summary = survey.summarize(leg_a.min_sum_time_ms, leg_a.max_sum_time_ms)
        assert summary.min_sum_time_ms == leg_a.min_sum_time_ms
        assert summary.max_sum_time_ms == leg_a.max_sum_time_ms
        assert_allclose(summary.avg_speed_mps, 5.0, rtol=0.02)

    def test_leg_summary(self, survey):
        assert survey.leg_summary(1).step_count == \
            sum(1 for s in survey.steps if s.leg_id == 1)
        assert survey.leg_summary(9) is None

    def test_sum_leg_lineal(self, survey):
        assert_allclose(survey.sum_leg_lineal_m(), sum(l.lineal_m for l in survey.legs))


class TestCoverage:
    """Tests for swathe coverage."""

    def test_single_frame(self, survey):
        step = survey.steps[20]

        coverage = survey.coverage(step.sum_time_ms, step.sum_time_ms, cell_m=0.25)

        assert coverage.footprint_count == 1
        assert_allclose(coverage.swathe_area_m2, step.footprint.area_m2, rtol=0.03)

    def test_overlapping_frames_not_double_counted(self, survey):
        coverage = survey.coverage(cell_m=1.0)
        total = sum(s.footprint.area_m2 for s in survey.steps)

        assert coverage.footprint_count == len(survey.steps)
        assert coverage.swathe_area_m2 < total
        assert coverage.swathe_area_m2 > survey.steps[0].footprint.area_m2

    def test_empty_range(self, survey):
        coverage = survey.coverage(10 ** 8, 10 ** 8 + 1)
        assert coverage.footprint_count == 0
        assert coverage.swathe_area_m2 == 0.0


class TestLocate:

    def test_center_of_image(self, survey):
        step = survey.steps[30]
        located = survey.locate_feature(step.index, 0.5, 0.5)
        assert located == step.footprint.center

    def test_top_of_image_is_ahead(self, survey):
        # Leg A flies north
        step = next(s for s in survey.steps if s.leg_id == 1)
        located = survey.locate_feature(step.index, 0.5, 0.0)
        height = step.footprint.size_m[1]
        assert_allclose(located.northing_m - step.footprint.center.northing_m, height / 2)

    def test_unknown_step(self, survey):
        assert survey.locate_feature(10 ** 6, 0.5, 0.5) is None


class TestSummarizeSteps:

    def test_empty(self):
        summary = summarize_steps([])
        assert summary.step_count == 0
        assert summary.bounding_box is None
        assert summary.duration_ms == 0

    def test_strict_error_type(self):
        assert issubclass(InvariantViolationError, AssertionError)
