"""
FlightAggregator - runs the processing pipeline for one flight and answers
queries about the result.

Pipeline order (fixed):
    smooth -> terrain lookup -> ground reference -> project all steps
    -> segment into legs -> refine legs -> re-project refined steps -> summarize

Each run builds fresh steps and legs and swaps them in at the end, so a
failed run leaves the previous result intact.
"""

import logging
import math
from dataclasses import replace
from typing import Iterable, Optional

import numpy as np

from droneflight.exceptions import MalformedInputError
from droneflight.models.config import CameraModel, OnGroundAt, RuleConfig
from droneflight.models.flight import (
    CoverageSummary,
    FlightStep,
    FlightSummary,
    Leg,
    PipelineResult,
)
from droneflight.models.location import PlanarPoint
from droneflight.models.raw import RawSample
from droneflight.services.elevation import CachedElevation, ElevationSource
from droneflight.services.ground_reference import (
    apply_ground_reference,
    percent_altitude_below_terrain,
)
from droneflight.services.projector import FootprintProjector, back_project
from droneflight.services.refiner import REFINE_NONE, refine_legs
from droneflight.services.sample_store import SampleStore
from droneflight.services.segmenter import segment, synthesize_legs
from droneflight.services.smoother import compute_derived_fields, smooth
from droneflight.utils.timing import Stopwatch


logger = logging.getLogger(__name__)


MIN_OVERLAP_PERCENT = 20
MAX_COVERAGE_CELLS = 4_000_000


def ingest_samples(store: SampleStore, samples: Iterable[RawSample]) -> int:
    """
    Add samples to the store, skipping any that are malformed.

    Returns:
        Number of rejected samples
    """
    rejected = 0
    for sample in samples:
        try:
            store.add(sample)
        except MalformedInputError as e:
            rejected += 1
            logger.warning(f"Rejected sample: {e}")
    if rejected:
        logger.info(f"Ingested {len(store)} samples, rejected {rejected}")
    return rejected


def summarize_steps(steps: list[FlightStep]) -> FlightSummary:
    """Min/max/avg statistics over `steps`."""
    summary = FlightSummary(step_count=len(steps))
    if not steps:
        return summary

    def values(attr: str) -> np.ndarray:
        return np.array(
            [getattr(s, attr) for s in steps if getattr(s, attr) is not None],
            dtype=np.float64,
        )

    def extent(attr: str) -> tuple[Optional[float], Optional[float]]:
        arr = values(attr)
        if arr.size == 0:
            return None, None
        return float(np.min(arr)), float(np.max(arr))

    summary.min_sum_time_ms = steps[0].sum_time_ms
    summary.max_sum_time_ms = steps[-1].sum_time_ms
    summary.min_sum_lineal_m = steps[0].sum_lineal_m
    summary.max_sum_lineal_m = steps[-1].sum_lineal_m

    summary.min_altitude_m, summary.max_altitude_m = extent("altitude_m")
    summary.min_pitch_deg, summary.max_pitch_deg = extent("pitch_deg")
    summary.min_delta_yaw_deg, summary.max_delta_yaw_deg = extent("delta_yaw_deg")
    summary.min_dem_m, summary.max_dem_m = extent("dem_m")
    summary.min_dsm_m, summary.max_dsm_m = extent("dsm_m")
    _, summary.max_speed_mps = extent("speed_mps")

    duration_ms = summary.duration_ms
    if duration_ms > 0:
        distance_m = summary.max_sum_lineal_m - summary.min_sum_lineal_m
        summary.avg_speed_mps = 1000.0 * distance_m / duration_ms

    located = [s.location_m for s in steps if s.location_m is not None]
    if located:
        north = np.array([p.northing_m for p in located])
        east = np.array([p.easting_m for p in located])
        summary.bounding_box = (
            float(north.min()), float(east.min()), float(north.max()), float(east.max())
        )
    return summary


class FlightAggregator:
    """
    Owns one flight's raw samples, processed steps and legs.

    Args:
        store: Raw samples for the flight
        camera: Camera optics (defaults to CameraModel())
        rules: Smoothing/segmentation thresholds (defaults to RuleConfig())
        dem: Bare-earth elevation source
        dsm: Surface elevation source (falls back to `dem`)
    """

    def __init__(
        self,
        store: SampleStore,
        camera: Optional[CameraModel] = None,
        rules: Optional[RuleConfig] = None,
        dem: Optional[ElevationSource] = None,
        dsm: Optional[ElevationSource] = None,
    ):
        self.store = store
        self.camera = camera if camera is not None else CameraModel()
        self.rules = rules if rules is not None else RuleConfig()
        self._dem = CachedElevation(dem) if dem is not None else None
        self._dsm = CachedElevation(dsm) if dsm is not None else self._dem

        self._steps: list[FlightStep] = []
        self._legs: list[Leg] = []
        self._times_ms = np.array([], dtype=np.int64)
        self._by_index: dict[int, FlightStep] = {}
        self._summary = FlightSummary(step_count=0)
        self.last_result: Optional[PipelineResult] = None

    @property
    def steps(self) -> list[FlightStep]:
        return self._steps

    @property
    def legs(self) -> list[Leg]:
        return self._legs

    @property
    def summary(self) -> FlightSummary:
        return self._summary

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def run(self, rejected_samples: int = 0) -> PipelineResult:
        """Process the flight from the raw samples, replacing any earlier result."""
        rules = self.rules.for_pipeline()
        watch = Stopwatch()
        projector = FootprintProjector(self.camera, self._dsm, rules.use_gimbal_data)

        with watch.stage("smooth"):
            steps = smooth(self.store, rules.smoothing_radius, rules.strict_invariants)

        with watch.stage("terrain"):
            self._lookup_terrain(steps)

        with watch.stage("ground_reference"):
            apply_ground_reference(steps, rules.on_ground_at)

        with watch.stage("project"):
            for step in steps:
                step.footprint = projector.project(step)

        with watch.stage("segment"):
            legs = segment(steps, rules)

        with watch.stage("refine"):
            legs = self._refine(steps, legs, projector, rules.strict_invariants)

        with watch.stage("summarize"):
            summary = summarize_steps(steps)

        self._steps = steps
        self._legs = legs
        self._summary = summary
        self._times_ms = np.array([s.sum_time_ms for s in steps], dtype=np.int64)
        self._by_index = {s.index: s for s in steps}

        result = PipelineResult(
            step_count=len(steps),
            leg_count=len(legs),
            rejected_samples=rejected_samples,
            stage_durations_ms=dict(watch.durations_ms),
        )
        self.last_result = result
        logger.info(
            f"Processed {result.step_count} steps into {result.leg_count} legs "
            f"in {watch.total_ms:.1f}ms"
        )
        return result

    def _lookup_terrain(self, steps: Iterable[FlightStep]) -> None:
        for step in steps:
            if step.location_m is None:
                step.dem_m = None
                step.dsm_m = None
                continue
            step.dem_m = self._dem.elevation_at(step.location_m) if self._dem else None
            step.dsm_m = self._dsm.elevation_at(step.location_m) if self._dsm else None

    def _refine(
        self,
        steps: list[FlightStep],
        legs: list[Leg],
        projector: FootprintProjector,
        strict: bool,
    ) -> list[Leg]:
        # The fallback leg has no steps to refine
        if not legs or legs[0].min_index is None:
            return legs

        applied = refine_legs(steps, legs, strict)
        compute_derived_fields(steps)

        refined = [
            s for s in steps
            if s.leg_id > 0 and applied.get(s.leg_id, REFINE_NONE) != REFINE_NONE
        ]
        self._lookup_terrain(refined)
        for step in refined:
            step.footprint = projector.project(step)

        # Lineal ranges moved with the refined locations
        rebuilt = synthesize_legs(steps, {leg.leg_id: leg.why_ended for leg in legs})
        for leg in rebuilt:
            leg.refinement = applied.get(leg.leg_id, REFINE_NONE)
        return rebuilt

    def apply_ground_reference_correction(self, mode: Optional[OnGroundAt]) -> PipelineResult:
        """
        Re-run the pipeline with a different ground reference mode.

        Altitudes are shifted by the DEM-minus-altitude fix at the start
        and/or end of the flight (or by the implausible-minimum fix for
        NEITHER). None turns correction off.
        """
        self.rules = replace(self.rules, on_ground_at=mode)
        rejected = self.last_result.rejected_samples if self.last_result else 0
        return self.run(rejected_samples=rejected)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_step(self, index: int) -> Optional[FlightStep]:
        return self._by_index.get(index)

    def get_leg(self, leg_id: int) -> Optional[Leg]:
        if 1 <= leg_id <= len(self._legs):
            return self._legs[leg_id - 1]
        return None

    def nearest_step_by_time(self, ms: int) -> Optional[FlightStep]:
        """Step whose cumulative time is closest to `ms` (earlier step wins ties)."""
        if not self._steps:
            return None
        idx = int(np.searchsorted(self._times_ms, ms))
        if idx <= 0:
            return self._steps[0]
        if idx >= len(self._steps):
            return self._steps[-1]
        before = self._steps[idx - 1]
        after = self._steps[idx]
        if after.sum_time_ms - ms < ms - before.sum_time_ms:
            return after
        return before

    def step_at_or_before(self, ms: int) -> Optional[FlightStep]:
        """Last step at or before `ms`, None if the flight starts later."""
        if not self._steps:
            return None
        idx = int(np.searchsorted(self._times_ms, ms, side="right"))
        if idx <= 0:
            return None
        return self._steps[idx - 1]

    def legs_overlapping(self, from_ms: int, to_ms: Optional[int]) -> tuple[Optional[int], Optional[int]]:
        """
        First and last leg ids substantially inside [from_ms, to_ms].

        A leg counts when at least MIN_OVERLAP_PERCENT of its duration is
        in the range. Returns (None, None) when no leg qualifies.
        """
        ids = [
            leg.leg_id for leg in self._legs
            if leg.percent_overlap(from_ms, to_ms) >= MIN_OVERLAP_PERCENT
        ]
        if not ids:
            return None, None
        return ids[0], ids[-1]

    def percent_altitude_below_terrain(self) -> float:
        """Diagnostic for a mis-set ground reference."""
        return percent_altitude_below_terrain(self._steps)

    def sum_leg_lineal_m(self) -> float:
        """Distance flown inside legs."""
        return sum(leg.lineal_m for leg in self._legs)

    def steps_in_range(self, from_ms: Optional[int] = None, to_ms: Optional[int] = None) -> list[FlightStep]:
        return [
            s for s in self._steps
            if (from_ms is None or s.sum_time_ms >= from_ms)
            and (to_ms is None or s.sum_time_ms <= to_ms)
        ]

    def summarize(self, from_ms: Optional[int] = None, to_ms: Optional[int] = None) -> FlightSummary:
        """Statistics over a time range (whole flight by default)."""
        if from_ms is None and to_ms is None:
            return self._summary
        return summarize_steps(self.steps_in_range(from_ms, to_ms))

    def leg_summary(self, leg_id: int) -> Optional[FlightSummary]:
        leg = self.get_leg(leg_id)
        if leg is None:
            return None
        return summarize_steps([s for s in self._steps if s.leg_id == leg_id])

    def locate_feature(
        self,
        index: int,
        horizontal_fraction: float,
        vertical_fraction: float,
        block_offset: Optional[PlanarPoint] = None,
    ) -> Optional[PlanarPoint]:
        """Ground location of an image point in the frame for step `index`."""
        step = self.get_step(index)
        if step is None:
            return None
        return back_project(step, horizontal_fraction, vertical_fraction, block_offset)

    def coverage(
        self,
        from_ms: Optional[int] = None,
        to_ms: Optional[int] = None,
        cell_m: float = 1.0,
    ) -> CoverageSummary:
        """
        Swathe seen by the camera over a time range.

        Footprints are rasterized onto a grid of `cell_m` cells; the area
        is the number of cells whose centre lies inside any footprint. The
        cell size is coarsened if the grid would be unreasonably large.
        """
        steps = self.steps_in_range(from_ms, to_ms)
        footprints = [s.footprint for s in steps if s.footprint is not None]
        start_ms = steps[0].sum_time_ms if steps else (from_ms or 0)
        end_ms = steps[-1].sum_time_ms if steps else (to_ms or 0)
        if not footprints:
            return CoverageSummary(start_ms, end_ms, 0, 0.0, cell_m)

        corners = np.array(
            [[c.northing_m, c.easting_m] for f in footprints for c in f.corners],
            dtype=np.float64,
        )
        min_n, min_e = corners.min(axis=0)
        max_n, max_e = corners.max(axis=0)

        n_rows = int(math.ceil((max_n - min_n) / cell_m)) + 1
        n_cols = int(math.ceil((max_e - min_e) / cell_m)) + 1
        if n_rows * n_cols > MAX_COVERAGE_CELLS:
            cell_m *= math.sqrt(n_rows * n_cols / MAX_COVERAGE_CELLS)
            logger.info(f"Coverage grid coarsened to {cell_m:.2f}m cells")
            n_rows = int(math.ceil((max_n - min_n) / cell_m)) + 1
            n_cols = int(math.ceil((max_e - min_e) / cell_m)) + 1

        seen = np.zeros((n_rows, n_cols), dtype=np.bool_)
        for footprint in footprints:
            _rasterize_quad(seen, footprint.corners, min_n, min_e, cell_m)

        area = float(np.count_nonzero(seen)) * cell_m * cell_m
        return CoverageSummary(start_ms, end_ms, len(footprints), area, cell_m)


def _rasterize_quad(
    grid: np.ndarray,
    corners: tuple[PlanarPoint, ...],
    origin_n: float,
    origin_e: float,
    cell_m: float,
) -> None:
    """Mark grid cells whose centres fall inside the convex quad `corners`."""
    quad = np.array([[c.northing_m, c.easting_m] for c in corners], dtype=np.float64)
    lo = np.floor((quad.min(axis=0) - [origin_n, origin_e]) / cell_m).astype(int)
    hi = np.ceil((quad.max(axis=0) - [origin_n, origin_e]) / cell_m).astype(int)
    lo = np.maximum(lo, 0)
    hi = np.minimum(hi, [grid.shape[0] - 1, grid.shape[1] - 1])
    if np.any(hi < lo):
        return

    rows = np.arange(lo[0], hi[0] + 1)
    cols = np.arange(lo[1], hi[1] + 1)
    pn = origin_n + (rows[:, None] + 0.5) * cell_m
    pe = origin_e + (cols[None, :] + 0.5) * cell_m

    inside_pos = np.ones((len(rows), len(cols)), dtype=np.bool_)
    inside_neg = np.ones((len(rows), len(cols)), dtype=np.bool_)
    for i in range(4):
        a = quad[i]
        b = quad[(i + 1) % 4]
        cross = (b[0] - a[0]) * (pe - a[1]) - (b[1] - a[1]) * (pn - a[0])
        inside_pos &= cross >= 0
        inside_neg &= cross <= 0

    grid[lo[0]:hi[0] + 1, lo[1]:hi[1] + 1] |= inside_pos | inside_neg
