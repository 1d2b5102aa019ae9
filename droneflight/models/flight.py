"""
Processed flight data model.

A flight is processed into:
- one FlightStep per raw sample (smoothed position/attitude plus derived fields)
- a list of Legs (straight, purposeful flight segments)
- an optional Footprint per step (ground area seen by the camera)

Steps refer to their leg by integer id (index + 1 into the leg list), never
by object reference.
"""

from dataclasses import dataclass, field
from typing import Optional

from droneflight.models.location import PlanarPoint
from droneflight.models.raw import RawSample


UNASSIGNED_LEG_ID = 0


def leg_name(leg_id: int) -> str:
    """Display letter for a leg: 1 -> "A", 26 -> "Z"."""
    if leg_id <= 0:
        return ""
    if leg_id <= 26:
        return chr(ord("A") + leg_id - 1)
    return str(leg_id)


@dataclass
class Footprint:
    """Ground area covered by one video frame."""

    center: PlanarPoint
    size_m: tuple[float, float]   # (width, height)
    corners: tuple[PlanarPoint, PlanarPoint, PlanarPoint, PlanarPoint]  # TL, TR, BR, BL
    camera_to_vertical_forward_deg: float

    @property
    def area_m2(self) -> float:
        return self.size_m[0] * self.size_m[1]


@dataclass
class FlightStep:
    """Smoothed counterpart of a RawSample."""

    index: int
    timestamp_ms: int
    duration_ms: int

    location_m: Optional[PlanarPoint] = None
    altitude_m: Optional[float] = None
    yaw_deg: Optional[float] = None
    pitch_deg: Optional[float] = None
    roll_deg: Optional[float] = None
    zoom: Optional[float] = None

    # Derived by the forward pass
    sum_time_ms: int = 0
    lineal_m: Optional[float] = None
    sum_lineal_m: float = 0.0
    speed_mps: Optional[float] = None
    delta_yaw_deg: Optional[float] = None

    # Terrain at location_m
    dem_m: Optional[float] = None
    dsm_m: Optional[float] = None

    footprint: Optional[Footprint] = None
    leg_id: int = UNASSIGNED_LEG_ID

    @classmethod
    def from_raw(cls, raw: RawSample) -> "FlightStep":
        return cls(
            index=raw.index,
            timestamp_ms=raw.timestamp_ms,
            duration_ms=raw.duration_ms,
            location_m=raw.location_m,
            altitude_m=raw.altitude_m,
            yaw_deg=raw.yaw_deg,
            pitch_deg=raw.pitch_deg,
            roll_deg=raw.roll_deg,
            zoom=raw.zoom,
            sum_time_ms=raw.timestamp_ms,
        )


@dataclass
class Leg:
    """A maximal run of steps flown roughly straight and level."""

    leg_id: int
    min_index: Optional[int]
    max_index: Optional[int]
    min_sum_time_ms: int
    max_sum_time_ms: int
    min_sum_lineal_m: float
    max_sum_lineal_m: float
    why_ended: str
    refinement: str = "none"  # "linear", "spline" or "none"

    @property
    def name(self) -> str:
        return leg_name(self.leg_id)

    @property
    def duration_ms(self) -> int:
        return self.max_sum_time_ms - self.min_sum_time_ms

    @property
    def lineal_m(self) -> float:
        return self.max_sum_lineal_m - self.min_sum_lineal_m

    def contains_index(self, index: int) -> bool:
        if self.min_index is None or self.max_index is None:
            return False
        return self.min_index <= index <= self.max_index

    def percent_overlap(self, from_ms: int, to_ms: Optional[int]) -> int:
        """Percentage of this leg's duration that falls inside [from_ms, to_ms]."""
        duration = self.duration_ms
        if duration <= 0:
            return 0
        start = max(from_ms, self.min_sum_time_ms)
        end = self.max_sum_time_ms if to_ms is None else min(to_ms, self.max_sum_time_ms)
        if end <= start:
            return 0
        return int(100.0 * (end - start) / duration)


@dataclass
class FlightSummary:
    """Statistics over a range of steps. None means no step had the value."""

    step_count: int
    min_sum_time_ms: Optional[int] = None
    max_sum_time_ms: Optional[int] = None
    min_sum_lineal_m: Optional[float] = None
    max_sum_lineal_m: Optional[float] = None

    min_altitude_m: Optional[float] = None
    max_altitude_m: Optional[float] = None
    avg_speed_mps: Optional[float] = None
    max_speed_mps: Optional[float] = None
    min_pitch_deg: Optional[float] = None
    max_pitch_deg: Optional[float] = None
    min_delta_yaw_deg: Optional[float] = None
    max_delta_yaw_deg: Optional[float] = None

    min_dem_m: Optional[float] = None
    max_dem_m: Optional[float] = None
    min_dsm_m: Optional[float] = None
    max_dsm_m: Optional[float] = None

    # (min_northing, min_easting, max_northing, max_easting)
    bounding_box: Optional[tuple[float, float, float, float]] = None

    @property
    def duration_ms(self) -> int:
        if self.min_sum_time_ms is None or self.max_sum_time_ms is None:
            return 0
        return self.max_sum_time_ms - self.min_sum_time_ms


@dataclass
class CoverageSummary:
    """Swathe seen by the camera over a time range."""

    from_ms: int
    to_ms: int
    footprint_count: int
    swathe_area_m2: float
    cell_m: float


@dataclass
class PipelineResult:
    """Outcome of one pipeline run."""

    step_count: int
    leg_count: int
    rejected_samples: int = 0
    stage_durations_ms: dict[str, float] = field(default_factory=dict)

    @property
    def total_ms(self) -> float:
        return sum(self.stage_durations_ms.values())


@dataclass
class FlightInfo:
    """Lightweight description of a processed flight for listing."""

    id: str
    name: str
    source_file: str
    step_count: int
    leg_count: int
    duration_ms: int
    rejected_samples: int
    has_attitude: bool
