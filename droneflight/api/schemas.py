"""
API schemas (Pydantic models) for request/response validation.
"""

from typing import Optional
from pydantic import BaseModel, Field


# ============================================================================
# Flight Schemas
# ============================================================================

class FlightInfoResponse(BaseModel):
    """Summary of a flight for listing."""
    id: str
    name: str
    source_file: str
    step_count: int
    leg_count: int
    duration_ms: int
    rejected_samples: int
    has_attitude: bool


class FlightSummaryResponse(BaseModel):
    """Statistics over a range of steps. Null means not computed."""
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
    bounding_box: Optional[tuple[float, float, float, float]] = None  # (min_n, min_e, max_n, max_e)


class LegResponse(BaseModel):
    """A flight leg."""
    leg_id: int
    name: str
    min_index: Optional[int] = None
    max_index: Optional[int] = None
    min_sum_time_ms: int
    max_sum_time_ms: int
    lineal_m: float
    why_ended: str
    refinement: str


class FlightDetailResponse(BaseModel):
    """Flight description with whole-flight statistics and legs."""
    info: FlightInfoResponse
    summary: FlightSummaryResponse
    legs: list[LegResponse]
    percent_altitude_below_terrain: float
    on_ground_at: Optional[str] = None
    stage_durations_ms: dict[str, float]


# ============================================================================
# Step Schemas
# ============================================================================

class PlanarPointResponse(BaseModel):
    """Point in the local planar frame (meters)."""
    northing_m: float
    easting_m: float


class FootprintResponse(BaseModel):
    """Ground area seen by one frame."""
    center: PlanarPointResponse
    width_m: float
    height_m: float
    corners: list[PlanarPointResponse]
    camera_to_vertical_forward_deg: float


class StepResponse(BaseModel):
    """A smoothed flight step."""
    index: int
    sum_time_ms: int
    duration_ms: int
    location: Optional[PlanarPointResponse] = None
    altitude_m: Optional[float] = None
    yaw_deg: Optional[float] = None
    pitch_deg: Optional[float] = None
    sum_lineal_m: float
    speed_mps: Optional[float] = None
    delta_yaw_deg: Optional[float] = None
    dem_m: Optional[float] = None
    dsm_m: Optional[float] = None
    leg_id: int
    footprint: Optional[FootprintResponse] = None


class StepsResponse(BaseModel):
    """A page of steps."""
    flight_id: str
    total: int
    offset: int
    steps: list[StepResponse]


# ============================================================================
# Query Schemas
# ============================================================================

class CoverageResponse(BaseModel):
    """Swathe covered by the camera over a time range."""
    from_ms: int
    to_ms: int
    footprint_count: int
    swathe_area_m2: float
    cell_m: float
    first_leg_id: Optional[int] = None
    last_leg_id: Optional[int] = None


class LocateResponse(BaseModel):
    """Ground location of an image point."""
    index: int
    horizontal_fraction: float
    vertical_fraction: float
    location: PlanarPointResponse
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class GroundReferenceRequest(BaseModel):
    """Where the drone was on the ground; null disables correction."""
    on_ground_at: Optional[str] = Field(
        default=None, description="start, end, both, neither or null"
    )


# ============================================================================
# Folder Management Schemas
# ============================================================================

class SetFolderRequest(BaseModel):
    """Request to set the data folder."""
    path: str


class FolderInfoResponse(BaseModel):
    """Information about the current data folder."""
    path: Optional[str]
    flight_count: int
