"""
API routes for processed flights.
"""

import math
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from droneflight.api.schemas import (
    CoverageResponse,
    FlightDetailResponse,
    FlightInfoResponse,
    FlightSummaryResponse,
    FolderInfoResponse,
    FootprintResponse,
    GroundReferenceRequest,
    LegResponse,
    LocateResponse,
    PlanarPointResponse,
    SetFolderRequest,
    StepResponse,
    StepsResponse,
)
from droneflight.models.config import OnGroundAt
from droneflight.models.flight import Footprint, FlightStep, FlightSummary, Leg
from droneflight.models.location import PlanarPoint
from droneflight.services.aggregator import FlightAggregator
from droneflight.services.repository import get_repository
from droneflight.utils.coordinates import planar_to_global


router = APIRouter(prefix="/flights", tags=["flights"])


def _finite_or_none(value: Optional[float]) -> Optional[float]:
    """Convert NaN/inf to None for JSON serialization."""
    if value is None or not math.isfinite(value):
        return None
    return value


def _point(point: PlanarPoint) -> PlanarPointResponse:
    return PlanarPointResponse(northing_m=point.northing_m, easting_m=point.easting_m)


def _footprint(footprint: Optional[Footprint]) -> Optional[FootprintResponse]:
    if footprint is None:
        return None
    return FootprintResponse(
        center=_point(footprint.center),
        width_m=footprint.size_m[0],
        height_m=footprint.size_m[1],
        corners=[_point(c) for c in footprint.corners],
        camera_to_vertical_forward_deg=footprint.camera_to_vertical_forward_deg,
    )


def _step(step: FlightStep) -> StepResponse:
    return StepResponse(
        index=step.index,
        sum_time_ms=step.sum_time_ms,
        duration_ms=step.duration_ms,
        location=_point(step.location_m) if step.location_m is not None else None,
        altitude_m=_finite_or_none(step.altitude_m),
        yaw_deg=_finite_or_none(step.yaw_deg),
        pitch_deg=_finite_or_none(step.pitch_deg),
        sum_lineal_m=step.sum_lineal_m,
        speed_mps=_finite_or_none(step.speed_mps),
        delta_yaw_deg=_finite_or_none(step.delta_yaw_deg),
        dem_m=_finite_or_none(step.dem_m),
        dsm_m=_finite_or_none(step.dsm_m),
        leg_id=step.leg_id,
        footprint=_footprint(step.footprint),
    )


def _leg(leg: Leg) -> LegResponse:
    return LegResponse(
        leg_id=leg.leg_id,
        name=leg.name,
        min_index=leg.min_index,
        max_index=leg.max_index,
        min_sum_time_ms=leg.min_sum_time_ms,
        max_sum_time_ms=leg.max_sum_time_ms,
        lineal_m=leg.lineal_m,
        why_ended=leg.why_ended,
        refinement=leg.refinement,
    )


def _summary(summary: FlightSummary) -> FlightSummaryResponse:
    return FlightSummaryResponse(**asdict(summary))


def _get_flight_or_404(flight_id: str) -> FlightAggregator:
    repo = get_repository()
    flight = repo.get_flight(flight_id)
    if flight is None:
        raise HTTPException(status_code=404, detail=f"Flight not found: {flight_id}")
    return flight


def _check_range(from_ms: Optional[int], to_ms: Optional[int]) -> None:
    if from_ms is not None and to_ms is not None and from_ms > to_ms:
        raise HTTPException(status_code=400, detail="Invalid time range")


@router.get("", response_model=list[FlightInfoResponse])
async def list_flights():
    """
    List all available flights.

    Flights are processed on first access, so the first call can be slow.
    """
    repo = get_repository()
    return [FlightInfoResponse(**asdict(info)) for info in repo.list_flights()]


@router.get("/{flight_id}", response_model=FlightDetailResponse)
async def get_flight(flight_id: str):
    """Flight description, whole-flight statistics and legs."""
    flight = _get_flight_or_404(flight_id)
    info = get_repository().get_flight_info(flight_id)
    result = flight.last_result

    return FlightDetailResponse(
        info=FlightInfoResponse(**asdict(info)),
        summary=_summary(flight.summary),
        legs=[_leg(leg) for leg in flight.legs],
        percent_altitude_below_terrain=flight.percent_altitude_below_terrain(),
        on_ground_at=flight.rules.on_ground_at.value if flight.rules.on_ground_at else None,
        stage_durations_ms=result.stage_durations_ms if result else {},
    )


@router.get("/{flight_id}/legs", response_model=list[LegResponse])
async def get_legs(flight_id: str):
    """Legs of a flight, in time order."""
    flight = _get_flight_or_404(flight_id)
    return [_leg(leg) for leg in flight.legs]


@router.get("/{flight_id}/steps", response_model=StepsResponse)
async def get_steps(
    flight_id: str,
    offset: int = Query(0, ge=0, description="First step to return"),
    limit: int = Query(1000, ge=1, le=10000, description="Maximum steps to return"),
    leg_id: Optional[int] = Query(None, ge=1, description="Only steps in this leg"),
):
    """
    Processed steps for a flight.

    Warning: long flights have tens of thousands of steps; page with
    offset/limit.
    """
    flight = _get_flight_or_404(flight_id)
    steps = flight.steps
    if leg_id is not None:
        steps = [s for s in steps if s.leg_id == leg_id]

    return StepsResponse(
        flight_id=flight_id,
        total=len(steps),
        offset=offset,
        steps=[_step(s) for s in steps[offset:offset + limit]],
    )


@router.get("/{flight_id}/steps/nearest", response_model=StepResponse)
async def get_nearest_step(
    flight_id: str,
    ms: int = Query(..., ge=0, description="Elapsed flight time in milliseconds"),
    at_or_before: bool = Query(False, description="Return the last step at or before ms"),
):
    """Step closest to a flight time, e.g. for a video frame."""
    flight = _get_flight_or_404(flight_id)
    if at_or_before:
        step = flight.step_at_or_before(ms)
    else:
        step = flight.nearest_step_by_time(ms)
    if step is None:
        raise HTTPException(status_code=404, detail=f"No step at {ms}ms")
    return _step(step)


@router.get("/{flight_id}/summary", response_model=FlightSummaryResponse)
async def get_summary(
    flight_id: str,
    from_ms: Optional[int] = Query(None, ge=0, description="Range start (ms)"),
    to_ms: Optional[int] = Query(None, ge=0, description="Range end (ms)"),
):
    """Statistics over a time range (whole flight by default)."""
    flight = _get_flight_or_404(flight_id)
    _check_range(from_ms, to_ms)
    return _summary(flight.summarize(from_ms, to_ms))


@router.get("/{flight_id}/coverage", response_model=CoverageResponse)
async def get_coverage(
    flight_id: str,
    from_ms: Optional[int] = Query(None, ge=0, description="Range start (ms)"),
    to_ms: Optional[int] = Query(None, ge=0, description="Range end (ms)"),
    cell_m: float = Query(1.0, gt=0.0, le=100.0, description="Raster cell size"),
):
    """Ground area seen by the camera over a time range."""
    flight = _get_flight_or_404(flight_id)
    _check_range(from_ms, to_ms)
    coverage = flight.coverage(from_ms, to_ms, cell_m)
    first_leg, last_leg = flight.legs_overlapping(coverage.from_ms, coverage.to_ms)

    return CoverageResponse(
        **asdict(coverage),
        first_leg_id=first_leg,
        last_leg_id=last_leg,
    )


@router.get("/{flight_id}/locate", response_model=LocateResponse)
async def locate_feature(
    flight_id: str,
    index: int = Query(..., ge=0, description="Step index"),
    h: float = Query(0.5, ge=0.0, le=1.0, description="Horizontal image fraction"),
    v: float = Query(0.5, ge=0.0, le=1.0, description="Vertical image fraction"),
):
    """Ground location of a point in a frame's image."""
    flight = _get_flight_or_404(flight_id)
    if flight.get_step(index) is None:
        raise HTTPException(status_code=404, detail=f"Step not found: {index}")

    location = flight.locate_feature(index, h, v)
    if location is None:
        raise HTTPException(status_code=400, detail=f"Step {index} has no footprint")

    latitude = longitude = None
    if flight.store.origin is not None:
        global_location = planar_to_global(location, flight.store.origin)
        latitude = global_location.latitude
        longitude = global_location.longitude

    return LocateResponse(
        index=index,
        horizontal_fraction=h,
        vertical_fraction=v,
        location=_point(location),
        latitude=latitude,
        longitude=longitude,
    )


@router.post("/{flight_id}/ground-reference", response_model=FlightDetailResponse)
async def set_ground_reference(flight_id: str, request: GroundReferenceRequest):
    """
    Re-process a flight with a different ground reference.

    Use this when percent_altitude_below_terrain shows the barometric
    altitude is off.
    """
    flight = _get_flight_or_404(flight_id)

    mode = None
    if request.on_ground_at is not None:
        try:
            mode = OnGroundAt(request.on_ground_at.lower())
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail=f"Unknown on_ground_at value: {request.on_ground_at}",
            )

    flight.apply_ground_reference_correction(mode)
    return await get_flight(flight_id)


# ============================================================================
# Folder Management Routes
# ============================================================================

folder_router = APIRouter(prefix="/folder", tags=["folder"])


@folder_router.get("", response_model=FolderInfoResponse)
async def get_folder_info():
    """Get information about the current data folder."""
    repo = get_repository()

    return FolderInfoResponse(
        path=str(repo.data_folder) if repo.data_folder else None,
        flight_count=repo.flight_count,
    )


@folder_router.post("", response_model=FolderInfoResponse)
async def set_folder(request: SetFolderRequest):
    """
    Set the data folder to scan for flight logs.

    This will clear the current cache and re-scan.
    """
    repo = get_repository()

    path = Path(request.path)
    if not path.exists():
        raise HTTPException(status_code=400, detail=f"Folder does not exist: {request.path}")
    if not path.is_dir():
        raise HTTPException(status_code=400, detail=f"Path is not a directory: {request.path}")

    count = repo.set_data_folder(path)

    return FolderInfoResponse(
        path=str(path),
        flight_count=count,
    )


@folder_router.post("/rescan", response_model=FolderInfoResponse)
async def rescan_folder():
    """
    Rescan the current data folder for new flight logs.
    """
    repo = get_repository()

    if repo.data_folder is None:
        raise HTTPException(status_code=400, detail="No data folder set")

    repo.clear_cache()
    count = repo.scan_folder(repo.data_folder)

    return FolderInfoResponse(
        path=str(repo.data_folder),
        flight_count=count,
    )
