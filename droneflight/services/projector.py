"""
FootprintProjector - camera ground footprint from drone pose and terrain.

Conventions:
- yaw is a compass bearing (0 = north, clockwise), the planar frame is
  standard mathematical orientation, so in-image offsets are rotated by
  (pi - yaw) and negated to land on (easting, northing)
- the top of the image points in the direction of flight
- camera_to_vertical_forward_deg is 0 when the camera looks straight down
"""

import logging
import math
from typing import Optional

from droneflight.exceptions import InsufficientDataError
from droneflight.models.config import CameraModel
from droneflight.models.flight import Footprint, FlightStep
from droneflight.models.location import PlanarPoint
from droneflight.services.elevation import ElevationSource


logger = logging.getLogger(__name__)


PACE_M = 2.0                     # ray-march step across the ground
MIN_TERRAIN_FORWARD_M = 3.0      # below this the flat-earth centre is used
MIN_TERRAIN_CLEARANCE_M = 3.0


def image_offset_to_planar(dx_m: float, dy_m: float, yaw_deg: float) -> tuple[float, float]:
    """
    Rotate an in-image offset onto the ground.

    Args:
        dx_m: Offset to the right of the image centre (meters)
        dy_m: Offset towards the top of the image (meters)
        yaw_deg: Flight yaw (compass degrees)

    Returns:
        (d_northing, d_easting) in meters
    """
    theta = math.pi - math.radians(yaw_deg)
    cos_t = math.cos(theta)
    sin_t = math.sin(theta)
    rx = dx_m * cos_t - dy_m * sin_t
    ry = dx_m * sin_t + dy_m * cos_t
    return -ry, -rx


class FootprintProjector:
    """Projects flight steps onto the ground for one camera."""

    def __init__(
        self,
        camera: CameraModel,
        elevation: Optional[ElevationSource] = None,
        use_gimbal_data: bool = True,
    ):
        self.camera = camera
        self.elevation = elevation
        self.use_gimbal_data = use_gimbal_data

    def camera_to_vertical_forward_deg(self, step: FlightStep) -> float:
        """Angle between straight down and the camera axis, towards the front."""
        if self.use_gimbal_data and step.pitch_deg is not None:
            return max(0.0, min(90.0, 90.0 - abs(step.pitch_deg)))
        return self.camera.fixed_camera_to_vertical_forward_deg

    def _ground_under(self, step: FlightStep) -> tuple[float, float]:
        """
        (bare-earth, surface) elevation under the drone.

        Raises:
            InsufficientDataError: location, altitude or terrain unknown
        """
        if step.location_m is None:
            raise InsufficientDataError(f"Step {step.index} has no location")
        if step.altitude_m is None:
            raise InsufficientDataError(f"Step {step.index} has no altitude")
        dem = step.dem_m
        dsm = step.dsm_m
        if dem is None and dsm is None and self.elevation is not None:
            dem = self.elevation.elevation_at(step.location_m)
        if dsm is None:
            dsm = dem
        if dem is None:
            dem = dsm
        if dem is None:
            raise InsufficientDataError(f"No terrain elevation under step {step.index}")
        return dem, dsm

    def image_center(self, step: FlightStep) -> Optional[tuple[PlanarPoint, float, float]]:
        """
        Ground point at the centre of the image.

        Returns:
            (center, vertical_distance_m, forward_m), or None when the frame
            would include the horizon or the pose is not known well enough.
        """
        try:
            dem, dsm = self._ground_under(step)
        except InsufficientDataError as e:
            logger.debug(f"No footprint: {e}")
            return None

        angle_deg = self.camera_to_vertical_forward_deg(step)
        if angle_deg >= 90.0 - self.camera.vertical_fov_deg / 2:
            return None

        vertical_m = step.altitude_m - dem
        if vertical_m <= 0:
            return None

        angle_rad = math.radians(angle_deg)
        forward_m = vertical_m * math.tan(angle_rad)
        yaw = step.yaw_deg if step.yaw_deg is not None else 0.0
        flat_earth = step.location_m.moved_along(yaw, forward_m)

        center = flat_earth
        if (
            self.elevation is not None
            and forward_m > MIN_TERRAIN_FORWARD_M
            and step.altitude_m > dsm + MIN_TERRAIN_CLEARANCE_M
        ):
            center = self._march_to_terrain(step, yaw, angle_rad, forward_m, flat_earth)

        return center, vertical_m, forward_m

    def _march_to_terrain(
        self,
        step: FlightStep,
        yaw: float,
        angle_rad: float,
        forward_m: float,
        flat_earth: PlanarPoint,
    ) -> PlanarPoint:
        # Walk towards the flat-earth point until the terrain rises into the line of sight
        fall_per_m = math.cos(angle_rad)
        num_paces = int(forward_m / PACE_M)
        for pace in range(1, num_paces):
            pace_m = pace * PACE_M
            pace_locn = step.location_m.moved_along(yaw, pace_m)
            sight_m = step.altitude_m - fall_per_m * pace_m
            terrain_m = self.elevation.elevation_at(pace_locn)
            if terrain_m is not None and terrain_m >= sight_m:
                return pace_locn
        return flat_earth

    def project(self, step: FlightStep) -> Optional[Footprint]:
        """
        Footprint for `step`, or None if it is undefined.

        Width is `2 * view_length * tan(hfov / 2) / zoom`, the pinhole image
        width at the slant distance. The sine form gives the chord of the
        view circle instead and under-reports wide lenses.
        """
        located = self.image_center(step)
        if located is None:
            return None
        center, vertical_m, forward_m = located

        view_length = math.hypot(vertical_m, forward_m)
        half_hfov = math.radians(self.camera.hfov_deg) / 2
        zoom = step.zoom if step.zoom is not None and step.zoom >= 1 else 1.0
        width_m = 2 * view_length * math.tan(half_hfov) / zoom
        height_m = width_m * self.camera.aspect_ratio

        yaw = step.yaw_deg if step.yaw_deg is not None else 0.0
        corners = tuple(
            _offset_point(center, (h - 0.5) * width_m, (0.5 - v) * height_m, yaw)
            for h, v in ((0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0))
        )

        return Footprint(
            center=center,
            size_m=(width_m, height_m),
            corners=corners,
            camera_to_vertical_forward_deg=self.camera_to_vertical_forward_deg(step),
        )

    def back_project(
        self,
        step: FlightStep,
        horizontal_fraction: float,
        vertical_fraction: float,
        block_offset: Optional[PlanarPoint] = None,
    ) -> Optional[PlanarPoint]:
        return back_project(step, horizontal_fraction, vertical_fraction, block_offset)


def _offset_point(center: PlanarPoint, dx_m: float, dy_m: float, yaw_deg: float) -> PlanarPoint:
    d_north, d_east = image_offset_to_planar(dx_m, dy_m, yaw_deg)
    return center.translate(d_north, d_east)


def project(
    step: FlightStep,
    camera: CameraModel,
    elevation: Optional[ElevationSource] = None,
    use_gimbal_data: bool = True,
) -> Optional[Footprint]:
    """Project a single step with a throwaway projector."""
    return FootprintProjector(camera, elevation, use_gimbal_data).project(step)


def back_project(
    step: FlightStep,
    horizontal_fraction: float,
    vertical_fraction: float,
    block_offset: Optional[PlanarPoint] = None,
) -> Optional[PlanarPoint]:
    """
    Ground location of a point in the step's image.

    Fractions run 0..1 left to right and top to bottom, (0.5, 0.5) is the
    image centre. `block_offset` shifts the footprint centre first, for
    images processed in sub-blocks. Terrain undulation inside the
    footprint is not accounted for.
    """
    footprint = step.footprint
    if footprint is None:
        return None

    center = footprint.center
    if block_offset is not None:
        center = center.translate(block_offset.northing_m, block_offset.easting_m)

    width_m, height_m = footprint.size_m
    dx = width_m * (horizontal_fraction - 0.5)
    dy = height_m * (0.5 - vertical_fraction)
    yaw = step.yaw_deg if step.yaw_deg is not None else 0.0
    return _offset_point(center, dx, dy, yaw)
