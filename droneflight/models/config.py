"""
Processing configuration for a flight.

RuleConfig drives smoothing and leg segmentation, CameraModel drives footprint
projection. Both can be built from environment variables so a deployment can
tune thresholds without code changes.
"""

import os
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


SECTION_MIN_MS = 250  # telemetry is quantized into sections of this length
ELEVATION_ACCURACY_M = 1.0


class OnGroundAt(Enum):
    """Where in the flight the drone is known to be sitting on the ground."""

    START = "start"
    END = "end"
    BOTH = "both"
    NEITHER = "neither"


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value not in ("0", "false", "False", "no")


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass
class RuleConfig:
    """Thresholds for smoothing and leg segmentation."""

    max_leg_step_delta_yaw_deg: float = 4.0
    max_leg_sum_delta_yaw_deg: float = 10.0
    max_leg_sum_pitch_deg: float = 18.0
    max_leg_step_pitch_deg: float = 12.0
    min_camera_down_deg: float = 15.0
    max_leg_gap_duration_ms: int = 2 * SECTION_MIN_MS
    min_leg_duration_ms: int = 2000
    min_leg_distance_m: float = 5.0
    smoothing_radius: int = 2
    use_gimbal_data: bool = True

    on_ground_at: Optional[OnGroundAt] = OnGroundAt.NEITHER

    # Run range used when the flight log has no usable attitude data
    run_from_s: float = 5.0
    run_to_s: float = 10.0

    # Raise InvariantViolationError instead of logging and falling back
    strict_invariants: bool = False

    @classmethod
    def from_env(cls) -> "RuleConfig":
        """Build a config from DRONEFLIGHT_* environment variables."""
        defaults = cls()
        on_ground = os.getenv("DRONEFLIGHT_ON_GROUND_AT")
        return cls(
            max_leg_step_delta_yaw_deg=_env_float(
                "DRONEFLIGHT_MAX_LEG_STEP_DELTA_YAW_DEG", defaults.max_leg_step_delta_yaw_deg
            ),
            max_leg_sum_delta_yaw_deg=_env_float(
                "DRONEFLIGHT_MAX_LEG_SUM_DELTA_YAW_DEG", defaults.max_leg_sum_delta_yaw_deg
            ),
            max_leg_sum_pitch_deg=_env_float(
                "DRONEFLIGHT_MAX_LEG_SUM_PITCH_DEG", defaults.max_leg_sum_pitch_deg
            ),
            max_leg_step_pitch_deg=_env_float(
                "DRONEFLIGHT_MAX_LEG_STEP_PITCH_DEG", defaults.max_leg_step_pitch_deg
            ),
            min_camera_down_deg=_env_float(
                "DRONEFLIGHT_MIN_CAMERA_DOWN_DEG", defaults.min_camera_down_deg
            ),
            max_leg_gap_duration_ms=int(_env_float(
                "DRONEFLIGHT_MAX_LEG_GAP_DURATION_MS", defaults.max_leg_gap_duration_ms
            )),
            min_leg_duration_ms=int(_env_float(
                "DRONEFLIGHT_MIN_LEG_DURATION_MS", defaults.min_leg_duration_ms
            )),
            min_leg_distance_m=_env_float(
                "DRONEFLIGHT_MIN_LEG_DISTANCE_M", defaults.min_leg_distance_m
            ),
            smoothing_radius=int(_env_float(
                "DRONEFLIGHT_SMOOTHING_RADIUS", defaults.smoothing_radius
            )),
            use_gimbal_data=_env_bool("DRONEFLIGHT_USE_GIMBAL_DATA", defaults.use_gimbal_data),
            on_ground_at=OnGroundAt(on_ground.lower()) if on_ground else defaults.on_ground_at,
            run_from_s=_env_float("DRONEFLIGHT_RUN_FROM_S", defaults.run_from_s),
            run_to_s=_env_float("DRONEFLIGHT_RUN_TO_S", defaults.run_to_s),
            strict_invariants=_env_bool(
                "DRONEFLIGHT_STRICT_INVARIANTS", defaults.strict_invariants
            ),
        )

    def for_pipeline(self) -> "RuleConfig":
        """
        Return the config actually used by a pipeline run.

        Clamps the camera-down threshold into 15..90 degrees. With gimbal data
        the camera can point anywhere below the horizon, so the step and
        cumulative pitch limits are opened up to 95 degrees.
        """
        config = replace(
            self,
            min_camera_down_deg=_clamp(self.min_camera_down_deg, 15.0, 90.0),
            smoothing_radius=max(0, int(self.smoothing_radius)),
        )
        if config.use_gimbal_data:
            config = replace(config, max_leg_step_pitch_deg=95.0, max_leg_sum_pitch_deg=95.0)
        return config


@dataclass
class CameraModel:
    """Camera optics used for footprint projection."""

    hfov_deg: float = 38.2
    image_width: int = 640
    image_height: int = 512
    vfov_deg: Optional[float] = None  # derived from aspect ratio when None

    # Camera angle below horizontal when the log has no gimbal data
    fixed_camera_down_deg: float = 80.0

    def __post_init__(self):
        if self.image_width <= 0 or self.image_height <= 0:
            raise ValueError(
                f"Image size must be positive: {self.image_width}x{self.image_height}"
            )
        if not 0 < self.hfov_deg < 180:
            raise ValueError(f"Horizontal field of view out of range: {self.hfov_deg}")
        self.fixed_camera_down_deg = _clamp(self.fixed_camera_down_deg, 25.0, 90.0)

    @property
    def aspect_ratio(self) -> float:
        """Image height over width."""
        return self.image_height / self.image_width

    @property
    def vertical_fov_deg(self) -> float:
        if self.vfov_deg is not None:
            return self.vfov_deg
        return self.hfov_deg * self.aspect_ratio

    @property
    def fixed_camera_to_vertical_forward_deg(self) -> float:
        return 90.0 - self.fixed_camera_down_deg

    @classmethod
    def from_env(cls) -> "CameraModel":
        """Build a camera model from DRONEFLIGHT_* environment variables."""
        defaults = cls()
        vfov = os.getenv("DRONEFLIGHT_VFOV_DEG")
        return cls(
            hfov_deg=_env_float("DRONEFLIGHT_HFOV_DEG", defaults.hfov_deg),
            image_width=int(_env_float("DRONEFLIGHT_IMAGE_WIDTH", defaults.image_width)),
            image_height=int(_env_float("DRONEFLIGHT_IMAGE_HEIGHT", defaults.image_height)),
            vfov_deg=float(vfov) if vfov else None,
            fixed_camera_down_deg=_env_float(
                "DRONEFLIGHT_FIXED_CAMERA_DOWN_DEG", defaults.fixed_camera_down_deg
            ),
        )
