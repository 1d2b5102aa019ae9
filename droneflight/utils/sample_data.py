"""
Sample data generator for testing.

Generates a "lawnmower" survey flight: straight parallel legs joined by
half-circle turns, as flown by a drone mapping a field. Output is either a
list of RawSamples in the local planar frame or a generic-format CSV log.
"""

import math
from pathlib import Path
from typing import Optional

import numpy as np

from droneflight.models.config import SECTION_MIN_MS
from droneflight.models.location import GlobalLocation, PlanarPoint
from droneflight.models.raw import RawSample
from droneflight.utils.coordinates import planar_to_global


def _survey_pose(
    distance_m: float,
    n_legs: int,
    leg_length_m: float,
    turn_radius_m: float,
) -> Optional[tuple[float, float, float]]:
    """
    (northing, easting, yaw) after flying `distance_m` along the survey path.

    Odd legs fly north, even legs fly south. Returns None past the end of
    the last leg.
    """
    turn_length_m = math.pi * turn_radius_m
    period_m = leg_length_m + turn_length_m

    leg = int(distance_m // period_m)
    if leg >= n_legs:
        return None
    along = distance_m - leg * period_m
    easting = leg * 2 * turn_radius_m
    northbound = leg % 2 == 0

    if along <= leg_length_m or leg == n_legs - 1:
        along = min(along, leg_length_m)
        if northbound:
            return along, easting, 0.0
        return leg_length_m - along, easting, 180.0

    phi = (along - leg_length_m) / turn_radius_m
    if northbound:
        # Clockwise over the top: heading 0 -> 180
        northing = leg_length_m + turn_radius_m * math.sin(phi)
        yaw = math.degrees(phi)
    else:
        # Anticlockwise under the bottom: heading 180 -> 0
        northing = -turn_radius_m * math.sin(phi)
        yaw = 180.0 - math.degrees(phi)
    easting += turn_radius_m - turn_radius_m * math.cos(phi)
    return northing, easting, yaw


def generate_survey_samples(
    n_legs: int = 3,
    leg_length_m: float = 60.0,
    leg_spacing_m: float = 20.0,
    speed_mps: float = 5.0,
    altitude_m: float = 60.0,
    pitch_deg: float = -90.0,
    section_ms: int = SECTION_MIN_MS,
    noise_m: float = 0.0,
    seed: Optional[int] = None,
) -> list[RawSample]:
    """
    Generate a survey flight as planar RawSamples, one per section.

    Args:
        n_legs: Number of straight legs
        leg_length_m: Length of each leg
        leg_spacing_m: Distance between adjacent legs (turn diameter)
        speed_mps: Constant ground speed
        altitude_m: Constant altitude
        pitch_deg: Gimbal pitch (-90 is straight down)
        section_ms: Time between samples
        noise_m: Standard deviation of position noise
        seed: Random seed for the noise
    """
    rng = np.random.default_rng(seed)
    turn_radius_m = leg_spacing_m / 2

    samples = []
    index = 0
    while True:
        distance_m = speed_mps * index * section_ms / 1000.0
        pose = _survey_pose(distance_m, n_legs, leg_length_m, turn_radius_m)
        if pose is None:
            break
        northing, easting, yaw = pose
        if noise_m > 0:
            northing += float(rng.normal(0, noise_m))
            easting += float(rng.normal(0, noise_m))

        samples.append(RawSample(
            index=index,
            timestamp_ms=index * section_ms,
            duration_ms=0 if index == 0 else section_ms,
            location_m=PlanarPoint(northing, easting),
            altitude_m=altitude_m,
            yaw_deg=yaw,
            pitch_deg=pitch_deg,
            roll_deg=0.0,
            zoom=1.0,
        ))
        # Stop once the final leg is complete
        if distance_m >= (n_legs - 1) * (leg_length_m + math.pi * turn_radius_m) + leg_length_m:
            break
        index += 1

    return samples


def write_survey_csv(
    output_path: Path,
    samples: list[RawSample],
    origin: GlobalLocation = GlobalLocation(-36.8485, 174.7633),
) -> Path:
    """Write planar samples as a generic-format CSV log with GPS positions."""
    lines = ["# Generated survey flight"]
    lines.append("time,latitude,longitude,altitude,yaw,pitch,roll,zoom")

    for sample in samples:
        location = planar_to_global(sample.location_m, origin)
        yaw = sample.yaw_deg % 360.0
        lines.append(
            f"{sample.timestamp_ms / 1000.0:.3f},"
            f"{location.latitude:.8f},"
            f"{location.longitude:.8f},"
            f"{sample.altitude_m:.2f},"
            f"{yaw:.2f},"
            f"{sample.pitch_deg:.1f},"
            f"{sample.roll_deg or 0.0:.1f},"
            f"{sample.zoom or 1.0:.1f}"
        )

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'w') as f:
        f.write('\n'.join(lines))

    return output_path


def generate_test_data_set(output_folder: Path) -> list[Path]:
    """Generate a set of test flight logs."""
    output_folder.mkdir(parents=True, exist_ok=True)

    files = []

    files.append(write_survey_csv(
        output_folder / "flight_001_survey.csv",
        generate_survey_samples(n_legs=4, noise_m=0.2, seed=1),
    ))

    files.append(write_survey_csv(
        output_folder / "flight_002_oblique.csv",
        generate_survey_samples(n_legs=3, leg_length_m=100.0, pitch_deg=-60.0, seed=2),
    ))

    files.append(write_survey_csv(
        output_folder / "flight_003_fast_low.csv",
        generate_survey_samples(n_legs=5, speed_mps=10.0, altitude_m=30.0, seed=3),
    ))

    return files


if __name__ == "__main__":
    # Generate test data when run directly
    output = Path("./data/flights")
    files = generate_test_data_set(output)
    print(f"Generated {len(files)} test files in {output}")
    for f in files:
        print(f"  - {f.name}")
