"""
Elevation sources - terrain height lookup in the planar frame.

The pipeline only needs `elevation_at(point)`. Terrain data itself is owned
by the caller: a constant plane, a regular grid loaded from a DEM/DSM, or
any object with the same method.
"""

import logging
from typing import Optional, Protocol

import numpy as np
from numpy.typing import NDArray

from droneflight.models.location import PlanarPoint


logger = logging.getLogger(__name__)


class ElevationSource(Protocol):
    """Terrain elevation (meters) at a planar location, None if unknown."""

    def elevation_at(self, point: PlanarPoint) -> Optional[float]:
        ...


class ConstantElevation:
    """Flat terrain at a fixed height."""

    def __init__(self, height_m: float = 0.0):
        self.height_m = float(height_m)

    def elevation_at(self, point: PlanarPoint) -> Optional[float]:
        return self.height_m


class GridElevation:
    """
    Regular elevation grid with bilinear interpolation.

    Row r, column c of `heights` is the elevation at
    (origin_northing + r * cell_m, origin_easting + c * cell_m).
    NaN cells are treated as no data. Points outside the grid return None.
    """

    def __init__(
        self,
        heights: NDArray[np.float64],
        cell_m: float = 1.0,
        origin: PlanarPoint = PlanarPoint(0.0, 0.0),
    ):
        heights = np.asarray(heights, dtype=np.float64)
        if heights.ndim != 2 or heights.shape[0] < 2 or heights.shape[1] < 2:
            raise ValueError(f"Elevation grid must be 2D and at least 2x2, got {heights.shape}")
        if cell_m <= 0:
            raise ValueError(f"Grid cell size must be positive: {cell_m}")
        self.heights = heights
        self.cell_m = float(cell_m)
        self.origin = origin

    @property
    def min_elevation_m(self) -> Optional[float]:
        if np.all(np.isnan(self.heights)):
            return None
        return float(np.nanmin(self.heights))

    @property
    def max_elevation_m(self) -> Optional[float]:
        if np.all(np.isnan(self.heights)):
            return None
        return float(np.nanmax(self.heights))

    def elevation_at(self, point: PlanarPoint) -> Optional[float]:
        row = (point.northing_m - self.origin.northing_m) / self.cell_m
        col = (point.easting_m - self.origin.easting_m) / self.cell_m
        n_rows, n_cols = self.heights.shape
        if row < 0 or col < 0 or row > n_rows - 1 or col > n_cols - 1:
            return None

        r0 = min(int(np.floor(row)), n_rows - 2)
        c0 = min(int(np.floor(col)), n_cols - 2)
        fr = row - r0
        fc = col - c0

        cell = self.heights[r0:r0 + 2, c0:c0 + 2]
        weights = np.array([
            [(1 - fr) * (1 - fc), (1 - fr) * fc],
            [fr * (1 - fc), fr * fc],
        ])
        # No-data corners only matter if they contribute
        used = weights > 0
        if np.any(np.isnan(cell[used])):
            return None
        return float(np.sum(cell[used] * weights[used]))


class CachedElevation:
    """
    Memoizing wrapper around another ElevationSource.

    Lookups are keyed on the point rounded to `resolution_m`, which is fine
    for ray marching where the same few metres are queried repeatedly.
    """

    def __init__(self, source: ElevationSource, resolution_m: float = 0.1):
        self.source = source
        self.resolution_m = resolution_m
        self._cache: dict[tuple[int, int], Optional[float]] = {}
        self.hits = 0
        self.misses = 0

    def elevation_at(self, point: PlanarPoint) -> Optional[float]:
        key = (
            int(round(point.northing_m / self.resolution_m)),
            int(round(point.easting_m / self.resolution_m)),
        )
        if key in self._cache:
            self.hits += 1
            return self._cache[key]

        self.misses += 1
        value = self.source.elevation_at(point)
        self._cache[key] = value
        return value

    def clear(self) -> None:
        self._cache.clear()
        logger.debug("Elevation cache cleared")
