"""
SampleStore - ordered, append-only collection of raw flight-log samples.

Samples are keyed by their section index. Indexes strictly increase but may
have gaps where telemetry was dropped, so lookups tolerate small gaps.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, Optional

from droneflight.exceptions import MalformedInputError, OutOfOrderError
from droneflight.models.location import GlobalLocation
from droneflight.models.raw import RawSample
from droneflight.utils.coordinates import global_to_planar, yaw_delta_deg


logger = logging.getLogger(__name__)


# How far either side of a missing index nearest() will look
MAX_NEAREST_SEARCH_SLOTS = 8


@dataclass
class RawAggregates:
    """Extrema of the raw samples (None when no sample carries the value)."""

    min_altitude_m: Optional[float] = None
    max_altitude_m: Optional[float] = None
    min_northing_m: Optional[float] = None
    max_northing_m: Optional[float] = None
    min_easting_m: Optional[float] = None
    max_easting_m: Optional[float] = None
    min_pitch_deg: Optional[float] = None
    max_pitch_deg: Optional[float] = None
    min_delta_yaw_deg: Optional[float] = None
    max_delta_yaw_deg: Optional[float] = None
    max_lineal_m: Optional[float] = None
    max_speed_mps: Optional[float] = None


def _min(current: Optional[float], value: Optional[float]) -> Optional[float]:
    if value is None:
        return current
    return value if current is None else min(current, value)


def _max(current: Optional[float], value: Optional[float]) -> Optional[float]:
    if value is None:
        return current
    return value if current is None else max(current, value)


class SampleStore:
    """
    Raw samples for one flight, in index order.

    The first sample with a GPS fix sets the planar origin unless one is
    given. Samples arriving without a planar location get one derived from
    their GPS fix.
    """

    def __init__(self, origin: Optional[GlobalLocation] = None):
        self._samples: list[RawSample] = []
        self._by_index: dict[int, RawSample] = {}
        self._origin: Optional[GlobalLocation] = origin
        self._aggregates: Optional[RawAggregates] = None

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[RawSample]:
        return iter(self._samples)

    @property
    def origin(self) -> Optional[GlobalLocation]:
        return self._origin

    @property
    def samples(self) -> list[RawSample]:
        """Samples in index order (do not mutate)."""
        return self._samples

    @property
    def first(self) -> Optional[RawSample]:
        return self._samples[0] if self._samples else None

    @property
    def last(self) -> Optional[RawSample]:
        return self._samples[-1] if self._samples else None

    @property
    def max_index(self) -> Optional[int]:
        return self._samples[-1].index if self._samples else None

    def add(self, sample: RawSample) -> None:
        """
        Append a sample.

        Raises:
            OutOfOrderError: index not above the current maximum, or the
                timestamp goes backwards. The store is left unchanged.
            MalformedInputError: negative index, timestamp or duration.
        """
        if sample.index < 0:
            raise MalformedInputError(f"Sample index must not be negative: {sample.index}")
        if sample.timestamp_ms < 0:
            raise MalformedInputError(
                f"Sample {sample.index} has negative timestamp {sample.timestamp_ms}"
            )
        if sample.duration_ms < 0:
            raise MalformedInputError(
                f"Sample {sample.index} has negative duration {sample.duration_ms}"
            )

        last = self.last
        if last is not None:
            if sample.index == last.index:
                raise OutOfOrderError(f"Duplicate sample index {sample.index}")
            if sample.index < last.index:
                raise OutOfOrderError(
                    f"Sample index {sample.index} is behind stored maximum {last.index}"
                )
            if sample.timestamp_ms < last.timestamp_ms:
                raise OutOfOrderError(
                    f"Sample {sample.index} timestamp {sample.timestamp_ms}ms "
                    f"is before previous {last.timestamp_ms}ms"
                )

        if sample.location_m is None and sample.global_location is not None:
            if self._origin is None:
                self._origin = sample.global_location
                logger.debug(f"Planar origin set from sample {sample.index}: {self._origin}")
            sample.location_m = global_to_planar(sample.global_location, self._origin)

        self._samples.append(sample)
        self._by_index[sample.index] = sample
        self._aggregates = None

    def get(self, index: int) -> Optional[RawSample]:
        """Exact lookup by index."""
        return self._by_index.get(index)

    def nearest(self, index: int) -> Optional[RawSample]:
        """
        Sample at `index`, or the closest one within MAX_NEAREST_SEARCH_SLOTS.

        At each distance the later slot is checked before the earlier one.
        Returns None when nothing is stored that close.
        """
        sample = self._by_index.get(index)
        if sample is not None:
            return sample

        for offset in range(1, MAX_NEAREST_SEARCH_SLOTS + 1):
            sample = self._by_index.get(index + offset)
            if sample is not None:
                return sample
            sample = self._by_index.get(index - offset)
            if sample is not None:
                return sample
        return None

    def nearest_by_time(self, elapsed_ms: int) -> Optional[RawSample]:
        """
        Sample whose timestamp is closest to `elapsed_ms`.

        Linear scan that stops as soon as the distance starts growing, which
        is safe because timestamps never decrease.
        """
        if not self._samples:
            return None
        if elapsed_ms <= self._samples[0].timestamp_ms:
            return self._samples[0]
        if elapsed_ms >= self._samples[-1].timestamp_ms:
            return self._samples[-1]

        best = self._samples[0]
        best_delta = abs(best.timestamp_ms - elapsed_ms)
        for sample in self._samples[1:]:
            delta = abs(sample.timestamp_ms - elapsed_ms)
            if delta < best_delta:
                best = sample
                best_delta = delta
            elif delta > best_delta:
                break
        return best

    @property
    def aggregates(self) -> RawAggregates:
        """Raw extrema, computed on first use after each add()."""
        if self._aggregates is None:
            self._aggregates = self._compute_aggregates()
        return self._aggregates

    def has_yaw_data(self) -> bool:
        return any(s.yaw_deg is not None for s in self._samples)

    def has_pitch_data(self) -> bool:
        return any(s.pitch_deg is not None for s in self._samples)

    def _compute_aggregates(self) -> RawAggregates:
        agg = RawAggregates()
        previous: Optional[RawSample] = None

        for sample in self._samples:
            agg.min_altitude_m = _min(agg.min_altitude_m, sample.altitude_m)
            agg.max_altitude_m = _max(agg.max_altitude_m, sample.altitude_m)
            agg.min_pitch_deg = _min(agg.min_pitch_deg, sample.pitch_deg)
            agg.max_pitch_deg = _max(agg.max_pitch_deg, sample.pitch_deg)

            location = sample.location_m
            if location is not None:
                agg.min_northing_m = _min(agg.min_northing_m, location.northing_m)
                agg.max_northing_m = _max(agg.max_northing_m, location.northing_m)
                agg.min_easting_m = _min(agg.min_easting_m, location.easting_m)
                agg.max_easting_m = _max(agg.max_easting_m, location.easting_m)

            if previous is None:
                delta_yaw = 0.0 if sample.yaw_deg is not None else None
            else:
                delta_yaw = yaw_delta_deg(previous.yaw_deg, sample.yaw_deg)
            agg.min_delta_yaw_deg = _min(agg.min_delta_yaw_deg, delta_yaw)
            agg.max_delta_yaw_deg = _max(agg.max_delta_yaw_deg, delta_yaw)

            if previous is not None and previous.location_m is not None and location is not None:
                lineal = previous.location_m.distance_to(location)
                agg.max_lineal_m = _max(agg.max_lineal_m, lineal)
                if sample.duration_ms > 0:
                    agg.max_speed_mps = _max(
                        agg.max_speed_mps, 1000.0 * lineal / sample.duration_ms
                    )

            previous = sample

        return agg
