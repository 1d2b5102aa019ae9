"""
Flight-log CSV adapters.

Each adapter reads one manufacturer/export format with pandas and emits the
same RawSample stream. Timestamps are quantized into SECTION_MIN_MS slots
and only the first tick in each slot is kept.
"""

import io
import logging
import re
from pathlib import Path
from typing import Optional, Protocol

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from droneflight.exceptions import AdapterError
from droneflight.models.config import SECTION_MIN_MS
from droneflight.models.location import GlobalLocation, PlanarPoint
from droneflight.models.raw import RawSample


logger = logging.getLogger(__name__)


FEET_TO_M = 0.3048


class FlightLogAdapter(Protocol):
    """Adapter interface for flight-log sources."""

    name: str

    def can_parse(self, filepath: Path, df: Optional[pd.DataFrame] = None) -> bool:
        ...

    def parse(self, filepath: Path) -> list[RawSample]:
        ...


# Column name mappings - canonical name -> accepted spellings
COLUMN_MAPPINGS = {
    "time": ["time", "Time", "timestamp", "Timestamp", "elapsed", "Elapsed"],
    "time_ms": ["time_ms", "Time (ms)", "elapsed_ms"],
    "latitude": ["latitude", "Latitude", "LATITUDE", "lat", "Lat"],
    "longitude": ["longitude", "Longitude", "LONGITUDE", "lon", "Lon", "lng"],
    "northing": ["northing", "Northing", "northing_m", "y_m"],
    "easting": ["easting", "Easting", "easting_m", "x_m"],
    "altitude_m": ["altitude", "Altitude", "altitude_m", "alt", "Alt"],
    "altitude_ft": ["altitude_ft", "altitude(feet)"],
    "yaw": ["yaw", "Yaw", "heading", "Heading", "yaw_deg"],
    "pitch": ["pitch", "Pitch", "pitch_deg"],
    "roll": ["roll", "Roll", "roll_deg"],
    "focal_length": ["focal_length", "FocalLength", "focal_len"],
    "zoom": ["zoom", "Zoom", "zoom_ratio", "digital_zoom"],
}

# Airdata exports: sea-level altitude over height above takeoff, drone compass
# heading over gimbal heading
AIRDATA_COLUMN_MAPPINGS = {
    "time_ms": ["time(millisecond)"],
    "latitude": ["latitude"],
    "longitude": ["longitude"],
    "altitude_m": ["altitude_above_seaLevel(meters)", "height_above_takeoff(meters)"],
    "altitude_ft": ["altitude_above_seaLevel(feet)", "height_above_takeoff(feet)"],
    "yaw": ["compass_heading(degrees)", "gimbal_heading(degrees)"],
    "pitch": ["gimbal_pitch(degrees)", "pitch(degrees)"],
    "roll": ["gimbal_roll(degrees)", "roll(degrees)"],
}


def quantize_times(times_ms: NDArray[np.float64], section_ms: int = SECTION_MIN_MS) -> list[tuple[int, int, int]]:
    """
    Map tick times onto section slots.

    Returns:
        (row, section_index, duration_ms) for the first row in each slot,
        in time order. Rows with no time, or behind the previous slot,
        are dropped.
    """
    kept = []
    last_index = -1
    last_ms: Optional[int] = None
    for row, t in enumerate(times_ms):
        if np.isnan(t) or t < 0:
            continue
        index = int(round(t / section_ms))
        if index <= last_index:
            continue
        ms = int(round(t))
        duration = 0 if last_ms is None else ms - last_ms
        kept.append((row, index, duration))
        last_index = index
        last_ms = ms
    dropped = len(times_ms) - len(kept)
    if dropped:
        logger.debug(f"Dropped {dropped} ticks sharing a {section_ms}ms section")
    return kept


def _optional(value: float) -> Optional[float]:
    return None if np.isnan(value) else float(value)


class FlightCsvParser:
    """Column-mapping CSV parser shared by the adapters."""

    def __init__(
        self,
        section_ms: int = SECTION_MIN_MS,
        column_mappings: Optional[dict[str, list[str]]] = None,
    ):
        self.section_ms = section_ms
        self.column_mappings = column_mappings if column_mappings is not None else COLUMN_MAPPINGS

    def parse_file(self, filepath: Path) -> list[RawSample]:
        df = self._read_csv(filepath)
        if df.empty:
            return []
        col_map = self._map_columns(df.columns.tolist())
        n_samples = len(df)

        times_ms = self._parse_time_ms(df, col_map)
        lat = self._extract_column(df, col_map, "latitude", n_samples)
        lon = self._extract_column(df, col_map, "longitude", n_samples)
        northing = self._extract_column(df, col_map, "northing", n_samples)
        easting = self._extract_column(df, col_map, "easting", n_samples)
        altitude = self._extract_altitude(df, col_map, n_samples)
        yaw = self._normalize_yaw(self._extract_column(df, col_map, "yaw", n_samples))
        pitch = self._extract_column(df, col_map, "pitch", n_samples)
        roll = self._extract_column(df, col_map, "roll", n_samples)
        focal_length = self._extract_column(df, col_map, "focal_length", n_samples)
        zoom = self._extract_column(df, col_map, "zoom", n_samples)

        start_ms = float(np.nanmin(times_ms)) if not np.all(np.isnan(times_ms)) else 0.0
        samples = []
        for row, index, duration in quantize_times(times_ms - start_ms, self.section_ms):
            global_location = None
            if not (np.isnan(lat[row]) or np.isnan(lon[row])):
                global_location = GlobalLocation(float(lat[row]), float(lon[row]))
            location_m = None
            if not (np.isnan(northing[row]) or np.isnan(easting[row])):
                location_m = PlanarPoint(float(northing[row]), float(easting[row]))

            samples.append(RawSample(
                index=index,
                timestamp_ms=int(round(times_ms[row] - start_ms)),
                duration_ms=duration,
                global_location=global_location,
                location_m=location_m,
                altitude_m=_optional(altitude[row]),
                yaw_deg=_optional(yaw[row]),
                pitch_deg=_optional(pitch[row]),
                roll_deg=_optional(roll[row]),
                focal_length=_optional(focal_length[row]),
                zoom=_optional(zoom[row]),
            ))

        logger.info(f"Parsed {len(samples)} sections from {filepath.name}")
        return samples

    def _read_csv(self, filepath: Path) -> pd.DataFrame:
        with open(filepath, "r", encoding="utf-8-sig") as f:
            lines = f.read().splitlines()

        # Skip comment/metadata lines ahead of the header row
        content = [line for line in lines if line.strip() and not line.lstrip().startswith("#")]
        if not content:
            return pd.DataFrame()

        df = pd.read_csv(io.StringIO("\n".join(content)))
        df.columns = df.columns.str.strip()
        return df

    def _map_columns(self, columns: list[str]) -> dict[str, Optional[str]]:
        col_map: dict[str, Optional[str]] = {}
        for std_name, variants in self.column_mappings.items():
            col_map[std_name] = None
            for variant in variants:
                if variant in columns:
                    col_map[std_name] = variant
                    break
        return col_map

    def _parse_time_ms(
        self,
        df: pd.DataFrame,
        col_map: dict[str, Optional[str]],
    ) -> NDArray[np.float64]:
        ms_col = col_map.get("time_ms")
        if ms_col is not None:
            return pd.to_numeric(df[ms_col], errors="coerce").values.astype(np.float64)

        time_col = col_map.get("time")
        if time_col is None:
            raise AdapterError("No time column found in CSV")

        times = df[time_col].values
        if len(times) and isinstance(times[0], str) and ":" in times[0]:
            parsed = []
            for t in times:
                parts = str(t).split(":")
                try:
                    if len(parts) == 3:
                        parsed.append(float(parts[0]) * 3600 + float(parts[1]) * 60 + float(parts[2]))
                    elif len(parts) == 2:
                        parsed.append(float(parts[0]) * 60 + float(parts[1]))
                    else:
                        parsed.append(float(t))
                except ValueError:
                    parsed.append(np.nan)
            seconds = np.array(parsed, dtype=np.float64)
        else:
            seconds = pd.to_numeric(df[time_col], errors="coerce").values.astype(np.float64)
        return seconds * 1000.0

    def _extract_altitude(
        self,
        df: pd.DataFrame,
        col_map: dict[str, Optional[str]],
        n_samples: int,
    ) -> NDArray[np.float64]:
        altitude = self._extract_column(df, col_map, "altitude_m", n_samples)
        if np.all(np.isnan(altitude)):
            altitude = self._extract_column(df, col_map, "altitude_ft", n_samples) * FEET_TO_M
        return altitude

    def _normalize_yaw(self, yaw: NDArray[np.float64]) -> NDArray[np.float64]:
        """Compass headings 0..360 to yaw -180..180."""
        return np.where(yaw > 180.0, yaw - 360.0, yaw)

    def _extract_column(
        self,
        df: pd.DataFrame,
        col_map: dict[str, Optional[str]],
        std_name: str,
        n_samples: int,
    ) -> NDArray[np.float64]:
        col = col_map.get(std_name)
        if col is None or col not in df.columns:
            return np.full(n_samples, np.nan, dtype=np.float64)
        return pd.to_numeric(df[col], errors="coerce").values.astype(np.float64)


class AirdataCsvAdapter:
    """Adapter for DJI flight records exported as Airdata-style CSV."""

    name = "airdata"

    def can_parse(self, filepath: Path, df: Optional[pd.DataFrame] = None) -> bool:
        if filepath.suffix.lower() != ".csv":
            return False
        if df is None:
            return False
        columns = {c.strip() for c in df.columns}
        return "time(millisecond)" in columns

    def parse(self, filepath: Path) -> list[RawSample]:
        return FlightCsvParser(column_mappings=AIRDATA_COLUMN_MAPPINGS).parse_file(filepath)


class GenericFlightCsvAdapter:
    """
    Adapter for CSVs with canonical column names.

    Expected columns:
    - time (seconds) or time_ms
    - latitude, longitude and/or northing, easting
    - altitude, yaw, pitch, roll, zoom (optional)
    """

    name = "generic_csv"

    def can_parse(self, filepath: Path, df: Optional[pd.DataFrame] = None) -> bool:
        if filepath.suffix.lower() != ".csv":
            return False
        if df is None:
            return True
        columns = {c.strip().lower() for c in df.columns}
        return bool(columns & {"time", "timestamp", "time_ms", "elapsed", "elapsed_ms"})

    def parse(self, filepath: Path) -> list[RawSample]:
        return FlightCsvParser().parse_file(filepath)


ADAPTERS: list[FlightLogAdapter] = [
    AirdataCsvAdapter(),
    GenericFlightCsvAdapter(),
]


def _peek_header(filepath: Path) -> Optional[pd.DataFrame]:
    """Header-only frame for adapter selection, None if unreadable."""
    try:
        with open(filepath, "r", encoding="utf-8-sig") as f:
            for line in f:
                if line.strip() and not line.lstrip().startswith("#"):
                    return pd.read_csv(io.StringIO(line), nrows=0)
    except (OSError, UnicodeDecodeError, pd.errors.ParserError) as e:
        logger.warning(f"Could not read header of {filepath}: {e}")
    return None


def _select_adapter(filepath: Path, df: Optional[pd.DataFrame] = None) -> FlightLogAdapter:
    if df is None:
        df = _peek_header(filepath)
    for adapter in ADAPTERS:
        if adapter.can_parse(filepath, df):
            return adapter
    raise AdapterError(f"No adapter available for file: {filepath}")


def parse_flight_log(filepath: Path) -> list[RawSample]:
    """Parse a flight-log file via adapter selection."""
    adapter = _select_adapter(filepath)
    logger.debug(f"Parsing {filepath.name} with {adapter.name} adapter")
    return adapter.parse(filepath)


def flight_name(filepath: Path) -> str:
    """Human-readable flight name from a log filename."""
    name = re.sub(r"[_\-]+", " ", filepath.stem).strip()
    return name or filepath.stem
