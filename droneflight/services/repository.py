"""
Flight Repository - loads flight logs and caches processed flights.

Flight logs are CSV files in a folder. A flight is parsed and run through
the pipeline on first access, then kept in memory.
"""

import hashlib
import logging
import os
from pathlib import Path
from typing import Optional

from droneflight.models.config import CameraModel, RuleConfig
from droneflight.models.flight import FlightInfo
from droneflight.services.aggregator import FlightAggregator, ingest_samples
from droneflight.services.csv_parser import flight_name, parse_flight_log
from droneflight.services.elevation import ConstantElevation, ElevationSource
from droneflight.services.sample_store import SampleStore


logger = logging.getLogger(__name__)


GROUND_ELEVATION_ENV = "DRONEFLIGHT_GROUND_ELEVATION_M"


def default_elevation() -> Optional[ElevationSource]:
    """Flat terrain from DRONEFLIGHT_GROUND_ELEVATION_M, if set."""
    value = os.getenv(GROUND_ELEVATION_ENV)
    if value is None or value == "":
        return None
    return ConstantElevation(float(value))


def load_flight(
    filepath: Path,
    camera: Optional[CameraModel] = None,
    rules: Optional[RuleConfig] = None,
    dem: Optional[ElevationSource] = None,
    dsm: Optional[ElevationSource] = None,
) -> FlightAggregator:
    """Parse a flight log and run the pipeline on it."""
    store = SampleStore()
    rejected = ingest_samples(store, parse_flight_log(filepath))
    aggregator = FlightAggregator(store, camera, rules, dem, dsm)
    aggregator.run(rejected_samples=rejected)
    return aggregator


class FlightRepository:
    """
    Repository for processed flights.

    Currently reads CSV flight logs from a folder and caches the
    processed flights in memory.
    """

    def __init__(
        self,
        data_folder: Optional[Path] = None,
        camera: Optional[CameraModel] = None,
        rules: Optional[RuleConfig] = None,
        dem: Optional[ElevationSource] = None,
        dsm: Optional[ElevationSource] = None,
    ):
        self._data_folder: Optional[Path] = data_folder
        self._cache: dict[str, FlightAggregator] = {}
        self._index: dict[str, Path] = {}  # id -> filepath mapping

        self.camera = camera if camera is not None else CameraModel.from_env()
        self.rules = rules if rules is not None else RuleConfig.from_env()
        self.dem = dem if dem is not None else default_elevation()
        self.dsm = dsm

        if data_folder is not None:
            self.scan_folder(data_folder)

    @property
    def data_folder(self) -> Optional[Path]:
        return self._data_folder

    @property
    def flight_count(self) -> int:
        return len(self._index)

    def set_data_folder(self, folder: Path) -> int:
        """
        Set the data folder and scan it for flight logs.

        Returns:
            Number of CSV files found
        """
        self._data_folder = folder
        self._cache.clear()
        self._index.clear()
        return self.scan_folder(folder)

    def scan_folder(self, folder: Path) -> int:
        """
        Scan a folder for CSV flight logs and build the index.

        Returns:
            Number of CSV files found
        """
        if not folder.exists():
            logger.warning(f"Data folder does not exist: {folder}")
            return 0

        count = 0
        for csv_file in sorted(folder.glob("*.csv")):
            if csv_file.is_file():
                flight_id = self._filepath_to_id(csv_file)
                self._index[flight_id] = csv_file
                count += 1
                logger.debug(f"Indexed flight: {flight_id} -> {csv_file.name}")

        logger.info(f"Scanned {count} CSV files in {folder}")
        return count

    def list_flights(self) -> list[FlightInfo]:
        """Describe every indexed flight that can be loaded, sorted by name."""
        infos = []
        for flight_id in self._index:
            info = self.get_flight_info(flight_id)
            if info is not None:
                infos.append(info)
        infos.sort(key=lambda i: i.name)
        return infos

    def get_flight(self, flight_id: str) -> Optional[FlightAggregator]:
        """
        Get a processed flight by ID.

        Returns:
            FlightAggregator if found and loadable, None otherwise
        """
        if flight_id in self._cache:
            return self._cache[flight_id]
        if flight_id not in self._index:
            return None

        filepath = self._index[flight_id]
        try:
            flight = load_flight(filepath, self.camera, self.rules, self.dem, self.dsm)
        except Exception as e:
            logger.error(f"Failed to load flight {filepath}: {e}")
            return None

        self._cache[flight_id] = flight
        logger.debug(f"Loaded and cached flight: {flight_id}")
        return flight

    def get_flight_info(self, flight_id: str) -> Optional[FlightInfo]:
        flight = self.get_flight(flight_id)
        if flight is None:
            return None
        filepath = self._index[flight_id]
        result = flight.last_result
        return FlightInfo(
            id=flight_id,
            name=flight_name(filepath),
            source_file=str(filepath),
            step_count=len(flight.steps),
            leg_count=len(flight.legs),
            duration_ms=flight.summary.duration_ms,
            rejected_samples=result.rejected_samples if result else 0,
            has_attitude=flight.store.has_yaw_data() and flight.store.has_pitch_data(),
        )

    def clear_cache(self) -> None:
        """Clear the in-memory cache."""
        self._cache.clear()
        logger.info("Flight cache cleared")

    def _filepath_to_id(self, filepath: Path) -> str:
        """Generate a consistent ID from filepath."""
        stat = filepath.stat()
        id_string = f"{filepath.name}_{stat.st_size}_{stat.st_mtime}"
        return hashlib.sha256(id_string.encode()).hexdigest()[:16]


# Global repository instance (set up by app initialization)
_repository: Optional[FlightRepository] = None


def get_repository() -> FlightRepository:
    """Get the global repository instance."""
    global _repository
    if _repository is None:
        _repository = FlightRepository()
    return _repository


def init_repository(data_folder: Path, **kwargs) -> FlightRepository:
    """Initialize the global repository with a data folder."""
    global _repository
    _repository = FlightRepository(data_folder, **kwargs)
    return _repository
