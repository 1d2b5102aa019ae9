"""
Tests for flight-log CSV adapters.
"""

import numpy as np
import pandas as pd
import pytest
from numpy.testing import assert_allclose

from droneflight.exceptions import AdapterError
from droneflight.services.csv_parser import (
    AirdataCsvAdapter,
    FlightCsvParser,
    GenericFlightCsvAdapter,
    flight_name,
    parse_flight_log,
    quantize_times,
)
from droneflight.utils.sample_data import generate_survey_samples, write_survey_csv


@pytest.fixture
def generic_csv_content():
    """Generic format with canonical column names, 10 Hz."""
    return """# Exported flight log
time,latitude,longitude,altitude,yaw,pitch,roll,zoom
0.000,-36.8485000,174.7633000,50.0,10.0,-90.0,0.0,1.0
0.100,-36.8484950,174.7633000,50.1,10.0,-90.0,0.0,1.0
0.200,-36.8484900,174.7633000,50.2,350.0,-89.0,0.0,1.0
0.300,-36.8484850,174.7633000,50.3,350.0,-88.0,0.0,1.0
0.400,-36.8484800,174.7633000,50.4,350.0,-88.0,0.0,2.0
0.500,-36.8484750,174.7633000,50.5,350.0,-88.0,0.0,2.0
"""


@pytest.fixture
def generic_csv_file(generic_csv_content, tmp_path):
    csv_file = tmp_path / "survey_flight.csv"
    csv_file.write_text(generic_csv_content)
    return csv_file


@pytest.fixture
def airdata_csv_file(tmp_path):
    """Airdata-style export with feet altitudes and millisecond times."""
    content = """time(millisecond),datetime(utc),latitude,longitude,height_above_takeoff(feet),altitude_above_seaLevel(feet),compass_heading(degrees),gimbal_pitch(degrees),gimbal_roll(degrees)
1000,2024-05-01 10:00:01,-36.8485,174.7633,0,164.0,90.0,-90.0,0.0
1250,2024-05-01 10:00:01,-36.8485,174.76331,0,165.0,91.0,-90.0,0.0
1500,2024-05-01 10:00:01,-36.8485,174.76332,0,166.0,92.0,-85.0,0.0
1750,2024-05-01 10:00:01,-36.8485,174.76333,0,167.0,270.0,-85.0,0.0
"""
    csv_file = tmp_path / "DJI_0001.csv"
    csv_file.write_text(content)
    return csv_file


class TestQuantizeTimes:
    """Tests for section quantization."""

    def test_one_sample_per_section(self):
        times = np.array([0.0, 100.0, 200.0, 300.0, 400.0, 500.0])

        kept = quantize_times(times, 250)

        # 0 -> slot 0, 100 -> 0 (dropped), 200 -> 1, 300 -> 1 (dropped), 400 -> 2, 500 -> 2
        assert kept == [(0, 0, 0), (2, 1, 200), (4, 2, 200)]

    def test_gaps_keep_slot_numbers(self):
        kept = quantize_times(np.array([0.0, 250.0, 2000.0]), 250)
        assert [index for _, index, _ in kept] == [0, 1, 8]
        assert kept[-1][2] == 1750

    def test_missing_and_backwards_times_dropped(self):
        kept = quantize_times(np.array([0.0, np.nan, 500.0, 250.0, 750.0]), 250)
        assert [row for row, _, _ in kept] == [0, 2, 4]


class TestFlightCsvParser:
    """Tests for FlightCsvParser."""

    def test_parse_generic(self, generic_csv_file):
        samples = FlightCsvParser().parse_file(generic_csv_file)

        assert [s.index for s in samples] == [0, 1, 2]
        assert [s.timestamp_ms for s in samples] == [0, 200, 400]
        assert samples[0].global_location.latitude == -36.8485
        assert samples[0].altitude_m == 50.0

    def test_yaw_normalized(self, generic_csv_file):
        samples = FlightCsvParser().parse_file(generic_csv_file)
        assert samples[0].yaw_deg == 10.0
        assert samples[1].yaw_deg == -10.0

    def test_optional_fields(self, generic_csv_file):
        samples = FlightCsvParser().parse_file(generic_csv_file)
        assert samples[2].zoom == 2.0
        assert samples[1].pitch_deg == -89.0
        assert samples[0].focal_length is None

    def test_finer_sections(self, generic_csv_file):
        samples = FlightCsvParser(section_ms=100).parse_file(generic_csv_file)
        assert len(samples) == 6

    def test_timestamps_normalized(self, airdata_csv_file):
        samples = AirdataCsvAdapter().parse(airdata_csv_file)
        assert samples[0].timestamp_ms == 0
        assert samples[-1].timestamp_ms == 750

    def test_feet_converted(self, airdata_csv_file):
        samples = AirdataCsvAdapter().parse(airdata_csv_file)
        assert_allclose(samples[0].altitude_m, 164.0 * 0.3048)

    def test_planar_columns(self, tmp_path):
        csv_file = tmp_path / "planar.csv"
        csv_file.write_text("time,northing,easting,altitude\n0,0,0,10\n1,5,0,10\n")

        samples = FlightCsvParser().parse_file(csv_file)

        assert samples[1].location_m.northing_m == 5.0
        assert samples[1].global_location is None

    def test_hms_time_format(self, tmp_path):
        """Parser should handle hh:mm:ss.nn time format."""
        content = """Time,Latitude,Longitude
00:00:00.00,32.9857,-89.7898
00:00:01.00,32.9858,-89.7897
00:01:30.50,32.9859,-89.7896
"""
        csv_file = tmp_path / "hms_time.csv"
        csv_file.write_text(content)

        samples = FlightCsvParser().parse_file(csv_file)

        assert [s.timestamp_ms for s in samples] == [0, 1000, 90500]

    def test_missing_time_column(self, tmp_path):
        csv_file = tmp_path / "no_time.csv"
        csv_file.write_text("latitude,longitude\n32.0,-89.0\n")
        with pytest.raises(AdapterError):
            FlightCsvParser().parse_file(csv_file)

    def test_empty_file(self, tmp_path):
        csv_file = tmp_path / "empty.csv"
        csv_file.write_text("# nothing here\n")
        assert FlightCsvParser().parse_file(csv_file) == []


class TestAdapters:
    """Tests for adapter selection."""

    def test_airdata_selected(self, airdata_csv_file):
        samples = parse_flight_log(airdata_csv_file)
        assert len(samples) == 4
        assert samples[3].yaw_deg == -90.0

    def test_airdata_needs_millisecond_column(self, generic_csv_file):
        header = pd.read_csv(generic_csv_file, comment="#", nrows=0)
        assert not AirdataCsvAdapter().can_parse(generic_csv_file, header)
        assert GenericFlightCsvAdapter().can_parse(generic_csv_file, header)

    def test_airdata_prefers_sea_level_and_compass(self, tmp_path):
        content = (
            "time(millisecond),latitude,longitude,height_above_takeoff(feet),"
            "altitude_above_seaLevel(feet),gimbal_heading(degrees),compass_heading(degrees),"
            "pitch(degrees),gimbal_pitch(degrees)\n"
            "0,-36.8485,174.7633,10.0,200.0,45.0,90.0,-5.0,-80.0\n"
            "250,-36.8485,174.76331,11.0,201.0,45.0,90.0,-5.0,-80.0\n"
        )
        csv_file = tmp_path / "DJI_0002.csv"
        csv_file.write_text(content)

        samples = AirdataCsvAdapter().parse(csv_file)

        assert_allclose(samples[0].altitude_m, 200.0 * 0.3048)
        assert samples[0].yaw_deg == 90.0
        assert samples[0].pitch_deg == -80.0

    def test_generic_adapter_does_not_read_airdata(self, airdata_csv_file):
        with pytest.raises(AdapterError):
            GenericFlightCsvAdapter().parse(airdata_csv_file)

    def test_non_csv_rejected(self, tmp_path):
        log = tmp_path / "flight.txt"
        log.write_text("time,latitude\n0,1\n")
        with pytest.raises(AdapterError):
            parse_flight_log(log)

    def test_generated_survey_round_trip(self, tmp_path):
        samples = generate_survey_samples(n_legs=2)
        csv_file = write_survey_csv(tmp_path / "survey.csv", samples)

        parsed = parse_flight_log(csv_file)

        assert len(parsed) == len(samples)
        assert [s.index for s in parsed] == [s.index for s in samples]


class TestFlightName:

    def test_separators_become_spaces(self, tmp_path):
        assert flight_name(tmp_path / "flight_001-survey.csv") == "flight 001 survey"
