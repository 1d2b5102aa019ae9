"""
Tests for API endpoints.
"""

import pytest
from fastapi.testclient import TestClient

from droneflight.main import app
from droneflight.services import repository
from droneflight.services.elevation import ConstantElevation
from droneflight.services.repository import init_repository
from droneflight.utils.sample_data import generate_survey_samples, write_survey_csv


@pytest.fixture(autouse=True)
def reset_repository():
    """Each test starts without a global repository."""
    repository._repository = None
    yield
    repository._repository = None


@pytest.fixture
def test_data_folder(tmp_path):
    """Create a test data folder with generated survey flights."""
    data_folder = tmp_path / "flights"
    data_folder.mkdir()

    write_survey_csv(data_folder / "flight_001.csv", generate_survey_samples(n_legs=2))
    write_survey_csv(data_folder / "flight_002.csv", generate_survey_samples(n_legs=3))

    return data_folder


@pytest.fixture
def client_with_data(test_data_folder):
    """Create test client with initialized repository."""
    init_repository(test_data_folder, dem=ConstantElevation(0.0))

    client = TestClient(app)
    yield client


@pytest.fixture
def client():
    """Create test client without initialized repository."""
    return TestClient(app)


@pytest.fixture
def flight_id(client_with_data):
    flights = client_with_data.get("/flights").json()
    return next(f["id"] for f in flights if f["name"] == "flight 002")


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_root_endpoint(self, client):
        """Root endpoint should return basic info."""
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Drone Flight Telemetry"
        assert data["status"] == "running"

    def test_health_endpoint(self, client_with_data):
        """Health endpoint should report the indexed flights."""
        response = client_with_data.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["flight_count"] == 2


class TestFolderEndpoints:
    """Tests for folder management endpoints."""

    def test_get_folder_info(self, client_with_data, test_data_folder):
        response = client_with_data.get("/folder")

        assert response.status_code == 200
        data = response.json()
        assert data["path"] == str(test_data_folder)
        assert data["flight_count"] == 2

    def test_set_folder(self, client, test_data_folder):
        response = client.post("/folder", json={"path": str(test_data_folder)})

        assert response.status_code == 200
        assert response.json()["flight_count"] == 2

    def test_set_nonexistent_folder(self, client, tmp_path):
        response = client.post("/folder", json={"path": str(tmp_path / "missing")})
        assert response.status_code == 400

    def test_set_file_as_folder(self, client, test_data_folder):
        response = client.post("/folder", json={"path": str(test_data_folder / "flight_001.csv")})
        assert response.status_code == 400

    def test_rescan_without_folder(self, client):
        response = client.post("/folder/rescan")
        assert response.status_code == 400

    def test_rescan_finds_new_flights(self, client_with_data, test_data_folder):
        write_survey_csv(test_data_folder / "flight_003.csv", generate_survey_samples(n_legs=1))

        response = client_with_data.post("/folder/rescan")

        assert response.status_code == 200
        assert response.json()["flight_count"] == 3


class TestFlightEndpoints:
    """Tests for flight endpoints."""

    def test_list_flights(self, client_with_data):
        response = client_with_data.get("/flights")

        assert response.status_code == 200
        data = response.json()
        assert [f["name"] for f in data] == ["flight 001", "flight 002"]
        assert all(f["has_attitude"] for f in data)
        assert all(f["step_count"] > 0 for f in data)

    def test_get_flight(self, client_with_data, flight_id):
        response = client_with_data.get(f"/flights/{flight_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["info"]["id"] == flight_id
        assert len(data["legs"]) == data["info"]["leg_count"]
        assert data["legs"][0]["name"] == "A"
        assert data["summary"]["step_count"] == data["info"]["step_count"]
        assert data["on_ground_at"] == "neither"
        assert "segment" in data["stage_durations_ms"]

    def test_get_flight_not_found(self, client_with_data):
        response = client_with_data.get("/flights/nonexistent")
        assert response.status_code == 404

    def test_get_legs(self, client_with_data, flight_id):
        response = client_with_data.get(f"/flights/{flight_id}/legs")

        assert response.status_code == 200
        legs = response.json()
        assert len(legs) > 0
        for previous, leg in zip(legs, legs[1:]):
            assert previous["max_sum_time_ms"] < leg["min_sum_time_ms"]

    def test_get_steps_paged(self, client_with_data, flight_id):
        response = client_with_data.get(f"/flights/{flight_id}/steps?offset=5&limit=10")

        assert response.status_code == 200
        data = response.json()
        assert data["offset"] == 5
        assert len(data["steps"]) == 10
        assert data["steps"][0]["index"] == 5
        assert data["total"] > 10
        assert data["steps"][0]["footprint"] is not None

    def test_get_steps_for_leg(self, client_with_data, flight_id):
        response = client_with_data.get(f"/flights/{flight_id}/steps?leg_id=1")

        assert response.status_code == 200
        steps = response.json()["steps"]
        assert len(steps) > 0
        assert all(s["leg_id"] == 1 for s in steps)

    def test_get_steps_limit_validated(self, client_with_data, flight_id):
        response = client_with_data.get(f"/flights/{flight_id}/steps?limit=0")
        assert response.status_code == 422

    def test_nearest_step(self, client_with_data, flight_id):
        response = client_with_data.get(f"/flights/{flight_id}/steps/nearest?ms=1130")

        assert response.status_code == 200
        assert response.json()["sum_time_ms"] == 1250

    def test_step_at_or_before(self, client_with_data, flight_id):
        response = client_with_data.get(
            f"/flights/{flight_id}/steps/nearest?ms=1249&at_or_before=true"
        )

        assert response.status_code == 200
        assert response.json()["sum_time_ms"] == 1000

    def test_summary_range(self, client_with_data, flight_id):
        response = client_with_data.get(f"/flights/{flight_id}/summary?from_ms=1000&to_ms=5000")

        assert response.status_code == 200
        data = response.json()
        assert data["min_sum_time_ms"] == 1000
        assert data["max_sum_time_ms"] == 5000
        assert data["step_count"] == 17

    def test_summary_invalid_range(self, client_with_data, flight_id):
        response = client_with_data.get(f"/flights/{flight_id}/summary?from_ms=5000&to_ms=1000")
        assert response.status_code == 400

    def test_coverage(self, client_with_data, flight_id):
        response = client_with_data.get(f"/flights/{flight_id}/coverage?cell_m=2")

        assert response.status_code == 200
        data = response.json()
        assert data["footprint_count"] > 0
        assert data["swathe_area_m2"] > 0
        assert data["first_leg_id"] == 1

    def test_locate_center(self, client_with_data, flight_id):
        step = client_with_data.get(f"/flights/{flight_id}/steps?offset=20&limit=1").json()["steps"][0]

        response = client_with_data.get(f"/flights/{flight_id}/locate?index={step['index']}")

        assert response.status_code == 200
        data = response.json()
        assert data["location"] == step["footprint"]["center"]
        assert data["latitude"] == pytest.approx(-36.8485, abs=0.01)
        assert data["longitude"] == pytest.approx(174.7633, abs=0.01)

    def test_locate_unknown_step(self, client_with_data, flight_id):
        response = client_with_data.get(f"/flights/{flight_id}/locate?index=999999")
        assert response.status_code == 404

    def test_locate_fraction_validated(self, client_with_data, flight_id):
        response = client_with_data.get(f"/flights/{flight_id}/locate?index=0&h=1.5")
        assert response.status_code == 422


class TestGroundReferenceEndpoint:
    """Tests for ground reference re-processing."""

    def test_disable_correction(self, client_with_data, flight_id):
        response = client_with_data.post(
            f"/flights/{flight_id}/ground-reference", json={"on_ground_at": None}
        )

        assert response.status_code == 200
        assert response.json()["on_ground_at"] is None

    def test_mode_case_insensitive(self, client_with_data, flight_id):
        response = client_with_data.post(
            f"/flights/{flight_id}/ground-reference", json={"on_ground_at": "Start"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["on_ground_at"] == "start"
        # Took off from 60m above the DEM, so every altitude drops to ground level
        assert data["summary"]["min_altitude_m"] == pytest.approx(0.0, abs=0.1)

    def test_unknown_mode(self, client_with_data, flight_id):
        response = client_with_data.post(
            f"/flights/{flight_id}/ground-reference", json={"on_ground_at": "sometimes"}
        )
        assert response.status_code == 400
