# tests/services/heatmap/test_heatmap_app.py
"""
Тесты HTTP API тепловой карты.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from ridetrack.services.heatmap.app import app
from ridetrack.services.heatmap.service import HeatmapAggregator
from ridetrack.services.utils.geo_utils import tile_key
from ridetrack.shared.models.location_dto import DriverPing


@pytest.fixture
def client(ping_repository, clock):
    for i, driver_id in enumerate(("a", "b", "c")):
        ping_repository.rows.append(DriverPing(
            driver_id=driver_id,
            lat=10.0,
            lng=20.0,
            tile_key=tile_key(10.0, 20.0),
            inserted_at=clock() - timedelta(seconds=30 * i),
        ))
    app.state.heatmap_aggregator = HeatmapAggregator(ping_repository, clock=clock)
    yield TestClient(app)
    del app.state.heatmap_aggregator


class TestHeatmapEndpoint:

    def test_default_window(self, client) -> None:
        response = client.get("/api/v1/heatmap")

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["window_seconds"] == 120
        assert body["tiles"] == [{"tile_key": "10,20", "lat": 10.0, "lng": 20.0, "drivers": 3}]

    def test_window_clamped_to_minimum(self, client) -> None:
        body = client.get("/api/v1/heatmap", params={"s": 1}).json()

        assert body["window_seconds"] == 10
        assert body["tiles"][0]["drivers"] == 1

    def test_legacy_alias(self, client) -> None:
        response = client.get("/get_heat_tiles", params={"s": 45})

        assert response.status_code == 200
        assert response.json()["tiles"][0]["drivers"] == 2

    def test_non_numeric_window_is_400(self, client) -> None:
        response = client.get("/api/v1/heatmap", params={"s": "soon"})

        assert response.status_code == 400
        assert response.json()["ok"] is False

    def test_storage_failure_is_500(self, client, ping_repository) -> None:
        ping_repository.fail = True

        response = client.get("/api/v1/heatmap")

        assert response.status_code == 500
        assert response.json() == {"ok": False, "error": "storage unavailable"}

    def test_wrong_method_is_405(self, client) -> None:
        response = client.post("/api/v1/heatmap", json={})

        assert response.status_code == 405
        assert response.json()["ok"] is False

    def test_unknown_path_is_404(self, client) -> None:
        response = client.get("/api/v1/nowhere")

        assert response.status_code == 404
        assert response.json()["ok"] is False
