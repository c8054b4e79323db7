#!/usr/bin/env python3
"""
Test classifier studio HTTP and WebSocket API.

Tests:
1. Service endpoints
2. Sample endpoints and error bodies
3. Train / select / predict / delete flow
4. WebSocket prediction stream
"""

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from conftest import make_cluster_samples

from api.main import app, get_studio
from classifier_engine.studio import ClassifierStudio
from shared.storage import MemoryKeyValueStore


@pytest.fixture
def studio(studio_settings):
    return ClassifierStudio(studio_settings, backend=MemoryKeyValueStore())


@pytest.fixture
def client(studio):
    app.dependency_overrides[get_studio] = lambda: studio
    yield TestClient(app)
    app.dependency_overrides.clear()


def post_clusters(client, labels=("left", "right", "up"), per_label=8):
    for sample in make_cluster_samples(labels=labels, per_label=per_label):
        response = client.post(
            "/samples", json={"features": list(sample.features), "label": sample.label}
        )
        assert response.status_code == 201


def test_root_and_health(client):
    assert client.get("/").json()["websocket_endpoint"] == "/ws/predict"

    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["engine_state"] == "unselected"


def test_add_and_remove_samples(client):
    response = client.post("/samples", json={"features": [0.1, 0.2], "label": "left"})
    assert response.status_code == 201
    assert response.json()["counts"] == {"left": 1}

    stats = client.get("/samples").json()
    assert stats["total"] == 1
    assert stats["feature_size"] == 2

    response = client.delete("/samples/0")
    assert response.status_code == 200
    assert response.json()["removed"] == "left"


def test_dimension_mismatch_body(client):
    client.post("/samples", json={"features": [0.1, 0.2], "label": "left"})
    response = client.post("/samples", json={"features": [0.1], "label": "left"})

    assert response.status_code == 422
    assert response.json()["error"] == "dimension_mismatch"


def test_index_out_of_range(client):
    response = client.delete("/samples/3")
    assert response.status_code == 404
    assert response.json()["error"] == "index_out_of_range"


def test_invalid_request_body(client):
    response = client.post("/samples", json={"features": "nope"})
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_request"


def test_train_without_samples(client):
    response = client.post("/models/train", json={"name": "Nothing"})
    assert response.status_code == 400
    assert response.json()["error"] == "empty_dataset"


def test_predict_before_select(client):
    response = client.post("/predict", json={"features": [0.0, 0.0, 0.0]})
    assert response.status_code == 409
    assert response.json()["error"] == "not_ready"


def test_model_flow(client):
    post_clusters(client)

    response = client.post("/models/train", json={"name": "Directions"})
    assert response.status_code == 201
    model = response.json()
    assert model["labels"] == ["left", "right", "up"]
    assert model["selected"] is False

    duplicate = client.post("/models/train", json={"name": "directions"})
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "duplicate_name"

    selected = client.post(f"/models/{model['id']}/select")
    assert selected.status_code == 200
    assert selected.json()["selected"] is True

    client.put("/settings/debug-mode", json={"enabled": True})
    response = client.post("/predict", json={"features": [-3.0, 0.0, 0.0]})
    assert response.status_code == 200
    body = response.json()
    assert body["model_id"] == model["id"]
    assert body["prediction"]["label"].split(" (")[0] in model["labels"]

    models = client.get("/models").json()
    assert [m["id"] for m in models] == [model["id"]]

    assert client.delete(f"/models/{model['id']}").status_code == 200
    assert client.get("/health").json()["engine_state"] == "unselected"
    assert client.post(f"/models/{model['id']}/select").status_code == 404


def test_delete_during_training_conflicts(client, studio):
    post_clusters(client, labels=("left", "right"), per_label=5)
    model = client.post("/models/train", json={"name": "Two"}).json()

    studio._training_lock.acquire()
    try:
        response = client.delete(f"/models/{model['id']}")
    finally:
        studio._training_lock.release()

    assert response.status_code == 409
    assert response.json()["error"] == "training_in_progress"
    assert len(client.get("/models").json()) == 1


def test_confidence_threshold_setting(client):
    response = client.put("/settings/confidence-threshold", json={"value": 0.6})
    assert response.json()["confidence_threshold"] == pytest.approx(0.6)

    response = client.put("/settings/confidence-threshold", json={"value": 1.5})
    assert response.status_code == 422


def test_websocket_stream(client, studio):
    post_clusters(client, labels=("left", "right"), per_label=6)
    entry = studio.train("Two")
    studio.select_model(entry.id)
    studio.set_debug_mode(True)

    with client.websocket_connect("/ws/predict") as websocket:
        websocket.send_json({"type": "ping", "timestamp": 1})
        assert websocket.receive_json() == {"type": "pong", "timestamp": 1}

        websocket.send_json({"type": "features", "features": [0.0]})
        error = websocket.receive_json()
        assert error["type"] == "error"
        assert error["error"] == "dimension_mismatch"

        # Stream stays open after a failed frame
        websocket.send_json({"type": "features", "features": [3.0, 0.0, 0.0]})
        message = websocket.receive_json()
        assert message["type"] == "prediction"
        assert message["model_id"] == entry.id
        assert message["prediction"] is not None

        websocket.send_json({"type": "subscribe"})
        assert websocket.receive_json()["error"] == "invalid_request"
