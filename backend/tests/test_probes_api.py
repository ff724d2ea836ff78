from __future__ import annotations

import time
import uuid

import pytest
from fastapi.testclient import TestClient

from pingme_backend.app import create_app


@pytest.fixture
def client(make_settings):
    app = create_app(make_settings(trust_forwarded_for=True))
    with TestClient(app) as test_client:
        yield test_client


def poll(client: TestClient, link: str, timeout: float = 10.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        response = client.get(link)
        assert response.status_code == 200
        data = response.json()
        if "error" in data or data["complete"]:
            return data
        assert data == {"complete": False, "link": link}
        time.sleep(0.05)
    raise AssertionError(f"{link} never completed")


def test_ping_request_is_accepted_and_completes(client):
    response = client.post(
        "/ping",
        params={"period": "1", "duration": "5"},
        headers={"X-Forwarded-For": "127.0.0.1"},
    )
    assert response.status_code == 202
    accepted = response.json()
    assert accepted["complete"] is False
    assert accepted["link"].startswith("/data/")

    result = poll(client, accepted["link"])
    assert result["complete"] is True
    assert result["link"] == accepted["link"]
    assert result["target"] == "127.0.0.1"
    assert [r["seq"] for r in result["results"]] == [1, 2, 3, 4, 5]
    for reply in result["results"]:
        assert set(reply) == {"seq", "at", "rtt"}
        assert isinstance(reply["at"], float)
    stamps = [r["at"] for r in result["results"]]
    assert stamps == sorted(stamps)

    assert client.get(accepted["link"]).json() == result


def test_post_with_form_values(client):
    response = client.post(
        "/ping",
        data={"period": "0.5", "duration": "1"},
        headers={"X-Forwarded-For": "::1"},
    )
    assert response.status_code == 202
    result = poll(client, response.json()["link"])
    assert result["target"] == "::1"
    assert len(result["results"]) == 2


def test_unparseable_values_fall_back_to_defaults(make_settings):
    app = create_app(make_settings(trust_forwarded_for=True, default_duration=2))
    with TestClient(app) as client:
        response = client.get(
            "/ping",
            params={"period": "soon", "duration": "2.5"},
            headers={"X-Forwarded-For": "127.0.0.1"},
        )
        assert response.status_code == 202
        result = poll(client, response.json()["link"])
    assert len(result["results"]) == 2


def test_failed_probe_returns_error_only(client):
    response = client.get("/ping", params={"duration": "2"}, headers={"X-Forwarded-For": "192.0.2.50"})
    assert response.status_code == 202

    result = poll(client, response.json()["link"])
    assert list(result) == ["error"]
    assert "Network is unreachable" in result["error"]


@pytest.mark.parametrize(
    "params",
    [{"period": "0.01"}, {"duration": "100000"}, {"duration": "0"}, {"period": "5", "duration": "2"}],
)
def test_out_of_range_requests_are_rejected(client, params):
    response = client.get("/ping", params=params, headers={"X-Forwarded-For": "127.0.0.1"})
    assert response.status_code == 400


def test_non_ip_caller_is_rejected(client):
    response = client.get("/ping", headers={"X-Forwarded-For": "example.com"})
    assert response.status_code == 400


def test_unknown_and_malformed_ids(client):
    assert client.get(f"/data/{uuid.uuid4()}").status_code == 404
    assert client.get("/data/not-a-job").status_code == 400


def test_record_creation_failure_is_a_server_error(client, monkeypatch):
    app = client.app
    cache_dir = app.state.job_store.cache_dir

    def broken_create(job_id, record):
        raise OSError("No space left on device")

    monkeypatch.setattr(app.state.job_store, "create", broken_create)
    response = client.get("/ping", params={"duration": "2"}, headers={"X-Forwarded-For": "127.0.0.1"})

    assert response.status_code == 500
    assert "No space left on device" in response.json()["detail"]
    assert list(cache_dir.glob("*.json")) == []
    assert not app.state.job_manager._tasks


def test_healthcheck(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "detail" in data
    assert data["probe_slots"] == 4
    assert data["probe_slots_free"] == 4


def test_config_endpoint_reports_platform(client):
    data = client.get("/config").json()
    assert data["platform"] == "linux"
    assert data["max_concurrent_probes"] == 4
