# tests/test_health.py
from typing import Any


def test_health_responds(client: Any) -> None:
    """Verify that the health endpoint reports the service as up."""
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_root_responds(client: Any) -> None:
    """Verify that the root endpoint names the service."""
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["name"] == "Campus Gate"
