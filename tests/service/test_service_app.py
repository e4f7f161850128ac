"""Tests for the FastAPI service mode."""

from __future__ import annotations

from pathlib import Path

import pytest

try:
    from fastapi.testclient import TestClient
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    pytest.skip("fastapi not installed", allow_module_level=True)

from projgen import __version__
from projgen.service import create_app
from tests._fixtures.doubles import ScriptedExecutor, write_go_module


@pytest.fixture
def go_executor() -> ScriptedExecutor:
    return ScriptedExecutor("go", "go-backend", [write_go_module])


@pytest.fixture
def client(make_coordinator, go_executor: ScriptedExecutor) -> TestClient:
    coordinator = make_coordinator(installed=("go",), executors={"go-backend": go_executor})
    return TestClient(create_app(lambda: coordinator))


def _payload(output: Path, **options: object) -> dict:
    return {
        "name": "demo",
        "output_dir": str(output),
        "components": [
            {"type": "go-backend", "name": "api", "config": {"module": "example.com/api"}},
        ],
        "options": options,
    }


def test_health_endpoint(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": __version__}


def test_generate_endpoint(client: TestClient, project_dir: Path, go_executor: ScriptedExecutor) -> None:
    response = client.post("/generate", json=_payload(project_dir))

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["dry_run"] is False
    (component,) = data["components"]
    assert component["method"] == "bootstrap"
    assert component["path"].endswith("CommonServer")
    assert go_executor.attempts == 1
    assert (project_dir / "CommonServer" / "go.mod").is_file()


def test_preview_endpoint_writes_nothing(client: TestClient, project_dir: Path) -> None:
    response = client.post("/preview", json=_payload(project_dir, offline=True))

    assert response.status_code == 200
    data = response.json()
    assert data["dry_run"] is True
    assert "go.mod" in data["components"][0]["files"]
    assert not project_dir.exists()


def test_invalid_config_maps_to_422(client: TestClient, project_dir: Path) -> None:
    payload = _payload(project_dir)
    payload["components"].append(dict(payload["components"][0]))

    response = client.post("/generate", json=payload)

    assert response.status_code == 422
    data = response.json()
    assert data["category"] == "INVALID_CONFIG"
    assert "duplicate component name" in data["detail"]
    assert data["suggestions"]


def test_component_config_error_is_rolled_back(client: TestClient, project_dir: Path) -> None:
    payload = _payload(project_dir, offline=True)
    payload["components"][0]["config"] = {"module": "example.com/api", "port": 0}

    response = client.post("/generate", json=payload)

    assert response.status_code == 422
    assert response.json()["component"] == "api"
    assert not project_dir.exists()


def test_missing_tool_maps_to_500(client: TestClient, project_dir: Path) -> None:
    payload = _payload(project_dir)
    payload["components"] = [{"type": "nextjs", "name": "web"}]

    response = client.post("/generate", json=payload)

    assert response.status_code == 500
    assert response.json()["category"] == "TOOL_NOT_FOUND"
    assert not project_dir.exists()


def test_request_validation_rejects_bad_options(client: TestClient, project_dir: Path) -> None:
    response = client.post("/generate", json=_payload(project_dir, max_workers=0))
    assert response.status_code == 422
    assert "detail" in response.json()


def test_tools_endpoint(client: TestClient) -> None:
    response = client.get("/tools")

    assert response.status_code == 200
    data = response.json()
    tools = {tool["name"]: tool for tool in data["tools"]}
    assert tools["go"]["available"] is True
    assert tools["npx"]["available"] is False
    assert data["all_available"] is False
