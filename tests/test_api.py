from __future__ import annotations

import json
from typing import Generator, List

import pytest
from fastapi.testclient import TestClient

from testdaemon.main import app
from testdaemon.services.coordinator import RunCoordinator, get_coordinator
from testdaemon.services.registry import SuiteNode
from testdaemon.services.runner import SuiteRunner


@pytest.fixture
def client(tree: SuiteNode) -> Generator[TestClient, None, None]:
    """TestClient backed by an in-memory suite tree instead of files on disk."""
    coordinator = RunCoordinator(SuiteRunner(tree))

    def override_coordinator() -> RunCoordinator:
        return coordinator

    app.dependency_overrides[get_coordinator] = override_coordinator
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _events(body: str) -> List[dict]:
    return [json.loads(line[len("data: ") :]) for line in body.splitlines() if line.startswith("data: ")]


@pytest.mark.integration
def test_health_reports_ready(client: TestClient) -> None:
    resp = client.get("/test/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ready", "suites": 2, "running": False}


@pytest.mark.integration
def test_files_lists_titles_per_file(client: TestClient) -> None:
    resp = client.get("/test/files")

    assert resp.status_code == 200
    assert resp.json() == {
        "tests/test_math.py": ["math", "math nested"],
        "tests/text/test_strings.py": ["strings"],
    }


@pytest.mark.integration
def test_run_streams_server_sent_events(client: TestClient) -> None:
    resp = client.get("/test/run", params={"file": "test_math.py", "grep": "test_adds"})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["cache-control"] == "no-cache"
    events = _events(resp.text)
    assert events[0] == {"type": "start", "grep": "file:test_math.py test_adds", "invert": False}
    assert any(event["type"] == "log" and "test_adds" in event["data"] for event in events)
    assert events[-1] == {"type": "done", "failures": 0}


@pytest.mark.integration
def test_run_with_json_reporter_and_invert(client: TestClient) -> None:
    resp = client.get("/test/run", params={"grep": "fails_on_purpose", "invert": "1", "reporter": "json"})

    events = _events(resp.text)
    assert [event["type"] for event in events] == ["start", "json", "done"]
    assert events[1]["data"]["stats"]["passes"] == 4
    assert events[-1]["failures"] == 0


@pytest.mark.integration
def test_run_for_unknown_file_reports_one_failure(client: TestClient) -> None:
    events = _events(client.get("/test/run", params={"file": "test_nowhere.py"}).text)

    assert [event["type"] for event in events] == ["start", "error", "done"]
    assert events[-1]["failures"] == 1


@pytest.mark.integration
def test_runs_can_repeat_in_one_process(client: TestClient) -> None:
    first = _events(client.get("/test/run").text)
    second = _events(client.get("/test/run").text)

    assert first[-1] == second[-1] == {"type": "done", "failures": 1}


@pytest.mark.integration
def test_invalid_reporter_is_rejected(client: TestClient) -> None:
    resp = client.get("/test/run", params={"reporter": "tap"})

    assert resp.status_code == 422


@pytest.mark.integration
def test_run_with_file_and_flagged_grep(client: TestClient) -> None:
    events = _events(client.get("/test/run", params={"file": "test_math.py", "grep": "(?i)ADDS"}).text)

    assert [event["type"] for event in events if event["type"] != "log"] == ["start", "done"]
    assert events[-1] == {"type": "done", "failures": 0}
