import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from conftest import FakeChatService, qa_text
from ragprobe.config_schema import AppConfig
from ragprobe.server import create_app


@pytest.fixture
def app_config(tmp_path, knowledge_dir):
    (knowledge_dir / "faq.txt").write_text(qa_text(6), encoding="utf-8")
    return AppConfig.model_validate({
        "io": {"knowledge_dir": str(knowledge_dir), "output_dir": str(tmp_path / "output")},
        "counts": {"qa": 1, "chunk": 0, "document": 0, "comprehensive": 0},
        "runtime": {"retry_delay_ms": 0, "pacing_ms": 0, "timeout_ms": 5000},
    })


@pytest.fixture
def services():
    return []


@pytest.fixture
def client(app_config, services):
    def factory(cfg):
        reply = "plain answer" if cfg.runtime.source_mode == "fixed_list" else '{"question": "q", "answer": "a"}'
        service = FakeChatService(default=reply)
        services.append(service)
        return service
    return TestClient(create_app(app_config, service_factory=factory))


def _events(response):
    return [json.loads(line) for line in response.text.splitlines() if line.strip()]


def test_run_streams_ndjson_until_done(client):
    response = client.post("/runs", json={})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")
    events = _events(response)
    assert events[-1]["type"] == "done"
    assert [e["type"] for e in events].count("done") == 1
    assert len([e for e in events if e["type"] == "state_update"]) == 6

    run_id = response.headers["x-run-id"]
    assert client.get("/runs").json()["runs"] == [run_id]

    stored = client.get(f"/runs/{run_id}").json()
    assert len(stored["results"]) == 6
    assert stored["manifest"]["status"] == "done"


def test_request_overrides_counts_and_model(client, services):
    response = client.post("/runs", json={"counts": {"qa": 2}, "model": "openai:gpt-4o-mini"})
    events = _events(response)
    assert events[-1]["type"] == "done"
    assert len(services[0].calls) == 12
    assert services[0].calls[0][0] == "openai:gpt-4o-mini"


def test_fixed_list_run_with_inline_cases(client, services):
    response = client.post("/runs", json={
        "source_mode": "fixed_list",
        "test_cases": [{"id": 1, "question": "q1", "answer": "r1"}, {"id": 2, "question": "q2"}],
        "counts": {"loop_count": 2},
    })
    events = _events(response)
    assert events[-1]["type"] == "done"
    stored = client.get(f"/runs/{response.headers['x-run-id']}").json()
    assert [r["question"] for r in stored["results"]] == ["q1", "q2", "q1", "q2"]
    assert stored["results"][0]["standardAnswer"] == "r1"
    assert stored["results"][0]["answer"] == "plain answer"


def test_configuration_error_is_streamed_as_error_event(client, tmp_path):
    response = client.post("/runs", json={"counts": {"qa": 0}})
    events = _events(response)
    assert events[-1]["type"] == "error"
    assert events[-1]["cancelled"] is False
    assert "No tasks to run" in events[-1]["message"]


def test_invalid_request_is_rejected(client):
    assert client.post("/runs", json={"counts": {"qa": -1}}).status_code == 422
    assert client.post("/runs", json={"test_cases": [{"id": 1}]}).status_code == 422


def test_unknown_runs_are_404(client):
    assert client.get("/runs/240101_000000").status_code == 404
    assert client.post("/runs/240101_000000/cancel").status_code == 404


def test_cancel_endpoint_stops_an_active_run(app_config):
    cancel_responses = []

    def factory(cfg):
        def on_call(n):
            if n == 2:
                (run_id,) = api.state.registry.ids()
                cancel_responses.append(TestClient(api).post(f"/runs/{run_id}/cancel"))
        return FakeChatService(default='{"question": "q", "answer": "a"}', on_call=on_call)

    api = create_app(app_config, service_factory=factory)
    response = TestClient(api).post("/runs", json={})

    assert cancel_responses[0].json() == {"run_id": response.headers["x-run-id"], "cancelled": True}
    events = _events(response)
    assert events[-1] == {"type": "error", "message": "Run cancelled by user.", "cancelled": True}
    assert len([e for e in events if e["type"] == "state_update"]) == 2


def test_run_setup_happens_off_the_event_loop(app_config):
    loop_running = []

    def factory(cfg):
        try:
            asyncio.get_running_loop()
            loop_running.append(True)
        except RuntimeError:
            loop_running.append(False)
        return FakeChatService(default='{"question": "q", "answer": "a"}')

    response = TestClient(create_app(app_config, service_factory=factory)).post("/runs", json={})

    assert _events(response)[-1]["type"] == "done"
    assert loop_running == [False]
