import importlib.util
from pathlib import Path

import pytest

from autodrive.agent.decision.parser import parse_model_response

_MOCK_PATH = Path(__file__).resolve().parents[2] / "agent" / "mock_llm.py"


@pytest.fixture
def mock_llm():
    spec = importlib.util.spec_from_file_location("mock_llm", _MOCK_PATH)
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)
    mod.step_count = 0
    mod.MALFORMED_CYCLE = True
    return mod


def _ask(client, text):
    resp = client.post("/v1/chat/completions", json={"messages": [{"role": "user", "content": text}]})
    assert resp.status_code == 200
    return resp.get_json()["choices"][0]


def test_cycles_through_malformed_styles(mock_llm):
    client = mock_llm.app.test_client()
    prompt = "- Expected Mode From Context: TARGET_LOCK"

    first = parse_model_response(_ask(client, prompt)["message"]["content"])
    assert first.method == "strict"
    assert first.data["strategy"]["mode"] == "TARGET_LOCK"

    second = parse_model_response(_ask(client, prompt)["message"]["content"])
    assert second.method == "trim_trailing_commas"

    third = parse_model_response(_ask(client, prompt)["message"]["content"])
    assert third.method == "repair_single_quotes"
    assert third.data["thought"] == "Mock TARGET_LOCK"


def test_truncated_style_reports_length_finish(mock_llm):
    client = mock_llm.app.test_client()
    mock_llm.step_count = 4
    choice = _ask(client, "- Expected Mode From Context: MEMORY_EXPLORE")
    assert choice["finish_reason"] == "length"


def test_mode_follows_context_and_retry_is_strict(mock_llm):
    client = mock_llm.app.test_client()
    mock_llm.step_count = 1
    text = "Your previous output was incomplete or malformed.\nExpected Mode From Context: ESCAPE_RECOVERY"
    choice = _ask(client, text)
    parsed = parse_model_response(choice["message"]["content"])
    assert parsed.method == "strict"
    assert parsed.data["skill"]["name"] == "BACKOFF_AND_TURN"
    assert choice["finish_reason"] == "stop"


def test_list_models(mock_llm):
    resp = mock_llm.app.test_client().get("/v1/models")
    assert resp.get_json()["data"][0]["id"] == "mock-model"


if __name__ == "__main__":
    pytest.main(["-v", __file__])
