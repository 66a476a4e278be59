import logging
import os
import threading

import pytest
from conftest import FakeChatClient, decision_json

from autodrive.agent.drive_agent import DEFAULT_LLM_URL, DriveAgent, DriveAgentCfg

_DEBUG_ENV = "AUTODRIVE_TEST_DEBUG"


def _dbg_enabled() -> bool:
    return os.environ.get(_DEBUG_ENV, "").lower() in ("1", "true", "yes")


def _dbg(msg: str) -> None:
    if _dbg_enabled():
        print(f"[agent-test] {msg}")


def _lock_payload():
    payload = {k: 9.0 for k in ("front", "leftDiag", "left", "backLeft", "back", "backRight", "right", "rightDiag")}
    payload.update(worldX=0.0, worldZ=0.0, headingDeg=0.0, distanceToTarget=8.0, angleToTarget=0.0)
    return payload


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("AUTODRIVE_LLM_URL", "AUTODRIVE_LLM_KEY", "AUTODRIVE_MODEL"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def agent(clean_env):
    agent = DriveAgent(DriveAgentCfg(model_name="mock-model", base_url="http://127.0.0.1:9/v1"))
    agent.navigator.planner.client = FakeChatClient([decision_json()])
    return agent


def test_cfg_env_overrides_explicit_values(clean_env):
    clean_env.setenv("AUTODRIVE_MODEL", "env-model")
    cfg = DriveAgentCfg(model_name="explicit-model")
    assert cfg.model_name == "env-model"
    assert cfg.base_url == DEFAULT_LLM_URL
    assert cfg.api_key == "EMPTY"


def test_cfg_profiles_are_not_shared(clean_env):
    a, b = DriveAgentCfg(), DriveAgentCfg()
    assert a.profile is not b.profile
    a.profile.max_cue_words = 4
    assert b.profile.max_cue_words == 12


def test_run_loop_stops_after_max_cycles(agent):
    applied = []
    cycles = agent.run_loop(_lock_payload, applied.append, max_cycles=3)
    _dbg(f"history={agent.action_history}")

    assert cycles == 3
    assert len(applied) == 3
    assert agent.action_history == ["FORWARD"] * 3
    assert agent.state.cycles == 3
    assert agent.last_output is applied[-1]


def test_run_loop_honors_stop_flag_before_reading_sensors(agent):
    stop = threading.Event()
    stop.set()
    calls = []

    def sensor_source():
        calls.append(1)
        return _lock_payload()

    assert agent.run_loop(sensor_source, lambda out: None, stop_event=stop) == 0
    assert calls == []


def test_action_history_is_trimmed(agent):
    agent.cfg.action_history_len = 2
    for i in range(4):
        agent.decide(_lock_payload(), now=1000.0 + i)
    assert len(agent.action_history) == 2


def test_start_run_resets_per_run_state(agent):
    agent.decide(_lock_payload(), now=1000.0)
    agent.record_collision("OUTER_NORTH", now=1000.5)
    assert agent.state.cycles == 1
    assert agent.memory.cells

    run_id = agent.start_run("run-2")
    assert run_id == "run-2"
    assert agent.state.run_id == "run-2"
    assert agent.state.cycles == 0
    assert agent.state.pending_decision is None
    assert not agent.memory.cells
    assert agent.collisions.summary().total_count == 0
    assert agent.action_history == []
    assert agent.memory_visualization() is None


def test_stop_run_resets_per_run_state(agent):
    agent.start_run("run-3")
    agent.decide(_lock_payload(), now=1000.0)
    agent.record_collision("OUTER_EAST", now=1000.2)

    agent.stop_run()
    assert agent.state.run_id == "run-3"
    assert agent.state.cycles == 0
    assert agent.state.last_strategy_mode == ""
    assert not agent.memory.cells
    assert agent.collisions.summary().total_count == 0
    assert agent.action_history == []
    assert agent.last_output is None


def test_start_run_switches_to_run_log_file(agent, tmp_path):
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    agent.cfg.log_dir = str(tmp_path)
    try:
        agent.start_run("run-a")
        assert agent.log_file.endswith("run_run-a.log")
        agent.start_run("run-b")
        assert agent.log_file.endswith("run_run-b.log")
        files = [getattr(h, "baseFilename", None) for h in root.handlers]
        assert agent.log_file in files
        assert not any(str(f).endswith("run_run-a.log") for f in files)
    finally:
        for h in list(root.handlers):
            if h not in before:
                root.removeHandler(h)
                h.close()
        root.setLevel(level)


def test_collisions_reach_the_decision_digest(agent):
    agent.record_collision("outer_north", now=1000.0)
    agent.record_collision("OUTER_NORTH", now=1000.2)
    assert agent.collisions.summary().same_wall_consecutive_repeat_count == 1

    agent.decide(_lock_payload(), now=1001.0)
    prompt = agent.navigator.planner.client.calls[0]["messages"][1]["content"]
    assert "Collision Pressure Digest: total=2 repeat=1 consecutive=1 last=OUTER_NORTH" in prompt


def test_memory_visualization_after_observe(agent):
    agent.observe(_lock_payload(), now=1000.0)
    vis = agent.memory_visualization(radius_cells=2)
    assert vis is not None


if __name__ == "__main__":
    pytest.main(["-v", __file__])
