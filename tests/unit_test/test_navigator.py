"""
End-to-end decision cycles with a scripted chat client in place of the LLM endpoint.
"""

import os

import httpx
import openai
import pytest
from conftest import decision_json

_DEBUG_ENV = "AUTODRIVE_TEST_DEBUG"


def _dbg_enabled() -> bool:
    return os.environ.get(_DEBUG_ENV, "").lower() in ("1", "true", "yes")


def _dbg(msg: str) -> None:
    if _dbg_enabled():
        print(f"[navigator-test] {msg}")


_REQUEST = httpx.Request("POST", "http://127.0.0.1:9/v1/chat/completions")


@pytest.fixture
def lock_scene(make_snapshot):
    return make_snapshot(rays=9.0, distance_to_target=8.0, angle_to_target=0.0)


@pytest.fixture
def blocked_scene(make_snapshot):
    return make_snapshot(rays=9.0, front=1.4, left_diag=1.7, right_diag=1.6, is_stuck=True)


@pytest.fixture
def explore_scene(make_snapshot):
    return make_snapshot(rays=9.8, distance_to_target=60.0, angle_to_target=155.0)


def test_open_lock_approaches_target(make_navigator, lock_scene):
    nav, client = make_navigator([decision_json()])
    out = nav.step(lock_scene, now=1000.0)
    _dbg(f"lock: {out.thought} {out.strategy.risk_cue}")

    assert out.strategy.mode == "TARGET_LOCK"
    assert out.skill.name == "APPROACH_TARGET"
    assert out.throttle == pytest.approx(0.45)
    assert out.action == "FORWARD"
    assert out.parse_method == "strict"
    assert not out.is_fallback
    assert len(client.calls) == 1
    assert client.calls[0]["max_tokens"] == 420
    assert client.calls[0]["temperature"] == 0.2
    assert out.reason_validation["blocked_steps"] == 0

    record = out.to_log_dict()
    assert record["strategy"]["mode"] == "TARGET_LOCK"
    assert record["action_plan"][0]["reason"]["source"] == "model"


def test_blocked_front_reverses_with_escape_turn(make_navigator, blocked_scene):
    reply = decision_json(
        mode="ESCAPE_RECOVERY",
        skill="BACKOFF_AND_TURN",
        throttle=-0.5,
        steering=0.6,
        duration=0.5,
        sector="B",
        throttle_sign=-1,
        steering_sign=1,
    )
    nav, _ = make_navigator([reply])
    out = nav.step(blocked_scene, now=1000.0)

    assert out.strategy.mode == "ESCAPE_RECOVERY"
    assert out.skill.name == "BACKOFF_AND_TURN"
    assert out.throttle == pytest.approx(-0.5)
    assert out.steering == pytest.approx(0.6)
    assert out.action == "REVERSE_LEFT"


def test_no_target_explores_frontier(make_navigator, explore_scene):
    reply = decision_json(mode="MEMORY_EXPLORE", skill="MOVE_TO_FRONTIER", throttle=0.35)
    nav, _ = make_navigator([reply])
    out = nav.step(explore_scene, now=1000.0)

    assert out.strategy.mode == "MEMORY_EXPLORE"
    assert out.skill.name == "MOVE_TO_FRONTIER"
    assert out.throttle == pytest.approx(0.35)
    assert out.action == "FORWARD"


def test_lock_claim_on_weak_cue_is_demoted(make_navigator, explore_scene):
    nav, _ = make_navigator([decision_json(mode="TARGET_LOCK")])
    out = nav.step(explore_scene, now=1000.0)

    assert out.strategy.mode == "MEMORY_EXPLORE"
    assert out.strategy.confidence <= 0.55
    assert out.strategy.transition == "SWITCH"
    assert "corrected:weak_target_cue_demote_to_explore" in out.strategy.risk_cue


def test_timeout_returns_hold_fallback(make_navigator, lock_scene):
    nav, _ = make_navigator([openai.APITimeoutError(request=_REQUEST)])
    out = nav.step(lock_scene, now=1000.0)

    assert out.is_fallback
    assert (out.throttle, out.steering, out.duration) == (0.0, 0.0, 1.0)
    assert out.reason.code == "API_TIMEOUT_HOLD"
    assert out.reason.source == "runtime"
    assert out.strategy.risk_cue == "api_timeout_fallback"
    assert out.thought == "API Timeout (15s)"
    assert out.parse_method == "api_timeout"
    assert out.strategy.transition == "HOLD"
    assert out.skill.name == "HOLD_POSITION"
    assert len(out.action_plan) == 1
    assert nav.state.cycles == 1
    assert nav.state.pending_decision is None


def test_connection_error_returns_api_error_hold(make_navigator, lock_scene):
    nav, _ = make_navigator([openai.APIConnectionError(request=_REQUEST)])
    out = nav.step(lock_scene, now=1000.0)

    assert out.reason.code == "API_ERROR_HOLD"
    assert out.thought == "API Error"
    assert out.parse_method == "api_error"


def test_fallback_into_new_mode_reports_switch(make_navigator, lock_scene, explore_scene):
    nav, _ = make_navigator([decision_json(), openai.APITimeoutError(request=_REQUEST)])
    first = nav.step(lock_scene, now=1000.0)
    assert first.strategy.mode == "TARGET_LOCK"

    out = nav.step(explore_scene, now=1001.0)
    assert out.is_fallback
    assert out.strategy.mode == "MEMORY_EXPLORE"
    assert out.strategy.transition == "SWITCH"
    assert nav.state.last_strategy_mode == "MEMORY_EXPLORE"


def test_unparseable_output_retries_once_then_holds(make_navigator, lock_scene):
    nav, client = make_navigator(["sorry, I cannot help with that"])
    out = nav.step(lock_scene, now=1000.0)

    assert len(client.calls) == 2
    assert out.reason.code == "PARSER_ERROR_HOLD"
    assert out.parse_method == "unparseable_model_output_retry"
    assert out.thought == "JSON Error"


def test_truncated_output_is_replaced_by_strict_retry(make_navigator, lock_scene):
    full = decision_json()
    nav, client = make_navigator([full[: len(full) // 2], full])
    out = nav.step(lock_scene, now=1000.0)

    assert len(client.calls) == 2
    assert client.calls[1]["max_tokens"] == 360
    assert out.parse_method == "strict_retry"
    assert "[TRUNCATION_RETRY]" in out.prompt
    assert out.throttle == pytest.approx(0.45)


def test_reason_sign_mismatch_neutralizes_first_step(make_navigator, lock_scene):
    nav, _ = make_navigator([decision_json(throttle_sign=-1, with_actions=False)])
    out = nav.step(lock_scene, now=1000.0)

    assert out.throttle == 0.0
    assert out.action == "IDLE"
    assert out.action_plan[0].reason.source == "runtime"
    assert out.action_plan[0].reason.code.startswith("REASON_BLOCK_")
    assert out.reason_validation["blocked_steps"] == 1
    assert nav.state.reason_stats.sign_mismatch_steps == 1


def test_near_front_obstacle_caps_forward_throttle(make_navigator, make_snapshot):
    snap = make_snapshot(rays=9.0, front=2.3)
    nav, _ = make_navigator([decision_json(mode="MEMORY_EXPLORE", skill="MOVE_TO_FRONTIER", throttle=0.35)])
    out = nav.step(snap, now=1000.0)
    _dbg(f"near front: t={out.throttle} guard={out.safety_guard}")

    assert out.throttle <= 0.22
    assert out.safety_guard["sensor_override"]
    assert out.safety_guard["applied"]
    assert out.action_plan[0].reason.code == "SAFETY_GUARD_OVERRIDE"


def test_plan_respects_step_and_duration_bounds(make_navigator, lock_scene):
    nav, _ = make_navigator([decision_json(duration=0.9)])
    out = nav.step(lock_scene, now=1000.0)

    assert 1 <= len(out.action_plan) <= 5
    assert sum(step.duration for step in out.action_plan) <= 1.2 + 1e-9
    assert all(step.reason.code and step.reason.summary for step in out.action_plan)


def test_second_cycle_scores_previous_decision(make_navigator, lock_scene):
    nav, client = make_navigator([decision_json()])
    nav.step(lock_scene, now=1000.0)
    assert nav.state.last_outcome_summary == ""

    nav.step(lock_scene, now=1000.5)
    assert nav.state.cycles == 2
    assert nav.state.last_outcome_summary
    assert nav.state.last_outcome_details["elapsed_s"] == 0.5
    assert "Previous Outcome Signal" in client.calls[1]["messages"][1]["content"]
    assert nav.state.last_reflection_hint == "keep going"


def test_internal_failure_returns_internal_error_hold(make_navigator, lock_scene):
    class BoomPlanner:
        def plan(self, digest_text):
            raise RuntimeError("boom")

    nav, _ = make_navigator([decision_json()])
    nav.planner = BoomPlanner()
    out = nav.step(lock_scene, now=1000.0)

    assert out.reason.code == "INTERNAL_ERROR_HOLD"
    assert out.is_fallback
    assert out.strategy.mode == "MEMORY_EXPLORE"
    assert out.analysis == "boom"


def test_accepts_camel_case_payload(make_navigator):
    payload = {
        "front": 9, "leftDiag": 9, "left": 9, "backLeft": 9, "back": 9, "backRight": 9, "right": 9, "rightDiag": 9,
        "worldX": 0, "worldZ": 0, "headingDeg": 0, "distanceToTarget": 8, "angleToTarget": 0,
    }
    nav, _ = make_navigator([decision_json()])
    out = nav.step(payload, now=1000.0)
    assert out.strategy.mode == "TARGET_LOCK"


if __name__ == "__main__":
    pytest.main(["-v", __file__])
