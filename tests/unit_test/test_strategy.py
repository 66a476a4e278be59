import pytest

from autodrive.agent.decision.state import SessionState
from autodrive.agent.decision.strategy import (
    derive_transition,
    infer_context_signal,
    pseudo_contact_score,
    resolve_mode_with_context,
    stabilize_mode_with_hysteresis,
    update_contact_tracking,
)


@pytest.fixture
def lock_signal(make_snapshot):
    return infer_context_signal(make_snapshot(rays=9.0, distance_to_target=8.0, angle_to_target=0.0))


@pytest.fixture
def danger_signal(make_snapshot):
    return infer_context_signal(make_snapshot(rays=9.0, front=1.4, left_diag=1.7, right_diag=1.6, is_stuck=True))


@pytest.fixture
def explore_signal(make_snapshot):
    return infer_context_signal(make_snapshot(rays=9.8, distance_to_target=60.0, angle_to_target=155.0))


def test_context_signal_expected_modes(lock_signal, danger_signal, explore_signal):
    assert lock_signal.expected_mode == "TARGET_LOCK"
    assert lock_signal.lock_priority and lock_signal.lock_hold_window
    assert danger_signal.expected_mode == "ESCAPE_RECOVERY"
    assert danger_signal.danger
    assert explore_signal.expected_mode == "MEMORY_EXPLORE"
    assert explore_signal.weak_target_cue and not explore_signal.strong_target_cue


def test_pseudo_contact_score_bounds():
    assert pseudo_contact_score(50.0, 180.0, 9.0, 0, True) == 1.0
    far = pseudo_contact_score(60.0, 155.0, 9.8, 0, False)
    near = pseudo_contact_score(8.0, 0.0, 9.0, 0, False)
    assert 0.0 <= far < near <= 1.0


def test_danger_forces_escape(danger_signal):
    res = resolve_mode_with_context("TARGET_LOCK", danger_signal)
    assert res.mode == "ESCAPE_RECOVERY"
    assert res.corrected
    assert res.reason == "danger_context_forced_escape"


def test_weak_cue_demotes_lock_and_lock_window_promotes(explore_signal, lock_signal):
    demoted = resolve_mode_with_context("TARGET_LOCK", explore_signal)
    assert demoted.mode == "MEMORY_EXPLORE"
    assert demoted.reason == "weak_target_cue_demote_to_explore"

    promoted = resolve_mode_with_context("MEMORY_EXPLORE", lock_signal)
    assert promoted.mode == "TARGET_LOCK"
    assert promoted.reason == "lock_priority_window_promote"

    unchanged = resolve_mode_with_context("MEMORY_EXPLORE", explore_signal)
    assert unchanged.mode == "MEMORY_EXPLORE" and not unchanged.corrected


def test_first_decision_is_stable(explore_signal):
    state = SessionState()
    res = stabilize_mode_with_hysteresis(state, "MEMORY_EXPLORE", explore_signal, now=1000.0)
    assert res.mode == "MEMORY_EXPLORE"
    assert not res.held and not res.forced


def test_non_critical_switch_waits_for_cooldown_and_votes(explore_signal):
    state = SessionState(last_strategy_mode="MEMORY_EXPLORE", last_mode_switch_at=1000.0)

    # inside the 2.2 s cooldown
    res = stabilize_mode_with_hysteresis(state, "TARGET_LOCK", explore_signal, now=1001.0)
    assert res.held and res.mode == "MEMORY_EXPLORE"
    assert res.reason == "switch_cooldown_hold"

    # cooldown over, first vote
    res = stabilize_mode_with_hysteresis(state, "TARGET_LOCK", explore_signal, now=1003.0)
    assert res.held and res.reason == "pending_switch_vote"
    assert state.pending_strategy_votes == 1

    # second vote after the 1.4 s dwell confirms
    res = stabilize_mode_with_hysteresis(state, "TARGET_LOCK", explore_signal, now=1004.5)
    assert not res.held and res.mode == "TARGET_LOCK"
    assert res.reason == "hysteresis_confirmed_switch"
    assert state.last_mode_switch_at == 1004.5
    assert state.pending_strategy_mode == ""


def test_critical_context_switches_immediately(danger_signal):
    state = SessionState(last_strategy_mode="TARGET_LOCK", last_mode_switch_at=1000.0)
    res = stabilize_mode_with_hysteresis(state, "ESCAPE_RECOVERY", danger_signal, now=1000.5)
    assert res.mode == "ESCAPE_RECOVERY"
    assert res.forced and not res.held
    assert res.reason == "critical_context_override"
    assert state.last_mode_switch_at == 1000.5


def test_target_lock_hold_window_keeps_lock(lock_signal):
    state = SessionState(last_strategy_mode="TARGET_LOCK", last_mode_switch_at=1000.0)
    res = stabilize_mode_with_hysteresis(state, "MEMORY_EXPLORE", lock_signal, now=1010.0)
    assert res.mode == "TARGET_LOCK"
    assert res.held and res.reason == "target_lock_hold_window"


def test_derive_transition():
    assert derive_transition("HOLD", "MEMORY_EXPLORE", "TARGET_LOCK", False) == "SWITCH"
    assert derive_transition("HOLD", "TARGET_LOCK", "TARGET_LOCK", False) == "HOLD"
    assert derive_transition("switch", "TARGET_LOCK", "TARGET_LOCK", False) == "SWITCH"
    assert derive_transition("HOLD", None, "TARGET_LOCK", True) == "SWITCH"


def test_contact_tracking_reacquire_and_flip(make_snapshot):
    state = SessionState()
    snap = make_snapshot()

    # first tick contributes no elapsed time
    contact = update_contact_tracking(state, snap, now=1000.0)
    assert contact.no_contact_s == 0.0 and contact.no_contact_cycles == 1

    for i in range(1, 7):
        contact = update_contact_tracking(state, snap, now=1000.0 + 2.0 * i)
    assert contact.no_contact_s == pytest.approx(12.0)
    assert contact.reacquire_active
    assert contact.reacquire_turn_dir == 1

    update_contact_tracking(state, snap, now=1014.0)
    contact = update_contact_tracking(state, snap, now=1016.0)
    assert contact.reacquire_turn_dir == -1

    contact = update_contact_tracking(state, make_snapshot(target_hits={"front": True}), now=1017.0)
    assert contact.has_target_contact
    assert contact.no_contact_s == 0.0 and not contact.reacquire_active


def test_contact_tracking_caps_tick_gap(make_snapshot):
    state = SessionState()
    update_contact_tracking(state, make_snapshot(), now=1000.0)
    contact = update_contact_tracking(state, make_snapshot(), now=1100.0)
    assert contact.no_contact_s == pytest.approx(2.0)


if __name__ == "__main__":
    pytest.main(["-v", __file__])
