from __future__ import annotations

"""
Strategy Mode Resolver (non-LLM).

The model declares one of TARGET_LOCK / MEMORY_EXPLORE / ESCAPE_RECOVERY every
cycle, but its choice is locally inconsistent from cycle to cycle. Resolution
runs in two stages:

1) `resolve_mode_with_context`: sensor-context corrections (danger forces
   escape, lock-priority / lock-hold windows force lock, weak cues demote lock,
   strong cues promote into lock).
2) `stabilize_mode_with_hysteresis`: safety-critical and strong lock
   promotions switch immediately; everything else needs the cooldown, the
   minimum hold and a confirmed pending vote before the mode actually changes.

All timestamps are float seconds; callers inject `now` so tests stay
deterministic.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from .config import DEFAULT_CONFIG, HysteresisConfig
from .schemas import SensorSnapshot, clamp01, normalize_mode
from .state import SessionState

logger = logging.getLogger(__name__)


@dataclass
class ContactState:
    has_target_contact: bool
    no_contact_s: float
    no_contact_cycles: int
    reacquire_active: bool
    reacquire_turn_dir: int


@dataclass
class ContextSignal:
    expected_mode: str
    has_target_contact: bool
    strong_target_cue: bool
    weak_target_cue: bool
    danger: bool
    distance: float
    angle_abs: float
    min_front_dist: float
    pseudo_contact_score: float
    lock_priority: bool
    lock_hold_window: bool
    reliable_direction_cue: bool
    no_contact_s: float = 0.0
    no_contact_cycles: int = 0
    reacquire_active: bool = False
    reacquire_turn_dir: int = 1


@dataclass
class ModeResolution:
    mode: str
    corrected: bool = False
    reason: str = ""


@dataclass
class HysteresisResult:
    mode: str
    held: bool
    forced: bool
    reason: str


def update_contact_tracking(
    state: SessionState,
    snapshot: SensorSnapshot,
    now: Optional[float] = None,
    config: Optional[HysteresisConfig] = None,
) -> ContactState:
    """Advance no-contact timers and the reacquire sweep direction by one tick."""
    cfg = config or DEFAULT_CONFIG.hysteresis
    now = time.time() if now is None else now
    last_tick = state.last_tick_at if state.last_tick_at is not None else now
    dt = max(0.0, min(cfg.max_tick_gap_s, now - last_tick))
    state.last_tick_at = now

    has_contact = snapshot.target_hit_count > 0
    if has_contact:
        state.no_contact_s = 0.0
        state.no_contact_cycles = 0
        state.last_contact_at = now
        state.last_reacquire_flip_at = 0.0
    else:
        state.no_contact_s += dt
        state.no_contact_cycles += 1

    reacquire_active = not has_contact and state.no_contact_s >= cfg.reacquire_after_s
    if reacquire_active:
        if not state.last_reacquire_flip_at:
            state.last_reacquire_flip_at = now
        if now - state.last_reacquire_flip_at > cfg.reacquire_flip_s:
            state.reacquire_turn_dir = -1 if state.reacquire_turn_dir > 0 else 1
            state.last_reacquire_flip_at = now
            logger.debug("[Drive] Reacquire sweep flipped dir=%d", state.reacquire_turn_dir)

    return ContactState(
        has_target_contact=has_contact,
        no_contact_s=state.no_contact_s,
        no_contact_cycles=state.no_contact_cycles,
        reacquire_active=reacquire_active,
        reacquire_turn_dir=state.reacquire_turn_dir,
    )


def pseudo_contact_score(distance: float, angle_abs: float, min_front_dist: float, hit_count: int, has_contact: bool) -> float:
    """Continuous lock-readiness estimate used when no ray confirms contact."""
    if has_contact:
        return 1.0
    distance_score = clamp01((22.0 - distance) / 16.0)
    angle_score = clamp01((75.0 - angle_abs) / 75.0)
    front_clear_score = clamp01((min_front_dist - 2.0) / 5.5)
    hit_score = clamp01(hit_count / 2.0)
    return clamp01(distance_score * 0.48 + angle_score * 0.37 + front_clear_score * 0.1 + hit_score * 0.05)


def infer_context_signal(
    snapshot: SensorSnapshot,
    contact: Optional[ContactState] = None,
    config: Optional[HysteresisConfig] = None,
) -> ContextSignal:
    cfg = config or DEFAULT_CONFIG.hysteresis
    hit_count = snapshot.target_hit_count
    has_contact = contact.has_target_contact if contact is not None else hit_count > 0
    angle_abs = abs(snapshot.angle_to_target)
    distance = snapshot.distance_to_target
    no_contact_s = contact.no_contact_s if contact is not None else 0.0

    min_front = snapshot.min_front_dist()
    danger = snapshot.is_stuck or min_front < cfg.critical_front_dist

    pseudo = pseudo_contact_score(distance, angle_abs, min_front, hit_count, has_contact)
    reliable_direction = distance < 28 and angle_abs <= 60 and min_front > 2.5
    strong = has_contact or (not danger and pseudo >= 0.6 and reliable_direction)
    weak = not has_contact and (
        pseudo <= 0.22 or distance > 30 or angle_abs > 95 or (no_contact_s >= 18.0 and pseudo < 0.4)
    )
    lock_priority = not danger and (
        has_contact
        or (
            distance <= cfg.lock_priority_distance
            and angle_abs <= cfg.lock_priority_angle_deg
            and pseudo >= cfg.lock_priority_pseudo
        )
    )
    lock_hold_window = (
        not danger
        and min_front > cfg.lock_hold_min_front
        and (
            has_contact
            or (
                distance <= cfg.lock_hold_distance
                and angle_abs <= cfg.lock_hold_angle_deg
                and pseudo >= cfg.lock_hold_pseudo
            )
        )
    )

    if danger:
        expected = "ESCAPE_RECOVERY"
    elif lock_priority or strong:
        expected = "TARGET_LOCK"
    else:
        expected = "MEMORY_EXPLORE"

    return ContextSignal(
        expected_mode=expected,
        has_target_contact=has_contact,
        strong_target_cue=strong,
        weak_target_cue=weak,
        danger=danger,
        distance=distance,
        angle_abs=angle_abs,
        min_front_dist=min_front,
        pseudo_contact_score=pseudo,
        lock_priority=lock_priority,
        lock_hold_window=lock_hold_window,
        reliable_direction_cue=reliable_direction,
        no_contact_s=no_contact_s,
        no_contact_cycles=contact.no_contact_cycles if contact is not None else 0,
        reacquire_active=contact.reacquire_active if contact is not None else False,
        reacquire_turn_dir=1 if (contact is None or contact.reacquire_turn_dir > 0) else -1,
    )


def resolve_mode_with_context(raw_mode: str, signal: ContextSignal, previous_mode: Optional[str] = None) -> ModeResolution:
    """Stage 1: first matching context rule wins."""
    mode = raw_mode
    previous = normalize_mode(previous_mode, None)

    if signal.danger and mode != "ESCAPE_RECOVERY":
        return ModeResolution("ESCAPE_RECOVERY", True, "danger_context_forced_escape")
    if mode != "TARGET_LOCK" and (signal.lock_priority or signal.lock_hold_window):
        reason = "lock_priority_window_promote" if signal.lock_priority else "lock_hold_window_promote"
        return ModeResolution("TARGET_LOCK", True, reason)
    if signal.reacquire_active and mode == "TARGET_LOCK" and not signal.strong_target_cue:
        return ModeResolution("MEMORY_EXPLORE", True, "prolonged_no_contact_reacquire")
    if mode == "TARGET_LOCK" and signal.weak_target_cue and not signal.lock_priority and not signal.lock_hold_window:
        return ModeResolution("MEMORY_EXPLORE", True, "weak_target_cue_demote_to_explore")
    if mode != "TARGET_LOCK" and not signal.danger and signal.strong_target_cue:
        return ModeResolution("TARGET_LOCK", True, "strong_target_cue_promote_to_lock")
    if previous == "TARGET_LOCK" and signal.lock_hold_window and mode != "TARGET_LOCK":
        return ModeResolution("TARGET_LOCK", True, "previous_lock_hold_window")
    return ModeResolution(mode)


def stabilize_mode_with_hysteresis(
    state: SessionState,
    desired_mode: str,
    signal: ContextSignal,
    now: Optional[float] = None,
    config: Optional[HysteresisConfig] = None,
) -> HysteresisResult:
    """Stage 2: damp non-critical mode drift. Mutates the vote tracker in `state`."""
    cfg = config or DEFAULT_CONFIG.hysteresis
    now = time.time() if now is None else now
    previous = normalize_mode(state.last_strategy_mode, None)

    if previous is None or desired_mode == previous:
        if state.mode_hold_remaining > 0:
            state.mode_hold_remaining -= 1
        if previous == "TARGET_LOCK" and signal.lock_hold_window and not signal.danger:
            state.target_lock_hold_remaining = max(state.target_lock_hold_remaining, cfg.lock_hold_min_cycles)
        elif state.target_lock_hold_remaining > 0 and (signal.danger or not signal.lock_hold_window):
            state.target_lock_hold_remaining -= 1
        state.clear_pending_mode()
        return HysteresisResult(desired_mode, held=False, forced=False, reason="stable")

    critical = signal.danger or signal.min_front_dist < cfg.critical_front_dist
    strong_promotion = (
        desired_mode == "TARGET_LOCK"
        and not signal.danger
        and signal.strong_target_cue
        and signal.pseudo_contact_score >= cfg.strong_promotion_pseudo
        and signal.min_front_dist > cfg.strong_promotion_min_front
    )
    lock_priority_promotion = (
        desired_mode == "TARGET_LOCK"
        and not signal.danger
        and signal.lock_priority
        and signal.min_front_dist > cfg.lock_priority_promotion_min_front
    )
    lock_hold_active = (
        previous == "TARGET_LOCK"
        and not signal.danger
        and signal.min_front_dist > cfg.lock_hold_min_front
        and (signal.lock_hold_window or state.target_lock_hold_remaining > 0)
    )

    if lock_hold_active and desired_mode != "TARGET_LOCK":
        state.clear_pending_mode()
        if signal.lock_hold_window:
            state.target_lock_hold_remaining = cfg.lock_hold_min_cycles
        else:
            state.target_lock_hold_remaining = max(0, state.target_lock_hold_remaining - 1)
        return HysteresisResult("TARGET_LOCK", held=True, forced=True, reason="target_lock_hold_window")

    if critical or strong_promotion or lock_priority_promotion:
        state.clear_pending_mode()
        _commit_switch(state, desired_mode, now, cfg)
        if critical:
            reason = "critical_context_override"
        elif lock_priority_promotion:
            reason = "lock_priority_promotion"
        else:
            reason = "strong_lock_promotion"
        logger.info("[Drive] Mode forced %s -> %s (%s)", previous, desired_mode, reason)
        return HysteresisResult(desired_mode, held=False, forced=True, reason=reason)

    in_cooldown = state.last_mode_switch_at > 0 and (now - state.last_mode_switch_at) < cfg.cooldown_s
    if in_cooldown:
        return HysteresisResult(previous, held=True, forced=False, reason="switch_cooldown_hold")
    if state.mode_hold_remaining > 0:
        state.mode_hold_remaining -= 1
        return HysteresisResult(previous, held=True, forced=False, reason="minimum_mode_hold")

    if state.pending_strategy_mode != desired_mode:
        state.pending_strategy_mode = desired_mode
        state.pending_strategy_since = now
        state.pending_strategy_votes = 1
        return HysteresisResult(previous, held=True, forced=False, reason="pending_switch_vote")

    state.pending_strategy_votes += 1
    pending_s = now - state.pending_strategy_since
    if state.pending_strategy_votes >= cfg.min_votes and pending_s >= cfg.min_dwell_s:
        state.clear_pending_mode()
        _commit_switch(state, desired_mode, now, cfg)
        logger.info("[Drive] Mode switch confirmed %s -> %s", previous, desired_mode)
        return HysteresisResult(desired_mode, held=False, forced=False, reason="hysteresis_confirmed_switch")

    return HysteresisResult(previous, held=True, forced=False, reason="pending_switch_wait")


def _commit_switch(state: SessionState, mode: str, now: float, cfg: HysteresisConfig) -> None:
    state.last_mode_switch_at = now
    state.mode_hold_remaining = cfg.min_hold_cycles
    state.target_lock_hold_remaining = cfg.lock_hold_min_cycles if mode == "TARGET_LOCK" else 0


def derive_transition(model_transition: str, previous_mode: Optional[str], current_mode: str, corrected: bool) -> str:
    if corrected:
        return "SWITCH"
    if previous_mode and previous_mode != current_mode:
        return "SWITCH"
    return "SWITCH" if isinstance(model_transition, str) and model_transition.upper() == "SWITCH" else "HOLD"
