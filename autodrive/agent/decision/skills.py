from __future__ import annotations

"""
Skill Resolver & Cadence Control (non-LLM).

Maps the resolved strategy mode plus sensor context to one of five motion
skills, limits skill flapping across cycles, and shapes the raw control values
with a fixed per-skill profile before the safety guard sees them.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .config import DEFAULT_CONFIG, SkillConfig
from .schemas import SensorSnapshot, clamp_number, normalize_sector, normalize_skill, sector_from_steering, steering_for_sector
from .state import SessionState
from .strategy import ContextSignal

logger = logging.getLogger(__name__)


@dataclass
class SkillResolution:
    skill: str
    override_reason: str
    approach_bias: bool
    strict_scan_condition: bool


@dataclass
class CadenceResult:
    skill: str
    override_reason: str
    approach_hold_remaining: int
    scan_burst_count: int
    backoff_burst_count: int


@dataclass
class SkillExecution:
    throttle: float
    steering: float
    duration: float
    executor_note: str


def inferred_skill_for_mode(mode: str) -> str:
    if mode == "TARGET_LOCK":
        return "APPROACH_TARGET"
    if mode == "ESCAPE_RECOVERY":
        return "BACKOFF_AND_TURN"
    return "MOVE_TO_FRONTIER"


def resolve_skill_with_context(
    requested_skill: Optional[str],
    mode: str,
    sector: str,
    signal: ContextSignal,
    snapshot: SensorSnapshot,
    config: Optional[SkillConfig] = None,
) -> SkillResolution:
    cfg = config or DEFAULT_CONFIG.skills
    safe_forward = snapshot.min_front_dist() > cfg.safe_forward_dist
    approach_bias = (
        not signal.danger
        and safe_forward
        and (
            signal.has_target_contact
            or (signal.pseudo_contact_score >= 0.56 and signal.angle_abs <= 62 and signal.distance <= 26)
        )
    )
    strict_scan = (
        signal.reacquire_active
        and signal.weak_target_cue
        and not signal.has_target_contact
        and signal.pseudo_contact_score < 0.46
        and signal.distance > 18
        and signal.angle_abs > 18
    )

    skill = normalize_skill(requested_skill, "MOVE_TO_FRONTIER")
    reason = ""

    if mode == "ESCAPE_RECOVERY":
        if skill != "BACKOFF_AND_TURN":
            skill, reason = "BACKOFF_AND_TURN", "escape_forces_backoff"
    elif mode == "TARGET_LOCK":
        if not safe_forward and skill != "BACKOFF_AND_TURN":
            skill, reason = "BACKOFF_AND_TURN", "target_lock_front_blocked_escape"
        elif safe_forward and skill != "APPROACH_TARGET":
            skill, reason = "APPROACH_TARGET", "target_lock_forces_approach"
    elif skill == "SCAN_SECTOR" and not strict_scan:
        if approach_bias:
            skill, reason = "APPROACH_TARGET", "scan_demoted_to_approach"
        else:
            skill, reason = "MOVE_TO_FRONTIER", "scan_demoted_to_frontier"
    elif skill == "SCAN_SECTOR" and safe_forward and signal.pseudo_contact_score >= 0.42:
        skill, reason = "MOVE_TO_FRONTIER", "scan_demoted_due_to_mid_target_cue"
    elif skill in ("MOVE_TO_FRONTIER", "SCAN_SECTOR") and approach_bias:
        skill, reason = "APPROACH_TARGET", "approach_bias_from_target_cue"

    # Never "approach" into the rear sector without contact.
    if skill == "APPROACH_TARGET" and normalize_sector(sector) == "B" and not signal.has_target_contact:
        skill, reason = "MOVE_TO_FRONTIER", "avoid_backward_approach"

    return SkillResolution(skill=skill, override_reason=reason, approach_bias=approach_bias, strict_scan_condition=strict_scan)


def enforce_skill_cadence(
    requested_skill: str,
    mode: str,
    signal: ContextSignal,
    snapshot: SensorSnapshot,
    approach_bias: bool,
    state: SessionState,
    config: Optional[SkillConfig] = None,
) -> CadenceResult:
    """Cap scan/backoff bursts and keep APPROACH_TARGET sticky. Mutates the counters in `state`."""
    cfg = config or DEFAULT_CONFIG.skills
    min_front = snapshot.min_front_dist()
    previous_skill = normalize_skill(state.last_skill_name, "MOVE_TO_FRONTIER")
    skill = normalize_skill(requested_skill, "MOVE_TO_FRONTIER")
    reasons = []

    forward_approach_ready = (
        not signal.danger
        and min_front > cfg.approach_ready_front
        and (
            signal.has_target_contact
            or (signal.pseudo_contact_score >= 0.52 and signal.distance <= 24 and signal.angle_abs <= 65)
        )
    )

    if skill == "SCAN_SECTOR" and state.scan_burst_count >= cfg.scan_burst_limit and not signal.danger:
        skill = "APPROACH_TARGET" if forward_approach_ready else "MOVE_TO_FRONTIER"
        reasons.append("scan_burst_limited")
    elif (
        skill == "BACKOFF_AND_TURN"
        and state.backoff_burst_count >= cfg.backoff_burst_limit
        and mode != "ESCAPE_RECOVERY"
        and not signal.danger
        and min_front > cfg.burst_release_front
    ):
        skill = "APPROACH_TARGET" if (forward_approach_ready or approach_bias) else "MOVE_TO_FRONTIER"
        reasons.append("backoff_burst_limited")

    if (
        skill != "APPROACH_TARGET"
        and state.approach_hold_remaining > 0
        and mode != "ESCAPE_RECOVERY"
        and forward_approach_ready
    ):
        skill = "APPROACH_TARGET"
        state.approach_hold_remaining = max(0, state.approach_hold_remaining - 1)
        reasons.append("approach_hold_lock")

    if skill == "APPROACH_TARGET":
        if previous_skill != "APPROACH_TARGET":
            state.approach_hold_remaining = max(state.approach_hold_remaining, cfg.approach_min_hold_cycles - 1)
        elif state.approach_hold_remaining > 0:
            state.approach_hold_remaining -= 1
    elif not forward_approach_ready or mode == "ESCAPE_RECOVERY" or signal.danger:
        state.approach_hold_remaining = 0

    state.scan_burst_count = state.scan_burst_count + 1 if skill == "SCAN_SECTOR" else 0
    state.backoff_burst_count = state.backoff_burst_count + 1 if skill == "BACKOFF_AND_TURN" else 0

    if reasons:
        logger.debug("[Drive] Skill cadence %s -> %s (%s)", requested_skill, skill, "|".join(reasons))

    return CadenceResult(
        skill=skill,
        override_reason="|".join(reasons),
        approach_hold_remaining=state.approach_hold_remaining,
        scan_burst_count=state.scan_burst_count,
        backoff_burst_count=state.backoff_burst_count,
    )


def apply_skill_profile(
    skill: str,
    sector: str,
    throttle: float,
    steering: float,
    duration: float,
    signal: ContextSignal,
    snapshot: SensorSnapshot,
    intensity: float = 0.5,
) -> SkillExecution:
    """Shape controls with the fixed profile of `skill` (applied before the safety guard)."""
    clearance = snapshot.sector_clearance()
    front = clearance["F"]
    skill_sector = normalize_sector(sector, sector_from_steering(steering) if abs(steering) > 0.2 else "F")
    sector_steer = steering_for_sector(skill_sector, steering)
    intensity = clamp_number(intensity, 0.0, 1.0, 0.5)

    t, s, d = throttle, steering, duration
    if skill == "HOLD_POSITION":
        t, s = 0.0, 0.0
        d = max(d, 0.25)
        note = "hold_position"
    elif skill == "BACKOFF_AND_TURN":
        t = min(t, -(0.28 + 0.22 * intensity))
        if abs(s) < 0.45:
            s = 0.72 if clearance["L"] >= clearance["R"] else -0.72
        d = max(d, 0.45)
        note = "backoff_turn_profile"
    elif skill == "SCAN_SECTOR":
        t = max(0.1, min(t, 0.2))
        if skill_sector == "F":
            s = 0.45 * (1 if signal.reacquire_turn_dir > 0 else -1)
        else:
            s = steering_for_sector(skill_sector, s) * 0.72
        d = max(d, 0.35)
        note = "scan_sector_profile"
    elif skill == "APPROACH_TARGET":
        if front > 2.7:
            t = max(t, 0.24 + 0.28 * intensity)
        else:
            t = min(t, 0.18)
        if abs(s) < 0.22 and skill_sector != "F":
            s = sector_steer * 0.8
        d = max(d, 0.3)
        note = "approach_target_profile"
    else:
        t = max(t, 0.22 + 0.2 * intensity)
        if abs(s) < 0.2:
            s = sector_steer * 0.7
        d = max(d, 0.35)
        note = "move_frontier_profile"

    return SkillExecution(
        throttle=clamp_number(t, -1.0, 1.0, throttle),
        steering=clamp_number(s, -1.0, 1.0, steering),
        duration=clamp_number(d, 0.1, 3.0, duration),
        executor_note=note,
    )
