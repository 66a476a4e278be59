from __future__ import annotations

"""
Decision Context Digest (non-LLM, pure).

Condenses the current sensor snapshot, session state and memory query into the
compact, bounded text the model sees each cycle. This is the only channel into
the inference call, so every list is capped (top-2 candidates, top-2 safe
candidates, one line per sector) to keep request size and latency predictable.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .memory import Candidate, MemoryContext
from .schemas import CollisionSummary, SensorSnapshot, as_num
from .state import SessionState
from .strategy import ContextSignal


@dataclass
class TargetSignal:
    mode: str
    target_weight: float
    exploration_weight: float
    hit_count: int
    angle_abs: float
    distance: float

    @property
    def mode_hint(self) -> str:
        return "TARGET_LOCK" if self.mode == "STRONG" else "MEMORY_EXPLORE"


def target_signal_profile(snapshot: SensorSnapshot) -> TargetSignal:
    hit_count = snapshot.target_hit_count
    angle_abs = abs(snapshot.angle_to_target)
    distance = snapshot.distance_to_target
    near = distance < 14
    if hit_count > 0 or (near and angle_abs <= 30):
        mode = "STRONG"
    elif near or angle_abs <= 70:
        mode = "MEDIUM"
    else:
        mode = "WEAK"
    exploration = {"STRONG": 0.15, "MEDIUM": 0.45}.get(mode, 0.85)
    return TargetSignal(mode, round(1.0 - exploration, 2), exploration, hit_count, angle_abs, distance)


def candidate_token(candidate: Optional[Candidate]) -> str:
    if candidate is None:
        return "none"
    return (
        f"{candidate.sector}({candidate.ix},{candidate.iz}) s={candidate.score:.2f} r={candidate.risk:.2f} "
        f"v={candidate.visits} th={candidate.target_hit_count} tm={candidate.target_miss_count} "
        f"ta={candidate.target_absence:.2f}"
    )


def obstacle_summary(snapshot: SensorSnapshot) -> str:
    names = (("L", "left"), ("LD", "left_diag"), ("F", "front"), ("RD", "right_diag"),
             ("R", "right"), ("BL", "back_left"), ("B", "back"), ("BR", "back_right"))
    seen = [f"{label}:{snapshot.ray(name, 10.0):.1f}m" for label, name in names if snapshot.ray(name, 10.0) < 10]
    return f"Obstacle: {' '.join(seen)}." if seen else "Obstacle: None."


def memory_digest(context: Optional[MemoryContext]) -> str:
    if context is None:
        return "none"
    cell = context.current_cell
    top = " | ".join(candidate_token(c) for c in context.top_candidates[:2]) or "none"
    safe = " | ".join(candidate_token(c) for c in context.top_safe_candidates[:2]) or "none"
    sectors = " ; ".join(
        f"{s.sector}:safe{s.safe_count}/tot{s.total_count}/ng{s.no_go_ratio:.2f}" for s in context.sector_safety
    ) or "none"
    return " | ".join(
        [
            f"loop={context.loop_rate:.3f}",
            f"warn={context.loop_warning}",
            f"pref={context.preferred_sector}",
            f"cell=({cell['ix']},{cell['iz']}) risk={cell['risk']:.2f} visits={cell['visits']} "
            f"th={cell['targetHitCount']} tm={cell['targetMissCount']} ta={cell['targetAbsence']:.2f}",
            f"mapped={context.mapped_cells}",
            f"noGo={context.no_go_ratio:.2f}",
            f"targetCold={context.target_cold_count}/{context.candidate_count}({context.target_cold_ratio:.2f})",
            f"top={top}",
            f"safe={safe}",
            f"sectorSafety={sectors}",
        ]
    )


def strategic_digest(context: Optional[MemoryContext], target: TargetSignal) -> str:
    frontier = context.frontier if context is not None else []
    return " | ".join(
        [
            f"hint={target.mode_hint}",
            f"pref={context.preferred_sector if context is not None else 'F'}",
            f"loop={context.loop_warning if context is not None else 'LOW'}",
            f"best={candidate_token(frontier[0] if frontier else None)}",
            f"second={candidate_token(frontier[1] if len(frontier) > 1 else None)}",
        ]
    )


def collision_digest(collision: Optional[CollisionSummary]) -> str:
    if collision is None or collision.total_count == 0:
        return "none"
    return (
        f"total={collision.total_count} repeat={collision.same_wall_repeat_count} "
        f"consecutive={collision.same_wall_consecutive_repeat_count} last={collision.last_region}"
    )


def previous_outcome_signal(state: SessionState) -> Dict[str, Any]:
    details = state.last_outcome_details or {}
    return {
        "label": details.get("label", "NONE"),
        "summary": state.last_outcome_summary.strip() or "No previous outcome yet.",
        "progressDeltaM": as_num(details.get("progress_delta_m"), 0.0),
        "minObstacleDeltaM": as_num(details.get("min_obstacle_delta_m"), 0.0),
        "targetHitDelta": as_num(details.get("target_hit_delta"), 0.0),
        "loopRateDelta": as_num(details.get("loop_rate_delta"), 0.0),
        "safetyOverride": bool(details.get("safety_override", False)),
    }


def _fmt(value: Optional[float], digits: int = 1) -> str:
    return "n/a" if value is None else f"{value:.{digits}f}"


@dataclass
class DecisionDigest:
    target: TargetSignal
    lines: List[str] = field(default_factory=list)

    def render(self) -> str:
        return "\n".join(f"- {line}" for line in self.lines)


def build_decision_digest(
    snapshot: SensorSnapshot,
    state: SessionState,
    context: Optional[MemoryContext],
    signal: ContextSignal,
    collision: Optional[CollisionSummary] = None,
    action_history: Sequence[str] = (),
    priority: str = "target_capture > safe_motion > anti_loop",
) -> DecisionDigest:
    target = target_signal_profile(snapshot)
    s = snapshot
    rays = (
        f"L:{_fmt(s.left)} LD:{_fmt(s.left_diag)} F:{_fmt(s.front)} RD:{_fmt(s.right_diag)} "
        f"R:{_fmt(s.right)} BL:{_fmt(s.back_left)} B:{_fmt(s.back)} BR:{_fmt(s.back_right)}"
    )
    history = " -> ".join(action_history[-6:]) if action_history else "None"
    lines = [
        f"Target: distance {s.distance_to_target:.1f}m, angle {s.angle_to_target:.0f} deg",
        f"Sensors (8 rays): {rays}",
        f"Target Hits: {json.dumps(dict(s.target_hits), sort_keys=True)}",
        f"Pose: X:{_fmt(s.world_x)}, Z:{_fmt(s.world_z)}, Heading:{s.heading_deg:.0f}deg",
        "Coordinate Convention: +X=EAST, -X=WEST, +Z=SOUTH, -Z=NORTH, Heading 0deg=+Z(SOUTH), +90deg=+X(EAST).",
        f"Speed: {s.speed:.1f}",
        f"Last Actions: {history}",
        f"Stuck Status: {'STUCK' if s.is_stuck else 'MOVING'}",
        f"Target Signal Mode: {target.mode} (ContactCount={target.hit_count}, "
        f"AngleAbs={target.angle_abs:.0f}, Dist={target.distance:.1f}m)",
        f"Priority Weights: Target={target.target_weight:.2f}, ExplorationMemory={target.exploration_weight:.2f}",
        f"Exploration Memory Digest: {memory_digest(context)}",
        f"Strategic Snapshot Digest: {strategic_digest(context, target)}",
        f"Collision Pressure Digest: {collision_digest(collision)}",
        f"Strategy Priority: {priority}",
        f"Previous Outcome Signal: {json.dumps(previous_outcome_signal(state))}",
        f"Previous Reflection Hint: {state.last_reflection_hint.strip() or 'None'}",
        f"Previous Skill: {state.last_skill_name or 'MOVE_TO_FRONTIER'}",
        f"Previous Strategy Mode: {state.last_strategy_mode or 'NONE'}",
        f"Expected Mode From Context: {signal.expected_mode}",
        f"LockHoldWindow: {str(signal.lock_hold_window).lower()}",
        f"PseudoContactScore: {signal.pseudo_contact_score:.2f} "
        f"(ReliableDirectionCue={str(signal.reliable_direction_cue).lower()})",
        f"NoContactDurationS: {signal.no_contact_s:.1f}",
        f"NoContactCycles: {signal.no_contact_cycles}",
        f"ReacquireActive: {str(signal.reacquire_active).lower()}",
        f"ReacquireTurnHint: {'LEFT' if signal.reacquire_turn_dir > 0 else 'RIGHT'}",
    ]
    return DecisionDigest(target=target, lines=lines)
