from __future__ import annotations

"""
Memory-Aware Safety Guard (non-LLM).

Vetoes forward/reverse motion into sectors that the sensors or the spatial
memory mark as unsafe, and substitutes a deliberate, traced control. A guard
veto is not an error: the result carries the reason chain and the blocked
sector sets so the decision log can explain every substitution.

Clamp order (forward throttle, front clearance F):
  reroute / reverse / hold when the intended sector is blocked
  F < 2.35  -> throttle <= 0.1 (skipped under the close-approach override)
  F < 2.5   -> throttle <= 0.22 (always)
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .config import DEFAULT_CONFIG, GuardConfig
from .memory import MemoryContext
from .schemas import CollisionSummary, SensorSnapshot, clamp, normalize_sector, sector_from_steering, steering_for_sector

logger = logging.getLogger(__name__)

_WALL_VECTORS = {
    "OUTER_NORTH": (0.0, -1.0),
    "OUTER_SOUTH": (0.0, 1.0),
    "OUTER_EAST": (1.0, 0.0),
    "OUTER_WEST": (-1.0, 0.0),
}


def world_region_to_sector(region: Optional[str], heading_deg: float = 0.0) -> Optional[str]:
    """Sector (relative to heading) in which an outer wall lies; None for non-wall regions."""
    key = region.strip().upper() if isinstance(region, str) else ""
    vec = _WALL_VECTORS.get(key)
    if vec is None:
        return None
    vx, vz = vec
    heading_rad = math.radians(heading_deg)
    fx = math.sin(heading_rad)
    fz = math.cos(heading_rad)
    dot = clamp(fx * vx + fz * vz, -1.0, 1.0)
    cross_y = fx * vz - fz * vx
    angle = math.degrees(math.atan2(cross_y, dot))
    if abs(angle) <= 35:
        return "F"
    if abs(angle) >= 145:
        return "B"
    return "R" if angle > 0 else "L"


@dataclass
class GuardProfile:
    intended_sector: str
    clearance: Dict[str, float]
    front_near_danger: bool
    close_target_approach: bool
    allow_final_forward_approach: bool
    target_hit_count: int
    repeated_wall_count: int
    repeated_consecutive: int
    repeated_wall_sector: Optional[str]
    sensor_blocked_sectors: List[str] = field(default_factory=list)
    memory_blocked_sectors: List[str] = field(default_factory=list)


@dataclass
class GuardResult:
    throttle: float
    steering: float
    thought: str
    guard_applied: bool
    guard_reason: str
    profile: GuardProfile


def _chain(current: str, reason: str) -> str:
    return f"{current}|{reason}" if current else reason


def memory_blocked_sectors(
    context: Optional[MemoryContext],
    collision: Optional[CollisionSummary],
    heading_deg: float,
    config: Optional[GuardConfig] = None,
) -> List[str]:
    cfg = config or DEFAULT_CONFIG.guard
    blocked: List[str] = []
    for s in context.sector_safety if context is not None else []:
        if s.no_go_ratio >= cfg.memory_no_go_ratio or (
            s.safe_count <= cfg.memory_low_safe_count and s.no_go_ratio >= cfg.memory_low_safe_ratio
        ):
            blocked.append(normalize_sector(s.sector))
    if collision is not None:
        wall_sector = world_region_to_sector(collision.last_region, heading_deg)
        repeated = (
            collision.same_wall_consecutive_repeat_count >= cfg.wall_consecutive_block
            or collision.same_wall_repeat_count >= cfg.wall_total_block
        )
        if wall_sector and repeated and wall_sector not in blocked:
            blocked.append(wall_sector)
    return blocked


def apply_memory_safety_guard(
    snapshot: SensorSnapshot,
    context: Optional[MemoryContext],
    strategy_sector: str,
    throttle: float,
    steering: float,
    thought: str = "",
    collision: Optional[CollisionSummary] = None,
    config: Optional[GuardConfig] = None,
) -> GuardResult:
    cfg = config or DEFAULT_CONFIG.guard
    t, s = throttle, steering
    reason = ""
    applied = False

    clearance = snapshot.sector_clearance()
    sensor_blocked = set()
    if clearance["F"] < cfg.front_block:
        sensor_blocked.add("F")
    if clearance["L"] < cfg.side_block:
        sensor_blocked.add("L")
    if clearance["R"] < cfg.side_block:
        sensor_blocked.add("R")
    if clearance["B"] < cfg.back_block:
        sensor_blocked.add("B")
    front_near_danger = clearance["F"] < cfg.front_near_danger

    memory_blocked = set(memory_blocked_sectors(context, collision, snapshot.heading_deg, cfg))

    intended = sector_from_steering(steering) if abs(steering) > 0.2 else normalize_sector(strategy_sector)
    front_throttle_risk = intended == "F" and front_near_danger and t > 0.18
    forbidden_forward = intended in sensor_blocked or intended in memory_blocked or front_throttle_risk

    hit_count = snapshot.target_hit_count
    close_target = hit_count > 0 or (
        snapshot.distance_to_target < cfg.close_approach_distance
        and abs(snapshot.angle_to_target) < cfg.close_approach_angle_deg
    )
    allow_final_forward = close_target and intended == "F" and clearance["F"] > cfg.close_approach_min_front

    if t > 0.04 and forbidden_forward and not allow_final_forward:
        options = [x for x in ("F", "L", "R") if x not in sensor_blocked and x not in memory_blocked]
        options.sort(key=lambda x: clearance[x], reverse=True)
        if options:
            best = options[0]
            s = steering_for_sector(best, steering)
            near_clamp = 0.22 if front_near_danger else 0.34
            t = min(t, 0.2 if best == "F" else near_clamp)
            reason = f"forward_guard_{intended}_to_{best}"
            thought = f"[SafetyGuard] {intended} blocked, re-route to {best}."
        elif clearance["B"] > 2.8:
            t = -0.35
            s = 0.58 if clearance["L"] >= clearance["R"] else -0.58
            reason = f"forward_guard_{intended}_reverse_escape"
            thought = "[SafetyGuard] Forward sectors blocked, reverse escape."
        else:
            t, s = 0.0, 0.0
            reason = f"forward_guard_{intended}_hold"
            thought = "[SafetyGuard] No safe sector available, holding."
        applied = True

    if t > cfg.front_tight_throttle and clearance["F"] < cfg.front_tight and not allow_final_forward:
        t = cfg.front_tight_throttle
        if abs(s) < 0.35:
            s = 0.52 if clearance["L"] >= clearance["R"] else -0.52
        reason = _chain(reason, "front_tight_clamp")
        thought = "[SafetyGuard] Front arc tight, slowing and biasing escape turn."
        applied = True

    if t > cfg.front_danger_throttle and clearance["F"] < cfg.front_danger:
        t = cfg.front_danger_throttle
        reason = _chain(reason, "front_danger_clamp")
        thought = "[SafetyGuard] Front clearance below danger threshold, capping forward throttle."
        applied = True

    if t < -0.08 and clearance["B"] < 3.05 and clearance["F"] > 3.2 and max(clearance["L"], clearance["R"]) > 2.45:
        t = 0.2
        if abs(s) < 0.45:
            s = 0.62 if clearance["L"] >= clearance["R"] else -0.62
        reason = _chain(reason, "rear_tight_prefer_forward")
        thought = "[SafetyGuard] Rear is tight while front is open, preferring forward escape."
        applied = True

    if t < -0.08 and "B" in sensor_blocked:
        t = 0.0
        reason = _chain(reason, "rear_blocked")
        thought = "[SafetyGuard] Reverse path blocked, holding."
        applied = True

    profile = GuardProfile(
        intended_sector=intended,
        clearance=clearance,
        front_near_danger=front_near_danger,
        close_target_approach=close_target,
        allow_final_forward_approach=allow_final_forward,
        target_hit_count=hit_count,
        repeated_wall_count=collision.same_wall_repeat_count if collision else 0,
        repeated_consecutive=collision.same_wall_consecutive_repeat_count if collision else 0,
        repeated_wall_sector=world_region_to_sector(collision.last_region, snapshot.heading_deg) if collision else None,
        sensor_blocked_sectors=sorted(sensor_blocked),
        memory_blocked_sectors=sorted(memory_blocked),
    )
    if applied:
        logger.info("[Drive] Guard: %s throttle %.2f->%.2f steering %.2f->%.2f", reason, throttle, t, steering, s)

    return GuardResult(throttle=t, steering=s, thought=thought, guard_applied=applied, guard_reason=reason, profile=profile)
