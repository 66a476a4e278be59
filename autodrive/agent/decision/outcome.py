from __future__ import annotations

"""
Decision outcome scoring and collision bookkeeping.

`build_decision_outcome` compares the snapshot captured at the previous
decision with the current one and labels what that decision achieved; the
label and summary are fed back to the model as "previous outcome".
`CollisionTracker` counts wall contacts per world region so the guard can
block a sector the vehicle keeps hitting.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

from .schemas import CollisionSummary, SensorSnapshot

logger = logging.getLogger(__name__)

COLLISION_REGIONS = (
    "OUTER_NORTH",
    "OUTER_SOUTH",
    "OUTER_EAST",
    "OUTER_WEST",
    "INNER_OBSTACLE",
    "OUTSIDE_BOUNDS",
    "UNKNOWN",
)


def collision_region(region: Optional[str]) -> str:
    key = region.strip().upper() if isinstance(region, str) else "UNKNOWN"
    return key if key in COLLISION_REGIONS else "UNKNOWN"


class CollisionTracker:
    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.total_count = 0
        self.same_wall_repeat_count = 0
        self.same_wall_consecutive_repeat_count = 0
        self.by_region: Dict[str, int] = {r: 0 for r in COLLISION_REGIONS}
        self.last_region = "NONE"
        self.last_collision_at = 0.0

    def record(self, region: Optional[str], now: Optional[float] = None) -> str:
        region = collision_region(region)
        previous = self.by_region[region]
        self.by_region[region] = previous + 1
        self.total_count += 1
        if previous > 0:
            self.same_wall_repeat_count += 1
        if self.last_region == region:
            self.same_wall_consecutive_repeat_count += 1
        self.last_region = region
        self.last_collision_at = time.time() if now is None else now
        logger.info("[Drive] Collision: region=%s total=%d", region, self.total_count)
        return region

    def summary(self) -> CollisionSummary:
        return CollisionSummary(
            total_count=self.total_count,
            same_wall_repeat_count=self.same_wall_repeat_count,
            same_wall_consecutive_repeat_count=self.same_wall_consecutive_repeat_count,
            by_region=dict(self.by_region),
            last_region=self.last_region,
            last_collision_at=self.last_collision_at,
        )


@dataclass
class DecisionOutcome:
    label: str
    summary: str
    elapsed_s: float
    progress_delta_m: float
    start_distance_m: float
    end_distance_m: float
    start_min_obstacle_m: float
    end_min_obstacle_m: float
    min_obstacle_delta_m: float
    target_hit_delta: int
    loop_rate_start: float
    loop_rate_end: float
    loop_rate_delta: float
    safety_override: bool


def build_decision_outcome(
    start: SensorSnapshot,
    end: SensorSnapshot,
    start_loop_rate: float = 0.0,
    end_loop_rate: Optional[float] = None,
    skill_name: str = "UNKNOWN",
    safety_override: bool = False,
    elapsed_s: float = 0.0,
) -> DecisionOutcome:
    progress = start.distance_to_target - end.distance_to_target
    start_min = start.min_obstacle_dist()
    end_min = end.min_obstacle_dist()
    end_loop_rate = start_loop_rate if end_loop_rate is None else end_loop_rate
    loop_delta = end_loop_rate - start_loop_rate
    hit_delta = end.target_hit_count - start.target_hit_count

    if hit_delta > 0:
        label = "TARGET_REACQUIRED"
    elif progress > 0.55 and end_min >= 2.4:
        label = "GOOD_PROGRESS"
    elif progress < -0.55 and end_min < 2.5:
        label = "RISKY_REGRESSION"
    elif abs(progress) < 0.25 and loop_delta > 0.08:
        label = "LOOP_RISK"
    elif abs(progress) < 0.2 and end_min < 2.4:
        label = "CAUTIOUS_HOLD"
    else:
        label = "MIXED"

    summary = (
        f"{label}: skill={skill_name}, progress={progress:.2f}m, minObs={end_min:.2f}m, "
        f"loopDelta={loop_delta:.3f}, hitsDelta={hit_delta}"
    )
    return DecisionOutcome(
        label=label,
        summary=summary,
        elapsed_s=round(max(0.0, elapsed_s), 3),
        progress_delta_m=round(progress, 3),
        start_distance_m=round(start.distance_to_target, 3),
        end_distance_m=round(end.distance_to_target, 3),
        start_min_obstacle_m=round(start_min, 3),
        end_min_obstacle_m=round(end_min, 3),
        min_obstacle_delta_m=round(end_min - start_min, 3),
        target_hit_delta=hit_delta,
        loop_rate_start=round(start_loop_rate, 3),
        loop_rate_end=round(end_loop_rate, 3),
        loop_rate_delta=round(loop_delta, 3),
        safety_override=safety_override,
    )
