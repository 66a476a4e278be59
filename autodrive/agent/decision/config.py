from __future__ import annotations

"""
Tunable constants for the decision core.

Every threshold used by the resolver / guard / memory modules lives here as a
named field so a run can be re-calibrated without touching logic.
Most values were tuned by hand in driving sessions; treat them as calibration
knobs, not derived quantities.

Front-clearance cutoffs (meters, minimum of front/leftDiag/rightDiag rays):
  2.15  critical danger -> forced ESCAPE_RECOVERY
  2.35  guard tight clamp (forward throttle <= 0.1)
  2.5   reason-validator forward risk + guard danger clamp (<= 0.22)
  2.55  skill resolver "safe forward"
  2.9   guard front sector blocked
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class WorldBounds:
    min_x: float = -19.0
    max_x: float = 19.0
    min_z: float = -19.0
    max_z: float = 19.0
    soft_margin: float = 3.5

    def contains(self, x: float, z: float) -> bool:
        return self.min_x <= x <= self.max_x and self.min_z <= z <= self.max_z


@dataclass
class MemoryConfig:
    cell_size: float = 2.0
    max_cells: int = 5000
    sensor_range: float = 10.0
    sensor_range_min: float = 4.0
    sensor_range_max: float = 30.0
    max_path: int = 500
    world_bounds: Optional[WorldBounds] = None

    def __post_init__(self) -> None:
        if self.cell_size <= 0:
            raise ValueError(f"cell_size must be positive, got {self.cell_size}")
        if self.max_cells < 1:
            raise ValueError(f"max_cells must be >= 1, got {self.max_cells}")
        if self.sensor_range_min > self.sensor_range_max:
            raise ValueError("sensor_range_min must not exceed sensor_range_max")


@dataclass
class HysteresisConfig:
    cooldown_s: float = 2.2
    min_dwell_s: float = 1.4
    min_votes: int = 2
    min_hold_cycles: int = 2
    critical_front_dist: float = 2.15

    # TARGET_LOCK priority window (forces lock when no danger)
    lock_priority_distance: float = 20.0
    lock_priority_angle_deg: float = 48.0
    lock_priority_pseudo: float = 0.5

    # TARGET_LOCK hold window (keeps lock sticky)
    lock_hold_distance: float = 12.0
    lock_hold_angle_deg: float = 72.0
    lock_hold_pseudo: float = 0.42
    lock_hold_min_front: float = 2.2
    lock_hold_min_cycles: int = 3

    strong_promotion_pseudo: float = 0.7
    strong_promotion_min_front: float = 2.6
    lock_priority_promotion_min_front: float = 2.3

    # contact tracking
    reacquire_after_s: float = 12.0
    reacquire_flip_s: float = 3.5
    max_tick_gap_s: float = 2.0


@dataclass
class SkillConfig:
    safe_forward_dist: float = 2.55
    approach_ready_front: float = 2.65
    scan_burst_limit: int = 2
    backoff_burst_limit: int = 2
    burst_release_front: float = 3.2
    approach_min_hold_cycles: int = 3


@dataclass
class GuardConfig:
    front_block: float = 2.9
    side_block: float = 2.25
    back_block: float = 2.3
    front_near_danger: float = 2.6
    front_tight: float = 2.35
    front_tight_throttle: float = 0.1
    front_danger: float = 2.5
    front_danger_throttle: float = 0.22
    memory_no_go_ratio: float = 0.75
    memory_low_safe_count: int = 2
    memory_low_safe_ratio: float = 0.5
    wall_consecutive_block: int = 2
    wall_total_block: int = 4
    close_approach_distance: float = 3.2
    close_approach_angle_deg: float = 18.0
    close_approach_min_front: float = 2.2


@dataclass
class PlanConfig:
    max_steps: int = 5
    max_total_s: float = 1.2
    min_step_s: float = 0.1
    max_step_s: float = 3.0
    sign_deadzone: float = 0.08
    reason_front_risk_dist: float = 2.5
    require_model_reason: bool = True
    neutralized_step_s: float = 0.18


@dataclass
class InferenceConfig:
    timeout_s: float = 15.0
    max_tokens_primary: int = 420
    max_tokens_retry: int = 360
    temperature: float = 0.2
    retry_tail_chars: int = 420


@dataclass
class DecisionCoreConfig:
    """Library-level configuration surface of the decision core."""

    memory: MemoryConfig = field(default_factory=lambda: MemoryConfig(world_bounds=WorldBounds()))
    hysteresis: HysteresisConfig = field(default_factory=HysteresisConfig)
    skills: SkillConfig = field(default_factory=SkillConfig)
    guard: GuardConfig = field(default_factory=GuardConfig)
    plan: PlanConfig = field(default_factory=PlanConfig)
    inference: InferenceConfig = field(default_factory=InferenceConfig)


DEFAULT_CONFIG = DecisionCoreConfig()
