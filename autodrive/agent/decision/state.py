from __future__ import annotations

"""
Session State Store (non-LLM, per run).

This is the single mutable structure threaded through every decision cycle.
It tracks:
- steering / strategy-mode history and the hysteresis vote tracker
- target-contact timers and the reacquire sweep direction
- skill cadence counters (approach hold, scan / backoff bursts)
- the previous outcome + reflection hint fed back into the next prompt
- cumulative reason-validation counters

Exactly one instance per active run. `reset()` re-initializes everything at
once; callers must never reset individual fields.
"""

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class ReasonValidationStats:
    total_steps: int = 0
    passed_steps: int = 0
    blocked_steps: int = 0
    missing_model_reason_steps: int = 0
    sign_mismatch_steps: int = 0

    @property
    def pass_rate(self) -> float:
        return self.passed_steps / self.total_steps if self.total_steps > 0 else 1.0


@dataclass
class SessionState:
    run_id: str = ""

    # Control / mode history
    last_steering: float = 0.0
    last_strategy_mode: str = ""
    last_mode_switch_at: float = 0.0
    mode_hold_remaining: int = 0
    target_lock_hold_remaining: int = 0

    # Pending-mode vote tracker
    pending_strategy_mode: str = ""
    pending_strategy_since: float = 0.0
    pending_strategy_votes: int = 0

    # Target contact tracking (seconds / cycles)
    no_contact_s: float = 0.0
    no_contact_cycles: int = 0
    last_contact_at: float = 0.0
    last_tick_at: Optional[float] = None
    reacquire_turn_dir: int = 1
    last_reacquire_flip_at: float = 0.0

    # Skill cadence
    last_skill_name: str = ""
    approach_hold_remaining: int = 0
    scan_burst_count: int = 0
    backoff_burst_count: int = 0

    # Reflection loop
    last_outcome_summary: str = ""
    last_outcome_details: Optional[Dict[str, Any]] = None
    last_reflection_hint: str = ""
    # Snapshot/loop-rate/skill of the previous decision, scored on the next cycle.
    pending_decision: Optional[Dict[str, Any]] = None

    cycles: int = 0
    reason_stats: ReasonValidationStats = field(default_factory=ReasonValidationStats)

    def reset(self) -> None:
        """Atomic reset at run start/stop (run_id is kept)."""
        fresh = SessionState(run_id=self.run_id)
        for f in fields(self):
            setattr(self, f.name, getattr(fresh, f.name))
        logger.debug("[Drive] State: session reset run=%s", self.run_id or "-")

    def clear_pending_mode(self) -> None:
        self.pending_strategy_mode = ""
        self.pending_strategy_since = 0.0
        self.pending_strategy_votes = 0
