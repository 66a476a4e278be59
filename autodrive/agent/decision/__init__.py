"""
Decision core (LLM-driven driving decisions for a simulated vehicle).

Design goal: keep the model as the *primary* decision maker while every
safety-relevant property is enforced by small deterministic modules around it.

Modules:
- `state`: per-run session state (mode history, timers, cadence counters)
- `memory`: sparse spatial memory grid and candidate scoring
- `digest`: bounded prompt context built from snapshot + memory + state
- `planner`: one LLM call (plus one truncation retry) producing raw JSON
- `parser`: ordered JSON repair strategies
- `strategy`: context-aware mode resolution + hysteresis
- `skills`: skill resolution, cadence and per-skill control profiles
- `guard`: memory-aware safety guard
- `compiler`: bounded action plan + reason envelopes
- `critic`: per-step reason validation and neutralization
- `outcome`: previous-decision scoring and collision bookkeeping
- `navigator`: orchestration of the above pieces
"""

from .config import DEFAULT_CONFIG, DecisionCoreConfig, WorldBounds
from .memory import SpatialMemoryGrid
from .navigator import DecisionNavigator
from .outcome import CollisionTracker
from .prompt_profiles import DEFAULT_PROFILE
from .schemas import ActionStep, DecisionOutput, DrivePromptProfile, ReasonEnvelope, SensorSnapshot
from .state import SessionState

__all__ = [
    "ActionStep",
    "CollisionTracker",
    "DecisionCoreConfig",
    "DecisionNavigator",
    "DecisionOutput",
    "DEFAULT_CONFIG",
    "DEFAULT_PROFILE",
    "DrivePromptProfile",
    "ReasonEnvelope",
    "SensorSnapshot",
    "SessionState",
    "SpatialMemoryGrid",
    "WorldBounds",
]
