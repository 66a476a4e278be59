"""
Drive agent wrapper (one run = one SessionState + one SpatialMemoryGrid).

Why this exists:
- `autodrive.agent.decision` is a pure library: it never owns a loop, a clock
  or a simulator connection.
- Simulators and scripts want a small object that keeps per-run state, feeds
  sensor ticks into memory, tracks collisions and action history, and runs a
  cancellable decide/apply loop.
"""

from __future__ import annotations

import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from autodrive.agent.decision import (
    DEFAULT_PROFILE,
    CollisionTracker,
    DecisionCoreConfig,
    DecisionNavigator,
    DecisionOutput,
    DrivePromptProfile,
    SensorSnapshot,
    SessionState,
    SpatialMemoryGrid,
)
from autodrive.utils.logging_utils import setup_run_logging

logger = logging.getLogger(__name__)

DEFAULT_LLM_URL = "http://localhost:8080/v1"
DEFAULT_LLM_KEY = "EMPTY"
DEFAULT_MODEL_NAME = "Qwen/Qwen3-30B-A3B-Instruct-2507"

SnapshotLike = Union[SensorSnapshot, Mapping[str, Any]]


@dataclass
class DriveAgentCfg:
    """Endpoint + core config. Env vars win over explicit values, explicit values over defaults."""

    model_name: Optional[str] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    action_history_len: int = 12
    # Per-run log files go under {log_dir}/logs when set.
    log_dir: Optional[str] = None
    # Avoid sharing a mutable profile instance across agents.
    profile: DrivePromptProfile = field(default_factory=lambda: replace(DEFAULT_PROFILE))
    core: DecisionCoreConfig = field(default_factory=DecisionCoreConfig)

    def __post_init__(self) -> None:
        self.base_url = os.environ.get("AUTODRIVE_LLM_URL") or self.base_url or DEFAULT_LLM_URL
        self.api_key = os.environ.get("AUTODRIVE_LLM_KEY") or self.api_key or DEFAULT_LLM_KEY
        self.model_name = os.environ.get("AUTODRIVE_MODEL") or self.model_name or DEFAULT_MODEL_NAME


class DriveAgent:
    """Owns the per-run decision state and exposes observe/decide/run_loop."""

    def __init__(self, cfg: Optional[DriveAgentCfg] = None):
        self.cfg = cfg or DriveAgentCfg()
        self.state = SessionState()
        self.memory = SpatialMemoryGrid(self.cfg.core.memory)
        self.collisions = CollisionTracker()
        self.navigator = DecisionNavigator(
            state=self.state,
            memory=self.memory,
            model_name=self.cfg.model_name,
            api_key=self.cfg.api_key,
            base_url=self.cfg.base_url,
            profile=self.cfg.profile,
            config=self.cfg.core,
        )
        self.action_history: List[str] = []
        self.last_snapshot: Optional[SensorSnapshot] = None
        self.last_output: Optional[DecisionOutput] = None
        self.log_file: Optional[str] = None
        logger.info("[Drive] Agent ready: model=%s url=%s", self.cfg.model_name, self.cfg.base_url)

    def _reset_run(self) -> None:
        self.state.reset()
        self.memory.reset()
        self.collisions.reset()
        self.action_history = []
        self.last_snapshot = None
        self.last_output = None

    def start_run(self, run_id: Optional[str] = None) -> str:
        """Reset every per-run structure at once and, with `log_dir` set, switch to the run's log file."""
        run_id = run_id or uuid.uuid4().hex[:8]
        self.state.run_id = run_id
        self._reset_run()
        if self.cfg.log_dir:
            self.log_file = setup_run_logging(self.cfg.log_dir, run_id)
        logger.info("[Drive] Run started: %s", run_id)
        return run_id

    def stop_run(self) -> None:
        """
        End the current run. Called by whoever owns the run (simulator bridge,
        preflight); `run_loop` does not, so callers can read `last_output` first.
        """
        logger.info("[Drive] Run stopped: %s (%d cycles)", self.state.run_id or "-", self.state.cycles)
        self._reset_run()

    def observe(self, payload: SnapshotLike, now: Optional[float] = None) -> SensorSnapshot:
        """Integrate one sensor tick into memory (may be called more often than `decide`)."""
        snapshot = payload if isinstance(payload, SensorSnapshot) else SensorSnapshot.from_dict(payload)
        self.memory.update(snapshot, now)
        self.last_snapshot = snapshot
        return snapshot

    def record_collision(self, region: Optional[str], now: Optional[float] = None) -> str:
        return self.collisions.record(region, now)

    def decide(
        self,
        payload: SnapshotLike,
        action_history: Optional[List[str]] = None,
        now: Optional[float] = None,
    ) -> DecisionOutput:
        snapshot = self.observe(payload, now)
        history = self.action_history if action_history is None else list(action_history)
        output = self.navigator.step(snapshot, history, self.collisions.summary(), now)

        self.action_history.append(output.action)
        del self.action_history[: -self.cfg.action_history_len]
        self.last_output = output
        if logger.isEnabledFor(logging.DEBUG):
            record = output.to_log_dict()
            record.pop("prompt", None)
            logger.debug("[Drive] Decision record: %s", record)
        return output

    def memory_visualization(self, radius_cells: int = 8) -> Optional[Dict[str, Any]]:
        if self.last_snapshot is None:
            return None
        return self.memory.visualization(self.last_snapshot, radius_cells)

    def run_loop(
        self,
        sensor_source: Callable[[], Optional[SnapshotLike]],
        controller: Callable[[DecisionOutput], Any],
        stop_event: Optional[threading.Event] = None,
        max_cycles: Optional[int] = None,
        idle_sleep_s: float = 0.1,
    ) -> int:
        """
        Decide/apply loop. The stop flag is checked once per iteration, before
        reading sensors; an in-flight model call is never interrupted.
        Returns the number of completed decision cycles.
        """
        cycles = 0
        while stop_event is None or not stop_event.is_set():
            if max_cycles is not None and cycles >= max_cycles:
                break
            payload = sensor_source()
            if not payload:
                logger.warning("[Drive] No sensor snapshot received. Waiting...")
                time.sleep(idle_sleep_s)
                continue

            output = self.decide(payload)
            controller(output)
            cycles += 1
            logger.info(
                "[Drive] Cycle %d: %s t=%.2f s=%.2f d=%.2f (%s)",
                cycles,
                output.action,
                output.throttle,
                output.steering,
                output.duration,
                output.strategy.mode,
            )
        logger.info("[Drive] Loop stopped after %d cycles", cycles)
        return cycles
