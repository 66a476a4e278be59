from __future__ import annotations

"""
Decision Navigator (orchestrator).

Wires together the modular decision pipeline for one cycle:
  SessionState + SpatialMemoryGrid (memory)
    -> build_decision_digest (bounded prompt context)
    -> DrivePlanner (one LLM call, at most one retry)
    -> ParsedDecision (tagged, optional-field intermediate form)
    -> strategy resolver + hysteresis (mode)
    -> skill resolver + cadence + skill profile (controls)
    -> memory-aware safety guard (veto / substitute)
    -> plan compiler + reason critic (bounded, justified plan)
    -> DecisionOutput

External interface is intentionally tiny: feed snapshots to the memory grid as
they arrive and call `step()` once per decision cycle. `step()` never raises;
transport, parse and internal failures all come back as a zero-control hold.
"""

import logging
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Union

from .compiler import (
    action_description,
    default_decision_reason,
    finalize_plan,
    normalize_action_plan,
    normalize_reason,
    runtime_reason,
)
from .config import DecisionCoreConfig
from .critic import ReasonCritic
from .digest import build_decision_digest, obstacle_summary
from .guard import apply_memory_safety_guard
from .memory import MemoryContext, SpatialMemoryGrid
from .outcome import build_decision_outcome
from .planner import DrivePlanner, PlannerResult
from .prompt_profiles import DEFAULT_PROFILE
from .schemas import (
    ActionStep,
    CollisionSummary,
    DecisionOutput,
    DrivePromptProfile,
    ParsedDecision,
    Reflection,
    SensorSnapshot,
    SkillDecision,
    StrategyDecision,
    clamp_number,
    normalize_mode,
)
from .skills import apply_skill_profile, enforce_skill_cadence, inferred_skill_for_mode, resolve_skill_with_context
from .state import SessionState
from .strategy import (
    derive_transition,
    infer_context_signal,
    resolve_mode_with_context,
    stabilize_mode_with_hysteresis,
    update_contact_tracking,
)

logger = logging.getLogger(__name__)

REAR_CLEAR_DIST = 3.0
LOCK_NUDGE_FRONT = 3.0
DEFAULT_REFLECTION = "Keep safe progress while reducing repeated loop segments."

# kind -> (reason code, reason summary, riskCue, assessment, adjustment)
_FALLBACKS = {
    "api_timeout": (
        "API_TIMEOUT_HOLD",
        "API timeout, hold and retry next cycle.",
        "api_timeout_fallback",
        "api_timeout",
        "Hold and retry with strict JSON response.",
    ),
    "api_error": (
        "API_ERROR_HOLD",
        "API error, hold and retry next cycle.",
        "api_error_fallback",
        "api_error",
        "Hold and retry with strict JSON response.",
    ),
    "parse_failed": (
        "PARSER_ERROR_HOLD",
        "Parse failed, hold and retry strict JSON.",
        "parser_error_fallback",
        "parse_failed",
        "Return strict JSON next cycle.",
    ),
    "internal_error": (
        "INTERNAL_ERROR_HOLD",
        "Internal decision error, hold and retry next cycle.",
        "internal_error_fallback",
        "internal_error",
        "Hold and retry with strict JSON response.",
    ),
}


@dataclass
class DecisionNavigator:
    """
    High-level orchestrator that exposes a small interface:
      input: SensorSnapshot (+ action history, collision summary)
      output: DecisionOutput

    Internally composed of planner + strategy/skill resolvers + guard + compiler + critic.
    The navigator reads the memory grid but does not write it; grid updates
    happen per sensor tick in the caller.
    """

    state: SessionState
    memory: SpatialMemoryGrid
    model_name: str
    api_key: str
    base_url: str
    profile: DrivePromptProfile = field(default_factory=lambda: replace(DEFAULT_PROFILE))
    config: DecisionCoreConfig = field(default_factory=DecisionCoreConfig)
    planner: Optional[DrivePlanner] = None

    def __post_init__(self) -> None:
        if self.planner is None:
            self.planner = DrivePlanner(
                model_name=self.model_name,
                api_key=self.api_key,
                base_url=self.base_url,
                profile=self.profile,
                inference=self.config.inference,
            )
        self.critic = ReasonCritic(config=self.config.plan)

    def step(
        self,
        snapshot: Union[SensorSnapshot, Dict[str, Any]],
        action_history: Optional[Sequence[str]] = None,
        collision: Optional[CollisionSummary] = None,
        now: Optional[float] = None,
    ) -> DecisionOutput:
        now = time.time() if now is None else now
        try:
            if not isinstance(snapshot, SensorSnapshot):
                snapshot = SensorSnapshot.from_dict(snapshot)
            return self._step(snapshot, list(action_history or []), collision, now)
        except Exception as e:
            logger.exception("[Drive] Decision cycle failed: %s", e)
            mode = normalize_mode(self.state.last_strategy_mode, "MEMORY_EXPLORE")
            return self._fallback("internal_error", mode, error_message=str(e))

    def _score_pending_decision(self, snapshot: SensorSnapshot, context: Optional[MemoryContext], now: float) -> None:
        pending = self.state.pending_decision
        if not pending:
            return
        self.state.pending_decision = None
        outcome = build_decision_outcome(
            pending["snapshot"],
            snapshot,
            start_loop_rate=pending["loop_rate"],
            end_loop_rate=context.loop_rate if context is not None else None,
            skill_name=pending["skill"],
            safety_override=pending["guard_applied"],
            elapsed_s=now - pending["at"],
        )
        self.state.last_outcome_summary = outcome.summary
        self.state.last_outcome_details = asdict(outcome)
        logger.debug("[Drive] Outcome: %s", outcome.summary)

    def _fallback(
        self,
        kind: str,
        mode: str,
        result: Optional[PlannerResult] = None,
        parse_method: str = "",
        error_message: str = "",
    ) -> DecisionOutput:
        code, summary, risk_cue, assessment, adjustment = _FALLBACKS[kind]
        if kind == "api_timeout":
            thought = f"API Timeout ({self.config.inference.timeout_s:g}s)"
        elif kind == "parse_failed":
            thought = "JSON Error"
        elif kind == "api_error":
            thought = "API Error"
        else:
            thought = "Internal Error"

        reason = runtime_reason(code, summary, 0.0, 0.0)
        previous_mode = normalize_mode(self.state.last_strategy_mode, None)
        self.state.last_strategy_mode = mode
        self.state.pending_decision = None
        self.state.cycles += 1
        logger.warning("[Drive] Fallback %s: mode=%s %s", code, mode, error_message or "")

        return DecisionOutput(
            throttle=0.0,
            steering=0.0,
            duration=1.0,
            action_plan=[ActionStep(throttle=0.0, steering=0.0, duration=1.0, reason=reason)],
            reason=reason,
            strategy=StrategyDecision(
                mode=mode,
                transition=derive_transition("HOLD", previous_mode, mode, False),
                confidence=0.0,
                chosen_sector="F",
                risk_cue=risk_cue,
                rationale=summary,
            ),
            skill=SkillDecision(name="HOLD_POSITION", intensity=1.0, rationale=summary, executor_note="fallback"),
            reflection=Reflection(last_outcome_assessment=assessment, adjustment=adjustment),
            action="ERROR",
            thought=thought,
            analysis=error_message,
            raw=result.raw if result is not None else "",
            prompt=result.prompt if result is not None else "",
            model=self.model_name,
            latency_ms=result.latency_ms if result is not None else 0,
            parse_method=parse_method or kind,
        )

    def _step(
        self,
        snapshot: SensorSnapshot,
        action_history: List[str],
        collision: Optional[CollisionSummary],
        now: float,
    ) -> DecisionOutput:
        cfg = self.config
        state = self.state

        contact = update_contact_tracking(state, snapshot, now, cfg.hysteresis)
        signal = infer_context_signal(snapshot, contact, cfg.hysteresis)
        context = self.memory.build_context(snapshot)
        self._score_pending_decision(snapshot, context, now)
        digest = build_decision_digest(
            snapshot, state, context, signal, collision, action_history, priority=self.profile.priority
        )

        result = self.planner.plan(digest.render())
        if result.error:
            return self._fallback(result.error, signal.expected_mode, result, error_message=result.error_message)
        if not result.parsed.ok:
            method = "unparseable_model_output_retry" if result.retried else "unparseable_model_output"
            return self._fallback("parse_failed", signal.expected_mode, result, parse_method=method)

        decision = ParsedDecision.from_json(result.parsed.data)
        previous_mode = normalize_mode(state.last_strategy_mode, None)

        raw_mode = decision.mode or digest.target.mode_hint
        sector = decision.chosen_sector or (context.preferred_sector if context is not None else "F")
        requested_skill = decision.skill_name or inferred_skill_for_mode(raw_mode)
        intensity = clamp_number(decision.skill_intensity, 0.0, 1.0, 0.5)
        confidence = clamp_number(decision.confidence, 0.0, 1.0, 0.5)

        # 1) strategy mode: context correction, then hysteresis
        resolution = resolve_mode_with_context(raw_mode, signal, previous_mode)
        if resolution.corrected:
            confidence = min(confidence, 0.55)
        hysteresis = stabilize_mode_with_hysteresis(state, resolution.mode, signal, now, cfg.hysteresis)
        mode = hysteresis.mode
        if hysteresis.held:
            confidence = min(confidence, 0.72)
        transition = derive_transition(
            decision.transition, previous_mode, mode, resolution.corrected or hysteresis.forced
        )

        # 2) raw controls: control object, then first plan step, then defaults
        first_raw = decision.actions[0] if decision.actions and isinstance(decision.actions[0], dict) else {}
        throttle = clamp_number(
            decision.throttle if decision.throttle is not None else first_raw.get("throttle"), -1.0, 1.0, 0.4
        )
        steering = clamp_number(
            decision.steering if decision.steering is not None else first_raw.get("steering"), -1.0, 1.0, 0.0
        )
        duration = clamp_number(
            decision.duration if decision.duration is not None else first_raw.get("duration"),
            cfg.plan.min_step_s,
            cfg.plan.max_step_s,
            1.0,
        )
        thought = decision.thought or decision.rationale or "Driving"
        analysis = decision.analysis or f"{obstacle_summary(snapshot)} Target angle {snapshot.angle_to_target:.0f}deg."

        # 3) skill selection and cadence
        skill_resolution = resolve_skill_with_context(requested_skill, mode, sector, signal, snapshot, cfg.skills)
        cadence = enforce_skill_cadence(
            skill_resolution.skill, mode, signal, snapshot, skill_resolution.approach_bias, state, cfg.skills
        )
        skill = cadence.skill
        override_reasons = f"{skill_resolution.override_reason}|{cadence.override_reason}"
        if "target_lock_forces_approach" in override_reasons or "approach_hold_lock" in override_reasons:
            duration = max(duration, 0.28)

        # 4) hard sensor override, lock nudge and reacquire sweep
        clearance = snapshot.sector_clearance()
        sensor_override = False
        if signal.min_front_dist < cfg.guard.front_danger and throttle > 0:
            turn = 1.0 if clearance["L"] >= clearance["R"] else -1.0
            if snapshot.ray("back") > REAR_CLEAR_DIST:
                throttle, steering = -0.5, 0.6 * turn
                thought = "[Safety] Front blocked, reversing with escape turn."
            else:
                throttle, steering = 0.0, 0.8 * turn
                thought = "[Safety] Front blocked, pivoting in place."
            sensor_override = True

        if mode == "TARGET_LOCK" and signal.min_front_dist > LOCK_NUDGE_FRONT and abs(throttle) < 0.08:
            throttle = 0.2

        reacquire_sweep = (
            signal.reacquire_active
            and mode == "MEMORY_EXPLORE"
            and not signal.danger
            and not signal.has_target_contact
        )
        if reacquire_sweep:
            if abs(steering) < 0.35:
                steering = 0.62 * signal.reacquire_turn_dir
            if throttle < 0.25:
                throttle = 0.35
            duration = max(duration, 0.45)

        # 5) skill profile, then safety guard
        execution = apply_skill_profile(skill, sector, throttle, steering, duration, signal, snapshot, intensity)
        throttle, steering, duration = execution.throttle, execution.steering, execution.duration

        guard = apply_memory_safety_guard(snapshot, context, sector, throttle, steering, thought, collision, cfg.guard)
        throttle, steering, thought = guard.throttle, guard.steering, guard.thought

        rear_denied = False
        if throttle < 0 and snapshot.ray("back") <= REAR_CLEAR_DIST:
            throttle = 0.0
            thought = "[Safety] Reverse denied, rear blocked."
            rear_denied = True

        state.last_steering = steering
        state.last_strategy_mode = mode
        state.last_skill_name = skill
        if decision.adjustment:
            state.last_reflection_hint = decision.adjustment

        # 6) plan + reasons
        decision_reason = normalize_reason(
            decision.reason, default_decision_reason(mode, skill, sector, throttle, steering), throttle, steering
        )
        plan = normalize_action_plan(
            decision.actions, ActionStep(throttle, steering, duration, decision_reason), cfg.plan
        )
        if guard.guard_applied:
            first_reason = runtime_reason("SAFETY_GUARD_OVERRIDE", thought, throttle, steering)
        elif rear_denied:
            first_reason = runtime_reason("REAR_BLOCKED_HOLD", thought, throttle, steering)
        elif sensor_override:
            first_reason = runtime_reason("FRONT_BLOCKED_ESCAPE", thought, throttle, steering)
        else:
            first_reason = normalize_reason(
                plan[0].reason if plan else None, decision_reason, throttle, steering, trust_source=True
            )
        plan = finalize_plan(plan, ActionStep(throttle, steering, duration, first_reason), cfg.plan)
        plan, validation = self.critic.validate_plan(plan, snapshot, state.reason_stats)
        first = plan[0]

        risk_parts = [decision.risk_cue or "none"]
        if resolution.corrected:
            risk_parts.append(f"corrected:{resolution.reason}")
        if hysteresis.held:
            risk_parts.append(f"modeHold:{hysteresis.reason}")
        elif hysteresis.forced:
            risk_parts.append(f"modeForce:{hysteresis.reason}")
        if skill_resolution.override_reason:
            risk_parts.append(f"skill:{skill_resolution.override_reason}")
        if not signal.has_target_contact and signal.pseudo_contact_score >= 0.5:
            risk_parts.append(f"pseudo:{signal.pseudo_contact_score:.2f}")
        if cadence.override_reason:
            risk_parts.append(f"cadence:{cadence.override_reason}")
        if guard.guard_applied:
            risk_parts.append(f"guard:{guard.guard_reason}")
        if guard.profile.sensor_blocked_sectors:
            risk_parts.append(f"sensorBlocked:{''.join(guard.profile.sensor_blocked_sectors)}")
        if guard.profile.memory_blocked_sectors:
            risk_parts.append(f"memoryBlocked:{''.join(guard.profile.memory_blocked_sectors)}")

        guard_changed = guard.guard_applied or rear_denied or sensor_override
        output = DecisionOutput(
            throttle=first.throttle,
            steering=first.steering,
            duration=first.duration,
            action_plan=plan,
            reason=decision_reason,
            strategy=StrategyDecision(
                mode=mode,
                transition=transition,
                confidence=round(confidence, 2),
                chosen_sector=sector,
                target_cue=decision.target_cue,
                memory_cue=decision.memory_cue,
                risk_cue=" | ".join(risk_parts),
                rationale=decision.rationale,
            ),
            skill=SkillDecision(
                name=skill,
                intensity=round(intensity, 2),
                rationale=decision.skill_rationale,
                executor_note=execution.executor_note,
            ),
            reflection=Reflection(
                last_outcome_assessment=decision.outcome_assessment or "no_assessment",
                adjustment=decision.adjustment or DEFAULT_REFLECTION,
            ),
            action=action_description(first.throttle, first.steering),
            thought=f"[{mode}/{transition}] {thought}",
            analysis=analysis,
            raw=result.raw,
            prompt=result.prompt,
            model=self.model_name,
            latency_ms=result.latency_ms,
            parse_method=result.parsed.method,
            parse_recovered=result.parsed.recovered,
            safety_guard={
                "applied": guard.guard_applied,
                "reason": guard.guard_reason,
                "sensor_override": sensor_override,
                "rear_denied": rear_denied,
                "reacquire_sweep": reacquire_sweep,
                "profile": asdict(guard.profile),
            },
            reason_validation=validation,
        )

        state.pending_decision = {
            "snapshot": snapshot,
            "loop_rate": context.loop_rate if context is not None else 0.0,
            "skill": skill,
            "guard_applied": guard_changed,
            "at": now,
        }
        state.cycles += 1
        logger.info(
            "[Drive] Decision: mode=%s/%s skill=%s action=%s t=%.2f s=%.2f d=%.2f parse=%s",
            mode,
            transition,
            skill,
            output.action,
            output.throttle,
            output.steering,
            output.duration,
            output.parse_method,
        )
        return output
