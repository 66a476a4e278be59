from __future__ import annotations

"""
Reason Critic (cheap, non-LLM).

Checks every plan step against its own justification:
- the reason must come from the model (when required)
- code / summary must be non-empty
- the declared throttle / steering signs must match the actual control signs
- no forward step while the front arc is inside the risk distance

A failed step is neutralized in place (zero controls, short duration,
runtime-tagged `REASON_BLOCK_<ISSUE>` envelope); the cycle continues.
Runtime-sourced steps were produced by the core itself and bypass the check.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .config import DEFAULT_CONFIG, PlanConfig
from .schemas import ActionStep, ReasonEnvelope, SensorSnapshot, control_sign
from .state import ReasonValidationStats

logger = logging.getLogger(__name__)

SIGN_ISSUES = ("THROTTLE_SIGN_MISMATCH", "STEERING_SIGN_MISMATCH")


@dataclass
class StepValidation:
    ok: bool
    issues: List[str] = field(default_factory=list)
    throttle_sign: int = 0
    steering_sign: int = 0
    bypassed: bool = False

    @property
    def primary_issue(self) -> str:
        return self.issues[0] if self.issues else ""


@dataclass
class ReasonCritic:
    config: PlanConfig = field(default_factory=lambda: DEFAULT_CONFIG.plan)

    def validate_step(self, step: ActionStep, min_front_dist: float, bypass: bool = False) -> StepValidation:
        cfg = self.config
        reason = step.reason
        throttle_sign = control_sign(step.throttle, cfg.sign_deadzone)
        steering_sign = control_sign(step.steering, cfg.sign_deadzone)
        bypass = bypass or reason.source == "runtime"
        issues: List[str] = []

        if not bypass and cfg.require_model_reason and reason.source != "model":
            issues.append("REASON_NOT_FROM_MODEL")
        if not reason.code or not reason.summary:
            issues.append("REASON_EMPTY")
        if not bypass and reason.expected_throttle_sign is not None and reason.expected_throttle_sign != throttle_sign:
            issues.append("THROTTLE_SIGN_MISMATCH")
        if not bypass and reason.expected_steering_sign is not None and reason.expected_steering_sign != steering_sign:
            issues.append("STEERING_SIGN_MISMATCH")
        if not bypass and min_front_dist < cfg.reason_front_risk_dist and throttle_sign > 0:
            issues.append("FORWARD_INTO_FRONT_RISK")

        return StepValidation(
            ok=not issues,
            issues=issues,
            throttle_sign=throttle_sign,
            steering_sign=steering_sign,
            bypassed=bypass,
        )

    def neutralize(self, step: ActionStep, validation: StepValidation) -> ActionStep:
        issue = validation.primary_issue or "UNKNOWN"
        return ActionStep(
            throttle=0.0,
            steering=0.0,
            duration=min(step.duration, self.config.neutralized_step_s),
            reason=ReasonEnvelope(
                code=f"REASON_BLOCK_{issue}"[:48],
                summary=f"Blocked step due to reason-check failure: {'|'.join(validation.issues) or 'UNKNOWN'}."[:180],
                expected_throttle_sign=0,
                expected_steering_sign=0,
                source="runtime",
            ),
        )

    def validate_plan(
        self,
        plan: List[ActionStep],
        snapshot: SensorSnapshot,
        stats: Optional[ReasonValidationStats] = None,
    ) -> Tuple[List[ActionStep], Dict[str, Any]]:
        """Validate every step; returns (possibly neutralized plan, per-cycle summary)."""
        min_front = snapshot.min_front_dist()
        out: List[ActionStep] = []
        summary: Dict[str, Any] = {
            "blocked_steps": 0,
            "missing_model_reason_steps": 0,
            "sign_mismatch_steps": 0,
            "step_results": [],
        }

        for index, step in enumerate(plan):
            validation = self.validate_step(step, min_front)
            if stats is not None:
                stats.total_steps += 1
            if validation.ok:
                if stats is not None:
                    stats.passed_steps += 1
            else:
                summary["blocked_steps"] += 1
                if "REASON_NOT_FROM_MODEL" in validation.issues:
                    summary["missing_model_reason_steps"] += 1
                if any(i in validation.issues for i in SIGN_ISSUES):
                    summary["sign_mismatch_steps"] += 1
                if stats is not None:
                    stats.blocked_steps += 1
                    if "REASON_NOT_FROM_MODEL" in validation.issues:
                        stats.missing_model_reason_steps += 1
                    if any(i in validation.issues for i in SIGN_ISSUES):
                        stats.sign_mismatch_steps += 1
                logger.info("[Drive] Critic: step %d blocked (%s)", index + 1, "|".join(validation.issues))
                step = self.neutralize(step, validation)

            summary["step_results"].append(
                {
                    "index": index + 1,
                    "ok": validation.ok,
                    "bypassed": validation.bypassed,
                    "issues": list(validation.issues),
                    "reason": asdict(step.reason),
                }
            )
            out.append(step)

        if stats is not None:
            summary["pass_rate"] = round(stats.pass_rate, 3)
        return out, summary
