"""
Preflight AI check (Python client side).

This script verifies, against a live OpenAI-compatible endpoint:
- the endpoint answers within the inference timeout
- the model output parses (strict or repaired)
- the resolved strategy mode / skill match the expected behaviour for three
  canned sensor scenarios (open approach, blocked front, no target)

Note: start the model server (or `python agent/mock_llm.py`) separately.
"""

from __future__ import annotations

import argparse
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from autodrive.agent.drive_agent import DriveAgent, DriveAgentCfg


@dataclass
class PreflightScenario:
    name: str
    payload: Dict[str, Any]
    expected_mode: str
    expected_skill: Optional[str] = None


def _rays(value: float) -> Dict[str, float]:
    keys = ("front", "leftDiag", "left", "backLeft", "back", "backRight", "right", "rightDiag")
    return {k: value for k in keys}


SCENARIOS: List[PreflightScenario] = [
    PreflightScenario(
        name="LOCK_OPEN_APPROACH",
        payload=dict(_rays(9.0), worldX=0.0, worldZ=0.0, headingDeg=0.0, distanceToTarget=8.0, angleToTarget=0.0),
        expected_mode="TARGET_LOCK",
        expected_skill="APPROACH_TARGET",
    ),
    PreflightScenario(
        name="ESCAPE_FRONT_BLOCKED",
        payload=dict(
            _rays(9.0),
            front=1.4,
            leftDiag=1.7,
            rightDiag=1.6,
            isStuck=True,
            worldX=0.0,
            worldZ=0.0,
            headingDeg=0.0,
            distanceToTarget=25.0,
            angleToTarget=40.0,
        ),
        expected_mode="ESCAPE_RECOVERY",
        expected_skill="BACKOFF_AND_TURN",
    ),
    PreflightScenario(
        name="EXPLORE_NO_TARGET",
        payload=dict(_rays(9.8), worldX=0.0, worldZ=0.0, headingDeg=0.0, distanceToTarget=60.0, angleToTarget=155.0),
        expected_mode="MEMORY_EXPLORE",
    ),
]


def run_scenario(agent: DriveAgent, scenario: PreflightScenario) -> Dict[str, Any]:
    agent.start_run(f"preflight-{scenario.name.lower()}")
    output = agent.decide(scenario.payload)
    agent.stop_run()
    mode_ok = output.strategy.mode == scenario.expected_mode
    skill_ok = scenario.expected_skill is None or output.skill.name == scenario.expected_skill
    return {
        "scenario": scenario.name,
        "ok": (not output.is_fallback) and mode_ok and skill_ok,
        "fallback": output.is_fallback,
        "mode": output.strategy.mode,
        "expected_mode": scenario.expected_mode,
        "skill": output.skill.name,
        "expected_skill": scenario.expected_skill,
        "parse_method": output.parse_method,
        "latency_ms": output.latency_ms,
        "action": output.action,
        "throttle": output.throttle,
        "steering": output.steering,
        "reason": output.reason.to_dict(),
        "log_file": agent.log_file,
    }


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--base_url", default=os.environ.get("AUTODRIVE_LLM_URL", "http://localhost:8080/v1"))
    parser.add_argument("--api_key", default=os.environ.get("AUTODRIVE_LLM_KEY", "EMPTY"))
    parser.add_argument("--model", default=os.environ.get("AUTODRIVE_MODEL", "mock-model"))
    parser.add_argument("--scenario", choices=[s.name for s in SCENARIOS], action="append", default=None)
    parser.add_argument("--out", default=None, help="Optional JSON report path.")
    parser.add_argument("--output_path", default="./output/preflight", help="Run log directory root.")
    args = parser.parse_args()

    cfg = DriveAgentCfg(
        model_name=args.model, base_url=args.base_url, api_key=args.api_key, log_dir=args.output_path
    )
    agent = DriveAgent(cfg)
    print(f"[preflight] Run logs under {args.output_path}")
    selected = [s for s in SCENARIOS if args.scenario is None or s.name in args.scenario]
    results = [run_scenario(agent, s) for s in selected]

    for r in results:
        status = "OK" if r["ok"] else ("FALLBACK" if r["fallback"] else "MISMATCH")
        print(
            f"[preflight] {r['scenario']:<22} {status:<8} mode={r['mode']} (want {r['expected_mode']}) "
            f"skill={r['skill']} parse={r['parse_method']} {r['latency_ms']}ms"
        )

    if args.out:
        out_path = Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(json.dumps(results, indent=2))
        print(f"[preflight] Report written to {out_path}")

    if any(r["fallback"] for r in results):
        print("[preflight] Endpoint unreachable or output unparseable.")
        return 2
    aligned = sum(1 for r in results if r["ok"])
    print(f"[preflight] Aligned {aligned}/{len(results)}")
    return 0 if aligned == len(results) else 1


if __name__ == "__main__":
    raise SystemExit(main())
