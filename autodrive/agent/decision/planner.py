from __future__ import annotations

"""
Driving LLM Planner (one model call, at most one retry).

This module is responsible for:
- wrapping the decision digest into chat messages (system prompt from the profile)
- calling an OpenAI-compatible endpoint with a bounded timeout, token budget
  and fixed low temperature
- running the response through the parser and, when the output is
  unparseable, loose-recovered or looks truncated, issuing exactly one shorter
  "previous output was incomplete" retry

Transport failures never raise out of `plan()`; they come back tagged in the
`PlannerResult` so the navigator can emit a deterministic hold fallback.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from .config import InferenceConfig
from .parser import ParseResult, is_likely_truncated, parse_model_response, strip_code_fences
from .prompt_profiles import build_default_system_prompt, build_retry_prompt
from .schemas import DrivePromptProfile

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class PlannerResult:
    raw: str
    prompt: str
    parsed: ParseResult
    latency_ms: int = 0
    retried: bool = False
    error: str = ""  # "", "api_timeout" or "api_error"
    error_message: str = ""


@dataclass
class DrivePlanner:
    """
    Planner is responsible for the model call(s) of one decision cycle.
    Strategy/skill/guard/critic then enforce constraints without extra calls.
    """

    model_name: str
    api_key: str
    base_url: str
    profile: DrivePromptProfile
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    _system_prompt: str = ""

    def __post_init__(self) -> None:
        # The client timeout bounds each call; the SDK's own retries are disabled
        # so a dead endpoint costs at most one timeout per request.
        self.client = OpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.inference.timeout_s,
            max_retries=0,
        )
        self._system_prompt = self.profile.system_prompt or build_default_system_prompt(self.profile.max_cue_words)

    def build_messages(self, prompt: str) -> List[Dict[str, Any]]:
        return [
            {"role": "system", "content": self._system_prompt},
            {"role": "user", "content": prompt},
        ]

    def build_user_prompt(self, digest_text: str) -> str:
        return (
            "Current driving context:\n"
            f"{digest_text}\n\n"
            "Decide strategy, skill and control for the next cycle and return the JSON object."
        )

    def _request(self, prompt: str, max_tokens: int) -> str:
        completion = self.client.chat.completions.create(
            model=self.model_name,
            messages=self.build_messages(prompt),
            max_tokens=max_tokens,
            temperature=self.inference.temperature,
        )
        content = completion.choices[0].message.content
        return content if isinstance(content, str) else ""

    def plan(self, digest_text: str) -> PlannerResult:
        prompt = self.build_user_prompt(digest_text)
        start = time.perf_counter()
        logger.info("[Drive] LLM call: model=%s prompt_chars=%d", self.model_name, len(prompt))

        try:
            raw = self._request(prompt, self.inference.max_tokens_primary)
        except openai.APITimeoutError as e:
            logger.warning("[Drive] LLM call timed out after %.1fs: %s", self.inference.timeout_s, e)
            return PlannerResult(raw=str(e), prompt=prompt, parsed=ParseResult.failed("api_timeout"),
                                 error="api_timeout", error_message=str(e))
        except openai.OpenAIError as e:
            logger.error("[Drive] LLM call failed: %s", e)
            return PlannerResult(raw=str(e), prompt=prompt, parsed=ParseResult.failed("api_error"),
                                 error="api_error", error_message=str(e))

        parsed = parse_model_response(raw)
        retried = False
        if not parsed.ok or parsed.method == "loose_recovery" or is_likely_truncated(raw):
            retried = True
            tail = _WHITESPACE_RE.sub(" ", strip_code_fences(raw))[-self.inference.retry_tail_chars:]
            retry_prompt = build_retry_prompt(tail, self.profile.retry_max_words)
            prompt = f"{prompt}\n\n[TRUNCATION_RETRY]\n{retry_prompt}"
            logger.info("[Drive] Retrying for strict JSON (first parse=%s)", parsed.method)
            try:
                retry_raw = self._request(retry_prompt, self.inference.max_tokens_retry)
                retry_parsed = parse_model_response(retry_raw)
                if retry_parsed.ok and not is_likely_truncated(retry_raw):
                    raw = retry_raw
                    parsed = ParseResult(retry_parsed.data, retry_parsed.recovered, f"{retry_parsed.method}_retry")
            except openai.OpenAIError as e:
                logger.warning("[Drive] Retry request for strict JSON failed: %s", e)

        latency_ms = int(round((time.perf_counter() - start) * 1000))
        if not parsed.ok:
            logger.error("[Drive] Unparseable model output (trunc): %s", raw[:400])
        return PlannerResult(raw=raw, prompt=prompt, parsed=parsed, latency_ms=latency_ms, retried=retried)
