import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Sequence

from ideaintake.config import settings
from ideaintake.models import Message
from ideaintake.services import prompts
from ideaintake.services.llm import LLMRefusalError

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")
_SATISFIED = re.compile(r'"satisfied"\s*:\s*(true|false)', re.IGNORECASE)
_REASONING = re.compile(r'"reasoning"\s*:\s*"([^"]*)"', re.IGNORECASE)


@dataclass
class CheckResult:
    satisfied: bool
    reasoning: str
    raw: Any = None


def strip_fences(text: str) -> str:
    return _FENCE.sub("", text.strip()).strip()


def _is_true(value: Any) -> bool:
    # only a real true (or the string "true") counts; "false", 1, "yes" do not
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def parse_check(text: str) -> CheckResult:
    """Parse the checker reply; falls back to regex when the JSON is malformed."""
    try:
        parsed = json.loads(strip_fences(text))
        if not isinstance(parsed, dict):
            raise ValueError("not an object")
        return CheckResult(_is_true(parsed.get("satisfied")), str(parsed.get("reasoning") or "").strip(), parsed)
    except ValueError:
        cleaned = text.replace("```", "").strip()
        sat = _SATISFIED.search(cleaned)
        reason = _REASONING.search(cleaned)
        result = CheckResult(
            satisfied=bool(sat) and sat.group(1).lower() == "true",
            reasoning=reason.group(1) if reason else f"Incomplete or malformed JSON from LLM: {cleaned}",
            raw=cleaned,
        )
        logger.warning("Falling back on regex parse: satisfied=%s", result.satisfied)
        return result


class CriterionChecker:
    def __init__(self, llm, model: str | None = None):
        self.llm = llm
        self.model = model or settings.OPENAI_CHECK_MODEL

    async def check(self, transcript: Sequence[Message], criterion: str) -> CheckResult:
        prompt = prompts.checker_prompt(transcript, criterion)
        try:
            text = await self.llm.generate(
                None, [Message.user(prompt)], model=self.model, temperature=0,
                max_tokens=settings.CHECK_MAX_TOKENS, json_mode=True,
            )
        except LLMRefusalError as e:
            logger.warning("Criterion check blocked: %s", e)
            return CheckResult(False, "Blocked due to safety concerns.", str(e))
        except Exception as e:
            # every failure reads as "not yet satisfied"
            logger.exception("Criterion check failed")
            return CheckResult(False, f"LLM error: {e}", None)

        if not isinstance(text, str) or not text.strip():
            logger.warning("Criterion check returned no text")
            return CheckResult(False, "No text content received from API.", text)
        result = parse_check(text)
        logger.info("Criterion %r -> %s (%s)", criterion, result.satisfied, result.reasoning)
        return result
