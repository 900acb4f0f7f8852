import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from openai import AsyncOpenAI, OpenAIError

from ideaintake.config import Settings
from ideaintake.models import Message, Role

logger = logging.getLogger(__name__)


class LLMError(Exception):
    pass


class LLMTruncatedError(LLMError):
    """The provider stopped because the output token budget ran out."""


class LLMRefusalError(LLMError):
    """The provider refused or safety-filtered the request."""


@dataclass(frozen=True)
class Fragment:
    text: str
    thought: bool = False


def to_chat_messages(system_instruction: Optional[str], contents: Sequence[Message]) -> List[Dict[str, str]]:
    out = []
    if system_instruction:
        out.append({"role": "system", "content": system_instruction})
    for m in contents:
        out.append({"role": Role(m.role).value, "content": m.content})
    return out


def _response_format(schema: Optional[Dict[str, Any]], json_mode: bool) -> Optional[Dict[str, Any]]:
    if schema is not None:
        return {"type": "json_schema",
                "json_schema": {"name": schema.get("title", "output"), "schema": schema, "strict": False}}
    if json_mode:
        return {"type": "json_object"}
    return None


class LLMService:
    """Thin async wrapper over the OpenAI chat completions API."""

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        self.settings = settings
        self.client = client or AsyncOpenAI(api_key=settings.OPENAI_API_KEY, base_url=settings.OPENAI_BASE_URL)

    async def generate(self, system_instruction: Optional[str], contents: Sequence[Message], *,
                       model: Optional[str] = None, temperature: Optional[float] = None,
                       max_tokens: Optional[int] = None, json_mode: bool = False) -> str:
        kwargs: Dict[str, Any] = {
            "model": model or self.settings.OPENAI_MODEL,
            "messages": to_chat_messages(system_instruction, contents),
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        fmt = _response_format(None, json_mode)
        if fmt:
            kwargs["response_format"] = fmt
        try:
            resp = await self.client.chat.completions.create(**kwargs)
        except OpenAIError as e:
            raise LLMError(str(e)) from e
        choice = resp.choices[0]
        if getattr(choice.message, "refusal", None) or choice.finish_reason == "content_filter":
            raise LLMRefusalError(choice.message.refusal or "content_filter")
        return choice.message.content or ""

    async def generate_stream(self, system_instruction: Optional[str], contents: Sequence[Message], *,
                              schema: Optional[Dict[str, Any]] = None, model: Optional[str] = None,
                              temperature: Optional[float] = None,
                              max_tokens: Optional[int] = None) -> AsyncIterator[Fragment]:
        kwargs: Dict[str, Any] = {
            "model": model or self.settings.OPENAI_MODEL,
            "messages": to_chat_messages(system_instruction, contents),
            "stream": True,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        fmt = _response_format(schema, False)
        if fmt:
            kwargs["response_format"] = fmt

        finish_reason = None
        try:
            stream = await self.client.chat.completions.create(**kwargs)
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                # some OpenAI-compatible providers stream their reasoning trace separately
                thought = getattr(delta, "reasoning_content", None)
                if thought:
                    yield Fragment(thought, thought=True)
                if delta.content:
                    yield Fragment(delta.content)
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except OpenAIError as e:
            raise LLMError(str(e)) from e

        if finish_reason == "length":
            raise LLMTruncatedError("output token limit reached")
        if finish_reason == "content_filter":
            raise LLMRefusalError("content_filter")


class OfflineLLM:
    """Deterministic stand-in used when no API key is configured (local development)."""

    REPLY = "Thanks! (offline mode) Tell me a little more about the process you have in mind."

    async def generate(self, system_instruction, contents, *, json_mode: bool = False, **kwargs) -> str:
        if json_mode:
            return json.dumps({"satisfied": True, "reasoning": "Offline mode: no OPENAI_API_KEY configured."})
        return "Automation Request Draft"

    async def generate_stream(self, system_instruction, contents, *, schema=None, **kwargs) -> AsyncIterator[Fragment]:
        if schema is not None:
            yield Fragment("Offline mode: skipping extraction.", thought=True)
            yield Fragment("{}")
            return
        for word in self.REPLY.split(" "):
            yield Fragment(word + " ")


def build_llm(settings: Settings):
    if not settings.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set, using offline LLM")
        return OfflineLLM()
    return LLMService(settings)
