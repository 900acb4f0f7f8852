"""Turns a finished draft conversation into a FinalRequest.

Finalization is idempotent on the conversation id: the final record reuses the
draft id, so retries and racing callers converge on the same record. The
write-then-delete pair is not atomic; a concurrent second writer overwrites
the record with an equivalent one and its draft delete is a no-op.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Literal, Optional

from pydantic import BaseModel, ValidationError, field_validator

from ideaintake.config import Settings, settings as default_settings
from ideaintake.errors import AuthorizationError
from ideaintake.models import (
    Attachment, DraftConversation, FinalRequest, Message, RequestStatus, now_ms,
)
from ideaintake.services import prompts
from ideaintake.services.criterion_checker import strip_fences
from ideaintake.services.llm import LLMError
from ideaintake.services.state_machine import migrate_state

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Automation Request"
DEFAULT_CATEGORY = "Other"
DEFAULT_COMPLEXITY = "medium"
MAX_PAIN_POINTS = 5


class IdeaCardExtract(BaseModel):
    title: Optional[str] = None
    category: Optional[str] = None
    painPoints: Optional[List[str]] = None
    processSummary: Optional[str] = None
    frequency: Optional[str] = None
    durationMinutes: Optional[float] = None
    peopleInvolved: Optional[int] = None
    hoursSavedPerWeek: Optional[float] = None
    tools: Optional[List[str]] = None
    roles: Optional[List[str]] = None
    complexity: Optional[Literal["low", "medium", "high"]] = None

    @field_validator("painPoints")
    @classmethod
    def _cap_pain_points(cls, v):
        return v[:MAX_PAIN_POINTS] if v else v

    @field_validator("complexity", mode="before")
    @classmethod
    def _normalize_complexity(cls, v):
        if isinstance(v, str) and v.strip().lower() in ("low", "medium", "high"):
            return v.strip().lower()
        return None


def parse_extract(text: str) -> Optional[IdeaCardExtract]:
    """None when the payload is not a usable JSON object; fields that fail validation are dropped."""
    try:
        data = json.loads(strip_fences(text))
    except ValueError as e:
        logger.warning("Failed to parse extraction payload: %s", e)
        return None
    if not isinstance(data, dict):
        return None
    try:
        return IdeaCardExtract.model_validate(data)
    except ValidationError as e:
        bad = {err["loc"][0] for err in e.errors() if err["loc"]}
        logger.warning("Dropping invalid extraction fields: %s", ", ".join(sorted(map(str, bad))))
    return IdeaCardExtract.model_validate({k: v for k, v in data.items() if k not in bad})


def _pick(*values, default):
    """First value that is present and non-empty."""
    for v in values:
        if v is None:
            continue
        if isinstance(v, (str, list)) and not v:
            continue
        return v
    return default


def is_shareable(title: str, description: str) -> bool:
    title = (title or "").strip()
    return bool(title) and title != DEFAULT_TITLE and bool((description or "").strip())


def build_final_request(draft: DraftConversation, extract: Optional[IdeaCardExtract]) -> FinalRequest:
    state = migrate_state(draft.state)
    collected: Dict[str, Any] = state.collectedData
    x = extract or IdeaCardExtract()

    attachments = [Attachment.model_validate(a).model_dump(exclude_none=True)
                   for a in collected.get("attachments") or []]
    title = _pick(x.title, draft.title, default=DEFAULT_TITLE)
    description = _pick(x.processSummary, collected.get("processDescription"), default="")
    fields = {
        "description": description,
        "painPoints": _pick(x.painPoints, collected.get("painPoints"), default=[]),
        "frequency": _pick(x.frequency, collected.get("frequency"), default=""),
        "durationMinutes": _pick(x.durationMinutes, collected.get("durationMinutes"), default=0),
        "peopleInvolved": _pick(x.peopleInvolved, collected.get("peopleInvolved"), default=0),
        "tools": _pick(x.tools, collected.get("tools"), default=[]),
        "roles": _pick(x.roles, collected.get("roles"), default=[]),
        "hoursSavedPerWeek": _pick(x.hoursSavedPerWeek, collected.get("hoursSavedPerWeek"), default=0),
        "category": _pick(x.category, collected.get("category"), default=DEFAULT_CATEGORY),
        "complexity": _pick(x.complexity, collected.get("complexity"), default=DEFAULT_COMPLEXITY),
        "processSummary": x.processSummary or "",
        "chatSummary": collected.get("chatSummary") or "",
    }
    summary = {"count": len(attachments)}
    if attachments:
        summary["firstThumbUrl"] = attachments[0]["url"]

    ts = now_ms()
    return FinalRequest(
        id=draft.id,
        owner_id=draft.owner_id,
        title=title,
        status=RequestStatus.NEW.value,
        structured_fields=fields,
        attachments=attachments,
        attachments_summary=summary,
        shared=is_shareable(title, description),
        conversation=list(draft.messages or []),
        created_at=ts,
        updated_at=ts,
    )


class Outcome(str, Enum):
    CREATED = "created"
    ALREADY_FINALIZED = "already_finalized"
    NOTHING_TO_DO = "nothing_to_do"


class EventKind(str, Enum):
    PROGRESS = "progress"
    THOUGHT = "thought"
    DONE = "done"


@dataclass(frozen=True)
class FinalizeEvent:
    kind: EventKind
    text: str = ""
    request_id: Optional[str] = None
    outcome: Optional[Outcome] = None


@dataclass(frozen=True)
class FinalizeResult:
    request_id: str
    outcome: Outcome


def _progress(text: str) -> FinalizeEvent:
    return FinalizeEvent(EventKind.PROGRESS, text)


def _done(request_id: str, outcome: Outcome) -> FinalizeEvent:
    return FinalizeEvent(EventKind.DONE, request_id=request_id, outcome=outcome)


class FinalizationEngine:
    def __init__(self, store, llm, settings: Settings = default_settings):
        self.store = store
        self.llm = llm
        self.settings = settings

    async def finalize(self, conversation_id: str, user_id: str) -> FinalizeResult:
        async for event in self.stream(conversation_id, user_id):
            if event.kind is EventKind.DONE:
                return FinalizeResult(event.request_id, event.outcome)
        raise RuntimeError("finalization ended without a result")  # pragma: no cover

    async def stream(self, conversation_id: str, user_id: str) -> AsyncIterator[FinalizeEvent]:
        if await self.store.get_request(conversation_id) is not None:
            logger.info("Request %s already finalized", conversation_id)
            yield _progress("Request already finalized.")
            yield _done(conversation_id, Outcome.ALREADY_FINALIZED)
            return

        yield _progress("Starting submission process...")
        draft = await self.store.get_draft(conversation_id)
        if draft is None:
            # a concurrent finalizer may have consumed the draft after our first check
            if await self.store.get_request(conversation_id) is not None:
                yield _progress("Request already finalized.")
                yield _done(conversation_id, Outcome.ALREADY_FINALIZED)
            else:
                logger.info("Nothing to finalize for %s", conversation_id)
                yield _progress("Nothing to finalize.")
                yield _done(conversation_id, Outcome.NOTHING_TO_DO)
            return
        if draft.owner_id != user_id:
            raise AuthorizationError("conversation belongs to another user")

        yield _progress("Draft retrieved successfully.")
        yield _progress("Analyzing conversation to extract submission details...")
        chunks: List[str] = []
        async for event in self._extract(draft, chunks):
            yield event

        extract = parse_extract("".join(chunks)) if chunks else None
        if extract is not None:
            yield _progress("Successfully parsed submission details.")
        else:
            yield _progress("Warning: Encountered issues parsing the output, but continuing with available data...")

        yield _progress("Building final request from collected data...")
        record = build_final_request(draft, extract)

        yield _progress("Saving final request to database...")
        await self.store.put_request(record)
        yield _progress("Cleaning up draft conversation...")
        await self.store.delete_draft(draft.id)
        logger.info("Finalized %s (shared=%s)", draft.id, record.shared)

        yield _progress("Done! Your idea has been successfully submitted.")
        yield _done(draft.id, Outcome.CREATED)

    async def _extract(self, draft: DraftConversation, chunks: List[str]) -> AsyncIterator[FinalizeEvent]:
        """Stream the structured extraction into ``chunks``; failures leave ``chunks`` empty."""
        state = migrate_state(draft.state)
        contents = [Message.user(prompts.extraction_input(
            draft.transcript(), state.collectedData.get("processDescription") or ""))]
        fragments = self.llm.generate_stream(
            prompts.EXTRACTION_SYSTEM, contents,
            schema=IdeaCardExtract.model_json_schema(),
            model=self.settings.OPENAI_EXTRACT_MODEL,
        ).__aiter__()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.EXTRACTION_TIMEOUT_SECONDS
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                try:
                    fragment = await asyncio.wait_for(fragments.__anext__(), remaining)
                except StopAsyncIteration:
                    break
                if fragment.thought:
                    yield FinalizeEvent(EventKind.THOUGHT, fragment.text)
                elif fragment.text:
                    chunks.append(fragment.text)
            yield _progress("Extraction complete!")
        except asyncio.TimeoutError:
            logger.warning("Extraction for %s timed out", draft.id)
            chunks.clear()
        except LLMError as e:
            logger.warning("Extraction for %s failed: %s", draft.id, e)
            chunks.clear()
        finally:
            await fragments.aclose()
