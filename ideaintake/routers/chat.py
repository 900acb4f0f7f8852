import logging
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from typing import Optional
from ideaintake.auth import Identity
from ideaintake.config import settings
from ideaintake.deps import get_current_user, get_finalizer, get_guard, get_llm, get_orchestrator, get_profiles, get_store
from ideaintake.errors import ConflictError
from ideaintake.models import Attachment, ConversationState, DraftConversation, Message, now_ms
from ideaintake.services import prompts
from ideaintake.services.llm import LLMError
from ideaintake.services.state_machine import Command, migrate_state
from ideaintake.services.turns import load_owned_draft

logger = logging.getLogger(__name__)

router = APIRouter()

class TurnPayload(BaseModel):
    conversationId: str
    message: Optional[str] = None
    command: Optional[str] = None

class LanguagePayload(BaseModel):
    conversationId: str
    language: str = Field(..., min_length=2, max_length=16)

class TitlePayload(BaseModel):
    conversationId: str
    title: str = Field(..., min_length=1, max_length=200)

class GenerateTitlePayload(BaseModel):
    conversationId: str
    isDetailed: bool = False

class AttachmentPayload(BaseModel):
    conversationId: str
    url: str
    name: str
    type: Optional[str] = None
    thumbnailUrl: Optional[str] = None

def _draft_view(draft: DraftConversation) -> dict:
    return {
        "id": draft.id,
        "title": draft.title,
        "messages": draft.messages,
        "state": migrate_state(draft.state).model_dump(mode="json"),
        "createdAt": draft.created_at,
        "updatedAt": draft.updated_at,
    }

async def _editable_draft(store, guard, conversation_id: str, user_id: str) -> DraftConversation:
    draft = await load_owned_draft(store, conversation_id, user_id)
    if guard.busy(conversation_id):
        raise ConflictError("a turn is in progress for this conversation")
    return draft

async def _after_turn(turn, finalizer):
    if turn.succeeded is None:
        # the stream was never consumed, e.g. the client went away before the first chunk
        logger.warning("Turn on %s was never streamed", turn.conversation_id)
        turn.release()
        return
    if not turn.should_finalize:
        return
    try:
        result = await finalizer.finalize(turn.conversation_id, turn.user_id)
        logger.info("Background finalization of %s: %s", result.request_id, result.outcome.value)
    except Exception:
        # the client can still open the finalize stream and retry
        logger.exception("Background finalization failed for %s", turn.conversation_id)

@router.post("/start")
async def start_conversation(user: Identity = Depends(get_current_user), store=Depends(get_store),
                             profiles=Depends(get_profiles)):
    profile = await profiles.get(user.uid)
    state = ConversationState(language=settings.DEFAULT_LANGUAGE)
    draft = DraftConversation(owner_id=user.uid,
                              messages=[Message.assistant(prompts.welcome_message(profile)).model_dump(mode="json")],
                              state=state.model_dump(mode="json"))
    draft = await store.put_draft(draft)
    return {"conversationId": draft.id, "messages": draft.messages, "stage": state.stage.value}

@router.post("/message")
async def chat_message(payload: TurnPayload, background_tasks: BackgroundTasks,
                       user: Identity = Depends(get_current_user),
                       orchestrator=Depends(get_orchestrator), finalizer=Depends(get_finalizer)):
    command = None
    if payload.command:
        try:
            command = Command(payload.command.upper())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"unknown command {payload.command}")
    if not payload.message and command is None:
        raise HTTPException(status_code=400, detail="Missing required fields")

    turn = await orchestrator.begin_turn(payload.conversationId, user.uid, payload.message, command)
    background_tasks.add_task(_after_turn, turn, finalizer)
    return StreamingResponse(
        turn.stream(),
        media_type="text/plain; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "X-Conversation-Stage": turn.stage.value,
            "X-Previous-Stage": turn.previous.stage.value,
        },
        background=background_tasks,
    )

@router.put("/language")
async def set_language(payload: LanguagePayload, user: Identity = Depends(get_current_user),
                       store=Depends(get_store), guard=Depends(get_guard)):
    draft = await _editable_draft(store, guard, payload.conversationId, user.uid)
    state = migrate_state(draft.state).model_copy(update={"language": payload.language})
    draft.state = state.model_dump(mode="json"); draft.updated_at = now_ms()
    await store.put_draft(draft)
    return {"success": True, "language": payload.language}

@router.put("/title")
async def update_title(payload: TitlePayload, user: Identity = Depends(get_current_user),
                       store=Depends(get_store), guard=Depends(get_guard)):
    draft = await _editable_draft(store, guard, payload.conversationId, user.uid)
    draft.title = payload.title.strip(); draft.updated_at = now_ms()
    await store.put_draft(draft)
    return {"title": draft.title}

@router.post("/generate-title")
async def generate_title(payload: GenerateTitlePayload, user: Identity = Depends(get_current_user),
                         store=Depends(get_store), guard=Depends(get_guard), llm=Depends(get_llm)):
    draft = await _editable_draft(store, guard, payload.conversationId, user.uid)
    prompt = prompts.title_prompt(draft.transcript(), detailed=payload.isDetailed)
    try:
        text = await llm.generate(None, [Message.user(prompt)], model=settings.OPENAI_MODEL)
    except LLMError as e:
        logger.warning("Title generation failed for %s: %s", draft.id, e)
        raise HTTPException(status_code=502, detail="Failed to generate title")
    title = text.strip().strip('"').strip()
    if not title:
        raise HTTPException(status_code=502, detail="Failed to generate title")
    draft.title = title; draft.updated_at = now_ms()
    await store.put_draft(draft)
    return {"title": title}

@router.post("/attachments")
async def add_attachment(payload: AttachmentPayload, user: Identity = Depends(get_current_user),
                         store=Depends(get_store), guard=Depends(get_guard)):
    draft = await _editable_draft(store, guard, payload.conversationId, user.uid)
    state = migrate_state(draft.state)
    attachment = Attachment(url=payload.url, name=payload.name, type=payload.type, thumbnailUrl=payload.thumbnailUrl)
    attachments = list(state.collectedData.get("attachments") or []) + [attachment.model_dump(exclude_none=True)]
    state = state.model_copy(update={"collectedData": {**state.collectedData, "attachments": attachments}})
    draft.state = state.model_dump(mode="json"); draft.updated_at = now_ms()
    await store.put_draft(draft)
    return {"attachments": attachments}

@router.delete("/{conversation_id}")
async def delete_conversation(conversation_id: str, user: Identity = Depends(get_current_user),
                              store=Depends(get_store), guard=Depends(get_guard)):
    await _editable_draft(store, guard, conversation_id, user.uid)
    await store.delete_draft(conversation_id)
    return {"deleted": conversation_id}

@router.get("/{conversation_id}")
async def load_conversation(conversation_id: str, user: Identity = Depends(get_current_user),
                            store=Depends(get_store)):
    draft = await load_owned_draft(store, conversation_id, user.uid)
    return _draft_view(draft)
