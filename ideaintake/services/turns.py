import logging
from typing import AsyncIterator, List, Optional, Set

from ideaintake.config import Settings, settings as default_settings
from ideaintake.errors import AuthorizationError, ConflictError, NotFoundError
from ideaintake.models import ConversationState, DraftConversation, Message, Stage, now_ms
from ideaintake.services import prompts
from ideaintake.services.state_machine import (
    Command, Transition, apply, command_transition, migrate_state, next_transition,
)

logger = logging.getLogger(__name__)

ERROR_SENTINEL = "\nError processing stream. Please try again."

COMMAND_MESSAGES = {
    Command.SUBMIT: "*SUBMIT*",
    Command.CONTINUE: "I'm done adding attachments. Let's continue to the summary.",
}


async def load_owned_draft(store, conversation_id: str, user_id: str) -> DraftConversation:
    draft = await store.get_draft(conversation_id)
    if draft is None:
        raise NotFoundError("conversation", conversation_id)
    if draft.owner_id != user_id:
        raise AuthorizationError("conversation belongs to another user")
    return draft


class TurnGuard:
    """Tracks conversations with a turn in flight; one turn per conversation at a time."""

    def __init__(self):
        self._active: Set[str] = set()

    def acquire(self, conversation_id: str) -> None:
        if conversation_id in self._active:
            raise ConflictError(f"a turn is already in progress for {conversation_id}")
        self._active.add(conversation_id)

    def release(self, conversation_id: str) -> None:
        self._active.discard(conversation_id)

    def busy(self, conversation_id: str) -> bool:
        return conversation_id in self._active


class Turn:
    def __init__(self, orchestrator: "TurnOrchestrator", draft: DraftConversation, user_id: str,
                 user_message: Message, previous: ConversationState, state: ConversationState,
                 transition: Optional[Transition], system_prompt: str):
        self.orchestrator = orchestrator
        self.draft = draft
        self.user_id = user_id
        self.user_message = user_message
        self.previous = previous
        self.state = state
        self.transition = transition
        self.system_prompt = system_prompt
        self.succeeded: Optional[bool] = None
        self.should_finalize = False
        self._released = False

    @property
    def conversation_id(self) -> str:
        return self.draft.id

    @property
    def stage(self) -> Stage:
        return self.state.stage

    def release(self) -> None:
        # once per turn; a later turn may hold the guard by now
        if not self._released:
            self._released = True
            self.orchestrator.guard.release(self.conversation_id)

    async def stream(self) -> AsyncIterator[str]:
        """Yield reply text as it arrives; persist only after the whole reply is in."""
        o = self.orchestrator
        contents: List[Message] = self.draft.transcript() + [self.user_message]
        parts: List[str] = []
        try:
            async for fragment in o.llm.generate_stream(
                self.system_prompt, contents,
                model=o.settings.OPENAI_MODEL,
                temperature=o.settings.CHAT_TEMPERATURE,
                max_tokens=o.settings.CHAT_MAX_TOKENS,
            ):
                if fragment.thought or not fragment.text:
                    continue
                parts.append(fragment.text)
                yield fragment.text

            reply = "".join(parts)
            if self.stage is Stage.SUMMARY:
                self.state = self.state.model_copy(
                    update={"collectedData": {**self.state.collectedData, "chatSummary": reply}})
            if self.stage.is_terminal:
                # the draft is about to be replaced by the final record
                self.should_finalize = True
            else:
                await o.persist(self.draft, [self.user_message, Message.assistant(reply)], self.state)
            self.succeeded = True
            logger.info("Turn on %s done: %s -> %s", self.conversation_id,
                        self.previous.stage.value, self.stage.value)
        except Exception:
            logger.exception("Error processing stream for %s", self.conversation_id)
            self.succeeded = False
            self.should_finalize = False
            yield ERROR_SENTINEL
        finally:
            self.release()


class TurnOrchestrator:
    def __init__(self, store, llm, checker, profiles, guard: Optional[TurnGuard] = None,
                 settings: Settings = default_settings):
        self.store = store
        self.llm = llm
        self.checker = checker
        self.profiles = profiles
        self.guard = guard or TurnGuard()
        self.settings = settings

    async def begin_turn(self, conversation_id: str, user_id: str, message: Optional[str] = None,
                         command: Optional[Command] = None) -> Turn:
        if not message and command is None:
            raise ValueError("a message or a command is required")
        self.guard.acquire(conversation_id)
        try:
            return await self._prepare(conversation_id, user_id, message, command)
        except BaseException:
            self.guard.release(conversation_id)
            raise

    async def _prepare(self, conversation_id, user_id, message, command) -> Turn:
        draft = await load_owned_draft(self.store, conversation_id, user_id)
        state = migrate_state(draft.state)
        user_message = Message.user(message or COMMAND_MESSAGES[command])

        if command is not None:
            transition = command_transition(command, state)
        else:
            transcript = draft.transcript() + [user_message]
            transition = await next_transition(user_message, state, transcript, self.checker)
        new_state = apply(state, transition)

        profile = await self.profiles.get(user_id) if state.stage is Stage.INIT else None
        system_prompt = prompts.language_directive(new_state.language) + prompts.prompt_for(new_state, profile)
        logger.info("Prompting %s for stage %s (previous %s)", conversation_id,
                    new_state.stage.value, state.stage.value)
        return Turn(self, draft, user_id, user_message, state, new_state, transition, system_prompt)

    async def persist(self, draft: DraftConversation, new_messages: List[Message],
                      state: ConversationState) -> DraftConversation:
        draft.messages = list(draft.messages or []) + [m.model_dump(mode="json") for m in new_messages]
        draft.state = state.model_dump(mode="json")
        draft.updated_at = now_ms()
        return await self.store.put_draft(draft)
