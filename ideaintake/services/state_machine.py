"""Conversation stage transitions.

``next_transition`` is the only place the (non-deterministic) criterion
checker is consulted; everything downstream of it is driven by the resulting
``Transition`` and the pure ``apply`` reducer.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence

from ideaintake.config import settings
from ideaintake.models import ConversationState, Message, Stage

logger = logging.getLogger(__name__)

CRITERIA = {
    Stage.DESCRIPTION: "User provided a description of the task they want to automate",
    Stage.DETAILS: ("User supplied additional detail about the process (frequency, effort, people, tools or benefit) "
                    "or explicitly signaled they are ready to move on"),
    Stage.ATTACHMENTS: "User indicated they have attached files or chosen not to attach any",
    Stage.SUMMARY: "User confirmed the summary and is ready to submit",
}

LEGACY_STAGES = {
    "lite_description": Stage.DESCRIPTION,
    "task_description": Stage.DESCRIPTION,
    "lite_impact": Stage.DETAILS,
    "summary_lite": Stage.DETAILS,
    "decision": Stage.DETAILS,
    "full_details": Stage.DETAILS,
    "pain": Stage.DETAILS,
    "frequency": Stage.DETAILS,
    "tools": Stage.DETAILS,
    "impact": Stage.DETAILS,
    "profile": Stage.INIT,
}


class TransitionKind(str, Enum):
    UNCONDITIONAL = "unconditional"
    CHECKED = "checked"
    COMMAND = "command"


class Command(str, Enum):
    SUBMIT = "SUBMIT"
    CONTINUE = "CONTINUE"


@dataclass(frozen=True)
class Transition:
    stage: Stage
    kind: TransitionKind = TransitionKind.CHECKED
    data: Dict[str, Any] = field(default_factory=dict)
    reasoning: str = ""


def migrate_state(raw: Optional[Mapping[str, Any]]) -> ConversationState:
    """Map stored state (including pre-rename drafts) onto the current stage enum."""
    raw = dict(raw or {})
    name = raw.get("stage") or raw.get("currentStep") or Stage.INIT.value
    if name in LEGACY_STAGES:
        logger.info("Migrating legacy stage %s -> %s", name, LEGACY_STAGES[name].value)
        stage = LEGACY_STAGES[name]
    else:
        stage = Stage(name)
    return ConversationState(
        stage=stage,
        collectedData=dict(raw.get("collectedData") or raw.get("collected_data") or {}),
        language=raw.get("language") or settings.DEFAULT_LANGUAGE,
    )


def apply(state: ConversationState, transition: Optional[Transition]) -> ConversationState:
    if transition is None:
        return state
    return state.model_copy(update={
        "stage": transition.stage,
        "collectedData": {**state.collectedData, **transition.data},
    })


def command_transition(command: Command, state: ConversationState) -> Optional[Transition]:
    if state.stage.is_terminal:
        return None
    if command is Command.SUBMIT:
        return Transition(Stage.SUBMIT, TransitionKind.COMMAND, {"fastTrack": True}, "submit now")
    if command is Command.CONTINUE and state.stage is Stage.ATTACHMENTS:
        return Transition(Stage.SUMMARY, TransitionKind.COMMAND, reasoning="done adding attachments")
    return None


async def next_transition(user_message: Message, state: ConversationState,
                          transcript: Sequence[Message], checker) -> Optional[Transition]:
    """Return the single transition triggered by ``user_message``, or None to stay put."""
    text = user_message.content.strip()
    stage = state.stage

    if stage.is_terminal:
        return None

    if stage is Stage.INIT:
        # the welcome turn always advances; a first message that already
        # describes the task goes straight on to details
        result = await checker.check(transcript, CRITERIA[Stage.DESCRIPTION])
        if result.satisfied:
            logger.info("init -> details (first message is a description)")
            return Transition(Stage.DETAILS, TransitionKind.CHECKED, {"processDescription": text}, result.reasoning)
        logger.info("init -> description")
        return Transition(Stage.DESCRIPTION, TransitionKind.UNCONDITIONAL)

    result = await checker.check(transcript, CRITERIA[stage])
    if not result.satisfied:
        logger.info("Staying in %s: %s", stage.value, result.reasoning)
        return None

    target = stage.next()
    data = {"processDescription": text} if stage is Stage.DESCRIPTION else {}
    logger.info("%s -> %s", stage.value, target.value)
    return Transition(target, TransitionKind.CHECKED, data, result.reasoning)
