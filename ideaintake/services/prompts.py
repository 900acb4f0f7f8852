import json
from typing import Optional, Sequence

from ideaintake.models import ConversationState, Message, Stage, UserProfile

PERSONA = (
    "You are the Automation Idea Intake assistant: professional, friendly and a little witty. "
    "You help employees submit ideas for the AI team to review, so that generative AI or new tooling "
    "can save them time and energy, or let them do things that today require programming or scripting skills. "
    "Important: we are currently in this step: "
)

STAGE_TEMPLATES = {
    Stage.INIT: "Welcome the user and ask what task or process they would like to automate.",
    Stage.DESCRIPTION: (
        "Ask the user to describe the task they want us to look into. "
        "Do not offer solutions or advice yet. Only ask for the description."
    ),
    Stage.DETAILS: (
        "Thank the user for the description, then drill down into the details: how often the task happens, "
        "how long it takes, who is involved, which tools are used and how automating it would help. "
        "Ask one specific question per message. If the user wants to move on, let them."
    ),
    Stage.ATTACHMENTS: (
        "Ask whether the user would like to attach screenshots, sample files or documents. "
        "Make clear that attaching nothing is fine."
    ),
    Stage.SUMMARY: (
        "Summarise everything collected so far as a short structured list "
        "(task, frequency, duration, people, tools, expected benefit) and ask the user to confirm it for submission."
    ),
    Stage.SUBMIT: "Thank the user for the submission and sign off.",
}

WELCOME = (
    "Hi {name}! I'm here to help you submit an automation idea. "
    "What task or process would you like to automate?"
)

CHECKER_PROMPT = """You are a logic-checker that evaluates a chat transcript against a criterion.
Reply ONLY with valid JSON:

{{
  "satisfied": true|false,
  "reasoning": "..."
}}

Transcript:
{transcript}

Criterion:
"{criterion}\""""

EXTRACTION_SYSTEM = (
    "You are the Intake Analyzer for a business process automation programme.\n\n"
    "Given the full intake conversation between an employee (the submitter) and the assistant, "
    "output ONLY a JSON object with these fields: title (max 10 words), category, painPoints (at most 5), "
    "processSummary, frequency, durationMinutes, peopleInvolved, hoursSavedPerWeek, tools, roles, "
    "complexity (low, medium or high). Leave out what the conversation does not say. "
    "Return ONLY the JSON. Do NOT wrap it in markdown or commentary."
)

TITLE_PROMPT = "Generate a concise and informative (max 15 words) {kind}title for this conversation:\n\n{transcript}"


def _first_name(profile: Optional[UserProfile]) -> str:
    return (profile.first_name if profile else None) or "there"


def prompt_for(state: ConversationState, profile: Optional[UserProfile] = None) -> str:
    prompt = PERSONA
    if state.stage is Stage.INIT and profile is not None:
        prompt = f"Hi {_first_name(profile)}! " + prompt
    return prompt + STAGE_TEMPLATES[state.stage]


def language_directive(language: Optional[str]) -> str:
    return f"Please respond in {language or 'en'}. "


def welcome_message(profile: Optional[UserProfile] = None) -> str:
    return WELCOME.format(name=_first_name(profile))


def transcript_json(messages: Sequence[Message]) -> str:
    return json.dumps([m.model_dump(mode="json") for m in messages], indent=2, ensure_ascii=False)


def checker_prompt(messages: Sequence[Message], criterion: str) -> str:
    return CHECKER_PROMPT.format(transcript=transcript_json(messages), criterion=criterion)


def extraction_input(messages: Sequence[Message], process_description: str = "") -> str:
    return (f"FULL CONVERSATION:\n{json.dumps([m.model_dump(mode='json') for m in messages], ensure_ascii=False)}"
            f"\n\nSUMMARY (if any):\n{process_description}")


def title_prompt(messages: Sequence[Message], detailed: bool = False) -> str:
    transcript = "\n".join(f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}" for m in messages)
    return TITLE_PROMPT.format(kind="detailed " if detailed else "", transcript=transcript)
