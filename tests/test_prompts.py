import json
import pytest
from ideaintake.models import ConversationState, Message, Stage, UserProfile
from ideaintake.services import prompts

@pytest.mark.parametrize("stage", list(Stage))
def test_every_stage_has_a_template(stage):
    text = prompts.prompt_for(ConversationState(stage=stage))
    assert text.startswith(prompts.PERSONA)
    assert text.endswith(prompts.STAGE_TEMPLATES[stage])

def test_init_is_personalized():
    profile = UserProfile(id="u1", name="Dana Scully")
    text = prompts.prompt_for(ConversationState(stage=Stage.INIT), profile)
    assert text.startswith("Hi Dana! ")
    assert not prompts.prompt_for(ConversationState(stage=Stage.DETAILS), profile).startswith("Hi")

def test_prompt_is_pure():
    state = ConversationState(stage=Stage.SUMMARY)
    assert prompts.prompt_for(state) == prompts.prompt_for(state)

def test_welcome_message():
    assert prompts.welcome_message(None).startswith("Hi there!")
    assert prompts.welcome_message(UserProfile(id="u1", name="Fox Mulder")).startswith("Hi Fox!")

def test_language_directive():
    assert prompts.language_directive("de") == "Please respond in de. "
    assert prompts.language_directive(None) == "Please respond in en. "

def test_checker_prompt_embeds_transcript_as_json():
    messages = [Message.user('He said "hi"')]
    text = prompts.checker_prompt(messages, "User said hi")
    payload = text.split("Transcript:\n", 1)[1].split("\n\nCriterion:", 1)[0]
    assert json.loads(payload)[0]["content"] == 'He said "hi"'
    assert text.endswith('"User said hi"')

def test_title_prompt():
    messages = [Message.assistant("What task?"), Message.user("Invoices")]
    text = prompts.title_prompt(messages, detailed=True)
    assert "detailed title" in text
    assert "User: Invoices" in text and "Assistant: What task?" in text
