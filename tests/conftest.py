import asyncio, json, pytest
from collections import deque
from fastapi.testclient import TestClient
from sqlmodel import create_engine
from ideaintake import deps
from ideaintake.auth import StaticTokenVerifier
from ideaintake.main import app
from ideaintake.models import ConversationState, DraftConversation, Message, Role, Stage, now_ms
from ideaintake.services.llm import Fragment
from ideaintake.services.profiles import ProfileCache
from ideaintake.services.store import DocumentStore
from ideaintake.services.turns import TurnGuard

ALICE = {"Authorization": "Bearer tok-alice"}
BOB = {"Authorization": "Bearer tok-bob"}

EXTRACTION = {
    "title": "Automate monthly report generation",
    "category": "Reporting",
    "painPoints": ["Copy-pasting numbers", "Manual formatting"],
    "processSummary": "Every month the team assembles a sales report from three spreadsheets.",
    "frequency": "monthly",
    "durationMinutes": 240,
    "peopleInvolved": 3,
    "hoursSavedPerWeek": 1.5,
    "tools": ["Excel", "Outlook"],
    "roles": ["Analyst"],
    "complexity": "low",
}

def check_reply(satisfied: bool, reasoning: str = "because") -> str:
    return json.dumps({"satisfied": satisfied, "reasoning": reasoning})

class FakeLLM:
    """Scripted LLM. ``checks`` feed ``generate``; ``replies`` feed chat streams; ``extraction`` feeds schema streams."""

    def __init__(self):
        self.checks = deque()
        self.default_check = check_reply(False, "not yet")
        self.replies = deque()
        self.default_reply = ["Sounds ", "good!"]
        self.extraction = [json.dumps(EXTRACTION)]
        self.thoughts = []
        self.delay = 0.0
        self.calls = []

    async def generate(self, system_instruction, contents, **kwargs):
        self.calls.append(("generate", system_instruction, list(contents), kwargs))
        item = self.checks.popleft() if self.checks else self.default_check
        if isinstance(item, Exception):
            raise item
        return item

    async def generate_stream(self, system_instruction, contents, *, schema=None, **kwargs):
        self.calls.append(("stream", system_instruction, list(contents), dict(kwargs, schema=schema)))
        if schema is not None:
            for t in self.thoughts:
                yield Fragment(t, thought=True)
            items = self.extraction
        else:
            items = self.replies.popleft() if self.replies else self.default_reply
        if isinstance(items, Exception):
            raise items
        for item in items:
            if self.delay:
                await asyncio.sleep(self.delay)
            if isinstance(item, Exception):
                raise item
            yield item if isinstance(item, Fragment) else Fragment(item)

    def stream_calls(self, with_schema: bool = False):
        return [c for c in self.calls if c[0] == "stream" and (c[3]["schema"] is not None) == with_schema]

def run(coro):
    return asyncio.run(coro)

def make_draft(store, owner="alice", stage=Stage.DESCRIPTION, messages=None, collected=None,
               created_at=None, title=None, **state_extra):
    if messages is None:
        messages = [Message.assistant("Hi there! What would you like to automate?")]
    state = ConversationState(stage=stage, collectedData=collected or {}, **state_extra)
    ts = created_at if created_at is not None else now_ms()
    draft = DraftConversation(owner_id=owner, title=title,
                              messages=[m.model_dump(mode="json") for m in messages],
                              state=state.model_dump(mode="json"), created_at=ts, updated_at=ts)
    return run(store.put_draft(draft))

def user_messages(draft):
    return [m for m in draft.messages if m["role"] == Role.USER.value]

@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    deps.init_db(eng)
    yield eng
    eng.dispose()

@pytest.fixture
def store(engine):
    return DocumentStore(engine)

@pytest.fixture
def llm():
    return FakeLLM()

@pytest.fixture
def guard():
    return TurnGuard()

@pytest.fixture
def client(store, llm, guard):
    profiles = ProfileCache(store)
    verifier = StaticTokenVerifier({"tok-alice": "alice", "tok-bob": "bob"})
    app.dependency_overrides[deps.get_store] = lambda: store
    app.dependency_overrides[deps.get_llm] = lambda: llm
    app.dependency_overrides[deps.get_profiles] = lambda: profiles
    app.dependency_overrides[deps.get_guard] = lambda: guard
    app.dependency_overrides[deps.get_verifier] = lambda: verifier
    yield TestClient(app)
    app.dependency_overrides.clear()
