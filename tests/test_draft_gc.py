from ideaintake.models import Message, Stage, now_ms
from ideaintake.services.draft_gc import DraftCollector, has_user_content, is_empty
from ideaintake.services.store import DocumentStore
from conftest import make_draft, run

HOUR_MS = 60 * 60 * 1000

def _old(store, owner="alice", **kw):
    return make_draft(store, owner=owner, stage=kw.pop("stage", Stage.INIT), created_at=now_ms() - 3 * HOUR_MS, **kw)

def test_is_empty(store):
    welcome = _old(store)
    assert is_empty(welcome)
    assert not has_user_content(welcome)

    answered = _old(store, messages=[Message.assistant("Hi"), Message.user("reports")])
    assert has_user_content(answered)
    assert not is_empty(answered)

    moved_on = _old(store, stage=Stage.DESCRIPTION)
    assert not is_empty(moved_on)

    chatty = _old(store, messages=[Message.assistant("a"), Message.assistant("b"), Message.assistant("c")])
    assert not is_empty(chatty)

def test_collects_only_old_empty_drafts(store):
    old_empty = _old(store)
    fresh_empty = make_draft(store, stage=Stage.INIT)
    old_with_content = _old(store, messages=[Message.assistant("Hi"), Message.user("reports")])
    other_user = _old(store, owner="bob")

    deleted = run(DraftCollector(store).collect("alice"))
    assert deleted == [old_empty.id]
    assert run(store.get_draft(old_empty.id)) is None
    for kept in (fresh_empty, old_with_content, other_user):
        assert run(store.get_draft(kept.id)) is not None

def test_retention_boundary(store):
    now = now_ms()
    draft = make_draft(store, stage=Stage.INIT, created_at=now - 2 * HOUR_MS)
    collector = DraftCollector(store, retention_seconds=2 * 60 * 60)
    assert collector.candidates([draft], now) == []
    assert collector.candidates([draft], now + 1) == [draft.id]

def test_never_deletes_drafts_with_user_messages(store):
    drafts = [_old(store, messages=[Message.user(f"idea {i}")]) for i in range(5)]
    assert run(DraftCollector(store, retention_seconds=0).collect("alice")) == []
    assert len(run(store.list_drafts("alice"))) == len(drafts)

def test_deletes_in_bounded_batches(engine):
    store = DocumentStore(engine, max_batch_size=2)
    batches = []
    original = store._delete_batch

    def spy(model, keys):
        batches.append(list(keys))
        return original(model, keys)

    store._delete_batch = spy
    doomed = [_old(store).id for _ in range(5)]
    deleted = run(DraftCollector(store).collect("alice"))
    assert sorted(deleted) == sorted(doomed)
    assert sorted(len(b) for b in batches) == [1, 2, 2]
    assert run(store.list_drafts("alice")) == []

def test_delete_drafts_tolerates_missing_keys(store):
    draft = _old(store)
    assert run(store.delete_drafts([draft.id, "gone"])) == 1
    assert run(store.delete_drafts([])) == 0

def test_unreadable_draft_is_skipped(store):
    broken = _old(store)
    broken.state = {"stage": "no-such-stage"}
    run(store.put_draft(broken))
    empty = _old(store)
    assert run(DraftCollector(store).collect("alice")) == [empty.id]
    assert run(store.get_draft(broken.id)) is not None
