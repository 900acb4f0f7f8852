from ideaintake.models import FinalRequest, Message, Stage, now_ms
from ideaintake.services.history import merge_history, summarize_draft, summarize_request
from conftest import ALICE, make_draft, run

HOUR_MS = 60 * 60 * 1000

def _request(store, rid, owner="alice", updated_at=None, **kw):
    ts = updated_at or now_ms()
    return run(store.put_request(FinalRequest(id=rid, owner_id=owner, title=kw.pop("title", "Automate reports"),
                                              structured_fields=kw.pop("fields", {"complexity": "low"}),
                                              created_at=ts, updated_at=ts, **kw)))

def test_summarize_draft_prefers_title_then_description(store):
    draft = make_draft(store, stage=Stage.DETAILS, collected={"processDescription": "x" * 150},
                       messages=[Message.assistant("Hi"), Message.user("first words")])
    item = summarize_draft(draft)
    assert item["type"] == "draft"
    assert item["status"] == "Collecting Details"
    assert item["progress"] == 50
    assert item["preview"] == "x" * 100 + "..."

    draft.title = "Monthly reports"
    assert summarize_draft(draft)["preview"] == "Monthly reports"

def test_summarize_request(store):
    item = summarize_request(_request(store, "r1", status="pilot"))
    assert item["status"] == "Pilot Implementation"
    assert item["complexity"] == "low"
    assert item["shared"] is False

def test_merge_sorted_newest_first():
    items = merge_history([{"id": "a", "timestamp": 1}, {"id": "b", "timestamp": 5}],
                          [{"id": "c", "timestamp": 3}], limit=2)
    assert [i["id"] for i in items] == ["b", "c"]

def test_history_endpoint(client, store):
    now = now_ms()
    empty = make_draft(store, stage=Stage.INIT, created_at=now - 3 * HOUR_MS)
    active = make_draft(store, stage=Stage.DESCRIPTION,
                        messages=[Message.assistant("Hi"), Message.user("invoices")])
    _request(store, "done-1", updated_at=now - HOUR_MS)
    _request(store, "bob-1", owner="bob")

    r = client.get("/chat/history", headers=ALICE)
    assert r.status_code == 200
    data = r.json()
    assert [i["id"] for i in data["history"]] == [active.id, "done-1"]
    assert data["totalDrafts"] == 1
    assert data["totalSubmitted"] == 1
    assert data["emptyDraftsFound"] == 1
    # collection runs after the response
    assert run(store.get_draft(empty.id)) is None
    assert run(store.get_draft(active.id)) is not None

def test_history_without_cleanup_keeps_empty_drafts(client, store):
    empty = make_draft(store, stage=Stage.INIT, created_at=now_ms() - 3 * HOUR_MS)
    data = client.get("/chat/history?cleanup=false", headers=ALICE).json()
    assert data["history"] == []
    assert data["emptyDraftsFound"] == 1
    assert run(store.get_draft(empty.id)) is not None

def test_history_limit_validation(client):
    assert client.get("/chat/history?limit=0", headers=ALICE).status_code == 422
    assert client.get("/chat/history?limit=101", headers=ALICE).status_code == 422

def test_history_requires_auth(client):
    assert client.get("/chat/history").status_code == 401

def test_history_skips_unreadable_draft(client, store):
    broken = make_draft(store, stage=Stage.DESCRIPTION)
    broken.state = {"stage": "no-such-stage"}
    run(store.put_draft(broken))
    good = make_draft(store, stage=Stage.DESCRIPTION, messages=[Message.user("invoices")])
    r = client.get("/chat/history", headers=ALICE)
    assert r.status_code == 200
    assert [i["id"] for i in r.json()["history"]] == [good.id]
