"""Timeline tests: idempotent operations, visibility filtering, threads and todos."""

import pytest

from dble_pipeline.pipeline.errors import NotFound, PipelineError


def post(timeline, content="hello", **kwargs):
    kwargs.setdefault("author_id", "user-1")
    return timeline.append("wf-1", content, **kwargs)


def test_append_defaults(timeline):
    entry = post(timeline)
    assert entry["card_type"] == "user_message"
    assert entry["visibility"] == "public"
    assert entry["is_deleted"] is False
    assert entry["edited_by"] is None
    assert timeline.get(entry["_id"])["content"] == "hello"


def test_append_rejects_unknown_enums(timeline):
    with pytest.raises(ValueError):
        post(timeline, card_type="postcard")
    with pytest.raises(ValueError):
        post(timeline, visibility="secret")


def test_append_with_entry_id_is_idempotent(timeline):
    first = post(timeline, "draft", entry_id="entry-1")
    second = post(timeline, "draft again", entry_id="entry-1")
    assert second["_id"] == first["_id"]
    assert second["content"] == "draft"
    assert len(timeline.list("wf-1")) == 1


def test_entry_id_from_another_workflow(timeline):
    post(timeline, entry_id="entry-1")
    with pytest.raises(PipelineError):
        timeline.append("wf-2", "hi", author_id="user-1", entry_id="entry-1")


def test_edit_twice_is_idempotent(timeline):
    entry = post(timeline, "first")
    timeline.edit(entry["_id"], "second", editor_id="user-2")
    edited = timeline.edit(entry["_id"], "second", editor_id="user-2")

    assert edited["content"] == "second"
    assert edited["edited_by"] == "user-2"
    entries = timeline.list("wf-1")
    assert len(entries) == 1
    assert (entries[0]["content"], entries[0]["edited_by"]) == ("second", "user-2")


def test_soft_delete_hides_entry(timeline):
    keep = post(timeline, "keep")
    gone = post(timeline, "gone")
    timeline.soft_delete(gone["_id"], actor_id="user-1")
    timeline.soft_delete(gone["_id"], actor_id="user-1")

    assert [e["_id"] for e in timeline.list("wf-1")] == [keep["_id"]]
    assert timeline.repo.get_entry(gone["_id"])["is_deleted"] is True
    with pytest.raises(NotFound):
        timeline.get(gone["_id"])
    with pytest.raises(NotFound):
        timeline.edit(gone["_id"], "revive", editor_id="user-1")


def test_soft_delete_unknown_entry(timeline):
    with pytest.raises(NotFound):
        timeline.soft_delete("missing")


def test_public_filter_never_returns_internal(timeline):
    post(timeline, "a", visibility="public")
    post(timeline, "b", visibility="internal")
    post(timeline, "c", visibility="internal")
    post(timeline, "d", visibility="public")

    public = timeline.list("wf-1", visibility="public")
    assert [e["content"] for e in public] == ["a", "d"]
    assert all(e["visibility"] == "public" for e in public)


def test_client_reader_forced_to_public(timeline):
    post(timeline, "a", visibility="public")
    post(timeline, "b", visibility="internal")

    assert [e["content"] for e in timeline.list("wf-1", visibility="internal", reader_role="client")] == ["a"]
    assert len(timeline.list("wf-1", reader_role="fde")) == 2


def test_publish_is_idempotent(timeline):
    entry = post(timeline, "note", visibility="internal")
    timeline.publish(entry["_id"])
    published = timeline.publish(entry["_id"])
    assert published["visibility"] == "public"
    assert len(timeline.list("wf-1", reader_role="client")) == 1


def test_todos_get_ids_and_toggle(timeline):
    entry = post(timeline, "tasks", card_type="task_card",
                 todos=[{"text": "write brief"}, {"text": "pick assets"}])
    todos = entry["todos"]
    assert all(t["id"] and t["completed"] is False for t in todos)
    assert len({t["id"] for t in todos}) == 2

    todo_id = todos[0]["id"]
    timeline.toggle_todo(entry["_id"], todo_id, True)
    toggled = timeline.toggle_todo(entry["_id"], todo_id, True)
    first = toggled["todos"][0]
    assert first["completed"] is True
    assert first["completed_at"] is not None

    reopened = timeline.toggle_todo(entry["_id"], todo_id, False)
    assert reopened["todos"][0]["completed_at"] is None
    assert timeline.get(entry["_id"])["todos"][0]["completed"] is False


def test_toggle_unknown_todo(timeline):
    entry = post(timeline, todos=[{"text": "one"}])
    with pytest.raises(NotFound):
        timeline.toggle_todo(entry["_id"], "nope", True)


def test_threaded_replies(timeline):
    root = post(timeline, "question")
    post(timeline, "unrelated")
    reply = post(timeline, "answer", parent_entry_id=root["_id"])
    post(timeline, "internal note", parent_entry_id=root["_id"], visibility="internal")

    assert [e["_id"] for e in timeline.thread(root["_id"], reader_role="client")] == [reply["_id"]]
    assert len(timeline.thread(root["_id"])) == 2


def test_reply_requires_live_parent_in_same_workflow(timeline):
    root = post(timeline, "question")
    with pytest.raises(NotFound):
        timeline.append("wf-2", "answer", author_id="user-1", parent_entry_id=root["_id"])

    timeline.soft_delete(root["_id"])
    with pytest.raises(NotFound):
        post(timeline, "answer", parent_entry_id=root["_id"])


def test_status_and_approval_posts(timeline):
    status = timeline.post_status("wf-1", "research", "running", "Research started")
    card = timeline.post_approval("wf-1", {"stage_key": "brand_qa", "approved": True,
                                           "actor_id": "qa-1", "note": None}, "Brand QA approved")

    assert status["card_type"] == "status_update"
    assert status["status_data"] == {"stage": "research", "status": "running",
                                     "message": "Research started"}
    assert card["card_type"] == "approval_card"
    assert card["approval_data"]["approved"] is True
    assert [e["_id"] for e in timeline.list("wf-1")] == [status["_id"], card["_id"]]


def test_client_reader_cannot_get_internal_entry(timeline):
    note = post(timeline, "note", visibility="internal")
    with pytest.raises(NotFound):
        timeline.get(note["_id"], reader_role="client")
    with pytest.raises(NotFound):
        timeline.thread(note["_id"], reader_role="client")
    assert timeline.get(note["_id"], reader_role="fde")["content"] == "note"

    timeline.publish(note["_id"])
    assert timeline.get(note["_id"], reader_role="client")["visibility"] == "public"
