"""
Tests for the client-side reply store and its storage adapters
"""

import pytest

from dmreply.models.reply import ReplyType
from dmreply.store.reply_store import ReplyStore
from dmreply.store.schemas import ReplyItem
from dmreply.store.storage import JsonFileStorage, MemoryStorage


def item(reply_id, keyword="price", reply_type=ReplyType.POST):
    return ReplyItem(id=reply_id, keyword=keyword, reply="r", reply_type=reply_type)


class TestReplyStore:

    def test_only_lists_are_persisted(self):
        storage = MemoryStorage()
        store = ReplyStore(storage)

        store.set_replies([item(1)])
        store.set_modal_open(True)
        store.set_editing_reply(item(1))
        store.set_loading(True)

        saved = storage.load()
        assert set(saved) == {"replies", "storyReplies", "liveReplies"}
        assert saved["replies"][0]["id"] == 1

    def test_transient_state_is_not_written(self):
        storage = MemoryStorage()
        store = ReplyStore(storage)

        store.set_modal_open(True)
        store.set_active_tab("live")

        assert storage.save_count == 0

    def test_restores_lists_but_not_ui_state(self):
        storage = MemoryStorage()
        first = ReplyStore(storage)
        first.set_replies([item(1), item(2)])
        first.set_story_replies([item(3, reply_type=ReplyType.STORY)])
        first.set_modal_open(True)

        second = ReplyStore(storage)

        assert [r.id for r in second.replies] == [1, 2]
        assert [r.id for r in second.story_replies] == [3]
        assert second.is_modal_open is False
        assert second.editing_reply is None
        assert second.active_tab == "post"

    def test_upsert_goes_to_its_tab(self):
        store = ReplyStore(MemoryStorage())
        store.set_replies([item(1)])

        store.upsert_reply(item(2))
        store.upsert_reply(item(5, reply_type=ReplyType.LIVE))
        store.upsert_reply(item(1, keyword="updated"))

        assert [(r.id, r.keyword) for r in store.replies] == [(1, "updated"), (2, "price")]
        assert [r.id for r in store.live_replies] == [5]

    def test_remove_clears_editing_reply(self):
        store = ReplyStore(MemoryStorage())
        store.set_replies([item(1), item(2)])
        store.set_editing_reply(item(1))

        store.remove_reply(1)

        assert [r.id for r in store.replies] == [2]
        assert store.editing_reply is None

    def test_clear_all(self):
        storage = MemoryStorage()
        store = ReplyStore(storage)
        store.set_replies([item(1)])
        store.set_modal_open(True)
        store.set_active_tab("story")

        store.clear_all()

        assert store.replies == []
        assert store.is_modal_open is False
        assert store.active_tab == "story"
        assert storage.load()["replies"] == []

    def test_unknown_tab(self):
        store = ReplyStore(MemoryStorage())
        with pytest.raises(ValueError):
            store.set_active_tab("reels")

    def test_unreadable_saved_state_is_discarded(self):
        storage = MemoryStorage({"replies": [{"bogus": True}], "storyReplies": [item(3).model_dump(by_alias=True, mode="json")]})

        store = ReplyStore(storage)

        assert store.replies == []
        assert [r.id for r in store.story_replies] == [3]


class TestJsonFileStorage:

    def test_round_trip_through_file(self, tmp_path):
        path = tmp_path / "state" / "replies.json"
        ReplyStore(JsonFileStorage(path)).set_replies([item(7)])

        restored = ReplyStore(JsonFileStorage(path))

        assert [r.id for r in restored.replies] == [7]

    def test_missing_file(self, tmp_path):
        assert JsonFileStorage(tmp_path / "absent.json").load() is None

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "replies.json"
        path.write_text("{not json", encoding="utf-8")
        assert JsonFileStorage(path).load() is None
