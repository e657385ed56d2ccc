"""
Client-side reply configuration state.

Only the reply lists are persisted through the storage adapter. Modal,
editing, loading and tab state live for the lifetime of the store object.
The store never talks to the API; callers fetch with ``ReplyApiClient`` and
push the result in with ``set_replies``.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from dmreply.models.reply import ReplyType
from dmreply.store.schemas import ReplyItem
from dmreply.store.storage import StorageAdapter

logger = logging.getLogger(__name__)

TABS = ("post", "story", "live")

_TAB_BY_TYPE = {
    ReplyType.POST: "post",
    ReplyType.STORY: "story",
    ReplyType.LIVE: "live",
}

_PERSISTED_KEYS = {
    "post": "replies",
    "story": "storyReplies",
    "live": "liveReplies",
}


class ReplyStore:
    def __init__(self, storage: StorageAdapter):
        self.storage = storage
        self._lists: dict[str, list[ReplyItem]] = {tab: [] for tab in TABS}
        self.is_modal_open = False
        self.editing_reply: Optional[ReplyItem] = None
        self.is_loading = False
        self.active_tab = "post"
        self._restore()

    def _restore(self):
        state = self.storage.load()
        if not state:
            return
        for tab, key in _PERSISTED_KEYS.items():
            try:
                self._lists[tab] = [ReplyItem.model_validate(item) for item in state.get(key) or []]
            except ValidationError as e:
                logger.warning(f"ReplyStore: Discarding unreadable {key} - {e}")
                self._lists[tab] = []

    def _persist(self):
        self.storage.save({
            key: [item.model_dump(mode="json", by_alias=True) for item in self._lists[tab]]
            for tab, key in _PERSISTED_KEYS.items()
        })

    @property
    def replies(self) -> list[ReplyItem]:
        return list(self._lists["post"])

    @property
    def story_replies(self) -> list[ReplyItem]:
        return list(self._lists["story"])

    @property
    def live_replies(self) -> list[ReplyItem]:
        return list(self._lists["live"])

    def replies_for(self, tab: str) -> list[ReplyItem]:
        if tab not in TABS:
            raise ValueError(f"Unknown tab: {tab}")
        return list(self._lists[tab])

    def set_replies(self, replies: list[ReplyItem], tab: str = "post"):
        if tab not in TABS:
            raise ValueError(f"Unknown tab: {tab}")
        self._lists[tab] = list(replies)
        self._persist()

    def set_story_replies(self, replies: list[ReplyItem]):
        self.set_replies(replies, "story")

    def set_live_replies(self, replies: list[ReplyItem]):
        self.set_replies(replies, "live")

    def upsert_reply(self, reply: ReplyItem):
        """Insert or replace one reply in the list of its type, newest first"""
        tab = _TAB_BY_TYPE[reply.reply_type]
        others = [item for item in self._lists[tab] if item.id != reply.id]
        self.set_replies([reply] + others, tab)

    def remove_reply(self, reply_id: int):
        for tab in TABS:
            self._lists[tab] = [item for item in self._lists[tab] if item.id != reply_id]
        if self.editing_reply is not None and self.editing_reply.id == reply_id:
            self.editing_reply = None
        self._persist()

    def set_modal_open(self, is_open: bool):
        self.is_modal_open = is_open

    def set_editing_reply(self, reply: Optional[ReplyItem]):
        self.editing_reply = reply

    def set_loading(self, is_loading: bool):
        self.is_loading = is_loading

    def set_active_tab(self, tab: str):
        if tab not in TABS:
            raise ValueError(f"Unknown tab: {tab}")
        self.active_tab = tab

    def clear_all(self):
        """Reset everything except the active tab"""
        self._lists = {tab: [] for tab in TABS}
        self.is_modal_open = False
        self.editing_reply = None
        self.is_loading = False
        self._persist()
