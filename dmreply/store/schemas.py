from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from dmreply.models.reply import MatchType, ReplyType


class ButtonItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[int] = None
    title: str
    url: str
    order: int = 0


class ReplyItem(BaseModel):
    """A reply as the API returns it"""
    model_config = ConfigDict(populate_by_name=True)

    id: int
    ig_account_id: Optional[str] = Field(None, alias="igAccountId")
    keyword: str
    reply: str
    post_id: Optional[str] = Field(None, alias="postId")
    reply_type: ReplyType = Field(ReplyType.POST, alias="replyType")
    match_type: MatchType = Field(MatchType.PARTIAL, alias="matchType")
    comment_reply_enabled: bool = Field(False, alias="commentReplyEnabled")
    buttons: list[ButtonItem] = Field(default_factory=list)
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")
