import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from dmreply.core.database import get_db
from dmreply.core.errors import AppError
from dmreply.core.session import SessionUser, require_session
from dmreply.models.reply import MatchType, ReplyType
from dmreply.services.reply_service import DEFAULT_RECENT_LIMIT, MAX_RECENT_LIMIT, ReplyService

router = APIRouter()
logger = logging.getLogger(__name__)

REPLY_TYPE_BY_TAB = {
    "post": ReplyType.POST,
    "story": ReplyType.STORY,
    "live": ReplyType.LIVE,
}


def get_reply_service() -> ReplyService:
    """Dependency to get reply service instance"""
    return ReplyService()


class ButtonInput(BaseModel):
    title: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)


class ReplyCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)  # Allows both post_id and instagramPostId

    keyword: str = Field(..., min_length=1)
    reply: str = Field(..., min_length=1)
    instagram_post_id: str = Field(..., min_length=1, alias="instagramPostId")
    match_type: MatchType = Field(MatchType.PARTIAL, alias="matchType")
    reply_type: ReplyType = Field(ReplyType.POST, alias="replyType")
    comment_reply_enabled: bool = Field(False, alias="commentReplyEnabled")
    buttons: list[ButtonInput] = Field(default_factory=list)


class ReplyUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    keyword: Optional[str] = Field(None, min_length=1)
    reply: Optional[str] = Field(None, min_length=1)
    post_id: Optional[str] = Field(None, alias="postId")
    match_type: Optional[MatchType] = Field(None, alias="matchType")
    comment_reply_enabled: Optional[bool] = Field(None, alias="commentReplyEnabled")
    buttons: Optional[list[ButtonInput]] = None


@router.get("/replies/recent")
def list_recent_replies(
    limit: int = Query(DEFAULT_RECENT_LIMIT, ge=1, le=MAX_RECENT_LIMIT),
    session_user: SessionUser = Depends(require_session),
    db: Session = Depends(get_db),
    reply_service: ReplyService = Depends(get_reply_service),
):
    """Most recent replies of the caller's first Instagram account"""
    try:
        return reply_service.list_recent(db, session_user.id, limit)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"list_recent_replies: Failure - {e}")
        raise AppError("Failed to fetch recent replies", details=str(e))


@router.get("/replies")
def list_replies(
    type: Optional[str] = Query(None, pattern="^(post|story|live)$"),
    session_user: SessionUser = Depends(require_session),
    db: Session = Depends(get_db),
    reply_service: ReplyService = Depends(get_reply_service),
):
    reply_type = REPLY_TYPE_BY_TAB[type] if type else None
    return reply_service.list_replies(db, session_user.id, reply_type)


@router.post("/replies")
def create_reply(
    request: ReplyCreate,
    session_user: SessionUser = Depends(require_session),
    db: Session = Depends(get_db),
    reply_service: ReplyService = Depends(get_reply_service),
):
    return reply_service.create_reply(
        db,
        session_user.id,
        request.keyword,
        request.reply,
        request.instagram_post_id,
        match_type=request.match_type,
        reply_type=request.reply_type,
        comment_reply_enabled=request.comment_reply_enabled,
        buttons=[button.model_dump() for button in request.buttons],
    )


@router.put("/replies/{reply_id}")
def update_reply(
    reply_id: int,
    request: ReplyUpdate,
    session_user: SessionUser = Depends(require_session),
    db: Session = Depends(get_db),
    reply_service: ReplyService = Depends(get_reply_service),
):
    buttons = None
    if request.buttons is not None:
        buttons = [button.model_dump() for button in request.buttons]
    return reply_service.update_reply(
        db,
        reply_id,
        session_user.id,
        keyword=request.keyword,
        reply_text=request.reply,
        post_id=request.post_id,
        match_type=request.match_type,
        comment_reply_enabled=request.comment_reply_enabled,
        buttons=buttons,
    )


@router.delete("/replies/{reply_id}")
def delete_reply(
    reply_id: int,
    session_user: SessionUser = Depends(require_session),
    db: Session = Depends(get_db),
    reply_service: ReplyService = Depends(get_reply_service),
):
    reply_service.delete_reply(db, reply_id, session_user.id)
    return {"message": "Reply deleted successfully"}
