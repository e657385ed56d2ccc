import logging
from typing import Iterable, Optional

from sqlalchemy.orm import Session, selectinload

from dmreply.core.errors import Conflict, Forbidden, NotFound
from dmreply.models.ig_account import IGAccount
from dmreply.models.reply import Button, MatchType, Reply, ReplyType
from dmreply.services.execution_log_service import ExecutionLogService

logger = logging.getLogger(__name__)

DEFAULT_RECENT_LIMIT = 10
MAX_RECENT_LIMIT = 100


def reply_to_dict(reply: Reply) -> dict:
    return {
        "id": reply.id,
        "igAccountId": reply.ig_account_id,
        "keyword": reply.keyword,
        "reply": reply.reply,
        "postId": reply.post_id,
        "replyType": reply.reply_type.value,
        "matchType": reply.match_type.value,
        "commentReplyEnabled": reply.comment_reply_enabled,
        "buttons": [
            {"id": button.id, "title": button.title, "url": button.url, "order": button.order}
            for button in reply.buttons
        ],
        "createdAt": reply.created_at.isoformat() if reply.created_at else None,
        "updatedAt": reply.updated_at.isoformat() if reply.updated_at else None,
    }


def keyword_matches(reply: Reply, text: str) -> bool:
    """EXACT compares the whole comment, PARTIAL looks for the keyword inside it"""
    if reply.match_type == MatchType.EXACT:
        return text == reply.keyword
    return reply.keyword in text


def find_matching_reply(replies: Iterable[Reply], text: str) -> Optional[Reply]:
    """First match wins; pass replies newest first"""
    for reply in replies:
        if keyword_matches(reply, text):
            return reply
    return None


class ReplyService:
    def __init__(self):
        self.execution_log = ExecutionLogService()
        self.logger = logging.getLogger(__name__)

    def first_account(self, db: Session, user_id: str) -> Optional[IGAccount]:
        """Replies are scoped to the user's first connected account"""
        return db.query(IGAccount).filter(
            IGAccount.user_id == user_id
        ).order_by(IGAccount.created_at.asc(), IGAccount.id.asc()).first()

    def _newest_first(self, db: Session, ig_account_id: str):
        return db.query(Reply).options(selectinload(Reply.buttons)).filter(
            Reply.ig_account_id == ig_account_id
        ).order_by(Reply.created_at.desc(), Reply.id.desc())

    def list_recent(self, db: Session, user_id: str, limit: int = DEFAULT_RECENT_LIMIT) -> list[dict]:
        """At most ``limit`` replies of the first account, newest first"""
        self.logger.info(f"list_recent: Entry - user: {user_id}, limit: {limit}")
        account = self.first_account(db, user_id)
        if account is None:
            self.logger.info(f"list_recent: Success - user: {user_id}, no account")
            return []

        replies = self._newest_first(db, account.id).limit(limit).all()
        self.logger.info(f"list_recent: Success - user: {user_id}, count: {len(replies)}")
        return [reply_to_dict(reply) for reply in replies]

    def list_replies(self, db: Session, user_id: str, reply_type: Optional[ReplyType] = None) -> list[dict]:
        self.logger.info(f"list_replies: Entry - user: {user_id}, type: {reply_type}")
        account = self.first_account(db, user_id)
        if account is None:
            return []
        query = self._newest_first(db, account.id)
        if reply_type is not None:
            query = query.filter(Reply.reply_type == reply_type)
        replies = query.all()
        self.logger.info(f"list_replies: Success - user: {user_id}, count: {len(replies)}")
        return [reply_to_dict(reply) for reply in replies]

    def replies_for_account(self, db: Session, ig_account_id: str) -> list[Reply]:
        return self._newest_first(db, ig_account_id).all()

    def _owned_reply(self, db: Session, reply_id: int, user_id: str) -> Reply:
        reply = db.query(Reply).filter(Reply.id == reply_id).first()
        if reply is None:
            raise NotFound("Reply not found")
        if reply.ig_account is None or reply.ig_account.user_id != user_id:
            raise Forbidden()
        return reply

    def _check_duplicate(self, db: Session, ig_account_id: str, keyword: str, post_id: Optional[str],
                         exclude_id: Optional[int] = None):
        query = db.query(Reply).filter(
            Reply.ig_account_id == ig_account_id,
            Reply.keyword == keyword,
            Reply.post_id == post_id,
        )
        if exclude_id is not None:
            query = query.filter(Reply.id != exclude_id)
        existing = query.first()
        if existing is not None:
            raise Conflict(
                "Duplicate reply",
                details="A reply with the same keyword and post id already exists",
            )

    def _replace_buttons(self, reply: Reply, buttons: list[dict]):
        reply.buttons.clear()
        for index, button in enumerate(buttons):
            reply.buttons.append(Button(title=button["title"], url=button["url"], order=index))

    def create_reply(
        self,
        db: Session,
        user_id: str,
        keyword: str,
        reply_text: str,
        post_id: str,
        match_type: MatchType = MatchType.PARTIAL,
        reply_type: ReplyType = ReplyType.POST,
        comment_reply_enabled: bool = False,
        buttons: Optional[list[dict]] = None,
    ) -> dict:
        """Create a reply on the user's first account"""
        self.logger.info(f"create_reply: Entry - user: {user_id}, keyword: {keyword}")
        account = self.first_account(db, user_id)
        if account is None:
            raise NotFound("Instagram account not found")

        try:
            reply = Reply(
                ig_account_id=account.id,
                keyword=keyword,
                reply=reply_text,
                post_id=post_id,
                match_type=match_type,
                reply_type=reply_type,
                comment_reply_enabled=comment_reply_enabled,
            )
            self._replace_buttons(reply, buttons or [])
            db.add(reply)
            db.commit()
            db.refresh(reply)
        except Exception as e:
            db.rollback()
            self.logger.error(f"create_reply: Failure - {e}")
            self.execution_log.log(db, f"Reply create error: {e}")
            raise

        self.logger.info(f"create_reply: Success - reply: {reply.id}")
        return reply_to_dict(reply)

    def update_reply(
        self,
        db: Session,
        reply_id: int,
        user_id: str,
        keyword: Optional[str] = None,
        reply_text: Optional[str] = None,
        post_id: Optional[str] = None,
        match_type: Optional[MatchType] = None,
        comment_reply_enabled: Optional[bool] = None,
        buttons: Optional[list[dict]] = None,
    ) -> dict:
        """Update an owned reply; buttons, when given, replace the existing ones"""
        self.logger.info(f"update_reply: Entry - user: {user_id}, reply: {reply_id}")
        reply = self._owned_reply(db, reply_id, user_id)

        new_keyword = keyword if keyword is not None else reply.keyword
        new_post_id = post_id if post_id is not None else reply.post_id
        if new_keyword != reply.keyword or new_post_id != reply.post_id:
            self._check_duplicate(db, reply.ig_account_id, new_keyword, new_post_id, exclude_id=reply.id)

        try:
            reply.keyword = new_keyword
            reply.post_id = new_post_id
            if reply_text is not None:
                reply.reply = reply_text
            if match_type is not None:
                reply.match_type = match_type
            if comment_reply_enabled is not None:
                reply.comment_reply_enabled = comment_reply_enabled
            if buttons is not None:
                self._replace_buttons(reply, buttons)
            db.commit()
            db.refresh(reply)
        except Exception as e:
            db.rollback()
            self.logger.error(f"update_reply: Failure - {e}")
            self.execution_log.log(db, f"Reply update error: {e}")
            raise

        self.logger.info(f"update_reply: Success - reply: {reply_id}")
        return reply_to_dict(reply)

    def delete_reply(self, db: Session, reply_id: int, user_id: str):
        self.logger.info(f"delete_reply: Entry - user: {user_id}, reply: {reply_id}")
        reply = self._owned_reply(db, reply_id, user_id)
        try:
            db.delete(reply)
            db.commit()
        except Exception as e:
            db.rollback()
            self.logger.error(f"delete_reply: Failure - {e}")
            raise
        self.logger.info(f"delete_reply: Success - reply: {reply_id}")
