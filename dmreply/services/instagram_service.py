import logging
from typing import Any, Optional

import httpx
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from dmreply.core.config import settings
from dmreply.core.errors import UpstreamFailure, ValidationFailure
from dmreply.core.security import decrypt_access_token
from dmreply.models.ig_account import IGAccount
from dmreply.models.reply import Reply
from dmreply.services.execution_log_service import ExecutionLogService
from dmreply.services.reply_service import ReplyService, find_matching_reply

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"


def build_button_message(recipient_id: str, reply: Reply) -> dict:
    """Button-template DM body; a reply without buttons is sent as plain text"""
    if not reply.buttons:
        return {"recipient": {"id": recipient_id}, "message": {"text": reply.reply}}

    return {
        "recipient": {"id": recipient_id},
        "message": {
            "attachment": {
                "type": "template",
                "payload": {
                    "template_type": "button",
                    "text": reply.reply,
                    "buttons": [
                        {"type": "web_url", "url": button.url, "title": button.title}
                        for button in reply.buttons
                    ],
                },
            }
        },
    }


class InstagramService:
    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport
        self.replies = ReplyService()
        self.execution_log = ExecutionLogService()
        self.logger = logging.getLogger(__name__)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"{GRAPH_API_BASE}/{settings.graph_api_version}",
            timeout=settings.graph_api_timeout_seconds,
            follow_redirects=False,
            transport=self.transport,
        )

    def verify_subscription(self, mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
        """Meta webhook handshake; returns the challenge to echo, None to refuse"""
        if (
            mode == "subscribe"
            and settings.instagram_verify_token
            and token == settings.instagram_verify_token
        ):
            self.logger.info("verify_subscription: Success")
            return challenge or ""
        self.logger.warning(f"verify_subscription: Rejected - mode: {mode}")
        return None

    def connection_status(self, db: Session, user_id: str) -> dict:
        account = db.query(IGAccount).filter(
            IGAccount.user_id == user_id,
            IGAccount.access_token_encrypted.isnot(None),
        ).order_by(IGAccount.created_at.asc()).first()

        if account is None:
            return {"instagram": {"connected": False, "name": None, "id": None, "profile_picture_url": None}}

        return {
            "instagram": {
                "connected": True,
                "name": account.username,
                "id": account.instagram_id,
                "profile_picture_url": account.profile_picture_url,
            }
        }

    async def get_page_id(self, access_token: str) -> str:
        """First Facebook page the token can manage"""
        try:
            async with self._client() as client:
                response = await client.get(
                    "/me/accounts",
                    params={"fields": "id", "access_token": access_token},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            self.logger.error(f"get_page_id: Failure - timeout - {e}")
            raise UpstreamFailure("Failed to fetch page id", details="Graph API timed out")
        except httpx.HTTPError as e:
            self.logger.error(f"get_page_id: Failure - {e}")
            raise UpstreamFailure("Failed to fetch page id", details=str(e))

        pages = data.get("data") or []
        page_id = pages[0].get("id") if pages else data.get("id")
        if not page_id:
            raise UpstreamFailure("Failed to fetch page id", details="No page linked to the access token")
        return page_id

    async def send_direct_message(self, page_id: str, access_token: str, message: dict) -> dict:
        self.logger.info(f"send_direct_message: Entry - page: {page_id}")
        try:
            async with self._client() as client:
                response = await client.post(
                    f"/{page_id}/messages",
                    params={"access_token": access_token},
                    json=message,
                )
                response.raise_for_status()
                result = response.json()
        except httpx.TimeoutException as e:
            self.logger.error(f"send_direct_message: Failure - timeout - {e}")
            raise UpstreamFailure("Failed to send message", details="Graph API timed out")
        except httpx.HTTPStatusError as e:
            self.logger.error(f"send_direct_message: Failure - HTTP {e.response.status_code}")
            raise UpstreamFailure("Failed to send message", details=e.response.text)
        except httpx.HTTPError as e:
            self.logger.error(f"send_direct_message: Failure - {e}")
            raise UpstreamFailure("Failed to send message", details=str(e))

        self.logger.info(f"send_direct_message: Success - page: {page_id}")
        return result

    async def handle_comment_webhook(self, db: Session, payload: Any) -> dict:
        """
        Reply by DM to a comment that matches one of the account's keywords.

        The comment's ``entry[0].id`` identifies the connected account, the
        commenter is ``from.id``. Replies are tried newest first.
        """
        try:
            entry = payload["entry"][0]
            value = entry["changes"][0]["value"]
            commenter_id = value["from"]["id"]
            text = value.get("text") or ""
        except (KeyError, IndexError, TypeError):
            self.logger.warning("handle_comment_webhook: Invalid webhook data format")
            raise ValidationFailure("Invalid webhook data format")

        self.logger.info(f"handle_comment_webhook: Entry - account: {entry.get('id')}")
        planned = await run_in_threadpool(self._plan_reply, db, str(entry.get("id")), commenter_id, text)
        if planned is None:
            return {"matched": False}

        reply_id, access_token, message = planned
        page_id = await self.get_page_id(access_token)
        await self.send_direct_message(page_id, access_token, message)

        await run_in_threadpool(
            self.execution_log.log, db, f"Auto-reply sent: reply={reply_id}, recipient={commenter_id}"
        )
        self.logger.info(f"handle_comment_webhook: Success - reply: {reply_id}")
        return {"matched": True, "replyId": reply_id}

    def _plan_reply(self, db: Session, instagram_id: str, commenter_id: str, text: str) -> Optional[tuple]:
        """Database half of the webhook: (reply id, access token, DM body), or None when nothing matches"""
        account = db.query(IGAccount).filter(IGAccount.instagram_id == instagram_id).first()
        if account is None:
            self.logger.info(f"handle_comment_webhook: No connected account - {instagram_id}")
            return None

        reply = find_matching_reply(self.replies.replies_for_account(db, account.id), text)
        if reply is None:
            self.logger.info("handle_comment_webhook: No matching reply")
            return None

        if not account.access_token_encrypted:
            self.execution_log.log(db, f"Auto-reply skipped, no access token for account {account.id}")
            raise UpstreamFailure("Access token not found")

        access_token = decrypt_access_token(account.access_token_encrypted)
        return reply.id, access_token, build_button_message(commenter_id, reply)
