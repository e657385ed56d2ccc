from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Text, Boolean, Enum
from sqlalchemy.orm import relationship
from dmreply.core.database import Base
from datetime import datetime
import enum


class MatchType(str, enum.Enum):
    EXACT = "EXACT"
    PARTIAL = "PARTIAL"


class ReplyType(str, enum.Enum):
    POST = "POST"
    STORY = "STORY"
    LIVE = "LIVE"


class Reply(Base):
    __tablename__ = "replies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ig_account_id = Column(String, ForeignKey("ig_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    keyword = Column(String, nullable=False)
    reply = Column(Text, nullable=False)
    post_id = Column(String, nullable=True, index=True)
    reply_type = Column(Enum(ReplyType), nullable=False, default=ReplyType.POST)
    match_type = Column(Enum(MatchType), nullable=False, default=MatchType.PARTIAL)
    comment_reply_enabled = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    ig_account = relationship("IGAccount", back_populates="replies")
    buttons = relationship(
        "Button",
        back_populates="reply",
        cascade="all, delete-orphan",
        order_by="Button.order",
    )


class Button(Base):
    __tablename__ = "buttons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reply_id = Column(Integer, ForeignKey("replies.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    url = Column(Text, nullable=False)
    order = Column(Integer, nullable=False, default=0)

    # Relationships
    reply = relationship("Reply", back_populates="buttons")
