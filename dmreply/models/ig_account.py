from sqlalchemy import Column, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from dmreply.core.database import Base
from datetime import datetime


class IGAccount(Base):
    __tablename__ = "ig_accounts"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    instagram_id = Column(String, nullable=True, index=True)
    username = Column(String, nullable=True)
    access_token_encrypted = Column(Text, nullable=True)
    profile_picture_url = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="ig_accounts")
    replies = relationship("Reply", back_populates="ig_account", cascade="all, delete-orphan")
