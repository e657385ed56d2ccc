from sqlalchemy import Column, String, DateTime, Enum
from sqlalchemy.orm import relationship
from dmreply.core.database import Base
from datetime import datetime
import enum


class MembershipType(str, enum.Enum):
    FREE = "FREE"
    TRIAL = "TRIAL"
    PAID = "PAID"


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=True)  # null for OAuth-only accounts
    name = Column(String, nullable=True)
    membership_type = Column(Enum(MembershipType), nullable=False, default=MembershipType.FREE, index=True)
    trial_start_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    subscription = relationship("UserSubscription", back_populates="user", uselist=False)
    ig_accounts = relationship(
        "IGAccount",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="IGAccount.created_at",
    )
