from sqlalchemy import Column, String, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from dmreply.core.database import Base
from datetime import datetime
import enum


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    CANCELING = "CANCELING"  # cancel_at_period_end requested
    CANCELED = "CANCELED"  # terminal
    PAST_DUE = "PAST_DUE"
    INCOMPLETE = "INCOMPLETE"
    TRIALING = "TRIALING"
    UNPAID = "UNPAID"


class UserSubscription(Base):
    __tablename__ = "user_subscriptions"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, unique=True, index=True)
    stripe_subscription_id = Column(String, nullable=True, unique=True, index=True)
    stripe_customer_id = Column(String, nullable=True)
    stripe_price_id = Column(String, nullable=True)
    status = Column(Enum(SubscriptionStatus), nullable=False, default=SubscriptionStatus.ACTIVE, index=True)
    stripe_current_period_end = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="subscription")
