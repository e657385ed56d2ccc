"""
Typed Stripe webhook events.

``parse_event`` maps a verified Stripe event onto a closed union. Event types
with no handler become ``UnhandledEvent`` and are acknowledged without
processing. Adding a member to ``WebhookEvent`` without a branch in
``SubscriptionService.handle_event`` fails type checking at its
``assert_never``.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field

from dmreply.core.errors import ValidationFailure
from dmreply.models.subscription import SubscriptionStatus

STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.UNPAID,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "canceled": SubscriptionStatus.CANCELED,
}


def from_unix(timestamp: Optional[int]) -> Optional[datetime]:
    """Stripe timestamps are UTC epoch seconds; stored as naive UTC"""
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).replace(tzinfo=None)


class SubscriptionPayload(BaseModel):
    id: str
    customer: Optional[str] = None
    status: str
    cancel_at_period_end: bool = False
    current_period_end: Optional[int] = None
    price_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_stripe(cls, obj: Mapping[str, Any]) -> "SubscriptionPayload":
        items = (obj.get("items") or {}).get("data") or []
        first_item = items[0] if items else {}
        # Newer API versions moved the billing period onto subscription items
        period_end = obj.get("current_period_end") or first_item.get("current_period_end")
        customer = obj.get("customer")
        if isinstance(customer, Mapping):
            customer = customer.get("id")
        return cls(
            id=obj["id"],
            customer=customer,
            status=obj.get("status") or "active",
            cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
            current_period_end=period_end,
            price_id=(first_item.get("price") or {}).get("id"),
            metadata=dict(obj.get("metadata") or {}),
        )

    @property
    def period_end(self) -> Optional[datetime]:
        return from_unix(self.current_period_end)

    def local_status(self) -> Optional[SubscriptionStatus]:
        """Local status for this Stripe state, None if the state is not tracked"""
        mapped = STRIPE_STATUS_MAP.get(self.status)
        if mapped == SubscriptionStatus.ACTIVE and self.cancel_at_period_end:
            return SubscriptionStatus.CANCELING
        return mapped


class SubscriptionCreated(BaseModel):
    kind: Literal["customer.subscription.created"] = "customer.subscription.created"
    event_id: str
    subscription: SubscriptionPayload


class SubscriptionUpdated(BaseModel):
    kind: Literal["customer.subscription.updated"] = "customer.subscription.updated"
    event_id: str
    subscription: SubscriptionPayload


class SubscriptionDeleted(BaseModel):
    kind: Literal["customer.subscription.deleted"] = "customer.subscription.deleted"
    event_id: str
    subscription: SubscriptionPayload


class InvoicePaymentSucceeded(BaseModel):
    kind: Literal["invoice.payment_succeeded"] = "invoice.payment_succeeded"
    event_id: str
    invoice_id: str
    subscription_id: Optional[str] = None


class InvoicePaymentFailed(BaseModel):
    kind: Literal["invoice.payment_failed"] = "invoice.payment_failed"
    event_id: str
    invoice_id: str
    subscription_id: Optional[str] = None
    amount_due: Optional[int] = None


class UnhandledEvent(BaseModel):
    kind: str
    event_id: str


WebhookEvent = Union[
    SubscriptionCreated,
    SubscriptionUpdated,
    SubscriptionDeleted,
    InvoicePaymentSucceeded,
    InvoicePaymentFailed,
    UnhandledEvent,
]


def _invoice_subscription_id(invoice: Mapping[str, Any]) -> Optional[str]:
    subscription = invoice.get("subscription")
    if subscription is None:
        details = ((invoice.get("parent") or {}).get("subscription_details") or {})
        subscription = details.get("subscription")
    if isinstance(subscription, Mapping):
        subscription = subscription.get("id")
    return subscription


def parse_event(raw: Mapping[str, Any]) -> WebhookEvent:
    """Build the typed event for a verified Stripe event body"""
    try:
        event_type = raw["type"]
        event_id = raw.get("id", "")
        obj = raw["data"]["object"]
    except (KeyError, TypeError):
        raise ValidationFailure("Malformed webhook event")

    try:
        if event_type == "customer.subscription.created":
            return SubscriptionCreated(event_id=event_id, subscription=SubscriptionPayload.from_stripe(obj))
        if event_type == "customer.subscription.updated":
            return SubscriptionUpdated(event_id=event_id, subscription=SubscriptionPayload.from_stripe(obj))
        if event_type == "customer.subscription.deleted":
            return SubscriptionDeleted(event_id=event_id, subscription=SubscriptionPayload.from_stripe(obj))
        if event_type == "invoice.payment_succeeded":
            return InvoicePaymentSucceeded(
                event_id=event_id,
                invoice_id=obj["id"],
                subscription_id=_invoice_subscription_id(obj),
            )
        if event_type == "invoice.payment_failed":
            return InvoicePaymentFailed(
                event_id=event_id,
                invoice_id=obj["id"],
                subscription_id=_invoice_subscription_id(obj),
                amount_due=obj.get("amount_due"),
            )
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationFailure("Malformed webhook event", details=str(e))

    return UnhandledEvent(kind=event_type, event_id=event_id)
