"""
Typed billing webhook events.

Raw provider payloads are parsed once at the boundary into a closed set of
variants. Types the portal does not act on become UnknownEvent, which the
gateway accepts and ignores.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError


def _from_unix(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _expandable_id(value: Any) -> Optional[str]:
    """Provider references are either an id string or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("id")
    return None


class SubscriptionItemPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None


class SubscriptionItemsPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: List[SubscriptionItemPayload] = Field(default_factory=list)


class SubscriptionPayload(BaseModel):
    """The subscription object as sent in webhooks and API reads."""
    model_config = ConfigDict(extra="ignore")

    id: str
    customer: Optional[Any] = None
    status: str = "incomplete"
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[int] = None
    items: Optional[SubscriptionItemsPayload] = None

    @property
    def customer_id(self) -> Optional[str]:
        return _expandable_id(self.customer)

    def period_bounds(self, now: datetime) -> tuple:
        """
        Return (current_period_start, current_period_end).

        Newer API versions only carry the period on subscription items, so
        the first item is consulted when the top-level fields are missing.
        Anything still missing defaults to now.
        """
        start = self.current_period_start
        end = self.current_period_end
        first_item = self.items.data[0] if self.items and self.items.data else None
        if first_item is not None:
            start = start if start is not None else first_item.current_period_start
            end = end if end is not None else first_item.current_period_end
        return (_from_unix(start) or now, _from_unix(end) or now)

    @property
    def canceled_at_datetime(self) -> Optional[datetime]:
        return _from_unix(self.canceled_at)


class CheckoutSessionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    customer: Optional[Any] = None
    subscription: Optional[Any] = None
    customer_email: Optional[str] = None
    customer_details: Optional[Dict[str, Any]] = None

    @property
    def email(self) -> Optional[str]:
        if self.customer_email:
            return self.customer_email
        if self.customer_details:
            return self.customer_details.get("email")
        return None


class InvoicePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    customer: Optional[Any] = None
    subscription: Optional[Any] = None
    parent: Optional[Dict[str, Any]] = None

    @property
    def subscription_id(self) -> Optional[str]:
        direct = _expandable_id(self.subscription)
        if direct:
            return direct
        # newer API versions nest the reference under parent.subscription_details
        details = (self.parent or {}).get("subscription_details") or {}
        return _expandable_id(details.get("subscription"))


class _EventBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_id: str
    event_type: str


class CheckoutCompleted(_EventBase):
    kind: Literal["checkout_completed"] = "checkout_completed"
    session: CheckoutSessionPayload

    @property
    def customer_id(self) -> Optional[str]:
        return _expandable_id(self.session.customer)

    @property
    def subscription_id(self) -> Optional[str]:
        return _expandable_id(self.session.subscription)


class InvoicePaid(_EventBase):
    kind: Literal["invoice_paid"] = "invoice_paid"
    invoice: InvoicePayload

    @property
    def customer_id(self) -> Optional[str]:
        return _expandable_id(self.invoice.customer)


class SubscriptionUpdated(_EventBase):
    kind: Literal["subscription_updated"] = "subscription_updated"
    subscription: SubscriptionPayload


class SubscriptionDeleted(_EventBase):
    kind: Literal["subscription_deleted"] = "subscription_deleted"
    subscription: SubscriptionPayload


class UnknownEvent(_EventBase):
    kind: Literal["unknown"] = "unknown"


BillingEvent = Union[
    CheckoutCompleted,
    InvoicePaid,
    SubscriptionUpdated,
    SubscriptionDeleted,
    UnknownEvent,
]


class EventParseError(Exception):
    """Payload is not a well-formed provider event."""
    pass


# Provider event type -> (variant, field name of the data object)
EVENT_TYPES = {
    "checkout.session.completed": (CheckoutCompleted, "session"),
    "invoice.paid": (InvoicePaid, "invoice"),
    "invoice.payment_succeeded": (InvoicePaid, "invoice"),
    "customer.subscription.created": (SubscriptionUpdated, "subscription"),
    "customer.subscription.updated": (SubscriptionUpdated, "subscription"),
    "customer.subscription.deleted": (SubscriptionDeleted, "subscription"),
}


def parse_event(payload: Dict[str, Any]) -> BillingEvent:
    """
    Parse a verified webhook body into a typed event.

    Raises:
        EventParseError: If the envelope lacks an id/type or a known
            event's data object is malformed
    """
    if not isinstance(payload, dict):
        raise EventParseError("Event payload must be an object")

    event_id = payload.get("id")
    event_type = payload.get("type")
    if not event_id or not event_type:
        raise EventParseError("Event is missing id or type")

    mapping = EVENT_TYPES.get(event_type)
    if mapping is None:
        return UnknownEvent(event_id=event_id, event_type=event_type)

    variant, field_name = mapping
    data_object = (payload.get("data") or {}).get("object")
    try:
        return variant(**{
            "event_id": event_id,
            "event_type": event_type,
            field_name: data_object,
        })
    except PydanticValidationError as e:
        raise EventParseError(f"Malformed {event_type} payload: {e.error_count()} error(s)")
