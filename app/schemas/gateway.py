"""
Typed views of payment gateway (Stripe) objects and webhook events.

Stripe payloads drift between API versions, so each snapshot normalises the
shapes we have seen before validation:

- subscription periods live on the subscription or on `items.data[0]`
- an invoice's subscription id lives on `subscription` or on
  `parent.subscription_details.subscription`
- the invoice billing period comes from `lines.data[0].period`
- unexpanded references (e.g. `latest_invoice` as a bare id) become None

Unix timestamps are converted to naive UTC datetimes.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from app.models.enums import EnrollmentStatus
from app.utils.time import from_unix


def _first(items: Any) -> dict:
    """First element of a Stripe list object ({"data": [...]}) or {}."""
    if isinstance(items, dict):
        data = items.get("data") or []
        if data and isinstance(data[0], dict):
            return data[0]
    return {}


def _expanded_id(value: Any) -> Optional[str]:
    """Id of a reference that may be a bare id or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _timestamp(value: Any) -> Any:
    """Unix seconds to datetime; anything else (datetime, None) passes through."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return from_unix(value)
    return value


class GatewayObject(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CheckoutMetadata(GatewayObject):
    """Correlation ids stamped on a checkout session by the enrollment service."""
    enrollment_id: Optional[str] = Field(None, alias="enrollmentId")
    group_id: Optional[str] = Field(None, alias="groupId")
    student_id: Optional[str] = Field(None, alias="studentId")
    teacher_id: Optional[str] = Field(None, alias="teacherId")
    parent_id: Optional[str] = Field(None, alias="parentId")
    course_id: Optional[str] = Field(None, alias="courseId")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    def to_gateway(self) -> dict:
        """Metadata dict in the camelCase keys sent to the gateway."""
        return {k: v for k, v in self.model_dump(by_alias=True).items() if v is not None}


class InvoiceSnapshot(GatewayObject):
    id: str
    status: Optional[str] = None
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    billing_reason: Optional[str] = None
    amount_paid: int = 0
    amount_due: int = 0
    currency: Optional[str] = None
    paid_at: Optional[datetime] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def normalise(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        parent_details = (data.get("parent") or {}).get("subscription_details") or {}
        period = _first(data.get("lines")).get("period") or {}
        transitions = data.get("status_transitions") or {}
        return {
            **data,
            "subscription_id": (
                data.get("subscription_id")
                or _expanded_id(data.get("subscription"))
                or _expanded_id(parent_details.get("subscription"))
            ),
            "customer_id": data.get("customer_id") or _expanded_id(data.get("customer")),
            "amount_paid": data.get("amount_paid") or 0,
            "amount_due": data.get("amount_due") or 0,
            "paid_at": _timestamp(data.get("paid_at") or transitions.get("paid_at")),
            "period_start": _timestamp(data.get("period_start") or period.get("start")),
            "period_end": _timestamp(data.get("period_end") or period.get("end")),
        }

    @property
    def is_paid(self) -> bool:
        return self.status == "paid"


class SubscriptionSnapshot(GatewayObject):
    id: str
    status: EnrollmentStatus
    customer_id: Optional[str] = None
    default_payment_method_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    latest_invoice: Optional[InvoiceSnapshot] = None

    @model_validator(mode="before")
    @classmethod
    def normalise(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        item = _first(data.get("items"))
        latest_invoice = data.get("latest_invoice")
        if not isinstance(latest_invoice, (dict, InvoiceSnapshot)):
            latest_invoice = None
        return {
            **data,
            "customer_id": data.get("customer_id") or _expanded_id(data.get("customer")),
            "default_payment_method_id": (
                data.get("default_payment_method_id")
                or _expanded_id(data.get("default_payment_method"))
                or _expanded_id(data.get("default_source"))
            ),
            "current_period_start": _timestamp(
                data.get("current_period_start") or item.get("current_period_start")
            ),
            "current_period_end": _timestamp(
                data.get("current_period_end") or item.get("current_period_end")
            ),
            "cancel_at_period_end": bool(data.get("cancel_at_period_end")),
            "canceled_at": _timestamp(data.get("canceled_at")),
            "latest_invoice": latest_invoice,
        }


class CheckoutSessionSnapshot(GatewayObject):
    id: str
    mode: Optional[str] = None
    status: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    url: Optional[str] = None
    metadata: CheckoutMetadata = Field(default_factory=CheckoutMetadata)

    @model_validator(mode="before")
    @classmethod
    def normalise(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        return {
            **data,
            "customer_id": data.get("customer_id") or _expanded_id(data.get("customer")),
            "subscription_id": data.get("subscription_id") or _expanded_id(data.get("subscription")),
            "metadata": data.get("metadata") or {},
        }


class CheckoutSessionResult(BaseModel):
    session_id: str
    url: str


# --- Webhook events ---------------------------------------------------------

class GatewayEvent(GatewayObject):
    """Common envelope of every webhook event."""
    id: str
    type: str
    created: Optional[int] = None
    livemode: bool = False

    @staticmethod
    def _data_object(data: Any) -> dict:
        return ((data.get("data") or {}).get("object")) or {}


class CheckoutSessionEvent(GatewayEvent):
    type: Literal[
        "checkout.session.completed",
        "checkout.session.expired",
        "checkout.session.async_payment_failed",
    ]
    session: CheckoutSessionSnapshot

    @model_validator(mode="before")
    @classmethod
    def unwrap(cls, data: Any) -> Any:
        if isinstance(data, dict) and "session" not in data:
            return {**data, "session": cls._data_object(data)}
        return data


class InvoiceEvent(GatewayEvent):
    type: Literal["invoice.payment_succeeded"]
    invoice: InvoiceSnapshot

    @model_validator(mode="before")
    @classmethod
    def unwrap(cls, data: Any) -> Any:
        if isinstance(data, dict) and "invoice" not in data:
            return {**data, "invoice": cls._data_object(data)}
        return data


class SubscriptionEvent(GatewayEvent):
    type: Literal[
        "customer.subscription.updated",
        "customer.subscription.deleted",
    ]
    subscription: SubscriptionSnapshot

    @model_validator(mode="before")
    @classmethod
    def unwrap(cls, data: Any) -> Any:
        if isinstance(data, dict) and "subscription" not in data:
            return {**data, "subscription": cls._data_object(data)}
        return data


class UnhandledEvent(GatewayEvent):
    """Any event type the reconciler does not act on."""


KnownEvent = Annotated[
    Union[CheckoutSessionEvent, InvoiceEvent, SubscriptionEvent],
    Field(discriminator="type"),
]

WebhookEvent = Union[CheckoutSessionEvent, InvoiceEvent, SubscriptionEvent, UnhandledEvent]

HANDLED_EVENT_TYPES = frozenset({
    "checkout.session.completed",
    "checkout.session.expired",
    "checkout.session.async_payment_failed",
    "invoice.payment_succeeded",
    "customer.subscription.updated",
    "customer.subscription.deleted",
})

_known_event_adapter = TypeAdapter(KnownEvent)


def parse_event(payload: dict) -> WebhookEvent:
    """
    Parse a decoded webhook payload into the closed event union.

    Raises:
        pydantic.ValidationError: if a handled event type has a malformed body
    """
    if payload.get("type") in HANDLED_EVENT_TYPES:
        return _known_event_adapter.validate_python(payload)
    return UnhandledEvent.model_validate(payload)
