"""
Webhook Reconciliation - applies verified gateway events to enrollments

The gateway does not guarantee delivery order or exactly-once delivery, so
every handler is safe to replay:

- charges are keyed by invoice id (INSERT .. ON CONFLICT DO NOTHING); the
  teacher credit only happens when the charge row was actually inserted
- checkout completion is skipped when the enrollment is already live
  (trialing, active or past_due) on the same subscription
- expiry only moves an enrollment that is still `incomplete`
- subscription updates are last-write-wins snapshots

Handler failures are logged with the event context and swallowed; the
endpoint still acknowledges the delivery.
"""

from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Optional, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.models.billing import Enrollment, EnrollmentCharge, Invoice
from app.models.enums import EnrollmentStatus, InvoiceStatus, NotificationType
from app.schemas.gateway import (
    CheckoutSessionEvent,
    InvoiceEvent,
    InvoiceSnapshot,
    SubscriptionEvent,
    UnhandledEvent,
    WebhookEvent,
)
from app.services.group_service import GroupService
from app.services.ledger import ChargeSplit, TeacherLedger, compute_split
from app.services.notification_service import NotificationService
from app.services.payment_gateway import StripeGateway
from app.services.user_service import UserService
from app.utils.db import insert_if_absent
from app.utils.time import get_utc_now

logger = get_logger(__name__)

Handler = Callable[[WebhookEvent], Awaitable[None]]


class WebhookReconciler:
    """
    Dispatches gateway webhook events to their handlers.

    Args:
        db: Database session; each handler commits once at its end
        gateway: Payment gateway adapter (used to fetch subscription snapshots)
        fee_rate: Platform fee rate applied to every charge
        fallback_days: Billing period length used when the gateway reports
            a zero-length or inverted period
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: StripeGateway,
        fee_rate: Union[float, Decimal],
        fallback_days: int = 30,
    ):
        self.db = db
        self.gateway = gateway
        self.fee_rate = fee_rate
        self.fallback_days = fallback_days
        self.ledger = TeacherLedger(db)
        self.notifications = NotificationService(db)
        self._enrollment_id: Optional[UUID] = None

        self._handlers: Dict[str, Handler] = {
            "checkout.session.completed": self._on_checkout_completed,
            "checkout.session.expired": self._on_checkout_expired,
            "checkout.session.async_payment_failed": self._on_checkout_expired,
            "invoice.payment_succeeded": self._on_invoice_paid,
            "customer.subscription.updated": self._on_subscription_updated,
            "customer.subscription.deleted": self._on_subscription_deleted,
        }

    async def process(self, event: WebhookEvent) -> None:
        """Apply one event. Never raises."""
        handler = None if isinstance(event, UnhandledEvent) else self._handlers.get(event.type)
        if handler is None:
            logger.info(
                f"Ignoring unhandled webhook event {event.type}",
                extra={"event_id": event.id, "event_type": event.type},
            )
            return

        self._enrollment_id = None
        try:
            await handler(event)
        except Exception:
            logger.exception(
                f"Webhook handler failed for {event.type}",
                extra={
                    "event_id": event.id,
                    "event_type": event.type,
                    "enrollment_id": str(self._enrollment_id) if self._enrollment_id else None,
                },
            )
            await self.db.rollback()

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def _lock_enrollment(self, *criteria) -> Optional[Enrollment]:
        result = await self.db.execute(select(Enrollment).where(*criteria).with_for_update())
        enrollment = result.scalar_one_or_none()
        if enrollment is not None:
            self._enrollment_id = enrollment.id
        return enrollment

    async def _by_metadata(self, event: CheckoutSessionEvent) -> Optional[Enrollment]:
        raw_id = event.session.metadata.enrollment_id
        if not raw_id:
            logger.warning(
                f"Checkout session {event.session.id} has no enrollmentId metadata",
                extra={"event_id": event.id, "event_type": event.type},
            )
            return None
        try:
            enrollment_id = UUID(raw_id)
        except ValueError:
            logger.warning(
                f"Checkout session {event.session.id} has malformed enrollmentId {raw_id!r}",
                extra={"event_id": event.id, "event_type": event.type},
            )
            return None

        enrollment = await self._lock_enrollment(Enrollment.id == enrollment_id)
        if enrollment is None:
            logger.warning(
                f"Enrollment {enrollment_id} from checkout session {event.session.id} not found",
                extra={"event_id": event.id, "event_type": event.type},
            )
        return enrollment

    async def _by_subscription(self, subscription_id: Optional[str]) -> Optional[Enrollment]:
        if not subscription_id:
            return None
        return await self._lock_enrollment(Enrollment.subscription_id == subscription_id)

    # -------------------------------------------------------------------------
    # Checkout sessions
    # -------------------------------------------------------------------------

    async def _on_checkout_completed(self, event: CheckoutSessionEvent) -> None:
        session = event.session
        if session.mode != "subscription":
            return

        enrollment = await self._by_metadata(event)
        if enrollment is None:
            return

        if (
            enrollment.is_active_family
            and enrollment.subscription_id == session.subscription_id
        ):
            logger.info(
                "Duplicate checkout completion ignored",
                extra={"event_id": event.id, "enrollment_id": str(enrollment.id)},
            )
            return

        if not session.subscription_id:
            logger.warning(
                f"Checkout session {session.id} completed without a subscription",
                extra={"event_id": event.id, "enrollment_id": str(enrollment.id)},
            )
            return

        snapshot = await self.gateway.retrieve_subscription(
            session.subscription_id, expand=["latest_invoice"]
        )

        enrollment.subscription_id = snapshot.id
        enrollment.mirror_subscription(snapshot, self.fallback_days)
        enrollment.paid_at = get_utc_now()

        customer_id = session.customer_id or snapshot.customer_id
        if customer_id:
            enrollment.customer_id = customer_id
            profile = await UserService.get_or_create_parent_profile(self.db, enrollment.parent_id)
            profile.stripe_customer_id = customer_id
            if snapshot.default_payment_method_id and not profile.default_payment_method_id:
                profile.default_payment_method_id = snapshot.default_payment_method_id

        await GroupService.add_student_to_group(self.db, enrollment.group_id, enrollment.student_id)

        if snapshot.latest_invoice is not None and snapshot.latest_invoice.is_paid:
            await self._post_invoice(enrollment, snapshot.latest_invoice)

        await self.notifications.notify(
            enrollment.parent_id,
            NotificationType.ENROLLMENT,
            "Your subscription is active. Welcome to the group!",
        )
        await self.db.commit()
        logger.info(
            f"Enrollment activated ({enrollment.status.value})",
            extra={"event_id": event.id, "enrollment_id": str(enrollment.id)},
        )

    async def _on_checkout_expired(self, event: CheckoutSessionEvent) -> None:
        enrollment = await self._by_metadata(event)
        if enrollment is None:
            return

        if not enrollment.mark_expired(get_utc_now()):
            logger.info(
                f"Checkout expiry ignored; enrollment is already {enrollment.status.value}",
                extra={"event_id": event.id, "enrollment_id": str(enrollment.id)},
            )
            return

        await self.notifications.notify(
            enrollment.parent_id,
            NotificationType.ENROLLMENT,
            "Your checkout session expired before payment was completed.",
        )
        await self.db.commit()
        logger.info(
            "Enrollment checkout expired",
            extra={"event_id": event.id, "enrollment_id": str(enrollment.id)},
        )

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    async def _on_invoice_paid(self, event: InvoiceEvent) -> None:
        invoice = event.invoice
        # The first period is posted by checkout completion
        if invoice.billing_reason == "subscription_create":
            return
        if not invoice.is_paid or invoice.amount_paid <= 0:
            logger.info(
                f"Skipping invoice {invoice.id} (status={invoice.status}, amount_paid={invoice.amount_paid})",
                extra={"event_id": event.id},
            )
            return

        enrollment = await self._by_subscription(invoice.subscription_id)
        if enrollment is None:
            logger.info(
                f"No enrollment for subscription {invoice.subscription_id}; invoice {invoice.id} skipped",
                extra={"event_id": event.id},
            )
            return

        if not await self._post_invoice(enrollment, invoice):
            return

        enrollment.apply_period(invoice.period_start, invoice.period_end, self.fallback_days)
        enrollment.status = EnrollmentStatus.ACTIVE
        await GroupService.add_student_to_group(self.db, enrollment.group_id, enrollment.student_id)

        await self.db.commit()
        logger.info(
            f"Renewal invoice {invoice.id} posted",
            extra={"event_id": event.id, "enrollment_id": str(enrollment.id)},
        )

    async def _post_invoice(self, enrollment: Enrollment, invoice: InvoiceSnapshot) -> bool:
        """
        Record a paid invoice against an enrollment exactly once.

        Appends the charge, credits the teacher, upserts the invoice record
        and notifies the teacher. Does not commit.

        Returns:
            True if posted, False if the invoice was already posted or has
            nothing to post
        """
        if invoice.amount_paid <= 0:
            return False

        split = compute_split(invoice.amount_paid, self.fee_rate)
        currency = invoice.currency or enrollment.currency
        paid_at = invoice.paid_at or get_utc_now()

        charge_id = await insert_if_absent(
            self.db,
            EnrollmentCharge.__table__,
            values={
                "enrollment_id": enrollment.id,
                "invoice_id": invoice.id,
                "amount": split.amount,
                "currency": currency,
                "teacher_share": split.teacher_share,
                "platform_fee": split.platform_fee,
                "paid_at": paid_at,
            },
            conflict_columns=("invoice_id",),
            returning=EnrollmentCharge.__table__.c.id,
        )
        if charge_id is None:
            logger.info(
                f"Invoice {invoice.id} already posted",
                extra={"enrollment_id": str(enrollment.id)},
            )
            return False

        await self.ledger.credit(enrollment.teacher_id, split.teacher_share)
        await self._upsert_invoice_record(enrollment, invoice, split, currency, paid_at)
        await self.notifications.notify(
            enrollment.teacher_id,
            NotificationType.PAYMENT,
            f"Payment received: {split.teacher_share} {currency.upper()} credited to your earnings.",
        )
        return True

    async def _upsert_invoice_record(
        self,
        enrollment: Enrollment,
        invoice: InvoiceSnapshot,
        split: ChargeSplit,
        currency: str,
        paid_at: datetime,
    ) -> None:
        result = await self.db.execute(select(Invoice).where(Invoice.stripe_invoice_id == invoice.id))
        record = result.scalar_one_or_none()
        if record is None:
            record = Invoice(
                stripe_invoice_id=invoice.id,
                enrollment_id=enrollment.id,
                teacher_id=enrollment.teacher_id,
                parent_id=enrollment.parent_id,
                student_id=enrollment.student_id,
            )
            self.db.add(record)

        record.stripe_subscription_id = invoice.subscription_id or enrollment.subscription_id
        record.amount = split.amount
        record.amount_paid = split.amount
        record.amount_due = (Decimal(invoice.amount_due) / 100).quantize(Decimal("0.01"))
        record.currency = currency
        record.platform_fee = split.platform_fee
        record.teacher_share = split.teacher_share
        record.status = InvoiceStatus.PAID
        record.paid_at = paid_at
        record.period_start = invoice.period_start
        record.period_end = invoice.period_end
        await self.db.flush()

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def _on_subscription_updated(self, event: SubscriptionEvent) -> None:
        enrollment = await self._by_subscription(event.subscription.id)
        if enrollment is None:
            return

        enrollment.mirror_subscription(event.subscription, self.fallback_days)
        await self.db.commit()
        logger.info(
            f"Subscription mirrored ({enrollment.status.value})",
            extra={"event_id": event.id, "enrollment_id": str(enrollment.id)},
        )

    async def _on_subscription_deleted(self, event: SubscriptionEvent) -> None:
        enrollment = await self._by_subscription(event.subscription.id)
        if enrollment is None:
            return

        enrollment.mark_canceled(get_utc_now())
        await self.db.commit()
        logger.info(
            "Subscription canceled",
            extra={"event_id": event.id, "enrollment_id": str(enrollment.id)},
        )
