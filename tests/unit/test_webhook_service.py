"""Unit tests for WebhookReconciler: idempotence, ordering races and fault isolation."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.models.academic import Group, group_students
from app.models.billing import Enrollment, EnrollmentCharge, Invoice
from app.models.communication import Notification
from app.models.enums import EnrollmentStatus, GroupStatus, InvoiceStatus, NotificationType
from app.models.user import ParentProfile, TeacherProfile
from app.schemas.gateway import UnhandledEvent, parse_event
from app.services.webhook_service import WebhookReconciler

JAN_1 = 1767225600
FEB_1 = 1769904000
MAR_1 = 1772323200


@pytest.fixture
def reconciler(db, gateway):
    return WebhookReconciler(db, gateway, fee_rate=0.10, fallback_days=30)


def make_event(event_type, obj, event_id="evt_1"):
    return parse_event({
        "id": event_id,
        "type": event_type,
        "created": JAN_1,
        "livemode": False,
        "data": {"object": obj},
    })


def checkout_event(enrollment_id, event_type="checkout.session.completed", subscription="sub_1", mode="subscription"):
    return make_event(event_type, {
        "id": "cs_test_1",
        "object": "checkout.session",
        "mode": mode,
        "customer": "cus_test",
        "subscription": subscription,
        "metadata": {"enrollmentId": str(enrollment_id) if enrollment_id else None},
    })


def paid_invoice(invoice_id="in_1", amount=10000, billing_reason="subscription_cycle",
                 subscription="sub_1", period=(FEB_1, MAR_1), status="paid"):
    return {
        "id": invoice_id,
        "object": "invoice",
        "status": status,
        "billing_reason": billing_reason,
        "amount_paid": amount,
        "amount_due": amount,
        "currency": "usd",
        "customer": "cus_test",
        "parent": {"subscription_details": {"subscription": subscription}},
        "status_transitions": {"paid_at": period[0]},
        "lines": {"data": [{"period": {"start": period[0], "end": period[1]}}]},
    }


async def count(db, model, *criteria):
    return await db.scalar(select(func.count()).select_from(model).where(*criteria))


async def teacher_earnings(db, teacher_id):
    return await db.scalar(select(TeacherProfile.total_earnings).where(TeacherProfile.user_id == teacher_id))


async def students_count(db, group_id):
    return await db.scalar(select(Group.students_count).where(Group.id == group_id))


# --- checkout.session.completed ---


async def test_checkout_completed_activates_and_posts_first_invoice(db, reconciler, gateway, catalog, make_enrollment):
    enrollment = await make_enrollment(checkout_session_id="cs_test_1")
    gateway.add_subscription(
        "sub_1",
        default_payment_method="pm_card_1",
        latest_invoice=paid_invoice(billing_reason="subscription_create", period=(JAN_1, FEB_1)),
    )

    await reconciler.process(checkout_event(enrollment.id))

    assert enrollment.status == EnrollmentStatus.ACTIVE
    assert enrollment.subscription_id == "sub_1"
    assert enrollment.customer_id == "cus_test"
    assert enrollment.paid_at is not None
    assert enrollment.current_period_start == datetime(2026, 1, 1)
    assert enrollment.current_period_end == datetime(2026, 2, 1)
    assert gateway.calls_to("retrieve_subscription") == [("retrieve_subscription", "sub_1", ["latest_invoice"])]

    charge = await db.scalar(select(EnrollmentCharge).where(EnrollmentCharge.enrollment_id == enrollment.id))
    assert charge.invoice_id == "in_1"
    assert charge.amount == Decimal("100.00")
    assert charge.platform_fee == Decimal("10.00")
    assert charge.teacher_share == Decimal("90.00")
    assert await teacher_earnings(db, catalog.teacher.id) == Decimal("90.00")

    invoice = await db.scalar(select(Invoice).where(Invoice.stripe_invoice_id == "in_1"))
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.stripe_subscription_id == "sub_1"
    assert invoice.teacher_share == Decimal("90.00")

    profile = await db.scalar(select(ParentProfile).where(ParentProfile.user_id == catalog.parent.id))
    assert profile.stripe_customer_id == "cus_test"
    assert profile.default_payment_method_id == "pm_card_1"

    assert await students_count(db, catalog.group.id) == 1
    assert await count(db, group_students, group_students.c.student_id == catalog.student.id) == 1
    assert await count(db, Notification, Notification.type == NotificationType.ENROLLMENT) == 1
    assert await count(db, Notification, Notification.recipient_id == catalog.teacher.id) == 1


async def test_checkout_completed_redelivery_is_ignored(db, reconciler, gateway, catalog, make_enrollment):
    enrollment = await make_enrollment()
    gateway.add_subscription("sub_1", latest_invoice=paid_invoice(billing_reason="subscription_create"))

    await reconciler.process(checkout_event(enrollment.id))
    await reconciler.process(checkout_event(enrollment.id))

    assert len(gateway.calls_to("retrieve_subscription")) == 1
    assert await count(db, EnrollmentCharge) == 1
    assert await teacher_earnings(db, catalog.teacher.id) == Decimal("90.00")
    assert await students_count(db, catalog.group.id) == 1


@pytest.mark.parametrize("status", [EnrollmentStatus.TRIALING, EnrollmentStatus.PAST_DUE])
async def test_checkout_completed_redelivery_for_live_enrollment_is_ignored(
    db, reconciler, gateway, catalog, make_enrollment, status
):
    paid_at = datetime(2026, 1, 1, 12, 0)
    enrollment = await make_enrollment(status=status, subscription_id="sub_1", paid_at=paid_at)

    await reconciler.process(checkout_event(enrollment.id))

    assert gateway.calls_to("retrieve_subscription") == []
    assert enrollment.status == status
    assert enrollment.paid_at == paid_at
    assert await count(db, Notification) == 0


async def test_checkout_completed_keeps_existing_default_payment_method(
    db, reconciler, gateway, catalog, make_enrollment
):
    db.add(ParentProfile(user_id=catalog.parent.id, default_payment_method_id="pm_saved"))
    enrollment = await make_enrollment()
    gateway.add_subscription("sub_1", default_payment_method={"id": "pm_new", "object": "payment_method"})

    await reconciler.process(checkout_event(enrollment.id))

    profile = await db.scalar(select(ParentProfile).where(ParentProfile.user_id == catalog.parent.id))
    assert profile.stripe_customer_id == "cus_test"
    assert profile.default_payment_method_id == "pm_saved"


async def test_checkout_completed_zero_amount_trial_posts_nothing(db, reconciler, gateway, catalog, make_enrollment):
    enrollment = await make_enrollment()
    gateway.add_subscription("sub_1", status="trialing", latest_invoice=paid_invoice(amount=0, status="paid"))

    await reconciler.process(checkout_event(enrollment.id))

    assert enrollment.status == EnrollmentStatus.TRIALING
    assert await count(db, EnrollmentCharge) == 0
    assert await teacher_earnings(db, catalog.teacher.id) is None
    assert await students_count(db, catalog.group.id) == 1


async def test_checkout_completed_zero_length_period_uses_fallback(db, reconciler, gateway, make_enrollment):
    enrollment = await make_enrollment()
    gateway.add_subscription(
        "sub_1",
        items={"data": [{"current_period_start": JAN_1, "current_period_end": JAN_1}]},
    )

    await reconciler.process(checkout_event(enrollment.id))

    assert enrollment.current_period_start == datetime(2026, 1, 1)
    assert enrollment.current_period_end == datetime(2026, 1, 1) + timedelta(days=30)


async def test_checkout_completed_ignores_payment_mode(db, reconciler, gateway, make_enrollment):
    enrollment = await make_enrollment()
    await reconciler.process(checkout_event(enrollment.id, mode="payment"))
    assert enrollment.status == EnrollmentStatus.INCOMPLETE
    assert gateway.calls == []


async def test_checkout_completed_without_enrollment_metadata(db, reconciler, gateway, catalog):
    await reconciler.process(checkout_event(None))
    await reconciler.process(checkout_event("not-a-uuid"))
    assert gateway.calls == []


async def test_group_closes_when_full(db, reconciler, gateway, catalog, make_enrollment):
    catalog.group.capacity = 1
    await db.commit()
    enrollment = await make_enrollment()
    gateway.add_subscription("sub_1")

    await reconciler.process(checkout_event(enrollment.id))

    status = await db.scalar(select(Group.status).where(Group.id == catalog.group.id))
    assert status == GroupStatus.CLOSED


# --- checkout.session.expired / async_payment_failed ---


@pytest.mark.parametrize("event_type", ["checkout.session.expired", "checkout.session.async_payment_failed"])
async def test_checkout_expired_marks_incomplete_expired(db, reconciler, make_enrollment, event_type):
    enrollment = await make_enrollment()

    await reconciler.process(checkout_event(enrollment.id, event_type=event_type))

    assert enrollment.status == EnrollmentStatus.INCOMPLETE_EXPIRED
    assert enrollment.canceled_at is not None


async def test_checkout_expired_after_activation_is_ignored(db, reconciler, gateway, make_enrollment):
    enrollment = await make_enrollment()
    gateway.add_subscription("sub_1")

    await reconciler.process(checkout_event(enrollment.id))
    await reconciler.process(checkout_event(enrollment.id, event_type="checkout.session.expired"))

    assert enrollment.status == EnrollmentStatus.ACTIVE
    assert enrollment.canceled_at is None


# --- invoice.payment_succeeded ---


async def test_renewal_invoice_posts_once(db, reconciler, catalog, make_enrollment):
    enrollment = await make_enrollment(status=EnrollmentStatus.PAST_DUE, subscription_id="sub_1")
    event = make_event("invoice.payment_succeeded", paid_invoice("in_2"))

    await reconciler.process(event)
    await reconciler.process(event)

    assert await count(db, EnrollmentCharge, EnrollmentCharge.invoice_id == "in_2") == 1
    assert await count(db, Invoice) == 1
    assert await teacher_earnings(db, catalog.teacher.id) == Decimal("90.00")
    pending = await db.scalar(select(TeacherProfile.pending_payouts).where(TeacherProfile.user_id == catalog.teacher.id))
    assert pending == Decimal("90.00")

    assert enrollment.status == EnrollmentStatus.ACTIVE
    assert enrollment.current_period_start == datetime(2026, 2, 1)
    assert enrollment.current_period_end == datetime(2026, 3, 1)


async def test_consecutive_invoices_accumulate(db, reconciler, catalog, make_enrollment):
    await make_enrollment(status=EnrollmentStatus.ACTIVE, subscription_id="sub_1")

    await reconciler.process(make_event("invoice.payment_succeeded", paid_invoice("in_2"), event_id="evt_2"))
    await reconciler.process(make_event("invoice.payment_succeeded", paid_invoice("in_3", amount=3333), event_id="evt_3"))

    assert await count(db, EnrollmentCharge) == 2
    assert await teacher_earnings(db, catalog.teacher.id) == Decimal("120.00")


async def test_first_invoice_is_left_to_checkout(db, reconciler, make_enrollment):
    await make_enrollment(status=EnrollmentStatus.ACTIVE, subscription_id="sub_1")
    await reconciler.process(make_event(
        "invoice.payment_succeeded", paid_invoice(billing_reason="subscription_create")
    ))
    assert await count(db, EnrollmentCharge) == 0


async def test_invoice_for_unknown_subscription_is_skipped(db, reconciler, make_enrollment):
    await make_enrollment(status=EnrollmentStatus.ACTIVE, subscription_id="sub_1")
    await reconciler.process(make_event("invoice.payment_succeeded", paid_invoice(subscription="sub_other")))
    assert await count(db, EnrollmentCharge) == 0


async def test_zero_amount_invoice_is_skipped(db, reconciler, catalog, make_enrollment):
    await make_enrollment(status=EnrollmentStatus.ACTIVE, subscription_id="sub_1")
    await reconciler.process(make_event("invoice.payment_succeeded", paid_invoice(amount=0)))
    assert await count(db, EnrollmentCharge) == 0
    assert await teacher_earnings(db, catalog.teacher.id) is None


async def test_invoice_degenerate_period_uses_fallback(db, reconciler, make_enrollment):
    enrollment = await make_enrollment(status=EnrollmentStatus.ACTIVE, subscription_id="sub_1")
    await reconciler.process(make_event("invoice.payment_succeeded", paid_invoice(period=(FEB_1, FEB_1))))
    assert enrollment.current_period_end == datetime(2026, 2, 1) + timedelta(days=30)


async def test_checkout_then_renewal_counts_student_once(db, reconciler, gateway, catalog, make_enrollment):
    enrollment = await make_enrollment()
    gateway.add_subscription("sub_1")

    await reconciler.process(checkout_event(enrollment.id))
    await reconciler.process(make_event("invoice.payment_succeeded", paid_invoice("in_2")))

    assert await students_count(db, catalog.group.id) == 1


# --- customer.subscription.* ---


async def test_subscription_updated_mirrors_snapshot(db, reconciler, make_enrollment):
    enrollment = await make_enrollment(status=EnrollmentStatus.ACTIVE, subscription_id="sub_1")

    await reconciler.process(make_event("customer.subscription.updated", {
        "id": "sub_1",
        "status": "past_due",
        "cancel_at_period_end": True,
        "items": {"data": [{"current_period_start": FEB_1, "current_period_end": MAR_1}]},
    }))

    assert enrollment.status == EnrollmentStatus.PAST_DUE
    assert enrollment.cancel_at_period_end is True
    assert enrollment.current_period_end == datetime(2026, 3, 1)
    assert await count(db, EnrollmentCharge) == 0


async def test_subscription_deleted_cancels(db, reconciler, make_enrollment):
    enrollment = await make_enrollment(status=EnrollmentStatus.ACTIVE, subscription_id="sub_1")

    await reconciler.process(make_event("customer.subscription.deleted", {"id": "sub_1", "status": "canceled"}))

    assert enrollment.status == EnrollmentStatus.CANCELED
    assert enrollment.cancel_at_period_end is True
    assert enrollment.canceled_at is not None


async def test_subscription_event_for_unknown_subscription(db, reconciler, make_enrollment):
    enrollment = await make_enrollment(status=EnrollmentStatus.ACTIVE, subscription_id="sub_1")
    await reconciler.process(make_event("customer.subscription.deleted", {"id": "sub_x", "status": "canceled"}))
    assert enrollment.status == EnrollmentStatus.ACTIVE


# --- dispatch ---


async def test_unknown_event_type_is_ignored(db, reconciler, gateway):
    await reconciler.process(make_event("customer.created", {"id": "cus_1"}))
    assert gateway.calls == []


async def test_unreadable_event_of_handled_type_is_not_dispatched(db, reconciler, make_enrollment):
    enrollment = await make_enrollment(status=EnrollmentStatus.ACTIVE, subscription_id="sub_1")

    await reconciler.process(UnhandledEvent(id="evt_9", type="customer.subscription.deleted"))

    assert enrollment.status == EnrollmentStatus.ACTIVE
    assert enrollment.canceled_at is None


async def test_handler_failure_is_logged_and_rolled_back(db, reconciler, catalog, make_enrollment, caplog):
    enrollment = await make_enrollment()
    enrollment_id = enrollment.id

    # No subscription registered: retrieving it fails inside the handler
    await reconciler.process(checkout_event(enrollment_id))

    stored = await db.scalar(
        select(Enrollment.status).where(Enrollment.id == enrollment_id)
    )
    assert stored == EnrollmentStatus.INCOMPLETE
    failures = [r for r in caplog.records if r.levelname == "ERROR"]
    assert failures and failures[-1].event_type == "checkout.session.completed"
    assert failures[-1].enrollment_id == str(enrollment_id)
