"""Integration tests: Stripe webhook endpoint with real signature verification."""

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from app.models.billing import Enrollment, EnrollmentCharge
from app.models.enums import EnrollmentStatus

WEBHOOK_PATH = "/webhooks/enrollments"


def checkout_completed(event_payload, enrollment_id):
    return event_payload("checkout.session.completed", {
        "id": "cs_test_1",
        "object": "checkout.session",
        "mode": "subscription",
        "customer": "cus_test",
        "subscription": "sub_1",
        "metadata": {"enrollmentId": str(enrollment_id)},
    })


@pytest.mark.asyncio
async def test_verified_checkout_activates_enrollment(
    async_client: AsyncClient, api_base, make_enrollment, gateway, event_payload, sign_payload, encode
):
    enrollment = await make_enrollment()
    gateway.add_subscription("sub_1", latest_invoice={
        "id": "in_1",
        "status": "paid",
        "billing_reason": "subscription_create",
        "amount_paid": 10000,
        "currency": "usd",
    })
    body = encode(checkout_completed(event_payload, enrollment.id))

    resp = await async_client.post(
        f"{api_base}{WEBHOOK_PATH}",
        content=body,
        headers={"Stripe-Signature": sign_payload(body), "Content-Type": "application/json"},
    )

    assert resp.status_code == 200, resp.text
    assert resp.json() == {"received": True}
    assert enrollment.status == EnrollmentStatus.ACTIVE
    assert enrollment.subscription_id == "sub_1"


@pytest.mark.asyncio
async def test_redelivered_invoice_is_acknowledged_and_posted_once(
    async_client: AsyncClient, api_base, db, make_enrollment, event_payload, sign_payload, encode
):
    await make_enrollment(status=EnrollmentStatus.ACTIVE, subscription_id="sub_1")
    body = encode(event_payload("invoice.payment_succeeded", {
        "id": "in_2",
        "status": "paid",
        "billing_reason": "subscription_cycle",
        "amount_paid": 10000,
        "currency": "usd",
        "subscription": "sub_1",
    }))

    for _ in range(2):
        resp = await async_client.post(
            f"{api_base}{WEBHOOK_PATH}", content=body, headers={"Stripe-Signature": sign_payload(body)}
        )
        assert resp.status_code == 200

    assert await db.scalar(select(func.count()).select_from(EnrollmentCharge)) == 1


@pytest.mark.asyncio
async def test_bad_signature_is_rejected(
    async_client: AsyncClient, api_base, make_enrollment, gateway, event_payload, sign_payload, encode
):
    enrollment = await make_enrollment()
    gateway.add_subscription("sub_1")
    body = encode(checkout_completed(event_payload, enrollment.id))

    resp = await async_client.post(
        f"{api_base}{WEBHOOK_PATH}",
        content=body,
        headers={"Stripe-Signature": sign_payload(body, secret="whsec_wrong")},
    )

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "SIGNATURE_INVALID"
    assert gateway.calls == []
    assert enrollment.status == EnrollmentStatus.INCOMPLETE


@pytest.mark.asyncio
async def test_missing_signature_is_rejected(async_client: AsyncClient, api_base, event_payload, encode):
    body = encode(event_payload("customer.created", {"id": "cus_1"}))
    resp = await async_client.post(f"{api_base}{WEBHOOK_PATH}", content=body)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_tampered_body_is_rejected(async_client: AsyncClient, api_base, event_payload, sign_payload, encode):
    body = encode(event_payload("customer.created", {"id": "cus_1"}))
    signature = sign_payload(body)
    resp = await async_client.post(
        f"{api_base}{WEBHOOK_PATH}",
        content=body.replace(b"cus_1", b"cus_2"),
        headers={"Stripe-Signature": signature},
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_unreadable_verified_event_is_acknowledged(
    async_client: AsyncClient, api_base, db, make_enrollment, event_payload, sign_payload, encode, caplog
):
    enrollment = await make_enrollment(status=EnrollmentStatus.ACTIVE, subscription_id="sub_1")
    enrollment_id = enrollment.id
    body = encode(event_payload("customer.subscription.updated", {"id": "sub_1", "status": "paused"}))

    resp = await async_client.post(
        f"{api_base}{WEBHOOK_PATH}", content=body, headers={"Stripe-Signature": sign_payload(body)}
    )

    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    assert any(
        r.levelname == "WARNING" and getattr(r, "event_type", None) == "customer.subscription.updated"
        for r in caplog.records
    )
    db.expire_all()
    enrollment = await db.get(Enrollment, enrollment_id)
    assert enrollment.status == EnrollmentStatus.ACTIVE


@pytest.mark.asyncio
async def test_unhandled_event_is_acknowledged(async_client: AsyncClient, api_base, event_payload, sign_payload, encode):
    body = encode(event_payload("customer.created", {"id": "cus_1"}))
    resp = await async_client.post(
        f"{api_base}{WEBHOOK_PATH}", content=body, headers={"Stripe-Signature": sign_payload(body)}
    )
    assert resp.status_code == 200
    assert resp.json() == {"received": True}


@pytest.mark.asyncio
async def test_handler_failure_still_acknowledged(
    async_client: AsyncClient, api_base, make_enrollment, event_payload, sign_payload, encode
):
    enrollment = await make_enrollment()
    # The fake gateway has no "sub_1": the handler raises while retrieving it
    body = encode(checkout_completed(event_payload, enrollment.id))

    resp = await async_client.post(
        f"{api_base}{WEBHOOK_PATH}", content=body, headers={"Stripe-Signature": sign_payload(body)}
    )

    assert resp.status_code == 200
    assert resp.json() == {"received": True}
