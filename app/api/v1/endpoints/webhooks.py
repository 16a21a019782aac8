from typing import Any, Optional
from fastapi import APIRouter, Depends, Header, Request

from app.api import deps
from app.config import settings
from app.core.logging import get_logger
from app.services.payment_gateway import StripeGateway
from app.services.webhook_service import WebhookReconciler

logger = get_logger(__name__)

router = APIRouter()


@router.post("/enrollments")
async def enrollment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    gateway: StripeGateway = Depends(deps.get_gateway),
    reconciler: WebhookReconciler = Depends(deps.get_webhook_reconciler),
) -> Any:
    """
    Stripe webhook for enrollment subscriptions.

    Signature or payload failures return 400 so Stripe retries. Once the
    signature verifies, the event is acknowledged with 200 even if applying
    it failed; handler failures are logged for manual reconciliation.
    """
    payload = await request.body()
    event = gateway.verify_and_parse_event(payload, stripe_signature, settings.STRIPE_WEBHOOK_SECRET)

    logger.info(
        f"Received webhook event {event.type}",
        extra={"event_id": event.id, "event_type": event.type},
    )
    await reconciler.process(event)
    return {"received": True}
