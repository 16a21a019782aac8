"""
Stripe Payment Gateway Adapter

Thin async wrapper over the Stripe API used by the enrollment service and
the webhook reconciler. One instance is created at startup and injected;
nothing here touches the module-level `stripe.api_key`.

Stripe transport and API errors are re-raised as InternalError so the API
layer reports them as 500s with a stable error code.
"""

import json
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Awaitable, Optional, Sequence

import stripe
from pydantic import ValidationError

from app.core.exceptions import InternalError, SignatureInvalidError
from app.core.logging import get_logger
from app.models.academic import Group
from app.schemas.gateway import (
    CheckoutMetadata,
    CheckoutSessionResult,
    SubscriptionSnapshot,
    UnhandledEvent,
    WebhookEvent,
    parse_event,
)

logger = get_logger(__name__)


def to_minor_units(amount: Decimal) -> int:
    """Major currency units (e.g. 100.00) to minor units (10000)."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripeGateway:
    """
    Payment gateway adapter backed by stripe.StripeClient.

    Usage:
        gateway = StripeGateway(api_key=settings.STRIPE_SECRET_KEY)
        snapshot = await gateway.retrieve_subscription("sub_123")
    """

    def __init__(self, api_key: str, webhook_tolerance: int = 300, client: Optional[stripe.StripeClient] = None):
        self.webhook_tolerance = webhook_tolerance
        self._http_client: Optional[stripe.HTTPXClient] = None
        if client is None:
            self._http_client = stripe.HTTPXClient()
            client = stripe.StripeClient(api_key, http_client=self._http_client)
        self._client = client

    async def close(self) -> None:
        """Release the HTTP connection pool created by this adapter."""
        if self._http_client is not None:
            await self._http_client.close_async()

    async def _call(self, operation: str, awaitable: Awaitable) -> Any:
        try:
            return await awaitable
        except stripe.StripeError as e:
            logger.error(
                f"[STRIPE] {operation} failed: {e.user_message or e}",
                extra={"operation": operation, "stripe_code": getattr(e, "code", None)},
            )
            raise InternalError(
                f"Payment provider error during {operation}",
                code="GATEWAY_ERROR",
            ) from e

    # -------------------------------------------------------------------------
    # Customers & catalog
    # -------------------------------------------------------------------------

    async def create_customer(self, email: str, name: str, metadata: Optional[dict] = None) -> str:
        customer = await self._call(
            "create_customer",
            self._client.customers.create_async(
                params={"email": email, "name": name, "metadata": metadata or {}}
            ),
        )
        logger.info(f"[STRIPE] Created customer {customer.id}")
        return customer.id

    async def create_product(self, name: str, metadata: Optional[dict] = None) -> str:
        product = await self._call(
            "create_product",
            self._client.products.create_async(params={"name": name, "metadata": metadata or {}}),
        )
        return product.id

    async def create_price_for_group(self, group: Group) -> str:
        """
        Create a recurring monthly price for the group's current price.

        Creates the group's product first when it has none and records the
        product id on the group (the caller persists it).
        """
        if not group.stripe_product_id:
            group.stripe_product_id = await self.create_product(
                name=f"{group.title} ({group.id})",
                metadata={"groupId": str(group.id), "courseId": str(group.course_id)},
            )

        price = await self._call(
            "create_price",
            self._client.prices.create_async(
                params={
                    "product": group.stripe_product_id,
                    "unit_amount": to_minor_units(group.price),
                    "currency": group.currency or "usd",
                    "recurring": {"interval": group.billing_interval or "month"},
                }
            ),
        )
        logger.info(f"[STRIPE] Created price {price.id} for group {group.id}")
        return price.id

    # -------------------------------------------------------------------------
    # Checkout & subscriptions
    # -------------------------------------------------------------------------

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: CheckoutMetadata,
    ) -> CheckoutSessionResult:
        """Create a hosted subscription checkout. The metadata is the only link back to the enrollment."""
        gateway_metadata = metadata.to_gateway()
        session = await self._call(
            "create_checkout_session",
            self._client.checkout.sessions.create_async(
                params={
                    "customer": customer_id,
                    "mode": "subscription",
                    "payment_method_types": ["card"],
                    "line_items": [{"price": price_id, "quantity": 1}],
                    "metadata": gateway_metadata,
                    "subscription_data": {"metadata": gateway_metadata},
                    "success_url": success_url,
                    "cancel_url": cancel_url,
                }
            ),
        )
        return CheckoutSessionResult(session_id=session.id, url=session.url)

    async def retrieve_subscription(
        self,
        subscription_id: str,
        expand: Optional[Sequence[str]] = None,
    ) -> SubscriptionSnapshot:
        params = {"expand": list(expand)} if expand else {}
        subscription = await self._call(
            "retrieve_subscription",
            self._client.subscriptions.retrieve_async(subscription_id, params=params),
        )
        return SubscriptionSnapshot.model_validate(subscription)

    async def update_subscription(self, subscription_id: str, cancel_at_period_end: bool) -> SubscriptionSnapshot:
        subscription = await self._call(
            "update_subscription",
            self._client.subscriptions.update_async(
                subscription_id,
                params={"cancel_at_period_end": cancel_at_period_end},
            ),
        )
        return SubscriptionSnapshot.model_validate(subscription)

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    def verify_and_parse_event(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        secret: str,
    ) -> WebhookEvent:
        """
        Verify a webhook delivery and parse it into the typed event union.
        A verified event whose body does not validate comes back as an
        UnhandledEvent carrying only its id and type.

        Raises:
            InternalError: webhook secret is not configured
            SignatureInvalidError: missing/invalid signature or undecodable payload
        """
        if not secret:
            logger.error("[WEBHOOK] STRIPE_WEBHOOK_SECRET not configured")
            raise InternalError("Webhook secret is not configured", code="WEBHOOK_NOT_CONFIGURED")
        if not signature_header:
            raise SignatureInvalidError("Missing Stripe-Signature header")

        try:
            stripe.WebhookSignature.verify_header(
                raw_body.decode("utf-8"),
                signature_header,
                secret,
                self.webhook_tolerance,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"[WEBHOOK] Invalid signature: {e}")
            raise SignatureInvalidError("Invalid webhook signature") from e
        except UnicodeDecodeError as e:
            raise SignatureInvalidError("Webhook payload is not valid UTF-8") from e

        try:
            payload = json.loads(raw_body)
        except ValueError as e:
            logger.warning(f"[WEBHOOK] Invalid payload: {e}")
            raise SignatureInvalidError("Invalid webhook payload", code="INVALID_PAYLOAD") from e
        if not isinstance(payload, dict):
            raise SignatureInvalidError("Invalid webhook payload", code="INVALID_PAYLOAD")

        # A signed event is always acknowledged; one we cannot read is logged and skipped
        try:
            return parse_event(payload)
        except ValidationError as e:
            event_id = str(payload.get("id") or "")
            event_type = str(payload.get("type") or "")
            logger.warning(
                f"[WEBHOOK] Unreadable {event_type or 'untyped'} event acknowledged without processing: {e}",
                extra={"event_id": event_id, "event_type": event_type},
            )
            return UnhandledEvent(id=event_id, type=event_type)
