"""Checkout sessions and subscription webhook processing."""

import asyncio
import base64
import hashlib
import hmac
import json
import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import unquote

import stripe
from loguru import logger

from .accounts import AccountService
from .config import settings
from .exceptions import AuthenticationError, ConfigurationError, PaymentProviderError
from .models import SubscriptionTier
from .types import WebhookResult

WEBHOOK_VERSION = "v16-Deactivation"

PAYMENT_EVENTS = frozenset(
    {"order.completed", "subscription.activated", "subscription.charge.completed"}
)
HANDLED_EVENTS = PAYMENT_EVENTS | {
    "subscription.updated",
    "subscription.deactivated",
    "subscription.canceled",
}

_USER_TAG = re.compile(r"userId:([a-f0-9-]{36})", re.IGNORECASE)


class CheckoutService:
    """One-off card payments through Stripe Checkout."""

    def __init__(self, api_key: str | None = None) -> None:
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key

    async def create_checkout(
        self,
        price_id: str,
        user_id: str,
        email: str | None,
        origin: str,
    ) -> str:
        """Create a checkout session and return its id."""
        if not self.api_key:
            raise ConfigurationError("Payment provider is not configured")

        origin = origin.rstrip("/")
        params: dict[str, Any] = {
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": "payment",
            "success_url": f"{origin}/?success=true",
            "cancel_url": f"{origin}/?canceled=true",
            "metadata": {"userId": user_id},
        }
        if email:
            params["customer_email"] = email

        loop = asyncio.get_running_loop()
        try:
            session = await loop.run_in_executor(
                None, lambda: stripe.checkout.Session.create(api_key=self.api_key, **params)
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout failed: {e}")
            raise PaymentProviderError(getattr(e, "user_message", None) or str(e)) from e

        logger.info(f"Checkout session {session.id} created for {user_id[:8]}...")
        return str(session.id)


def verify_signature(body: bytes, signature: str | None, secret: str) -> None:
    """Check a base64 HMAC-SHA256 signature of the raw webhook body."""
    if not signature:
        raise AuthenticationError("Missing webhook signature")
    expected = base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()
    if not hmac.compare_digest(expected, signature.strip()):
        raise AuthenticationError("Invalid webhook signature")


def tier_from_product(data: Mapping[str, Any]) -> tuple[SubscriptionTier, int]:
    """Infer the plan from whatever product information the event carries."""
    info = ""
    if isinstance(data.get("items"), list):
        info += json.dumps(data["items"])
    if data.get("subscription"):
        info += json.dumps(data["subscription"])
    if data.get("product"):
        info += str(data["product"])
    info = info.lower()

    credits = settings.monthly_credits
    if "studio" in info or "agency" in info:
        return SubscriptionTier.STUDIO, credits[SubscriptionTier.STUDIO]
    if "starter" in info or "basic" in info:
        return SubscriptionTier.STARTER, credits[SubscriptionTier.STARTER]
    return SubscriptionTier.CREATOR, credits[SubscriptionTier.CREATOR]


def user_id_from_tags(data: Mapping[str, Any]) -> str | None:
    order = data.get("order") if isinstance(data.get("order"), dict) else {}
    subscription = data.get("subscription") if isinstance(data.get("subscription"), dict) else {}
    tags = data.get("tags") or order.get("tags") or subscription.get("tags")
    if not tags:
        return None
    if isinstance(tags, str) and "%" in tags:
        tags = unquote(tags)
    if isinstance(tags, dict):
        user_id = tags.get("userId")
        return str(user_id) if user_id else None
    if isinstance(tags, str):
        match = _USER_TAG.search(tags)
        if match:
            return match.group(1)
    return None


def email_from_event(data: Mapping[str, Any]) -> str | None:
    customer = data.get("customer") or {}
    account = data.get("account") or {}
    contact = account.get("contact") or {} if isinstance(account, dict) else {}
    for candidate in (
        data.get("email"),
        customer.get("email") if isinstance(customer, dict) else None,
        contact.get("email") if isinstance(contact, dict) else None,
    ):
        if candidate:
            return str(candidate)
    return None


class SubscriptionWebhook:
    """Apply subscription provider events to user profiles."""

    def __init__(self, accounts: AccountService) -> None:
        self.accounts = accounts

    async def process(self, payload: Any) -> WebhookResult:
        """Process an event batch.

        Failures are reported in the body rather than as an error status so the
        sender does not keep redelivering the batch.
        """
        trace: list[str] = []

        def log(message: str) -> None:
            logger.info(f"[webhook] {message}")
            trace.append(message)

        if not isinstance(payload, dict) or not payload.get("events"):
            log("No events found.")
            return {"success": False, "processed": 0, "message": "Invalid payload", "trace": trace}

        processed = 0
        try:
            for event in payload["events"]:
                if await self._handle(event, log):
                    processed += 1
        except Exception as e:  # noqa: BLE001
            logger.exception("Webhook processing failed")
            trace.append(f"ERROR: {e}")
            return {"error": True, "message": str(e), "trace": trace}

        return {"success": True, "processed": processed, "trace": trace}

    async def _handle(self, event: Mapping[str, Any], log: Any) -> bool:
        event_type = event.get("type")
        log(f"Event: {event_type} (ID: {event.get('id')})")
        if event_type not in HANDLED_EVENTS:
            return False

        data = event.get("data") or {}
        email = email_from_event(data)
        user_id = user_id_from_tags(data)
        if not user_id and email:
            log(f"No userId tag. Looking up email: {email}")
            profile = await self.accounts.repository.find_profile_by_email(email)
            if profile:
                user_id = profile["id"]
        if not user_id:
            log("SKIPPING: Could not resolve user id.")
            return False

        if event_type == "subscription.canceled":
            log("Subscription canceled. Access continues until end of term. No change.")
            return False

        current = await self.accounts.repository.get_profile(user_id)
        existing = (current["credits"] or 0) if current else 0

        credits: int | None
        if event_type == "subscription.deactivated":
            tier = SubscriptionTier.FREE
            credits = settings.deactivated_credits
            log(f"Subscription deactivated. Downgrading to Free with {credits} credits.")
        else:
            tier, monthly = tier_from_product(data)
            log(f"User: {user_id} | Tier from product: {tier.value}")
            if event_type in PAYMENT_EVENTS:
                credits = existing + monthly
                log(f"Payment event. Adding {monthly} credits. New total: {credits}")
            else:
                credits = None
                log(f"Non-payment event ({event_type}). Updating tier only.")

        await self.accounts.apply_subscription(user_id, tier, credits, email)
        return True
