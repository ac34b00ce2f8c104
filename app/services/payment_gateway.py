"""Card payments through Stripe PaymentIntents in manual-capture mode.

Funds are authorized (held) when the booking is created and captured at
check-out. Services depend on `get_payment_gateway()` so tests and local
sandbox mode can swap the processor.
"""
import logging
import uuid
from dataclasses import dataclass, field

import stripe

from app.core.config import settings

logger = logging.getLogger(__name__)


class PaymentGatewayError(RuntimeError):
    pass


@dataclass
class PaymentIntent:
    id: str
    status: str
    amount: int
    currency: str
    client_secret: str | None = None
    amount_received: int = 0
    metadata: dict = field(default_factory=dict)


def _intent_from_stripe(obj) -> PaymentIntent:
    return PaymentIntent(
        id=obj["id"],
        status=obj["status"],
        amount=int(obj.get("amount") or 0),
        currency=str(obj.get("currency") or "").upper(),
        client_secret=obj.get("client_secret"),
        amount_received=int(obj.get("amount_received") or 0),
        metadata=dict(obj.get("metadata") or {}),
    )


class StripeGateway:
    def __init__(self, api_key: str):
        self.api_key = api_key

    def _key(self) -> str:
        if not self.api_key:
            raise PaymentGatewayError("Stripe is not configured (missing STRIPE_SECRET_KEY)")
        return self.api_key

    def ensure_customer(self, email: str, profile_id: str) -> str:
        try:
            customer = stripe.Customer.create(
                email=email,
                metadata={"profile_id": profile_id},
                api_key=self._key(),
            )
        except stripe.StripeError as e:
            raise PaymentGatewayError(f"Stripe customer creation failed: {e.user_message or e}") from e
        return customer["id"]

    def authorize(self, amount: int, currency: str, customer_ref: str | None, metadata: dict, idempotency_key: str | None = None) -> PaymentIntent:
        params = {
            "amount": amount,
            "currency": currency.lower(),
            "capture_method": "manual",
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
        }
        if customer_ref:
            params["customer"] = customer_ref
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        try:
            obj = stripe.PaymentIntent.create(api_key=self._key(), **params)
        except stripe.StripeError as e:
            raise PaymentGatewayError(f"Stripe authorization failed: {e.user_message or e}") from e
        logger.info("Stripe intent %s created (%s %s, manual capture)", obj["id"], amount, currency)
        return _intent_from_stripe(obj)

    def capture(self, intent_id: str, amount: int | None = None, idempotency_key: str | None = None) -> PaymentIntent:
        params = {}
        if amount is not None:
            params["amount_to_capture"] = amount
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        try:
            obj = stripe.PaymentIntent.capture(intent_id, api_key=self._key(), **params)
        except stripe.StripeError as e:
            raise PaymentGatewayError(f"Stripe capture failed: {e.user_message or e}") from e
        return _intent_from_stripe(obj)

    def cancel(self, intent_id: str) -> PaymentIntent:
        try:
            obj = stripe.PaymentIntent.cancel(intent_id, api_key=self._key())
        except stripe.StripeError as e:
            raise PaymentGatewayError(f"Stripe cancel failed: {e.user_message or e}") from e
        return _intent_from_stripe(obj)

    def refund(self, intent_id: str, amount: int | None = None) -> dict:
        params = {"payment_intent": intent_id}
        if amount is not None:
            params["amount"] = amount
        try:
            refund = stripe.Refund.create(api_key=self._key(), **params)
        except stripe.StripeError as e:
            raise PaymentGatewayError(f"Stripe refund failed: {e.user_message or e}") from e
        logger.info("Stripe refund %s on %s (%s)", refund["id"], intent_id, amount)
        return {"id": refund["id"], "status": refund["status"], "amount": refund.get("amount")}

    def transfer(self, amount: int, currency: str, destination: str, metadata: dict, idempotency_key: str) -> str:
        """Stripe Connect transfer to a professional's connected account."""
        try:
            obj = stripe.Transfer.create(
                amount=amount,
                currency=currency.lower(),
                destination=destination,
                metadata=metadata,
                idempotency_key=idempotency_key,
                api_key=self._key(),
            )
        except stripe.StripeError as e:
            raise PaymentGatewayError(f"Stripe transfer failed: {e.user_message or e}") from e
        return obj["id"]

    def instant_payout(self, amount: int, currency: str, account_id: str, metadata: dict, idempotency_key: str) -> dict:
        """Instant payout from a connected account's Stripe balance to its debit card or bank."""
        try:
            obj = stripe.Payout.create(
                amount=amount,
                currency=currency.lower(),
                method="instant",
                statement_descriptor="Casaora Payout",
                metadata=metadata,
                stripe_account=account_id,
                idempotency_key=idempotency_key,
                api_key=self._key(),
            )
        except stripe.StripeError as e:
            raise PaymentGatewayError(f"Stripe instant payout failed: {e.user_message or e}") from e
        logger.info("Stripe instant payout %s on %s (%s %s)", obj["id"], account_id, amount, currency)
        return {"id": obj["id"], "status": obj["status"], "arrival_date": obj.get("arrival_date")}


class SandboxGateway:
    """In-process stand-in used when PAYMENTS_SANDBOX is on (local dev, demos)."""

    def ensure_customer(self, email: str, profile_id: str) -> str:
        return f"cus_sandbox_{profile_id[:8]}"

    def authorize(self, amount: int, currency: str, customer_ref: str | None, metadata: dict, idempotency_key: str | None = None) -> PaymentIntent:
        intent_id = f"pi_sandbox_{uuid.uuid4().hex[:16]}"
        return PaymentIntent(
            id=intent_id,
            status="requires_capture",
            amount=amount,
            currency=currency.upper(),
            client_secret=f"{intent_id}_secret",
            metadata=dict(metadata),
        )

    def capture(self, intent_id: str, amount: int | None = None, idempotency_key: str | None = None) -> PaymentIntent:
        return PaymentIntent(id=intent_id, status="succeeded", amount=amount or 0, currency="", amount_received=amount or 0)

    def cancel(self, intent_id: str) -> PaymentIntent:
        return PaymentIntent(id=intent_id, status="canceled", amount=0, currency="")

    def refund(self, intent_id: str, amount: int | None = None) -> dict:
        return {"id": f"re_sandbox_{uuid.uuid4().hex[:12]}", "status": "succeeded", "amount": amount}

    def transfer(self, amount: int, currency: str, destination: str, metadata: dict, idempotency_key: str) -> str:
        return f"tr_sandbox_{uuid.uuid4().hex[:12]}"

    def instant_payout(self, amount: int, currency: str, account_id: str, metadata: dict, idempotency_key: str) -> dict:
        return {"id": f"po_sandbox_{uuid.uuid4().hex[:12]}", "status": "pending", "arrival_date": None}


def get_payment_gateway():
    if settings.PAYMENTS_SANDBOX:
        return SandboxGateway()
    return StripeGateway(settings.STRIPE_SECRET_KEY)
