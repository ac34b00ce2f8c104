import time
import uuid
import logging
from dataclasses import dataclass
from decimal import Decimal
import requests

from app.core.config import settings
from app.services.pricing import ZERO_DECIMAL_CURRENCIES

logger = logging.getLogger(__name__)

SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"
LIVE_BASE_URL = "https://api-m.paypal.com"

@dataclass
class PayPalConfig:
    client_id: str
    client_secret: str
    environment: str = "sandbox"   # sandbox|production
    timeout: int = 25

    @property
    def base_url(self) -> str:
        return LIVE_BASE_URL if self.environment == "production" else SANDBOX_BASE_URL

class PayPalError(RuntimeError):
    pass

def format_amount(minor_units: int, currency: str) -> str:
    """PayPal takes decimal strings; our amounts are minor units."""
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return str(int(minor_units))
    return f"{minor_units / 100:.2f}"

WEBHOOK_HEADERS = (
    "paypal-auth-algo",
    "paypal-cert-url",
    "paypal-transmission-id",
    "paypal-transmission-sig",
    "paypal-transmission-time",
)

def is_capture_completed(order: dict) -> bool:
    """An order counts as paid only when the order and every capture on it are COMPLETED."""
    if str(order.get("status") or "").upper() != "COMPLETED":
        return False
    captures = [
        c
        for unit in order.get("purchase_units") or []
        for c in ((unit.get("payments") or {}).get("captures") or [])
    ]
    return bool(captures) and all(str(c.get("status") or "").upper() == "COMPLETED" for c in captures)

def parse_amount(value: str, currency: str) -> int:
    """Inverse of format_amount: PayPal decimal string to minor units."""
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return int(Decimal(value))
    return int((Decimal(value) * 100).quantize(Decimal("1")))


def first_capture_id(order: dict) -> str | None:
    for unit in order.get("purchase_units") or []:
        for c in (unit.get("payments") or {}).get("captures") or []:
            if c.get("id"):
                return c["id"]
    return None

class PayPalClient:
    def __init__(self, cfg: PayPalConfig):
        self.cfg = cfg
        self._token: str | None = None
        self._token_expires_at = 0.0

    def _access_token(self) -> str:
        if not (self.cfg.client_id and self.cfg.client_secret):
            raise PayPalError("PayPal is not configured (missing PAYPAL_CLIENT_ID / PAYPAL_CLIENT_SECRET)")
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        r = requests.post(
            f"{self.cfg.base_url}/v1/oauth2/token",
            auth=(self.cfg.client_id, self.cfg.client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
            timeout=self.cfg.timeout,
        )
        if r.status_code >= 400:
            raise PayPalError(f"PayPal token {r.status_code}: {r.text}")
        data = r.json()
        self._token = data["access_token"]
        # refresh a minute before PayPal expires it
        self._token_expires_at = time.monotonic() + max(int(data.get("expires_in", 0)) - 60, 0)
        return self._token

    def request(self, method: str, path: str, payload: dict | None = None, request_id: str | None = None) -> dict:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {self._access_token()}",
        }
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        url = f"{self.cfg.base_url}{path}"
        r = requests.request(method=method.upper(), url=url, json=payload, headers=headers, timeout=self.cfg.timeout)
        try:
            data = r.json() if r.text else {}
        except ValueError:
            data = {"raw": r.text}
        if r.status_code >= 400:
            logger.warning("PayPal %s %s failed with %s", method.upper(), path, r.status_code)
            raise PayPalError(f"PayPal {r.status_code}: {data}")
        return data

    def create_order(self, *, amount: int, currency: str, reference_id: str) -> dict:
        payload = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": reference_id,
                "custom_id": reference_id,
                "amount": {"currency_code": currency.upper(), "value": format_amount(amount, currency)},
            }],
        }
        return self.request("POST", "/v2/checkout/orders", payload, request_id=f"order-{reference_id}")

    def get_order(self, order_id: str) -> dict:
        return self.request("GET", f"/v2/checkout/orders/{order_id}")

    def capture_order(self, order_id: str) -> dict:
        return self.request("POST", f"/v2/checkout/orders/{order_id}/capture", {}, request_id=f"capture-{order_id}")

    def refund_capture(self, *, capture_id: str, amount: int | None, currency: str) -> dict:
        payload = {}
        if amount is not None:
            payload["amount"] = {"currency_code": currency.upper(), "value": format_amount(amount, currency)}
        return self.request("POST", f"/v2/payments/captures/{capture_id}/refund", payload)

    def verify_webhook_signature(self, headers: dict, event: dict, webhook_id: str) -> bool:
        """Ask PayPal whether a delivery is genuine. `headers` are the paypal-* transmission headers."""
        payload = {
            "auth_algo": headers["paypal-auth-algo"],
            "cert_url": headers["paypal-cert-url"],
            "transmission_id": headers["paypal-transmission-id"],
            "transmission_sig": headers["paypal-transmission-sig"],
            "transmission_time": headers["paypal-transmission-time"],
            "webhook_id": webhook_id,
            "webhook_event": event,
        }
        data = self.request("POST", "/v1/notifications/verify-webhook-signature", payload)
        return data.get("verification_status") == "SUCCESS"

class SandboxPayPalClient:
    """Mock responses for local development (PAYMENTS_SANDBOX=true)."""

    def create_order(self, *, amount: int, currency: str, reference_id: str) -> dict:
        return {
            "id": f"SANDBOX-{uuid.uuid4().hex[:12].upper()}",
            "status": "CREATED",
            "purchase_units": [{"reference_id": reference_id, "custom_id": reference_id,
                                "amount": {"currency_code": currency.upper(), "value": format_amount(amount, currency)}}],
        }

    def get_order(self, order_id: str) -> dict:
        return {"id": order_id, "status": "APPROVED", "purchase_units": []}

    def capture_order(self, order_id: str) -> dict:
        return {
            "id": order_id,
            "status": "COMPLETED",
            "purchase_units": [{"payments": {"captures": [{"id": f"CAP-{order_id}", "status": "COMPLETED"}]}}],
        }

    def refund_capture(self, *, capture_id: str, amount: int | None, currency: str) -> dict:
        return {"id": f"REF-{capture_id}", "status": "COMPLETED"}

    def verify_webhook_signature(self, headers: dict, event: dict, webhook_id: str) -> bool:
        return True

_client: PayPalClient | None = None

def get_paypal_client():
    global _client
    if settings.PAYMENTS_SANDBOX:
        return SandboxPayPalClient()
    if _client is None:
        _client = PayPalClient(PayPalConfig(
            client_id=settings.PAYPAL_CLIENT_ID,
            client_secret=settings.PAYPAL_CLIENT_SECRET,
            environment=settings.PAYPAL_ENV,
        ))
    return _client
