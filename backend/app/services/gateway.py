"""Payment gateway client (Razorpay-compatible REST API).

Two steps, both performed *before* the invoice row is locked:

  verify_signature()   HMAC-SHA256 over "order_id|payment_id" with the key
                       secret; a mismatch is logged for fraud review
  fetch_payment()      GET /payments/{id} → captured amount (paise → rupees)
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from decimal import Decimal

import httpx

from app.config import settings
from app.middleware.exceptions import GatewayError, SignatureMismatch

logger = logging.getLogger(__name__)

PAISE_PER_RUPEE = Decimal("100")


@dataclass(frozen=True)
class GatewayPaymentIds:
    order_id: str
    payment_id: str
    signature: str


@dataclass(frozen=True)
class CapturedPayment:
    payment_id: str
    order_id: str | None
    amount: Decimal
    currency: str
    status: str
    method: str | None = None


def expected_signature(order_id: str, payment_id: str, secret: str) -> str:
    payload = f"{order_id}|{payment_id}"
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


class GatewayClient:
    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.key_id = key_id if key_id is not None else settings.gateway_key_id
        self.key_secret = key_secret if key_secret is not None else settings.gateway_key_secret
        self.base_url = (base_url or settings.gateway_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.gateway_timeout_seconds
        self._transport = transport

    def verify_signature(self, ids: GatewayPaymentIds) -> None:
        """Raise SignatureMismatch unless the signature is authentic."""
        if not self.key_secret:
            raise GatewayError("Payment gateway is not configured")

        expected = expected_signature(ids.order_id, ids.payment_id, self.key_secret)
        if not hmac.compare_digest(expected, ids.signature):
            logger.warning(
                "Invalid payment signature for order %s", ids.order_id,
                extra={
                    "gateway_order_id": ids.order_id,
                    "gateway_payment_id": ids.payment_id,
                    "fraud_review": True,
                },
            )
            raise SignatureMismatch("Payment signature verification failed")

    async def fetch_payment(self, payment_id: str) -> CapturedPayment:
        """Fetch a payment and require it to be captured."""
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.get(f"/payments/{payment_id}")
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch payment {payment_id}: {e}")
            raise GatewayError(f"Could not fetch payment {payment_id} from gateway") from e

        status = data.get("status")
        if status != "captured":
            raise GatewayError(f"Payment {payment_id} is not captured (status: {status})")
        if "amount" not in data:
            raise GatewayError(f"Gateway returned no amount for payment {payment_id}")

        return CapturedPayment(
            payment_id=data.get("id", payment_id),
            order_id=data.get("order_id"),
            amount=(Decimal(int(data["amount"])) / PAISE_PER_RUPEE).quantize(Decimal("0.01")),
            currency=data.get("currency", "INR"),
            status=status,
            method=data.get("method"),
        )


def get_gateway_client() -> GatewayClient:
    """FastAPI dependency; tests override it with a fake transport."""
    return GatewayClient()
