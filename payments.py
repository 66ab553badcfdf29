"""
Razorpay checkout for orders.

Two steps: ``create_payment_intent`` opens (or reuses) a provider-side order for
the local order total, and ``verify_payment_signature`` checks the signature the
checkout widget hands back and marks the order paid. The provider's own payment
status is not re-fetched; the HMAC check is the trust boundary.
"""
import logging
import math
from typing import Optional

from pymongo.database import Database

from config import Settings
from database import parse_object_id, utcnow
from errors import AuthError, ConflictError, NotConfiguredError, NotFoundError, UpstreamError, ValidationError
from security import payment_signature, signatures_match

logger = logging.getLogger(__name__)

PROVIDER_NAME = "razorpay"


class PaymentProvider:
    """Interface of the remote gateway: only order creation is used."""

    key_id = ""

    def create_order(self, amount: int, currency: str, receipt: str) -> dict:
        raise NotImplementedError


class RazorpayProvider(PaymentProvider):
    def __init__(self, key_id: str, key_secret: str):
        import razorpay

        self.key_id = key_id
        self.client = razorpay.Client(auth=(key_id, key_secret))

    def create_order(self, amount: int, currency: str, receipt: str) -> dict:
        return self.client.order.create(data={"amount": amount, "currency": currency, "receipt": receipt})


def provider_from_settings(settings: Settings) -> Optional[PaymentProvider]:
    if not settings.payments_configured:
        return None
    return RazorpayProvider(settings.razorpay_key_id.strip(), settings.razorpay_key_secret.strip())


def to_minor_units(total: float) -> int:
    """Rupees to paise, halves rounded up."""
    return int(math.floor(total * 100 + 0.5))


def _find_user_order(db: Database, order_id: str, user_id: str) -> Optional[dict]:
    oid = parse_object_id(order_id)
    if oid is None:
        return None
    return db["order"].find_one({"_id": oid, "user_id": user_id})


def create_payment_intent(
    db: Database,
    settings: Settings,
    provider: Optional[PaymentProvider],
    order_id,
    user_id: Optional[str],
) -> dict:
    if not user_id:
        raise AuthError("Not authenticated")
    if not settings.payments_configured or provider is None:
        raise NotConfiguredError("Payments are not configured yet.")

    order_id = str(order_id or "").strip()
    if not order_id:
        raise ValidationError("order_id is required")

    order = _find_user_order(db, order_id, user_id)
    if order is None:
        raise NotFoundError("Order not found")

    total = float(order.get("total") or 0)
    if not total > 0:
        raise ValidationError("This order does not require payment.")
    if str(order.get("payment_status") or "").lower() == "paid":
        raise ValidationError("Order is already paid.")

    currency = settings.payment_currency
    provider_order_id = order.get("payment_order_id")
    amount = order.get("payment_amount") or to_minor_units(total)

    if not provider_order_id:
        try:
            remote = provider.create_order(amount, currency, f"order_{order_id}")
        except Exception:
            logger.exception("Provider order creation failed for order %s", order_id)
            raise UpstreamError("Failed to create payment order")
        provider_order_id = remote["id"]
        amount = int(remote.get("amount", amount))
        currency = remote.get("currency", currency)
        db["order"].update_one(
            {"_id": order["_id"], "user_id": user_id},
            {"$set": {
                "payment_provider": PROVIDER_NAME,
                "payment_order_id": provider_order_id,
                "payment_amount": amount,
                "payment_status": "created",
                "updated_at": utcnow(),
            }},
        )
        logger.info("Payment order %s created for order %s", provider_order_id, order_id)

    return {
        "key_id": settings.razorpay_key_id.strip(),
        "provider_order_id": provider_order_id,
        "amount": amount,
        "currency": currency,
        "order_id": order_id,
    }


def verify_payment_signature(
    db: Database,
    settings: Settings,
    order_id,
    user_id: Optional[str],
    provider_order_id,
    provider_payment_id,
    provider_signature,
) -> dict:
    if not user_id:
        raise AuthError("Not authenticated")
    secret = settings.razorpay_key_secret.strip()
    if not settings.payments_configured:
        raise NotConfiguredError("Payments are not configured yet.")

    order_id = str(order_id or "").strip()
    provider_order_id = str(provider_order_id or "").strip()
    provider_payment_id = str(provider_payment_id or "").strip()
    provider_signature = str(provider_signature or "").strip()
    if not (order_id and provider_order_id and provider_payment_id and provider_signature):
        raise ValidationError("Missing payment verification fields")

    expected = payment_signature(secret, provider_order_id, provider_payment_id)
    if not signatures_match(expected, provider_signature):
        logger.warning("Invalid payment signature for order %s", order_id)
        raise AuthError("Invalid payment signature")

    order = _find_user_order(db, order_id, user_id)
    if order is None:
        raise NotFoundError("Order not found")
    stored_order_id = order.get("payment_order_id")
    if stored_order_id and stored_order_id != provider_order_id:
        raise ConflictError("Payment order mismatch")

    if order.get("payment_status") == "paid":
        if order.get("payment_payment_id") == provider_payment_id:
            return {"success": True}
        raise ConflictError("Order is already paid.")

    result = db["order"].update_one(
        {"_id": order["_id"], "user_id": user_id, "payment_status": {"$ne": "paid"}},
        {"$set": {
            "payment_provider": PROVIDER_NAME,
            "payment_order_id": provider_order_id,
            "payment_payment_id": provider_payment_id,
            "payment_signature": provider_signature,
            "payment_status": "paid",
            "paid_at": utcnow(),
            "updated_at": utcnow(),
        }},
    )
    if result.matched_count == 0:
        raise ConflictError("Order is already paid.")
    logger.info("Order %s paid with %s", order_id, provider_payment_id)
    return {"success": True}
