"""PIX payments through Stripe.

Stripe exposes PIX as a PaymentIntent payment method. A PaymentIntent is
created and confirmed in one call; the QR payload the customer scans comes
back in ``next_action.pix_display_qr_code``.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import stripe

from digital_store import config
from digital_store.errors import GatewayError
from digital_store.status import OrderStatus

logger = logging.getLogger(__name__)

stripe.api_key = config.STRIPE_SECRET_KEY

_STATUS_MAP = {
    "requires_payment_method": OrderStatus.PENDING,
    "requires_confirmation": OrderStatus.PENDING,
    "requires_action": OrderStatus.PENDING,
    "processing": OrderStatus.IN_PROCESS,
    "requires_capture": OrderStatus.IN_PROCESS,
    "succeeded": OrderStatus.APPROVED,
    "canceled": OrderStatus.CANCELLED,
}


def interpret_status(raw_status, has_error=False):
    if raw_status == "requires_payment_method" and has_error:
        return OrderStatus.REJECTED
    status = _STATUS_MAP.get(raw_status)
    if status is None:
        logger.warning("Unknown gateway status %r, treating as pending", raw_status)
        return OrderStatus.PENDING
    return status


def to_minor_units(amount):
    return int((Decimal(amount) * 100).to_integral_value())


@dataclass
class GatewayPayment:
    id: str
    status: OrderStatus
    status_detail: str
    amount: Decimal
    email: Optional[str] = None
    customer_name: Optional[str] = None
    qr_code: Optional[str] = None
    qr_code_image: Optional[str] = None
    ticket_url: Optional[str] = None
    created_at: Optional[datetime] = None


def _from_intent(intent):
    error = getattr(intent, "last_payment_error", None)
    raw_status = intent.status
    detail = raw_status
    if error is not None:
        detail = getattr(error, "message", None) or getattr(error, "code", None) or raw_status

    next_action = getattr(intent, "next_action", None)
    pix = getattr(next_action, "pix_display_qr_code", None) if next_action else None
    metadata = getattr(intent, "metadata", None) or {}
    created = getattr(intent, "created", None)

    return GatewayPayment(
        id=intent.id,
        status=interpret_status(raw_status, has_error=error is not None),
        status_detail=detail,
        amount=Decimal(intent.amount) / 100,
        email=getattr(intent, "receipt_email", None),
        customer_name=metadata.get("customer_name"),
        qr_code=getattr(pix, "data", None),
        qr_code_image=getattr(pix, "image_url_png", None),
        ticket_url=getattr(pix, "hosted_instructions_url", None),
        created_at=datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
    )


class PixGateway:
    def __init__(self, currency=None):
        self.currency = currency or config.PAYMENT_CURRENCY

    def create_pix_payment(
        self,
        amount,
        description,
        email,
        customer_name,
        external_reference,
        notification_url=None,
        items=None,
    ):
        metadata = {
            "external_reference": external_reference,
            "customer_name": customer_name,
        }
        if notification_url:
            metadata["notification_url"] = notification_url
        if items:
            # Stripe metadata values are capped at 500 characters
            metadata["items"] = json.dumps(items, separators=(",", ":"))[:500]

        logger.info("Creating PIX payment of %s %s for %s", amount, self.currency, email)
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=self.currency,
                description=description,
                payment_method_types=["pix"],
                payment_method_data={
                    "type": "pix",
                    "billing_details": {"email": email, "name": customer_name},
                },
                confirm=True,
                receipt_email=email,
                metadata=metadata,
                idempotency_key=external_reference,
            )
        except stripe.StripeError as exc:
            logger.error("Gateway refused PIX payment: %s", exc.user_message or exc)
            raise GatewayError(
                "Could not create PIX payment",
                details=exc.user_message or str(exc),
            ) from exc

        payment = _from_intent(intent)
        logger.info("PIX payment %s created with status %s", payment.id, payment.status)
        return payment

    def get_payment(self, payment_id):
        try:
            intent = stripe.PaymentIntent.retrieve(payment_id)
        except stripe.InvalidRequestError as exc:
            if exc.code == "resource_missing":
                return None
            raise GatewayError("Could not fetch payment", details=str(exc)) from exc
        except stripe.StripeError as exc:
            raise GatewayError("Could not fetch payment", details=str(exc)) from exc
        return _from_intent(intent)
