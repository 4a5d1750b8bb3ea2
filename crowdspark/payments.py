"""
Hosted payment gateway orders.

The client creates an order here, completes payment in the gateway's own
checkout, then records the contribution separately. Orders are amounts in
minor currency units (paise for INR).
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Protocol

import requests

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10  # seconds


class PaymentGatewayError(Exception):
    """Raised when the gateway rejects or fails to create an order."""


@dataclass
class PaymentOrder:
    order_id: str
    amount: int
    currency: str
    receipt: str


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def new_receipt() -> str:
    return f"receipt_order_{int(time.time() * 1000)}"


class PaymentGateway(Protocol):
    def create_order(self, amount: float, receipt: str) -> PaymentOrder:
        ...


@dataclass
class InMemoryPaymentGateway:
    """Gateway stand-in used when no credentials are configured."""

    currency: str = "INR"
    orders: list[PaymentOrder] = field(default_factory=list)

    def create_order(self, amount: float, receipt: str) -> PaymentOrder:
        order = PaymentOrder(
            order_id=f"order_{uuid.uuid4().hex[:14]}",
            amount=to_minor_units(amount),
            currency=self.currency,
            receipt=receipt,
        )
        self.orders.append(order)
        return order


class RazorpayGateway:
    """Razorpay Orders API over HTTP basic auth."""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        *,
        base_url: str = "https://api.razorpay.com/v1",
        currency: str = "INR",
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.currency = currency
        self.timeout = timeout
        self.session = requests.Session()
        self.session.auth = (key_id, key_secret)

    def create_order(self, amount: float, receipt: str) -> PaymentOrder:
        body = {
            "amount": to_minor_units(amount),
            "currency": self.currency,
            "receipt": receipt,
            "payment_capture": 1,
        }
        try:
            response = self.session.post(
                f"{self.base_url}/orders", json=body, timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
            order = PaymentOrder(
                order_id=data["id"],
                amount=int(data["amount"]),
                currency=data["currency"],
                receipt=data.get("receipt", receipt),
            )
        except requests.HTTPError as exc:
            raise PaymentGatewayError(
                f"Gateway returned {exc.response.status_code}"
            ) from exc
        except (requests.RequestException, KeyError, ValueError) as exc:
            raise PaymentGatewayError(str(exc)) from exc

        logger.info("Created gateway order %s for %s", order.order_id, receipt)
        return order

    def close(self) -> None:
        self.session.close()
