from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, TypedDict
import uuid
import hmac
import hashlib
import base64
import json

from pydantic import ValidationError as PydanticValidationError

from .confirmation import PaymentEvent
from .errors import UnverifiedEventError, ValidationError
from .helpers import now_ts
from .model.schemas import Customer, ShippingAddress

SIGNATURE_HEADER = "x-mockpay-signature"
EVENT_KINDS = ("succeeded", "failed", "canceled")


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class LineItem(TypedDict):
    name: str
    unit_amount: int  # cents
    quantity: int


class CreateSessionResult(TypedDict):
    payment_session_id: str
    redirect_url: str


class PaymentAdapter(ABC):
    @abstractmethod
    async def create_checkout_session(
        self, line_items: List[LineItem], success_url: str, cancel_url: str,
        correlation_id: str, currency: str,
    ) -> CreateSessionResult: ...

    # raises UnverifiedEventError; returns the decoded event otherwise
    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: dict) -> dict: ...

    @abstractmethod
    def parse_event(self, event: dict) -> PaymentEvent: ...


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentAdapter):

    def __init__(self, secret: str) -> None:
        self.secret = secret
        # hosted-page state; a real processor keeps this on its side
        self.sessions: Dict[str, Dict[str, Any]] = {}

    async def create_checkout_session(
        self, line_items: List[LineItem], success_url: str, cancel_url: str,
        correlation_id: str, currency: str,
    ) -> CreateSessionResult:
        psid = f"mock_{uuid.uuid4().hex}"
        self.sessions[psid] = {
            "order_id": correlation_id,
            "line_items": list(line_items),
            "amount_total": sum(
                li["unit_amount"] * li["quantity"] for li in line_items
            ),
            "currency": currency,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "created_at": now_ts(),
        }
        return {"payment_session_id": psid, "redirect_url": f"/mockpay/{psid}"}

    def get_session(self, psid: str) -> Optional[Dict[str, Any]]:
        return self.sessions.get(psid)

    def sign(self, payload: bytes) -> str:
        mac = hmac.new(self.secret.encode(), payload, hashlib.sha256).digest()
        return base64.b64encode(mac).decode()

    def build_event(self, psid: str, kind: str,
                    customer: Optional[Customer] = None,
                    shipping: Optional[ShippingAddress] = None) -> dict:
        ps = self.sessions.get(psid)
        if ps is None:
            raise ValidationError("payment session not found")
        if kind not in EVENT_KINDS:
            raise ValidationError("invalid kind")
        return {
            "type": f"payment.{kind}",
            "payment_session_id": psid,
            "metadata": {"order_id": ps["order_id"]},
            "amount_total": ps["amount_total"],
            "currency": ps["currency"],
            "created_at": int(now_ts()),
            "idempotency_key": f"evt_{uuid.uuid4().hex}",
            "customer_details": customer.model_dump() if customer else None,
            "shipping_details": shipping.model_dump() if shipping else None,
        }

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        sig = headers.get(SIGNATURE_HEADER)
        expected = self.sign(payload)
        if not sig or not hmac.compare_digest(expected, sig):
            raise UnverifiedEventError("Invalid signature")
        try:
            event = json.loads(payload.decode())
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise UnverifiedEventError("Invalid JSON")
        if not isinstance(event, dict):
            raise UnverifiedEventError("Invalid event")
        return event

    def parse_event(self, event: dict) -> PaymentEvent:
        kind = str(event.get("type", "")).split(".")[-1]
        metadata = event.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
        # foreign events carry no order id; the handler acknowledges them
        order_id = metadata.get("order_id") or event.get("order_id") or ""
        customer = event.get("customer_details")
        shipping = event.get("shipping_details")
        if not isinstance(customer or {}, dict) \
                or not isinstance(shipping or {}, dict):
            raise ValidationError("malformed customer or shipping details")
        amount = event.get("amount_total")
        if amount is not None and not isinstance(amount, int):
            raise ValidationError("malformed amount_total")
        return PaymentEvent(
            kind=kind,
            order_id=str(order_id),
            payment_session_id=str(event.get("payment_session_id") or ""),
            idempotency_key=event.get("idempotency_key"),
            customer=_details(Customer, customer),
            shipping=_details(ShippingAddress, shipping),
            amount_total=int(amount) if amount is not None else None,
        )


def _details(model, raw: Optional[dict]):
    if not raw:
        return None
    # processors send null for blank address/contact fields
    fields = {k: v for k, v in raw.items() if v is not None}
    try:
        return model(**fields)
    except PydanticValidationError as e:
        raise ValidationError(f"malformed {model.__name__}: {e.error_count()} "
                              f"invalid field(s)") from e
