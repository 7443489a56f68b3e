import asyncio
import json

import pytest

from shopfront.errors import UnverifiedEventError, ValidationError
from shopfront.mockpay import SIGNATURE_HEADER, MockPay
from shopfront.model.schemas import Customer


@pytest.fixture
def pay():
    return MockPay(secret="shh")


@pytest.fixture
def psid(pay):
    session = asyncio.run(pay.create_checkout_session(
        [{"name": "Trail Runner", "unit_amount": 2000, "quantity": 2}],
        success_url="http://shop.test/success?order_id=o1",
        cancel_url="http://shop.test/cart?canceled=1",
        correlation_id="o1",
        currency="usd",
    ))
    return session["payment_session_id"]


def signed(pay, event):
    payload = json.dumps(event).encode()
    return payload, {SIGNATURE_HEADER: pay.sign(payload)}


def test_session_remembers_amount_and_order(pay, psid):
    ps = pay.get_session(psid)
    assert ps["order_id"] == "o1"
    assert ps["amount_total"] == 4000
    assert psid.startswith("mock_")


def test_signed_event_round_trips(pay, psid):
    event = pay.build_event(psid, "succeeded",
                            customer=Customer(name="Ada"))
    payload, headers = signed(pay, event)

    parsed = pay.parse_event(pay.verify_webhook(payload, headers))
    assert parsed.kind == "succeeded"
    assert parsed.order_id == "o1"
    assert parsed.payment_session_id == psid
    assert parsed.amount_total == 4000
    assert parsed.customer.name == "Ada"
    assert parsed.shipping is None
    assert parsed.idempotency_key.startswith("evt_")


def test_tampered_payload_is_rejected(pay, psid):
    payload, headers = signed(pay, pay.build_event(psid, "succeeded"))
    tampered = payload.replace(b"4000", b"1")
    with pytest.raises(UnverifiedEventError):
        pay.verify_webhook(tampered, headers)


def test_missing_or_foreign_signature_is_rejected(pay, psid):
    payload, _ = signed(pay, pay.build_event(psid, "succeeded"))
    with pytest.raises(UnverifiedEventError):
        pay.verify_webhook(payload, {})
    foreign = MockPay(secret="other").sign(payload)
    with pytest.raises(UnverifiedEventError):
        pay.verify_webhook(payload, {SIGNATURE_HEADER: foreign})


def test_signed_garbage_is_rejected(pay):
    payload = b"[1, 2, 3]"
    with pytest.raises(UnverifiedEventError):
        pay.verify_webhook(payload, {SIGNATURE_HEADER: pay.sign(payload)})


def test_malformed_details_are_invalid(pay):
    with pytest.raises(ValidationError):
        pay.parse_event({"type": "payment.succeeded",
                         "metadata": {"order_id": "o1"},
                         "customer_details": "Ada"})


def test_unknown_session_or_kind(pay, psid):
    with pytest.raises(ValidationError):
        pay.build_event("mock_nope", "succeeded")
    with pytest.raises(ValidationError):
        pay.build_event(psid, "refunded")


def test_null_detail_fields_are_blank(pay, psid):
    event = pay.build_event(psid, "succeeded")
    event["customer_details"] = {"name": "Ada", "email": None, "phone": None}
    event["shipping_details"] = {"name": "Ada", "line1": "1 Main St",
                                 "line2": None, "state": None,
                                 "city": "Oslo", "postal_code": "0150",
                                 "country": "NO"}

    parsed = pay.parse_event(event)
    assert parsed.customer.email == ""
    assert parsed.shipping.line2 == ""
    assert parsed.shipping.city == "Oslo"


def test_wrongly_typed_detail_field_is_invalid(pay, psid):
    event = pay.build_event(psid, "succeeded")
    event["shipping_details"] = {"line1": ["not", "a", "string"]}
    with pytest.raises(ValidationError):
        pay.parse_event(event)


def test_event_without_order_parses_with_empty_id(pay):
    parsed = pay.parse_event({"type": "payment.succeeded",
                              "payment_session_id": "x"})
    assert parsed.order_id == ""
    assert parsed.payment_session_id == "x"
