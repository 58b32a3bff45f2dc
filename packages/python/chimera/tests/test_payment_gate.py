import base64
import json

import pytest

pytest.importorskip("x402")

from conftest import CHAIN_ID, NOW, OTHER_KEY, RECIPIENT, FakeClock, user_address

from chimera_facilitator.intents import PaymentDetails
from chimera_facilitator.payment import (
    EndpointPrice,
    PaymentGate,
    decode_payment_header,
    encode_payment_header,
)
from chimera_facilitator.signatures import sign_payment

TOKEN = "0x337610d27c682E347C9cD60BD4b3b107C9d34dDd"


def _gate(clock=None):
    price = EndpointPrice(
        amount="1000",
        token=TOKEN,
        recipient=RECIPIENT,
        chain_id=CHAIN_ID,
        endpoint="/api/contracts/audit",
        description="Contract security audit",
    )
    return PaymentGate(price, clock=clock or FakeClock())


def _header(gate, **overrides):
    fields = {
        "payment_id": "pay-1",
        "amount": "1000",
        "token": TOKEN,
        "recipient": RECIPIENT,
        "endpoint": "/api/contracts/audit",
        "deadline": int(NOW) + 300,
    }
    fields.update(overrides)
    details = PaymentDetails(**fields)
    return encode_payment_header(details, sign_payment(details, OTHER_KEY, gate.domain))


def test_challenge_describes_price():
    body = _gate().challenge()
    assert body["amount"] == "1000"
    assert body["requiredToken"] == TOKEN
    assert body["deadline"] == int(NOW) + 300
    accepts = body["accepts"][0]
    assert accepts["network"] == "eip155:97"
    assert accepts["payTo"] == RECIPIENT
    assert accepts["extra"]["paymentId"] == body["paymentId"]


def test_valid_payment_is_accepted():
    gate = _gate()
    verification = gate.verify(_header(gate))
    assert verification.valid
    assert verification.payer == user_address(OTHER_KEY)
    assert verification.to_dict()["paymentId"] == "pay-1"


def test_plain_json_header_is_accepted():
    gate = _gate()
    plain = base64.b64decode(_header(gate)).decode()
    assert gate.verify(plain).valid


def test_wrong_amount_is_rejected():
    gate = _gate()
    verification = gate.verify(_header(gate, amount="999"))
    assert verification.to_dict() == {
        "error": "Invalid payment amount",
        "expected": "1000",
        "received": "999",
    }


def test_token_is_compared_case_insensitively():
    gate = _gate()
    assert gate.verify(_header(gate, token=TOKEN.lower())).valid


def test_wrong_token_is_rejected():
    gate = _gate()
    assert gate.verify(_header(gate, token="0x" + "99" * 20)).error == "Invalid payment token"


def test_wrong_recipient_is_rejected():
    gate = _gate()
    assert gate.verify(_header(gate, recipient="0x" + "98" * 20)).error == "Invalid payment recipient"


def test_expired_payment_is_rejected():
    clock = FakeClock()
    gate = _gate(clock)
    header = _header(gate)
    clock.advance(301)
    assert gate.verify(header).error == "Payment deadline expired"


def test_bad_signature_is_rejected():
    gate = _gate()
    payload = json.loads(base64.b64decode(_header(gate)))
    payload["signature"] = "0x1234"
    verification = gate.verify(json.dumps(payload))
    assert verification.error == "Payment verification failed"


def test_undecodable_header_raises():
    with pytest.raises(ValueError):
        decode_payment_header("%%%not-base64%%%")
    with pytest.raises(ValueError, match="signature"):
        decode_payment_header(json.dumps({"paymentDetails": {}}))
