"""EIP-712 signature recovery for intents and payments."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3

from .intents import Intent, PaymentDetails, intent_typed_data, payment_typed_data

logger = logging.getLogger(__name__)


def _recover(full_message: Dict[str, Any], signature: str) -> Optional[str]:
    try:
        signable = encode_typed_data(full_message=full_message)
        return Account.recover_message(signable, signature=signature)
    except Exception as exc:
        # Malformed signatures and unencodable messages must not cross the trust boundary.
        logger.warning("signature recovery failed: %s", exc)
        return None


def verify_intent(intent: Intent, signature: str, domain: Mapping[str, Any]) -> Optional[str]:
    """Return the address that signed ``intent``, or ``None`` when invalid."""

    if not signature:
        return None
    if not intent.hash_matches_data():
        logger.warning(
            "intent dataHash does not match payload digest nonce=%s type=%s",
            intent.nonce,
            intent.type,
        )
        return None
    signer = _recover(intent_typed_data(intent, domain), signature)
    if signer is not None:
        logger.debug("intent signature recovered signer=%s nonce=%s", signer, intent.nonce)
    return signer


def verify_payment(
    details: PaymentDetails, signature: str, domain: Mapping[str, Any]
) -> Optional[str]:
    """Return the payer address for a ``Payment`` signature, or ``None``."""

    if not signature:
        return None
    return _recover(payment_typed_data(details, domain), signature)


def sign_intent(intent: Intent, private_key: str, domain: Mapping[str, Any]) -> str:
    """Sign ``intent`` with ``private_key``; used by clients and tests."""

    signable = encode_typed_data(full_message=intent_typed_data(intent, domain))
    signed = Account.sign_message(signable, private_key=private_key)
    return Web3.to_hex(signed.signature)


def sign_payment(details: PaymentDetails, private_key: str, domain: Mapping[str, Any]) -> str:
    signable = encode_typed_data(full_message=payment_typed_data(details, domain))
    signed = Account.sign_message(signable, private_key=private_key)
    return Web3.to_hex(signed.signature)
