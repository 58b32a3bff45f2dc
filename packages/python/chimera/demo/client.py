import os
import time

import httpx
from dotenv import load_dotenv
from eth_account import Account

from chimera_facilitator.constants import DOMAIN_NAME, DOMAIN_VERSION
from chimera_facilitator.intents import Intent
from chimera_facilitator.signatures import sign_intent

load_dotenv()

PRIVATE_KEY = os.getenv("PRIVATE_KEY")
if not PRIVATE_KEY or not PRIVATE_KEY.startswith("0x"):
    raise SystemExit("PRIVATE_KEY env var must be set and start with 0x")

FACILITATOR_WALLET_ADDRESS = os.getenv("FACILITATOR_WALLET_ADDRESS")
if not FACILITATOR_WALLET_ADDRESS:
    raise SystemExit("FACILITATOR_WALLET_ADDRESS env var is required")

API_URL = os.getenv("API_URL", "http://localhost:3000")
CHAIN_ID = int(os.getenv("BNB_CHAIN_ID", "97"))
RECIPIENT = os.getenv("RECIPIENT", Account.from_key(PRIVATE_KEY).address)

domain = {
    "name": DOMAIN_NAME,
    "version": DOMAIN_VERSION,
    "chainId": CHAIN_ID,
    "verifyingContract": FACILITATOR_WALLET_ADDRESS,
}
intent = Intent(
    type="transfer",
    nonce=time.time_ns(),
    deadline=int(time.time()) + 600,
    data={"to": RECIPIENT, "amount": "0.0001"},
)

response = httpx.post(
    f"{API_URL}/api/intents/execute",
    json={
        "intent": intent.to_dict(),
        "signature": sign_intent(intent, PRIVATE_KEY, domain),
        "userAddress": Account.from_key(PRIVATE_KEY).address,
    },
    timeout=180,
)
print("Status:", response.status_code)
print("Body:", response.text)
