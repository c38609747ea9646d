"""
PhonePe pay-page integration: checksums, payment initiation and webhook payload decoding.
"""
import base64
import hashlib
import json
import logging
import secrets
import string
import time

import httpx

from ..config import get_settings

logger = logging.getLogger(__name__)

PAY_ENDPOINT = "/pg/v1/pay"


class PaymentVerificationError(Exception):
    """A webhook payload failed checksum verification or could not be decoded."""


def _sha256(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def generate_checksum(payload_base64: str, endpoint: str = PAY_ENDPOINT) -> str:
    settings = get_settings()
    return f"{_sha256(payload_base64 + endpoint + settings.phonepe_salt_key)}###{settings.phonepe_salt_index}"


def verify_checksum(payload_base64: str, received_checksum: str) -> bool:
    """Webhook checksums are sha256(response + salt) + '###' + salt index."""
    settings = get_settings()
    expected = f"{_sha256(payload_base64 + settings.phonepe_salt_key)}###{settings.phonepe_salt_index}"
    return secrets.compare_digest(expected, received_checksum or "")


def decode_webhook_payload(payload_base64: str, x_verify: str) -> dict:
    if not x_verify:
        raise PaymentVerificationError("Missing verification header")
    if not payload_base64 or not verify_checksum(payload_base64, x_verify):
        raise PaymentVerificationError("Invalid checksum")
    try:
        return json.loads(base64.b64decode(payload_base64).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise PaymentVerificationError(f"Undecodable payload: {e}") from e


def generate_transaction_id() -> str:
    chars = string.ascii_uppercase + string.digits
    random_code = "".join(secrets.choice(chars) for _ in range(6))
    return f"TXN{int(time.time() * 1000)}{random_code}"


async def initiate_payment(merchant_transaction_id: str, amount: int, merchant_user_id: str, redirect_url: str, callback_url: str) -> dict:
    """Create a PhonePe pay-page session. Returns PhonePe's JSON response."""
    settings = get_settings()
    payload = {
        "merchantId": settings.phonepe_merchant_id,
        "merchantTransactionId": merchant_transaction_id,
        "merchantUserId": merchant_user_id,
        "amount": amount,
        "redirectUrl": redirect_url,
        "redirectMode": "POST",
        "callbackUrl": callback_url,
        "paymentInstrument": {"type": "PAY_PAGE"},
    }
    payload_base64 = base64.b64encode(json.dumps(payload).encode("utf-8")).decode("utf-8")

    async with httpx.AsyncClient(timeout=15.0) as client:
        response = await client.post(
            f"{settings.phonepe_base_url}{PAY_ENDPOINT}",
            json={"request": payload_base64},
            headers={"Content-Type": "application/json", "X-VERIFY": generate_checksum(payload_base64)},
        )
    logger.info(f"[PhonePe] Pay request {merchant_transaction_id} -> {response.status_code}")
    return response.json()
