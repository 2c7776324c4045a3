import json
import hmac
import hashlib
import httpx
import asyncio
from dotenv import load_dotenv
import os
import logging
import time

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

load_dotenv()

BASE_URL = os.getenv("PAYLINK_URL", "http://localhost:8001")
WEBHOOK_URL = f"{BASE_URL}/payments/webhook"
CREATE_URL = f"{BASE_URL}/payments/create"
WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET_KEY")

ANDROID_UA = "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 Mobile Safari/537.36"

if not WEBHOOK_SECRET:
    logger.error("WEBHOOK_SECRET_KEY not found in environment variables!")
    raise ValueError("WEBHOOK_SECRET_KEY is required but not set")


def generate_hmac(timestamp: int, payload: str, secret: str) -> str:
    """HMAC SHA256 over timestamp + "." + payload, hex encoded."""
    signed_payload = f"{timestamp}.{payload}"
    return hmac.new(secret.encode(), signed_payload.encode(), hashlib.sha256).hexdigest()


async def create_transaction(client: httpx.AsyncClient, pay_type: str = "phonepe", amount: str = "250.00") -> dict:
    response = await client.post(
        CREATE_URL,
        json={"amount": amount, "pay_type": pay_type},
        headers={"User-Agent": ANDROID_UA},
        timeout=10.0,
    )
    response.raise_for_status()
    created = response.json()
    logger.info(f"Created {created['tx_id']} ({pay_type}, {amount})")
    return created


async def send_webhook(client: httpx.AsyncClient, payload: dict, signature: str = None, timestamp: int = None):
    """
    Deliver a webhook with X-Signature/X-Timestamp headers.

    `signature` and `timestamp` override the computed values for negative cases.
    """
    payload_str = json.dumps(payload, separators=(",", ":"))
    timestamp = timestamp or int(time.time())

    headers = {
        "Content-Type": "application/json",
        "X-Timestamp": str(timestamp),
        "X-Signature": signature or generate_hmac(timestamp, payload_str, WEBHOOK_SECRET),
    }

    try:
        return await client.post(WEBHOOK_URL, content=payload_str, headers=headers, timeout=10.0)
    except httpx.RequestError as e:
        logger.error(f"Request failed: {str(e)}")
        return None


async def run_test_scenarios():
    async with httpx.AsyncClient() as client:
        paid = await create_transaction(client)
        stale = await create_transaction(client, pay_type="paytm", amount="99.50")

        test_cases = [
            {
                "name": "Case 1: Success Path",
                "payload": {
                    "tx_id": paid["tx_id"],
                    "status": "success",
                    "amount": "250.00",
                    "provider_reference": f"UPI{int(time.time())}",
                    "signature": paid["signature"],
                },
                "expected_status": 200,
                "expected_outcome": "processed",
            },
            {
                "name": "Case 2: Redelivery",
                "payload": {"tx_id": paid["tx_id"], "status": "failed"},
                "expected_status": 200,
                "expected_outcome": "already_resolved",
            },
            {
                "name": "Case 3: Invalid Transport Signature",
                "payload": {"tx_id": stale["tx_id"], "status": "success"},
                "expected_status": 401,
                "signature": "fake_sig",
            },
            {
                "name": "Case 4: Stale Timestamp",
                "payload": {"tx_id": stale["tx_id"], "status": "success"},
                "expected_status": 401,
                "timestamp": int(time.time()) - 3600,
            },
            {
                "name": "Case 5: Tampered Payload Signature",
                "payload": {"tx_id": stale["tx_id"], "status": "success", "signature": "0" * 64},
                "expected_status": 400,
            },
            {
                "name": "Case 6: Amount Mismatch",
                "payload": {"tx_id": stale["tx_id"], "status": "success", "amount": "1.00"},
                "expected_status": 400,
            },
            {
                "name": "Case 7: Unknown Transaction",
                "payload": {"tx_id": "cwdoesnotexist", "status": "success"},
                "expected_status": 404,
            },
        ]

        for case in test_cases:
            logger.info(f"\n=== {case['name']} ===")

            response = await send_webhook(
                client,
                case["payload"],
                signature=case.get("signature"),
                timestamp=case.get("timestamp"),
            )
            status_code = response.status_code if response is not None else None
            response_data = response.json() if response is not None else None

            passed = status_code == case["expected_status"]
            if passed and "expected_outcome" in case:
                passed = response_data.get("status") == case["expected_outcome"]

            if passed:
                logger.info("PASS")
            else:
                logger.info("FAIL")
                logger.info(f"Expected status: {case['expected_status']}, Got: {status_code}")

            if response_data:
                logger.info(f"Response: {response_data}")

            await asyncio.sleep(1)


async def main():
    logger.info("Starting PayLink Mock Sender")
    logger.info(f"Target URL: {WEBHOOK_URL}")

    try:
        await run_test_scenarios()
        logger.info("\nMock sender completed successfully")
    except KeyboardInterrupt:
        logger.info("\nMock sender interrupted")
    except httpx.HTTPError as e:
        logger.error(f"Mock sender failed: {str(e)}")


if __name__ == "__main__":
    asyncio.run(main())
