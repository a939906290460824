"""Sign a sample Stripe event with the local webhook secret and POST it to the API.

Usage: python scripts/send_test_webhook.py [API_BASE_URL] [EVENT_TYPE]
"""

import json
import sys
import time
import uuid

import httpx

from app.application.services.stripe_signature_service import compute_signature
from app.core.config import settings

API_BASE_URL = "http://localhost:8000"
DEV_STRIPE_CUSTOMER_ID = "cus_dev_owner"


def build_subscription_event(event_type: str) -> dict:
    now = int(time.time())
    return {
        "id": f"evt_{uuid.uuid4().hex[:24]}",
        "object": "event",
        "type": event_type,
        "api_version": "2024-06-20",
        "livemode": False,
        "created": now,
        "data": {
            "object": {
                "id": "sub_dev_owner",
                "object": "subscription",
                "customer": DEV_STRIPE_CUSTOMER_ID,
                "status": "active",
                "cancel_at_period_end": False,
                "current_period_start": now,
                "current_period_end": now + 30 * 86400,
                "items": {
                    "object": "list",
                    "data": [
                        {
                            "id": "si_dev_owner",
                            "price": {
                                "id": "price_dev_monthly",
                                "unit_amount": 1500,
                                "currency": "usd",
                                "recurring": {"interval": "month"},
                            },
                        }
                    ],
                },
            }
        },
    }


def main() -> int:
    base_url = sys.argv[1].rstrip("/") if len(sys.argv) > 1 else API_BASE_URL
    event_type = sys.argv[2] if len(sys.argv) > 2 else "customer.subscription.created"
    if not settings.stripe_webhook_secret:
        print("STRIPE_WEBHOOK_SECRET is not set")
        return 1

    body = json.dumps(build_subscription_event(event_type)).encode("utf-8")
    timestamp = int(time.time())
    signature = compute_signature(settings.stripe_webhook_secret, timestamp=timestamp, payload_bytes=body)

    response = httpx.post(
        f"{base_url}/webhook/stripe",
        content=body,
        headers={"Content-Type": "application/json", "Stripe-Signature": f"t={timestamp},v1={signature}"},
        timeout=10.0,
    )
    print(f"[{response.status_code}] {response.text}")
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
