"""
Send a signed BTCPay webhook to a running lnpay instance.

    python scripts/simulate_webhook.py <invoice_id> InvoiceSettled
    python scripts/simulate_webhook.py <invoice_id> PaymentReceived --url http://localhost:8000
"""
import argparse
import json
import os
import sys
import uuid

import httpx
from dotenv import load_dotenv

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
load_dotenv()

from lnpay.services.gateway import compute_signature


def main():
    parser = argparse.ArgumentParser(description="Send a signed BTCPay webhook")
    parser.add_argument("invoice_id")
    parser.add_argument("event_type", help="e.g. PaymentReceived, InvoiceSettled, InvoiceExpired")
    parser.add_argument("--url", default="http://localhost:8000")
    parser.add_argument("--delivery-id", default=None)
    parser.add_argument("--paid-amount", default=None)
    args = parser.parse_args()

    secret = os.getenv("BTCPAY_WEBHOOK_SECRET")
    if not secret:
        print("ERROR: BTCPAY_WEBHOOK_SECRET is not set")
        sys.exit(1)

    data = {}
    if args.paid_amount:
        data["paidAmount"] = args.paid_amount

    body = json.dumps({
        "deliveryId": args.delivery_id or f"sim_{uuid.uuid4().hex[:12]}",
        "type": args.event_type,
        "invoiceId": args.invoice_id,
        "data": data,
    }).encode()

    response = httpx.post(
        f"{args.url.rstrip('/')}/webhooks/btcpay",
        content=body,
        headers={
            "Content-Type": "application/json",
            "BTCPay-Sig": compute_signature(body, secret),
        },
        timeout=10,
    )
    print(f"{response.status_code} {response.text}")


if __name__ == "__main__":
    main()
