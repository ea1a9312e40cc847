"""eSewa ePay v2 adapter.

Builds the signed form a browser posts to eSewa, and checks the base64
payload eSewa sends back to the success URL: signature first, then the
transaction-status API.
"""
import base64
import binascii
import hashlib
import hmac
import json
import logging
from typing import Dict

import requests

from .errors import GatewayError
from .helpers import safe_float

logger = logging.getLogger(__name__)

INITIATION_SIGNED_FIELDS = ("total_amount", "transaction_uuid", "product_code")
STATUS_PATH = "/api/epay/transaction/status/"
FORM_PATH = "/api/epay/main/v2/form"


def format_amount(value) -> str:
    amount = round(safe_float(value, 0.0), 2)
    if amount == int(amount):
        return str(int(amount))
    return f"{amount:.2f}"


class EsewaGateway:
    name = "esewa"

    def __init__(
        self,
        product_code: str,
        secret_key: str,
        gateway_url: str,
        success_url: str = "",
        failure_url: str = "",
        timeout: float = 10,
    ):
        self.product_code = product_code
        self.secret_key = secret_key
        self.gateway_url = gateway_url.rstrip("/")
        self.success_url = success_url
        self.failure_url = failure_url
        self.timeout = timeout

    @property
    def form_url(self) -> str:
        return f"{self.gateway_url}{FORM_PATH}"

    def sign(self, fields: Dict[str, object], signed_field_names) -> str:
        message = ",".join(f"{name}={fields.get(name, '')}" for name in signed_field_names)
        digest = hmac.new(
            self.secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256
        ).digest()
        return base64.b64encode(digest).decode("ascii")

    def initiate(self, amount, transaction_uuid: str) -> Dict[str, str]:
        total_amount = format_amount(amount)
        payload = {
            "amount": total_amount,
            "tax_amount": "0",
            "total_amount": total_amount,
            "transaction_uuid": str(transaction_uuid),
            "product_code": self.product_code,
            "product_service_charge": "0",
            "product_delivery_charge": "0",
            "success_url": self.success_url,
            "failure_url": self.failure_url,
            "signed_field_names": ",".join(INITIATION_SIGNED_FIELDS),
        }
        payload["signature"] = self.sign(payload, INITIATION_SIGNED_FIELDS)
        return payload

    def decode(self, encoded_data: str) -> Dict:
        if not encoded_data:
            raise GatewayError("Missing payment data")
        try:
            padded = encoded_data + "=" * (-len(encoded_data) % 4)
            decoded = json.loads(base64.b64decode(padded).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError):
            raise GatewayError("Malformed payment data")
        if not isinstance(decoded, dict):
            raise GatewayError("Malformed payment data")
        return decoded

    def verify(self, encoded_data: str) -> Dict[str, Dict]:
        """Return ``{"decoded_data": ..., "response": ...}`` for a genuine payment."""
        decoded = self.decode(encoded_data)

        signed_field_names = str(decoded.get("signed_field_names") or "").split(",")
        if not decoded.get("signature") or not any(signed_field_names):
            raise GatewayError("Invalid payment signature")
        expected_signature = self.sign(decoded, signed_field_names)
        if not hmac.compare_digest(expected_signature, str(decoded["signature"])):
            logger.warning(
                "Rejected eSewa payload with a bad signature for %s",
                decoded.get("transaction_uuid"),
            )
            raise GatewayError("Invalid payment signature")

        response = self.fetch_status(decoded.get("total_amount"), decoded.get("transaction_uuid"))
        if (
            response.get("status") != "COMPLETE"
            or str(response.get("transaction_uuid")) != str(decoded.get("transaction_uuid"))
            or safe_float(response.get("total_amount"), None)
            != safe_float(decoded.get("total_amount"), None)
        ):
            logger.warning("eSewa status check did not confirm payment: %s", response)
            raise GatewayError("Payment could not be verified")

        return {"decoded_data": decoded, "response": response}

    def fetch_status(self, total_amount, transaction_uuid) -> Dict:
        try:
            response = requests.get(
                f"{self.gateway_url}{STATUS_PATH}",
                params={
                    "product_code": self.product_code,
                    "total_amount": total_amount,
                    "transaction_uuid": transaction_uuid,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("eSewa status query failed: %s", exc)
            raise GatewayError("Unable to reach the payment provider")
        if not isinstance(data, dict):
            raise GatewayError("Unexpected response from the payment provider")
        return data
