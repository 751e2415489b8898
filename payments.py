"""
Client for the PortOne (iamport) payment gateway.

Only the verification path is used: exchange the REST API key/secret for an
access token, then look up a payment by its ``imp_uid``. Settlement stays on
the gateway side.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests
from fastapi import Request

from errors import UpstreamError
from settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class PaymentVerification:
    payment_id: str
    status: str
    amount: Optional[float]
    merchant_uid: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.status == "paid"


def _json_object(response: requests.Response) -> Dict[str, Any]:
    """Decode a gateway reply; PortOne always answers with a JSON object"""
    body = response.json()
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise UpstreamError("The payment gateway returned an unexpected response.")
    return body


def _error_message(response: Optional[requests.Response]) -> Optional[str]:
    if response is None:
        return None
    try:
        message = response.json()
    except ValueError:
        return None
    return message.get("message") if isinstance(message, dict) else None


class PortOneClient:
    def __init__(self, base_url: str, api_key: str, api_secret: str, timeout: Optional[float] = 10.0, session=None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.api_secret = api_secret
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "PortOneClient":
        return cls(
            settings.portone_api_url,
            settings.portone_api_key,
            settings.portone_api_secret,
            timeout=settings.payment_timeout,
        )

    def _access_token(self) -> str:
        resp = self.session.post(
            f"{self.base_url}/users/getToken",
            json={"imp_key": self.api_key, "imp_secret": self.api_secret},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        body = _json_object(resp)
        payload = body.get("response")
        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise UpstreamError("Failed to obtain a payment gateway access token.")
        return token

    def fetch_payment(self, payment_id: str) -> PaymentVerification:
        """Return the gateway's authoritative status and amount for ``payment_id``"""
        logger.info("Verifying payment %s with PortOne", payment_id)
        try:
            token = self._access_token()
            resp = self.session.get(
                f"{self.base_url}/payments/{payment_id}",
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            body = _json_object(resp)
        except requests.HTTPError as exc:
            message = _error_message(exc.response) or str(exc)
            logger.error("PortOne rejected verification of %s: %s", payment_id, message)
            raise UpstreamError(f"Payment verification failed: {message}", rejected=True)
        except (requests.RequestException, ValueError) as exc:
            logger.error("PortOne verification of %s failed: %s", payment_id, exc)
            raise UpstreamError("An error occurred while verifying the payment. Please try again later.")

        payment = body.get("response")
        if not isinstance(payment, dict) or not payment:
            raise UpstreamError("Failed to look up the payment with the gateway.")

        verification = PaymentVerification(
            payment_id=payment.get("imp_uid") or payment_id,
            status=payment.get("status"),
            amount=payment.get("amount"),
            merchant_uid=payment.get("merchant_uid"),
            raw=payment,
        )
        logger.info("PortOne payment %s status=%s amount=%s", verification.payment_id, verification.status, verification.amount)
        return verification


def get_payment_gateway(request: Request) -> PortOneClient:
    return request.app.state.payment_gateway
