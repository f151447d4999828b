import logging

import httpx

from .conf import booking_settings

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """The mobile-money provider rejected the request or could not be reached."""


class MobileMoneyGateway:
    """Client for the provider's mobile-money collection API."""

    def __init__(self, base_url=None, api_key=None, account_no=None, currency=None, timeout=None):
        conf = booking_settings()
        gateway = conf["GATEWAY"]
        self.base_url = (base_url or gateway["BASE_URL"]).rstrip("/")
        self.api_key = api_key if api_key is not None else gateway["API_KEY"]
        self.account_no = account_no if account_no is not None else gateway["ACCOUNT_NO"]
        self.currency = currency or conf["CURRENCY"]
        self.timeout = timeout or gateway["TIMEOUT"]

    def request_payment(self, msisdn, amount, reference, narration):
        payload = {
            "account_no": self.account_no,
            "amount": float(amount),
            "currency": self.currency,
            "msisdn": msisdn,
            "reference": reference,
            "narration": narration,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(f"{self.base_url}/mobile-money/request-payment", json=payload, headers=headers)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Payment request %s failed: %s", reference, e)
            raise GatewayError(str(e)) from e
        logger.info("Payment prompt sent for %s", reference)
        try:
            return resp.json()
        except ValueError:
            return {}


def get_gateway():
    return MobileMoneyGateway()
