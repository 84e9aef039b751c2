from datetime import datetime
from typing import Any, Dict, Optional

import httpx
import structlog

from bringin_checkout.config import HTTP_TIMEOUT_SECONDS, get_settlement_api_key, get_settlement_api_url

logger = structlog.get_logger(__name__)


class SettlementAPIError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SettlementClient:
    """Client for the checkout API that owns the checkout lifecycle."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
                headers=headers,
            ) as client:
                response = await client.request(method, path, json=payload)
        except httpx.HTTPError as e:
            raise SettlementAPIError(f"Settlement API unreachable: {e}") from e

        if not response.is_success:
            raise SettlementAPIError(
                f"Settlement API {method} {path} failed: {response.status_code} {response.text}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise SettlementAPIError(f"Invalid JSON from settlement API: {e}") from e

    async def confirm(self, confirm: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/checkouts/confirm", confirm)

    async def create(self, checkout: Dict[str, Any], node_id: str) -> Dict[str, Any]:
        return await self._request("POST", "/checkouts", {**checkout, "nodeId": node_id})

    async def get(self, checkout_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/checkouts/{checkout_id}")

    async def register_invoice(
        self,
        checkout_id: str,
        payment_hash: str,
        invoice: str,
        invoice_expires_at: datetime,
        node_id: str,
        scid: str = "",
    ) -> Dict[str, Any]:
        return await self._request("POST", "/checkouts/register-invoice", {
            "checkoutId": checkout_id,
            "paymentHash": payment_hash,
            "invoice": invoice,
            "invoiceExpiresAt": invoice_expires_at.isoformat(),
            "nodeId": node_id,
            "scid": scid,
        })

    async def payment_received(self, payment_hash: str, amount_sats: int, sandbox: bool) -> Dict[str, Any]:
        logger.info("settlement_payment_received", payment_hash=payment_hash, amount_sats=amount_sats, sandbox=sandbox)
        return await self._request("POST", "/checkouts/payment-received", {
            "payments": [
                {"paymentHash": payment_hash, "amountSats": amount_sats, "sandbox": sandbox},
            ],
        })


def create_settlement_client() -> SettlementClient:
    base_url = get_settlement_api_url()
    if not base_url:
        raise SettlementAPIError("SETTLEMENT_API_URL is not set. Check your .env file.")
    return SettlementClient(base_url, api_key=get_settlement_api_key())
