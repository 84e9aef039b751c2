"""
Bringin Lightning Address payment provider.

Issues invoices through LNURL-pay for a Bringin Lightning Address (sats are
auto-converted to EUR on the merchant side) and polls the invoice verify
endpoint for payment status.

Flow:
  1. Convert the EUR amount to sats/msats at a fixed rate
  2. Resolve the Lightning Address to its LNURL-pay endpoint
  3. Request an invoice from the LNURL-pay callback
  4. Poll the verify endpoint until paid or expired
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx
import structlog

from bringin_checkout.config import (  # noqa: F401
    BTC_EUR_RATE,
    HTTP_TIMEOUT_SECONDS,
    INVOICE_EXPIRY_MINUTES,
    get_lightning_address,
)
from bringin_checkout.models import (
    BringinInvoice,
    InvoiceResponse,
    PayParams,
    PaymentStatus,
    SessionStatus,
)
from bringin_checkout.results import Result, failure, success

logger = structlog.get_logger(__name__)

SATS_PER_BTC = 100_000_000
MSATS_PER_SAT = 1000

# Verify endpoint statuses meaning "not reachable yet", reported as pending
UNREACHABLE_STATUSES = (404, 503)

# Verify response shapes, checked in order. The first group that matches wins.
PAID_SHAPES = (("settled", True), ("paid", True), ("status", "paid"))
EXPIRED_SHAPES = (("expired", True), ("status", "expired"))


def eur_to_sats(eur_amount: float, rate: float = BTC_EUR_RATE) -> int:
    # Round half up, independent of float banker's rounding
    return math.floor(eur_amount / rate * SATS_PER_BTC + 0.5)


def sats_to_eur(sats: int, rate: float = BTC_EUR_RATE) -> float:
    return sats / SATS_PER_BTC * rate


def sats_to_msats(sats: int) -> int:
    return sats * MSATS_PER_SAT


def resolve_address(ln_address: str) -> Result[str]:
    """Map user@domain to https://domain/.well-known/lnurlp/user."""
    parts = ln_address.split("@")
    if len(parts) != 2:
        return failure("invalid_address", f"Invalid Lightning Address format: {ln_address}")

    user, domain = parts
    if not user or not domain:
        return failure("invalid_address", "Lightning Address must be in format user@domain")

    return success(f"https://{domain}/.well-known/lnurlp/{user}")


def _callback_to_verify(callback: str) -> httpx.URL:
    url = httpx.URL(callback)
    path = url.path
    trailing = "/" if path.endswith("/") and len(path) > 1 else ""
    head, _, last = path.rstrip("/").rpartition("/")
    if last == "callback":
        path = f"{head}/verify{trailing}"
    return url.copy_with(path=path)


def derive_verify_url(response: InvoiceResponse, callback: str, ln_address: str) -> str:
    """
    Pick the verify URL for an issued invoice.

    LNURL-pay servers expose different subsets of verify/k1/paymentHash/
    checkingId, so the order below is significant.
    """
    if response.verify:
        return response.verify

    if response.k1:
        return str(_callback_to_verify(callback).copy_set_param("k1", response.k1))

    if response.payment_hash or response.checking_id:
        handle, domain = ln_address.split("@", 1)
        if response.payment_hash:
            params = {"paymentHash": response.payment_hash}
        else:
            params = {"checkingId": response.checking_id}
        return str(httpx.URL(f"https://api.{domain}/lnurlp/{handle}/verify", params=params))

    return str(_callback_to_verify(callback))


def _optional_str(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _matches(data: dict, key: str, expected) -> bool:
    value = data.get(key)
    if isinstance(expected, bool):
        return value is expected
    return value == expected


def status_from_body(data: dict) -> SessionStatus:
    if any(_matches(data, key, expected) for key, expected in PAID_SHAPES):
        return SessionStatus.PAID
    if any(_matches(data, key, expected) for key, expected in EXPIRED_SHAPES):
        return SessionStatus.EXPIRED
    return SessionStatus.PENDING


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class BringinProvider:
    def __init__(
        self,
        rate: float = BTC_EUR_RATE,
        invoice_expiry: timedelta = timedelta(minutes=INVOICE_EXPIRY_MINUTES),
        timeout: float = HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.rate = rate
        self.invoice_expiry = invoice_expiry
        self.timeout = timeout
        self.transport = transport
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            headers={"Accept": "application/json"},
        )

    async def fetch_pay_params(self, ln_address: str) -> Result[PayParams]:
        url_result = resolve_address(ln_address)
        if not url_result.ok:
            return url_result

        try:
            async with self._client() as client:
                response = await client.get(url_result.data)

            if not response.is_success:
                return failure(
                    "fetch_failed",
                    f"Failed to fetch LNURL params: {response.status_code} {response.reason_phrase}",
                )

            data = response.json()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            return failure("fetch_error", f"Network error fetching LNURL params: {e}")

        if not isinstance(data, dict) or data.get("tag") != "payRequest":
            tag = data.get("tag") if isinstance(data, dict) else None
            return failure("invalid_response", f'Expected tag "payRequest", got: {tag}')

        if not data.get("callback") or not data.get("metadata"):
            return failure("invalid_response", "Missing required fields: callback or metadata")

        if not _is_number(data.get("minSendable")) or not _is_number(data.get("maxSendable")):
            return failure("invalid_response", "minSendable and maxSendable must be numbers")

        return success(PayParams(
            callback=str(data["callback"]),
            min_sendable=int(data["minSendable"]),
            max_sendable=int(data["maxSendable"]),
            metadata=str(data["metadata"]),
            tag=data["tag"],
            comment_allowed=int(data["commentAllowed"]) if _is_number(data.get("commentAllowed")) else None,
        ))

    async def request_invoice(
        self,
        callback: str,
        msats: int,
        min_sendable: int,
        max_sendable: int,
    ) -> Result[InvoiceResponse]:
        if msats < min_sendable or msats > max_sendable:
            return failure(
                "amount_out_of_range",
                f"Amount {msats} msats is outside allowed range: {min_sendable}-{max_sendable} msats",
            )

        try:
            callback_url = httpx.URL(callback).copy_set_param("amount", str(msats))
            async with self._client() as client:
                response = await client.get(callback_url)

            if not response.is_success:
                return failure(
                    "request_failed",
                    f"Failed to request invoice: {response.status_code} {response.reason_phrase}",
                )

            data = response.json()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            return failure("request_error", f"Network error requesting invoice: {e}")

        if not isinstance(data, dict):
            return failure("request_error", "Unexpected LNURL callback response")

        if data.get("status") == "ERROR" or data.get("reason"):
            return failure("request_error", data.get("reason") or "Unknown error from LNURL callback")

        if not data.get("pr"):
            return failure("request_error", "Missing required field: pr (BOLT11 invoice)")

        return success(InvoiceResponse(
            pr=str(data["pr"]),
            verify=_optional_str(data.get("verify")),
            k1=_optional_str(data.get("k1")),
            payment_hash=_optional_str(data.get("paymentHash")),
            checking_id=_optional_str(data.get("checkingId")),
            expires_at=_optional_str(data.get("expiresAt")),
        ))

    async def create_invoice(self, eur_amount: float, ln_address: Optional[str]) -> Result[BringinInvoice]:
        if not ln_address:
            return failure("missing_address", "BRINGIN_LN_ADDRESS environment variable is required")

        if eur_amount <= 0:
            return failure("invalid_amount", "EUR amount must be greater than 0")

        sats = eur_to_sats(eur_amount, self.rate)
        msats = sats_to_msats(sats)

        params_result = await self.fetch_pay_params(ln_address)
        if not params_result.ok:
            return params_result
        params = params_result.data

        invoice_result = await self.request_invoice(
            params.callback, msats, params.min_sendable, params.max_sendable
        )
        if not invoice_result.ok:
            return invoice_result
        invoice = invoice_result.data

        verify_url = derive_verify_url(invoice, params.callback, ln_address)
        expires_at = parse_timestamp(invoice.expires_at) or self.clock() + self.invoice_expiry

        logger.info("bringin_invoice_created", ln_address=ln_address, sats=sats, verify_url=verify_url)

        return success(BringinInvoice(
            bolt11=invoice.pr,
            verify_url=verify_url,
            expires_at=expires_at,
            sats=sats,
            msats=msats,
            payment_hash=invoice.payment_hash,
        ))

    async def check_status(self, verify_url: str) -> Result[PaymentStatus]:
        """
        Poll the verify URL once.

        Unreachable endpoints and network errors are reported as pending so
        the caller's poll loop keeps going.
        """
        try:
            async with self._client() as client:
                response = await client.get(verify_url)

            if not response.is_success:
                if response.status_code in UNREACHABLE_STATUSES:
                    return success(PaymentStatus(status=SessionStatus.PENDING))
                return failure(
                    "request_failed",
                    f"Failed to check status: {response.status_code} {response.reason_phrase}",
                )

            data = response.json()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.warning("verify_poll_failed", verify_url=verify_url, error=str(e))
            return success(PaymentStatus(status=SessionStatus.PENDING))

        if not isinstance(data, dict):
            return success(PaymentStatus(status=SessionStatus.PENDING))

        paid_at = data.get("settledAt") or data.get("paidAt")
        eur_credited = data.get("eurCredited")
        return success(PaymentStatus(
            status=status_from_body(data),
            paid_at=paid_at if isinstance(paid_at, str) else None,
            eur_credited=eur_credited if isinstance(eur_credited, bool) else None,
        ))

