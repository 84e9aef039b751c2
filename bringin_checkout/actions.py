import re
from typing import Any, Dict, List, Optional, Set

import structlog

from bringin_checkout.bringin_provider import BringinProvider, get_lightning_address, sats_to_eur
from bringin_checkout.config import is_preview_environment
from bringin_checkout.results import Result, failure, success
from bringin_checkout.sessions import SessionStore, session_store
from bringin_checkout.settlement_client import create_settlement_client

logger = structlog.get_logger(__name__)

BRINGIN_NODE_ID = "bringin-lnurl"
DEFAULT_INVOICE_SATS = 1000

# Payment hashes marked as received in this process
_received_payments: Set[str] = set()


class CheckoutError(Exception):
    pass


class PreviewOnlyError(Exception):
    pass


def to_camel_case(value: str) -> str:
    """custom_field, custom-field, "Custom Field" and customField -> customField."""
    words = []
    for chunk in re.split(r"[-_\s]+", value):
        words.extend(w for w in re.split(r"(?<=[a-z])(?=[A-Z])", chunk) if w)
    return "".join(
        w.lower() if i == 0 else w[:1].upper() + w[1:].lower()
        for i, w in enumerate(words)
    )


def clean_customer_input(customer: Optional[Dict[str, Any]]) -> Optional[Dict[str, str]]:
    if not customer:
        return None
    cleaned = {
        to_camel_case(key): value
        for key, value in customer.items()
        if isinstance(value, str) and value.strip()
    }
    return cleaned or None


def normalize_required_fields(fields: Optional[List[str]]) -> Optional[List[str]]:
    if fields is None:
        return None
    return [to_camel_case(f) for f in fields]


async def get_checkout(checkout_id: str) -> Dict[str, Any]:
    client = create_settlement_client()
    return await client.get(checkout_id)


async def _issue_bringin_invoice(
    checkout: Dict[str, Any],
    ln_address: str,
    provider: BringinProvider,
    store: SessionStore,
) -> Dict[str, Any]:
    client = create_settlement_client()

    sats_amount = checkout.get("invoiceAmountSats") or DEFAULT_INVOICE_SATS
    eur_amount = sats_to_eur(sats_amount, provider.rate)

    invoice_result = await provider.create_invoice(eur_amount, ln_address)
    if not invoice_result.ok:
        raise CheckoutError(f"Failed to create Bringin invoice: {invoice_result.error.message}")
    invoice = invoice_result.data

    pending_checkout = await client.register_invoice(
        checkout_id=checkout["id"],
        payment_hash=invoice.payment_hash or invoice.bolt11[:32],
        invoice=invoice.bolt11,
        invoice_expires_at=invoice.expires_at,
        node_id=BRINGIN_NODE_ID,
        scid="",
    )

    store.create_session(
        checkout_id=checkout["id"],
        ln_address=ln_address,
        eur_amount=eur_amount,
        sats=invoice.sats,
        msats=invoice.msats,
        bolt11=invoice.bolt11,
        verify_url=invoice.verify_url,
        payment_hash=invoice.payment_hash,
        expires_at=invoice.expires_at,
    )
    logger.info("checkout_session_created", checkout_id=checkout["id"], sats=invoice.sats)

    return pending_checkout


async def confirm_checkout(
    confirm: Dict[str, Any],
    provider: Optional[BringinProvider] = None,
    store: SessionStore = session_store,
) -> Dict[str, Any]:
    ln_address = get_lightning_address()
    if not ln_address:
        raise CheckoutError("BRINGIN_LN_ADDRESS is not set; no invoice issuer configured")

    logger.info("checkout_confirm", mode="bringin")
    client = create_settlement_client()
    confirmed = await client.confirm(confirm)
    return await _issue_bringin_invoice(confirmed, ln_address, provider or BringinProvider(), store)


async def create_checkout(
    params: Dict[str, Any],
    provider: Optional[BringinProvider] = None,
    store: SessionStore = session_store,
) -> Result[Dict[str, Any]]:
    amount = params.get("amount", 200)
    currency = params.get("currency", "USD")
    metadata = {
        "title": params.get("title"),
        "description": params.get("description"),
        "successUrl": params.get("successUrl"),
        **(params.get("metadata") or {}),
    }

    try:
        ln_address = get_lightning_address()
        if not ln_address:
            raise CheckoutError("BRINGIN_LN_ADDRESS is not set; no invoice issuer configured")

        client = create_settlement_client()
        checkout = await client.create(
            {
                "amount": amount,
                "currency": currency,
                "metadata": metadata,
                "customer": clean_customer_input(params.get("customer")),
                "requireCustomerData": normalize_required_fields(params.get("requireCustomerData")),
            },
            BRINGIN_NODE_ID,
        )

        if checkout.get("status") == "CONFIRMED":
            checkout = await _issue_bringin_invoice(checkout, ln_address, provider or BringinProvider(), store)

        return success({"checkout": checkout})
    except Exception as e:
        logger.error("checkout_creation_failed", error=str(e))
        return failure("checkout_creation_failed", f"Failed to create checkout: {e}")


async def mark_invoice_paid_preview(payment_hash: str, amount_sats: int) -> Dict[str, Any]:
    if not is_preview_environment():
        raise PreviewOnlyError("mark_invoice_paid_preview can only be used in preview environments.")

    client = create_settlement_client()
    result = await client.payment_received(payment_hash, amount_sats, sandbox=True)
    _received_payments.add(payment_hash)
    return result


def payment_has_been_received(payment_hash: str) -> bool:
    if not payment_hash:
        return False
    logger.debug("payment_received_check", payment_hash=payment_hash)
    return payment_hash in _received_payments
