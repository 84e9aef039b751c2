from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from bringin_checkout import actions
from bringin_checkout.auth import verify_token
from bringin_checkout.bringin_provider import BringinProvider
from bringin_checkout.sessions import session_store
from bringin_checkout.settlement_client import SettlementAPIError
from bringin_checkout.verify import VerificationHandler

router = APIRouter()

_handler = VerificationHandler(session_store, BringinProvider())


def get_verification_handler() -> VerificationHandler:
    return _handler


class CheckoutRequest(BaseModel):
    title: str
    description: str
    amount: int = 200
    currency: str = "USD"
    successUrl: Optional[str] = None
    checkoutPath: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    customer: Optional[Dict[str, str]] = None
    requireCustomerData: Optional[List[str]] = None


class PreviewPaymentRequest(BaseModel):
    payment_hash: str
    amount_sats: int


@router.post("/checkouts")
async def create_checkout_api(
    request: CheckoutRequest,
    handler: VerificationHandler = Depends(get_verification_handler),
    auth=Depends(verify_token),
):
    result = await actions.create_checkout(
        request.model_dump(exclude_none=True), provider=handler.provider, store=handler.store
    )
    if not result.ok:
        raise HTTPException(status_code=502, detail=result.error.to_dict())
    return result.data


@router.post("/checkouts/{checkout_id}/confirm")
async def confirm_checkout_api(
    checkout_id: str,
    confirm: Dict[str, Any],
    handler: VerificationHandler = Depends(get_verification_handler),
    auth=Depends(verify_token),
):
    try:
        return await actions.confirm_checkout(
            {**confirm, "checkoutId": checkout_id}, provider=handler.provider, store=handler.store
        )
    except (actions.CheckoutError, SettlementAPIError) as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.get("/checkouts/{checkout_id}")
async def get_checkout_api(checkout_id: str, auth=Depends(verify_token)):
    try:
        return await actions.get_checkout(checkout_id)
    except SettlementAPIError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.get("/checkouts/{checkout_id}/status")
async def checkout_status(
    checkout_id: str,
    handler: VerificationHandler = Depends(get_verification_handler),
    auth=Depends(verify_token),
):
    result = await handler.check_status(checkout_id)
    if not result.ok:
        status_code = 404 if result.error.code == "session_not_found" else 502
        raise HTTPException(status_code=status_code, detail=result.error.to_dict())
    return result.data.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.post("/preview/payments")
async def mark_paid_preview(request: PreviewPaymentRequest, auth=Depends(verify_token)):
    try:
        await actions.mark_invoice_paid_preview(request.payment_hash, request.amount_sats)
    except actions.PreviewOnlyError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except SettlementAPIError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"status": "paid", "payment_hash": request.payment_hash}


@router.get("/payments/{payment_hash}/received")
def payment_received(payment_hash: str, auth=Depends(verify_token)):
    return {"received": actions.payment_has_been_received(payment_hash)}
