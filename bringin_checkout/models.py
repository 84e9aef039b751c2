from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class SessionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"


class CheckoutSession(BaseModel):
    checkout_id: str                    # settlement API checkout ID
    ln_address: str
    eur_amount: float
    sats: int
    msats: int
    bolt11: str
    verify_url: str
    payment_hash: Optional[str] = None
    created_at: datetime
    expires_at: datetime
    status: SessionStatus = SessionStatus.PENDING
    paid_at: Optional[datetime] = None
    last_checked_at: Optional[datetime] = None


class PayParams(BaseModel):
    """LNURL-pay parameters served at /.well-known/lnurlp/<user>."""

    callback: str
    min_sendable: int                   # millisatoshis
    max_sendable: int                   # millisatoshis
    metadata: str
    tag: str = "payRequest"
    comment_allowed: Optional[int] = None


class InvoiceResponse(BaseModel):
    """Body returned by the LNURL-pay callback."""

    pr: str                             # BOLT11 invoice
    verify: Optional[str] = None
    k1: Optional[str] = None
    payment_hash: Optional[str] = None
    checking_id: Optional[str] = None
    expires_at: Optional[str] = None


class BringinInvoice(BaseModel):
    bolt11: str
    verify_url: str
    expires_at: datetime
    sats: int
    msats: int
    payment_hash: Optional[str] = None


class PaymentStatus(BaseModel):
    status: SessionStatus
    paid_at: Optional[str] = None
    eur_credited: Optional[bool] = None


class VerifyStatusResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: SessionStatus
    paid_at: Optional[datetime] = None
    amount_sats_received: Optional[int] = None
