"""
Bringin payment verification.

Polls the LNURL verify endpoint instead of waiting for a webhook. Each call to
`VerificationHandler.check_status` is one step of a poll loop driven by the
client; it never retries on its own.
"""

import asyncio
from datetime import datetime
from typing import Callable, Dict, Optional

import structlog

from bringin_checkout.bringin_provider import BringinProvider, parse_timestamp
from bringin_checkout.models import CheckoutSession, SessionStatus, VerifyStatusResponse
from bringin_checkout.results import Result, failure, success
from bringin_checkout.sessions import SessionStore
from bringin_checkout.settlement_client import SettlementClient, create_settlement_client

logger = structlog.get_logger(__name__)


def payment_hash_for(session: CheckoutSession) -> str:
    return session.payment_hash or session.bolt11[:32]


class VerificationHandler:
    def __init__(
        self,
        store: SessionStore,
        provider: BringinProvider,
        settlement_client_factory: Callable[[], SettlementClient] = create_settlement_client,
    ) -> None:
        self.store = store
        self.provider = provider
        self.settlement_client_factory = settlement_client_factory
        # Overlapping polls for one checkout run one at a time
        self._locks: Dict[str, asyncio.Lock] = {}

    async def check_status(self, checkout_id: str) -> Result[VerifyStatusResponse]:
        lock = self._locks.setdefault(checkout_id, asyncio.Lock())
        async with lock:
            result = await self._check_status(checkout_id)

        # Terminal results short-circuit on the next call, no lock needed
        if not result.ok or result.data.status != SessionStatus.PENDING:
            self._locks.pop(checkout_id, None)
        return result

    def prune_locks(self) -> int:
        """Drop idle locks for checkouts no longer in the store."""
        stale = [
            checkout_id
            for checkout_id, lock in self._locks.items()
            if not lock.locked() and self.store.get_session(checkout_id) is None
        ]
        for checkout_id in stale:
            del self._locks[checkout_id]
        return len(stale)

    async def _check_status(self, checkout_id: str) -> Result[VerifyStatusResponse]:
        session = self.store.get_session(checkout_id)
        if session is None:
            return failure("session_not_found", f"No session found for checkout: {checkout_id}")

        if session.status == SessionStatus.PAID:
            return success(self._paid(session, session.paid_at))

        if session.status == SessionStatus.EXPIRED:
            return success(VerifyStatusResponse(status=SessionStatus.EXPIRED))

        if self.store.is_session_expired(session):
            self.store.update_session_status(checkout_id, SessionStatus.EXPIRED)
            return success(VerifyStatusResponse(status=SessionStatus.EXPIRED))

        status_result = await self.provider.check_status(session.verify_url)

        if not status_result.ok or status_result.data.status == SessionStatus.PENDING:
            # Local demo fallback while the verify URL is unreachable or silent
            if self.store.should_mock_paid(checkout_id, session.created_at):
                logger.info("mock_payment_confirmed", checkout_id=checkout_id)
                paid_at = self.store.clock()
                self.store.update_session_status(checkout_id, SessionStatus.PAID, paid_at)
                await self._notify_payment(session, sandbox=True)
                return success(self._paid(session, paid_at))

            return success(VerifyStatusResponse(status=SessionStatus.PENDING))

        status = status_result.data.status

        if status == SessionStatus.PAID:
            paid_at = parse_timestamp(status_result.data.paid_at) or self.store.clock()
            self.store.update_session_status(checkout_id, SessionStatus.PAID, paid_at)
            await self._notify_payment(session, sandbox=False)
            return success(self._paid(session, paid_at))

        self.store.update_session_status(checkout_id, SessionStatus.EXPIRED)
        return success(VerifyStatusResponse(status=SessionStatus.EXPIRED))

    async def _notify_payment(self, session: CheckoutSession, sandbox: bool) -> None:
        # Local state is already paid; a failed notification is only logged.
        try:
            client = self.settlement_client_factory()
            await client.payment_received(payment_hash_for(session), session.sats, sandbox=sandbox)
        except Exception as e:
            logger.error(
                "payment_notification_failed",
                checkout_id=session.checkout_id,
                sandbox=sandbox,
                error=str(e),
            )

    @staticmethod
    def _paid(session: CheckoutSession, paid_at: Optional[datetime]) -> VerifyStatusResponse:
        return VerifyStatusResponse(
            status=SessionStatus.PAID,
            paid_at=paid_at,
            amount_sats_received=session.sats,
        )
