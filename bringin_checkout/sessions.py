"""
In-memory checkout session store.

Tracks LNURL-pay invoices and their payment status so the verify endpoint can
be polled instead of waiting for a webhook. Nothing here survives a restart.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import structlog

from bringin_checkout.config import MOCK_PAYMENT_DELAY_SECONDS, SESSION_RETENTION_MINUTES
from bringin_checkout.models import CheckoutSession, SessionStatus

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        mock_paid_delay: timedelta = timedelta(seconds=MOCK_PAYMENT_DELAY_SECONDS),
        retention: timedelta = timedelta(minutes=SESSION_RETENTION_MINUTES),
    ) -> None:
        self.clock = clock
        self.mock_paid_delay = mock_paid_delay
        self.retention = retention
        self._sessions: Dict[str, CheckoutSession] = {}
        # checkout_id -> when the demo fallback marked it paid
        self._mock_paid_at: Dict[str, datetime] = {}

    def create_session(self, **fields) -> CheckoutSession:
        fields.pop("status", None)
        fields.pop("created_at", None)
        session = CheckoutSession(
            **fields,
            status=SessionStatus.PENDING,
            created_at=self.clock(),
        )
        self._sessions[session.checkout_id] = session
        return session

    def get_session(self, checkout_id: str) -> Optional[CheckoutSession]:
        return self._sessions.get(checkout_id)

    def get_all_sessions(self) -> List[CheckoutSession]:
        return list(self._sessions.values())

    def update_session_status(
        self,
        checkout_id: str,
        status: SessionStatus,
        paid_at: Optional[datetime] = None,
    ) -> None:
        session = self._sessions.get(checkout_id)
        if session is None:
            return
        session.status = status
        session.last_checked_at = self.clock()
        if paid_at is not None:
            session.paid_at = paid_at

    def delete_session(self, checkout_id: str) -> None:
        self._sessions.pop(checkout_id, None)
        self._mock_paid_at.pop(checkout_id, None)

    def clear_all_sessions(self) -> None:
        self._sessions.clear()
        self._mock_paid_at.clear()

    def is_session_expired(self, session: CheckoutSession) -> bool:
        return self.clock() > session.expires_at

    def should_mock_paid(self, checkout_id: str, created_at: datetime) -> bool:
        """
        Local demo fallback: report the invoice as paid once the mock delay
        has elapsed since creation, for when the verify URL is unreachable.

        The first True result records a marker, so every later call for the
        same checkout returns True regardless of elapsed time.
        """
        if checkout_id in self._mock_paid_at:
            return True

        now = self.clock()
        if now - created_at >= self.mock_paid_delay:
            self._mock_paid_at[checkout_id] = now
            return True

        return False

    def cleanup_expired_sessions(self) -> int:
        now = self.clock()
        stale = [
            checkout_id
            for checkout_id, session in self._sessions.items()
            if session.status == SessionStatus.EXPIRED
            and now - session.expires_at > self.retention
        ]
        for checkout_id in stale:
            self.delete_session(checkout_id)

        if stale:
            logger.info("expired_sessions_cleaned", count=len(stale))
        return len(stale)


# Process-wide store used by the application
session_store = SessionStore()
