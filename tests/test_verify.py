import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from bringin_checkout.models import PaymentStatus, SessionStatus
from bringin_checkout.results import failure, success
from bringin_checkout.settlement_client import SettlementAPIError
from bringin_checkout.verify import VerificationHandler


@pytest.fixture
def provider(mocker):
    provider = mocker.Mock()
    provider.check_status = mocker.AsyncMock(return_value=success(PaymentStatus(status=SessionStatus.PENDING)))
    return provider


@pytest.fixture
def settlement(mocker):
    client = mocker.Mock()
    client.payment_received = mocker.AsyncMock(return_value={})
    return client


@pytest.fixture
def handler(store, provider, settlement):
    return VerificationHandler(store, provider, settlement_client_factory=lambda: settlement)


@pytest.mark.asyncio
async def test_unknown_checkout(handler):
    result = await handler.check_status("missing")

    assert result.error.code == "session_not_found"


@pytest.mark.asyncio
async def test_pending_then_mock_paid_after_delay(handler, store, clock, provider, settlement, make_session):
    make_session()

    first = await handler.check_status("chk_1")
    assert first.data.status == SessionStatus.PENDING
    assert store.get_session("chk_1").status == SessionStatus.PENDING

    clock.advance(seconds=13)
    second = await handler.check_status("chk_1")

    assert second.data.status == SessionStatus.PAID
    assert second.data.paid_at == clock()
    assert second.data.amount_sats_received == 2000
    session = store.get_session("chk_1")
    assert session.status == SessionStatus.PAID
    assert session.paid_at == clock()
    settlement.payment_received.assert_awaited_once_with("abc", 2000, sandbox=True)


@pytest.mark.asyncio
async def test_poll_failure_also_falls_back_to_mock(handler, clock, provider, make_session):
    make_session()
    provider.check_status.return_value = failure("request_failed", "500")
    clock.advance(seconds=12)

    result = await handler.check_status("chk_1")

    assert result.data.status == SessionStatus.PAID


@pytest.mark.asyncio
async def test_paid_session_is_cached(handler, store, clock, provider, settlement, make_session):
    make_session()
    paid_at = clock()
    store.update_session_status("chk_1", SessionStatus.PAID, paid_at)

    result = await handler.check_status("chk_1")

    assert result.data.status == SessionStatus.PAID
    assert result.data.paid_at == paid_at
    assert provider.check_status.call_count == 0
    assert settlement.payment_received.call_count == 0


@pytest.mark.asyncio
async def test_expired_by_clock(handler, store, clock, provider, make_session):
    make_session(expires_at=clock() - timedelta(seconds=1))

    result = await handler.check_status("chk_1")

    assert result.data.status == SessionStatus.EXPIRED
    assert store.get_session("chk_1").status == SessionStatus.EXPIRED
    assert provider.check_status.call_count == 0


@pytest.mark.asyncio
async def test_provider_paid_uses_provider_timestamp(handler, store, provider, settlement, make_session):
    make_session()
    provider.check_status.return_value = success(
        PaymentStatus(status=SessionStatus.PAID, paid_at="2026-01-01T12:00:05Z")
    )

    result = await handler.check_status("chk_1")

    expected = datetime(2026, 1, 1, 12, 0, 5, tzinfo=timezone.utc)
    assert result.data.status == SessionStatus.PAID
    assert result.data.paid_at == expected
    assert store.get_session("chk_1").paid_at == expected
    settlement.payment_received.assert_awaited_once_with("abc", 2000, sandbox=False)


@pytest.mark.asyncio
async def test_provider_paid_without_timestamp_uses_now(handler, clock, provider, make_session):
    make_session()
    provider.check_status.return_value = success(PaymentStatus(status=SessionStatus.PAID))

    result = await handler.check_status("chk_1")

    assert result.data.paid_at == clock()


@pytest.mark.asyncio
async def test_provider_expired(handler, store, provider, make_session):
    make_session()
    provider.check_status.return_value = success(PaymentStatus(status=SessionStatus.EXPIRED))

    result = await handler.check_status("chk_1")

    assert result.data.status == SessionStatus.EXPIRED
    assert store.get_session("chk_1").status == SessionStatus.EXPIRED


@pytest.mark.asyncio
async def test_notification_failure_is_swallowed(handler, store, provider, settlement, make_session):
    make_session(payment_hash=None)
    provider.check_status.return_value = success(PaymentStatus(status=SessionStatus.PAID))
    settlement.payment_received.side_effect = SettlementAPIError("down", status_code=503)

    result = await handler.check_status("chk_1")

    assert result.data.status == SessionStatus.PAID
    assert store.get_session("chk_1").status == SessionStatus.PAID
    # Falls back to a bolt11 prefix when the provider gave no payment hash
    settlement.payment_received.assert_awaited_once_with(
        "lnbc20u1pjexampleinvoicestringthatislong"[:32], 2000, sandbox=False
    )


@pytest.mark.asyncio
async def test_overlapping_polls_notify_once(handler, store, clock, provider, settlement, make_session):
    make_session()
    clock.advance(seconds=13)

    async def slow_poll(url):
        await asyncio.sleep(0.01)
        return success(PaymentStatus(status=SessionStatus.PENDING))

    provider.check_status.side_effect = slow_poll

    results = await asyncio.gather(handler.check_status("chk_1"), handler.check_status("chk_1"))

    assert [r.data.status for r in results] == [SessionStatus.PAID, SessionStatus.PAID]
    assert settlement.payment_received.await_count == 1
    assert provider.check_status.await_count == 1


@pytest.mark.asyncio
async def test_provider_expired_session_stays_expired(handler, store, clock, provider, settlement, make_session):
    make_session()
    provider.check_status.return_value = success(PaymentStatus(status=SessionStatus.EXPIRED))
    assert (await handler.check_status("chk_1")).data.status == SessionStatus.EXPIRED

    # Past the mock delay and still inside the local expiry window
    clock.advance(seconds=13)
    provider.check_status.return_value = success(PaymentStatus(status=SessionStatus.PENDING))
    result = await handler.check_status("chk_1")

    assert result.data.status == SessionStatus.EXPIRED
    assert store.get_session("chk_1").status == SessionStatus.EXPIRED
    assert provider.check_status.await_count == 1
    settlement.payment_received.assert_not_awaited()


@pytest.mark.asyncio
async def test_prune_locks_drops_deleted_checkouts(handler, store, make_session):
    make_session()
    await handler.check_status("chk_1")
    assert "chk_1" in handler._locks

    store.delete_session("chk_1")

    assert handler.prune_locks() == 1
    assert "chk_1" not in handler._locks


@pytest.mark.asyncio
async def test_prune_locks_keeps_live_and_held_locks(handler, make_session):
    make_session()
    await handler.check_status("chk_1")
    held = handler._locks.setdefault("gone", asyncio.Lock())
    await held.acquire()

    assert handler.prune_locks() == 0
    assert set(handler._locks) == {"chk_1", "gone"}

    held.release()
    assert handler.prune_locks() == 1
    assert set(handler._locks) == {"chk_1"}
