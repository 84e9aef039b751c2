import os
from datetime import datetime, timedelta, timezone

import httpx
import pytest

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("JWT_SECRET", "test-secret")

from bringin_checkout.sessions import SessionStore  # noqa: E402


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(clock=clock)


def _json_transport(routes):
    """MockTransport answering GETs from {url_prefix: response_or_callable}."""
    calls = []

    def handler(request):
        calls.append(request)
        url = str(request.url)
        for prefix, reply in routes.items():
            if url.startswith(prefix):
                if callable(reply):
                    return reply(request)
                return reply
        return httpx.Response(404, json={"status": "ERROR", "reason": "not found"})

    transport = httpx.MockTransport(handler)
    transport.calls = calls
    return transport


def _make_session(store, clock, checkout_id="chk_1", **overrides):
    fields = dict(
        checkout_id=checkout_id,
        ln_address="store123@bringin.app",
        eur_amount=2.0,
        sats=2000,
        msats=2_000_000,
        bolt11="lnbc20u1pjexampleinvoicestringthatislong",
        verify_url="https://api.bringin.app/lnurlp/store123/verify?paymentHash=abc",
        payment_hash="abc",
        expires_at=clock() + timedelta(minutes=15),
    )
    fields.update(overrides)
    return store.create_session(**fields)


@pytest.fixture
def make_transport():
    return _json_transport


@pytest.fixture
def make_session(store, clock):
    def factory(checkout_id="chk_1", **overrides):
        return _make_session(store, clock, checkout_id, **overrides)
    return factory
