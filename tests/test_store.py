"""Tests for the session store."""

import pytest

from l402_gate.lightning.base import Invoice
from l402_gate.store import CachedChallenge, Session, SessionStore


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_session(payment_hash="ab" * 32, amount=10):
    return Session(
        macaroon="mac",
        invoice=Invoice(payment_hash=payment_hash, payment_request="lnbc10n1...", amount_sats=amount),
        secret_key=b"secret",
        created_at=0,
    )


def make_challenge(payment_hash="ab" * 32):
    return CachedChallenge(
        www_authenticate='L402 macaroon="mac", invoice="lnbc10n1..."',
        payment_hash=payment_hash,
        macaroon="mac",
        invoice=Invoice(payment_hash=payment_hash, payment_request="lnbc10n1...", amount_sats=10),
        created_at=0,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(ttl=60, check_period=30, clock=clock)


class TestSessions:
    def test_set_and_get(self, store):
        session = make_session()
        store.set_session("ab" * 32, session)
        assert store.get_session("ab" * 32) is session

    def test_missing_is_none(self, store):
        assert store.get_session("cd" * 32) is None

    def test_overwrite_replaces(self, store):
        store.set_session("ab" * 32, make_session(amount=10))
        store.set_session("ab" * 32, make_session(amount=20))
        assert store.get_session("ab" * 32).invoice.amount_sats == 20

    def test_remove(self, store):
        store.set_session("ab" * 32, make_session())
        store.remove_session("ab" * 32)
        store.remove_session("ab" * 32)
        assert store.get_session("ab" * 32) is None

    def test_expires_after_ttl(self, store, clock):
        store.set_session("ab" * 32, make_session())
        clock.advance(59)
        assert store.get_session("ab" * 32) is not None
        clock.advance(1)
        assert store.get_session("ab" * 32) is None

    def test_overwrite_restarts_ttl(self, store, clock):
        store.set_session("ab" * 32, make_session())
        clock.advance(50)
        store.set_session("ab" * 32, make_session())
        clock.advance(50)
        assert store.get_session("ab" * 32) is not None


class TestChallenges:
    def test_keyed_by_route(self, store):
        store.set_challenge("/api/a", make_challenge("aa" * 32))
        store.set_challenge("/api/b", make_challenge("bb" * 32))
        assert store.get_challenge("/api/a").payment_hash == "aa" * 32
        assert store.get_challenge("/api/b").payment_hash == "bb" * 32
        assert store.get_challenge("/api/c") is None

    def test_challenge_expires(self, store, clock):
        store.set_challenge("/api/a", make_challenge())
        clock.advance(61)
        assert store.get_challenge("/api/a") is None

    def test_discard_by_payment_hash(self, store):
        store.set_challenge("/api/a", make_challenge("aa" * 32))
        store.set_challenge("/api/b", make_challenge("aa" * 32))
        store.set_challenge("/api/c", make_challenge("cc" * 32))

        assert store.discard_challenges("aa" * 32) == 2
        assert store.get_challenge("/api/a") is None
        assert store.get_challenge("/api/b") is None
        assert store.get_challenge("/api/c").payment_hash == "cc" * 32
        assert store.discard_challenges("aa" * 32) == 0


class TestMaintenance:
    def test_purge_expired_counts_removed(self, store, clock):
        store.set_session("aa" * 32, make_session("aa" * 32))
        store.set_challenge("/api/a", make_challenge())
        clock.advance(30)
        store.set_session("bb" * 32, make_session("bb" * 32))
        clock.advance(31)

        assert store.purge_expired() == 2
        assert store.stats()["sessions"] == 1
        assert store.stats()["challenges"] == 0

    def test_periodic_sweep_on_write(self, store, clock):
        store.set_session("aa" * 32, make_session("aa" * 32))
        clock.advance(61)
        store.set_session("bb" * 32, make_session("bb" * 32))
        assert store.stats()["sessions"] == 1

    def test_stats_counts_hits_and_misses(self, store):
        store.set_session("aa" * 32, make_session("aa" * 32))
        store.get_session("aa" * 32)
        store.get_session("bb" * 32)
        store.get_challenge("/nowhere")
        assert store.stats() == {"sessions": 1, "challenges": 0, "hits": 1, "misses": 2}

    def test_clear(self, store):
        store.set_session("aa" * 32, make_session("aa" * 32))
        store.set_challenge("/api/a", make_challenge())
        store.get_session("aa" * 32)
        store.clear()
        assert store.stats() == {"sessions": 0, "challenges": 0, "hits": 0, "misses": 0}

    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValueError):
            SessionStore(ttl=0)
