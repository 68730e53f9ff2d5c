"""Tests for pending confirmations."""

from datetime import datetime, timedelta

import pytest

from modelgate.gatekeeper.confirmation import (
    CONFIRMATION_TTL,
    ConfirmationAction,
    ConfirmationKind,
    ConfirmationStore,
    parse_confirmation_action,
)


class FakeClock:
    def __init__(self):
        self.now = datetime(2025, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def confirmations(clock):
    return ConfirmationStore(clock=clock)


def test_ttl_is_five_minutes():
    """Confirmations live for five minutes."""
    assert CONFIRMATION_TTL == timedelta(minutes=5)


def test_put_and_get(confirmations):
    """A stored confirmation is readable before expiry."""
    pending = confirmations.put("u1", "analyze this contract", ConfirmationKind.PREMIUM, {"model": "x"})
    assert confirmations.get("u1") is pending
    assert pending.expires_at - pending.created_at == CONFIRMATION_TTL
    assert confirmations.has_pending("u1")


def test_expired_confirmation_is_evicted_on_read(confirmations, clock):
    """After the TTL the entry is gone, even without a sweep."""
    confirmations.put("u1", "msg", ConfirmationKind.PRIVACY)
    clock.advance(timedelta(minutes=4, seconds=59))
    assert confirmations.get("u1") is not None

    clock.advance(timedelta(seconds=1))
    assert confirmations.get("u1") is None
    assert len(confirmations) == 0


def test_new_confirmation_replaces_old(confirmations):
    """At most one live confirmation per user."""
    confirmations.put("u1", "first", ConfirmationKind.PREMIUM)
    confirmations.put("u1", "second", ConfirmationKind.PRIVACY)
    pending = confirmations.get("u1")
    assert pending.original_message == "second"
    assert pending.kind == ConfirmationKind.PRIVACY
    assert len(confirmations) == 1


def test_pop_removes(confirmations):
    """Pop returns the live entry once."""
    confirmations.put("u1", "msg", ConfirmationKind.PREMIUM)
    assert confirmations.pop("u1") is not None
    assert confirmations.pop("u1") is None


def test_users_are_isolated(confirmations):
    """One user's confirmation never affects another's."""
    confirmations.put("alice", "a", ConfirmationKind.PREMIUM)
    confirmations.put("bob", "b", ConfirmationKind.PRIVACY)
    confirmations.pop("alice")
    assert confirmations.get("bob").original_message == "b"


def test_purge_expired(confirmations, clock):
    """Sweep removes only expired entries."""
    confirmations.put("old", "msg", ConfirmationKind.PREMIUM)
    clock.advance(timedelta(minutes=3))
    confirmations.put("new", "msg", ConfirmationKind.PREMIUM)
    clock.advance(timedelta(minutes=3))

    assert confirmations.purge_expired() == 1
    assert confirmations.has_pending("new")


def test_custom_ttl(clock):
    """TTL can be configured."""
    store = ConfirmationStore(clock=clock, ttl=timedelta(seconds=30))
    store.put("u1", "msg", ConfirmationKind.PREMIUM)
    clock.advance(timedelta(seconds=31))
    assert store.get("u1") is None


@pytest.mark.parametrize(
    "reply,action",
    [
        ("premium", ConfirmationAction.USE_PREMIUM),
        ("고급 모델로 해줘", ConfirmationAction.USE_PREMIUM),
        ("무료로", ConfirmationAction.USE_FREE),
        ("try free", ConfirmationAction.USE_FREE),
        ("send anyway", ConfirmationAction.SEND_ANYWAY),
        ("그냥 보내", ConfirmationAction.SEND_ANYWAY),
        ("API 키 등록할게", ConfirmationAction.REGISTER_API_KEY),
        ("취소", ConfirmationAction.CANCEL),
        ("cancel", ConfirmationAction.CANCEL),
        ("what is the weather", None),
    ],
)
def test_parse_confirmation_action(reply, action):
    """Replies in Korean and English map to actions."""
    assert parse_confirmation_action(reply) == action
