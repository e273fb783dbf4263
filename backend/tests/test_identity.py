from __future__ import annotations

import pytest
from pydantic import ValidationError

from noxus.identity import AuthEventBus, PasswordRecoveryEvent, SignedInEvent, SignedOutEvent, parse_auth_event

from conftest import USER_ID, make_session


def test_parse_auth_event_dispatches_on_kind() -> None:
    signed_in = parse_auth_event(
        {
            "kind": "SIGNED_IN",
            "session": {"access_token": "a", "refresh_token": "r", "user": {"id": USER_ID}},
        }
    )
    assert isinstance(signed_in, SignedInEvent)
    assert signed_in.session.user.id == USER_ID

    assert isinstance(parse_auth_event({"kind": "SIGNED_OUT"}), SignedOutEvent)
    assert isinstance(parse_auth_event({"kind": "PASSWORD_RECOVERY"}), PasswordRecoveryEvent)


def test_parse_auth_event_requires_session_for_sign_in() -> None:
    with pytest.raises(ValidationError):
        parse_auth_event({"kind": "SIGNED_IN"})
    with pytest.raises(ValidationError):
        parse_auth_event({"kind": "TOKEN_REFRESHED"})


def test_session_repr_hides_tokens() -> None:
    rendered = repr(make_session(access_token="very-secret"))
    assert "very-secret" not in rendered


def test_bus_isolates_listener_failures() -> None:
    bus = AuthEventBus()
    received = []

    def broken(event) -> None:
        raise RuntimeError("listener exploded")

    bus.subscribe(broken)
    unsubscribe = bus.subscribe(received.append)
    bus.publish(SignedOutEvent())
    unsubscribe()
    bus.publish(SignedOutEvent())

    assert len(received) == 1
