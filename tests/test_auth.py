import pytest

from rrcbridge.config import BridgeRuntimeConfig
from rrcbridge.models import Person, ProviderId
from rrcbridge.service import BridgeService
from rrcbridge.store import DocumentStore

DENIED = (
    "Not enough rights to run this command. Authorize with /auth <bot password> "
    "(you can send it in a direct chat, I will remember you)"
)


@pytest.mark.parametrize("command", ["/token", "/list", "/disconnect_abc", "/deauth"])
def test_privileged_commands_require_admin(bridge, command) -> None:
    bridge.say(bridge.alpha, "a", command)
    assert bridge.replies(bridge.alpha, "a") == [DENIED]


def test_in_band_admin_flag_is_enough(bridge) -> None:
    bridge.say(bridge.alpha, "a", "/list", admin=True)
    assert bridge.last_reply(bridge.alpha, "a") == "No connected chats. Type /start to begin"


def test_auth_with_wrong_password(bridge) -> None:
    bridge.say(bridge.alpha, "a", "/auth nope")
    assert bridge.last_reply(bridge.alpha, "a") == "Wrong password"

    bridge.say(bridge.alpha, "a", "/auth")
    assert bridge.last_reply(bridge.alpha, "a") == "Wrong password"


def test_auth_promotes_and_is_remembered(bridge) -> None:
    bridge.say(bridge.alpha, "dm", "/auth hunter2")
    assert bridge.last_reply(bridge.alpha, "dm") == "User alice is now an admin"

    # The promotion applies in every chat of the same network.
    bridge.say(bridge.alpha, "a", "/list")
    assert bridge.last_reply(bridge.alpha, "a") == "No connected chats. Type /start to begin"

    # But not to the same user name on another network.
    bridge.say(bridge.beta, "b", "/list")
    assert bridge.last_reply(bridge.beta, "b") == DENIED


def test_auth_twice_reports_existing_admin(bridge) -> None:
    bridge.say(bridge.alpha, "a", "/auth hunter2")
    bridge.say(bridge.alpha, "a", "/auth hunter2")
    assert bridge.last_reply(bridge.alpha, "a") == "User is already an admin"


def test_auth_password_is_taken_after_underscore_too(bridge) -> None:
    bridge.say(bridge.alpha, "a", "/auth_hunter2")
    assert bridge.last_reply(bridge.alpha, "a") == "User alice is now an admin"


def test_deauth_self(bridge) -> None:
    bridge.say(bridge.alpha, "a", "/auth hunter2")
    bridge.say(bridge.alpha, "a", "/deauth")
    assert bridge.last_reply(bridge.alpha, "a") == "User alice is no longer an admin"

    bridge.say(bridge.alpha, "a", "/list")
    assert bridge.last_reply(bridge.alpha, "a") == DENIED


def test_deauth_other_user(bridge) -> None:
    bridge.say(bridge.alpha, "a", "/auth hunter2", user="bob")
    bridge.say(bridge.alpha, "a", "/deauth bob", admin=True)
    assert bridge.last_reply(bridge.alpha, "a") == "User bob is no longer an admin"

    bridge.say(bridge.alpha, "a", "/list", user="bob")
    assert bridge.last_reply(bridge.alpha, "a") == DENIED


def test_deauth_unknown_user(bridge) -> None:
    bridge.say(bridge.alpha, "a", "/deauth nobody", admin=True)
    assert bridge.last_reply(bridge.alpha, "a") == "User not found"


def test_promote_existing_non_admin_person(bridge) -> None:
    service = bridge.service
    person = service.repository.insert_person(Person(ProviderId("alpha", "carol"), "carol"))
    assert not service.auth.has_admin_rights(person)

    assert service.auth.promote(person)
    assert service.auth.has_admin_rights(Person(ProviderId("alpha", "carol")))
    assert not service.auth.promote(person)


def test_check_password_never_matches_none(bridge) -> None:
    assert not bridge.service.auth.check_password(None)
    assert not bridge.service.auth.check_password("")
    assert bridge.service.auth.check_password("hunter2")


class TestAuthDisabled:
    @pytest.fixture
    def bridge_config(self) -> BridgeRuntimeConfig:
        return BridgeRuntimeConfig(auth_enabled=False, event_workers=1, send_workers=1)

    def test_everybody_is_admin(self, bridge) -> None:
        bridge.say(bridge.alpha, "a", "/list")
        assert bridge.last_reply(bridge.alpha, "a") == "No connected chats. Type /start to begin"

    def test_auth_and_deauth_are_not_needed(self, bridge) -> None:
        bridge.say(bridge.alpha, "a", "/auth whatever")
        assert bridge.last_reply(bridge.alpha, "a") == "This bot does not require authorization"

        bridge.say(bridge.alpha, "a", "/deauth")
        assert bridge.last_reply(bridge.alpha, "a") == "This bot does not require authorization"


def test_auth_enabled_without_password_is_rejected() -> None:
    with pytest.raises(ValueError):
        BridgeService(BridgeRuntimeConfig(auth_password=""), store=DocumentStore())
