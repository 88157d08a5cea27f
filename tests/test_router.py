import pytest

from rrcbridge.constants import C_CONNECTIONS
from rrcbridge.models import (
    Connection,
    ConnectionDirection,
    Conversation,
    Message,
    Person,
    ProviderId,
)
from rrcbridge.router import MessageRouter


def _conv(provider: str, chat: str) -> Conversation:
    return Conversation(ProviderId(provider, chat), title=chat)


def _only_connection_id(bridge) -> str:
    (doc,) = bridge.service.store.find_all(C_CONNECTIONS)
    return doc["_id"]


def test_message_is_forwarded_both_ways(bridge) -> None:
    bridge.pair((bridge.alpha, "a"), (bridge.beta, "b"))

    bridge.say(bridge.alpha, "a", "hello from alpha", user="alice")
    bridge.say(bridge.beta, "b", "hello from beta", user="bob")

    assert bridge.beta.sent_to("b")[-1] == "alice (alpha): hello from alpha"
    assert bridge.alpha.sent_to("a")[-1] == "bob (beta): hello from beta"


def test_message_is_not_echoed_to_origin(bridge) -> None:
    bridge.pair((bridge.alpha, "a"), (bridge.beta, "b"))
    bridge.alpha.clear()

    bridge.say(bridge.alpha, "a", "hello")
    assert bridge.alpha.sent_to("a") == []


def test_unconnected_and_pending_chats_do_not_forward(bridge) -> None:
    bridge.issue_token(bridge.alpha, "a")
    bridge.alpha.clear()

    bridge.say(bridge.alpha, "a", "anyone?")
    bridge.say(bridge.beta, "lonely", "anyone?")
    assert bridge.alpha.sent_to("a") == []
    assert bridge.beta.sent_to("lonely") == []


def test_commands_are_not_forwarded(bridge) -> None:
    bridge.pair((bridge.alpha, "a"), (bridge.beta, "b"))
    bridge.beta.clear()

    bridge.say(bridge.alpha, "a", "/start")
    assert bridge.beta.sent_to("b") == []


def test_fan_out_to_every_connected_chat(bridge) -> None:
    bridge.pair((bridge.alpha, "hub"), (bridge.beta, "b1"))
    bridge.pair((bridge.alpha, "hub"), (bridge.beta, "b2"))
    bridge.pair((bridge.alpha, "other"), (bridge.alpha, "hub"))

    bridge.say(bridge.alpha, "hub", "broadcast")

    assert bridge.beta.sent_to("b1")[-1] == "alice (alpha): broadcast"
    assert bridge.beta.sent_to("b2")[-1] == "alice (alpha): broadcast"
    assert bridge.alpha.sent_to("other")[-1] == "alice (alpha): broadcast"


@pytest.mark.parametrize(
    "direction, left_to_right, right_to_left",
    [
        (ConnectionDirection.TWO_WAY, True, True),
        (ConnectionDirection.TO_RIGHT, True, False),
        (ConnectionDirection.TO_LEFT, False, True),
        (ConnectionDirection.NONE, False, False),
    ],
)
def test_direction_policy(bridge, direction, left_to_right, right_to_left) -> None:
    bridge.pair((bridge.alpha, "a"), (bridge.beta, "b"))
    bridge.service.repository.set_direction(_only_connection_id(bridge), direction)
    bridge.alpha.clear()
    bridge.beta.clear()

    bridge.say(bridge.alpha, "a", "left says hi")
    bridge.say(bridge.beta, "b", "right says hi")

    assert (bridge.beta.sent_to("b") == ["alice (alpha): left says hi"]) is left_to_right
    assert (bridge.alpha.sent_to("a") == ["alice (beta): right says hi"]) is right_to_left


def test_target_for_pending_connection_is_none() -> None:
    a = _conv("alpha", "a")
    assert MessageRouter.target_for(Connection(left=a, token="t"), a) is None


def test_target_for_unrelated_origin_is_none() -> None:
    a, b, c = _conv("alpha", "a"), _conv("beta", "b"), _conv("beta", "c")
    connection = Connection(left=a, right=b)
    assert MessageRouter.target_for(connection, c) is None
    assert MessageRouter.target_for(connection, a) == b
    assert MessageRouter.target_for(connection, b) == a


def test_failed_forward_does_not_stop_other_forwards(bridge) -> None:
    bridge.pair((bridge.alpha, "a"), (bridge.beta, "b1"))
    bridge.pair((bridge.alpha, "a"), (bridge.beta, "b2"))
    bridge.beta.failing.add("b1")
    bridge.alpha.clear()

    bridge.say(bridge.alpha, "a", "still works")

    assert bridge.beta.sent_to("b2")[-1] == "alice (alpha): still works"
    # The sender is never told about the failure.
    assert bridge.alpha.sent_to("a") == []


def test_disconnected_chats_stop_forwarding(bridge) -> None:
    bridge.pair((bridge.alpha, "a"), (bridge.beta, "b"))
    bridge.say(bridge.alpha, "a", f"/disconnect_{_only_connection_id(bridge)}", admin=True)
    bridge.beta.clear()

    bridge.say(bridge.alpha, "a", "gone")
    assert bridge.beta.sent_to("b") == []


def test_route_returns_forward_count(bridge) -> None:
    bridge.pair((bridge.alpha, "a"), (bridge.beta, "b"))

    message = Message(
        sender=Person(ProviderId("alpha", "alice"), "alice"),
        conversation=_conv("alpha", "a"),
        body="counted",
    )
    assert bridge.service.router.route(message) == 1
    bridge.service.wait_idle()
    assert bridge.beta.sent_to("b")[-1] == "alice (alpha): counted"
