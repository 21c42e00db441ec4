"""Tests for event routing, the bus base class and its transports."""

import asyncio
import json
from concurrent.futures import Future
from unittest.mock import AsyncMock, MagicMock

import pytest

from chat_relay.models.models import build_event, encode_event
from chat_relay.services.connection_manager import ConnectionManager
from chat_relay.services.event_bus import BusEventDispatcher, Delivery, route_event
from chat_relay.services.gcloud_pub_sub import GooglePubSubEventBus
from chat_relay.services.redis_pub_sub import AsyncRedisPubSubService

from conftest import FakeSocket, LoopbackBus

MESSAGE = {"from": "1", "userid": "1", "date": 1, "message": "hi", "roomId": "0"}
PROFILE = {"id": "1", "username": "alice", "role": "1", "online": True}


def test_route_event_ignores_own_events() -> None:
    event = build_event("srv-a", "message", MESSAGE)

    assert route_event("srv-a", event) is Delivery.IGNORE
    assert route_event("srv-b", event) is Delivery.DELIVER


def test_subscribe_accepts_one_handler() -> None:
    bus = LoopbackBus([], "srv-a")
    bus.subscribe(AsyncMock())

    with pytest.raises(RuntimeError):
        bus.subscribe(AsyncMock())


@pytest.mark.asyncio
async def test_publish_failure_is_swallowed() -> None:
    """Given an unreachable transport, when publishing, then no exception escapes."""
    bus = LoopbackBus([], "srv-a")
    bus.down = True

    assert await bus.publish("message", MESSAGE) is False


@pytest.mark.asyncio
async def test_every_event_type_uses_the_same_channel() -> None:
    client = MagicMock()
    client.publish = AsyncMock()
    bus = AsyncRedisPubSubService(client, server_id="srv-a", channel="MESSAGES")

    await bus.publish("message", MESSAGE)
    await bus.publish("user.connected", PROFILE)

    channels = [call.args[0] for call in client.publish.call_args_list]
    assert channels == ["MESSAGES", "MESSAGES"]
    payload = json.loads(client.publish.call_args_list[0].args[1])
    assert payload["serverId"] == "srv-a"
    assert payload["type"] == "message"
    assert payload["data"]["roomId"] == "0"


@pytest.mark.asyncio
async def test_undecodable_payload_does_not_reach_handler() -> None:
    bus = LoopbackBus([], "srv-a")
    handler = AsyncMock()
    bus.subscribe(handler)

    await bus._dispatch("not json")
    await bus._dispatch('{"serverId": "x", "type": "message", "data": {}}')

    handler.assert_not_called()


@pytest.mark.asyncio
async def test_handler_errors_do_not_stop_dispatch() -> None:
    bus = LoopbackBus([], "srv-a")
    bus.subscribe(AsyncMock(side_effect=RuntimeError("boom")))

    # Must not raise
    await bus._dispatch(json.dumps({"serverId": "x", "type": "message", "data": MESSAGE}))


@pytest.mark.asyncio
async def test_dispatcher_relays_peer_message_to_room_group() -> None:
    manager = ConnectionManager()
    in_room, elsewhere = FakeSocket(), FakeSocket()
    manager.register(in_room, user_id="5")
    manager.register(elsewhere, user_id="6")
    manager.join_group(in_room, "room:0")
    dispatcher = BusEventDispatcher("srv-b", manager)

    await dispatcher(build_event("srv-a", "message", MESSAGE))

    assert in_room.sent == [{"type": "message", "data": MESSAGE}]
    assert elsewhere.sent == []


@pytest.mark.asyncio
async def test_dispatcher_drops_own_events() -> None:
    manager = ConnectionManager()
    socket = FakeSocket()
    manager.register(socket, user_id="5")
    manager.join_group(socket, "room:0")
    dispatcher = BusEventDispatcher("srv-a", manager)

    await dispatcher(build_event("srv-a", "message", MESSAGE))
    await dispatcher(build_event("srv-a", "user.connected", PROFILE))

    assert socket.sent == []


@pytest.mark.asyncio
async def test_dispatcher_sends_presence_to_authenticated_connections_only() -> None:
    manager = ConnectionManager()
    member, anonymous = FakeSocket(), FakeSocket()
    manager.register(member, user_id="5")
    manager.register(anonymous)
    dispatcher = BusEventDispatcher("srv-b", manager)

    await dispatcher(build_event("srv-a", "user.connected", PROFILE))

    assert member.sent == [{"type": "user.connected", "data": PROFILE}]
    assert anonymous.sent == []


@pytest.mark.asyncio
async def test_dispatcher_ignores_peer_message_for_invalid_room() -> None:
    manager = ConnectionManager()
    dispatcher = BusEventDispatcher("srv-b", manager)

    await dispatcher(build_event("srv-a", "message", {**MESSAGE, "roomId": "nope"}))


@pytest.mark.asyncio
async def test_google_bus_publishes_encoded_event_without_waiting() -> None:
    publisher = MagicMock()
    publisher.topic_path.return_value = "projects/p/topics/t"
    subscriber = MagicMock()
    bus = GooglePubSubEventBus(
        server_id="srv-a",
        project_id="p",
        topic_id="t",
        subscription_id="s-a",
        publisher=publisher,
        subscriber=subscriber,
    )

    assert await bus.publish("user.disconnected", {**PROFILE, "online": False}) is True

    topic, = publisher.publish.call_args.args
    data = publisher.publish.call_args.kwargs["data"]
    assert topic == "projects/p/topics/t"
    assert json.loads(data.decode("utf-8"))["type"] == "user.disconnected"
    publisher.publish.return_value.add_done_callback.assert_called_once()
    subscriber.subscription_path.assert_called_once_with("p", "s-a")


@pytest.mark.asyncio
async def test_redis_bus_hands_channel_messages_to_handler() -> None:
    """Given a subscription confirmation then a peer event, when listening, then only the event is handled."""
    peer_event = encode_event(build_event("srv-b", "message", MESSAGE))

    async def frames():
        yield {"type": "subscribe", "channel": "MESSAGES", "data": 1}
        yield {"type": "message", "channel": "MESSAGES", "data": peer_event}

    pubsub = MagicMock()
    pubsub.subscribe = AsyncMock()
    pubsub.listen = frames
    client = MagicMock()
    client.pubsub.return_value = pubsub
    bus = AsyncRedisPubSubService(client, server_id="srv-a", channel="MESSAGES")
    handler = AsyncMock()
    bus.subscribe(handler)

    await bus.listen()

    pubsub.subscribe.assert_awaited_once_with("MESSAGES")
    handler.assert_awaited_once()
    event = handler.await_args.args[0]
    assert event.server_id == "srv-b"
    assert event.type == "message"
    assert event.data.room_id == "0"


@pytest.mark.asyncio
async def test_google_bus_callback_dispatches_on_loop_and_acks() -> None:
    """Given a streaming pull, when a message arrives on a worker thread, then it is handled on the loop and acked."""
    streaming = Future()
    subscriber = MagicMock()
    subscriber.subscription_path.return_value = "projects/p/subscriptions/s-a"
    subscriber.subscribe.return_value = streaming
    bus = GooglePubSubEventBus(
        server_id="srv-a",
        project_id="p",
        topic_id="t",
        subscription_id="s-a",
        publisher=MagicMock(),
        subscriber=subscriber,
    )
    handler = AsyncMock()
    bus.subscribe(handler)

    task = asyncio.create_task(bus.listen())
    await asyncio.sleep(0)
    assert subscriber.subscribe.call_args.args == ("projects/p/subscriptions/s-a",)
    callback = subscriber.subscribe.call_args.kwargs["callback"]

    message = MagicMock()
    message.data = encode_event(build_event("srv-b", "user.connected", PROFILE)).encode("utf-8")
    await asyncio.to_thread(callback, message)
    for _ in range(100):
        if handler.await_count:
            break
        await asyncio.sleep(0.01)

    message.ack.assert_called_once()
    handler.assert_awaited_once()
    assert handler.await_args.args[0].type == "user.connected"

    streaming.set_result(None)
    await task
