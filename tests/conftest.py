"""Shared fixtures: an in-memory Redis double, a loopback bus network and
fully wired relay instances sharing one store."""

from __future__ import annotations

import itertools
from types import SimpleNamespace

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ExecAbortError

from chat_relay.services.connection_manager import ConnectionManager
from chat_relay.services.event_bus import BusEventDispatcher, EventBus
from chat_relay.services.fanout import RoomFanoutEngine
from chat_relay.services.presence import PresenceTracker
from chat_relay.services.store import RedisMessageStore


class FakeRedis:
    """Covers the Redis commands issued by the relay, in memory."""

    def __init__(self) -> None:
        self.strings: dict[str, str] = {}
        self.sets: dict[str, set] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.lists: dict[str, list] = {}
        self.hashes: dict[str, dict] = {}
        self.published: list[tuple[str, str]] = []
        self.down = False
        # Commands that fail to queue inside MULTI, aborting the whole EXEC
        self.fail_commands: set[str] = set()

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self)

    def _check(self) -> None:
        if self.down:
            raise RedisConnectionError("Redis is down")

    async def ping(self):
        self._check()
        return True

    async def get(self, key):
        self._check()
        return self.strings.get(key)

    async def set(self, key, value, nx=False):
        self._check()
        if nx and key in self.strings:
            return None
        self.strings[key] = str(value)
        return True

    async def exists(self, *keys):
        self._check()
        stores = (self.strings, self.sets, self.zsets, self.lists, self.hashes)
        return sum(1 for key in keys if any(key in s for s in stores))

    async def sadd(self, key, *members):
        self._check()
        bucket = self.sets.setdefault(key, set())
        added = len(set(members) - bucket)
        bucket.update(members)
        return added

    async def srem(self, key, *members):
        self._check()
        bucket = self.sets.get(key, set())
        removed = len(bucket & set(members))
        bucket.difference_update(members)
        if not bucket:
            self.sets.pop(key, None)
        return removed

    async def smembers(self, key):
        self._check()
        return set(self.sets.get(key, set()))

    async def sismember(self, key, member):
        self._check()
        return int(member in self.sets.get(key, set()))

    async def zadd(self, key, mapping):
        self._check()
        zset = self.zsets.setdefault(key, {})
        added = len(set(mapping) - set(zset))
        zset.update(mapping)
        return added

    async def zrevrange(self, key, start, end):
        self._check()
        ordered = sorted(self.zsets.get(key, {}).items(), key=lambda item: (item[1], item[0]), reverse=True)
        return [member for member, _ in ordered[start:end + 1]]

    async def rpush(self, key, *values):
        self._check()
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    async def hget(self, key, field):
        self._check()
        return self.hashes.get(key, {}).get(field)

    async def publish(self, channel, data):
        self._check()
        self.published.append((channel, data))
        return 0


class FakePipeline:
    """MULTI/EXEC: queued commands are applied together or not at all."""

    def __init__(self, redis: FakeRedis) -> None:
        self.redis = redis
        self.queued: list[tuple[str, tuple, dict]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.queued.clear()

    def _queue(self, name: str, *args, **kwargs) -> "FakePipeline":
        self.queued.append((name, args, kwargs))
        return self

    def zadd(self, *args, **kwargs) -> "FakePipeline":
        return self._queue("zadd", *args, **kwargs)

    def rpush(self, *args, **kwargs) -> "FakePipeline":
        return self._queue("rpush", *args, **kwargs)

    def set(self, *args, **kwargs) -> "FakePipeline":
        return self._queue("set", *args, **kwargs)

    async def execute(self) -> list:
        self.redis._check()
        failing = [name for name, _, _ in self.queued if name in self.redis.fail_commands]
        if failing:
            self.queued.clear()
            raise ExecAbortError(f"Transaction discarded because of {failing[0]}")
        results = [await getattr(self.redis, name)(*args, **kwargs) for name, args, kwargs in self.queued]
        self.queued.clear()
        return results


class LoopbackBus(EventBus):
    """Bus whose transport hands every event to every bus on the network,
    the sender included, like a shared Redis channel."""

    def __init__(self, network: list, server_id: str) -> None:
        super().__init__(server_id=server_id, channel="MESSAGES")
        self.network = network
        self.network.append(self)
        self.sent: list[str] = []
        self.down = False

    async def _send(self, data: str) -> None:
        if self.down:
            raise ConnectionError("bus unreachable")
        self.sent.append(data)
        for bus in list(self.network):
            await bus._dispatch(data)


class FakeSocket:
    _ids = itertools.count(1)

    def __init__(self, fail: bool = False) -> None:
        self.id = next(self._ids)
        self.sent: list[dict] = []
        self.fail = fail

    async def send_json(self, message: dict) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)

    def of_type(self, event_type: str) -> list[dict]:
        return [m for m in self.sent if m.get("type") == event_type]

    def __repr__(self) -> str:
        return f"FakeSocket({self.id})"


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def store(fake_redis) -> RedisMessageStore:
    return RedisMessageStore(fake_redis)


@pytest.fixture
def bus_network() -> list:
    return []


@pytest.fixture
def make_instance(fake_redis, bus_network):
    """Factory for relay instances that share the store and the bus network."""

    def _make(server_id: str) -> SimpleNamespace:
        manager = ConnectionManager()
        store = RedisMessageStore(fake_redis)
        bus = LoopbackBus(bus_network, server_id)
        presence = PresenceTracker(store, bus, manager)
        fanout = RoomFanoutEngine(store, bus, presence, manager, page_size=50, preload_size=20)
        bus.subscribe(BusEventDispatcher(server_id, manager))
        return SimpleNamespace(
            server_id=server_id,
            manager=manager,
            store=store,
            bus=bus,
            presence=presence,
            fanout=fanout,
        )

    return _make


@pytest.fixture
def instance(make_instance) -> SimpleNamespace:
    return make_instance("instance-a")
