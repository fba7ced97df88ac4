from __future__ import annotations

import asyncio

import pytest

from dcexport.core.errors import ApiEnumerationError, TopologyLookupError
from dcexport.core.models import ChannelRef, MemberRef
from dcexport.core.state import PresenceCache
from dcexport.core.synchronizer import GuildMetricsSynchronizer
from dcexport.services.metrics import GuildMetrics


GUILD = 1000
CATEGORY_A = 10
CHANNEL_C = 11
THREAD_T = 12
TOP_LEVEL = 20
VOICE_V = 30


class StaticTopology:
    """guild_id -> {channel_id: ChannelRef}"""

    def __init__(self, channels: dict[int, dict[int, ChannelRef]] | None = None):
        self.channels = channels or {}
        self.lookups: list[tuple[int, int]] = []

    def add(self, guild_id: int, channel: ChannelRef) -> None:
        self.channels.setdefault(guild_id, {})[channel.id] = channel

    def drop(self, guild_id: int, channel_id: int) -> None:
        self.channels.get(guild_id, {}).pop(channel_id, None)

    def lookup(self, guild_id: int, channel_id: int) -> ChannelRef:
        self.lookups.append((guild_id, channel_id))
        try:
            return self.channels[guild_id][channel_id]
        except KeyError:
            raise TopologyLookupError(guild_id, channel_id) from None


class FakePager:
    """Serves pre-built pages, keyed by the `after` cursor."""

    def __init__(self, members: list[MemberRef] | None = None, page_size: int = 2, fail_at: int | None = None):
        self.members = sorted(members or [], key=lambda m: m.user_id)
        self.page_size = page_size
        self.fail_at = fail_at
        self.calls: list[int | None] = []

    async def list_members(self, guild_id: int, after: int | None) -> list[MemberRef]:
        self.calls.append(after)
        if self.fail_at is not None and len(self.calls) > self.fail_at:
            raise ApiEnumerationError(guild_id, "503 Service Unavailable")
        rest = [m for m in self.members if after is None or m.user_id > after]
        return rest[: self.page_size]


class GatedPager(FakePager):
    """Holds every page until `gate` is set. `entered` fires on the first request."""

    def __init__(self, members: list[MemberRef] | None = None, page_size: int = 2):
        super().__init__(members, page_size)
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()

    async def list_members(self, guild_id: int, after: int | None) -> list[MemberRef]:
        self.entered.set()
        await self.gate.wait()
        return await super().list_members(guild_id, after)


def default_topology() -> StaticTopology:
    topo = StaticTopology()
    topo.add(GUILD, ChannelRef(id=CATEGORY_A, name="A", kind="category"))
    topo.add(GUILD, ChannelRef(id=CHANNEL_C, name="c", kind="text", parent_id=CATEGORY_A))
    topo.add(GUILD, ChannelRef(id=THREAD_T, name="t", kind="public_thread", parent_id=CHANNEL_C))
    topo.add(GUILD, ChannelRef(id=TOP_LEVEL, name="lobby", kind="text"))
    topo.add(GUILD, ChannelRef(id=VOICE_V, name="voice", kind="voice", parent_id=CATEGORY_A))
    return topo


def sample(metrics: GuildMetrics, name: str, **labels) -> float | None:
    """Current value of one series, None when absent."""
    full = f"{metrics.prefix}_{name}"
    return metrics.registry.get_sample_value(full, {k: str(v) for k, v in labels.items()})


def total(metrics: GuildMetrics, family_name: str, guild_id: int | None = None) -> float:
    """Sum of every series of a gauge family (optionally one guild)."""
    family = getattr(metrics, family_name)
    value = 0.0
    for metric in family.collect():
        for s in metric.samples:
            if guild_id is not None and s.labels.get("guild_id") != str(guild_id):
                continue
            if s.name.endswith("_created"):
                continue
            value += s.value
    return value


@pytest.fixture
def metrics() -> GuildMetrics:
    return GuildMetrics()


@pytest.fixture
def topology() -> StaticTopology:
    return default_topology()


@pytest.fixture
def pager() -> FakePager:
    return FakePager([MemberRef(1, bot=False), MemberRef(2, bot=True), MemberRef(3, bot=True)])


@pytest.fixture
def cache() -> PresenceCache:
    return PresenceCache()


@pytest.fixture
def sync(metrics, topology, pager, cache) -> GuildMetricsSynchronizer:
    return GuildMetricsSynchronizer(metrics, topology, pager, cache=cache)
