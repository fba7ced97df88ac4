from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

discord = pytest.importorskip("discord")

from dcexport.cogs.guild_metrics import GuildMetricsCog  # noqa: E402
from dcexport.core.errors import ApiEnumerationError, TopologyLookupError  # noqa: E402
from dcexport.core.events import (  # noqa: E402
    GuildCreate,
    GuildDelete,
    MemberRemove,
    MessageCreate,
    PresenceUpdate,
    ReactionAdd,
    VoiceStateUpdate,
)
from dcexport.core.models import ActivitySnapshot, MemberRef, VoiceSnapshot  # noqa: E402
from dcexport.services.gateway import (  # noqa: E402
    DiscordMemberPager,
    DiscordTopology,
    channel_ref,
    guild_snapshot,
    presence_snapshot,
    voice_snapshot,
)


class _FakeThread(discord.Thread):
    type = discord.ChannelType.public_thread

    def __init__(self, id: int, name: str, parent_id: int) -> None:
        self.id = id
        self.name = name
        self.parent_id = parent_id

    def is_nsfw(self) -> bool:
        return False


def _text_channel(id: int, name: str, category_id=None, nsfw: bool = False):
    return SimpleNamespace(
        id=id,
        name=name,
        type=discord.ChannelType.text,
        category_id=category_id,
        is_nsfw=lambda: nsfw,
    )


def _voice_state(channel_id=None, **flags):
    return SimpleNamespace(
        channel=SimpleNamespace(id=channel_id) if channel_id is not None else None,
        self_mute=flags.get("self_mute", False),
        self_deaf=flags.get("self_deaf", False),
        self_stream=flags.get("self_stream", False),
        self_video=flags.get("self_video", False),
    )


class _Recorder:
    def __init__(self) -> None:
        self.events = []

    async def handle(self, event) -> None:
        self.events.append(event)


# ---------------- conversions ----------------

def test_channel_ref_for_channel_and_thread() -> None:
    ref = channel_ref(_text_channel(11, "general", category_id=10, nsfw=True))
    thread = channel_ref(_FakeThread(12, "help", parent_id=11))

    assert (ref.id, ref.name, ref.kind, ref.nsfw, ref.parent_id) == (11, "general", "text", True, 10)
    assert (thread.kind, thread.parent_id) == ("public_thread", 11)


def test_presence_snapshot_keeps_every_activity() -> None:
    member = SimpleNamespace(
        status=discord.Status.dnd,
        activities=(
            SimpleNamespace(name="Chess", application_id=77),
            SimpleNamespace(name="Music"),
            SimpleNamespace(name=None),
        ),
    )

    snap = presence_snapshot(member)

    assert snap.status == "dnd"
    assert snap.activities == (
        ActivitySnapshot(name="Chess", application_id=77),
        ActivitySnapshot(name="Music", application_id=None),
        ActivitySnapshot(name="", application_id=None),
    )


def test_voice_snapshot() -> None:
    assert voice_snapshot(None) is None
    assert voice_snapshot(_voice_state()) == VoiceSnapshot(channel_id=None)
    assert voice_snapshot(_voice_state(30, self_video=True)) == VoiceSnapshot(channel_id=30, self_video=True)


def test_guild_snapshot() -> None:
    voice = SimpleNamespace(voice_states={5: _voice_state(30, self_mute=True)})
    guild = SimpleNamespace(
        id=1,
        name="Guild",
        member_count=None,
        premium_subscription_count=3,
        channels=[_text_channel(11, "general")],
        members=[SimpleNamespace(id=5, status=discord.Status.online, activities=())],
        voice_channels=[voice],
        stage_channels=[],
    )

    snap = guild_snapshot(guild)

    assert snap.guild_id == 1
    assert snap.member_count == 0
    assert snap.premium_subscription_count == 3
    assert [c.id for c in snap.channels] == [11]
    assert snap.presences[5].status == "online"
    assert snap.voice_states == {5: VoiceSnapshot(channel_id=30, self_mute=True)}


# ---------------- topology / pager ----------------

def test_discord_topology_lookup() -> None:
    channels = {11: _text_channel(11, "general", category_id=10)}
    guild = SimpleNamespace(get_channel_or_thread=channels.get)
    bot = SimpleNamespace(get_guild=lambda gid: guild if gid == 1 else None)
    topo = DiscordTopology(bot)

    assert topo.lookup(1, 11).parent_id == 10
    with pytest.raises(TopologyLookupError):
        topo.lookup(1, 99)
    with pytest.raises(TopologyLookupError):
        topo.lookup(2, 11)


class _FakeHTTP:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = []

    async def get_members(self, guild_id, limit, after):
        self.calls.append((guild_id, limit, after))
        if self.fail:
            raise discord.HTTPException(SimpleNamespace(status=503, reason="Service Unavailable"), "down")
        return [
            {"user": {"id": "7", "bot": True}},
            {"user": {"id": "8"}},
        ]


def test_member_pager_maps_raw_members() -> None:
    http = _FakeHTTP()
    pager = DiscordMemberPager(SimpleNamespace(http=http), page_size=5000)

    page = asyncio.run(pager.list_members(1, 6))

    assert page == [MemberRef(7, bot=True), MemberRef(8, bot=False)]
    # clamped to the API maximum
    assert http.calls == [(1, 1000, 6)]


def test_member_pager_wraps_http_errors() -> None:
    pager = DiscordMemberPager(SimpleNamespace(http=_FakeHTTP(fail=True)))

    with pytest.raises(ApiEnumerationError) as exc:
        asyncio.run(pager.list_members(1, None))

    assert exc.value.guild_id == 1
    assert "503" in str(exc.value)


# ---------------- cog ----------------

def _cog():
    recorder = _Recorder()
    return GuildMetricsCog(bot=None, settings=None, sync=recorder), recorder


def test_cog_translates_guild_lifecycle() -> None:
    cog, rec = _cog()
    guild = SimpleNamespace(
        id=1, name="Guild", member_count=2, premium_subscription_count=None,
        channels=[], members=[], voice_channels=[], stage_channels=[],
    )

    async def main():
        await cog.on_guild_available(guild)
        await cog.on_guild_remove(guild)

    asyncio.run(main())

    assert isinstance(rec.events[0], GuildCreate)
    assert rec.events[0].guild_id == 1
    assert rec.events[1] == GuildDelete(1)


def test_cog_translates_messages_and_reactions() -> None:
    cog, rec = _cog()
    author = SimpleNamespace(bot=False, system=False)
    message = SimpleNamespace(guild=SimpleNamespace(id=1), channel=SimpleNamespace(id=11), author=author, content="hi")
    dm = SimpleNamespace(guild=None, channel=SimpleNamespace(id=3), author=author, content="dm")
    reaction = SimpleNamespace(
        guild_id=1, channel_id=11, member=None,
        emoji=SimpleNamespace(id=9, name="pog"),
    )

    async def main():
        await cog.on_message(message)
        await cog.on_message(dm)
        await cog.on_raw_reaction_add(reaction)

    asyncio.run(main())

    assert rec.events == [
        MessageCreate(guild_id=1, channel_id=11, content="hi"),
        ReactionAdd(guild_id=1, channel_id=11, emoji_id=9, emoji_name="pog", user_bot=None),
    ]


def test_cog_translates_members_presence_and_voice() -> None:
    cog, rec = _cog()
    member = SimpleNamespace(
        id=5, guild=SimpleNamespace(id=1),
        status=discord.Status.idle, activities=(),
    )
    removal = SimpleNamespace(guild_id=1, user=SimpleNamespace(id=5, bot=True))

    async def main():
        await cog.on_presence_update(member, member)
        await cog.on_voice_state_update(member, _voice_state(), _voice_state(30))
        await cog.on_raw_member_remove(removal)

    asyncio.run(main())

    assert isinstance(rec.events[0], PresenceUpdate)
    assert rec.events[0].presence.status == "idle"
    assert rec.events[1] == VoiceStateUpdate(1, 5, old=VoiceSnapshot(None), new=VoiceSnapshot(30))
    assert rec.events[2] == MemberRemove(1, 5, bot=True)
