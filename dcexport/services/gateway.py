# dcexport/services/gateway.py
"""
discord.py side of the synchronizer: topology lookups against the client
cache, raw member pagination, and discord objects -> snapshots.
"""
from __future__ import annotations

import logging

import discord

from dcexport.core.errors import ApiEnumerationError, TopologyLookupError
from dcexport.core.models import (
    ActivitySnapshot,
    ChannelRef,
    GuildSnapshot,
    MemberRef,
    PresenceSnapshot,
    VoiceSnapshot,
)

log = logging.getLogger(__name__)

# upper bound of GET /guilds/{id}/members
MAX_MEMBER_PAGE = 1000


def channel_ref(channel) -> ChannelRef:
    # threads point at their channel, everything else at its category
    if isinstance(channel, discord.Thread):
        parent_id = channel.parent_id
    else:
        parent_id = getattr(channel, "category_id", None)

    is_nsfw = getattr(channel, "is_nsfw", None)
    nsfw = bool(is_nsfw()) if callable(is_nsfw) else False

    return ChannelRef(
        id=int(channel.id),
        name=str(getattr(channel, "name", "") or ""),
        kind=str(channel.type),
        nsfw=nsfw,
        parent_id=int(parent_id) if parent_id is not None else None,
    )


def presence_snapshot(member) -> PresenceSnapshot:
    activities = tuple(
        ActivitySnapshot(
            name=str(getattr(a, "name", None) or ""),
            application_id=getattr(a, "application_id", None),
        )
        for a in (member.activities or ())
    )
    return PresenceSnapshot(status=str(member.status), activities=activities)


def voice_snapshot(voice) -> VoiceSnapshot | None:
    if voice is None:
        return None
    channel = voice.channel
    return VoiceSnapshot(
        channel_id=channel.id if channel is not None else None,
        self_mute=bool(voice.self_mute),
        self_deaf=bool(voice.self_deaf),
        self_stream=bool(voice.self_stream),
        self_video=bool(voice.self_video),
    )


def guild_snapshot(guild: discord.Guild) -> GuildSnapshot:
    channels = tuple(channel_ref(ch) for ch in guild.channels)

    presences = {m.id: presence_snapshot(m) for m in guild.members}

    voice_states: dict[int, VoiceSnapshot] = {}
    for ch in list(guild.voice_channels) + list(guild.stage_channels):
        for user_id, vs in ch.voice_states.items():
            snap = voice_snapshot(vs)
            if snap is not None:
                voice_states[user_id] = snap

    return GuildSnapshot(
        guild_id=guild.id,
        name=guild.name,
        member_count=guild.member_count or 0,
        premium_subscription_count=guild.premium_subscription_count,
        channels=channels,
        presences=presences,
        voice_states=voice_states,
    )


class DiscordTopology:
    """Channel lookups against the discord.py guild cache."""

    def __init__(self, bot: discord.Client):
        self.bot = bot

    def lookup(self, guild_id: int, channel_id: int) -> ChannelRef:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            raise TopologyLookupError(guild_id, channel_id)
        channel = guild.get_channel_or_thread(channel_id)
        if channel is None:
            raise TopologyLookupError(guild_id, channel_id)
        return channel_ref(channel)


class DiscordMemberPager:
    """
    Raw member list pagination (GET /guilds/{id}/members).

    The HTTP client is used directly so one request == one page, and a
    failing page surfaces as ApiEnumerationError.
    """

    def __init__(self, bot: discord.Client, page_size: int = MAX_MEMBER_PAGE):
        self.bot = bot
        self.page_size = max(1, min(int(page_size), MAX_MEMBER_PAGE))

    async def list_members(self, guild_id: int, after: int | None) -> list[MemberRef]:
        try:
            data = await self.bot.http.get_members(guild_id, self.page_size, after)
        except discord.HTTPException as e:
            raise ApiEnumerationError(guild_id, f"{e.status} {e.text}") from e

        page = []
        for raw in data:
            user = raw.get("user") or {}
            page.append(MemberRef(user_id=int(user["id"]), bot=bool(user.get("bot", False))))
        return page
