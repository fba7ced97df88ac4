# dcexport/core/events.py
"""
Decoded gateway events consumed by GuildMetricsSynchronizer.handle().

One frozen dataclass per event kind; the gateway Cog builds them from
discord.py objects, tests build them directly.
"""
from __future__ import annotations

from dataclasses import dataclass

from dcexport.core.models import ChannelRef, GuildSnapshot, PresenceSnapshot, VoiceSnapshot


@dataclass(frozen=True)
class GuildCreate:
    snapshot: GuildSnapshot

    @property
    def guild_id(self) -> int:
        return self.snapshot.guild_id


@dataclass(frozen=True)
class GuildDelete:
    guild_id: int


@dataclass(frozen=True)
class GuildUpdate:
    guild_id: int
    name: str
    premium_subscription_count: int | None = None
    old_name: str | None = None


@dataclass(frozen=True)
class MemberAdd:
    guild_id: int
    user_id: int
    bot: bool = False


@dataclass(frozen=True)
class MemberRemove:
    guild_id: int
    user_id: int
    bot: bool = False


@dataclass(frozen=True)
class MessageCreate:
    guild_id: int | None
    channel_id: int
    content: str = ""
    author_bot: bool = False
    author_system: bool = False


@dataclass(frozen=True)
class ReactionAdd:
    guild_id: int | None
    channel_id: int
    # None for unicode emoji
    emoji_id: int | None
    emoji_name: str | None = None
    # None when the reacting member is unknown
    user_bot: bool | None = None
    user_system: bool = False


@dataclass(frozen=True)
class PresenceUpdate:
    guild_id: int | None
    user_id: int
    presence: PresenceSnapshot


@dataclass(frozen=True)
class VoiceStateUpdate:
    guild_id: int | None
    user_id: int
    old: VoiceSnapshot | None
    new: VoiceSnapshot


@dataclass(frozen=True)
class ChannelCreate:
    guild_id: int
    channel: ChannelRef


@dataclass(frozen=True)
class ChannelUpdate:
    guild_id: int
    old: ChannelRef | None
    new: ChannelRef


@dataclass(frozen=True)
class ChannelDelete:
    guild_id: int
    channel: ChannelRef


GuildEvent = (
    GuildCreate
    | GuildDelete
    | GuildUpdate
    | MemberAdd
    | MemberRemove
    | MessageCreate
    | ReactionAdd
    | PresenceUpdate
    | VoiceStateUpdate
    | ChannelCreate
    | ChannelUpdate
    | ChannelDelete
)
