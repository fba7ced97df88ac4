# dcexport/core/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class ChannelRef:
    id: int
    name: str
    kind: str = "text"
    nsfw: bool = False
    # category for regular channels, parent channel for threads
    parent_id: int | None = None


@dataclass(frozen=True)
class CategoryResolution:
    """
    Reporting unit for message / reaction / voice events.

    category is always a parentless channel, or None when the resolved
    channel has no parent itself.
    """

    category: ChannelRef | None
    channel: ChannelRef

    @property
    def category_id(self) -> int | None:
        return self.category.id if self.category is not None else None

    @property
    def channel_id(self) -> int:
        return self.channel.id


@dataclass(frozen=True)
class ActivitySnapshot:
    name: str
    application_id: int | None = None


@dataclass(frozen=True)
class PresenceSnapshot:
    status: str
    activities: tuple[ActivitySnapshot, ...] = ()


@dataclass(frozen=True)
class VoiceSnapshot:
    channel_id: int | None
    self_mute: bool = False
    self_deaf: bool = False
    self_stream: bool = False
    self_video: bool = False


@dataclass(frozen=True)
class MemberRef:
    user_id: int
    bot: bool = False


@dataclass(frozen=True)
class GuildSnapshot:
    """Read-only view of a guild at the moment it became visible."""

    guild_id: int
    name: str
    member_count: int = 0
    premium_subscription_count: int | None = None
    channels: tuple[ChannelRef, ...] = ()
    presences: dict[int, PresenceSnapshot] = field(default_factory=dict)
    voice_states: dict[int, VoiceSnapshot] = field(default_factory=dict)


class Topology(Protocol):
    def lookup(self, guild_id: int, channel_id: int) -> ChannelRef:
        """Return the cached channel or raise TopologyLookupError."""
        ...


class MemberPager(Protocol):
    async def list_members(self, guild_id: int, after: int | None) -> list[MemberRef]:
        """Return the next page of members (empty when done) or raise ApiEnumerationError."""
        ...
