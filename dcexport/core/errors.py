# dcexport/core/errors.py
from __future__ import annotations


class DcexportError(Exception):
    """Base class for recoverable synchronizer errors."""


class TopologyLookupError(DcexportError):
    """
    A channel (or one of its ancestors) is not in the guild topology.

    Event-scoped: the caller skips the one metric update that needed it.
    """

    def __init__(self, guild_id: int, channel_id: int):
        super().__init__(f"channel {channel_id} not found in guild {guild_id}")
        self.guild_id = guild_id
        self.channel_id = channel_id


class ApiEnumerationError(DcexportError):
    """Member pagination failed. Guild-scoped: the bot count becomes unknown."""

    def __init__(self, guild_id: int, reason: str = ""):
        msg = f"failed to enumerate members of guild {guild_id}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.guild_id = guild_id
        self.reason = reason
