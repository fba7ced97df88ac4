# dcexport/cogs/guild_metrics.py

import logging

import discord
from discord.ext import commands

from dcexport.core.events import (
    ChannelCreate,
    ChannelDelete,
    ChannelUpdate,
    GuildCreate,
    GuildDelete,
    GuildUpdate,
    MemberAdd,
    MemberRemove,
    MessageCreate,
    PresenceUpdate,
    ReactionAdd,
    VoiceStateUpdate,
)
from dcexport.core.synchronizer import GuildMetricsSynchronizer
from dcexport.services.gateway import channel_ref, guild_snapshot, presence_snapshot, voice_snapshot

log = logging.getLogger(__name__)


class GuildMetricsCog(commands.Cog):
    """
    Gateway listener for the exporter:
    - Turns discord.py callbacks into synchronizer events
    - Guild available / join -> bootstrap, unavailable / remove -> teardown
    - Presence is diffed against the synchronizer's own cache, not discord.py's `before`
    """

    def __init__(self, bot: commands.Bot, settings, sync: GuildMetricsSynchronizer):
        self.bot = bot
        self.settings = settings
        self.sync = sync

    # ---------------- guild lifecycle ----------------

    async def _guild_visible(self, guild: discord.Guild):
        log.info("Guild create: guild_id=%s", guild.id)
        await self.sync.handle(GuildCreate(guild_snapshot(guild)))

    async def _guild_gone(self, guild: discord.Guild):
        log.info("Guild delete: guild_id=%s", guild.id)
        await self.sync.handle(GuildDelete(guild.id))

    @commands.Cog.listener()
    async def on_guild_available(self, guild: discord.Guild):
        await self._guild_visible(guild)

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild):
        await self._guild_visible(guild)

    @commands.Cog.listener()
    async def on_guild_unavailable(self, guild: discord.Guild):
        await self._guild_gone(guild)

    @commands.Cog.listener()
    async def on_guild_remove(self, guild: discord.Guild):
        await self._guild_gone(guild)

    @commands.Cog.listener()
    async def on_guild_update(self, before: discord.Guild, after: discord.Guild):
        log.info("Guild update: guild_id=%s", after.id)
        await self.sync.handle(
            GuildUpdate(
                guild_id=after.id,
                name=after.name,
                premium_subscription_count=after.premium_subscription_count,
                old_name=before.name if before is not None else None,
            )
        )

    # ---------------- channels ----------------

    @commands.Cog.listener()
    async def on_guild_channel_create(self, channel: discord.abc.GuildChannel):
        await self.sync.handle(ChannelCreate(channel.guild.id, channel_ref(channel)))

    @commands.Cog.listener()
    async def on_guild_channel_update(self, before: discord.abc.GuildChannel, after: discord.abc.GuildChannel):
        await self.sync.handle(ChannelUpdate(after.guild.id, channel_ref(before), channel_ref(after)))

    @commands.Cog.listener()
    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel):
        await self.sync.handle(ChannelDelete(channel.guild.id, channel_ref(channel)))

    # ---------------- members ----------------

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member):
        log.info("Guild member addition: guild_id=%s user_id=%s", member.guild.id, member.id)
        await self.sync.handle(MemberAdd(member.guild.id, member.id, bot=member.bot))

    @commands.Cog.listener()
    async def on_raw_member_remove(self, payload: discord.RawMemberRemoveEvent):
        # raw: fires even when the member was not cached
        log.info("Guild member removal: guild_id=%s user_id=%s", payload.guild_id, payload.user.id)
        await self.sync.handle(MemberRemove(payload.guild_id, payload.user.id, bot=payload.user.bot))

    # ---------------- messages / reactions ----------------

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        if message.guild is None:
            return
        await self.sync.handle(
            MessageCreate(
                guild_id=message.guild.id,
                channel_id=message.channel.id,
                content=message.content or "",
                author_bot=message.author.bot,
                author_system=bool(getattr(message.author, "system", False)),
            )
        )

    @commands.Cog.listener()
    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent):
        if payload.guild_id is None:
            return
        member = payload.member
        await self.sync.handle(
            ReactionAdd(
                guild_id=payload.guild_id,
                channel_id=payload.channel_id,
                emoji_id=payload.emoji.id,
                emoji_name=payload.emoji.name,
                user_bot=member.bot if member is not None else None,
                user_system=bool(getattr(member, "system", False)),
            )
        )

    # ---------------- presence / voice ----------------

    @commands.Cog.listener()
    async def on_presence_update(self, before: discord.Member, after: discord.Member):
        await self.sync.handle(PresenceUpdate(after.guild.id, after.id, presence_snapshot(after)))

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ):
        await self.sync.handle(
            VoiceStateUpdate(
                guild_id=member.guild.id,
                user_id=member.id,
                old=voice_snapshot(before),
                new=voice_snapshot(after),
            )
        )

