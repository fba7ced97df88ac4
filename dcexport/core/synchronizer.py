# dcexport/core/synchronizer.py
from __future__ import annotations

import logging

from dcexport.core.bootstrap import GuildSnapshotInitializer
from dcexport.core.emotes import custom_emojis_in
from dcexport.core.errors import TopologyLookupError
from dcexport.core.events import (
    ChannelCreate,
    ChannelDelete,
    ChannelUpdate,
    GuildCreate,
    GuildDelete,
    GuildEvent,
    GuildUpdate,
    MemberAdd,
    MemberRemove,
    MessageCreate,
    PresenceUpdate,
    ReactionAdd,
    VoiceStateUpdate,
)
from dcexport.core.hierarchy import resolve_category_channel
from dcexport.core.models import CategoryResolution, MemberPager, PresenceSnapshot, Topology, VoiceSnapshot
from dcexport.core.state import PresenceCache
from dcexport.services.metrics import (
    GuildMetrics,
    activity_labels,
    channel_labels,
    emote_labels,
    guild_labels,
    message_labels,
    voice_labels,
)

log = logging.getLogger(__name__)


class GuildMetricsSynchronizer:
    """
    Applies decoded guild events to the metric registry.

    Guild lifecycle: Unseen -> (guild create) -> Visible -> (guild delete) -> Unseen.
    Only guild create is accepted for an unseen guild; anything else is
    dropped so late events can't resurrect a torn-down guild's series.

    handle() never raises. Failures are contained at the smallest scope and
    logged with guild/user/channel ids.
    """

    def __init__(
        self,
        metrics: GuildMetrics,
        topology: Topology,
        pager: MemberPager,
        cache: PresenceCache | None = None,
        count_bot_activity: bool = False,
    ):
        self.metrics = metrics
        self.topology = topology
        self.cache = cache if cache is not None else PresenceCache()
        self.count_bot_activity = count_bot_activity
        self.initializer = GuildSnapshotInitializer(metrics, topology, pager, self.cache)
        self.visible: set[int] = set()

    def is_visible(self, guild_id: int) -> bool:
        return guild_id in self.visible

    async def handle(self, event: GuildEvent) -> None:
        try:
            await self._dispatch(event)
        except Exception:
            log.exception("Failed to apply %s, metrics may be inconsistent", event)

    async def _dispatch(self, event: GuildEvent) -> None:
        match event:
            case GuildCreate():
                await self._guild_create(event)
            case GuildDelete():
                self._guild_delete(event)
            case _ if not self._accepts(event):
                return
            case GuildUpdate():
                self._guild_update(event)
            case MemberAdd():
                self._member_add(event)
            case MemberRemove():
                await self._member_remove(event)
            case MessageCreate():
                self._message(event)
            case ReactionAdd():
                self._reaction_add(event)
            case PresenceUpdate():
                await self._presence_update(event)
            case VoiceStateUpdate():
                self._voice_state_update(event)
            case ChannelCreate():
                self._channel_create(event)
            case ChannelUpdate():
                self._channel_update(event)
            case ChannelDelete():
                self._channel_delete(event)
            case _:
                log.warning("Unhandled event type %s", type(event).__name__)

    def _accepts(self, event: GuildEvent) -> bool:
        guild_id = getattr(event, "guild_id", None)
        if guild_id is None:
            # only guild events are tracked
            return False
        if guild_id not in self.visible:
            log.debug("Ignoring %s for unseen guild %s", type(event).__name__, guild_id)
            return False
        return True

    # ---------------- helpers ----------------

    def _resolve(self, guild_id: int, channel_id: int, what: str, user_id: int | None = None) -> CategoryResolution | None:
        try:
            return resolve_category_channel(self.topology, guild_id, channel_id)
        except TopologyLookupError as e:
            log.warning(
                "Guild %s user %s channel %s: cannot resolve channel for %s, this might cause inconsistencies in the metrics (%s)",
                guild_id, user_id, channel_id, what, e,
            )
            return None

    def _count_presence(self, guild_id: int, presence: PresenceSnapshot, delta: int) -> None:
        status = self.metrics.member_status.labels(guild_id=guild_id, status=presence.status)
        if delta > 0:
            status.inc()
        else:
            status.dec()
        for activity in presence.activities:
            series = self.metrics.activity.labels(**activity_labels(guild_id, activity))
            if delta > 0:
                series.inc()
            else:
                series.dec()

    def _is_bot_activity(self, bot: bool | None, system: bool) -> bool:
        if self.count_bot_activity:
            return False
        return bool(bot) or system

    # ---------------- guild lifecycle ----------------

    async def _guild_create(self, event: GuildCreate) -> None:
        gid = event.guild_id
        if gid in self.visible:
            log.error("Guild %s already created, resetting its metrics", gid)
            self._teardown(gid)

        self.visible.add(gid)
        await self.initializer.bootstrap(event.snapshot)

    def _guild_delete(self, event: GuildDelete) -> None:
        if event.guild_id not in self.visible:
            log.error("Guild %s deleted but never created", event.guild_id)
        log.info("Guild %s deleted, removing its metrics", event.guild_id)
        self._teardown(event.guild_id)
        self.visible.discard(event.guild_id)

    def _teardown(self, guild_id: int) -> None:
        self.initializer.invalidate(guild_id)
        removed = self.metrics.remove_guild(guild_id)
        dropped = self.cache.remove_all(guild_id)
        log.debug("Guild %s teardown: %d series, %d cached presences", guild_id, removed, dropped)

    def _guild_update(self, event: GuildUpdate) -> None:
        gid = event.guild_id
        self.metrics.boost.labels(guild_id=gid).set(event.premium_subscription_count or 0)

        if event.old_name is not None and event.old_name != event.name:
            log.info("Guild %s renamed %r -> %r", gid, event.old_name, event.name)
        # old data is not always cached, drop whatever name was exported before
        self.metrics.remove_matching(self.metrics.guild, guild_id=gid)
        self.metrics.guild.labels(**guild_labels(gid, event.name)).set(1)

    # ---------------- members ----------------

    def _member_add(self, event: MemberAdd) -> None:
        self.metrics.member.labels(guild_id=event.guild_id).inc()
        if event.bot and self._bot_count_known(event.guild_id):
            self.metrics.bot.labels(guild_id=event.guild_id).inc()

    async def _member_remove(self, event: MemberRemove) -> None:
        gid = event.guild_id
        self.metrics.member.labels(guild_id=gid).dec()
        if event.bot and self._bot_count_known(gid):
            self.metrics.bot.labels(guild_id=gid).dec()

        # a departed member takes its presence with it
        async with self.cache.locked(gid, event.user_id):
            old = self.cache.remove(gid, event.user_id)
            if old is not None:
                self._count_presence(gid, old, -1)

    def _bot_count_known(self, guild_id: int) -> bool:
        # no series means enumeration failed, keep it unknown
        return any(
            labels.get("guild_id") == str(guild_id)
            for labels in self.metrics.series(self.metrics.bot)
        )

    # ---------------- messages / reactions ----------------

    def _message(self, event: MessageCreate) -> None:
        if self._is_bot_activity(event.author_bot, event.author_system):
            return

        gid = event.guild_id
        where = self._resolve(gid, event.channel_id, "message")
        if where is None:
            return

        self.metrics.message_sent.labels(**message_labels(gid, where)).inc()
        for emoji in custom_emojis_in(event.content):
            self.metrics.emote_sent.labels(**emote_labels(gid, where, emoji.id, emoji.name)).inc()

    def _reaction_add(self, event: ReactionAdd) -> None:
        if self._is_bot_activity(event.user_bot, event.user_system):
            return
        if event.emoji_id is None:
            # only custom emotes are tracked
            return

        gid = event.guild_id
        where = self._resolve(gid, event.channel_id, "reaction")
        if where is None:
            return

        self.metrics.emote_reacted.labels(
            **emote_labels(gid, where, event.emoji_id, event.emoji_name)
        ).inc()

    # ---------------- presence ----------------

    async def _presence_update(self, event: PresenceUpdate) -> None:
        gid, uid = event.guild_id, event.user_id
        async with self.cache.locked(gid, uid):
            old = self.cache.get(gid, uid)
            if old is not None:
                self._count_presence(gid, old, -1)
            self.cache.put(gid, uid, event.presence)
            self._count_presence(gid, event.presence, +1)

    # ---------------- voice ----------------

    def _voice_state_update(self, event: VoiceStateUpdate) -> None:
        gid, uid = event.guild_id, event.user_id

        if event.old is not None:
            if event.old.channel_id is None:
                # user was not in voice before, nothing to decrement
                log.debug("Guild %s user %s: no previous voice channel", gid, uid)
            else:
                self._apply_voice(gid, uid, event.old, -1)

        if event.new.channel_id is None:
            log.debug("Guild %s user %s: left voice", gid, uid)
        else:
            self._apply_voice(gid, uid, event.new, +1)

    def _apply_voice(self, guild_id: int, user_id: int, voice: VoiceSnapshot, delta: int) -> None:
        where = self._resolve(guild_id, voice.channel_id, "voice state", user_id)
        if where is None:
            return
        series = self.metrics.member_voice.labels(**voice_labels(guild_id, where, voice))
        if delta > 0:
            series.inc()
        else:
            series.dec()

    # ---------------- channels ----------------

    def _channel_create(self, event: ChannelCreate) -> None:
        self.metrics.channel.labels(**channel_labels(event.guild_id, event.channel)).set(1)

    def _channel_update(self, event: ChannelUpdate) -> None:
        gid = event.guild_id
        self.metrics.remove_matching(self.metrics.channel, guild_id=gid, channel_id=event.new.id)
        self.metrics.channel.labels(**channel_labels(gid, event.new)).set(1)

    def _channel_delete(self, event: ChannelDelete) -> None:
        self.metrics.remove_matching(
            self.metrics.channel, guild_id=event.guild_id, channel_id=event.channel.id
        )
