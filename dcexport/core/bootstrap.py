# dcexport/core/bootstrap.py
from __future__ import annotations

import logging

from dcexport.core.errors import ApiEnumerationError, TopologyLookupError
from dcexport.core.hierarchy import resolve_category_channel
from dcexport.core.models import GuildSnapshot, MemberPager, Topology
from dcexport.core.state import PresenceCache
from dcexport.services.metrics import (
    GuildMetrics,
    activity_labels,
    channel_labels,
    guild_labels,
    voice_labels,
)

log = logging.getLogger(__name__)


class GuildSnapshotInitializer:
    """
    Full state sync for a guild that just became visible.

    Steps run independently; a failing step is logged and the next one
    still runs:
      0. channels
      1. guild / boost / member gauges
      2. presences -> member_status / activity + presence cache
      3. voice states -> member_voice (per entry)
      4. bot count (paginated member enumeration)

    Steps 0-3 apply the snapshot without suspending, so no gateway event
    for the guild can be handled in between. The enumeration suspends on
    every page; a teardown meanwhile bumps the guild's generation and the
    stale enumeration stops touching the registry.
    """

    def __init__(
        self,
        metrics: GuildMetrics,
        topology: Topology,
        pager: MemberPager,
        cache: PresenceCache,
    ):
        self.metrics = metrics
        self.topology = topology
        self.pager = pager
        self.cache = cache
        self._generations: dict[int, int] = {}

    def invalidate(self, guild_id: int) -> None:
        """Abandon any bootstrap still in flight for the guild."""
        self._generations[guild_id] = self._generations.get(guild_id, 0) + 1

    def _current(self, guild_id: int, generation: int) -> bool:
        return self._generations.get(guild_id, 0) == generation

    async def bootstrap(self, snapshot: GuildSnapshot) -> None:
        gid = snapshot.guild_id
        log.info("Bootstrapping guild %s (%s)", gid, snapshot.name)

        for step in (self._seed_channels, self._seed_counts, self._seed_presences, self._seed_voice):
            try:
                step(snapshot)
            except Exception:
                log.exception("Guild %s: bootstrap step %s failed", gid, step.__name__)

        generation = self._generations.get(gid, 0)
        try:
            await self.count_bots(gid)
        except Exception:
            log.exception("Guild %s: bot enumeration crashed", gid)
            if self._current(gid, generation):
                self.metrics.remove_matching(self.metrics.bot, guild_id=gid)

        if not self._current(gid, generation):
            log.info("Guild %s went away during bootstrap", gid)
            return

        log.info(
            "Guild %s bootstrap ✅ members=%s presences=%d voice=%d",
            gid, snapshot.member_count, len(snapshot.presences), len(snapshot.voice_states),
        )

    # ---------------- steps ----------------

    def _seed_channels(self, snapshot: GuildSnapshot) -> None:
        for channel in snapshot.channels:
            self.metrics.channel.labels(**channel_labels(snapshot.guild_id, channel)).set(1)

    def _seed_counts(self, snapshot: GuildSnapshot) -> None:
        gid = snapshot.guild_id
        self.metrics.guild.labels(**guild_labels(gid, snapshot.name)).set(1)
        self.metrics.boost.labels(guild_id=gid).set(snapshot.premium_subscription_count or 0)
        self.metrics.member.labels(guild_id=gid).set(snapshot.member_count)

    async def count_bots(self, guild_id: int) -> int | None:
        """
        Page through the member list and count bot accounts.

        On a failed page the `bot` series is removed: a missing series means
        "unknown", which is safer than a stale or partial number.
        Returns the count, or None if enumeration failed or the guild was
        torn down while paging.
        """
        generation = self._generations.get(guild_id, 0)
        self.metrics.bot.labels(guild_id=guild_id).set(0)

        total = 0
        after = None
        while True:
            try:
                page = await self.pager.list_members(guild_id, after)
            except ApiEnumerationError as e:
                if not self._current(guild_id, generation):
                    return None
                log.warning("Failed to count bots of guild %s: %s", guild_id, e)
                self.metrics.remove_matching(self.metrics.bot, guild_id=guild_id)
                return None

            if not self._current(guild_id, generation):
                log.debug("Guild %s: dropping stale bot enumeration", guild_id)
                return None
            if not page:
                break

            bots = sum(1 for m in page if m.bot)
            self.metrics.bot.labels(guild_id=guild_id).inc(bots)
            total += bots
            after = page[-1].user_id

        log.debug("Guild %s: counted %d bots", guild_id, total)
        return total

    def _seed_presences(self, snapshot: GuildSnapshot) -> None:
        gid = snapshot.guild_id
        for user_id, presence in snapshot.presences.items():
            # a presence update already counted this member
            if self.cache.get(gid, user_id) is not None:
                continue
            self.metrics.member_status.labels(guild_id=gid, status=presence.status).inc()
            for activity in presence.activities:
                self.metrics.activity.labels(**activity_labels(gid, activity)).inc()
            self.cache.put(gid, user_id, presence)

    def _seed_voice(self, snapshot: GuildSnapshot) -> None:
        gid = snapshot.guild_id
        for user_id, voice in snapshot.voice_states.items():
            if voice.channel_id is None:
                continue
            try:
                where = resolve_category_channel(self.topology, gid, voice.channel_id)
            except TopologyLookupError as e:
                log.warning(
                    "Guild %s user %s: voice channel %s not resolvable, member_voice may be inconsistent (%s)",
                    gid, user_id, voice.channel_id, e,
                )
                continue
            except Exception:
                log.exception("Guild %s user %s: voice state seeding failed", gid, user_id)
                continue
            self.metrics.member_voice.labels(**voice_labels(gid, where, voice)).inc()
