# dcexport/loader.py
from __future__ import annotations

import logging

from dcexport.cogs.guild_metrics import GuildMetricsCog
from dcexport.core.state import PresenceCache
from dcexport.core.synchronizer import GuildMetricsSynchronizer
from dcexport.services.gateway import DiscordMemberPager, DiscordTopology

log = logging.getLogger(__name__)


def build_synchronizer(bot, settings, metrics, cache=None) -> GuildMetricsSynchronizer:
    return GuildMetricsSynchronizer(
        metrics=metrics,
        topology=DiscordTopology(bot),
        pager=DiscordMemberPager(bot, page_size=getattr(settings, "member_page_size", 1000)),
        cache=cache if cache is not None else PresenceCache(),
        count_bot_activity=bool(getattr(settings, "count_bot_activity", False)),
    )


async def load_all(bot, settings, metrics, presence_cache=None):
    log.info("Starting loader...")

    # attach shared deps (so any cog can grab them if needed)
    bot.settings = settings
    bot.metrics = metrics

    # a shared presence cache; one per process is normal
    if presence_cache is None:
        presence_cache = PresenceCache()
    bot.presence_cache = presence_cache

    # ---------------- GUILD METRICS ----------------
    try:
        sync = build_synchronizer(bot, settings, metrics, cache=presence_cache)
        bot.sync = sync
        await bot.add_cog(GuildMetricsCog(bot, settings, sync))
        log.info("GuildMetricsCog loaded ✅")
    except Exception:
        log.exception("GuildMetricsCog FAILED ❌")

    log.info("Loaded cogs: %s", ", ".join(bot.cogs.keys()))
