# dcexport/main.py
import asyncio
import contextlib
import logging
import signal

import discord
from discord.ext import commands

from dcexport.config import load_settings
from dcexport.loader import load_all
from dcexport.services.exporter import MetricsServer
from dcexport.services.metrics import GuildMetrics

log = logging.getLogger("dcexport")


def build_intents() -> discord.Intents:
    intents = discord.Intents.default()
    intents.members = True           # member add/remove + bot flags
    intents.presences = True         # member_status / activity
    intents.message_content = True   # emotes in message bodies
    intents.voice_states = True
    intents.reactions = True
    return intents


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # e.g. Windows: fall back to KeyboardInterrupt
            pass


async def run():
    settings = load_settings()
    discord.utils.setup_logging(level=settings.log_level, root=True)
    log.info(
        "Starting dcexport | metrics=%s:%s | prefix=%s",
        settings.metrics_host, settings.metrics_port, settings.metrics_prefix,
    )

    metrics = GuildMetrics(prefix=settings.metrics_prefix)
    server = MetricsServer.from_settings(metrics, settings)

    # no commands, only gateway listeners
    bot = commands.Bot(command_prefix=commands.when_mentioned, intents=build_intents(), help_command=None)

    @bot.event
    async def setup_hook():
        await load_all(bot, settings, metrics)
        log.info("setup_hook: cogs loaded ✅")

    @bot.event
    async def on_ready():
        log.info("ONLINE as %s | guilds=%d", bot.user, len(bot.guilds))

    stop = asyncio.Event()
    _install_signal_handlers(stop)

    await server.start()
    bot_task = asyncio.create_task(bot.start(settings.token), name="discord")
    stop_task = asyncio.create_task(stop.wait(), name="shutdown")
    try:
        done, _ = await asyncio.wait({bot_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if stop_task in done:
            log.info("Shutdown signal received")
        else:
            log.warning("Discord client stopped before shutdown signal")
            exc = bot_task.exception()
            if exc is not None:
                log.error("Discord client aborted", exc_info=exc)
    finally:
        stop_task.cancel()
        await bot.close()
        if not bot_task.done():
            bot_task.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await bot_task
        await server.close()
        log.info("Shutdown successfully")


def main():
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
