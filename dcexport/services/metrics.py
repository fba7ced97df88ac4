"""Prometheus metric families for the guild exporter.

Every family carries a ``guild_id`` label so one process can export several
guilds and a guild can be torn down without touching the others. Each
``GuildMetrics`` owns its own ``CollectorRegistry``; nothing is registered on
the process-wide default registry.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from prometheus_client import CollectorRegistry, Counter, Gauge
from prometheus_client.metrics import MetricWrapperBase

from dcexport.core.models import ActivitySnapshot, CategoryResolution, ChannelRef, VoiceSnapshot

log = logging.getLogger(__name__)

DEFAULT_PREFIX = "dcexport"


def _bool(value: bool) -> str:
    return "true" if value else "false"


def _opt(value) -> str:
    return "" if value is None else str(value)


# ---------------- label builders ----------------

def guild_labels(guild_id: int, guild_name: str) -> dict[str, str]:
    return {"guild_id": str(guild_id), "guild_name": guild_name}


def channel_labels(guild_id: int, channel: ChannelRef) -> dict[str, str]:
    return {
        "guild_id": str(guild_id),
        "channel_id": str(channel.id),
        "channel_name": channel.name,
        "channel_nsfw": _bool(channel.nsfw),
        "channel_type": channel.kind,
    }


def activity_labels(guild_id: int, activity: ActivitySnapshot) -> dict[str, str]:
    return {
        "guild_id": str(guild_id),
        "activity_application_id": _opt(activity.application_id),
        "activity_name": activity.name,
    }


def voice_labels(guild_id: int, where: CategoryResolution, voice: VoiceSnapshot) -> dict[str, str]:
    return {
        "guild_id": str(guild_id),
        "category_id": _opt(where.category_id),
        "channel_id": str(where.channel_id),
        "self_stream": _bool(voice.self_stream),
        "self_video": _bool(voice.self_video),
        "self_deaf": _bool(voice.self_deaf),
        "self_mute": _bool(voice.self_mute),
    }


def message_labels(guild_id: int, where: CategoryResolution) -> dict[str, str]:
    return {
        "guild_id": str(guild_id),
        "category_id": _opt(where.category_id),
        "channel_id": str(where.channel_id),
    }


def emote_labels(guild_id: int, where: CategoryResolution, emoji_id: int, emoji_name: str | None) -> dict[str, str]:
    return {
        "guild_id": str(guild_id),
        "category_id": _opt(where.category_id),
        "channel_id": str(where.channel_id),
        "emoji_id": str(emoji_id),
        "emoji_name": _opt(emoji_name),
    }


class GuildMetrics:
    """
    The bundle of metric families written by the synchronizer.

    Series are obtained with ``family.labels(**labels)`` and support
    ``set/inc/dec`` (gauges) or ``inc(n)`` (counters).
    """

    def __init__(self, prefix: str = DEFAULT_PREFIX, registry: CollectorRegistry | None = None):
        self.prefix = prefix
        self.registry = registry if registry is not None else CollectorRegistry()
        self._labelnames: dict[MetricWrapperBase, tuple[str, ...]] = {}
        log.debug("Building metrics registry (prefix=%s)", prefix)

        self.guild = self._gauge(
            "guild", "The number of guilds handled by the exporter.",
            ["guild_id", "guild_name"],
        )
        self.channel = self._gauge(
            "channel", "The number of channels on the guild.",
            ["guild_id", "channel_id", "channel_name", "channel_nsfw", "channel_type"],
        )
        self.boost = self._gauge(
            "boost", "The number of boosts active on the guild.",
            ["guild_id"],
        )
        self.member = self._gauge(
            "member", "The number of members (including bots) on the guild.",
            ["guild_id"],
        )
        # separate from `member`: bot flags need a paginated member request
        # that may fail, the member count must not depend on it
        self.bot = self._gauge(
            "bot", "The number of bot members on the guild.",
            ["guild_id"],
        )
        self.member_status = self._gauge(
            "member_status", "The number of members on the guild per status.",
            ["guild_id", "status"],
        )
        self.activity = self._gauge(
            "activity", "The number of current activities.",
            ["guild_id", "activity_application_id", "activity_name"],
        )
        self.member_voice = self._gauge(
            "member_voice", "The number of members in voice channels.",
            ["guild_id", "category_id", "channel_id", "self_stream", "self_video", "self_deaf", "self_mute"],
        )
        self.message_sent = self._counter(
            "message_sent", "The total number of discord messages sent by guild members.",
            ["guild_id", "category_id", "channel_id"],
        )
        self.emote_sent = self._counter(
            "emote_sent", "The total number of custom emotes used in messages by guild members.",
            ["guild_id", "category_id", "channel_id", "emoji_id", "emoji_name"],
        )
        self.emote_reacted = self._counter(
            "emote_reacted", "The total number of custom emotes reacted with by guild members.",
            ["guild_id", "category_id", "channel_id", "emoji_id", "emoji_name"],
        )

    def _gauge(self, name: str, doc: str, labelnames: list[str]) -> Gauge:
        log.debug("Building metric %s", name)
        gauge = Gauge(name, doc, labelnames, namespace=self.prefix, registry=self.registry)
        self._labelnames[gauge] = tuple(labelnames)
        return gauge

    def _counter(self, name: str, doc: str, labelnames: list[str]) -> Counter:
        log.debug("Building metric %s", name)
        counter = Counter(name, doc, labelnames, namespace=self.prefix, registry=self.registry)
        self._labelnames[counter] = tuple(labelnames)
        return counter

    def families(self) -> tuple[MetricWrapperBase, ...]:
        return (
            self.guild,
            self.channel,
            self.boost,
            self.member,
            self.bot,
            self.member_status,
            self.activity,
            self.member_voice,
            self.message_sent,
            self.emote_sent,
            self.emote_reacted,
        )

    # ---------------- series removal ----------------

    @staticmethod
    def series(family: MetricWrapperBase) -> Iterator[dict[str, str]]:
        """Label sets of every live series of a family (each yielded once)."""
        seen: set[tuple[tuple[str, str], ...]] = set()
        for metric in family.collect():
            for sample in metric.samples:
                key = tuple(sorted(sample.labels.items()))
                if key in seen:
                    continue
                seen.add(key)
                yield dict(sample.labels)

    def remove_matching(self, family: MetricWrapperBase, **match) -> int:
        """Remove every series of `family` whose labels contain `match`."""
        want = {k: str(v) for k, v in match.items()}
        doomed = [
            labels for labels in self.series(family)
            if all(labels.get(k) == v for k, v in want.items())
        ]
        removed = 0
        for labels in doomed:
            if self.remove(family, labels):
                removed += 1
        return removed

    def remove(self, family: MetricWrapperBase, labels: dict[str, str]) -> bool:
        """Remove one series by its full label set. False if it did not exist."""
        values = [labels[name] for name in self._labelnames[family]]
        try:
            family.remove(*values)
        except KeyError:
            return False
        return True

    def remove_guild(self, guild_id: int, families: Iterable[MetricWrapperBase] | None = None) -> int:
        removed = 0
        for family in families if families is not None else self.families():
            removed += self.remove_matching(family, guild_id=guild_id)
        log.debug("Removed %d series for guild %s", removed, guild_id)
        return removed

    def clear(self) -> None:
        for family in self.families():
            family.clear()
