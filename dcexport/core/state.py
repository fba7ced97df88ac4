# dcexport/core/state.py
from __future__ import annotations

import asyncio

from dcexport.core.models import PresenceSnapshot


class PresenceCache:
    """
    Runtime-only "last known" presence per member, used to decrement the
    status / activity gauges before the new presence is counted.

    Holds:
    - (guild_id, user_id) -> last observed presence
    - (guild_id, user_id) -> lock guarding the read-decrement / write-increment

    Voice is not cached here: voice updates carry both old and new state.
    """

    def __init__(self):
        self.presences: dict[tuple[int, int], PresenceSnapshot] = {}
        self._locks: dict[tuple[int, int], asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self.presences)

    def locked(self, guild_id: int, user_id: int) -> asyncio.Lock:
        """Per-member lock, use as `async with cache.locked(g, u): ...`."""
        key = (guild_id, user_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def get(self, guild_id: int, user_id: int) -> PresenceSnapshot | None:
        return self.presences.get((guild_id, user_id))

    def put(self, guild_id: int, user_id: int, presence: PresenceSnapshot) -> None:
        self.presences[(guild_id, user_id)] = presence

    def remove(self, guild_id: int, user_id: int) -> PresenceSnapshot | None:
        key = (guild_id, user_id)
        lock = self._locks.get(key)
        # keep the lock while someone is inside the critical section
        if lock is not None and not lock.locked():
            self._locks.pop(key, None)
        return self.presences.pop(key, None)

    def remove_all(self, guild_id: int) -> int:
        keys = [k for k in self.presences if k[0] == guild_id]
        for key in keys:
            self.presences.pop(key, None)
        for key in [k for k in self._locks if k[0] == guild_id]:
            if not self._locks[key].locked():
                self._locks.pop(key, None)
        return len(keys)

    def guild_users(self, guild_id: int) -> set[int]:
        return {u for (g, u) in self.presences if g == guild_id}
