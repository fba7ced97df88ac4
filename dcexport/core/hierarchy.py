# dcexport/core/hierarchy.py
from __future__ import annotations

from dcexport.core.models import CategoryResolution, Topology


def resolve_category_channel(topology: Topology, guild_id: int, channel_id: int) -> CategoryResolution:
    """
    Flatten a channel to its (top category, reporting channel) pair.

    Discord nests at most category -> channel -> thread:
      - no parent           -> (None, channel)
      - parent w/o parent   -> (parent, channel)
      - thread              -> (grandparent, parent)

    Raises TopologyLookupError if the channel or an ancestor is not cached.
    """
    channel = topology.lookup(guild_id, channel_id)
    if channel.parent_id is None:
        return CategoryResolution(category=None, channel=channel)

    parent = topology.lookup(guild_id, channel.parent_id)
    if parent.parent_id is None:
        return CategoryResolution(category=parent, channel=channel)

    # thread: report under its parent channel
    grandparent = topology.lookup(guild_id, parent.parent_id)
    return CategoryResolution(category=grandparent, channel=parent)
