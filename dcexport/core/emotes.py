# dcexport/core/emotes.py
from __future__ import annotations

import re
from dataclasses import dataclass

# <:name:id> or <a:name:id>
_CUSTOM_EMOJI_RE = re.compile(r"^<(a?):([A-Za-z0-9_~]+):([0-9]+)>$")


@dataclass(frozen=True)
class CustomEmoji:
    id: int
    name: str
    animated: bool = False


def parse_custom_emoji(token: str) -> CustomEmoji | None:
    """Parse a single `<:name:id>` token. Unicode emoji and plain words give None."""
    m = _CUSTOM_EMOJI_RE.match(token)
    if not m:
        return None
    return CustomEmoji(id=int(m.group(3)), name=m.group(2), animated=bool(m.group(1)))


def custom_emojis_in(content: str) -> list[CustomEmoji]:
    """Custom emotes in a message body, tokenized on whitespace."""
    found = []
    for part in (content or "").split():
        emoji = parse_custom_emoji(part)
        if emoji is not None:
            found.append(emoji)
    return found
