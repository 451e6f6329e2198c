"""
Message body parsing and rendering.

A message body is an ordered tuple of parts:
    text        -> plain text run
    plain_link  -> bare URL
    text_link   -> [label](url)
    mention     -> @username
"""

from __future__ import annotations

import re
from typing import Iterable

from chatfeed.bus.events import (
    MentionPart,
    MessagePart,
    PlainLinkPart,
    TextLinkPart,
    TextPart,
)


MENTION_URL = "https://ably.com/{user_id}"

_TOKEN_RE = re.compile(
    r"\[(?P<label>[^\]]+)\]\((?P<target>https?://[^\s)]+)\)"
    r"|(?P<url>https?://[^\s]+)"
    r"|(?<![\w@])@(?P<user>[A-Za-z0-9_.\-]+)"
)


# =============================
# Parsing
# =============================

def parse_text(text: str) -> tuple[MessagePart, ...]:
    """
    Split raw text into message parts.

    Example:
        "hi @ana see https://x.io" ->
            text("hi "), mention(ana), text(" see "), plain_link(https://x.io)
    """
    parts: list[MessagePart] = []
    pos = 0

    for match in _TOKEN_RE.finditer(text):
        if match.start() > pos:
            parts.append(TextPart(text=text[pos:match.start()]))

        if match.group("label") is not None:
            parts.append(TextLinkPart(text=match.group("label"), link=match.group("target")))
        elif match.group("url") is not None:
            parts.append(PlainLinkPart(link=match.group("url")))
        else:
            user = match.group("user")
            parts.append(MentionPart(user_id=user, name=user))

        pos = match.end()

    if pos < len(text):
        parts.append(TextPart(text=text[pos:]))

    return tuple(parts)


# =============================
# Rendering
# =============================

def render_part(part: MessagePart) -> str:
    if part.kind == "text":
        return part.text
    if part.kind == "plain_link":
        return part.link
    if part.kind == "text_link":
        return part.text
    if part.kind == "mention":
        return f"@{part.name}"
    return ""


def render_body(body: Iterable[MessagePart]) -> str:
    return "".join(render_part(p) for p in body)


def part_href(part: MessagePart) -> str | None:
    """Link target of a part, if it has one."""
    if part.kind in ("plain_link", "text_link"):
        return part.link
    if part.kind == "mention":
        return MENTION_URL.format(user_id=part.user_id)
    return None


def part_key(part: MessagePart) -> str:
    """Stable key of a part within its message."""
    if part.kind == "text":
        return part.text
    if part.kind in ("plain_link", "text_link"):
        return part.link
    if part.kind == "mention":
        return part.user_id
    return ""


# =============================
# Author colours
# =============================

def string_to_hue(value: str) -> int:
    h = 0
    for ch in value:
        h = ord(ch) + ((h << 5) - h)
        h = (h + 2**31) % 2**32 - 2**31   # keep 32-bit signed
    return h % 360


def user_color(username: str) -> str:
    """Deterministic HSL colour for an author name."""
    return f"hsl({string_to_hue(username)}, 50%, 60%)"
