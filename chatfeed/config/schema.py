"""
Configuration schema definitions.

Design principles:
    - Explicit structure
    - Predictable defaults
    - Environment override support
    - Strong typing + validation
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================
# Chat
# =============================

class ChatConfig(BaseModel):
    """Identity and conversation defaults."""
    username: str = ""
    channel_name: str = "general"
    page_size: int = Field(default=200, gt=0)


# =============================
# Bots
# =============================

class BotReactionConfig(BaseModel):
    """Reaction a scripted participant leaves on a bot message."""
    type: str = "emoji"
    actor: str = ""


class BotScriptEntry(BaseModel):
    """
    One scripted bot message.

    Revealed at `anchor + offset_s` where the anchor is the earliest
    real message of the conversation.
    """
    offset_s: float = Field(default=0.0, ge=0)
    author: str
    body: str
    reactions: list[BotReactionConfig] = Field(default_factory=list)

    @property
    def offset(self) -> timedelta:
        return timedelta(seconds=self.offset_s)


def _default_script() -> list[BotScriptEntry]:
    return [
        BotScriptEntry(offset_s=1, author="ana", body="hey everyone 👋"),
        BotScriptEntry(offset_s=3, author="ben", body="@ana hi! did you see the stream?"),
        BotScriptEntry(
            offset_s=6,
            author="ana",
            body="yes, slides are at [the deck](https://example.com/deck)",
            reactions=[BotReactionConfig(type="star", actor="ben")],
        ),
        BotScriptEntry(offset_s=10, author="cleo", body="late to the party, what did I miss?"),
        BotScriptEntry(
            offset_s=14,
            author="ben",
            body="recording: https://example.com/recording",
            reactions=[
                BotReactionConfig(type="emoji", actor="ana"),
                BotReactionConfig(type="emoji", actor="cleo"),
            ],
        ),
    ]


class BotsConfig(BaseModel):
    """Simulated participants."""
    username_prefix: str = "bot-"
    channel_name: str = "bots"
    default_anchor: Optional[datetime] = None
    script: list[BotScriptEntry] = Field(default_factory=_default_script)


# =============================
# Feed
# =============================

class FeedConfig(BaseModel):
    """Feed composition policy."""
    with_bots: bool = False
    chronological: bool = True


# =============================
# Root Config
# =============================

class Config(BaseSettings):
    """
    Root configuration schema.

    Priority:
        env > config.json > defaults
    """

    model_config = SettingsConfigDict(
        env_prefix="CHATFEED_",
        env_nested_delimiter="__",
    )

    chat: ChatConfig = Field(default_factory=ChatConfig)
    bots: BotsConfig = Field(default_factory=BotsConfig)
    feed: FeedConfig = Field(default_factory=FeedConfig)

