"""
Configuration loading and persistence utilities.

Design goals:
    - Deterministic loading & fallback
    - Legacy schema migration
    - Strict schema validation
    - Stable persistence format (camelCase on disk, snake_case in memory)
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from chatfeed.config.schema import Config
from chatfeed.utils.helpers import RUNTIME_PATHS


# =============================
# Paths
# =============================

def get_config_path() -> Path:
    """
    Return default configuration file path.

    Default:
        ~/.chatfeed/config.json
    """
    return RUNTIME_PATHS.root / "config.json"


# =============================
# Load & Save
# =============================

def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from disk or fallback to defaults.

    Flow:
        1. Read raw JSON
        2. Migrate legacy schema
        3. camelCase → snake_case
        4. Pydantic validation
    """
    path = config_path or get_config_path()

    if not path.exists():
        logger.warning("Config file not found, using defaults | path={}", path)
        return Config()

    try:
        with path.open("r", encoding="utf-8") as f:
            raw = json.load(f)

        migrated = _migrate_config(raw)
        normalized = convert_keys(migrated)

        config = Config.model_validate(normalized)

        logger.success("Config loaded | path={}", path)
        return config

    except json.JSONDecodeError as e:
        logger.error("Invalid JSON in config | path={} err={}", path, e)

    except Exception as e:
        logger.exception("Failed to load config | path={} err={}", path, e)

    logger.warning("Falling back to default configuration")
    return Config()


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """
    Persist configuration to disk.

    Behavior:
        - snake_case → camelCase
        - Pretty JSON formatting
        - Atomic overwrite
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = convert_to_camel(config.model_dump(mode="json"))
    tmp = path.with_suffix(".tmp")

    with tmp.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    tmp.replace(path)

    logger.success("Config saved | path={}", path)
    return path


# =============================
# Migration
# =============================

def _migrate_config(data: dict) -> dict:
    """
    Migrate legacy config schema → latest schema.

    Migration rules:
        - withBots            → feed.withBots
        - bots.enabled        → feed.withBots
        - chat.conversationId → chat.channelName
    """
    feed = data.get("feed") or {}
    bots = data.get("bots") or {}
    chat = data.get("chat") or {}

    if "withBots" in data:
        feed.setdefault("withBots", bool(data.pop("withBots")))
        logger.info("Migrated legacy config: withBots")

    if "enabled" in bots:
        feed.setdefault("withBots", bool(bots.pop("enabled")))
        logger.info("Migrated legacy config: bots.enabled")

    if "conversationId" in chat and "channelName" not in chat:
        chat["channelName"] = chat.pop("conversationId")
        logger.info("Migrated legacy config: chat.conversationId")

    if feed:
        data["feed"] = feed
    if bots:
        data["bots"] = bots
    if chat:
        data["chat"] = chat
    return data


# =============================
# Key Conversion
# =============================

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")
_SNAKE_BOUNDARY = re.compile(r"_([a-z0-9])")


def camel_to_snake(name: str) -> str:
    """usernamePrefix -> username_prefix"""
    return _CAMEL_BOUNDARY.sub(r"_\1", name).lower()


def snake_to_camel(name: str) -> str:
    """username_prefix -> usernamePrefix"""
    return _SNAKE_BOUNDARY.sub(lambda m: m.group(1).upper(), name)


def _rekey(data: Any, rename: Callable[[str], str]) -> Any:
    # keys only; string values such as script bodies pass through untouched
    if isinstance(data, dict):
        return {rename(k): _rekey(v, rename) for k, v in data.items()}
    if isinstance(data, list):
        return [_rekey(x, rename) for x in data]
    return data


def convert_keys(data: Any) -> Any:
    """On-disk camelCase keys -> snake_case field names, recursively."""
    return _rekey(data, camel_to_snake)


def convert_to_camel(data: Any) -> Any:
    """snake_case field names -> on-disk camelCase keys, recursively."""
    return _rekey(data, snake_to_camel)
