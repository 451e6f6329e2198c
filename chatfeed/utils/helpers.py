"""
Runtime utility helpers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Final


# ===========================
# Path System
# ===========================

@dataclass(frozen=True, slots=True)
class RuntimePaths:
    """
    Centralized runtime path manager.

    Root defaults to ~/.chatfeed and can be moved with CHATFEED_HOME.
    """

    root: Path

    @classmethod
    def default(cls) -> "RuntimePaths":
        override = os.environ.get("CHATFEED_HOME")
        return cls(root=Path(override) if override else Path.home() / ".chatfeed")

    def ensure(self) -> "RuntimePaths":
        self.root.mkdir(parents=True, exist_ok=True)
        return self

    @property
    def session_file(self) -> Path:
        return self.root / "session.json"


RUNTIME_PATHS: Final[RuntimePaths] = RuntimePaths.default()


# ===========================
# Clock / String Utilities
# ===========================

def format_time(ts: datetime) -> str:
    """Local HH:MM:SS of a timestamp."""
    return ts.astimezone().strftime("%H:%M:%S")


def truncate(s: str, max_len: int = 120, suffix: str = "...") -> str:
    """Truncate a string with suffix."""
    if len(s) <= max_len:
        return s
    return s[: max_len - len(suffix)] + suffix
