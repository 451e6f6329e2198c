"""
Session management for the current chat user.

Design principles:
- Session = pure data object
- Manager = IO + lifecycle orchestration
- Atomic persistence
"""

from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

from loguru import logger

from chatfeed.bus.events import utc_now
from chatfeed.config.schema import Config
from chatfeed.errors import IdentityError
from chatfeed.utils.helpers import RUNTIME_PATHS


_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.\-]{1,64}$")


def now_iso() -> str:
    return utc_now().isoformat()


# ===========================
# Session Object
# ===========================

@dataclass(slots=True)
class Session:
    """Authenticated user identity; `username` is the chat client id."""

    username: str
    created_at: str = field(default_factory=now_iso)


def validate_username(username: Optional[str]) -> str:
    name = (username or "").strip()
    if not name:
        raise IdentityError("No username available; log in first")
    if not _USERNAME_RE.match(name):
        raise IdentityError(f"Invalid username: {name!r}")
    return name


# ===========================
# Session Manager
# ===========================

class SessionManager:
    """
    Resolve the current user.

    Resolution order:
        1. explicit login() in this process
        2. persisted session file
        3. config.chat.username
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = path or RUNTIME_PATHS.session_file
        self._current: Optional[Session] = None

    # ---------- core APIs ----------

    def login(self, username: str) -> Session:
        """Start and persist a session."""
        session = Session(username=validate_username(username))
        self._save(session)
        self._current = session
        logger.success("Session started | user={}", session.username)
        return session

    def logout(self) -> None:
        self._current = None
        if self.path.exists():
            self.path.unlink()
        logger.info("Session cleared")

    def current(self, config: Optional[Config] = None) -> Optional[Session]:
        if self._current:
            return self._current

        session = self._load()
        if session is None and config and config.chat.username:
            session = Session(username=config.chat.username)

        self._current = session
        return session

    def require(self, config: Optional[Config] = None) -> Session:
        """Return the current session or raise IdentityError."""
        session = self.current(config)
        validate_username(session.username if session else None)
        return session

    # ---------- persistence ----------

    def _save(self, session: Session) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(asdict(session)), encoding="utf-8")
        tmp.replace(self.path)

    def _load(self) -> Optional[Session]:
        if not self.path.exists():
            return None

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return Session(
                username=data["username"],
                created_at=data.get("created_at") or now_iso(),
            )
        except Exception as e:
            logger.warning("Ignoring unreadable session file | path={} err={}", self.path, e)
            return None
