from datetime import datetime, timedelta, timezone

import pytest

from chatfeed.backend.memory import InMemoryChatClient, InMemoryServer
from chatfeed.bus.events import Message, ReactionEvent, TextPart
from chatfeed.utils.helpers import RuntimePaths


T0 = datetime(2024, 1, 2, 14, 50, 32, tzinfo=timezone.utc)


@pytest.fixture
def make_message():
    """Factory for messages offset in seconds from a fixed instant."""

    def _make(
        id: str,
        offset_s: float = 0,
        author: str = "alice",
        channel: str = "general",
        text: str = "hi",
    ) -> Message:
        return Message(
            id=id,
            conversation_id=channel,
            created_by=author,
            created_at=T0 + timedelta(seconds=offset_s),
            body=(TextPart(text=text),),
        )

    return _make


@pytest.fixture
def reaction():
    def _make(reaction_id="r1", message_id="m1", type="emoji", actor="u2", kind="created"):
        return ReactionEvent(
            reaction_id=reaction_id,
            type=type,
            actor_id=actor,
            kind=kind,
            message_id=message_id,
        )

    return _make


@pytest.fixture
async def server():
    async with InMemoryServer() as s:
        yield s


@pytest.fixture
def client(server):
    return InMemoryChatClient("alice", server)


@pytest.fixture
def runtime_home(tmp_path, monkeypatch):
    """Point config and session files at a temp directory."""
    from chatfeed.config import loader
    from chatfeed.session import manager

    paths = RuntimePaths(root=tmp_path / ".chatfeed")
    monkeypatch.setattr(loader, "RUNTIME_PATHS", paths)
    monkeypatch.setattr(manager, "RUNTIME_PATHS", paths)
    return paths
