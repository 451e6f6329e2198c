import pytest

from chatfeed.config.schema import ChatConfig, Config
from chatfeed.errors import IdentityError
from chatfeed.session.manager import SessionManager


def test_login_persists_session(tmp_path):
    path = tmp_path / "session.json"
    SessionManager(path).login("alice")

    session = SessionManager(path).require()

    assert session.username == "alice"


@pytest.mark.parametrize("name", ["", "   ", "has space", "x" * 65])
def test_invalid_username_rejected(tmp_path, name):
    with pytest.raises(IdentityError):
        SessionManager(tmp_path / "session.json").login(name)


def test_require_falls_back_to_config(tmp_path):
    manager = SessionManager(tmp_path / "session.json")
    config = Config(chat=ChatConfig(username="cfguser"))

    assert manager.require(config).username == "cfguser"


def test_require_without_identity_raises(tmp_path):
    with pytest.raises(IdentityError):
        SessionManager(tmp_path / "session.json").require(Config(chat=ChatConfig(username="")))


def test_logout_clears_session(tmp_path):
    path = tmp_path / "session.json"
    manager = SessionManager(path)
    manager.login("alice")

    manager.logout()

    assert not path.exists()
    assert manager.current() is None


def test_unreadable_session_file_is_ignored(tmp_path):
    path = tmp_path / "session.json"
    path.write_text("garbage")

    assert SessionManager(path).current() is None
