import asyncio
from datetime import datetime, timedelta

import pytest

from unistore.core.session_manager import SessionManager, UploadState


def _open(session_manager: SessionManager, upload_id: str = "u1"):
    return session_manager.get_or_create_session(
        upload_id=upload_id,
        relative_path="a/b.bin",
        content_type="application/octet-stream",
        total_chunks=3,
        total_size_bytes=10,
    )


def test_create_session(session_manager: SessionManager) -> None:
    session = _open(session_manager)
    assert session.upload_id in session_manager.sessions, "Session should be created"
    assert session.state == UploadState.OPEN
    assert _open(session_manager) is session, "Second chunk reuses the open session"


def test_session_timeout(session_manager: SessionManager) -> None:
    session = _open(session_manager)
    session.chunks[0] = b"abcd"
    session.last_activity = datetime.utcnow() - session_manager.session_timeout - timedelta(seconds=1)
    assert session_manager.get_session("u1") is None, "Expired session should return None"
    assert "u1" not in session_manager.sessions, "Expired session should be removed"
    assert session.state == UploadState.ABANDONED
    assert session.chunks == {}, "Buffered bytes are released"


def test_abandon_session(session_manager: SessionManager) -> None:
    _open(session_manager)
    assert session_manager.abandon_session("u1")
    assert not session_manager.abandon_session("u1"), "Abandoning twice is a no-op"


def test_committing_session_is_not_abandoned(session_manager: SessionManager) -> None:
    session = _open(session_manager)
    session.state = UploadState.COMMITTING
    session.last_activity = datetime.utcnow() - session_manager.session_timeout - timedelta(seconds=1)
    assert not session_manager.abandon_session("u1")
    assert session_manager.cleanup_expired_sessions() == []
    assert "u1" in session_manager.sessions


def test_cleanup_expired_sessions(session_manager: SessionManager) -> None:
    stale = _open(session_manager, "stale")
    _open(session_manager, "fresh")
    stale.last_activity = datetime.utcnow() - session_manager.session_timeout - timedelta(seconds=1)
    assert session_manager.cleanup_expired_sessions() == ["stale"]
    assert session_manager.get_active_session_count() == 1


@pytest.mark.asyncio
async def test_periodic_cleanup() -> None:
    manager = SessionManager(idle_timeout=timedelta(seconds=0), sweep_interval=0.01)
    _open(manager)
    manager.start_cleanup()
    await asyncio.sleep(0.05)
    await manager.shutdown()
    assert manager.get_active_session_count() == 0, "Sweeper abandons idle sessions"


def test_completed_session_is_retained(session_manager: SessionManager) -> None:
    session = _open(session_manager)
    session.release(UploadState.COMMITTED)
    session_manager.complete_session("u1")

    assert session_manager.get_active_session_count() == 0
    assert _open(session_manager) is session, "Late chunks find the committed session"


def test_completed_session_expires(session_manager: SessionManager) -> None:
    session = _open(session_manager)
    session.release(UploadState.COMMITTED)
    session_manager.complete_session("u1")
    session.last_activity = datetime.utcnow() - session_manager.session_timeout - timedelta(seconds=1)

    assert session_manager.cleanup_expired_sessions() == []
    assert "u1" not in session_manager.committed
    assert _open(session_manager).state == UploadState.OPEN, "A fresh upload may reuse the id after retention"
