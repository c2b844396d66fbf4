"""Tests for WhatsApp connection supervision."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from gallerybot.bot.supervisor import (
    STATE_CLOSE,
    STATE_CONNECTING,
    STATE_OPEN,
    ConnectionSupervisor,
    disconnect_status_code,
)


def _close_update(status_code):
    return {
        "connection": "close",
        "lastDisconnect": {"error": {"output": {"statusCode": status_code}}},
    }


def test_disconnect_status_code_reads_known_shapes():
    """Status codes are found on the error, its output or lastDisconnect."""
    assert disconnect_status_code(_close_update(428)) == 428
    assert (
        disconnect_status_code({"lastDisconnect": {"error": {"statusCode": "515"}}})
        == 515
    )
    assert disconnect_status_code({"lastDisconnect": {"statusCode": 401}}) == 401
    assert disconnect_status_code({"connection": "close"}) is None


@pytest.mark.asyncio
async def test_repeated_drops_schedule_a_single_reconnect():
    """Only one reconnect may be pending at a time."""
    connect = AsyncMock()
    supervisor = ConnectionSupervisor(
        connect, MagicMock(), reconnect_delay_seconds=3600
    )

    supervisor.handle_connection_update(_close_update(428))
    supervisor.handle_connection_update(_close_update(408))

    assert supervisor.reconnect_pending is True
    assert supervisor.schedule_reconnect() is False
    assert supervisor.state == STATE_CLOSE
    assert supervisor.last_disconnect_code == 408

    assert supervisor.cancel_reconnect() is True
    assert supervisor.reconnect_pending is False
    connect.assert_not_awaited()


@pytest.mark.asyncio
async def test_logout_does_not_reconnect():
    """A logged-out session waits for a relink instead of retrying."""
    supervisor = ConnectionSupervisor(
        AsyncMock(), MagicMock(), reconnect_delay_seconds=0
    )

    supervisor.handle_connection_update(_close_update(401))

    assert supervisor.logged_out is True
    assert supervisor.reconnect_pending is False
    assert supervisor.is_ready is False


@pytest.mark.asyncio
async def test_open_cancels_pending_reconnect_and_marks_ready():
    """Opening the socket clears any scheduled reconnect."""
    supervisor = ConnectionSupervisor(
        AsyncMock(), MagicMock(), reconnect_delay_seconds=3600
    )
    supervisor.handle_connection_update(_close_update(500))
    assert supervisor.reconnect_pending is True

    supervisor.handle_connection_update({"connection": "open"})

    assert supervisor.reconnect_pending is False
    assert supervisor.state == STATE_OPEN
    assert supervisor.is_ready is True


@pytest.mark.asyncio
async def test_reconnect_runs_after_delay():
    """The pending reconnect calls connect once its delay elapses."""
    connect = AsyncMock()
    supervisor = ConnectionSupervisor(connect, MagicMock(), reconnect_delay_seconds=0)

    supervisor.handle_connection_update(_close_update(428))
    for _ in range(3):
        await asyncio.sleep(0)

    connect.assert_awaited_once()
    assert supervisor.state == STATE_CONNECTING
    assert supervisor.reconnect_pending is False


@pytest.mark.asyncio
async def test_failed_start_schedules_reconnect():
    """A connect error on start leaves the supervisor retrying."""
    connect = AsyncMock(side_effect=RuntimeError("gateway offline"))
    supervisor = ConnectionSupervisor(
        connect, MagicMock(), reconnect_delay_seconds=3600
    )

    await supervisor.start()

    assert supervisor.state == STATE_CLOSE
    assert supervisor.reconnect_pending is True
    await supervisor.stop()
    assert supervisor.reconnect_pending is False


def test_credentials_update_is_saved_and_errors_are_logged():
    """Credential updates go to the save callback; failures do not raise."""
    save = MagicMock()
    supervisor = ConnectionSupervisor(AsyncMock(), save)

    supervisor.handle_credentials_update({"me": {"id": "628@s.whatsapp.net"}})
    save.assert_called_once_with({"me": {"id": "628@s.whatsapp.net"}})

    save.side_effect = OSError("disk full")
    supervisor.handle_credentials_update({"account": {}})


@pytest.mark.asyncio
async def test_logout_during_inflight_reconnect_stays_down():
    """A logout that lands while a reconnect is connecting ends the cycle."""
    entered = asyncio.Event()
    release = asyncio.Event()
    calls = []

    async def _connect():
        calls.append(1)
        entered.set()
        await release.wait()
        raise RuntimeError("stream errored (conflict)")

    supervisor = ConnectionSupervisor(_connect, MagicMock(), reconnect_delay_seconds=0)

    supervisor.handle_connection_update(_close_update(428))
    await asyncio.wait_for(entered.wait(), timeout=1)

    supervisor.handle_connection_update(_close_update(401))
    release.set()
    for _ in range(5):
        await asyncio.sleep(0)

    assert len(calls) == 1
    assert supervisor.logged_out is True
    assert supervisor.state == STATE_CLOSE
    assert supervisor.reconnect_pending is False
    assert supervisor.schedule_reconnect() is False


@pytest.mark.asyncio
async def test_logout_clears_stored_session_once():
    """A 401 close hands off to the logout callback; its errors are logged."""
    forget = MagicMock()
    supervisor = ConnectionSupervisor(
        AsyncMock(), MagicMock(), reconnect_delay_seconds=3600, on_logged_out=forget
    )

    supervisor.handle_connection_update(_close_update(428))
    supervisor.handle_connection_update(_close_update(401))

    forget.assert_called_once_with()
    assert supervisor.reconnect_pending is False

    forget.side_effect = OSError("read-only file system")
    supervisor.handle_connection_update(_close_update(401))

    assert forget.call_count == 2
    assert supervisor.logged_out is True
