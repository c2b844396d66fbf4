"""WhatsApp connection lifecycle supervision.

Tracks the socket state reported by the gateway, reconnects after drops
with a fixed delay, and stays down after a logout until the device is
linked again.
"""

import asyncio
from typing import Any, Awaitable, Callable, Mapping, Optional

import structlog

logger = structlog.get_logger()

STATE_CONNECTING = "connecting"
STATE_OPEN = "open"
STATE_CLOSE = "close"

# Baileys DisconnectReason.loggedOut
LOGGED_OUT_STATUS_CODE = 401


def disconnect_status_code(update: Mapping[str, Any]) -> Optional[int]:
    """Pull the status code out of ``lastDisconnect`` in any known shape."""
    last_disconnect = update.get("lastDisconnect")
    if not isinstance(last_disconnect, Mapping):
        return None

    candidates = [last_disconnect.get("statusCode")]
    error = last_disconnect.get("error")
    if isinstance(error, Mapping):
        candidates.append(error.get("statusCode"))
        output = error.get("output")
        if isinstance(output, Mapping):
            candidates.append(output.get("statusCode"))

    for candidate in candidates:
        try:
            if candidate is not None:
                return int(candidate)
        except (TypeError, ValueError):
            continue
    return None


class ConnectionSupervisor:
    """Own the connect/reconnect cycle and expose readiness."""

    def __init__(
        self,
        connect: Callable[[], Awaitable[None]],
        save_credentials: Callable[[Mapping[str, Any]], Any],
        *,
        reconnect_delay_seconds: float = 10.0,
        on_logged_out: Optional[Callable[[], Any]] = None,
    ) -> None:
        self._connect = connect
        self._save_credentials = save_credentials
        self._on_logged_out = on_logged_out
        self.reconnect_delay_seconds = max(0.0, float(reconnect_delay_seconds))
        self.state: str = STATE_CLOSE
        self.logged_out: bool = False
        self.last_disconnect_code: Optional[int] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def is_ready(self) -> bool:
        return self.state == STATE_OPEN

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def start(self) -> None:
        """Open the first connection."""
        await self._connect_once()

    async def stop(self) -> None:
        self.cancel_reconnect()
        self.state = STATE_CLOSE

    async def _connect_once(self) -> None:
        self.state = STATE_CONNECTING
        try:
            await self._connect()
        except Exception as e:
            logger.warning(
                "Connect attempt failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            self.state = STATE_CLOSE
            if self.logged_out:
                return
            self.schedule_reconnect()

    def schedule_reconnect(self) -> bool:
        """Schedule one reconnect; returns False if logged out or already pending."""
        if self.logged_out:
            logger.debug("Not reconnecting, session is logged out")
            return False
        if self.reconnect_pending:
            logger.debug("Reconnect already scheduled")
            return False
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after_delay()
        )
        logger.info(
            "Reconnect scheduled", delay_seconds=self.reconnect_delay_seconds
        )
        return True

    def cancel_reconnect(self) -> bool:
        """Cancel a pending reconnect; returns True if one was cancelled."""
        task = self._reconnect_task
        self._reconnect_task = None
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self.reconnect_delay_seconds)
        # Cleared before connecting so a failed attempt can schedule the next.
        self._reconnect_task = None
        if self.logged_out:
            return
        logger.info("Reconnecting to WhatsApp")
        await self._connect_once()

    def handle_connection_update(self, update: Mapping[str, Any]) -> None:
        """Apply a Baileys ``connection.update`` event."""
        if update.get("qr"):
            logger.info(
                "Pairing QR received, link the device from WhatsApp > Linked Devices",
                qr=update["qr"],
            )

        connection = update.get("connection")
        if connection == STATE_CONNECTING:
            self.state = STATE_CONNECTING
            logger.info("Connecting to WhatsApp")
        elif connection == STATE_OPEN:
            self.state = STATE_OPEN
            self.logged_out = False
            self.last_disconnect_code = None
            self.cancel_reconnect()
            logger.info("WhatsApp connection open")
        elif connection == STATE_CLOSE:
            self._handle_close(update)

    def _handle_close(self, update: Mapping[str, Any]) -> None:
        self.state = STATE_CLOSE
        code = disconnect_status_code(update)
        self.last_disconnect_code = code

        if code == LOGGED_OUT_STATUS_CODE:
            self.logged_out = True
            self.cancel_reconnect()
            logger.warning("Logged out from WhatsApp, waiting for device relink")
            self._forget_session()
            return

        logger.warning("WhatsApp connection lost", status_code=code)
        self.schedule_reconnect()

    def _forget_session(self) -> None:
        if self._on_logged_out is None:
            return
        try:
            self._on_logged_out()
        except Exception as e:
            logger.error(
                "Failed to clear stored WhatsApp credentials",
                error=str(e),
                error_type=type(e).__name__,
            )

    def handle_credentials_update(self, update: Mapping[str, Any]) -> None:
        """Hand a ``creds.update`` payload to the credential save callback."""
        try:
            self._save_credentials(update)
        except Exception as e:
            logger.error(
                "Failed to persist WhatsApp credentials",
                error=str(e),
                error_type=type(e).__name__,
            )
