"""Main WhatsApp bot class.

Features:
- Gateway event dispatch
- Image tracking for album correlation
- Per-conversation command serialization
- Graceful shutdown
"""

import asyncio
from typing import Any, Dict, List, Mapping, Optional

import structlog

from ..config.settings import Settings
from ..exceptions import GalleryBotError
from ..gateway.events import (
    EVENT_CONNECTION_UPDATE,
    EVENT_CREDS_UPDATE,
    EVENT_MESSAGES_UPSERT,
)
from .handlers.command import handle_command
from .supervisor import ConnectionSupervisor
from .utils.envelope import (
    STATUS_BROADCAST_JID,
    NormalizedMessage,
    normalize_envelope,
)
from .utils.message_dedupe import MessageDedupeCache
from .utils.recent_messages import InboundImageRecord, RecentMessageCache

logger = structlog.get_logger()

_UPSERT_TYPE_NOTIFY = "notify"
_SHUTDOWN_GRACE_SECONDS = 10.0


class GalleryBot:
    """Main bot orchestrator."""

    def __init__(self, settings: Settings, dependencies: Dict[str, Any]):
        """Initialize bot with settings and dependencies."""
        self.settings = settings
        self.deps = dependencies
        self.deps.setdefault("settings", settings)
        self._message_dedupe_cache = MessageDedupeCache(
            ttl_seconds=getattr(settings, "message_dedupe_ttl_seconds", 300),
            max_size=5000,
        )
        self._conversation_locks: Dict[str, asyncio.Lock] = {}
        self._conversation_users: Dict[str, int] = {}
        self._command_tasks: set[asyncio.Task] = set()

    def _require(self, key: str) -> Any:
        """Return a dependency or raise."""
        value = self.deps.get(key)
        if value is None:
            raise GalleryBotError(f"Missing dependency: {key}")
        return value

    @property
    def cache(self) -> RecentMessageCache:
        return self._require("cache")  # type: ignore[no-any-return]

    @property
    def supervisor(self) -> ConnectionSupervisor:
        return self._require("supervisor")  # type: ignore[no-any-return]

    def handle_event(self, event: str, data: Mapping[str, Any]) -> None:
        """Route one gateway event."""
        if event == EVENT_MESSAGES_UPSERT:
            self.handle_messages_upsert(data)
        elif event == EVENT_CONNECTION_UPDATE:
            self.supervisor.handle_connection_update(data)
        elif event == EVENT_CREDS_UPDATE:
            self.supervisor.handle_credentials_update(data)
        else:
            logger.debug("Ignoring gateway event", gateway_event=event)

    def handle_messages_upsert(self, data: Mapping[str, Any]) -> List[asyncio.Task]:
        """Track every inbound image and schedule command handling.

        Tracking happens synchronously on receipt so that album members are
        in the cache before any later ``!upload`` is handled.
        """
        raw_messages = data.get("messages") or []
        is_live = data.get("type", _UPSERT_TYPE_NOTIFY) == _UPSERT_TYPE_NOTIFY
        scheduled: List[asyncio.Task] = []

        for raw in raw_messages:
            message = normalize_envelope(raw)
            if message is None:
                continue
            if message.conversation_id == STATUS_BROADCAST_JID:
                continue

            dedupe_key = f"{message.conversation_id}:{message.message_id}"
            if self._message_dedupe_cache.check_and_mark(dedupe_key):
                logger.debug(
                    "Skipping duplicate WhatsApp message",
                    message_id=message.message_id,
                )
                continue

            record = InboundImageRecord.from_message(message)
            if record is not None:
                self.cache.track(record)
                logger.debug(
                    "Tracked inbound image",
                    message_id=record.message_id,
                    conversation_id=record.conversation_id,
                    album_group_id=record.album_group_id,
                    cache_size=len(self.cache),
                )

            if message.from_me or not is_live or message.command is None:
                continue

            task = asyncio.get_running_loop().create_task(
                self._run_serialized(message)
            )
            self._command_tasks.add(task)
            task.add_done_callback(self._command_tasks.discard)
            scheduled.append(task)

        return scheduled

    def _conversation_lock(self, conversation_id: str) -> asyncio.Lock:
        lock = self._conversation_locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._conversation_locks[conversation_id] = lock
        return lock

    async def _run_serialized(self, message: NormalizedMessage) -> None:
        conversation_id = message.conversation_id
        lock = self._conversation_lock(conversation_id)
        self._conversation_users[conversation_id] = (
            self._conversation_users.get(conversation_id, 0) + 1
        )
        try:
            async with lock:
                await handle_command(message, self.deps)
        finally:
            remaining = self._conversation_users[conversation_id] - 1
            if remaining:
                self._conversation_users[conversation_id] = remaining
            else:
                # Last holder or waiter gone.
                del self._conversation_users[conversation_id]
                del self._conversation_locks[conversation_id]

    async def start(self) -> None:
        """Open the WhatsApp connection."""
        logger.info("Starting WhatsApp bot")
        await self.supervisor.start()

    async def stop(self, grace_seconds: Optional[float] = None) -> None:
        """Stop reconnecting and let in-flight commands finish briefly."""
        logger.info("Stopping WhatsApp bot")
        await self.supervisor.stop()

        pending = [task for task in self._command_tasks if not task.done()]
        if not pending:
            return

        timeout = _SHUTDOWN_GRACE_SECONDS if grace_seconds is None else grace_seconds
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(
                "Cancelled unfinished commands at shutdown",
                count=len(still_running),
            )
        await asyncio.gather(*still_running, return_exceptions=True)
