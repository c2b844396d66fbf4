"""In-memory cache of recently observed inbound image messages."""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional

from .envelope import KIND_IMAGE, NormalizedMessage


@dataclass(frozen=True)
class InboundImageRecord:
    """One observed inbound image message."""

    message_id: str
    conversation_id: str
    participant_id: str
    timestamp_seconds: int
    album_group_id: Optional[str]
    media_reference: Mapping[str, Any]

    @classmethod
    def from_message(cls, message: NormalizedMessage) -> Optional["InboundImageRecord"]:
        """Build a record for image messages, None for anything else."""
        if message.kind != KIND_IMAGE:
            return None
        return cls(
            message_id=message.message_id,
            conversation_id=message.conversation_id,
            participant_id=message.participant_id,
            timestamp_seconds=message.timestamp_seconds,
            album_group_id=message.album_group_id,
            media_reference=message.raw,
        )


@dataclass
class _Entry:
    record: InboundImageRecord
    tracked_at: float


def _ordered(records: Iterable[InboundImageRecord]) -> List[InboundImageRecord]:
    unique: dict[str, InboundImageRecord] = {}
    for record in records:
        unique[record.message_id] = record
    return sorted(
        unique.values(), key=lambda item: (item.timestamp_seconds, item.message_id)
    )


class RecentMessageCache:
    """Track recent image messages with TTL and size bound.

    Every method is synchronous so that tracking, eviction and lookups never
    interleave on the event loop.
    """

    def __init__(self, *, max_entries: int = 500, ttl_seconds: int = 86400) -> None:
        self.max_entries = max(1, int(max_entries))
        self.ttl_seconds = max(1, int(ttl_seconds))
        self._entries: OrderedDict[str, _Entry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def track(self, record: InboundImageRecord) -> None:
        """Insert or replace a record, then apply eviction."""
        now = time.time()
        self._entries[record.message_id] = _Entry(record=record, tracked_at=now)
        self._entries.move_to_end(record.message_id)
        self._evict_expired(now)
        self._evict_overflow()

    def find_by_id(
        self, message_id: Optional[str], conversation_id: Optional[str] = None
    ) -> Optional[InboundImageRecord]:
        if not message_id:
            return None
        entry = self._entries.get(message_id)
        if entry is None:
            return None
        if conversation_id and entry.record.conversation_id != conversation_id:
            return None
        return entry.record

    def find_by_album_group(
        self, conversation_id: str, album_group_id: str
    ) -> List[InboundImageRecord]:
        """Records sharing an album group, in send order."""
        if not album_group_id:
            return []
        return _ordered(
            entry.record
            for entry in self._entries.values()
            if entry.record.conversation_id == conversation_id
            and entry.record.album_group_id == album_group_id
        )

    def find_by_proximity(
        self,
        conversation_id: str,
        participant_id: str,
        around_timestamp: int,
        window_seconds: int,
    ) -> List[InboundImageRecord]:
        """Records from one participant sent within ``±window_seconds``."""
        return _ordered(
            entry.record
            for entry in self._entries.values()
            if entry.record.conversation_id == conversation_id
            and entry.record.participant_id == participant_id
            and abs(entry.record.timestamp_seconds - around_timestamp)
            <= window_seconds
        )

    def records(self) -> List[InboundImageRecord]:
        """Snapshot of tracked records, oldest first."""
        return [entry.record for entry in self._entries.values()]

    def _evict_expired(self, now: float) -> None:
        cutoff = now - self.ttl_seconds
        expired = [
            message_id
            for message_id, entry in self._entries.items()
            if entry.tracked_at < cutoff
        ]
        for message_id in expired:
            self._entries.pop(message_id, None)

    def _evict_overflow(self) -> None:
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
