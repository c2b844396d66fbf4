"""Resolve an ``!upload`` reply into the photos it should upload.

A reply may point at one photo or at one member of an album. The transport
does not reliably tag album members, so resolution tries a fixed list of
strategies and takes the first one that finds anything.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

import structlog

from ...exceptions import ResolutionError
from ..utils.envelope import (
    KIND_ALBUM,
    KIND_IMAGE,
    KIND_VIDEO,
    NormalizedMessage,
)
from ..utils.recent_messages import InboundImageRecord, RecentMessageCache

logger = structlog.get_logger()

SOURCE_QUOTED_SINGLE = "quoted-single"
SOURCE_CACHE_RECOVERED = "cache-recovered"

MODE_SINGLE = "single"
MODE_BATCH = "batch"


@dataclass(frozen=True)
class UploadTarget:
    """One photo to push through the upload pipeline."""

    message_id: str
    participant_id: str
    media_reference: Mapping[str, Any]
    timestamp_seconds: int
    source_kind: str

    @classmethod
    def from_record(cls, record: InboundImageRecord) -> "UploadTarget":
        return cls(
            message_id=record.message_id,
            participant_id=record.participant_id,
            media_reference=record.media_reference,
            timestamp_seconds=record.timestamp_seconds,
            source_kind=SOURCE_CACHE_RECOVERED,
        )


@dataclass(frozen=True)
class Resolution:
    """Ordered targets plus the strategy that produced them."""

    targets: List[UploadTarget]
    strategy: str

    @property
    def mode(self) -> str:
        return MODE_BATCH if len(self.targets) > 1 else MODE_SINGLE


Strategy = Callable[
    [NormalizedMessage, RecentMessageCache, int], Optional[List[UploadTarget]]
]


def _from_records(records: Sequence[InboundImageRecord]) -> List[UploadTarget]:
    return [UploadTarget.from_record(record) for record in records]


def cached_album_group(
    command: NormalizedMessage, cache: RecentMessageCache, window_seconds: int
) -> Optional[List[UploadTarget]]:
    """Quoted photo is tracked and carries an album group."""
    quoted = command.quoted
    if quoted is None:
        return None
    record = cache.find_by_id(quoted.message_id, command.conversation_id)
    if record is None or not record.album_group_id:
        return None
    return _from_records(
        cache.find_by_album_group(command.conversation_id, record.album_group_id)
    )


def quoted_album_group(
    command: NormalizedMessage, cache: RecentMessageCache, window_seconds: int
) -> Optional[List[UploadTarget]]:
    """Album group read straight from the quoted content."""
    quoted = command.quoted
    if quoted is None or not quoted.content.album_group_id:
        return None
    return _from_records(
        cache.find_by_album_group(
            command.conversation_id, quoted.content.album_group_id
        )
    )


def cached_proximity(
    command: NormalizedMessage, cache: RecentMessageCache, window_seconds: int
) -> Optional[List[UploadTarget]]:
    """Quoted photo is tracked; collect its sender's photos around it."""
    quoted = command.quoted
    if quoted is None:
        return None
    record = cache.find_by_id(quoted.message_id, command.conversation_id)
    if record is None:
        return None
    return _from_records(
        cache.find_by_proximity(
            command.conversation_id,
            record.participant_id,
            record.timestamp_seconds,
            window_seconds,
        )
    )


def album_marker_proximity(
    command: NormalizedMessage, cache: RecentMessageCache, window_seconds: int
) -> Optional[List[UploadTarget]]:
    """Reply to an album placeholder; collect photos around the command."""
    quoted = command.quoted
    if quoted is None or quoted.kind != KIND_ALBUM:
        return None
    participant_id = quoted.participant_id or command.participant_id
    return _from_records(
        cache.find_by_proximity(
            command.conversation_id,
            participant_id,
            command.timestamp_seconds,
            window_seconds,
        )
    )


def quoted_single(
    command: NormalizedMessage, cache: RecentMessageCache, window_seconds: int
) -> Optional[List[UploadTarget]]:
    """Untracked plain photo: upload the quoted message itself."""
    quoted = command.quoted
    if quoted is None or quoted.kind != KIND_IMAGE:
        return None
    return [
        UploadTarget(
            message_id=quoted.message_id or f"{command.message_id}:quoted",
            participant_id=quoted.participant_id or command.participant_id,
            media_reference=quoted.envelope,
            timestamp_seconds=command.timestamp_seconds,
            source_kind=SOURCE_QUOTED_SINGLE,
        )
    ]


STRATEGIES: Tuple[Tuple[str, Strategy], ...] = (
    ("cached_album_group", cached_album_group),
    ("quoted_album_group", quoted_album_group),
    ("cached_proximity", cached_proximity),
    ("album_marker_proximity", album_marker_proximity),
    ("quoted_single", quoted_single),
)


def _dedupe_in_send_order(targets: Sequence[UploadTarget]) -> List[UploadTarget]:
    unique: dict[str, UploadTarget] = {}
    for target in targets:
        unique.setdefault(target.message_id, target)
    return sorted(
        unique.values(), key=lambda item: (item.timestamp_seconds, item.message_id)
    )


class AlbumResolver:
    """Turn an upload command into ordered upload targets."""

    def __init__(
        self,
        cache: RecentMessageCache,
        *,
        window_seconds: int = 45,
        strategies: Sequence[Tuple[str, Strategy]] = STRATEGIES,
    ) -> None:
        self.cache = cache
        self.window_seconds = int(window_seconds)
        self.strategies = tuple(strategies)

    def classify(self, command: NormalizedMessage) -> str:
        """Return the quoted media kind or raise a terminal resolution error."""
        quoted = command.quoted
        if quoted is None:
            raise ResolutionError(ResolutionError.MISSING_QUOTED_MESSAGE)
        if quoted.kind == KIND_VIDEO:
            raise ResolutionError(ResolutionError.VIDEO_NOT_SUPPORTED)
        if quoted.kind not in (KIND_IMAGE, KIND_ALBUM):
            raise ResolutionError(ResolutionError.UNSUPPORTED_MEDIA)
        return quoted.kind

    def resolve(self, command: NormalizedMessage) -> Resolution:
        """Run the strategies in priority order."""
        kind = self.classify(command)

        for name, strategy in self.strategies:
            targets = strategy(command, self.cache, self.window_seconds)
            if not targets:
                continue
            resolution = Resolution(
                targets=_dedupe_in_send_order(targets), strategy=name
            )
            logger.info(
                "Upload targets resolved",
                conversation_id=command.conversation_id,
                quoted_message_id=command.quoted.message_id if command.quoted else None,
                strategy=name,
                mode=resolution.mode,
                target_count=len(resolution.targets),
            )
            return resolution

        if kind == KIND_ALBUM:
            logger.warning(
                "Album reply without tracked photos",
                conversation_id=command.conversation_id,
                quoted_message_id=command.quoted.message_id if command.quoted else None,
            )
            raise ResolutionError(ResolutionError.ALBUM_TARGETS_NOT_FOUND)

        # Unreachable for images: quoted_single always yields a target.
        raise ResolutionError(ResolutionError.UNSUPPORTED_MEDIA)
