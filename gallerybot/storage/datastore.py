"""Supabase metadata store for uploaded photos."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from supabase import Client, create_client

from ..exceptions import DatastoreError

logger = structlog.get_logger()


@dataclass(frozen=True)
class PhotoRecord:
    """Row written for every uploaded photo."""

    image_url: str
    title: str
    caption: str
    file_size: int
    status: str = "public"
    uploaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_row(self) -> Dict[str, Any]:
        return {
            "image_url": self.image_url,
            "title": self.title,
            "caption": self.caption,
            "status": self.status,
            "file_size": self.file_size,
            "uploaded_at": self.uploaded_at.isoformat(),
        }


@dataclass(frozen=True)
class InsertedRecord:
    record_id: str
    created_at: Optional[str]


class SupabasePhotoStore:
    """Insert photo metadata rows into one Supabase table."""

    def __init__(self, client: Client, table: str = "photos") -> None:
        self.client = client
        self.table = table

    @classmethod
    def connect(cls, url: str, key: str, table: str = "photos") -> "SupabasePhotoStore":
        return cls(create_client(url, key), table=table)

    def _insert_sync(self, row: Dict[str, Any]) -> Any:
        return self.client.table(self.table).insert(row).execute()

    async def insert(self, record: PhotoRecord) -> InsertedRecord:
        """Insert one row; raises DatastoreError on any failure."""
        try:
            response = await asyncio.to_thread(self._insert_sync, record.to_row())
        except Exception as e:
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            raise DatastoreError(message) from e

        rows = getattr(response, "data", None) or []
        if not rows:
            raise DatastoreError("insert returned no row")

        row = rows[0]
        inserted = InsertedRecord(
            record_id=str(row.get("id")),
            created_at=row.get("created_at"),
        )
        logger.info(
            "Photo metadata inserted",
            table=self.table,
            record_id=inserted.record_id,
        )
        return inserted
