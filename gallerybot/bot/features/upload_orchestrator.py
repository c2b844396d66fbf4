"""Sequential download → transcode → upload → record pipeline.

Targets are processed one at a time so at most one photo is held in memory
and "Foto #k" in the summary always means the k-th photo in send order. A
failure only ends its own target; the rest of the batch still runs.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Protocol, Sequence

import structlog

from ...storage.datastore import InsertedRecord, PhotoRecord
from ...storage.image_sink import UploadedImage
from .album_resolver import UploadTarget
from .image_transcoder import ImageTranscoder

logger = structlog.get_logger()

OUTCOME_SUCCESS = "success"
OUTCOME_FAILURE = "failure"

REASON_DOWNLOAD_FAILED = "download failed"
_MAX_REPORTED_FAILURES = 3
_UNSAFE_FILENAME_RE = re.compile(r"[^a-z0-9]+")


class MediaSource(Protocol):
    async def resolve_media_bytes(self, envelope: Any) -> bytes: ...


class ImageSink(Protocol):
    async def upload(self, file_path: Path, *, folder: str) -> UploadedImage: ...

    async def delete(self, remote_id: str) -> str: ...


class PhotoStore(Protocol):
    async def insert(self, record: PhotoRecord) -> InsertedRecord: ...


@dataclass(frozen=True)
class UploadContext:
    """Who asked for the upload and where to answer."""

    conversation_id: str
    sender_name: str


@dataclass(frozen=True)
class UploadResult:
    """Outcome of one target's pipeline run."""

    target: UploadTarget
    outcome: str
    sequence_index: int
    sequence_total: int
    remote_image_url: Optional[str] = None
    remote_id: Optional[str] = None
    record_id: Optional[str] = None
    error_reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == OUTCOME_SUCCESS


def _error_text(error: BaseException) -> str:
    return str(error) or type(error).__name__


def build_title(sender_name: str, index: int, total: int) -> str:
    if total > 1:
        return f"Foto dari {sender_name} ({index}/{total})"
    return f"Foto dari {sender_name}"


def compose_summary(results: Sequence[UploadResult], gallery_url: str) -> str:
    """Build the user-facing reply for a finished batch."""
    total = len(results)
    successes = [result for result in results if result.succeeded]
    failures = [result for result in results if not result.succeeded]

    if total == 0:
        return "❌ Tidak ada foto yang bisa diupload."

    if not successes:
        reason = failures[0].error_reason or "unknown error"
        return f"❌ Gagal upload: {reason}"

    if not failures:
        if total == 1:
            return (
                "✅ *Foto berhasil diupload!*\n\n"
                "📸 Foto Anda sekarang ada di galeri kelas.\n\n"
                f"🔗 Lihat di: {gallery_url}"
            )
        return (
            f"✅ *{total} foto berhasil diupload!*\n\n"
            "📸 Foto-foto Anda sekarang ada di galeri kelas.\n\n"
            f"🔗 Lihat di: {gallery_url}"
        )

    lines = [
        f"⚠️ *{len(successes)} dari {total} foto berhasil diupload*, "
        f"{len(failures)} gagal.",
        "",
        "Gagal:",
    ]
    for result in failures[:_MAX_REPORTED_FAILURES]:
        lines.append(f"• Foto #{result.sequence_index}: {result.error_reason}")
    if len(failures) > _MAX_REPORTED_FAILURES:
        lines.append(f"• ...dan {len(failures) - _MAX_REPORTED_FAILURES} lainnya")
    lines.extend(
        [
            "",
            f"🔗 Lihat di: {gallery_url}",
            "",
            "Kirim ulang foto yang gagal lalu balas dengan !upload.",
        ]
    )
    return "\n".join(lines)


class UploadOrchestrator:
    """Drive resolved targets through the upload pipeline."""

    def __init__(
        self,
        *,
        media_source: MediaSource,
        transcoder: ImageTranscoder,
        image_sink: ImageSink,
        datastore: PhotoStore,
        folder: str,
        temp_directory: Path,
        download_timeout_seconds: float = 60.0,
        upload_timeout_seconds: float = 60.0,
        caption: str = "Dikirim lewat bot WhatsApp",
    ) -> None:
        self.media_source = media_source
        self.transcoder = transcoder
        self.image_sink = image_sink
        self.datastore = datastore
        self.folder = folder
        self.temp_directory = temp_directory
        self.download_timeout_seconds = download_timeout_seconds
        self.upload_timeout_seconds = upload_timeout_seconds
        self.caption = caption

    async def run_batch(
        self, targets: Sequence[UploadTarget], context: UploadContext
    ) -> List[UploadResult]:
        """Process targets in order; always returns one result per target."""
        total = len(targets)
        results: List[UploadResult] = []
        for index, target in enumerate(targets, start=1):
            result = await self._run_one(target, index, total, context)
            results.append(result)

        logger.info(
            "Upload batch finished",
            conversation_id=context.conversation_id,
            total=total,
            succeeded=sum(1 for result in results if result.succeeded),
        )
        return results

    async def _run_one(
        self,
        target: UploadTarget,
        index: int,
        total: int,
        context: UploadContext,
    ) -> UploadResult:
        temp_path: Optional[Path] = None
        try:
            data = await self._download(target)
            if not data:
                return self._failure(target, index, total, REASON_DOWNLOAD_FAILED)

            payload = await asyncio.to_thread(self.transcoder.normalize, data)
            temp_path = self._temp_path(context.sender_name, index)

            try:
                await asyncio.to_thread(self._stage, temp_path, payload)
                uploaded = await asyncio.wait_for(
                    self.image_sink.upload(temp_path, folder=self.folder),
                    timeout=self.upload_timeout_seconds,
                )
            except asyncio.TimeoutError:
                return self._failure(target, index, total, "upload gagal (timeout)")
            except Exception as e:
                return self._failure(
                    target, index, total, f"upload gagal ({_error_text(e)})"
                )

            record = PhotoRecord(
                image_url=uploaded.url,
                title=build_title(context.sender_name, index, total),
                caption=self.caption,
                file_size=uploaded.byte_size,
            )
            try:
                inserted = await self.datastore.insert(record)
            except Exception as e:
                await self._rollback(uploaded, target)
                return self._failure(
                    target, index, total, f"Supabase insert failed: {_error_text(e)}"
                )

            logger.info(
                "Photo uploaded",
                message_id=target.message_id,
                position=index,
                total=total,
                remote_id=uploaded.remote_id,
                record_id=inserted.record_id,
            )
            return UploadResult(
                target=target,
                outcome=OUTCOME_SUCCESS,
                sequence_index=index,
                sequence_total=total,
                remote_image_url=uploaded.url,
                remote_id=uploaded.remote_id,
                record_id=inserted.record_id,
            )
        finally:
            if temp_path is not None:
                self._cleanup(temp_path)

    async def _download(self, target: UploadTarget) -> bytes:
        try:
            data = await asyncio.wait_for(
                self.media_source.resolve_media_bytes(target.media_reference),
                timeout=self.download_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Media download timed out", message_id=target.message_id)
            return b""
        except Exception as e:
            logger.warning(
                "Media download failed",
                message_id=target.message_id,
                error=_error_text(e),
            )
            return b""
        return bytes(data or b"")

    async def _rollback(self, uploaded: UploadedImage, target: UploadTarget) -> None:
        try:
            await self.image_sink.delete(uploaded.remote_id)
        except Exception as e:
            logger.error(
                "Rollback of uploaded image failed",
                remote_id=uploaded.remote_id,
                message_id=target.message_id,
                error=_error_text(e),
            )
            return
        logger.info(
            "Rolled back uploaded image",
            remote_id=uploaded.remote_id,
            message_id=target.message_id,
        )

    def _temp_path(self, sender_name: str, index: int) -> Path:
        safe_sender = _UNSAFE_FILENAME_RE.sub("-", sender_name.lower()).strip("-")
        timestamp_ms = int(time.time() * 1000)
        filename = f"{timestamp_ms}-{safe_sender or 'anon'}-{index}.jpg"
        return self.temp_directory / filename

    @staticmethod
    def _stage(path: Path, payload: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)

    @staticmethod
    def _cleanup(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(
                "Failed to remove staged upload", path=str(path), error=str(e)
            )

    @staticmethod
    def _failure(
        target: UploadTarget, index: int, total: int, reason: str
    ) -> UploadResult:
        logger.warning(
            "Photo upload failed",
            message_id=target.message_id,
            position=index,
            total=total,
            reason=reason,
        )
        return UploadResult(
            target=target,
            outcome=OUTCOME_FAILURE,
            sequence_index=index,
            sequence_total=total,
            error_reason=reason,
        )
