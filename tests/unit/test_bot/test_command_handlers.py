"""Tests for ! command handlers."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from gallerybot.bot.features.album_resolver import AlbumResolver
from gallerybot.bot.features.image_transcoder import ImageTranscoder
from gallerybot.bot.features.upload_orchestrator import UploadOrchestrator
from gallerybot.bot.handlers.command import (
    GENERIC_ERROR_TEXT,
    RESOLUTION_ERROR_TEXTS,
    handle_command,
)
from gallerybot.bot.utils.envelope import normalize_envelope
from gallerybot.bot.utils.recent_messages import RecentMessageCache
from gallerybot.exceptions import ResolutionError
from gallerybot.storage.datastore import InsertedRecord
from gallerybot.storage.image_sink import UploadedImage

GROUP = "120363000000000001@g.us"
ALICE = "6281111111111@s.whatsapp.net"
SITE = "https://sebelasdpib2smeksa.netlify.app"
GALLERY = f"{SITE}/#galeri"


def _command(text, quoted_body=None):
    context = {}
    if quoted_body is not None:
        context = {
            "stanzaId": "IMG-1",
            "participant": ALICE,
            "quotedMessage": quoted_body,
        }
    return normalize_envelope(
        {
            "key": {"remoteJid": GROUP, "id": "CMD-1", "participant": ALICE},
            "message": {"extendedTextMessage": {"text": text, "contextInfo": context}},
            "messageTimestamp": 1700000000,
            "pushName": "Alice",
        }
    )


def _bot_data(tmp_path, *, orchestrator=None):
    cache = RecentMessageCache(max_entries=50, ttl_seconds=3600)
    image_sink = SimpleNamespace(
        upload=AsyncMock(
            return_value=UploadedImage(
                "kelas-11-dpib2/abc", "https://res.cloudinary.com/x/abc.jpg", 1234
            )
        ),
        delete=AsyncMock(),
    )
    datastore = SimpleNamespace(insert=AsyncMock(return_value=InsertedRecord("7", None)))
    return {
        "transport": SimpleNamespace(send_text=AsyncMock()),
        "settings": SimpleNamespace(site_url=SITE, gallery_url=GALLERY),
        "cache": cache,
        "resolver": AlbumResolver(cache),
        "orchestrator": orchestrator
        or UploadOrchestrator(
            media_source=SimpleNamespace(
                resolve_media_bytes=AsyncMock(return_value=b"\x00" * 10)
            ),
            transcoder=ImageTranscoder(),
            image_sink=image_sink,
            datastore=datastore,
            folder="kelas-11-dpib2",
            temp_directory=tmp_path,
        ),
        "image_sink": image_sink,
        "datastore": datastore,
    }


def _sent_texts(bot_data):
    return [call.args[1] for call in bot_data["transport"].send_text.await_args_list]


@pytest.mark.asyncio
async def test_upload_single_photo_replies_with_gallery_link(tmp_path):
    """Replying !upload to an unseen photo uploads it and links the gallery."""
    bot_data = _bot_data(tmp_path)

    await handle_command(
        _command("!upload", {"imageMessage": {"mimetype": "image/jpeg"}}), bot_data
    )

    texts = _sent_texts(bot_data)
    assert texts[0] == "⏳ Sedang upload foto..."
    assert texts[-1].startswith("✅ *Foto berhasil diupload!*")
    assert GALLERY in texts[-1]
    bot_data["image_sink"].upload.assert_awaited_once()
    record = bot_data["datastore"].insert.await_args.args[0]
    assert record.title == "Foto dari Alice"
    assert record.image_url == "https://res.cloudinary.com/x/abc.jpg"


@pytest.mark.asyncio
async def test_upload_without_reply_does_not_orchestrate(tmp_path):
    """A bare !upload gets usage help and never reaches the pipeline."""
    orchestrator = SimpleNamespace(run_batch=AsyncMock())
    bot_data = _bot_data(tmp_path, orchestrator=orchestrator)

    await handle_command(_command("!upload"), bot_data)

    assert _sent_texts(bot_data) == [
        RESOLUTION_ERROR_TEXTS[ResolutionError.MISSING_QUOTED_MESSAGE]
    ]
    orchestrator.run_batch.assert_not_awaited()


@pytest.mark.asyncio
async def test_upload_reply_to_video_is_rejected(tmp_path):
    """Videos are refused with a dedicated message."""
    bot_data = _bot_data(tmp_path)

    await handle_command(_command("!upload", {"videoMessage": {}}), bot_data)

    assert _sent_texts(bot_data) == [
        RESOLUTION_ERROR_TEXTS[ResolutionError.VIDEO_NOT_SUPPORTED]
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("command_text", ["!help", "!bantuan", "!HELP"])
async def test_help_aliases_send_command_list(tmp_path, command_text):
    """Both help aliases answer with the command list."""
    bot_data = _bot_data(tmp_path)

    await handle_command(_command(command_text), bot_data)

    texts = _sent_texts(bot_data)
    assert len(texts) == 1
    assert "*!upload*" in texts[0]


@pytest.mark.asyncio
async def test_info_mentions_website(tmp_path):
    """!info points at the class website."""
    bot_data = _bot_data(tmp_path)

    await handle_command(_command("!info"), bot_data)

    assert SITE in _sent_texts(bot_data)[0]


@pytest.mark.asyncio
async def test_unknown_command_gets_hint(tmp_path):
    """Unrecognized commands point at !help."""
    bot_data = _bot_data(tmp_path)

    await handle_command(_command("!hapus semua"), bot_data)

    text = _sent_texts(bot_data)[0]
    assert '"!hapus"' in text
    assert "!help" in text


@pytest.mark.asyncio
async def test_unexpected_error_sends_generic_reply(tmp_path):
    """Handler crashes are logged and answered with a generic error."""
    orchestrator = SimpleNamespace(run_batch=AsyncMock(side_effect=RuntimeError("x")))
    bot_data = _bot_data(tmp_path, orchestrator=orchestrator)

    await handle_command(
        _command("!upload", {"imageMessage": {"mimetype": "image/jpeg"}}), bot_data
    )

    assert _sent_texts(bot_data)[-1] == GENERIC_ERROR_TEXT
