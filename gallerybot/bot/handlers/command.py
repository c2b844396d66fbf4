"""Command handlers for bot operations."""

from typing import Any, Awaitable, Callable, Dict

import structlog

from ...config.settings import Settings
from ...exceptions import ResolutionError
from ..features.album_resolver import AlbumResolver
from ..features.upload_orchestrator import (
    UploadContext,
    UploadOrchestrator,
    compose_summary,
)
from ..utils.envelope import NormalizedMessage
from ..utils.whatsapp_send import send_text_resilient

logger = structlog.get_logger()

Handler = Callable[[NormalizedMessage, Dict[str, Any]], Awaitable[None]]

GENERIC_ERROR_TEXT = "❌ Terjadi error. Coba lagi nanti."

RESOLUTION_ERROR_TEXTS = {
    ResolutionError.MISSING_QUOTED_MESSAGE: (
        '❌ Balas pesan foto dengan "!upload"!\n\n'
        "Contoh:\n1. Kirim foto\n2. Balas foto dengan: !upload"
    ),
    ResolutionError.VIDEO_NOT_SUPPORTED: (
        "❌ Video belum didukung.\n\n"
        "Kirim *foto*, terus balas dengan: !upload"
    ),
    ResolutionError.UNSUPPORTED_MEDIA: (
        "❌ Pesan yang dibales bukan foto!\n\n"
        "Kirim foto dulu, terus balas dengan: !upload"
    ),
    ResolutionError.ALBUM_TARGETS_NOT_FOUND: (
        "❌ Foto-foto di album ini tidak ditemukan "
        "(mungkin dikirim sebelum bot aktif).\n\n"
        "Balas salah satu foto di album dengan !upload, "
        "atau kirim ulang fotonya."
    ),
}


async def _reply(
    message: NormalizedMessage, bot_data: Dict[str, Any], text: str
) -> bool:
    return await send_text_resilient(
        bot_data["transport"],
        conversation_id=message.conversation_id,
        text=text,
    )


async def help_command(message: NormalizedMessage, bot_data: Dict[str, Any]) -> None:
    """Handle !help and !bantuan."""
    help_text = (
        "📸 *Perintah Bot Kelas 11 DPIB 2* 📸\n\n"
        "🔹 *!upload* - Upload foto ke galeri website\n"
        '   Balas pesan foto (atau album) dengan "!upload"\n\n'
        "🔹 *!bantuan* atau *!help* - Tampilkan menu ini\n\n"
        "🔹 *!info* - Info tentang bot ini\n\n"
        "Contoh:\n"
        "1. Kirim foto\n"
        '2. Balas dengan pesan "!upload"\n'
        "3. Foto akan otomatis terupload ke galeri kelas\n\n"
        "📌 Pastikan kualitas foto bagus!"
    )
    await _reply(message, bot_data, help_text)


async def info_command(message: NormalizedMessage, bot_data: Dict[str, Any]) -> None:
    """Handle !info."""
    settings: Settings = bot_data["settings"]
    info_text = (
        "ℹ️ *Tentang Bot Ini*\n\n"
        "Bot WhatsApp Kelas 11 DPIB 2 SMKN 1 Kota Kediri\n"
        "Untuk upload dan dokumentasi kenangan kelas secara otomatis.\n\n"
        f"Website: {settings.site_url}\n\n"
        "Dikembangkan dengan cinta untuk kelas tercinta 💜"
    )
    await _reply(message, bot_data, info_text)


async def upload_command(message: NormalizedMessage, bot_data: Dict[str, Any]) -> None:
    """Handle !upload: resolve the replied photo(s) and run the pipeline."""
    settings: Settings = bot_data["settings"]
    resolver: AlbumResolver = bot_data["resolver"]
    orchestrator: UploadOrchestrator = bot_data["orchestrator"]

    try:
        resolution = resolver.resolve(message)
    except ResolutionError as e:
        logger.info(
            "Upload command rejected",
            conversation_id=message.conversation_id,
            code=e.code,
        )
        reply_text = RESOLUTION_ERROR_TEXTS.get(e.code, GENERIC_ERROR_TEXT)
        await _reply(message, bot_data, reply_text)
        return

    count = len(resolution.targets)
    progress_text = (
        f"⏳ Sedang upload {count} foto..."
        if count > 1
        else "⏳ Sedang upload foto..."
    )
    await _reply(message, bot_data, progress_text)

    results = await orchestrator.run_batch(
        resolution.targets,
        UploadContext(
            conversation_id=message.conversation_id,
            sender_name=message.sender_name,
        ),
    )
    await _reply(message, bot_data, compose_summary(results, settings.gallery_url))


async def unknown_command(message: NormalizedMessage, bot_data: Dict[str, Any]) -> None:
    """Reply to unrecognized ``!`` commands."""
    await _reply(
        message,
        bot_data,
        f'❓ Command "{message.command}" tidak diketahui.\n\n'
        "Ketik: *!help* untuk melihat daftar command",
    )


COMMANDS: Dict[str, Handler] = {
    "!upload": upload_command,
    "!help": help_command,
    "!bantuan": help_command,
    "!info": info_command,
}


async def handle_command(message: NormalizedMessage, bot_data: Dict[str, Any]) -> None:
    """Dispatch a ``!`` command; never raises."""
    command = message.command
    if command is None:
        return

    handler = COMMANDS.get(command, unknown_command)
    logger.info(
        "Handling command",
        command=command,
        conversation_id=message.conversation_id,
        participant_id=message.participant_id,
    )
    try:
        await handler(message, bot_data)
    except Exception as e:
        logger.exception(
            "Command handling failed",
            command=command,
            conversation_id=message.conversation_id,
            error=str(e),
        )
        await _reply(message, bot_data, GENERIC_ERROR_TEXT)
