"""Main entry point for gallerybot."""

import argparse
import asyncio
import logging
import re
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import uvicorn

from gallerybot import __version__
from gallerybot.api import create_app
from gallerybot.bot.core import GalleryBot
from gallerybot.bot.features.album_resolver import AlbumResolver
from gallerybot.bot.features.image_transcoder import ImageTranscoder
from gallerybot.bot.features.upload_orchestrator import UploadOrchestrator
from gallerybot.bot.supervisor import ConnectionSupervisor
from gallerybot.bot.utils.credential_store import CredentialStore
from gallerybot.bot.utils.recent_messages import RecentMessageCache
from gallerybot.config import Settings, load_config
from gallerybot.exceptions import ConfigurationError
from gallerybot.gateway import GatewayClient
from gallerybot.storage import CloudinaryImageSink, SupabasePhotoStore

_JWT_RE = re.compile(
    r"\beyJ[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\b"
)
_BEARER_RE = re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+")
_SECRET_PARAM_RE = re.compile(r"((?:api_secret|signature|apikey)=)[^&\s\"']+")


def redact_sensitive_text(text: str) -> str:
    """Redact sensitive tokens from log text."""
    redacted = _JWT_RE.sub("<redacted_jwt>", text)
    redacted = _BEARER_RE.sub(r"\1<redacted>", redacted)
    redacted = _SECRET_PARAM_RE.sub(r"\1<redacted>", redacted)
    return redacted


class SensitiveLogFilter(logging.Filter):
    """Filter log records to avoid leaking secrets."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_sensitive_text(message)
        if redacted != message:
            # Keep a pre-formatted safe message to avoid re-inserting args.
            record.msg = redacted
            record.args = ()
        return True


def setup_logging(debug: bool = False, log_level: Optional[str] = None) -> None:
    """Configure structured logging."""
    if debug:
        level = logging.DEBUG
    else:
        level = getattr(logging, (log_level or "INFO").upper(), logging.INFO)

    # Configure standard logging
    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stdout,
    )
    # Always apply secret redaction filter to root handlers.
    sensitive_filter = SensitiveLogFilter()
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.addFilter(sensitive_filter)

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            (
                structlog.processors.JSONRenderer()
                if not debug
                else structlog.dev.ConsoleRenderer()
            ),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Gallerybot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version", action="version", version=f"Gallerybot {__version__}"
    )

    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    parser.add_argument("--config-file", type=Path, help="Path to configuration file")

    return parser.parse_args()


def create_application(config: Settings) -> Dict[str, Any]:
    """Create and configure the application components."""
    logger = structlog.get_logger()
    logger.info("Creating application components")

    credential_store = CredentialStore(config.credentials_file)
    transport = GatewayClient(
        config.gateway_url,
        session=config.gateway_session,
        api_token=config.gateway_api_token_str,
        credential_store=credential_store,
    )
    supervisor = ConnectionSupervisor(
        connect=transport.connect,
        save_credentials=transport.save_credentials,
        reconnect_delay_seconds=config.reconnect_delay_seconds,
        on_logged_out=credential_store.clear,
    )

    cache = RecentMessageCache(
        max_entries=config.recent_cache_max_entries,
        ttl_seconds=config.recent_cache_ttl_seconds,
    )
    resolver = AlbumResolver(
        cache, window_seconds=config.album_fallback_window_seconds
    )

    image_sink = CloudinaryImageSink(
        config.cloudinary_cloud_name,
        upload_preset=config.cloudinary_upload_preset,
        api_key=config.cloudinary_api_key,
        api_secret=config.cloudinary_api_secret_str,
    )
    if not image_sink.is_signed:
        logger.warning(
            "Cloudinary API credentials missing, rollback deletes will fail"
        )
    datastore = SupabasePhotoStore.connect(
        config.supabase_url, config.supabase_key_str, table=config.supabase_table
    )
    orchestrator = UploadOrchestrator(
        media_source=transport,
        transcoder=ImageTranscoder(
            max_box=config.transcode_box, quality=config.transcode_quality
        ),
        image_sink=image_sink,
        datastore=datastore,
        folder=config.cloudinary_folder,
        temp_directory=config.temp_directory,
        download_timeout_seconds=config.download_timeout_seconds,
        upload_timeout_seconds=config.upload_timeout_seconds,
    )

    dependencies = {
        "transport": transport,
        "supervisor": supervisor,
        "cache": cache,
        "resolver": resolver,
        "orchestrator": orchestrator,
    }
    bot = GalleryBot(config, dependencies)
    api = create_app(bot, webhook_secret=config.webhook_secret_str)

    logger.info("Application components created successfully")

    return {
        "bot": bot,
        "api": api,
        "transport": transport,
        "image_sink": image_sink,
        "config": config,
    }


async def run_application(app: Dict[str, Any]) -> None:
    """Run the application with graceful shutdown handling."""
    logger = structlog.get_logger()
    bot: GalleryBot = app["bot"]
    config: Settings = app["config"]

    server = uvicorn.Server(
        uvicorn.Config(
            app=app["api"],
            host=config.http_host,
            port=config.http_port,
            log_level="debug" if config.debug else "info",
            access_log=config.debug,
        )
    )

    # Set up signal handlers for graceful shutdown
    shutdown_event = asyncio.Event()

    def signal_handler(signum: int, frame: Any) -> None:
        logger.info("Shutdown signal received", signal=signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        logger.info(
            "Starting gallerybot",
            http_host=config.http_host,
            http_port=config.http_port,
        )

        server_task = asyncio.create_task(server.serve())
        await bot.start()
        shutdown_task = asyncio.create_task(shutdown_event.wait())

        # Wait for either server exit or shutdown signal
        done, pending = await asyncio.wait(
            [server_task, shutdown_task], return_when=asyncio.FIRST_COMPLETED
        )

        if server_task in pending:
            server.should_exit = True
            await server_task
        for task in pending:
            if task is server_task:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        # Re-raise server exception so the process exits with non-zero code
        if server_task in done and not server_task.cancelled():
            exc = server_task.exception()
            if exc is not None:
                raise exc

    except Exception as e:
        logger.error("Application error", error=str(e))
        raise
    finally:
        logger.info("Shutting down application")

        try:
            await bot.stop()
            await app["transport"].close()
            await app["image_sink"].close()
        except Exception as e:
            logger.error("Error during shutdown", error=str(e))

        logger.info("Application shutdown complete")


async def main() -> None:
    """Main application entry point."""
    args = parse_args()
    setup_logging(debug=args.debug)

    logger = structlog.get_logger()
    logger.info("Starting gallerybot", version=__version__)

    try:
        config = load_config(config_file=args.config_file)
        setup_logging(debug=args.debug or config.debug, log_level=config.log_level)

        logger.info(
            "Configuration loaded",
            gateway_url=config.gateway_url,
            cloudinary_folder=config.cloudinary_folder,
            supabase_table=config.supabase_table,
            debug=config.debug,
        )

        app = create_application(config)
        await run_application(app)

    except ConfigurationError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)
    except Exception as e:
        logger.exception("Unexpected error", error=str(e))
        sys.exit(1)


def run() -> None:
    """Synchronous entry point for setuptools."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        sys.exit(0)


if __name__ == "__main__":
    run()
