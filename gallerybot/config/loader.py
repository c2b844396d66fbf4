"""Settings loading with configuration error translation."""

from pathlib import Path
from typing import Optional

import structlog
from pydantic import ValidationError

from ..exceptions import ConfigurationError
from .settings import Settings

logger = structlog.get_logger()


def load_config(config_file: Optional[Path] = None) -> Settings:
    """Load settings from the environment, optionally from a given env file."""
    if config_file is not None and not config_file.exists():
        raise ConfigurationError(f"Config file does not exist: {config_file}")

    try:
        if config_file is not None:
            settings = Settings(_env_file=config_file)  # type: ignore[call-arg]
        else:
            settings = Settings()  # type: ignore[call-arg]
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    logger.debug(
        "Settings loaded",
        config_file=str(config_file) if config_file else None,
        gateway_url=settings.gateway_url,
        cloudinary_folder=settings.cloudinary_folder,
    )
    return settings
