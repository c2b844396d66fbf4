"""Exception hierarchy for gallerybot."""

from typing import Optional


class GalleryBotError(Exception):
    """Base error for all gallerybot failures."""


class ConfigurationError(GalleryBotError):
    """Settings are missing or invalid."""


class TransportError(GalleryBotError):
    """The messaging gateway rejected or failed a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ImageSinkError(GalleryBotError):
    """Cloudinary upload or delete failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DatastoreError(GalleryBotError):
    """Supabase insert failed or returned no row."""


class ResolutionError(GalleryBotError):
    """An upload command could not be turned into upload targets."""

    MISSING_QUOTED_MESSAGE = "MISSING_QUOTED_MESSAGE"
    VIDEO_NOT_SUPPORTED = "VIDEO_NOT_SUPPORTED"
    UNSUPPORTED_MEDIA = "UNSUPPORTED_MEDIA"
    ALBUM_TARGETS_NOT_FOUND = "ALBUM_TARGETS_NOT_FOUND"

    def __init__(self, code: str, message: Optional[str] = None):
        super().__init__(message or code)
        self.code = code
