"""
Normalize inbound photos before upload.

Decodes whatever WhatsApp delivered (JPEG, PNG, WEBP, HEIC previews...),
fits it inside a bounding box and re-encodes it as JPEG. Undecodable input
is passed through untouched so the upload can still be attempted.
"""

import io
from typing import Tuple

import structlog
from PIL import Image, ImageOps

logger = structlog.get_logger()


class ImageTranscoder:
    """Bounded JPEG re-encoder that never fails the caller."""

    def __init__(self, max_box: Tuple[int, int] = (1920, 1080), quality: int = 85):
        self.max_box = (int(max_box[0]), int(max_box[1]))
        self.quality = int(quality)

    def normalize(self, data: bytes) -> bytes:
        """Return JPEG bytes fitted inside ``max_box``, or ``data`` on failure."""
        if not data:
            return data

        try:
            with Image.open(io.BytesIO(data)) as image:
                image.load()
                source_size = image.size
                image = ImageOps.exif_transpose(image)
                if image.mode not in ("RGB", "L"):
                    image = image.convert("RGB")

                # thumbnail() keeps aspect ratio and never enlarges.
                image.thumbnail(self.max_box)

                out = io.BytesIO()
                image.save(out, format="JPEG", quality=self.quality, optimize=True)
                encoded = out.getvalue()
        except Exception as e:
            logger.warning(
                "Image transcode failed, uploading original bytes",
                detected_format=self._detect_format(data),
                size=len(data),
                error=str(e),
                error_type=type(e).__name__,
            )
            return data

        logger.debug(
            "Image transcoded",
            source_size=source_size,
            output_size=image.size,
            bytes_in=len(data),
            bytes_out=len(encoded),
        )
        return encoded

    @staticmethod
    def _detect_format(data: bytes) -> str:
        """Detect image format from magic bytes."""
        if data.startswith(b"\x89PNG"):
            return "png"
        elif data.startswith(b"\xff\xd8\xff"):
            return "jpeg"
        elif data.startswith(b"GIF87a") or data.startswith(b"GIF89a"):
            return "gif"
        elif data.startswith(b"RIFF") and b"WEBP" in data[:12]:
            return "webp"
        return "unknown"
