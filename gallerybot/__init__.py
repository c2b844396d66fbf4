"""Gallerybot.

A WhatsApp bot that lets classmates push photos into the class-memorial
gallery by replying ``!upload`` to a photo or to a whole album.

Features:
- Environment-based configuration with Pydantic validation
- Album correlation over a bounded cache of recent image messages
- Sequential upload pipeline with Cloudinary rollback on Supabase failures
- Connection supervision with reconnect backoff and credential persistence
- Health and readiness endpoints for process monitors
"""

__version__ = "0.1.0"
__license__ = "MIT"

# Development status indicator
__status__ = "Active Development"
