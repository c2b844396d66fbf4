"""External storage collaborators: Cloudinary images and Supabase metadata."""

from .datastore import InsertedRecord, PhotoRecord, SupabasePhotoStore
from .image_sink import CloudinaryImageSink, UploadedImage

__all__ = [
    "CloudinaryImageSink",
    "InsertedRecord",
    "PhotoRecord",
    "SupabasePhotoStore",
    "UploadedImage",
]
