"""Cloudinary image sink over the REST upload API."""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
import structlog

from ..exceptions import ImageSinkError

logger = structlog.get_logger()

CLOUDINARY_API_BASE = "https://api.cloudinary.com/v1_1"
_DELETE_OK_RESULTS = ("ok", "not found")


@dataclass(frozen=True)
class UploadedImage:
    """Identifiers returned by a successful upload."""

    remote_id: str
    url: str
    byte_size: int


def sign_params(params: Dict[str, Any], api_secret: str) -> str:
    """Cloudinary request signature: sha1 over sorted ``k=v`` pairs + secret."""
    payload = "&".join(
        f"{key}={params[key]}"
        for key in sorted(params)
        if params[key] is not None and params[key] != ""
    )
    return hashlib.sha1(f"{payload}{api_secret}".encode("utf-8")).hexdigest()


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return f"HTTP {response.status_code}"


class CloudinaryImageSink:
    """Upload photos to, and delete them from, one Cloudinary cloud."""

    def __init__(
        self,
        cloud_name: str,
        *,
        upload_preset: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.cloud_name = cloud_name
        self.upload_preset = upload_preset
        self.api_key = api_key
        self.api_secret = api_secret
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None

    @property
    def base_url(self) -> str:
        return f"{CLOUDINARY_API_BASE}/{self.cloud_name}/image"

    @property
    def is_signed(self) -> bool:
        return bool(self.api_key and self.api_secret)

    def _signed(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if not (self.api_key and self.api_secret):
            raise ImageSinkError("Signing requires API key and secret")
        signed = dict(params)
        signed["timestamp"] = int(time.time())
        signed["signature"] = sign_params(signed, self.api_secret)
        signed["api_key"] = self.api_key
        return signed

    async def upload(self, file_path: Path, *, folder: str) -> UploadedImage:
        """Upload one staged file into ``folder``."""
        params: Dict[str, Any] = {"folder": folder}
        if self.upload_preset:
            params["upload_preset"] = self.upload_preset
        if self.is_signed:
            params = self._signed(params)
        elif not self.upload_preset:
            raise ImageSinkError("No upload preset or API credentials configured")

        try:
            with open(file_path, "rb") as fh:
                response = await self._client.post(
                    f"{self.base_url}/upload",
                    data=params,
                    files={"file": (file_path.name, fh, "image/jpeg")},
                )
        except httpx.HTTPError as e:
            raise ImageSinkError(str(e) or type(e).__name__) from e

        if not response.is_success:
            raise ImageSinkError(_error_message(response), response.status_code)

        payload = response.json()
        remote_id = payload.get("public_id")
        url = payload.get("secure_url") or payload.get("url")
        if not remote_id or not url:
            raise ImageSinkError("Upload response missing public_id/secure_url")

        logger.info(
            "Image uploaded to Cloudinary",
            remote_id=remote_id,
            folder=folder,
            byte_size=payload.get("bytes"),
        )
        return UploadedImage(
            remote_id=str(remote_id),
            url=str(url),
            byte_size=int(payload.get("bytes") or file_path.stat().st_size),
        )

    async def delete(self, remote_id: str) -> str:
        """Delete an uploaded image; unknown ids are not an error."""
        if not self.is_signed:
            raise ImageSinkError("Deleting images requires API key and secret")

        try:
            response = await self._client.post(
                f"{self.base_url}/destroy",
                data=self._signed({"public_id": remote_id}),
            )
        except httpx.HTTPError as e:
            raise ImageSinkError(str(e) or type(e).__name__) from e

        if not response.is_success:
            raise ImageSinkError(_error_message(response), response.status_code)

        result = str(response.json().get("result") or "")
        if result not in _DELETE_OK_RESULTS:
            raise ImageSinkError(f"Unexpected destroy result: {result or 'empty'}")
        logger.info("Image deleted from Cloudinary", remote_id=remote_id, result=result)
        return result

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
