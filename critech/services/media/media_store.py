"""
Critech Media Store Adapter for the Cloudinary video API.

Responsibilities:
  - signed credentials for client-direct uploads
  - server-side forwarding of direct uploads
  - authenticity check for inbound webhook notifications
  - delivery-URL transforms (audio-only rendition, poster frame)

Signing scheme: sort the parameters by key, join ``key=value`` pairs with
``&``, append the shared API secret and take the SHA-256 hex digest. The
secret itself never leaves the server.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import re
import time
from pathlib import PurePosixPath
from typing import Any, Dict, Mapping, Optional

import httpx

from critech.core.config import Settings, get_settings
from critech.core.errors import ProviderError, UploadRejected

logger = logging.getLogger(__name__)

_UPLOAD_SEGMENT = "/upload/"
_EXTENSION_RE = re.compile(r"\.[A-Za-z0-9]+$")


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"))
    return str(value)


class MediaStoreAdapter:
    """Stateless wrapper around the transcoding/storage provider."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings or get_settings()
        self._transport = transport

    # ── Signing ──────────────────────────────────────────────────────────

    def sign(self, params: Mapping[str, Any]) -> str:
        """Signature over ``params``; empty values are not signed."""
        pairs = [
            f"{key}={_format_value(params[key])}"
            for key in sorted(params)
            if params[key] is not None and params[key] != ""
        ]
        to_sign = "&".join(pairs) + self._settings.cloudinary_api_secret
        return hashlib.sha256(to_sign.encode("utf-8")).hexdigest()

    def get_upload_credentials(self, timestamp: Optional[int] = None) -> Dict[str, Any]:
        """Credentials a client needs to upload straight to the provider."""
        s = self._settings
        timestamp = timestamp if timestamp is not None else int(time.time())
        params = {
            "timestamp": timestamp,
            "upload_preset": s.cloudinary_upload_preset,
            "folder": s.cloudinary_folder,
        }
        return {
            "timestamp": timestamp,
            "signature": self.sign(params),
            "destination": {
                "cloud_name": s.cloudinary_cloud_name,
                "api_key": s.cloudinary_api_key,
                "folder": s.cloudinary_folder,
                "upload_url": self.upload_url,
            },
            "upload_preset": s.cloudinary_upload_preset,
        }

    def verify_callback_signature(
        self,
        received_signature: Optional[str],
        timestamp: Optional[str],
        payload: Optional[Mapping[str, Any]],
    ) -> bool:
        """Recompute the signature over ``{timestamp, **payload}`` and compare."""
        if not received_signature or not timestamp or not payload:
            return False
        expected = self.sign({"timestamp": timestamp, **payload})
        return hmac.compare_digest(expected, received_signature)

    # ── Upload ───────────────────────────────────────────────────────────

    @property
    def upload_url(self) -> str:
        s = self._settings
        return f"{s.cloudinary_api_base.rstrip('/')}/{s.cloudinary_cloud_name}/video/upload"

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            self._settings.provider_timeout_seconds,
            connect=self._settings.provider_connect_timeout_seconds,
        )

    async def upload(self, file_bytes: bytes, filename: str) -> Dict[str, Any]:
        """Forward raw bytes to the provider and return its provisioning response.

        Raises:
            UploadRejected: the provider refused the file (4xx).
            ProviderError: network failure, timeout or provider-side error.
        """
        s = self._settings
        params: Dict[str, Any] = {
            "timestamp": int(time.time()),
            "folder": s.cloudinary_folder,
            "eager": s.cloudinary_eager,
            "eager_async": True,
            "notification_url": s.cloudinary_notification_url,
        }
        data = {k: _format_value(v) for k, v in params.items() if v is not None and v != ""}
        data["api_key"] = s.cloudinary_api_key
        data["signature"] = self.sign(params)

        try:
            async with httpx.AsyncClient(timeout=self._timeout(), transport=self._transport) as client:
                response = await client.post(
                    self.upload_url,
                    data=data,
                    files={"file": (filename, file_bytes)},
                )
        except httpx.TimeoutException as e:
            raise ProviderError("Media provider timed out", details={"reason": str(e)})
        except httpx.HTTPError as e:
            raise ProviderError("Media provider unreachable", details={"reason": str(e)})

        if 400 <= response.status_code < 500:
            logger.warning(f"Provider rejected upload {filename!r}: {response.status_code} {response.text[:200]}")
            raise UploadRejected(
                "Video was rejected by the media provider",
                details={"providerStatus": response.status_code},
            )
        if response.status_code >= 500:
            raise ProviderError("Media provider error", details={"providerStatus": response.status_code})

        try:
            body = response.json()
        except ValueError:
            raise ProviderError("Media provider returned an unreadable response")
        if not body.get("asset_id") or not body.get("public_id"):
            raise ProviderError("Media provider response is missing asset identifiers")

        logger.info(f"Uploaded {filename!r} as asset {body['asset_id']} ({body.get('bytes')} bytes)")
        return body

    # ── Delivery URL transforms ──────────────────────────────────────────

    def audio_url_for(self, video_url: str) -> str:
        """Audio-only (mp3) rendition of a delivered video."""
        if not video_url or _UPLOAD_SEGMENT not in video_url:
            raise ProviderError(
                "Video URL is not a provider delivery URL",
                details={"videoUrl": video_url},
                retryable=False,
            )
        transformed = video_url.replace(_UPLOAD_SEGMENT, f"{_UPLOAD_SEGMENT}f_mp3/", 1)
        return _EXTENSION_RE.sub(".mp3", transformed)

    def thumbnail_url_for(self, video_url: Optional[str]) -> Optional[str]:
        """Poster frame (jpg) of a delivered video, if it is a provider URL."""
        if not video_url or _UPLOAD_SEGMENT not in video_url:
            return None
        if not _EXTENSION_RE.search(video_url):
            return f"{video_url}.jpg"
        return _EXTENSION_RE.sub(".jpg", video_url)

    def is_allowed_filename(self, filename: Optional[str]) -> bool:
        if not filename:
            return False
        suffix = PurePosixPath(filename).suffix.lower().lstrip(".")
        return suffix in {fmt.lower() for fmt in self._settings.allowed_video_formats}


media_store = MediaStoreAdapter()
