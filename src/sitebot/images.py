"""Ephemeral image storage for chat attachments.

Images arrive as raw bytes (multipart upload) or as a ``data:`` URI from the
chat request. The real format is sniffed with Pillow, never trusted from the
client. Allowed: JPEG, PNG, GIF, WebP up to 5 MB. Anything larger than
1920 px on either side is downscaled. Records expire after 24 h and
sweep_expired() removes both file and row.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re
import secrets
import urllib.parse
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from sitebot.db.models import StoredImage
from sitebot.db.repository import Repository
from sitebot.errors import NotFoundError, ValidationError

_DATA_URI_RE = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)

_FORMAT_MIME: dict[str, str] = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
    "WEBP": "image/webp",
}
_MIME_EXT: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}
ALLOWED_MIME_TYPES = frozenset(_MIME_EXT)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def decode_data_uri(data_uri: str) -> tuple[str, bytes]:
    """Split a base64 ``data:`` URI into (declared mime, raw bytes).

    Raises:
        ValidationError: Not a base64 data URI, or undecodable payload.
    """
    match = _DATA_URI_RE.match(data_uri.strip())
    if not match:
        raise ValidationError("Invalid image data: expected a base64 data URI.")
    try:
        raw = base64.b64decode(match.group(2), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Invalid image data: payload is not valid base64.") from exc
    return match.group(1).lower(), raw


def sniff_mime(raw: bytes) -> str:
    """Return the MIME type of *raw* as detected by Pillow.

    Raises:
        ValidationError: Not an image, or not one of the allowed formats.
    """
    try:
        with Image.open(io.BytesIO(raw)) as img:
            fmt = img.format or ""
    except (UnidentifiedImageError, OSError) as exc:
        raise ValidationError("File is not a readable image.") from exc
    mime = _FORMAT_MIME.get(fmt)
    if mime is None:
        raise ValidationError(
            f"Unsupported image type '{fmt or 'unknown'}'. Allowed: JPEG, PNG, GIF, WebP."
        )
    return mime


class ImageStore:
    """Store uploaded images on disk with an expiring database record.

    Args:
        repo: Repository used for image records.
        directory: Where image files are written.
        base_url: Public URL prefix the files are served under.
        max_bytes: Size ceiling for the decoded image.
        max_dimension: Longest allowed side in pixels.
        ttl_hours: Lifetime before sweep_expired() removes the image.
        clock: Returns the current UTC time (naive), injectable for tests.
    """

    def __init__(
        self,
        repo: Repository,
        directory: Path | str,
        base_url: str = "/images",
        *,
        max_bytes: int = 5 * 1024 * 1024,
        max_dimension: int = 1920,
        ttl_hours: int = 24,
        clock: Callable[[], datetime] = _utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self.repo = repo
        self.directory = Path(directory)
        self.base_url = base_url.rstrip("/")
        self.max_bytes = max_bytes
        self.max_dimension = max_dimension
        self.ttl = timedelta(hours=ttl_hours)
        self._clock = clock
        self._log = logger or logging.getLogger(__name__)

    def store(self, data: bytes | str, owner_id: int) -> StoredImage:
        """Validate, resize and persist *data*.

        Args:
            data: Raw image bytes or a base64 ``data:`` URI.
            owner_id: Identity of the uploading user.

        Raises:
            ValidationError: Bad encoding, disallowed type, or over the size cap.
        """
        if isinstance(data, str):
            declared, raw = decode_data_uri(data)
            if declared not in ALLOWED_MIME_TYPES:
                raise ValidationError(
                    f"Unsupported image type '{declared}'. Allowed: JPEG, PNG, GIF, WebP."
                )
        else:
            raw = data

        if not raw:
            raise ValidationError("No image data received.")
        if len(raw) > self.max_bytes:
            raise ValidationError(
                f"Image too large: {len(raw) / (1024 * 1024):.1f} MB "
                f"(max {self.max_bytes // (1024 * 1024)} MB)."
            )
        mime = sniff_mime(raw)

        now = self._clock()
        filename = (
            f"{owner_id}_{now:%Y%m%d_%H%M%S}_{secrets.token_hex(4)}.{_MIME_EXT[mime]}"
        )
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / filename
        path.write_bytes(self._resized(raw))

        url = f"{self.base_url}/{filename}"
        expires_at = now + self.ttl
        image_id = self.repo.add_image(owner_id, str(path), url, mime, expires_at)
        return StoredImage(
            id=image_id,
            owner_id=owner_id,
            path=str(path),
            url=url,
            mime_type=mime,
            expires_at=expires_at.strftime("%Y-%m-%d %H:%M:%S"),
        )

    def path_for_url(self, url: str) -> Path | None:
        """Resolve a previously issued image URL to its file, or None."""
        record = self.repo.get_image_by_url(url)
        if record is not None:
            return Path(record.path)

        # Absolute URLs are matched by file name inside the storage directory.
        name = Path(urllib.parse.urlparse(url).path).name
        if not name or name in (".", ".."):
            return None
        candidate = self.directory / name
        return candidate if candidate.is_file() else None

    def to_inline_data(self, path: Path | str) -> str:
        """Return the file at *path* as a ``data:<mime>;base64,...`` URI.

        Raises:
            NotFoundError: The file does not exist.
        """
        file_path = Path(path)
        if not file_path.is_file():
            raise NotFoundError(f"Image not found: {file_path.name}")
        raw = file_path.read_bytes()
        mime = sniff_mime(raw)
        return f"data:{mime};base64,{base64.b64encode(raw).decode('ascii')}"

    def sweep_expired(self, now: datetime | None = None) -> int:
        """Delete every expired image file and record. Returns the count."""
        expired = self.repo.list_expired_images(now or self._clock())
        for image in expired:
            Path(image.path).unlink(missing_ok=True)
            self.repo.delete_image(image.id)
        if expired:
            self._log.info(
                "swept %d expired images", len(expired), extra={"count": len(expired)}
            )
        return len(expired)

    # ------------------------------------------------------------------

    def _resized(self, raw: bytes) -> bytes:
        with Image.open(io.BytesIO(raw)) as img:
            if max(img.size) <= self.max_dimension:
                return raw
            fmt = img.format
            img.thumbnail(
                (self.max_dimension, self.max_dimension), Image.Resampling.LANCZOS
            )
            out = io.BytesIO()
            img.save(out, format=fmt)
            return out.getvalue()
