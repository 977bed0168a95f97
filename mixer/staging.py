"""
Media staging — turn a reference image into a transfer payload + a preview.

The two conversions are unrelated best-effort steps: a broken thumbnail never
blocks the payload and vice versa. Failures are logged, never retried.
"""

from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from PIL import Image

logger = logging.getLogger(__name__)

IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".webp"}
PREVIEW_SIZE = (256, 256)

_EXT_MIME = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}
_PIL_MIME = {"JPEG": "image/jpeg", "PNG": "image/png", "WEBP": "image/webp", "GIF": "image/gif"}


@dataclass(frozen=True)
class EncodedPayload:
    mime_type: str
    data: bytes

    @property
    def b64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass(frozen=True)
class StagedImage:
    name: str
    payload: Optional[EncodedPayload]   # None when the source could not be read
    preview: Optional[str]              # data: URL of a PNG thumbnail, None = no preview available


def encode_data_url(payload: EncodedPayload) -> str:
    return f"data:{payload.mime_type};base64,{payload.b64}"


def guess_mime(name: str, data: bytes) -> str:
    """Extension first, then Pillow's sniffed format, then octet-stream."""
    mime = _EXT_MIME.get(Path(name).suffix.lower())
    if mime:
        return mime
    try:
        with Image.open(io.BytesIO(data)) as img:
            return _PIL_MIME.get(img.format or "", "application/octet-stream")
    except Exception:
        return "application/octet-stream"


def _read_source(source: Union[str, Path, bytes]) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    return Path(source).read_bytes()


def build_payload(
    source: Union[str, Path, bytes],
    name: str = "",
    mime_type: Optional[str] = None,
) -> EncodedPayload:
    data = _read_source(source)
    if not data:
        raise ValueError(f"{name or 'image'} is empty")
    return EncodedPayload(mime_type=mime_type or guess_mime(name, data), data=data)


def build_preview(source: Union[str, Path, bytes]) -> str:
    """Downscale to a PNG thumbnail and return it as a data: URL."""
    data = _read_source(source)
    with Image.open(io.BytesIO(data)) as img:
        img = img.convert("RGBA")
        img.thumbnail(PREVIEW_SIZE)
        buf = io.BytesIO()
        img.save(buf, format="PNG")
    return encode_data_url(EncodedPayload("image/png", buf.getvalue()))


def stage_file(
    source: Union[str, Path, bytes],
    mime_type: Optional[str] = None,
    name: str = "",
) -> StagedImage:
    """
    Stage a raw image for the pipeline.

    Args:
        source:    Path to an image file, or raw bytes
        mime_type: Declared MIME type (skips detection when given)
        name:      Display name; defaults to the file name

    Returns:
        StagedImage — payload and preview are independently None on failure
    """
    if not name:
        name = "upload" if isinstance(source, (bytes, bytearray)) else Path(source).name

    payload: Optional[EncodedPayload] = None
    try:
        payload = build_payload(source, name=name, mime_type=mime_type)
    except Exception as e:
        logger.warning(f"Could not encode {name}: {e}")

    preview: Optional[str] = None
    try:
        preview = build_preview(source)
    except Exception as e:
        logger.warning(f"No preview available for {name}: {e}")

    return StagedImage(name=name, payload=payload, preview=preview)
