"""Image transcoding and download utilities for the optimizer"""

import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Tuple

import requests
from PIL import Image, ImageOps

from errors import DownloadError, TranscodeError

logger = logging.getLogger("ImageProcessor")

PRIMARY_FORMAT = "webp"
SECONDARY_FORMAT = "avif"


@dataclass(frozen=True)
class TranscodePolicy:
    """Tunable encode policy.

    Inputs below size_threshold_kb are encoded once to WebP; larger inputs
    are also tried as AVIF and the smaller output wins.
    """
    max_width: int = 2048
    size_threshold_kb: int = 200
    webp_quality: int = 80
    avif_quality: int = 60
    avif_speed: int = 5


@dataclass(frozen=True)
class TranscodeResult:
    data: bytes
    format: str  # "webp" or "avif"
    size_px: Tuple[int, int]

    @property
    def bytes_len(self) -> int:
        return len(self.data)


def fetch_image_bytes(url: str, timeout: float = 30) -> bytes:
    """Download original image bytes, raising DownloadError on any failure"""
    try:
        response = requests.get(url, timeout=timeout)
    except requests.RequestException as e:
        logger.error(f"Failed to fetch image from {url}: {e}")
        raise DownloadError(f"Download failed: {e}") from e
    if not response.ok:
        raise DownloadError(f"Download failed: {response.status_code}", status_code=response.status_code)
    return response.content


def _normalize(im: Image.Image) -> Image.Image:
    """Undo EXIF rotation and convert to a mode both encoders accept"""
    im = ImageOps.exif_transpose(im)
    has_alpha = im.mode in ("RGBA", "LA") or (im.mode == "P" and "transparency" in im.info)
    if has_alpha:
        if im.mode != "RGBA":
            im = im.convert("RGBA")
    elif im.mode != "RGB":
        im = im.convert("RGB")
    return im


def _downscale(im: Image.Image, width_hint: Optional[int], max_width: int) -> Image.Image:
    known_width = width_hint or im.width
    if known_width <= max_width or im.width <= max_width:
        return im
    new_height = max(1, round(im.height * (max_width / im.width)))
    return im.resize((max_width, new_height), Image.Resampling.LANCZOS)


def _encode(im: Image.Image, format: str, **save_kwargs) -> bytes:
    buf = BytesIO()
    im.save(buf, format=format.upper(), **save_kwargs)
    return buf.getvalue()


def transcode(
    image_bytes: bytes,
    width_hint: Optional[int] = None,
    policy: Optional[TranscodePolicy] = None,
) -> TranscodeResult:
    """Re-encode an image under the size/format policy.

    Args:
        image_bytes: Original encoded image
        width_hint: Width reported by the catalog, if known
        policy: Encode policy (defaults to TranscodePolicy())

    Returns:
        TranscodeResult with the chosen bytes and format tag

    Raises:
        TranscodeError: If decoding or any encode fails
    """
    policy = policy or TranscodePolicy()
    size_kb = len(image_bytes) / 1024

    try:
        with Image.open(BytesIO(image_bytes)) as loaded:
            im = _normalize(loaded)
            im = _downscale(im, width_hint, policy.max_width)
            im.load()

        webp_bytes = _encode(im, PRIMARY_FORMAT, quality=policy.webp_quality)
        if size_kb < policy.size_threshold_kb:
            return TranscodeResult(data=webp_bytes, format=PRIMARY_FORMAT, size_px=im.size)

        avif_bytes = _encode(im, SECONDARY_FORMAT, quality=policy.avif_quality, speed=policy.avif_speed)
    except Exception as e:
        logger.error(f"Image processing failed: {e}")
        raise TranscodeError(f"Image processing failed: {e}") from e

    if len(avif_bytes) < len(webp_bytes):
        return TranscodeResult(data=avif_bytes, format=SECONDARY_FORMAT, size_px=im.size)
    return TranscodeResult(data=webp_bytes, format=PRIMARY_FORMAT, size_px=im.size)
