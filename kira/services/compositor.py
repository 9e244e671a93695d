"""
Frame compositor — PNG frames in, WebP artifact out.

compose() writes a true animated WebP. When the local Pillow/libwebp build
cannot write animations it falls back to the last frame as a still image and
marks the artifact STATIC_FALLBACK, so callers can tell.
"""
import io
import logging
from collections.abc import Sequence

from PIL import Image, UnidentifiedImageError

from kira.config import settings
from kira.errors import RenderError
from kira.schemas import Artifact, ArtifactKind
from kira.services.activity_log import log_activity

logger = logging.getLogger(__name__)

FRAME_COUNT = 4


def _load(frame: bytes, index: int) -> Image.Image:
    try:
        with Image.open(io.BytesIO(frame)) as image:
            return image.convert("RGBA")
    except (UnidentifiedImageError, OSError) as exc:
        raise RenderError(f"Frame {index + 1} is not a decodable image: {exc}") from exc


def _encode_static(image: Image.Image, quality: int) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="WEBP", quality=quality)
    return buf.getvalue()


def _encode_animated(images: Sequence[Image.Image], delays: Sequence[int], quality: int) -> bytes:
    buf = io.BytesIO()
    images[0].save(
        buf,
        format="WEBP",
        save_all=True,
        append_images=list(images[1:]),
        duration=list(delays),
        loop=0,
        quality=quality,
    )
    return buf.getvalue()


def encode_frame(frame: bytes, quality: int | None = None) -> Artifact:
    """Re-encode a single PNG frame as a still WebP."""
    image = _load(frame, 0)
    data = _encode_static(image, quality or settings.WEBP_QUALITY_FRAME)
    return Artifact(data=data, kind=ArtifactKind.STATIC, frame_count=1)


def compose(
    frames: Sequence[bytes],
    delays: Sequence[int],
    quality: int | None = None,
) -> Artifact:
    if len(frames) != FRAME_COUNT or len(delays) != FRAME_COUNT:
        raise ValueError(
            f"compose needs {FRAME_COUNT} frames and {FRAME_COUNT} delays, "
            f"got {len(frames)} and {len(delays)}"
        )

    quality = quality or settings.WEBP_QUALITY_ANIMATED
    images = [_load(frame, i) for i, frame in enumerate(frames)]

    try:
        data = _encode_animated(images, delays, quality)
    except (OSError, ValueError, KeyError) as exc:
        logger.warning("Animated WebP unavailable, returning last frame only: %s", exc)
        log_activity("warn", "render", f"Animated WebP unavailable — static fallback ({exc})")
        return Artifact(
            data=_encode_static(images[-1], quality),
            kind=ArtifactKind.STATIC_FALLBACK,
            frame_count=1,
        )

    return Artifact(data=data, kind=ArtifactKind.ANIMATED, frame_count=len(images))
