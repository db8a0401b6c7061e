"""Image preprocessing before vision model inference.

1. Decode image bytes
2. Downscale so the longest side fits the model's useful resolution
3. Encode as JPEG

The image is never cropped, rotated or padded: bounding boxes returned by
the model are fractions of the image it saw and must map back onto the
original upload. Each step degrades gracefully; if decoding fails the
original bytes are sent as-is.
"""

import logging

import cv2
import numpy as np

logger = logging.getLogger(__name__)

JPEG_MEDIA_TYPE = "image/jpeg"
JPEG_QUALITY = 90


def preprocess(image_bytes: bytes, media_type: str, max_side: int) -> tuple[bytes, str]:
    """Return (bytes, media_type) ready to embed in a vision prompt."""
    img = _decode(image_bytes)
    if img is None:
        logger.warning("preprocessing: could not decode image, sending original")
        return image_bytes, media_type

    img = _limit_size(img, max_side)
    encoded = _encode(img)
    if encoded is None:
        return image_bytes, media_type
    return encoded, JPEG_MEDIA_TYPE


def _decode(image_bytes: bytes) -> np.ndarray | None:
    """Decode raw bytes into an OpenCV BGR array."""
    arr = np.frombuffer(image_bytes, dtype=np.uint8)
    if arr.size == 0:
        return None
    return cv2.imdecode(arr, cv2.IMREAD_COLOR)


def _limit_size(img: np.ndarray, max_side: int) -> np.ndarray:
    """Shrink (never enlarge) so that max(width, height) <= max_side."""
    try:
        h, w = img.shape[:2]
        longest = max(h, w)
        if longest <= max_side:
            return img

        scale = max_side / longest
        new_w = max(1, round(w * scale))
        new_h = max(1, round(h * scale))
        logger.debug("preprocessing: resizing %dx%d -> %dx%d", w, h, new_w, new_h)
        return cv2.resize(img, (new_w, new_h), interpolation=cv2.INTER_AREA)

    except Exception as e:
        logger.warning("preprocessing: resize failed: %s", e)
        return img


def _encode(img: np.ndarray) -> bytes | None:
    """Encode image as JPEG bytes."""
    try:
        success, buf = cv2.imencode(".jpg", img, [cv2.IMWRITE_JPEG_QUALITY, JPEG_QUALITY])
        if success:
            return buf.tobytes()
    except Exception as e:
        logger.warning("preprocessing: JPEG encode failed: %s", e)

    return None
