from __future__ import annotations

"""
target_detect.core.normalize
----------------------------

Frame normalizer: any RawFrame -> canonical uint8 BGR (H x W x 3).

- 8-bit sources are only color-converted (channel order / demosaic / replication);
  signed 8-bit samples are saturated to 0..255 first, not rescaled.
- Deeper sources (16-bit, 32-bit, float) are min-max rescaled to 0..255 first,
  then color-converted the same way.
- A constant deep frame (min == max) becomes all zeros.
"""

from typing import Dict

import numpy as np

try:
    import cv2  # type: ignore
except Exception:  # pragma: no cover
    cv2 = None  # type: ignore

from .schema import CanonicalFrame, FrameFormatError, RawFrame, encoding_info


def _require_cv2() -> None:
    if cv2 is None:  # pragma: no cover
        raise ImportError("opencv-python is required for frame normalization (cv2 import failed).")


# layout -> cv2 color conversion code name (resolved lazily so cv2 stays optional at import)
_TO_BGR: Dict[str, str] = {
    "mono": "COLOR_GRAY2BGR",
    "rgb": "COLOR_RGB2BGR",
    "rgba": "COLOR_RGBA2BGR",
    "bgra": "COLOR_BGRA2BGR",
    "bayer_rggb": "COLOR_BayerRG2BGR",
    "bayer_bggr": "COLOR_BayerBG2BGR",
    "bayer_gbrg": "COLOR_BayerGB2BGR",
    "bayer_grbg": "COLOR_BayerGR2BGR",
    "yuv422": "COLOR_YUV2BGR_UYVY",
}


def minmax_to_uint8(image: np.ndarray) -> np.ndarray:
    """Linearly map the observed [min, max] of `image` onto [0, 255] as uint8.

    Non-finite samples are ignored when computing the range and map to 0.
    A constant image (or one with no finite samples) maps to all zeros.
    """
    src = np.asarray(image, dtype=np.float64)
    finite = np.isfinite(src)
    if not finite.any():
        return np.zeros(src.shape, dtype=np.uint8)

    lo = float(src[finite].min())
    hi = float(src[finite].max())
    if hi <= lo:
        return np.zeros(src.shape, dtype=np.uint8)

    scaled = (src - lo) * (255.0 / (hi - lo))
    scaled = np.where(finite, scaled, 0.0)
    return np.clip(np.rint(scaled), 0, 255).astype(np.uint8)


def to_bgr(image8: np.ndarray, layout: str) -> np.ndarray:
    """Convert an 8-bit image with the given channel layout into a new BGR array."""
    if layout == "bgr":
        return np.array(image8, dtype=np.uint8, copy=True)

    code_name = _TO_BGR.get(layout)
    if code_name is None:
        raise FrameFormatError(f"No BGR conversion for channel layout '{layout}'.")

    _require_cv2()
    src = np.ascontiguousarray(image8)
    if layout == "mono" and src.ndim == 3:
        src = np.ascontiguousarray(src[:, :, 0])
    if not src.flags.writeable:
        src = src.copy()
    try:
        out = cv2.cvtColor(src, getattr(cv2, code_name))
    except cv2.error as e:
        raise FrameFormatError(f"Color conversion '{code_name}' failed for shape {src.shape}: {e}") from e
    return out


def normalize(raw: RawFrame) -> CanonicalFrame:
    """Derive the canonical 8-bit BGR frame for `raw`. The source frame is not modified."""
    info = encoding_info(raw.encoding)

    if info.bit_depth == 8:
        image8 = raw.image
        if info.dtype != np.uint8:
            # Signed 8-bit: negatives saturate to 0, no rescaling.
            image8 = np.maximum(image8, 0).astype(np.uint8)
    else:
        image8 = minmax_to_uint8(raw.image)

    bgr = to_bgr(image8, info.layout)
    if bgr.ndim != 3 or bgr.shape[2] != 3:
        raise FrameFormatError(f"Conversion produced shape {bgr.shape}, expected H x W x 3.")
    return CanonicalFrame(image=bgr, header=raw.header)


__all__ = [
    "minmax_to_uint8",
    "to_bgr",
    "normalize",
]
