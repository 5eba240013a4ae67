"""Region-of-interest extraction from decoded RGB buffers."""

from __future__ import annotations

import numpy as np

from grid_extract.geometry import DEFAULT_PADS, Paddings, Rectangle, clip, pad
from grid_extract.logger import get_logger

from .decoder import encode_array

_logger = get_logger("extract")


def roi_rect(shape: tuple[int, ...], rect: Rectangle, pads: Paddings | None = None) -> Rectangle:
    """Padded and clipped integer rectangle for `rect` inside an image of `shape` (h, w, ...)."""
    height, width = int(shape[0]), int(shape[1])
    padded = pad(rect, pads if pads is not None else DEFAULT_PADS)
    return clip(padded, width, height)


def roi(img: np.ndarray, rect: Rectangle, pads: Paddings | None = None) -> np.ndarray:
    """Crop `rect` (grown by `pads`) out of `img`.

    The result owns its memory and is C-contiguous so it can leave the worker
    independently of `img`.
    """
    clipped = roi_rect(img.shape, rect, pads)
    x, y = int(clipped.tl[0]), int(clipped.tl[1])
    w, h = int(clipped.size[0]), int(clipped.size[1])
    return np.ascontiguousarray(img[y : y + h, x : x + w]).copy()


def extract_region(
    img: np.ndarray, rect: Rectangle, pads: Paddings | None = None, fmt: str = ".png"
) -> bytes | None:
    """Crop and encode. Returns None for an empty region or a failed encode."""
    box = roi(img, rect, pads)
    if box.shape[0] == 0 or box.shape[1] == 0:
        _logger.debug("empty region for rect=%s pads=%s", rect, pads)
        return None
    try:
        return encode_array(box, fmt)
    except Exception as e:
        _logger.warning("encode failed for region %sx%s (%s): %s", box.shape[1], box.shape[0], fmt, e)
        return None
