"""Image codec using pyvips.

Decodes image bytes (or bytes fetched from a locator) into an RGB numpy array
and encodes RGB arrays back to image bytes. Runs on the worker side only.
"""

import contextlib
import urllib.parse
import urllib.request
from pathlib import Path
from typing import Any

import numpy as np

from grid_extract.logger import get_logger

_logger = get_logger("decoder")

RGB_CHANNELS = 3
_RGB_DIMS = 3

_pyvips: Any | None = None


def _get_pyvips_module() -> Any:
    global _pyvips
    if _pyvips is None:
        import pyvips  # type: ignore

        # Configure pyvips caches to avoid memory growth
        with contextlib.suppress(Exception):
            pyvips.cache_set_max(0)
            pyvips.cache_set_max_mem(0)
            pyvips.cache_set_max_files(0)
        _pyvips = pyvips
    return _pyvips


def fetch_bytes(locator: str, timeout: float = 10.0) -> bytes:
    """Read the bytes behind `locator`: a filesystem path or a file/http(s) URL."""
    scheme = urllib.parse.urlparse(locator).scheme.lower()
    if scheme in ("http", "https", "file"):
        with urllib.request.urlopen(locator, timeout=timeout) as resp:  # noqa: S310
            return resp.read()
    return Path(locator).read_bytes()


def _to_rgb(image: Any) -> Any:
    pyvips = _get_pyvips_module()
    with contextlib.suppress(Exception):
        image = image.colourspace("srgb")
    if image.hasalpha():
        image = image.flatten(background=[0, 0, 0])
    if image.bands > RGB_CHANNELS:
        image = image.extract_band(0, n=RGB_CHANNELS)
    elif image.bands < RGB_CHANNELS:
        image = pyvips.Image.bandjoin([image] * RGB_CHANNELS)
    if image.format != "uchar":
        image = image.cast("uchar")
    return image


def decode_bytes(data: bytes) -> np.ndarray:
    """Decode image bytes into an (h, w, 3) uint8 array. Raises on failure."""
    if not data:
        raise ValueError("empty image data")
    pyvips = _get_pyvips_module()
    image = pyvips.Image.new_from_buffer(data, "", access="sequential")
    image = _to_rgb(image)

    mem = image.write_to_memory()
    array = np.frombuffer(mem, dtype=np.uint8).reshape(image.height, image.width, image.bands)
    # frombuffer is read-only and tied to `mem`
    array = array.copy()
    if array.shape[2] != RGB_CHANNELS:
        raise RuntimeError(f"Unsupported band count after conversion: {array.shape[2]}")
    return array


def decode_image(img: bytes | str, timeout: float = 10.0) -> tuple[np.ndarray | None, str | None]:
    """Fetch (for locators) and decode `img`.

    Returns (array|None, error|None); never raises.
    """
    try:
        data = fetch_bytes(img, timeout=timeout) if isinstance(img, str) else bytes(img)
    except Exception as e:
        _logger.debug("fetch failed: %s", e)
        return None, f"fetch failed: {e}"
    try:
        return decode_bytes(data), None
    except Exception as e:
        _logger.debug("decode failed: %s", e)
        return None, f"decode failed: {e}"


def encode_array(rgb: np.ndarray, fmt: str = ".png") -> bytes:
    """Encode an (h, w, 3) uint8 array to image bytes in `fmt` (a pyvips suffix)."""
    if rgb.ndim != _RGB_DIMS or rgb.shape[2] != RGB_CHANNELS:
        raise ValueError("expected RGB numpy array with shape (h, w, 3)")
    h, w, _ = rgb.shape
    if h == 0 or w == 0:
        raise ValueError(f"cannot encode empty image {w}x{h}")
    if rgb.dtype != np.uint8:
        rgb = rgb.astype(np.uint8)

    pyvips = _get_pyvips_module()
    # pyvips expects a contiguous bytes buffer in C order
    buf = np.ascontiguousarray(rgb).tobytes()
    img: Any = pyvips.Image.new_from_memory(buf, w, h, RGB_CHANNELS, "uchar")
    with contextlib.suppress(Exception):
        img = img.copy(interpretation="srgb")

    out = img.write_to_buffer(fmt)
    if isinstance(out, bytes):
        return out
    return bytes(out)
