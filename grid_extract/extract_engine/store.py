"""Worker-side image/config store.

Holds, per image handle, the decoded RGB buffer, the last posted
`ExtractConfig` and the pixel geometry reified from both. Posting a new image
or a new config for a handle evicts its reified geometry.

The store is single-threaded: the worker feeds it one message at a time.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

import numpy as np

from grid_extract.geometry import (
    DEFAULT_PADS,
    BoxIndexError,
    Paddings,
    ReifiedConfig,
    box_rect,
    reify_config,
)
from grid_extract.logger import get_logger

from .decoder import decode_image
from .extract import extract_region
from .metrics import metrics
from .protocol import (
    ACTIONS,
    ERROR_INDEX,
    ERROR_INTERNAL,
    DropImage,
    ExtractBox,
    ExtractConfig,
    PostConfig,
    PostImage,
    Response,
    parse_message,
)

_logger = get_logger("store")

DecodeFn = Callable[[Any, float], tuple[Any, Any]]


class ExtractStore:
    """Decoded images and extraction configs keyed by image handle.

    `decode_fn` has the form (img, timeout) -> (array|None, error|None), see
    `decoder.decode_image`.
    """

    def __init__(
        self,
        decode_fn: DecodeFn = decode_image,
        *,
        encode_format: str = ".png",
        default_pads: Paddings = DEFAULT_PADS,
        fetch_timeout: float = 10.0,
    ) -> None:
        self._decode_fn = decode_fn
        self.encode_format = encode_format
        self.default_pads = default_pads
        self.fetch_timeout = fetch_timeout
        self._images: dict[int, np.ndarray] = {}
        self._configs: dict[int, ExtractConfig] = {}
        self._reified: dict[int, ReifiedConfig] = {}

    @classmethod
    def from_settings(cls, settings, decode_fn: DecodeFn = decode_image) -> ExtractStore:
        return cls(
            decode_fn,
            encode_format=settings.encode_format,
            default_pads=settings.default_pads,
            fetch_timeout=settings.fetch_timeout,
        )

    # ---- operations -------------------------------------------------
    def register_image(self, handle: int, img: bytes | str) -> bool:
        array, error = self._decode_fn(img, self.fetch_timeout)
        if error or array is None:
            metrics.inc("store.decode_failed")
            _logger.info("image %s rejected: %s", handle, error)
            return False
        self._images[handle] = array
        self._reified.pop(handle, None)
        _logger.debug("stored image %s shape=%s", handle, getattr(array, "shape", None))
        return True

    def register_config(self, handle: int, config: ExtractConfig) -> None:
        self._configs[handle] = config
        self._reified.pop(handle, None)
        _logger.debug("stored config for %s: %s", handle, config)

    def reified(self, handle: int) -> ReifiedConfig | None:
        """Pixel geometry for `handle`, computed on first use after a change."""
        cached = self._reified.get(handle)
        if cached is not None:
            return cached
        img = self._images.get(handle)
        config = self._configs.get(handle)
        if img is None or config is None:
            return None
        metrics.inc("store.reify_miss")
        height, width = img.shape[:2]
        cached = reify_config(config.model, config.coords, (width, height))
        self._reified[handle] = cached
        return cached

    def extract_box(self, handle: int, idx: int) -> bytes | None:
        """Encoded crop of box `idx`, or None if the handle lacks an image or config.

        Raises BoxIndexError for an index outside the template.
        """
        reified = self.reified(handle)
        if reified is None:
            _logger.debug(
                "extract %s[%s]: missing %s", handle, idx, "config" if handle in self._images else "image"
            )
            return None
        img = self._images[handle]
        config = self._configs[handle]
        rect = box_rect(reified, idx)
        _logger.debug("box %s[%s] at %s", handle, idx, rect)
        pads = config.pads if config.pads is not None else self.default_pads
        with metrics.timed("store.extract_duration"):
            return extract_region(img, rect, pads, self.encode_format)

    def drop(self, handle: int) -> None:
        """Forget everything held for `handle`. Unknown handles are ignored."""
        self._images.pop(handle, None)
        self._configs.pop(handle, None)
        self._reified.pop(handle, None)

    def handles(self) -> list[int]:
        return sorted(self._images)

    def config(self, handle: int) -> ExtractConfig | None:
        return self._configs.get(handle)

    # ---- messages ---------------------------------------------------
    def handle_message(self, data: Mapping[str, Any]) -> dict[str, Any] | None:
        """Execute one wire message and build its wire response.

        Returns None only when the message cannot be correlated (no usable
        action/reqId); such messages are logged and dropped.
        """
        try:
            msg = parse_message(data, self.default_pads)
        except ValueError as e:
            action, req_id = data.get("action"), data.get("reqId")
            if isinstance(req_id, int) and action in ACTIONS:
                _logger.warning("bad %s request %s: %s", action, req_id, e)
                return Response(action, req_id, None, ERROR_INTERNAL, str(e)).to_wire()
            _logger.warning("dropping malformed message: %s", e)
            return None

        try:
            if isinstance(msg, PostImage):
                value: Any = self.register_image(msg.img_id, msg.img)
            elif isinstance(msg, PostConfig):
                value = self.register_config(msg.img_id, msg.config)
            elif isinstance(msg, ExtractBox):
                value = self.extract_box(msg.img_id, msg.idx)
            elif isinstance(msg, DropImage):
                self.drop(msg.img_id)
                value = None
            else:  # pragma: no cover - parse_message only yields these kinds
                raise TypeError(f"unexpected message {msg!r}")
        except BoxIndexError as e:
            _logger.error("extract %s: %s", msg.img_id, e)
            return Response(msg.action, msg.req_id, None, ERROR_INDEX, str(e)).to_wire()
        except Exception as e:
            _logger.exception("%s request %s failed", msg.action, msg.req_id)
            return Response(msg.action, msg.req_id, None, ERROR_INTERNAL, str(e)).to_wire()
        return Response(msg.action, msg.req_id, value).to_wire()
