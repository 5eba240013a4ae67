"""Client side of the extraction protocol.

`ExtractClient` turns `post_img` / `post_config` / `extract` calls into wire
messages, correlates responses by request id and caches what the worker
already holds:

- images are deduplicated by key (caller supplied, else the locator string or
  a SHA-1 of the bytes), so each distinct image is posted at most once;
- configs are deduplicated per image handle by value against the config last
  sent for that handle. An `extract-box` goes out right behind the config it
  was asked for, so a later config for the same image never changes the
  crop of an earlier request.

`release` forgets an image on both sides so long sessions do not grow.

Every call returns a `concurrent.futures.Future` right away; nothing here
blocks. Responses may arrive in any order and on any thread.
"""

from __future__ import annotations

import hashlib
import os
import threading
from collections.abc import Callable, Hashable
from concurrent.futures import Future, InvalidStateError
from typing import Any

from grid_extract.geometry import BoxIndexError
from grid_extract.logger import get_logger

from .metrics import metrics
from .protocol import (
    ERROR_INDEX,
    Action,
    DropImage,
    ExtractBox,
    ExtractConfig,
    PostConfig,
    PostImage,
    RemoteError,
    Response,
)

_logger = get_logger("client")

PostMessage = Callable[[dict], None]


def image_key(img: bytes | str) -> Hashable:
    """Default deduplication key: the locator itself, or a digest of the bytes."""
    if isinstance(img, str):
        return img
    return "sha1:" + hashlib.sha1(bytes(img)).hexdigest()  # noqa: S324


def _settle(fut: Future, value: Any = None, exc: BaseException | None = None) -> None:
    try:
        if exc is not None:
            fut.set_exception(exc)
        else:
            fut.set_result(value)
    except InvalidStateError:
        # Caller cancelled the future it was handed.
        pass


def _forward(src: Future, dst: Future) -> None:
    if src.cancelled():
        dst.cancel()
        return
    exc = src.exception()
    if exc is not None:
        _settle(dst, exc=exc)
    else:
        _settle(dst, src.result())


def _then(src: Future, fn: Callable[[Any], Any]) -> Future:
    """Future of `fn(src.result())`, flattening when `fn` returns a Future."""
    out: Future = Future()

    def _done(f: Future) -> None:
        if f.cancelled() or f.exception() is not None:
            _forward(f, out)
            return
        try:
            res = fn(f.result())
        except Exception as e:
            _settle(out, exc=e)
            return
        if isinstance(res, Future):
            res.add_done_callback(lambda r: _forward(r, out))
        else:
            _settle(out, res)

    src.add_done_callback(_done)
    return out


class ExtractClient:
    """Multiplexes extraction requests over a single message channel.

    `post_message` sends one wire message (a dict) to the worker. Every
    response from the worker must be passed to `on_message`. One client is one
    session: handles and request ids grow monotonically until `close()`.
    """

    def __init__(self, post_message: PostMessage) -> None:
        self._post_message = post_message
        self._lock = threading.Lock()
        # Keeps a post-config and the extract-box that depends on it adjacent on
        # the channel. Reentrant: a synchronous channel may resolve futures inline.
        self._sequence = threading.RLock()
        self._closed = False
        self._next_handle = 0
        self._next_req = 0
        # key -> Future[handle | None]; in flight or registered
        self._images: dict[Hashable, Future] = {}
        # handle -> (config, Future[None]); in flight or acknowledged
        self._configs: dict[int, tuple[ExtractConfig, Future]] = {}
        self._pending: dict[tuple[str, int], Future] = {}

    # ---- public API -------------------------------------------------
    def post_img(self, img: bytes | str | os.PathLike, key: Hashable | None = None) -> Future:
        """Register `img` with the worker. Resolves to whether decoding succeeded."""
        return _then(self._image_handle(img, key), lambda handle: handle is not None)

    def post_config(
        self, img: bytes | str | os.PathLike, config: ExtractConfig, key: Hashable | None = None
    ) -> Future:
        """Register `config` for `img` (registering the image first if needed)."""

        def _with_handle(handle: int | None) -> Any:
            if handle is None:
                return None
            with self._sequence:
                posted = self._config_posted(handle, config)
            return _then(posted, lambda _: None)

        return _then(self._image_handle(img, key), _with_handle)

    def extract(
        self, img: bytes | str | os.PathLike, idx: int, config: ExtractConfig, key: Hashable | None = None
    ) -> Future:
        """Encoded crop of box `idx`, or None.

        Resolves to None without contacting the worker when the image failed
        to register. An index outside the template fails with BoxIndexError.
        """

        def _with_handle(handle: int | None) -> Any:
            if handle is None:
                _logger.debug("extract %s skipped: image not registered", idx)
                return None
            with self._sequence:
                posted = self._config_posted(handle, config)
                sent = self._send(lambda req_id: ExtractBox(handle, req_id, int(idx)))
            return _then(posted, lambda _: _then(sent, _as_bytes))

        return _then(self._image_handle(img, key), _with_handle)

    def release(self, img: bytes | str | os.PathLike, key: Hashable | None = None) -> Future:
        """Forget `img` here and on the worker. Resolves to None once the worker dropped it.

        Requests already issued for the image are sent before the drop. A later
        call with the same key registers the image again under a new handle.
        """
        _, key = _normalize(img, key)
        with self._lock:
            self._check_open()
            entry = self._images.pop(key, None)
        if entry is None:
            done: Future = Future()
            done.set_result(None)
            return done

        def _with_handle(handle: int | None) -> Any:
            if handle is None:
                return None
            with self._sequence:
                with self._lock:
                    self._configs.pop(handle, None)
                sent = self._send(lambda req_id: DropImage(handle, req_id))
            _logger.debug("released image %s key=%s", handle, key)
            return _then(sent, lambda _: None)

        return _then(entry, _with_handle)

    def on_message(self, data: dict) -> None:
        """Resolve the request a worker response belongs to. Never raises."""
        try:
            resp = Response.from_wire(data)
        except ValueError as e:
            metrics.inc("client.bad_response")
            _logger.warning("ignoring malformed response: %s", e)
            return
        with self._lock:
            fut = self._pending.pop((resp.action, resp.req_id), None)
        if fut is None:
            metrics.inc("client.unknown_response")
            _logger.warning("ignoring response for unknown request: action=%s reqId=%s", resp.action, resp.req_id)
            return
        _logger.debug("response %s req=%s ok=%s", resp.action, resp.req_id, resp.ok)
        if resp.ok:
            _settle(fut, resp.value)
        elif resp.error_kind == ERROR_INDEX:
            _settle(fut, exc=BoxIndexError(resp.error_message))
        else:
            _settle(fut, exc=RemoteError(f"{resp.action} failed: {resp.error_message}"))

    def close(self) -> None:
        """End the session: cancel pending requests and forget all caches."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            pending = list(self._pending.values())
            self._pending.clear()
            self._images.clear()
            self._configs.clear()
        for fut in pending:
            fut.cancel()
        _logger.debug("client closed; cancelled %s pending requests", len(pending))

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def handle_for(self, key: Hashable) -> int | None:
        """Handle of a successfully registered image key, else None."""
        with self._lock:
            fut = self._images.get(key)
        if fut is None or not fut.done() or fut.cancelled() or fut.exception() is not None:
            return None
        return fut.result()

    # ---- internals --------------------------------------------------
    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("extract client is closed")

    def _send(self, build: Callable[[int], Action]) -> Future:
        fut: Future = Future()
        with self._lock:
            self._check_open()
            req_id = self._next_req
            self._next_req += 1
            msg = build(req_id)
            self._pending[(msg.action, req_id)] = fut
        metrics.inc(f"client.sent.{msg.action}")
        _logger.debug("send %s req=%s img=%s", msg.action, req_id, msg.img_id)
        try:
            self._post_message(msg.to_wire())
        except Exception as e:
            with self._lock:
                self._pending.pop((msg.action, req_id), None)
            _logger.error("failed to send %s req=%s: %s", msg.action, req_id, e)
            _settle(fut, exc=e)
        return fut

    def _image_handle(self, img: bytes | str | os.PathLike, key: Hashable | None) -> Future:
        img, key = _normalize(img, key)
        with self._lock:
            self._check_open()
            entry = self._images.get(key)
            if entry is not None:
                return entry
            handle = self._next_handle
            self._next_handle += 1
            entry = Future()
            self._images[key] = entry
        _logger.debug("new image %s key=%s", handle, key)

        def _registered(f: Future) -> None:
            ok = not f.cancelled() and f.exception() is None and bool(f.result())
            if not ok:
                with self._lock:
                    if self._images.get(key) is entry:
                        del self._images[key]
                _logger.info("image %s (key=%s) was not registered", handle, key)
            if ok:
                _settle(entry, handle)
            elif f.cancelled() or f.exception() is not None:
                _forward(f, entry)
            else:
                _settle(entry, None)

        try:
            sent = self._send(lambda req_id: PostImage(handle, req_id, img))
        except RuntimeError as e:
            sent = Future()
            sent.set_exception(e)
        sent.add_done_callback(_registered)
        return entry

    def _config_posted(self, handle: int, config: ExtractConfig) -> Future:
        with self._lock:
            self._check_open()
            cached = self._configs.get(handle)
            if cached is not None and cached[0] == config:
                return cached[1]
            entry: Future = Future()
            self._configs[handle] = (config, entry)
        _logger.debug("new config for %s: %s", handle, config)

        def _acked(f: Future) -> None:
            if f.cancelled() or f.exception() is not None:
                with self._lock:
                    if self._configs.get(handle, (None, None))[1] is entry:
                        del self._configs[handle]
            _forward(f, entry)

        try:
            sent = self._send(lambda req_id: PostConfig(handle, req_id, config))
        except RuntimeError as e:
            sent = Future()
            sent.set_exception(e)
        sent.add_done_callback(_acked)
        return entry


def _normalize(img: bytes | str | os.PathLike, key: Hashable | None) -> tuple[bytes | str, Hashable]:
    if isinstance(img, os.PathLike):
        img = os.fspath(img)
    if isinstance(img, (bytearray, memoryview)):
        img = bytes(img)
    return img, image_key(img) if key is None else key


def _as_bytes(value: Any) -> bytes | None:
    return None if value is None else bytes(value)


def make_api(post_message: PostMessage) -> tuple[ExtractClient, Callable[[dict], None]]:
    """Client bound to `post_message`, plus the handler responses must be fed to."""
    client = ExtractClient(post_message)
    return client, client.on_message
