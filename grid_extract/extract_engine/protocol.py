"""Wire protocol between the extraction client and the worker.

Messages cross the boundary as plain dicts (str/int/float/bytes/list/dict/None)
so nothing mutable is shared between the two sides:

    client -> worker  {"action": "post-img",    "imgId": int, "reqId": int, "img": bytes | str}
                      {"action": "post-config", "imgId": int, "reqId": int, "config": dict}
                      {"action": "extract-box", "imgId": int, "reqId": int, "idx": int}
                      {"action": "drop-img",    "imgId": int, "reqId": int}
    worker -> client  {"action": str, "reqId": int, "value": ..., "error"?: {"kind": str, "message": str}}
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from grid_extract.geometry import GridTemplate, Paddings, Rectangle

POST_IMG = "post-img"
POST_CONFIG = "post-config"
EXTRACT_BOX = "extract-box"
DROP_IMG = "drop-img"
ACTIONS = (POST_IMG, POST_CONFIG, EXTRACT_BOX, DROP_IMG)

ERROR_INDEX = "index"
ERROR_INTERNAL = "internal"


class RemoteError(RuntimeError):
    """The worker failed to handle a request."""


@dataclass(frozen=True)
class ExtractConfig:
    """One extraction session: a grid template placed at `coords` on an image."""

    model: GridTemplate
    coords: Rectangle
    pads: Paddings | None = None

    def to_wire(self) -> dict[str, Any]:
        return {
            "model": self.model.to_wire(),
            "coords": self.coords.to_wire(),
            "pads": self.pads.to_wire() if self.pads is not None else None,
        }

    @classmethod
    def from_wire(cls, data: Mapping[str, Any], default_pads: Paddings | None = None) -> ExtractConfig:
        raw_pads = data.get("pads")
        return cls(
            model=GridTemplate.from_wire(data["model"]),
            coords=Rectangle.from_wire(data["coords"]),
            pads=Paddings.from_wire(raw_pads, base=default_pads) if raw_pads is not None else None,
        )


@dataclass(frozen=True)
class PostImage:
    img_id: int
    req_id: int
    img: bytes | str
    action: str = POST_IMG

    def to_wire(self) -> dict[str, Any]:
        return {"action": self.action, "imgId": self.img_id, "reqId": self.req_id, "img": self.img}


@dataclass(frozen=True)
class PostConfig:
    img_id: int
    req_id: int
    config: ExtractConfig
    action: str = POST_CONFIG

    def to_wire(self) -> dict[str, Any]:
        return {"action": self.action, "imgId": self.img_id, "reqId": self.req_id, "config": self.config.to_wire()}


@dataclass(frozen=True)
class ExtractBox:
    img_id: int
    req_id: int
    idx: int
    action: str = EXTRACT_BOX

    def to_wire(self) -> dict[str, Any]:
        return {"action": self.action, "imgId": self.img_id, "reqId": self.req_id, "idx": self.idx}


@dataclass(frozen=True)
class DropImage:
    img_id: int
    req_id: int
    action: str = DROP_IMG

    def to_wire(self) -> dict[str, Any]:
        return {"action": self.action, "imgId": self.img_id, "reqId": self.req_id}


Action = Union[PostImage, PostConfig, ExtractBox, DropImage]


@dataclass(frozen=True)
class Response:
    action: str
    req_id: int
    value: Any = None
    error_kind: str | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {"action": self.action, "reqId": self.req_id, "value": self.value}
        if self.error_kind is not None:
            out["error"] = {"kind": self.error_kind, "message": self.error_message or ""}
        return out

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> Response:
        try:
            action = data["action"]
            req_id = data["reqId"]
        except (KeyError, TypeError) as e:
            raise ValueError(f"malformed response: {data!r}") from e
        if action not in ACTIONS or not isinstance(req_id, int):
            raise ValueError(f"malformed response: action={action!r} reqId={req_id!r}")
        error = data.get("error")
        if error is not None:
            if not isinstance(error, Mapping):
                raise ValueError(f"malformed error in response: {error!r}")
            return cls(action, req_id, None, str(error.get("kind", ERROR_INTERNAL)), str(error.get("message", "")))
        return cls(action, req_id, data.get("value"))


def parse_message(data: Mapping[str, Any], default_pads: Paddings | None = None) -> Action:
    """Decode a client->worker message. Raises ValueError when malformed."""
    try:
        action = data["action"]
        img_id = int(data["imgId"])
        req_id = int(data["reqId"])
        if action == POST_IMG:
            img = data["img"]
            if not isinstance(img, (bytes, bytearray, memoryview, str)):
                raise TypeError(f"img must be bytes or str, got {type(img).__name__}")
            return PostImage(img_id, req_id, img if isinstance(img, str) else bytes(img))
        if action == POST_CONFIG:
            return PostConfig(img_id, req_id, ExtractConfig.from_wire(data["config"], default_pads))
        if action == EXTRACT_BOX:
            return ExtractBox(img_id, req_id, int(data["idx"]))
        if action == DROP_IMG:
            return DropImage(img_id, req_id)
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"malformed message: {e}") from e
    raise ValueError(f"unknown action: {action!r}")
