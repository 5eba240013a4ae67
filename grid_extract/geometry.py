"""Grid geometry: template reification, padding and clipping.

Pure functions, no Qt and no image library. Normalized coordinates are
fractions of a reference size (the image for a selection rectangle, the
selection rectangle for a template); pixel coordinates are produced by
`reify_config` and `box_rect`.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

Vec2 = tuple[float, float]


class BoxIndexError(IndexError):
    """Requested box index is outside the template's range."""


def _vec2(value: Any) -> Vec2:
    x, y = value
    return float(x), float(y)


def _round(v: float) -> int:
    # Round half up, same result for equal inputs regardless of sign handling elsewhere.
    return math.floor(v + 0.5)


@dataclass(frozen=True)
class Rectangle:
    tl: Vec2
    size: Vec2

    @property
    def width(self) -> float:
        return self.size[0]

    @property
    def height(self) -> float:
        return self.size[1]

    @property
    def is_empty(self) -> bool:
        return self.size[0] <= 0 or self.size[1] <= 0

    def to_wire(self) -> dict[str, list[float]]:
        return {"tl": list(self.tl), "size": list(self.size)}

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> Rectangle:
        return cls(tl=_vec2(data["tl"]), size=_vec2(data["size"]))


@dataclass(frozen=True)
class Paddings:
    """Paddings relative to the box's own width (l, r) and height (t, b)."""

    l: float = 0.1  # noqa: E741
    r: float = 0.1
    t: float = 0.1
    b: float = 0.2

    def to_wire(self) -> dict[str, float]:
        return {"l": self.l, "r": self.r, "t": self.t, "b": self.b}

    @classmethod
    def from_wire(cls, data: Mapping[str, Any] | None, base: Paddings | None = None) -> Paddings:
        """Build paddings from a (possibly partial) mapping; missing sides come from `base`."""
        base = base if base is not None else DEFAULT_PADS
        if data is None:
            return base
        if not isinstance(data, Mapping):
            raise TypeError(f"paddings must be a mapping, got {type(data).__name__}")
        unknown = set(data) - {"l", "r", "t", "b"}
        if unknown:
            raise ValueError(f"unknown padding sides: {sorted(unknown)}")
        return cls(
            l=float(data.get("l", base.l)),
            r=float(data.get("r", base.r)),
            t=float(data.get("t", base.t)),
            b=float(data.get("b", base.b)),
        )


DEFAULT_PADS = Paddings()


@dataclass(frozen=True)
class GridTemplate:
    """Grid of boxes described by the top/left edges of its rows and columns.

    `rows` and `cols` are fractions of the selection rectangle, in increasing
    order. The last row and column extend to 1.0. `box_size` is shared by all
    boxes; when omitted it is the smallest column width and row height.
    """

    rows: tuple[float, ...]
    cols: tuple[float, ...]
    box_size: Vec2 | None = None

    def __post_init__(self) -> None:
        rows = tuple(float(r) for r in self.rows)
        cols = tuple(float(c) for c in self.cols)
        for name, edges in (("rows", rows), ("cols", cols)):
            if not edges:
                raise ValueError(f"template {name} must not be empty")
            if any(b <= a for a, b in zip(edges, edges[1:])):
                raise ValueError(f"template {name} must be strictly increasing: {edges}")
        object.__setattr__(self, "rows", rows)
        object.__setattr__(self, "cols", cols)
        if self.box_size is not None:
            object.__setattr__(self, "box_size", _vec2(self.box_size))

    @classmethod
    def uniform(cls, n_rows: int, n_cols: int) -> GridTemplate:
        if n_rows <= 0 or n_cols <= 0:
            raise ValueError(f"grid must have at least one row and column: {n_rows}x{n_cols}")
        return cls(
            rows=tuple(i / n_rows for i in range(n_rows)),
            cols=tuple(j / n_cols for j in range(n_cols)),
            box_size=(1 / n_cols, 1 / n_rows),
        )

    @property
    def box_count(self) -> int:
        return len(self.rows) * len(self.cols)

    def to_wire(self) -> dict[str, Any]:
        return {
            "rows": list(self.rows),
            "cols": list(self.cols),
            "box_size": list(self.box_size) if self.box_size is not None else None,
        }

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> GridTemplate:
        box_size = data.get("box_size")
        return cls(
            rows=tuple(data["rows"]),
            cols=tuple(data["cols"]),
            box_size=_vec2(box_size) if box_size is not None else None,
        )


@dataclass(frozen=True)
class ReifiedModel:
    box_positions: tuple[Vec2, ...]
    box_size: Vec2

    def __len__(self) -> int:
        return len(self.box_positions)


@dataclass(frozen=True)
class ReifiedConfig:
    """Pixel-space projection of a template and selection onto one image."""

    model: ReifiedModel
    tl: Vec2
    size: Vec2
    box_size: Vec2
    image_size: tuple[int, int] = field(default=(0, 0))


def _min_gap(edges: Iterable[float]) -> float:
    edges = list(edges) + [1.0]
    return min(b - a for a, b in zip(edges, edges[1:]))


def box_size(template: GridTemplate) -> Vec2:
    if template.box_size is not None:
        return template.box_size
    return _min_gap(template.cols), _min_gap(template.rows)


def reify(template: GridTemplate) -> ReifiedModel:
    """Row-major box top-left positions, normalized to the selection rectangle."""
    positions = tuple((c, r) for r in template.rows for c in template.cols)
    return ReifiedModel(box_positions=positions, box_size=box_size(template))


def reify_config(template: GridTemplate, coords: Rectangle, image_size: tuple[int, int]) -> ReifiedConfig:
    w, h = image_size
    model = reify(template)
    tl = (coords.tl[0] * w, coords.tl[1] * h)
    size = (coords.size[0] * w, coords.size[1] * h)
    bs = (model.box_size[0] * size[0], model.box_size[1] * size[1])
    return ReifiedConfig(model=model, tl=tl, size=size, box_size=bs, image_size=(int(w), int(h)))


def box_rect(reified: ReifiedConfig, idx: int) -> Rectangle:
    """Pixel rectangle of box `idx` (before padding)."""
    count = len(reified.model)
    if not 0 <= idx < count:
        raise BoxIndexError(f"box index {idx} out of range [0, {count})")
    px, py = reified.model.box_positions[idx]
    x = reified.tl[0] + px * reified.size[0]
    y = reified.tl[1] + py * reified.size[1]
    return Rectangle(tl=(x, y), size=reified.box_size)


def pad(rect: Rectangle, pads: Paddings) -> Rectangle:
    """Grow `rect` by `pads` (fractions of its own size) and round to whole pixels."""
    x, y = rect.tl
    w, h = rect.size
    return Rectangle(
        tl=(_round(x - pads.l * w), _round(y - pads.t * h)),
        size=(_round((1 + pads.l + pads.r) * w), _round((1 + pads.t + pads.b) * h)),
    )


def clip(rect: Rectangle, width: int, height: int) -> Rectangle:
    """Clamp `rect` into a `width` x `height` image. Never fails, may return an empty rectangle.

    An axis on which `rect` does not overlap the image gets size 0.
    """
    x0, y0 = rect.tl
    rw, rh = max(rect.size[0], 0), max(rect.size[1], 0)
    x = min(max(x0, 0), max(width - 1, 0))
    y = min(max(y0, 0), max(height - 1, 0))
    w = min(rw, width - x) if x0 < width and x0 + rw > 0 else 0
    h = min(rh, height - y) if y0 < height and y0 + rh > 0 else 0
    return Rectangle(tl=(x, y), size=(w, h))
