import pytest

from grid_extract.geometry import (
    BoxIndexError,
    GridTemplate,
    Paddings,
    Rectangle,
    box_rect,
    box_size,
    clip,
    pad,
    reify,
    reify_config,
)

FULL = Rectangle(tl=(0.0, 0.0), size=(1.0, 1.0))


def test_uniform_template_reifies_row_major():
    model = reify(GridTemplate.uniform(2, 2))
    assert model.box_positions == ((0.0, 0.0), (0.5, 0.0), (0.0, 0.5), (0.5, 0.5))
    assert model.box_size == (0.5, 0.5)
    assert len(model) == 4


def test_box_size_defaults_to_smallest_cell():
    template = GridTemplate(rows=(0.0, 0.25, 0.5), cols=(0.0, 0.6))
    # rows: 0.25, 0.25, 0.5 -> 0.25; cols: 0.6, 0.4 -> 0.4
    w, h = box_size(template)
    assert w == pytest.approx(0.4)
    assert h == pytest.approx(0.25)


def test_template_rejects_unordered_edges():
    with pytest.raises(ValueError):
        GridTemplate(rows=(0.5, 0.0), cols=(0.0,))
    with pytest.raises(ValueError):
        GridTemplate(rows=(), cols=(0.0,))
    with pytest.raises(ValueError):
        GridTemplate.uniform(0, 3)


def test_template_wire_round_trip_is_equal():
    template = GridTemplate(rows=[0, 0.3], cols=[0.1, 0.5, 0.7], box_size=[0.2, 0.3])
    assert GridTemplate.from_wire(template.to_wire()) == template


def test_reification_is_deterministic():
    template = GridTemplate(rows=tuple(i / 7 for i in range(7)), cols=(0.0, 1 / 3, 2 / 3))
    coords = Rectangle(tl=(0.04, 0.195), size=(0.95, 0.67))
    first = reify_config(template, coords, (1237, 1759))
    second = reify_config(template, coords, (1237, 1759))
    assert first == second
    assert reify(template).box_positions == reify(template).box_positions


def test_full_image_2x2_box_zero():
    reified = reify_config(GridTemplate.uniform(2, 2), FULL, (800, 600))
    rect = box_rect(reified, 0)
    assert rect.tl == (0.0, 0.0)
    assert rect.size == (400.0, 300.0)
    assert box_rect(reified, 3).tl == (400.0, 300.0)


def test_box_rect_is_relative_to_selection():
    coords = Rectangle(tl=(0.1, 0.1), size=(0.8, 0.8))
    reified = reify_config(GridTemplate.uniform(2, 2), coords, (800, 600))
    assert reified.tl == pytest.approx((80.0, 60.0))
    assert reified.box_size == pytest.approx((320.0, 240.0))
    rect = box_rect(reified, 3)
    assert rect.tl == pytest.approx((400.0, 300.0))


@pytest.mark.parametrize("idx", [4, 17, -1])
def test_box_index_out_of_range_is_fatal(idx):
    coords = Rectangle(tl=(0.1, 0.1), size=(0.8, 0.8))
    reified = reify_config(GridTemplate.uniform(2, 2), coords, (800, 600))
    with pytest.raises(BoxIndexError):
        box_rect(reified, idx)


def test_pad_expands_relative_to_box():
    rect = Rectangle(tl=(50, 50), size=(100, 50))
    padded = pad(rect, Paddings(l=0.1, r=0.1, t=0, b=0))
    assert padded == Rectangle(tl=(40, 50), size=(120, 50))


def test_pad_rounds_to_whole_pixels():
    padded = pad(Rectangle(tl=(10.4, 10.6), size=(33.3, 20.0)), Paddings(0, 0, 0, 0))
    assert padded == Rectangle(tl=(10, 11), size=(33, 20))


def test_default_pads():
    padded = pad(Rectangle(tl=(100, 100), size=(100, 100)), Paddings())
    assert padded == Rectangle(tl=(90, 90), size=(120, 130))


def test_partial_pads_fill_from_base():
    pads = Paddings.from_wire({"t": 0.0}, base=Paddings(0.05, 0.05, 0.05, 0.1))
    assert pads == Paddings(0.05, 0.05, 0.0, 0.1)
    assert Paddings.from_wire(None) == Paddings()
    with pytest.raises(ValueError):
        Paddings.from_wire({"x": 1})


def test_clip_off_image_edges():
    clipped = clip(Rectangle(tl=(-20, 590), size=(100, 50)), 800, 600)
    assert clipped.tl == (0, 590)
    assert clipped.size == (100, 10)

    clipped = clip(Rectangle(tl=(790, 590), size=(100, 50)), 800, 600)
    assert clipped.size == (10, 10)


@pytest.mark.parametrize(
    "rect",
    [
        Rectangle(tl=(900, 700), size=(100, 50)),
        Rectangle(tl=(900, 100), size=(100, 50)),
        Rectangle(tl=(-200, -100), size=(100, 50)),
        Rectangle(tl=(100, -60), size=(100, 60)),
    ],
)
def test_clip_without_overlap_is_empty(rect):
    clipped = clip(rect, 800, 600)
    assert clipped.is_empty
    assert 0 <= clipped.tl[0] < 800 and 0 <= clipped.tl[1] < 600
    assert clip(clipped, 800, 600) == clipped


def test_clip_keeps_full_image():
    assert clip(Rectangle(tl=(0, 0), size=(800, 600)), 800, 600) == Rectangle(tl=(0, 0), size=(800, 600))


@pytest.mark.parametrize(
    "rect",
    [
        Rectangle(tl=(-50, -50), size=(2000, 2000)),
        Rectangle(tl=(799, 599), size=(10, 10)),
        Rectangle(tl=(100, 100), size=(-5, 40)),
        Rectangle(tl=(400, 300), size=(0, 0)),
    ],
)
def test_clip_is_idempotent(rect):
    once = clip(rect, 800, 600)
    assert clip(once, 800, 600) == once


@pytest.mark.parametrize("pads", [Paddings(), Paddings(0.5, 0.5, 0.5, 0.5), Paddings(-0.6, -0.6, -0.6, -0.6)])
@pytest.mark.parametrize(
    "rect",
    [
        Rectangle(tl=(-100, -100), size=(50, 50)),
        Rectangle(tl=(790, 590), size=(100, 100)),
        Rectangle(tl=(10, 10), size=(1, 1)),
    ],
)
def test_pad_then_clip_never_negative(rect, pads):
    clipped = clip(pad(rect, pads), 800, 600)
    assert clipped.size[0] >= 0
    assert clipped.size[1] >= 0
    assert clipped.tl[0] + clipped.size[0] <= 800
    assert clipped.tl[1] + clipped.size[1] <= 600
