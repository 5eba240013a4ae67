import pytest

from grid_extract.extract_engine.metrics import metrics
from grid_extract.extract_engine.protocol import ExtractConfig
from grid_extract.extract_engine.store import ExtractStore
from grid_extract.geometry import BoxIndexError, GridTemplate, Paddings, Rectangle
from tests.helpers.images import gradient_image

NO_PADS = Paddings(0, 0, 0, 0)
FULL_2X2 = ExtractConfig(GridTemplate.uniform(2, 2), Rectangle((0, 0), (1, 1)), NO_PADS)


@pytest.fixture
def store(fake_decoder, describe_regions):  # noqa: ARG001
    return ExtractStore(fake_decoder)


def test_extract_box_zero_of_full_image(store):
    assert store.register_image(0, "mem://sheet") is True
    store.register_config(0, FULL_2X2)
    assert store.extract_box(0, 0) == b"((0, 0), (400, 300))"
    assert store.extract_box(0, 3) == b"((400, 300), (400, 300))"


def test_extract_without_image_or_config_is_none(store):
    assert store.extract_box(7, 0) is None
    store.register_config(7, FULL_2X2)
    assert store.extract_box(7, 0) is None

    store.register_image(8, "mem://sheet")
    assert store.extract_box(8, 0) is None


def test_out_of_range_index_raises(store):
    store.register_image(0, "mem://sheet")
    store.register_config(0, ExtractConfig(GridTemplate.uniform(2, 2), Rectangle((0.1, 0.1), (0.8, 0.8))))
    with pytest.raises(BoxIndexError):
        store.extract_box(0, 4)
    with pytest.raises(BoxIndexError):
        store.extract_box(0, -1)


def test_failed_decode_does_not_mutate(store):
    store.register_image(0, "mem://sheet")
    store.register_config(0, FULL_2X2)
    store.extract_box(0, 0)
    assert store.reified(0) is not None

    assert store.register_image(0, "mem://missing") is False
    assert metrics.count("store.decode_failed") == 1
    # previous image and cached geometry survive
    assert store.reified(0).image_size == (800, 600)
    assert store.extract_box(0, 0) == b"((0, 0), (400, 300))"


def test_reified_geometry_is_memoized_and_evicted(store):
    store.register_image(0, "mem://sheet")
    store.register_config(0, FULL_2X2)
    first = store.reified(0)
    assert store.reified(0) is first
    assert metrics.count("store.reify_miss") == 1

    # new image: stale pixel geometry must go
    store.register_image(0, "mem://small")
    assert store.reified(0).image_size == (40, 30)
    assert store.extract_box(0, 0) == b"((0, 0), (20, 15))"

    # new config: same
    store.register_config(0, ExtractConfig(GridTemplate.uniform(1, 1), Rectangle((0, 0), (1, 1)), NO_PADS))
    assert store.extract_box(0, 0) == b"((0, 0), (40, 30))"
    assert metrics.count("store.reify_miss") == 3


def test_redundant_config_is_idempotent(store):
    store.register_image(0, "mem://sheet")
    store.register_config(0, FULL_2X2)
    store.register_config(0, FULL_2X2)
    assert store.config(0) == FULL_2X2
    assert store.extract_box(0, 1) == b"((400, 0), (400, 300))"


def test_default_pads_apply_when_config_has_none(fake_decoder, describe_regions):  # noqa: ARG001
    store = ExtractStore(fake_decoder, default_pads=Paddings(l=0.1, r=0.1, t=0, b=0))
    store.register_image(0, "mem://sheet")
    store.register_config(0, ExtractConfig(GridTemplate.uniform(2, 2), Rectangle((0, 0), (1, 1))))
    # box 1 at (400, 0) size (400, 300), padded 40px each side horizontally, clipped on the right
    assert store.extract_box(0, 1) == b"((360, 0), (440, 300))"


def test_empty_region_is_none(store):
    store.register_image(0, "mem://sheet")
    store.register_config(0, ExtractConfig(GridTemplate.uniform(1, 1), Rectangle((0.5, 0.5), (0, 0)), NO_PADS))
    assert store.extract_box(0, 0) is None


def test_box_outside_image_is_none(store):
    store.register_image(0, "mem://sheet")
    store.register_config(0, ExtractConfig(GridTemplate.uniform(1, 1), Rectangle((1.5, 1.5), (0.2, 0.2))))
    assert store.extract_box(0, 0) is None


def test_drop_forgets_handle(store):
    store.register_image(0, "mem://sheet")
    store.register_image(1, "mem://small")
    store.register_config(0, FULL_2X2)
    store.drop(0)
    assert store.handles() == [1]
    assert store.extract_box(0, 0) is None


def test_store_from_settings(tmp_path, fake_decoder):
    from grid_extract.settings_manager import SettingsManager

    sm = SettingsManager(str(tmp_path / "settings.json"))
    sm.set("encode_format", "webp")
    sm.set("default_pads", {"b": 0.0})
    store = ExtractStore.from_settings(sm, fake_decoder)
    assert store.encode_format == ".webp"
    assert store.default_pads == Paddings(0.1, 0.1, 0.1, 0.0)


def test_extract_box_with_real_codec(fake_decoder):
    pytest.importorskip("pyvips")
    from grid_extract.extract_engine.decoder import decode_bytes

    fake_decoder.images["mem://sheet"] = gradient_image(80, 60)
    store = ExtractStore(fake_decoder)
    store.register_image(0, "mem://sheet")
    store.register_config(0, FULL_2X2)

    out = store.extract_box(0, 3)
    assert out is not None and out.startswith(b"\x89PNG")
    # default pads (0.1, 0.1, 0.1, 0.2) around (40, 30, 40, 30), clipped to the image
    box = decode_bytes(out)
    assert box.shape == (33, 44, 3)
    assert tuple(box[0, 0]) == (36, 27, 63)
