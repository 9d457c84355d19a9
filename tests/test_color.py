import numpy as np
import pytest

from relens.core.color import (
    LUMA_RGB,
    ColorParams,
    ReinhardColorProcessor,
    auto_exposure,
    gray_world_gains,
    log_average_luminance,
    post_process,
    reinhard,
    white_balance,
)
from relens.core.image import Image


def _image(pixels) -> Image:
    return Image.from_pixels(np.asarray(pixels, dtype=np.float32))


def test_neutral_post_process_is_noop():
    rng = np.random.default_rng(0)
    img = _image(rng.uniform(0.0, 4.0, size=(5, 6, 3)))
    before = img.data.copy()
    post_process(img, 1.0, 1.0)
    assert np.array_equal(img.data, before)


def test_exposure_multiplies_color_samples():
    img = _image(np.full((2, 2, 3), 0.25))
    post_process(img, 2.0, 1.0)
    assert np.allclose(img.pixels, 0.5)


def test_reinhard_curve():
    out = reinhard(np.array([0.0, 1.0, 4.0]), white_point=4.0)
    assert out.tolist() == pytest.approx([0.0, 0.53125, 1.0])
    # White point 1 leaves values untouched.
    x = np.array([0.1, 2.0, 10.0])
    assert np.allclose(reinhard(x, 1.0), x)


def test_auxiliary_channels_are_not_graded():
    px = np.zeros((3, 3, 4), dtype=np.float32)
    px[..., :3] = 0.5
    px[..., 3] = 10.0  # depth
    img = _image(px)
    post_process(img, 2.0, 4.0)
    assert np.allclose(img.pixels[..., 3], 10.0)
    assert np.allclose(img.pixels[..., :3], 1.0 * (1.0 + 1.0 / 16.0) / 2.0)


def test_auto_exposure_hits_key_value():
    img = _image(np.full((4, 4, 3), 0.5))
    m = auto_exposure(img, white_point=1.0)
    assert m == pytest.approx(0.18 / 0.5, rel=1e-3)
    assert np.allclose(img.pixels, 0.18, atol=1e-3)


def test_auto_exposure_depends_on_content_only():
    rng = np.random.default_rng(4)
    px = rng.uniform(0.0, 3.0, size=(16, 12, 3)).astype(np.float32)
    a = _image(px)
    b = _image(px)
    shuffled = _image(rng.permutation(px.reshape(-1, 3)).reshape(px.shape))

    ma = auto_exposure(a, 2.0)
    mb = auto_exposure(b, 2.0)
    ms = auto_exposure(shuffled, 2.0)
    assert ma == mb
    assert np.array_equal(a.data, b.data)
    assert ms == pytest.approx(ma, rel=1e-9)


def test_auto_exposure_on_black_image_keeps_multiplier():
    img = _image(np.zeros((3, 3, 3)))
    assert auto_exposure(img, 1.0) == 1.0
    assert np.all(img.data == 0.0)


def test_auto_exposure_neutralizes_color_cast():
    img = _image(np.tile(np.array([0.2, 0.4, 0.8], dtype=np.float32), (4, 5, 1)))
    auto_exposure(img, 1.0)
    px = img.pixels
    assert np.allclose(px[..., 0], px[..., 1], atol=1e-5)
    assert np.allclose(px[..., 1], px[..., 2], atol=1e-5)
    assert np.allclose(px, 0.18, atol=1e-3)


def test_gray_world_gains_keep_luminance_and_skip_gray():
    px = np.random.default_rng(7).uniform(0.1, 2.0, size=(6, 6, 3)).astype(np.float32)
    gains = gray_world_gains(_image(px))
    means = px.reshape(-1, 3).astype(np.float64).mean(axis=0)
    assert float((means * gains) @ LUMA_RGB) == pytest.approx(float(means @ LUMA_RGB))
    assert np.allclose(means * gains, (means * gains)[0])

    gray = _image(np.full((2, 2, 1), 0.3))
    assert np.array_equal(gray_world_gains(gray), np.ones(1))

    no_blue = px.copy()
    no_blue[..., 2] = 0.0
    assert np.array_equal(gray_world_gains(_image(no_blue)), np.ones(3))


def test_white_balance_leaves_auxiliary_channels():
    px = np.zeros((2, 2, 4), dtype=np.float32)
    px[..., :3] = (0.1, 0.3, 0.5)
    px[..., 3] = 7.0
    img = _image(px)
    white_balance(img)
    assert np.all(img.pixels[..., 3] == 7.0)
    assert np.allclose(img.pixels[..., 0], img.pixels[..., 2], atol=1e-6)


def test_log_average_luminance_gray():
    img = _image(np.full((2, 2, 1), 0.25))
    assert log_average_luminance(img, delta=0.0) == pytest.approx(0.25)


def test_processor_dispatch():
    proc = ReinhardColorProcessor()

    img = _image(np.full((2, 2, 3), 0.3))
    before = img.data.copy()
    proc.process(img, ColorParams())
    assert np.array_equal(img.data, before)

    proc.process(img, ColorParams(exposure=2.0))
    assert np.allclose(img.pixels, 0.6)

    img = _image(np.full((2, 2, 3), 0.9))
    proc.process(img, ColorParams(auto_exposure=True))
    assert np.allclose(img.pixels, 0.18, atol=1e-3)


def test_color_params_validation():
    assert ColorParams().is_neutral
    assert not ColorParams(white_point=2.0).is_neutral
    with pytest.raises(ValueError):
        ColorParams(white_point=0.0)
    with pytest.raises(ValueError):
        ColorParams(exposure=-1.0)
