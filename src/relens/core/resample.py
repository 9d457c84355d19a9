from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

from relens.core.image import Image, RowOrder
from relens.core.lens import LensModel


class Interpolation(Enum):
    NEAREST = "nearest"
    BILINEAR = "bilinear"
    BICUBIC = "bicubic"


@dataclass(frozen=True)
class OutputSpec:
    width: int
    height: int
    lens: LensModel


def output_size(width: int, height: int, scale: float) -> tuple[int, int]:
    """Scaled dimensions, rounded towards zero."""
    return int(width * scale), int(height * scale)


def _clamped(idx: np.ndarray, size: int) -> np.ndarray:
    return np.clip(idx, 0, size - 1)


def _sample_nearest(img: np.ndarray, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    H, W, _ = img.shape
    xi = _clamped(np.floor(x + 0.5).astype(np.intp), W)
    yi = _clamped(np.floor(y + 0.5).astype(np.intp), H)
    return img[yi, xi].astype(np.float64)


def _sample_bilinear(img: np.ndarray, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    H, W, _ = img.shape
    x0f = np.floor(x)
    y0f = np.floor(y)
    wx = (x - x0f)[..., None]
    wy = (y - y0f)[..., None]
    x0 = x0f.astype(np.intp)
    y0 = y0f.astype(np.intp)
    xa, xb = _clamped(x0, W), _clamped(x0 + 1, W)
    ya, yb = _clamped(y0, H), _clamped(y0 + 1, H)

    Ia = img[ya, xa].astype(np.float64)
    Ib = img[ya, xb].astype(np.float64)
    Ic = img[yb, xa].astype(np.float64)
    Id = img[yb, xb].astype(np.float64)
    return (1.0 - wx) * (1.0 - wy) * Ia + wx * (1.0 - wy) * Ib + (1.0 - wx) * wy * Ic + wx * wy * Id


def catmull_rom_weights(t: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Weights for taps at offsets -1, 0, +1, +2 around floor(x); t = x - floor(x)."""
    t2 = t * t
    t3 = t2 * t
    w_m1 = 0.5 * (-t3 + 2.0 * t2 - t)
    w_0 = 0.5 * (3.0 * t3 - 5.0 * t2 + 2.0)
    w_p1 = 0.5 * (-3.0 * t3 + 4.0 * t2 + t)
    w_p2 = 0.5 * (t3 - t2)
    return w_m1, w_0, w_p1, w_p2


def _sample_bicubic(img: np.ndarray, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    H, W, C = img.shape
    x0f = np.floor(x)
    y0f = np.floor(y)
    wxs = catmull_rom_weights(x - x0f)
    wys = catmull_rom_weights(y - y0f)
    x0 = x0f.astype(np.intp)
    y0 = y0f.astype(np.intp)

    out = np.zeros(x.shape + (C,), dtype=np.float64)
    for j, wy in enumerate(wys):
        yi = _clamped(y0 + (j - 1), H)
        row = np.zeros_like(out)
        for i, wx in enumerate(wxs):
            xi = _clamped(x0 + (i - 1), W)
            row += wx[..., None] * img[yi, xi]
        out += wy[..., None] * row
    return out


_SAMPLERS = {
    Interpolation.NEAREST: _sample_nearest,
    Interpolation.BILINEAR: _sample_bilinear,
    Interpolation.BICUBIC: _sample_bicubic,
}


def sample_image(img: np.ndarray, x: np.ndarray, y: np.ndarray, interpolation: Interpolation) -> np.ndarray:
    """
    Point-sample an (H, W, C) array at continuous pixel coordinates.

    Pixel centers are at integer coordinates. Neighbors outside the image are
    clamped to the border. Returns float64 values shaped x.shape + (C,).
    """
    img = np.asarray(img)
    if img.ndim == 2:
        img = img[:, :, None]
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    return _SAMPLERS[Interpolation(interpolation)](img, x, y)


def _rows_to_v(rows: np.ndarray, height: int, row_order: RowOrder) -> np.ndarray:
    v = rows / float(height)
    return v if row_order == RowOrder.TOP_FIRST else 1.0 - v


def _v_to_rows(v: np.ndarray, height: int, row_order: RowOrder) -> np.ndarray:
    if row_order == RowOrder.BOTTOM_FIRST:
        v = 1.0 - v
    return v * height - 0.5


def _check_geometry(src: Image, dst: Image) -> None:
    for img, name in ((src, "input"), (dst, "output")):
        if img.data is None:
            raise ValueError(f"{name} image buffer already released")
        if img.data.size != img.width * img.height * img.channels:
            raise ValueError(
                f"{name} buffer holds {img.data.size} samples, "
                f"geometry {img.width}x{img.height}x{img.channels} needs {img.width * img.height * img.channels}"
            )
    if src.channels != dst.channels:
        raise ValueError(f"channel mismatch: input {src.channels}, output {dst.channels}")
    if src.lens is None or dst.lens is None:
        raise ValueError("input and output images need a lens")


def identity_copy(src: Image, dst: Image) -> None:
    """Direct buffer copy, valid when both images share lens and size."""
    _check_geometry(src, dst)
    if (src.width, src.height) != (dst.width, dst.height):
        raise ValueError("identity copy requires equal image sizes")
    pixels = src.pixels
    if src.row_order != dst.row_order:
        pixels = pixels[::-1]
    dst.pixels[...] = pixels


def reproject_into(
    src: Image,
    dst: Image,
    samples: int,
    interpolation: Interpolation,
    *,
    rows_per_chunk: int = 128,
) -> None:
    """
    Fill `dst` with `src` as seen through `dst.lens`.

    Each output pixel averages a samples x samples grid of sub-pixel lookups.
    Sub-samples that fall out of either lens' frame, or outside the input image,
    are dropped from the average; pixels with no contributing sub-sample are 0.
    """
    _check_geometry(src, dst)
    n = int(samples)
    if n < 1:
        raise ValueError("samples must be >= 1")
    rows_per_chunk = max(1, int(rows_per_chunk))

    src_px = src.pixels
    out = dst.pixels
    in_lens = src.lens
    out_lens = dst.lens
    offsets = (np.arange(n, dtype=np.float64) + 0.5) / n
    cols = np.arange(dst.width, dtype=np.float64)

    for r0 in range(0, dst.height, rows_per_chunk):
        r1 = min(dst.height, r0 + rows_per_chunk)
        rows = np.arange(r0, r1, dtype=np.float64)
        acc = np.zeros((r1 - r0, dst.width, dst.channels), dtype=np.float64)
        count = np.zeros((r1 - r0, dst.width), dtype=np.int64)

        for oy in offsets:
            v_out = _rows_to_v(rows + oy, dst.height, dst.row_order)
            for ox in offsets:
                u_out = (cols + ox) / float(dst.width)
                uu, vv = np.meshgrid(u_out, v_out)

                rays, ok = out_lens.unproject(uu, vv)
                u_in, v_in, ok_in = in_lens.project(rays)
                ok = ok & ok_in & (u_in >= 0.0) & (u_in <= 1.0) & (v_in >= 0.0) & (v_in <= 1.0)
                if not np.any(ok):
                    continue

                x = np.where(ok, u_in * src.width - 0.5, 0.0)
                y = np.where(ok, _v_to_rows(v_in, src.height, src.row_order), 0.0)
                vals = sample_image(src_px, x, y, interpolation)
                acc += np.where(ok[..., None], vals, 0.0)
                count += ok

        hit = count > 0
        band = np.zeros_like(acc)
        band[hit] = acc[hit] / count[hit][:, None]
        out[r0:r1] = band.astype(np.float32)


def reproject(src: Image, output: OutputSpec, samples: int, interpolation: Interpolation) -> Image:
    """Allocate and return the reprojection of `src` into `output`."""
    dst = Image.allocate(
        output.width,
        output.height,
        src.channels,
        lens=output.lens,
        row_order=src.row_order,
        color_channels=src.color_channels,
    )
    try:
        if output.lens == src.lens and (output.width, output.height) == (src.width, src.height):
            identity_copy(src, dst)
        else:
            reproject_into(src, dst, samples, interpolation)
    except BaseException:
        dst.release()
        raise
    return dst
