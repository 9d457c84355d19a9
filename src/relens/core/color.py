from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import numpy as np

from relens.core.image import Image

# Rec. 709 luma weights.
LUMA_RGB = np.array([0.2126, 0.7152, 0.0722], dtype=np.float64)


@dataclass(frozen=True)
class ColorParams:
    auto_exposure: bool = False
    exposure: float = 1.0
    white_point: float = 1.0

    def __post_init__(self) -> None:
        if not self.exposure > 0.0:
            raise ValueError("exposure multiplier must be > 0")
        if not self.white_point > 0.0:
            raise ValueError("white_point must be > 0")

    @property
    def is_neutral(self) -> bool:
        return not self.auto_exposure and self.exposure == 1.0 and self.white_point == 1.0


class ColorProcessor(Protocol):
    def process(self, image: Image, params: ColorParams) -> None:
        ...


def reinhard(values: np.ndarray, white_point: float) -> np.ndarray:
    """Extended Reinhard operator L (1 + L / Lw^2) / (1 + L). Identity for Lw == 1."""
    L = np.asarray(values, dtype=np.float64)
    return L * (1.0 + L / (float(white_point) ** 2)) / (1.0 + L)


def luminance(color: np.ndarray) -> np.ndarray:
    """Per-pixel luminance of an (..., C) color array with C in {1, 3}."""
    color = np.asarray(color, dtype=np.float64)
    if color.shape[-1] == 3:
        return color @ LUMA_RGB
    return color[..., 0]


def post_process(image: Image, exposure: float, white_point: float) -> None:
    """Scale color channels by `exposure` then tone map them, in place."""
    if exposure == 1.0 and white_point == 1.0:
        return
    px = image.pixels
    cc = image.color_channels
    graded = reinhard(px[..., :cc].astype(np.float64) * float(exposure), white_point)
    px[..., :cc] = graded.astype(np.float32)


def log_average_luminance(image: Image, delta: float = 1e-4) -> float:
    lum = luminance(image.pixels[..., : image.color_channels])
    lum = lum[np.isfinite(lum)]
    if lum.size == 0:
        return 0.0
    return float(np.exp(np.mean(np.log(delta + np.maximum(lum, 0.0)))))


def gray_world_gains(image: Image) -> np.ndarray:
    """
    Per-channel gains that make the mean color neutral while keeping its luminance.

    Gray images, and RGB images with a channel without signal, get unit gains.
    """
    cc = image.color_channels
    if cc != 3:
        return np.ones(cc)
    color = image.pixels[..., :3].astype(np.float64).reshape(-1, 3)
    color = color[np.all(np.isfinite(color), axis=1)]
    if color.size == 0:
        return np.ones(3)
    means = color.mean(axis=0)
    if not np.all(means > 0.0):
        return np.ones(3)
    return float(means @ LUMA_RGB) / means


def white_balance(image: Image) -> np.ndarray:
    """Apply gray-world gains to the color channels in place; returns the gains."""
    gains = gray_world_gains(image)
    if np.all(gains == 1.0):
        return gains
    px = image.pixels
    cc = image.color_channels
    px[..., :cc] = (px[..., :cc].astype(np.float64) * gains).astype(np.float32)
    return gains


def auto_exposure(image: Image, white_point: float, key: float = 0.18) -> float:
    """
    White balance the image (gray world), expose it so its log-average luminance
    lands on `key`, then tone map.

    Returns the exposure multiplier used. Images without positive luminance keep
    multiplier 1.
    """
    white_balance(image)
    lum = luminance(image.pixels[..., : image.color_channels])
    if not np.any(lum[np.isfinite(lum)] > 0.0):
        exposure = 1.0
    else:
        exposure = float(key) / log_average_luminance(image)
    post_process(image, exposure, white_point)
    return exposure


@dataclass(frozen=True)
class ReinhardColorProcessor:
    key: float = 0.18

    def process(self, image: Image, params: ColorParams) -> None:
        if params.auto_exposure:
            auto_exposure(image, params.white_point, key=self.key)
        elif params.exposure != 1.0 or params.white_point != 1.0:
            post_process(image, params.exposure, params.white_point)
