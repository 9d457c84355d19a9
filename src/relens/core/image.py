from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np

from relens.core.lens import LensModel


class RowOrder(Enum):
    TOP_FIRST = "top_first"
    BOTTOM_FIRST = "bottom_first"


def default_color_channels(channels: int) -> int:
    """Gray (+alpha) images carry one color channel; everything else three."""
    return 3 if channels >= 3 else 1


@dataclass(eq=False)
class Image:
    """
    Float32 pixel buffer owned by a single job.

    `data` is flat, row-major, interleaved: index ((row * width) + col) * channels + c.
    Leading `color_channels` channels are color; the rest are auxiliary (alpha, depth).

    The buffer is released when leaving a `with` block (or on `release()`);
    later pixel access raises RuntimeError.
    """

    width: int
    height: int
    channels: int
    data: Optional[np.ndarray]
    lens: Optional[LensModel] = None
    row_order: RowOrder = RowOrder.TOP_FIRST
    color_channels: int = field(default=0)

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0 or self.channels <= 0:
            raise ValueError(f"image dimensions must be > 0, got {self.width}x{self.height}x{self.channels}")
        if self.data is None:
            raise ValueError("image data is required")
        data = np.ascontiguousarray(self.data, dtype=np.float32).reshape(-1)
        expected = self.width * self.height * self.channels
        if data.size != expected:
            raise ValueError(f"image buffer holds {data.size} samples, expected {expected}")
        self.data = data
        if self.color_channels <= 0:
            self.color_channels = default_color_channels(self.channels)
        if self.color_channels > self.channels:
            raise ValueError("color_channels must be <= channels")

    @classmethod
    def allocate(
        cls,
        width: int,
        height: int,
        channels: int,
        *,
        lens: Optional[LensModel] = None,
        row_order: RowOrder = RowOrder.TOP_FIRST,
        color_channels: int = 0,
    ) -> Image:
        if width <= 0 or height <= 0 or channels <= 0:
            raise ValueError(f"image dimensions must be > 0, got {width}x{height}x{channels}")
        return cls(
            width=width,
            height=height,
            channels=channels,
            data=np.zeros(width * height * channels, dtype=np.float32),
            lens=lens,
            row_order=row_order,
            color_channels=color_channels,
        )

    @classmethod
    def from_pixels(
        cls,
        pixels: np.ndarray,
        *,
        lens: Optional[LensModel] = None,
        row_order: RowOrder = RowOrder.TOP_FIRST,
        color_channels: int = 0,
    ) -> Image:
        """Wrap an (H, W) or (H, W, C) array. The array is copied to float32."""
        arr = np.asarray(pixels)
        if arr.ndim == 2:
            arr = arr[:, :, None]
        if arr.ndim != 3:
            raise ValueError("pixels must be (H,W) or (H,W,C)")
        h, w, c = arr.shape
        return cls(
            width=w,
            height=h,
            channels=c,
            data=np.array(arr, dtype=np.float32).reshape(-1),
            lens=lens,
            row_order=row_order,
            color_channels=color_channels,
        )

    @property
    def released(self) -> bool:
        return self.data is None

    @property
    def pixels(self) -> np.ndarray:
        """(H, W, C) view on the buffer."""
        if self.data is None:
            raise RuntimeError("image buffer already released")
        return self.data.reshape(self.height, self.width, self.channels)

    def release(self) -> None:
        self.data = None

    def __enter__(self) -> Image:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
