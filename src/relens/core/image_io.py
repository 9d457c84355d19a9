from __future__ import annotations

from enum import Enum
from pathlib import Path

import cv2
import Imath
import numpy as np
import OpenEXR
from PIL import Image as PILImage
from PIL import UnidentifiedImageError

from relens.core.image import Image, RowOrder


class ImageIOError(OSError):
    pass


class OutputFormat(Enum):
    PNG = "png"
    EXR = "exr"

    @property
    def suffix(self) -> str:
        return f".{self.value}"


SUPPORTED_SUFFIXES = (".exr", ".png")


def _bgr_to_rgb(arr: np.ndarray) -> np.ndarray:
    if arr.ndim == 3 and arr.shape[2] in (3, 4):
        order = [2, 1, 0] + ([3] if arr.shape[2] == 4 else [])
        return arr[:, :, order]
    return arr


_rgb_to_bgr = _bgr_to_rgb


def _to_float(arr: np.ndarray) -> np.ndarray:
    if arr.dtype == np.uint8:
        return arr.astype(np.float32) / 255.0
    if arr.dtype == np.uint16:
        return arr.astype(np.float32) / 65535.0
    return arr.astype(np.float32)


def _read(p: Path) -> np.ndarray | None:
    if not p.is_file():
        raise ImageIOError(f"Missing input image: {p}")
    try:
        return cv2.imread(str(p), cv2.IMREAD_UNCHANGED)
    except cv2.error as e:
        raise ImageIOError(f"Cannot decode {p}: {e}") from e


def load_png(path: str | Path) -> Image:
    """
    Load a PNG as float32 in [0, 1].

    Primary backend is OpenCV; Pillow is used when OpenCV cannot decode the file.
    """
    p = Path(path)
    arr = _read(p)
    if arr is not None:
        arr = _bgr_to_rgb(arr)
    else:
        try:
            with PILImage.open(p) as im:
                if im.mode not in ("L", "LA", "RGB", "RGBA", "I;16"):
                    im = im.convert("RGBA" if "A" in im.getbands() else "RGB")
                arr = np.asarray(im)
        except (UnidentifiedImageError, OSError) as e:
            raise ImageIOError(f"Cannot decode PNG {p}: {e}") from e
    return Image.from_pixels(_to_float(arr))


_FLOAT = Imath.PixelType(Imath.PixelType.FLOAT)


def exr_channel_names(channels: int, color_channels: int) -> list[str]:
    """
    EXR channel names for an interleaved buffer.

    Color is R,G,B (or Y for gray); the first auxiliary channel is A and the
    rest are aux.1, aux.2, ...
    """
    if color_channels == 3:
        names = ["R", "G", "B"]
    elif color_channels == 1:
        names = ["Y"]
    else:
        names = [f"C{i}" for i in range(color_channels)]
    for i in range(channels - color_channels):
        names.append("A" if i == 0 else f"aux.{i}")
    return names


def _exr_layout(names: list[str]) -> tuple[list[str], int]:
    """Order file channels as color first, then A, then the rest by name."""
    if all(c in names for c in ("R", "G", "B")):
        color = ["R", "G", "B"]
    elif "Y" in names:
        color = ["Y"]
    else:
        color = []
    rest = [n for n in names if n not in color]
    aux = (["A"] if "A" in rest else []) + sorted(n for n in rest if n != "A")
    return color + aux, len(color)


def load_exr(path: str | Path) -> Image:
    p = Path(path)
    if not p.is_file():
        raise ImageIOError(f"Missing input image: {p}")
    try:
        exr = OpenEXR.InputFile(str(p))
    except (OSError, RuntimeError, ValueError) as e:
        raise ImageIOError(f"Cannot decode EXR {p}: {e}") from e
    try:
        header = exr.header()
        dw = header["dataWindow"]
        width = dw.max.x - dw.min.x + 1
        height = dw.max.y - dw.min.y + 1
        order, color_channels = _exr_layout(list(header["channels"]))
        if not order:
            raise ImageIOError(f"EXR {p} has no channels")
        planes = [
            np.frombuffer(exr.channel(name, _FLOAT), dtype=np.float32).reshape(height, width)
            for name in order
        ]
    except (OSError, RuntimeError, ValueError, KeyError) as e:
        raise ImageIOError(f"Cannot decode EXR {p}: {e}") from e
    finally:
        exr.close()
    return Image.from_pixels(np.stack(planes, axis=-1), color_channels=color_channels)


def _top_first(image: Image) -> np.ndarray:
    px = image.pixels
    return px[::-1] if image.row_order == RowOrder.BOTTOM_FIRST else px


def _write_png(p: Path, arr: np.ndarray) -> None:
    if arr.shape[2] == 1:
        arr = arr[:, :, 0]
    try:
        ok = cv2.imwrite(str(p), np.ascontiguousarray(_rgb_to_bgr(arr)))
    except cv2.error as e:
        raise ImageIOError(f"Cannot write PNG {p}: {e}") from e
    if not ok:
        raise ImageIOError(f"Cannot write PNG {p}")


def save_png(image: Image, path: str | Path) -> None:
    """8-bit PNG of the color channels, clipped to [0, 1]."""
    color = _top_first(image)[..., : image.color_channels]
    u8 = np.clip(color.astype(np.float64) * 255.0 + 0.5, 0.0, 255.0).astype(np.uint8)
    _write_png(Path(path), u8)


def save_exr(image: Image, path: str | Path) -> None:
    """32-bit float EXR of all channels (color plus auxiliary)."""
    p = Path(path)
    px = _top_first(image).astype(np.float32)
    names = exr_channel_names(image.channels, image.color_channels)
    header = OpenEXR.Header(image.width, image.height)
    header["channels"] = {name: Imath.Channel(_FLOAT) for name in names}
    planes = {name: np.ascontiguousarray(px[:, :, i]).tobytes() for i, name in enumerate(names)}
    try:
        exr = OpenEXR.OutputFile(str(p), header)
    except (OSError, RuntimeError, ValueError) as e:
        raise ImageIOError(f"Cannot write EXR {p}: {e}") from e
    try:
        exr.writePixels(planes)
    except (OSError, RuntimeError, ValueError) as e:
        raise ImageIOError(f"Cannot write EXR {p}: {e}") from e
    finally:
        exr.close()


class ImageCodec:
    """Dispatches load/save by file suffix or requested output format."""

    def load(self, path: str | Path) -> Image:
        p = Path(path)
        suffix = p.suffix.lower()
        if suffix == ".png":
            return load_png(p)
        if suffix == ".exr":
            return load_exr(p)
        raise ImageIOError(f"Unsupported image format: {p.name} (expected png|exr)")

    def save(self, image: Image, path: str | Path, fmt: OutputFormat) -> None:
        if fmt == OutputFormat.PNG:
            save_png(image, path)
            return
        if fmt == OutputFormat.EXR:
            save_exr(image, path)
            return
        raise ImageIOError(f"Unsupported output format: {fmt}")
