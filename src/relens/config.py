from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from relens.core.color import ColorParams
from relens.core.image_io import OutputFormat
from relens.core.lens import LensError, LensModel, lens_from_dict, lens_to_dict
from relens.core.resample import Interpolation


class ConfigValidationError(ValueError):
    pass


@dataclass(frozen=True)
class CameraConfig:
    resolution: tuple[int, int]
    lens: LensModel
    document: dict[str, Any]


@dataclass(frozen=True)
class RunSettings:
    """Everything a batch needs, assembled once before any job is submitted."""

    output_dir: Path
    formats: tuple[OutputFormat, ...]
    input_lens: LensModel
    output_lens: LensModel
    scale: float = 1.0
    samples: int = 1
    interpolation: Interpolation = Interpolation.BICUBIC
    color: ColorParams = ColorParams()
    skip_if_exists: bool = False
    workers: int = 1

    def __post_init__(self) -> None:
        _require(len(self.formats) > 0, "at least one output format is required")
        _require(self.scale > 0.0, "scale must be > 0")
        _require(self.samples >= 1, "samples must be >= 1")
        _require(self.workers >= 1, "workers must be >= 1")


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigValidationError(msg)


def load_camera_config(path: Path) -> CameraConfig:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigValidationError(f"Cannot read config {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigValidationError(f"Invalid JSON in config {path}: {e}") from e
    return parse_camera_config(data)


def parse_camera_config(data: dict[str, Any]) -> CameraConfig:
    _require(isinstance(data, dict), "config must be a JSON object")

    res = data.get("resolution")
    _require(isinstance(res, (list, tuple)) and len(res) == 2, "resolution must be [width,height]")
    try:
        w, h = int(res[0]), int(res[1])
    except (TypeError, ValueError) as e:
        raise ConfigValidationError(f"resolution must be integers: {e}") from e
    _require(w > 0 and h > 0, "resolution values must be > 0")

    camera = data.get("camera")
    _require(isinstance(camera, dict), "camera must be an object")
    try:
        lens = lens_from_dict(camera, (w, h))
    except LensError as e:
        raise ConfigValidationError(f"camera: {e}") from e

    frames = data.get("frames", [])
    _require(isinstance(frames, list), "frames must be a list")
    for i, fr in enumerate(frames):
        _require(isinstance(fr, dict) and isinstance(fr.get("name"), str), f"frames[{i}].name must be a string")

    return CameraConfig(resolution=(w, h), lens=lens, document=copy.deepcopy(data))


def keep_entry(name: str, prefix: str = "", suffix: str = "") -> bool:
    """True if `name` starts with `prefix` and ends with `suffix` (and is long enough for both)."""
    if len(name) < len(prefix) or len(name) < len(suffix):
        return False
    return name.startswith(prefix) and name.endswith(suffix)


def filter_frames(frames: Iterable[dict[str, Any]], prefix: str = "", suffix: str = "") -> list[dict[str, Any]]:
    return [fr for fr in frames if keep_entry(str(fr["name"]), prefix, suffix)]


def build_output_config(
    cfg: CameraConfig,
    lens: LensModel,
    resolution: tuple[int, int],
    *,
    prefix: str = "",
    suffix: str = "",
) -> dict[str, Any]:
    """Copy of the input document describing the reprojected output."""
    out = copy.deepcopy(cfg.document)
    out["camera"] = lens_to_dict(lens)
    out["resolution"] = [int(resolution[0]), int(resolution[1])]
    if "frames" in out:
        out["frames"] = filter_frames(out["frames"], prefix, suffix)
    return out


def save_config(path: Path, document: dict[str, Any]) -> Path:
    path = Path(path)
    path.write_text(json.dumps(document, indent=2), encoding="utf-8")
    return path
