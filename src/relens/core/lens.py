from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Union

import numpy as np


class LensError(ValueError):
    pass


class LensSpecError(LensError):
    pass


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise LensError(msg)


def sensor_height_for(sensor_width: float, resolution: tuple[int, int]) -> float:
    """Sensor height matching the pixel aspect of `resolution` (width, height)."""
    w, h = resolution
    _require(w > 0 and h > 0, "resolution must be > 0")
    return float(sensor_width) * float(h) / float(w)


@dataclass(frozen=True)
class _Lens(ABC):
    sensor_width: float
    sensor_height: float

    def __post_init__(self) -> None:
        _require(self.sensor_width > 0.0, "sensor_width must be > 0")
        _require(self.sensor_height > 0.0, "sensor_height must be > 0")

    def sensor_xy(self, u: np.ndarray, v: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Normalized image coordinates -> sensor plane (origin on axis, y up)."""
        u = np.asarray(u, dtype=np.float64)
        v = np.asarray(v, dtype=np.float64)
        return (u - 0.5) * self.sensor_width, (0.5 - v) * self.sensor_height

    def normalized_uv(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Inverse of `sensor_xy`."""
        return x / self.sensor_width + 0.5, 0.5 - y / self.sensor_height

    @abstractmethod
    def unproject(self, u: np.ndarray, v: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """
        Map normalized image coordinates to unit rays (..., 3).

        Returns (rays, valid). Rays where `valid` is False are out of frame and
        their values are unspecified.
        """

    @abstractmethod
    def project(self, rays: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Map rays (..., 3) to normalized image coordinates. Returns (u, v, valid)."""

    @abstractmethod
    def to_dict(self) -> dict[str, Any]:
        ...


def _split_rays(rays: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    rays = np.asarray(rays, dtype=np.float64)
    if rays.shape[-1] != 3:
        raise ValueError("rays must have shape (..., 3)")
    return rays[..., 0], rays[..., 1], rays[..., 2]


def _rays_from_polar(x: np.ndarray, y: np.ndarray, r: np.ndarray, theta: np.ndarray) -> np.ndarray:
    # Direction in the sensor plane is (x, y) / r; the on-axis point maps to +z.
    safe_r = np.where(r > 0.0, r, 1.0)
    s = np.sin(theta)
    dx = np.where(r > 0.0, s * x / safe_r, 0.0)
    dy = np.where(r > 0.0, s * y / safe_r, 0.0)
    return np.stack([dx, dy, np.cos(theta)], axis=-1)


def _polar_from_rays(rays: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Returns (theta, cos_phi, sin_phi) of rays around the optical axis."""
    X, Y, Z = _split_rays(rays)
    rho = np.hypot(X, Y)
    theta = np.arctan2(rho, Z)
    safe_rho = np.where(rho > 0.0, rho, 1.0)
    cos_phi = np.where(rho > 0.0, X / safe_rho, 0.0)
    sin_phi = np.where(rho > 0.0, Y / safe_rho, 0.0)
    return theta, cos_phi, sin_phi


@dataclass(frozen=True)
class Rectilinear(_Lens):
    focal_length: float

    def __post_init__(self) -> None:
        super().__post_init__()
        _require(self.focal_length > 0.0, "focal_length must be > 0")

    def unproject(self, u: np.ndarray, v: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        x, y = self.sensor_xy(u, v)
        dirs = np.stack([x, y, np.full_like(x, float(self.focal_length))], axis=-1)
        dirs /= np.linalg.norm(dirs, axis=-1, keepdims=True)
        valid = np.ones(x.shape, dtype=bool)
        return dirs, valid

    def project(self, rays: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        X, Y, Z = _split_rays(rays)
        front = Z > 0.0
        safe_z = np.where(front, Z, 1.0)
        x = self.focal_length * X / safe_z
        y = self.focal_length * Y / safe_z
        inside = (np.abs(x) <= 0.5 * self.sensor_width) & (np.abs(y) <= 0.5 * self.sensor_height)
        u, v = self.normalized_uv(x, y)
        return u, v, front & inside

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "rectilinear",
            "focal_length": float(self.focal_length),
            "sensor_width": float(self.sensor_width),
            "sensor_height": float(self.sensor_height),
        }


@dataclass(frozen=True)
class FisheyeEquisolid(_Lens):
    """Equisolid-angle fisheye: r = 2 f sin(theta / 2)."""

    focal_length: float
    fov: float

    def __post_init__(self) -> None:
        super().__post_init__()
        _require(self.focal_length > 0.0, "focal_length must be > 0")
        _require(0.0 < self.fov < 2.0 * math.pi, "fov must be in (0, 2*pi) radians")

    def unproject(self, u: np.ndarray, v: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        x, y = self.sensor_xy(u, v)
        r = np.hypot(x, y)
        s = r / (2.0 * self.focal_length)
        theta = 2.0 * np.arcsin(np.clip(s, 0.0, 1.0))
        valid = (s <= 1.0) & (theta <= 0.5 * self.fov)
        return _rays_from_polar(x, y, r, theta), valid

    def project(self, rays: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        theta, cos_phi, sin_phi = _polar_from_rays(rays)
        valid = theta <= 0.5 * self.fov
        r = 2.0 * self.focal_length * np.sin(0.5 * theta)
        u, v = self.normalized_uv(r * cos_phi, r * sin_phi)
        return u, v, valid

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "fisheye_equisolid",
            "focal_length": float(self.focal_length),
            "sensor_width": float(self.sensor_width),
            "sensor_height": float(self.sensor_height),
            "fov": float(self.fov),
        }


@dataclass(frozen=True)
class FisheyeEquidistant(_Lens):
    """
    Equidistant fisheye: r = f theta.

    The focal length is implied by the field of view so that the image circle
    reaches the left/right sensor edges at theta = fov / 2.
    """

    fov: float

    def __post_init__(self) -> None:
        super().__post_init__()
        _require(0.0 < self.fov < 2.0 * math.pi, "fov must be in (0, 2*pi) radians")

    @property
    def focal_length(self) -> float:
        return float(self.sensor_width) / float(self.fov)

    def unproject(self, u: np.ndarray, v: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        x, y = self.sensor_xy(u, v)
        r = np.hypot(x, y)
        theta = r / self.focal_length
        valid = theta <= 0.5 * self.fov
        return _rays_from_polar(x, y, r, theta), valid

    def project(self, rays: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        theta, cos_phi, sin_phi = _polar_from_rays(rays)
        valid = theta <= 0.5 * self.fov
        r = self.focal_length * theta
        u, v = self.normalized_uv(r * cos_phi, r * sin_phi)
        return u, v, valid

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "fisheye_equidistant",
            "sensor_width": float(self.sensor_width),
            "sensor_height": float(self.sensor_height),
            "fov": float(self.fov),
        }


LensModel = Union[Rectilinear, FisheyeEquisolid, FisheyeEquidistant]

# Sensor width used for equidistant output lenses, which are specified by fov alone.
EQUIDISTANT_SENSOR_WIDTH = 36.0


def _rectilinear_from_dict(d: dict[str, Any], resolution: tuple[int, int]) -> Rectilinear:
    sw = float(d["sensor_width"])
    return Rectilinear(
        sensor_width=sw,
        sensor_height=sensor_height_for(sw, resolution),
        focal_length=float(d["focal_length"]),
    )


def _equisolid_from_dict(d: dict[str, Any], resolution: tuple[int, int]) -> FisheyeEquisolid:
    sw = float(d["sensor_width"])
    return FisheyeEquisolid(
        sensor_width=sw,
        sensor_height=sensor_height_for(sw, resolution),
        focal_length=float(d["focal_length"]),
        fov=float(d["fov"]),
    )


def _equidistant_from_dict(d: dict[str, Any], resolution: tuple[int, int]) -> FisheyeEquidistant:
    sw = float(d.get("sensor_width", EQUIDISTANT_SENSOR_WIDTH))
    return FisheyeEquidistant(
        sensor_width=sw,
        sensor_height=sensor_height_for(sw, resolution),
        fov=float(d["fov"]),
    )


_LENS_READERS: dict[str, Callable[[dict[str, Any], tuple[int, int]], LensModel]] = {
    "rectilinear": _rectilinear_from_dict,
    "fisheye_equisolid": _equisolid_from_dict,
    "fisheye_equidistant": _equidistant_from_dict,
}


def lens_from_dict(d: dict[str, Any], resolution: tuple[int, int]) -> LensModel:
    lens_type = d.get("type")
    reader = _LENS_READERS.get(str(lens_type))
    if reader is None:
        raise LensError(f"unsupported lens type: {lens_type!r} (expected {'|'.join(_LENS_READERS)})")
    try:
        return reader(d, resolution)
    except LensError:
        raise
    except KeyError as e:
        raise LensError(f"lens {lens_type} missing key: {e}") from e
    except (TypeError, ValueError) as e:
        raise LensError(f"lens {lens_type} invalid value: {e}") from e


def lens_to_dict(lens: LensModel) -> dict[str, Any]:
    return lens.to_dict()


def _parse_fields(kind: str, text: str, count: int, fmt: str) -> list[float]:
    parts = [p.strip() for p in str(text).split(",")]
    if len(parts) != count:
        raise LensSpecError(f"Required format for --{kind} {fmt}, got {text!r}")
    try:
        return [float(p) for p in parts]
    except ValueError as e:
        raise LensSpecError(f"Required format for --{kind} {fmt}, got {text!r}") from e


def parse_lens_spec(kind: str, text: str, resolution: tuple[int, int]) -> LensModel:
    """
    Parse an output lens description given on the command line.

      rectilinear: "focal_length,sensor_width"
      equisolid:   "focal_length,sensor_width,fov"
      equidistant: "fov"

    Angles are in radians, lengths in mm.
    """
    try:
        if kind == "rectilinear":
            f, sw = _parse_fields(kind, text, 2, "focal_length,sensor_width")
            return Rectilinear(sensor_width=sw, sensor_height=sensor_height_for(sw, resolution), focal_length=f)
        if kind == "equisolid":
            f, sw, fov = _parse_fields(kind, text, 3, "focal_length,sensor_width,fov")
            return FisheyeEquisolid(
                sensor_width=sw, sensor_height=sensor_height_for(sw, resolution), focal_length=f, fov=fov
            )
        if kind == "equidistant":
            (fov,) = _parse_fields(kind, text, 1, "fov")
            sw = EQUIDISTANT_SENSOR_WIDTH
            return FisheyeEquidistant(sensor_width=sw, sensor_height=sensor_height_for(sw, resolution), fov=fov)
    except LensSpecError:
        raise
    except LensError as e:
        raise LensSpecError(f"--{kind} {text!r}: {e}") from e
    raise LensSpecError(f"unknown lens kind: {kind} (expected rectilinear|equisolid|equidistant)")
