from __future__ import annotations

import json
from pathlib import Path

import pytest

from relens.config import (
    ConfigValidationError,
    RunSettings,
    build_output_config,
    filter_frames,
    keep_entry,
    load_camera_config,
    parse_camera_config,
    save_config,
)
from relens.core.image_io import OutputFormat
from relens.core.lens import FisheyeEquisolid, Rectilinear
from relens.sources import list_input_files, single_input


def _doc() -> dict:
    return {
        "resolution": [1920, 1080],
        "camera": {"type": "rectilinear", "focal_length": 35.0, "sensor_width": 36.0},
        "frames": [{"name": "shot_010"}, {"name": "shot_011"}, {"name": "x"}],
        "scene": "demo",
    }


def test_filter_keeps_matching_names():
    assert keep_entry("shot_010", "shot_", "0")
    assert not keep_entry("x", "shot_", "")
    assert not keep_entry("shot_011", "shot_", "0")
    assert not keep_entry("ab", "", "abc")
    assert keep_entry("anything")
    names = [fr["name"] for fr in filter_frames(_doc()["frames"], "shot_", "0")]
    assert names == ["shot_010"]


def test_parse_camera_config():
    cfg = parse_camera_config(_doc())
    assert cfg.resolution == (1920, 1080)
    assert isinstance(cfg.lens, Rectilinear)
    assert cfg.lens.sensor_height == pytest.approx(20.25)


@pytest.mark.parametrize(
    "patch",
    [
        {"resolution": [1920]},
        {"resolution": [0, 1080]},
        {"resolution": ["a", 1080]},
        {"camera": None},
        {"camera": {"type": "rectilinear", "sensor_width": 36.0}},
        {"camera": {"type": "panini", "focal_length": 35.0, "sensor_width": 36.0}},
        {"frames": [{"id": 1}]},
    ],
)
def test_parse_camera_config_rejects(patch):
    doc = _doc()
    doc.update(patch)
    with pytest.raises(ConfigValidationError):
        parse_camera_config(doc)


def test_load_camera_config_errors(tmp_path: Path) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigValidationError):
        load_camera_config(bad)
    with pytest.raises(ConfigValidationError):
        load_camera_config(tmp_path / "missing.json")


def test_build_output_config_is_a_fresh_document(tmp_path: Path) -> None:
    src = tmp_path / "in.json"
    src.write_text(json.dumps(_doc()), encoding="utf-8")
    cfg = load_camera_config(src)

    lens = FisheyeEquisolid(sensor_width=36.0, sensor_height=20.25, focal_length=10.5, fov=3.0)
    out = build_output_config(cfg, lens, (960, 540), prefix="shot_")
    assert out["camera"]["type"] == "fisheye_equisolid"
    assert out["camera"]["fov"] == 3.0
    assert out["resolution"] == [960, 540]
    assert [fr["name"] for fr in out["frames"]] == ["shot_010", "shot_011"]
    assert out["scene"] == "demo"

    # The input document is untouched.
    assert cfg.document["camera"]["type"] == "rectilinear"
    assert len(cfg.document["frames"]) == 3

    path = save_config(tmp_path / "out.json", out)
    again = load_camera_config(path)
    assert again.lens == FisheyeEquisolid(sensor_width=36.0, sensor_height=20.25, focal_length=10.5, fov=3.0)
    assert again.resolution == (960, 540)


def test_run_settings_validation(tmp_path: Path) -> None:
    lens = parse_camera_config(_doc()).lens
    with pytest.raises(ConfigValidationError):
        RunSettings(output_dir=tmp_path, formats=(), input_lens=lens, output_lens=lens)
    with pytest.raises(ConfigValidationError):
        RunSettings(output_dir=tmp_path, formats=(OutputFormat.PNG,), input_lens=lens, output_lens=lens, scale=0.0)
    with pytest.raises(ConfigValidationError):
        RunSettings(output_dir=tmp_path, formats=(OutputFormat.PNG,), input_lens=lens, output_lens=lens, workers=0)


def test_list_input_files(tmp_path: Path) -> None:
    for name in ("shot_011.exr", "shot_010.png", "x.png", "shot_020.txt", "shot_030.PNG"):
        (tmp_path / name).write_bytes(b"")
    (tmp_path / "shot_040.png").mkdir()

    files = list_input_files(tmp_path, prefix="shot_")
    assert [p.name for p in files] == ["shot_010.png", "shot_011.exr", "shot_030.PNG"]

    files = list_input_files(tmp_path, prefix="shot_", suffix="0")
    assert [p.name for p in files] == ["shot_010.png", "shot_030.PNG"]

    with pytest.raises(FileNotFoundError):
        list_input_files(tmp_path / "nope")


def test_single_input(tmp_path: Path) -> None:
    p = tmp_path / "a.png"
    p.write_bytes(b"")
    assert single_input(p) == [p]
    with pytest.raises(FileNotFoundError):
        single_input(tmp_path / "b.png")
