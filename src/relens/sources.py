from __future__ import annotations

from pathlib import Path

from relens.config import keep_entry
from relens.core.image_io import SUPPORTED_SUFFIXES


def list_input_files(input_dir: Path, prefix: str = "", suffix: str = "") -> list[Path]:
    """
    Sorted png/exr files directly inside `input_dir`.

    The prefix/suffix filter applies to the file stem, the same names used for
    frames in the camera config.
    """
    input_dir = Path(input_dir)
    if not input_dir.is_dir():
        raise FileNotFoundError(f"Missing input directory: {input_dir}")
    paths = sorted(p for p in input_dir.iterdir() if p.is_file())
    return [
        p
        for p in paths
        if p.suffix.lower() in SUPPORTED_SUFFIXES and keep_entry(p.stem, prefix, suffix)
    ]


def single_input(path: Path) -> list[Path]:
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Missing input file: {path}")
    return [path]
