from __future__ import annotations

import argparse
import math
import sys
from pathlib import Path

from loguru import logger

from relens.batch import BatchOrchestrator, JobState, build_jobs
from relens.config import (
    ConfigValidationError,
    RunSettings,
    build_output_config,
    load_camera_config,
    save_config,
)
from relens.core.color import ColorParams
from relens.core.image_io import OutputFormat
from relens.core.lens import LensError, LensModel, parse_lens_spec
from relens.core.resample import Interpolation, output_size
from relens.log import configure_logging
from relens.sources import list_input_files, single_input


MAX_EXPOSURE_STOPS = 64.0


class StartupError(Exception):
    pass


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relens",
        description=(
            "Reprojection tool for producing a variation of lens configurations "
            "based on one reference image given a known lens configuration."
        ),
    )

    io = parser.add_argument_group("Input/output")
    io.add_argument("--input-cfg", type=Path, required=True, metavar="json-file",
                    help="Input JSON file with lens and camera settings of the input images.")
    io.add_argument("--output-cfg", type=Path, required=True, metavar="json-file",
                    help="Output JSON file with lens and camera settings of the output images.")
    src = io.add_mutually_exclusive_group(required=True)
    src.add_argument("-i", "--input-dir", type=Path, metavar="dir", help="Directory of images to reproject.")
    src.add_argument("--single", type=Path, metavar="file", help="A single input file to convert.")
    io.add_argument("-o", "--output-dir", type=Path, required=True, metavar="dir",
                    help="Output directory for the reprojected images.")
    io.add_argument("--exr", action="store_true", help="Output EXR files. Color and auxiliary channels.")
    io.add_argument("--png", action="store_true", help="Output PNG files. Color only.")

    filt = parser.add_argument_group("Filter files")
    filt.add_argument("--filter-prefix", default="", metavar="prefix", help="Only include files starting with.")
    filt.add_argument("--filter-suffix", default="", metavar="suffix", help="Only include files ending with.")

    sampling = parser.add_argument_group("Sampling")
    sampling.add_argument("-s", "--samples", type=int, default=1, metavar="number",
                          help="Number of samples per dimension for interpolating.")
    interp = sampling.add_mutually_exclusive_group()
    interp.add_argument("--nn", dest="interpolation", action="store_const", const=Interpolation.NEAREST,
                        help="Nearest neighbor interpolation.")
    interp.add_argument("--bl", dest="interpolation", action="store_const", const=Interpolation.BILINEAR,
                        help="Bilinear interpolation.")
    interp.add_argument("--bc", dest="interpolation", action="store_const", const=Interpolation.BICUBIC,
                        help="Bicubic interpolation (default).")
    sampling.add_argument(
        "--scale",
        type=float,
        default=1.0,
        metavar="fraction",
        help=(
            "Output scale, as a fraction of the input size. Increase --samples when downscaling "
            "to prevent aliasing, e.g. --scale 0.5 --samples 2. Final dimensions are rounded towards zero."
        ),
    )

    optics = parser.add_argument_group("Output optics")
    optics.add_argument("--no-reproject", action="store_true", help="Do not reproject at all.")
    optics.add_argument("--rectilinear", metavar="focal_length,sensor_width",
                        help="Output rectilinear images with the given lens.")
    optics.add_argument("--equisolid", metavar="focal_length,sensor_width,fov",
                        help="Output equisolid fisheye images with the given lens (fov in radians).")
    optics.add_argument("--equidistant", metavar="fov",
                        help="Output equidistant fisheye images with the given fov (radians).")

    color = parser.add_argument_group("Color processing")
    color.add_argument("--auto-exposure", action="store_true",
                       help="Automatic exposure compensation and white balance.")
    color.add_argument("--exposure", type=float, default=0.0, metavar="EV",
                       help="Exposure compensation in stops to brighten or darken the pictures.")
    color.add_argument("--reinhard", type=float, default=1.0, metavar="max",
                       help="Reinhard tonemapping white point (after exposure) for the output images.")

    runtime = parser.add_argument_group("Runtime")
    runtime.add_argument("--skip-if-exists", action="store_true", help="Skip if the output files already exist.")
    runtime.add_argument("-j", "--parallel", type=int, default=1, metavar="threads",
                         help="Number of images processed in parallel.")
    runtime.add_argument("--dry-run", action="store_true", help="Only produce the output config.")
    runtime.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    parser.set_defaults(interpolation=Interpolation.BICUBIC)
    return parser


def _output_lens(args: argparse.Namespace, input_lens: LensModel, resolution: tuple[int, int]) -> LensModel:
    requested = [
        kind for kind in ("rectilinear", "equisolid", "equidistant") if getattr(args, kind) is not None
    ]
    if args.no_reproject:
        requested.append("no-reproject")
    if len(requested) > 1:
        raise StartupError(
            "only specify one output lens type: [--rectilinear, --equisolid, --equidistant, --no-reproject]"
        )
    if not requested:
        raise StartupError(
            "no output lens given: choose one of --rectilinear, --equisolid, --equidistant, --no-reproject"
        )
    kind = requested[0]
    if kind == "no-reproject":
        return input_lens
    return parse_lens_spec(kind, getattr(args, kind), resolution)


def _formats(args: argparse.Namespace) -> tuple[OutputFormat, ...]:
    formats = []
    if args.png:
        formats.append(OutputFormat.PNG)
    if args.exr:
        formats.append(OutputFormat.EXR)
    if not formats:
        raise StartupError("did not specify any output format. Choose --png or --exr (both are possible).")
    return tuple(formats)


def _check_numbers(args: argparse.Namespace) -> None:
    if not math.isfinite(args.exposure) or abs(args.exposure) > MAX_EXPOSURE_STOPS:
        raise StartupError(f"--exposure must be within [-{MAX_EXPOSURE_STOPS:g}, {MAX_EXPOSURE_STOPS:g}] stops")
    if args.samples < 1:
        raise StartupError("--samples must be >= 1")
    if args.parallel < 1:
        raise StartupError("--parallel must be >= 1")
    if not (math.isfinite(args.scale) and args.scale > 0.0):
        raise StartupError("--scale must be a finite number > 0")
    if not args.reinhard > 0.0:
        raise StartupError("--reinhard must be > 0")


def _startup_failed(parser: argparse.ArgumentParser, error: Exception) -> int:
    print(f"Error: {error}\n", file=sys.stderr)
    parser.print_usage(sys.stderr)
    return 1


def _write_startup_outputs(output_cfg: Path, document: dict, output_dir: Path) -> None:
    """Write the output config, then create the output directory; leave neither behind on failure."""
    if not output_cfg.parent.is_dir():
        raise StartupError(f"directory for --output-cfg does not exist: {output_cfg.parent}")
    if output_cfg.is_dir():
        raise StartupError(f"--output-cfg is a directory: {output_cfg}")
    save_config(output_cfg, document)
    logger.info("Saved output config: {}", output_cfg)
    logger.info("Creating directory: {}", output_dir)
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        output_cfg.unlink()
        raise


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        formats = _formats(args)
        _check_numbers(args)
        cfg = load_camera_config(args.input_cfg)
        logger.info("Found camera config: {}", cfg.document.get("camera"))
        output_lens = _output_lens(args, cfg.lens, cfg.resolution)
        out_resolution = output_size(cfg.resolution[0], cfg.resolution[1], args.scale)
        if out_resolution[0] <= 0 or out_resolution[1] <= 0:
            raise StartupError(f"--scale {args.scale} gives an empty output resolution")
        settings = RunSettings(
            output_dir=args.output_dir,
            formats=formats,
            input_lens=cfg.lens,
            output_lens=output_lens,
            scale=args.scale,
            samples=args.samples,
            interpolation=args.interpolation,
            color=ColorParams(
                auto_exposure=args.auto_exposure,
                exposure=2.0 ** args.exposure,
                white_point=args.reinhard,
            ),
            skip_if_exists=args.skip_if_exists,
            workers=args.parallel,
        )
        if args.input_dir is not None:
            inputs = list_input_files(args.input_dir, args.filter_prefix, args.filter_suffix)
        else:
            inputs = single_input(args.single)
        out_cfg = build_output_config(
            cfg, output_lens, out_resolution, prefix=args.filter_prefix, suffix=args.filter_suffix
        )
        _write_startup_outputs(args.output_cfg, out_cfg, settings.output_dir)
    except (StartupError, ConfigValidationError, LensError, OSError) as e:
        return _startup_failed(parser, e)

    if args.dry_run:
        logger.info("Dry-run. Exiting.")
        return 0

    reports = BatchOrchestrator(settings.workers).run(build_jobs(inputs, settings))
    for r in reports:
        if r.state == JobState.FAILED:
            logger.warning("Failed: {} ({})", r.job.input_path, r.error)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
