from relens.batch import BatchOrchestrator, JobDescriptor, JobReport, JobState, build_jobs
from relens.core.color import ColorParams, ReinhardColorProcessor, auto_exposure, post_process
from relens.core.image import Image, RowOrder
from relens.core.lens import FisheyeEquidistant, FisheyeEquisolid, LensModel, Rectilinear, parse_lens_spec
from relens.core.resample import Interpolation, OutputSpec, reproject

__all__ = [
    "BatchOrchestrator",
    "JobDescriptor",
    "JobReport",
    "JobState",
    "build_jobs",
    "ColorParams",
    "ReinhardColorProcessor",
    "auto_exposure",
    "post_process",
    "Image",
    "RowOrder",
    "FisheyeEquidistant",
    "FisheyeEquisolid",
    "LensModel",
    "Rectilinear",
    "parse_lens_spec",
    "Interpolation",
    "OutputSpec",
    "reproject",
]
