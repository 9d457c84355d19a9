from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

from loguru import logger

from relens.config import RunSettings
from relens.core.color import ColorParams, ColorProcessor, ReinhardColorProcessor
from relens.core.image import Image
from relens.core.image_io import ImageCodec, OutputFormat
from relens.core.lens import LensModel
from relens.core.resample import Interpolation, OutputSpec, output_size, reproject


class JobState(Enum):
    QUEUED = "queued"
    LOADING = "loading"
    TRANSFORMING = "transforming"
    COLOR_PROCESSING = "color_processing"
    SAVING = "saving"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobState.DONE, JobState.FAILED)


@dataclass(frozen=True)
class JobDescriptor:
    input_path: Path
    outputs: tuple[tuple[OutputFormat, Path], ...]
    input_lens: LensModel
    output_lens: LensModel
    scale: float = 1.0
    samples: int = 1
    interpolation: Interpolation = Interpolation.BICUBIC
    color: ColorParams = ColorParams()
    skip_if_exists: bool = False

    @property
    def name(self) -> str:
        return self.input_path.stem

    def outputs_exist(self) -> bool:
        return all(p.exists() for _, p in self.outputs)


@dataclass
class JobReport:
    job: JobDescriptor
    states: list[JobState] = field(default_factory=lambda: [JobState.QUEUED])
    error: Optional[str] = None

    @property
    def state(self) -> JobState:
        return self.states[-1]

    def advance(self, state: JobState) -> None:
        if self.state.terminal:
            raise RuntimeError(f"job {self.job.name} already {self.state.value}")
        self.states.append(state)


class Codec(Protocol):
    def load(self, path: Path) -> Image:
        ...

    def save(self, image: Image, path: Path, fmt: OutputFormat) -> None:
        ...


class CompletionCounter:
    """Progress counter shared by workers; advisory only."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


def build_jobs(paths: Sequence[Path], settings: RunSettings) -> list[JobDescriptor]:
    jobs: list[JobDescriptor] = []
    for p in paths:
        p = Path(p)
        outputs = tuple((fmt, settings.output_dir / f"{p.stem}{fmt.suffix}") for fmt in settings.formats)
        jobs.append(
            JobDescriptor(
                input_path=p,
                outputs=outputs,
                input_lens=settings.input_lens,
                output_lens=settings.output_lens,
                scale=settings.scale,
                samples=settings.samples,
                interpolation=settings.interpolation,
                color=settings.color,
                skip_if_exists=settings.skip_if_exists,
            )
        )
    return jobs


def run_pipeline(
    job: JobDescriptor,
    codec: Codec,
    color_processor: ColorProcessor,
    on_state: Callable[[JobState], None],
) -> None:
    """Load -> reproject -> color -> save for one job. Buffers are released on every exit path."""
    on_state(JobState.LOADING)
    with codec.load(job.input_path) as src:
        src.lens = job.input_lens
        on_state(JobState.TRANSFORMING)
        width, height = output_size(src.width, src.height, job.scale)
        if width <= 0 or height <= 0:
            raise ValueError(f"scale {job.scale} gives empty output for {src.width}x{src.height} input")
        spec = OutputSpec(width=width, height=height, lens=job.output_lens)
        with reproject(src, spec, job.samples, job.interpolation) as out:
            src.release()
            on_state(JobState.COLOR_PROCESSING)
            color_processor.process(out, job.color)
            on_state(JobState.SAVING)
            for fmt, path in job.outputs:
                codec.save(out, path, fmt)


class BatchOrchestrator:
    """
    Runs jobs on a fixed pool of worker threads.

    A failing job is logged and marked FAILED; it never cancels its siblings.
    `run` returns once every job is terminal.
    """

    def __init__(
        self,
        workers: int = 1,
        *,
        codec: Optional[Codec] = None,
        color_processor: Optional[ColorProcessor] = None,
    ) -> None:
        if int(workers) < 1:
            raise ValueError("workers must be >= 1")
        self.workers = int(workers)
        self.codec = codec if codec is not None else ImageCodec()
        self.color_processor = color_processor if color_processor is not None else ReinhardColorProcessor()
        self.completed = CompletionCounter()

    def run(self, jobs: Sequence[JobDescriptor]) -> list[JobReport]:
        reports = [JobReport(job=job) for job in jobs]
        total = len(reports)
        logger.info("Processing {} file(s) with {} worker(s)", total, self.workers)
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="relens") as pool:
            futures = [pool.submit(self._run_one, report, total) for report in reports]
        # Job failures are recorded in their reports; anything raised here escaped _run_one.
        for future in futures:
            future.result()

        failed = sum(1 for r in reports if r.state == JobState.FAILED)
        logger.info("Finished {} file(s), {} failed", total, failed)
        return reports

    def _run_one(self, report: JobReport, total: int) -> None:
        job = report.job
        try:
            if job.skip_if_exists and job.outputs_exist():
                report.advance(JobState.DONE)
                done = self.completed.increment()
                logger.info("{:4d} / {:4d}: skipping '{}', output already exists", done, total, job.name)
                return
            run_pipeline(job, self.codec, self.color_processor, report.advance)
            report.advance(JobState.DONE)
        except Exception as e:
            report.error = str(e) or type(e).__name__
            report.advance(JobState.FAILED)
            done = self.completed.increment()
            logger.error("{:4d} / {:4d}: {} failed: {}", done, total, job.name, report.error)
            return
        done = self.completed.increment()
        logger.info("{:4d} / {:4d}: {}", done, total, job.name)
