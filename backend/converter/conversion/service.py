"""Conversion job orchestration: one job at a time, progress tracking and result ownership."""
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from converter.config import SIZE_TARGET_BYTES, SIZE_TARGET_MB
from converter.conversion.engine import Subscription, TranscodeEngine, get_ffmpeg_engine
from converter.conversion.errors import (
    ConversionError,
    EngineInitFailure,
    EngineRunFailure,
    JobCancelled,
    JobInProgress,
)
from converter.conversion.models import (
    ConversionOptions,
    JobResult,
    JobState,
    MediaJob,
    Optimization,
)
from converter.conversion.plan import build_argv, build_plan
from converter.conversion.validation import check_size, download_name, infer_formats

logger = logging.getLogger("converter.service")

ProgressListener = Callable[[str, int], None]

_BUSY = (JobState.LOADING, JobState.RUNNING)


class ConversionService:
    """Drives a single MediaJob through the engine and holds its result until reset."""

    def __init__(self, engine: Optional[TranscodeEngine] = None):
        self._engine = engine or get_ffmpeg_engine()
        # The engine is not re-entrant; one worker keeps stale and fresh runs serialized
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="transcode")
        self._lock = threading.RLock()
        self._generation = 0
        self._state = JobState.IDLE
        self._job: Optional[MediaJob] = None
        self._progress = 0
        self._result: Optional[JobResult] = None
        self._subscription: Optional[Subscription] = None
        self.started_at: Optional[float] = None
        self.duration_seconds: Optional[float] = None
        logger.info("ConversionService initialized with engine=%s", type(self._engine).__name__)

    @property
    def state(self) -> JobState:
        return self._state

    @property
    def progress(self) -> int:
        return self._progress

    @property
    def job(self) -> Optional[MediaJob]:
        return self._job

    @property
    def result(self) -> Optional[JobResult]:
        return self._result

    @staticmethod
    def create_job(filename: str, data: bytes, options: Optional[ConversionOptions] = None) -> MediaJob:
        source, target = infer_formats(filename)
        check_size(len(data))
        return MediaJob(
            filename=filename,
            data=data,
            source=source,
            target=target,
            download_name=download_name(filename, target),
            options=options or ConversionOptions(),
        )

    def submit(self, job: MediaJob, on_progress: Optional[ProgressListener] = None) -> "Future[JobResult]":
        with self._lock:
            if self._state in _BUSY:
                raise JobInProgress("A conversion is already in progress")
            options = job.snapshot()
            if self._state is not JobState.IDLE:
                self._clear()
            self._generation += 1
            generation = self._generation
            self._job = job
            self._progress = 0
            self._result = None
            self.started_at = time.monotonic()
            self.duration_seconds = None
            self._state = JobState.RUNNING if self._engine.loaded else JobState.LOADING
            logger.info(
                "Submitted job %s: %s -> %s (audio=%s, optimization=%s)",
                job.job_id, job.filename, job.target.value,
                options.include_audio, options.optimization.value,
            )
            return self._executor.submit(self._execute, generation, job, options, on_progress)

    def _execute(
        self,
        generation: int,
        job: MediaJob,
        options: ConversionOptions,
        on_progress: Optional[ProgressListener],
    ) -> JobResult:
        try:
            self._engine.load()
        except ConversionError as e:
            logger.error("Engine failed to load: %s", e)
            return self._finish(generation, job, JobResult.failure(e), on_progress)
        except Exception as e:
            logger.exception("Engine failed to load: %s", e)
            return self._finish(generation, job, JobResult.failure(EngineInitFailure(str(e))), on_progress)

        with self._lock:
            if generation != self._generation:
                logger.info("Job %s was reset while the engine loaded; skipping it", job.job_id)
                return self._finish(generation, job, JobResult.failure(JobCancelled("Job was reset")), on_progress)
            if self._state is JobState.LOADING:
                self._state = JobState.RUNNING

        input_name = f"input.{job.source.value}"
        output_name = f"output.{job.target.value}"
        subscription = self._engine.subscribe(
            lambda ratio: self._on_progress(generation, job, ratio, on_progress)
        )
        with self._lock:
            if generation == self._generation:
                self._subscription = subscription
        try:
            argv = build_argv(build_plan(job.target, options), input_name, output_name)
            self._engine.write_input(input_name, job.data)
            self._engine.run(argv)
            data = self._engine.read_output(output_name)
            result = JobResult.success(data, job.target, job.download_name)
            if options.optimization is Optimization.TARGET_SIZE and len(data) > SIZE_TARGET_BYTES:
                logger.warning(
                    "Size-optimized output for %s is %s bytes, above the %s MB target",
                    job.filename, len(data), SIZE_TARGET_MB,
                )
        except ConversionError as e:
            logger.error("Conversion failed for %s: %s", job.filename, e)
            result = JobResult.failure(e)
        except Exception as e:
            logger.exception("Conversion failed for %s: %s", job.filename, e)
            result = JobResult.failure(EngineRunFailure(str(e)))
        finally:
            subscription.cancel()
            self._engine.remove(input_name)
            self._engine.remove(output_name)
        return self._finish(generation, job, result, on_progress)

    def _on_progress(
        self,
        generation: int,
        job: MediaJob,
        ratio: float,
        on_progress: Optional[ProgressListener],
    ) -> None:
        percent = min(100, int(ratio * 100 + 0.5))
        with self._lock:
            if generation != self._generation or self._state is not JobState.RUNNING:
                return
            if percent <= self._progress:
                return
            self._progress = percent
        self._notify(generation, job, percent, on_progress)

    def _notify(
        self,
        generation: int,
        job: MediaJob,
        percent: int,
        on_progress: Optional[ProgressListener],
    ) -> None:
        """Call the listener outside the lock. A reset landing after this last check can still see one event."""
        if on_progress is None or generation != self._generation:
            return
        try:
            on_progress(job.job_id, percent)
        except Exception:
            logger.exception("Progress listener failed for job %s", job.job_id)

    def _finish(
        self,
        generation: int,
        job: MediaJob,
        result: JobResult,
        on_progress: Optional[ProgressListener],
    ) -> JobResult:
        reached_end = False
        with self._lock:
            if generation != self._generation:
                logger.info("Discarding result of job %s after reset", job.job_id)
                result.release()
                return result
            self._subscription = None
            self._result = result
            if self.started_at is not None:
                self.duration_seconds = time.monotonic() - self.started_at
            if result.ok:
                self._state = JobState.SUCCEEDED
                reached_end = self._progress == 100
                self._progress = 100
                logger.info("Converted %s -> %s (%s bytes)", job.filename, result.filename, result.size)
            else:
                self._state = JobState.FAILED
        if result.ok and not reached_end:
            self._notify(generation, job, 100, on_progress)
        return result

    def _clear(self) -> None:
        self._generation += 1
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if self._result is not None:
            self._result.release()
        self._result = None
        self._job = None
        self._progress = 0
        self.started_at = None
        self.duration_seconds = None

    def reset(self) -> None:
        """Return to idle and release the held output. A running engine call is left to finish; its result is dropped."""
        with self._lock:
            if self._state in _BUSY:
                logger.warning("Reset while a job is %s; its result will be discarded", self._state.value)
            self._clear()
            self._state = JobState.IDLE

    def close(self) -> None:
        self.reset()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def snapshot(self) -> dict:
        with self._lock:
            job, result = self._job, self._result
            return {
                "state": self._state.value,
                "progress": self._progress,
                "job_id": job.job_id if job else None,
                "filename": job.filename if job else None,
                "input_size": job.size if job else None,
                "target_format": job.target.value if job else None,
                "include_audio": job.options.include_audio if job else None,
                "optimization": job.options.optimization.value if job else None,
                "output_filename": result.filename if result and result.ok else None,
                "output_size": result.size if result and result.ok else None,
                "error_code": result.error_code if result and not result.ok else None,
                "error": result.message if result and not result.ok else None,
            }


# Singleton
_conversion_service: Optional[ConversionService] = None


def get_conversion_service() -> ConversionService:
    global _conversion_service
    if _conversion_service is None:
        _conversion_service = ConversionService()
    return _conversion_service


def shutdown_conversion_service() -> None:
    """Teardown: release the held output and stop the worker."""
    global _conversion_service
    if _conversion_service is not None:
        _conversion_service.close()
        _conversion_service = None
