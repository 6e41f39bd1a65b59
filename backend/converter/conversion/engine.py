"""Transcode engine boundary and the ffmpeg implementation."""
import logging
import re
import shutil
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Callable, Optional

from converter.config import FFMPEG_BINARY, FFMPEG_TIMEOUT, FFPROBE_BINARY, WORK_DIR
from converter.conversion.errors import EngineInitFailure, EngineRunFailure, IOFailure

logger = logging.getLogger("converter.engine")

ProgressCallback = Callable[[float], None]

_OUT_TIME_RE = re.compile(r"out_time_(?:us|ms)=(\d+)")


class Subscription:
    """Handle for the engine's single progress subscriber slot."""

    def __init__(self, engine: "TranscodeEngine", callback: ProgressCallback):
        self._engine = engine
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self._engine._detach(self)


class TranscodeEngine:
    """Contract the orchestrator relies on. Engine-side files are plain names."""

    def __init__(self):
        self._subscriber: Optional[Subscription] = None
        self._sub_lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        raise NotImplementedError

    def load(self) -> None:
        raise NotImplementedError

    def write_input(self, name: str, data: bytes) -> None:
        raise NotImplementedError

    def run(self, argv: list[str]) -> None:
        raise NotImplementedError

    def read_output(self, name: str) -> bytes:
        raise NotImplementedError

    def remove(self, name: str) -> None:
        raise NotImplementedError

    def subscribe(self, callback: ProgressCallback) -> Subscription:
        """Attach the progress subscriber, cancelling whichever was attached before."""
        sub = Subscription(self, callback)
        with self._sub_lock:
            previous, self._subscriber = self._subscriber, sub
        if previous is not None:
            previous.active = False
        return sub

    def _detach(self, sub: Subscription) -> None:
        with self._sub_lock:
            if self._subscriber is sub:
                self._subscriber = None

    def emit_progress(self, ratio: float) -> None:
        with self._sub_lock:
            sub = self._subscriber
        if sub is not None and sub.active:
            sub.callback(min(1.0, max(0.0, ratio)))


def parse_progress_line(line: str, total_seconds: Optional[float]) -> Optional[float]:
    """Ratio for one `-progress` line, or None if the line carries none."""
    line = line.strip()
    if line == "progress=end":
        return 1.0
    m = _OUT_TIME_RE.match(line)
    if m and total_seconds:
        return (int(m.group(1)) / 1_000_000.0) / total_seconds
    return None


def argv_value(argv: list[str], flag: str) -> Optional[str]:
    for i, arg in enumerate(argv[:-1]):
        if arg == flag:
            return argv[i + 1]
    return None


class FFmpegEngine(TranscodeEngine):
    """Runs the ffmpeg binary inside a private scratch directory."""

    def __init__(
        self,
        binary: str = FFMPEG_BINARY,
        probe_binary: str = FFPROBE_BINARY,
        work_root: Path = WORK_DIR,
        timeout: int = FFMPEG_TIMEOUT,
    ):
        super().__init__()
        self.binary = binary
        self.probe_binary = probe_binary
        self.work_root = Path(work_root)
        self.timeout = timeout
        self.work_dir: Optional[Path] = None
        self.version: Optional[str] = None
        self._ffmpeg_path: Optional[str] = None
        self._ffprobe_path: Optional[str] = None
        self._loaded = False
        self._load_lock = threading.Lock()
        self._run_lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._loaded

    def load(self) -> None:
        if self._loaded:
            return
        with self._load_lock:
            if self._loaded:
                return
            path = shutil.which(self.binary)
            if not path:
                logger.error("ffmpeg not found. Install ffmpeg for video conversion.")
                raise EngineInitFailure(f"ffmpeg binary not found: {self.binary}")
            try:
                result = subprocess.run(
                    [path, "-hide_banner", "-version"],
                    capture_output=True,
                    text=True,
                    timeout=30,
                )
            except (OSError, subprocess.SubprocessError) as e:
                raise EngineInitFailure(f"ffmpeg could not be started: {e}") from e
            if result.returncode != 0:
                raise EngineInitFailure(result.stderr.strip() or "ffmpeg -version failed")
            try:
                self.work_root.mkdir(parents=True, exist_ok=True)
                self.work_dir = Path(tempfile.mkdtemp(prefix="engine-", dir=self.work_root))
            except OSError as e:
                raise EngineInitFailure(f"Could not create engine work dir: {e}") from e
            self.version = (result.stdout.splitlines() or ["unknown"])[0]
            self._ffmpeg_path = path
            self._ffprobe_path = shutil.which(self.probe_binary)
            if not self._ffprobe_path:
                logger.warning("ffprobe not found; progress will jump from 0 to 100")
            self._loaded = True
            logger.info("Engine loaded: %s (work dir %s)", self.version, self.work_dir)

    def _path(self, name: str) -> Path:
        if not self._loaded or self.work_dir is None:
            raise IOFailure("Engine is not loaded")
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise IOFailure(f"Invalid engine file name: {name!r}")
        return self.work_dir / name

    def write_input(self, name: str, data: bytes) -> None:
        path = self._path(name)
        try:
            path.write_bytes(data)
        except OSError as e:
            raise IOFailure(f"Could not write {name}: {e}") from e

    def read_output(self, name: str) -> bytes:
        path = self._path(name)
        try:
            return path.read_bytes()
        except OSError as e:
            raise IOFailure(f"Could not read {name}: {e}") from e

    def remove(self, name: str) -> None:
        try:
            self._path(name).unlink(missing_ok=True)
        except (OSError, IOFailure) as e:
            logger.warning("Could not remove engine file %s: %s", name, e)

    def probe_duration(self, name: str) -> Optional[float]:
        if not self._ffprobe_path:
            return None
        cmd = [
            self._ffprobe_path, "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            name,
        ]
        try:
            result = subprocess.run(cmd, cwd=self.work_dir, capture_output=True, text=True, timeout=30)
            return float(result.stdout.strip())
        except (OSError, subprocess.SubprocessError, ValueError) as e:
            logger.warning("Could not probe duration of %s: %s", name, e)
            return None

    def _expected_seconds(self, argv: list[str]) -> Optional[float]:
        input_name = argv_value(argv, "-i")
        duration = self.probe_duration(input_name) if input_name else None
        cap = argv_value(argv, "-t")
        if cap is not None:
            try:
                duration = min(duration, float(cap)) if duration else float(cap)
            except ValueError:
                pass
        return duration

    def run(self, argv: list[str]) -> None:
        if not self._loaded:
            raise EngineRunFailure("Engine is not loaded")
        with self._run_lock:
            total = self._expected_seconds(argv)
            cmd = [
                self._ffmpeg_path, "-y", "-hide_banner", "-nostats",
                "-loglevel", "error", "-progress", "pipe:1",
                *argv,
            ]
            logger.info("Running ffmpeg %s", " ".join(argv))
            last = 0.0
            with tempfile.TemporaryFile(mode="w+") as err:
                try:
                    proc = subprocess.Popen(
                        cmd,
                        cwd=self.work_dir,
                        stdout=subprocess.PIPE,
                        stderr=err,
                        text=True,
                    )
                except OSError as e:
                    raise EngineRunFailure(f"ffmpeg could not be started: {e}") from e
                timed_out = threading.Event()

                def kill_on_timeout():
                    timed_out.set()
                    proc.kill()

                timer = threading.Timer(self.timeout, kill_on_timeout)
                with proc:
                    timer.start()
                    try:
                        for line in proc.stdout:
                            ratio = parse_progress_line(line, total)
                            if ratio is not None and ratio > last:
                                last = min(1.0, ratio)
                                self.emit_progress(last)
                        returncode = proc.wait()
                    except BaseException:
                        proc.kill()
                        proc.wait()
                        raise
                    finally:
                        timer.cancel()
                if timed_out.is_set() and returncode != 0:
                    raise EngineRunFailure(f"ffmpeg timed out after {self.timeout}s")
                if returncode != 0:
                    err.seek(0)
                    detail = err.read().strip()[-2000:]
                    raise EngineRunFailure(detail or f"ffmpeg exited with code {returncode}")
            if last < 1.0:
                self.emit_progress(1.0)


# Process-wide engine, loaded lazily on first submission
_engine: Optional[FFmpegEngine] = None


def get_ffmpeg_engine() -> FFmpegEngine:
    global _engine
    if _engine is None:
        _engine = FFmpegEngine()
    return _engine
