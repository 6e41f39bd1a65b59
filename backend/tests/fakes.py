import threading
from typing import Optional

from converter.conversion.engine import TranscodeEngine
from converter.conversion.errors import EngineInitFailure, EngineRunFailure, IOFailure


class FakeEngine(TranscodeEngine):
    """In-memory engine. Emits `before` ratios, waits on `gate` if set, then emits `after`."""

    def __init__(
        self,
        output: bytes = b"converted-bytes",
        before=(0.25,),
        after=(0.5, 1.0),
        gate: Optional[threading.Event] = None,
        load_gate: Optional[threading.Event] = None,
        fail_load: bool = False,
        fail_run: bool = False,
        produce_output: bool = True,
    ):
        super().__init__()
        self.output = output
        self.before = before
        self.after = after
        self.gate = gate
        self.load_gate = load_gate
        self.fail_load = fail_load
        self.fail_run = fail_run
        self.produce_output = produce_output
        self.started = threading.Event()
        self.files: dict[str, bytes] = {}
        self.runs: list[list[str]] = []
        self.init_count = 0
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    def load(self) -> None:
        if self._loaded:
            return
        if self.load_gate is not None:
            self.load_gate.wait(5)
        if self.fail_load:
            raise EngineInitFailure("ffmpeg binary not found: ffmpeg")
        self.init_count += 1
        self._loaded = True

    def write_input(self, name: str, data: bytes) -> None:
        self.files[name] = data

    def run(self, argv: list[str]) -> None:
        self.runs.append(list(argv))
        for ratio in self.before:
            self.emit_progress(ratio)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        for ratio in self.after:
            self.emit_progress(ratio)
        if self.fail_run:
            raise EngineRunFailure("Unknown encoder 'libvpx'")
        if self.produce_output:
            self.files[argv[-1]] = self.output

    def read_output(self, name: str) -> bytes:
        try:
            return self.files[name]
        except KeyError:
            raise IOFailure(f"Could not read {name}")

    def remove(self, name: str) -> None:
        self.files.pop(name, None)
