"""Encode plans: (target container, options) -> ffmpeg parameters.

The table is fixed. The "size" optimization is a lower-quality preset, not a
bitrate search, so its output is not guaranteed to meet any byte size.
Frame rate caps use `-fpsmax` (ffmpeg 4.4+), which lowers faster sources and
leaves slower ones untouched.
"""
from dataclasses import dataclass, replace
from typing import Optional

from converter.conversion.models import Container, ConversionOptions, Optimization

# codec name -> ffmpeg encoder
ENCODERS = {
    "vp8": "libvpx",
    "vorbis": "libvorbis",
    "h264": "libx264",
    "aac": "aac",
}

CAPPED_FPS = 15
CAPPED_DURATION_SECONDS = 30
CAPPED_AUDIO_BITRATE = "64k"


@dataclass(frozen=True)
class EncodePlan:
    video_codec: str
    audio_codec: Optional[str]  # None drops the audio track
    crf: int
    video_bitrate: Optional[str] = None
    preset: Optional[str] = None
    max_fps: Optional[int] = None
    max_duration: Optional[int] = None
    audio_bitrate: Optional[str] = None

    def to_args(self) -> list[str]:
        """Ordered ffmpeg output options (everything between input and output name)."""
        args = ["-c:v", ENCODERS[self.video_codec], "-crf", str(self.crf)]
        if self.video_bitrate is not None:
            args += ["-b:v", self.video_bitrate]
        if self.preset:
            args += ["-preset", self.preset]
        if self.max_fps is not None:
            args += ["-fpsmax", str(self.max_fps)]
        if self.max_duration is not None:
            args += ["-t", str(self.max_duration)]
        if self.audio_codec is None:
            args.append("-an")
        else:
            args += ["-c:a", ENCODERS[self.audio_codec]]
            if self.audio_bitrate:
                args += ["-b:a", self.audio_bitrate]
        return args


# Per target: base plan, crf for "quality", crf for "size"
_TABLE = {
    Container.WEBM: (
        EncodePlan(video_codec="vp8", audio_codec="vorbis", crf=30, video_bitrate="0"),
        40,
        40,
    ),
    Container.MP4: (
        EncodePlan(video_codec="h264", audio_codec="aac", crf=23, preset="fast"),
        30,
        35,
    ),
}


def build_plan(target: Container, options: ConversionOptions) -> EncodePlan:
    base, quality_crf, size_crf = _TABLE[target]
    plan = base if options.include_audio else replace(base, audio_codec=None)
    opt = options.optimization
    if opt is Optimization.NONE:
        return plan
    if opt is Optimization.LIMIT_FPS:
        return replace(plan, max_fps=CAPPED_FPS)
    if opt is Optimization.LIMIT_DURATION:
        return replace(plan, max_duration=CAPPED_DURATION_SECONDS)
    if opt is Optimization.LOWER_QUALITY:
        return replace(plan, crf=quality_crf)
    if opt is Optimization.TARGET_SIZE:
        return replace(
            plan,
            crf=size_crf,
            max_fps=CAPPED_FPS,
            audio_bitrate=CAPPED_AUDIO_BITRATE if options.include_audio else None,
        )
    raise ValueError(f"Unhandled optimization: {opt}")


def build_argv(plan: EncodePlan, input_name: str, output_name: str) -> list[str]:
    return ["-i", input_name, *plan.to_args(), output_name]
