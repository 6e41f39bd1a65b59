"""Upload validation: container pair inference and size ceiling."""
from typing import Optional

from converter.config import CONTAINER_PAIRS, MAX_VIDEO_SIZE_BYTES, MAX_VIDEO_SIZE_MB
from converter.conversion.errors import FileTooLarge, UnsupportedFormat
from converter.conversion.models import Container


def split_extension(filename: str) -> tuple[str, str]:
    """Split on the last dot. Returns (base, lowercased extension); extension is "" when absent."""
    name = (filename or "").replace("\\", "/").rsplit("/", 1)[-1]
    if "." not in name:
        return name, ""
    base, ext = name.rsplit(".", 1)
    return base, ext.lower()


def infer_formats(filename: str) -> tuple[Container, Container]:
    """Return (source, target) for an mp4/webm filename."""
    _, ext = split_extension(filename)
    if ext not in CONTAINER_PAIRS:
        raise UnsupportedFormat("Only MP4 and WebM files are supported")
    return Container(ext), Container(CONTAINER_PAIRS[ext])


def check_size(size: int, max_bytes: Optional[int] = None) -> None:
    limit = MAX_VIDEO_SIZE_BYTES if max_bytes is None else max_bytes
    if size > limit:
        max_mb = MAX_VIDEO_SIZE_MB if max_bytes is None else limit // (1024 * 1024)
        raise FileTooLarge(f"File size exceeds {max_mb}MB limit")


def download_name(filename: str, target: Container) -> str:
    base, _ = split_extension(filename)
    return f"{base or 'converted'}.{target.value}"
