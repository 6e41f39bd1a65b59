"""Application configuration. Loads from environment and .env file."""
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
# Load .env from cwd, then backend/.env, then project root .env
load_dotenv()
load_dotenv(BASE_DIR / ".env")
load_dotenv(BASE_DIR.parent / ".env")

# Engine scratch space (each loaded engine gets its own subdirectory)
WORK_DIR = Path(os.getenv("WORK_DIR", str(BASE_DIR / "work")))
WORK_DIR.mkdir(parents=True, exist_ok=True)

# Supported containers: input extension -> output extension
CONTAINER_PAIRS = {"mp4": "webm", "webm": "mp4"}
VIDEO_EXTENSIONS = {f".{ext}" for ext in CONTAINER_PAIRS}

# Limits (env)
MAX_VIDEO_SIZE_MB = int(os.getenv("MAX_VIDEO_SIZE_MB", "10"))
MAX_VIDEO_SIZE_BYTES = MAX_VIDEO_SIZE_MB * 1024 * 1024
UPLOAD_CHUNK_BYTES = 1024 * 1024
# Advisory only: the "size" optimization is a fixed preset, this is what it aims for
SIZE_TARGET_MB = int(os.getenv("SIZE_TARGET_MB", "4"))
SIZE_TARGET_BYTES = SIZE_TARGET_MB * 1024 * 1024

# ffmpeg
FFMPEG_BINARY = os.getenv("FFMPEG_BINARY", "ffmpeg")
FFPROBE_BINARY = os.getenv("FFPROBE_BINARY", "ffprobe")
FFMPEG_TIMEOUT = int(os.getenv("FFMPEG_TIMEOUT", "300"))

# Database – SQLite file by default; override with DATABASE_URL (e.g. sqlite:////var/lib/converter.db).
DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
if not DATABASE_URL:
    db_path = BASE_DIR / "data" / "converter.db"
    db_path.parent.mkdir(parents=True, exist_ok=True)
    DATABASE_URL = f"sqlite:///{db_path}"

# Server (for uvicorn)
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
# CORS: comma-separated origins, e.g. "http://localhost:3000,http://127.0.0.1:3000"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",") if o.strip()]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("converter")
