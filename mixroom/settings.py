import os

STORAGE_ROOT = os.getenv("STORAGE_ROOT", "uploads")
DATABASE_PATH = os.getenv("DATABASE_PATH", "")
MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "500"))
PROCESSING_WORKERS = int(os.getenv("PROCESSING_WORKERS", "2"))
FFMPEG_TIMEOUT = float(os.getenv("FFMPEG_TIMEOUT", "600"))
WAVEFORM_WIDTH = int(os.getenv("WAVEFORM_WIDTH", "1000"))
STREAM_MAX_AGE = int(os.getenv("STREAM_MAX_AGE", str(365 * 24 * 3600)))
CORS_ORIGIN = os.getenv("CORS_ORIGIN", "*")
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO")
LOG_FILE = os.getenv("LOG_FILE", "")
