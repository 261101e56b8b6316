import logging
import os

FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
DATEFMT = '%Y-%m-%d %H:%M:%S'


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """
    Configure logging with optional file output.

    Args:
        level: Logging level name (DEBUG, INFO, ...)
        log_file: Path to log file (optional); added once per path
    """
    numeric = getattr(logging, str(level).upper(), logging.INFO)
    logging.basicConfig(level=numeric, format=FORMAT, datefmt=DATEFMT)

    root = logging.getLogger()
    root.setLevel(numeric)
    if not log_file:
        return
    path = os.path.abspath(log_file)
    if any(getattr(h, "baseFilename", None) == path for h in root.handlers):
        return
    handler = logging.FileHandler(path)
    handler.setFormatter(logging.Formatter(FORMAT, DATEFMT))
    root.addHandler(handler)
