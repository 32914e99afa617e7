import logging
from pathlib import Path

def default_log_path(root_dir: Path, converted_dir_name: str) -> Path:
    return root_dir / converted_dir_name / "conversion.log"

def setup_logging(log_file: Path, debug: bool = False) -> logging.Logger:
    """
    Setup logging configuration for CVC.

    Creates the log file's parent directory and routes all records to the file;
    the console is reserved for per-file progress lines.
    Returns configured logger instance.

    Args:
        log_file: Path to the log file
        debug: If True, enable DEBUG level logging with detailed timings
    """
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(threadName)s - %(message)s',
        handlers=[logging.FileHandler(log_file)],
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")

    return logger
