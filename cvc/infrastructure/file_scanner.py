import logging
import os
from pathlib import Path
from typing import List, Generator
from cvc.domain.models import SourceFile

class FileScanner:
    """Recursively scans a tree for source videos, skipping converted output directories."""

    def __init__(self, extensions: List[str], converted_dir_name: str = "converted"):
        self.extensions = {(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions}
        self.converted_dir_name = converted_dir_name
        self.logger = logging.getLogger(__name__)

    def _on_walk_error(self, error: OSError):
        self.logger.warning(f"SCAN_ERROR: cannot access {error.filename}: {error.strerror or error}")

    def matches(self, file_name: str) -> bool:
        return os.path.splitext(file_name)[1].lower() in self.extensions

    def scan(self, root_dir: Path) -> Generator[SourceFile, None, None]:
        """Scans the directory and yields SourceFile objects."""
        root_dir = Path(root_dir).absolute()
        for root, dirs, files in os.walk(str(root_dir), onerror=self._on_walk_error):
            root_path = Path(root)

            # Prune converted output directories and keep traversal deterministic
            dirs[:] = sorted(d for d in dirs if d != self.converted_dir_name)
            files.sort()

            for file_name in files:
                if not self.matches(file_name):
                    continue

                file_path = root_path / file_name
                try:
                    if not file_path.is_file():
                        continue
                    size = file_path.stat().st_size
                except OSError as e:
                    self.logger.warning(f"SCAN_ERROR: cannot stat {file_path}: {e}")
                    continue

                yield SourceFile.from_path(file_path, size_bytes=size)
