import logging
import os
from pathlib import Path
from typing import List

class HousekeepingService:
    """Removes leftovers of interrupted conversions inside converted directories.

    A marker `<output><marker_suffix>` means the output next to it (and the
    temporary `<output><temp_suffix>`) cannot be trusted.
    """

    def __init__(self, converted_dir_name: str = "converted", marker_suffix: str = ".incomplete", temp_suffix: str = ".tmp"):
        self.converted_dir_name = converted_dir_name
        self.marker_suffix = marker_suffix
        self.temp_suffix = temp_suffix
        self.logger = logging.getLogger(__name__)

    def _converted_dirs(self, directory: Path):
        for root, dirs, files in os.walk(directory):
            if Path(root).name == self.converted_dir_name:
                # Output directories are never nested inside each other
                dirs[:] = []
                yield Path(root), files

    def _remove(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            self.logger.warning(f"SWEEP_ERROR: cannot remove {path}: {e}")
            return False

    def clean_marker(self, marker_path: Path) -> List[Path]:
        """Removes a marker together with its final and temporary output. Returns removed paths."""
        output_path = marker_path.with_name(marker_path.name[: -len(self.marker_suffix)])
        temp_path = output_path.with_name(output_path.name + self.temp_suffix)
        removed = [p for p in (output_path, temp_path) if self._remove(p)]
        if self._remove(marker_path):
            removed.append(marker_path)
        return removed

    def sweep_incomplete(self, directory: Path) -> int:
        """Recursively cleans every marker found in converted directories. Returns marker count."""
        count = 0
        for converted_dir, files in self._converted_dirs(directory):
            for file in files:
                if not file.endswith(self.marker_suffix) or file == self.marker_suffix:
                    continue
                removed = self.clean_marker(converted_dir / file)
                count += 1
                self.logger.info(
                    f"SWEEP_MARKER: {converted_dir / file} removed={[p.name for p in removed]}"
                )
        return count

    def cleanup_temp_files(self, directory: Path) -> int:
        """Recursively removes temporary outputs left in converted directories."""
        count = 0
        for converted_dir, files in self._converted_dirs(directory):
            for file in files:
                if file.endswith(self.temp_suffix) and self._remove(converted_dir / file):
                    count += 1
                    self.logger.info(f"SWEEP_TMP: {converted_dir / file}")
        return count
