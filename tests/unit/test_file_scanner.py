import os
import pytest
from pathlib import Path
from unittest.mock import patch
from cvc.infrastructure.file_scanner import FileScanner

def test_file_scanner_basic(video_root):
    scanner = FileScanner(extensions=[".mov"])
    files = list(scanner.scan(video_root))

    names = [f.name for f in files]
    assert names == ["B.MOV", "a.mov", "c.mov"]
    assert all(f.path.is_absolute() for f in files)

def test_file_scanner_extension_case_insensitive(tmp_path):
    (tmp_path / "one.MOV").write_text("x")
    (tmp_path / "two.Mov").write_text("x")
    (tmp_path / "three.mp4").write_text("x")

    scanner = FileScanner(extensions=["MOV"])
    assert {f.name for f in scanner.scan(tmp_path)} == {"one.MOV", "two.Mov"}
    assert scanner.matches("clip.mOv")
    assert not scanner.matches("clip.mov.txt")
    assert not scanner.matches("mov")

def test_file_scanner_records_directory_and_size(video_root):
    scanner = FileScanner(extensions=[".mov"])
    by_name = {f.name: f for f in scanner.scan(video_root)}

    assert by_name["c.mov"].directory == (video_root / "trip").absolute()
    assert by_name["a.mov"].size_bytes == (video_root / "a.mov").stat().st_size

def test_file_scanner_ignores_converted_dirs(video_root):
    converted = video_root / "converted"
    converted.mkdir()
    (converted / "old.mov").write_text("data")
    nested = video_root / "trip" / "converted"
    nested.mkdir()
    (nested / "c.mov").write_text("data")

    scanner = FileScanner(extensions=[".mov"])
    paths = {f.path for f in scanner.scan(video_root)}

    assert all("converted" not in p.parts for p in paths)
    assert len(paths) == 3

def test_file_scanner_custom_converted_name(tmp_path):
    (tmp_path / "done").mkdir()
    (tmp_path / "done" / "x.mov").write_text("x")
    (tmp_path / "converted").mkdir()
    (tmp_path / "converted" / "y.mov").write_text("y")

    scanner = FileScanner(extensions=[".mov"], converted_dir_name="done")
    assert {f.name for f in scanner.scan(tmp_path)} == {"y.mov"}

def test_file_scanner_skips_directories_with_matching_name(tmp_path):
    (tmp_path / "folder.mov").mkdir()
    (tmp_path / "real.mov").write_text("x")

    scanner = FileScanner(extensions=[".mov"])
    assert [f.name for f in scanner.scan(tmp_path)] == ["real.mov"]

def test_file_scanner_empty_tree(tmp_path):
    assert list(FileScanner(extensions=[".mov"]).scan(tmp_path)) == []

def test_file_scanner_stat_error_skips_file(tmp_path):
    (tmp_path / "a.mov").write_text("x")
    (tmp_path / "b.mov").write_text("x")

    real_stat = Path.stat

    def flaky_stat(self, *args, **kwargs):
        if self.name == "a.mov" and not kwargs and not args:
            raise PermissionError("denied")
        return real_stat(self, *args, **kwargs)

    scanner = FileScanner(extensions=[".mov"])
    with patch.object(Path, "is_file", return_value=True), patch.object(Path, "stat", flaky_stat):
        names = [f.name for f in scanner.scan(tmp_path)]

    assert names == ["b.mov"]

def test_file_scanner_walk_error_is_logged(tmp_path, caplog):
    scanner = FileScanner(extensions=[".mov"])
    error = OSError(13, "Permission denied", str(tmp_path / "locked"))

    def fake_walk(top, onerror=None):
        onerror(error)
        yield str(tmp_path), [], ["a.mov"]

    (tmp_path / "a.mov").write_text("x")
    with patch("cvc.infrastructure.file_scanner.os.walk", fake_walk):
        with caplog.at_level("WARNING"):
            files = list(scanner.scan(tmp_path))

    assert [f.name for f in files] == ["a.mov"]
    assert "SCAN_ERROR" in caplog.text
