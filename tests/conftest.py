import sys
import pytest
import yaml
from pathlib import Path
from typing import Callable, List, Optional
from cvc.config.models import AppConfig, GeneralConfig
from cvc.domain.models import SourceFile
from cvc.infrastructure.event_bus import EventBus
from cvc.infrastructure.ffmpeg import FFmpegAdapter
from cvc.pipeline.cancellation import CancellationContext
from cvc.pipeline.supervisor import ProcessSupervisor

# ============================================================================
# Fake transcoder (real subprocess, no ffmpeg needed)
# ============================================================================

FAKE_TRANSCODER = r'''
import signal
import sys
import time

mode, output = sys.argv[1], sys.argv[2]

if mode == "ok":
    with open(output, "wb") as f:
        f.write(b"converted video payload")
    sys.exit(0)
if mode == "slow":
    time.sleep(0.3)
    with open(output, "wb") as f:
        f.write(b"converted video payload")
    sys.exit(0)
if mode == "fail":
    with open(output, "wb") as f:
        f.write(b"partial")
    sys.exit(3)
if mode == "empty":
    open(output, "wb").close()
    sys.exit(0)
if mode == "nooutput":
    sys.exit(0)
if mode == "stubborn":
    signal.signal(signal.SIGTERM, signal.SIG_IGN)
with open(output, "wb") as f:
    f.write(b"partial")
    f.flush()
    time.sleep(60)
sys.exit(0)
'''


class FakeTranscoder(FFmpegAdapter):
    """Runs a Python script in place of ffmpeg; the mode is picked per source file."""

    def __init__(self, script: Path, mode: str = "ok", mode_for: Optional[Callable[[Path], str]] = None):
        super().__init__(nice_level=None)
        self.script = script
        self.mode = mode
        self.mode_for = mode_for
        self.commands: List[List[str]] = []
        self.processes = []

    def build_command(self, input_path, output_path, threads):
        mode = self.mode_for(Path(input_path)) if self.mode_for else self.mode
        cmd = [sys.executable, str(self.script), mode, str(output_path), str(threads)]
        self.commands.append(cmd)
        return cmd

    def start(self, cmd):
        process = super().start(cmd)
        self.processes.append(process)
        return process


@pytest.fixture
def fake_script(tmp_path):
    script = tmp_path / "fake_ffmpeg.py"
    script.write_text(FAKE_TRANSCODER)
    return script


@pytest.fixture
def fake_transcoder(fake_script):
    return FakeTranscoder(fake_script)


@pytest.fixture
def transcoder_factory(fake_script):
    def factory(mode="ok", mode_for=None):
        return FakeTranscoder(fake_script, mode=mode, mode_for=mode_for)
    return factory

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def fast_general():
    """GeneralConfig with short timers so cancellation tests stay quick."""
    return GeneralConfig(
        source_extensions=[".mov"],
        max_workers=2,
        threads_per_worker=1,
        nice_level=None,
        task_grace_seconds=1.0,
        shutdown_grace_seconds=5.0,
        kill_settle_seconds=0.1,
        poll_interval_seconds=0.05,
    )

@pytest.fixture
def fast_config(fast_general):
    return AppConfig(general=fast_general)

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "cvc.yaml"

    content = {
        'general': {
            'source_extensions': ['mov', 'MP4'],
            'output_extension': '.mkv',
            'target_cpu_percent': 75,
            'max_workers': 3,
            'nice_level': 10,
            'debug': False,
        },
        'encoder': {
            'crf': 30,
            'audio_bitrate': '96k',
        }
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# Pipeline Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

@pytest.fixture
def cancellation():
    return CancellationContext()

@pytest.fixture
def supervisor(cancellation, event_bus):
    return ProcessSupervisor(cancellation, event_bus=event_bus, shutdown_grace_seconds=5.0, kill_settle_seconds=0.1)

@pytest.fixture
def recorded_events(event_bus):
    from cvc.domain.events import Event
    events = []
    event_bus.subscribe(Event, events.append)
    return events

# ============================================================================
# File System Fixtures
# ============================================================================

@pytest.fixture
def video_root(tmp_path):
    """Source tree with .mov files at two levels and some noise."""
    root = tmp_path / "videos"
    root.mkdir()
    (root / "a.mov").write_bytes(b"source a" * 50)
    (root / "B.MOV").write_bytes(b"source b" * 50)
    (root / "notes.txt").write_text("not a video")
    sub = root / "trip"
    sub.mkdir()
    (sub / "c.mov").write_bytes(b"source c" * 50)
    return root

@pytest.fixture
def source_file(tmp_path):
    src_dir = tmp_path / "src"
    src_dir.mkdir()
    path = src_dir / "clip.mov"
    path.write_bytes(b"source payload" * 10)
    return SourceFile.from_path(path, size_bytes=path.stat().st_size)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (spawn real subprocesses)"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
