import os
import shutil
import subprocess
import logging
from pathlib import Path
from typing import List, Optional
from cvc.config.models import EncoderConfig


class TranscoderNotFoundError(RuntimeError):
    """The transcoder binary is missing from PATH or does not run."""


class FFmpegAdapter:
    """Builds and launches ffmpeg processes; does not parse their output."""

    def __init__(self, encoder: Optional[EncoderConfig] = None, nice_level: Optional[int] = 19):
        self.encoder = encoder or EncoderConfig()
        self.nice_level = nice_level
        self.logger = logging.getLogger(__name__)

    def check_available(self) -> str:
        """Resolves the binary on PATH and runs `-version`. Returns the first version line."""
        binary = shutil.which(self.encoder.binary)
        if binary is None:
            raise TranscoderNotFoundError(f"'{self.encoder.binary}' not found on PATH")
        try:
            res = subprocess.run([binary, "-version"], capture_output=True, text=True, timeout=30)
        except (OSError, subprocess.SubprocessError) as e:
            raise TranscoderNotFoundError(f"'{binary} -version' failed: {e}") from e
        if res.returncode != 0:
            raise TranscoderNotFoundError(f"'{binary} -version' exited with code {res.returncode}")
        version = (res.stdout or "").splitlines()[0] if res.stdout else binary
        self.logger.info(f"Transcoder: {version}")
        return version

    def build_command(self, input_path: Path, output_path: Path, threads: int) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        enc = self.encoder
        return [
            enc.binary,
            "-hide_banner",
            "-nostdin",
            "-y",  # Overwrite a stale temporary output
            "-i", str(input_path),
            "-threads", str(threads),
            "-c:v", enc.video_codec,
            "-crf", str(enc.crf),
            "-preset", enc.preset,
            "-svtav1-params", f"lp={threads}",
            "-c:a", enc.audio_codec,
            "-b:a", enc.audio_bitrate,
            # Output goes to a temporary name, so the container cannot be inferred from it
            "-f", enc.container_format,
            str(output_path),
        ]

    def priority_prefix(self) -> List[str]:
        """`nice -n N` on platforms that have it, nothing elsewhere."""
        if self.nice_level is None or os.name == "nt":
            return []
        nice = shutil.which("nice")
        if nice is None:
            return []
        return [nice, "-n", str(self.nice_level)]

    def start(self, cmd: List[str]) -> subprocess.Popen:
        """Spawns the process with inherited stdout/stderr. Raises OSError on launch failure."""
        full_cmd = self.priority_prefix() + list(cmd)
        self.logger.debug(f"FFMPEG_CMD: {' '.join(full_cmd)}")
        kwargs = {}
        if os.name == "nt":
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # Own session: terminal Ctrl+C reaches only us, children are signaled by the supervisor
            kwargs["start_new_session"] = True
        return subprocess.Popen(full_cmd, stdin=subprocess.DEVNULL, **kwargs)
