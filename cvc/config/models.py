from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

class GeneralConfig(BaseModel):
    source_extensions: List[str] = Field(default_factory=lambda: [".mov"])
    output_extension: str = ".mkv"
    converted_dir_name: str = "converted"
    marker_suffix: str = ".incomplete"
    temp_suffix: str = ".tmp"
    target_cpu_percent: int = Field(default=50, ge=1, le=100)
    max_workers: int = Field(default=2, ge=1)
    threads_per_worker: Optional[int] = Field(default=None, ge=1)  # None = derive from target_cpu_percent
    nice_level: Optional[int] = Field(default=19, ge=0, le=19)  # None = keep normal priority
    task_grace_seconds: float = Field(default=5.0, ge=0.0)
    shutdown_grace_seconds: float = Field(default=10.0, ge=0.0)
    kill_settle_seconds: float = Field(default=1.0, ge=0.0)
    poll_interval_seconds: float = Field(default=0.2, gt=0.0)
    sweep_on_startup: bool = True
    sweep_on_shutdown: bool = True
    log_path: Optional[str] = None
    debug: bool = False

    @field_validator("source_extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("source_extensions must not be empty")
        return [(ext if ext.startswith(".") else f".{ext}").lower() for ext in v]

    @field_validator("output_extension", "marker_suffix", "temp_suffix")
    @classmethod
    def require_dot(cls, v: str) -> str:
        if not v.startswith(".") or len(v) < 2:
            raise ValueError(f"Suffix must start with '.': {v!r}")
        return v

    @field_validator("converted_dir_name")
    @classmethod
    def validate_dir_name(cls, v: str) -> str:
        if not v or "/" in v or "\\" in v or v in {".", ".."}:
            raise ValueError(f"Invalid converted directory name: {v!r}")
        return v

class EncoderConfig(BaseModel):
    """Fixed transcoder parameters (not exposed on the command line)."""
    binary: str = "ffmpeg"
    video_codec: str = "libsvtav1"
    crf: int = Field(default=35, ge=0, le=63)
    preset: str = "8"
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"
    container_format: str = "matroska"

class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    encoder: EncoderConfig = Field(default_factory=EncoderConfig)
