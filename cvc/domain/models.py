from enum import Enum
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, ConfigDict

class TaskOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

class TaskState(str, Enum):
    PENDING = "PENDING"
    PREPARING = "PREPARING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_OUTCOMES

_TERMINAL_OUTCOMES = {
    TaskState.SUCCEEDED: TaskOutcome.SUCCESS,
    TaskState.SKIPPED: TaskOutcome.SKIPPED,
    TaskState.FAILED: TaskOutcome.FAILED,
    TaskState.CANCELED: TaskOutcome.CANCELED,
}

def outcome_for_state(state: TaskState) -> TaskOutcome:
    """Maps a terminal task state to its outcome (ValueError for non-terminal states)."""
    try:
        return _TERMINAL_OUTCOMES[state]
    except KeyError:
        raise ValueError(f"{state.value} is not a terminal state") from None

class SourceFile(BaseModel):
    """Immutable descriptor of one enumerated source video."""
    model_config = ConfigDict(frozen=True)

    path: Path
    directory: Path
    name: str
    size_bytes: int = 0

    @classmethod
    def from_path(cls, path: Path, size_bytes: int = 0) -> "SourceFile":
        path = Path(path).absolute()
        return cls(path=path, directory=path.parent, name=path.name, size_bytes=size_bytes)

class TaskResult(BaseModel):
    source: SourceFile
    outcome: TaskOutcome
    output_path: Optional[Path] = None
    error_message: Optional[str] = None
    return_code: Optional[int] = None
    duration_seconds: Optional[float] = None

class RunSummary(BaseModel):
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    canceled: int = 0
    total: int = 0
    interrupted: bool = False
    peak_concurrency: int = 0
    elapsed_seconds: float = 0.0

    @property
    def processed(self) -> int:
        return self.succeeded + self.skipped + self.failed + self.canceled

    @property
    def exit_code(self) -> int:
        # 128 + SIGINT, the shell convention for Ctrl+C
        return 130 if self.interrupted else 0

    def count(self, outcome: TaskOutcome) -> int:
        return {
            TaskOutcome.SUCCESS: self.succeeded,
            TaskOutcome.SKIPPED: self.skipped,
            TaskOutcome.FAILED: self.failed,
            TaskOutcome.CANCELED: self.canceled,
        }[outcome]
