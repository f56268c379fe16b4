"""Type definitions for the runner."""

import base64
from collections.abc import Iterable
from enum import StrEnum
from pathlib import PurePosixPath

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class StepStatus(StrEnum):
    """Status of an execution step."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class Phase(StrEnum):
    """Orchestrator lifecycle phase. Acquisition and mounting happen once."""

    UNINITIALIZED = "uninitialized"
    ACQUIRING = "acquiring"
    MOUNTING = "mounting"
    READY = "ready"
    FAILED = "failed"


class ServerState(StrEnum):
    """Dev server controller state."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class PreviewState(StrEnum):
    """Load state of the current preview target."""

    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


class FileArtifact(BaseModel):
    """A project file. Binary content travels as base64 when given as text."""

    model_config = ConfigDict(frozen=True)

    path: str
    content: str | bytes = ""
    is_binary: bool = False

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, value: str) -> str:
        path = PurePosixPath(value.strip())
        if path.is_absolute():
            path = path.relative_to("/")
        if not path.parts or str(path) == ".":
            raise ValueError("file path is empty")
        if ".." in path.parts:
            raise ValueError(f"file path escapes the project root: {value}")
        return str(path)

    @field_serializer("content", when_used="json")
    def _serialize_content(self, value: str | bytes) -> str:
        if isinstance(value, str):
            return value
        if self.is_binary:
            return base64.b64encode(value).decode("ascii")
        return value.decode("utf-8")

    def data(self) -> bytes:
        """Raw bytes to write into the sandbox."""
        if isinstance(self.content, bytes):
            return self.content
        if self.is_binary:
            # URL-safe alphabet
            if "-" in self.content or "_" in self.content:
                return base64.urlsafe_b64decode(self.content)
            return base64.b64decode(self.content)
        return self.content.encode("utf-8")


class ExecutionStep(BaseModel):
    """One user-visible unit of orchestration work."""

    model_config = ConfigDict(frozen=True)

    key: str
    name: str
    status: StepStatus
    output: str | None = None
    timestamp: float


class CommandResult(BaseModel):
    """Outcome of a command that ran to completion."""

    success: bool
    output: str = ""
    exit_code: int | None = None


class ServerReady(BaseModel):
    """A dev server started listening and is reachable at url."""

    model_config = ConfigDict(frozen=True)

    port: int
    url: str


class RunnerView(BaseModel):
    """Read-only projection of the runner for the presentation layer."""

    phase: Phase
    steps: list[ExecutionStep] = Field(default_factory=list)
    terminal_output: str = ""
    preview_url: str = ""
    preview_state: PreviewState = PreviewState.IDLE
    preview_generation: int = 0
    container_ready: bool = False
    server_running: bool = False
    has_manifest: bool = False
    can_install: bool = False
    can_start: bool = False
    can_stop: bool = False


Snapshot = tuple[FileArtifact, ...]


def build_snapshot(files: Iterable[FileArtifact]) -> Snapshot:
    """Freeze a file set, rejecting duplicate paths."""
    snapshot = tuple(files)
    seen: set[str] = set()
    for artifact in snapshot:
        if artifact.path in seen:
            raise ValueError(f"duplicate path in snapshot: {artifact.path}")
        seen.add(artifact.path)
    return snapshot
