"""Runner configuration resolved from the environment."""

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from .log_config import get_logger

log = get_logger("config")

ENV_PREFIX = "LIVEPREVIEW_"

DEFAULT_INSTALL_COMMAND = "npm install"
DEFAULT_DEV_COMMAND = "npm run dev"
DEFAULT_DEV_PORT = 3000
DEFAULT_MANIFEST = "package.json"
OUTPUT_LIMIT = 10_000

READY_TIMEOUT = 120.0
READY_TIMEOUT_MIN = 1.0
READY_TIMEOUT_MAX = 600.0


@dataclass(frozen=True)
class RunnerConfig:
    """Commands and limits used by the orchestrator and runtime providers."""

    install_command: tuple[str, ...] = tuple(shlex.split(DEFAULT_INSTALL_COMMAND))
    dev_command: tuple[str, ...] = tuple(shlex.split(DEFAULT_DEV_COMMAND))
    dev_port: int = DEFAULT_DEV_PORT
    manifest: str = DEFAULT_MANIFEST
    output_limit: int = OUTPUT_LIMIT
    ready_timeout: float = READY_TIMEOUT
    runtime: str = "local"
    workspace_dir: Path | None = None
    modal_app_name: str = "livepreview"
    modal_image: str = "node:20-slim"
    extra_env: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "RunnerConfig":
        env = os.environ if environ is None else environ

        def get(name: str, default: str) -> str:
            value = env.get(ENV_PREFIX + name)
            return default if value is None or value == "" else value

        workspace = env.get(ENV_PREFIX + "WORKSPACE")
        runtime = get("RUNTIME", "local").lower()
        if runtime not in ("local", "modal"):
            log.warn("config.runtime_invalid", runtime=runtime, detail="using local")
            runtime = "local"

        return cls(
            install_command=tuple(shlex.split(get("INSTALL_COMMAND", DEFAULT_INSTALL_COMMAND))),
            dev_command=tuple(shlex.split(get("DEV_COMMAND", DEFAULT_DEV_COMMAND))),
            dev_port=_resolve_int(env, "DEV_PORT", DEFAULT_DEV_PORT),
            manifest=get("MANIFEST", DEFAULT_MANIFEST),
            output_limit=_resolve_int(env, "OUTPUT_LIMIT", OUTPUT_LIMIT),
            ready_timeout=resolve_seconds(
                env,
                "READY_TIMEOUT",
                default=READY_TIMEOUT,
                min_value=READY_TIMEOUT_MIN,
                max_value=READY_TIMEOUT_MAX,
            ),
            runtime=runtime,
            workspace_dir=Path(workspace) if workspace else None,
            modal_app_name=get("MODAL_APP", "livepreview"),
            modal_image=get("MODAL_IMAGE", "node:20-slim"),
        )


def _resolve_int(env, name: str, default: int) -> int:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        log.warn("config.int_invalid", name=name, detail=f"invalid value '{raw}', using default")
        return default
    if value <= 0:
        log.warn("config.int_invalid", name=name, detail=f"non-positive value {value}, using default")
        return default
    return value


def resolve_seconds(
    env,
    name: str,
    default: float,
    min_value: float,
    max_value: float,
) -> float:
    """Read a duration in seconds, falling back on invalid input and clamping to bounds."""
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        value = default
    else:
        try:
            value = float(raw)
        except ValueError:
            log.warn(
                "config.timeout_invalid",
                timeout_name=name,
                timeout_ms=int(default * 1000),
                detail=f"invalid value '{raw}', using default",
            )
            value = default

    if value < min_value:
        log.warn(
            "config.timeout_clamped",
            timeout_name=name,
            timeout_ms=int(min_value * 1000),
            detail=f"below min ({min_value}s), clamped",
        )
        value = min_value
    elif value > max_value:
        log.warn(
            "config.timeout_clamped",
            timeout_name=name,
            timeout_ms=int(max_value * 1000),
            detail=f"above max ({max_value}s), clamped",
        )
        value = max_value

    return value
