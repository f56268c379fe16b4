"""
Command line entry point.

    livepreview serve ./my-project --port 8000
    livepreview watch ws://localhost:8000/ws
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

import uvicorn
import websockets

from .config import RunnerConfig
from .log_config import configure_logging, get_logger
from .runner.orchestrator import Orchestrator
from .runtime import create_runtime
from .types import FileArtifact
from .web_api import create_app

configure_logging()
log = get_logger("cli")

SKIP_DIRS = {".git", "node_modules", "__pycache__", ".next", "dist"}


def load_directory(root: Path) -> list[FileArtifact]:
    """Read a project directory into a snapshot. Undecodable files are sent as binary."""
    files: list[FileArtifact] = []
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root)
        if any(part in SKIP_DIRS for part in relative.parts) or not path.is_file():
            continue
        data = path.read_bytes()
        try:
            files.append(FileArtifact(path=relative.as_posix(), content=data.decode("utf-8")))
        except UnicodeDecodeError:
            files.append(FileArtifact(path=relative.as_posix(), content=data, is_binary=True))
    return files


async def serve(project: Path, host: str, port: int) -> None:
    config = RunnerConfig.from_env()
    runtime = create_runtime(config)
    orchestrator = Orchestrator(runtime, config)

    files = load_directory(project)
    log.info("cli.serve", project=str(project), file_count=len(files), runtime=config.runtime)
    await orchestrator.update_files(files)

    server = uvicorn.Server(uvicorn.Config(create_app(orchestrator), host=host, port=port))
    try:
        await server.serve()
    finally:
        await orchestrator.close()
        release = getattr(runtime, "release", None)
        if release is not None:
            await release()


def new_output(previous: str, current: str) -> str:
    """
    Text in current that was not already shown.

    The server keeps only the tail of the output, so once the cap is reached
    the old text is no longer a prefix. The longest suffix of previous that
    starts current marks where the new text begins.
    """
    for start in range(len(previous)):
        if current.startswith(previous[start:]):
            return current[len(previous) - start :]
    return current


def _print_update(state: dict, seen_steps: dict[str, str], last_output: str) -> str:
    for step in state.get("steps", []):
        if seen_steps.get(step["key"]) != step["status"]:
            seen_steps[step["key"]] = step["status"]
            print(f"[{step['status']}] {step['name']}")
            if step["status"] == "error" and step.get("output"):
                print(step["output"])

    output = state.get("terminal_output", "")
    sys.stdout.write(new_output(last_output, output))
    sys.stdout.flush()
    return output


async def watch(url: str) -> None:
    seen_steps: dict[str, str] = {}
    last_output = ""
    preview_url = ""

    async with websockets.connect(url) as ws:
        async for message in ws:
            try:
                event = json.loads(message)
            except json.JSONDecodeError as e:
                log.warn("cli.invalid_message", exc=e)
                continue
            if event.get("type") != "state":
                continue

            state = event["state"]
            last_output = _print_update(state, seen_steps, last_output)
            if state.get("preview_url") != preview_url:
                preview_url = state.get("preview_url", "")
                print(f"[preview] {preview_url or '(none)'}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sandboxed dev server with live preview")
    sub = parser.add_subparsers(dest="command", required=True)

    serve_parser = sub.add_parser("serve", help="Mount a project and serve the control API")
    serve_parser.add_argument("project", type=Path, help="Project directory to mount")
    serve_parser.add_argument("--host", default="127.0.0.1", help="API host")
    serve_parser.add_argument("--port", type=int, default=8000, help="API port")

    watch_parser = sub.add_parser("watch", help="Follow steps and terminal output")
    watch_parser.add_argument("url", help="WebSocket URL, e.g. ws://localhost:8000/ws")

    return parser


async def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        if not args.project.is_dir():
            raise SystemExit(f"Not a directory: {args.project}")
        await serve(args.project, args.host, args.port)
    elif args.command == "watch":
        await watch(args.url)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
