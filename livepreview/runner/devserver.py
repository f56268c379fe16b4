"""Lifecycle of the long-running dev server process."""

import asyncio
import shlex
from collections.abc import Sequence

from ..errors import AlreadyRunningError, StartError, StreamReadError
from ..log_config import get_logger
from ..runtime.base import ProcessHandle
from ..types import ServerState
from .output import OutputBuffer
from .preview import PreviewBridge
from .session import SandboxSession


class DevServerController:
    """
    Starts, streams and stops the dev server.

    States: idle -> starting -> running -> stopping -> idle, and
    running -> idle when the process exits on its own. At most one process
    handle is live, held on the session.
    """

    def __init__(
        self,
        session: SandboxSession,
        output: OutputBuffer,
        preview: PreviewBridge,
        command: Sequence[str],
    ):
        self.session = session
        self.output = output
        self.preview = preview
        self.command = tuple(command)
        self.state = ServerState.IDLE
        self._reader: asyncio.Task[int | None] | None = None
        self.log = get_logger("devserver", command=shlex.join(self.command))

    @property
    def process(self) -> ProcessHandle | None:
        return self.session.process

    async def start(self) -> ProcessHandle:
        if self.state != ServerState.IDLE:
            raise AlreadyRunningError(f"Dev server is {self.state}")
        sandbox = self.session.sandbox
        if sandbox is None:
            raise StartError("Sandbox has not been acquired")

        self.state = ServerState.STARTING
        self.log.info("devserver.start")
        try:
            handle = await sandbox.spawn(self.command)
        except Exception as e:
            self.state = ServerState.IDLE
            self.log.error("devserver.start_error", exc=e)
            raise StartError(f"Could not start {shlex.join(self.command)}: {e}") from e

        self.session.process = handle
        self.state = ServerState.RUNNING
        self._reader = asyncio.create_task(self._consume_output(handle))
        self.log.info("devserver.running")
        return handle

    async def _consume_output(self, handle: ProcessHandle) -> int | None:
        """
        Forward output chunks until the process exits.

        Returns the exit code when the process ended on its own while running,
        None when it was stopped. Raises StreamReadError when the stream broke
        while the server was still running.
        """
        stream = handle.output()
        try:
            try:
                async for chunk in stream:
                    self.output.append(chunk)
            finally:
                await stream.aclose()
            exit_code = await handle.wait()
        except asyncio.CancelledError:
            self.log.debug("devserver.reader_cancelled")
            return None
        except Exception as e:
            self.log.error("devserver.stream_error", exc=e)
            if self.session.process is not handle or self.state != ServerState.RUNNING:
                return None
            raise StreamReadError(str(e) or type(e).__name__) from e

        if self.session.process is not handle or self.state != ServerState.RUNNING:
            return None

        self.session.process = None
        self._reader = None
        self.state = ServerState.IDLE
        self.preview.clear()
        self.log.info("devserver.exited", exit_code=exit_code)
        return exit_code

    async def wait_exited(self) -> int | None:
        """Wait for the output reader; see _consume_output for the result and errors."""
        reader = self._reader
        if reader is None:
            return None
        try:
            return await asyncio.shield(reader)
        except asyncio.CancelledError:
            if reader.cancelled():
                return None
            raise

    async def stop(self) -> Exception | None:
        """
        Kill the process and return to idle.

        The transition happens even if the kill raises; the kill error is
        returned, not raised.
        """
        handle = self.session.process
        kill_error: Exception | None = None
        self.state = ServerState.STOPPING
        self.log.info("devserver.stop")

        try:
            if handle is not None:
                await handle.kill()
        except Exception as e:
            kill_error = e
            self.log.warn("devserver.kill_error", exc=e)
        finally:
            reader, self._reader = self._reader, None
            if reader is not None:
                if not reader.done():
                    reader.cancel()
                await asyncio.gather(reader, return_exceptions=True)
            self.session.process = None
            self.state = ServerState.IDLE
            self.preview.clear()

        self.log.info("devserver.stopped", kill_failed=kill_error is not None)
        return kill_error
