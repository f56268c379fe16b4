"""Runs the dependency install command."""

import shlex
import time
from collections.abc import Sequence

from ..errors import InstallError
from ..log_config import get_logger
from ..types import CommandResult
from .session import SandboxSession


class DependencyInstaller:
    def __init__(self, session: SandboxSession, command: Sequence[str]):
        self.session = session
        self.command = tuple(command)
        self.log = get_logger("installer", command=shlex.join(self.command))

    async def install(self) -> CommandResult:
        """
        Run the install command to completion.

        A nonzero exit is reported through CommandResult.success. Only failures
        to run the command at all raise InstallError.
        """
        if not self.session.ready:
            raise InstallError("Sandbox is not ready")

        start_time = time.time()
        self.log.info("install.start")
        try:
            result = await self.session.sandbox.run_command(self.command)
        except Exception as e:
            self.log.error("install.error", exc=e)
            raise InstallError(f"Could not run {shlex.join(self.command)}: {e}") from e

        duration_ms = int((time.time() - start_time) * 1000)
        self.log.info(
            "install.complete",
            exit_code=result.exit_code,
            outcome="success" if result.success else "failed",
            duration_ms=duration_ms,
        )
        return result
