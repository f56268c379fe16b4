"""The single sandbox session owned by an orchestrator."""

import asyncio

from ..errors import AcquisitionError
from ..log_config import get_logger
from ..runtime.base import ProcessHandle, RuntimeProvider, Sandbox


class SandboxSession:
    """
    Holds the acquired sandbox and the live dev-server process.

    Acquisition is coalesced: concurrent callers share one in-flight
    acquisition and observe the same sandbox. A failed acquisition stays
    failed for the life of the session.
    """

    def __init__(self, provider: RuntimeProvider):
        self.provider = provider
        self.sandbox: Sandbox | None = None
        self.mounted = False
        self.process: ProcessHandle | None = None
        self._acquiring: asyncio.Future[Sandbox] | None = None
        self.log = get_logger("session")

    @property
    def ready(self) -> bool:
        return self.sandbox is not None and self.mounted

    async def acquire(self) -> Sandbox:
        if self.sandbox is not None:
            return self.sandbox
        if self._acquiring is None:
            self._acquiring = asyncio.ensure_future(self._acquire())
        return await asyncio.shield(self._acquiring)

    async def _acquire(self) -> Sandbox:
        self.log.info("session.acquire_start")
        try:
            sandbox = await self.provider.acquire()
        except AcquisitionError:
            raise
        except Exception as e:
            raise AcquisitionError(str(e) or type(e).__name__) from e

        self.sandbox = sandbox
        self.log.info("session.acquired")
        return sandbox
