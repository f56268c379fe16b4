"""Pushes file snapshots into the sandbox."""

import hashlib
from collections.abc import Sequence

from ..errors import MountError, NotReadyError, SyncError
from ..log_config import get_logger
from ..types import FileArtifact
from .session import SandboxSession


def fingerprint(files: Sequence[FileArtifact]) -> str:
    """Content digest of a snapshot, independent of file order."""
    digest = hashlib.sha256()
    for artifact in sorted(files, key=lambda f: f.path):
        data = artifact.data()
        digest.update(artifact.path.encode("utf-8"))
        digest.update(b"\x00b" if artifact.is_binary else b"\x00t")
        digest.update(len(data).to_bytes(8, "big"))
        digest.update(data)
    return digest.hexdigest()


class FileSynchronizer:
    """Initial mount and idempotent re-sync of full snapshots."""

    def __init__(self, session: SandboxSession):
        self.session = session
        self.log = get_logger("files")

    async def mount(self, files: Sequence[FileArtifact]) -> None:
        sandbox = self.session.sandbox
        if sandbox is None:
            raise NotReadyError("Sandbox has not been acquired")

        try:
            await sandbox.mount(files)
        except Exception as e:
            self.log.error("files.mount_error", exc=e, file_count=len(files))
            raise MountError(str(e) or type(e).__name__) from e

        self.session.mounted = True
        self.log.info("files.mounted", file_count=len(files))

    async def sync(self, files: Sequence[FileArtifact]) -> None:
        if not self.session.ready:
            raise NotReadyError("Files cannot be synced before the initial mount")

        try:
            await self.session.sandbox.sync(files)
        except Exception as e:
            self.log.error("files.sync_error", exc=e, file_count=len(files))
            raise SyncError(str(e) or type(e).__name__) from e

        self.log.info("files.synced", file_count=len(files))
