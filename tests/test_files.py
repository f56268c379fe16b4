"""Unit tests for snapshot fingerprinting and the file synchronizer."""

import pytest

from livepreview.errors import MountError, NotReadyError, SyncError
from livepreview.runner.files import FileSynchronizer, fingerprint
from livepreview.runner.session import SandboxSession
from livepreview.types import FileArtifact
from tests.conftest import FakeRuntime, FakeSandbox, project_files


class TestFingerprint:
    def test_independent_of_order(self):
        files = project_files()

        assert fingerprint(files) == fingerprint(list(reversed(files)))

    def test_changes_with_content(self):
        files = project_files()
        edited = [files[0], FileArtifact(path="src/main.js", content="console.log('bye')\n")]

        assert fingerprint(files) != fingerprint(edited)

    def test_changes_with_binary_flag(self):
        text = [FileArtifact(path="a.bin", content=b"abc")]
        binary = [FileArtifact(path="a.bin", content=b"abc", is_binary=True)]

        assert fingerprint(text) != fingerprint(binary)

    def test_path_boundaries_are_unambiguous(self):
        one = [FileArtifact(path="ab", content="c")]
        other = [FileArtifact(path="a", content="bc")]

        assert fingerprint(one) != fingerprint(other)


class TestFileSynchronizer:
    """Tests for mount and sync against a fake sandbox."""

    @pytest.mark.asyncio
    async def test_mount_writes_files_and_marks_session(self, sandbox: FakeSandbox):
        session = SandboxSession(FakeRuntime(sandbox))
        await session.acquire()
        synchronizer = FileSynchronizer(session)

        await synchronizer.mount(project_files())

        assert session.mounted is True
        assert set(sandbox.files) == {"package.json", "src/main.js"}

    @pytest.mark.asyncio
    async def test_mount_requires_acquired_sandbox(self, sandbox: FakeSandbox):
        synchronizer = FileSynchronizer(SandboxSession(FakeRuntime(sandbox)))

        with pytest.raises(NotReadyError):
            await synchronizer.mount(project_files())

    @pytest.mark.asyncio
    async def test_mount_failure_is_wrapped(self, sandbox: FakeSandbox):
        sandbox.mount_error = PermissionError("read-only filesystem")
        session = SandboxSession(FakeRuntime(sandbox))
        await session.acquire()

        with pytest.raises(MountError, match="read-only filesystem"):
            await FileSynchronizer(session).mount(project_files())
        assert session.mounted is False

    @pytest.mark.asyncio
    async def test_sync_requires_mount(self, sandbox: FakeSandbox):
        session = SandboxSession(FakeRuntime(sandbox))
        await session.acquire()

        with pytest.raises(NotReadyError):
            await FileSynchronizer(session).sync(project_files())
        assert sandbox.syncs == []

    @pytest.mark.asyncio
    async def test_sync_failure_is_wrapped(self, sandbox: FakeSandbox):
        session = SandboxSession(FakeRuntime(sandbox))
        await session.acquire()
        synchronizer = FileSynchronizer(session)
        await synchronizer.mount(project_files())
        sandbox.sync_error = OSError("disk full")

        with pytest.raises(SyncError, match="disk full"):
            await synchronizer.sync(project_files())
