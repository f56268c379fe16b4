"""Errors raised by the runner and its runtime providers."""


class RunnerError(Exception):
    """Base class for runner errors."""

    pass


class AcquisitionError(RunnerError):
    """Raised when the sandbox cannot be provisioned.

    Terminal for the session: the orchestrator records it once and does not
    retry.
    """

    pass


class MountError(RunnerError):
    """Raised when the runtime rejects a write during the initial mount.

    A partial mount is not guaranteed clean, so this is terminal for the
    session as well.
    """

    pass


class SyncError(RunnerError):
    """Raised when a snapshot re-sync fails. Scoped to the attempt."""

    pass


class InstallError(RunnerError):
    """Raised when the install command cannot be run at all.

    A command that runs and exits nonzero is not an InstallError; it is a
    CommandResult with success=False.
    """

    pass


class StartError(RunnerError):
    """Raised when the dev server process cannot be spawned."""

    pass


class StreamReadError(RunnerError):
    """Raised inside the output reader when the process stream breaks."""

    pass


class GuardError(RunnerError):
    """Raised when an action is requested while its preconditions do not hold."""

    pass


class NotReadyError(GuardError):
    """Raised when the sandbox has not been acquired and mounted yet."""

    pass


class AlreadyRunningError(GuardError):
    """Raised when a dev server is started while one is already live."""

    pass


class NotRunningError(GuardError):
    """Raised when stop is requested without a running dev server."""

    pass


class InstallInProgressError(GuardError):
    """Raised when an install is requested while another is still running."""

    pass


class InstallRequiredError(GuardError):
    """Raised when the dev server is started before any successful install."""

    pass


class ManifestMissingError(GuardError):
    """Raised when install is requested for a snapshot without a manifest file."""

    pass
