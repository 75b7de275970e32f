"""Exception types raised by lpg.

Core modules raise these; the CLI turns them into click errors and exit codes.
"""


class LpgError(Exception):
    """Base class for all lpg failures."""


class InvalidArguments(LpgError):
    """A command was invoked with the wrong number or shape of arguments."""


class AlreadyExists(LpgError):
    """An instance was about to be created on a path that already exists."""


class NotFound(LpgError):
    """An instance location does not exist."""


class InitializationFailed(LpgError):
    """initdb could not be run or exited with an error."""


class ConfigError(LpgError):
    """The lpg.toml project file could not be read."""


class SubprocessFailed(LpgError):
    """A scoped command, script or shell exited with a non-zero status.

    detail is set only when lpg itself has something to report (for example
    the program could not be started); otherwise the child has already
    printed its own diagnostics.
    """

    def __init__(self, returncode: int, detail: str | None = None):
        self.returncode = returncode
        self.detail = detail
        super().__init__(detail or f"Command exited with status {returncode}")
