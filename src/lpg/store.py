"""On-disk layout of an lpg-managed PostgreSQL instance.

An instance is a directory holding:

    cluster/   PostgreSQL data directory (initdb target, PGDATA)
    socket/    unix socket directory (PGHOST)
    log        server log written by pg_ctl
"""

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .config import SUPERUSER, LpgConfig
from .errors import AlreadyExists, InitializationFailed, NotFound, SubprocessFailed

DATA_SUBDIR = "cluster"
SOCKET_SUBDIR = "socket"
LOG_FILENAME = "log"


@dataclass(frozen=True)
class Instance:
    """An instance location. root is always absolute."""

    root: Path

    @property
    def data_dir(self) -> Path:
        return self.root / DATA_SUBDIR

    @property
    def socket_dir(self) -> Path:
        return self.root / SOCKET_SUBDIR

    @property
    def log_path(self) -> Path:
        return self.root / LOG_FILENAME

    def is_running(self, config: LpgConfig) -> bool:
        """Check whether a server is running on this instance's data directory.

        Raises:
            OSError: If pg_ctl cannot be executed.
        """
        result = subprocess.run(
            [config.program("pg_ctl"), "status", "-D", str(self.data_dir)],
            capture_output=True,
            text=True,
        )
        # 0 = running, 3 = not running, 4 = no usable data directory
        return result.returncode == 0

    def stop(self, config: LpgConfig) -> None:
        """Stop the server with fast shutdown, waiting until it is down."""
        result = subprocess.run(
            [config.program("pg_ctl"), "stop", "-D", str(self.data_dir), "-m", "fast", "-w"],
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise SubprocessFailed(
                result.returncode,
                f"pg_ctl stop failed: {result.stderr.strip() or result.stdout.strip()}",
            )


def create_instance(
    location: str | Path,
    config: LpgConfig,
    echo: Callable[[str], None] | None = None,
) -> Instance:
    """Create and initialize a new instance at location.

    The directory tree is laid out first, then initdb is run on the data
    directory with the fixed superuser. A failed initdb leaves the partial
    tree in place for inspection.

    Args:
        location: Path of the instance directory. Must not exist.
        config: Effective configuration (locates initdb).
        echo: Optional sink for initdb's own output.

    Returns:
        The new Instance.

    Raises:
        AlreadyExists: If anything already exists at location.
        InitializationFailed: If the directories cannot be created, or
            initdb is missing or fails.
    """
    path = Path(location).expanduser()
    if path.exists() or path.is_symlink():
        raise AlreadyExists(f"{location} already exists")

    instance = Instance(path.resolve())
    try:
        instance.data_dir.mkdir(parents=True)
        instance.socket_dir.mkdir()
        instance.log_path.touch()
    except OSError as e:
        raise InitializationFailed(f"Cannot create {location}: {e}") from e

    cmd = [config.program("initdb"), str(instance.data_dir), "-U", SUPERUSER]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise InitializationFailed(f"Cannot run initdb: {e}") from e

    if echo is not None and result.stdout:
        echo(result.stdout.rstrip())

    if result.returncode != 0:
        detail = result.stderr.strip() or result.stdout.strip()
        raise InitializationFailed(
            f"initdb failed with status {result.returncode} for {instance.root}"
            + (f":\n{detail}" if detail else "")
        )

    return instance


def resolve_instance(location: str | Path) -> Instance:
    """Resolve an existing instance location to an absolute Instance.

    Raises:
        NotFound: If location is not an existing directory.
    """
    path = Path(location).expanduser()
    if not path.is_dir():
        raise NotFound(f"{location} does not exist or is not a directory")
    return Instance(path.resolve())
