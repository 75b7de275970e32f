"""Ephemeral instances that remove themselves when their owner exits.

Usage:

    with Sandbox(config) as instance:
        run_scoped([...], resolve_bindings(instance, config).environ())

Teardown (stop the server if it is running, then delete the temporary
directory) runs exactly once: on normal exit, on an exception, on Ctrl-C
(KeyboardInterrupt) and on SIGTERM/SIGHUP, which are converted to
SystemExit while the sandbox is open.
"""

import shutil
import signal
import tempfile
import threading
from pathlib import Path
from typing import Callable

import click

from .config import LpgConfig
from .errors import InitializationFailed, LpgError
from .runner import TERMINATION_SIGNALS
from .store import Instance, create_instance

TEMP_PREFIX = "lpg-"
INSTANCE_NAME = "pg"


def warn(message: str) -> None:
    """Default warning sink: a yellow line on stderr."""
    click.echo(click.style(f"Warning: {message}", fg="yellow"), err=True)


def _raise_exit(signum, frame) -> None:
    raise SystemExit(128 + signum)


class Sandbox:
    """A temporary instance plus its teardown."""

    def __init__(
        self,
        config: LpgConfig,
        keep: bool = False,
        warn: Callable[[str], None] = warn,
        echo: Callable[[str], None] | None = None,
    ):
        self.config = config
        self.keep = keep
        self.warn = warn
        self.echo = echo
        self.instance: Instance | None = None
        self.temp_dir: Path | None = None
        self._released = False
        self._saved_handlers: dict[int, object] = {}

    def __enter__(self) -> Instance:
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False

    def open(self) -> Instance:
        """Create the temporary instance and arm teardown.

        If creation fails nothing is left armed and the error propagates.
        """
        if self.temp_dir is not None:
            raise RuntimeError("Sandbox is already open")

        self._install_handlers()
        temp_dir = None
        try:
            try:
                temp_dir = Path(tempfile.mkdtemp(prefix=TEMP_PREFIX))
            except OSError as e:
                raise InitializationFailed(f"Cannot create sandbox directory: {e}") from e
            instance = create_instance(temp_dir / INSTANCE_NAME, self.config, echo=self.echo)
        except BaseException:
            self._restore_handlers()
            if temp_dir is not None:
                if self.keep:
                    self.warn(f"Keeping failed sandbox at {temp_dir}")
                else:
                    shutil.rmtree(temp_dir, ignore_errors=True)
            raise

        self.temp_dir = temp_dir
        self.instance = instance
        return instance

    def detach(self) -> Path:
        """Hand the sandbox over to another owner without tearing it down.

        Used by `lpg env --sandbox`, where the sourcing shell becomes
        responsible for removal. Returns the directory to remove.
        """
        if self.temp_dir is None:
            raise RuntimeError("Sandbox is not open")
        self._released = True
        self._restore_handlers()
        return self.temp_dir

    def release(self) -> None:
        """Stop the server and delete the sandbox. Safe to call repeatedly."""
        if self._released or self.temp_dir is None:
            return
        self._released = True

        # A second signal must not interrupt the teardown itself
        self._ignore_signals()
        try:
            self._teardown()
        finally:
            self._restore_handlers()

    def _teardown(self) -> None:
        instance = self.instance
        try:
            if instance.is_running(self.config):
                instance.stop(self.config)
        except (OSError, LpgError) as e:
            self.warn(f"Could not stop sandbox server at {instance.root}: {e}")

        if self.keep:
            self.warn(f"Keeping sandbox at {self.temp_dir}")
            return

        try:
            shutil.rmtree(self.temp_dir)
        except OSError as e:
            self.warn(f"Could not remove sandbox directory {self.temp_dir}: {e}")

    def _can_handle_signals(self) -> bool:
        return threading.current_thread() is threading.main_thread()

    def _install_handlers(self) -> None:
        if not self._can_handle_signals():
            return
        for signum in TERMINATION_SIGNALS:
            self._saved_handlers[signum] = signal.signal(signum, _raise_exit)

    def _ignore_signals(self) -> None:
        if not self._can_handle_signals():
            return
        for signum in (*TERMINATION_SIGNALS, signal.SIGINT):
            previous = signal.signal(signum, signal.SIG_IGN)
            self._saved_handlers.setdefault(signum, previous)

    def _restore_handlers(self) -> None:
        for signum, handler in self._saved_handlers.items():
            if handler is not None:
                signal.signal(signum, handler)
        self._saved_handlers.clear()
