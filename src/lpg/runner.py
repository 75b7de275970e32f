"""Run a command inside an instance scope."""

import signal
import subprocess
import threading

from .errors import SubprocessFailed

# Exit statuses used by shells for programs that cannot be run
NOT_EXECUTABLE = 126
NOT_FOUND = 127

TERMINATION_SIGNALS = (signal.SIGTERM, signal.SIGHUP)

# Seconds a child gets to exit after SIGTERM before it is killed
STOP_TIMEOUT = 5


def exit_status(returncode: int) -> int:
    """Convert a Popen return code to a shell-style exit status."""
    if returncode < 0:
        # Killed by a signal
        return 128 - returncode
    return returncode


def _absorb_interrupt(signum, frame) -> None:
    # The terminal delivers the interrupt to the child as well; the parent
    # waits for the child to react instead of abandoning it.
    pass


def _stop_child(proc: subprocess.Popen, in_main_thread: bool) -> None:
    """Terminate proc, killing it after a grace period.

    Further termination signals are ignored until the child is gone.
    """
    saved = {}
    if in_main_thread:
        for signum in TERMINATION_SIGNALS:
            saved[signum] = signal.signal(signum, signal.SIG_IGN)
    try:
        proc.terminate()
        try:
            proc.wait(timeout=STOP_TIMEOUT)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
    finally:
        for signum, handler in saved.items():
            if handler is not None:
                signal.signal(signum, handler)


def run_scoped(argv: list[str], env: dict[str, str], cwd=None) -> None:
    """Run argv with an explicit environment and wait for it.

    The child gets its own environment map; os.environ and the working
    directory of this process are left alone.

    Raises:
        SubprocessFailed: If the program cannot be started or exits non-zero.
            returncode carries the child's exit status unchanged.
    """
    in_main_thread = threading.current_thread() is threading.main_thread()
    previous = signal.getsignal(signal.SIGINT) if in_main_thread else None

    # Python-level handlers are reset to the default in the child on exec
    if in_main_thread:
        signal.signal(signal.SIGINT, _absorb_interrupt)
    try:
        try:
            proc = subprocess.Popen(argv, env=env, cwd=cwd)
        except FileNotFoundError as e:
            raise SubprocessFailed(NOT_FOUND, f"Command not found: {argv[0]}") from e
        except PermissionError as e:
            raise SubprocessFailed(NOT_EXECUTABLE, f"Cannot execute {argv[0]}: {e}") from e

        try:
            returncode = proc.wait()
        except BaseException:
            # e.g. SIGTERM converted to SystemExit while a sandbox is open
            _stop_child(proc, in_main_thread)
            raise
    finally:
        if in_main_thread and previous is not None:
            signal.signal(signal.SIGINT, previous)

    status = exit_status(returncode)
    if status != 0:
        raise SubprocessFailed(status)
