"""Pytest configuration and fixtures for end-to-end tests.

These tests drive the lpg CLI as a subprocess, the way a user would, against
real PostgreSQL binaries. This module provides fixtures for:
- Locating initdb/pg_ctl/psql (LPG_PG_BIN or PATH)
- An isolated working directory and temporary directory per test
- An lpg CLI wrapper
- A created instance whose server is stopped on teardown

Tests are skipped when PostgreSQL is not installed or when running as root
(initdb refuses to run as root).
"""

import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Generator

import pytest

PROJECT_ROOT = Path(__file__).parent.parent.parent
SRC_DIR = PROJECT_ROOT / "src"


def find_pg_bin() -> Path | None:
    """Find the directory holding the PostgreSQL binaries."""
    if configured := os.environ.get("LPG_PG_BIN"):
        return Path(configured)
    initdb = shutil.which("initdb")
    if initdb is None:
        return None
    return Path(initdb).resolve().parent


class LpgCli:
    """Wrapper for lpg CLI commands."""

    __test__ = False  # Prevent pytest from collecting this as a test class

    def __init__(self, workdir: Path, pg_bin: Path, temp_dir: Path):
        self.workdir = workdir
        self.temp_dir = temp_dir
        self.env = os.environ.copy()
        self.env["LPG_PG_BIN"] = str(pg_bin)
        self.env["TMPDIR"] = str(temp_dir)
        self.env["PYTHONPATH"] = os.pathsep.join(
            p for p in (str(SRC_DIR), self.env.get("PYTHONPATH", "")) if p
        )

    def run(self, *args: str, script: str = "", check: bool = True) -> subprocess.CompletedProcess:
        """Run lpg with given arguments, feeding script on stdin."""
        return subprocess.run(
            [sys.executable, "-m", "lpg", *args],
            cwd=self.workdir,
            env=self.env,
            input=script,
            capture_output=True,
            text=True,
            timeout=120,
            check=check,
        )

    def make(self, loc: str) -> subprocess.CompletedProcess:
        return self.run("make", loc)

    def cmd(self, loc: str, *command: str, check: bool = True) -> subprocess.CompletedProcess:
        return self.run("cmd", loc, *command, check=check)

    def query(self, loc: str, sql: str, *psql_args: str) -> str:
        """Run a query with psql -tA and return its output."""
        return self.cmd(loc, "psql", *psql_args, "-tAc", sql).stdout.strip()

    def sandbox_shell(self, script: str, check: bool = True) -> subprocess.CompletedProcess:
        return self.run("shell", "--sandbox", script=script, check=check)


@pytest.fixture(scope="session")
def pg_bin() -> Path:
    """Return the PostgreSQL bin directory, skipping when unavailable."""
    if hasattr(os, "geteuid") and os.geteuid() == 0:
        pytest.skip("initdb cannot run as root")
    bin_dir = find_pg_bin()
    if bin_dir is None or not (bin_dir / "initdb").exists():
        pytest.skip("PostgreSQL binaries not found (set LPG_PG_BIN or add initdb to PATH)")
    return bin_dir


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    """Directory the CLI runs in; instances are created relative to it."""
    path = tmp_path / "w"
    path.mkdir()
    return path


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """TMPDIR for the CLI, so sandbox leftovers are visible to tests."""
    path = tmp_path / "t"
    path.mkdir()
    return path


@pytest.fixture
def lpg(pg_bin: Path, workdir: Path, temp_dir: Path) -> LpgCli:
    return LpgCli(workdir, pg_bin, temp_dir)


@pytest.fixture
def instance(lpg: LpgCli) -> Generator[str, None, None]:
    """Create an instance at ./pg and stop its server after the test."""
    lpg.make("pg")

    yield "pg"

    # Stop the server if a test left it running
    status = lpg.cmd("pg", "pg_ctl", "status", check=False)
    if status.returncode == 0:
        lpg.run("pg-stop", "pg", check=False)
