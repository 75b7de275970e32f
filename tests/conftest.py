"""Shared fixtures for lpg unit tests.

The tests never need a real PostgreSQL: fake initdb, pg_ctl and psql scripts
are written to a temporary bin directory and selected through pg_bin. The
fakes append one line per invocation to the file named by FAKE_PG_CALLS:

    <program>|<arg1>|<arg2>|...|

psql records the PGUSER it was started with as its first field
(PGUSER=<value>), since that is how its default login identity is supplied.

A running server is simulated by a postmaster.pid file in the data directory.
"""

import os
import stat
import sys
from pathlib import Path
from typing import Callable

import pytest

from lpg.config import LpgConfig

SRC_DIR = Path(__file__).resolve().parent.parent / "src"

FAKE_INITDB = """#!/bin/sh
printf '%s|' initdb "$@" >> "${FAKE_PG_CALLS:-/dev/null}"; echo >> "${FAKE_PG_CALLS:-/dev/null}"
if [ -n "$FAKE_INITDB_FAIL" ]; then
  echo "initdb: error: $FAKE_INITDB_FAIL" >&2
  exit 1
fi
echo "fake initdb: $1"
touch "$1/PG_VERSION"
"""

FAKE_PG_CTL = """#!/bin/sh
printf '%s|' pg_ctl "$@" >> "${FAKE_PG_CALLS:-/dev/null}"; echo >> "${FAKE_PG_CALLS:-/dev/null}"
verb=""
datadir="$PGDATA"
while [ $# -gt 0 ]; do
  case "$1" in
    -D) datadir="$2"; shift 2 ;;
    -l|-o|-m) shift 2 ;;
    -w) shift ;;
    *) verb="$1"; shift ;;
  esac
done
case "$verb" in
  status)
    [ -f "$datadir/postmaster.pid" ] && exit 0
    exit 3 ;;
  start|restart)
    echo 1 > "$datadir/postmaster.pid"
    echo "server started" ;;
  stop)
    if [ -n "$FAKE_PG_CTL_STOP_FAIL" ]; then
      echo "pg_ctl: could not stop server" >&2
      exit 1
    fi
    if [ ! -f "$datadir/postmaster.pid" ]; then
      echo "pg_ctl: PID file does not exist" >&2
      exit 1
    fi
    rm -f "$datadir/postmaster.pid"
    echo "server stopped" ;;
  *)
    echo "pg_ctl: unknown verb: $verb" >&2
    exit 1 ;;
esac
"""

FAKE_PSQL = """#!/bin/sh
printf '%s|' psql "PGUSER=${PGUSER-}" "$@" >> "${FAKE_PG_CALLS:-/dev/null}"; echo >> "${FAKE_PG_CALLS:-/dev/null}"
echo "        1 |        2"
"""

def _write_script(path: Path, content: str) -> None:
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


@pytest.fixture
def fake_pg_bin(tmp_path: Path) -> Path:
    """Directory with fake initdb, pg_ctl and psql."""
    bin_dir = tmp_path / "fake-bin"
    bin_dir.mkdir()
    _write_script(bin_dir / "initdb", FAKE_INITDB)
    _write_script(bin_dir / "pg_ctl", FAKE_PG_CTL)
    _write_script(bin_dir / "psql", FAKE_PSQL)
    return bin_dir


@pytest.fixture
def config(fake_pg_bin: Path) -> LpgConfig:
    return LpgConfig(pg_bin=fake_pg_bin)


@pytest.fixture
def pg_calls(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Callable[[], list[list[str]]]:
    """Record fake PostgreSQL invocations; call the fixture value to read them."""
    calls_file = tmp_path / "pg-calls.txt"
    calls_file.touch()
    monkeypatch.setenv("FAKE_PG_CALLS", str(calls_file))

    def read() -> list[list[str]]:
        calls = []
        for line in calls_file.read_text().splitlines():
            # Every field is followed by a separator
            calls.append(line.split("|")[:-1])
        return calls

    return read


@pytest.fixture
def sandbox_tmp(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point tempfile at an empty directory so leftover sandboxes are visible."""
    tmp = tmp_path / "tmp"
    tmp.mkdir()
    monkeypatch.setattr("tempfile.tempdir", str(tmp))
    return tmp


@pytest.fixture
def lpg_env(fake_pg_bin: Path, pg_calls) -> dict[str, str]:
    """Environment for running `python -m lpg` as a real subprocess."""
    env = dict(os.environ)
    env["LPG_PG_BIN"] = str(fake_pg_bin)
    env["PYTHONPATH"] = os.pathsep.join(
        p for p in (str(SRC_DIR), env.get("PYTHONPATH", "")) if p
    )
    return env


@pytest.fixture
def lpg_command() -> list[str]:
    return [sys.executable, "-m", "lpg"]
