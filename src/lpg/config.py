"""Configuration: where the PostgreSQL binaries live and which shell to use.

Priority (highest first):
    1. Command-line options / environment variables (LPG_PG_BIN, LPG_SHELL)
    2. lpg.toml in the current directory or one of its parents
    3. Built-in defaults (binaries from PATH, bash, port 5432)
"""

import shutil
import tomllib
from dataclasses import dataclass
from pathlib import Path

import pyrootutils

from .errors import ConfigError

CONFIG_FILENAME = "lpg.toml"

DEFAULT_SHELL = "bash"
DEFAULT_PORT = 5432

# Login identity initdb creates and psql defaults to
SUPERUSER = "postgres"


@dataclass(frozen=True)
class LpgConfig:
    """Resolved settings for one lpg invocation."""

    pg_bin: Path | None = None
    shell: str = DEFAULT_SHELL
    port: int = DEFAULT_PORT

    def program(self, name: str) -> str:
        """Get the command to run for a PostgreSQL binary such as initdb."""
        if self.pg_bin is not None:
            return str(self.pg_bin / name)
        return shutil.which(name) or name


def find_config_file(search_from: Path | None = None) -> Path | None:
    """Find lpg.toml by walking up from search_from (default: cwd)."""
    start = search_from or Path.cwd()
    try:
        root = pyrootutils.find_root(search_from=start, indicator=CONFIG_FILENAME)
    except FileNotFoundError:
        return None
    return root / CONFIG_FILENAME


def read_config_file(path: Path) -> dict:
    """Parse an lpg.toml file into a flat dict of known settings."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    settings: dict = {}
    postgres = data.get("postgres", {})
    if bin_dir := postgres.get("bin"):
        # Relative to the config file, not the cwd
        settings["pg_bin"] = (path.parent / Path(bin_dir).expanduser()).resolve()
    if "port" in postgres:
        port = postgres["port"]
        if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
            raise ConfigError(f"{path}: postgres.port must be a TCP port number, got {port!r}")
        settings["port"] = port
    if program := data.get("shell", {}).get("program"):
        settings["shell"] = str(program)
    return settings


def load_config(
    pg_bin: Path | None = None,
    shell: str | None = None,
    search_from: Path | None = None,
) -> LpgConfig:
    """Build the effective configuration.

    Explicit arguments win over lpg.toml, which wins over the defaults.
    """
    settings: dict = {}
    config_file = find_config_file(search_from)
    if config_file is not None:
        settings.update(read_config_file(config_file))

    if pg_bin is not None:
        settings["pg_bin"] = pg_bin.expanduser().resolve()
    if shell:
        settings["shell"] = shell

    return LpgConfig(**settings)
