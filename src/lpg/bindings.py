"""Environment bindings that point PostgreSQL client tools at one instance.

A Bindings object is computed fresh for every invocation and never written
anywhere. It can be applied three ways, none of which touch the calling
process's own environment:

- wrap_argv() and command_environ(): run pg_ctl/psql directly
- environ(): build a child environment, with the overrides exported as bash
  functions so that bash children (scripts, interactive shells) pick them up
- render_script(): a sourceable bash script, printed by `lpg env`
"""

import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

from .config import SUPERUSER, LpgConfig
from .store import Instance

# Inherited libpq variables that would route clients away from the socket
UNSET_VARIABLES = ("PGHOSTADDR", "PGSERVICE")

SERVER_CONTROL = "pg_ctl"
CLIENT = "psql"


def server_options(socket_dir: str) -> str:
    """Options passed to postgres through pg_ctl -o.

    TCP listening is disabled entirely; the instance's socket directory is
    the only way in.
    """
    return f"-c listen_addresses='' -k {socket_dir}"


@dataclass(frozen=True)
class Bindings:
    """Variables and command overrides for one instance."""

    instance: Instance
    config: LpgConfig
    superuser: str = SUPERUSER

    @property
    def connstr(self) -> str:
        host = quote(str(self.instance.socket_dir), safe="/")
        return f"postgresql://{self.superuser}@localhost?host={host}"

    def variables(self) -> dict[str, str]:
        """The environment variables exported into the instance scope."""
        return {
            "PGDATA": str(self.instance.data_dir),
            "PGHOST": str(self.instance.socket_dir),
            "PGPORT": str(self.config.port),
            "LPG_IN_SHELL": "1",
            "LPG_LOC": str(self.instance.root),
            "LPG_CONNSTR": self.connstr,
        }

    def _shell_program(self, name: str) -> str:
        if self.config.pg_bin is not None:
            return shlex.quote(self.config.program(name))
        # Skip the function being defined and go straight to PATH
        return f"command {name}"

    def functions(self) -> dict[str, str]:
        """Bash function bodies overriding pg_ctl and psql.

        $LPG_LOC is expanded when the function runs, not when it is defined.
        psql gets the superuser through PGUSER, which libpq ranks below any
        user named on the command line (-U, a second positional argument or
        a connection string).
        """
        pg_ctl = self._shell_program(SERVER_CONTROL)
        psql = self._shell_program(CLIENT)
        return {
            SERVER_CONTROL: (
                f"  {pg_ctl} \\\n"
                '    -l "$LPG_LOC/log" \\\n'
                '    -o "' + server_options("'$LPG_LOC/socket'") + '" \\\n'
                '    "$@"'
            ),
            CLIENT: f'  PGUSER={shlex.quote(self.superuser)} {psql} "$@"',
        }

    def environ(self, base: dict[str, str] | None = None) -> dict[str, str]:
        """Build a new environment map for a child process.

        Args:
            base: Environment to start from (default: a copy of os.environ).
                Never modified.
        """
        env = dict(os.environ if base is None else base)
        for name in UNSET_VARIABLES:
            env.pop(name, None)
        env.update(self.variables())
        for name, body in self.functions().items():
            # Format bash uses to import exported functions
            env[f"BASH_FUNC_{name}%%"] = f"() {{\n{body}\n}}"
        return env

    def wrap_argv(self, argv: list[str]) -> list[str]:
        """Apply the pg_ctl override to a direct command line.

        psql only has its program resolved; its default user comes from
        command_environ(). Other commands are returned unchanged.
        """
        if not argv:
            return list(argv)
        name, args = argv[0], list(argv[1:])

        if name == SERVER_CONTROL:
            return [
                self.config.program(SERVER_CONTROL),
                "-l", str(self.instance.log_path),
                "-o", server_options(shlex.quote(str(self.instance.socket_dir))),
                *args,
            ]
        if name == CLIENT:
            return [self.config.program(CLIENT), *args]
        return [name, *args]

    def command_environ(self, argv: list[str], base: dict[str, str] | None = None) -> dict[str, str]:
        """The environment for running argv directly.

        Like environ(), plus PGUSER when argv is a bare psql.
        """
        env = self.environ(base)
        if argv and argv[0] == CLIENT:
            env["PGUSER"] = self.superuser
        return env

    def render_script(self, cleanup_root: Path | None = None) -> str:
        """Render a bash script that applies these bindings when sourced.

        Args:
            cleanup_root: For sandboxes, the directory the sourcing shell
                should remove (after stopping the server) when it exits.
        """
        lines = [""]
        lines.append(f"unset {' '.join(UNSET_VARIABLES)}")
        for key, value in self.variables().items():
            lines.append(f"export {key}={shlex.quote(value)}")
        lines.append("")

        for name, body in self.functions().items():
            lines.append(f"function {name} {{")
            lines.append(body)
            lines.append("}")
            lines.append(f"export -f {name}")
            lines.append("")

        if cleanup_root is not None:
            lines.extend(self._cleanup_script(cleanup_root))

        return "\n".join(lines)

    def _cleanup_script(self, cleanup_root: Path) -> list[str]:
        pg_ctl = self._shell_program(SERVER_CONTROL)
        call = (
            f"_lpg_cleanup {shlex.quote(str(self.instance.data_dir))} "
            f"{shlex.quote(str(cleanup_root))}; "
        )
        return [
            "function _lpg_cleanup {",
            f'  if {pg_ctl} status -D "$1" >/dev/null 2>&1; then',
            f'    {pg_ctl} stop -D "$1" -m fast -w >/dev/null 2>&1 \\',
            '      || echo >&2 "Warning: could not stop the sandbox server"',
            "  fi",
            '  rm -rf "$2"',
            "}",
            # The EXIT trap the shell already had runs after ours; its text
            # is copied in, so sourcing twice chains both cleanups
            'eval "_lpg_exit_trap=($(trap -p EXIT))"',
            f'trap {shlex.quote(call)}"${{_lpg_exit_trap[2]:-}}" EXIT',
            "trap 'exit 143' TERM",
            "trap 'exit 129' HUP",
            "",
        ]


def resolve_bindings(instance: Instance, config: LpgConfig) -> Bindings:
    """Compute the binding set for an instance."""
    return Bindings(instance=instance, config=config)
