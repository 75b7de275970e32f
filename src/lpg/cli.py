"""Command-line interface for managing local PostgreSQL instances."""

import functools
import sys
from pathlib import Path

import click

from .bindings import resolve_bindings
from .config import LpgConfig, load_config
from .errors import InvalidArguments, LpgError, SubprocessFailed
from .runner import run_scoped
from .sandbox import Sandbox
from .store import Instance, create_instance, resolve_instance

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}

# Commands whose trailing arguments belong to the wrapped program
PASSTHROUGH_SETTINGS = {
    **CONTEXT_SETTINGS,
    "ignore_unknown_options": True,
    "allow_interspersed_args": False,
}

CONTROL_VERBS = ("start", "stop", "restart")


class LpgGroup(click.Group):
    """Command group that shows usage for unknown subcommands."""

    def get_command(self, ctx: click.Context, cmd_name: str) -> click.Command | None:
        command = super().get_command(ctx, cmd_name)
        if command is None:
            return super().get_command(ctx, "help")
        return command


class Options:
    """Global options, turned into a configuration on first use."""

    def __init__(self, pg_bin: Path | None, shell: str | None):
        self.pg_bin = pg_bin
        self.shell = shell
        self._config: LpgConfig | None = None

    @property
    def config(self) -> LpgConfig:
        if self._config is None:
            self._config = load_config(pg_bin=self.pg_bin, shell=self.shell)
        return self._config


def handle_errors(func):
    """Turn lpg errors into click errors and exit codes."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except InvalidArguments as e:
            raise click.UsageError(str(e), ctx=click.get_current_context(silent=True)) from e
        except SubprocessFailed as e:
            if e.detail:
                click.echo(f"Error: {e.detail}", err=True)
            # Exit with the child's own status
            click.get_current_context().exit(e.returncode)
        except LpgError as e:
            raise click.ClickException(str(e)) from e

    return wrapper


def show_help(ctx: click.Context) -> None:
    """Print the top-level usage text."""
    click.echo_via_pager(ctx.find_root().get_help())


def _target_instance(loc: str | None, sandbox: bool) -> Instance | None:
    """Validate LOC / --sandbox and resolve LOC. Returns None for sandboxes."""
    if sandbox == (loc is not None):
        raise InvalidArguments("Expected exactly one of LOC or --sandbox")
    if loc is not None:
        return resolve_instance(loc)
    return None


def _enter_shell(config: LpgConfig, instance: Instance) -> None:
    bindings = resolve_bindings(instance, config)
    if sys.stdin.isatty():
        click.echo(
            click.style(f"lpg shell: {instance.root}", fg="green") + " (exit to leave)",
            err=True,
        )
    run_scoped([config.shell], bindings.environ())


@click.group(cls=LpgGroup, context_settings=CONTEXT_SETTINGS, invoke_without_command=True)
@click.option(
    "--pg-bin",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="LPG_PG_BIN",
    default=None,
    help="Directory containing initdb, pg_ctl and psql (default: search PATH).",
)
@click.option(
    "--shell",
    "shell_program",
    envvar="LPG_SHELL",
    default=None,
    help="Program used for 'shell' and 'bash' (default: bash).",
)
@click.version_option(package_name="lpg")
@click.pass_context
def cli(ctx: click.Context, pg_bin: Path | None, shell_program: str | None) -> None:
    """lpg (Local PostGres): manage local PostgreSQL instances.

    Each instance is a directory holding its own data directory (cluster/),
    unix socket directory (socket/) and server log (log). Servers never
    listen on TCP, so any number of instances can run side by side.

    Inside an instance scope, PGDATA, PGHOST, PGPORT, LPG_IN_SHELL, LPG_LOC
    and LPG_CONNSTR are set, pg_ctl always uses the instance's log and
    socket, and psql logs in as 'postgres' unless a user is given.

    Examples:

        lpg make ./pg

        lpg cmd ./pg pg_ctl start

        lpg cmd ./pg psql -tc 'SELECT 1, 2;'

        source <(lpg env --sandbox) && pg_ctl start
    """
    ctx.obj = Options(pg_bin=pg_bin, shell=shell_program)
    if ctx.invoked_subcommand is None:
        show_help(ctx)


@cli.command(
    "help",
    context_settings={"ignore_unknown_options": True, "allow_extra_args": True},
)
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def help_command(ctx: click.Context, args: tuple[str, ...]) -> None:
    """Show this message."""
    show_help(ctx)


@cli.command(context_settings=CONTEXT_SETTINGS)
@click.argument("loc")
@click.option("--verbose", "-v", is_flag=True, help="Show initdb output.")
@click.pass_obj
@handle_errors
def make(options: Options, loc: str, verbose: bool) -> None:
    """Create an instance at LOC.

    The cluster is initialized with a superuser named 'postgres'.
    LOC must not exist yet.

    Example: lpg make ./pg
    """
    echo = (lambda text: click.echo(text, err=True)) if verbose else None
    instance = create_instance(loc, options.config, echo=echo)
    click.echo(click.style(f"Created instance: {instance.root}", fg="green"))


@cli.command(context_settings=CONTEXT_SETTINGS)
@click.argument("loc", required=False)
@click.option(
    "--sandbox",
    "--anon",
    is_flag=True,
    help="Use a new temporary instance, removed when the sourcing shell exits.",
)
@click.pass_obj
@handle_errors
def env(options: Options, loc: str | None, sandbox: bool) -> None:
    """Print a sourceable bash script for the instance at LOC.

    Example: source <(lpg env --sandbox) && pg_ctl start
    """
    config = options.config
    instance = _target_instance(loc, sandbox)
    cleanup_root = None
    if instance is None:
        guard = Sandbox(config)
        instance = guard.open()
        cleanup_root = guard.detach()

    click.echo(resolve_bindings(instance, config).render_script(cleanup_root=cleanup_root))


@cli.command(context_settings=CONTEXT_SETTINGS)
@click.argument("loc", required=False)
@click.option(
    "--sandbox",
    "--anon",
    is_flag=True,
    help="Use a new temporary instance, removed when the shell exits.",
)
@click.option("--keep", is_flag=True, help="Do not delete the sandbox afterwards.")
@click.pass_obj
@handle_errors
def shell(options: Options, loc: str | None, sandbox: bool, keep: bool) -> None:
    """Enter a shell in which pg_ctl, psql and friends use the instance at LOC.

    Commands are read from stdin when it is not a terminal:

        echo 'pg_ctl start && psql -tc "SELECT 1;"' | lpg shell --sandbox
    """
    config = options.config
    instance = _target_instance(loc, sandbox)
    if instance is not None:
        if keep:
            raise InvalidArguments("--keep only applies to --sandbox")
        _enter_shell(config, instance)
        return

    with Sandbox(config, keep=keep) as instance:
        _enter_shell(config, instance)


@cli.command("sandbox", context_settings=CONTEXT_SETTINGS)
@click.option("--keep", is_flag=True, help="Do not delete the sandbox afterwards.")
@click.pass_obj
@handle_errors
def sandbox_command(options: Options, keep: bool) -> None:
    """Synonym for 'lpg shell --sandbox'."""
    config = options.config
    with Sandbox(config, keep=keep) as instance:
        _enter_shell(config, instance)


@cli.command("cmd", context_settings=PASSTHROUGH_SETTINGS)
@click.argument("loc")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_obj
@handle_errors
def cmd(options: Options, loc: str, command: tuple[str, ...]) -> None:
    """Run COMMAND against the instance at LOC without affecting this shell.

    Example: lpg cmd ./pg psql -tc 'SELECT 1;'
    """
    config = options.config
    bindings = resolve_bindings(resolve_instance(loc), config)
    argv = list(command)
    run_scoped(bindings.wrap_argv(argv), bindings.command_environ(argv))


# `lpg do` is the historical name of `lpg cmd`
cli.add_command(
    click.Command(
        "do",
        callback=cmd.callback,
        params=cmd.params,
        context_settings=PASSTHROUGH_SETTINGS,
        help=cmd.help,
        hidden=True,
    )
)


@cli.command("bash", context_settings=CONTEXT_SETTINGS)
@click.argument("loc")
@click.argument("script")
@click.pass_obj
@handle_errors
def bash_command(options: Options, loc: str, script: str) -> None:
    """Run the shell script SCRIPT against the instance at LOC.

    Example: lpg bash ./pg 'pg_ctl start && psql -c "CREATE DATABASE app;"'
    """
    config = options.config
    bindings = resolve_bindings(resolve_instance(loc), config)
    run_scoped([config.shell, "-c", script], bindings.environ())


def _control_command(verb: str) -> click.Command:
    @click.pass_obj
    @handle_errors
    def control(options: Options, loc: str) -> None:
        config = options.config
        bindings = resolve_bindings(resolve_instance(loc), config)
        run_scoped(bindings.wrap_argv(["pg_ctl", verb]), bindings.environ())

    return click.Command(
        f"pg-{verb}",
        callback=control,
        params=[click.Argument(["loc"])],
        context_settings=CONTEXT_SETTINGS,
        help=f"Run 'pg_ctl {verb}' against the instance at LOC.",
    )


for _verb in CONTROL_VERBS:
    cli.add_command(_control_command(_verb))
