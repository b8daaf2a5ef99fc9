"""Main CLI implementation."""

from collections import Counter
from pathlib import Path
from typing import Callable, Iterable, Optional

import click
import structlog
from rich.console import Console
from rich.table import Table

from .. import __version__
from ..config import CONFIG_ENV_VAR, Config, load_config
from ..crypto import generate_key_pair, secure_buffer
from ..crypto.keys import DEFAULT_KEY_SIZE
from ..errors import CredbagError
from ..log import setup_logging
from ..operations import EntryResult, Invocation, PassphraseCache, Status
from ..profiles import registry

logger = structlog.get_logger(__name__)
console = Console()


def print_table(title: str, rows: list[dict], columns: list[tuple[str, str]]) -> None:
    """Print data in a formatted table.

    Args:
        title: Table title
        rows: List of row dictionaries
        columns: List of (key, header) tuples defining columns
    """
    table = Table(title=title)
    for key, header in columns:
        table.add_column(header, style="cyan")

    for row in rows:
        values = [str(row.get(key, "")) for key, _ in columns]
        table.add_row(*values)

    console.print(table)


def passphrase_prompt(config: Config) -> Callable[[], str]:
    def _prompt() -> str:
        return click.prompt(
            f"Passphrase for {config.private_key}", hide_input=True, err=True
        )

    return _prompt


def prompt_value(label: str, secret: bool, default: Optional[str]) -> str:
    return click.prompt(
        label, hide_input=secret, default=default, show_default=bool(default)
    )


def report(result: EntryResult) -> None:
    """Print a non-successful entry result."""
    label = f"{result.name} (type {result.type})"
    if result.status is Status.SKIPPED:
        click.echo(result.message)
    elif result.status is Status.STALE:
        click.secho(f"⚠ STALE {label}: {result.message}", fg="yellow", err=True)
    else:
        click.secho(f"✘\t{label}: {result.message}", fg="red", err=True)


def consume(
    results: Iterable[EntryResult], on_success: Callable[[EntryResult], None]
) -> tuple[int, int]:
    """Print results as they arrive, then a summary line.

    Returns:
        The number of matched entries and how many of them failed.

    Raises:
        click.ClickException: If the batch is aborted.
    """
    counts = Counter()
    try:
        for result in results:
            counts[result.status] += 1
            if result.status is Status.OK:
                on_success(result)
            else:
                report(result)
    except CredbagError as e:
        raise click.ClickException(str(e))

    count = sum(counts.values())
    failed = counts[Status.FAILED] + counts[Status.STALE]
    if not count:
        click.echo("No matches found")
        return 0, 0

    summary = (
        f"{count} matched: {counts[Status.OK]} ok, "
        f"{counts[Status.SKIPPED]} skipped, {failed} failed"
    )
    if counts[Status.STALE]:
        summary += f" ({counts[Status.STALE]} stale)"
    click.echo(summary)
    return count, failed


def finish(failed: int) -> None:
    if failed:
        click.get_current_context().exit(1)


@click.group()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar=CONFIG_ENV_VAR,
    help="Configuration file (default ~/.config/credbag/config.yml).",
)
@click.option("--debug", is_flag=True, default=False, help="Enable debug logging.")
@click.version_option(__version__, prog_name="credbag")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], debug: bool) -> None:
    """credbag: a bag of encrypted credentials.

    Credentials are stored encrypted under an RSA key pair and can be shown,
    verified with their issuer, rotated, or mounted for a limited time.
    """
    try:
        config = load_config(config_path)
    except CredbagError as e:
        raise click.ClickException(str(e))
    if debug:
        config = config.model_copy(update={"debug": True})

    try:
        setup_logging(debug=config.debug, log_file=config.log_file)
    except OSError as e:
        raise click.ClickException(f"Cannot open log file {config.log_file}: {e}")

    passphrase = PassphraseCache(passphrase_prompt(config))
    ctx.call_on_close(passphrase.clear)
    ctx.obj = Invocation(config, passphrase)


@cli.command()
@click.pass_obj
def types(inv: Invocation) -> None:
    """List the supported credential types."""

    def _yes(flag: bool) -> str:
        return "yes" if flag else "-"

    rows = [
        {
            "type": info.name,
            "mount": _yes(info.capabilities.mount),
            "verify": _yes(info.capabilities.verify),
            "rotate": _yes(info.capabilities.rotate),
            "description": info.description,
        }
        for info in inv.types()
    ]
    columns = [
        ("type", "Type"),
        ("mount", "Mount"),
        ("verify", "Verify"),
        ("rotate", "Rotate"),
        ("description", "Description"),
    ]
    print_table("Credential Types", rows, columns)


@cli.command("config")
@click.pass_obj
def show_config(inv: Invocation) -> None:
    """Print the effective configuration."""
    click.echo(inv.config.to_yaml(), nl=False)


@cli.command()
@click.option("--force", is_flag=True, help="Overwrite existing key files.")
@click.option(
    "--key-size",
    type=click.IntRange(min=2048),
    default=DEFAULT_KEY_SIZE,
    show_default=True,
    help="RSA key size in bits.",
)
@click.pass_obj
def keygen(inv: Invocation, force: bool, key_size: int) -> None:
    """Generate the RSA key pair that protects the bag."""
    public_key, private_key = inv.config.public_key, inv.config.private_key
    if not force:
        for path in (public_key, private_key):
            if path.exists():
                raise click.ClickException(
                    f"{path} already exists; use --force to replace it"
                )

    passphrase = click.prompt(
        "New passphrase", hide_input=True, confirmation_prompt=True, err=True
    )
    with secure_buffer(passphrase.encode()) as secret:
        try:
            generate_key_pair(
                public_key, private_key, bytes(secret), key_size=key_size, overwrite=force
            )
        except (CredbagError, ValueError) as e:
            raise click.ClickException(str(e))

    click.echo(f"Wrote public key to {public_key}")
    click.echo(f"Wrote encrypted private key to {private_key}")


@cli.command()
@click.option(
    "--type",
    "-t",
    "type_name",
    type=click.Choice(registry.list()),
    default="aws",
    show_default=True,
    help="Credential type; see 'credbag types'.",
)
@click.option("--force", is_flag=True, help="Overwrite an existing entry without asking.")
@click.pass_obj
def add(inv: Invocation, type_name: str, force: bool) -> None:
    """Add a credential to the bag, prompting for its fields."""

    def _confirm(name: str) -> bool:
        return click.confirm(f"Entry '{name}' already exists. Overwrite?", default=False)

    try:
        result = inv.add(type_name, prompt_value, None if force else _confirm)
    except (CredbagError, ValueError) as e:
        raise click.ClickException(str(e))

    if result.status is Status.OK:
        click.echo(f"Added {result.name} (type {result.type})")
    else:
        click.echo(f"Not overwriting {result.name}")


@cli.command("list")
@click.argument("patterns", nargs=-1)
@click.pass_obj
def list_entries(inv: Invocation, patterns: tuple[str, ...]) -> None:
    """List entries, optionally only those matching glob PATTERNS."""
    try:
        entries = inv.list_entries(patterns)
    except CredbagError as e:
        raise click.ClickException(str(e))

    if not entries:
        click.echo("No matches found")
        return

    rows = [{"name": name, "type": type_name} for name, type_name in entries.items()]
    print_table("Bag Entries", rows, [("name", "Name"), ("type", "Type")])


@cli.command()
@click.argument("patterns", nargs=-1, required=True)
@click.pass_obj
def show(inv: Invocation, patterns: tuple[str, ...]) -> None:
    """Decrypt and print the entries matching PATTERNS."""

    def _print(result: EntryResult) -> None:
        click.echo(f"{result.name}:")
        for field, value in result.profile.display_fields():
            click.echo(f"  {field}: {value}")

    _, failed = consume(inv.show(patterns), _print)
    finish(failed)


@cli.command()
@click.argument("patterns", nargs=-1, required=True)
@click.option(
    "--timeout",
    "-t",
    type=click.IntRange(min=1),
    default=None,
    help="Seconds to keep the credentials mounted (default from config).",
)
@click.pass_obj
def mount(inv: Invocation, patterns: tuple[str, ...], timeout: Optional[int]) -> None:
    """Mount the entries matching PATTERNS until the timeout expires.

    Press Ctrl-C to unmount early.
    """
    try:
        results, files = inv.collect_mount_files(patterns)
    except CredbagError as e:
        raise click.ClickException(str(e))
    finally:
        inv.passphrase.clear()

    def _print(result: EntryResult) -> None:
        click.echo(f"Adding {result.name} (type {result.type}) as {result.message}")

    count, failed = consume(results, _print)
    if count and not files:
        click.echo("Nothing to mount")
    if files:
        timeout = timeout or inv.config.mount_timeout
        mountpoint = inv.config.mountpoint
        click.echo(
            f"Mounted {len(files)} file(s) at {mountpoint} for {timeout}s; "
            "press Ctrl-C to unmount early"
        )
        try:
            reason = inv.mount_files(files, timeout)
        except CredbagError as e:
            raise click.ClickException(str(e))
        click.echo(f"Unmounted {mountpoint} ({reason})")
    finish(failed)


@cli.command()
@click.argument("patterns", nargs=-1, required=True)
@click.pass_obj
def verify(inv: Invocation, patterns: tuple[str, ...]) -> None:
    """Check the entries matching PATTERNS with their issuer."""

    def _print(result: EntryResult) -> None:
        click.secho(f"✔\t{result.name} (type {result.type}): {result.message}", fg="green")

    _, failed = consume(inv.verify(patterns), _print)
    finish(failed)


@cli.command()
@click.argument("patterns", nargs=-1, required=True)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.pass_obj
def rotate(inv: Invocation, patterns: tuple[str, ...], yes: bool) -> None:
    """Rotate the entries matching PATTERNS at their issuer."""
    try:
        entries = inv.list_entries(patterns)
    except CredbagError as e:
        raise click.ClickException(str(e))

    if not entries:
        click.echo("No matches found")
        return

    click.echo("The following credentials will be rotated:")
    for name, type_name in entries.items():
        click.echo(f"  {name} (type {type_name})")
    if not yes:
        click.confirm("Continue?", abort=True)

    def _print(result: EntryResult) -> None:
        click.secho(f"✔\tRotated {result.name} (type {result.type})", fg="green")

    _, failed = consume(inv.rotate(patterns), _print)
    finish(failed)
