"""CLI for ebsmon."""

import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Annotated, Iterator

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from ebsmon import __version__
from ebsmon.config import Config, load_config
from ebsmon.exceptions import EbsmonError

app = typer.Typer(
    name="ebsmon",
    help="Monitor unzipped add-on files for tracked patterns.",
    no_args_is_help=True,
)
console = Console()

ChannelOpt = Annotated[
    str | None, typer.Option("--channel", "-c", help="The channel to limit to")
]
AfterOpt = Annotated[
    str | None, typer.Option("--after", "-d", help="The date to search after")
]
UntilOpt = Annotated[
    str | None, typer.Option("--until", "-u", help="The date to search up to")
]
StatusOpt = Annotated[
    list[str] | None,
    typer.Option("--status", "-s", help="The file status that must be set (can repeat)"),
]
AddonStatusOpt = Annotated[
    list[str] | None,
    typer.Option("--addonstatus", "-a", help="The addon status that must be set (can repeat)"),
]
AddonTypeOpt = Annotated[
    list[str] | None,
    typer.Option("--addontype", "-t", help="The addon types to search for, or 'all' (can repeat)"),
]
GlobOpt = Annotated[
    list[str] | None, typer.Option("--glob", "-g", help="Include or exclude files (can repeat)")
]
FixedStringsOpt = Annotated[
    bool, typer.Option("--fixed-strings", "-F", help="Treat patterns as literal strings")
]
ContextOpt = Annotated[
    int | None, typer.Option("--context", "-C", help="Lines of context around matches")
]


def version_callback(value: bool) -> None:
    if value:
        console.print(f"ebsmon {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    debug: Annotated[bool, typer.Option("--debug", help="Enable debugging")] = False,
    config_path: Annotated[
        Path | None, typer.Option("--config", help="Config file (JSON)")
    ] = None,
    unzipped: Annotated[
        str | None, typer.Option("--unzipped", help="Root of the unzipped add-on files")
    ] = None,
    patterns: Annotated[
        str | None, typer.Option("--patterns", help="Tracked patterns file")
    ] = None,
) -> None:
    """Monitor unzipped add-on files for tracked patterns."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )

    config = load_config(config_path)
    if unzipped:
        config.unzipped = unzipped
    if patterns:
        config.patterns = patterns
    ctx.obj = {"config": config, "debug": debug}


@contextmanager
def fatal_errors() -> Iterator[None]:
    try:
        yield
    except EbsmonError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1) from e


def _parse_date(value: str | None) -> datetime | None:
    if value is None:
        return None
    from ebsmon.models import parse_timestamp

    value = value.strip()
    try:
        return parse_timestamp(value if "T" in value else value + "T00:00:00")
    except ValueError:
        console.print(f"[red]Invalid date format: {escape(value)}[/red]")
        raise typer.Exit(1) from None


def _filter(
    channel: str | None,
    after: str | None,
    until: str | None,
    status: list[str] | None,
    addonstatus: list[str] | None,
    addontype: list[str] | None,
):
    from ebsmon.catalog import CatalogFilter

    return CatalogFilter(
        channel=channel,
        after=_parse_date(after),
        until=_parse_date(until),
        addon_types=list(addontype or ["extension"]),
        file_status=list(status or []),
        addon_status=list(addonstatus or []),
    )


def _options(glob: list[str] | None, fixed_strings: bool, context: int | None):
    from ebsmon.models import SearchOptions

    return SearchOptions(fixed_strings=fixed_strings, globs=tuple(glob or ()), context=context)


def build_monitor(ctx: typer.Context):
    """Wire up the monitor from the loaded config."""
    from ebsmon.catalog import Catalog, RedashClient
    from ebsmon.monitor import Monitor
    from ebsmon.patterns import PatternStore
    from ebsmon.push import PushNotifier
    from ebsmon.ripgrep import Ripgrep

    config: Config = ctx.obj["config"]
    debug: bool = ctx.obj["debug"]

    store = PatternStore(config.patterns_path)
    store.load()

    return Monitor(
        store=store,
        catalog=Catalog(
            RedashClient(config.redash_url, config.redash_api_key, config.redash_data_source_id)
        ),
        ripgrep=Ripgrep(config.unzipped_path, banned=config.banned_path, debug=debug),
        push=PushNotifier(config.push_api_key),
        addon_types=config.addon_types,
    )


@app.command()
def paths(
    ctx: typer.Context,
    channel: ChannelOpt = None,
    after: AfterOpt = None,
    until: UntilOpt = None,
    status: StatusOpt = None,
    addonstatus: AddonStatusOpt = None,
    addontype: AddonTypeOpt = None,
) -> None:
    """Show paths for the subset of add-ons."""
    with fatal_errors():
        monitor = build_monitor(ctx)
        for path in monitor.get_paths(
            _filter(channel, after, until, status, addonstatus, addontype)
        ):
            console.print(path, markup=False, highlight=False)


@app.command()
def search(
    ctx: typer.Context,
    patterns: Annotated[list[str], typer.Argument(help="Patterns to search for")],
    channel: ChannelOpt = None,
    after: AfterOpt = None,
    until: UntilOpt = None,
    status: StatusOpt = None,
    addonstatus: AddonStatusOpt = None,
    addontype: AddonTypeOpt = None,
    glob: GlobOpt = None,
    fixed_strings: FixedStringsOpt = False,
    context: ContextOpt = None,
) -> None:
    """Find something within a subset of add-ons."""
    with fatal_errors():
        monitor = build_monitor(ctx)
        monitor.search(
            _filter(channel, after, until, status, addonstatus, addontype),
            patterns,
            _options(glob, fixed_strings, context),
        )


@app.command()
def searchrun(
    ctx: typer.Context,
    outdir: Annotated[
        Path | None, typer.Option("--outdir", "-o", help="Directory for the run transcript")
    ] = None,
) -> None:
    """Start a search run with tracked patterns."""
    config: Config = ctx.obj["config"]
    outdir = (outdir or Path(config.outdir)).expanduser()

    with fatal_errors():
        monitor = build_monitor(ctx)
        summary = monitor.search_run(outdir)
        monitor.push.wait(timeout=30)

    if summary.output_path:
        console.print(
            f"[green]Found {summary.files_found} files with {summary.searched} patterns"
            f" ({summary.failed} failed, {summary.up_to_date} up to date)[/green]"
        )
        console.print(f"Transcript: {summary.output_path}")


@app.command()
def track(
    ctx: typer.Context,
    pattern: Annotated[str, typer.Argument(help="Pattern to track")],
    glob: GlobOpt = None,
    fixed_strings: FixedStringsOpt = False,
    context: ContextOpt = None,
) -> None:
    """Track a specific pattern."""
    with fatal_errors():
        monitor = build_monitor(ctx)
        monitor.track(pattern, _options(glob, fixed_strings, context))


def _set_disabled(ctx: typer.Context, pattern: str, disabled: bool) -> None:
    from ebsmon.patterns import PatternStore

    config: Config = ctx.obj["config"]
    with fatal_errors():
        store = PatternStore(config.patterns_path)
        store.load()
        if pattern not in store:
            console.print(f"[red]Pattern not tracked: {escape(pattern)}[/red]")
            raise typer.Exit(1)
        store.set_disabled(pattern, disabled)
        store.save()


@app.command()
def disable(
    ctx: typer.Context,
    pattern: Annotated[str, typer.Argument(help="Tracked pattern")],
) -> None:
    """Skip a tracked pattern in search runs."""
    _set_disabled(ctx, pattern, True)


@app.command()
def enable(
    ctx: typer.Context,
    pattern: Annotated[str, typer.Argument(help="Tracked pattern")],
) -> None:
    """Include a disabled pattern in search runs again."""
    _set_disabled(ctx, pattern, False)


@app.command()
def status(ctx: typer.Context) -> None:
    """List tracked patterns and how far each has scanned."""
    from ebsmon.patterns import PatternStore
    from ebsmon.ripgrep import describe_options

    config: Config = ctx.obj["config"]
    with fatal_errors():
        store = PatternStore(config.patterns_path)
        store.load()

    if not len(store):
        console.print("[yellow]No patterns tracked. Run 'ebsmon track' first.[/yellow]")
        return

    table = Table(title=f"Patterns in {store.path}")
    table.add_column("Pattern", style="cyan")
    table.add_column("Last run")
    table.add_column("Options", style="dim")
    table.add_column("Enabled")
    for text, entry in store:
        table.add_row(
            Text(text),
            str(entry.cursor),
            Text(describe_options(entry.options)),
            "[red]no[/red]" if entry.disabled else "[green]yes[/green]",
        )
    console.print(table)


@app.command()
def testnotify(ctx: typer.Context) -> None:
    """Send a test notification."""
    from ebsmon.push import PushNotifier

    config: Config = ctx.obj["config"]
    push = PushNotifier(config.push_api_key)
    if not push.enabled:
        console.print("[yellow]No push API key configured[/yellow]")
        raise typer.Exit(1)
    push.notify("testnotify", "Notifications work!")
    push.wait(timeout=30)


if __name__ == "__main__":
    app()
