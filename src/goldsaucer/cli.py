"""CLI interface for the Gold Saucer randomizer."""

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from goldsaucer import __version__
from goldsaucer.config import RandomizerConfig, get_settings
from goldsaucer.core.generator import RandomizerGenerator, read_config
from goldsaucer.data.extractor import extract
from goldsaucer.errors import FileIOError, GoldSaucerError

app = typer.Typer(
    name="goldsaucer",
    help="Seeded content randomizer for the PC release's data files",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"goldsaucer version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option("--version", "-V", callback=version_callback, is_eager=True),
    ] = False,
):
    """Gold Saucer - reshuffle enemies, items, materia, key items and shops."""
    pass


# --- Shared helpers ---


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, get_settings().log_level.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=verbose)],
        force=True,
    )


def _input_dir(input_dir: Path | None) -> Path:
    path = input_dir or get_settings().input_dir
    if path is None:
        console.print("[red]Error: no input directory (pass --input or set GOLDSAUCER_INPUT_DIR)[/]")
        raise typer.Exit(1)
    return path


def _fail(e: Exception) -> None:
    """Print the cause and exit with the code its error class maps to."""
    console.print(f"[red]Error: {e}[/]")
    if isinstance(e, GoldSaucerError):
        raise typer.Exit(e.exit_code)
    if isinstance(e, OSError):
        raise typer.Exit(FileIOError.exit_code)
    raise typer.Exit(1)


def _merge_flags(base: RandomizerConfig, flags: dict[str, Optional[bool]]) -> RandomizerConfig:
    """Command-line toggles override the config file where given."""
    overrides = {k: v for k, v in flags.items() if v is not None}
    return base.model_copy(update=overrides)


# --- Commands ---


@app.command()
def randomize(
    seed: Annotated[str, typer.Argument(help="Seed (string or integer)")],
    input_dir: Annotated[Optional[Path], typer.Option("--input", "-i", help="Original data directory")] = None,
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Output directory")] = None,
    config_file: Annotated[Optional[Path], typer.Option("--config", "-c", help="JSON config with camelCase toggles")] = None,
    enemy: Annotated[Optional[bool], typer.Option("--enemy/--no-enemy", help="Randomize enemy stats and drops")] = None,
    items: Annotated[Optional[bool], typer.Option("--items/--no-items", help="Randomize equipment and item pickups")] = None,
    materia: Annotated[Optional[bool], typer.Option("--materia/--no-materia", help="Randomize materia")] = None,
    key_items: Annotated[Optional[bool], typer.Option("--key-items/--no-key-items", help="Randomize key item locations")] = None,
    shops: Annotated[Optional[bool], typer.Option("--shops/--no-shops", help="Randomize shop inventories")] = None,
    stat_scaling: Annotated[Optional[bool], typer.Option("--stat-scaling/--no-stat-scaling", help="Rescale stats to each slot's tier")] = None,
    full_logic: Annotated[Optional[bool], typer.Option("--full-logic/--no-full-logic", help="Drop zone limits on key items")] = None,
    duplicate_drops: Annotated[Optional[bool], typer.Option("--duplicate-drops/--no-duplicate-drops", help="Allow one enemy to carry an item twice")] = None,
    loose_shops: Annotated[Optional[bool], typer.Option("--loose-shops/--no-loose-shops", help="Ignore shop categories")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
):
    """Randomize an install and write GoldSaucer_<seed>/.

    Examples:
        goldsaucer randomize 12345 -i ./data --enemy --materia --stat-scaling
        goldsaucer randomize chocobo -i ./data -c config.json
    """
    _setup_logging(verbose)
    settings = get_settings()
    source = _input_dir(input_dir)

    try:
        config = _merge_flags(read_config(config_file), {
            "enemy": enemy,
            "items": items,
            "materia": materia,
            "key_items": key_items,
            "shops": shops,
            "stat_scaling": stat_scaling,
            "full_logic_key_items": full_logic,
            "allow_duplicate_drops": duplicate_drops,
            "loose_shop_categories": loose_shops,
        })
    except (GoldSaucerError, ValidationError, ValueError) as e:
        _fail(e)

    enabled = ", ".join(config.enabled()) or "nothing (output equals input)"
    console.print(Panel(f"[bold]Seed:[/] {seed}\n[bold]Randomizing:[/] {enabled}", title="Gold Saucer"))

    try:
        generator = RandomizerGenerator(settings)
        with console.status("Randomizing...") as status:
            def progress(step: str, state: str, **_kwargs):
                if state == "started":
                    status.update(f"{step.title()}...")

            report = generator.generate(source, seed, config, output, progress_callback=progress)
    except Exception as e:
        _fail(e)

    for name, stage in sorted(report.result.stages.items()):
        console.print(f"  [green]{name}[/] [dim]({stage.attempts} attempt{'s' if stage.attempts != 1 else ''})[/]")
    console.print(f"[bold green]Wrote {len(report.files)} files to {report.output}[/]")
    if report.changed:
        console.print(f"[dim]Changed: {', '.join(p.as_posix() for p in report.changed)}[/]")


@app.command()
def inspect(
    input_dir: Annotated[Optional[Path], typer.Option("--input", "-i", help="Original data directory")] = None,
    fields: Annotated[bool, typer.Option("--fields/--no-fields", help="Scan field scripts (slow)")] = True,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
):
    """Show record counts and the layout of each input file."""
    _setup_logging(verbose)
    source = _input_dir(input_dir)
    try:
        entities, layout = extract(source, fields=fields, exe_overrides=get_settings().exe_overrides())
    except Exception as e:
        _fail(e)

    table = Table(title="Records")
    table.add_column("Partition", style="cyan")
    table.add_column("Count", justify="right")
    for name, count in entities.counts().items():
        table.add_row(name, str(count))
    console.print(table)

    files = Table(title="Files")
    files.add_column("File", style="cyan")
    files.add_column("Layout")
    for path, summary in layout.summary().items():
        files.add_row(path, ", ".join(f"{k}={v}" for k, v in summary.items()))
    console.print(files)


@app.command()
def verify(
    input_dir: Annotated[Optional[Path], typer.Option("--input", "-i", help="Original data directory")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
):
    """Round-trip an install through extract and compile and compare bytes."""
    _setup_logging(verbose)
    source = _input_dir(input_dir)
    try:
        report = RandomizerGenerator(get_settings()).verify(source)
    except Exception as e:
        _fail(e)

    for path, same in report.identical.items():
        mark = "[green]identical[/]" if same else "[red]differs[/]"
        console.print(f"  {path.as_posix()}: {mark}")
    if not report.ok:
        raise typer.Exit(1)
    console.print("[green]Round trip is byte-exact[/]")


if __name__ == "__main__":
    app()
