"""
Command Line Interface

CLI for exporting patient records as guide-specialized FHIR bundles.
"""

from pathlib import Path
from typing import Optional
import logging

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress
from rich.table import Table

from fhir_specialization.errors import LookupTableError, SpecializationError

app = typer.Typer(
    name="fhir-specialization",
    help="Export patient records as FHIR R4 bundles for one implementation guide",
    add_completion=False,
)
console = Console()
err_console = Console(stderr=True)


def setup_logging(verbose: bool = False, level: str = "INFO") -> None:
    """Route log records through rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _make_pipeline(config: Optional[Path], guide: Optional[str], verbose: bool = False):
    """Create the pipeline and load its tables. Exits on startup errors."""
    from fhir_specialization import ExportPipeline, PipelineConfig

    try:
        pipeline = ExportPipeline.from_config(config) if config else ExportPipeline(PipelineConfig())
        if guide:
            pipeline.config.export.guide = guide
        if not verbose:
            logging.getLogger().setLevel(pipeline.config.log_level)
        # resolve guide and lookup tables now so failures abort before any export
        _ = pipeline.guide
    except (FileNotFoundError, ValueError, yaml.YAMLError, LookupTableError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    return pipeline


@app.command()
def export(
    record_file: Path = typer.Argument(..., help="Patient record JSON file"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file"),
    guide: Optional[str] = typer.Option(None, "--guide", "-g", help="Implementation guide"),
    indent: Optional[int] = typer.Option(None, "--indent", help="JSON indent"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Export one patient record to a FHIR Bundle."""
    from fhir_specialization import load_record

    setup_logging(verbose)

    if not record_file.exists():
        console.print(f"[red]Error: File not found: {record_file}[/red]")
        raise typer.Exit(1)

    pipeline = _make_pipeline(config, guide, verbose)

    try:
        context = pipeline.export(load_record(record_file))
    except SpecializationError as e:
        console.print(f"[red]Error exporting {record_file}: {e}[/red]")
        raise typer.Exit(1)

    json_output = pipeline.to_json(context, indent)

    if output:
        output.write_text(json_output, encoding="utf-8")
        console.print(f"[green]Output saved to: {output}[/green]")
    else:
        typer.echo(json_output)

    # Show summary
    err_console.print(f"\n[dim]Generated {len(context.entries)} FHIR resources[/dim]")


@app.command()
def batch(
    input_dir: Path = typer.Argument(..., help="Directory containing record files"),
    output_dir: Path = typer.Argument(..., help="Output directory for FHIR files"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file"),
    guide: Optional[str] = typer.Option(None, "--guide", "-g", help="Implementation guide"),
    pattern: str = typer.Option("*.json", "--pattern", "-p", help="File pattern"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Batch export record files. A failing record does not stop the others."""
    from fhir_specialization import load_record

    setup_logging(verbose)

    if not input_dir.exists():
        console.print(f"[red]Error: Directory not found: {input_dir}[/red]")
        raise typer.Exit(1)

    output_dir.mkdir(parents=True, exist_ok=True)

    # Find files
    files = sorted(input_dir.glob(pattern))
    if not files:
        console.print(f"[yellow]No files matching '{pattern}' in {input_dir}[/yellow]")
        raise typer.Exit(0)

    pipeline = _make_pipeline(config, guide, verbose)

    console.print(f"Exporting {len(files)} records...")

    success_count = 0
    error_count = 0

    with Progress(console=console) as progress:
        task = progress.add_task("Exporting...", total=len(files))

        for record_file in files:
            try:
                context = pipeline.export(load_record(record_file))
                pipeline.save(context, output_dir / f"{record_file.stem}.json")
                success_count += 1
            except SpecializationError as e:
                console.print(f"[red]Error exporting {record_file}: {e}[/red]")
                error_count += 1

            progress.update(task, advance=1)

    console.print(f"\n[green]Exported: {success_count}[/green]")
    if error_count:
        console.print(f"[red]Errors: {error_count}[/red]")


@app.command()
def guides() -> None:
    """List available implementation guides."""
    from fhir_specialization.specialization import list_guides

    table = Table(title="Implementation guides")
    table.add_column("Name", style="bold", no_wrap=True)
    table.add_column("Description")
    table.add_column("Handled kinds")

    for guide_class in list_guides():
        kinds = sorted(kind.value for kind in guide_class.handled_kinds)
        table.add_row(guide_class.name, guide_class.description, ", ".join(kinds))

    console.print(table)


@app.command()
def version() -> None:
    """Show version information."""
    from fhir_specialization import __version__

    console.print(f"fhir-specialization version {__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
