import logging
import sys
import json
from pathlib import Path
import click
from rich import print
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from setupinfo import __version__
from setupinfo.analyzers.exe import detect_architecture_from_pe
from setupinfo.analyzers.msi import fetch_properties, open_property_table
from setupinfo.errors import SetupInfoError
from setupinfo.extractor import SetupFileExtractor
from setupinfo.models import AggregateProperties, PropertyNotFound, SingleProperty
from setupinfo.utils.config import SetupInfoConfig

logger = logging.getLogger(__name__)


def setup_logging(debug=False):
    """Setup structured logging format based on debug mode setting."""
    if debug or SetupInfoConfig.is_debug_mode():
        logging.basicConfig(
            level=logging.DEBUG,
            format='[%(asctime)s] [%(levelname)-8s] [%(name)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        logging.debug(f"SetupInfo v{__version__} - Python {sys.version} on {sys.platform}")
    else:
        logging.basicConfig(level=logging.ERROR)


@click.group()
@click.option('--debug', '-d', is_flag=True, help="Enable debug logging")
@click.version_option(__version__, message='SetupInfo v%(version)s')
def cli(debug):
    """SetupInfo: Read vendor, version and architecture from MSI and EXE installers."""
    setup_logging(debug)


@cli.command()
@click.argument('filepaths', nargs=-1, required=True, type=click.Path())
@click.option('--json', 'output_json', is_flag=True, help="Output in JSON format")
@click.pass_context
def inspect(ctx, filepaths, output_json):
    """Extract installer metadata from one or more files."""
    extractor = SetupFileExtractor()
    records = []
    failed = False

    for path, record, error in extractor.extract_many(filepaths):
        if error is not None:
            failed = True
            if not output_json:
                print(f"[bold red]{type(error).__name__}:[/bold red] {error}")
            continue
        records.append(record)
        if not output_json:
            print_record(record)

    if output_json:
        click.echo(json.dumps([r.to_dict() for r in records], indent=2))

    if failed:
        ctx.exit(1)


def print_record(record):
    table = Table(show_header=False)
    table.add_row("File", record.file_path)
    table.add_row("Type", record.file_type.value.upper())
    table.add_row("Vendor", record.vendor or "Unknown")
    table.add_row("Name", record.name or "Unknown")
    table.add_row("Version", record.version or "Unknown")
    table.add_row("Architecture", record.architecture.value)
    table.add_row("Language", record.language or "Unknown")
    if record.product_code:
        table.add_row("Product Code", record.product_code)

    print(Panel(table, title=Path(record.file_path).name, border_style="blue"))


@cli.command()
@click.argument('filepath', type=click.Path(exists=True, dir_okay=False))
@click.argument('names', nargs=-1)
@click.option('--json', 'output_json', is_flag=True, help="Output in JSON format")
@click.pass_context
def properties(ctx, filepath, names, output_json):
    """Dump the Property table of an MSI, or only the given NAMES."""
    try:
        with open_property_table(filepath) as table:
            result = fetch_properties(table, names or None)
            if isinstance(result, SingleProperty):
                rows = {result.key: result.value}
            elif isinstance(result, PropertyNotFound):
                rows = {result.key: None}
            elif isinstance(result, AggregateProperties):
                rows = dict(result.values)
            else:
                rows = dict(result)
    except SetupInfoError as e:
        print(f"[bold red]{type(e).__name__}:[/bold red] {e}")
        ctx.exit(1)

    if output_json:
        click.echo(json.dumps(rows, indent=2))
        return

    table_view = Table(title=Path(filepath).name)
    table_view.add_column("Property", style="cyan")
    table_view.add_column("Value")
    for key, value in rows.items():
        table_view.add_row(escape(key), escape(value) if value is not None else "[yellow]<not found>[/yellow]")
    print(table_view)


@cli.command()
@click.argument('filepath', type=click.Path(exists=True, dir_okay=False))
def arch(filepath):
    """Print the target machine from the PE header of an executable."""
    click.echo(detect_architecture_from_pe(filepath).value)
