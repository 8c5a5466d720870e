import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.traceback import install

from .config import CouchQueryConfig, load_config, save_config, get_config_path
from .database import Database
from .decorators import handle_store_errors
from .design import DesignDocument, export_file, import_file
from .entity import EntityType, ID_FIELD
from .options import QueryOptions, parse_condition

# Initialize Rich Traceback for better error messages
install(show_locals=False)

console = Console()

logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True)]
)
logger = logging.getLogger("couchquery")

app = typer.Typer(help="Query CouchDB documents through automatically managed views")

design_app = typer.Typer(help="Inspect and manage design documents")
config_app = typer.Typer(help="Show or initialize configuration")

app.add_typer(design_app, name="design")
app.add_typer(config_app, name="config")


def open_database(config: CouchQueryConfig) -> Database:
    return Database.from_config(config)


def _config(ctx: typer.Context) -> CouchQueryConfig:
    if ctx.obj is None:
        ctx.obj = load_config()
    return ctx.obj


def _entity(name: str, properties: Optional[List[str]], config: CouchQueryConfig) -> EntityType:
    return EntityType(
        name=name,
        properties=tuple(properties or ()),
        discriminator_field=config.query.discriminator_field,
    )


def _build_options(
    where: Optional[List[str]],
    use_key: Optional[List[str]] = None,
    order: Optional[str] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    descending: bool = False,
    slow: bool = False,
    raw: bool = False,
    stale: bool = False,
) -> QueryOptions:
    conditions: Dict[str, Any] = {}
    for expression in where or []:
        name, value = parse_condition(expression)
        conditions[name] = value
    return QueryOptions(
        conditions=conditions,
        use_key=list(use_key) if use_key else None,
        order=order,
        limit=limit,
        offset=offset,
        descending=descending,
        slow=slow,
        raw=raw,
        update_index=not stale,
    )


@app.callback()
def main(
    ctx: typer.Context,
    url: Optional[str] = typer.Option(None, "--url", help="Server URL"),
    database: Optional[str] = typer.Option(None, "--database", "-d", help="Database name"),
    store_version: Optional[str] = typer.Option(None, "--store-version", help="Pin the store version"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose mode"),
):
    """
    couchquery - relational-style finders over CouchDB views.

    Views are created on first use, one design document per entity type.
    """
    config = _config(ctx)
    if url:
        config.connection.url = url
    if database:
        config.connection.database = database
    if store_version:
        config.connection.version = store_version
    if verbose or config.cli.verbose:
        logger.setLevel(logging.DEBUG)
        console.print("[bold green]Verbose mode enabled.[/bold green]")


@app.command()
@handle_store_errors
def info(ctx: typer.Context):
    """Show the server version and the capabilities derived from it."""
    config = _config(ctx)
    with open_database(config) as db:
        table = Table(title=f"{config.connection.url}/{config.connection.database}")
        table.add_column("Capability", style="cyan")
        table.add_column("Value", style="green")
        for name, value in db.profile.summary().items():
            table.add_row(name, str(value))
        console.print(table)


def _print_documents(documents: List[Any], fields: List[str]) -> None:
    if not documents:
        console.print("[yellow]No documents found[/yellow]")
        return

    if not fields:
        seen: List[str] = []
        for doc in documents:
            for name in doc.to_dict():
                if not name.startswith("_") and name not in seen:
                    seen.append(name)
        fields = seen[:6]

    table = Table(title="Documents")
    table.add_column(ID_FIELD, style="cyan")
    for name in fields:
        table.add_column(name, style="green")
    for doc in documents:
        table.add_row(str(doc.id), *[str(doc.get(name, "")) for name in fields])
    console.print(table)
    console.print(f"\n[dim]{len(documents)} documents[/dim]")


@app.command()
@handle_store_errors
def find(
    ctx: typer.Context,
    entity: str = typer.Argument(..., help="Entity type name, e.g. Person"),
    where: Optional[List[str]] = typer.Option(None, "--where", "-w", help="Condition field=value, field=a..b or field=a,b,c"),
    use_key: Optional[List[str]] = typer.Option(None, "--use-key", "-k", help="Key field(s) for the view"),
    order: Optional[str] = typer.Option(None, "--order", "-o", help="Sort results by field"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum number of documents"),
    offset: Optional[int] = typer.Option(None, "--offset", help="Documents to skip"),
    descending: bool = typer.Option(False, "--desc", help="Walk the view backwards"),
    slow: bool = typer.Option(False, "--slow", help="Use an ad-hoc query instead of a view"),
    raw: bool = typer.Option(False, "--raw", help="Print the raw view response"),
    stale: bool = typer.Option(False, "--stale", help="Don't wait for the index to update"),
    properties: Optional[List[str]] = typer.Option(None, "--property", "-p", help="Declared property of the entity"),
    fields: Optional[List[str]] = typer.Option(None, "--field", "-f", help="Columns to show"),
    as_json: bool = typer.Option(False, "--json", help="Print documents as JSON"),
):
    """
    Find documents of an entity type.

    Examples:
        couchquery -d people find Person --where name=Alice
        couchquery -d people find Person --where age=20..30 --limit 10
        couchquery -d school find Student --where grade=9,11,12
    """
    config = _config(ctx)
    options = _build_options(where, use_key, order, limit, offset, descending, slow, raw, stale)
    with open_database(config) as db:
        engine = db.engine(_entity(entity, properties, config))
        result = engine.find(options)

    if raw:
        console.print_json(data=result)
    elif as_json:
        console.print_json(data=[doc.to_dict() for doc in result])
    else:
        _print_documents(result, list(fields or []))


@app.command()
@handle_store_errors
def count(
    ctx: typer.Context,
    entity: str = typer.Argument(..., help="Entity type name, e.g. Person"),
    where: Optional[List[str]] = typer.Option(None, "--where", "-w", help="Condition field=value, field=a..b or field=a,b,c"),
    use_key: Optional[List[str]] = typer.Option(None, "--use-key", "-k", help="Key field(s) for the view"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Cap the reported count"),
    offset: Optional[int] = typer.Option(None, "--offset", help="Subtract from the reported count"),
    slow: bool = typer.Option(False, "--slow", help="Use an ad-hoc query instead of a view"),
    properties: Optional[List[str]] = typer.Option(None, "--property", "-p", help="Declared property of the entity"),
):
    """Count documents of an entity type."""
    config = _config(ctx)
    options = _build_options(where, use_key, limit=limit, offset=offset, slow=slow)
    with open_database(config) as db:
        total = db.engine(_entity(entity, properties, config)).count(options)
    console.print(total)


def _load_design(db: Database, entity: EntityType) -> DesignDocument:
    design = db.engine(entity).design_document()
    if design is None:
        raise ValueError(f"No design document for {entity.name} yet")
    return design


@design_app.command(name="show")
@handle_store_errors
def design_show(
    ctx: typer.Context,
    entity: str = typer.Argument(..., help="Entity type name"),
):
    """Print the design document of an entity type."""
    config = _config(ctx)
    with open_database(config) as db:
        design = _load_design(db, _entity(entity, None, config))

    table = Table(title=design.doc_id)
    table.add_column("View", style="cyan")
    table.add_column("Reduce", style="magenta")
    for name, view in sorted(design.views.items()):
        table.add_row(name, "yes" if view.reduce_source else "no")
    console.print(table)


@design_app.command(name="export")
@handle_store_errors
def design_export(
    ctx: typer.Context,
    entity: str = typer.Argument(..., help="Entity type name"),
    output: Path = typer.Argument(..., help="YAML file to write"),
):
    """Export the views of an entity type to YAML."""
    config = _config(ctx)
    with open_database(config) as db:
        design = _load_design(db, _entity(entity, None, config))
    export_file(design, output)
    console.print(f"[green]Exported {len(design.views)} views to {output}[/green]")


@design_app.command(name="import")
@handle_store_errors
def design_import(
    ctx: typer.Context,
    entity: str = typer.Argument(..., help="Entity type name"),
    source: Path = typer.Argument(..., help="YAML file to read"),
):
    """Add the views from a YAML file to an entity type's design document."""
    if not source.exists():
        console.print(f"[red]Error: File not found: {source}[/red]")
        raise typer.Exit(code=1)

    config = _config(ctx)
    views = import_file(source)
    added = 0
    with open_database(config) as db:
        registry = db.engine(_entity(entity, None, config)).registry
        for view in views.values():
            if registry.ensure_view(view):
                added += 1
    console.print(f"[green]Added {added} of {len(views)} views[/green]")


@config_app.command(name="show")
def config_show(ctx: typer.Context):
    """Print the effective configuration."""
    config = _config(ctx)
    data = config.to_dict()
    if data["connection"].get("password"):
        data["connection"]["password"] = "***"
    console.print(f"[dim]{get_config_path()}[/dim]")
    console.print_json(json.dumps(data))


@config_app.command(name="init")
def config_init(
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
):
    """Write a default configuration file."""
    path = get_config_path()
    if path.exists() and not force:
        console.print(f"[yellow]Configuration already exists at {path}[/yellow]")
        raise typer.Exit(code=1)
    save_config(CouchQueryConfig(), path)
    console.print(f"[green]Created default configuration at {path}[/green]")


if __name__ == "__main__":
    app()
