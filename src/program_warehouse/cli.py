"""Command-line interface for the program warehouse."""

from datetime import timedelta
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from . import __version__, audit
from .config import Config, ensure_directories, load_config
from .db.repository import Database
from .errors import WarehouseError
from .logging import configure_logging

# Create Typer app with subcommands
app = typer.Typer(
    name="program-warehouse",
    help="Star-schema warehouse for client program expenditures and grant funding.",
    no_args_is_help=True,
)

# Subcommand groups
views_app = typer.Typer(help="Refresh and inspect materialized summaries.")
report_app = typer.Typer(help="Run analytic reports.")
log_app = typer.Typer(help="Inspect the audit and error logs.")
roles_app = typer.Typer(help="Manage read-only reporting roles.")

app.add_typer(views_app, name="views")
app.add_typer(report_app, name="report")
app.add_typer(log_app, name="log")
app.add_typer(roles_app, name="roles")

# Rich console for nice output
console = Console()

# Global options
ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file"),
]
UserOption = Annotated[
    Optional[str],
    typer.Option("--user", "-u", help="User recorded in the audit log"),
]


def get_config(config_path: Path | None) -> Config:
    """Load configuration and set up logging."""
    config = load_config(config_path)
    configure_logging(config)
    audit.configure(config.logging.enabled)
    return config


def get_db(config: Config) -> Database:
    """Get database connection and ensure it's initialized."""
    db = Database.from_config(config)
    db.initialize()
    return db


def money(config: Config, amount: float) -> str:
    return f"{config.currency}{amount:,.2f}"


def parse_key(key: str) -> int | str:
    """Primary keys are integers on every warehouse table; fall back to text."""
    try:
        return int(key)
    except ValueError:
        return key


@app.command()
def version():
    """Show version information."""
    console.print(f"program-warehouse version {__version__}")


@app.command()
def init(
    calendar: Annotated[
        bool,
        typer.Option("--calendar/--no-calendar", help="Also populate the time dimension"),
    ] = True,
    config_path: ConfigOption = None,
):
    """Create the schema, partitions and views."""
    from .timedim import populate_time_dim

    config = get_config(config_path)
    ensure_directories(config)
    db = get_db(config)

    try:
        console.print(f"[green]Schema initialized ({db.dialect})[/green]")
        if calendar:
            result = populate_time_dim(
                db,
                config.calendar.start_year,
                config.calendar.end_year,
                config.calendar.holidays,
            )
            console.print(f"[green]Calendar: {result.inserted} days added[/green]")
    finally:
        db.close()


@app.command("calendar")
def calendar_cmd(
    start_year: Annotated[
        Optional[int],
        typer.Option("--start-year", help="First year (defaults to config)"),
    ] = None,
    end_year: Annotated[
        Optional[int],
        typer.Option("--end-year", help="Last year (defaults to config)"),
    ] = None,
    config_path: ConfigOption = None,
):
    """Populate the time dimension for a range of years."""
    from .timedim import populate_time_dim

    config = get_config(config_path)
    db = get_db(config)

    try:
        result = populate_time_dim(
            db,
            start_year or config.calendar.start_year,
            end_year or config.calendar.end_year,
            config.calendar.holidays,
        )
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        db.close()

    console.print(f"[green]{result.inserted} days added, {result.skipped} already present[/green]")
    if result.flagged:
        console.print(f"{result.flagged} existing days flagged as holidays")


@app.command()
def seed(
    user: UserOption = None,
    config_path: ConfigOption = None,
):
    """Load the illustrative sample data."""
    from .ingest.seed import seed_sample_data

    config = get_config(config_path)
    db = get_db(config)

    try:
        counts = seed_sample_data(db, performed_by=user)
    except WarehouseError as e:
        console.print(f"[red]Seeding failed: {e}[/red]")
        raise typer.Exit(1)
    finally:
        db.close()

    table = Table(title="Sample Data")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", style="green", justify="right")
    for name, count in counts.items():
        table.add_row(name, str(count))
    console.print(table)


@app.command()
def load(
    file: Annotated[Path, typer.Argument(help="CSV file to load")],
    table_name: Annotated[str, typer.Option("--table", "-t", help="Target warehouse table")],
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Parse and validate without committing to database"),
    ] = False,
    user: UserOption = None,
    config_path: ConfigOption = None,
):
    """Load rows from a CSV file into a warehouse table."""
    from .ingest.csv_loader import load_csv_file

    config = get_config(config_path)

    if dry_run:
        console.print("[yellow]DRY RUN - no changes will be made[/yellow]")

    db = None if dry_run else get_db(config)

    try:
        result = load_csv_file(file, table_name, db, dry_run=dry_run, performed_by=user)
    except WarehouseError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        if db:
            db.close()

    table = Table(title="Load Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("File", str(file))
    table.add_row("Table", table_name)
    table.add_row("Total Rows", str(result.total_rows))
    table.add_row("Loaded Rows", str(result.loaded_rows))
    table.add_row("Failed Rows", str(result.failed_rows))
    if result.ignored_columns:
        table.add_row("Ignored Columns", ", ".join(result.ignored_columns))

    console.print(table)

    if result.errors:
        console.print(f"\n[red]Errors ({len(result.errors)}):[/red]")
        for error in result.errors[:10]:  # Show first 10
            console.print(f"  - {error}")
        if len(result.errors) > 10:
            console.print(f"  ... and {len(result.errors) - 10} more")
        raise typer.Exit(1)


@app.command("delete")
def delete_cmd(
    table_name: Annotated[str, typer.Argument(help="Warehouse table")],
    key: Annotated[str, typer.Argument(help="Primary key value")],
    user: UserOption = None,
    config_path: ConfigOption = None,
):
    """Delete a row; dependent rows follow their foreign key policy."""
    config = get_config(config_path)
    db = get_db(config)

    try:
        result = db.delete(table_name, parse_key(key), performed_by=user)
    except WarehouseError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        db.close()

    console.print(
        f"[green]Deleted {result.deleted} row(s); "
        f"{result.cascaded} cascaded, {result.nullified} unlinked[/green]"
    )


# Views subcommands


@views_app.command("refresh")
def views_refresh(
    name: Annotated[
        Optional[str],
        typer.Argument(help="Summary to refresh (default: all)"),
    ] = None,
    stale: Annotated[
        bool,
        typer.Option("--stale", help="Only refresh summaries past the refresh interval"),
    ] = False,
    config_path: ConfigOption = None,
):
    """Rebuild materialized summaries."""
    from .reporting.refresh import refresh_all, refresh_stale, refresh_view

    config = get_config(config_path)
    db = get_db(config)

    try:
        if name:
            counts = {name: refresh_view(db, name)}
        elif stale:
            counts = refresh_stale(db, timedelta(hours=config.reporting.refresh_interval_hours))
        else:
            counts = refresh_all(db)
    except KeyError as e:
        console.print(f"[red]{e.args[0]}[/red]")
        raise typer.Exit(1)
    finally:
        db.close()

    if not counts:
        console.print("[green]All summaries are current[/green]")
        return
    for view_name, row_count in counts.items():
        console.print(f"[green]{view_name}: {row_count} rows[/green]")


@views_app.command("status")
def views_status(config_path: ConfigOption = None):
    """Show when each summary was last refreshed."""
    from .reporting.refresh import view_status

    config = get_config(config_path)
    db = get_db(config)

    try:
        statuses = view_status(db, timedelta(hours=config.reporting.refresh_interval_hours))
    finally:
        db.close()

    table = Table(title="Materialized Summaries")
    table.add_column("View", style="cyan")
    table.add_column("Refreshed At", style="white")
    table.add_column("Rows", style="green", justify="right")
    table.add_column("Status", style="white")

    for status in statuses:
        table.add_row(
            status.view_name,
            status.refreshed_at or "never",
            str(status.row_count) if status.row_count is not None else "-",
            "[yellow]stale[/yellow]" if status.stale else "[green]current[/green]",
        )

    console.print(table)


@views_app.command("cron")
def views_cron(config_path: ConfigOption = None):
    """Print pg_cron statements that refresh every summary on schedule."""
    from .db.views import MATERIALIZED_VIEWS
    from .reporting.refresh import cron_schedule_statement

    config = get_config(config_path)
    for name in MATERIALIZED_VIEWS:
        print(cron_schedule_statement(name, config.reporting.refresh_cron) + ";")


# Report subcommands


@report_app.command("category")
def report_category(
    year: Annotated[
        Optional[int],
        typer.Option("--year", "-y", help="Fiscal year"),
    ] = None,
    config_path: ConfigOption = None,
):
    """Total expenditures by expense category."""
    from .reporting.queries import expenditure_by_category

    config = get_config(config_path)
    db = get_db(config)

    try:
        totals = expenditure_by_category(db, year)
    finally:
        db.close()

    if not totals:
        console.print("[yellow]No expenditures found[/yellow]")
        raise typer.Exit(0)

    title = f"Expenditures by Category ({year})" if year else "Expenditures by Category"
    table = Table(title=title)
    table.add_column("Category", style="cyan")
    table.add_column("Count", style="white", justify="right")
    table.add_column("Total", style="green", justify="right")

    for total in totals:
        table.add_row(total.expense_category, str(total.expenditure_count), money(config, total.total_amount))

    console.print(table)


@report_app.command("agency")
def report_agency(config_path: ConfigOption = None):
    """Total grant funding by agency."""
    from .reporting.queries import grants_by_agency

    config = get_config(config_path)
    db = get_db(config)

    try:
        totals = grants_by_agency(db)
    finally:
        db.close()

    table = Table(title="Grant Funding by Agency")
    table.add_column("Agency", style="cyan")
    table.add_column("Grants", style="white", justify="right")
    table.add_column("Total", style="green", justify="right")

    for total in totals:
        table.add_row(total.agency_name, str(total.grant_count), money(config, total.total_grant_amount))

    console.print(table)


@report_app.command("kpi")
def report_kpi(config_path: ConfigOption = None):
    """Per-program spend, funding and enrollment."""
    from .reporting.queries import kpi_report

    config = get_config(config_path)
    db = get_db(config)

    try:
        rows = kpi_report(db)
    finally:
        db.close()

    table = Table(title="Program KPIs")
    table.add_column("Program", style="cyan")
    table.add_column("Type", style="white")
    table.add_column("Clients", style="white", justify="right")
    table.add_column("Spent", style="green", justify="right")
    table.add_column("Funded", style="green", justify="right")
    table.add_column("Balance", style="green", justify="right")

    for row in rows:
        balance = money(config, row.funding_balance)
        if row.funding_balance < 0:
            balance = f"[red]{balance}[/red]"
        table.add_row(
            row.program_name,
            row.program_type,
            str(row.enrolled_clients),
            money(config, row.total_expenditure),
            money(config, row.total_grant_funding),
            balance,
        )

    console.print(table)


# Log subcommands


@log_app.command("audit")
def log_audit(
    table_name: Annotated[
        Optional[str],
        typer.Option("--table", "-t", help="Only entries for this table"),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum entries")] = 50,
    config_path: ConfigOption = None,
):
    """Show recent row changes."""
    config = get_config(config_path)
    db = get_db(config)

    try:
        entries = db.get_audit_log(table_name, limit)
    finally:
        db.close()

    if not entries:
        console.print("[yellow]No audit entries[/yellow]")
        raise typer.Exit(0)

    table = Table(title="Audit Log")
    table.add_column("ID", style="cyan")
    table.add_column("Time", style="white")
    table.add_column("Table", style="white")
    table.add_column("Operation", style="yellow")
    table.add_column("User", style="white")

    for entry in entries:
        table.add_row(
            str(entry.log_id),
            entry.operation_time or "",
            entry.table_name,
            entry.operation_type,
            entry.user_name or "",
        )

    console.print(table)


@log_app.command("errors")
def log_errors(
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum entries")] = 50,
    config_path: ConfigOption = None,
):
    """Show recently rejected writes."""
    config = get_config(config_path)
    db = get_db(config)

    try:
        entries = db.get_error_log(limit)
    finally:
        db.close()

    if not entries:
        console.print("[green]No rejected writes[/green]")
        raise typer.Exit(0)

    table = Table(title="Error Log")
    table.add_column("ID", style="cyan")
    table.add_column("Time", style="white")
    table.add_column("Table", style="white")
    table.add_column("Operation", style="white")
    table.add_column("Type", style="yellow")
    table.add_column("Message", style="red")

    for entry in entries:
        table.add_row(
            str(entry.error_id),
            entry.logged_at or "",
            entry.table_name,
            entry.operation,
            entry.error_type,
            entry.error_message,
        )

    console.print(table)


# Roles subcommands


@roles_app.command("show")
def roles_show(
    reveal: Annotated[
        bool,
        typer.Option("--reveal", help="Print role passwords instead of masking them"),
    ] = False,
    config_path: ConfigOption = None,
):
    """Print the statements that create and grant the reader roles."""
    from .security import read_grant_statements

    config = get_config(config_path)
    security = config.security
    for role in security.readers:
        for statement in read_grant_statements(
            role.name,
            database=security.database_name,
            schema=security.schema_name,
            login=role.login,
            password=role.password if reveal or not role.password else "***",
        ):
            print(statement + ";")


@roles_app.command("grant")
def roles_grant(config_path: ConfigOption = None):
    """Create the reader roles and grant them read-only access."""
    from .security import apply_read_grants

    config = get_config(config_path)
    db = get_db(config)

    dialect = db.dialect
    try:
        applied = apply_read_grants(
            db.engine,
            config.security.readers,
            database=config.security.database_name,
            schema=config.security.schema_name,
        )
    finally:
        db.close()

    if applied:
        names = ", ".join(r.name for r in config.security.readers)
        console.print(f"[green]Read access granted to {names}[/green]")
    else:
        console.print(f"[yellow]Roles are not supported on {dialect}; nothing applied[/yellow]")


if __name__ == "__main__":
    app()
