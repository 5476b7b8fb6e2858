"""Command-line interface for mailarchiver."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from mailarchiver import __version__
from mailarchiver.archiver import AccountFilter, RunReport, discover_archive_roots, run_archive
from mailarchiver.config import Config, describe_destination, load_config, save_archive_paths
from mailarchiver.imap_client import IMAPMailClient
from mailarchiver.reporter import Reporter
from mailarchiver.structured_logger import StructuredLogger

console = Console(width=200, soft_wrap=False)
logger = logging.getLogger("mailarchiver")


def setup_logging(level: str, log_file: str | None = None) -> None:
    """Configure logging."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [
        RichHandler(
            console=console,
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
    ]

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,
    )


def create_mail_client(cfg: Config) -> IMAPMailClient:
    """Build the mail client for a configuration."""
    return IMAPMailClient(cfg.imap)


def _load(config: str) -> Config:
    try:
        return load_config(config)
    except (FileNotFoundError, ValueError, ValidationError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


def _persist_to(config_path: str):
    def persist(archive_paths) -> None:
        save_archive_paths(config_path, archive_paths)
        logger.debug(f"Archive paths written to {config_path}")

    return persist


@click.group()
@click.version_option(version=__version__, prog_name="mailarchiver")
def cli() -> None:
    """Mail Archiver - move old inbox messages into a year/month archive."""
    pass


@cli.command()
@click.option(
    "--config",
    "-c",
    required=True,
    type=click.Path(exists=True),
    help="Path to configuration YAML or JSON file",
)
@click.option(
    "--simulate/--live",
    default=None,
    help="Only log decisions, or actually move messages (overrides config)",
)
@click.option(
    "--retention-days",
    "-d",
    type=click.IntRange(min=0),
    default=None,
    help="Archive messages older than this many days (overrides config)",
)
@click.option(
    "--account",
    "-a",
    "accounts",
    multiple=True,
    help="Only process this account (repeatable)",
)
@click.option(
    "--report-dir",
    type=click.Path(),
    default=None,
    help="Directory for report output (overrides config)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def run(
    config: str,
    simulate: bool | None,
    retention_days: int | None,
    accounts: tuple[str, ...],
    report_dir: str | None,
    verbose: bool,
) -> None:
    """Archive inbox messages older than the retention window."""
    cfg = _load(config)

    overrides = {}
    if simulate is not None:
        overrides["simulate"] = simulate
    if retention_days is not None:
        overrides["retention_days"] = retention_days
    if overrides:
        cfg = cfg.model_copy(update=overrides)

    log_level = "DEBUG" if verbose else cfg.logging.level
    setup_logging(log_level, cfg.logging.log_file)

    console.print(f"[bold blue]Mail Archiver v{__version__}[/bold blue]")
    console.print(f"Configuration: {config}")
    mode = "simulate" if cfg.simulate else "live"
    console.print(f"Mode: [bold]{mode}[/bold]")
    console.print(f"Retention: {cfg.retention_days} days")

    if cfg.simulate:
        console.print("[yellow]SIMULATE: no folders are created and no messages are moved[/yellow]")

    account_filter = None
    if accounts:
        account_filter = AccountFilter(include=accounts)

    audit = StructuredLogger(cfg.logging.audit_file)
    audit.log_startup(
        {
            "mode": mode,
            "retention_days": cfg.retention_days,
            "accounts": [a.name for a in cfg.imap],
        }
    )

    try:
        with create_mail_client(cfg) as client:
            report = run_archive(
                cfg,
                client,
                account_filter=account_filter,
                structured_logger=audit,
                persist=_persist_to(config),
            )
    except Exception as e:
        logger.exception("Fatal error")
        audit.log_error("fatal", str(e))
        audit.log_shutdown("error")
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    _print_summary_table(report)

    output_dir = report_dir or cfg.report.directory
    if output_dir:
        for path in Reporter().save_report(report, output_dir, list(cfg.report.formats)):
            console.print(f"Report saved: {path}")

    audit.log_shutdown()


def _print_summary_table(report: RunReport) -> None:
    """Print a summary table to the console."""
    accounts = Table(title="Accounts")
    accounts.add_column("Account", style="cyan")
    accounts.add_column("Status")
    accounts.add_column("Archive root")
    accounts.add_column("Processed", justify="right")
    accounts.add_column("Archived", justify="right")
    accounts.add_column("Errors", justify="right")

    for account in report.accounts:
        status = account.status.value
        if account.error:
            status = f"[yellow]{status}[/yellow]"
        accounts.add_row(
            account.name,
            status,
            account.archive_root or "-",
            str(account.stats.processed),
            str(account.stats.moved + account.stats.simulated),
            str(account.stats.errors),
        )
    console.print(accounts)

    table = Table(title="Run Summary")
    table.add_column("Category", style="cyan")
    table.add_column("Count", justify="right", style="green")

    stats = report.stats
    table.add_row("Accounts Processed", str(stats.accounts_processed))
    table.add_row("Accounts Skipped", str(stats.accounts_skipped))
    table.add_row("Messages Processed", str(stats.processed))
    table.add_row("Moved", str(stats.moved))
    table.add_row("Simulated Moves", str(stats.simulated))
    table.add_row("Skipped by Rule", str(stats.skipped))
    table.add_row("Too Recent", str(stats.too_recent))
    table.add_row("Errors", str(stats.errors))

    console.print(table)


@cli.command()
@click.option(
    "--config",
    "-c",
    required=True,
    type=click.Path(exists=True),
    help="Path to configuration YAML or JSON file",
)
def discover(config: str) -> None:
    """Find the archive folder of every account and save it to the configuration."""
    cfg = _load(config)
    setup_logging(cfg.logging.level, cfg.logging.log_file)

    try:
        with create_mail_client(cfg) as client:
            found = discover_archive_roots(cfg, client, persist=_persist_to(config))
    except Exception as e:
        logger.exception("Discovery failed")
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    table = Table(title="Archive Roots")
    table.add_column("Account", style="cyan")
    table.add_column("Archive root")

    for name, destination in found.items():
        if destination is None:
            table.add_row(name, "[red]not found[/red]")
        else:
            table.add_row(name, describe_destination(destination))
    console.print(table)


@cli.command()
@click.option(
    "--config",
    "-c",
    required=True,
    type=click.Path(exists=True),
    help="Path to configuration YAML or JSON file",
)
def check(config: str) -> None:
    """Check configuration without connecting to any server."""
    cfg = _load(config)
    console.print("[green][OK] Configuration valid[/green]")

    mode = "simulate" if cfg.simulate else "live"
    console.print(f"  Mode: {mode}, retention: {cfg.retention_days} days")
    console.print(f"  Archive folder: {cfg.archive_folder_name}, label: {cfg.label_name}")

    console.print(f"\n{len(cfg.imap)} IMAP accounts configured")
    for account in cfg.imap:
        console.print(f"  - {account.name} ({account.username}@{account.host})")

    console.print(f"\n{len(cfg.skip_rules)} skip rules configured")
    for rule in cfg.skip_rules:
        console.print(f"  - {rule.account_name}: {', '.join(rule.subject_substrings)}")

    console.print(f"\n{len(cfg.archive_paths)} archive paths cached")
    for name, destination in sorted(cfg.archive_paths.items()):
        console.print(f"  - {name} -> {describe_destination(destination)}")


@cli.command()
@click.argument("output", type=click.Path())
def init_config(output: str) -> None:
    """Generate a sample configuration file."""
    sample_config = """# Mail Archiver Configuration

# Messages received more than this many days ago are archived
retention_days: 14

# simulate: only log what would be archived; set to false to move messages
simulate: true

# Name of the archive folder searched under the inbox and at the account root
archive_folder_name: Archive
# Label used as archive on Gmail-style accounts
label_name: Archive

# Also archive meeting requests and responses
include_meeting_items: false

imap:
  - name: Work
    host: mail.example.com
    port: 993
    username: user@example.com
    # Use password_env to read from environment variable (recommended)
    password_env: MAIL_PASSWORD
    inbox_folder: INBOX

  - name: Gmail
    host: imap.gmail.com
    username: someone@gmail.com
    password_env: GMAIL_APP_PASSWORD

# Subjects that are never archived, per account
skip_rules:
  - account_name: Work
    subject_substrings:
      - "[KEEP]"
      - Payslip

accounts:
  include: []
  exclude:
    - Internet Calendars
    - SharePoint Lists
    - Public Folders

logging:
  level: INFO
  # log_file: mailarchiver.log
  audit_file: audit.jsonl

report:
  # directory: ./reports
  formats: [md]

# Filled in by 'mailarchiver discover' and by runs that had to search.
# Writing them back rewrites this file without its comments.
archive_paths: {}
"""
    Path(output).write_text(sample_config, encoding="utf-8")
    console.print(f"[green]Sample configuration written to {output}[/green]")
    console.print("\nNext steps:")
    console.print("1. Edit the configuration with your IMAP settings")
    console.print("2. Set the password environment variables")
    console.print("3. Run: mailarchiver discover --config " + output)
    console.print("4. Run: mailarchiver run --config " + output)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
