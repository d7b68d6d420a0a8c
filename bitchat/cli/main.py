"""
BitChat errors CLI entry point.

Commands:
    bitchat-errors version   — Show version
    bitchat-errors codes     — List error codes
    bitchat-errors config    — Show effective configuration
    bitchat-errors classify  — Explain one error code
    bitchat-errors inspect   — Summarise an exported error log
    bitchat-errors show      — Show one entry of an exported error log
"""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from bitchat.core.codes import ErrorCategory, ErrorCode, ErrorSeverity, default_user_message
from bitchat.core.config import BitChatConfig
from bitchat.core.errors import ConfigError
from bitchat.core.types import ErrorLogExport, SerializedError

app = typer.Typer(
    name="bitchat-errors",
    help="BitChat error taxonomy and error log tools.",
    add_completion=False,
)

console = Console()

_SEVERITY_STYLE = {
    ErrorSeverity.INFO: "dim",
    ErrorSeverity.WARNING: "yellow",
    ErrorSeverity.ERROR: "red",
    ErrorSeverity.CRITICAL: "bold red",
}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """BitChat error taxonomy and error log tools."""
    from bitchat.core.log import setup_logging, setup_logging_from_config

    config = _load_config()
    if verbose:
        log_dir = Path(config.logging.log_dir) if config.logging.log_dir else None
        setup_logging(console_level=logging.DEBUG, log_dir=log_dir)
    else:
        setup_logging_from_config(config.logging)


def _load_config() -> BitChatConfig:
    try:
        return BitChatConfig.load()
    except ConfigError as e:
        console.print(f"[red]{escape(e.message)}[/red]")
        raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show version."""
    from bitchat import __version__

    console.print(f"bitchat-errors v{__version__}")


@app.command()
def config() -> None:
    """Show the effective configuration (defaults, toml files, BITCHAT_* env)."""
    loaded = _load_config()
    console.print(Panel(
        escape(loaded.model_dump_json(indent=2, exclude_none=True)),
        title="Effective configuration",
        border_style="cyan",
    ))


@app.command()
def codes(
    category: str = typer.Option(None, "--category", "-c", help="Only codes in this category"),
) -> None:
    """List error codes with their category and default user message."""
    selected = list(ErrorCode)
    if category:
        try:
            wanted = ErrorCategory(category.lower())
        except ValueError:
            valid = ", ".join(c.value for c in ErrorCategory)
            console.print(f"[red]Unknown category: {escape(category)}[/red]\n[dim]Valid: {valid}[/dim]")
            raise typer.Exit(1)
        selected = [code for code in selected if code.category is wanted]

    table = Table(title="Error codes")
    table.add_column("Code", justify="right")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("User message", overflow="fold")
    for code in selected:
        table.add_row(str(int(code)), code.name, code.category.value, default_user_message(code))
    console.print(table)


def _parse_code(value: str) -> ErrorCode | None:
    try:
        return ErrorCode(int(value))
    except ValueError:
        pass
    return ErrorCode.__members__.get(value.upper())


@app.command()
def classify(code: str = typer.Argument(..., help="Numeric code or name, e.g. 2014 or RELAY_RATE_LIMITED")) -> None:
    """Show how the recovery engine treats an error code."""
    from bitchat.core.errors import BitChatError
    from bitchat.recovery.transient import get_backoff_time, is_transient_error, should_backoff

    parsed = _parse_code(code)
    if parsed is None:
        console.print(f"[red]Unknown error code: {escape(code)}[/red]")
        raise typer.Exit(1)

    sample = BitChatError(parsed.name, code=parsed, category=parsed.category)
    console.print(f"[bold]{parsed.name}[/bold] ({int(parsed)})")
    console.print(f"Category:      {parsed.category.value}")
    console.print(f"Transient:     {'yes' if is_transient_error(sample) else 'no'}")
    console.print(f"Backoff:       {'yes' if should_backoff(sample) else 'no'}")
    console.print(f"Backoff hint:  {get_backoff_time(sample)}ms")
    console.print(f"User message:  {default_user_message(parsed)}")


def _load_export(path: Path) -> ErrorLogExport:
    try:
        return ErrorLogExport.model_validate_json(path.read_text(encoding="utf-8"))
    except OSError as e:
        console.print(f"[red]Cannot read {path}: {escape(str(e))}[/red]")
        raise typer.Exit(1)
    except ValidationError as e:
        console.print(f"[red]Not an error log export: {path}[/red]\n[dim]{escape(str(e))}[/dim]")
        raise typer.Exit(1)


@app.command()
def inspect(
    export_file: Path = typer.Argument(..., help="File written from ErrorHandler.export_log()"),
    limit: int = typer.Option(10, "--limit", "-n", help="Number of entries to list"),
) -> None:
    """Summarise an exported error log."""
    export = _load_export(export_file)
    stats = export.stats

    console.print(Panel(
        f"[bold]Session:[/bold] {export.session_id}\n"
        f"[bold]Exported:[/bold] {export.exported_at}\n"
        f"[bold]Total errors:[/bold] {stats.total_errors}",
        title="Error log",
        border_style="cyan",
    ))

    counts = Table(title="By category")
    counts.add_column("Category")
    counts.add_column("Count", justify="right")
    for category, count in stats.by_category.items():
        if count:
            counts.add_row(ErrorCategory(category).value, str(count))
    console.print(counts)

    severities = ", ".join(
        f"{ErrorSeverity(severity).value}={count}" for severity, count in stats.by_severity.items()
    )
    console.print(f"[dim]By severity: {severities}[/dim]")

    if not export.errors:
        console.print("[dim]No errors recorded.[/dim]")
        return

    entries = Table(title=f"Most recent {min(limit, len(export.errors))}")
    entries.add_column("ID", overflow="fold")
    entries.add_column("Severity")
    entries.add_column("Code")
    entries.add_column("Message", overflow="fold")
    for entry in export.errors[:limit]:
        error = entry.error
        style = _SEVERITY_STYLE.get(error.severity, "")
        entries.add_row(
            entry.id,
            f"[{style}]{error.severity.value}[/{style}]" if style else error.severity.value,
            f"{error.code.name}",
            escape(error.message),
        )
    console.print(entries)


def _describe_error(error: SerializedError, depth: int = 0) -> list[str]:
    indent = "  " * depth
    lines = [
        f"{indent}[bold]{error.name}[/bold]: {escape(error.message)}",
        f"{indent}code={error.code.name} ({int(error.code)}) category={error.category.value} "
        f"severity={error.severity.value} recoverable={error.recoverable}",
        f"{indent}user message: {escape(error.user_message)}",
    ]
    context = error.context
    if context.component or context.operation:
        lines.append(f"{indent}in {context.component or '?'} during {context.operation or '?'}")
    if context.data:
        lines.append(f"{indent}data: {escape(str(context.data))}")
    if depth == 0 and context.stack_frames:
        lines.extend(f"{indent}  {escape(frame)}" for frame in context.stack_frames)
    if error.cause is not None:
        lines.append(f"{indent}caused by:")
        lines.extend(_describe_error(error.cause, depth + 1))
    return lines


@app.command()
def show(
    export_file: Path = typer.Argument(..., help="File written from ErrorHandler.export_log()"),
    error_id: str = typer.Argument(..., help="Log entry id (err_...)"),
) -> None:
    """Show one log entry with its cause chain."""
    export = _load_export(export_file)
    entry = next((e for e in export.errors if e.id == error_id), None)
    if entry is None:
        console.print(f"[yellow]No entry {escape(error_id)} in {export_file}[/yellow]")
        raise typer.Exit(1)

    console.print(Panel(
        "\n".join(_describe_error(entry.error)),
        title=entry.id,
        border_style="red" if entry.error.severity >= ErrorSeverity.ERROR else "yellow",
    ))
    console.print(f"[dim]handled={entry.handled} timestamp={entry.timestamp}[/dim]")


if __name__ == "__main__":
    app()
