"""
DealChat CLI

Command-line interface for DealChat.

Usage:
    dealchat chat                               # Interactive REPL mode
    dealchat ask "late stage deals"             # Single question mode
    dealchat explain "what LOIs signed today"   # Show intent and query, no CRM call
    dealchat status                             # Show configuration and connectivity
"""

import asyncio
import json
import logging
import re
import sys

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from dealchat import __version__
from dealchat.agents.extractor import IntentExtractor
from dealchat.agents.query_builder import QuerySynthesizer
from dealchat.config import get_settings
from dealchat.connectors.rest import RestRecordStore
from dealchat.models.agent import AgentError, SynthesisError, ValidationError
from dealchat.pipeline.orchestrator import ChatPipeline, ChatReply, create_pipeline

console = Console()

CLI_USER = "cli"
CLI_CHANNEL = "terminal"


def configure_cli_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.CRITICAL
    logging.basicConfig(level=level, force=True)
    for logger_name in ("dealchat", "httpx", "httpcore"):
        logging.getLogger(logger_name).setLevel(level)


def _should_exit_chat(text: str) -> bool:
    text = text.strip().lower()
    if text in {"exit", "quit", "q", "bye", "goodbye", "done"}:
        return True
    return bool(re.search(r"\b(?:that'?s all|no more questions|end (?:the )?chat)\b", text))


def _print_reply(reply: ChatReply, show_query: bool) -> None:
    console.print(Panel(Markdown(reply.text), title="[bold green]DealChat[/bold green]"))
    if show_query and reply.soql:
        source = "cache" if reply.cache_hit else "record store"
        console.print(
            Panel(reply.soql, title=f"Query ({reply.row_count} rows from {source})", border_style="cyan")
        )


# ============================================================================
# Commands
# ============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="DealChat")
@click.option("--verbose", is_flag=True, help="Show debug logging.")
def cli(verbose: bool):
    """DealChat - ask your CRM pipeline questions in plain English."""
    configure_cli_logging(verbose)


@cli.command()
@click.option("--show-query", is_flag=True, help="Print the query run for each answer.")
def chat(show_query: bool):
    """Interactive REPL mode; follow-up questions refine the previous one."""
    console.print(
        Panel.fit(
            "[bold green]DealChat Interactive Mode[/bold green]\n"
            "Ask about deals, pipeline or accounts. Type 'exit' or 'quit' to leave.",
            border_style="green",
        )
    )

    async def run_chat():
        pipeline = await create_pipeline()
        async with pipeline:
            while True:
                try:
                    message = console.input("[bold cyan]You:[/bold cyan] ")
                except (EOFError, KeyboardInterrupt):
                    console.print("\n[yellow]Goodbye![/yellow]")
                    break

                if not message.strip():
                    continue
                if _should_exit_chat(message):
                    console.print("[yellow]Goodbye![/yellow]")
                    break

                try:
                    with console.status("[cyan]Thinking...[/cyan]", spinner="dots"):
                        reply = await pipeline.handle_message(message, CLI_USER, CLI_CHANNEL)
                except AgentError as e:
                    console.print(f"[red]{pipeline.formatter.format_error(e)}[/red]")
                    continue
                _print_reply(reply, show_query)

    try:
        asyncio.run(run_chat())
    except AgentError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("message")
@click.option("--show-query", is_flag=True, help="Print the query that was run.")
def ask(message: str, show_query: bool):
    """Ask a single question and exit."""

    async def run_query() -> ChatReply:
        pipeline: ChatPipeline = await create_pipeline()
        try:
            with console.status("[cyan]Querying CRM...[/cyan]", spinner="dots"):
                return await pipeline.handle_message(message, CLI_USER, CLI_CHANNEL)
        finally:
            await pipeline.close()

    try:
        reply = asyncio.run(run_query())
    except AgentError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    _print_reply(reply, show_query)


@cli.command()
@click.argument("message")
def explain(message: str):
    """Show how a message is understood, without contacting the CRM."""
    intent = IntentExtractor().extract(message)

    table = Table(title="Intent", show_header=True, header_style="bold cyan")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("intent", intent.intent.value)
    table.add_row("confidence", f"{intent.confidence:.2f}")
    table.add_row("explanation", intent.explanation)
    table.add_row("entities", json.dumps(intent.entities, indent=2, default=str))
    console.print(table)

    if not intent.needs_query:
        console.print("[yellow]Answered without a query.[/yellow]")
        return

    try:
        query = QuerySynthesizer().build(intent.entities)
    except (ValidationError, SynthesisError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(Panel(query.to_soql(), title=f"Query (dates on {query.date_field})", border_style="cyan"))


@cli.command()
def status():
    """Show configuration and record store connectivity."""

    async def check_status():
        settings = get_settings()
        table = Table(title="DealChat Status", show_header=True, header_style="bold cyan")
        table.add_column("Component", style="cyan")
        table.add_column("Status", style="green")
        table.add_column("Details")

        table.add_row("Configuration", "✓", f"Environment: {settings.environment}")
        table.add_row(
            "Caches",
            "✓",
            f"query {settings.cache.query_ttl_seconds:g}s, "
            f"resolver {settings.cache.resolver_ttl_seconds:g}s",
        )

        store_settings = settings.record_store
        if not store_settings.instance_url or not store_settings.access_token:
            table.add_row("Record Store", "✗", "RECORD_STORE_INSTANCE_URL / ACCESS_TOKEN not set")
            console.print(table)
            return

        store = RestRecordStore.from_settings(store_settings)
        try:
            result = await store.query("SELECT Id FROM Account LIMIT 1")
            table.add_row("Record Store", "✓", f"{store.instance_url} ({result.total_size} rows)")
        except AgentError as e:
            table.add_row("Record Store", "✗", f"Error: {e.message[:60]}")
        finally:
            await store.close()

        console.print(table)

    asyncio.run(check_status())


# ============================================================================
# Entry Point
# ============================================================================


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
