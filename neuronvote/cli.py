"""Main CLI entry point for the governance voting agent."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import config_store, db
from .analysis import AnalysisPipeline
from .config import settings
from .governance_client import HttpGovernanceClient
from .models import Base
from .orchestrate import Orchestrator
from .service import PROPOSAL_FILTERS, ProposalService
from .sync import refresh_latest_proposals, sync_new_proposals

console = Console()
err_console = Console(stderr=True)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _fmt_time(ts: int | None) -> str:
    if not ts:
        return "-"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")


def _check(result: dict[str, Any]) -> dict[str, Any]:
    """Print an error result and exit non-zero; pass successes through."""
    if result.get("status") != "success":
        console.print(f"[red]{result.get('message') or result.get('status')}[/red]")
        raise SystemExit(1)
    return result


async def build_governance_client() -> HttpGovernanceClient:
    auth_key = await config_store.get_config_value(config_store.GOVERNANCE_AUTH_KEY)
    return HttpGovernanceClient(
        base_url=settings.governance_api_url,
        auth_key=auth_key or None,
        timeout_seconds=settings.governance_timeout,
    )


@asynccontextmanager
async def open_service() -> AsyncIterator[ProposalService]:
    governance = await build_governance_client()
    service = ProposalService(governance, AnalysisPipeline())
    try:
        yield service
        await service.drain()
    finally:
        await governance.aclose()
        await db.dispose()


@click.group()
@click.version_option(version="0.1.0")
@click.option("--log-level", default=None, help="Log level (defaults to NEURONVOTE_LOG_LEVEL)")
def main(log_level: str | None) -> None:
    """Governance voting agent CLI.

    Sync proposals, review the agent's recommendations, and manage scheduled votes.
    """
    _setup_logging(log_level or settings.log_level)


@main.command(name="init-db")
def init_db() -> None:
    """Create tables and seed default configuration (local development)."""

    async def do_init() -> None:
        await db.init_db()
        inserted = await config_store.ensure_config_defaults()
        await db.dispose()
        console.print("[green]✓[/green] Database initialized")
        for key in inserted:
            console.print(f"  Seeded default for [cyan]{key}[/cyan]")

    asyncio.run(do_init())


@main.command()
def run() -> None:
    """Run the agent: initial sync, then the sync, vote and analysis timers."""

    async def do_run() -> None:
        governance = await build_governance_client()
        orchestrator = Orchestrator(governance, AnalysisPipeline())
        try:
            await orchestrator.run_forever()
        finally:
            await governance.aclose()
            await db.dispose()

    asyncio.run(do_run())


@main.command()
@click.option("--latest", is_flag=True, help="Only fetch the newest page")
def sync(latest: bool) -> None:
    """Fetch new proposals from the governance network."""

    async def do_sync() -> None:
        governance = await build_governance_client()
        try:
            if latest:
                added = await refresh_latest_proposals(governance)
                console.print(f"[green]✓[/green] Stored {added} new proposals")
                return
            result = await sync_new_proposals(governance)
        finally:
            await governance.aclose()
            await db.dispose()

        if result.error:
            console.print(f"[red]Sync failed: {result.error}[/red]")
            raise SystemExit(1)
        console.print(
            f"[green]✓[/green] Synced {result.fetched} proposals "
            f"({result.new_count} new, {result.pages} pages, stop: {result.stop_reason})"
        )

    asyncio.run(do_sync())


@main.command()
@click.option("--page", default=1, help="Page number")
@click.option("--limit", default=20, help="Proposals per page")
@click.option("--status", "status_filter", type=click.Choice(PROPOSAL_FILTERS), default="all")
def proposals(page: int, limit: int, status_filter: str) -> None:
    """List stored proposals, newest first."""

    async def do_list() -> None:
        async with open_service() as service:
            result = _check(
                await service.list_proposals(page=page, limit=limit, status=status_filter)
            )

        rows = result["proposals"]
        if not rows:
            console.print("[yellow]No proposals found[/yellow]")
            return

        pagination = result["pagination"]
        table = Table(title=f"Proposals (page {pagination['page']}/{max(pagination['pages'], 1)})")
        table.add_column("ID", style="cyan")
        table.add_column("Title")
        table.add_column("Topic")
        table.add_column("Processed")
        table.add_column("Created")

        for p in rows:
            title = (p.get("proposal") or {}).get("title") or "-"
            if p.get("placeholder"):
                title = f"[dim]{title}[/dim]"
            table.add_row(
                p["id"],
                title,
                str(p.get("topic", "-")),
                "[green]yes[/green]" if p.get("processed") else "no",
                _fmt_time(p.get("proposalTimestampSeconds")),
            )
        console.print(table)
        console.print(f"[dim]{pagination['total']} total[/dim]")

    asyncio.run(do_list())


@main.command()
@click.argument("proposal_id")
def show(proposal_id: str) -> None:
    """Show a proposal with the agent's recommendation and scheduled vote.

    PROPOSAL_ID: Governance proposal ID
    """

    async def do_show() -> None:
        async with open_service() as service:
            proposal = _check(await service.get_proposal(proposal_id))["proposal"]
            agent_vote = (await service.get_agent_vote(proposal_id)).get("agent_vote")
            scheduled = (await service.get_scheduled_vote(proposal_id)).get("scheduled_vote")

        body = proposal.get("proposal") or {}
        summary = str(body.get("summary") or "")
        console.print(
            Panel(
                f"[bold]{body.get('title') or '-'}[/bold]\n\n"
                f"Topic: [cyan]{proposal.get('topic', '-')}[/cyan]\n"
                f"Proposer: {proposal.get('proposer', '-')}\n"
                f"Created: {_fmt_time(proposal.get('proposalTimestampSeconds'))}\n"
                f"Processed: {proposal.get('processed')}"
                + ("\n[yellow]Placeholder entry[/yellow]" if proposal.get("placeholder") else "")
                + (f"\n\n{summary[:1000]}" if summary else ""),
                title=f"Proposal {proposal['id']}",
            )
        )

        if agent_vote:
            console.print(
                Panel(
                    f"Vote: [bold]{agent_vote['direction'].upper()}[/bold]\n"
                    f"Scheduled: {agent_vote['scheduled']}\n\n{agent_vote['reasoning']}",
                    title="Agent Recommendation",
                )
            )
        if scheduled:
            console.print(
                f"Scheduled vote: [cyan]{scheduled['direction']}[/cyan] "
                f"at {_fmt_time(scheduled['scheduled_time'])}"
            )

    asyncio.run(do_show())


@main.command()
@click.argument("proposal_id")
@click.argument("direction", type=click.Choice(["yes", "no"], case_sensitive=False))
@click.option("--delay", type=int, default=None, help="Delay in seconds (default: VOTE_SCHEDULE_DELAY)")
def schedule(proposal_id: str, direction: str, delay: int | None) -> None:
    """Schedule a vote, replacing any active one for the proposal.

    PROPOSAL_ID: Governance proposal ID

    DIRECTION: yes or no
    """

    async def do_schedule() -> None:
        async with open_service() as service:
            result = _check(await service.schedule_vote(proposal_id, direction, delay))
        vote = result["scheduled_vote"]
        console.print(
            f"[green]✓[/green] {result['message']} at {_fmt_time(vote['scheduled_time'])}"
        )

    asyncio.run(do_schedule())


@main.command()
@click.argument("proposal_id")
def cancel(proposal_id: str) -> None:
    """Cancel the active scheduled vote for a proposal."""

    async def do_cancel() -> None:
        async with open_service() as service:
            result = _check(await service.cancel_vote(proposal_id))
        style = "green" if result["canceled"] else "yellow"
        console.print(f"[{style}]{result['message']}[/{style}]")

    asyncio.run(do_cancel())


@main.command(name="vote-status")
@click.argument("proposal_id")
def vote_status(proposal_id: str) -> None:
    """Show the active scheduled vote for a proposal."""

    async def do_status() -> None:
        async with open_service() as service:
            vote = _check(await service.get_scheduled_vote(proposal_id))["scheduled_vote"]
        if not vote:
            console.print("[yellow]No vote scheduled[/yellow]")
            return
        console.print(
            f"[cyan]{vote['direction']}[/cyan] vote scheduled for "
            f"{_fmt_time(vote['scheduled_time'])}"
        )

    asyncio.run(do_status())


@main.command()
@click.argument("proposal_id")
def history(proposal_id: str) -> None:
    """Show every scheduled vote for a proposal, including executed ones."""

    async def do_history() -> None:
        async with open_service() as service:
            rows = _check(await service.vote_history(proposal_id))["history"]

        if not rows:
            console.print("[yellow]No vote history[/yellow]")
            return

        table = Table(title=f"Vote History: {proposal_id}")
        table.add_column("Direction", style="cyan")
        table.add_column("Scheduled")
        table.add_column("Executed")
        table.add_column("Result")

        for v in rows:
            if not v["executed"]:
                outcome = "[yellow]pending[/yellow]"
            elif v["error_message"]:
                outcome = f"[red]failed: {v['error_message'][:80]}[/red]"
            else:
                outcome = "[green]success[/green]"
            table.add_row(
                v["direction"],
                _fmt_time(v["scheduled_time"]),
                _fmt_time(v["executed_time"]),
                outcome,
            )
        console.print(table)

    asyncio.run(do_history())


@main.command()
@click.argument("proposal_id")
@click.argument("direction", type=click.Choice(["yes", "no"], case_sensitive=False))
def vote(proposal_id: str, direction: str) -> None:
    """Cast a vote immediately, bypassing the schedule."""

    async def do_vote() -> None:
        async with open_service() as service:
            result = await service.cast_vote(proposal_id, direction)
        if result["status"] == "success":
            console.print(f"[green]✓[/green] {result['message']}")
            return
        style = "yellow" if result.get("outcome") == "already_voted" else "red"
        console.print(f"[{style}]{result['message']}[/{style}]")
        raise SystemExit(1)

    asyncio.run(do_vote())


@main.command()
@click.argument("proposal_id")
def analyze(proposal_id: str) -> None:
    """Reset and re-run the agent's analysis of a proposal."""

    async def do_analyze() -> None:
        async with open_service() as service:
            started = await service.trigger_analysis(proposal_id)
            if started["status"] != "success":
                _check(started)
            console.print(f"[cyan]{started['message']}[/cyan]")
            await service.drain()
            agent_vote = (await service.get_agent_vote(proposal_id)).get("agent_vote")

        if not agent_vote:
            console.print("[red]Analysis did not produce a vote; see `neuronvote logs`[/red]")
            raise SystemExit(1)
        console.print(
            Panel(
                f"Vote: [bold]{agent_vote['direction'].upper()}[/bold]\n\n{agent_vote['reasoning']}",
                title=f"Agent Recommendation: {proposal_id}",
            )
        )

    asyncio.run(do_analyze())


@main.command(name="reset-analysis")
@click.argument("proposal_id")
def reset_analysis(proposal_id: str) -> None:
    """Delete the agent's vote, logs and scheduled vote for a proposal."""

    async def do_reset() -> None:
        async with open_service() as service:
            result = _check(await service.reset_analysis(proposal_id))
        deleted = result["deleted"]
        console.print(
            f"[green]✓[/green] {result['message']} "
            f"({deleted['agent_votes']} votes, {deleted['agent_logs']} logs, "
            f"{deleted['scheduled_votes']} scheduled)"
        )

    asyncio.run(do_reset())


@main.command(name="agent-votes")
@click.option("--page", default=1, help="Page number")
@click.option("--limit", default=20, help="Votes per page")
def agent_votes(page: int, limit: int) -> None:
    """List the agent's recommendations, newest first."""

    async def do_list() -> None:
        async with open_service() as service:
            votes = _check(await service.list_agent_votes(page=page, limit=limit))["agent_votes"]

        if not votes:
            console.print("[yellow]No agent votes[/yellow]")
            return

        table = Table(title="Agent Votes")
        table.add_column("Proposal", style="cyan")
        table.add_column("Vote")
        table.add_column("Scheduled")
        table.add_column("Created")
        table.add_column("Reasoning")

        for v in votes:
            table.add_row(
                v["proposal_id"],
                v["direction"],
                "yes" if v["scheduled"] else "no",
                _fmt_time(v["created_at"]),
                v["reasoning"][:80],
            )
        console.print(table)

    asyncio.run(do_list())


@main.command()
@click.argument("proposal_id")
def logs(proposal_id: str) -> None:
    """Show reasoning-service traffic recorded for a proposal."""

    async def do_logs() -> None:
        async with open_service() as service:
            entries = _check(await service.get_agent_logs(proposal_id))["logs"]

        if not entries:
            console.print("[yellow]No agent logs[/yellow]")
            return
        for entry in entries:
            console.print(
                Panel(
                    entry["response"] or "[dim](empty)[/dim]",
                    title=f"{entry['request'][:60]} @ {_fmt_time(entry['created_at'])}",
                )
            )

    asyncio.run(do_logs())


@main.group(name="config")
def config_group() -> None:
    """Read and write stored configuration.

    Keys: USER_PROMPT, VOTE_SCHEDULE_DELAY, OPENAI_KEY, GOVERNANCE_AUTH_KEY,
    minimum_proposal_id, user_neuron_id.
    """
    pass


@config_group.command(name="get")
@click.argument("key")
def config_get(key: str) -> None:
    """Show a configuration value."""

    async def do_get() -> None:
        async with open_service() as service:
            result = _check(await service.get_config(key))
        value = result["value"]
        if value is None:
            console.print(f"[cyan]{key}[/cyan]: [dim]not set[/dim]")
        elif key in (config_store.OPENAI_KEY, config_store.GOVERNANCE_AUTH_KEY) and value:
            console.print(f"[cyan]{key}[/cyan]: [green]set[/green]")
        else:
            console.print(f"[cyan]{key}[/cyan]: {value}")

    asyncio.run(do_get())


@config_group.command(name="set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str) -> None:
    """Store a configuration value."""

    async def do_set() -> None:
        async with open_service() as service:
            _check(await service.set_config(key, value))
        console.print(f"[green]✓[/green] Set {key}")

    asyncio.run(do_set())


@main.group(name="neuron")
def neuron_group() -> None:
    """Show or override the neuron used for voting."""
    pass


@neuron_group.command(name="get")
def neuron_get() -> None:
    async def do_get() -> None:
        async with open_service() as service:
            neuron_id = _check(await service.get_user_neuron())["neuron_id"]
        console.print(f"Voting neuron: [cyan]{neuron_id or 'not resolved yet'}[/cyan]")

    asyncio.run(do_get())


@neuron_group.command(name="set")
@click.argument("neuron_id")
def neuron_set(neuron_id: str) -> None:
    async def do_set() -> None:
        async with open_service() as service:
            result = _check(await service.set_user_neuron(neuron_id))
        console.print(f"[green]✓[/green] {result['message']}")

    asyncio.run(do_set())


@main.command(name="schema-check", help="Check DB schema readiness for current code.")
def schema_check() -> None:
    async def check() -> None:
        from sqlalchemy import inspect

        async with db.engine.connect() as conn:
            tables = set(await conn.run_sync(lambda c: inspect(c).get_table_names()))
        await db.dispose()

        missing = set(Base.metadata.tables) - tables
        if missing:
            console.print(f"[red]Missing tables: {sorted(missing)}[/red]")
            console.print("Run: `alembic upgrade head` or `neuronvote init-db`")
            raise SystemExit(1)
        console.print("[green]Schema ready[/green]")

    asyncio.run(check())


if __name__ == "__main__":
    main()
