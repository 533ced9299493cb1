"""CLI for PokerPot using Typer."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date

import typer
from rich.console import Console
from rich.table import Table

from .clients.notifier import LoggingNotifier, Notifier, WebhookNotifier
from .clients.remote import RemoteDataClient
from .config import Settings, load_settings
from .db import Database
from .events import EventQueue, NotificationDispatcher
from .exceptions import (
    ConfigurationError,
    PartialBulkFailure,
    PokerPotError,
    ValidationError,
)
from .models import MemberBalance, PotSplit, Settlement, SettleUpTransaction
from .money import format_cents, format_cents_with_sign, parse_dollars_to_cents
from .pots import calculate_side_pots, split_pot_evenly
from .service import LedgerService
from .settle import calculate_settlements
from .sync import SyncReconciler

app = typer.Typer(
    name="pokerpot",
    help="Track poker session buy-ins, cashouts and settlements",
)
session_app = typer.Typer(help="Create, join and complete sessions")
member_app = typer.Typer(help="Manage session members")
buyin_app = typer.Typer(help="Request and approve buy-ins")
settlements_app = typer.Typer(help="View and mark settle-up payments")
pot_app = typer.Typer(help="Split pots without touching the ledger")
app.add_typer(session_app, name="session")
app.add_typer(member_app, name="member")
app.add_typer(buyin_app, name="buyin")
app.add_typer(settlements_app, name="settlements")
app.add_typer(pot_app, name="pot")

console = Console()


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@dataclass
class Ledger:
    """Everything a command needs, wired from settings."""

    settings: Settings
    db: Database
    service: LedgerService
    dispatcher: NotificationDispatcher
    remote: RemoteDataClient | None

    @property
    def user_id(self) -> str:
        if not self.settings.user_id:
            raise ConfigurationError("Set POKERPOT_USER_ID to act as a user")
        return self.settings.user_id

    def reconciler(self) -> SyncReconciler:
        if self.remote is None:
            raise ConfigurationError(
                "Sync needs POKERPOT_REMOTE_URL and POKERPOT_REMOTE_API_KEY"
            )
        return SyncReconciler(
            self.db,
            self.remote,
            initial_lookback_days=self.settings.initial_sync_lookback_days,
        )


@contextmanager
def open_ledger(verbose: bool) -> Iterator[Ledger]:
    """Open the ledger for one command; reports errors and exits non-zero."""
    setup_logging(verbose)
    db = None
    remote = None
    dispatcher = None
    notifier: Notifier = LoggingNotifier()
    try:
        settings = load_settings()
        db = Database(settings.database_path)
        if settings.sync_enabled:
            remote = RemoteDataClient(
                settings.remote_url or "",
                settings.remote_api_key or "",
                timeout=settings.remote_timeout,
            )
        if settings.notification_webhook_url:
            notifier = WebhookNotifier(settings.notification_webhook_url)

        events = EventQueue()
        dispatcher = NotificationDispatcher(events, notifier)
        yield Ledger(
            settings=settings,
            db=db,
            service=LedgerService(db, events, remote),
            dispatcher=dispatcher,
            remote=remote,
        )
    except PartialBulkFailure as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        for buy_in_id, error in e.errors.items():
            console.print(f"  [red]{buy_in_id}[/red]: {error}")
        if verbose:
            raise
        sys.exit(1)
    except PokerPotError as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        # Changes that did commit still notify, even when the command failed
        if dispatcher is not None:
            dispatcher.dispatch_pending()
        if isinstance(notifier, WebhookNotifier):
            notifier.close()
        if remote is not None:
            remote.close()
        if db is not None:
            db.close()


def format_money(cents: int, use_color: bool = True) -> str:
    """Format a signed net amount, colored by direction."""
    text = format_cents_with_sign(cents)
    if not use_color or cents == 0:
        return text
    color = "green" if cents > 0 else "red"
    return f"[{color}]{text}[/{color}]"


def display_transactions(transactions: list[SettleUpTransaction]):
    """Display settle-up payments."""
    if not transactions:
        console.print("[green]Everyone is square. No payments needed.[/green]")
        return

    table = Table(title="Settle Up", show_header=True, header_style="bold magenta")
    table.add_column("From", style="cyan")
    table.add_column("To", style="cyan")
    table.add_column("Amount", justify="right")
    for tx in transactions:
        table.add_row(tx.from_member_name, tx.to_member_name, format_cents(tx.amount_cents))
    console.print(table)


def display_settlements(settlements: list[Settlement], names: dict[str, str]):
    """Display persisted settlements with paid state."""
    table = Table(title="Settlements", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("From", style="cyan")
    table.add_column("To", style="cyan")
    table.add_column("Amount", justify="right")
    table.add_column("Paid", justify="center")
    for s in settlements:
        table.add_row(
            s.id,
            names.get(s.from_member_id, "Unknown"),
            names.get(s.to_member_id, "Unknown"),
            format_cents(s.amount_cents),
            "[green]✓[/green]" if s.paid else "-",
        )
    console.print(table)


# ============================================================================
# Session commands
# ============================================================================


@session_app.command("create")
def session_create(
    name: str = typer.Argument(..., help="Session name"),
    session_date: str = typer.Option(
        None, "--date", "-d", help="Session date (YYYY-MM-DD), defaults to today"
    ),
    note: str = typer.Option(None, "--note", "-n", help="Optional note"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Create a session; you become its admin."""
    with open_ledger(verbose) as ledger:
        try:
            played_on = date.fromisoformat(session_date) if session_date else date.today()
        except ValueError as e:
            raise ValidationError(f"Invalid date {session_date!r}, use YYYY-MM-DD") from e
        session = ledger.service.create_session(
            name,
            played_on,
            note=note,
            user_id=ledger.user_id,
            user_name=ledger.settings.user_name,
        )
        console.print(
            f"[bold green]✓ Created session '{session.name}'[/bold green]\n"
            f"  ID: {session.id}\n"
            f"  Join code: [bold cyan]{session.join_code}[/bold cyan]"
        )


@session_app.command("join")
def session_join(
    join_code: str = typer.Argument(..., help="Six-character join code"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Join a session by its join code."""
    with open_ledger(verbose) as ledger:
        name = ledger.settings.user_name or ledger.user_id
        member = ledger.service.join_session(join_code, ledger.user_id, name)
        console.print(
            f"[bold green]✓ Joined session {member.session_id} as {member.name}[/bold green]"
        )


@session_app.command("list")
def session_list(
    mine: bool = typer.Option(False, "--mine", help="Only sessions you belong to"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List sessions, newest first."""
    with open_ledger(verbose) as ledger:
        sessions = ledger.db.list_sessions(ledger.user_id if mine else None)
        table = Table(title="Sessions", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="dim")
        table.add_column("Date")
        table.add_column("Name", style="cyan")
        table.add_column("Code")
        table.add_column("Status")
        for s in sessions:
            status = "[dim]Completed[/dim]" if s.is_completed else "[green]Active[/green]"
            table.add_row(s.id, s.date.isoformat(), s.name, s.join_code, status)
        console.print(table)


@session_app.command("show")
def session_show(
    session_id: str = typer.Argument(..., help="Session ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show members, buy-ins, cashouts and settlements for a session."""
    with open_ledger(verbose) as ledger:
        session = ledger.service.get_session(session_id)
        console.print(f"\n[bold]{session.name}[/bold] ({session.date})")
        console.print(f"  Join code: {session.join_code}")
        console.print(f"  Status: {'Completed' if session.is_completed else 'Active'}")
        if session.note:
            console.print(f"  Note: {session.note}")
        console.print()

        table = Table(title="Members", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Buy-ins", justify="right")
        table.add_column("Pending", justify="right", style="yellow")
        table.add_column("Cashout", justify="right")
        table.add_column("Net", justify="right")
        for summary in ledger.service.balances.compute_member_summaries(session_id):
            net = summary.net_cents
            table.add_row(
                summary.member_id,
                summary.member_name,
                format_cents(summary.approved_buy_ins_cents),
                format_cents(summary.pending_buy_ins_cents)
                if summary.pending_buy_ins_cents
                else "-",
                format_cents(summary.cashout_cents) if summary.has_cashed_out else "-",
                format_money(net) if net is not None else "-",
            )
        console.print(table)

        totals = ledger.service.balances.check_totals(session_id)
        if totals.balanced:
            console.print("  [green]✓ Buy-ins and cashouts match[/green]")
        else:
            console.print(
                f"  [yellow]Buy-ins {format_cents(totals.total_buy_ins_cents)} vs "
                f"cashouts {format_cents(totals.total_cashouts_cents)} "
                f"(off by {format_cents(totals.discrepancy_cents)})[/yellow]"
            )

        if session.is_completed:
            names = {m.id: m.name for m in ledger.db.list_members(session_id)}
            display_settlements(ledger.service.get_settlements(session_id), names)


@session_app.command("complete")
def session_complete(
    session_id: str = typer.Argument(..., help="Session ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Validate totals, record settlements and complete the session."""
    with open_ledger(verbose) as ledger:
        balances = ledger.service.balances.compute_member_balances(session_id)
        display_transactions(calculate_settlements(balances))

        if not yes and not typer.confirm("\nComplete this session? No edits after this."):
            console.print("[yellow]Cancelled.[/yellow]")
            return

        settlements = ledger.service.complete_session(session_id, ledger.user_id)
        console.print(
            f"\n[bold green]✓ Session completed with {len(settlements)} "
            f"settlements[/bold green]"
        )


@session_app.command("note")
def session_note(
    session_id: str = typer.Argument(..., help="Session ID"),
    note: str = typer.Argument(..., help="New note"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Change a session's note."""
    with open_ledger(verbose) as ledger:
        ledger.service.update_session_note(session_id, note, ledger.user_id)
        console.print("[green]✓ Note updated[/green]")


@session_app.command("delete")
def session_delete(
    session_id: str = typer.Argument(..., help="Session ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Delete a session and everything recorded in it."""
    with open_ledger(verbose) as ledger:
        if not yes and not typer.confirm("Delete this session and all its records?"):
            console.print("[yellow]Cancelled.[/yellow]")
            return
        ledger.service.delete_session(session_id, ledger.user_id)
        console.print("[green]✓ Session deleted[/green]")


# ============================================================================
# Member, buy-in and cashout commands
# ============================================================================


@member_app.command("add")
def member_add(
    session_id: str = typer.Argument(..., help="Session ID"),
    name: str = typer.Argument(..., help="Member name"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Add a local-only member (someone without an account)."""
    with open_ledger(verbose) as ledger:
        member = ledger.service.add_member(session_id, name)
        console.print(f"[green]✓ Added {member.name}[/green] ({member.id})")


@member_app.command("rename")
def member_rename(
    member_id: str = typer.Argument(..., help="Member ID"),
    name: str = typer.Argument(..., help="New name"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Rename a member."""
    with open_ledger(verbose) as ledger:
        member = ledger.service.rename_member(member_id, name, ledger.settings.user_id)
        console.print(f"[green]✓ Renamed to {member.name}[/green]")


@member_app.command("delete")
def member_delete(
    member_id: str = typer.Argument(..., help="Member ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Remove a member with their buy-ins and cashout (admins only)."""
    with open_ledger(verbose) as ledger:
        ledger.service.delete_member(member_id, ledger.user_id)
        console.print("[green]✓ Member removed[/green]")


@buyin_app.command("request")
def buyin_request(
    session_id: str = typer.Argument(..., help="Session ID"),
    member_id: str = typer.Argument(..., help="Member ID"),
    amount: str = typer.Argument(..., help="Amount in dollars, e.g. 50 or $20.00"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Request a buy-in; it counts once an admin approves it."""
    with open_ledger(verbose) as ledger:
        buy_in = ledger.service.approvals.request_buy_in(
            session_id,
            member_id,
            parse_dollars_to_cents(amount),
            ledger.settings.user_id,
        )
        console.print(
            f"[green]✓ Buy-in of {format_cents(buy_in.amount_cents)} requested[/green] "
            f"({buy_in.id})"
        )


@buyin_app.command("pending")
def buyin_pending(
    session_id: str = typer.Argument(..., help="Session ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List buy-ins waiting for approval."""
    with open_ledger(verbose) as ledger:
        pending = ledger.service.approvals.get_pending_buy_ins(session_id)
        if not pending:
            console.print("[green]No pending buy-ins.[/green]")
            return
        names = {m.id: m.name for m in ledger.db.list_members(session_id)}
        table = Table(title="Pending Buy-ins", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="dim")
        table.add_column("Member", style="cyan")
        table.add_column("Amount", justify="right")
        table.add_column("Requested")
        for buy_in in pending:
            table.add_row(
                buy_in.id,
                names.get(buy_in.member_id, "Unknown"),
                format_cents(buy_in.amount_cents),
                buy_in.created_at.strftime("%Y-%m-%d %H:%M"),
            )
        console.print(table)


@buyin_app.command("approve")
def buyin_approve(
    buy_in_ids: list[str] = typer.Argument(..., help="Buy-in IDs"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Approve one or more buy-ins (admins only)."""
    with open_ledger(verbose) as ledger:
        approved = ledger.service.approvals.bulk_approve(buy_in_ids, ledger.user_id)
        console.print(f"[green]✓ Approved {len(approved)} buy-in(s)[/green]")


@buyin_app.command("reject")
def buyin_reject(
    buy_in_ids: list[str] = typer.Argument(..., help="Buy-in IDs"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Reject one or more pending buy-ins (admins only)."""
    with open_ledger(verbose) as ledger:
        ledger.service.approvals.bulk_reject(buy_in_ids, ledger.user_id)
        console.print(f"[green]✓ Rejected {len(buy_in_ids)} buy-in(s)[/green]")


@app.command()
def cashout(
    session_id: str = typer.Argument(..., help="Session ID"),
    member_id: str = typer.Argument(..., help="Member ID"),
    amount: str = typer.Argument(..., help="Chips cashed out, in dollars"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Record a member's cashout."""
    with open_ledger(verbose) as ledger:
        result = ledger.service.record_cashout(
            session_id,
            member_id,
            parse_dollars_to_cents(amount),
            ledger.settings.user_id,
        )
        console.print(
            f"[green]✓ Cashout {format_cents(result.cashout_cents)}[/green], "
            f"net {format_money(result.net_cents)}"
        )


# ============================================================================
# Settlement commands
# ============================================================================


@settlements_app.command("list")
def settlements_list(
    session_id: str = typer.Argument(..., help="Session ID"),
    unpaid: bool = typer.Option(False, "--unpaid", help="Only unpaid settlements"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List a completed session's settlements."""
    with open_ledger(verbose) as ledger:
        names = {m.id: m.name for m in ledger.db.list_members(session_id)}
        display_settlements(
            ledger.service.get_settlements(session_id, paid=False if unpaid else None),
            names,
        )


@settlements_app.command("paid")
def settlements_paid(
    settlement_id: str = typer.Argument(..., help="Settlement ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Mark a settlement as paid."""
    with open_ledger(verbose) as ledger:
        ledger.service.mark_settlement_paid(settlement_id, ledger.user_id)
        console.print("[green]✓ Marked as paid[/green]")


@settlements_app.command("unpaid")
def settlements_unpaid(
    settlement_id: str = typer.Argument(..., help="Settlement ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Mark a settlement as unpaid again."""
    with open_ledger(verbose) as ledger:
        ledger.service.mark_settlement_unpaid(settlement_id)
        console.print("[yellow]Marked as unpaid[/yellow]")


# ============================================================================
# Ad-hoc calculators
# ============================================================================


def parse_named_amounts(entries: list[str]) -> dict[str, int]:
    """Parse NAME=AMOUNT arguments into cents per name; exits on a bad entry."""
    amounts: dict[str, int] = {}
    for entry in entries:
        name, sep, amount = entry.partition("=")
        if not sep:
            console.print(f"[bold red]Error:[/bold red] expected NAME=AMOUNT, got {entry!r}")
            raise typer.Exit(1)
        try:
            amounts[name] = parse_dollars_to_cents(amount)
        except PokerPotError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(1) from e
    return amounts


@app.command()
def settle(
    entries: list[str] = typer.Argument(..., help="NAME=AMOUNT pairs, e.g. Ann=30 Bob=-30"),
):
    """Work out payments for ad-hoc net results without touching the ledger."""
    balances = [
        MemberBalance(member_id=name, member_name=name, total_cents=cents)
        for name, cents in parse_named_amounts(entries).items()
    ]

    residual = sum(b.total_cents for b in balances)
    if residual != 0:
        console.print(
            f"[yellow]Warning: results do not net to zero "
            f"({format_cents_with_sign(residual)})[/yellow]"
        )
    display_transactions(calculate_settlements(balances))


def display_pot_splits(splits: list[PotSplit]):
    """Display pots with each player's share."""
    table = Table(title="Pot Split", show_header=True, header_style="bold magenta")
    table.add_column("Pot", style="cyan")
    table.add_column("Total", justify="right")
    table.add_column("Players")
    table.add_column("Each", justify="right")
    table.add_column("Odd cents", justify="right")
    for split in splits:
        table.add_row(
            split.pot_name,
            format_cents(split.total_pot_cents),
            ", ".join(split.players),
            format_cents(split.amount_per_player_cents),
            format_cents(split.remainder_cents) if split.remainder_cents else "-",
        )
    console.print(table)


@pot_app.command("split")
def pot_split(
    amount: str = typer.Argument(..., help="Pot amount in dollars"),
    players: list[str] = typer.Argument(..., help="Names of the players chopping the pot"),
):
    """Chop a pot evenly between players."""
    try:
        split = split_pot_evenly(parse_dollars_to_cents(amount), players)
    except PokerPotError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1) from e
    display_pot_splits([split])


@pot_app.command("side")
def pot_side(
    entries: list[str] = typer.Argument(
        ..., help="NAME=AMOUNT contributions, e.g. Ann=100 Bob=300"
    ),
):
    """Work out the main pot and side pots from all-in contributions."""
    try:
        splits = calculate_side_pots(parse_named_amounts(entries))
    except PokerPotError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1) from e
    display_pot_splits(splits)


# ============================================================================
# Stats, adjustments and sync
# ============================================================================


@app.command()
def stats(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show your lifetime net result."""
    with open_ledger(verbose) as ledger:
        lifetime = ledger.service.balances.compute_lifetime_net(ledger.user_id)

        table = Table(title="Session History", show_header=True, header_style="bold magenta")
        table.add_column("Date")
        table.add_column("Session", style="cyan")
        table.add_column("Net", justify="right")
        for entry in lifetime.sessions:
            table.add_row(entry.date.isoformat(), entry.session_name, format_money(entry.net_cents))
        console.print(table)

        if lifetime.adjustments_cents:
            console.print(f"  Adjustments: {format_money(lifetime.adjustments_cents)}")
        console.print(f"  [bold]Lifetime net: {format_money(lifetime.total_net_cents)}[/bold]")


@app.command()
def adjust(
    amount: str = typer.Argument(..., help="Signed amount in dollars, e.g. -25"),
    note: str = typer.Option(None, "--note", "-n", help="Why the adjustment"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Add a manual adjustment to your lifetime total."""
    with open_ledger(verbose) as ledger:
        adjustment = ledger.service.add_manual_adjustment(
            ledger.user_id, parse_dollars_to_cents(amount), note
        )
        console.print(f"[green]✓ Adjusted by {format_money(adjustment.amount_cents)}[/green]")


@app.command()
def sync(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Push local changes to the remote store and pull newer ones."""
    with open_ledger(verbose) as ledger:
        report = ledger.reconciler().sync()
        if report is None:
            console.print("[yellow]Sync skipped (offline or already running).[/yellow]")
            return
        console.print(
            f"[green]✓ Synced[/green]: pushed {sum(report.pushed.values())}, "
            f"pulled {sum(report.pulled.values())}, deleted {report.deleted}"
        )


if __name__ == "__main__":
    app()
