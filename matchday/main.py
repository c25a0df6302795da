"""CLI entry point for the matchday simulator."""
import logging
import sys
import threading

import click
from rich.console import Console
from rich.table import Table
from rich.logging import RichHandler

from .config import CURRENCY, DB_PATH, DEFAULT_COUNTRY, LEAGUES, MATCHES_PER_TIMEFRAME, TOTAL_WEEKS
from .database import (
    adjust_balance,
    ensure_user,
    get_balance,
    get_bets_for_user,
    get_connection,
    get_match_history,
    get_or_create_schedule,
    get_recent_results,
    get_result_by_match,
    init_database,
    set_outcome_override,
    set_setting,
    transaction,
)
from .ledger import cancel_bet, force_resolve_stale_bets, place_bets_atomic
from .models import MODE_CYCLE, MODE_SCHEDULE, BetRequest, ForcedOutcome
from .odds import lookup_odds
from .scheduler import TimeframeBook, time_until_next_match, upcoming_slots
from .session import BettingSession, read_mode, read_season, stored_board
from .simulator import SimulationCache, winner_for
from .state_store import StateStore, StateWatcher

console = Console()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(console=console, rich_tracebacks=True)]
)
logger = logging.getLogger(__name__)

COUNTRY_OPTION = click.option(
    "--country", "-c",
    default=DEFAULT_COUNTRY,
    type=click.Choice(sorted(LEAGUES)),
    help="League country code",
)


def _book_for(conn, country: str) -> TimeframeBook:
    """A read-only timeframe book matching what a running session builds."""
    return TimeframeBook(
        country,
        LEAGUES[country]["teams"],
        get_or_create_schedule(conn),
        SimulationCache(),
        mode=read_mode(conn),
        season=read_season(conn, country),
    )


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def cli(debug):
    """Simulated football matchday and betting CLI."""
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)


@cli.command()
def init():
    """Initialize the database."""
    console.print("[bold]Initializing database...[/bold]")
    conn = get_connection()
    init_database(conn)
    schedule = get_or_create_schedule(conn)
    conn.close()
    console.print(f"[green]Database initialized at {DB_PATH}[/green]")
    console.print(f"  Reference epoch: {schedule.reference_epoch.isoformat()}")
    console.print(f"  Match interval: {schedule.match_interval_minutes} min")


@cli.command()
@COUNTRY_OPTION
@click.option("--ticks", "-t", default=None, type=int, help="Stop after this many seconds")
def run(country, ticks):
    """Run the match clock for a league."""
    session = BettingSession(DB_PATH, country)
    clock = session.start()
    console.print(
        f"[bold]Running {LEAGUES[country]['name']}[/bold] "
        f"({session.mode} mode, week {clock.state.current_week})"
    )

    stop_event = threading.Event()
    try:
        session.run(stop_event, ticks)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping...[/yellow]")
        stop_event.set()
    finally:
        session.close()


@cli.command()
def status():
    """Show the shared clock state."""
    state = StateStore(DB_PATH).read()

    table = Table(title="System State")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Week", str(state.current_week))
    table.add_row("Timeframe", str(state.current_timeframe_index))
    table.add_row("Phase", state.match_phase)
    table.add_row("Seconds left", str(state.countdown_seconds))
    table.add_row("Updated", state.last_updated.isoformat() if state.last_updated else "-")

    console.print(table)


@cli.command()
@click.option("--interval", "-i", default=2.0, help="Polling interval in seconds")
def watch(interval):
    """Follow the shared clock as it changes."""
    def show(state):
        console.print(
            f"week {state.current_week} | timeframe {state.current_timeframe_index} | "
            f"[bold]{state.match_phase}[/bold] | {state.countdown_seconds}s"
        )

    watcher = StateWatcher(StateStore(DB_PATH), show, interval)
    watcher.start()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        pass
    finally:
        watcher.stop()


@cli.command()
@COUNTRY_OPTION
@click.option("--timeframe", "-t", default=None, type=int, help="Timeframe index (default: live)")
def matches(country, timeframe):
    """List the match card of a timeframe."""
    conn = get_connection()
    init_database(conn)
    book = _book_for(conn, country)
    if timeframe is None:
        timeframe = StateStore(DB_PATH).read().current_timeframe_index

    table = Table(title=f"{LEAGUES[country]['name']} - timeframe {timeframe}")
    table.add_column("Match ID", style="dim")
    table.add_column("Home Team", style="cyan")
    table.add_column("Away Team", style="cyan")
    table.add_column("Kickoff")
    table.add_column("Score", justify="center")

    for match in book.matches_for(timeframe):
        result = get_result_by_match(conn, match.id)
        score = f"{result.home_goals}-{result.away_goals}" if result and result.is_final else "-"
        table.add_row(
            match.id,
            match.home_team[:20],
            match.away_team[:20],
            match.kickoff_time.strftime("%Y-%m-%d %H:%M"),
            score,
        )
    conn.close()

    console.print(table)


@cli.command()
@COUNTRY_OPTION
@click.option("--week", "-w", default=1, help="Season week (1-based)")
def fixtures(country, week):
    """Show the rotation fixtures of a week."""
    conn = get_connection()
    init_database(conn)
    book = _book_for(conn, country)
    conn.close()

    pairings = book.week_fixtures(week)
    if not pairings:
        console.print(f"[yellow]No fixtures for week {week}.[/yellow]")
        return

    table = Table(title=f"{LEAGUES[country]['name']} - week {week}")
    table.add_column("Home Team", style="cyan")
    table.add_column("Away Team", style="cyan")
    for pairing in pairings:
        table.add_row(pairing["home"], pairing["away"])

    console.print(table)


@cli.command()
@click.argument("match_id")
def odds(match_id):
    """Show the odds board of a match."""
    conn = get_connection()
    init_database(conn)
    board = stored_board(conn, match_id)
    conn.close()

    table = Table(title=f"Odds for {match_id}")
    table.add_column("Bet Type", style="cyan")
    table.add_column("Selection")
    table.add_column("Odds", justify="right", style="green")

    for bet_type, entry in board.items():
        for selection, price in zip(entry["selections"], entry["odds"]):
            table.add_row(bet_type, selection, price)

    console.print(table)


@cli.command()
@click.option("--count", "-n", default=5, help="Number of upcoming slots")
def schedule(count):
    """Show upcoming schedule slots."""
    conn = get_connection()
    init_database(conn)
    sched = get_or_create_schedule(conn)
    mode = read_mode(conn)
    conn.close()

    console.print(f"[bold]Mode:[/bold] {mode}")
    console.print(f"[bold]Next slot in:[/bold] {time_until_next_match(sched)}s")

    table = Table(title="Upcoming Slots")
    table.add_column("Index", justify="right")
    table.add_column("Week", justify="right")
    table.add_column("Starts")
    for idx, starts in upcoming_slots(sched, count):
        table.add_row(str(idx), str(idx % TOTAL_WEEKS + 1), starts.strftime("%Y-%m-%d %H:%M"))

    console.print(table)


@cli.command("set-mode")
@click.argument("mode", type=click.Choice([MODE_CYCLE, MODE_SCHEDULE]))
def set_mode(mode):
    """Select cycle- or schedule-driven advancement (applies on next run)."""
    conn = get_connection()
    init_database(conn)
    set_setting(conn, "advancement_mode", mode)
    conn.close()
    console.print(f"[green]Advancement mode set to {mode}[/green]")


@cli.command("force-outcome")
@click.argument("match_id")
@click.argument("home_goals", type=int)
@click.argument("away_goals", type=int)
@click.option("--winner", type=click.Choice(["home", "away", "draw"]), default=None)
def force_outcome(match_id, home_goals, away_goals, winner):
    """Force the final score of a match not yet built."""
    if home_goals < 0 or away_goals < 0:
        console.print("[red]Error: goals must be non-negative.[/red]")
        sys.exit(1)
    if winner is not None and winner != winner_for(home_goals, away_goals):
        console.print(f"[red]Error: winner {winner} contradicts {home_goals}-{away_goals}.[/red]")
        sys.exit(1)

    conn = get_connection()
    init_database(conn)
    set_outcome_override(conn, match_id, ForcedOutcome(home_goals, away_goals, winner))
    conn.close()
    console.print(f"[green]{match_id} will finish {home_goals}-{away_goals}[/green]")


@cli.command()
@click.argument("user_id")
@click.argument("amount", type=float)
def deposit(user_id, amount):
    """Credit a user's balance (creates the user)."""
    if amount <= 0:
        console.print("[red]Error: amount must be positive.[/red]")
        sys.exit(1)

    conn = get_connection()
    init_database(conn)
    ensure_user(conn, user_id)
    with transaction(conn):
        balance = adjust_balance(conn, user_id, amount)
    conn.close()
    console.print(f"[green]{user_id} balance: {balance:.2f} {CURRENCY}[/green]")


@cli.command("place-bet")
@click.argument("user_id")
@click.argument("match_id")
@click.argument("bet_type")
@click.argument("selection")
@click.argument("amount", type=float)
def place_bet(user_id, match_id, bet_type, selection, amount):
    """Place a single bet at the match's current odds."""
    conn = get_connection()
    init_database(conn)
    try:
        price = lookup_odds(stored_board(conn, match_id), bet_type, selection)
    except KeyError as e:
        conn.close()
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    result = place_bets_atomic(conn, user_id, [BetRequest(match_id, bet_type, selection, amount, price)])
    conn.close()

    if result.status != "ok":
        console.print(f"[red]Bet rejected ({result.status}): {result.error}[/red]")
        sys.exit(1)
    console.print(f"[green]Bet placed at {price:.2f}. Balance: {result.new_balance:.2f} {CURRENCY}[/green]")


@cli.command("my-bets")
@click.argument("user_id")
@click.option("--status", "-s", default=None, help="Filter by status")
def my_bets(user_id, status):
    """Show a user's bets."""
    conn = get_connection()
    init_database(conn)
    bets = get_bets_for_user(conn, user_id, status)
    balance = get_balance(conn, user_id)
    conn.close()

    if balance is None:
        console.print(f"[yellow]Unknown user {user_id}. Deposit first.[/yellow]")
        return

    table = Table(title=f"Bets for {user_id} (balance {balance:.2f} {CURRENCY})")
    table.add_column("ID", justify="right")
    table.add_column("Match", style="dim")
    table.add_column("Bet Type", style="cyan")
    table.add_column("Selection")
    table.add_column("Odds", justify="right")
    table.add_column("Stake", justify="right")
    table.add_column("Status", justify="center")
    table.add_column("Payout", justify="right", style="green")

    for bet in bets:
        status_color = {"won": "green", "lost": "red", "cancelled": "yellow"}.get(bet.status, "white")
        table.add_row(
            str(bet.id),
            bet.match_id,
            bet.bet_type,
            bet.selection,
            f"{bet.odds:.2f}",
            f"{bet.stake:.2f}",
            f"[{status_color}]{bet.status}[/{status_color}]",
            f"{bet.payout:.2f}" if bet.payout else "-",
        )

    console.print(table)


@cli.command("cancel-bet")
@click.argument("user_id")
@click.argument("bet_id", type=int)
def cancel_bet_cmd(user_id, bet_id):
    """Cancel a pending bet and refund the stake."""
    conn = get_connection()
    init_database(conn)
    balance = cancel_bet(conn, user_id, bet_id)
    conn.close()

    if balance is None:
        console.print(f"[red]Bet {bet_id} cannot be cancelled.[/red]")
        sys.exit(1)
    console.print(f"[green]Bet {bet_id} cancelled. Balance: {balance:.2f} {CURRENCY}[/green]")


@cli.command()
@click.argument("match_id")
def sweep(match_id):
    """Force-resolve any bets still pending on a match."""
    conn = get_connection()
    init_database(conn)
    result = force_resolve_stale_bets(conn, match_id)
    conn.close()
    console.print(f"Forced {result.forced} bets ({result.cancelled} refunded)")


@cli.command("show-results")
@click.option("--limit", "-n", default=20, help="Number of results to show")
def show_results(limit):
    """Show the latest persisted results."""
    conn = get_connection()
    init_database(conn)
    results = get_recent_results(conn, limit)
    conn.close()

    if not results:
        console.print("[yellow]No results found. Run a session first.[/yellow]")
        return

    table = Table(title="Match Results")
    table.add_column("Match ID", style="dim")
    table.add_column("Home Team", style="cyan")
    table.add_column("Away Team", style="cyan")
    table.add_column("Score", justify="center")
    table.add_column("Winner", justify="center")
    table.add_column("Final", justify="center")

    for row in results:
        winner_color = {"home": "green", "draw": "yellow", "away": "red"}.get(row["winner"], "white")
        table.add_row(
            row["match_id"],
            (row["home_team"] or "-")[:20],
            (row["away_team"] or "-")[:20],
            f"{row['home_goals']}-{row['away_goals']}",
            f"[{winner_color}]{row['winner']}[/{winner_color}]",
            "yes" if row["is_final"] else "no",
        )

    console.print(table)


@cli.command()
@click.option("--limit", "-n", default=MATCHES_PER_TIMEFRAME * 2, help="Number of rows to show")
def history(limit):
    """Show recent match history."""
    conn = get_connection()
    init_database(conn)
    rows = get_match_history(conn, limit)
    conn.close()

    if not rows:
        console.print("[yellow]No match history yet.[/yellow]")
        return

    table = Table(title="Match History")
    table.add_column("League")
    table.add_column("Home Team", style="cyan")
    table.add_column("Away Team", style="cyan")
    table.add_column("Score", justify="center")
    table.add_column("Winner", justify="center")
    table.add_column("Recorded")

    for row in rows:
        table.add_row(
            row["country"] or "-",
            row["home_team"][:20],
            row["away_team"][:20],
            f"{row['home_goals']}-{row['away_goals']}",
            row["winner"],
            row["recorded_at"][:19],
        )

    console.print(table)


@cli.command("list-leagues")
def list_leagues():
    """List available leagues."""
    table = Table(title="Available Leagues")
    table.add_column("Key", style="cyan")
    table.add_column("Name")
    table.add_column("Country")
    table.add_column("Teams", justify="right")

    for key, config in LEAGUES.items():
        table.add_row(key, config["name"], config.get("country", "-"), str(len(config["teams"])))

    console.print(table)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
