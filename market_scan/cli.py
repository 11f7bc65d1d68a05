"""CLI entry point for market scans."""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.status import Status
from rich.table import Table

from .config import TRAITS, Settings
from .main import build_session, scan_market
from .models import Demographics, ScanEvent
from .tiers import get_tier3_categories

VERDICT_STYLES = {"strong": "bold green", "maybe": "yellow", "skip": "red"}


def _setup_logging(level: str, console: Console) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _print_triage(console: Console, session) -> None:
    triage = session.triage
    verdict = "[bold green]worth a full scan[/]" if triage.worth_full_scan else "[yellow]probably skip[/]"
    console.print(f"\n[bold]{session.city}[/]: {triage.overall_signal} market, {verdict}")
    console.print(
        f"  LSAs: {'yes' if triage.lsa_present else 'no'}  "
        f"aggregators: {triage.aggregator_dominance}  ads: {triage.ad_density}"
    )
    console.print(f"  {triage.recommendation}\n")


def _print_results(console: Console, session) -> None:
    table = Table(title=f"Market scan: {session.city}{', ' + session.state if session.state else ''}")
    table.add_column("Category")
    table.add_column("Tier")
    table.add_column("SERP", justify="right")
    table.add_column("Competition")
    table.add_column("Lead value")
    table.add_column("Verdict")
    table.add_column("Flags", overflow="fold")

    for r in session.results:
        style = VERDICT_STYLES.get(r.verdict, "")
        cached = " (cached)" if r.from_cache else ""
        table.add_row(
            r.category + cached,
            r.tier,
            str(r.serp_score),
            r.competition,
            r.lead_value,
            f"[{style}]{r.verdict}[/]" if style else r.verdict,
            ", ".join(f.split(":")[0] for f in r.validation_flags),
        )
    console.print(table)

    progress = session.progress
    console.print(
        f"Searches used: {progress.searches_used}  cache hits: {progress.cache_hits}  "
        f"categories: {progress.completed_count}/{progress.total_count}"
    )

    if session.top_opportunities:
        console.print("\n[bold green]Top opportunities[/]")
        for r in session.top_opportunities:
            console.print(f"  {r.category} ({r.serp_score}/10) {r.reasoning}")
            deeper = get_tier3_categories(r.category, r.serp_score, session.config)
            if deeper:
                console.print(f"    [dim]Dig deeper: {', '.join(deeper)}[/]")

    if session.skip_list:
        console.print("\n[bold red]Skip[/]")
        for entry in session.skip_list:
            console.print(f"  {entry.category}: {entry.reason}")

    if session.summary.critical_warnings:
        console.print("\n[bold yellow]Warnings[/]")
        for warning in session.summary.critical_warnings:
            console.print(f"  {warning}")
    console.print()


def main():
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="market-scan",
        description="Scan a city for under-served home service categories.",
    )
    parser.add_argument("--city", required=True, help="City to scan")
    parser.add_argument("--state", default=None, help="Two-letter state code")
    parser.add_argument("--triage", action="store_true", help="Run the one-search triage only")
    parser.add_argument("--population", type=int, default=None)
    parser.add_argument("--income", type=int, default=None, help="Median household income")
    parser.add_argument("--homeownership", type=float, default=None, help="Homeownership rate, percent")
    parser.add_argument("--home-value", type=int, default=None, help="Median home value")
    parser.add_argument("--lat", type=float, default=None)
    parser.add_argument("--lng", type=float, default=None)
    parser.add_argument(
        "--trait",
        action="append",
        choices=TRAITS,
        default=None,
        help="Force a city trait instead of detecting traits (repeatable)",
    )
    parser.add_argument("--no-trends", action="store_true", help="Skip trend validation")
    args = parser.parse_args()

    console = Console()
    settings = Settings.from_env()
    if args.no_trends:
        settings.enable_trend_validation = False
    _setup_logging(settings.log_level, console)

    demographics = Demographics(
        population=args.population,
        median_household_income=args.income,
        homeownership_rate=args.homeownership,
        median_home_value=args.home_value,
    )

    status = Status("", console=console)
    status.start()

    def on_progress(event: ScanEvent):
        progress = event.progress
        if event.kind == "category" and event.result is not None:
            status.update(
                f"[bold cyan]{event.result.category}[/] "
                f"({progress.completed_count}/{progress.total_count}) -> {event.result.verdict}"
            )
        elif event.kind == "started":
            status.update("[bold cyan]Running triage search...[/]" if args.triage else "[bold cyan]Starting scan...[/]")

    try:
        session = asyncio.run(
            scan_market(
                args.city,
                args.state,
                demographics=demographics,
                lat=args.lat,
                lng=args.lng,
                traits=args.trait,
                triage=args.triage,
                session=build_session(settings),
                on_progress=on_progress,
            )
        )
        status.stop()
        if args.triage:
            _print_triage(console, session)
        else:
            _print_results(console, session)
    except KeyboardInterrupt:
        status.stop()
        console.print("\n[yellow]Cancelled.[/]")
        sys.exit(1)
    except Exception as e:
        status.stop()
        console.print(f"\n[bold red]Error:[/] {e}\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
