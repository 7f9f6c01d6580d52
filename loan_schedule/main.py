"""Command-line interface for the schedule engine.

This module uses the ``click`` library to implement a multi-command
interface. Users can compute full amortization schedules (inline, as a
cooperative task with a progress bar, or in a worker process), view
summaries, compare scenarios, adjust for inflation and run affordability
and refinance analyses. Results can be printed to the terminal or exported
to JSON/CSV files.
"""

from __future__ import annotations

import asyncio
import csv
import functools
import json
import shlex
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import click

from .analysis import additional_payment_impact, affordable_loan, compare_schedules, refinance_comparison
from .data_models import LoanParameters, LoanType, PaymentFrequency, Schedule
from .errors import LoanScheduleError
from .execution import compute_schedule, compute_schedule_async
from .formatter import (
    print_affordability,
    print_comparison,
    print_impact,
    print_inflation,
    print_refinance,
    print_schedule,
    print_summary,
)
from .inflation import adjust_for_inflation
from .logging_config import setup_logging
from .serialization import inflation_to_dict, params_to_dict, schedule_to_dict, summary_to_dict
from .utils import decimal_from_str, parse_date
from .worker import WorkerClient

MAX_PRINTED_ROWS = 120


def parse_amount(value: str) -> Decimal:
    """Parse a numeric string with optional suffixes.

    Accepts plain numbers ("500000") and shorthand with ``k``/``m`` suffixes
    (e.g., "500k" meaning 500_000).
    """
    value = value.strip().lower()
    value = value.replace(",", "")
    factor = Decimal(1)
    if value.endswith("k"):
        factor = Decimal(1_000)
        value = value[:-1]
    elif value.endswith("m"):
        factor = Decimal(1_000_000)
        value = value[:-1]
    try:
        return decimal_from_str(value) * factor
    except ValueError:
        raise click.BadParameter(f"Invalid amount: {value}")


def parse_percent(value: str) -> Decimal:
    """Parse a percentage string such as "4.5" or "4.5%"."""
    value = value.strip()
    if value.endswith("%"):
        value = value[:-1]
    try:
        return decimal_from_str(value)
    except ValueError:
        raise click.BadParameter(f"Invalid percentage: {value}")


def loan_options(func: Callable) -> Callable:
    """Attach the options describing one loan to a command."""
    options = [
        click.option("--principal", "-p", "principal", required=True, help="Purchase amount, e.g. 250k"),
        click.option("--rate", "-r", "rate", required=True, help="Annual interest rate (percent)"),
        click.option("--term", "-t", "term", required=True, type=int, help="Loan term in months"),
        click.option(
            "--frequency",
            "-f",
            "frequency",
            type=click.Choice([f.value for f in PaymentFrequency]),
            default=PaymentFrequency.MONTHLY.value,
            help="Payment frequency",
        ),
        click.option(
            "--type",
            "loan_type",
            type=click.Choice([t.value for t in LoanType]),
            default=LoanType.MORTGAGE.value,
            help="Loan type",
        ),
        click.option("--start-date", "-s", "start_date", help="First payment date (YYYY-MM or YYYY-MM-DD)"),
        click.option("--down-payment", "-d", "down_payment", help="Down payment amount"),
        click.option("--additional-payment", "-a", "additional_payment", help="Extra principal paid every period"),
        click.option("--inflation-rate", "inflation_rate", help="Annual inflation rate (percent)"),
        click.option("--payment-amount", "payment_amount", help="Fixed regular payment quoted by the lender"),
        click.option("--name", "name", default="Unnamed Calculation", help="Label for the calculation"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_params_from_options(
    principal: str,
    rate: str,
    term: int,
    frequency: str = PaymentFrequency.MONTHLY.value,
    loan_type: str = LoanType.MORTGAGE.value,
    start_date: Optional[str] = None,
    down_payment: Optional[str] = None,
    additional_payment: Optional[str] = None,
    inflation_rate: Optional[str] = None,
    payment_amount: Optional[str] = None,
    name: str = "Unnamed Calculation",
) -> LoanParameters:
    if start_date:
        try:
            start = parse_date(start_date)
        except ValueError as exc:
            raise click.BadParameter(str(exc))
    else:
        start = date.today()
    return LoanParameters(
        principal=parse_amount(principal),
        interest_rate=parse_percent(rate),
        term_months=term,
        start_date=start,
        payment_frequency=frequency,
        loan_type=loan_type,
        down_payment=parse_amount(down_payment) if down_payment else Decimal(0),
        additional_payment=parse_amount(additional_payment) if additional_payment else Decimal(0),
        inflation_rate=parse_percent(inflation_rate) if inflation_rate else Decimal(0),
        payment_amount=parse_amount(payment_amount) if payment_amount else None,
        name=name,
    )


def reports_errors(func: Callable) -> Callable:
    """Turn engine errors into a clean ``click`` error message."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except LoanScheduleError as exc:
            raise click.ClickException(f"{exc.kind}: {exc}") from exc

    return wrapper


def export_to_json(path: Path, params: LoanParameters, schedule: Schedule) -> None:
    """Export loan, summary and schedule (persisted form) to a JSON file."""
    data = {
        "summary": summary_to_dict(params, schedule),
        "loan": params_to_dict(params),
        "schedule": schedule_to_dict(schedule),
    }
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def export_to_csv(path: Path, schedule: Schedule) -> None:
    """Export schedule to a CSV file."""
    header = ["Number", "Date", "Payment", "Principal", "Interest", "Balance"]
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        for p in schedule.payments:
            writer.writerow(
                [
                    p.number,
                    p.date.isoformat(),
                    f"{p.amount:.2f}",
                    f"{p.principal:.2f}",
                    f"{p.interest:.2f}",
                    f"{p.balance:.2f}",
                ]
            )


def _run_with_progress_bar(params: LoanParameters) -> Schedule:
    with click.progressbar(length=100, label="Calculating") as bar:
        shown = [0]

        def advance(percent: float, message: str) -> None:
            step = int(percent) - shown[0]
            if step > 0:
                bar.update(step)
                shown[0] += step

        return asyncio.run(compute_schedule_async(params, progress=advance))


async def _run_in_worker(params: LoanParameters) -> Schedule:
    async with WorkerClient() as client:
        result = await client.calculate_amortization(params)
    return result.schedule


@click.group()
@click.option(
    "--log-level",
    "log_level",
    envvar="LOAN_SCHEDULE_LOG_LEVEL",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Log level for structured logs on stderr",
)
def cli(log_level: str) -> None:
    """A command-line loan amortization schedule calculator."""
    setup_logging(log_level)


@cli.command()
@loan_options
@click.option("--async", "run_async", is_flag=True, help="Run as a cooperative task with a progress bar")
@click.option("--worker", "run_in_worker", is_flag=True, help="Run in a separate worker process")
@click.option("--output", "output", type=str, help="Output file path (.json or .csv)")
@reports_errors
def schedule(run_async: bool, run_in_worker: bool, output: Optional[str], **loan: Any) -> None:
    """Compute and print the full amortization schedule."""
    if run_async and run_in_worker:
        raise click.UsageError("--async and --worker are mutually exclusive")
    params = build_params_from_options(**loan)
    if run_in_worker:
        result = asyncio.run(_run_in_worker(params))
    elif run_async:
        result = _run_with_progress_bar(params)
    else:
        result = compute_schedule(params)

    if output:
        path = Path(output)
        if path.suffix.lower() == ".json":
            export_to_json(path, params, result)
        elif path.suffix.lower() == ".csv":
            export_to_csv(path, result)
        else:
            raise click.BadParameter("Unsupported output format; use .json or .csv")
        click.echo(f"Schedule exported to {path}")
        return

    print_summary(summary_to_dict(params, result))
    # Limit schedule length printed to avoid flooding the terminal
    if result.number_of_payments > MAX_PRINTED_ROWS:
        click.echo(f"Schedule has {result.number_of_payments} rows; showing first {MAX_PRINTED_ROWS} rows.")
        print_schedule(result.payments[:MAX_PRINTED_ROWS])
    else:
        print_schedule(result.payments)
    if params.additional_payment > 0:
        print_impact(additional_payment_impact(params))


@cli.command()
@loan_options
@click.option("--output", "output", type=str, help="Output file path (.json)")
@reports_errors
def summary(output: Optional[str], **loan: Any) -> None:
    """Compute and print only the summary metrics for a loan."""
    params = build_params_from_options(**loan)
    summary_data = summary_to_dict(params, compute_schedule(params))
    if output:
        path = Path(output)
        if path.suffix.lower() != ".json":
            raise click.BadParameter("Summary export must use .json extension")
        with path.open("w", encoding="utf-8") as f:
            json.dump({"summary": summary_data}, f, indent=2)
        click.echo(f"Summary exported to {path}")
    else:
        print_summary(summary_data)


@click.command(name="scenario")
@loan_options
def _scenario_command(**loan: Any) -> Dict[str, Any]:
    return loan


def parse_scenario(opts: str) -> Dict[str, Any]:
    """Parse a quoted scenario option string with the same options as ``schedule``."""
    try:
        ctx = _scenario_command.make_context("scenario", shlex.split(opts))
    except click.ClickException as exc:
        raise click.BadParameter(f"Invalid scenario {opts!r}: {exc.format_message()}")
    return ctx.params


@cli.command()
@click.option("--scenario", "scenarios", multiple=True, required=True, help="Scenario options as a quoted string")
@reports_errors
def compare(scenarios: Tuple[str, ...]) -> None:
    """Compare two or more loan scenarios.

    Scenarios are provided as quoted option strings, for example:

        loan-schedule compare --scenario "-p 500k -r 3.5 -t 360" --scenario "-p 500k -r 3.2 -t 300"

    The first scenario is the baseline for the differences.
    """
    if len(scenarios) < 2:
        raise click.UsageError("Provide at least two --scenario options")
    labelled: List[Tuple[str, LoanParameters, Schedule]] = []
    for index, opts in enumerate(scenarios, start=1):
        params = build_params_from_options(**parse_scenario(opts))
        label = params.name if params.name != "Unnamed Calculation" else f"Scenario {index}"
        labelled.append((label, params, compute_schedule(params)))
    print_comparison(compare_schedules(labelled))


@cli.command()
@loan_options
@click.option("--rows", "rows", type=int, default=12, show_default=True, help="Adjusted payments to print")
@click.option("--output", "output", type=str, help="Output file path (.json)")
@reports_errors
def inflation(rows: int, output: Optional[str], **loan: Any) -> None:
    """Show the schedule's cost in today's money."""
    params = build_params_from_options(**loan)
    if params.inflation_rate <= 0:
        raise click.BadParameter("--inflation-rate must be greater than zero", param_hint="--inflation-rate")
    adjusted = adjust_for_inflation(compute_schedule(params), params.inflation_rate)
    if output:
        path = Path(output)
        if path.suffix.lower() != ".json":
            raise click.BadParameter("Inflation export must use .json extension")
        with path.open("w", encoding="utf-8") as f:
            json.dump(inflation_to_dict(adjusted), f, indent=2)
        click.echo(f"Inflation adjustment exported to {path}")
    else:
        print_inflation(adjusted, rows)


@cli.command()
@click.option("--payment", "payment", required=True, help="Desired regular payment")
@click.option("--rate", "-r", "rate", default="4.5", show_default=True, help="Annual interest rate (percent)")
@click.option("--term", "-t", "term", type=int, default=360, show_default=True, help="Loan term in months")
@click.option(
    "--frequency",
    "-f",
    "frequency",
    type=click.Choice([f.value for f in PaymentFrequency]),
    default=PaymentFrequency.MONTHLY.value,
)
@click.option("--down-payment", "-d", "down_payment", help="Down payment amount")
@reports_errors
def afford(payment: str, rate: str, term: int, frequency: str, down_payment: Optional[str]) -> None:
    """Find the largest loan a regular payment can carry."""
    result = affordable_loan(
        parse_amount(payment),
        parse_percent(rate),
        term,
        frequency,
        parse_amount(down_payment) if down_payment else Decimal(0),
    )
    print_affordability(result)


@cli.command()
@loan_options
@click.option("--new-rate", "new_rate", required=True, help="Interest rate of the new loan (percent)")
@click.option("--new-term", "new_term", type=int, help="Term of the new loan in months")
@click.option("--closing-costs", "closing_costs", help="One-off cost of refinancing")
@reports_errors
def refinance(new_rate: str, new_term: Optional[int], closing_costs: Optional[str], **loan: Any) -> None:
    """Compare keeping the current loan against refinancing it."""
    params = build_params_from_options(**loan)
    result = refinance_comparison(
        params,
        parse_percent(new_rate),
        new_term=new_term,
        closing_costs=parse_amount(closing_costs) if closing_costs else Decimal(0),
    )
    print_refinance(result)


if __name__ == "__main__":
    cli()
