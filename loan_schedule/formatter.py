"""Output helpers for the schedule engine.

This module renders schedules, summaries and analysis results as plain
text tables for the command line. It only uses built-in printing and
string formatting.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

from .analysis import AdditionalPaymentImpact, AffordableLoan, RefinanceComparison
from .data_models import InflationAdjustedSchedule, Payment


def print_summary(summary: Dict[str, Any]) -> None:
    """Print a summary of loan metrics in a human-readable format."""
    print("Summary")
    print("-" * 72)
    print(f"Loan amount        : {summary['loan_amount']:.2f}")
    print(f"Regular payment    : {summary['regular_payment']:.2f}")
    if summary.get("additional_payment"):
        print(f"Additional payment : {summary['additional_payment']:.2f}")
    print(f"Total interest     : {summary['total_interest']:.2f}")
    print(f"Total cost         : {summary['total_payment']:.2f}")
    print(f"Frequency          : {summary['payment_frequency']}")
    print(f"Start date         : {summary['start_date']}")
    print(f"Payoff date        : {summary['payoff_date']}")
    print(f"Payments made      : {summary['payments_made']} of {summary['scheduled_payments']} scheduled")
    print("-" * 72)


def print_schedule(payments: Iterable[Payment]) -> None:
    """Print the amortization schedule as a simple table."""
    headers = ["Number", "Date", "Payment", "Principal", "Interest", "Balance"]
    print("\t".join(headers))
    for payment in payments:
        row = [
            str(payment.number),
            payment.date.isoformat(),
            f"{payment.amount:.2f}",
            f"{payment.principal:.2f}",
            f"{payment.interest:.2f}",
            f"{payment.balance:.2f}",
        ]
        print("\t".join(row))


def print_inflation(adjusted: InflationAdjustedSchedule, rows: int = 0) -> None:
    """Print inflation-adjusted totals, followed by the first ``rows`` payments."""
    print("Inflation adjustment")
    print("-" * 72)
    print(f"Annual inflation   : {adjusted.inflation_rate:.2f}%")
    print(f"Monthly inflation  : {adjusted.monthly_inflation_rate * 100:.4f}%")
    print(f"Total paid         : {adjusted.total_original_payment:.2f}")
    print(f"In today's money   : {adjusted.total_adjusted_payment:.2f}")
    print(f"Interest paid      : {adjusted.total_original_interest:.2f}")
    print(f"Interest today     : {adjusted.total_adjusted_interest:.2f}")
    print(f"Savings            : {adjusted.savings_from_inflation:.2f}")
    print("-" * 72)
    if rows:
        print("\t".join(["Number", "Date", "Payment", "Adjusted", "Factor"]))
        for payment in adjusted.payments[:rows]:
            print(
                "\t".join(
                    [
                        str(payment.number),
                        payment.date.isoformat(),
                        f"{payment.amount:.2f}",
                        f"{payment.adjusted_amount:.2f}",
                        f"{payment.inflation_factor:.6f}",
                    ]
                )
            )


def print_comparison(rows: List[Dict[str, Any]]) -> None:
    """Print scenario summaries side by side.

    The difference columns show ``scenario - first scenario``; a negative
    difference means the scenario is cheaper or shorter than the first.
    """
    print("Comparison")
    print("=" * 72)
    print(f"{'Scenario':20s} {'Total cost':>12s} {'Interest':>12s} {'Payment':>10s} {'Count':>6s} {'Diff cost':>12s}")
    for row in rows:
        print(
            f"{row['label'][:20]:20s} {row['total_payment']:12.2f} {row['total_interest']:12.2f} "
            f"{row['regular_payment']:10.2f} {row['payments_made']:6d} {row['difference']['total_payment']:12.2f}"
        )
    print("=" * 72)


def print_impact(impact: AdditionalPaymentImpact) -> None:
    print("Additional payment impact")
    print("-" * 72)
    print(f"Payments saved     : {impact.payments_saved}")
    print(f"Time saved         : {impact.time_saved_years} years {impact.time_saved_months} months")
    print(f"Interest saved     : {impact.interest_saved:.2f}")
    print(f"New payment        : {impact.new_payment:.2f} (was {impact.original_payment:.2f})")
    print(f"New payoff date    : {impact.new_payoff_date.isoformat()}")
    print("-" * 72)


def print_affordability(result: AffordableLoan) -> None:
    print("Affordability")
    print("-" * 72)
    print(f"Affordable loan    : {result.affordable_principal:.2f}")
    print(f"Purchase price     : {result.total_purchase_price:.2f}")
    print(f"Down payment       : {result.down_payment:.2f}")
    print(f"Regular payment    : {result.regular_payment:.2f}")
    print(f"Total interest     : {result.total_interest:.2f}")
    print("-" * 72)


def print_refinance(result: RefinanceComparison) -> None:
    print("Refinance")
    print("=" * 72)
    print(f"{'Metric':20s} {'Current':>15s} {'New':>15s}")
    print(f"{'Payment':20s} {result.current_payment:15.2f} {result.new_payment:15.2f}")
    print(f"{'Principal':20s} {result.current_balance:15.2f} {result.new_principal:15.2f}")
    print(f"{'Payments':20s} {result.current_remaining_payments:15d} {result.new_total_payments:15d}")
    print(f"{'Interest':20s} {result.current_remaining_interest:15.2f} {result.new_total_interest:15.2f}")
    print(f"{'Total cost':20s} {result.current_total_cost:15.2f} {result.new_total_cost:15.2f}")
    print("=" * 72)
    print(f"Payment savings    : {result.payment_savings:.2f}")
    print(f"Lifetime savings   : {result.lifetime_savings:.2f}")
    if result.break_even_months is None:
        print("Break-even         : never")
    else:
        print(f"Break-even         : {result.break_even_months} payments")
    print(f"Worth refinancing  : {'Yes' if result.is_worthwhile else 'No'}")
