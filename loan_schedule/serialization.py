"""Plain-data representations of engine objects.

Everything that crosses the worker boundary or goes to storage is converted
to dicts of strings, numbers and lists. Decimals travel as strings so a
schedule re-materialized on the other side is identical to the original;
dates travel as ISO-8601 strings.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from .data_models import (
    GenerationOptions,
    InflationAdjustedPayment,
    InflationAdjustedSchedule,
    LoanParameters,
    Payment,
    Schedule,
)
from .execution import compute_schedule
from .utils import parse_date, to_decimal

logger = logging.getLogger(__name__)


def _dec(value: Decimal) -> str:
    return str(value)


def params_to_dict(params: LoanParameters) -> Dict[str, Any]:
    return {
        "loanId": params.loan_id,
        "name": params.name,
        "type": params.loan_type.value,
        "principal": _dec(params.principal),
        "interestRate": _dec(params.interest_rate),
        "termMonths": params.term_months,
        "paymentFrequency": params.payment_frequency.value,
        "downPayment": _dec(params.down_payment),
        "additionalPayment": _dec(params.additional_payment),
        "inflationRate": _dec(params.inflation_rate),
        "startDate": params.start_date.isoformat(),
        "paymentAmount": None if params.payment_amount is None else _dec(params.payment_amount),
    }


def params_from_dict(data: Mapping[str, Any]) -> LoanParameters:
    """Rebuild parameters exactly as sent; no clamping is applied.

    Raises ``KeyError``/``ValueError`` for missing or malformed fields and
    ``InvalidEnumError`` for unknown frequencies or loan types.
    """
    kwargs = {}
    if data.get("loanId"):
        kwargs["loan_id"] = str(data["loanId"])
    return LoanParameters(
        principal=to_decimal(data["principal"]),
        interest_rate=to_decimal(data["interestRate"]),
        term_months=int(data["termMonths"]),
        start_date=parse_date(data["startDate"]),
        payment_frequency=data.get("paymentFrequency", "monthly"),
        down_payment=to_decimal(data.get("downPayment", "0")),
        additional_payment=to_decimal(data.get("additionalPayment", "0")),
        inflation_rate=to_decimal(data.get("inflationRate", "0")),
        loan_type=data.get("type", "mortgage"),
        name=str(data.get("name", "Unnamed Calculation")),
        payment_amount=None if data.get("paymentAmount") is None else to_decimal(data["paymentAmount"]),
        **kwargs,
    )


def options_to_dict(options: GenerationOptions) -> Dict[str, Any]:
    return {
        "includeAdditionalPayments": options.include_additional_payments,
        "batchSize": options.batch_size,
        "maxPayments": options.max_payments,
        "timeout": options.timeout,
        "balanceTolerance": _dec(options.balance_tolerance),
        "maxPaymentsMultiplier": options.max_payments_multiplier,
        "maxPaymentsCeiling": options.max_payments_ceiling,
    }


def options_from_dict(data: Optional[Mapping[str, Any]]) -> GenerationOptions:
    data = data or {}
    defaults = GenerationOptions()
    max_payments = data.get("maxPayments")
    timeout = data.get("timeout")
    return GenerationOptions(
        include_additional_payments=bool(data.get("includeAdditionalPayments", True)),
        batch_size=int(data.get("batchSize", defaults.batch_size)),
        max_payments=None if max_payments is None else int(max_payments),
        timeout=None if timeout is None else float(timeout),
        balance_tolerance=to_decimal(data.get("balanceTolerance", defaults.balance_tolerance)),
        max_payments_multiplier=int(data.get("maxPaymentsMultiplier", defaults.max_payments_multiplier)),
        max_payments_ceiling=int(data.get("maxPaymentsCeiling", defaults.max_payments_ceiling)),
    )


def payment_to_dict(payment: Payment) -> Dict[str, Any]:
    return {
        "number": payment.number,
        "date": payment.date.isoformat(),
        "amount": _dec(payment.amount),
        "principal": _dec(payment.principal),
        "interest": _dec(payment.interest),
        "balance": _dec(payment.balance),
    }


def payment_from_dict(data: Mapping[str, Any]) -> Payment:
    return Payment(
        number=int(data["number"]),
        date=parse_date(data["date"]),
        amount=to_decimal(data["amount"]),
        principal=to_decimal(data["principal"]),
        interest=to_decimal(data["interest"]),
        balance=to_decimal(data["balance"]),
    )


def schedule_to_dict(schedule: Schedule) -> Dict[str, Any]:
    """Persisted form: ``{loanId, startDate, payments: [...]}``."""
    return {
        "loanId": schedule.loan_id,
        "startDate": schedule.start_date.isoformat(),
        "payments": [payment_to_dict(p) for p in schedule.payments],
    }


def schedule_from_dict(data: Optional[Mapping[str, Any]], params: Optional[LoanParameters] = None) -> Schedule:
    """Rebuild a schedule from its persisted form.

    When ``payments`` is missing, not a list, or contains a malformed entry,
    the schedule is regenerated from ``params`` instead. Without ``params``
    such data raises ``ValueError``.
    """
    payments_data = data.get("payments") if isinstance(data, Mapping) else None
    if isinstance(payments_data, list):
        try:
            payments = tuple(payment_from_dict(item) for item in payments_data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Stored schedule has a malformed payment: %s", exc)
        else:
            loan_id = str(data.get("loanId") or (params.loan_id if params else ""))
            if data.get("startDate"):
                start_date = parse_date(data["startDate"])
            elif params is not None:
                start_date = params.start_date
            elif payments:
                start_date = payments[0].date
            else:
                raise ValueError("Stored schedule has neither payments nor a start date")
            return Schedule(loan_id=loan_id, start_date=start_date, payments=payments)

    if params is None:
        raise ValueError("Stored schedule is missing its payments and no loan was given to regenerate it")
    logger.info("Regenerating schedule for loan %s from its parameters", params.loan_id)
    return compute_schedule(params)


def inflation_to_dict(adjusted: InflationAdjustedSchedule) -> Dict[str, Any]:
    return {
        "loanId": adjusted.loan_id,
        "payments": [
            dict(
                payment_to_dict(p),
                inflationFactor=_dec(p.inflation_factor),
                adjustedAmount=_dec(p.adjusted_amount),
                adjustedPrincipal=_dec(p.adjusted_principal),
                adjustedInterest=_dec(p.adjusted_interest),
            )
            for p in adjusted.payments
        ],
        "summary": {
            "inflationRate": _dec(adjusted.inflation_rate),
            "monthlyInflationRate": _dec(adjusted.monthly_inflation_rate),
            "totalOriginalPayment": _dec(adjusted.total_original_payment),
            "totalInflationAdjustedPayment": _dec(adjusted.total_adjusted_payment),
            "totalOriginalInterest": _dec(adjusted.total_original_interest),
            "totalInflationAdjustedInterest": _dec(adjusted.total_adjusted_interest),
            "savingsFromInflation": _dec(adjusted.savings_from_inflation),
        },
    }


def inflation_from_dict(data: Mapping[str, Any]) -> InflationAdjustedSchedule:
    payments: List[InflationAdjustedPayment] = []
    for item in data["payments"]:
        base = payment_from_dict(item)
        payments.append(
            InflationAdjustedPayment(
                number=base.number,
                date=base.date,
                amount=base.amount,
                principal=base.principal,
                interest=base.interest,
                balance=base.balance,
                inflation_factor=to_decimal(item["inflationFactor"]),
                adjusted_amount=to_decimal(item["adjustedAmount"]),
                adjusted_principal=to_decimal(item["adjustedPrincipal"]),
                adjusted_interest=to_decimal(item["adjustedInterest"]),
            )
        )
    summary = data["summary"]
    return InflationAdjustedSchedule(
        loan_id=str(data.get("loanId", "")),
        inflation_rate=to_decimal(summary["inflationRate"]),
        monthly_inflation_rate=to_decimal(summary["monthlyInflationRate"]),
        payments=tuple(payments),
        total_original_payment=to_decimal(summary["totalOriginalPayment"]),
        total_adjusted_payment=to_decimal(summary["totalInflationAdjustedPayment"]),
        total_original_interest=to_decimal(summary["totalOriginalInterest"]),
        total_adjusted_interest=to_decimal(summary["totalInflationAdjustedInterest"]),
    )


def summary_to_dict(params: LoanParameters, schedule: Schedule) -> Dict[str, Any]:
    """Aggregate metrics in the shape used by the CLI and web exports."""
    return {
        "loan_amount": float(params.loan_amount),
        "regular_payment": float(params.regular_payment),
        "additional_payment": float(params.additional_payment),
        "total_interest": float(schedule.total_interest),
        "total_payment": float(schedule.total_payment),
        "payments_made": schedule.number_of_payments,
        "scheduled_payments": params.number_of_payments,
        "payment_frequency": params.payment_frequency.value,
        "start_date": params.start_date.isoformat(),
        "payoff_date": schedule.payoff_date.isoformat(),
    }
