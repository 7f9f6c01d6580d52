"""JSON HTTP API for the schedule engine.

Loans posted here are untrusted input and go through
``LoanParameters.from_input``, which clamps out-of-range values. Large
schedules run through the cooperative adapter so they are bounded by its
timeout. Saved calculations are scoped to a per-browser token kept in the
Flask session.
"""

import asyncio
import logging
import os
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

from flask import Flask, abort, current_app, jsonify, request, session
from werkzeug.exceptions import HTTPException

from loan_schedule.analysis import (
    additional_payment_impact,
    affordable_loan,
    compare_schedules,
    refinance_comparison,
)
from loan_schedule.config import get_settings
from loan_schedule.data_models import LoanParameters, Schedule
from loan_schedule.errors import LoanScheduleError, ValidationError
from loan_schedule.execution import compute_schedule, compute_schedule_async, should_run_inline
from loan_schedule.inflation import adjust_for_inflation
from loan_schedule.logging_config import setup_logging
from loan_schedule.serialization import (
    inflation_to_dict,
    params_to_dict,
    schedule_from_dict,
    schedule_to_dict,
    summary_to_dict,
)
from loan_schedule.utils import to_decimal
from loan_schedule_web.calculation_store import CalculationStore, create_store_from_env

logger = logging.getLogger(__name__)


def create_app(store: Optional[CalculationStore] = None) -> Flask:
    app = Flask(__name__)
    app.secret_key = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    app.extensions["calculation_store"] = store or create_store_from_env(
        os.environ.get("LOAN_SCHEDULE_DATABASE_URL")
    )
    _register_routes(app)
    return app


def _store() -> CalculationStore:
    return current_app.extensions["calculation_store"]


def _ensure_user_token() -> str:
    token = session.get("user_token")
    if not token:
        token = uuid4().hex
        session["user_token"] = token
        session.modified = True
    return token


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    return payload


def _loan_from(payload: Mapping[str, Any]) -> LoanParameters:
    raw = payload.get("loan", payload)
    if not isinstance(raw, Mapping):
        raise ValidationError("Loan must be a JSON object.")
    return LoanParameters.from_input(raw)


def _run_schedule(params: LoanParameters) -> Schedule:
    if should_run_inline(params):
        return compute_schedule(params)
    return asyncio.run(compute_schedule_async(params))


def _schedule_response(params: LoanParameters, schedule: Schedule) -> Dict[str, Any]:
    inflation_adjusted = None
    if params.inflation_rate > 0:
        inflation_adjusted = inflation_to_dict(adjust_for_inflation(schedule, params.inflation_rate))
    return {
        "loan": params_to_dict(params),
        "summary": summary_to_dict(params, schedule),
        "schedule": schedule_to_dict(schedule),
        "inflationAdjusted": inflation_adjusted,
    }


def _register_routes(app: Flask) -> None:
    @app.errorhandler(LoanScheduleError)
    def handle_engine_error(exc: LoanScheduleError):
        return jsonify({"error": str(exc), "errorKind": exc.kind}), 400

    @app.errorhandler(ValueError)
    def handle_bad_value(exc: ValueError):
        return jsonify({"error": str(exc), "errorKind": ValidationError.kind}), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return jsonify({"error": exc.description, "errorKind": exc.name}), exc.code

    @app.post("/api/schedule")
    def schedule():
        params = _loan_from(_json_body())
        return jsonify(_schedule_response(params, _run_schedule(params)))

    @app.post("/api/payment")
    def payment():
        params = _loan_from(_json_body())
        return jsonify(
            {
                "payment": str(params.regular_payment),
                "numberOfPayments": params.number_of_payments,
                "periodicRate": str(params.periodic_rate),
                "estimatedTotalInterest": str(params.estimated_total_interest),
                "estimatedPayoffDate": params.estimated_payoff_date.isoformat(),
            }
        )

    @app.post("/api/inflation")
    def inflation():
        payload = _json_body()
        params = _loan_from(payload) if "loan" in payload else None
        if "schedule" in payload:
            schedule = schedule_from_dict(payload["schedule"], params)
        elif params is not None:
            schedule = _run_schedule(params)
        else:
            raise ValidationError("Provide a schedule or a loan to adjust.")
        rate = payload.get("inflationRate", params.inflation_rate if params else None)
        if rate is None:
            raise ValidationError("Inflation rate is required.")
        try:
            rate = to_decimal(rate)
        except ValueError:
            raise ValidationError(f"Invalid inflation rate: {rate!r}") from None
        return jsonify(inflation_to_dict(adjust_for_inflation(schedule, rate)))

    @app.post("/api/analysis/impact")
    def impact():
        payload = _json_body()
        params = _loan_from(payload)
        result = additional_payment_impact(params, payload.get("additionalPayment"))
        return jsonify(
            {
                "paymentsSaved": result.payments_saved,
                "interestSaved": str(result.interest_saved),
                "timeSavedYears": result.time_saved_years,
                "timeSavedMonths": result.time_saved_months,
                "newPayoffDate": result.new_payoff_date.isoformat(),
                "originalTerm": result.original_term,
                "newTerm": result.new_term,
                "originalPayment": str(result.original_payment),
                "newPayment": str(result.new_payment),
                "originalTotalInterest": str(result.original_total_interest),
                "newTotalInterest": str(result.new_total_interest),
            }
        )

    @app.post("/api/analysis/affordability")
    def affordability():
        payload = _json_body()
        if payload.get("desiredPayment") is None:
            raise ValidationError("Desired payment is required.")
        result = affordable_loan(
            payload["desiredPayment"],
            payload.get("interestRate", "4.5"),
            int(payload.get("term", 360)),
            payload.get("paymentFrequency", "monthly"),
            payload.get("downPayment", 0),
        )
        return jsonify(
            {
                "affordablePrincipal": str(result.affordable_principal),
                "totalPurchasePrice": str(result.total_purchase_price),
                "downPayment": str(result.down_payment),
                "payment": str(result.regular_payment),
                "totalInterest": str(result.total_interest),
            }
        )

    @app.post("/api/analysis/refinance")
    def refinance():
        payload = _json_body()
        params = _loan_from(payload)
        if payload.get("newRate") is None:
            raise ValidationError("New interest rate is required for refinance calculation.")
        new_term = payload.get("newTerm")
        result = refinance_comparison(
            params,
            payload["newRate"],
            new_term=int(new_term) if new_term else None,
            closing_costs=payload.get("closingCosts", 0),
        )
        return jsonify(
            {
                "currentLoan": {
                    "payment": str(result.current_payment),
                    "remainingBalance": str(result.current_balance),
                    "remainingPayments": result.current_remaining_payments,
                    "remainingInterest": str(result.current_remaining_interest),
                    "totalCost": str(result.current_total_cost),
                },
                "newLoan": {
                    "payment": str(result.new_payment),
                    "principal": str(result.new_principal),
                    "term": result.new_term,
                    "interestRate": str(result.new_interest_rate),
                    "totalPayments": result.new_total_payments,
                    "totalInterest": str(result.new_total_interest),
                    "totalCost": str(result.new_total_cost),
                },
                "closingCosts": str(result.closing_costs),
                "paymentSavings": str(result.payment_savings),
                "lifetimeSavings": str(result.lifetime_savings),
                "breakEvenMonths": result.break_even_months,
                "isWorthwhile": result.is_worthwhile,
            }
        )

    @app.get("/api/calculations")
    def list_calculations():
        user_token = _ensure_user_token()
        return jsonify({"calculations": _store().list_calculations(user_token)})

    @app.post("/api/calculations")
    def save_calculation():
        user_token = _ensure_user_token()
        payload = _json_body()
        params = _loan_from(payload)
        if "schedule" in payload:
            schedule = schedule_from_dict(payload["schedule"], params)
        else:
            schedule = _run_schedule(params)
        calculation_id = _store().add_calculation(user_token, params, schedule)
        body = dict(_schedule_response(params, schedule), id=calculation_id, name=params.name)
        return jsonify(body), 201

    @app.get("/api/calculations/<calculation_id>")
    def get_calculation(calculation_id: str):
        params, schedule = _load(calculation_id)
        return jsonify(dict(_schedule_response(params, schedule), id=calculation_id, name=params.name))

    @app.delete("/api/calculations/<calculation_id>")
    def delete_calculation(calculation_id: str):
        if not _store().remove_calculation(session.get("user_token"), calculation_id):
            abort(404, description=f"No saved calculation {calculation_id}")
        return "", 204

    @app.post("/api/calculations/compare")
    def compare_calculations():
        ids = _json_body().get("ids")
        if not isinstance(ids, list) or not ids:
            raise ValidationError("Provide a non-empty list of saved calculation ids.")
        scenarios: List[Tuple[str, LoanParameters, Schedule]] = []
        for calculation_id in ids:
            params, schedule = _load(str(calculation_id))
            scenarios.append((params.name, params, schedule))
        rows = compare_schedules(scenarios)
        for calculation_id, row in zip(ids, rows):
            row["id"] = calculation_id
        return jsonify({"scenarios": rows})


def _load(calculation_id: str) -> Tuple[LoanParameters, Schedule]:
    loaded = _store().get_calculation(session.get("user_token"), calculation_id)
    if loaded is None:
        abort(404, description=f"No saved calculation {calculation_id}")
    return loaded


if __name__ == "__main__":
    setup_logging(get_settings().log_level)
    print("Starting Loan Schedule API...")
    create_app().run(host="0.0.0.0", port=8710, debug=True)
