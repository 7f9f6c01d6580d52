"""Persistence layer for saved calculations.

Saved calculations keep the loan parameters and the completed schedule in
their persisted (plain JSON) form so they can be reloaded without running
the generator again. The store defaults to SQLite for local development
but accepts any SQLAlchemy-compatible URL (e.g. PostgreSQL/MySQL).
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import Column, DateTime, String, Text, create_engine, select
from sqlalchemy.orm import declarative_base, sessionmaker

from loan_schedule.data_models import LoanParameters, Schedule
from loan_schedule.serialization import params_from_dict, params_to_dict, schedule_from_dict, schedule_to_dict, summary_to_dict

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///saved_calculations.sqlite3"

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SavedCalculationModel(Base):
    __tablename__ = "saved_calculations"

    id = Column(String(64), primary_key=True)
    user_token = Column(String(64), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    loan_json = Column(Text, nullable=False)
    summary_json = Column(Text, nullable=False)
    schedule_json = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)


class CalculationStore:
    """Database-backed store of saved calculations, capped per user."""

    def __init__(self, url: str, *, max_per_user: int = 10) -> None:
        self._engine = create_engine(url, future=True)
        Base.metadata.create_all(self._engine)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)
        self._max_per_user = max_per_user

    def list_calculations(self, user_token: str) -> List[Dict[str, Any]]:
        """Saved calculations of ``user_token`` without their payments, oldest first."""
        if not user_token:
            return []
        with self._session_factory() as session:
            rows: Iterable[SavedCalculationModel] = session.execute(
                select(SavedCalculationModel)
                .where(SavedCalculationModel.user_token == user_token)
                .order_by(SavedCalculationModel.created_at.asc())
            ).scalars()
            return [self._to_dict(row) for row in rows]

    def add_calculation(self, user_token: str, params: LoanParameters, schedule: Schedule) -> str:
        calculation_id = uuid4().hex
        row = SavedCalculationModel(
            id=calculation_id,
            user_token=user_token,
            name=params.name,
            loan_json=json.dumps(params_to_dict(params)),
            summary_json=json.dumps(summary_to_dict(params, schedule)),
            schedule_json=json.dumps(schedule_to_dict(schedule)),
        )
        with self._session_factory() as session:
            session.add(row)
            session.commit()
        self._trim_user(user_token)
        logger.info("Saved calculation %s", calculation_id, extra={"correlation_id": params.loan_id, "action": "save"})
        return calculation_id

    def get_calculation(self, user_token: str, calculation_id: str) -> Optional[Tuple[LoanParameters, Schedule]]:
        """Load a saved calculation, or ``None`` if it does not belong to ``user_token``.

        A stored schedule whose payments are missing or malformed is
        regenerated from the stored loan parameters.
        """
        if not user_token:
            return None
        with self._session_factory() as session:
            row = session.get(SavedCalculationModel, calculation_id)
            if row is None or row.user_token != user_token:
                return None
            params = params_from_dict(json.loads(row.loan_json))
            try:
                stored = json.loads(row.schedule_json)
            except ValueError:
                logger.warning("Saved calculation %s has an unreadable schedule", calculation_id)
                stored = None
            return params, schedule_from_dict(stored, params)

    def remove_calculation(self, user_token: str, calculation_id: str) -> bool:
        if not user_token:
            return False
        with self._session_factory() as session:
            row = session.get(SavedCalculationModel, calculation_id)
            if row and row.user_token == user_token:
                session.delete(row)
                session.commit()
                return True
        return False

    def clear_calculations(self, user_token: str) -> None:
        if not user_token:
            return
        with self._session_factory() as session:
            session.execute(
                SavedCalculationModel.__table__.delete().where(SavedCalculationModel.user_token == user_token)
            )
            session.commit()

    def _trim_user(self, user_token: str) -> None:
        if not self._max_per_user or self._max_per_user < 0:
            return
        with self._session_factory() as session:
            rows = session.execute(
                select(SavedCalculationModel)
                .where(SavedCalculationModel.user_token == user_token)
                .order_by(SavedCalculationModel.created_at.desc())
            ).scalars().all()
            if len(rows) <= self._max_per_user:
                return
            for row in rows[self._max_per_user :]:
                session.delete(row)
            session.commit()

    @staticmethod
    def _to_dict(row: SavedCalculationModel) -> Dict[str, Any]:
        return {
            "id": row.id,
            "name": row.name,
            "loan": json.loads(row.loan_json),
            "summary": json.loads(row.summary_json),
            "createdAt": row.created_at.isoformat(),
        }


def create_store_from_env(url: Optional[str]) -> CalculationStore:
    return CalculationStore(url or DEFAULT_DATABASE_URL)
