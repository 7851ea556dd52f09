import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from errors import AggregationError
from models import (
    DailySummary,
    MonthlySummary,
    Operation,
    OperationType,
    WeeklySummary,
)
from periods import Bucket, day_bucket, iso_week_key, month_bucket, sunday_week_bucket


logger = logging.getLogger(__name__)


class AggregationEngine:
    """Recomputes the day, week and month summaries around a moment.

    Every bucket is recomputed from the current ledger rows, never patched
    incrementally, and each bucket is committed on its own so one failing
    upsert leaves the other two correct.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def recompute(self, user_id: int, moment: datetime) -> None:
        steps: list[tuple[str, Callable[[int, datetime], None]]] = [
            ("day", self._recompute_day),
            ("week", self._recompute_week),
            ("month", self._recompute_month),
        ]
        failed: list[str] = []
        for name, step in steps:
            try:
                step(user_id, moment)
                self.session.commit()
            except SQLAlchemyError:
                self.session.rollback()
                logger.exception(
                    f"summary_recompute_failed: user_id={user_id} bucket={name} "
                    f"moment={moment.isoformat()}"
                )
                failed.append(name)
        if failed:
            raise AggregationError(user_id, failed)
        logger.debug(
            f"summary_recompute: user_id={user_id} moment={moment.isoformat()}"
        )

    def rebuild(self, user_id: int) -> int:
        """Recompute every bucket touched by the user's operations.

        Returns the number of distinct operation days visited.
        """
        moments = self.session.scalars(
            select(Operation.date).where(Operation.user_id == user_id)
        ).all()
        days = sorted({moment.date() for moment in moments})
        failed: set[str] = set()
        for day in days:
            try:
                self.recompute(user_id, datetime(day.year, day.month, day.day))
            except AggregationError as exc:
                failed.update(exc.failed_buckets)
        if failed:
            raise AggregationError(user_id, sorted(failed))
        logger.info(f"summary_rebuild: user_id={user_id} days={len(days)}")
        return len(days)

    def _totals(self, user_id: int, bucket: Bucket) -> tuple[int, int]:
        upper = (
            Operation.date <= bucket.end
            if bucket.inclusive_end
            else Operation.date < bucket.end
        )
        income, expense = self.session.execute(
            select(
                func.coalesce(
                    func.sum(
                        case(
                            (
                                Operation.type == OperationType.income,
                                Operation.amount_cents,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ),
                func.coalesce(
                    func.sum(
                        case(
                            (
                                Operation.type == OperationType.expense,
                                Operation.amount_cents,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ),
            ).where(
                Operation.user_id == user_id,
                Operation.date >= bucket.start,
                upper,
            )
        ).one()
        return int(income or 0), int(expense or 0)

    def _recompute_day(self, user_id: int, moment: datetime) -> None:
        bucket = day_bucket(moment)
        income, expense = self._totals(user_id, bucket)
        self._upsert(DailySummary, {"user_id": user_id, "date": moment.date()}, income, expense)

    def _recompute_week(self, user_id: int, moment: datetime) -> None:
        # Members come from the Sunday-start window, the key from the ISO week.
        bucket = sunday_week_bucket(moment)
        week, year = iso_week_key(moment)
        income, expense = self._totals(user_id, bucket)
        self._upsert(
            WeeklySummary,
            {"user_id": user_id, "week": week, "year": year},
            income,
            expense,
        )

    def _recompute_month(self, user_id: int, moment: datetime) -> None:
        bucket = month_bucket(moment)
        income, expense = self._totals(user_id, bucket)
        self._upsert(
            MonthlySummary,
            {"user_id": user_id, "month": moment.month, "year": moment.year},
            income,
            expense,
        )

    def _upsert(self, model, key: dict[str, object], income: int, expense: int) -> None:
        summary = self._find(model, key)
        if summary is None:
            summary = model(**key)
            self.session.add(summary)
            try:
                self.session.flush()
            except IntegrityError:
                # a concurrent recompute inserted the row first
                self.session.rollback()
                summary = self._find(model, key)
                if summary is None:
                    raise
        summary.total_income_cents = income
        summary.total_expense_cents = expense
        summary.balance_cents = income - expense

    def _find(self, model, key: dict[str, object]) -> Optional[object]:
        stmt = select(model)
        for column, value in key.items():
            stmt = stmt.where(getattr(model, column) == value)
        return self.session.scalar(stmt)
