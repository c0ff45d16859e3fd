"""Weekly spending summaries over parsed transactions.

A week runs from Monday 00:00 to the next Monday 00:00 in the configured
local offset (IST by default). Every computation is stored, one row per user
and week, so the latest summary can be served without recomputing it.
"""

import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pandas as pd
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.core.db import TransactionORM, WeeklySummaryORM
from app.core.models import CategoryTotal, Direction, MerchantTotal, SummaryTotals, WeeklySummary
from app.core.utils import get_logger, isoformat_utc, to_utc_naive

logger = get_logger("spend-parser.summary")

IST_OFFSET_MINUTES = 330
TOP_MERCHANTS = 5
TOP_SUBSCRIPTIONS = 3
SUBSCRIPTION_MIN_PAYMENTS = 2

COLUMNS = ["amount", "direction", "merchant", "category"]


def _money(value: float) -> float:
    return round(float(value), 2)


def _breakdown(frame: pd.DataFrame, key: str) -> pd.DataFrame:
    """Total and payment count per ``key``, largest total first, ties in key order."""
    if frame.empty:
        return pd.DataFrame(columns=[key, "total", "payments"])
    grouped = frame.groupby(key)["amount"].agg(total="sum", payments="count").reset_index()
    return grouped.sort_values("total", ascending=False, kind="stable")


def _merchant_totals(frame: pd.DataFrame) -> list[MerchantTotal]:
    return [
        MerchantTotal(merchant=row.merchant, total=_money(row.total), count=int(row.payments))
        for row in frame.itertuples(index=False)
    ]


def build_summary(transactions: pd.DataFrame, week_start: datetime, week_end: datetime) -> WeeklySummary:
    """Aggregate one week of transactions (columns ``amount, direction, merchant, category``)."""
    is_debit = transactions["direction"] == Direction.DEBIT.value
    debits = transactions[is_debit]
    spent = _money(debits["amount"].sum())
    received = _money(transactions.loc[~is_debit, "amount"].sum())

    by_category = _breakdown(debits.dropna(subset=["category"]), "category")
    categories = [
        CategoryTotal(category=row.category, total=_money(row.total), count=int(row.payments))
        for row in by_category.itertuples(index=False)
    ]

    # Merchant names differ in case between apps, e.g. "Swiggy" and "SWIGGY"
    named = debits.dropna(subset=["merchant"])
    named = named.assign(merchant=named["merchant"].astype(str).str.strip().str.lower())
    by_merchant = _breakdown(named[named["merchant"] != ""], "merchant")
    recurring = by_merchant[by_merchant["payments"] >= SUBSCRIPTION_MIN_PAYMENTS].sort_values(
        "payments", ascending=False, kind="stable"
    )

    count = len(transactions)
    return WeeklySummary(
        week_start=isoformat_utc(week_start),
        week_end=isoformat_utc(week_end),
        totals=SummaryTotals(
            total_spent=spent,
            total_received=received,
            net_flow=_money(received - spent),
            transaction_count=count,
        ),
        top_merchants=_merchant_totals(by_merchant.head(TOP_MERCHANTS)),
        categories=categories,
        subscriptions=_merchant_totals(recurring.head(TOP_SUBSCRIPTIONS)),
        transaction_count=count,
    )


class SummaryService:
    """Computes, stores and reads weekly spending summaries."""

    def __init__(
        self,
        session_factory: sessionmaker,
        utc_offset_minutes: int = IST_OFFSET_MINUTES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize with a session factory and the local offset weeks are aligned to."""
        self.session_factory = session_factory
        self.local_tz = timezone(timedelta(minutes=utc_offset_minutes))
        self._clock = clock

    def current_week_range(self) -> tuple[datetime, datetime]:
        """Local Monday 00:00 of the current week and of the next one, as naive UTC."""
        now = datetime.fromtimestamp(self._clock(), self.local_tz)
        monday = (now - timedelta(days=now.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)
        return to_utc_naive(monday), to_utc_naive(monday + timedelta(days=7))

    def compute_weekly_summary(
        self,
        user_id: str,
        week_start: datetime | None = None,
        week_end: datetime | None = None,
    ) -> WeeklySummary:
        """Summarize the user's transactions in ``[week_start, week_end)`` and store the result.

        Without an explicit range the current week is used. Raises ValueError
        for an empty or inverted range.
        """
        if week_start is None or week_end is None:
            week_start, week_end = self.current_week_range()
        else:
            week_start, week_end = to_utc_naive(week_start), to_utc_naive(week_end)
        if week_end <= week_start:
            msg = f"Summary range is empty: {week_start} to {week_end}"
            raise ValueError(msg)

        with self.session_factory() as session:
            rows = session.execute(
                select(TransactionORM.amount, TransactionORM.direction, TransactionORM.merchant, TransactionORM.category)
                .where(
                    TransactionORM.user_id == user_id,
                    TransactionORM.occurred_at >= week_start,
                    TransactionORM.occurred_at < week_end,
                )
            ).all()
        summary = build_summary(pd.DataFrame([tuple(row) for row in rows], columns=COLUMNS), week_start, week_end)

        self._store(user_id, week_start, week_end, summary)
        logger.info(
            f"Weekly summary for user {user_id} ({summary.week_start}): "
            f"{summary.transaction_count} transactions, spent {summary.totals.total_spent}"
        )
        return summary

    def _store(self, user_id: str, week_start: datetime, week_end: datetime, summary: WeeklySummary) -> None:
        payload = summary.model_dump_json(by_alias=True)
        with self.session_factory() as session:
            if self._update_stored(session, user_id, week_start, payload, summary.transaction_count):
                return
            session.add(
                WeeklySummaryORM(
                    user_id=user_id,
                    week_start=week_start,
                    week_end=week_end,
                    summary_json=payload,
                    transaction_count=summary.transaction_count,
                )
            )
            try:
                session.commit()
            except IntegrityError:
                # A concurrent computation stored the same week first.
                session.rollback()
                self._update_stored(session, user_id, week_start, payload, summary.transaction_count)

    @staticmethod
    def _update_stored(session: Session, user_id: str, week_start: datetime, payload: str, count: int) -> bool:
        row = session.scalar(
            select(WeeklySummaryORM).where(
                WeeklySummaryORM.user_id == user_id, WeeklySummaryORM.week_start == week_start
            )
        )
        if row is None:
            return False
        row.summary_json = payload
        row.transaction_count = count
        session.commit()
        return True

    def get_latest_summary(self, user_id: str) -> WeeklySummary | None:
        """The stored summary with the most recent week start, if any."""
        with self.session_factory() as session:
            payload = session.scalar(
                select(WeeklySummaryORM.summary_json)
                .where(WeeklySummaryORM.user_id == user_id)
                .order_by(WeeklySummaryORM.week_start.desc())
                .limit(1)
            )
        if payload is None:
            return None
        return WeeklySummary.model_validate_json(payload)

    def users_with_transactions(self, week_start: datetime, week_end: datetime, limit: int = 500) -> list[str]:
        """Users with at least one transaction in ``[week_start, week_end)``."""
        with self.session_factory() as session:
            return list(
                session.scalars(
                    select(TransactionORM.user_id)
                    .where(TransactionORM.occurred_at >= week_start, TransactionORM.occurred_at < week_end)
                    .distinct()
                    .order_by(TransactionORM.user_id)
                    .limit(limit)
                )
            )
