from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from forecast_engine.db.stores import LedgerReader
from forecast_engine.models.transaction import Transaction, TransactionType
from forecast_engine.utils.date_utils import add_months, month_str

logger = logging.getLogger(__name__)


@dataclass
class MonthlyAggregate:
    """One calendar month of ledger activity."""

    month: str
    expense: float = 0.0
    income: float = 0.0
    transaction_count: int = 0
    category_amounts: Dict[str, float] = field(default_factory=lambda: defaultdict(float))
    category_types: Dict[str, str] = field(default_factory=dict)


@dataclass
class CategorySeries:
    type: Optional[str]
    amounts: List[float]


@dataclass
class MonthlySeries:
    entries: List[MonthlyAggregate]
    category_data: Dict[str, CategorySeries]
    raw_transactions: List[Transaction]

    @property
    def dates(self) -> List[str]:
        return [entry.month for entry in self.entries]

    @property
    def expenses(self) -> List[float]:
        return [entry.expense for entry in self.entries]

    @property
    def incomes(self) -> List[float]:
        return [entry.income for entry in self.entries]

    @property
    def transaction_counts(self) -> List[int]:
        return [entry.transaction_count for entry in self.entries]

    @property
    def categories(self) -> List[str]:
        return list(self.category_data)

    def is_empty(self) -> bool:
        return not self.entries


def aggregate_transactions(transactions: Iterable[Transaction]) -> MonthlySeries:
    """
    Group ledger entries by YYYY-MM. Months without transactions are absent
    (gaps are not interpolated); category vectors are aligned by month index
    with 0 for months where the category did not occur.
    """
    ordered = sorted(transactions, key=lambda t: t.date)
    months: Dict[str, MonthlyAggregate] = {}
    category_order: List[str] = []

    for tx in ordered:
        key = month_str(tx.date)
        bucket = months.get(key)
        if bucket is None:
            bucket = months[key] = MonthlyAggregate(month=key)

        amount = float(tx.amount)
        if tx.type == TransactionType.EXPENSE:
            bucket.expense += amount
        else:
            bucket.income += amount
        bucket.transaction_count += 1
        bucket.category_amounts[tx.category] += amount
        bucket.category_types[tx.category] = tx.type.value

        if tx.category not in category_order:
            category_order.append(tx.category)

    entries = [months[key] for key in sorted(months)]

    category_data: Dict[str, CategorySeries] = {}
    for category in category_order:
        series = CategorySeries(type=None, amounts=[0.0] * len(entries))
        for index, entry in enumerate(entries):
            if category in entry.category_amounts:
                series.amounts[index] = entry.category_amounts[category]
                series.type = entry.category_types[category]
        category_data[category] = series

    return MonthlySeries(entries=entries, category_data=category_data, raw_transactions=ordered)


def prepare_forecast_data(
    ledger: LedgerReader,
    user_id: str,
    now: datetime,
    window_months: int = 36,
) -> MonthlySeries:
    """Read the user's ledger window and build the monthly series. Read-only."""
    since = add_months(now, -window_months)
    transactions = ledger.list_transactions(user_id, since)
    series = aggregate_transactions(transactions)
    logger.info(
        f"Prepared forecast data for user {user_id}: {len(series.raw_transactions)} transactions "
        f"over {len(series.entries)} months, {len(series.category_data)} categories"
    )
    return series
