"""
Banking Dashboard Aggregator

Read-only reporting over persisted data. Only active accounts of active
connections are counted; no bank call is ever made from here.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional

from .db import BankingStore
from .models import UNCATEGORIZED_LABEL, BankAccount, Transaction


@dataclass
class CategoryTotal:
    category: str
    amount: Decimal
    count: int


@dataclass
class MonthlyTotal:
    month: str  # YYYY-MM
    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


@dataclass
class DashboardSummary:
    company_id: int
    total_accounts: int
    total_balance: Decimal
    total_available_balance: Decimal
    last_sync_date: Optional[datetime]
    accounts: List[BankAccount] = field(default_factory=list)
    recent_transactions: List[Transaction] = field(default_factory=list)
    categories: List[CategoryTotal] = field(default_factory=list)
    monthly: List[MonthlyTotal] = field(default_factory=list)


def _month_keys(today: date, months: int) -> List[str]:
    """Oldest-first YYYY-MM keys for the last ``months`` months, current month included."""
    keys = []
    year, month = today.year, today.month
    for _ in range(months):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


class BankingDashboardAggregator:
    """
    Composes the company banking summary.

    Usage:
        dashboard = BankingDashboardAggregator(store)
        summary = dashboard.summarize(company_id=1)
    """

    def __init__(
        self,
        store: BankingStore,
        recent_limit: int = 10,
        months: int = 6,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._recent_limit = recent_limit
        self._months = months
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def summarize(self, company_id: int) -> DashboardSummary:
        accounts = self._store.list_reportable_accounts(company_id)

        total_balance = sum((a.balance or Decimal("0") for a in accounts), Decimal("0"))
        # Available falls back to the booked balance when the bank did not report one
        total_available = sum(
            (a.available_balance if a.available_balance is not None else (a.balance or Decimal("0"))
             for a in accounts),
            Decimal("0"),
        )
        sync_times = [a.last_sync_at for a in accounts if a.last_sync_at]

        return DashboardSummary(
            company_id=company_id,
            total_accounts=len(accounts),
            total_balance=total_balance,
            total_available_balance=total_available,
            last_sync_date=max(sync_times) if sync_times else None,
            accounts=accounts,
            recent_transactions=self._store.list_company_transactions(
                company_id, limit=self._recent_limit, reportable_only=True
            ),
            categories=self._expense_categories(company_id),
            monthly=self._monthly_totals(company_id),
        )

    def _expense_categories(self, company_id: int) -> List[CategoryTotal]:
        totals = [
            CategoryTotal(category=category or UNCATEGORIZED_LABEL, amount=amount, count=count)
            for category, amount, count in self._store.expense_by_category(company_id)
        ]
        return sorted(totals, key=lambda c: (-c.amount, c.category))

    def _monthly_totals(self, company_id: int) -> List[MonthlyTotal]:
        today = self._clock().astimezone(timezone.utc).date()
        keys = _month_keys(today, self._months)
        buckets = {key: MonthlyTotal(month=key) for key in keys}
        since = date.fromisoformat(f"{keys[0]}-01")
        for tx in self._store.list_company_transactions(company_id, since=since, reportable_only=True):
            bucket = buckets.get(tx.transaction_date.strftime("%Y-%m"))
            if bucket is None:
                continue
            if tx.amount > 0:
                bucket.income += tx.amount
            elif tx.amount < 0:
                bucket.expense += -tx.amount
        return list(buckets.values())
