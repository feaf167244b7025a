"""
Read-only financial reports over posted journal lines.

Each report is built from one grouped aggregate query, so every figure
in a report comes from the same snapshot of the ledger.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from django.db import models, transaction

from ..exceptions import ConsistencyFailure
from ..models import AccountType, JournalLine, NormalBalance

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class AccountLine:
    """One account's totals in a report."""

    account_id: int
    code: str
    name: str
    ac_type: str
    debit: Decimal
    credit: Decimal
    balance: Decimal  # on the account's normal side


@dataclass(frozen=True)
class BalanceSheet:
    as_of: object
    assets: tuple
    liabilities: tuple
    equity: tuple
    total_assets: Decimal
    total_liabilities: Decimal
    # equity accounts plus the current result (revenue - expense)
    total_equity: Decimal
    current_result: Decimal

    @property
    def total_liabilities_and_equity(self):
        return self.total_liabilities + self.total_equity

    @property
    def is_balanced(self):
        return self.total_assets == self.total_liabilities_and_equity


@dataclass(frozen=True)
class TrialBalance:
    date_from: object
    date_to: object
    lines: tuple
    total_debit: Decimal
    total_credit: Decimal

    @property
    def is_balanced(self):
        return self.total_debit == self.total_credit


@dataclass(frozen=True)
class IncomeStatement:
    date_from: object
    date_to: object
    revenue: tuple
    expenses: tuple
    total_revenue: Decimal
    total_expenses: Decimal

    @property
    def net_result(self):
        return self.total_revenue - self.total_expenses


def _account_lines(company, date_from=None, date_to=None, types=None):
    """Per-account debit/credit sums in a single GROUP BY statement."""
    qs = JournalLine.objects.for_company(company).posted()
    if date_from is not None:
        qs = qs.filter(journal__date__gte=date_from)
    if date_to is not None:
        qs = qs.filter(journal__date__lte=date_to)
    if types is not None:
        qs = qs.filter(account__ac_type__in=types)

    rows = (
        qs.values(
            "account_id", "account__code", "account__name",
            "account__ac_type", "account__normal_balance",
        )
        .annotate(
            debit=models.Sum("debit_amount"),
            credit=models.Sum("credit_amount"),
        )
        .order_by("account__code")
    )

    lines = []
    for row in rows:
        debit = row["debit"] or ZERO
        credit = row["credit"] or ZERO
        if row["account__normal_balance"] == NormalBalance.DEBIT:
            balance = debit - credit
        else:
            balance = credit - debit
        lines.append(AccountLine(
            account_id=row["account_id"],
            code=row["account__code"],
            name=row["account__name"],
            ac_type=row["account__ac_type"],
            debit=debit,
            credit=credit,
            balance=balance,
        ))
    return lines


def _of_type(lines, ac_type):
    return tuple(line for line in lines if line.ac_type == ac_type)


def _total(lines):
    return sum((line.balance for line in lines), ZERO)


def build_balance_sheet(company, as_of):
    """
    Assets = Liabilities + Equity as of a date.
    Raises ConsistencyFailure when the equation does not hold.
    """
    with transaction.atomic():
        lines = _account_lines(company, date_to=as_of)

    assets = _of_type(lines, AccountType.ASSET)
    liabilities = _of_type(lines, AccountType.LIABILITY)
    equity = _of_type(lines, AccountType.EQUITY)
    current_result = (
        _total(_of_type(lines, AccountType.REVENUE))
        - _total(_of_type(lines, AccountType.EXPENSE))
    )

    sheet = BalanceSheet(
        as_of=as_of,
        assets=assets,
        liabilities=liabilities,
        equity=equity,
        total_assets=_total(assets),
        total_liabilities=_total(liabilities),
        total_equity=_total(equity) + current_result,
        current_result=current_result,
    )

    if not sheet.is_balanced:
        logger.critical(
            "Balance sheet for %s as of %s does not balance: assets %s, "
            "liabilities %s, equity %s",
            company, as_of, sheet.total_assets,
            sheet.total_liabilities, sheet.total_equity,
        )
        raise ConsistencyFailure(
            f"Assets {sheet.total_assets} != liabilities + equity "
            f"{sheet.total_liabilities_and_equity} as of {as_of}"
        )
    return sheet


def build_trial_balance(company, date_from=None, date_to=None):
    with transaction.atomic():
        lines = tuple(_account_lines(company, date_from=date_from, date_to=date_to))
    return TrialBalance(
        date_from=date_from,
        date_to=date_to,
        lines=lines,
        total_debit=sum((line.debit for line in lines), ZERO),
        total_credit=sum((line.credit for line in lines), ZERO),
    )


def build_income_statement(company, date_from, date_to):
    with transaction.atomic():
        lines = _account_lines(
            company, date_from=date_from, date_to=date_to,
            types=[AccountType.REVENUE, AccountType.EXPENSE],
        )
    revenue = _of_type(lines, AccountType.REVENUE)
    expenses = _of_type(lines, AccountType.EXPENSE)
    return IncomeStatement(
        date_from=date_from,
        date_to=date_to,
        revenue=revenue,
        expenses=expenses,
        total_revenue=_total(revenue),
        total_expenses=_total(expenses),
    )
