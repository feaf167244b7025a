import datetime
from decimal import Decimal

from django.test import TestCase

from ledger_core.exceptions import ConsistencyFailure
from ledger_core.models import Company, JournalLine
from ledger_core.services.chart import get_account_by_code, initialize_default_chart
from ledger_core.services.posting import create_entry, get_account_balance, post_entry
from ledger_core.services.reports import (build_balance_sheet, build_income_statement,
                                          build_trial_balance)

D = Decimal
YEAR_END = datetime.date(2025, 12, 31)


class ReportsTestCase(TestCase):
    """
    Capital paid in, one sale on credit, one expense paid from the bank:
      241 / 30   10000
      204 / 60    1200
      55  / 241    200
    """

    def setUp(self):
        self.company = Company.objects.create(name="Acme d.o.o.", slug="acme")
        initialize_default_chart(self.company)
        self.acc = {
            code: get_account_by_code(self.company, code)
            for code in ("241", "30", "204", "60", "55")
        }
        self.capital = self.book("241", "30", "10000.00", datetime.date(2025, 1, 2))
        self.sale = self.book("204", "60", "1200.00", datetime.date(2025, 2, 10))
        self.expense = self.book("55", "241", "200.00", datetime.date(2025, 3, 5))

    def book(self, debit_code, credit_code, amount, date):
        entry = create_entry(
            self.company, date, f"{debit_code}/{credit_code}",
            lines=[
                {"account": self.acc[debit_code], "debit_amount": amount},
                {"account": self.acc[credit_code], "credit_amount": amount},
            ],
        )
        return post_entry(entry.pk)


class BalanceSheetTests(ReportsTestCase):

    def test_assets_equal_liabilities_plus_equity(self):
        sheet = build_balance_sheet(self.company, YEAR_END)

        self.assertEqual(sheet.total_assets, D("11000.00"))
        self.assertEqual(sheet.total_liabilities, D("0.00"))
        self.assertEqual(sheet.current_result, D("1000.00"))
        self.assertEqual(sheet.total_equity, D("11000.00"))
        self.assertTrue(sheet.is_balanced)

    def test_lines_agree_with_account_balances(self):
        sheet = build_balance_sheet(self.company, YEAR_END)

        by_code = {line.code: line for line in sheet.assets}
        self.assertEqual(by_code["241"].balance, get_account_balance(self.acc["241"].pk))
        self.assertEqual(by_code["241"].balance, D("9800.00"))
        self.assertEqual(by_code["204"].balance, D("1200.00"))
        self.assertEqual([line.code for line in sheet.equity], ["30"])

    def test_as_of_excludes_later_entries(self):
        sheet = build_balance_sheet(self.company, datetime.date(2025, 1, 31))

        self.assertEqual(sheet.total_assets, D("10000.00"))
        self.assertEqual(sheet.current_result, D("0.00"))

    def test_drafts_are_not_reported(self):
        create_entry(
            self.company, datetime.date(2025, 4, 1), "draft",
            lines=[
                {"account": self.acc["241"], "debit_amount": "500.00"},
                {"account": self.acc["60"], "credit_amount": "500.00"},
            ],
        )
        sheet = build_balance_sheet(self.company, YEAR_END)
        self.assertEqual(sheet.total_assets, D("11000.00"))

    def test_other_company_not_included(self):
        other = Company.objects.create(name="Globex", slug="globex")
        sheet = build_balance_sheet(other, YEAR_END)

        self.assertEqual(sheet.total_assets, D("0.00"))
        self.assertEqual(sheet.assets, ())

    def test_corrupted_ledger_raises_consistency_failure(self):
        # bypasses save(), the only way a one-sided line can reach a posted entry
        JournalLine.objects.bulk_create([
            JournalLine(
                company=self.company, journal=self.sale, line_number=3,
                account=self.acc["204"], debit_amount=D("50.00"),
            )
        ])

        with self.assertLogs("ledger_core.services.reports", level="CRITICAL"):
            with self.assertRaises(ConsistencyFailure):
                build_balance_sheet(self.company, YEAR_END)


class TrialBalanceTests(ReportsTestCase):

    def test_totals_balance(self):
        trial = build_trial_balance(self.company)

        self.assertEqual(trial.total_debit, D("11400.00"))
        self.assertEqual(trial.total_credit, D("11400.00"))
        self.assertTrue(trial.is_balanced)
        self.assertEqual(
            [line.code for line in trial.lines], ["204", "241", "30", "55", "60"])

    def test_date_window(self):
        trial = build_trial_balance(
            self.company,
            date_from=datetime.date(2025, 2, 1),
            date_to=datetime.date(2025, 2, 28),
        )

        self.assertEqual(trial.total_debit, D("1200.00"))
        self.assertEqual(len(trial.lines), 2)


class IncomeStatementTests(ReportsTestCase):

    def test_net_result(self):
        statement = build_income_statement(
            self.company, datetime.date(2025, 1, 1), YEAR_END)

        self.assertEqual(statement.total_revenue, D("1200.00"))
        self.assertEqual(statement.total_expenses, D("200.00"))
        self.assertEqual(statement.net_result, D("1000.00"))
        self.assertEqual([line.code for line in statement.revenue], ["60"])

    def test_period_without_activity(self):
        statement = build_income_statement(
            self.company, datetime.date(2025, 1, 1), datetime.date(2025, 1, 31))

        self.assertEqual(statement.net_result, D("0.00"))
        self.assertEqual(statement.expenses, ())
