import datetime

from django.core.exceptions import ValidationError
from django.db.models import ProtectedError
from django.test import TestCase

from ledger_core.exceptions import ConflictError
from ledger_core.models import Account, AuditLog, Company
from ledger_core.services.chart import (DEFAULT_CHART, account_tree, create_account,
                                        deactivate_account, get_account_by_code,
                                        initialize_default_chart, reactivate_account,
                                        update_account)
from ledger_core.services.posting import create_entry


class DefaultChartTests(TestCase):

    def setUp(self):
        self.company = Company.objects.create(name="Acme d.o.o.", slug="acme")

    def test_initialize_creates_standard_chart(self):
        created = initialize_default_chart(self.company)

        self.assertEqual(created, len(DEFAULT_CHART))
        self.assertEqual(Account.objects.for_company(self.company).count(), len(DEFAULT_CHART))
        # every row is flagged as installed by the initializer
        self.assertFalse(Account.objects.filter(company=self.company, is_system=False).exists())

    def test_initialize_is_idempotent(self):
        initialize_default_chart(self.company)

        # second call is a no-op
        with self.assertLogs("ledger_core.services.chart", level="WARNING"):
            self.assertEqual(initialize_default_chart(self.company), 0)
        self.assertEqual(Account.objects.for_company(self.company).count(), len(DEFAULT_CHART))

    def test_hierarchy_follows_code_prefixes(self):
        initialize_default_chart(self.company)

        kupci = get_account_by_code(self.company, "2040")
        self.assertEqual(kupci.parent.code, "204")
        self.assertEqual(kupci.parent.parent.code, "20")
        self.assertEqual(kupci.parent.parent.parent.code, "2")
        self.assertEqual(kupci.level, 4)

    def test_normal_side_follows_type(self):
        initialize_default_chart(self.company)

        self.assertEqual(get_account_by_code(self.company, "241").normal_balance, "DEBIT")
        self.assertEqual(get_account_by_code(self.company, "432").normal_balance, "CREDIT")
        self.assertEqual(get_account_by_code(self.company, "60").normal_balance, "CREDIT")
        self.assertEqual(get_account_by_code(self.company, "55").normal_balance, "DEBIT")

    def test_account_tree_nests_children(self):
        initialize_default_chart(self.company)

        roots = account_tree(self.company)
        # classes 0-6
        self.assertEqual([node["account"].code for node in roots], list("0123456"))
        class_two = roots[2]
        self.assertIn("24", [child["account"].code for child in class_two["children"]])

    def test_charts_are_per_company(self):
        other = Company.objects.create(name="Globex", slug="globex")
        initialize_default_chart(self.company)

        # same codes are free in another company
        self.assertEqual(initialize_default_chart(other), len(DEFAULT_CHART))


class CreateAccountTests(TestCase):

    def setUp(self):
        self.company = Company.objects.create(name="Acme d.o.o.", slug="acme")
        initialize_default_chart(self.company)

    def test_create_derives_side_and_parent(self):
        account = create_account(self.company, "2041", "Kupci - preduzetnici", "ASSET")

        self.assertEqual(account.normal_balance, "DEBIT")
        self.assertEqual(account.parent.code, "204")
        self.assertTrue(AuditLog.objects.filter(action="create", object_id=str(account.pk)).exists())

    def test_duplicate_code_rejected(self):
        with self.assertRaises(ValidationError):
            create_account(self.company, "241", "Drugi tekući račun", "ASSET")

    def test_type_side_contradiction_rejected(self):
        with self.assertRaises(ValidationError):
            create_account(self.company, "2042", "Pogrešna strana", "ASSET", normal_balance="CREDIT")

    def test_unknown_type_rejected(self):
        with self.assertRaises(ValidationError):
            create_account(self.company, "2043", "Nepoznato", "OFF_BALANCE")

    def test_non_digit_code_rejected(self):
        with self.assertRaises(ValidationError):
            create_account(self.company, "24A", "Slova", "ASSET")

    def test_parent_must_prefix_child(self):
        equity = get_account_by_code(self.company, "30")
        with self.assertRaises(ValidationError):
            create_account(self.company, "2045", "Pogrešan roditelj", "ASSET", parent=equity)

    def test_parent_must_belong_to_same_company(self):
        other = Company.objects.create(name="Globex", slug="globex")
        initialize_default_chart(other)
        foreign_parent = get_account_by_code(other, "204")

        with self.assertRaises(ValidationError):
            create_account(self.company, "2046", "Tuđi roditelj", "ASSET", parent=foreign_parent)


class DeactivateAccountTests(TestCase):

    def setUp(self):
        self.company = Company.objects.create(name="Acme d.o.o.", slug="acme")
        initialize_default_chart(self.company)
        self.cash = get_account_by_code(self.company, "241")
        self.sales = get_account_by_code(self.company, "60")

    def test_unused_account_deactivates_and_reactivates(self):
        account = deactivate_account(self.cash.pk)
        self.assertFalse(account.is_active)

        account = reactivate_account(self.cash.pk)
        self.assertTrue(account.is_active)

    def test_used_account_cannot_be_deactivated(self):
        # draft lines count as usage
        create_entry(
            self.company, datetime.date(2025, 1, 15), "Prodaja",
            lines=[
                {"account": self.cash, "debit_amount": "100.00"},
                {"account": self.sales, "credit_amount": "100.00"},
            ],
        )

        with self.assertRaises(ConflictError):
            deactivate_account(self.cash.pk)
        self.cash.refresh_from_db()
        self.assertTrue(self.cash.is_active)

    """ Saving is_active=False directly goes through the same guard """
    def test_model_save_guards_deactivation(self):
        create_entry(
            self.company, datetime.date(2025, 1, 15), "Prodaja",
            lines=[
                {"account": self.cash, "debit_amount": "100.00"},
                {"account": self.sales, "credit_amount": "100.00"},
            ],
        )
        self.cash.is_active = False
        with self.assertRaises(ConflictError):
            self.cash.save()

    def test_used_account_cannot_be_deleted(self):
        create_entry(
            self.company, datetime.date(2025, 1, 15), "Prodaja",
            lines=[
                {"account": self.cash, "debit_amount": "100.00"},
                {"account": self.sales, "credit_amount": "100.00"},
            ],
        )
        with self.assertRaises(ProtectedError):
            self.cash.delete()


class UpdateAccountTests(TestCase):

    def setUp(self):
        self.company = Company.objects.create(name="Acme d.o.o.", slug="acme")
        initialize_default_chart(self.company)
        self.cash = get_account_by_code(self.company, "241")
        self.custom = create_account(self.company, "5591", "Reprezentacija", "EXPENSE")

    def test_rename_is_audited(self):
        account = update_account(self.cash.pk, name="Tekući račun Intesa", user="ana")

        self.assertEqual(account.name, "Tekući račun Intesa")
        self.assertTrue(AuditLog.objects.filter(
            action="update", object_id=str(self.cash.pk), actor="ana").exists())

    def test_type_change_moves_normal_side(self):
        account = update_account(self.custom.pk, ac_type="REVENUE")

        account.refresh_from_db()
        self.assertEqual(account.ac_type, "REVENUE")
        self.assertEqual(account.normal_balance, "CREDIT")

    def test_standard_account_type_is_fixed(self):
        with self.assertRaises(ValidationError):
            update_account(self.cash.pk, ac_type="LIABILITY")

    def test_used_account_type_is_fixed(self):
        create_entry(
            self.company, datetime.date(2025, 1, 15), "Ručak",
            lines=[
                {"account": self.custom, "debit_amount": "30.00"},
                {"account": self.cash, "credit_amount": "30.00"},
            ],
        )

        with self.assertRaises(ConflictError):
            update_account(self.custom.pk, ac_type="REVENUE")

    def test_no_change_writes_no_audit(self):
        update_account(self.cash.pk, name=self.cash.name)
        self.assertFalse(AuditLog.objects.filter(action="update").exists())
