from django.core.exceptions import ValidationError
from django.db import models
from ..exceptions import ConflictError
from ..managers import TenantManager
from .company import Company


# Classify general ledger accounts
class AccountType(models.TextChoices):
    ASSET = "ASSET", "Asset"
    LIABILITY = "LIABILITY", "Liability"
    EQUITY = "EQUITY", "Equity"
    REVENUE = "REVENUE", "Revenue"
    EXPENSE = "EXPENSE", "Expense"


# Define whether the account normally increases
# on the debit side or credit side
class NormalBalance(models.TextChoices):
    DEBIT = "DEBIT", "Debit"
    CREDIT = "CREDIT", "Credit"


# Assets/Expenses → Debit, Liabilities/Equity/Revenue → Credit.
NORMAL_BALANCE_BY_TYPE = {
    AccountType.ASSET: NormalBalance.DEBIT,
    AccountType.EXPENSE: NormalBalance.DEBIT,
    AccountType.LIABILITY: NormalBalance.CREDIT,
    AccountType.EQUITY: NormalBalance.CREDIT,
    AccountType.REVENUE: NormalBalance.CREDIT,
}


def normal_balance_for(ac_type):
    try:
        return NORMAL_BALANCE_BY_TYPE[AccountType(ac_type)]
    except ValueError:
        raise ValidationError(f"Unknown account type: {ac_type}")


class Account(models.Model):
    """
    Ledger account in the Chart of Accounts.
    - code is unique per company; its prefixes encode the hierarchy
      ("2040" under "204" under "20")
    - ac_type: determines reporting - BS vs P&L
    - normal_balance: fixed by ac_type, used to sign balances
    """

    company = models.ForeignKey(  # Each account belongs to one company
        Company,
        on_delete=models.CASCADE,
    )
    code = models.CharField(
        max_length=10
    )
    name = models.CharField(
        max_length=255
    )  # Human-readable name → "Tekući računi", "Kupci u zemlji".

    ac_type = models.CharField(
        max_length=10,
        choices=AccountType.choices,
    )

    normal_balance = models.CharField(
        max_length=6,
        choices=NormalBalance.choices,
    )
    # O(1) parent lookup; the prefix relationship is validated in clean()
    parent = models.ForeignKey(
        "self",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="children",
    )

    # “soft deactivate” accounts (stop new postings) without deleting history
    is_active = models.BooleanField(
        default=True
    )
    # created by the standard chart initializer
    is_system = models.BooleanField(default=False)
    created_at = models.DateTimeField(
        auto_now_add=True
    )

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        ordering = ("company", "code")
        indexes = [
            models.Index(
                fields=["company", "ac_type"]
            ),
            models.Index(fields=["company", "parent"]),
        ]

        """ Each company defines its own chart of accounts.
               Codes repeat across companies but must be unique within one. """
        constraints = [
            models.UniqueConstraint(
                fields=["company", "code"], name="uq_company_account_code"
            )
        ]

    def __str__(self):
        return f"{self.code} – {self.name}"
        # Example: "241 – Tekući računi".

    @property
    def level(self):
        return len(self.code)

    @property
    def is_debit_normal(self):
        return self.normal_balance == NormalBalance.DEBIT

    def signed_balance(self, debit, credit):
        """Apply the normal-side sign convention to debit/credit totals."""
        if self.is_debit_normal:
            return debit - credit
        return credit - debit

    def clean(self):
        if not self.code or not self.code.isdigit():
            raise ValidationError("Account code must contain only digits.")

        # normal side is fixed by type
        if self.ac_type and self.normal_balance:
            expected = normal_balance_for(self.ac_type)
            if self.normal_balance != expected:
                raise ValidationError(
                    f"{self.ac_type} accounts must have normal balance {expected}, "
                    f"got {self.normal_balance}."
                )

        if self.parent_id:
            parent = self.parent
            # Check if parent account belongs to same company
            if parent.company_id != self.company_id:
                raise ValidationError(
                    "Parent & child accounts must belong to the same company"
                )
            # "202" may only sit under "20" or "2"
            if len(parent.code) >= len(self.code) or not self.code.startswith(parent.code):
                raise ValidationError(
                    f"Parent code {parent.code} must be a shorter prefix of {self.code}."
                )

    def save(self, *args, **kwargs):
        """Block deactivating accounts used in journal lines"""
        if self.pk:
            # Fetch the previous version of account from DB
            old = Account.objects.filter(pk=self.pk).first()

            # If account was active before, but now being set to inactive
            if old and old.is_active and not self.is_active:
                from .journal import JournalLine

                if JournalLine.objects.filter(account=self).exists():
                    raise ConflictError(
                        "Cannot deactivate an account that is used in journal lines."
                    )
        self.full_clean()
        return super().save(*args, **kwargs)
