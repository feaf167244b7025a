from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..exceptions import ImmutableStateError
from ..managers import TenantManager
from .company import Company


class StatementStatus(models.TextChoices):
    IMPORTED = "IMPORTED", "Imported"
    RECONCILED = "RECONCILED", "Reconciled"  # nothing left UNMATCHED


class TxType(models.TextChoices):
    DEBIT = "DEBIT", "Debit"  # money out
    CREDIT = "CREDIT", "Credit"  # money in, candidate for invoice matching


class MatchStatus(models.TextChoices):
    UNMATCHED = "UNMATCHED", "Unmatched"
    MATCHED = "MATCHED", "Matched"
    IGNORED = "IGNORED", "Ignored"


class MatchMethod(models.TextChoices):
    REFERENCE = "reference", "Reference"
    AMOUNT_PARTNER = "amount_partner", "Amount and partner"
    MANUAL = "manual", "Manual"


# Current state vs. allowed next states
MATCH_TRANSITIONS = {
    MatchStatus.UNMATCHED: [MatchStatus.MATCHED, MatchStatus.IGNORED],
    # back to UNMATCHED only while no Payment exists
    MatchStatus.MATCHED: [MatchStatus.UNMATCHED],
    MatchStatus.IGNORED: [MatchStatus.UNMATCHED],
}


def can_transition(current, new):
    return new in MATCH_TRANSITIONS.get(current, [])


# ---------- Banking ----------


class BankStatement(models.Model):  # One imported bank statement (izvod)
    # Belongs to a Company (multi-tenant)
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    account_number = models.CharField(max_length=50)  # "160-0000000012345-67"
    bank_name = models.CharField(max_length=200, blank=True, default="")
    statement_number = models.CharField(max_length=50)
    currency_code = models.CharField(max_length=3, default="RSD")

    statement_date = models.DateField()
    from_date = models.DateField(null=True, blank=True)
    to_date = models.DateField(null=True, blank=True)

    opening_balance = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    closing_balance = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    # Computed from the transactions on import
    total_debit = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    total_credit = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))

    status = models.CharField(
        max_length=12,
        choices=StatementStatus.choices,
        default=StatementStatus.IMPORTED,
    )
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        ordering = ("company", "-statement_date")
        indexes = [models.Index(fields=["company", "statement_date"])]

        # The same statement cannot be imported twice
        constraints = [
            models.UniqueConstraint(
                fields=["company", "account_number", "statement_number"],
                name="uq_statement_company_account_number",
            ),
        ]

    def __str__(self):
        return f"{self.account_number} #{self.statement_number} ({self.statement_date})"

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)


class BankTransaction(
    models.Model
):  # Represents single inflow/outflow on a statement
    # Belongs to both a Company and a specific BankStatement
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    statement = models.ForeignKey(
        BankStatement, on_delete=models.PROTECT, related_name="transactions")

    transaction_date = models.DateField()  # when it was booked
    value_date = models.DateField(null=True, blank=True)  # when it cleared
    # always positive; direction lives in tx_type
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    tx_type = models.CharField(max_length=6, choices=TxType.choices)

    partner_name = models.CharField(max_length=255, blank=True, default="")
    partner_account = models.CharField(max_length=50, blank=True, default="")
    description = models.TextField(blank=True, default="")
    # "poziv na broj", usually carries the invoice number
    reference = models.CharField(max_length=100, blank=True, default="")

    match_status = models.CharField(
        max_length=10,
        choices=MatchStatus.choices,
        default=MatchStatus.UNMATCHED,
    )
    matched_invoice = models.ForeignKey(
        "ledger_core.Invoice",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="bank_transactions",
    )
    # How the match was made, for audit only
    match_method = models.CharField(
        max_length=20, choices=MatchMethod.choices, blank=True, default="")
    # Auto-match found several equally good invoices
    needs_review = models.BooleanField(default=False)
    matched_at = models.DateTimeField(null=True, blank=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        ordering = ("statement", "transaction_date", "id")
        # Optimizes queries for reconciliation
        # (find all unmatched txns of a company or a statement)
        indexes = [
            models.Index(fields=["company", "match_status"]),
            models.Index(fields=["company", "statement"]),
        ]

        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="bt_positive_amount",
            ),
        ]

    def clean(self):  # auto-runs when you call full_clean() before saving
        # Tenancy check
        # Ensure statement chosen belongs to the same company
        if self.statement_id and self.statement.company_id != self.company_id:
            raise ValidationError(
                "Bank statement must belong to the same company.")
        if self.matched_invoice_id and self.matched_invoice.company_id != self.company_id:
            raise ValidationError(
                "Matched invoice must belong to the same company.")

        if self.amount is not None and self.amount <= 0:
            raise ValidationError("Transaction amount must be positive.")

        # A match needs a target, anything else must not carry one
        if self.match_status == MatchStatus.MATCHED and not self.matched_invoice_id:
            raise ValidationError("A matched transaction needs an invoice.")
        if self.match_status != MatchStatus.MATCHED and self.matched_invoice_id:
            raise ValidationError(
                "Only matched transactions may reference an invoice.")

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if self.has_payment():
            raise ImmutableStateError(
                "Cannot delete a bank transaction that produced a payment.")
        return super().delete(*args, **kwargs)

    # Show something human-readable in logs
    def __str__(self):
        return (
            f"{self.transaction_date} {self.tx_type} {self.amount} "
            f"{self.partner_name} ({self.match_status})"
        )

    @property
    def is_credit(self):
        return self.tx_type == TxType.CREDIT

    def has_payment(self):
        from .invoice import Payment

        return Payment.objects.filter(bank_transaction_id=self.pk).exists()
