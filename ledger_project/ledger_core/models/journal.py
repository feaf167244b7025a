from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..exceptions import ImmutableStateError
from ..managers import JournalLineManager, TenantManager
from .account import Account
from .company import Company


class JournalStatus(models.TextChoices):
    DRAFT = "DRAFT", "Draft"  # still editable
    POSTED = "POSTED", "Posted"  # finalized, ledger-visible


class JournalType(models.TextChoices):
    MANUAL = "MANUAL", "Manual"
    SYSTEM = "SYSTEM", "System"
    PAYMENT = "PAYMENT", "Payment"
    ADJUSTMENT = "ADJUSTMENT", "Adjustment"  # reversals (storno)


# Current state vs. allowed next states
ALLOWED_TRANSITIONS = {
    JournalStatus.DRAFT: [JournalStatus.POSTED],
    JournalStatus.POSTED: [],  # never reverts; corrections are new entries
}


def can_transition(current, new):
    return new in ALLOWED_TRANSITIONS.get(current, [])


ZERO = Decimal("0.00")


# ---------- Journal (Header) & JournalLine ----------
class JournalEntry(models.Model):  # Represents one accounting transaction
    # Multi-tenant: every entry belongs to a company
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    # "2025-000042", sequential per company and year
    entry_number = models.CharField(max_length=20)
    # Business metadata
    date = models.DateField()
    reference = models.CharField(max_length=200, blank=True, default="")
    description = models.TextField(blank=True, default="")
    entry_type = models.CharField(
        max_length=12,
        choices=JournalType.choices,
        default=JournalType.MANUAL,
    )
    status = models.CharField(
        max_length=10,
        choices=JournalStatus.choices,
        default=JournalStatus.DRAFT,
    )
    # Denormalized sums of the lines, rewritten on every write
    total_debit = models.DecimalField(
        max_digits=18, decimal_places=2, default=ZERO)
    total_credit = models.DecimalField(
        max_digits=18, decimal_places=2, default=ZERO)
    # Bumped on every draft edit, compared when posting
    revision = models.PositiveIntegerField(default=0)
    # Set on reversal entries only
    reverses = models.ForeignKey(
        "self",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="reversals",
    )
    created_by = models.CharField(max_length=150, blank=True, default="")
    posted_by = models.CharField(max_length=150, blank=True, default="")
    posted_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        # Speed up listing & filtering
        # (e.g. show all posted entries this month)
        indexes = [
            models.Index(fields=["company", "date"]),
            models.Index(fields=["company", "status"]),
        ]

        constraints = [
            models.UniqueConstraint(
                fields=["company", "entry_number"], name="uq_je_company_number"
            ),
            # An entry can be reversed at most once
            models.UniqueConstraint(
                fields=["reverses"],
                condition=models.Q(reverses__isnull=False),
                name="uq_je_single_reversal",
            ),
        ]

    def __str__(self):
        return f"JE {self.entry_number} {self.date} [{self.status}]"

    @property
    def is_posted(self):
        return self.status == JournalStatus.POSTED

    # Aggregate all debit and credit amounts across entry’s lines
    def compute_totals(self):
        """Return debits, credits sums for lines"""
        aggs = self.lines.aggregate(
            total_debit=models.Sum("debit_amount"),
            total_credit=models.Sum("credit_amount"),
        )
        return (
            aggs["total_debit"] or ZERO,
            aggs["total_credit"] or ZERO,
        )

    # True if double-entry rule holds: total debits = total credits
    def is_balanced(self):
        debit, credit = self.compute_totals()
        return debit == credit

    def save(self, *args, **kwargs):
        if self.pk:  # Does this row already exist in DB?
            orig_status = (
                JournalEntry.objects.filter(pk=self.pk)
                .values_list("status", flat=True)
                .first()
            )
            if orig_status == JournalStatus.POSTED:
                raise ImmutableStateError(
                    "Cannot modify a posted JournalEntry. It is immutable."
                )
            # DRAFT → POSTED only happens through services.posting.post_entry
            if orig_status is not None and self.status != orig_status:
                raise ValidationError(
                    f"Cannot change status from {orig_status} to {self.status} by saving."
                )
        elif self.status != JournalStatus.DRAFT:
            raise ValidationError("New journal entries must start as DRAFT.")

        self.full_clean()
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if JournalEntry.objects.filter(
            pk=self.pk, status=JournalStatus.POSTED
        ).exists():
            raise ImmutableStateError("Cannot delete a posted JournalEntry.")
        return super().delete(*args, **kwargs)


class JournalLine(models.Model):  # Stores Lines ( credits / debits )
    """
    Each line belongs to a journal entry and to a GL account.
    Exactly one of debit_amount / credit_amount is non-zero.
    """

    # Belongs to company & a journal entry
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    journal = models.ForeignKey(
        JournalEntry,
        on_delete=models.CASCADE,
        related_name="lines",
    )
    line_number = models.PositiveIntegerField(default=1)

    # Must point to one Account (can’t delete account if lines exist → PROTECT)
    account = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name="journal_lines")

    description = models.CharField(max_length=400, blank=True, default="")

    debit_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=ZERO)
    credit_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=ZERO)

    objects = JournalLineManager()

    class Meta:
        ordering = ("journal", "line_number")
        # For fast queries like “all lines for this account” /
        # “all lines in this JE.”
        indexes = [
            models.Index(fields=["company", "account"]),
            models.Index(fields=["company", "journal"]),
        ]

        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(debit_amount__gte=0) &
                    models.Q(credit_amount__gte=0)
                ),
                name="jl_non_negative_amounts",
            ),
            # one side only, and never both zero
            models.CheckConstraint(
                condition=(
                    (models.Q(debit_amount=0) & models.Q(credit_amount__gt=0)) |
                    (models.Q(debit_amount__gt=0) & models.Q(credit_amount=0))
                ),
                name="jl_debit_xor_credit",
            ),
        ]

    def __str__(self):
        jid = self.journal_id
        acc = self.account.code
        db = self.debit_amount or 0
        cr = self.credit_amount or 0
        return f"{jid} | {acc} | D:{db} C:{cr}"

    def clean(self):
        # Ensure no negative values sneak in
        # (redundant with CheckConstraint but useful at app-level)
        if self.debit_amount < 0 or self.credit_amount < 0:
            raise ValidationError("Debit and credit must be >= 0")
        if (self.debit_amount > 0) and (self.credit_amount > 0):
            raise ValidationError(
                "JournalLine should not have both debit and credit > 0"
            )
        if (self.debit_amount == 0) and (self.credit_amount == 0):
            raise ValidationError(
                "JournalLine requires a non-0 amount on either debit or credit"
            )

        # Company consistency
        if self.journal_id and self.company_id != self.journal.company_id:
            raise ValidationError(
                "JournalLine.company must equal JournalEntry.company"
            )
        if self.account_id and self.account.company_id != self.company_id:
            raise ValidationError(
                "JournalLine.account must belong to the same company."
            )

    def _ensure_draft_parent(self, verb):
        if self.journal_id and JournalEntry.objects.filter(
            pk=self.journal_id, status=JournalStatus.POSTED
        ).exists():
            raise ImmutableStateError(
                f"Cannot {verb} JournalLine: parent JournalEntry is posted."
            )

    def save(self, *args, **kwargs):
        # checked before full_clean() so the error type survives
        self._ensure_draft_parent("add or modify" if not self.pk else "modify")

        # If company not set but JE is known, take it from JE
        if not getattr(self, "company_id", None) and self.journal_id:
            self.company_id = self.journal.company_id

        # clean()+field validation always run whenever
        # you save a JournalLine programmatically
        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        self._ensure_draft_parent("delete")
        return super().delete(*args, **kwargs)
