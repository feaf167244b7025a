from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import InvoiceManager, TenantManager
from .banking import BankTransaction
from .company import Company


class InvoiceStatus(models.TextChoices):
    DRAFT = "DRAFT", "Draft"
    SENT = "SENT", "Sent"
    DELIVERED = "DELIVERED", "Delivered"
    ACCEPTED = "ACCEPTED", "Accepted"
    REJECTED = "REJECTED", "Rejected"
    CANCELLED = "CANCELLED", "Cancelled"


class PaymentStatus(models.TextChoices):
    UNPAID = "UNPAID", "Unpaid"
    PARTIAL = "PARTIAL", "Partially paid"
    PAID = "PAID", "Paid"


# Invoices a bank receipt may be matched against
OPEN_STATUSES = (InvoiceStatus.SENT, InvoiceStatus.DELIVERED, InvoiceStatus.ACCEPTED)
OPEN_PAYMENT_STATUSES = (PaymentStatus.UNPAID, PaymentStatus.PARTIAL)


class Invoice(models.Model):  # Represents an issued customer invoice
    """
    Only the fields reconciliation reads and writes. Issuing, sending
    and cancelling invoices is owned by the invoicing side.
    """

    # Invoice belongs to one company (multi-tenant)
    company = models.ForeignKey(Company, on_delete=models.CASCADE)

    # Identifiers and key dates
    # human-readable (e.g. "INV-2025-001")
    invoice_number = models.CharField(max_length=64)
    partner_name = models.CharField(max_length=255, blank=True, default="")
    issue_date = models.DateField()

    status = models.CharField(
        max_length=10, choices=InvoiceStatus.choices, default=InvoiceStatus.DRAFT
    )
    currency_code = models.CharField(max_length=3, default="RSD")
    total_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    # Sum of all payments, recomputed by services.payment
    paid_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    payment_status = models.CharField(
        max_length=10, choices=PaymentStatus.choices, default=PaymentStatus.UNPAID
    )

    # Enforce tenant scoping, plus .open()
    objects = InvoiceManager()

    class Meta:
        # Optimize for fast lookups by invoice number or payment state
        indexes = [
            models.Index(fields=["company", "invoice_number"]),
            models.Index(fields=["company", "payment_status"]),
        ]

        constraints = [
            # Within one company, each invoice number must be unique
            # Across companies, duplicates are allowed
            models.UniqueConstraint(
                fields=["company", "invoice_number"],
                name="uq_invoice_company_number"
            )
        ]

    def __str__(self):
        return f"Inv {self.invoice_number}"

    @property
    def outstanding_amount(self):
        return self.total_amount - self.paid_amount

    @property
    def is_open(self):
        return (
            self.status in OPEN_STATUSES
            and self.payment_status in OPEN_PAYMENT_STATUSES
        )

    def recalc_payment_status(self):
        """Recompute paid_amount and payment_status from stored payments."""
        paid = self.payments.aggregate(total=models.Sum("amount"))["total"]
        self.paid_amount = paid or Decimal("0.00")

        # PAID is terminal for reconciliation
        if self.payment_status == PaymentStatus.PAID:
            return
        if self.paid_amount >= self.total_amount:
            self.payment_status = PaymentStatus.PAID
        elif self.paid_amount > 0:
            self.payment_status = PaymentStatus.PARTIAL
        else:
            self.payment_status = PaymentStatus.UNPAID

    def clean(self):
        if self.total_amount < 0:
            raise ValidationError("Invoice total cannot be negative.")
        if self.paid_amount < 0:
            raise ValidationError("Paid amount cannot be negative.")

    def save(self, *args, **kwargs):
        self.full_clean()  # will trigger clean()
        super().save(*args, **kwargs)

    """ Prevent deleting invoices that already have payments applied """

    def delete(self, *args, **kwargs):
        if self.payments.exists():
            raise ValidationError(
                "Cannot delete an invoice with applied payments.")
        return super().delete(*args, **kwargs)


class Payment(models.Model):  # Money received against one invoice
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    invoice = models.ForeignKey(
        Invoice, on_delete=models.PROTECT, related_name="payments")
    # At most one payment per bank transaction, enforced by the database
    bank_transaction = models.OneToOneField(
        BankTransaction,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="payment",
    )
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    payment_date = models.DateField()
    method = models.CharField(max_length=20, default="bank_transfer")
    reference = models.CharField(max_length=100, blank=True, default="")
    created_by = models.CharField(max_length=150, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "invoice"]),
            models.Index(fields=["company", "payment_date"]),
        ]

        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="payment_positive_amount",
            ),
        ]

    def __str__(self):
        return f"Payment {self.amount} → Inv {self.invoice.invoice_number}"

    def clean(self):
        if self.amount is not None and self.amount <= 0:
            raise ValidationError("Payment amount must be positive.")

        # Prevent cross-company contamination
        if self.invoice_id and self.invoice.company_id != self.company_id:
            raise ValidationError("Invoice must belong to the same company.")
        bt = self.bank_transaction
        if bt and bt.company_id != self.company_id:
            raise ValidationError(
                "Bank transaction must belong to the same company.")

    def save(self, *args, **kwargs):
        # the OneToOne uniqueness is left to the database
        self.full_clean(validate_unique=False)
        return super().save(*args, **kwargs)
