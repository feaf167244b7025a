import logging
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction

from ..conf import bank_account_code, receivable_account_code
from ..exceptions import AlreadyProcessedError
from ..models import Invoice, JournalType, Payment
from ..signals import payment_created
from .audit_helper import actor_name, log_action

logger = logging.getLogger(__name__)


# ----------------------------
# Payment-related workflows
# ----------------------------
def record_payment(invoice_id, amount, payment_date, bank_transaction=None,
                   reference="", method="bank_transfer", user=None):
    """
    Store a payment and refresh the invoice's paid amount and status.
    Locks the invoice row, so concurrent payments to one invoice serialize.
    """
    if amount is None or amount <= Decimal("0.00"):
        raise ValidationError("Payment amount must be positive")

    with transaction.atomic():
        # lock invoice row to avoid race conditions
        inv = Invoice.objects.select_for_update().get(pk=invoice_id)

        if bank_transaction is not None and bank_transaction.company_id != inv.company_id:
            raise ValidationError(
                "Bank transaction and invoice must belong to same company")

        try:
            # savepoint: a duplicate must not poison the outer transaction
            with transaction.atomic():
                payment = Payment.objects.create(
                    company=inv.company,
                    invoice=inv,
                    bank_transaction=bank_transaction,
                    amount=amount,
                    payment_date=payment_date,
                    method=method,
                    reference=reference or "",
                    created_by=actor_name(user) if user else "",
                )
        except IntegrityError:
            raise AlreadyProcessedError(
                f"A payment already exists for bank transaction {bank_transaction.pk}."
            )

        previous = inv.payment_status
        inv.recalc_payment_status()
        inv.save(update_fields=["paid_amount", "payment_status"])

        # AUDIT LOGS
        log_action(
            action="payment",
            instance=payment,
            actor=user,
            changes={
                "invoice_id": inv.pk,
                "bank_transaction_id": bank_transaction.pk if bank_transaction else None,
                "amount": str(amount),
            },
        )
        if inv.payment_status != previous:
            log_action(
                action="update",
                instance=inv,
                actor=user,
                changes={
                    "paid_amount": str(inv.paid_amount),
                    "payment_status": [previous, inv.payment_status],
                },
            )

        # receivers run inside this transaction
        payment_created.send(sender=Payment, payment=payment, user=user)

    logger.info(
        "Recorded payment %s of %s for invoice %s (%s)",
        payment.pk, amount, inv.invoice_number, inv.payment_status,
    )
    return payment


def book_payment_entry(payment, user=None):
    """
    Post the cash receipt for a payment:
      Debit: bank current account = payment.amount
      Credit: trade receivables = payment.amount
    """
    from .posting import create_entry, post_entry

    entry = create_entry(
        company=payment.company,
        date=payment.payment_date,
        description=f"Payment for invoice {payment.invoice.invoice_number}",
        reference=payment.reference or payment.invoice.invoice_number,
        entry_type=JournalType.PAYMENT,
        lines=[
            {
                "account_code": bank_account_code(),
                "debit_amount": payment.amount,
                "description": f"Bank receipt for invoice {payment.invoice.invoice_number}",
            },
            {
                "account_code": receivable_account_code(),
                "credit_amount": payment.amount,
                "description": f"Clear receivable for invoice {payment.invoice.invoice_number}",
            },
        ],
        user=user,
    )
    return post_entry(entry.pk, user=user)
