"""
Bank reconciliation: statement import, automatic and manual matching
of receipts to open invoices, and payment creation from matches.

Every state change of a transaction is a conditional UPDATE on
match_status, so two workers racing on one statement cannot both win.
"""
import logging
from decimal import Decimal
from typing import NamedTuple

from django.core.exceptions import ValidationError
from django.db import IntegrityError, models, transaction
from django.db.models.functions import Coalesce
from django.utils import timezone

from ..exceptions import (AlreadyProcessedError, ConflictError,
                          ImmutableStateError)
from ..models import (BankStatement, BankTransaction, Invoice, MatchMethod,
                      MatchStatus, StatementStatus)
from ..models.banking import can_transition
from .audit_helper import log_action
from .matching import InvoiceCandidate, MatchPolicy, decide_match
from .payment import record_payment

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class MatchSummary(NamedTuple):
    matched: int = 0
    unmatched: int = 0
    ambiguous: int = 0  # left for review, several invoices qualified
    skipped: int = 0  # debits, or rows another worker changed first


# ----------------------------
# Import
# ----------------------------
def import_statement(company, parsed, user=None):
    """Persist a ParsedStatement and its transactions, all UNMATCHED."""
    duplicate = BankStatement.objects.for_company(company).filter(
        account_number=parsed.account_number,
        statement_number=parsed.statement_number,
    )
    if duplicate.exists():
        raise ConflictError(
            f"Statement {parsed.statement_number} for account "
            f"{parsed.account_number} is already imported."
        )

    try:
        with transaction.atomic():
            statement = BankStatement(
                company=company,
                account_number=parsed.account_number,
                bank_name=parsed.bank_name or "",
                statement_number=parsed.statement_number,
                currency_code=parsed.currency_code or company.currency_code,
                statement_date=parsed.statement_date,
                from_date=parsed.from_date,
                to_date=parsed.to_date,
                opening_balance=parsed.opening_balance,
                closing_balance=parsed.closing_balance,
                total_debit=parsed.total_debit,
                total_credit=parsed.total_credit,
            )
            statement.save()

            for tx in parsed.transactions:
                BankTransaction.objects.create(
                    company=company,
                    statement=statement,
                    transaction_date=tx.transaction_date,
                    value_date=tx.value_date,
                    amount=tx.amount,
                    tx_type=tx.tx_type,
                    partner_name=tx.partner_name or "",
                    partner_account=tx.partner_account or "",
                    description=tx.description or "",
                    reference=tx.reference or "",
                )

            log_action(
                action="import",
                instance=statement,
                actor=user,
                changes={
                    "transactions": len(parsed.transactions),
                    "total_debit": str(statement.total_debit),
                    "total_credit": str(statement.total_credit),
                },
            )
    except IntegrityError:
        # lost a race with a concurrent import of the same file
        raise ConflictError(
            f"Statement {parsed.statement_number} for account "
            f"{parsed.account_number} is already imported."
        )

    logger.info(
        "Imported statement %s/%s with %d transactions",
        statement.account_number, statement.statement_number,
        len(parsed.transactions),
    )
    return statement


# ----------------------------
# Matching
# ----------------------------
def _candidates(company):
    """
    Open invoices with the amount still available for matching:
    outstanding minus receipts already matched but not yet paid out.
    """
    pending = Coalesce(
        models.Sum(
            "bank_transactions__amount",
            filter=models.Q(
                bank_transactions__match_status=MatchStatus.MATCHED,
                bank_transactions__payment__isnull=True,
            ),
        ),
        models.Value(ZERO),
        output_field=models.DecimalField(max_digits=18, decimal_places=2),
    )
    invoices = (
        Invoice.objects.for_company(company)
        .open()
        .annotate(pending=pending)
        .order_by("issue_date", "pk")
    )
    return [
        InvoiceCandidate(
            invoice_id=inv.pk,
            invoice_number=inv.invoice_number,
            partner_name=inv.partner_name,
            available_amount=inv.outstanding_amount - inv.pending,
            issue_date=inv.issue_date,
        )
        for inv in invoices
    ]


def _refresh_statement_status(statement_id):
    has_open = BankTransaction.objects.filter(
        statement_id=statement_id, match_status=MatchStatus.UNMATCHED
    ).exists()
    if has_open:
        BankStatement.objects.filter(
            pk=statement_id, status=StatementStatus.RECONCILED
        ).update(status=StatementStatus.IMPORTED)
    else:
        BankStatement.objects.filter(
            pk=statement_id, status=StatementStatus.IMPORTED
        ).update(status=StatementStatus.RECONCILED)


def _available_amount(invoice):
    """Outstanding amount not yet spoken for by unpaid matches."""
    pending = BankTransaction.objects.filter(
        matched_invoice=invoice,
        match_status=MatchStatus.MATCHED,
        payment__isnull=True,
    ).aggregate(total=models.Sum("amount"))["total"] or ZERO
    return invoice.outstanding_amount - pending


def _claim(tx, invoice_id, method, user=None):
    """
    UNMATCHED → MATCHED. False when another caller got there first or,
    for amount matches, when the invoice's available amount moved.
    Lock order is transaction row, then invoice, as in payment creation.
    """
    with transaction.atomic():
        locked = BankTransaction.objects.select_for_update().filter(
            pk=tx.pk, match_status=MatchStatus.UNMATCHED
        ).first()
        if locked is None:
            return False

        # concurrent claims on one invoice serialize here
        invoice = Invoice.objects.select_for_update().get(pk=invoice_id)
        if not invoice.is_open:
            return False
        if (method == MatchMethod.AMOUNT_PARTNER
                and locked.amount != _available_amount(invoice)):
            return False

        updated = BankTransaction.objects.filter(
            pk=tx.pk, match_status=MatchStatus.UNMATCHED
        ).update(
            match_status=MatchStatus.MATCHED,
            matched_invoice_id=invoice_id,
            match_method=method,
            needs_review=False,
            matched_at=timezone.now(),
        )
        if updated:
            log_action(
                action="match",
                instance=tx,
                actor=user,
                changes={"invoice_id": invoice_id, "method": method},
            )
    return bool(updated)


def auto_match(statement_id, policy=None, user=None):
    """
    Match every UNMATCHED credit of a statement against open invoices.
    Running it again changes nothing that is already decided.
    """
    statement = BankStatement.objects.get(pk=statement_id)
    policy = policy or MatchPolicy.from_settings()

    matched = unmatched = ambiguous = skipped = 0
    pending = statement.transactions.filter(
        match_status=MatchStatus.UNMATCHED
    ).order_by("transaction_date", "pk")

    for tx in pending:
        if not tx.is_credit:
            skipped += 1
            continue

        # reloaded per receipt: earlier matches reduce what is available
        decision = decide_match(
            tx.reference, tx.amount, tx.partner_name,
            _candidates(statement.company), policy,
        )

        if decision.matched:
            if _claim(tx, decision.invoice_id, decision.method, user=user):
                matched += 1
                logger.info(
                    "Matched transaction %s to invoice %s by %s",
                    tx.pk, decision.invoice_id, decision.method,
                )
            else:
                skipped += 1
                logger.info(
                    "Transaction %s lost its claim on invoice %s", tx.pk, decision.invoice_id)
        elif decision.ambiguous:
            BankTransaction.objects.filter(
                pk=tx.pk, match_status=MatchStatus.UNMATCHED
            ).update(needs_review=True)
            ambiguous += 1
            logger.warning(
                "Transaction %s (%s %s) matches several invoices, left for review",
                tx.pk, tx.amount, tx.partner_name,
            )
        else:
            unmatched += 1

    _refresh_statement_status(statement.pk)
    summary = MatchSummary(matched, unmatched, ambiguous, skipped)
    logger.info("Auto-match of statement %s: %s", statement.pk, summary)
    return summary


def match_transaction(transaction_id, invoice_id, user=None):
    """Manual match of an UNMATCHED transaction to an open invoice."""
    tx = BankTransaction.objects.get(pk=transaction_id)
    invoice = Invoice.objects.get(pk=invoice_id)
    if invoice.company_id != tx.company_id:
        raise ValidationError("Invoice must belong to the same company.")
    if not invoice.is_open:
        raise ValidationError(
            f"Invoice {invoice.invoice_number} is not open for payment.")
    if not can_transition(tx.match_status, MatchStatus.MATCHED):
        raise ConflictError(
            f"Transaction {tx.pk} is {tx.match_status} and cannot be matched.")

    if not _claim(tx, invoice.pk, MatchMethod.MANUAL, user=user):
        raise ConflictError(f"Transaction {tx.pk} was changed concurrently.")

    _refresh_statement_status(tx.statement_id)
    tx.refresh_from_db()
    return tx


def ignore_transaction(transaction_id, user=None):
    """UNMATCHED → IGNORED (fees, transfers between own accounts...)."""
    with transaction.atomic():
        tx = BankTransaction.objects.get(pk=transaction_id)
        if not can_transition(tx.match_status, MatchStatus.IGNORED):
            raise ConflictError(
                f"Transaction {tx.pk} is {tx.match_status} and cannot be ignored.")
        updated = BankTransaction.objects.filter(
            pk=tx.pk, match_status=MatchStatus.UNMATCHED
        ).update(match_status=MatchStatus.IGNORED, needs_review=False)
        if not updated:
            raise ConflictError(f"Transaction {tx.pk} was changed concurrently.")
        log_action(action="ignore", instance=tx, actor=user)
        _refresh_statement_status(tx.statement_id)

    tx.refresh_from_db()
    return tx


def dispute_or_unmatch(transaction_id, user=None):
    """MATCHED/IGNORED → UNMATCHED, allowed only before a payment exists."""
    with transaction.atomic():
        tx = BankTransaction.objects.select_for_update().get(pk=transaction_id)
        if tx.has_payment():
            raise ImmutableStateError(
                f"Transaction {tx.pk} already produced a payment and cannot be unmatched."
            )
        if not can_transition(tx.match_status, MatchStatus.UNMATCHED):
            raise ValidationError(f"Transaction {tx.pk} is already unmatched.")

        previous = tx.match_status
        previous_invoice = tx.matched_invoice_id
        updated = BankTransaction.objects.filter(
            pk=tx.pk, match_status=previous
        ).update(
            match_status=MatchStatus.UNMATCHED,
            matched_invoice=None,
            match_method="",
            needs_review=False,
            matched_at=None,
        )
        if not updated:
            raise ConflictError(f"Transaction {tx.pk} was changed concurrently.")

        log_action(
            action="unmatch",
            instance=tx,
            actor=user,
            changes={"from": previous, "invoice_id": previous_invoice},
        )
        _refresh_statement_status(tx.statement_id)

    logger.info("Transaction %s moved from %s back to UNMATCHED", tx.pk, previous)
    tx.refresh_from_db()
    return tx


def create_payment_from_transaction(transaction_id, user=None):
    """Turn a confirmed match into a Payment, at most once per transaction."""
    with transaction.atomic():
        tx = BankTransaction.objects.select_for_update().get(pk=transaction_id)
        if tx.match_status != MatchStatus.MATCHED or not tx.matched_invoice_id:
            raise ValidationError(
                f"Transaction {tx.pk} is not matched to an invoice.")
        if tx.has_payment():
            raise AlreadyProcessedError(
                f"Transaction {tx.pk} already produced a payment.")

        return record_payment(
            invoice_id=tx.matched_invoice_id,
            amount=tx.amount,
            payment_date=tx.value_date or tx.transaction_date,
            bank_transaction=tx,
            reference=tx.reference,
            user=user,
        )


def unmatched_transactions(company, limit=50):
    return list(
        BankTransaction.objects.for_company(company)
        .filter(match_status=MatchStatus.UNMATCHED)
        .select_related("statement")
        .order_by("-transaction_date", "-pk")[:limit]
    )


def list_statements(company, account_number=None, status=None,
                    date_from=None, date_to=None):
    qs = BankStatement.objects.for_company(company)
    if account_number:
        qs = qs.filter(account_number=account_number)
    if status:
        qs = qs.filter(status=status)
    if date_from is not None:
        qs = qs.filter(statement_date__gte=date_from)
    if date_to is not None:
        qs = qs.filter(statement_date__lte=date_to)
    return qs.order_by("-statement_date", "-pk")


def get_statement_with_transactions(statement_id):
    """A statement with its transactions prefetched, oldest first."""
    return BankStatement.objects.prefetch_related(
        models.Prefetch(
            "transactions",
            queryset=BankTransaction.objects.order_by("transaction_date", "pk"),
        )
    ).get(pk=statement_id)
