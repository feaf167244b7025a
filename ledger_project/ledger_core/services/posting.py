import logging
from decimal import Decimal, InvalidOperation
from typing import NamedTuple

from django.core.exceptions import ValidationError
from django.db import IntegrityError, models, transaction
from django.db.models import F
from django.utils import timezone

from ..exceptions import (AlreadyPostedError, AlreadyProcessedError,
                          ConflictError, ImmutableStateError,
                          UnbalancedJournalError)
from ..models import (Account, Company, JournalEntry, JournalLine,
                      JournalStatus, JournalType)
from ..models.journal import can_transition
from .audit_helper import actor_name, log_action
from .periods import ensure_open_period

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


class LineSpec(NamedTuple):
    """One journal line as passed in by callers."""
    account: object  # Account instance, pk or code
    debit_amount: Decimal = ZERO
    credit_amount: Decimal = ZERO
    description: str = ""


class LedgerRow(NamedTuple):
    date: object
    entry_number: str
    journal_id: int
    description: str
    debit: Decimal
    credit: Decimal
    balance: Decimal


def _to_amount(value):
    if value in (None, ""):
        return ZERO
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"Invalid amount: {value!r}")
    if not amount.is_finite() or amount != amount.quantize(CENT):
        # sub-cent amounts are refused, never rounded
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT)


def _resolve_account(company, ref):
    # Account instance, primary key, or chart code
    if isinstance(ref, Account):
        account = ref
    elif isinstance(ref, int):
        account = Account.objects.filter(pk=ref).first()
    else:
        account = Account.objects.for_company(company).filter(code=str(ref)).first()
    if account is None:
        raise ValidationError(f"Unknown account: {ref!r}")
    if account.company_id != company.pk:
        raise ValidationError(
            f"Account {account.code} does not belong to {company}.")
    if not account.is_active:
        raise ValidationError(f"Account {account.code} is inactive.")
    return account


def _normalize_line(line):
    if isinstance(line, LineSpec):
        return line
    if isinstance(line, dict):
        if line.get("account_id") not in (None, ""):
            # JSON callers send ids as strings; an id is never a chart code
            try:
                ref = int(line["account_id"])
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid account id: {line['account_id']!r}")
        elif line.get("account_code") not in (None, ""):
            ref = str(line["account_code"])
        else:
            ref = line.get("account")
        return LineSpec(
            account=ref,
            debit_amount=line.get("debit_amount", ZERO),
            credit_amount=line.get("credit_amount", ZERO),
            description=line.get("description", ""),
        )
    raise ValidationError(f"Unsupported journal line: {line!r}")


def _write_lines(entry, lines, start=1):
    for number, raw in enumerate(lines, start=start):
        item = _normalize_line(raw)
        JournalLine.objects.create(
            company=entry.company,
            journal=entry,
            line_number=number,
            account=_resolve_account(entry.company, item.account),
            description=item.description or "",
            debit_amount=_to_amount(item.debit_amount),
            credit_amount=_to_amount(item.credit_amount),
        )


def _store_totals(entry):
    """Rewrite the denormalized totals of a draft from its lines."""
    debit, credit = entry.compute_totals()
    JournalEntry.objects.filter(pk=entry.pk, status=JournalStatus.DRAFT).update(
        total_debit=debit, total_credit=credit
    )
    entry.total_debit, entry.total_credit = debit, credit


def _next_entry_number(company, date):
    # caller holds the company row lock, so numbers never collide
    prefix = f"{date.year}-"
    last = (
        JournalEntry.objects.for_company(company)
        .filter(entry_number__startswith=prefix)
        .order_by("-entry_number")
        .values_list("entry_number", flat=True)
        .first()
    )
    seq = int(last.split("-")[1]) + 1 if last else 1
    return f"{prefix}{seq:06d}"


def _bump_revision(entry):
    """
    Compare-and-swap on (status, revision). Returns the new revision
    or raises when the draft was posted or edited meanwhile.
    """
    updated = JournalEntry.objects.filter(
        pk=entry.pk, status=JournalStatus.DRAFT, revision=entry.revision
    ).update(revision=F("revision") + 1)
    if updated == 0:
        current = JournalEntry.objects.get(pk=entry.pk)
        if current.status == JournalStatus.POSTED:
            raise ImmutableStateError(
                f"Journal entry {current.entry_number} is posted and cannot be edited."
            )
        raise ConflictError(
            f"Journal entry {current.entry_number} was modified concurrently."
        )
    entry.revision += 1
    return entry.revision


# ----------------------------
# Journal-related workflows
# ----------------------------
def create_entry(company, date, description="", reference="",
                 entry_type=JournalType.MANUAL, lines=(), user=None):
    """
    Create a DRAFT entry with its lines in one transaction.
    Unbalanced drafts are allowed; balance is enforced when posting.
    """
    ensure_open_period(company, date)

    with transaction.atomic():
        # serialize numbering per company
        Company.objects.select_for_update().get(pk=company.pk)
        entry = JournalEntry(
            company=company,
            entry_number=_next_entry_number(company, date),
            date=date,
            description=description or "",
            reference=reference or "",
            entry_type=entry_type,
            created_by=actor_name(user) if user else "",
        )
        entry.save()
        _write_lines(entry, lines)
        _store_totals(entry)

    logger.info("Created draft journal entry %s", entry.entry_number)
    return entry


def update_entry(entry_id, *, date=None, description=None, reference=None,
                 lines=None, user=None):
    """Edit a draft. When lines are given they replace the existing ones."""
    with transaction.atomic():
        entry = JournalEntry.objects.select_for_update().get(pk=entry_id)
        if entry.is_posted:
            raise ImmutableStateError(
                f"Journal entry {entry.entry_number} is posted and cannot be edited."
            )
        if date is not None:
            ensure_open_period(entry.company, date)

        _bump_revision(entry)

        fields = {}
        if date is not None:
            fields["date"] = date
        if description is not None:
            fields["description"] = description
        if reference is not None:
            fields["reference"] = reference
        if fields:
            JournalEntry.objects.filter(pk=entry.pk).update(**fields)
            for name, value in fields.items():
                setattr(entry, name, value)

        if lines is not None:
            entry.lines.all().delete()
            _write_lines(entry, lines)
        _store_totals(entry)

        log_action(action="update", instance=entry, actor=user,
                   changes={"revision": entry.revision, **{k: str(v) for k, v in fields.items()}})
    return entry


def add_line(entry_id, account, debit_amount=ZERO, credit_amount=ZERO,
             description="", user=None):
    with transaction.atomic():
        entry = JournalEntry.objects.select_for_update().get(pk=entry_id)
        if entry.is_posted:
            raise ImmutableStateError(
                f"Journal entry {entry.entry_number} is posted and cannot be edited."
            )
        _bump_revision(entry)
        last = entry.lines.aggregate(n=models.Max("line_number"))["n"] or 0
        _write_lines(
            entry,
            [LineSpec(account, debit_amount, credit_amount, description)],
            start=last + 1,
        )
        _store_totals(entry)
    return entry


def delete_entry(entry_id, user=None):
    with transaction.atomic():
        entry = JournalEntry.objects.get(pk=entry_id)
        # conditional delete: a concurrent post wins
        deleted, _ = JournalEntry.objects.filter(
            pk=entry_id, status=JournalStatus.DRAFT
        ).delete()
        if not deleted:
            raise ImmutableStateError(
                f"Journal entry {entry.entry_number} is posted and cannot be deleted."
            )
        log_action(action="delete", instance=entry, actor=user,
                   changes={"entry_number": entry.entry_number})
    logger.info("Deleted draft journal entry %s", entry.entry_number)


def post_entry(entry_id, user=None):
    """
    DRAFT → POSTED. Re-checks balance, accounts and period, then flips
    the status with a conditional UPDATE so exactly one caller succeeds.
    """
    with transaction.atomic():
        entry = JournalEntry.objects.get(pk=entry_id)
        if not can_transition(entry.status, JournalStatus.POSTED):
            raise AlreadyPostedError(
                f"Journal entry {entry.entry_number} is already posted.")

        lines = list(entry.lines.select_related("account"))
        if len(lines) < 2:
            raise UnbalancedJournalError(
                f"Journal entry {entry.entry_number} needs at least two lines."
            )

        total_debit = sum((line.debit_amount for line in lines), ZERO)
        total_credit = sum((line.credit_amount for line in lines), ZERO)
        if total_debit != total_credit:
            raise UnbalancedJournalError(
                f"Journal entry {entry.entry_number} is unbalanced: "
                f"debit {total_debit} != credit {total_credit}."
            )

        inactive = sorted({line.account.code for line in lines if not line.account.is_active})
        if inactive:
            raise ValidationError(
                f"Cannot post to inactive accounts: {', '.join(inactive)}")

        ensure_open_period(entry.company, entry.date)

        posted_at = timezone.now()
        updated = JournalEntry.objects.filter(
            pk=entry.pk,
            status=JournalStatus.DRAFT,
            revision=entry.revision,
        ).update(
            status=JournalStatus.POSTED,
            total_debit=total_debit,
            total_credit=total_credit,
            posted_by=actor_name(user) if user else "",
            posted_at=posted_at,
        )
        if updated == 0:
            current = JournalEntry.objects.get(pk=entry.pk)
            if current.status == JournalStatus.POSTED:
                raise AlreadyPostedError(
                    f"Journal entry {entry.entry_number} was posted by another caller."
                )
            raise ConflictError(
                f"Journal entry {entry.entry_number} changed while posting; reload and retry."
            )

        entry.refresh_from_db()
        log_action(action="post", instance=entry, actor=user,
                   changes={"total": str(total_debit)})

    logger.info("Posted journal entry %s (%s)", entry.entry_number, total_debit)
    return entry


def list_entries(company, status=None, entry_type=None, date_from=None,
                 date_to=None, search=None):
    """Journal entries of a company, newest first, lines prefetched."""
    qs = JournalEntry.objects.for_company(company)
    if status:
        qs = qs.filter(status=status)
    if entry_type:
        qs = qs.filter(entry_type=entry_type)
    if date_from is not None:
        qs = qs.filter(date__gte=date_from)
    if date_to is not None:
        qs = qs.filter(date__lte=date_to)
    if search:
        qs = qs.filter(
            models.Q(entry_number__icontains=search)
            | models.Q(description__icontains=search)
        )
    return qs.order_by("-date", "-entry_number").prefetch_related(
        models.Prefetch(
            "lines",
            queryset=JournalLine.objects.select_related("account").order_by("line_number"),
        )
    )


def reverse_entry(entry_id, reason="", date=None, user=None):
    """
    Storno: post a new ADJUSTMENT entry with every line's sides swapped.
    The original stays POSTED and is referenced through `reverses`.
    """
    with transaction.atomic():
        original = JournalEntry.objects.select_for_update().get(pk=entry_id)
        if not original.is_posted:
            raise ValidationError(
                f"Only posted entries can be reversed; {original.entry_number} is a draft."
            )
        if JournalEntry.objects.filter(reverses=original).exists():
            raise AlreadyProcessedError(
                f"Journal entry {original.entry_number} is already reversed.")

        reversal_date = date or timezone.localdate()
        ensure_open_period(original.company, reversal_date)
        Company.objects.select_for_update().get(pk=original.company_id)

        try:
            with transaction.atomic():
                reversal = JournalEntry(
                    company=original.company,
                    entry_number=_next_entry_number(original.company, reversal_date),
                    date=reversal_date,
                    description=(
                        f"Storno {original.entry_number}: {reason}" if reason
                        else f"Storno {original.entry_number}"
                    ),
                    reference=original.entry_number,
                    entry_type=JournalType.ADJUSTMENT,
                    reverses=original,
                    created_by=actor_name(user) if user else "",
                )
                reversal.save()
        except IntegrityError:
            raise AlreadyProcessedError(
                f"Journal entry {original.entry_number} is already reversed.")

        # debit ↔ credit on every line
        _write_lines(reversal, [
            LineSpec(
                account=line.account,
                debit_amount=line.credit_amount,
                credit_amount=line.debit_amount,
                description=line.description,
            )
            for line in original.lines.select_related("account")
        ])
        _store_totals(reversal)
        reversal = post_entry(reversal.pk, user=user)

        log_action(action="reverse", instance=original, actor=user,
                   changes={"reversal": reversal.entry_number, "reason": reason})

    logger.info("Reversed journal entry %s with %s",
                original.entry_number, reversal.entry_number)
    return reversal


# ----------------------------
# Balances
# ----------------------------
def _sums(queryset):
    agg = queryset.aggregate(
        debit=models.Sum("debit_amount"),
        credit=models.Sum("credit_amount"),
    )
    return agg["debit"] or ZERO, agg["credit"] or ZERO


def get_account_balance(account_id, as_of=None):
    """Balance on the account's normal side over posted lines."""
    account = Account.objects.get(pk=account_id)
    debit, credit = _sums(JournalLine.objects.filter(account=account).as_of(as_of))
    return account.signed_balance(debit, credit)


def get_ledger(account_id, date_from=None, date_to=None):
    """
    Yield LedgerRow per posted line, oldest first, with a running balance.
    Lines before date_from are folded into the starting balance.
    """
    account = Account.objects.get(pk=account_id)
    balance = ZERO
    if date_from is not None:
        debit, credit = _sums(
            JournalLine.objects.filter(account=account)
            .posted()
            .filter(journal__date__lt=date_from)
        )
        balance = account.signed_balance(debit, credit)

    qs = JournalLine.objects.filter(account=account).posted()
    if date_from is not None:
        qs = qs.filter(journal__date__gte=date_from)
    if date_to is not None:
        qs = qs.filter(journal__date__lte=date_to)

    rows = qs.order_by("journal__date", "journal__entry_number", "line_number").values_list(
        "journal__date", "journal__entry_number", "journal_id",
        "description", "journal__description", "debit_amount", "credit_amount",
    )
    for date, number, journal_id, line_desc, entry_desc, debit, credit in rows.iterator():
        balance += account.signed_balance(debit, credit)
        yield LedgerRow(
            date=date,
            entry_number=number,
            journal_id=journal_id,
            description=line_desc or entry_desc,
            debit=debit,
            credit=credit,
            balance=balance,
        )
