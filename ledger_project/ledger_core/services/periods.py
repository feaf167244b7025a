import logging

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from ..models import JournalEntry, JournalStatus, Period
from .audit_helper import actor_name, log_action

logger = logging.getLogger(__name__)


def ensure_open_period(company, date):
    """Entries may be created and posted only on dates of open periods."""
    if Period.is_date_closed(company, date):
        raise ValidationError(
            f"{date} falls inside a closed accounting period for {company}"
        )


def close_period(period_id, user=None):
    """
    Lock a period. Drafts dated inside it must be posted or deleted
    first, otherwise they could never be posted.
    """
    with transaction.atomic():
        period = Period.objects.select_for_update().get(pk=period_id)
        if period.is_closed:
            return period

        drafts = JournalEntry.objects.for_company(period.company).filter(
            status=JournalStatus.DRAFT,
            date__gte=period.start_date,
            date__lte=period.end_date,
        )
        if drafts.exists():
            numbers = ", ".join(drafts.order_by("entry_number")
                                .values_list("entry_number", flat=True)[:5])
            raise ValidationError(
                f"Period {period.name} still has draft entries: {numbers}")

        period.is_closed = True
        period.closed_at = timezone.now()
        period.closed_by = actor_name(user)
        period.save(update_fields=["is_closed", "closed_at", "closed_by"])
        log_action(action="close", instance=period, actor=user,
                   changes={"start_date": str(period.start_date),
                            "end_date": str(period.end_date)})

    logger.info("Closed period %s of %s", period.name, period.company)
    return period
