import logging

from celery import shared_task
from django.utils.dateparse import parse_date

logger = logging.getLogger(__name__)


@shared_task  # register this function as a Celery task
def auto_match_statement(statement_id):
    # import services lazily to avoid circular imports at module import time
    from .services.reconciliation import auto_match

    summary = auto_match(statement_id)
    # plain dict so the json serializer can return it
    return summary._asdict()


@shared_task
def verify_balance_sheet(company_id, as_of=None):
    """
    Nightly consistency check. ConsistencyFailure propagates so the
    failure shows up in the worker log and the result backend.
    """
    from django.utils import timezone

    from .models import Company
    from .services.reports import build_balance_sheet

    company = Company.objects.get(pk=company_id)
    # task arguments arrive as ISO strings through the json serializer
    as_of = parse_date(as_of) if as_of else timezone.localdate()
    sheet = build_balance_sheet(company, as_of)
    logger.info(
        "Balance sheet for %s as of %s balances at %s",
        company, as_of, sheet.total_assets,
    )
    return {
        "as_of": as_of.isoformat(),
        "total_assets": str(sheet.total_assets),
        "total_liabilities": str(sheet.total_liabilities),
        "total_equity": str(sheet.total_equity),
    }


@shared_task
def verify_all_balance_sheets(as_of=None):
    """
    Run the balance check for every company. One broken ledger does not
    stop the others; the task fails at the end if any company failed.
    """
    from .exceptions import ConsistencyFailure
    from .models import Company

    results = {}
    failed = []
    for company_id, slug in Company.objects.order_by("pk").values_list("pk", "slug"):
        try:
            results[slug] = verify_balance_sheet(company_id, as_of)
        except ConsistencyFailure as exc:
            results[slug] = {"error": str(exc)}
            failed.append(slug)

    if failed:
        raise ConsistencyFailure(
            f"Balance sheet check failed for: {', '.join(failed)}")
    return results
