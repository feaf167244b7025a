from decimal import Decimal
from django.conf import settings


def match_policy_settings():
    """Read LEDGER_MATCH_POLICY with defaults filled in."""
    raw = getattr(settings, "LEDGER_MATCH_POLICY", {}) or {}
    return {
        "min_token_overlap": Decimal(str(raw.get("MIN_TOKEN_OVERLAP", "0.5"))),
        "review_ties": bool(raw.get("REVIEW_TIES", True)),
    }


def book_payments():
    return getattr(settings, "LEDGER_BOOK_PAYMENTS", False)


def bank_account_code():
    return getattr(settings, "LEDGER_BANK_ACCOUNT_CODE", "241")


def receivable_account_code():
    return getattr(settings, "LEDGER_RECEIVABLE_ACCOUNT_CODE", "204")
