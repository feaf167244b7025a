"""
Pure matching rules for bank receipts against open invoices.

Nothing here touches the database: reconciliation loads the candidates,
asks `decide_match` for a verdict and persists it.
"""
import re
import unicodedata
from dataclasses import dataclass
from decimal import Decimal
from typing import NamedTuple, Optional

from ..conf import match_policy_settings

# Letters NFKD does not decompose
_FOLD = str.maketrans({"đ": "dj", "Đ": "Dj", "ß": "ss", "ø": "o", "Ø": "O"})

# Legal-entity forms that say nothing about who paid
_LEGAL_FORM_RE = re.compile(
    r"\b(?:d\.?\s?o\.?\s?o|a\.?\s?d|s\.?\s?z\.?\s?r|pr|ltd|llc|inc|gmbh)\b\.?"
)
_PUNCT_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")

# shorter names are too generic for a substring hit
MIN_SUBSTRING_LEN = 3


@dataclass(frozen=True)
class MatchPolicy:
    # share of the longer name's tokens that must appear in the other
    min_token_overlap: Decimal = Decimal("0.5")
    # True: several qualifying invoices are never auto-matched
    review_ties: bool = True

    @classmethod
    def from_settings(cls):
        return cls(**match_policy_settings())


class InvoiceCandidate(NamedTuple):
    invoice_id: int
    invoice_number: str
    partner_name: str
    available_amount: Decimal  # outstanding minus receipts already matched
    issue_date: object = None


class MatchDecision(NamedTuple):
    invoice_id: Optional[int]
    method: str  # "reference", "amount_partner" or ""
    ambiguous: bool = False

    @property
    def matched(self):
        return self.invoice_id is not None


NO_MATCH = MatchDecision(None, "")


def normalize_reference(value):
    return (value or "").strip().casefold()


def fold_diacritics(value):
    value = (value or "").translate(_FOLD)
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_partner_name(value):
    # "Marković d.o.o., Beograd" → "markovic beograd"
    name = fold_diacritics(value).lower()
    name = _LEGAL_FORM_RE.sub(" ", name)
    name = _PUNCT_RE.sub(" ", name)
    return _SPACE_RE.sub(" ", name).strip()


def partner_names_match(a, b, min_token_overlap=Decimal("0.5")):
    left, right = normalize_partner_name(a), normalize_partner_name(b)
    if not left or not right:
        return False
    shorter, longer = sorted((left, right), key=len)
    # whole tokens only: "ana" is not inside "banana"
    if len(shorter) >= MIN_SUBSTRING_LEN and f" {shorter} " in f" {longer} ":
        return True

    left_tokens, right_tokens = set(left.split()), set(right.split())
    common = len(left_tokens & right_tokens)
    overlap = Decimal(common) / Decimal(max(len(left_tokens), len(right_tokens)))
    return overlap >= Decimal(str(min_token_overlap))


def select_candidate(candidates, policy):
    """
    Pick the single qualifying candidate.
    Returns (candidate, ambiguous); ties go to review unless the policy
    allows taking the oldest invoice.
    """
    candidates = list(candidates)
    if not candidates:
        return None, False
    if len(candidates) == 1:
        return candidates[0], False
    if policy.review_ties:
        return None, True
    oldest = min(candidates, key=lambda c: (c.issue_date is None, c.issue_date, c.invoice_id))
    return oldest, False


def decide_match(reference, amount, partner_name, candidates, policy=None):
    """
    1. reference equals an invoice number (trimmed, case-insensitive)
    2. amount equals the available outstanding and the partner matches
    3. otherwise no match
    """
    policy = policy or MatchPolicy()
    candidates = list(candidates)

    ref = normalize_reference(reference)
    if ref:
        by_ref = [c for c in candidates if normalize_reference(c.invoice_number) == ref]
        if len(by_ref) == 1:
            return MatchDecision(by_ref[0].invoice_id, "reference")

    qualifying = [
        c for c in candidates
        if c.available_amount == amount
        and partner_names_match(partner_name, c.partner_name, policy.min_token_overlap)
    ]
    chosen, ambiguous = select_candidate(qualifying, policy)
    if chosen is not None:
        return MatchDecision(chosen.invoice_id, "amount_partner")
    if ambiguous:
        return MatchDecision(None, "", ambiguous=True)
    return NO_MATCH
