import logging

from django.core.exceptions import ValidationError
from django.db import transaction

from ..exceptions import ConflictError
from ..models import Account, AccountType, JournalLine
from ..models.account import normal_balance_for
from .audit_helper import log_action

logger = logging.getLogger(__name__)

A = AccountType

# Serbian standard chart (kontni okvir): classes 0-6 and the synthetic
# accounts most small companies post to. Parents come before children.
DEFAULT_CHART = [
    ("0", "Nematerijalna imovina, nekretnine, postrojenja, oprema i biološka sredstva", A.ASSET),
    ("1", "Zalihe i stalna sredstva namenjena prodaji", A.ASSET),
    ("2", "Kratkoročna potraživanja, plasmani i gotovina", A.ASSET),
    ("3", "Kapital", A.EQUITY),
    ("4", "Dugoročne i kratkoročne obaveze", A.LIABILITY),
    ("5", "Rashodi", A.EXPENSE),
    ("6", "Prihodi", A.REVENUE),
    # Klasa 0 - Stalna imovina
    ("00", "Nematerijalna imovina", A.ASSET),
    ("01", "Goodwill", A.ASSET),
    ("02", "Nekretnine, postrojenja i oprema", A.ASSET),
    ("022", "Građevinski objekti", A.ASSET),
    ("023", "Oprema", A.ASSET),
    # Klasa 1 - Zalihe
    ("10", "Materijal", A.ASSET),
    ("13", "Roba", A.ASSET),
    ("14", "Gotovi proizvodi", A.ASSET),
    # Klasa 2 - Potraživanja i gotovina
    ("20", "Potraživanja od prodaje", A.ASSET),
    ("204", "Kupci u zemlji", A.ASSET),
    ("2040", "Kupci - pravna lica", A.ASSET),
    ("21", "Potraživanja iz specifičnih poslova", A.ASSET),
    ("24", "Gotovinski ekvivalenti i gotovina", A.ASSET),
    ("241", "Tekući računi", A.ASSET),
    ("243", "Blagajna", A.ASSET),
    ("27", "PDV", A.ASSET),
    ("270", "PDV u primljenim fakturama", A.ASSET),
    # Klasa 3 - Kapital
    ("30", "Osnovni kapital", A.EQUITY),
    ("34", "Neraspoređena dobit", A.EQUITY),
    # contra-equity: booked on the debit side, so it carries a negative balance
    ("35", "Gubitak", A.EQUITY),
    # Klasa 4 - Obaveze
    ("40", "Dugoročne obaveze", A.LIABILITY),
    ("43", "Obaveze iz poslovanja", A.LIABILITY),
    ("432", "Dobavljači u zemlji", A.LIABILITY),
    ("4320", "Dobavljači - pravna lica", A.LIABILITY),
    ("47", "Obaveze za PDV", A.LIABILITY),
    ("470", "Obaveze za PDV po izdatim fakturama", A.LIABILITY),
    ("48", "Obaveze za zarade", A.LIABILITY),
    # Klasa 5 - Rashodi
    ("50", "Nabavna vrednost prodate robe", A.EXPENSE),
    ("51", "Troškovi materijala", A.EXPENSE),
    ("52", "Troškovi zarada, naknada i ostali lični rashodi", A.EXPENSE),
    ("53", "Troškovi proizvodnih usluga", A.EXPENSE),
    ("54", "Troškovi amortizacije", A.EXPENSE),
    ("55", "Nematerijalni troškovi", A.EXPENSE),
    ("56", "Finansijski rashodi", A.EXPENSE),
    ("57", "Ostali rashodi", A.EXPENSE),
    # Klasa 6 - Prihodi
    ("60", "Prihodi od prodaje robe", A.REVENUE),
    ("61", "Prihodi od prodaje proizvoda i usluga", A.REVENUE),
    ("62", "Prihodi od aktiviranja učinaka", A.REVENUE),
    ("64", "Prihodi od premija, subvencija", A.REVENUE),
    ("66", "Finansijski prihodi", A.REVENUE),
    ("67", "Ostali prihodi", A.REVENUE),
]


def _longest_prefix_parent(company, code, known=None):
    """Closest existing ancestor by code prefix ("2040" → "204" → "20" → "2")."""
    for cut in range(len(code) - 1, 0, -1):
        prefix = code[:cut]
        if known is not None:
            if prefix in known:
                return known[prefix]
            continue
        parent = Account.objects.for_company(company).filter(code=prefix).first()
        if parent:
            return parent
    return None


def create_account(company, code, name, ac_type, normal_balance=None,
                   parent=None, is_active=True, user=None):
    code = (code or "").strip()
    if Account.objects.for_company(company).filter(code=code).exists():
        raise ValidationError(f"Account code {code} already exists.")

    # derive the side when the caller leaves it out
    if not normal_balance:
        normal_balance = normal_balance_for(ac_type)

    if parent is None:
        parent = _longest_prefix_parent(company, code)

    with transaction.atomic():
        account = Account(
            company=company,
            code=code,
            name=name,
            ac_type=ac_type,
            normal_balance=normal_balance,
            parent=parent,
            is_active=is_active,
        )
        account.save()  # full_clean() checks side and hierarchy
        log_action(action="create", instance=account, actor=user,
                   changes={"code": code, "ac_type": ac_type})
    logger.info("Created account %s (%s) for %s", code, ac_type, company)
    return account


def initialize_default_chart(company):
    """
    Install the standard chart for a company that has no accounts yet.
    Returns the number of accounts created (0 when skipped).
    """
    if Account.objects.for_company(company).exists():
        logger.warning(
            "Chart of accounts already initialized for %s, skipping", company)
        return 0

    with transaction.atomic():
        created = {}
        # parents first so each child can point at its row
        for code, name, ac_type in sorted(DEFAULT_CHART, key=lambda row: len(row[0])):
            account = Account(
                company=company,
                code=code,
                name=name,
                ac_type=ac_type,
                normal_balance=normal_balance_for(ac_type),
                parent=_longest_prefix_parent(company, code, known=created),
                is_system=True,
            )
            account.save()
            created[code] = account

    logger.info("Initialized %d accounts for %s", len(created), company)
    return len(created)


def deactivate_account(account_id, user=None):
    with transaction.atomic():
        account = Account.objects.select_for_update().get(pk=account_id)
        # draft lines count too: they would fail at posting time
        if JournalLine.objects.filter(account=account).exists():
            raise ConflictError(
                f"Account {account.code} is used in journal lines and cannot be deactivated."
            )
        if account.is_active:
            account.is_active = False
            account.save(update_fields=["is_active"])
            log_action(action="deactivate", instance=account, actor=user)
            logger.info("Deactivated account %s", account.code)
    return account


def reactivate_account(account_id, user=None):
    with transaction.atomic():
        account = Account.objects.select_for_update().get(pk=account_id)
        if not account.is_active:
            account.is_active = True
            account.save(update_fields=["is_active"])
            log_action(action="reactivate", instance=account, actor=user)
    return account


def update_account(account_id, *, name=None, ac_type=None, user=None):
    """Rename an account or change its type; the normal side follows the type."""
    with transaction.atomic():
        account = Account.objects.select_for_update().get(pk=account_id)
        changes = {}
        if name is not None and name != account.name:
            changes["name"] = [account.name, name]
            account.name = name

        if ac_type is not None and ac_type != account.ac_type:
            if account.is_system:
                raise ValidationError(
                    f"Account {account.code} is part of the standard chart; its type is fixed.")
            # booked lines are signed by the type
            if JournalLine.objects.filter(account=account).exists():
                raise ConflictError(
                    f"Account {account.code} is used in journal lines; its type is fixed.")
            changes["ac_type"] = [account.ac_type, ac_type]
            account.ac_type = ac_type
            account.normal_balance = normal_balance_for(ac_type)

        if changes:
            account.save(update_fields=["name", "ac_type", "normal_balance"])
            log_action(action="update", instance=account, actor=user, changes=changes)
            logger.info("Updated account %s", account.code)
    return account


def get_account_by_code(company, code):
    return Account.objects.for_company(company).get(code=code)


def account_tree(company):
    """
    Nested view of the chart:
    [{"account": <Account 2>, "children": [{"account": <Account 20>, ...}]}]
    """
    nodes = {}
    roots = []
    # ordered by code, so a parent is always seen before its children
    for account in Account.objects.for_company(company).order_by("code"):
        node = {"account": account, "children": []}
        nodes[account.pk] = node
        if account.parent_id and account.parent_id in nodes:
            nodes[account.parent_id]["children"].append(node)
        else:
            roots.append(node)
    return roots
