"""
Bank statement readers.

Supported inputs:
  xml    NBS "IzvodBanke" export used by Serbian banks
  csv    semicolon separated, Serbian or English headers, 1.234,56 amounts
  mt940  SWIFT customer statement

Every parser returns a ParsedStatement; nothing is written to the
database here.
"""
import csv
import hashlib
import io
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from ..exceptions import StatementParseError

ZERO = Decimal("0.00")
CENT = Decimal("0.01")
LEGACY_ENCODING = "cp1250"

CREDIT = "CREDIT"
DEBIT = "DEBIT"


@dataclass
class ParsedTransaction:
    transaction_date: date
    amount: Decimal  # always positive
    tx_type: str  # CREDIT or DEBIT
    value_date: Optional[date] = None
    reference: str = ""
    description: str = ""
    partner_name: str = ""
    partner_account: str = ""


@dataclass
class ParsedStatement:
    account_number: str
    statement_number: str
    statement_date: date
    bank_name: str = ""
    currency_code: str = "RSD"
    from_date: Optional[date] = None
    to_date: Optional[date] = None
    opening_balance: Decimal = ZERO
    closing_balance: Decimal = ZERO
    transactions: List[ParsedTransaction] = field(default_factory=list)

    @property
    def total_debit(self):
        return sum((t.amount for t in self.transactions if t.tx_type == DEBIT), ZERO)

    @property
    def total_credit(self):
        return sum((t.amount for t in self.transactions if t.tx_type == CREDIT), ZERO)


# ---------- helpers ----------

_DOTTED_DATE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})\.?$")
_SLASHED_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def parse_date(value):
    """ISO (2025-01-15), Serbian (15.01.2025.) or slashed (15/01/2025)."""
    text = (value or "").strip()
    if not text:
        raise StatementParseError("Missing date.")
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    match = _DOTTED_DATE.match(text) or _SLASHED_DATE.match(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        try:
            return date(year, month, day)
        except ValueError:
            pass
    raise StatementParseError(f"Unrecognized date: {value!r}")


def parse_amount(value):
    """Decimal from "1.234,56", "1,234.56", "1234,56" or "1234.56"."""
    text = re.sub(r"[^\d.,\-]", "", value or "")
    if not text:
        return ZERO
    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")  # 1.234,56
        else:
            text = text.replace(",", "")  # 1,234.56
    elif "," in text:
        text = text.replace(",", ".")
    try:
        return Decimal(text).quantize(CENT)
    except InvalidOperation:
        raise StatementParseError(f"Unrecognized amount: {value!r}")


def content_fingerprint(content):
    """Stable statement number for files that carry none."""
    raw = content.encode("utf-8") if isinstance(content, str) else content
    return hashlib.sha256(raw).hexdigest()[:12].upper()


def _decode(content):
    if not isinstance(content, bytes):
        return content
    try:
        return content.decode("utf-8-sig")  # Handle BOM
    except UnicodeDecodeError:
        pass
    # domestic bank exports are often windows-1250
    try:
        return content.decode(LEGACY_ENCODING)
    except UnicodeDecodeError:
        raise StatementParseError(
            f"Statement is neither UTF-8 nor {LEGACY_ENCODING} text.")


def _direction(debit, credit):
    if credit > 0:
        return credit, CREDIT
    return debit, DEBIT


def _finish(statement):
    # period from the transactions when the header has none
    dates = [t.transaction_date for t in statement.transactions]
    if dates:
        statement.from_date = statement.from_date or min(dates)
        statement.to_date = statement.to_date or max(dates)
    # zero lines carry no money and cannot be stored
    statement.transactions = [t for t in statement.transactions if t.amount > 0]
    return statement


# ---------- NBS XML ----------

def _text(node, tag, default=""):
    found = node.find(tag)
    if found is None or found.text is None:
        return default
    return found.text.strip()


def parse_xml(content):
    try:
        root = ET.fromstring(content)
    except ET.ParseError as exc:
        raise StatementParseError(f"Invalid XML statement: {exc}")

    if root.tag != "IzvodBanke":
        raise StatementParseError("Invalid XML statement: root must be IzvodBanke.")
    header = root.find("ZaglavljeIzvoda")
    if header is None:
        raise StatementParseError("Invalid XML statement: missing ZaglavljeIzvoda.")

    account_number = _text(header, "BrojRacuna")
    statement_number = _text(header, "BrojIzvoda")
    if not account_number or not statement_number:
        raise StatementParseError("XML statement needs BrojRacuna and BrojIzvoda.")

    statement = ParsedStatement(
        account_number=account_number,
        statement_number=statement_number,
        statement_date=parse_date(_text(header, "DatumIzvoda")),
        bank_name=_text(header, "NazivBanke"),
        currency_code=_text(header, "Valuta", "RSD") or "RSD",
        from_date=parse_date(_text(header, "DatumOd")) if _text(header, "DatumOd") else None,
        to_date=parse_date(_text(header, "DatumDo")) if _text(header, "DatumDo") else None,
        opening_balance=parse_amount(_text(header, "PocetnoStanje", "0")),
        closing_balance=parse_amount(_text(header, "KrajnjeStanje", "0")),
    )

    for item in root.iterfind("StavkeIzvoda/Stavka"):
        amount, tx_type = _direction(
            parse_amount(_text(item, "Duguje", "0")),
            parse_amount(_text(item, "Potrazuje", "0")),
        )
        tx_date = parse_date(_text(item, "DatumTransakcije"))
        value_date = _text(item, "DatumValute")
        statement.transactions.append(ParsedTransaction(
            transaction_date=tx_date,
            value_date=parse_date(value_date) if value_date else tx_date,
            amount=amount,
            tx_type=tx_type,
            reference=_text(item, "Poziv"),
            description=_text(item, "Opis"),
            partner_name=_text(item, "NazivPartnera"),
            partner_account=_text(item, "RacunPartnera"),
        ))
    return _finish(statement)


# ---------- CSV ----------

# header aliases → field
CSV_COLUMNS = {
    "transaction_date": ("datum", "date"),
    "value_date": ("datumvalute", "valuedate"),
    "reference": ("poziv", "reference"),
    "description": ("opis", "description"),
    "debit": ("duguje", "debit"),
    "credit": ("potrazuje", "credit"),
    "partner_name": ("partner", "naziv"),
    "partner_account": ("racun", "account"),
}


def _column(row, name):
    for alias in CSV_COLUMNS[name]:
        value = row.get(alias)
        if value:
            return value.strip()
    return ""


def parse_csv(content, account_number="CSV-IMPORT", statement_number=None,
              currency_code="RSD"):
    text = _decode(content)
    reader = csv.DictReader(io.StringIO(text), delimiter=";")
    if not reader.fieldnames:
        raise StatementParseError("Empty CSV statement.")
    # "Datum Valute" and "datumvalute" are the same column
    reader.fieldnames = [re.sub(r"\s+", "", name or "").lower() for name in reader.fieldnames]
    if not any(alias in reader.fieldnames for alias in CSV_COLUMNS["transaction_date"]):
        raise StatementParseError("CSV statement has no date column.")

    transactions = []
    for number, row in enumerate(reader, start=2):
        if not any((value or "").strip() for value in row.values() if isinstance(value, str)):
            continue  # blank line
        try:
            tx_date = parse_date(_column(row, "transaction_date"))
            value_date = _column(row, "value_date")
            amount, tx_type = _direction(
                parse_amount(_column(row, "debit")),
                parse_amount(_column(row, "credit")),
            )
        except StatementParseError as exc:
            raise StatementParseError(f"CSV line {number}: {exc.message}")
        transactions.append(ParsedTransaction(
            transaction_date=tx_date,
            value_date=parse_date(value_date) if value_date else tx_date,
            amount=amount,
            tx_type=tx_type,
            reference=_column(row, "reference"),
            description=_column(row, "description"),
            partner_name=_column(row, "partner_name"),
            partner_account=_column(row, "partner_account"),
        ))

    if not transactions:
        raise StatementParseError("CSV statement has no transactions.")

    statement = ParsedStatement(
        account_number=account_number,
        statement_number=statement_number or f"CSV-{content_fingerprint(text)}",
        statement_date=max(t.transaction_date for t in transactions),
        bank_name="CSV Import",
        currency_code=currency_code,
        transactions=transactions,
    )
    statement.closing_balance = statement.total_credit - statement.total_debit
    return _finish(statement)


# ---------- MT940 ----------

_TAG = re.compile(r"^:(\d{2}[A-Z]?):(.*)$")
# :61:YYMMDD[MMDD](R)D|C[funds code]amount<type><reference>[//bank ref]
_STATEMENT_LINE = re.compile(
    r"^(?P<date>\d{6})(?P<entry>\d{4})?(?P<mark>R?[DC])[A-Z]?"
    r"(?P<amount>\d+(?:,\d{0,2})?)(?P<type>[NSF][A-Z0-9]{3})?(?P<rest>.*)$"
)
_BALANCE = re.compile(r"^(?P<mark>[DC])(?P<date>\d{6})(?P<currency>[A-Z]{3})(?P<amount>[\d,]+)$")


def _mt940_date(yymmdd):
    try:
        return datetime.strptime(yymmdd, "%y%m%d").date()
    except ValueError:
        raise StatementParseError(f"Unrecognized MT940 date: {yymmdd!r}")


def _mt940_fields(text):
    """[(tag, value)], continuation lines folded into the previous field."""
    fields = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("-}") or line.startswith("{"):
            continue
        match = _TAG.match(line)
        if match:
            fields.append([match.group(1), match.group(2).strip()])
        elif fields:
            fields[-1][1] = f"{fields[-1][1]} {line}"
    return [(tag, value) for tag, value in fields]


def _mt940_balance(value):
    match = _BALANCE.match(value.replace(" ", ""))
    if not match:
        raise StatementParseError(f"Unrecognized MT940 balance: {value!r}")
    amount = parse_amount(match.group("amount"))
    if match.group("mark") == "D":
        amount = -amount
    return amount, _mt940_date(match.group("date")), match.group("currency")


def parse_mt940(content):
    text = _decode(content)
    fields = _mt940_fields(text)
    if not fields:
        raise StatementParseError("Empty MT940 statement.")

    account_number = ""
    statement_number = ""
    currency = "RSD"
    opening = closing = ZERO
    statement_date = None
    transactions = []
    current = None

    for tag, value in fields:
        if tag == "25":
            account_number = value
        elif tag == "28C":
            statement_number = value
        elif tag in ("60F", "60M"):
            opening, _, currency = _mt940_balance(value)
        elif tag in ("62F", "62M"):
            closing, statement_date, currency = _mt940_balance(value)
        elif tag == "61":
            match = _STATEMENT_LINE.match(value)
            if not match:
                raise StatementParseError(f"Unrecognized MT940 :61: line: {value!r}")
            tx_date = _mt940_date(match.group("date"))
            # RC (reversed credit) takes money out, RD puts it back
            mark = match.group("mark")
            is_credit = mark in ("C", "RD")
            reference = match.group("rest").split("//")[0].strip()
            current = ParsedTransaction(
                transaction_date=tx_date,
                value_date=tx_date,
                amount=parse_amount(match.group("amount")),
                tx_type=CREDIT if is_credit else DEBIT,
                reference="" if reference == "NONREF" else reference,
            )
            transactions.append(current)
        elif tag == "86" and current is not None:
            current.description = value

    if not account_number:
        raise StatementParseError("MT940 statement has no :25: account field.")

    statement = ParsedStatement(
        account_number=account_number,
        statement_number=statement_number or f"MT940-{content_fingerprint(text)}",
        statement_date=statement_date or (
            max(t.transaction_date for t in transactions) if transactions else date.today()
        ),
        bank_name="MT940 Import",
        currency_code=currency,
        opening_balance=opening,
        closing_balance=closing,
        transactions=transactions,
    )
    return _finish(statement)


PARSERS = {
    "xml": parse_xml,
    "csv": parse_csv,
    "mt940": parse_mt940,
}


def parse_statement(content, fmt, **options):
    try:
        parser = PARSERS[fmt.lower()]
    except KeyError:
        raise StatementParseError(f"Unsupported statement format: {fmt}")
    return parser(content, **options)
