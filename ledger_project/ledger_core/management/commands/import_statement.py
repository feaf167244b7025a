from pathlib import Path

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError

from ledger_core.exceptions import ConflictError
from ledger_core.models import Company
from ledger_core.services.reconciliation import auto_match, import_statement
from ledger_core.services.statement_parsers import PARSERS, parse_statement


class Command(BaseCommand):
    help = "Import a bank statement file (NBS XML, CSV or MT940)."

    def add_arguments(self, parser):
        parser.add_argument("path", help="Statement file to import.")
        parser.add_argument("--company", required=True, help="Company slug.")
        parser.add_argument(
            "--format",
            dest="fmt",
            choices=sorted(PARSERS),
            default="xml",
            help="Statement file format (default: xml).",
        )
        parser.add_argument(
            "--account-number",
            help="Bank account number for CSV files, which carry none.",
        )
        parser.add_argument(
            "--auto-match",
            action="store_true",
            help="Match receipts against open invoices right after import.",
        )

    def handle(self, *args, **options):
        try:
            company = Company.objects.get(slug=options["company"])
        except Company.DoesNotExist:
            raise CommandError(f"Unknown company '{options['company']}'.")

        path = Path(options["path"])
        if not path.is_file():
            raise CommandError(f"No such file: {path}")

        parse_options = {}
        if options["fmt"] == "csv" and options["account_number"]:
            parse_options["account_number"] = options["account_number"]

        try:
            parsed = parse_statement(path.read_bytes(), options["fmt"], **parse_options)
            statement = import_statement(company, parsed)
        except ConflictError as exc:
            raise CommandError(str(exc))
        except ValidationError as exc:
            raise CommandError("; ".join(exc.messages))

        self.stdout.write(self.style.SUCCESS(
            f"Imported statement {statement.statement_number} "
            f"({len(parsed.transactions)} transactions)"
        ))

        if options["auto_match"]:
            summary = auto_match(statement.pk)
            self.stdout.write(
                f"Matched {summary.matched}, unmatched {summary.unmatched}, "
                f"for review {summary.ambiguous}, skipped {summary.skipped}"
            )
