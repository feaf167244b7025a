from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone
from django.utils.dateparse import parse_date

from ledger_core.exceptions import ConsistencyFailure
from ledger_core.models import Company
from ledger_core.services.reports import build_balance_sheet


class Command(BaseCommand):
    help = "Print the balance sheet of a company and verify it balances."

    def add_arguments(self, parser):
        parser.add_argument("--company", required=True, help="Company slug.")
        parser.add_argument("--as-of", help="Report date, YYYY-MM-DD (default: today).")

    def handle(self, *args, **options):
        try:
            company = Company.objects.get(slug=options["company"])
        except Company.DoesNotExist:
            raise CommandError(f"Unknown company '{options['company']}'.")

        as_of = timezone.localdate()
        if options["as_of"]:
            as_of = parse_date(options["as_of"])
            if as_of is None:
                raise CommandError(f"Invalid date: {options['as_of']}")

        try:
            sheet = build_balance_sheet(company, as_of)
        except ConsistencyFailure as exc:
            raise CommandError(f"Balance sheet does not balance: {exc}")

        self.stdout.write(f"Balance sheet for {company} as of {as_of}")
        for title, lines, total in (
            ("Assets", sheet.assets, sheet.total_assets),
            ("Liabilities", sheet.liabilities, sheet.total_liabilities),
            ("Equity", sheet.equity, sheet.total_equity),
        ):
            self.stdout.write(f"\n{title}")
            for line in lines:
                self.stdout.write(f"  {line.code:<8} {line.name[:40]:<40} {line.balance:>16}")
            if title == "Equity":
                self.stdout.write(f"  {'':<8} {'Current result':<40} {sheet.current_result:>16}")
            self.stdout.write(f"  {'Total':<49} {total:>16}")

        self.stdout.write(self.style.SUCCESS(
            f"\nAssets {sheet.total_assets} = liabilities + equity "
            f"{sheet.total_liabilities_and_equity}"
        ))
