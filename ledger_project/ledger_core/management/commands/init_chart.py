from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from ledger_core.models import Company
from ledger_core.services.chart import initialize_default_chart


class Command(BaseCommand):
    help = "Install the standard chart of accounts for a company."

    # Define command-line arguments
    def add_arguments(self, parser):
        parser.add_argument(
            "--company",  # Define flag
            required=True,
            help="Slug of the company whose chart is initialized.",
        )
        parser.add_argument(
            "--name",
            help="Create the company with this name when the slug is unknown.",
        )

    @transaction.atomic
    def handle(self, *args, **options):
        # Read arguments from add_arguments()
        slug = options["company"]
        name = options["name"]

        if name:
            # get_or_create returns (object, created)
            company, created = Company.objects.get_or_create(
                slug=slug, defaults={"name": name}
            )
            if created:
                self.stdout.write(
                    self.style.SUCCESS(f"Created company: {company}"))
        else:
            try:
                company = Company.objects.get(slug=slug)
            except Company.DoesNotExist:
                raise CommandError(
                    f"Unknown company '{slug}'. Pass --name to create it.")

        count = initialize_default_chart(company)
        if count:
            self.stdout.write(
                self.style.SUCCESS(f"Created {count} accounts for {company}"))
        else:
            self.stdout.write(
                self.style.WARNING(f"{company} already has a chart, nothing to do"))
