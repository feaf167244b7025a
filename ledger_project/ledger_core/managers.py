from django.db import models

# -----------------------------------------
# Enforce tenant scoping across all models
# that belong to a company
# -----------------------------------------
# Define subclass of Django’s QuerySet
class TenantQuerySet(models.QuerySet):
    def for_company(self, company):         # Add queryset helper
        return self.filter(company=company) # Apply filter


# Attach TenantQuerySet to .objects
class TenantManager(models.Manager):

    def get_queryset(self): # ensure every model gets TenantQuerySet(so .for_company() is always available)
        return TenantQuerySet(self.model, using=self._db)

    def for_company(self, company): # can call for_company() directly on objects
        return self.get_queryset().for_company(company)


# Lines that reached the ledger (parent entry is posted)
class JournalLineQuerySet(TenantQuerySet):
    def posted(self):
        return self.filter(journal__status="POSTED")

    def as_of(self, as_of=None):
        qs = self.posted()
        if as_of is not None:
            qs = qs.filter(journal__date__lte=as_of)
        return qs


class JournalLineManager(TenantManager):
    def get_queryset(self):
        return JournalLineQuerySet(self.model, using=self._db)

    def posted(self):
        return self.get_queryset().posted()


# Invoices a bank receipt may settle
class InvoiceQuerySet(TenantQuerySet):
    def open(self):
        return self.filter(
            status__in=["SENT", "DELIVERED", "ACCEPTED"],
            payment_status__in=["UNPAID", "PARTIAL"],
        )


class InvoiceManager(TenantManager):
    def get_queryset(self):
        return InvoiceQuerySet(self.model, using=self._db)

    def open(self):
        return self.get_queryset().open()
