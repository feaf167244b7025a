from django.db import models


# ---------- Tenant ----------
class Company(models.Model):
    """
    Owner of a set of books. Accounts, entries, periods, statements and
    invoices all hang off one company and are never shared.
    """

    name = models.CharField(max_length=200)
    # used by management commands: --company acme
    slug = models.SlugField(max_length=80, unique=True)
    # functional currency of the books; statements default to it
    currency_code = models.CharField(max_length=3, default="RSD")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("name",)
        verbose_name_plural = "companies"

    def __str__(self):
        return self.name
