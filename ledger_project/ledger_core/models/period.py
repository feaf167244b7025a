from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .company import Company


# ---------- Period (fiscal period) ----------
class Period(models.Model):
    """
    A closable date range of a company's books ("2025", "2025-07").
    Dates outside every defined period are open; once a period is
    closed nothing dated inside it can be created or posted.
    """

    # periods outlive nothing: removing a company with history is refused
    company = models.ForeignKey(Company, on_delete=models.PROTECT)
    name = models.CharField(max_length=50)

    # both ends inclusive
    start_date = models.DateField()
    end_date = models.DateField()

    is_closed = models.BooleanField(default=False)
    closed_at = models.DateTimeField(null=True, blank=True)
    closed_by = models.CharField(max_length=150, blank=True, default="")

    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "start_date"]),
            models.Index(fields=["company", "is_closed"]),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["company", "name"], name="uq_period_company_name"
            ),
        ]
        ordering = ("company", "start_date")

    def __str__(self):
        state = "closed" if self.is_closed else "open"
        return f"{self.company.slug} {self.name} ({state})"

    def clean(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValidationError("start_date must not be after end_date")

        # a date belongs to at most one period of a company
        if self.company_id and self.start_date and self.end_date:
            overlapping = Period.objects.filter(
                company_id=self.company_id,
                start_date__lte=self.end_date,
                end_date__gte=self.start_date,
            ).exclude(pk=self.pk)
            clash = overlapping.first()
            if clash is not None:
                raise ValidationError(
                    f"Period {self.name} overlaps {clash.name} "
                    f"({clash.start_date} to {clash.end_date})."
                )

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    @classmethod
    def covering(cls, company, date):
        """The period a date falls in, or None."""
        return cls.objects.filter(
            company=company, start_date__lte=date, end_date__gte=date
        ).first()

    @classmethod
    def is_date_closed(cls, company, date):
        return cls.objects.filter(
            company=company,
            start_date__lte=date,
            end_date__gte=date,
            is_closed=True,
        ).exists()
