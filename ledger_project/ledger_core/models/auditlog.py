from django.db import models
from ..managers import TenantManager, TenantQuerySet
from .company import Company


class AuditAction(models.TextChoices):
    CREATE = "create", "Create"
    UPDATE = "update", "Update"
    DELETE = "delete", "Delete"
    POST = "post", "Post"
    REVERSE = "reverse", "Reverse"
    DEACTIVATE = "deactivate", "Deactivate"
    REACTIVATE = "reactivate", "Reactivate"
    CLOSE = "close", "Close period"
    IMPORT = "import", "Import statement"
    MATCH = "match", "Match"
    UNMATCH = "unmatch", "Unmatch"
    IGNORE = "ignore", "Ignore"
    PAYMENT = "payment", "Payment"


class AuditLogQuerySet(TenantQuerySet):
    def for_object(self, instance):
        """History of one row, newest first."""
        return self.filter(
            object_type=instance.__class__.__name__,
            object_id=str(instance.pk),
        )


class AuditLogManager(TenantManager):
    def get_queryset(self):
        return AuditLogQuerySet(self.model, using=self._db)

    def for_object(self, instance):
        return self.get_queryset().for_object(instance)


# ---------- Audit trail ----------
class AuditLog(models.Model):
    """
    Append-only record of every ledger and reconciliation state change.
    Rows are written in the same transaction as the change they describe.
    """

    # null for events not tied to one tenant
    company = models.ForeignKey(
        Company, null=True, blank=True, on_delete=models.SET_NULL)
    # username, or "system" for tasks and import commands
    actor = models.CharField(max_length=150, blank=True, default="system")
    action = models.CharField(max_length=20, choices=AuditAction.choices)
    # model name and primary key of the changed row
    object_type = models.CharField(max_length=100)
    object_id = models.CharField(max_length=100)
    # what changed; amounts are stored as strings
    changes = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = AuditLogManager()

    class Meta:
        ordering = ("-created_at", "-id")
        indexes = [
            models.Index(fields=["company", "object_type", "object_id"]),
            models.Index(fields=["company", "created_at"]),
        ]

    def __str__(self):
        return (
            f"[{self.created_at:%Y-%m-%d %H:%M}] {self.actor} "
            f"{self.action} {self.object_type}({self.object_id})"
        )
