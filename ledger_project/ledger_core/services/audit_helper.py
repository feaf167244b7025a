from typing import Optional
from ..models import AuditLog, Company

SYSTEM_ACTOR = "system"


def actor_name(user) -> str:
    """Accept a user object, a username or None."""
    if user is None:
        return SYSTEM_ACTOR
    if isinstance(user, str):
        return user or SYSTEM_ACTOR
    return getattr(user, "get_username", lambda: str(user))()


def log_action(
    *,
    action: str,
    instance,
    actor=None,
    company: Optional[Company] = None,
    changes: dict | None = None,
):
    """
    Central audit logger.
    Runs inside the caller's transaction, so the row rolls back with it.
    """

    if not company:
        company = getattr(instance, "company", None)

    return AuditLog.objects.create(
        company=company,
        actor=actor_name(actor),
        action=action,
        object_type=instance.__class__.__name__,
        object_id=str(instance.pk),
        changes=changes,
    )
