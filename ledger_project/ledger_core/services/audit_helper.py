import logging
from typing import Optional

from django.db import transaction

from ..models import AuditLog, Company

logger = logging.getLogger(__name__)


def _json_safe(changes):
    # Decimal/date values are stored as strings
    if changes is None:
        return None
    return {
        key: (value if isinstance(value, (int, float, bool, type(None), list, dict)) else str(value))
        for key, value in changes.items()
    }


def log_action(
    *,
    action: str,
    instance,
    user=None,
    company: Optional[Company] = None,
    changes: dict | None = None,
):
    """
    Central activity logger.
    The row is written after the surrounding database transaction commits;
    a failure here is logged and never undoes the financial write.
    """

    if not company:
        company = getattr(instance, "company", None)

    payload = {
        "company": company,
        "user": user,
        "action": action,
        "object_type": instance.__class__.__name__,
        "object_id": str(instance.pk),
        "changes": _json_safe(changes),
    }

    def _write():
        try:
            AuditLog.objects.create(**payload)
        except Exception:
            logger.exception(
                "Activity log write failed for %s %s#%s",
                action, payload["object_type"], payload["object_id"],
            )

    transaction.on_commit(_write)
