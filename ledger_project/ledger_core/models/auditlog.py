from django.conf import settings
from django.db import models

from ..managers import TenantManager
from .entitymembership import Company


class AuditLog(models.Model):
    """Activity log: who did what to which record."""

    company = models.ForeignKey(
        Company,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True, blank=True, on_delete=models.SET_NULL
    )
    action = models.CharField(max_length=50)  # create, update, delete, apply...
    object_type = models.CharField(max_length=100)  # "Transaction", "Account"
    object_id = models.CharField(max_length=100)
    changes = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        db_table = "activity_logs"
        indexes = [
            models.Index(fields=["company", "user"], name="ledger_core_log_user_idx"),
            models.Index(fields=["company", "created_at"], name="ledger_core_log_date_idx"),
        ]

    def __str__(self):
        return f"{self.action} {self.object_type}#{self.object_id}"
