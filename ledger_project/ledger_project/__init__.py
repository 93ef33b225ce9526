# Celery instance lives in ledger_project/celery.py and reads its
# configuration from the Django settings (CELERY_ prefix)
from .celery import celery_app

__all__ = ("celery_app",)

""" Workers are started with "celery -A ledger_project worker -l info".
    The repair jobs in ledger_core.tasks are picked up by autodiscovery. """
