import logging

from celery import shared_task

logger = logging.getLogger(__name__)

# Repair jobs recompute from the ledger and applications, so a retried or
# duplicated run changes nothing the first one did not.


def _company(company_id):
    # import models lazily to avoid circular imports at module import time
    from .models import Company

    if company_id is None:
        return None
    return Company.objects.get(pk=company_id)


@shared_task
def fix_all_balances(company_id=None):
    from .services.balances import fix_all_balances as run

    return run(_company(company_id))


@shared_task
def batch_recalculate_invoice_balances(company_id=None):
    from .services.balances import batch_recalculate_invoice_balances as run

    return run(_company(company_id))


@shared_task
def batch_update_invoice_statuses(company_id=None):
    from .services.balances import batch_update_invoice_statuses as run

    return run(_company(company_id))


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def refresh_exchange_rates(self, home_currency=None):
    """
    Pull provider rates for every home currency in use (or just one).
    Provider outages are retried a few times, then left to the next run.
    """
    from .exceptions import ExternalServiceError
    from .models import Company
    from .services.currency import fetch_exchange_rates

    if home_currency:
        homes = [home_currency]
    else:
        homes = sorted(set(Company.objects.values_list("default_currency_id", flat=True)))

    stored = {}
    for home in homes:
        try:
            stored[home] = fetch_exchange_rates(home)
        except ExternalServiceError as exc:
            logger.warning("Exchange rate refresh for %s failed: %s", home, exc)
            if self.request.called_directly:
                stored[home] = 0
                continue
            raise self.retry(exc=exc)
    return stored
