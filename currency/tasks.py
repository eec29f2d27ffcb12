import logging

from celery import shared_task

from currency.models import RefreshSource
from currency.services import RefreshScheduler

logger = logging.getLogger(__name__)


@shared_task
def refresh_live_rates() -> dict:
    """Beat tick: the scheduler decides whether the provider is actually called."""
    outcome = RefreshScheduler().attempt_refresh(source=RefreshSource.SCHEDULED)
    logger.info("Scheduled rate refresh finished: %s", outcome.status.value)
    return outcome.as_dict()
