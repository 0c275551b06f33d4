"""
Job registry initialization.

Builds the handler registry the worker dispatches through. Nothing is
registered at import time; the worker runner calls ``build_job_registry``
once at startup.
"""

import logging

from backoffice.v1.core.registries import JobHandlerRegistry
from backoffice.v1.costing.handlers import PostTimeEntryCostHandler
from backoffice.v1.infra.jobs.models import JobType
from backoffice.v1.quickbooks.client import QuickBooksClient
from backoffice.v1.quickbooks.handlers import SyncCustomerHandler, SyncProjectHandler

logger = logging.getLogger(__name__)


def build_job_registry(qbo_client: QuickBooksClient) -> JobHandlerRegistry:
    """Register every job handler and freeze the registry."""

    logger.info("Registering job handlers")

    registry = JobHandlerRegistry()

    # QuickBooks sync handlers
    registry.register(JobType.SYNC_CUSTOMER.value, SyncCustomerHandler(qbo_client))
    registry.register(JobType.SYNC_PROJECT.value, SyncProjectHandler(qbo_client))

    # Costing handlers
    registry.register(JobType.POST_TIME_ENTRY_COST.value, PostTimeEntryCostHandler())

    registry.ensure_registered(JobType)
    registry.freeze()

    logger.info(
        "Job handlers registered", extra={"registered_handlers": registry.list()}
    )
    return registry
