"""System adapters"""

import logging

from syncbridge.adapters.base import (
    AdapterConnectionError,
    AdapterRegistry,
    AdapterRequestError,
    SyncAdapter,
)

logger = logging.getLogger(__name__)

__all__ = [
    "AdapterConnectionError",
    "AdapterRegistry",
    "AdapterRequestError",
    "SyncAdapter",
    "build_registry",
]


def build_registry(settings) -> AdapterRegistry:
    """Register every adapter that has enough configuration to run."""
    from syncbridge.adapters.azure_devops import AzureDevOpsAdapter
    from syncbridge.adapters.mock import MockAdapter
    from syncbridge.adapters.servicedesk_plus import ServiceDeskPlusAdapter

    registry = AdapterRegistry()
    http_options = {
        "timeout": settings.request_timeout_seconds,
        "batch_size": settings.batch_size,
    }

    if settings.mock_crm_enabled:
        registry.register(
            MockAdapter("MockCRM", seed=settings.mock_crm_seed, batch_size=settings.batch_size)
        )

    if (
        settings.azure_devops_organization_url
        and settings.azure_devops_personal_access_token
        and settings.azure_devops_project
    ):
        registry.register(
            AzureDevOpsAdapter(
                settings.azure_devops_organization_url,
                settings.azure_devops_personal_access_token,
                settings.azure_devops_project,
                **http_options,
            )
        )
    else:
        logger.info("Azure DevOps adapter not configured")

    if settings.servicedesk_plus_base_url and settings.servicedesk_plus_technician_key:
        registry.register(
            ServiceDeskPlusAdapter(
                settings.servicedesk_plus_base_url,
                settings.servicedesk_plus_technician_key,
                **http_options,
            )
        )
    else:
        logger.info("ServiceDesk Plus adapter not configured")

    return registry
