from __future__ import annotations

import logging

from workforce_summary.logging_utils import configure_logging
from workforce_summary.services.monthly import MonthlySummaryService
from workforce_summary.services.time_tracking import TimeTrackingService
from workforce_summary.settings import Settings, get_settings
from workforce_summary.sources import WorkforceSource

logger = logging.getLogger("workforce_summary.startup")


def create_summary_service(source: WorkforceSource, settings: Settings | None = None) -> MonthlySummaryService:
    """Install logging and wire the summary service with time tracking when it is configured."""
    settings = settings or get_settings()
    configure_logging(settings)
    time_tracking = TimeTrackingService.from_settings(settings)
    logger.info(
        "summary_service_created",
        extra={
            "app_name": settings.app_name,
            "default_timezone": settings.default_timezone,
            "time_tracking_enabled": time_tracking.enabled,
        },
    )
    return MonthlySummaryService(source, settings=settings, time_tracking=time_tracking)
