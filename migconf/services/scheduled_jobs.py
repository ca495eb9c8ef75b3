"""
Migration Conference Platform
Scheduled Jobs.

Jobs:
    - conference_notification_sweep: link expiry, failed email and stale pending alerts
    - reminder_dispatch: daily reminder emails for stale pending conferences
"""

from __future__ import annotations

import logging
from typing import Any

from migconf.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


@register_job("conference_notification_sweep")
def conference_notification_sweep(app) -> dict[str, Any]:
    """Raise deduplicated alerts for expiring links, failed emails and stale conferences."""
    from migconf.services.notification_engine import sweep

    return sweep()


@register_job("reminder_dispatch")
def reminder_dispatch(app) -> dict[str, Any]:
    """Email clients whose conferences have been pending past the reminder threshold."""
    from migconf.services.notification_engine import dispatch_reminders

    return dispatch_reminders()
