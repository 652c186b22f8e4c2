"""
Core sequence engine.

SequenceEngine ties together the enrollment state machine, due-time
computation and per-channel step execution. The behaviour lives in the
sibling modules and is attached to the class below.
"""

import logging

from outreach_engine.services.mailer import Mailer
from outreach_engine.services.webhook_client import WebhookClient

logger = logging.getLogger(__name__)


class SequenceEngine:
    """Engine for enrolling leads into sequences and executing their steps."""

    def __init__(self, mailer=None, webhook_client=None):
        self.mailer = mailer  # Initialize lazily
        self.webhook_client = webhook_client

    def _get_mailer(self):
        """Get mailer instance (lazy initialization)."""
        if self.mailer is None:
            self.mailer = Mailer()
        return self.mailer

    def _get_webhook_client(self):
        """Get webhook client instance (lazy initialization)."""
        if self.webhook_client is None:
            self.webhook_client = WebhookClient()
        return self.webhook_client

    # Import functionality from other modules
    from .enrollment import (
        get_enrollment, find_active_enrollment, enroll, schedule_step, pause, resume, remove,
        complete, advance, switch_branch, _transition, _skip_pending, _mark_completed,
        _is_suppressed_fail_closed, _pick_variant
    )
    from .timezone import (
        _detect_lead_timezone, _get_lead_timezone, _to_local, _to_utc_naive,
        _is_business_hours
    )
    from .delay_calculator import (
        compute_next_due_at, compute_deferred_due_at, _fit_to_window, _business_window, _localize_wall_time
    )
    from .message_formatter import _format_message, _html_to_text, _step_content
    from .step_executor import (
        execute_step, _execute_email_step, _execute_task_step, _execute_linkedin_step,
        _execute_wait_step, _execute_conditional_step, _execute_webhook_step, _create_step_task
    )
