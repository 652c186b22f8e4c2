"""
Delay calculations and timing logic.

This module contains functionality for:
- Due time computation for sequence steps
- Business window resolution (config, template, lead preference)
- Weekend skipping in the lead's local time
"""

import logging
from datetime import datetime, date, time, timedelta
from typing import Optional, Tuple

import pytz
from flask import current_app

from outreach_engine.models import Lead, SequenceStep, SequenceTemplate, UnsubscribePreference

logger = logging.getLogger(__name__)

# Upper bound on days scanned for the next valid window
MAX_LOOKAHEAD_DAYS = 14


def _business_window(self, template: Optional[SequenceTemplate] = None,
                     preference: Optional[UnsubscribePreference] = None) -> Tuple[int, int]:
    """Local send window in whole hours; a lead's preferred window wins over the template's."""
    start = current_app.config.get('WORKING_HOURS_START', 9)
    end = current_app.config.get('WORKING_HOURS_END', 17)

    if template is not None and template.send_window_start is not None and template.send_window_end is not None:
        start, end = template.send_window_start, template.send_window_end

    window = preference.preferred_send_window if preference is not None else None
    if window and window.get('start') is not None and window.get('end') is not None:
        start, end = int(window['start']), int(window['end'])

    return start, end


def _localize_wall_time(self, tz: pytz.BaseTzInfo, day: date, hour: int) -> datetime:
    """Attach the day's own UTC offset to a local wall-clock hour."""
    if hour >= 24:
        day, hour = day + timedelta(days=1), hour - 24
    return tz.normalize(tz.localize(datetime.combine(day, time(hour))))


def compute_next_due_at(self, step: SequenceStep, lead: Lead, now: datetime = None,
                        template: Optional[SequenceTemplate] = None,
                        preference: Optional[UnsubscribePreference] = None) -> datetime:
    """
    Return the naive UTC instant a step becomes due.

    The earliest candidate is ``now + wait_before_minutes``. With timezone
    scheduling on, the candidate is moved forward to the first moment inside
    the lead's local business window, skipping weekend days when the
    template asks for it.
    """
    now = now or datetime.utcnow()
    earliest = now + timedelta(minutes=step.wait_before_minutes or 0)
    return self._fit_to_window(step, lead, earliest, template, preference)


def compute_deferred_due_at(self, step: SequenceStep, lead: Lead, not_before: datetime,
                            template: Optional[SequenceTemplate] = None,
                            preference: Optional[UnsubscribePreference] = None) -> datetime:
    """Due time for a step pushed back by a sending limit; no wait is added on top of ``not_before``."""
    return self._fit_to_window(step, lead, not_before, template, preference)


def _fit_to_window(self, step: SequenceStep, lead: Lead, earliest: datetime,
                   template: Optional[SequenceTemplate] = None,
                   preference: Optional[UnsubscribePreference] = None) -> datetime:
    if not step.use_timezone_scheduling:
        return earliest

    if template is None:
        template = step.template
    skip_weekends = template.skip_weekends if template is not None else current_app.config.get('SKIP_WEEKENDS_DEFAULT', True)
    window_start, window_end = self._business_window(template, preference)

    tz = self._get_lead_timezone(lead)
    if self._is_business_hours(tz, earliest, window_start, window_end, skip_weekends):
        return earliest

    local_earliest = self._to_local(tz, earliest)
    day = local_earliest.date()

    for _ in range(MAX_LOOKAHEAD_DAYS):
        if skip_weekends and day.weekday() >= 5:
            day += timedelta(days=1)
            continue

        start = self._localize_wall_time(tz, day, window_start)
        end = self._localize_wall_time(tz, day, window_end)

        if local_earliest < start:
            return self._to_utc_naive(start)
        if local_earliest < end:
            return earliest
        day += timedelta(days=1)

    logger.warning(f"No business window found for lead {lead.id} within {MAX_LOOKAHEAD_DAYS} days, using {earliest}")
    return earliest
