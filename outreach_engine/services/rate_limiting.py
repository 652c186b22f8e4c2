"""
Cooldown and quota tracking for triggers.

The execution log is the only source of truth for cooldown and per-lead
quota checks. Checks and increments are not one transaction, so concurrent
events may overshoot ``max_triggers_total`` by a small bounded amount.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from outreach_engine.models import db, Trigger, TriggerExecutionLog

logger = logging.getLogger(__name__)


def check_cooldown(trigger_id: str, lead_id: Optional[str], hours: int, now: datetime = None) -> bool:
    """Return True when the trigger may fire for this lead again."""
    if not hours or hours <= 0:
        return True

    now = now or datetime.utcnow()
    last_success = db.session.query(db.func.max(TriggerExecutionLog.created_at)).filter(
        TriggerExecutionLog.trigger_id == trigger_id,
        TriggerExecutionLog.lead_id == lead_id,
        TriggerExecutionLog.status == 'success'
    ).scalar()

    if last_success is None:
        return True

    allowed = last_success <= now - timedelta(hours=hours)
    if not allowed:
        logger.info(f"Trigger {trigger_id} in cooldown for lead {lead_id} (last fired {last_success})")
    return allowed


def check_quota(trigger: Trigger) -> bool:
    """Return True while the trigger is under its total fire ceiling."""
    if trigger.max_triggers_total is None:
        return True
    return (trigger.total_triggers or 0) < trigger.max_triggers_total


def check_lead_quota(trigger: Trigger, lead_id: Optional[str]) -> bool:
    """Return True while the trigger has fired fewer than max_triggers_per_lead times for the lead."""
    if trigger.max_triggers_per_lead is None or lead_id is None:
        return True

    fired = TriggerExecutionLog.query.filter_by(
        trigger_id=trigger.id,
        lead_id=lead_id,
        status='success'
    ).count()
    return fired < trigger.max_triggers_per_lead


def record_success(trigger_id: str, now: datetime = None):
    """Atomically bump the trigger's fire counter and last-fired timestamp."""
    now = now or datetime.utcnow()
    Trigger.query.filter(Trigger.id == trigger_id).update({
        Trigger.total_triggers: Trigger.total_triggers + 1,
        Trigger.last_triggered_at: now
    }, synchronize_session=False)
