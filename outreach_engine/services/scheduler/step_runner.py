"""
Sweep over the scheduled-execution queue.

This module contains functionality for:
- Atomic claiming of due rows (pending -> in_progress)
- Executing sequence steps and delayed trigger actions
- Advancing, completing, pausing or deferring enrollments afterwards
- Failing claims that have been in progress for too long
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from outreach_engine.models import db, Enrollment, ScheduledExecution, SequenceTemplate, UnsubscribePreference
from outreach_engine.services import suppression

logger = logging.getLogger(__name__)


def _claim(self, execution_id: str, now: datetime) -> bool:
    """Move one row from pending to in_progress. Only the caller that changes the row may run it."""
    claimed = ScheduledExecution.query.filter(
        ScheduledExecution.id == execution_id,
        ScheduledExecution.status == 'pending'
    ).update({
        ScheduledExecution.status: 'in_progress',
        ScheduledExecution.claimed_at: now
    }, synchronize_session=False)
    db.session.commit()
    return claimed == 1


def _finish(self, execution: ScheduledExecution, status: str, now: datetime,
            result_data: Optional[Dict[str, Any]] = None, error_message: Optional[str] = None):
    execution.status = status
    execution.completed_at = now
    execution.result_data = result_data
    execution.error_message = error_message


def _expire_stale_claims(self, now: datetime) -> int:
    """Fail rows stuck in progress past the claim timeout; they are never re-sent."""
    cutoff = now - timedelta(minutes=self.claim_timeout_minutes)
    stale = ScheduledExecution.query.filter(
        ScheduledExecution.status == 'in_progress',
        ScheduledExecution.claimed_at < cutoff
    ).all()

    for execution in stale:
        self._finish(execution, 'failed', now, error_message='Claim timed out')
    db.session.commit()

    for execution in stale:
        if execution.kind != ScheduledExecution.KIND_SEQUENCE_STEP:
            continue
        enrollment = Enrollment.query.get(execution.enrollment_id)
        if enrollment is not None and enrollment.status == 'active' and enrollment.current_step == execution.step_index:
            self._get_sequence_engine().pause(enrollment, reason='step_failed', now=now)

    if stale:
        logger.warning(f"Marked {len(stale)} stale in-progress executions as failed")
    return len(stale)


def process_scheduled_steps(self, now: datetime = None, batch_size: Optional[int] = None) -> Dict[str, Any]:
    """
    Run every pending execution that is due.

    Returns ``{'processed': n, 'errors': [...]}``. Individual failures are
    recorded on their rows and reported, never raised.
    """
    now = now or datetime.utcnow()
    batch_size = batch_size or self.batch_size
    results = {'processed': 0, 'errors': []}

    try:
        self._expire_stale_claims(now)
        due_ids = [row.id for row in ScheduledExecution.query.filter(
            ScheduledExecution.status == 'pending',
            ScheduledExecution.due_at <= now
        ).order_by(ScheduledExecution.due_at.asc()).limit(batch_size).all()]
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error fetching due executions: {str(e)}")
        results['errors'].append(f"Failed to fetch executions: {str(e)}")
        return results

    for execution_id in due_ids:
        try:
            if not self._claim(execution_id, now):
                logger.info(f"Execution {execution_id} already claimed elsewhere")
                continue

            execution = ScheduledExecution.query.get(execution_id)
            if execution.kind == ScheduledExecution.KIND_TRIGGER_ACTION:
                error = self._run_trigger_action(execution, now)
            else:
                error = self._run_sequence_step(execution, now)

            results['processed'] += 1
            if error:
                results['errors'].append(f"Execution {execution_id}: {error}")
        except Exception as e:
            db.session.rollback()
            logger.exception(f"Error processing execution {execution_id}")
            results['errors'].append(f"Execution {execution_id}: {str(e)}")
            self._mark_failed(execution_id, str(e), now)

    if due_ids:
        logger.info(f"Sweep processed {results['processed']} executions with {len(results['errors'])} errors")
    return results


def _mark_failed(self, execution_id: str, message: str, now: datetime):
    try:
        ScheduledExecution.query.filter(
            ScheduledExecution.id == execution_id,
            ScheduledExecution.status == 'in_progress'
        ).update({
            ScheduledExecution.status: 'failed',
            ScheduledExecution.completed_at: now,
            ScheduledExecution.error_message: message
        }, synchronize_session=False)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Could not mark execution {execution_id} failed: {str(e)}")


def _run_trigger_action(self, execution: ScheduledExecution, now: datetime) -> Optional[str]:
    outcome = self._get_trigger_engine().fire_scheduled_action(execution, now)
    execution = ScheduledExecution.query.get(execution.id)
    status = {'success': 'sent', 'skipped': 'skipped'}.get(outcome['status'], 'failed')
    self._finish(execution, status, now, result_data=outcome.get('result_data'), error_message=outcome.get('message'))
    db.session.commit()
    return outcome.get('message') if status == 'failed' else None


def _run_sequence_step(self, execution: ScheduledExecution, now: datetime) -> Optional[str]:
    engine = self._get_sequence_engine()
    enrollment = Enrollment.query.get(execution.enrollment_id)

    if enrollment is None or enrollment.status != 'active':
        status = enrollment.status if enrollment else 'missing'
        self._finish(execution, 'skipped', now, error_message=f"Enrollment is {status}")
        db.session.commit()
        return None

    if execution.step_index != enrollment.current_step:
        self._finish(execution, 'skipped', now, error_message='Enrollment moved past this step')
        db.session.commit()
        return None

    lead = enrollment.lead
    template = enrollment.template
    suppressed = engine._is_suppressed_fail_closed(enrollment.org_id, lead, enrollment.template_id, now)
    reason = f"suppressed: {suppressed}" if suppressed else _pause_rule_reason(enrollment, template)
    if reason:
        self._finish(execution, 'skipped', now, error_message=reason)
        db.session.commit()
        engine.pause(enrollment, reason=reason, now=now)
        return None

    step = template.get_step(execution.step_index)
    if step is None:
        self._finish(execution, 'skipped', now, error_message='Step no longer exists')
        engine._mark_completed(enrollment, now)
        db.session.commit()
        return None

    if _daily_limit_reached(template, now):
        tomorrow = datetime.combine(now.date() + timedelta(days=1), datetime.min.time())
        self._defer(execution, step, enrollment, tomorrow)
        logger.info(f"Daily limit of {template.daily_limit} reached for template {template.id}, "
                    f"deferred to {execution.due_at}")
        return None

    if step.channel == 'email' and suppression.weekly_email_cap_reached(enrollment.org_id, lead.id, now):
        self._defer(execution, step, enrollment, now + timedelta(days=1))
        logger.info(f"Weekly email cap reached for lead {lead.id}, deferred to {execution.due_at}")
        return None

    try:
        result = engine.execute_step(enrollment, step, now=now)
    except Exception as e:
        db.session.rollback()
        message = getattr(e, 'message', None) or str(e)
        execution = ScheduledExecution.query.get(execution.id)
        enrollment = Enrollment.query.get(execution.enrollment_id)
        self._finish(execution, 'failed', now, error_message=message)
        db.session.commit()
        if enrollment.status == 'active':
            engine.pause(enrollment, reason='step_failed', now=now)
        logger.error(f"Step {execution.step_index} failed for enrollment {enrollment.id}: {message}")
        return message

    self._finish(execution, 'sent', now, result_data=result)
    enrollment.last_step_at = now

    if result.get('complete'):
        engine._mark_completed(enrollment, now)
    else:
        next_index = result.get('next_step', execution.step_index + 1)
        enrollment.current_step = next_index
        if engine.schedule_step(enrollment, next_index, now=now) is None:
            engine._mark_completed(enrollment, now)

    db.session.commit()
    return None


def _defer(self, execution: ScheduledExecution, step, enrollment: Enrollment, not_before: datetime):
    """Put a claimed step back in the queue at the first valid send time on or after ``not_before``."""
    engine = self._get_sequence_engine()
    preference = UnsubscribePreference.query.filter_by(org_id=enrollment.org_id, lead_id=enrollment.lead_id).first()
    execution.status = 'pending'
    execution.claimed_at = None
    execution.due_at = engine.compute_deferred_due_at(step, enrollment.lead, not_before,
                                                      template=enrollment.template, preference=preference)
    db.session.commit()


def _pause_rule_reason(enrollment: Enrollment, template: SequenceTemplate) -> Optional[str]:
    if template.pause_on_reply and enrollment.replies_received:
        return 'Lead replied to sequence'
    if template.pause_on_meeting and enrollment.meetings_booked:
        return 'Meeting booked with lead'
    return None


def _daily_limit_reached(template: SequenceTemplate, now: datetime) -> bool:
    """True when the template already sent ``daily_limit`` steps since UTC midnight."""
    if not template.daily_limit:
        return False
    day_start = datetime.combine(now.date(), datetime.min.time())
    sent_today = ScheduledExecution.query.join(
        Enrollment, Enrollment.id == ScheduledExecution.enrollment_id
    ).filter(
        Enrollment.template_id == template.id,
        ScheduledExecution.kind == ScheduledExecution.KIND_SEQUENCE_STEP,
        ScheduledExecution.status == 'sent',
        ScheduledExecution.completed_at >= day_start
    ).count()
    return sent_today >= template.daily_limit
