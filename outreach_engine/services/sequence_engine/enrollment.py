"""
Enrollment state machine.

    active -> paused | completed | removed
    paused -> active | removed

completed and removed are terminal. Every transition that stops an
enrollment leaves its pending work in place for paused enrollments (the
sweep skips them) and marks it skipped for completed or removed ones.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError

from outreach_engine.models import (
    db, ABTest, Enrollment, Lead, ScheduledExecution, SequenceTemplate, UnsubscribePreference
)
from outreach_engine.services import suppression
from outreach_engine.services.variants import assign_variant
from outreach_engine.utils.exceptions import InvalidStateTransition, NotFound, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    'active': ('paused', 'completed', 'removed'),
    'paused': ('active', 'removed'),
    'completed': (),
    'removed': (),
}


def _transition(self, enrollment: Enrollment, target: str):
    if target not in ALLOWED_TRANSITIONS.get(enrollment.status, ()):
        raise InvalidStateTransition(enrollment.status, target)
    enrollment.status = target


def get_enrollment(self, org_id: str, enrollment_id: str) -> Enrollment:
    enrollment = Enrollment.query.filter_by(id=enrollment_id, org_id=org_id).first()
    if not enrollment:
        raise NotFound('Enrollment', enrollment_id)
    return enrollment


def find_active_enrollment(self, org_id: str, lead_id: str, template_id: Optional[str] = None) -> Optional[Enrollment]:
    """Find the lead's active enrollment, in a given template or the most recent one."""
    query = Enrollment.query.filter_by(org_id=org_id, lead_id=lead_id, status='active')
    if template_id:
        query = query.filter_by(template_id=template_id)
    return query.order_by(Enrollment.enrolled_at.desc()).first()


def _is_suppressed_fail_closed(self, org_id: str, lead: Lead, template_id: str, now: datetime) -> Optional[str]:
    try:
        return suppression.suppression_reason(org_id, lead.id, lead.email, template_id=template_id, now=now)
    except Exception as e:
        logger.error(f"Suppression check failed for lead {lead.id}, treating as suppressed: {str(e)}")
        return 'Error checking suppression status'


def _pick_variant(self, template_id: str, lead_id: str) -> Optional[str]:
    test = ABTest.query.filter_by(template_id=template_id, status='running').first()
    if not test or not test.variants:
        return None
    try:
        return assign_variant(lead_id, test.id, test.variants)
    except ValueError as e:
        logger.warning(f"A/B test {test.id} has no assignable variants: {str(e)}")
        return None


def enroll(self, org_id: str, lead_id: str, template_id: str, source: str = 'manual',
           now: datetime = None) -> Dict[str, Any]:
    """
    Enroll a lead into a sequence template and schedule its first step.

    Returns a result dict whose ``status`` is ``enrolled``, ``suppressed`` or
    ``duplicate``. Suppressed and duplicate outcomes change nothing.
    """
    now = now or datetime.utcnow()

    lead = Lead.query.filter_by(id=lead_id, org_id=org_id).first()
    if not lead:
        raise NotFound('Lead', lead_id)

    template = SequenceTemplate.query.filter_by(id=template_id, org_id=org_id).first()
    if not template:
        raise NotFound('Sequence template', template_id)
    if template.status == 'archived':
        raise ValidationError("Cannot enroll into an archived sequence", {'template_id': 'archived'})
    if not template.steps:
        raise ValidationError("Cannot enroll into a sequence without steps", {'template_id': 'no steps'})

    reason = self._is_suppressed_fail_closed(org_id, lead, template_id, now)
    if reason:
        logger.info(f"Not enrolling lead {lead_id} into {template_id}: {reason}")
        return {'success': False, 'status': 'suppressed', 'reason': reason}

    existing = self.find_active_enrollment(org_id, lead_id, template_id)
    if existing:
        logger.info(f"Lead {lead_id} already has active enrollment {existing.id} in {template_id}")
        return {'success': False, 'status': 'duplicate', 'enrollment': existing.to_dict()}

    enrollment = Enrollment(
        org_id=org_id,
        lead_id=lead_id,
        template_id=template_id,
        status='active',
        current_step=0,
        variant_id=self._pick_variant(template_id, lead_id),
        source=source,
        enrolled_at=now
    )
    db.session.add(enrollment)
    try:
        db.session.flush()
    except IntegrityError:
        # Lost a race against a concurrent enrollment of the same lead
        db.session.rollback()
        existing = self.find_active_enrollment(org_id, lead_id, template_id)
        return {'success': False, 'status': 'duplicate',
                'enrollment': existing.to_dict() if existing else None}

    execution = self.schedule_step(enrollment, 0, now=now, lead=lead, template=template)
    db.session.commit()

    logger.info(f"Enrolled lead {lead_id} into {template_id} (enrollment {enrollment.id}, first step due {execution.due_at})")
    return {'success': True, 'status': 'enrolled', 'enrollment': enrollment.to_dict(),
            'next_due_at': execution.due_at.isoformat()}


def schedule_step(self, enrollment: Enrollment, step_index: int, now: datetime = None,
                  lead: Optional[Lead] = None, template: Optional[SequenceTemplate] = None) -> Optional[ScheduledExecution]:
    """Queue the step at ``step_index`` for an enrollment. Returns None past the last step."""
    now = now or datetime.utcnow()
    template = template or enrollment.template
    lead = lead or enrollment.lead

    step = template.get_step(step_index)
    if step is None:
        return None

    preference = UnsubscribePreference.query.filter_by(org_id=enrollment.org_id, lead_id=lead.id).first()
    due_at = self.compute_next_due_at(step, lead, now, template=template, preference=preference)

    execution = ScheduledExecution(
        org_id=enrollment.org_id,
        kind=ScheduledExecution.KIND_SEQUENCE_STEP,
        enrollment_id=enrollment.id,
        step_index=step_index,
        channel=step.channel,
        lead_id=lead.id,
        due_at=due_at,
        status='pending'
    )
    db.session.add(execution)
    return execution


def _skip_pending(self, enrollment: Enrollment, reason: str, now: datetime):
    ScheduledExecution.query.filter(
        ScheduledExecution.enrollment_id == enrollment.id,
        ScheduledExecution.status == 'pending'
    ).update({
        ScheduledExecution.status: 'skipped',
        ScheduledExecution.completed_at: now,
        ScheduledExecution.error_message: reason
    }, synchronize_session=False)


def pause(self, enrollment: Enrollment, reason: str = 'Paused', now: datetime = None) -> Enrollment:
    now = now or datetime.utcnow()
    self._transition(enrollment, 'paused')
    enrollment.paused_at = now
    enrollment.paused_reason = reason
    db.session.commit()
    logger.info(f"Paused enrollment {enrollment.id}: {reason}")
    return enrollment


def resume(self, enrollment: Enrollment, now: datetime = None) -> Enrollment:
    """Resume a paused enrollment, re-queuing its current step if nothing is pending."""
    now = now or datetime.utcnow()
    if enrollment.status != 'paused':
        raise InvalidStateTransition(enrollment.status, 'active')

    lead = enrollment.lead
    reason = self._is_suppressed_fail_closed(enrollment.org_id, lead, enrollment.template_id, now)
    if reason:
        raise ValidationError(f"Cannot resume enrollment: {reason}", {'lead_id': 'suppressed'})

    self._transition(enrollment, 'active')
    enrollment.paused_at = None
    enrollment.paused_reason = None
    # Engagement seen before the resume no longer trips the template pause rules
    enrollment.replies_received = 0
    enrollment.meetings_booked = 0
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError("Lead already has an active enrollment in this sequence",
                              {'enrollment_id': 'duplicate active enrollment'})

    pending = ScheduledExecution.query.filter_by(
        enrollment_id=enrollment.id,
        step_index=enrollment.current_step,
        status='pending'
    ).first()
    if not pending:
        if self.schedule_step(enrollment, enrollment.current_step, now=now) is None:
            self._mark_completed(enrollment, now)

    db.session.commit()
    logger.info(f"Resumed enrollment {enrollment.id} at step {enrollment.current_step}")
    return enrollment


def remove(self, enrollment: Enrollment, reason: str = 'Removed', now: datetime = None) -> Enrollment:
    now = now or datetime.utcnow()
    self._transition(enrollment, 'removed')
    enrollment.removed_at = now
    enrollment.removed_reason = reason
    self._skip_pending(enrollment, f"Enrollment removed: {reason}", now)
    db.session.commit()
    logger.info(f"Removed enrollment {enrollment.id}: {reason}")
    return enrollment


def _mark_completed(self, enrollment: Enrollment, now: datetime):
    self._transition(enrollment, 'completed')
    enrollment.completed_at = now
    self._skip_pending(enrollment, 'Enrollment completed', now)


def complete(self, enrollment: Enrollment, now: datetime = None) -> Enrollment:
    now = now or datetime.utcnow()
    self._mark_completed(enrollment, now)
    db.session.commit()
    logger.info(f"Completed enrollment {enrollment.id}")
    return enrollment


def advance(self, enrollment: Enrollment, steps: int = 1, now: datetime = None) -> Enrollment:
    """Jump an active enrollment forward, re-pointing its pending work to the new step."""
    now = now or datetime.utcnow()
    if enrollment.status != 'active':
        raise InvalidStateTransition(enrollment.status, 'active')
    if steps < 1:
        raise ValidationError("steps_to_advance must be at least 1", {'steps_to_advance': 'must be >= 1'})

    self._skip_pending(enrollment, 'Advanced past step', now)
    enrollment.current_step += steps

    if self.schedule_step(enrollment, enrollment.current_step, now=now) is None:
        self._mark_completed(enrollment, now)

    db.session.commit()
    logger.info(f"Advanced enrollment {enrollment.id} to step {enrollment.current_step} ({enrollment.status})")
    return enrollment


def switch_branch(self, enrollment: Enrollment, branch_name: str) -> Enrollment:
    if enrollment.status not in ('active', 'paused'):
        raise InvalidStateTransition(enrollment.status, enrollment.status)
    enrollment.branch_name = branch_name
    db.session.commit()
    logger.info(f"Switched enrollment {enrollment.id} to branch '{branch_name}'")
    return enrollment
